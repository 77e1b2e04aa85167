"""
Pydantic models for repository data structures.

Provides type safety and validation for persisted artifact metadata.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from clipit.core.uploads.models import Purpose

# Record kind -> Firestore collection
RECORD_COLLECTIONS = {
    "clip": "clips",
    "compression": "compressions",
    "cut": "cuts",
}

PURPOSE_KINDS = {
    Purpose.CLIP: "clip",
    Purpose.COMPRESS: "compression",
    Purpose.TRIM: "cut",
}


class ArtifactRecord(BaseModel):
    """Metadata for one finalized upload artifact."""

    id: str = Field(..., min_length=1, max_length=200)
    kind: str
    title: str = Field(default="", max_length=500)
    description: str = Field(default="", max_length=5000)

    # Storage references
    artifact_bucket: str = Field(..., min_length=1, max_length=100)
    artifact_key: str = Field(..., min_length=1, max_length=500)
    artifact_url: str = Field(..., min_length=1)
    derived_bucket: Optional[str] = Field(None, max_length=100)
    derived_key: Optional[str] = Field(None, max_length=500)
    derived_url: Optional[str] = None

    # Ownership
    owner_id: str = Field(..., min_length=1, max_length=128)
    collection_id: Optional[str] = Field(None, max_length=100)

    # File information
    byte_size: int = Field(..., ge=0)
    original_size: int = Field(..., ge=0)
    original_file_name: str = Field(..., min_length=1, max_length=300)
    format: str = Field(..., min_length=1, max_length=20)
    compression_ratio: Optional[float] = None

    # Trim offsets (cuts only)
    trim_start: Optional[float] = Field(None, ge=0)
    trim_end: Optional[float] = Field(None, gt=0)

    # Timestamps
    created_at: datetime
    expires_at: Optional[datetime] = None

    @field_validator("kind")
    @classmethod
    def validate_kind(cls, v: str) -> str:
        if v not in RECORD_COLLECTIONS:
            raise ValueError(f"Invalid kind: {v}. Must be one of: {', '.join(RECORD_COLLECTIONS)}")
        return v

    @model_validator(mode="after")
    def check_trim_range(self) -> "ArtifactRecord":
        if self.trim_start is not None and self.trim_end is not None:
            if self.trim_end <= self.trim_start:
                raise ValueError("trim_end must be greater than trim_start")
        return self

    @property
    def collection(self) -> str:
        return RECORD_COLLECTIONS[self.kind]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ArtifactRecord":
        """Create from Firestore document dictionary."""
        return cls.model_validate(data)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to Firestore-compatible dictionary."""
        return self.model_dump(exclude_none=False)
