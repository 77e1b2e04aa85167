import os
import logging
import logging.config
import tempfile
from pathlib import Path

# Base Paths
APP_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = APP_DIR.parent

# Scratch area for transcoder input/output, one subdirectory per operation
SCRATCH_DIR = Path(os.getenv("SCRATCH_DIR", str(Path(tempfile.gettempdir()) / "clipit-scratch")))

# Logging Setup
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
LOG_FILE_PATH = os.getenv(
    "LOG_FILE_PATH",
    str((PROJECT_ROOT / "logs" / "clipit.log").resolve()),
)

LOG_DIR = Path(LOG_FILE_PATH).parent
LOG_DIR.mkdir(parents=True, exist_ok=True)

LOGGING_CONFIG = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "standard": {
            "format": LOG_FORMAT,
        }
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "level": LOG_LEVEL,
            "formatter": "standard",
            "stream": "ext://sys.stdout",
        },
        "file": {
            "class": "logging.handlers.RotatingFileHandler",
            "level": LOG_LEVEL,
            "formatter": "standard",
            "filename": LOG_FILE_PATH,
            "maxBytes": 10 * 1024 * 1024,  # 10 MB
            "backupCount": 5,
            "encoding": "utf8",
        },
    },
    "loggers": {
        "clipit": {
            "handlers": ["console", "file"],
            "level": LOG_LEVEL,
            "propagate": False,
        },
        "uvicorn.error": {"level": "INFO"},
        "uvicorn.access": {"level": "INFO"},
    },
    "root": {
        "handlers": ["console"],
        "level": LOG_LEVEL,
    },
}

logging.config.dictConfig(LOGGING_CONFIG)
logger = logging.getLogger("clipit")

SCRATCH_DIR.mkdir(parents=True, exist_ok=True)


def _split_csv(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


# Cloudflare R2 (S3-compatible object storage)
R2_ACCOUNT_ID = os.getenv("R2_ACCOUNT_ID", "")
R2_ACCESS_KEY_ID = os.getenv("R2_ACCESS_KEY_ID", "")
R2_SECRET_ACCESS_KEY = os.getenv("R2_SECRET_ACCESS_KEY", "")
R2_ENDPOINT_URL = os.getenv(
    "R2_ENDPOINT_URL",
    f"https://{R2_ACCOUNT_ID}.r2.cloudflarestorage.com" if R2_ACCOUNT_ID else "",
)
# When set, artifact URLs are built as {base}/{bucket}/{key}; otherwise presigned
R2_PUBLIC_BASE_URL = os.getenv("R2_PUBLIC_BASE_URL", "")
R2_MAX_ATTEMPTS = int(os.getenv("R2_MAX_ATTEMPTS", "3"))
PRESIGNED_URL_EXPIRY = int(os.getenv("PRESIGNED_URL_EXPIRY", "3600"))

STORAGE_BUCKETS = {
    "clips": os.getenv("BUCKET_CLIPS", "clips"),
    "compressed": os.getenv("BUCKET_COMPRESSED", "compressed"),
    "cuts": os.getenv("BUCKET_CUTS", "cuts"),
    "thumbnails": os.getenv("BUCKET_THUMBNAILS", "thumbnails"),
    "temp": os.getenv("BUCKET_TEMP", "temp"),
}

# -----------------------------------------------------------------------------
# Upload Configuration
# -----------------------------------------------------------------------------

MAX_CHUNK_BYTES = int(os.getenv("MAX_CHUNK_BYTES", str(8 * 1024 * 1024)))
MAX_TOTAL_CHUNKS = int(os.getenv("MAX_TOTAL_CHUNKS", "10000"))
MAX_DIRECT_UPLOAD_BYTES = int(os.getenv("MAX_DIRECT_UPLOAD_BYTES", str(100 * 1024 * 1024)))

# Compressed and cut artifacts are temporary; clips are kept
ARTIFACT_TTL_HOURS = int(os.getenv("ARTIFACT_TTL_HOURS", "6"))

# -----------------------------------------------------------------------------
# Transcoder Configuration
# -----------------------------------------------------------------------------

FFMPEG_BINARY = os.getenv("FFMPEG_BINARY", "ffmpeg")
FFPROBE_BINARY = os.getenv("FFPROBE_BINARY", "ffprobe")
FFMPEG_TIMEOUT_SECONDS = float(os.getenv("FFMPEG_TIMEOUT_SECONDS", "300"))
THUMBNAIL_OFFSET_SECONDS = float(os.getenv("THUMBNAIL_OFFSET_SECONDS", "1.0"))
THUMBNAIL_WIDTH = int(os.getenv("THUMBNAIL_WIDTH", "480"))

# -----------------------------------------------------------------------------
# Maintenance
# -----------------------------------------------------------------------------

ENABLE_SCHEDULER = _env_flag("ENABLE_SCHEDULER", "false")
CLEANUP_INTERVAL_SECONDS = int(os.getenv("CLEANUP_INTERVAL_SECONDS", str(30 * 60)))
MAINTENANCE_ADMIN_UIDS = frozenset(_split_csv(os.getenv("MAINTENANCE_ADMIN_UIDS", "")))

# Security / domains
ALLOWED_HOSTS = _split_csv(
    os.getenv(
        "ALLOWED_HOSTS",
        "localhost,127.0.0.1,testserver",
    )
)

CORS_ORIGINS = _split_csv(
    os.getenv(
        "CORS_ORIGINS",
        "http://localhost:3000",
    )
)

# Peers allowed to set X-Forwarded-For (load balancer addresses)
TRUSTED_PROXIES = frozenset(_split_csv(os.getenv("TRUSTED_PROXIES", "")))

# Rate limiting
RATE_LIMIT_REQUESTS = int(os.getenv("RATE_LIMIT_REQUESTS", "60"))  # requests per window
RATE_LIMIT_WINDOW = int(os.getenv("RATE_LIMIT_WINDOW", "60"))  # seconds
# Clients send chunks in parallel, so the chunk route gets its own budget
CHUNK_RATE_LIMIT_REQUESTS = int(os.getenv("CHUNK_RATE_LIMIT_REQUESTS", "600"))

# Environment
ENVIRONMENT = os.getenv("ENVIRONMENT", "development").lower()
IS_PRODUCTION = ENVIRONMENT == "production"
DEBUG = not IS_PRODUCTION
