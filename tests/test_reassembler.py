"""
Tests for chunk reassembly.
"""

import os
import random

import pytest

from clipit.core.uploads.exceptions import EmptyUpload, IncompleteUpload
from clipit.core.uploads.reassembler import Reassembler, first_missing_index

from tests.conftest import split


async def store_chunks(store, key, chunks, order=None):
    for index in order if order is not None else range(len(chunks)):
        await store.put(key, index, chunks[index])


class TestFirstMissingIndex:
    def test_complete(self):
        assert first_missing_index([0, 1, 2], 3) is None

    def test_gap(self):
        assert first_missing_index([0, 1, 2, 4], 5) == 3

    def test_missing_tail(self):
        assert first_missing_index([0, 1], 3) == 2

    def test_missing_head(self):
        assert first_missing_index([1, 2], 3) == 0


class TestReassembler:
    @pytest.mark.asyncio
    async def test_five_megabyte_file_out_of_order(self, store, session_key):
        original = os.urandom(5_000_000)
        chunks = split(original, 2_097_152)
        assert [len(c) for c in chunks] == [2_097_152, 2_097_152, 805_696]

        await store_chunks(store, session_key, chunks, order=[0, 2, 1])
        artifact = await Reassembler(store).reassemble(session_key, "video.mp4", "video/mp4", 3)

        assert artifact.size == 5_000_000
        assert artifact.data == original
        assert artifact.file_extension == "mp4"
        assert artifact.mime_type == "video/mp4"

    @pytest.mark.asyncio
    async def test_order_independent(self, store, blobs, session_key):
        original = bytes(range(256)) * 10
        chunks = split(original, 100)
        order = list(range(len(chunks)))
        random.Random(7).shuffle(order)

        await store_chunks(store, session_key, chunks, order=order)
        artifact = await Reassembler(store).reassemble(session_key, "a.webm", "video/webm")

        assert artifact.data == original

    @pytest.mark.asyncio
    async def test_more_than_ten_chunks(self, store, session_key):
        chunks = [bytes([i]) * 3 for i in range(12)]
        await store_chunks(store, session_key, chunks)

        artifact = await Reassembler(store).reassemble(session_key, "a.mp4", "video/mp4", 12)

        assert artifact.data == b"".join(chunks)

    @pytest.mark.asyncio
    async def test_latest_write_wins(self, store, session_key):
        await store_chunks(store, session_key, [b"aa", b"bb", b"cc"])
        await store.put(session_key, 2, b"ZZ")

        artifact = await Reassembler(store).reassemble(session_key, "a.mp4", "video/mp4", 3)

        assert artifact.data == b"aabbZZ"

    @pytest.mark.asyncio
    async def test_missing_index_three_of_five(self, store, session_key):
        for index in [0, 1, 2, 4]:
            await store.put(session_key, index, b"x")

        with pytest.raises(IncompleteUpload) as exc_info:
            await Reassembler(store).reassemble(session_key, "a.mp4", "video/mp4", 5)

        assert exc_info.value.missing_index == 3
        assert exc_info.value.details["missing_index"] == 3
        assert exc_info.value.stage == "reassembling"

    @pytest.mark.asyncio
    async def test_missing_last_of_declared_total(self, store, session_key):
        await store_chunks(store, session_key, [b"a", b"b"])

        with pytest.raises(IncompleteUpload) as exc_info:
            await Reassembler(store).reassemble(session_key, "a.mp4", "video/mp4", 3)

        assert exc_info.value.missing_index == 2

    @pytest.mark.asyncio
    async def test_gap_without_declared_total(self, store, session_key):
        await store.put(session_key, 0, b"a")
        await store.put(session_key, 2, b"c")

        with pytest.raises(IncompleteUpload) as exc_info:
            await Reassembler(store).reassemble(session_key, "a.mp4", "video/mp4")

        assert exc_info.value.missing_index == 1

    @pytest.mark.asyncio
    async def test_no_chunks(self, store, session_key):
        with pytest.raises(IncompleteUpload) as exc_info:
            await Reassembler(store).reassemble(session_key, "a.mp4", "video/mp4")
        assert exc_info.value.missing_index == 0

    @pytest.mark.asyncio
    async def test_chunks_beyond_total_are_ignored(self, store, session_key):
        await store_chunks(store, session_key, [b"a", b"b", b"c"])

        artifact = await Reassembler(store).reassemble(session_key, "a.mp4", "video/mp4", 2)

        assert artifact.data == b"ab"

    @pytest.mark.asyncio
    async def test_zero_length_chunk(self, store, blobs, session_key):
        await store_chunks(store, session_key, [b"a", b"b", b"c"])
        # A partially failed write left an empty object behind
        blobs.objects[("temp", session_key.chunk_name(1))] = (b"", "application/octet-stream")

        with pytest.raises(EmptyUpload) as exc_info:
            await Reassembler(store).reassemble(session_key, "a.mp4", "video/mp4", 3)

        assert exc_info.value.details["index"] == 1

    @pytest.mark.asyncio
    async def test_never_deletes_chunks(self, store, blobs, session_key):
        await store_chunks(store, session_key, [b"a", b"b"])

        await Reassembler(store).reassemble(session_key, "a.mp4", "video/mp4", 2)

        assert len(blobs.keys("temp")) == 2
        assert not any(op == "delete" for op, _, _ in blobs.calls)

    @pytest.mark.asyncio
    async def test_extension_from_mime_type(self, store, session_key):
        await store.put(session_key, 0, b"a")

        artifact = await Reassembler(store).reassemble(session_key, "upload", "video/mp4", 1)

        assert artifact.file_extension == "mp4"
