"""
Unit tests for AttachmentStore

Tests cover:
- Storing uploads below the attachments folder
- SHA-256 hash computation and verification
- Size limits
- Releasing stored files
- Rejection of paths outside the attachments folder
"""

import hashlib
from pathlib import Path

import pytest

from core.error_handler import AttachmentError
from core.file_manager import (
    AttachmentStore,
    AttachmentTooLargeError,
    UploadedFile,
)


@pytest.fixture
def store(tmp_path):
    """Fixture providing an AttachmentStore with a 1 KB limit"""
    return AttachmentStore(tmp_path / "attachments", max_file_size=1024)


class TestStore:
    """Tests for storing uploads"""

    def test_store_writes_file(self, store):
        stored = store.store(UploadedFile("notes.txt", b"hello"))

        assert stored.filename == "notes.txt"
        assert stored.file_size == 5
        assert stored.file_hash == hashlib.sha256(b"hello").hexdigest()
        assert stored.mime_type == "text/plain"
        assert stored.file_path.startswith(stored.file_hash[:2] + "/")
        assert (store.root / stored.file_path).read_bytes() == b"hello"

    def test_explicit_mime_type(self, store):
        stored = store.store(UploadedFile("blob", b"\x89PNG", mime_type="image/png"))

        assert stored.mime_type == "image/png"

    def test_unknown_extension(self, store):
        assert store.store(UploadedFile("data.unknownext", b"x")).mime_type == "application/octet-stream"

    def test_unsafe_name_sanitized(self, store):
        stored = store.store(UploadedFile("../../etc/pass wd", b"x"))

        assert Path(stored.file_path).name.endswith("_pass_wd")
        assert store.exists(stored.file_path)

    def test_same_content_stored_twice(self, store):
        first = store.store(UploadedFile("a.txt", b"same"))
        second = store.store(UploadedFile("a.txt", b"same"))

        assert first.file_path != second.file_path

    def test_too_large(self, store):
        with pytest.raises(AttachmentTooLargeError):
            store.store(UploadedFile("big.bin", b"x" * 1025))

    def test_limit_is_inclusive(self, store):
        assert store.store(UploadedFile("edge.bin", b"x" * 1024)).file_size == 1024

    def test_empty_upload(self, store):
        with pytest.raises(AttachmentError):
            store.store(UploadedFile("empty.txt", b""))


class TestReadAndVerify:
    """Tests for reading and hash verification"""

    def test_read_back(self, store):
        stored = store.store(UploadedFile("a.txt", b"content"))

        assert store.read(stored.file_path) == b"content"
        assert store.verify(stored.file_path, stored.file_hash) is True

    def test_verify_detects_change(self, store):
        stored = store.store(UploadedFile("a.txt", b"content"))
        (store.root / stored.file_path).write_bytes(b"changed")

        assert store.verify(stored.file_path, stored.file_hash) is False

    def test_read_missing(self, store):
        with pytest.raises(AttachmentError):
            store.read("ab/missing.txt")


class TestRelease:
    """Tests for releasing stored files"""

    def test_release(self, store):
        stored = store.store(UploadedFile("a.txt", b"content"))

        assert store.release(stored.file_path) is True
        assert store.exists(stored.file_path) is False
        assert store.release(stored.file_path) is False

    @pytest.mark.parametrize("path", ["../outside.txt", "../../etc/passwd"])
    def test_outside_root_rejected(self, store, path):
        with pytest.raises(AttachmentError):
            store.release(path)
