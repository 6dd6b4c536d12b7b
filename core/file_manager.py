"""
Attachment store for the forum core

Handles post attachment files including:
- Enforcing the configured maximum upload size
- Computing SHA-256 hashes for integrity verification
- Detecting MIME types
- Writing files below the attachments folder and releasing them on delete
"""

import hashlib
import logging
import mimetypes
import re
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from core.error_handler import AttachmentError


logger = logging.getLogger(__name__)


DEFAULT_MAX_FILE_SIZE = 10 * 1024 * 1024  # 10 MB


class AttachmentTooLargeError(AttachmentError):
    """Raised when an upload exceeds the maximum size"""
    pass


@dataclass
class UploadedFile:
    """An upload as received from the client."""
    filename: str
    data: bytes
    mime_type: Optional[str] = None


@dataclass
class StoredFile:
    """A file written to the attachments folder."""
    filename: str
    file_path: str  # relative to the attachments folder
    file_hash: str  # SHA-256 hash
    file_size: int
    mime_type: str


class AttachmentStore:
    """
    Stores post attachments on disk.

    Files are written below ``root`` in a two-level directory keyed by the
    first characters of their hash. Stored paths are always relative to
    ``root`` and are rejected when they would escape it.
    """

    def __init__(self, root: Path, max_file_size: int = DEFAULT_MAX_FILE_SIZE):
        """
        Initialize AttachmentStore.

        Args:
            root: Attachments folder
            max_file_size: Largest accepted upload in bytes
        """
        self.root = Path(root)
        self.max_file_size = max_file_size

    def store(self, upload: UploadedFile) -> StoredFile:
        """
        Write an upload to the attachments folder.

        Args:
            upload: The uploaded file

        Returns:
            StoredFile: Reference to the written file

        Raises:
            AttachmentTooLargeError: If the upload exceeds the maximum size
            AttachmentError: If the upload is empty or cannot be written
        """
        file_size = len(upload.data)
        if file_size == 0:
            raise AttachmentError(f"Attachment {upload.filename} is empty")
        if file_size > self.max_file_size:
            raise AttachmentTooLargeError(
                f"File size {file_size} bytes exceeds maximum {self.max_file_size} bytes"
            )

        file_hash = self._compute_hash(upload.data)
        mime_type = upload.mime_type or self._detect_mime_type(upload.filename)
        relative = Path(file_hash[:2]) / f"{uuid.uuid4().hex}_{self._safe_name(upload.filename)}"

        target = self.root / relative
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with open(target, 'wb') as f:
                f.write(upload.data)
        except OSError as e:
            raise AttachmentError(f"Failed to store attachment {upload.filename}: {e}") from e

        logger.info(f"Stored attachment {upload.filename} ({file_size} bytes) as {relative.as_posix()}")

        return StoredFile(
            filename=upload.filename,
            file_path=relative.as_posix(),
            file_hash=file_hash,
            file_size=file_size,
            mime_type=mime_type,
        )

    def read(self, file_path: str) -> bytes:
        """Read a stored file back."""
        target = self._resolve(file_path)
        try:
            with open(target, 'rb') as f:
                return f.read()
        except OSError as e:
            raise AttachmentError(f"Failed to read attachment {file_path}: {e}") from e

    def verify(self, file_path: str, expected_hash: str) -> bool:
        """
        Check a stored file against its recorded hash.

        Returns:
            bool: True if the hashes match
        """
        return self._compute_hash(self.read(file_path)) == expected_hash

    def release(self, file_path: str) -> bool:
        """
        Delete a stored file.

        Args:
            file_path: Path relative to the attachments folder

        Returns:
            bool: True if a file was removed, False if it was already gone
        """
        target = self._resolve(file_path)
        if not target.exists():
            logger.debug(f"Attachment {file_path} already released")
            return False
        try:
            target.unlink()
        except OSError as e:
            raise AttachmentError(f"Failed to release attachment {file_path}: {e}") from e
        logger.info(f"Released attachment {file_path}")
        return True

    def exists(self, file_path: str) -> bool:
        return self._resolve(file_path).exists()

    def _resolve(self, file_path: str) -> Path:
        root = self.root.resolve()
        target = (root / file_path).resolve()
        if root != target and root not in target.parents:
            raise AttachmentError(f"Attachment path {file_path} is outside the attachments folder")
        return target

    def _compute_hash(self, data: bytes) -> str:
        """
        Compute SHA-256 hash of data.

        Args:
            data: Data to hash

        Returns:
            str: Hex-encoded SHA-256 hash
        """
        return hashlib.sha256(data).hexdigest()

    def _detect_mime_type(self, filename: str) -> str:
        """
        Detect MIME type from file extension.

        Args:
            filename: Original file name

        Returns:
            str: MIME type
        """
        mime_type, _ = mimetypes.guess_type(filename)
        return mime_type or 'application/octet-stream'

    def _safe_name(self, filename: str) -> str:
        name = Path(filename).name
        name = re.sub(r'[^A-Za-z0-9._-]', '_', name)
        return name or 'attachment'
