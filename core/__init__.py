"""
Core module for the forum application.

This module contains the infrastructure the logic layer builds on:
- Database operations
- Error taxonomy and central error handling
- Attachment storage
- Post content rendering (BBCode, Markdown)
- Notification mail transports
- Token signing for e-mail links
- Viewer sessions
"""

__version__ = "0.1.0"

from core.error_handler import (
    ForumError,
    PermissionDeniedError,
    NotFoundError,
    DeliveryError,
    StorageError,
    DatabaseError,
    IntegrityViolationError,
    AttachmentError,
    ValidationError,
)
from core.file_manager import (
    AttachmentStore,
    AttachmentTooLargeError,
    UploadedFile,
    StoredFile,
)

__all__ = [
    'ForumError',
    'PermissionDeniedError',
    'NotFoundError',
    'DeliveryError',
    'StorageError',
    'DatabaseError',
    'IntegrityViolationError',
    'AttachmentError',
    'ValidationError',
    'AttachmentStore',
    'AttachmentTooLargeError',
    'UploadedFile',
    'StoredFile',
]
