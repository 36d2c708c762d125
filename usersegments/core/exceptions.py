"""Domain exceptions shared by the repositories, services and the HTTP layer."""

from typing import Optional


class SegmentsException(Exception):
    """Base exception for the segmentation service."""

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.__class__.__doc__
        super().__init__(self.message)


class NotFoundException(SegmentsException):
    """Referenced object not found."""


class UserNotFoundException(NotFoundException):
    """User not found."""

    def __init__(self, user_id: int):
        self.user_id = user_id
        super().__init__(f"User {user_id} not found")


class SegmentNotFoundException(NotFoundException):
    """Segment not found."""

    def __init__(self, segment_name: str):
        self.segment_name = segment_name
        super().__init__(f"Segment '{segment_name}' not found")


class ConflictException(SegmentsException):
    """Object already exists."""


class ValidationException(SegmentsException):
    """Invalid input."""


class TransientStoreException(SegmentsException):
    """Database connection or transaction failure."""


class ReportStorageUnavailableException(SegmentsException):
    """Report storage is not available."""


class ReportUploadException(SegmentsException):
    """Report upload failed."""
