"""Failure taxonomy for the submission pipeline.

Pipeline operations report failures as values (``Failure``) attached to their
result objects. The exception classes below are raised by backends and caught
at the pipeline seams, where they are turned into those values.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class FailureKind(Enum):
    """Kinds of failure a submission can run into."""

    PERMISSION_DENIED = "PermissionDenied"
    LOCATION_UNAVAILABLE = "LocationUnavailable"
    ATTACHMENT_INVALID = "AttachmentInvalid"
    UPLOAD_FAILED = "UploadFailed"
    PERSISTENCE_FAILED = "PersistenceFailed"
    VALIDATION_FAILED = "ValidationFailed"


RECOVERABLE_KINDS = frozenset(
    {
        FailureKind.PERMISSION_DENIED,
        FailureKind.LOCATION_UNAVAILABLE,
        FailureKind.ATTACHMENT_INVALID,
        FailureKind.UPLOAD_FAILED,
    }
)


@dataclass(frozen=True)
class Failure:
    """
    A failure surfaced to the caller.

    Attributes:
        kind: Which branch of the taxonomy this failure belongs to
        message: Human-readable, user-facing message
        recoverable: Whether the user can carry on with degraded functionality
        fallback_action: Optional description of what the caller can do instead
        details: Optional structured details (field names, file names, ...)
        original_exception: Optional exception that caused this failure
    """

    kind: FailureKind
    message: str
    recoverable: bool
    fallback_action: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    original_exception: Optional[BaseException] = None

    @classmethod
    def of(
        cls,
        kind: FailureKind,
        message: str,
        *,
        fallback_action: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        original_exception: Optional[BaseException] = None,
    ) -> "Failure":
        return cls(
            kind=kind,
            message=message,
            recoverable=kind in RECOVERABLE_KINDS,
            fallback_action=fallback_action,
            details=details,
            original_exception=original_exception,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "recoverable": self.recoverable,
            "fallback_action": self.fallback_action,
            "details": self.details or {},
            "original_exception": str(self.original_exception) if self.original_exception else None,
        }


class GrievanceError(Exception):
    """Base exception carrying a ``Failure``."""

    def __init__(self, failure: Failure):
        self.failure = failure
        super().__init__(failure.message)

    def __str__(self) -> str:
        base = f"{self.failure.kind.value}: {self.failure.message}"
        if self.failure.fallback_action:
            base += f" (Fallback: {self.failure.fallback_action})"
        return base


class UploadFailedError(GrievanceError):
    """Raised when a single attachment could not be stored."""

    @classmethod
    def for_file(cls, display_name: str, reason: str, error: Optional[BaseException] = None) -> "UploadFailedError":
        return cls(
            Failure.of(
                FailureKind.UPLOAD_FAILED,
                f"Failed to upload {display_name}: {reason}",
                fallback_action="Continue with other files",
                details={"file": display_name, "reason": reason},
                original_exception=error,
            )
        )


class PersistenceFailedError(GrievanceError):
    """Raised by complaint stores when a record could not be inserted."""

    @classmethod
    def from_exception(cls, draft_id: str, error: BaseException) -> "PersistenceFailedError":
        return cls(
            Failure.of(
                FailureKind.PERSISTENCE_FAILED,
                f"Failed to submit report: {error}",
                fallback_action="Retry; uploaded attachments are kept",
                details={"draft_id": draft_id},
                original_exception=error,
            )
        )
