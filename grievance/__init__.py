"""Grievance package exposing the public API of the submission pipeline."""

from .config import AppConfig
from .draft import DraftSession, new_draft
from .location import LocationResolver
from .normalizer import AttachmentNormalizer, PickerSource
from .orchestrator import SubmissionOrchestrator, SubmissionOutcome, SubmissionStatus
from .permissions import PermissionNegotiator

__all__ = [
    "AppConfig",
    "AttachmentNormalizer",
    "DraftSession",
    "LocationResolver",
    "PermissionNegotiator",
    "PickerSource",
    "SubmissionOrchestrator",
    "SubmissionOutcome",
    "SubmissionStatus",
    "new_draft",
]
