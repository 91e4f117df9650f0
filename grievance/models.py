"""Domain models used throughout the submission pipeline."""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .errors import Failure, FailureKind

CATEGORY_DELIMITER = ">"


class AttachmentKind(Enum):
    IMAGE = "image"
    DOCUMENT = "document"


class SourceForm(Enum):
    """Shape of the reference a picker handed back."""

    CONTENT_REF = "content_ref"  # content://
    PHOTO_LIBRARY = "photo_library"  # ph://, assets-library://
    FILE_PATH = "file_path"  # file:// or an absolute path
    INLINE_BASE64 = "inline_base64"  # data:<mime>;base64,<payload>

    @property
    def is_opaque(self) -> bool:
        return self in (SourceForm.CONTENT_REF, SourceForm.PHOTO_LIBRARY)


@dataclass(frozen=True)
class AttachmentDescriptor:
    source_id: str
    display_name: str
    mime_type: str
    size_bytes: Optional[int]
    kind: AttachmentKind
    source_uri: str = field(repr=False)
    source_form: SourceForm
    width: Optional[int] = None
    height: Optional[int] = None


class RejectionReason(Enum):
    OVERSIZE = "oversize"
    DUPLICATE = "duplicate"
    MALFORMED = "malformed"
    DRAFT_LOCKED = "draft_locked"


@dataclass(frozen=True)
class AttachmentRejection:
    reason: RejectionReason
    message: str
    source_id: Optional[str] = None
    display_name: Optional[str] = None

    @property
    def failure(self) -> Failure:
        return Failure.of(
            FailureKind.ATTACHMENT_INVALID,
            self.message,
            details={
                "reason": self.reason.value,
                "source_id": self.source_id,
                "file": self.display_name,
            },
        )


class UploadStatus(Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class UploadResult:
    descriptor: AttachmentDescriptor
    storage_path: str
    public_url: Optional[str]
    uploaded_at: datetime
    status: UploadStatus
    failure_reason: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status is UploadStatus.SUCCEEDED

    def to_dict(self) -> Dict[str, object]:
        return {
            "name": self.descriptor.display_name,
            "path": self.storage_path,
            "size": self.descriptor.size_bytes,
            "type": self.descriptor.mime_type,
            "kind": self.descriptor.kind.value,
            "url": self.public_url,
            "uploaded_at": self.uploaded_at.isoformat(),
        }


@dataclass(frozen=True)
class UploadBody:
    """Content handed to an object store.

    Exactly one of ``data`` and ``file_path`` is set. ``data`` may carry a
    transfer encoding (``base64``) that stores undo before writing.
    """

    data: Optional[bytes] = field(default=None, repr=False)
    file_path: Optional[Path] = None
    transfer_encoding: Optional[str] = None

    def __post_init__(self) -> None:
        if (self.data is None) == (self.file_path is None):
            raise ValueError("UploadBody needs exactly one of data or file_path")

    @property
    def is_file(self) -> bool:
        return self.file_path is not None

    def read_bytes(self) -> bytes:
        if self.file_path is not None:
            return self.file_path.read_bytes()
        if self.transfer_encoding == "base64":
            return base64.b64decode(self.data, validate=True)
        return self.data


@dataclass(frozen=True)
class StoredObject:
    path: str
    public_url: Optional[str] = None


@dataclass(frozen=True)
class CategoryPath:
    """Three-level issue classification, readable as fields or as ``"A > B > C"``."""

    main_category: str = ""
    sub_category: str = ""
    specific_issue: str = ""

    @classmethod
    def parse(cls, label: str) -> "CategoryPath":
        parts = [part.strip() for part in label.split(CATEGORY_DELIMITER, 2)]
        parts = (parts + ["", "", ""])[:3]
        return cls(main_category=parts[0], sub_category=parts[1], specific_issue=parts[2])

    @property
    def label(self) -> str:
        return f" {CATEGORY_DELIMITER} ".join(self.parts)

    @property
    def parts(self) -> Tuple[str, str, str]:
        return (self.main_category, self.sub_category, self.specific_issue)

    @property
    def is_empty(self) -> bool:
        return not any(self.parts)


class Capability(Enum):
    LOCATION = "location"
    CAMERA = "camera"
    MEDIA_LIBRARY = "mediaLibrary"


class PermissionStatus(Enum):
    GRANTED = "granted"
    DENIED = "denied"


@dataclass(frozen=True)
class PermissionGrant:
    """Platform answer for one capability.

    ``can_ask_again`` is False once the platform will no longer show a prompt;
    the only way forward from there is the platform settings screen.
    """

    capability: Capability
    status: PermissionStatus
    can_ask_again: bool = True

    @property
    def granted(self) -> bool:
        return self.status is PermissionStatus.GRANTED


class LocationSource(Enum):
    LIVE = "live"
    LAST_KNOWN = "lastKnown"


@dataclass(frozen=True)
class Coordinates:
    latitude: float
    longitude: float


@dataclass(frozen=True)
class LocationFix:
    latitude: float
    longitude: float
    source: LocationSource
    acquired_at: datetime
    decimal_places: int = 6

    @property
    def display(self) -> str:
        places = self.decimal_places
        return f"Lat: {self.latitude:.{places}f}, Lng: {self.longitude:.{places}f}"


@dataclass(frozen=True)
class Identity:
    user_id: str
    full_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None


@dataclass(frozen=True)
class Draft:
    """In-progress complaint. Changed only through the reducers in ``grievance.draft``."""

    draft_id: str
    title: str = ""
    description: str = ""
    category: CategoryPath = field(default_factory=CategoryPath)
    category_label: Optional[str] = None
    city: str = ""
    department: str = ""
    priority: str = "Medium"
    location_text: str = ""
    location_fix: Optional[LocationFix] = None
    attachments: Tuple[AttachmentDescriptor, ...] = ()
    agreement_accepted: bool = False
    full_name: str = ""
    email: str = ""
    phone: str = ""
    address: str = ""

    def attachment(self, source_id: str) -> Optional[AttachmentDescriptor]:
        for descriptor in self.attachments:
            if descriptor.source_id == source_id:
                return descriptor
        return None


@dataclass(frozen=True)
class ComplaintRecord:
    complaint_id: str
    draft_id: str
    user_id: Optional[str]
    title: str
    description: str
    category: str
    main_category: str
    sub_category: str
    specific_issue: str
    city: str
    department: str
    priority: str
    status: str
    location: str
    latitude: Optional[float]
    longitude: Optional[float]
    location_source: Optional[LocationSource]
    reporter_name: str
    reporter_email: str
    reporter_phone: str
    reporter_address: str
    attachments: Tuple[UploadResult, ...]
    submitted_at: datetime

    @property
    def category_path(self) -> CategoryPath:
        return CategoryPath(self.main_category, self.sub_category, self.specific_issue)

    def to_dict(self) -> Dict[str, object]:
        attachments: List[Dict[str, object]] = [result.to_dict() for result in self.attachments]
        return {
            "id": self.complaint_id,
            "draft_id": self.draft_id,
            "user_id": self.user_id,
            "title": self.title,
            "description": self.description,
            "category": self.category,
            "main_category": self.main_category,
            "sub_category": self.sub_category,
            "specific_issue": self.specific_issue,
            "city": self.city,
            "department": self.department,
            "priority": self.priority,
            "status": self.status,
            "location": self.location,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "location_source": self.location_source.value if self.location_source else None,
            "reporter": {
                "full_name": self.reporter_name,
                "email": self.reporter_email,
                "phone": self.reporter_phone,
                "address": self.reporter_address,
            },
            "attachments": attachments,
            "attachments_count": len(attachments),
            "submitted_at": self.submitted_at.isoformat(),
        }
