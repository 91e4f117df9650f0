"""Configuration models and helpers for the grievance submission pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict

import json

MAX_ATTACHMENT_BYTES = 50 * 1024 * 1024


@dataclass
class StorageTargetConfig:
    """Storage settings for the object store and the complaint store."""

    type: str
    params: Dict[str, Any] = field(default_factory=dict)


@dataclass
class UploadConfig:
    """Attachment upload limits."""

    max_concurrency: int = 3
    max_attachment_bytes: int = MAX_ATTACHMENT_BYTES
    default_content_type: str = "application/octet-stream"


@dataclass
class LocationConfig:
    timeout_seconds: float = 15.0
    decimal_places: int = 6


@dataclass
class PermissionConfig:
    prompt_timeout_seconds: float = 60.0


@dataclass
class SubmissionConfig:
    """Submission policy knobs.

    ``empty_upload_policy`` decides what happens when a draft had attachments
    but none of them could be uploaded: ``require_confirmation`` stops and asks
    the caller, ``proceed`` submits the complaint without attachments.
    """

    empty_upload_policy: str = "require_confirmation"
    default_priority: str = "Medium"
    initial_status: str = "Pending"
    require_identity: bool = True

    def __post_init__(self) -> None:
        if self.empty_upload_policy not in ("require_confirmation", "proceed"):
            raise ValueError(f"Unknown empty_upload_policy: {self.empty_upload_policy}")


@dataclass
class AppConfig:
    """Top-level configuration for the submission pipeline."""

    object_store: StorageTargetConfig
    complaint_store: StorageTargetConfig
    upload: UploadConfig = field(default_factory=UploadConfig)
    location: LocationConfig = field(default_factory=LocationConfig)
    permissions: PermissionConfig = field(default_factory=PermissionConfig)
    submission: SubmissionConfig = field(default_factory=SubmissionConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AppConfig":
        object_store = StorageTargetConfig(**data["object_store"])
        complaint_store = StorageTargetConfig(**data["complaint_store"])
        upload = UploadConfig(**data.get("upload", {}))
        location = LocationConfig(**data.get("location", {}))
        permissions = PermissionConfig(**data.get("permissions", {}))
        submission = SubmissionConfig(**data.get("submission", {}))
        return cls(
            object_store=object_store,
            complaint_store=complaint_store,
            upload=upload,
            location=location,
            permissions=permissions,
            submission=submission,
        )

    @classmethod
    def from_json(cls, path: Path) -> "AppConfig":
        data = json.loads(path.read_text())
        return cls.from_dict(data)


DEFAULT_CONFIG = AppConfig(
    object_store=StorageTargetConfig(type="local_fs", params={"base_path": "./_attachments"}),
    complaint_store=StorageTargetConfig(type="sqlite", params={"path": "./_complaints/complaints.db"}),
)
