"""Pure assembly of a complaint record from a draft and its uploads."""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional

from .config import SubmissionConfig
from .models import CategoryPath, ComplaintRecord, Draft, Identity, UploadResult


def normalize_category(draft: Draft) -> CategoryPath:
    """Structured fields win; a bare delimited label is parsed into fields."""
    if not draft.category.is_empty:
        return draft.category
    if draft.category_label:
        return CategoryPath.parse(draft.category_label)
    return CategoryPath()


class ComplaintRecordBuilder:
    def __init__(self, config: Optional[SubmissionConfig] = None) -> None:
        self._config = config or SubmissionConfig()

    def build(
        self,
        draft: Draft,
        uploads: Iterable[UploadResult],
        identity: Optional[Identity],
        submitted_at: datetime,
    ) -> ComplaintRecord:
        """Build the record. Failed uploads are dropped; nothing here does I/O."""
        category = normalize_category(draft)
        fix = draft.location_fix
        attachments = tuple(result for result in uploads if result.succeeded)
        return ComplaintRecord(
            complaint_id=complaint_id_for(draft.draft_id),
            draft_id=draft.draft_id,
            user_id=identity.user_id if identity else None,
            title=draft.title.strip(),
            description=draft.description.strip(),
            category=category.label,
            main_category=category.main_category,
            sub_category=category.sub_category,
            specific_issue=category.specific_issue,
            city=draft.city.strip(),
            department=draft.department,
            priority=draft.priority or self._config.default_priority,
            status=self._config.initial_status,
            location=fix.display if fix else draft.location_text.strip(),
            latitude=fix.latitude if fix else None,
            longitude=fix.longitude if fix else None,
            location_source=fix.source if fix else None,
            reporter_name=draft.full_name,
            reporter_email=draft.email,
            reporter_phone=draft.phone,
            reporter_address=draft.address,
            attachments=attachments,
            submitted_at=submitted_at,
        )


def complaint_id_for(draft_id: str) -> str:
    """Complaint ids derive from the draft id so a retried insert targets the same row."""
    return "COMP-" + draft_id.split("-", 1)[-1]
