"""Draft transitions and the per-screen session that owns the current draft.

Every transition is a pure function ``(draft, ...) -> draft``. ``DraftSession``
is the only place holding a mutable reference, and it refuses changes once the
screen is closed or while a submission attempt is running.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from typing import Callable, List, Optional, Sequence, Tuple

from .config import MAX_ATTACHMENT_BYTES
from .models import (
    AttachmentDescriptor,
    AttachmentRejection,
    CategoryPath,
    Draft,
    Identity,
    LocationFix,
    RejectionReason,
)

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = frozenset(
    {
        "title",
        "description",
        "city",
        "department",
        "priority",
        "full_name",
        "email",
        "phone",
        "address",
    }
)


def new_draft_id() -> str:
    return f"draft-{uuid.uuid4().hex}"


def new_draft(identity: Optional[Identity] = None, priority: str = "Medium") -> Draft:
    """Create an empty draft, pre-filling reporter details from ``identity``."""
    if identity is None:
        return Draft(draft_id=new_draft_id(), priority=priority)
    return Draft(
        draft_id=new_draft_id(),
        priority=priority,
        full_name=identity.full_name or "",
        email=identity.email or "",
        phone=identity.phone or "",
        address=identity.address or "",
    )


def reset_draft(draft: Draft) -> Draft:
    """Start over with a fresh id, keeping the reporter details."""
    return Draft(
        draft_id=new_draft_id(),
        full_name=draft.full_name,
        email=draft.email,
        phone=draft.phone,
        address=draft.address,
    )


def update_fields(draft: Draft, **changes: str) -> Draft:
    unknown = set(changes) - EDITABLE_FIELDS
    if unknown:
        raise ValueError(f"Not editable draft fields: {', '.join(sorted(unknown))}")
    return replace(draft, **changes)


def accept_agreement(draft: Draft, accepted: bool = True) -> Draft:
    return replace(draft, agreement_accepted=accepted)


def select_main_category(draft: Draft, main_category: str) -> Draft:
    return replace(draft, category=CategoryPath(main_category=main_category), category_label=None)


def select_sub_category(draft: Draft, sub_category: str) -> Draft:
    category = CategoryPath(main_category=draft.category.main_category, sub_category=sub_category)
    return replace(draft, category=category, category_label=None)


def select_specific_issue(draft: Draft, specific_issue: str) -> Draft:
    return replace(draft, category=replace(draft.category, specific_issue=specific_issue), category_label=None)


def set_category_label(draft: Draft, label: str) -> Draft:
    """Set the category from a delimited ``"A > B > C"`` label only."""
    return replace(draft, category=CategoryPath(), category_label=label)


def set_location_fix(draft: Draft, fix: LocationFix) -> Draft:
    return replace(draft, location_fix=fix, location_text=fix.display)


def set_manual_location(draft: Draft, text: str) -> Draft:
    return replace(draft, location_fix=None, location_text=text)


def add_attachments(
    draft: Draft,
    descriptors: Sequence[AttachmentDescriptor],
    max_bytes: int = MAX_ATTACHMENT_BYTES,
) -> Tuple[Draft, List[AttachmentRejection]]:
    """Append descriptors, rejecting oversize files and already-present sources."""
    accepted: List[AttachmentDescriptor] = []
    rejections: List[AttachmentRejection] = []
    seen = {descriptor.source_id for descriptor in draft.attachments}
    for descriptor in descriptors:
        if descriptor.size_bytes is not None and descriptor.size_bytes > max_bytes:
            rejections.append(oversize_rejection(descriptor, max_bytes))
            continue
        if descriptor.source_id in seen:
            rejections.append(
                AttachmentRejection(
                    reason=RejectionReason.DUPLICATE,
                    message="This file has already been added",
                    source_id=descriptor.source_id,
                    display_name=descriptor.display_name,
                )
            )
            continue
        seen.add(descriptor.source_id)
        accepted.append(descriptor)
    if not accepted:
        return draft, rejections
    return replace(draft, attachments=draft.attachments + tuple(accepted)), rejections


def remove_attachment(draft: Draft, source_id: str) -> Draft:
    remaining = tuple(d for d in draft.attachments if d.source_id != source_id)
    return replace(draft, attachments=remaining)


def oversize_rejection(descriptor: AttachmentDescriptor, max_bytes: int) -> AttachmentRejection:
    limit_mb = max_bytes // (1024 * 1024)
    return AttachmentRejection(
        reason=RejectionReason.OVERSIZE,
        message=f"File too large: please select files smaller than {limit_mb}MB",
        source_id=descriptor.source_id,
        display_name=descriptor.display_name,
    )


class DraftSession:
    """Holds the draft for one submission screen."""

    def __init__(self, draft: Draft, max_attachment_bytes: int = MAX_ATTACHMENT_BYTES) -> None:
        self._draft = draft
        self._max_attachment_bytes = max_attachment_bytes
        self._active = True
        self._submitting = False
        logger.info("Opened draft %s", draft.draft_id)

    @property
    def draft(self) -> Draft:
        return self._draft

    @property
    def active(self) -> bool:
        return self._active

    @property
    def submitting(self) -> bool:
        return self._submitting

    @property
    def mutable(self) -> bool:
        return self._active and not self._submitting

    def apply(self, transition: Callable[..., Draft], *args, **kwargs) -> bool:
        """Apply a draft transition. Returns False if the draft cannot change now."""
        if not self.mutable:
            logger.warning(
                "Ignoring %s on draft %s (active=%s, submitting=%s)",
                getattr(transition, "__name__", transition),
                self._draft.draft_id,
                self._active,
                self._submitting,
            )
            return False
        self._draft = transition(self._draft, *args, **kwargs)
        return True

    def add_attachments(self, descriptors: Sequence[AttachmentDescriptor]) -> List[AttachmentRejection]:
        if not self.mutable:
            return [
                AttachmentRejection(
                    reason=RejectionReason.DRAFT_LOCKED,
                    message="Attachments cannot be changed right now",
                    source_id=descriptor.source_id,
                    display_name=descriptor.display_name,
                )
                for descriptor in descriptors
            ]
        self._draft, rejections = add_attachments(self._draft, descriptors, self._max_attachment_bytes)
        return rejections

    def remove_attachment(self, source_id: str) -> bool:
        return self.apply(remove_attachment, source_id)

    def begin_submission(self) -> Draft:
        if not self._active:
            raise RuntimeError(f"Draft {self._draft.draft_id} belongs to a closed screen")
        if self._submitting:
            raise RuntimeError(f"Draft {self._draft.draft_id} is already being submitted")
        self._submitting = True
        return self._draft

    def end_submission(self) -> None:
        self._submitting = False

    def reset(self) -> Draft:
        """Replace the draft with a fresh one after a successful submission."""
        self._draft = reset_draft(self._draft)
        logger.info("Reset to new draft %s", self._draft.draft_id)
        return self._draft

    def close(self) -> None:
        """Mark the screen as torn down; later completions must not touch the draft."""
        self._active = False
        logger.info("Closed draft %s", self._draft.draft_id)
