"""
Submission entry point.

A submission runs four steps: validate the draft, upload its attachments,
build the complaint record from whatever uploaded, and persist the record.
Upload failures degrade the submission; a persistence failure ends the
attempt but keeps the successful uploads cached under the draft id, so the
next attempt for the same draft only uploads what is still missing.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple, Union

from .builder import ComplaintRecordBuilder
from .config import AppConfig, SubmissionConfig
from .draft import DraftSession
from .errors import Failure, FailureKind, PersistenceFailedError
from .interfaces import ComplaintStore, IdentityProvider
from .models import ComplaintRecord, Draft, Identity, UploadResult
from .providers.base import ProviderFactory
from .providers.registry import build_default_factory
from .storage import build_complaint_store, build_object_store
from .uploader import AttachmentUploader

logger = logging.getLogger(__name__)

AGREEMENT_MESSAGE = "Please accept the agreement before submitting."
REQUIRED_MESSAGE = "Please fill in title and description"
SIGN_IN_MESSAGE = "Please sign in to submit a report"


class SubmissionStatus(Enum):
    SUBMITTED = "submitted"
    VALIDATION_FAILED = "validation_failed"
    CONFIRMATION_REQUIRED = "confirmation_required"
    PERSISTENCE_FAILED = "persistence_failed"
    ABANDONED = "abandoned"


@dataclass(frozen=True)
class SubmissionOutcome:
    """
    Result of one call to ``SubmissionOrchestrator.submit``.

    Attributes:
        status: How the attempt ended
        record: The complaint record, once one was built
        row: The row returned by the complaint store on success
        uploads: Every upload result for the draft, in attachment order
        field_errors: Field name to message, for validation failures
        failure: The blocking failure, if the attempt did not submit
        warnings: User-visible messages about failed uploads
        may_reset: True when the caller can start a new draft
    """

    status: SubmissionStatus
    record: Optional[ComplaintRecord] = None
    row: Optional[Dict[str, object]] = None
    uploads: Tuple[UploadResult, ...] = ()
    field_errors: Dict[str, str] = field(default_factory=dict)
    failure: Optional[Failure] = None
    warnings: Tuple[str, ...] = ()
    may_reset: bool = False

    @property
    def submitted(self) -> bool:
        return self.status is SubmissionStatus.SUBMITTED

    @property
    def failed_uploads(self) -> Tuple[UploadResult, ...]:
        return tuple(result for result in self.uploads if not result.succeeded)

    def to_dict(self) -> Dict[str, object]:
        return {
            "status": self.status.value,
            "complaint": self.row,
            "uploads": [dict(result.to_dict(), status=result.status.value) for result in self.uploads],
            "failed_uploads": [
                {"name": result.descriptor.display_name, "reason": result.failure_reason}
                for result in self.failed_uploads
            ],
            "field_errors": dict(self.field_errors),
            "failure": self.failure.to_dict() if self.failure else None,
            "warnings": list(self.warnings),
            "may_reset": self.may_reset,
        }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SubmissionOrchestrator:
    def __init__(
        self,
        uploader: AttachmentUploader,
        complaint_store: ComplaintStore,
        identity_provider: Optional[IdentityProvider] = None,
        config: Optional[SubmissionConfig] = None,
        builder: Optional[ComplaintRecordBuilder] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._uploader = uploader
        self._complaint_store = complaint_store
        self._identity_provider = identity_provider
        self._config = config or SubmissionConfig()
        self._builder = builder or ComplaintRecordBuilder(self._config)
        self._clock = clock
        # draft_id -> source_id -> successful upload
        self._uploaded: Dict[str, Dict[str, UploadResult]] = {}

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        identity_provider: Optional[IdentityProvider] = None,
        factory: Optional[ProviderFactory] = None,
    ) -> "SubmissionOrchestrator":
        uploader = AttachmentUploader(
            build_object_store(config.object_store),
            factory or build_default_factory(),
            config.upload,
        )
        return cls(
            uploader,
            build_complaint_store(config.complaint_store),
            identity_provider,
            config.submission,
        )

    def cached_uploads(self, draft_id: str) -> List[UploadResult]:
        return list(self._uploaded.get(draft_id, {}).values())

    def validate(self, draft: Draft, identity: Optional[Identity] = None) -> Dict[str, str]:
        """Field-level problems that block submission. Empty when the draft can go."""
        errors: Dict[str, str] = {}
        if not draft.agreement_accepted:
            errors["agreement_accepted"] = AGREEMENT_MESSAGE
        if not draft.title.strip():
            errors["title"] = REQUIRED_MESSAGE
        if not draft.description.strip():
            errors["description"] = REQUIRED_MESSAGE
        if self._config.require_identity and identity is None:
            errors["user"] = SIGN_IN_MESSAGE
        return errors

    async def submit(
        self,
        target: Union[DraftSession, Draft],
        *,
        confirm_without_attachments: bool = False,
    ) -> SubmissionOutcome:
        """Submit the draft held by ``target``.

        Passing a ``DraftSession`` locks its draft for the duration of the
        attempt and lets a closed screen abandon the submission.
        """
        session = target if isinstance(target, DraftSession) else None
        if session is None:
            return await self._submit(target, _always_active, confirm_without_attachments)

        if not session.active:
            self._forget(session.draft.draft_id)
            return SubmissionOutcome(status=SubmissionStatus.ABANDONED)
        try:
            draft = session.begin_submission()
        except RuntimeError as exc:
            return _validation_failed({"draft": str(exc)})
        try:
            return await self._submit(draft, lambda: session.active, confirm_without_attachments)
        finally:
            session.end_submission()

    async def _submit(
        self,
        draft: Draft,
        is_active: Callable[[], bool],
        confirm_without_attachments: bool,
    ) -> SubmissionOutcome:
        identity = self._current_user()
        errors = self.validate(draft, identity)
        if errors:
            logger.info("Draft %s failed validation: %s", draft.draft_id, ", ".join(sorted(errors)))
            return _validation_failed(errors)

        uploads = await self._upload(draft, is_active)
        if uploads is None or not is_active():
            logger.info("Submission of draft %s abandoned", draft.draft_id)
            self._forget(draft.draft_id)
            return SubmissionOutcome(status=SubmissionStatus.ABANDONED)

        warnings = tuple(
            f"Failed to upload {result.descriptor.display_name}, continuing with other files"
            for result in uploads
            if not result.succeeded
        )
        succeeded = [result for result in uploads if result.succeeded]

        if draft.attachments and not succeeded and not self._may_submit_without_attachments(confirm_without_attachments):
            logger.warning("No attachments of draft %s could be uploaded; asking for confirmation", draft.draft_id)
            return SubmissionOutcome(
                status=SubmissionStatus.CONFIRMATION_REQUIRED,
                uploads=uploads,
                failure=Failure.of(
                    FailureKind.UPLOAD_FAILED,
                    "None of the attachments could be uploaded. Submit the report without them?",
                    fallback_action="Submit without attachments",
                    details={"files": [result.descriptor.display_name for result in uploads]},
                ),
                warnings=warnings,
            )

        record = self._builder.build(draft, succeeded, identity, self._clock())
        try:
            row = await asyncio.to_thread(self._complaint_store.insert, record)
        except Exception as exc:
            failure = PersistenceFailedError.from_exception(draft.draft_id, exc).failure
            logger.error("Failed to persist complaint for draft %s: %s", draft.draft_id, exc)
            return SubmissionOutcome(
                status=SubmissionStatus.PERSISTENCE_FAILED,
                record=record,
                uploads=uploads,
                failure=failure,
                warnings=warnings,
            )

        self._forget(draft.draft_id)
        logger.info(
            "Submitted complaint %s for draft %s with %d attachment(s)",
            row.get("id", record.complaint_id),
            draft.draft_id,
            len(record.attachments),
        )
        return SubmissionOutcome(
            status=SubmissionStatus.SUBMITTED,
            record=record,
            row=row,
            uploads=uploads,
            warnings=warnings,
            may_reset=True,
        )

    async def _upload(self, draft: Draft, is_active: Callable[[], bool]) -> Optional[Tuple[UploadResult, ...]]:
        """Upload what is not cached yet. None when the batch was abandoned."""
        cached = self._uploaded.setdefault(draft.draft_id, {})
        pending = [d for d in draft.attachments if d.source_id not in cached]
        fresh: Dict[str, UploadResult] = {}
        if pending:
            batch = await self._uploader.upload_all(draft.draft_id, pending, is_active)
            if batch.cancelled:
                return None
            fresh = {result.descriptor.source_id: result for result in batch.results}
            cached.update((source_id, r) for source_id, r in fresh.items() if r.succeeded)
        elif draft.attachments:
            logger.info("Reusing %d uploaded attachment(s) for draft %s", len(cached), draft.draft_id)

        return tuple(
            cached.get(d.source_id) or fresh[d.source_id]
            for d in draft.attachments
            if d.source_id in cached or d.source_id in fresh
        )

    def _forget(self, draft_id: str) -> None:
        self._uploaded.pop(draft_id, None)
        self._uploader.release(draft_id)

    def _may_submit_without_attachments(self, confirmed: bool) -> bool:
        return confirmed or self._config.empty_upload_policy == "proceed"

    def _current_user(self) -> Optional[Identity]:
        if self._identity_provider is None:
            return None
        try:
            return self._identity_provider.current_user()
        except Exception:
            logger.warning("Identity lookup failed", exc_info=True)
            return None


def _always_active() -> bool:
    return True


def _validation_failed(errors: Dict[str, str]) -> SubmissionOutcome:
    messages = list(dict.fromkeys(errors.values()))
    return SubmissionOutcome(
        status=SubmissionStatus.VALIDATION_FAILED,
        field_errors=errors,
        failure=Failure.of(
            FailureKind.VALIDATION_FAILED,
            " ".join(messages),
            details={"fields": sorted(errors)},
        ),
    )
