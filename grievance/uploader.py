"""Attachment upload stage.

Each descriptor is uploaded on its own, with at most ``max_concurrency``
transfers in flight. A failure produces a failed ``UploadResult`` for that
descriptor and never stops the rest of the batch.

Storage paths look like ``{draft_id}/{upload_millis}_{sanitized_name}`` so a
draft's files sit together and no path is handed out twice.
"""

from __future__ import annotations

import asyncio
import base64
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple

from .config import UploadConfig
from .errors import UploadFailedError
from .interfaces import ContentReader, ObjectStore
from .models import (
    AttachmentDescriptor,
    SourceForm,
    UploadBody,
    UploadResult,
    UploadStatus,
)
from .normalizer import MalformedEntry, decode_data_uri, sanitize_filename
from .providers.base import ProviderFactory
from .providers.filesystem import path_from_uri
from .providers.null import NullContentReader
from .providers.registry import CONTENT

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _always_active() -> bool:
    return True


@dataclass(frozen=True)
class UploadBatch:
    results: Tuple[UploadResult, ...]
    cancelled: bool = False

    @property
    def succeeded(self) -> Tuple[UploadResult, ...]:
        return tuple(result for result in self.results if result.succeeded)

    @property
    def failed(self) -> Tuple[UploadResult, ...]:
        return tuple(result for result in self.results if not result.succeeded)

    @property
    def warnings(self) -> List[str]:
        return [
            f"Failed to upload {result.descriptor.display_name}, continuing with other files"
            for result in self.failed
        ]


class AttachmentUploader:
    def __init__(
        self,
        store: ObjectStore,
        factory: ProviderFactory,
        config: Optional[UploadConfig] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._factory = factory
        self._config = config or UploadConfig()
        self._clock = clock
        self._reserved: Dict[str, Set[str]] = {}

    async def upload_all(
        self,
        draft_id: str,
        descriptors: Sequence[AttachmentDescriptor],
        is_active: Callable[[], bool] = _always_active,
    ) -> UploadBatch:
        """Upload ``descriptors`` for ``draft_id``; results keep the descriptor order."""
        if not descriptors:
            return UploadBatch(results=())
        reader = self._factory.resolve(CONTENT, NullContentReader())
        semaphore = asyncio.Semaphore(max(1, self._config.max_concurrency))
        tasks = [
            asyncio.ensure_future(self._upload_one(draft_id, descriptor, reader, semaphore, is_active))
            for descriptor in descriptors
        ]
        await asyncio.gather(*tasks)

        # one task per descriptor position; source ids may repeat
        results: List[UploadResult] = [result for result in (task.result() for task in tasks) if result is not None]
        batch = UploadBatch(results=tuple(results), cancelled=not is_active())
        logger.info(
            "Upload batch for %s finished: %d succeeded, %d failed%s",
            draft_id,
            len(batch.succeeded),
            len(batch.failed),
            " (cancelled)" if batch.cancelled else "",
        )
        return batch

    def storage_path(self, draft_id: str, descriptor: AttachmentDescriptor) -> str:
        """Reserve a fresh path for ``descriptor`` within ``draft_id``."""
        reserved = self._reserved.setdefault(draft_id, set())
        name = sanitize_filename(descriptor.display_name)
        millis = int(self._clock().timestamp() * 1000)
        path = f"{draft_id}/{millis}_{name}"
        while path in reserved:
            millis += 1
            path = f"{draft_id}/{millis}_{name}"
        reserved.add(path)
        return path

    def release(self, draft_id: str) -> None:
        """Forget the paths reserved for a finished or abandoned draft."""
        self._reserved.pop(draft_id, None)

    async def _upload_one(
        self,
        draft_id: str,
        descriptor: AttachmentDescriptor,
        reader: ContentReader,
        semaphore: asyncio.Semaphore,
        is_active: Callable[[], bool],
    ) -> Optional[UploadResult]:
        async with semaphore:
            if not is_active():
                logger.info("Skipping upload of %s: submission abandoned", descriptor.display_name)
                return None
            path = self.storage_path(draft_id, descriptor)
            content_type = descriptor.mime_type or self._config.default_content_type
            try:
                body = await self._prepare(descriptor, reader)
                stored = await asyncio.to_thread(self._store.upload, path, body, content_type)
            except Exception as exc:
                if isinstance(exc, UploadFailedError):
                    reason = exc.failure.details["reason"]
                else:
                    reason = str(exc) or type(exc).__name__
                logger.warning("Failed to upload %s to %s: %s", descriptor.display_name, path, reason)
                return UploadResult(
                    descriptor=descriptor,
                    storage_path=path,
                    public_url=None,
                    uploaded_at=self._clock(),
                    status=UploadStatus.FAILED,
                    failure_reason=reason,
                )
        logger.debug("Uploaded %s to %s", descriptor.display_name, stored.path)
        return UploadResult(
            descriptor=descriptor,
            storage_path=stored.path,
            public_url=stored.public_url,
            uploaded_at=self._clock(),
            status=UploadStatus.SUCCEEDED,
        )

    async def _prepare(self, descriptor: AttachmentDescriptor, reader: ContentReader) -> UploadBody:
        """Turn a descriptor into an upload body according to its source form."""
        form = descriptor.source_form
        if form.is_opaque:
            data = await reader.read(descriptor.source_uri)
            self._check_size(descriptor, len(data))
            return UploadBody(data=base64.b64encode(data), transfer_encoding="base64")

        if form is SourceForm.FILE_PATH:
            path = path_from_uri(descriptor.source_uri)
            if path is None or not path.is_file():
                raise UploadFailedError.for_file(descriptor.display_name, "File does not exist")
            self._check_size(descriptor, path.stat().st_size)
            return UploadBody(file_path=path)

        try:
            _, payload = decode_data_uri(descriptor.source_uri)
        except MalformedEntry as exc:
            raise UploadFailedError.for_file(descriptor.display_name, str(exc), exc) from exc
        self._check_size(descriptor, len(payload))
        return UploadBody(data=payload)

    def _check_size(self, descriptor: AttachmentDescriptor, size: int) -> None:
        if size == 0:
            raise UploadFailedError.for_file(descriptor.display_name, "File does not exist or is empty")
        if size > self._config.max_attachment_bytes:
            raise UploadFailedError.for_file(descriptor.display_name, "File is larger than the upload limit")
