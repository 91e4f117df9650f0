"""
Normalization of file-picker results into attachment descriptors.

Pickers hand back several shapes:
- multi-select / modern image picker: ``{"assets": [{uri, fileName, fileSize, type, width, height, base64}, ...]}``
- legacy image picker: ``{"uri": ..., "width": ..., "height": ..., "type": "image"}``
- document picker: ``{"type": "success", "uri": ..., "name": ..., "size": ..., "mimeType": ...}``
- a cancelled pick: ``{"canceled": True}`` or ``{"type": "cancel"}``

and each entry may reference its content as a ``content://`` provider URI, a
``ph://`` photo-library URI, a ``file://`` URI or absolute path, or an inline
``data:`` base64 payload. All of them end up as the same descriptor shape.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import logging
import mimetypes
import os
import re
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List, Mapping, Optional, Sequence, Tuple

from .config import MAX_ATTACHMENT_BYTES
from .draft import DraftSession, oversize_rejection
from .models import (
    AttachmentDescriptor,
    AttachmentKind,
    AttachmentRejection,
    RejectionReason,
    SourceForm,
)
from .providers.filesystem import path_from_uri

logger = logging.getLogger(__name__)

_UNSAFE_FILENAME_CHARS = re.compile(r"[^a-zA-Z0-9_.-]")
_DATA_URI = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?P<params>(;[\w=.+-]+)*?);base64,(?P<payload>.*)$", re.DOTALL)
_WHITESPACE = re.compile(r"\s+")
_PICKER_STATUSES = ("success", "cancel")


class PickerSource(Enum):
    CAMERA = "camera"
    LIBRARY = "library"
    DOCUMENT = "document"

    @property
    def fallback_mime(self) -> str:
        if self is PickerSource.DOCUMENT:
            return "application/octet-stream"
        return "image/jpeg"


class MalformedEntry(ValueError):
    """A picker entry that cannot be turned into a descriptor."""


@dataclass(frozen=True)
class NormalizationReport:
    accepted: Tuple[AttachmentDescriptor, ...]
    rejected: Tuple[AttachmentRejection, ...]

    @property
    def messages(self) -> List[str]:
        return [rejection.message for rejection in self.rejected]


def sanitize_filename(name: str) -> str:
    """Restrict ``name`` to letters, digits, ``_``, ``.`` and ``-``."""
    cleaned = _UNSAFE_FILENAME_CHARS.sub("_", name.strip())
    return cleaned or "file"


def classify_uri(uri: str) -> SourceForm:
    if uri.startswith("content://"):
        return SourceForm.CONTENT_REF
    if uri.startswith(("ph://", "assets-library://")):
        return SourceForm.PHOTO_LIBRARY
    if uri.startswith("data:"):
        return SourceForm.INLINE_BASE64
    if path_from_uri(uri) is not None:
        return SourceForm.FILE_PATH
    raise MalformedEntry(f"Unsupported file reference: {uri[:40]}")


def decode_data_uri(uri: str) -> Tuple[Optional[str], bytes]:
    """Split a ``data:`` URI into its mime type and decoded payload."""
    match = _DATA_URI.match(uri)
    if not match:
        raise MalformedEntry("Inline attachment is not a base64 data URI")
    try:
        payload = base64.b64decode(_WHITESPACE.sub("", match.group("payload")), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise MalformedEntry(f"Inline attachment is not valid base64: {exc}") from exc
    return match.group("mime"), payload


def _millis() -> int:
    return int(time.time() * 1000)


class AttachmentNormalizer:
    def __init__(
        self,
        max_bytes: int = MAX_ATTACHMENT_BYTES,
        millis: Callable[[], int] = _millis,
    ) -> None:
        self._max_bytes = max_bytes
        self._millis = millis

    def normalize(
        self,
        result: Optional[Mapping[str, Any]],
        source: PickerSource,
        existing: Sequence[AttachmentDescriptor] = (),
    ) -> NormalizationReport:
        """Normalize one picker result, checking it against ``existing`` attachments.

        Each entry of a multi-select result is handled on its own; a bad entry
        becomes a rejection and the rest of the batch carries on.
        """
        accepted: List[AttachmentDescriptor] = []
        rejected: List[AttachmentRejection] = []
        seen = {descriptor.source_id for descriptor in existing}

        for index, entry in enumerate(self._entries(result)):
            try:
                descriptor = self._describe(entry, source, index)
            except MalformedEntry as exc:
                logger.warning("Rejected picker entry %d: %s", index, exc)
                rejected.append(
                    AttachmentRejection(
                        reason=RejectionReason.MALFORMED,
                        message=f"Could not attach this file: {exc}",
                        display_name=_entry_name(entry),
                    )
                )
                continue
            if descriptor.size_bytes is not None and descriptor.size_bytes > self._max_bytes:
                rejected.append(oversize_rejection(descriptor, self._max_bytes))
                continue
            if descriptor.source_id in seen:
                rejected.append(
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

        if accepted or rejected:
            logger.info(
                "Normalized %s pick: %d accepted, %d rejected",
                source.value,
                len(accepted),
                len(rejected),
            )
        return NormalizationReport(accepted=tuple(accepted), rejected=tuple(rejected))

    def normalize_into(
        self,
        session: DraftSession,
        result: Optional[Mapping[str, Any]],
        source: PickerSource,
    ) -> NormalizationReport:
        """Normalize ``result`` and add what survives to the session's draft."""
        report = self.normalize(result, source, session.draft.attachments)
        late_rejections = session.add_attachments(report.accepted)
        if not late_rejections:
            return report
        refused = {rejection.source_id for rejection in late_rejections}
        return NormalizationReport(
            accepted=tuple(d for d in report.accepted if d.source_id not in refused),
            rejected=report.rejected + tuple(late_rejections),
        )

    def _entries(self, result: Optional[Mapping[str, Any]]) -> List[Mapping[str, Any]]:
        if not result:
            return []
        if result.get("canceled") or result.get("cancelled") or result.get("type") == "cancel":
            return []
        if "assets" in result:
            assets = result.get("assets") or []
            return [asset if isinstance(asset, Mapping) else {} for asset in assets]
        return [result]

    def _describe(self, entry: Mapping[str, Any], source: PickerSource, index: int) -> AttachmentDescriptor:
        uri = entry.get("uri")
        inline = entry.get("base64")
        if not uri and inline:
            uri = f"data:{_mime_hint(entry) or source.fallback_mime};base64,{inline}"
        if not uri or not isinstance(uri, str):
            raise MalformedEntry("Picked item has no file reference")

        form = classify_uri(uri)
        size = _int_or_none(entry.get("fileSize", entry.get("size")))
        inline_mime = None

        if form is SourceForm.INLINE_BASE64:
            inline_mime, payload = decode_data_uri(uri)
            size = len(payload)
            source_id = f"data:sha256:{hashlib.sha256(payload).hexdigest()}"
        elif form is SourceForm.FILE_PATH:
            path = path_from_uri(uri)
            source_id = path.as_uri() if path.is_absolute() else uri
            if size is None:
                size = _file_size(str(path))
        else:
            source_id = uri

        name = entry.get("fileName") or entry.get("filename") or entry.get("name")
        if not name and form is not SourceForm.INLINE_BASE64:
            name = uri.rstrip("/").rsplit("/", 1)[-1]
        if not name:
            name = f"file_{self._millis()}" if source is PickerSource.DOCUMENT else f"image_{self._millis()}_{index}"
        display_name = sanitize_filename(str(name))

        mime = _mime_hint(entry) or inline_mime or mimetypes.guess_type(display_name)[0] or source.fallback_mime
        kind = AttachmentKind.IMAGE if mime.startswith("image/") else AttachmentKind.DOCUMENT

        return AttachmentDescriptor(
            source_id=source_id,
            display_name=display_name,
            mime_type=mime,
            size_bytes=size,
            kind=kind,
            source_uri=uri,
            source_form=form,
            width=_int_or_none(entry.get("width")),
            height=_int_or_none(entry.get("height")),
        )


def _mime_hint(entry: Mapping[str, Any]) -> Optional[str]:
    """Full mime type from the entry; bare hints like ``image`` don't count."""
    for key in ("mimeType", "type"):
        value = entry.get(key)
        if isinstance(value, str) and "/" in value and value not in _PICKER_STATUSES:
            return value
    return None


def _entry_name(entry: Mapping[str, Any]) -> Optional[str]:
    name = entry.get("fileName") or entry.get("filename") or entry.get("name")
    return str(name) if name else None


def _int_or_none(value: Any) -> Optional[int]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        number = int(value)
    except (TypeError, ValueError):
        return None
    return number if number >= 0 else None


def _file_size(path: str) -> Optional[int]:
    try:
        return os.stat(path).st_size
    except OSError:
        return None
