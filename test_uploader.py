#!/usr/bin/env python3
"""Tests for the bounded, partial-failure-tolerant upload stage."""

import asyncio
import base64
import threading
import time
from datetime import datetime, timezone

from grievance.config import StorageTargetConfig, UploadConfig
from grievance.interfaces import ContentReader
from grievance.models import AttachmentDescriptor, AttachmentKind, SourceForm, UploadStatus
from grievance.providers.registry import build_default_factory, build_device_factory
from grievance.storage import InMemoryObjectStore, LocalFilesystemObjectStore
from grievance.uploader import AttachmentUploader

FIXED_NOW = datetime(2024, 3, 1, 9, 30, tzinfo=timezone.utc)
FIXED_MILLIS = int(FIXED_NOW.timestamp() * 1000)


def inline(name, payload=b"jpeg-bytes", mime="image/jpeg"):
    encoded = base64.b64encode(payload).decode()
    return AttachmentDescriptor(
        source_id=f"data:{name}",
        display_name=name,
        mime_type=mime,
        size_bytes=len(payload),
        kind=AttachmentKind.IMAGE,
        source_uri=f"data:{mime};base64,{encoded}",
        source_form=SourceForm.INLINE_BASE64,
    )


def local_file(path, name=None):
    return AttachmentDescriptor(
        source_id=path.as_uri(),
        display_name=name or path.name,
        mime_type="application/pdf",
        size_bytes=None,
        kind=AttachmentKind.DOCUMENT,
        source_uri=path.as_uri(),
        source_form=SourceForm.FILE_PATH,
    )


def content_ref(uri, name):
    return AttachmentDescriptor(
        source_id=uri,
        display_name=name,
        mime_type="image/jpeg",
        size_bytes=None,
        kind=AttachmentKind.IMAGE,
        source_uri=uri,
        source_form=SourceForm.CONTENT_REF,
    )


class TrackingStore(InMemoryObjectStore):
    """Records peak concurrency and fails any path containing ``fail_on``."""

    def __init__(self, delay=0.0, fail_on=None, delays=None):
        super().__init__()
        self._delay = delay
        self._delays = delays or {}
        self._fail_on = fail_on
        self._guard = threading.Lock()
        self.in_flight = 0
        self.peak = 0

    def upload(self, path, body, content_type):
        with self._guard:
            self.in_flight += 1
            self.peak = max(self.peak, self.in_flight)
        try:
            delay = next((d for name, d in self._delays.items() if name in path), self._delay)
            time.sleep(delay)
            if self._fail_on and self._fail_on in path:
                raise ConnectionError("connection reset by peer")
            return super().upload(path, body, content_type)
        finally:
            with self._guard:
                self.in_flight -= 1


class DictReader(ContentReader):
    def __init__(self, blobs):
        self._blobs = blobs

    async def read(self, uri):
        return self._blobs[uri]


def uploader(store, factory=None, **config):
    return AttachmentUploader(
        store,
        factory or build_default_factory(),
        UploadConfig(**config),
        clock=lambda: FIXED_NOW,
    )


def test_uploads_are_bounded_to_three_in_flight():
    store = TrackingStore(delay=0.05)
    descriptors = [inline(f"photo{i}.jpg") for i in range(7)]

    batch = asyncio.run(uploader(store).upload_all("draft-1", descriptors))

    assert len(batch.succeeded) == 7
    assert 1 <= store.peak <= 3


def test_results_follow_descriptor_order_not_completion_order():
    store = TrackingStore(delays={"slow.jpg": 0.2, "fast.jpg": 0.0})
    descriptors = [inline("slow.jpg"), inline("fast.jpg")]

    batch = asyncio.run(uploader(store).upload_all("draft-1", descriptors))

    assert [r.descriptor for r in batch.results] == descriptors


def test_one_failure_does_not_abort_the_batch():
    store = TrackingStore(fail_on="broken")
    descriptors = [inline("a.jpg"), inline("broken.jpg"), inline("c.jpg")]

    batch = asyncio.run(uploader(store).upload_all("draft-1", descriptors))

    assert [r.status for r in batch.results] == [
        UploadStatus.SUCCEEDED,
        UploadStatus.FAILED,
        UploadStatus.SUCCEEDED,
    ]
    failed = batch.failed[0]
    assert failed.public_url is None
    assert failed.failure_reason == "connection reset by peer"
    assert batch.warnings == ["Failed to upload broken.jpg, continuing with other files"]
    assert len(store.objects) == 2


def test_storage_paths_are_unique_within_a_draft():
    store = InMemoryObjectStore()
    descriptors = [inline("same name.jpg", b"one"), inline("same name.jpg", b"two")]
    descriptors[1] = AttachmentDescriptor(
        source_id="data:other",
        display_name="same name.jpg",
        mime_type="image/jpeg",
        size_bytes=3,
        kind=AttachmentKind.IMAGE,
        source_uri=descriptors[1].source_uri,
        source_form=SourceForm.INLINE_BASE64,
    )

    batch = asyncio.run(uploader(store).upload_all("draft-1", descriptors))

    paths = sorted(r.storage_path for r in batch.results)
    assert paths == [
        f"draft-1/{FIXED_MILLIS}_same_name.jpg",
        f"draft-1/{FIXED_MILLIS + 1}_same_name.jpg",
    ]
    assert all(r.public_url.startswith("memory://attachments/draft-1/") for r in batch.results)


def test_content_reference_is_read_and_stored_intact():
    store = InMemoryObjectStore()
    reader = DictReader({"content://media/5": b"\x89PNG raw"})
    factory = build_device_factory(content=reader)

    batch = asyncio.run(uploader(store, factory).upload_all("draft-1", [content_ref("content://media/5", "shot.png")]))

    (result,) = batch.succeeded
    data, content_type = store.objects[result.storage_path]
    assert data == b"\x89PNG raw"
    assert content_type == "image/jpeg"


def test_content_reference_without_reader_fails_that_file_only():
    store = InMemoryObjectStore()
    descriptors = [content_ref("ph://ABC/L0/001", "library.jpg"), inline("ok.jpg")]

    batch = asyncio.run(uploader(store).upload_all("draft-1", descriptors))

    assert [r.succeeded for r in batch.results] == [False, True]
    assert "is not a local file reference" in batch.results[0].failure_reason


def test_local_file_is_uploaded_by_reference(tmp_path):
    source = tmp_path / "notice.pdf"
    source.write_bytes(b"%PDF-1.4 notice")
    store = LocalFilesystemObjectStore(StorageTargetConfig("local_fs", {"base_path": str(tmp_path / "bucket")}))

    batch = asyncio.run(uploader(store).upload_all("draft-9", [local_file(source)]))

    (result,) = batch.succeeded
    assert (tmp_path / "bucket" / result.storage_path).read_bytes() == b"%PDF-1.4 notice"
    assert result.public_url is None


def test_missing_and_empty_files_fail(tmp_path):
    empty = tmp_path / "empty.pdf"
    empty.write_bytes(b"")
    descriptors = [local_file(tmp_path / "gone.pdf"), local_file(empty)]

    batch = asyncio.run(uploader(InMemoryObjectStore()).upload_all("draft-1", descriptors))

    assert [r.failure_reason for r in batch.results] == [
        "File does not exist",
        "File does not exist or is empty",
    ]


def test_payload_over_limit_fails_at_upload():
    batch = asyncio.run(
        uploader(InMemoryObjectStore(), max_attachment_bytes=4).upload_all("draft-1", [inline("big.jpg", b"12345")])
    )

    assert batch.results[0].failure_reason == "File is larger than the upload limit"


def test_inactive_context_skips_remaining_uploads():
    store = TrackingStore()

    batch = asyncio.run(uploader(store).upload_all("draft-1", [inline("a.jpg")], is_active=lambda: False))

    assert batch.cancelled
    assert batch.results == ()
    assert store.objects == {}


def test_empty_selection_uploads_nothing():
    batch = asyncio.run(uploader(TrackingStore()).upload_all("draft-1", []))

    assert batch.results == ()
    assert not batch.cancelled


def test_repeated_source_ids_each_get_a_result():
    store = InMemoryObjectStore()
    first = inline("front.jpg", b"front")
    second = AttachmentDescriptor(
        source_id=first.source_id,
        display_name="back.jpg",
        mime_type="image/jpeg",
        size_bytes=4,
        kind=AttachmentKind.IMAGE,
        source_uri=inline("back.jpg", b"back").source_uri,
        source_form=SourceForm.INLINE_BASE64,
    )

    batch = asyncio.run(uploader(store).upload_all("draft-1", [first, second]))

    assert [r.descriptor.display_name for r in batch.results] == ["front.jpg", "back.jpg"]
    assert len(batch.succeeded) == 2
    assert len(store.objects) == 2


def test_release_frees_reserved_paths():
    files = uploader(InMemoryObjectStore())
    descriptor = inline("a.jpg")
    assert files.storage_path("draft-1", descriptor) == f"draft-1/{FIXED_MILLIS}_a.jpg"
    assert files.storage_path("draft-1", descriptor) == f"draft-1/{FIXED_MILLIS + 1}_a.jpg"

    files.release("draft-1")
    files.release("never-seen")

    assert files.storage_path("draft-1", descriptor) == f"draft-1/{FIXED_MILLIS}_a.jpg"


def test_line_wrapped_inline_payload_uploads():
    payload = b"y" * 120
    descriptor = AttachmentDescriptor(
        source_id="data:wrapped",
        display_name="wrapped.jpg",
        mime_type="image/jpeg",
        size_bytes=len(payload),
        kind=AttachmentKind.IMAGE,
        source_uri="data:image/jpeg;base64," + base64.encodebytes(payload).decode(),
        source_form=SourceForm.INLINE_BASE64,
    )
    store = InMemoryObjectStore()

    batch = asyncio.run(uploader(store).upload_all("draft-1", [descriptor]))

    (result,) = batch.succeeded
    assert store.objects[result.storage_path] == (payload, "image/jpeg")
