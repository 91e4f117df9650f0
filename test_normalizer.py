#!/usr/bin/env python3
"""Tests for turning picker results into attachment descriptors."""

import base64

import pytest

from grievance.draft import DraftSession, new_draft
from grievance.models import AttachmentKind, RejectionReason, SourceForm
from grievance.normalizer import (
    AttachmentNormalizer,
    MalformedEntry,
    PickerSource,
    classify_uri,
    decode_data_uri,
    sanitize_filename,
)

HELLO_B64 = base64.b64encode(b"hello").decode()


def normalizer(max_bytes=50 * 1024 * 1024):
    return AttachmentNormalizer(max_bytes=max_bytes, millis=lambda: 1700000000000)


def test_every_source_form_maps_to_one_descriptor_shape(tmp_path):
    photo = tmp_path / "scan.pdf"
    photo.write_bytes(b"%PDF-1.4")
    result = {
        "assets": [
            {"uri": "content://media/external/images/42", "fileName": "IMG 42.jpg", "fileSize": 2048, "type": "image/jpeg"},
            {"uri": "ph://ABC-123/L0/001", "fileName": "library.heic", "width": 100, "height": 80},
            {"uri": photo.as_uri()},
            {"uri": f"data:image/png;base64,{HELLO_B64}", "fileName": "inline.png"},
        ]
    }

    report = normalizer().normalize(result, PickerSource.LIBRARY)

    assert report.rejected == ()
    forms = [d.source_form for d in report.accepted]
    assert forms == [
        SourceForm.CONTENT_REF,
        SourceForm.PHOTO_LIBRARY,
        SourceForm.FILE_PATH,
        SourceForm.INLINE_BASE64,
    ]
    content, library, local, inline = report.accepted
    assert content.display_name == "IMG_42.jpg"
    assert content.source_id == "content://media/external/images/42"
    assert library.width == 100
    assert library.kind is AttachmentKind.IMAGE
    assert local.display_name == "scan.pdf"
    assert local.size_bytes == 8
    assert local.mime_type == "application/pdf"
    assert local.kind is AttachmentKind.DOCUMENT
    assert inline.size_bytes == 5
    assert inline.mime_type == "image/png"
    assert inline.source_id.startswith("data:sha256:")


def test_malformed_entry_does_not_discard_the_batch():
    result = {
        "assets": [
            {"uri": "content://media/1", "fileName": "a.jpg"},
            {"fileName": "nothing.jpg"},
            {"uri": "ftp://example.com/b.jpg", "fileName": "b.jpg"},
            {"uri": "data:image/png;base64,@@@", "fileName": "broken.png"},
            {"uri": "content://media/2", "fileName": "c.jpg"},
        ]
    }

    report = normalizer().normalize(result, PickerSource.LIBRARY)

    assert [d.display_name for d in report.accepted] == ["a.jpg", "c.jpg"]
    assert [r.reason for r in report.rejected] == [RejectionReason.MALFORMED] * 3
    assert report.rejected[0].display_name == "nothing.jpg"
    assert all(message.startswith("Could not attach this file") for message in report.messages)


def test_oversize_and_duplicates_are_rejected_with_reasons():
    existing = normalizer().normalize({"uri": "content://media/1", "fileName": "a.jpg"}, PickerSource.CAMERA).accepted
    result = {
        "assets": [
            {"uri": "content://media/1", "fileName": "a.jpg"},
            {"uri": "content://media/2", "fileName": "huge.mov", "fileSize": 4096},
            {"uri": "content://media/3", "fileName": "ok.jpg", "fileSize": 10},
            {"uri": "content://media/3", "fileName": "ok-again.jpg", "fileSize": 10},
        ]
    }

    report = normalizer(max_bytes=1024).normalize(result, PickerSource.LIBRARY, existing)

    assert [d.source_id for d in report.accepted] == ["content://media/3"]
    reasons = [r.reason for r in report.rejected]
    assert reasons == [RejectionReason.DUPLICATE, RejectionReason.OVERSIZE, RejectionReason.DUPLICATE]
    assert report.messages[0] == "This file has already been added"


def test_same_inline_payload_is_detected_as_duplicate():
    result = {
        "assets": [
            {"base64": HELLO_B64, "fileName": "one.jpg"},
            {"base64": HELLO_B64, "fileName": "two.jpg"},
        ]
    }

    report = normalizer().normalize(result, PickerSource.CAMERA)

    assert len(report.accepted) == 1
    assert report.rejected[0].reason is RejectionReason.DUPLICATE


@pytest.mark.parametrize("result", [None, {}, {"canceled": True}, {"cancelled": True}, {"type": "cancel"}])
def test_cancelled_pick_yields_nothing(result):
    report = normalizer().normalize(result, PickerSource.DOCUMENT)

    assert report.accepted == ()
    assert report.rejected == ()


def test_unnamed_camera_capture_gets_generated_name():
    report = normalizer().normalize({"base64": HELLO_B64, "type": "image"}, PickerSource.CAMERA)

    (captured,) = report.accepted
    assert captured.display_name == "image_1700000000000_0"
    assert captured.mime_type == "image/jpeg"
    assert captured.kind is AttachmentKind.IMAGE


def test_document_pick_uses_reported_mime_type():
    result = {
        "type": "success",
        "uri": "content://com.android.providers.downloads/document/7",
        "name": "notice.pdf",
        "size": 300,
        "mimeType": "application/pdf",
    }

    (document,) = normalizer().normalize(result, PickerSource.DOCUMENT).accepted

    assert document.display_name == "notice.pdf"
    assert document.mime_type == "application/pdf"
    assert document.kind is AttachmentKind.DOCUMENT
    assert document.size_bytes == 300


def test_normalize_into_locked_session_rejects_everything():
    session = DraftSession(new_draft())
    session.begin_submission()

    report = normalizer().normalize_into(
        session, {"uri": "content://media/9", "fileName": "late.jpg"}, PickerSource.LIBRARY
    )

    assert report.accepted == ()
    assert report.rejected[0].reason is RejectionReason.DRAFT_LOCKED
    assert session.draft.attachments == ()


def test_normalize_into_appends_to_draft():
    session = DraftSession(new_draft())

    normalizer().normalize_into(session, {"uri": "content://media/9", "fileName": "a.jpg"}, PickerSource.LIBRARY)
    report = normalizer().normalize_into(session, {"uri": "content://media/9", "fileName": "a.jpg"}, PickerSource.LIBRARY)

    assert len(session.draft.attachments) == 1
    assert report.rejected[0].reason is RejectionReason.DUPLICATE


def test_sanitize_filename():
    assert sanitize_filename("my photo (1).jpg") == "my_photo__1_.jpg"
    assert sanitize_filename("../../etc/passwd") == ".._.._etc_passwd"
    assert sanitize_filename("   ") == "file"


def test_classify_and_decode_helpers():
    assert classify_uri("/sdcard/DCIM/a.jpg") is SourceForm.FILE_PATH
    with pytest.raises(MalformedEntry):
        classify_uri("relative/path.jpg")
    assert decode_data_uri(f"data:text/plain;charset=utf-8;base64,{HELLO_B64}") == ("text/plain", b"hello")
    with pytest.raises(MalformedEntry):
        decode_data_uri("data:text/plain,hello")


def test_line_wrapped_base64_is_accepted():
    payload = b"x" * 200
    wrapped = base64.encodebytes(payload).decode()
    assert "\n" in wrapped.strip()

    report = normalizer().normalize({"assets": [{"base64": wrapped, "mimeType": "image/jpeg"}]}, PickerSource.LIBRARY)

    assert report.rejected == ()
    (descriptor,) = report.accepted
    assert descriptor.size_bytes == 200
    assert decode_data_uri(descriptor.source_uri) == ("image/jpeg", payload)
