#!/usr/bin/env python3
"""Tests for draft transitions, the draft session and the category catalog."""

import pytest

from grievance.categories import is_known_path, main_categories, specific_issues, sub_categories
from grievance.config import MAX_ATTACHMENT_BYTES
from grievance.draft import (
    DraftSession,
    add_attachments,
    new_draft,
    reset_draft,
    select_main_category,
    select_specific_issue,
    select_sub_category,
    set_category_label,
    update_fields,
)
from grievance.models import (
    AttachmentDescriptor,
    AttachmentKind,
    CategoryPath,
    Identity,
    RejectionReason,
    SourceForm,
)


def descriptor(source_id="content://media/1", name="photo.jpg", size=1024):
    return AttachmentDescriptor(
        source_id=source_id,
        display_name=name,
        mime_type="image/jpeg",
        size_bytes=size,
        kind=AttachmentKind.IMAGE,
        source_uri=source_id,
        source_form=SourceForm.CONTENT_REF,
    )


def test_oversize_attachment_leaves_draft_unchanged():
    """Files above 50MB are rejected with a reason and the list stays as it was."""
    draft, _ = add_attachments(new_draft(), [descriptor()])

    updated, rejections = add_attachments(
        draft, [descriptor("content://media/2", "video.mp4", MAX_ATTACHMENT_BYTES + 1)]
    )

    assert updated is draft
    assert updated.attachments == draft.attachments
    assert len(rejections) == 1
    assert rejections[0].reason is RejectionReason.OVERSIZE
    assert rejections[0].message == "File too large: please select files smaller than 50MB"


def test_same_source_added_twice_yields_one_entry():
    draft, _ = add_attachments(new_draft(), [descriptor()])
    draft, rejections = add_attachments(draft, [descriptor(name="renamed.jpg")])

    assert len(draft.attachments) == 1
    assert rejections[0].reason is RejectionReason.DUPLICATE
    assert rejections[0].failure.kind.value == "AttachmentInvalid"


def test_duplicates_within_one_batch_are_collapsed():
    draft, rejections = add_attachments(new_draft(), [descriptor(), descriptor()])

    assert len(draft.attachments) == 1
    assert len(rejections) == 1


def test_new_draft_prefills_reporter_details():
    identity = Identity(user_id="u-1", full_name="Asha Verma", email="asha@example.com")
    draft = new_draft(identity)

    assert draft.draft_id.startswith("draft-")
    assert draft.full_name == "Asha Verma"
    assert draft.email == "asha@example.com"
    assert draft.phone == ""
    assert draft.priority == "Medium"


def test_reset_keeps_contact_details_only():
    draft = new_draft(Identity(user_id="u-1", full_name="Asha Verma"))
    draft = update_fields(draft, title="Broken light", city="Indore")
    draft, _ = add_attachments(draft, [descriptor()])

    fresh = reset_draft(draft)

    assert fresh.draft_id != draft.draft_id
    assert fresh.full_name == "Asha Verma"
    assert fresh.title == ""
    assert fresh.city == ""
    assert fresh.attachments == ()


def test_update_fields_rejects_unknown_fields():
    with pytest.raises(ValueError):
        update_fields(new_draft(), attachments=())


def test_category_selection_clears_lower_levels():
    draft = select_main_category(new_draft(), "Water Supply")
    draft = select_sub_category(draft, "Pipeline Issues")
    draft = select_specific_issue(draft, "Leaking Water Pipe")
    assert draft.category.label == "Water Supply > Pipeline Issues > Leaking Water Pipe"

    draft = select_sub_category(draft, "Water Shortage")
    assert draft.category.specific_issue == ""

    draft = select_main_category(draft, "Public Safety")
    assert draft.category == CategoryPath(main_category="Public Safety")


def test_category_label_replaces_structured_fields():
    draft = select_main_category(new_draft(), "Water Supply")
    draft = set_category_label(draft, "Roads > Potholes > Large Potholes")

    assert draft.category.is_empty
    assert draft.category_label == "Roads > Potholes > Large Potholes"


def test_category_path_round_trip():
    label = "Roads > Potholes > Large Potholes"
    path = CategoryPath.parse(label)

    assert path.parts == ("Roads", "Potholes", "Large Potholes")
    assert path.label == label


def test_category_path_parse_trims_and_pads():
    path = CategoryPath.parse("  Sanitation & Waste>Garbage Collection ")

    assert path.main_category == "Sanitation & Waste"
    assert path.sub_category == "Garbage Collection"
    assert path.specific_issue == ""


def test_catalog_lookups():
    assert "Roads & Infrastructure" in main_categories()
    assert "Pipeline Issues" in sub_categories("Water Supply")
    assert "Leaking Water Pipe" in specific_issues("Water Supply", "Pipeline Issues")
    assert sub_categories("Nope") == []
    assert is_known_path(CategoryPath("Water Supply", "Pipeline Issues", "Leaking Water Pipe"))
    assert not is_known_path(CategoryPath("Water Supply", "Potholes", ""))


def test_session_refuses_changes_while_submitting():
    session = DraftSession(new_draft())
    session.begin_submission()

    assert not session.apply(update_fields, title="Changed")
    rejections = session.add_attachments([descriptor()])
    assert rejections[0].reason is RejectionReason.DRAFT_LOCKED
    assert session.draft.title == ""
    assert session.draft.attachments == ()

    session.end_submission()
    assert session.apply(update_fields, title="Changed")
    assert session.draft.title == "Changed"


def test_closed_session_cannot_submit_or_change():
    session = DraftSession(new_draft())
    session.close()

    assert not session.remove_attachment("content://media/1")
    with pytest.raises(RuntimeError):
        session.begin_submission()


def test_session_rejects_second_submission():
    session = DraftSession(new_draft())
    session.begin_submission()

    with pytest.raises(RuntimeError):
        session.begin_submission()


def test_session_add_and_remove_attachments():
    session = DraftSession(new_draft(), max_attachment_bytes=2048)

    rejections = session.add_attachments([descriptor(), descriptor("content://media/2", "big.jpg", 4096)])
    assert [r.reason for r in rejections] == [RejectionReason.OVERSIZE]
    assert len(session.draft.attachments) == 1

    assert session.remove_attachment("content://media/1")
    assert session.draft.attachments == ()
