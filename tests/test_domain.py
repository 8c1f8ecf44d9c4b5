from datetime import datetime, timezone

import pytest

from app.tracker.domain import FeedbackCategory, FeedbackItem, FeedbackStatus, Project


def test_document_mapping(make_doc):
    item = FeedbackItem.from_document(make_doc("t1", status="in-progress", screenshotId="f1"))

    assert item.id == "t1"
    assert item.category is FeedbackCategory.DEFECT
    assert item.status is FeedbackStatus.IN_PROGRESS
    assert item.project_id == "proj1"
    assert item.submitter_id == "user1"
    assert item.submitter_name == "Uma User"
    assert item.attachment_id == "f1"
    assert item.created_at == datetime(2026, 1, 2, 10, 0, tzinfo=timezone.utc)

    doc = item.to_document()
    assert doc["type"] == "bug"
    assert doc["status"] == "in-progress"
    assert doc["submittedBy"] == "user1"
    assert "$id" not in doc


def test_trailing_z_timestamps_parse(make_doc):
    item = FeedbackItem.from_document(make_doc("t1", **{"$createdAt": "2026-03-04T05:06:07.000Z"}))
    assert item.created_at.tzinfo is not None


@pytest.mark.parametrize("field,value", [("type", "question"), ("status", "reopened"), ("type", None)])
def test_closed_sets_reject_unknown_values(make_doc, field, value):
    with pytest.raises(ValueError):
        FeedbackItem.from_document(make_doc("t1", **{field: value}))


def test_missing_id_is_a_value_error(make_doc):
    doc = make_doc("t1")
    del doc["$id"]
    with pytest.raises(ValueError):
        FeedbackItem.from_document(doc)


def test_merged_keeps_id_and_coerces():
    item = FeedbackItem(
        id="a", title="t", description="d", category="feature", status="open",
        project_id="p", submitter_id="u", submitter_name="U",
    )
    merged = item.merged({"id": "other", "status": FeedbackStatus.CLOSED, "category": "improvement"})
    assert merged.id == "a"
    assert merged.status is FeedbackStatus.CLOSED
    assert merged.category is FeedbackCategory.IMPROVEMENT
    assert item.status is FeedbackStatus.OPEN


def test_to_dict_uses_domain_spelling(make_doc):
    d = FeedbackItem.from_document(make_doc("t1", status="in-progress")).to_dict()
    assert d["status"] == "in_progress"
    assert d["category"] == "defect"


def test_project_from_document():
    p = Project.from_document({"$id": "p1", "name": "Website", "description": None})
    assert p.name == "Website"
    assert p.description == ""
    assert p.to_dict()["created_at"] is None
