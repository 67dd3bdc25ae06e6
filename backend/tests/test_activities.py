from __future__ import annotations

import datetime as dt
from decimal import Decimal
from pathlib import Path

import pytest

from activitylog import activities, models
from activitylog.activities import Upload
from activitylog.config import settings
from activitylog.errors import ConflictError, InvalidStateError, NotFoundError, PermissionDeniedError, ValidationError


def _create(repo, user, today, **overrides):
    data = {
        "day": today + dt.timedelta(days=1),
        "start_time": "09:00",
        "end_time": "10:30",
        "description": "Revisión de contratos",
    }
    data.update(overrides)
    return activities.create_activity(repo, user.id, today=today, **data)


def test_create_stores_canonical_draft(repo, staff, today):
    activity = _create(repo, staff, today, start_time="9:00 AM", end_time="1:30 PM")

    assert activity.state == models.ACTIVITY_STATE_DRAFT
    assert activity.start_time == "09:00"
    assert activity.end_time == "13:30"
    assert activity.user_id == staff.id


def test_create_requested_submitted_lands_submitted(repo, staff, today):
    activity = _create(repo, staff, today, state="submitted")

    stored = repo.get_activity(activity.id)
    assert stored.state == models.ACTIVITY_STATE_SUBMITTED
    assert stored.start_time == "09:00"
    assert stored.end_time == "10:30"


def test_create_attaches_documents_before_submitting(repo, staff, today, document_dir: Path):
    upload = Upload("acta reunión.pdf", b"%PDF-1.4 test", "application/pdf")

    activity = _create(repo, staff, today, state="submitted", documents=[upload])

    assert activity.state == models.ACTIVITY_STATE_SUBMITTED
    assert len(activity.documents) == 1
    document = activity.documents[0]
    assert document.original_name == "acta reunión.pdf"
    assert document.size_bytes == len(upload.content)
    stored = Path(document.stored_path)
    assert stored.parent == document_dir / activity.id
    assert stored.suffix == ".pdf"
    assert stored.read_bytes() == upload.content


def test_create_rejects_past_dates(repo, staff, today):
    with pytest.raises(ValidationError):
        _create(repo, staff, today, day=today - dt.timedelta(days=1))


def test_create_allows_today(repo, staff, today):
    activity = _create(repo, staff, today, day=today)
    assert activity.date == today


def test_create_rejects_inverted_interval(repo, staff, today):
    with pytest.raises(ValidationError):
        _create(repo, staff, today, start_time="11:00", end_time="10:00")


def test_create_rejects_overlap(repo, staff, today):
    _create(repo, staff, today)
    with pytest.raises(ConflictError):
        _create(repo, staff, today, start_time="10:00", end_time="11:00")
    assert _create(repo, staff, today, start_time="10:30", end_time="11:00").start_time == "10:30"


def test_create_ignores_submitted_slots(repo, staff, today):
    _create(repo, staff, today, state="submitted")
    duplicate = _create(repo, staff, today)
    assert duplicate.state == models.ACTIVITY_STATE_DRAFT


def test_create_checks_references(repo, staff, today):
    with pytest.raises(NotFoundError):
        _create(repo, staff, today, project_id="missing")
    with pytest.raises(NotFoundError):
        _create(repo, staff, today, activity_type_id="missing")


def test_update_by_other_user_is_denied(repo, staff, supervisor, today):
    activity = _create(repo, staff, today)
    with pytest.raises(PermissionDeniedError):
        activities.update_activity(repo, activity.id, {"description": "x"}, supervisor.id, today=today)


def test_update_reruns_overlap_excluding_itself(repo, staff, today):
    first = _create(repo, staff, today)
    _create(repo, staff, today, start_time="11:00", end_time="12:00")

    moved = activities.update_activity(repo, first.id, {"end_time": "11:00"}, staff.id, today=today)
    assert moved.end_time == "11:00"

    with pytest.raises(ConflictError):
        activities.update_activity(repo, first.id, {"end_time": "11:30"}, staff.id, today=today)


def test_update_rejects_unknown_fields(repo, staff, today):
    activity = _create(repo, staff, today)
    with pytest.raises(ValidationError):
        activities.update_activity(repo, activity.id, {"user_id": "someone"}, staff.id, today=today)


def test_update_rejects_past_activity(repo, staff, today):
    activity = _create(repo, staff, today)
    later = today + dt.timedelta(days=5)
    with pytest.raises(ValidationError):
        activities.update_activity(repo, activity.id, {"description": "tarde"}, staff.id, today=later)


def test_state_only_update_skips_date_check(repo, staff, today):
    activity = _create(repo, staff, today)
    later = today + dt.timedelta(days=5)

    submitted = activities.update_activity(repo, activity.id, {"state": "submitted"}, staff.id, today=later)

    assert submitted.state == models.ACTIVITY_STATE_SUBMITTED


def test_submitted_activity_is_frozen(repo, staff, today):
    activity = _create(repo, staff, today, state="submitted")

    with pytest.raises(InvalidStateError):
        activities.update_activity(repo, activity.id, {"description": "cambio"}, staff.id, today=today)
    with pytest.raises(InvalidStateError):
        activities.update_activity(repo, activity.id, {"state": "draft"}, staff.id, today=today)
    with pytest.raises(InvalidStateError):
        activities.delete_activity(repo, activity.id, staff.id)
    with pytest.raises(InvalidStateError):
        activities.attach_documents(repo, activity, [Upload("a.txt", b"a")])


def test_update_clears_stored_hours_when_times_change(repo, staff, today, make_activity):
    activity = make_activity(
        staff, today + dt.timedelta(days=1), state=models.ACTIVITY_STATE_DRAFT, hours=Decimal("4.00")
    )
    updated = activities.update_activity(repo, activity.id, {"start_time": "08:00"}, staff.id, today=today)
    assert updated.hours is None


def test_delete_draft_removes_documents(repo, staff, today, document_dir: Path):
    activity = _create(repo, staff, today, documents=[Upload("nota.txt", b"hola", "text/plain")])
    activity_id = activity.id
    assert (document_dir / activity_id).exists()

    activities.delete_activity(repo, activity_id, staff.id)

    assert repo.get_activity(activity_id) is None
    assert not (document_dir / activity_id).exists()


def test_delete_by_other_user_is_denied(repo, staff, supervisor, today):
    activity = _create(repo, staff, today)
    with pytest.raises(PermissionDeniedError):
        activities.delete_activity(repo, activity.id, supervisor.id)


def test_submit_batch(repo, staff, today):
    first = _create(repo, staff, today)
    second = _create(repo, staff, today, start_time="11:00", end_time="12:00")

    submitted = activities.submit_activities(repo, [first.id, second.id, first.id], staff.id)

    assert [activity.id for activity in submitted] == [first.id, second.id]
    assert all(activity.state == models.ACTIVITY_STATE_SUBMITTED for activity in submitted)


def test_submit_batch_twice_fails_without_changes(repo, staff, today):
    first = _create(repo, staff, today)
    second = _create(repo, staff, today, start_time="11:00", end_time="12:00")
    activities.submit_activities(repo, [first.id, second.id], staff.id)
    before = {activity.id: activity.updated_at for activity in repo.get_activities([first.id, second.id])}

    with pytest.raises(InvalidStateError):
        activities.submit_activities(repo, [first.id, second.id], staff.id)

    after = {activity.id: activity.updated_at for activity in repo.get_activities([first.id, second.id])}
    assert before == after


def test_submit_batch_is_all_or_nothing(repo, staff, make_user, supervisor, today):
    colleague = make_user("Luis", "Soto", supervisor=supervisor)
    mine = _create(repo, staff, today)
    theirs = _create(repo, colleague, today)

    with pytest.raises(PermissionDeniedError):
        activities.submit_activities(repo, [mine.id, theirs.id], staff.id)
    with pytest.raises(NotFoundError):
        activities.submit_activities(repo, [mine.id, "missing"], staff.id)
    with pytest.raises(ValidationError):
        activities.submit_activities(repo, [], staff.id)

    assert repo.get_activity(mine.id).state == models.ACTIVITY_STATE_DRAFT


def test_get_activity_visibility(repo, staff, supervisor, make_user, today):
    activity = _create(repo, staff, today)
    outsider = make_user("Eva", "Lara", role=models.ROLE_SUPERVISOR)

    assert activities.get_activity(repo, activity.id, staff).id == activity.id
    assert activities.get_activity(repo, activity.id, supervisor).id == activity.id
    with pytest.raises(PermissionDeniedError):
        activities.get_activity(repo, activity.id, outsider)
    with pytest.raises(NotFoundError):
        activities.get_activity(repo, "missing", staff)


def test_list_supervised_activities(repo, staff, supervisor, make_activity, make_project, today):
    project = make_project("Intranet")
    make_activity(staff, today - dt.timedelta(days=3), "09:00", "10:00", project=project)
    make_activity(staff, today - dt.timedelta(days=1), "09:00", "11:30")
    make_activity(staff, today - dt.timedelta(days=1), "12:00", "13:00", state=models.ACTIVITY_STATE_DRAFT)
    make_activity(staff, today - dt.timedelta(days=200), "09:00", "10:00")

    items = activities.list_supervised_activities(repo, supervisor, today=today)

    assert [item["project_name"] for item in items] == ["Sin proyecto", "Intranet"]
    assert [item["activity_type_name"] for item in items] == ["Sin tipo", "Sin tipo"]
    assert [item["hours"] for item in items] == [Decimal("2.50"), Decimal("1.00")]


def test_list_supervised_requires_supervisor(repo, staff, today):
    with pytest.raises(PermissionDeniedError):
        activities.list_supervised_activities(repo, staff, today=today)


def test_list_activities_in_range(repo, staff, make_activity, today):
    make_activity(staff, today, "09:00", "10:00")
    make_activity(staff, today + dt.timedelta(days=10), "09:00", "10:00")

    found = activities.list_activities_in_range(repo, staff.id, today.isoformat(), today + dt.timedelta(days=2))

    assert len(found) == 1
    with pytest.raises(ValidationError):
        activities.list_activities_in_range(repo, staff.id, today, today - dt.timedelta(days=1))


def test_oversized_upload_leaves_no_draft_behind(repo, staff, today, document_dir: Path, monkeypatch):
    monkeypatch.setattr(settings, "max_upload_bytes", 4)
    uploads = [Upload("ok.txt", b"abc"), Upload("big.txt", b"toolarge")]

    with pytest.raises(ValidationError):
        _create(repo, staff, today, state="submitted", documents=uploads)

    assert repo.find_activities_for_user(staff.id) == []
    assert list(document_dir.iterdir()) == []
    retried = _create(repo, staff, today, documents=[Upload("ok.txt", b"abc")])
    assert retried.start_time == "09:00"


def test_too_many_uploads_rejected_before_saving(repo, staff, today, monkeypatch):
    monkeypatch.setattr(settings, "max_upload_files", 1)

    with pytest.raises(ValidationError):
        _create(repo, staff, today, documents=[Upload("a.txt", b"a"), Upload("b.txt", b"b")])

    assert repo.find_activities_for_user(staff.id) == []


def test_failed_attach_discards_draft(repo, staff, today, document_dir: Path, monkeypatch):
    calls = {"count": 0}
    original = repo.add_document

    def flaky_add_document(*args, **kwargs):
        calls["count"] += 1
        if calls["count"] == 2:
            raise OSError("disk full")
        return original(*args, **kwargs)

    monkeypatch.setattr(repo, "add_document", flaky_add_document)

    with pytest.raises(OSError):
        _create(repo, staff, today, documents=[Upload("a.txt", b"a"), Upload("b.txt", b"b")])

    assert repo.find_activities_for_user(staff.id) == []
    assert list(document_dir.iterdir()) == []
