from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from civic_issues import storage, workflow
from civic_issues.errors import NotFoundError, PersistenceError
from civic_issues.models.issue import IssueCreate, IssueStatus, StatusUpdateRequest
from civic_issues.models.models import IssueStatusHistory, utcnow


@pytest.fixture
def issue(db_session):
    return storage.create_issue(db_session, IssueCreate(title="Pothole on Main Road", location="Main Road"))


def history_statuses(db_session, issue_id):
    return [h.status for h in storage.get_status_history(db_session, issue_id)]


# -------------------------------------------------------
# 🆕 Creation
# -------------------------------------------------------

def test_create_issue_writes_submitted_history(db_session, issue):
    assert issue.status == "submitted"
    history = storage.get_status_history(db_session, issue.id)
    assert len(history) == 1
    assert history[0].status == "submitted"
    assert history[0].notes == "Issue submitted"
    assert history[0].updated_by is None


# -------------------------------------------------------
# 🔄 Transitions
# -------------------------------------------------------

def test_full_lifecycle_records_every_step(db_session, issue):
    for status in ("acknowledged", "in_progress", "resolved"):
        workflow.update_issue_status(db_session, issue.id, StatusUpdateRequest(status=status))

    assert history_statuses(db_session, issue.id) == ["submitted", "acknowledged", "in_progress", "resolved"]


def test_each_update_adds_exactly_one_entry(db_session, issue):
    before = db_session.query(IssueStatusHistory).count()
    workflow.update_issue_status(
        db_session, issue.id, StatusUpdateRequest(status="acknowledged", notes="Seen"), actor_id=3
    )
    entries = db_session.query(IssueStatusHistory).order_by(IssueStatusHistory.id).all()
    assert len(entries) == before + 1
    assert entries[-1].notes == "Seen"
    assert entries[-1].updated_by == 3


def test_states_can_be_skipped(db_session, issue):
    updated = workflow.update_issue_status(db_session, issue.id, StatusUpdateRequest(status="rejected"))
    assert updated.status == "rejected"
    assert updated.actual_resolution_date is None


def test_non_resolved_status_never_sets_resolution_date(db_session, issue):
    for status in ("acknowledged", "in_progress", "rejected"):
        updated = workflow.update_issue_status(db_session, issue.id, StatusUpdateRequest(status=status))
        assert updated.actual_resolution_date is None


def test_resolving_stamps_resolution_date(db_session, issue):
    resolved_at = utcnow() + timedelta(days=3)
    updated = workflow.update_issue_status(
        db_session, issue.id, StatusUpdateRequest(status="resolved"), now=resolved_at
    )
    assert updated.actual_resolution_date == resolved_at
    assert updated.updated_at == resolved_at


def test_reopening_keeps_last_resolution_date(db_session, issue):
    resolved_at = utcnow() + timedelta(days=1)
    workflow.update_issue_status(db_session, issue.id, StatusUpdateRequest(status="resolved"), now=resolved_at)

    reopened = workflow.update_issue_status(db_session, issue.id, StatusUpdateRequest(status="in_progress"))

    assert reopened.status == "in_progress"
    assert reopened.actual_resolution_date == resolved_at


def test_re_resolving_restamps_resolution_date(db_session, issue):
    first = utcnow() + timedelta(days=1)
    second = first + timedelta(days=2)
    workflow.update_issue_status(db_session, issue.id, StatusUpdateRequest(status="resolved"), now=first)
    workflow.update_issue_status(db_session, issue.id, StatusUpdateRequest(status="in_progress"))

    updated = workflow.update_issue_status(
        db_session, issue.id, StatusUpdateRequest(status="resolved"), now=second
    )
    assert updated.actual_resolution_date == second


def test_assignment_fields_are_overwritten_only_when_given(db_session, issue):
    workflow.update_issue_status(
        db_session,
        issue.id,
        StatusUpdateRequest(
            status="acknowledged",
            assigned_department="d-1",
            assigned_to="crew-7",
            estimated_resolution_days=4,
        ),
    )
    updated = workflow.update_issue_status(db_session, issue.id, StatusUpdateRequest(status="in_progress"))

    assert updated.assigned_department == "d-1"
    assert updated.assigned_to == "crew-7"
    assert updated.estimated_resolution_days == 4


def test_terminal_statuses():
    assert workflow.is_terminal(IssueStatus.RESOLVED)
    assert workflow.is_terminal(IssueStatus.REJECTED)
    assert not workflow.is_terminal(IssueStatus.IN_PROGRESS)


# -------------------------------------------------------
# ❌ Failures
# -------------------------------------------------------

def test_unknown_issue_raises_and_writes_nothing(db_session, issue):
    with pytest.raises(NotFoundError):
        workflow.update_issue_status(db_session, "missing", StatusUpdateRequest(status="resolved"))

    assert db_session.query(IssueStatusHistory).count() == 1


def test_failed_commit_rolls_back_both_writes(db_session, issue, monkeypatch):
    issue_id = issue.id

    def broken_commit():
        raise OperationalError("UPDATE issues", {}, Exception("disk I/O error"))

    monkeypatch.setattr(db_session, "commit", broken_commit)
    with pytest.raises(PersistenceError):
        workflow.update_issue_status(db_session, issue_id, StatusUpdateRequest(status="resolved"))
    monkeypatch.undo()

    reloaded = storage.get_issue(db_session, issue_id)
    assert reloaded.status == "submitted"
    assert reloaded.actual_resolution_date is None
    assert history_statuses(db_session, issue_id) == ["submitted"]
