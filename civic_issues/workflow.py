"""
Issue status workflow.

    submitted -> acknowledged -> in_progress -> resolved
    submitted | acknowledged | in_progress -> rejected

Any status in ``IssueStatus`` may be requested; the enum is the only guard.
Every transition writes one history entry in the same transaction as the
issue update, and moving to ``resolved`` stamps the resolution time.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from . import storage
from .models.issue import IssueStatus, StatusUpdateRequest
from .models.models import Issue, utcnow

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = frozenset({IssueStatus.RESOLVED, IssueStatus.REJECTED})


def is_terminal(status: IssueStatus) -> bool:
    return status in TERMINAL_STATUSES


def apply_transition(issue: Issue, update: StatusUpdateRequest, now: datetime) -> None:
    """
    Apply a status change to an issue in memory.

    ``actual_resolution_date`` is written only when the new status is
    resolved. Re-resolving re-stamps it; leaving resolved keeps the last
    stamp.
    """
    issue.status = update.status.value
    if update.status == IssueStatus.RESOLVED:
        issue.actual_resolution_date = now
    if update.assigned_department:
        issue.assigned_department = update.assigned_department
    if update.assigned_to:
        issue.assigned_to = update.assigned_to
    if update.estimated_resolution_days is not None:
        issue.estimated_resolution_days = update.estimated_resolution_days
    issue.updated_at = now


def update_issue_status(
    db: Session,
    issue_id: str,
    update: StatusUpdateRequest,
    actor_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> Issue:
    """
    Move an issue to a new status and record the transition.

    Raises:
        NotFoundError: no issue with this id; nothing is written
        PersistenceError: the commit failed; neither write is kept
    """
    issue = storage.get_issue(db, issue_id)
    now = now or utcnow()
    previous = issue.status

    apply_transition(issue, update, now)
    storage.add_status_history(db, issue.id, update.status, update.notes, actor_id)
    storage.commit(db, "update issue status")
    db.refresh(issue)

    if is_terminal(IssueStatus(previous)) and previous != issue.status:
        logger.warning("Issue %s reopened from %s to %s", issue.id, previous, issue.status)
    logger.info("Issue %s moved %s -> %s by %s", issue.id, previous, issue.status, actor_id)
    return issue
