"""
Persistence helpers over the SQLAlchemy session.

Writers here never commit on their own except where noted; callers group a
primary write and its history entry and commit them together with
``commit``.
"""

import logging
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .errors import NotFoundError, PersistenceError
from .models.issue import CommentCreate, DepartmentCreate, IssueCreate, IssueFilters, IssueStatus
from .models.models import Department, Issue, IssueComment, IssueStatusHistory

logger = logging.getLogger(__name__)


def commit(db: Session, action: str) -> None:
    """Commit the session, rolling back and raising PersistenceError on failure."""
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Failed to %s", action)
        raise PersistenceError(f"Failed to {action}") from exc


# -------------------------------------------------------
# Issues
# -------------------------------------------------------
def add_status_history(
    db: Session,
    issue_id: str,
    status: IssueStatus,
    notes: Optional[str] = None,
    updated_by: Optional[int] = None,
) -> IssueStatusHistory:
    entry = IssueStatusHistory(
        issue_id=issue_id,
        status=status.value,
        notes=notes,
        updated_by=updated_by,
    )
    db.add(entry)
    return entry


def create_issue(db: Session, payload: IssueCreate) -> Issue:
    """Insert a new issue together with its initial "submitted" history entry."""
    issue = Issue(**payload.model_dump(mode="json"))
    issue.status = IssueStatus.SUBMITTED.value
    db.add(issue)
    # flush assigns the id the history entry points at
    try:
        db.flush()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Failed to insert issue")
        raise PersistenceError("Failed to create issue") from exc

    add_status_history(db, issue.id, IssueStatus.SUBMITTED, "Issue submitted", payload.reporter_id)
    commit(db, "create issue")
    db.refresh(issue)
    logger.info("Created issue %s (%s, %s)", issue.id, issue.issue_type, issue.priority)
    return issue


def get_issue(db: Session, issue_id: str) -> Issue:
    issue = db.get(Issue, issue_id)
    if issue is None:
        raise NotFoundError("Issue", issue_id)
    return issue


def list_issues(db: Session, filters: Optional[IssueFilters] = None) -> List[Issue]:
    """Issues matching every given filter, newest first."""
    filters = filters or IssueFilters()
    query = db.query(Issue)
    if filters.reporter_id is not None:
        query = query.filter(Issue.reporter_id == filters.reporter_id)
    if filters.status is not None:
        query = query.filter(Issue.status == filters.status.value)
    if filters.issue_type is not None:
        query = query.filter(Issue.issue_type == filters.issue_type.value)
    if filters.department:
        query = query.filter(Issue.assigned_department == filters.department)
    return (
        query.order_by(Issue.created_at.desc())
        .offset(filters.offset)
        .limit(filters.limit)
        .all()
    )


def count_reported_issues(db: Session, reporter_id: int) -> int:
    return db.query(func.count(Issue.id)).filter(Issue.reporter_id == reporter_id).scalar() or 0


def get_status_history(db: Session, issue_id: str) -> List[IssueStatusHistory]:
    get_issue(db, issue_id)
    return (
        db.query(IssueStatusHistory)
        .filter(IssueStatusHistory.issue_id == issue_id)
        .order_by(IssueStatusHistory.created_at.asc(), IssueStatusHistory.id.asc())
        .all()
    )


# -------------------------------------------------------
# Comments
# -------------------------------------------------------
def add_comment(db: Session, issue_id: str, user_id: Optional[int], payload: CommentCreate) -> IssueComment:
    get_issue(db, issue_id)
    comment = IssueComment(
        issue_id=issue_id,
        user_id=user_id,
        comment=payload.comment,
        is_internal=payload.is_internal,
    )
    db.add(comment)
    commit(db, "add comment")
    db.refresh(comment)
    return comment


def list_comments(db: Session, issue_id: str, include_internal: bool = False) -> List[IssueComment]:
    get_issue(db, issue_id)
    query = db.query(IssueComment).filter(IssueComment.issue_id == issue_id)
    if not include_internal:
        query = query.filter(IssueComment.is_internal.is_(False))
    return query.order_by(IssueComment.created_at.asc(), IssueComment.id.asc()).all()


# -------------------------------------------------------
# Departments
# -------------------------------------------------------
def list_departments(db: Session) -> List[Department]:
    """Active departments ordered by name."""
    return (
        db.query(Department)
        .filter(Department.is_active.is_(True))
        .order_by(Department.name.asc())
        .all()
    )


def create_department(db: Session, payload: DepartmentCreate) -> Department:
    department = Department(**payload.model_dump())
    db.add(department)
    commit(db, "create department")
    db.refresh(department)
    return department
