"""
Issue statistics: status counts and average time to resolution.
"""

import math
from datetime import datetime, timezone
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from .models.issue import IssueStats, IssueStatus
from .models.models import Issue

SECONDS_PER_DAY = 86400

PENDING_STATUSES = frozenset({IssueStatus.SUBMITTED.value, IssueStatus.ACKNOWLEDGED.value})


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def resolution_days(created_at: datetime, resolved_at: datetime) -> int:
    """Whole days from creation to resolution, rounded up."""
    elapsed = (_as_utc(resolved_at) - _as_utc(created_at)).total_seconds()
    return math.ceil(elapsed / SECONDS_PER_DAY)


def _round_one_decimal(value: float) -> float:
    # half-up, so 2.25 -> 2.3 rather than banker's rounding
    return math.floor(value * 10 + 0.5) / 10


def compute_issue_stats(issues: Iterable) -> IssueStats:
    """
    Reduce an issue set to counts and the average resolution time.

    Only resolved issues with a resolution timestamp count toward the
    average; with none the average is 0.
    """
    stats = IssueStats()
    total_days = 0
    resolved_with_date = 0

    for issue in issues:
        status = issue.status.value if isinstance(issue.status, IssueStatus) else issue.status
        stats.total += 1
        if status in PENDING_STATUSES:
            stats.pending += 1
        elif status == IssueStatus.IN_PROGRESS.value:
            stats.in_progress += 1
        elif status == IssueStatus.RESOLVED.value:
            stats.resolved += 1
            if issue.actual_resolution_date is not None and issue.created_at is not None:
                total_days += resolution_days(issue.created_at, issue.actual_resolution_date)
                resolved_with_date += 1

    if resolved_with_date:
        stats.avg_resolution_days = _round_one_decimal(total_days / resolved_with_date)
    return stats


def get_issue_stats(db: Session, department: Optional[str] = None) -> IssueStats:
    """Statistics over all issues, or only those assigned to ``department``."""
    query = db.query(Issue)
    if department:
        query = query.filter(Issue.assigned_department == department)
    return compute_issue_stats(query.yield_per(500))
