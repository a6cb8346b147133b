from . import models
from .models import Department, Issue, IssueComment, IssueStatusHistory
from .user import User

__all__ = [
    "models",
    "Department",
    "Issue",
    "IssueComment",
    "IssueStatusHistory",
    "User",
]
