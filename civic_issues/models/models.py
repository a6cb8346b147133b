# models.py
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, Text, ForeignKey, Float, Boolean, DateTime, JSON, Index
from sqlalchemy.orm import relationship
from ..database import Base
from .issue import IssueStatus, IssueType, Language, Priority
from .user import User  # noqa: F401  registers the users table for the foreign keys


def utcnow() -> datetime:
    """Naive UTC timestamp, stored the same way on SQLite and Postgres."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid.uuid4())


class Issue(Base):
    __tablename__ = "issues"

    id = Column(String(36), primary_key=True, default=new_id)
    reporter_id = Column(Integer, ForeignKey("users.user_id"), nullable=True)
    title = Column(Text, nullable=False)
    description = Column(Text)
    issue_type = Column(String(50), nullable=False, default=IssueType.OTHER.value)
    priority = Column(String(50), default=Priority.MEDIUM.value)
    status = Column(String(50), default=IssueStatus.SUBMITTED.value, index=True)
    location = Column(Text, nullable=False, default="")
    latitude = Column(Float)
    longitude = Column(Float)
    address = Column(Text)
    ward = Column(String(50))
    assigned_department = Column(String(100), index=True)
    assigned_to = Column(String(100))
    photo_url = Column(String(1024))
    audio_url = Column(String(1024))
    transcription = Column(Text)
    ai_detection_result = Column(JSON)
    ai_confidence = Column(Float)
    estimated_resolution_days = Column(Integer)
    actual_resolution_date = Column(DateTime)
    language = Column(String(5), default=Language.ENGLISH.value)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    reporter = relationship("User", back_populates="issues")
    history = relationship(
        "IssueStatusHistory",
        back_populates="issue",
        cascade="all, delete",
        order_by=lambda: [IssueStatusHistory.created_at, IssueStatusHistory.id],
    )
    comments = relationship("IssueComment", back_populates="issue", cascade="all, delete")


class IssueStatusHistory(Base):
    __tablename__ = "issue_status_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    issue_id = Column(String(36), ForeignKey("issues.id"), nullable=False)
    status = Column(String(50), nullable=False)
    notes = Column(Text)
    updated_by = Column(Integer, ForeignKey("users.user_id"), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    issue = relationship("Issue", back_populates="history")

    __table_args__ = (
        Index("idx_history_issue_created", issue_id, created_at),
    )


class IssueComment(Base):
    __tablename__ = "issue_comments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    issue_id = Column(String(36), ForeignKey("issues.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.user_id"), nullable=True)
    comment = Column(Text, nullable=False)
    is_internal = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    issue = relationship("Issue", back_populates="comments")


class Department(Base):
    __tablename__ = "departments"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(100), nullable=False)
    description = Column(Text)
    contact_email = Column(String(255))
    contact_phone = Column(String(30))
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
