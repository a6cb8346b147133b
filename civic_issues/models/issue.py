from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator


# -------------------------------
# Pydantic Schemas (for FastAPI)
# -------------------------------

# -------- Enums --------
class IssueType(str, Enum):
    POTHOLE = "pothole"
    GARBAGE = "garbage"
    STREETLIGHT = "streetlight"
    WATER_LEAKAGE = "water_leakage"
    ROAD_DAMAGE = "road_damage"
    OTHER = "other"


class IssueStatus(str, Enum):
    SUBMITTED = "submitted"
    ACKNOWLEDGED = "acknowledged"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    REJECTED = "rejected"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class Language(str, Enum):
    ENGLISH = "en"
    HINDI = "hi"
    MARATHI = "mr"


# -------- AI collaborator results --------
class ImageDetection(BaseModel):
    """What the image classifier saw. Unrecognised enum values arrive as None."""
    issue_type: Optional[IssueType] = None
    confidence: float = 0.0
    description: str = ""
    severity: Optional[Priority] = None
    suggested_department: str = ""


class Transcription(BaseModel):
    text: str
    language: str = Language.ENGLISH.value


class VoiceExtraction(BaseModel):
    issue_type: Optional[IssueType] = None
    location: Optional[str] = None
    description: str = ""
    priority: Optional[Priority] = None


# -------- Requests --------
class IssueSubmission(BaseModel):
    """Explicit fields from the report form. Blank strings count as not given."""
    title: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = Field(None, max_length=5000)
    issue_type: Optional[IssueType] = None
    priority: Optional[Priority] = None
    location: Optional[str] = Field(None, max_length=500)
    latitude: Optional[str] = None
    longitude: Optional[str] = None
    address: Optional[str] = Field(None, max_length=500)
    ward: Optional[str] = Field(None, max_length=50)
    assigned_department: Optional[str] = Field(None, max_length=100)
    photo_url: Optional[str] = Field(None, max_length=1024)
    audio_url: Optional[str] = Field(None, max_length=1024)
    language: Optional[Language] = None

    @field_validator("*", mode="before")
    @classmethod
    def blank_to_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value


class IssueCreate(BaseModel):
    """Finalized payload for a new issue, after fusion."""
    title: str
    description: Optional[str] = None
    issue_type: IssueType = IssueType.OTHER
    priority: Priority = Priority.MEDIUM
    location: str = ""
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    address: Optional[str] = None
    ward: Optional[str] = None
    assigned_department: str = ""
    reporter_id: Optional[int] = None
    photo_url: Optional[str] = None
    audio_url: Optional[str] = None
    transcription: Optional[str] = None
    ai_detection_result: Optional[Dict[str, Any]] = None
    ai_confidence: Optional[float] = None
    language: Language = Language.ENGLISH


class StatusUpdateRequest(BaseModel):
    status: IssueStatus
    notes: Optional[str] = Field(None, max_length=2000)
    assigned_department: Optional[str] = Field(None, max_length=100)
    assigned_to: Optional[str] = Field(None, max_length=100)
    estimated_resolution_days: Optional[int] = Field(None, ge=0)


class IssueFilters(BaseModel):
    reporter_id: Optional[int] = None
    status: Optional[IssueStatus] = None
    issue_type: Optional[IssueType] = None
    department: Optional[str] = None
    limit: int = Field(50, ge=1, le=200)
    offset: int = Field(0, ge=0)


class CommentCreate(BaseModel):
    comment: str = Field(..., min_length=1, max_length=2000)
    is_internal: bool = False


class DepartmentCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    contact_email: Optional[EmailStr] = None
    contact_phone: Optional[str] = Field(None, max_length=30)
    is_active: bool = True


# -------- Responses --------
class IssueResponse(BaseModel):
    id: str
    reporter_id: Optional[int] = None
    title: str
    description: Optional[str] = None
    issue_type: IssueType
    priority: Priority
    status: IssueStatus
    location: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    address: Optional[str] = None
    ward: Optional[str] = None
    assigned_department: Optional[str] = None
    assigned_to: Optional[str] = None
    photo_url: Optional[str] = None
    audio_url: Optional[str] = None
    transcription: Optional[str] = None
    ai_detection_result: Optional[Dict[str, Any]] = None
    ai_confidence: Optional[float] = None
    estimated_resolution_days: Optional[int] = None
    actual_resolution_date: Optional[datetime] = None
    language: Language
    created_at: datetime
    updated_at: datetime

    # Pydantic V2 Config
    model_config = ConfigDict(from_attributes=True)


class StatusHistoryResponse(BaseModel):
    id: int
    issue_id: str
    status: IssueStatus
    notes: Optional[str] = None
    updated_by: Optional[int] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CommentResponse(BaseModel):
    id: int
    issue_id: str
    user_id: Optional[int] = None
    comment: str
    is_internal: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class DepartmentResponse(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


class IssueStats(BaseModel):
    total: int = 0
    pending: int = 0
    in_progress: int = 0
    resolved: int = 0
    avg_resolution_days: float = 0.0


class TranscriptionResponse(BaseModel):
    transcription: str
    language: str
    extracted_info: VoiceExtraction
