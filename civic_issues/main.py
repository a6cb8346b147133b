import logging
import os
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import Annotated, List, Optional

from fastapi import FastAPI, Depends, File, Form, HTTPException, Query, Request, UploadFile, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session
from sqlalchemy import text, inspect

from . import storage, workflow
from .ai_client import IssueAIService, OpenAIIssueService
from .auth_utils import (
    hash_password,
    verify_password,
    create_access_token,
    decode_access_token,
)
from .database import engine, get_db
from .errors import ExternalServiceError, FieldValidationError, NotFoundError, PersistenceError
from .fusion import gather_ai_signals, parse_submission, resolve_department_ref, resolve_issue_fields
from .logging_config import setup_logging
from .models import models
from .models.issue import (
    CommentCreate,
    CommentResponse,
    DepartmentCreate,
    DepartmentResponse,
    ImageDetection,
    IssueFilters,
    IssueResponse,
    IssueStats,
    StatusHistoryResponse,
    StatusUpdateRequest,
    TranscriptionResponse,
)
from .models.user import (
    RegisterRequest,
    LoginRequest,
    RegisterResponse,
    LoginResponse,
    ProfileResponse,
    User,
)
from .stats import get_issue_stats

setup_logging()
logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", 10 * 1024 * 1024))
UPLOAD_CHUNK_BYTES = 64 * 1024
DEFAULT_ORIGINS = "http://localhost:5173,http://127.0.0.1:5173,https://localhost:3000"


# -------------------------------------------------------
# FastAPI App Setup
# -------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    models.Base.metadata.create_all(bind=engine)
    yield


app = FastAPI(title="Civic Issue Reporting Service", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in os.getenv("ALLOWED_ORIGINS", DEFAULT_ORIGINS).split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# -------------------------------------------------------
# Error Mapping
# -------------------------------------------------------
@app.exception_handler(FieldValidationError)
async def field_validation_handler(request: Request, exc: FieldValidationError):
    return JSONResponse(status_code=422, content={"detail": exc.errors})


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})


@app.exception_handler(ExternalServiceError)
async def external_service_handler(request: Request, exc: ExternalServiceError):
    logger.warning("AI request failed on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=status.HTTP_502_BAD_GATEWAY, content={"detail": "AI service unavailable"})


@app.exception_handler(PersistenceError)
async def persistence_handler(request: Request, exc: PersistenceError):
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Failed to save changes"},
    )


# -------------------------------------------------------
# Root Endpoint
# -------------------------------------------------------
@app.get("/")
def root():
    return {"message": "Civic Issue Reporting Service is running."}


# -------------------------------------------------------
#  Health Check Endpoints
# -------------------------------------------------------
@app.get("/health/live", tags=["Health"])
def liveness_check():
    """Liveness probe: confirms app process is alive."""
    return {"status": "alive"}


@app.get("/health/ready", tags=["Health"])
def readiness_check(db: Session = Depends(get_db)):
    """Readiness probe: verifies DB connectivity."""
    try:
        db.execute(text("SELECT 1"))
        return {"status": "ready"}
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Database not ready: {e}",
        )


# -------------------------------------------------------
# Collaborators
# -------------------------------------------------------
@lru_cache()
def get_ai_service() -> IssueAIService:
    """The AI collaborator; tests override this dependency with a fake."""
    return OpenAIIssueService()


oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/login")
optional_oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/login", auto_error=False)


def _user_from_token(token: str, db: Session) -> User:
    payload = decode_access_token(token)
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token"
        )

    user = db.query(User).filter(
        User.user_id == payload.get("user_id")
    ).first()
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found"
        )
    return user


def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: Session = Depends(get_db)
):
    """Decode JWT and fetch the current user."""
    return _user_from_token(token, db)


def get_optional_user(
    token: Optional[str] = Depends(optional_oauth2_scheme),
    db: Session = Depends(get_db)
) -> Optional[User]:
    """
    The current user when a valid bearer token is sent; anonymous otherwise.

    An expired or unknown token does not block anonymous reporting.
    """
    if not token:
        return None
    payload = decode_access_token(token)
    if payload is None:
        logger.info("Ignoring invalid bearer token; continuing anonymously")
        return None
    return db.query(User).filter(User.user_id == payload.get("user_id")).first()


def require_admin(current_user: User = Depends(get_current_user)) -> User:
    if not current_user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin privileges required"
        )
    return current_user


# -------------------------------------------------------
# USER & AUTHENTICATION ENDPOINTS
# -------------------------------------------------------
@app.post("/api/v1/register", status_code=status.HTTP_201_CREATED, response_model=RegisterResponse)
def register_user(payload: RegisterRequest, db: Session = Depends(get_db)):
    """Register a new user."""
    existing_user = db.query(User).filter(User.email == payload.email).first()
    if existing_user:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Email already registered"
        )

    new_user = User(
        name=payload.name,
        email=payload.email,
        password_hash=hash_password(payload.password),
        role=payload.role,
        preferred_language=payload.preferred_language.value,
    )
    db.add(new_user)
    storage.commit(db, "register user")
    db.refresh(new_user)

    return RegisterResponse(
        user_id=new_user.user_id,
        name=new_user.name,
        email=new_user.email,
        role=new_user.role,
        token=create_access_token(new_user.user_id, new_user.email, new_user.role),
    )


@app.post("/api/v1/login", response_model=LoginResponse)
def login_user(payload: LoginRequest, db: Session = Depends(get_db)):
    """Authenticate user and issue JWT token."""
    user = db.query(User).filter(User.email == payload.email).first()
    if not user or not verify_password(payload.password, user.password_hash):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials"
        )

    return LoginResponse(
        user_id=user.user_id,
        name=user.name,
        email=user.email,
        role=user.role,
        token=create_access_token(user.user_id, user.email, user.role),
    )


@app.get("/api/v1/profile/me", response_model=ProfileResponse)
def get_profile(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Get the currently logged-in user's profile."""
    return ProfileResponse(
        user_id=current_user.user_id,
        name=current_user.name,
        email=current_user.email,
        role=current_user.role,
        preferred_language=current_user.preferred_language,
        reported_issues=storage.count_reported_issues(db, current_user.user_id),
    )


# -------------------------------------------------------
# ISSUE ENDPOINTS
# -------------------------------------------------------
async def _read_upload(upload: Optional[UploadFile], field: str) -> Optional[bytes]:
    if upload is None or not upload.filename:
        return None
    too_large = FieldValidationError.for_field(
        field, f"File is larger than {MAX_UPLOAD_BYTES} bytes", "file_too_large"
    )
    if upload.size is not None and upload.size > MAX_UPLOAD_BYTES:
        raise too_large

    chunks = []
    received = 0
    while received <= MAX_UPLOAD_BYTES:
        chunk = await upload.read(UPLOAD_CHUNK_BYTES)
        if not chunk:
            break
        chunks.append(chunk)
        received += len(chunk)
    if received > MAX_UPLOAD_BYTES:
        raise too_large
    return b"".join(chunks) or None


@app.get("/api/v1/issues", response_model=List[IssueResponse])
def list_issues(
    filters: Annotated[IssueFilters, Query()],
    db: Session = Depends(get_db),
):
    """List issues, newest first, filtered by reporter, status, type or department."""
    if filters.department:
        department = resolve_department_ref(filters.department, storage.list_departments(db))
        filters = filters.model_copy(update={"department": department})
    return storage.list_issues(db, filters)


@app.get("/api/v1/issues/{issue_id}", response_model=IssueResponse)
def get_issue(issue_id: str, db: Session = Depends(get_db)):
    return storage.get_issue(db, issue_id)


@app.post("/api/v1/issues", status_code=status.HTTP_201_CREATED, response_model=IssueResponse)
async def submit_issue(
    title: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    issue_type: Optional[str] = Form(None),
    priority: Optional[str] = Form(None),
    location: Optional[str] = Form(None),
    latitude: Optional[str] = Form(None),
    longitude: Optional[str] = Form(None),
    address: Optional[str] = Form(None),
    ward: Optional[str] = Form(None),
    assigned_department: Optional[str] = Form(None),
    photo_url: Optional[str] = Form(None),
    audio_url: Optional[str] = Form(None),
    language: Optional[str] = Form(None),
    photo: Optional[UploadFile] = File(None),
    audio: Optional[UploadFile] = File(None),
    db: Session = Depends(get_db),
    ai: IssueAIService = Depends(get_ai_service),
    current_user: Optional[User] = Depends(get_optional_user),
):
    """
    Submit a new issue report.

    Explicit form fields take precedence over anything the AI infers from the
    photo or voice note. AI failures never fail the submission.
    """
    submission = parse_submission({
        "title": title,
        "description": description,
        "issue_type": issue_type,
        "priority": priority,
        "location": location,
        "latitude": latitude,
        "longitude": longitude,
        "address": address,
        "ward": ward,
        "assigned_department": assigned_department,
        "photo_url": photo_url,
        "audio_url": audio_url,
        "language": language,
    })
    photo_bytes = await _read_upload(photo, "photo")
    audio_bytes = await _read_upload(audio, "audio")

    signals = await gather_ai_signals(
        ai,
        photo=photo_bytes,
        photo_content_type=(photo.content_type if photo else None) or "image/jpeg",
        audio=audio_bytes,
        audio_filename=(audio.filename if audio else None) or "audio.webm",
    )
    payload = resolve_issue_fields(
        submission,
        signals,
        departments=storage.list_departments(db),
        reporter_id=current_user.user_id if current_user else None,
    )
    return storage.create_issue(db, payload)


@app.patch("/api/v1/issues/{issue_id}/status", response_model=IssueResponse)
def update_issue_status(
    issue_id: str,
    update: StatusUpdateRequest,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    """Move an issue through the workflow (admin only)."""
    if update.assigned_department:
        department = resolve_department_ref(update.assigned_department, storage.list_departments(db))
        update = update.model_copy(update={"assigned_department": department})
    return workflow.update_issue_status(db, issue_id, update, actor_id=admin.user_id)


@app.get("/api/v1/issues/{issue_id}/history", response_model=List[StatusHistoryResponse])
def get_issue_history(issue_id: str, db: Session = Depends(get_db)):
    """Status history of an issue, oldest first."""
    return storage.get_status_history(db, issue_id)


@app.post(
    "/api/v1/issues/{issue_id}/comments",
    status_code=status.HTTP_201_CREATED,
    response_model=CommentResponse,
)
def add_issue_comment(
    issue_id: str,
    payload: CommentCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    if payload.is_internal and not current_user.is_admin:
        payload = payload.model_copy(update={"is_internal": False})
    return storage.add_comment(db, issue_id, current_user.user_id, payload)


@app.get("/api/v1/issues/{issue_id}/comments", response_model=List[CommentResponse])
def get_issue_comments(
    issue_id: str,
    db: Session = Depends(get_db),
    current_user: Optional[User] = Depends(get_optional_user),
):
    """Comments on an issue, oldest first. Internal notes are shown to admins only."""
    include_internal = bool(current_user and current_user.is_admin)
    return storage.list_comments(db, issue_id, include_internal=include_internal)


# -------------------------------------------------------
# DEPARTMENTS & STATISTICS
# -------------------------------------------------------
@app.get("/api/v1/departments", response_model=List[DepartmentResponse])
def get_departments(db: Session = Depends(get_db)):
    return storage.list_departments(db)


@app.post("/api/v1/departments", status_code=status.HTTP_201_CREATED, response_model=DepartmentResponse)
def create_department(
    payload: DepartmentCreate,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    return storage.create_department(db, payload)


@app.get("/api/v1/stats", response_model=IssueStats)
def get_stats(department: Optional[str] = None, db: Session = Depends(get_db)):
    """Issue counts and average resolution days, optionally for one department."""
    if department:
        department = resolve_department_ref(department, storage.list_departments(db))
    return get_issue_stats(db, department)


# -------------------------------------------------------
# DIRECT AI ENDPOINTS
# -------------------------------------------------------
@app.post("/api/v1/analyze-image", response_model=ImageDetection)
async def analyze_image(
    image: Optional[UploadFile] = File(None),
    ai: IssueAIService = Depends(get_ai_service),
):
    data = await _read_upload(image, "image")
    if not data:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No image file provided")
    return await ai.classify_image(data, image.content_type or "image/jpeg")


@app.post("/api/v1/transcribe-audio", response_model=TranscriptionResponse)
async def transcribe_audio(
    audio: Optional[UploadFile] = File(None),
    ai: IssueAIService = Depends(get_ai_service),
):
    data = await _read_upload(audio, "audio")
    if not data:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No audio file provided")
    transcription = await ai.transcribe_audio(data, audio.filename or "audio.webm")
    extracted = await ai.extract_issue_text(transcription.text, transcription.language)
    return TranscriptionResponse(
        transcription=transcription.text,
        language=transcription.language,
        extracted_info=extracted,
    )


# -------------------------------------------------------
# Database Connectivity Diagnostic
# -------------------------------------------------------
@app.get("/db-check")
def db_check(db: Session = Depends(get_db)):
    """Manually verify DB connectivity and list tables."""
    try:
        # Use SQLAlchemy inspector to be compatible with both SQLite (tests) and Postgres (prod)
        inspector = inspect(db.get_bind())
        tables = inspector.get_table_names()
        return {"status": "connected", "tables": tables}
    except Exception as e:
        return {"status": "error", "details": str(e)}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("civic_issues.main:app", host="0.0.0.0", port=int(os.getenv("PORT", 8000)))
