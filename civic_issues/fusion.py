"""
Field fusion for new issue reports.

A report can carry three sources of truth: what the citizen typed, what the
image classifier saw, and what was extracted from a voice note. The first
non-empty value wins, in that order, before falling back to a default.
"""

import asyncio
import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional

from pydantic import ValidationError

from .ai_client import IssueAIService
from .errors import ExternalServiceError, FieldValidationError
from .models.issue import (
    ImageDetection,
    IssueCreate,
    IssueSubmission,
    IssueType,
    Language,
    Priority,
    Transcription,
    VoiceExtraction,
)

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "New Issue"


@dataclass
class AISignals:
    """Whatever the AI collaborators managed to produce for one submission."""
    image: Optional[ImageDetection] = None
    transcription: Optional[Transcription] = None
    voice: Optional[VoiceExtraction] = None


def parse_submission(raw: Dict[str, Any]) -> IssueSubmission:
    """Validate explicit form fields, raising FieldValidationError on bad input."""
    try:
        return IssueSubmission.model_validate(raw)
    except ValidationError as exc:
        raise FieldValidationError.from_pydantic(exc) from exc


def first_non_empty(*values):
    """Return the first value that is not None and not a blank string."""
    for value in values:
        if value is None:
            continue
        if isinstance(value, str):
            if value.strip():
                return value
            continue
        return value
    return None


def parse_coordinate(value: Optional[str], limit: float) -> Optional[float]:
    """
    Parse a latitude or longitude from form input.

    Args:
        value: Raw string from the form
        limit: Absolute bound (90 for latitude, 180 for longitude)

    Returns:
        The coordinate, or None when absent, non-numeric or out of range
    """
    if value is None:
        return None
    try:
        coordinate = float(str(value).strip())
    except (TypeError, ValueError):
        logger.debug("Ignoring non-numeric coordinate %r", value)
        return None
    if not math.isfinite(coordinate) or abs(coordinate) > limit:
        logger.debug("Ignoring out-of-range coordinate %r", value)
        return None
    return coordinate


def clamp_confidence(value: float) -> float:
    if not math.isfinite(value):
        return 0.0
    return max(0.0, min(1.0, value))


def resolve_department_ref(value: Optional[str], departments: Iterable[Any] = ()) -> str:
    """
    Normalise a department reference to a department id.

    Ids are returned as-is. A value matching an active department's name
    (case-insensitive) is mapped to that department's id; this keeps older
    clients and AI suggestions, which speak in names, working. Anything else
    is kept unchanged.
    """
    if not value:
        return ""
    value = value.strip()
    by_name = {}
    for dept in departments:
        if dept.id == value:
            return dept.id
        by_name.setdefault((dept.name or "").strip().lower(), dept.id)
    return by_name.get(value.lower(), value)


async def _classify_photo(ai: IssueAIService, photo: bytes, content_type: str) -> Optional[ImageDetection]:
    try:
        return await ai.classify_image(photo, content_type)
    except ExternalServiceError as exc:
        logger.warning("AI image analysis failed: %s", exc)
        return None
    except Exception:
        logger.warning("AI image analysis raised unexpectedly", exc_info=True)
        return None


async def _process_audio(ai: IssueAIService, audio: bytes, filename: str):
    try:
        transcription = await ai.transcribe_audio(audio, filename)
    except ExternalServiceError as exc:
        logger.warning("Audio transcription failed: %s", exc)
        return None, None
    except Exception:
        logger.warning("Audio transcription raised unexpectedly", exc_info=True)
        return None, None

    try:
        voice = await ai.extract_issue_text(transcription.text, transcription.language)
    except ExternalServiceError as exc:
        logger.warning("Issue extraction from transcription failed: %s", exc)
        voice = None
    except Exception:
        logger.warning("Issue extraction raised unexpectedly", exc_info=True)
        voice = None
    return transcription, voice


async def gather_ai_signals(
    ai: IssueAIService,
    photo: Optional[bytes] = None,
    photo_content_type: str = "image/jpeg",
    audio: Optional[bytes] = None,
    audio_filename: str = "audio.webm",
) -> AISignals:
    """
    Run the image and audio paths concurrently.

    Failures are logged and leave the corresponding signal empty; they never
    propagate to the caller.
    """
    signals = AISignals()
    tasks = []
    if photo:
        tasks.append(_classify_photo(ai, photo, photo_content_type))
    if audio:
        tasks.append(_process_audio(ai, audio, audio_filename))
    if not tasks:
        return signals

    results = await asyncio.gather(*tasks)
    if photo:
        signals.image = results[0]
    if audio:
        signals.transcription, signals.voice = results[-1]
    return signals


def resolve_issue_fields(
    submission: IssueSubmission,
    signals: Optional[AISignals] = None,
    departments: Iterable[Any] = (),
    reporter_id: Optional[int] = None,
) -> IssueCreate:
    """Merge explicit fields with AI signals into one issue creation payload."""
    signals = signals or AISignals()
    image = signals.image
    voice = signals.voice

    image_description = image.description if image else None
    voice_description = voice.description if voice else None

    title = first_non_empty(submission.title, image_description, voice_description) or DEFAULT_TITLE
    description = first_non_empty(submission.description, image_description, voice_description)

    issue_type = first_non_empty(
        submission.issue_type,
        image.issue_type if image else None,
        voice.issue_type if voice else None,
    ) or IssueType.OTHER
    priority = first_non_empty(
        submission.priority,
        image.severity if image else None,
        voice.priority if voice else None,
    ) or Priority.MEDIUM

    location = first_non_empty(submission.location, voice.location if voice else None) or ""
    department = first_non_empty(
        submission.assigned_department,
        image.suggested_department if image else None,
    )

    language = submission.language
    if language is None and signals.transcription is not None:
        try:
            language = Language(signals.transcription.language)
        except ValueError:
            language = None

    return IssueCreate(
        title=title,
        description=description,
        issue_type=issue_type,
        priority=priority,
        location=location,
        latitude=parse_coordinate(submission.latitude, 90.0),
        longitude=parse_coordinate(submission.longitude, 180.0),
        address=submission.address,
        ward=submission.ward,
        assigned_department=resolve_department_ref(department, departments),
        reporter_id=reporter_id,
        photo_url=submission.photo_url,
        audio_url=submission.audio_url,
        transcription=signals.transcription.text if signals.transcription else None,
        ai_detection_result=image.model_dump(mode="json") if image else None,
        ai_confidence=clamp_confidence(image.confidence) if image else None,
        language=language or Language.ENGLISH,
    )
