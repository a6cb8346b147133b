"""
AI collaborator for issue intake: image classification, audio transcription
and issue extraction from free text.

The service is injected into the API through ``main.get_ai_service`` so tests
can swap in a fake. Every failure is raised as ``ExternalServiceError``.
"""

import base64
import json
import logging
import math
import os
from typing import Any, Dict, List, Optional, Protocol, Type

from openai import AsyncOpenAI, OpenAIError

from .errors import ExternalServiceError
from .models.issue import (
    ImageDetection,
    IssueType,
    Language,
    Priority,
    Transcription,
    VoiceExtraction,
)

logger = logging.getLogger(__name__)

ISSUE_TYPES = "|".join(t.value for t in IssueType)
PRIORITIES = "|".join(p.value for p in Priority)
LANGUAGES = "|".join(lang.value for lang in Language)

IMAGE_SYSTEM_PROMPT = (
    "You classify photos of civic problems for a municipal reporting service. "
    "Respond with JSON in exactly this shape: {"
    f'"issueType": "{ISSUE_TYPES}", '
    '"confidence": number between 0 and 1, '
    '"description": "short description of the problem", '
    f'"severity": "{PRIORITIES}", '
    '"suggestedDepartment": "name of the department that should handle it"}'
)

LANGUAGE_SYSTEM_PROMPT = (
    "Detect the language of the user's text. "
    f'Respond with JSON: {{"language": "{LANGUAGES}"}}. '
    'Use "en" for English, "hi" for Hindi, "mr" for Marathi.'
)

EXTRACTION_SYSTEM_PROMPT = (
    "Extract civic issue details from a citizen's spoken report. The text may "
    "be in English, Hindi or Marathi. Respond with JSON: {"
    f'"issueType": "{ISSUE_TYPES}", '
    '"location": "location if one is mentioned", '
    '"description": "cleaned up description in English", '
    f'"priority": "{PRIORITIES}"}}'
)


class IssueAIService(Protocol):
    async def classify_image(self, image: bytes, content_type: str = "image/jpeg") -> ImageDetection:
        ...

    async def transcribe_audio(self, audio: bytes, filename: str = "audio.webm") -> Transcription:
        ...

    async def extract_issue_text(self, text: str, language: str = "en") -> VoiceExtraction:
        ...


def _enum_or_none(enum_cls: Type, value: Any):
    if isinstance(value, str):
        try:
            return enum_cls(value.strip().lower())
        except ValueError:
            return None
    return None


def _clamp_confidence(value: Any) -> float:
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(confidence):
        return 0.0
    return max(0.0, min(1.0, confidence))


class OpenAIIssueService:
    """
    OpenAI-backed implementation of ``IssueAIService``.

    The client is created lazily so a missing OPENAI_API_KEY only fails the
    AI calls themselves, not application start-up.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        transcribe_model: Optional[str] = None,
        timeout: float = 30.0,
    ):
        self.api_key = api_key or os.getenv("OPENAI_API_KEY")
        self.model = model or os.getenv("OPENAI_MODEL", "gpt-4o-mini")
        self.transcribe_model = transcribe_model or os.getenv("OPENAI_TRANSCRIBE_MODEL", "whisper-1")
        self.timeout = timeout
        self._client: Optional[AsyncOpenAI] = None

    def _get_client(self, operation: str) -> AsyncOpenAI:
        if self._client is not None:
            return self._client
        if not self.api_key:
            raise ExternalServiceError(operation, "OPENAI_API_KEY is not configured")
        self._client = AsyncOpenAI(api_key=self.api_key, timeout=self.timeout)
        return self._client

    async def _chat_json(self, operation: str, messages: List[Dict[str, Any]], **kwargs) -> Dict[str, Any]:
        client = self._get_client(operation)
        try:
            response = await client.chat.completions.create(
                model=self.model,
                messages=messages,
                response_format={"type": "json_object"},
                **kwargs,
            )
            content = response.choices[0].message.content or "{}"
            data = json.loads(content)
        except (OpenAIError, json.JSONDecodeError, IndexError) as exc:
            raise ExternalServiceError(operation, str(exc)) from exc
        if not isinstance(data, dict):
            raise ExternalServiceError(operation, "model reply was not a JSON object")
        return data

    async def classify_image(self, image: bytes, content_type: str = "image/jpeg") -> ImageDetection:
        encoded = base64.b64encode(image).decode("ascii")
        data = await self._chat_json(
            "classify_image",
            [
                {"role": "system", "content": IMAGE_SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": [
                        {
                            "type": "text",
                            "text": "Classify the civic problem in this photo, rate its severity and describe it.",
                        },
                        {
                            "type": "image_url",
                            "image_url": {"url": f"data:{content_type};base64,{encoded}"},
                        },
                    ],
                },
            ],
            max_tokens=500,
        )
        detection = ImageDetection(
            issue_type=_enum_or_none(IssueType, data.get("issueType")),
            confidence=_clamp_confidence(data.get("confidence")),
            description=str(data.get("description") or "Issue detected in image"),
            severity=_enum_or_none(Priority, data.get("severity")),
            suggested_department=str(data.get("suggestedDepartment") or ""),
        )
        logger.info(
            "Image classified as %s (confidence %.2f)",
            detection.issue_type.value if detection.issue_type else "unknown",
            detection.confidence,
        )
        return detection

    async def transcribe_audio(self, audio: bytes, filename: str = "audio.webm") -> Transcription:
        client = self._get_client("transcribe_audio")
        try:
            result = await client.audio.transcriptions.create(
                model=self.transcribe_model,
                file=(filename, audio),
            )
        except OpenAIError as exc:
            raise ExternalServiceError("transcribe_audio", str(exc)) from exc

        text = (getattr(result, "text", "") or "").strip()
        if not text:
            raise ExternalServiceError("transcribe_audio", "transcription was empty")

        try:
            detected = await self._chat_json(
                "detect_language",
                [
                    {"role": "system", "content": LANGUAGE_SYSTEM_PROMPT},
                    {"role": "user", "content": text},
                ],
            )
            language = _enum_or_none(Language, detected.get("language")) or Language.ENGLISH
        except ExternalServiceError as exc:
            logger.warning("Language detection failed, assuming English: %s", exc)
            language = Language.ENGLISH

        return Transcription(text=text, language=language.value)

    async def extract_issue_text(self, text: str, language: str = "en") -> VoiceExtraction:
        data = await self._chat_json(
            "extract_issue_text",
            [
                {"role": "system", "content": EXTRACTION_SYSTEM_PROMPT},
                {"role": "user", "content": f"Language: {language}\nText: {text}"},
            ],
        )
        location = data.get("location")
        return VoiceExtraction(
            issue_type=_enum_or_none(IssueType, data.get("issueType")),
            location=str(location) if location else None,
            description=str(data.get("description") or text),
            priority=_enum_or_none(Priority, data.get("priority")),
        )
