import asyncio

import pytest

from civic_issues.ai_client import OpenAIIssueService
from civic_issues.errors import ExternalServiceError
from civic_issues.models.issue import IssueType, Priority


def service_replying(reply):
    service = OpenAIIssueService(api_key="test-key")

    async def fake_chat_json(operation, messages, **kwargs):
        return reply

    service._chat_json = fake_chat_json
    return service


def test_image_reply_is_normalised():
    service = service_replying({
        "issueType": "Pothole",
        "confidence": 1.7,
        "description": "Deep pothole",
        "severity": "HIGH",
        "suggestedDepartment": "Public Works",
    })
    detection = asyncio.run(service.classify_image(b"img"))

    assert detection.issue_type == IssueType.POTHOLE
    assert detection.severity == Priority.HIGH
    assert detection.confidence == 1.0
    assert detection.suggested_department == "Public Works"


def test_unknown_values_become_absent():
    service = service_replying({"issueType": "volcano", "confidence": "very", "severity": "urgent"})
    detection = asyncio.run(service.classify_image(b"img"))

    assert detection.issue_type is None
    assert detection.severity is None
    assert detection.confidence == 0.0
    assert detection.description == "Issue detected in image"


def test_extraction_falls_back_to_input_text():
    service = service_replying({"issueType": "garbage", "location": "", "priority": "low"})
    extraction = asyncio.run(service.extract_issue_text("kachra near the market", "hi"))

    assert extraction.issue_type == IssueType.GARBAGE
    assert extraction.location is None
    assert extraction.description == "kachra near the market"
    assert extraction.priority == Priority.LOW


def test_missing_api_key_raises_external_error(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    service = OpenAIIssueService()

    with pytest.raises(ExternalServiceError):
        asyncio.run(service.extract_issue_text("pothole"))
