"""
Scoring oracle adapter.

The oracle is an LLM agent that grades a waste photo against the category
the user chose. Its reply is free text wrapping a JSON object; the object is
decoded through ``_AgentPayload`` here so nothing malformed leaks past the
adapter boundary.
"""

from __future__ import annotations

import json
import time
from abc import ABC, abstractmethod
from typing import Any

import httpx
import structlog
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from wastewise.errors import UpstreamError

logger = structlog.get_logger()


class OracleVerdict(BaseModel):
    """Decoded oracle result. ``score`` is already zeroed for a wrong guess."""

    detected_category: str
    confidence: float = Field(ge=0.0, le=1.0)
    is_match: bool
    score: int = Field(ge=0)
    analysis_text: str = ""
    suggestions: list[str] = []
    processing_time_ms: int = 0


class _AgentDetail(BaseModel):
    model_config = ConfigDict(extra="ignore")

    suggestions: list[str] = []
    detailedAnalysis: str | None = None  # noqa: N815


class _AgentPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    aiDetectedCategory: str  # noqa: N815
    aiConfidence: float = Field(ge=0.0, le=1.0)  # noqa: N815
    isCorrect: bool  # noqa: N815
    score: int = Field(default=0, ge=0)
    aiAnalysis: str | None = None  # noqa: N815
    aiResponse: _AgentDetail = _AgentDetail()  # noqa: N815
    processingTimeMs: int = 0  # noqa: N815


def _extract_json_object(text: str) -> dict[str, Any]:
    """Pull the outermost ``{...}`` out of an agent's text reply."""
    cleaned = text.replace('\\"', '"').strip()
    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start == -1 or end <= start:
        raise UpstreamError("Oracle reply contains no JSON object")
    try:
        data = json.loads(cleaned[start : end + 1])
    except json.JSONDecodeError as e:
        raise UpstreamError(f"Oracle reply is not valid JSON: {e.msg}") from e
    if not isinstance(data, dict):
        raise UpstreamError("Oracle reply JSON is not an object")
    return data


def decode_agent_reply(reply: Any) -> OracleVerdict:  # noqa: ANN401
    """Decode a raw agent response (``{"text": "..."}``) into a verdict.

    Raises UpstreamError on any shape mismatch.
    """
    if not isinstance(reply, dict) or not isinstance(reply.get("text"), str):
        raise UpstreamError("Oracle response missing 'text' field")

    data = _extract_json_object(reply["text"])
    try:
        payload = _AgentPayload.model_validate(data)
    except PydanticValidationError as e:
        raise UpstreamError(
            "Oracle reply failed schema validation",
            errors=[err["loc"] for err in e.errors()],
        ) from e

    return OracleVerdict(
        detected_category=payload.aiDetectedCategory,
        confidence=payload.aiConfidence,
        is_match=payload.isCorrect,
        score=payload.score if payload.isCorrect else 0,
        analysis_text=payload.aiAnalysis or payload.aiResponse.detailedAnalysis or "",
        suggestions=payload.aiResponse.suggestions,
        processing_time_ms=payload.processingTimeMs,
    )


class ScoringOracle(ABC):
    """Grades one image against an expected category."""

    @abstractmethod
    async def score(self, image_url: str, expected_category: str, user_location: str) -> OracleVerdict:
        """Single best-effort call. Raises UpstreamError on failure or timeout."""
        ...


class HttpScoringOracle(ScoringOracle):
    """Calls the classification agent over HTTP."""

    def __init__(self, url: str, timeout: float = 30.0, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.url = url
        self.timeout = timeout
        self._transport = transport

    async def score(self, image_url: str, expected_category: str, user_location: str) -> OracleVerdict:
        """POST one user message to the agent and decode its reply."""
        started = time.monotonic()
        content = f"imageUrl={image_url}, expectedCategory={expected_category}, userLocation={user_location}"
        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self.timeout) as client:
                response = await client.post(
                    self.url,
                    json={"messages": [{"role": "user", "content": content}]},
                )
                response.raise_for_status()
                reply = response.json()
        except httpx.TimeoutException as e:
            logger.warning("oracle_timeout", url=self.url, timeout=self.timeout)
            raise UpstreamError("Scoring oracle timed out") from e
        except httpx.HTTPStatusError as e:
            logger.warning("oracle_http_error", url=self.url, status=e.response.status_code)
            raise UpstreamError(f"Scoring oracle returned HTTP {e.response.status_code}") from e
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("oracle_request_failed", url=self.url, error=str(e))
            raise UpstreamError(f"Scoring oracle request failed: {e}") from e

        verdict = decode_agent_reply(reply)
        logger.info(
            "oracle_scored",
            detected=verdict.detected_category,
            match=verdict.is_match,
            score=verdict.score,
            elapsed_ms=int((time.monotonic() - started) * 1000),
        )
        return verdict
