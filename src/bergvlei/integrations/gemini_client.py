"""Async Gemini client for single-prompt text generation.

Uses httpx.AsyncClient against the Generative Language REST API
(``/v1beta/models/{model}:generateContent``).  Only the first candidate's
first text part is returned; prompt building and response parsing live in
:mod:`bergvlei.services.ai_service`.
"""

from __future__ import annotations

import httpx

from bergvlei.config import settings


# ---------------------------------------------------------------------------
# Custom exceptions
# ---------------------------------------------------------------------------

class GeminiError(Exception):
    """Base class for Gemini client failures."""


class GeminiNotConfiguredError(GeminiError):
    """Raised when no API key is configured."""


class GeminiTimeoutError(GeminiError):
    """Raised when a call exceeds its time budget."""


class GeminiConnectionError(GeminiError):
    """Raised when the API is unreachable or answers with an HTTP error."""


class GeminiMalformedResponseError(GeminiError):
    """Raised when the response carries no usable text."""


# ---------------------------------------------------------------------------
# GeminiClient
# ---------------------------------------------------------------------------

class GeminiClient:
    """Async client for the Gemini generateContent endpoint."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
        timeout: float = 30.0,
    ):
        self.api_key = api_key if api_key is not None else settings.GEMINI_API_KEY
        self.model = model or settings.GEMINI_MODEL
        self.base_url = (base_url or settings.GEMINI_URL).rstrip("/")
        self.timeout = timeout

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def generate_text(self, prompt: str) -> str:
        """Send *prompt* and return the stripped response text.

        Raises:
            GeminiNotConfiguredError: when no API key is set.
            GeminiTimeoutError: on request timeout.
            GeminiConnectionError: on connection failure or non-2xx status.
            GeminiMalformedResponseError: on unparseable response.
        """
        if not self.is_configured:
            raise GeminiNotConfiguredError("Gemini API key not configured")

        payload = {"contents": [{"parts": [{"text": prompt}]}]}

        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout),
            ) as client:
                response = await client.post(
                    f"/v1beta/models/{self.model}:generateContent",
                    params={"key": self.api_key},
                    json=payload,
                )
                response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise GeminiTimeoutError(
                f"Gemini request timed out after {self.timeout}s"
            ) from exc
        except httpx.HTTPStatusError as exc:
            raise GeminiConnectionError(
                f"Gemini returned HTTP {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise GeminiConnectionError(
                f"Cannot connect to Gemini at {self.base_url}"
            ) from exc

        try:
            data = response.json()
        except ValueError as exc:
            raise GeminiMalformedResponseError("Response body is not JSON") from exc
        return self._parse_response(data)

    @staticmethod
    def _parse_response(data: dict) -> str:
        """Extract ``candidates[0].content.parts[0].text``."""
        candidates = data.get("candidates")
        if not isinstance(candidates, list) or not candidates:
            raise GeminiMalformedResponseError("Response has no candidates")

        content = candidates[0].get("content")
        if not isinstance(content, dict):
            raise GeminiMalformedResponseError("Candidate missing 'content'")

        parts = content.get("parts")
        if not isinstance(parts, list) or not parts:
            raise GeminiMalformedResponseError("Candidate content has no parts")

        text = parts[0].get("text")
        if not isinstance(text, str) or not text.strip():
            raise GeminiMalformedResponseError("Candidate part has no text")
        return text.strip()
