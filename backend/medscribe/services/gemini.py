"""Client for the Gemini ``generateContent`` REST endpoint.

``GeminiClient.transcribe`` turns image bytes into a validated structured
transcript or raises one of the classified ``TranscriptionError`` subclasses.
Every failure mode is constructed explicitly where it is detected:

* missing/placeholder credentials        -> ``ConfigError``
* unsupported MIME type / empty payload  -> ``FileError`` (before any request)
* connection problems                    -> ``NetworkError``
* HTTP timeouts                          -> ``TranscriptionTimeout``
* non-2xx responses, blocked content     -> ``ApiError`` with a reason
* unusable or schema-violating output    -> ``ParseError``
"""

from __future__ import annotations

import base64
import json
import logging
import time
from typing import Any, Optional

import httpx

from medscribe.config import settings
from medscribe.errors import (
    ApiError,
    ApiErrorReason,
    ConfigError,
    FileError,
    NetworkError,
    ParseError,
    TranscriptionTimeout,
)
from medscribe.logging_config import TRANSCRIPTION_LOGGER
from medscribe.schemas.transcription import RESPONSE_SCHEMA, count_data_fields, validate_structured_data
from medscribe.utils.images import ALLOWED_IMAGE_TYPES, normalize_mime_type

logger = logging.getLogger(f"{TRANSCRIPTION_LOGGER}.gemini")

PLACEHOLDER_API_KEY = "your-api-key-here"

TRANSCRIPTION_PROMPT = """\
You are a highly skilled medical transcription specialist. Your task is to \
accurately transcribe handwritten medical documents, prescriptions and clinical \
notes into a structured digital format.

INSTRUCTIONS:
1. Transcribe all visible text exactly as written, keeping medical terminology and abbreviations.
2. If a passage is unclear or illegible, write "illegible" instead of guessing.
3. Pay special attention to drug names, dosages, frequencies, routes and durations.
4. Keep every diagnosis, test result and clinical observation.
5. Include the doctor's name and signature if they are visible.
6. Leave lists empty when the document contains no entries of that kind.

QUALITY REQUIREMENTS:
- Accuracy is paramount: medical information must be precise.
- Every required field must be present; use an empty string when a value cannot be read.
- Keep medical terminology and formatting consistent.

Transcribe the handwritten medical document in the image and structure the \
information according to the provided JSON schema."""

GENERATION_CONFIG: dict[str, Any] = {
    "responseMimeType": "application/json",
    "responseSchema": RESPONSE_SCHEMA,
    # Low randomness: transcription favours determinism over creativity.
    "temperature": 0.1,
    "topP": 0.8,
    "topK": 40,
    "maxOutputTokens": 8192,
}

_BLOCKED_FINISH_REASONS = {"SAFETY", "PROHIBITED_CONTENT", "BLOCKLIST", "SPII", "RECITATION"}


class GeminiClient:
    """Thin synchronous wrapper around a single ``generateContent`` call."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.api_key = settings.GEMINI_API_KEY if api_key is None else api_key
        if not self.api_key or self.api_key == PLACEHOLDER_API_KEY:
            raise ConfigError(
                "Gemini API key is not configured or still using the placeholder value. "
                "Set GEMINI_API_KEY in the environment."
            )
        self.model = model or settings.GEMINI_MODEL
        self.base_url = (base_url or settings.GEMINI_BASE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.GEMINI_TIMEOUT

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/models/{self.model}:generateContent"

    def build_payload(self, image_bytes: bytes, mime_type: str) -> dict[str, Any]:
        return {
            "contents": [
                {
                    "role": "user",
                    "parts": [
                        {"text": TRANSCRIPTION_PROMPT},
                        {
                            "inline_data": {
                                "mime_type": mime_type,
                                "data": base64.b64encode(image_bytes).decode("ascii"),
                            }
                        },
                    ],
                }
            ],
            "generationConfig": GENERATION_CONFIG,
        }

    def transcribe(self, image_bytes: bytes, mime_type: str, transcript_id: Optional[str] = None) -> dict[str, Any]:
        """
        Transcribe one document image.

        Args:
            image_bytes: Raw image content.
            mime_type: MIME type of ``image_bytes``; must be in the allow-list.
            transcript_id: Only used to correlate log lines.

        Returns:
            The validated structured transcript.
        """
        if not image_bytes:
            raise FileError("Image payload is empty")
        canonical = normalize_mime_type(mime_type)
        if canonical not in ALLOWED_IMAGE_TYPES:
            raise FileError(f"Unsupported image format: {mime_type}")

        started = time.monotonic()
        logger.info("Starting Gemini API transcription transcript_id=%s model=%s", transcript_id, self.model)

        payload = self.build_payload(image_bytes, canonical)
        headers = {"x-goog-api-key": self.api_key, "Content-Type": "application/json"}

        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(self.endpoint, json=payload, headers=headers)
                response.raise_for_status()
                body = response.json()
        except httpx.TimeoutException as exc:
            logger.error("Gemini request timed out transcript_id=%s: %s", transcript_id, exc)
            raise TranscriptionTimeout(f"Gemini request timed out after {self.timeout}s") from exc
        except httpx.HTTPStatusError as exc:
            error = self._api_error(exc.response)
            logger.error(
                "Gemini API error transcript_id=%s status=%s reason=%s: %s",
                transcript_id, error.status_code, error.reason.value, error,
            )
            raise error from exc
        except httpx.RequestError as exc:
            logger.error("Network connection error transcript_id=%s: %s", transcript_id, exc)
            raise NetworkError(f"Connection to the Gemini API failed: {exc}") from exc
        except ValueError as exc:
            logger.error("Gemini returned a non-JSON body transcript_id=%s: %s", transcript_id, exc)
            raise ParseError("Gemini response body is not valid JSON") from exc

        data = self.parse_response(body)
        logger.info(
            "Gemini API transcription completed transcript_id=%s processing_time_seconds=%.2f fields=%s",
            transcript_id, time.monotonic() - started, count_data_fields(data),
        )
        return data

    def parse_response(self, body: Any) -> dict[str, Any]:
        """Extract and validate the structured transcript from a response body."""
        if not isinstance(body, dict):
            raise ParseError("Empty response from Gemini API")

        feedback = _expect(body.get("promptFeedback") or {}, dict, "promptFeedback")
        block_reason = feedback.get("blockReason")
        if block_reason:
            raise ApiError(f"Prompt blocked: {block_reason}", reason=ApiErrorReason.SAFETY)

        candidates = _expect(body.get("candidates") or [], list, "candidates")
        if not candidates:
            raise ParseError("Empty response from Gemini API")

        candidate = _expect(candidates[0], dict, "candidates[0]")
        finish_reason = candidate.get("finishReason")
        if finish_reason in _BLOCKED_FINISH_REASONS:
            raise ApiError(f"Response blocked: {finish_reason}", reason=ApiErrorReason.SAFETY)

        content = _expect(candidate.get("content") or {}, dict, "candidates[0].content")
        parts = _expect(content.get("parts") or [], list, "candidates[0].content.parts")
        texts = []
        for index, part in enumerate(parts):
            part = _expect(part, dict, f"candidates[0].content.parts[{index}]")
            if part.get("thought"):
                continue
            texts.append(_expect(part.get("text", ""), str, f"candidates[0].content.parts[{index}].text"))
        text = "".join(texts)
        if not text.strip():
            raise ParseError(f"Gemini response contained no text (finishReason={finish_reason})")

        try:
            raw = json.loads(_strip_code_fence(text))
        except ValueError as exc:
            logger.error("Failed to parse Gemini response: %s", text[:500])
            raise ParseError(f"Failed to parse transcription response: {exc}") from exc

        # The service was asked for schema-constrained output; check it anyway.
        return validate_structured_data(raw)

    @staticmethod
    def _api_error(response: httpx.Response) -> ApiError:
        status_code = response.status_code
        message, status_name, reasons = "", "", set()
        try:
            error = (json.loads(response.text) or {}).get("error") or {}
            message = str(error.get("message") or "")
            status_name = str(error.get("status") or "")
            reasons = {str(d.get("reason")) for d in error.get("details") or [] if isinstance(d, dict)}
        except (TypeError, ValueError, AttributeError):
            pass

        if status_code == 429 or status_name == "RESOURCE_EXHAUSTED":
            reason = ApiErrorReason.QUOTA
        elif status_code in (401, 403) or status_name in ("UNAUTHENTICATED", "PERMISSION_DENIED") or "API_KEY_INVALID" in reasons:
            reason = ApiErrorReason.AUTH
        elif status_code == 400 and ("image" in message.lower() or "mime" in message.lower()):
            reason = ApiErrorReason.INVALID_IMAGE
        elif status_code >= 500:
            reason = ApiErrorReason.UNAVAILABLE
        else:
            reason = ApiErrorReason.SERVICE
        return ApiError(message or f"Gemini API returned HTTP {status_code}", reason=reason, status_code=status_code)


def _expect(value: Any, expected: type, location: str) -> Any:
    """Return *value* if it has the *expected* type, else raise ``ParseError``."""
    if not isinstance(value, expected):
        raise ParseError(
            f"Malformed Gemini response: {location} is {type(value).__name__}, expected {expected.__name__}"
        )
    return value


def _strip_code_fence(text: str) -> str:
    stripped = text.strip()
    if stripped.startswith("```"):
        stripped = stripped.split("\n", 1)[1] if "\n" in stripped else ""
        if stripped.rstrip().endswith("```"):
            stripped = stripped.rstrip()[:-3]
    return stripped
