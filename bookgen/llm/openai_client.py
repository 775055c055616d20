"""OpenAI HTTP client utilities for language-model and image-generation calls.

Responsibilities:
- Send minimal chat-completions and image requests to OpenAI's REST API.
- Normalize response extraction so backends receive plain text or image bytes.
- Raise classified provider exceptions that the orchestrator records as
  transient chunk failures.
"""

from __future__ import annotations

import base64
import binascii
import json
from pathlib import Path
import re
import socket
from typing import Any

import requests

from ..errors import TransientProviderError


class OpenAIProviderError(TransientProviderError):
    """Raised when an OpenAI provider request fails or returns malformed output."""

    def __init__(
        self,
        message: str,
        *,
        failure_kind: str = "unknown",
        status_code: int | None = None,
        provider_code: str | None = None,
    ) -> None:
        super().__init__(message, failure_kind=failure_kind, status_code=status_code)
        self.provider_code = provider_code


class _OpenAIBaseClient:
    """Shared OpenAI HTTP settings and helpers used by capability-specific clients."""

    _MAX_PROVIDER_MESSAGE_CHARS = 180

    def __init__(
        self,
        *,
        api_key: str | None,
        base_url: str = "https://api.openai.com/v1",
        timeout_seconds: float = 120.0,
    ) -> None:
        self.api_key = api_key.strip() if isinstance(api_key, str) else ""
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds

    def _require_api_key(self) -> None:
        if not self.api_key:
            raise OpenAIProviderError(
                "Missing OpenAI API key. Set `OPENAI_API_KEY` or `api_key` in the config file.",
                failure_kind="invalid_api_key",
            )

    def _post_bytes(
        self,
        *,
        endpoint_path: str,
        json_payload: dict[str, Any] | None = None,
        form_data: dict[str, Any] | None = None,
        files: dict[str, Any] | None = None,
    ) -> bytes:
        """POST to OpenAI and return raw response bytes, mapping failures consistently."""

        endpoint = f"{self.base_url}{endpoint_path}"
        headers = {"Authorization": f"Bearer {self.api_key}"}
        if json_payload is not None:
            headers["Content-Type"] = "application/json"
        try:
            response = requests.post(
                endpoint,
                headers=headers,
                json=json_payload,
                data=form_data,
                files=files,
                timeout=self.timeout_seconds,
            )
            response.raise_for_status()
            response_bytes = bytes(response.content)
        except requests.HTTPError as exc:
            raise self._http_error_to_provider_error(exc) from exc
        except requests.RequestException as exc:
            failure_kind = self._classify_transport_failure(exc)
            if failure_kind == "timeout":
                detail = "OpenAI request timed out."
            else:
                detail = f"OpenAI request transport error: {self._short_message(str(exc))}"
            raise OpenAIProviderError(detail, failure_kind=failure_kind) from exc
        except TimeoutError as exc:
            raise OpenAIProviderError("OpenAI request timed out.", failure_kind="timeout") from exc

        if not response_bytes:
            raise OpenAIProviderError("OpenAI response is empty.")
        return response_bytes

    def _post_json(self, **kwargs: Any) -> dict[str, Any]:
        """POST to OpenAI and decode a JSON object response."""

        raw_payload = self._post_bytes(**kwargs).decode("utf-8", errors="replace")
        try:
            payload = json.loads(raw_payload)
        except json.JSONDecodeError as exc:
            raise OpenAIProviderError("OpenAI returned invalid JSON payload.") from exc
        if not isinstance(payload, dict):
            raise OpenAIProviderError("OpenAI response is not a JSON object.")
        return payload

    @staticmethod
    def _decode_error_body(exc: requests.HTTPError) -> str:
        response = exc.response
        if response is None:
            return ""
        return bytes(response.content or b"").decode("utf-8", errors="replace").strip()

    @classmethod
    def _redact_sensitive_tokens(cls, text: str) -> str:
        """Redact API-key-like tokens from provider error content."""

        redacted = re.sub(r"\bsk-[A-Za-z0-9_-]{8,}\b", "[redacted-key]", text)
        redacted = re.sub(
            r"(?i)bearer\s+[A-Za-z0-9._-]{12,}",
            "Bearer [redacted-token]",
            redacted,
        )
        return redacted

    @classmethod
    def _short_message(cls, text: str) -> str:
        compact = " ".join(text.split())
        if len(compact) <= cls._MAX_PROVIDER_MESSAGE_CHARS:
            return compact
        return f"{compact[: cls._MAX_PROVIDER_MESSAGE_CHARS - 1]}..."

    @classmethod
    def _extract_provider_message(cls, body: str) -> tuple[str, str | None]:
        """Extract a concise provider-facing message and optional provider error code."""

        if not body:
            return "", None

        try:
            payload = json.loads(body)
        except json.JSONDecodeError:
            return cls._short_message(cls._redact_sensitive_tokens(body)), None

        provider_code: str | None = None
        message: str | None = None
        if isinstance(payload, dict):
            error_payload = payload.get("error")
            if isinstance(error_payload, dict):
                code_value = error_payload.get("code")
                if isinstance(code_value, str) and code_value.strip():
                    provider_code = code_value.strip()
                message_value = error_payload.get("message")
                if isinstance(message_value, str) and message_value.strip():
                    message = message_value.strip()

        if message is None:
            message = body
        return cls._short_message(cls._redact_sensitive_tokens(message)), provider_code

    @staticmethod
    def _classify_http_failure(
        status_code: int,
        provider_message: str,
        provider_code: str | None,
    ) -> str:
        """Classify OpenAI HTTP errors into deterministic diagnostic kinds."""

        message_lower = provider_message.lower()
        normalized_code = provider_code.lower() if provider_code is not None else ""

        if status_code == 401 or "api key" in message_lower:
            return "invalid_api_key"
        if normalized_code == "insufficient_quota" or (
            status_code == 429 and "quota" in message_lower
        ):
            return "insufficient_quota"
        if normalized_code == "model_not_found" or (
            "model" in message_lower
            and any(phrase in message_lower for phrase in ("not found", "does not exist", "invalid"))
        ):
            return "invalid_model"
        if status_code in {408, 504} or "timeout" in message_lower or "timed out" in message_lower:
            return "timeout"
        return "http_error"

    @staticmethod
    def _classify_transport_failure(reason: object) -> str:
        if isinstance(reason, TimeoutError | socket.timeout | requests.Timeout):
            return "timeout"
        return "transport"

    @classmethod
    def _http_error_to_provider_error(cls, exc: requests.HTTPError) -> OpenAIProviderError:
        status_code = exc.response.status_code if exc.response is not None else 0
        body = cls._decode_error_body(exc)
        provider_message, provider_code = cls._extract_provider_message(body)
        failure_kind = cls._classify_http_failure(status_code, provider_message, provider_code)

        headline = {
            "invalid_api_key": "OpenAI authentication failed",
            "insufficient_quota": "OpenAI quota is insufficient for this request",
            "invalid_model": "OpenAI rejected the selected model",
            "timeout": "OpenAI request timed out",
        }.get(failure_kind, "OpenAI request failed")

        if provider_message:
            detail = f"{headline} (HTTP {status_code}): {provider_message}"
        else:
            detail = f"{headline} (HTTP {status_code})."

        return OpenAIProviderError(
            detail,
            failure_kind=failure_kind,
            status_code=status_code,
            provider_code=provider_code,
        )


class OpenAIChatClient(_OpenAIBaseClient):
    """Minimal requests-based OpenAI chat-completions HTTP client."""

    def chat_completion_text(
        self,
        *,
        model: str,
        system_prompt: str,
        messages: list[dict[str, str]],
        temperature: float = 0.7,
    ) -> str:
        """Return the first assistant text response from a chat-completions request."""

        self._require_api_key()

        payload = {
            "model": model,
            "messages": [{"role": "system", "content": system_prompt}, *messages],
            "temperature": temperature,
        }
        return self._extract_message_text(
            self._post_json(endpoint_path="/chat/completions", json_payload=payload)
        )

    @staticmethod
    def _extract_message_text(payload: dict[str, Any]) -> str:
        choices = payload.get("choices")
        if not isinstance(choices, list) or not choices:
            raise OpenAIProviderError("OpenAI response missing non-empty `choices` list.")

        first_choice = choices[0]
        if not isinstance(first_choice, dict):
            raise OpenAIProviderError("OpenAI response `choices[0]` is malformed.")

        message = first_choice.get("message")
        if not isinstance(message, dict):
            raise OpenAIProviderError("OpenAI response missing `choices[0].message` object.")

        text = OpenAIChatClient._message_content_to_text(message.get("content"))
        normalized = text.strip()
        if not normalized:
            raise OpenAIProviderError("OpenAI response message content is empty.")
        return normalized

    @staticmethod
    def _message_content_to_text(content: Any) -> str:
        """Convert OpenAI message content variants into a plain text string."""

        if isinstance(content, str):
            return content
        if isinstance(content, list):
            parts: list[str] = []
            for item in content:
                if not isinstance(item, dict):
                    continue
                if item.get("type") == "text" and isinstance(item.get("text"), str):
                    parts.append(item["text"])
            return "".join(parts)
        return ""


class OpenAIImageClient(_OpenAIBaseClient):
    """Minimal requests-based OpenAI image-generation HTTP client."""

    def generate_images(
        self,
        *,
        model: str,
        prompt: str,
        count: int,
        size: str,
    ) -> list[bytes]:
        """Return decoded image bytes from OpenAI `/images/generations`."""

        self._require_api_key()
        payload = {"model": model, "prompt": prompt, "n": count, "size": size}
        return self._decode_images(
            self._post_json(endpoint_path="/images/generations", json_payload=payload)
        )

    def edit_images(
        self,
        *,
        model: str,
        prompt: str,
        count: int,
        size: str,
        reference_image: Path,
    ) -> list[bytes]:
        """Return decoded image bytes from OpenAI `/images/edits` guided by a reference."""

        self._require_api_key()
        form_data = {"model": model, "prompt": prompt, "n": str(count), "size": size}
        with reference_image.open("rb") as handle:
            files = {"image": (reference_image.name, handle, "image/png")}
            payload = self._post_json(
                endpoint_path="/images/edits",
                form_data=form_data,
                files=files,
            )
        return self._decode_images(payload)

    def _decode_images(self, payload: dict[str, Any]) -> list[bytes]:
        data = payload.get("data")
        if not isinstance(data, list) or not data:
            raise OpenAIProviderError("OpenAI image response missing non-empty `data` list.")

        images: list[bytes] = []
        for item in data:
            if not isinstance(item, dict):
                continue
            encoded = item.get("b64_json")
            if isinstance(encoded, str) and encoded:
                try:
                    images.append(base64.b64decode(encoded, validate=True))
                except (binascii.Error, ValueError) as exc:
                    raise OpenAIProviderError("OpenAI image payload is not valid base64.") from exc
                continue
            url = item.get("url")
            if isinstance(url, str) and url:
                images.append(self._download(url))
        if not images:
            raise OpenAIProviderError("OpenAI image response contained no usable images.")
        return images

    def _download(self, url: str) -> bytes:
        try:
            response = requests.get(url, timeout=self.timeout_seconds)
            response.raise_for_status()
        except requests.HTTPError as exc:
            raise self._http_error_to_provider_error(exc) from exc
        except requests.RequestException as exc:
            raise OpenAIProviderError(
                f"OpenAI image download failed: {self._short_message(str(exc))}",
                failure_kind=self._classify_transport_failure(exc),
            ) from exc
        return bytes(response.content)
