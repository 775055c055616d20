"""Unit tests for OpenAI HTTP clients, backends, and provider factory wiring."""

from __future__ import annotations

import asyncio
import base64
import json
from pathlib import Path

import pytest

from bookgen.config import ProviderSettings
from bookgen.llm import openai_client as openai_http
from bookgen.llm.backends import OpenAIChatBackend, OpenAIImageBackend
from bookgen.llm.openai_client import OpenAIChatClient, OpenAIImageClient, OpenAIProviderError
from bookgen.provider_factory import ProviderFactory


class _MockRequestsResponse:
    """Minimal requests response mock for HTTP transport patching."""

    def __init__(self, *, payload: bytes, status_code: int = 200) -> None:
        """Initialize response with raw payload bytes and HTTP status."""

        self.content = payload
        self.status_code = status_code

    def raise_for_status(self) -> None:
        """Raise HTTPError when the response status represents a failure."""

        if self.status_code >= 400:
            raise openai_http.requests.HTTPError(
                f"HTTP {self.status_code} error",
                response=self,
            )


def _json_response(payload: object, status_code: int = 200) -> _MockRequestsResponse:
    return _MockRequestsResponse(
        payload=json.dumps(payload).encode("utf-8"), status_code=status_code
    )


def test_chat_client_sends_system_prompt_first_and_returns_text(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Chat client should prepend the system message and return stripped text."""

    captured: dict[str, object] = {}

    def _mock_post(url: str, **kwargs: object) -> _MockRequestsResponse:
        """Capture request details and return a chat-completions payload."""

        captured["url"] = url
        captured.update(kwargs)
        return _json_response({"choices": [{"message": {"content": "  [1, 2]  "}}]})

    monkeypatch.setattr("bookgen.llm.openai_client.requests.post", _mock_post)

    client = OpenAIChatClient(api_key=" key ", base_url="https://example.test/v1/")
    text = client.chat_completion_text(
        model="gpt-4.1-mini",
        system_prompt="system",
        messages=[{"role": "user", "content": "hello"}],
    )

    assert text == "[1, 2]"
    assert captured["url"] == "https://example.test/v1/chat/completions"
    assert captured["headers"] == {
        "Authorization": "Bearer key",
        "Content-Type": "application/json",
    }
    payload = captured["json"]
    assert isinstance(payload, dict)
    assert payload["messages"] == [
        {"role": "system", "content": "system"},
        {"role": "user", "content": "hello"},
    ]


def test_chat_client_reads_list_content_parts(monkeypatch: pytest.MonkeyPatch) -> None:
    """Structured content parts should be concatenated into plain text."""

    def _mock_post(_url: str, **_kwargs: object) -> _MockRequestsResponse:
        return _json_response(
            {
                "choices": [
                    {
                        "message": {
                            "content": [
                                {"type": "text", "text": "Hello "},
                                {"type": "image", "url": "ignored"},
                                {"type": "text", "text": "world"},
                            ]
                        }
                    }
                ]
            }
        )

    monkeypatch.setattr("bookgen.llm.openai_client.requests.post", _mock_post)

    client = OpenAIChatClient(api_key="key")

    assert client.chat_completion_text(model="m", system_prompt="s", messages=[]) == "Hello world"


def test_chat_client_requires_api_key_before_any_request(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """A missing API key should fail fast without touching the network."""

    def _mock_post(_url: str, **_kwargs: object) -> _MockRequestsResponse:
        raise AssertionError("request must not be sent")

    monkeypatch.setattr("bookgen.llm.openai_client.requests.post", _mock_post)

    with pytest.raises(OpenAIProviderError, match="Missing OpenAI API key") as exc_info:
        OpenAIChatClient(api_key="  ").chat_completion_text(model="m", system_prompt="s", messages=[])

    assert exc_info.value.failure_kind == "invalid_api_key"


def test_openai_client_classifies_quota_failures_and_redacts_keys(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Quota failures should be classified and key-like tokens never echoed."""

    def _mock_post(_url: str, **_kwargs: object) -> _MockRequestsResponse:
        """Return a 429 quota error that leaks a key in its message."""

        return _json_response(
            {
                "error": {
                    "code": "insufficient_quota",
                    "message": "Quota exceeded for sk-abcdefghijklmnop.",
                }
            },
            status_code=429,
        )

    monkeypatch.setattr("bookgen.llm.openai_client.requests.post", _mock_post)

    with pytest.raises(OpenAIProviderError) as exc_info:
        OpenAIChatClient(api_key="key").chat_completion_text(
            model="m", system_prompt="s", messages=[]
        )

    error = exc_info.value
    assert error.failure_kind == "insufficient_quota"
    assert error.status_code == 429
    assert error.provider_code == "insufficient_quota"
    assert "sk-abcdefghijklmnop" not in str(error)
    assert "[redacted-key]" in str(error)


def test_openai_client_handles_http_error_with_undecodable_body(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Non-JSON error bodies should still produce a readable HTTP failure."""

    def _mock_post(_url: str, **_kwargs: object) -> _MockRequestsResponse:
        return _MockRequestsResponse(payload=b"\xff\xfe upstream exploded", status_code=502)

    monkeypatch.setattr("bookgen.llm.openai_client.requests.post", _mock_post)

    with pytest.raises(OpenAIProviderError, match=r"OpenAI request failed \(HTTP 502\)") as exc_info:
        OpenAIChatClient(api_key="key").chat_completion_text(
            model="m", system_prompt="s", messages=[]
        )

    assert exc_info.value.failure_kind == "http_error"


@pytest.mark.parametrize(
    ("raised", "failure_kind", "message"),
    [
        (openai_http.requests.Timeout("read timed out"), "timeout", "timed out"),
        (openai_http.requests.ConnectionError("network down"), "transport", "transport error"),
    ],
)
def test_openai_client_classifies_transport_errors(
    monkeypatch: pytest.MonkeyPatch,
    raised: Exception,
    failure_kind: str,
    message: str,
) -> None:
    """Transport failures should map to timeout or transport kinds."""

    def _mock_post(_url: str, **_kwargs: object) -> _MockRequestsResponse:
        raise raised

    monkeypatch.setattr("bookgen.llm.openai_client.requests.post", _mock_post)

    with pytest.raises(OpenAIProviderError, match=message) as exc_info:
        OpenAIChatClient(api_key="key").chat_completion_text(
            model="m", system_prompt="s", messages=[]
        )

    assert exc_info.value.failure_kind == failure_kind


def test_chat_client_rejects_empty_and_choiceless_responses(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Empty bodies and payloads without choices are provider failures."""

    responses = [
        _MockRequestsResponse(payload=b""),
        _json_response({"choices": []}),
        _json_response({"choices": [{"message": {"content": "   "}}]}),
    ]

    def _mock_post(_url: str, **_kwargs: object) -> _MockRequestsResponse:
        return responses.pop(0)

    monkeypatch.setattr("bookgen.llm.openai_client.requests.post", _mock_post)
    client = OpenAIChatClient(api_key="key")

    with pytest.raises(OpenAIProviderError, match="response is empty"):
        client.chat_completion_text(model="m", system_prompt="s", messages=[])
    with pytest.raises(OpenAIProviderError, match="non-empty `choices`"):
        client.chat_completion_text(model="m", system_prompt="s", messages=[])
    with pytest.raises(OpenAIProviderError, match="content is empty"):
        client.chat_completion_text(model="m", system_prompt="s", messages=[])


def test_image_client_decodes_base64_and_downloads_urls(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Image responses may mix inline base64 items and hosted URLs."""

    captured: dict[str, object] = {}

    def _mock_post(url: str, **kwargs: object) -> _MockRequestsResponse:
        captured["url"] = url
        captured["json"] = kwargs["json"]
        return _json_response(
            {
                "data": [
                    {"b64_json": base64.b64encode(b"first").decode("ascii")},
                    {"url": "https://cdn.example.test/second.png"},
                ]
            }
        )

    def _mock_get(url: str, **_kwargs: object) -> _MockRequestsResponse:
        assert url == "https://cdn.example.test/second.png"
        return _MockRequestsResponse(payload=b"second")

    monkeypatch.setattr("bookgen.llm.openai_client.requests.post", _mock_post)
    monkeypatch.setattr("bookgen.llm.openai_client.requests.get", _mock_get)

    images = OpenAIImageClient(api_key="key").generate_images(
        model="gpt-image-1", prompt="a cat", count=2, size="1024x1536"
    )

    assert images == [b"first", b"second"]
    assert str(captured["url"]).endswith("/images/generations")
    assert captured["json"] == {"model": "gpt-image-1", "prompt": "a cat", "n": 2, "size": "1024x1536"}


def test_image_client_rejects_response_without_images(monkeypatch: pytest.MonkeyPatch) -> None:
    """An empty `data` list should raise a provider error."""

    def _mock_post(_url: str, **_kwargs: object) -> _MockRequestsResponse:
        return _json_response({"data": []})

    monkeypatch.setattr("bookgen.llm.openai_client.requests.post", _mock_post)

    with pytest.raises(OpenAIProviderError, match="non-empty `data`"):
        OpenAIImageClient(api_key="key").generate_images(
            model="gpt-image-1", prompt="p", count=1, size="1024x1024"
        )


def test_image_backend_appends_negative_prompt_and_writes_files(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """The image backend should fold the negative prompt in and save one file per image."""

    captured: dict[str, object] = {}

    def _mock_generate(self: OpenAIImageClient, **kwargs: object) -> list[bytes]:
        _ = self
        captured.update(kwargs)
        return [b"one", b"two"]

    monkeypatch.setattr(OpenAIImageClient, "generate_images", _mock_generate)

    backend = OpenAIImageBackend(api_key="key")
    output_dir = tmp_path / "media" / "c1"
    paths = asyncio.run(
        backend.generate("1girl, rain", " blurry ", output_dir, 2, dimensions=(768, 1024))
    )

    assert captured["prompt"] == "1girl, rain\n\nAvoid: blurry"
    assert captured["size"] == "768x1024"
    assert captured["count"] == 2
    assert len(paths) == 2
    assert [Path(path).read_bytes() for path in paths] == [b"one", b"two"]
    assert all(Path(path).parent == output_dir for path in paths)


def test_image_backend_uses_edit_endpoint_for_existing_reference(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """A reference image on disk should route through the multipart edit endpoint."""

    reference = tmp_path / "alice.png"
    reference.write_bytes(b"ref")
    captured: dict[str, object] = {}

    def _mock_post(url: str, **kwargs: object) -> _MockRequestsResponse:
        captured["url"] = url
        captured.update(kwargs)
        return _json_response({"data": [{"b64_json": base64.b64encode(b"edited").decode("ascii")}]})

    monkeypatch.setattr("bookgen.llm.openai_client.requests.post", _mock_post)

    backend = OpenAIImageBackend(api_key="key")
    paths = asyncio.run(
        backend.generate("prompt", None, tmp_path / "out", 1, reference_media=str(reference))
    )

    assert str(captured["url"]).endswith("/images/edits")
    assert captured["json"] is None
    assert captured["data"] == {"model": "gpt-image-1", "prompt": "prompt", "n": "1", "size": "1024x1024"}
    assert "image" in captured["files"]
    assert Path(paths[0]).read_bytes() == b"edited"


def test_chat_backend_delegates_to_client(monkeypatch: pytest.MonkeyPatch) -> None:
    """The async chat backend should call the blocking client with its model."""

    captured: dict[str, object] = {}

    def _mock_chat(self: OpenAIChatClient, **kwargs: object) -> str:
        _ = self
        captured.update(kwargs)
        return "reply"

    monkeypatch.setattr(OpenAIChatClient, "chat_completion_text", _mock_chat)

    backend = OpenAIChatBackend(model="gpt-4.1", api_key="key")
    reply = asyncio.run(backend.complete("sys", [{"role": "user", "content": "hi"}]))

    assert reply == "reply"
    assert captured["model"] == "gpt-4.1"
    assert captured["system_prompt"] == "sys"


def test_provider_factory_builds_openai_backends_and_rejects_unknown() -> None:
    """Factory should build OpenAI backends and reject unsupported provider ids."""

    language = ProviderFactory.create_language_backend(
        ProviderSettings(name="language", model="gpt-4.1", api_key="k", timeout_seconds=5.0)
    )
    media = ProviderFactory.create_media_backend(
        ProviderSettings(name="media", model="gpt-image-1", base_url="https://proxy.test/v1")
    )

    assert isinstance(language, OpenAIChatBackend)
    assert language.model == "gpt-4.1"
    assert language.client.timeout_seconds == 5.0
    assert isinstance(media, OpenAIImageBackend)
    assert media.client.base_url == "https://proxy.test/v1"

    with pytest.raises(ValueError, match="Unsupported language-model provider `local`"):
        ProviderFactory.create_language_backend(ProviderSettings(name="language", provider="local"))
    with pytest.raises(ValueError, match="Unsupported media provider `local`"):
        ProviderFactory.create_media_backend(ProviderSettings(name="media", provider="local"))
