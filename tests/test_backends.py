"""Tests for the Gemini and OpenAI backend adapters."""

import asyncio
import base64
import json
from types import SimpleNamespace
from typing import Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from dualscan.backends import BackendFactory, GeminiBackend, OpenAIBackend, VisionBackend
from dualscan.config import Config
from dualscan.exceptions import ExtractionBackendError

PNG = b"\x89PNG\r\n\x1a\nimage"
ENVELOPE = json.dumps({"text": '{"fullName": "Ada"}', "confidence": 0.9, "metadata": {}})


def _gemini(api_key: Optional[str] = "key", timeout: float = 5.0) -> GeminiBackend:
    return GeminiBackend(api_key=api_key, model_id="gemini-test", timeout=timeout, max_tokens=256)


def _openai(api_key: Optional[str] = "key", timeout: float = 5.0) -> OpenAIBackend:
    return OpenAIBackend(api_key=api_key, model_id="gpt-test", timeout=timeout, max_tokens=256)


def _gemini_client(reply: Optional[str] = ENVELOPE, error: Optional[Exception] = None) -> MagicMock:
    client = MagicMock()
    if error is not None:
        client.aio.models.generate_content = AsyncMock(side_effect=error)
    else:
        client.aio.models.generate_content = AsyncMock(return_value=SimpleNamespace(text=reply))
    return client


def _openai_client(reply: Optional[str] = ENVELOPE, error: Optional[Exception] = None) -> MagicMock:
    client = MagicMock()
    if error is not None:
        client.chat.completions.create = AsyncMock(side_effect=error)
    else:
        completion = SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=reply))])
        client.chat.completions.create = AsyncMock(return_value=completion)
    client.close = AsyncMock()
    return client


class SlowBackend(VisionBackend):
    """Backend whose provider never answers in time."""

    name = "slow"

    async def _generate_from_image(self, image_bytes: bytes, mime_type: str, prompt: str) -> Optional[str]:
        await asyncio.sleep(5)
        return ENVELOPE


class TestGeminiBackend:
    """Tests for the Gemini adapter."""

    def test_extract_returns_envelope(self) -> None:
        backend = _gemini()
        backend._client = _gemini_client()
        result = asyncio.run(backend.extract(PNG, "image/png", "Read the form"))
        assert result.text == '{"fullName": "Ada"}'
        assert result.confidence == 0.9

        kwargs = backend._client.aio.models.generate_content.await_args.kwargs
        assert kwargs["model"] == "gemini-test"
        assert kwargs["config"].response_mime_type == "application/json"
        assert kwargs["config"].max_output_tokens == 256
        prompt = kwargs["contents"][1]
        assert prompt.startswith("Read the form")
        assert '"confidence"' in prompt

    def test_generate_passes_system_prompt(self) -> None:
        backend = _gemini()
        backend._client = _gemini_client(reply="merged")
        assert asyncio.run(backend.generate("merge these", system_prompt="be exact")) == "merged"
        kwargs = backend._client.aio.models.generate_content.await_args.kwargs
        assert kwargs["contents"] == "merge these"
        assert kwargs["config"].system_instruction == "be exact"

    def test_provider_failure_is_wrapped_without_retry(self) -> None:
        backend = _gemini()
        backend._client = _gemini_client(error=RuntimeError("quota exceeded"))
        with pytest.raises(ExtractionBackendError) as exc_info:
            asyncio.run(backend.extract(PNG, "image/png", "Read"))
        assert exc_info.value.backend == "gemini"
        assert "quota exceeded" in str(exc_info.value)
        assert backend._client.aio.models.generate_content.await_count == 1

    def test_missing_api_key(self) -> None:
        backend = _gemini(api_key=None)
        with pytest.raises(ExtractionBackendError, match="GEMINI_API_KEY"):
            asyncio.run(backend.extract(PNG, "image/png", "Read"))

    def test_empty_reply_is_degraded(self) -> None:
        backend = _gemini()
        backend._client = _gemini_client(reply=None)
        result = asyncio.run(backend.extract(PNG, "image/png", "Read"))
        assert result.text == ""
        assert result.confidence == 0.5
        assert result.metadata["nonConforming"] is True


class TestOpenAIBackend:
    """Tests for the OpenAI adapter."""

    def test_extract_sends_image_as_data_url(self) -> None:
        backend = _openai()
        backend._client = _openai_client()
        result = asyncio.run(backend.extract(PNG, "image/jpeg", "Read the form"))
        assert result.text == '{"fullName": "Ada"}'

        kwargs = backend._client.chat.completions.create.await_args.kwargs
        assert kwargs["model"] == "gpt-test"
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["max_tokens"] == 256
        content = kwargs["messages"][0]["content"]
        encoded = base64.b64encode(PNG).decode("ascii")
        assert content[1]["image_url"]["url"] == f"data:image/jpeg;base64,{encoded}"

    def test_generate_with_system_prompt(self) -> None:
        backend = _openai()
        backend._client = _openai_client(reply="merged")
        assert asyncio.run(backend.generate("merge", system_prompt="be exact")) == "merged"
        messages = backend._client.chat.completions.create.await_args.kwargs["messages"]
        assert messages == [
            {"role": "system", "content": "be exact"},
            {"role": "user", "content": "merge"},
        ]

    def test_no_choices_is_degraded(self) -> None:
        backend = _openai()
        backend._client = _openai_client()
        backend._client.chat.completions.create = AsyncMock(return_value=SimpleNamespace(choices=[]))
        result = asyncio.run(backend.extract(PNG, "image/png", "Read"))
        assert result.metadata == {"nonConforming": True, "source": "openai"}

    def test_non_conforming_reply_is_degraded(self) -> None:
        backend = _openai()
        backend._client = _openai_client(reply="The name is Ada")
        result = asyncio.run(backend.extract(PNG, "image/png", "Read"))
        assert result.text == "The name is Ada"
        assert result.confidence == 0.5

    def test_provider_failure_is_wrapped_without_retry(self) -> None:
        backend = _openai()
        backend._client = _openai_client(error=ConnectionError("connection reset"))
        with pytest.raises(ExtractionBackendError, match="connection reset"):
            asyncio.run(backend.generate("merge"))
        assert backend._client.chat.completions.create.await_count == 1

    def test_client_is_created_without_retries(self) -> None:
        client = _openai(timeout=12.0)._get_client()
        assert client.max_retries == 0

    def test_close_releases_client(self) -> None:
        backend = _openai()
        client = _openai_client()
        backend._client = client
        asyncio.run(backend.close())
        client.close.assert_awaited_once()
        assert backend._client is None


class TestAdapterContract:
    """Tests for the behavior shared by every adapter."""

    def test_unsupported_image_type(self) -> None:
        backend = _gemini()
        backend._client = _gemini_client()
        with pytest.raises(ExtractionBackendError, match="Unsupported image type"):
            asyncio.run(backend.extract(b"%PDF", "application/pdf", "Read"))
        backend._client.aio.models.generate_content.assert_not_awaited()

    def test_timeout_is_reported_as_backend_error(self) -> None:
        backend = SlowBackend(api_key="key", model_id="slow", timeout=0.05, max_tokens=10)
        with pytest.raises(ExtractionBackendError, match="Timed out after 0.05s"):
            asyncio.run(backend.extract(PNG, "image/png", "Read"))


class TestBackendFactory:
    """Tests for building adapters from configuration."""

    def test_creates_both_backends_from_config(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("GEMINI_API_KEY", "g-key")
        monkeypatch.setenv("OPENAI_API_KEY", "o-key")
        monkeypatch.setenv("GEMINI_MODEL_ID", "gemini-custom")
        monkeypatch.setenv("BACKEND_TIMEOUT_SECONDS", "30")

        backends = BackendFactory.create_backends(Config())
        assert isinstance(backends["gemini"], GeminiBackend)
        assert isinstance(backends["openai"], OpenAIBackend)
        assert backends["gemini"].api_key == "g-key"
        assert backends["gemini"].model_id == "gemini-custom"
        assert backends["openai"].timeout == 30.0

    def test_missing_key_is_reported_on_first_call(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("GEMINI_API_KEY", "g-key")
        monkeypatch.setenv("OPENAI_API_KEY", "")

        backends = BackendFactory.create_backends(Config())
        with pytest.raises(ExtractionBackendError, match="OPENAI_API_KEY"):
            asyncio.run(backends["openai"].generate("hello"))
