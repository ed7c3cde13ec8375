"""Unit tests for the chat completions invoker, using httpx.MockTransport."""

from __future__ import annotations

import base64
import json
from pathlib import Path

import httpx
import pytest

from receipt_ocr.clients.llm_client import OpenAIVisionInvoker, build_async_client
from receipt_ocr.core.exceptions import PermanentInferenceError, TransientInferenceError
from receipt_ocr.core.settings import LLMSettings

ENDPOINT = "https://llm.example.com/v1/chat/completions"
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16


def _ok(content: str | None = "[]") -> httpx.Response:
    return httpx.Response(200, json={"choices": [{"message": {"content": content}}]})


def _invoker(handler, **kwargs) -> tuple[OpenAIVisionInvoker, httpx.AsyncClient]:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    invoker = OpenAIVisionInvoker(
        client,
        endpoint_url=ENDPOINT,
        api_key=kwargs.pop("api_key", "sk-test"),
        prompt="Extract the journal entry.",
        **kwargs,
    )
    return invoker, client


@pytest.fixture
def receipt_png(tmp_path: Path) -> Path:
    path = tmp_path / "1.png"
    path.write_bytes(PNG_BYTES)
    return path


class TestInvokeSuccess:
    """Tests for well-formed exchanges."""

    @pytest.mark.asyncio
    async def test_returns_content_and_sends_image(self, receipt_png: Path):
        """Test the request carries prompt, data URI and auth; content is returned."""
        seen: dict = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers.get("Authorization")
            seen["body"] = json.loads(request.content)
            return _ok('[{"取引日": "2024/05/01"}]')

        invoker, client = _invoker(handler, model="gpt-4o", max_tokens=500, temperature=1.0)
        async with client:
            content = await invoker.invoke(str(receipt_png))

        assert content == '[{"取引日": "2024/05/01"}]'
        assert seen["auth"] == "Bearer sk-test"
        body = seen["body"]
        assert body["model"] == "gpt-4o"
        assert body["max_tokens"] == 500
        assert body["temperature"] == 1.0
        text_part, image_part = body["messages"][0]["content"]
        assert text_part == {"type": "text", "text": "Extract the journal entry."}
        expected_uri = "data:image/png;base64," + base64.b64encode(PNG_BYTES).decode()
        assert image_part["image_url"]["url"] == expected_uri

    @pytest.mark.asyncio
    async def test_null_content_becomes_empty_string(self, receipt_png: Path):
        """Test a null message content is returned as an empty string."""
        invoker, client = _invoker(lambda request: _ok(None))
        async with client:
            assert await invoker.invoke(str(receipt_png)) == ""

    @pytest.mark.asyncio
    async def test_no_auth_header_without_key(self, receipt_png: Path):
        """Test no Authorization header is sent when no key is configured."""
        seen: dict = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers.get("Authorization")
            return _ok()

        invoker, client = _invoker(handler, api_key="")
        async with client:
            await invoker.invoke(str(receipt_png))
        assert seen["auth"] is None


class TestInvokeErrors:
    """Tests for error classification."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [408, 409, 429, 500, 502, 503, 504])
    async def test_transient_statuses(self, receipt_png: Path, status: int):
        """Test throttling and server errors are transient."""
        invoker, client = _invoker(lambda request: httpx.Response(status, text="busy"))
        async with client:
            with pytest.raises(TransientInferenceError) as exc_info:
                await invoker.invoke(str(receipt_png))

        assert exc_info.value.retryable is True
        assert exc_info.value.details["http_code"] == status

    @pytest.mark.asyncio
    async def test_rate_limit_error_type(self, receipt_png: Path):
        """Test 429 is classified as rate_limit."""
        invoker, client = _invoker(lambda request: httpx.Response(429))
        async with client:
            with pytest.raises(TransientInferenceError) as exc_info:
                await invoker.invoke(str(receipt_png))
        assert exc_info.value.error_code == "INFERENCE_RATE_LIMIT"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [400, 401, 403, 404, 422])
    async def test_permanent_statuses(self, receipt_png: Path, status: int):
        """Test other client errors are permanent."""
        invoker, client = _invoker(lambda request: httpx.Response(status, text="x" * 500))
        async with client:
            with pytest.raises(PermanentInferenceError) as exc_info:
                await invoker.invoke(str(receipt_png))

        assert exc_info.value.retryable is False
        assert len(exc_info.value.details["body"]) == 200

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self, receipt_png: Path):
        """Test a request timeout is transient."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        invoker, client = _invoker(handler)
        async with client:
            with pytest.raises(TransientInferenceError) as exc_info:
                await invoker.invoke(str(receipt_png))
        assert exc_info.value.error_type == "timeout"

    @pytest.mark.asyncio
    async def test_connection_error_is_transient(self, receipt_png: Path):
        """Test a connection failure is transient."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        invoker, client = _invoker(handler)
        async with client:
            with pytest.raises(TransientInferenceError) as exc_info:
                await invoker.invoke(str(receipt_png))
        assert exc_info.value.error_type == "unavailable"

    @pytest.mark.asyncio
    async def test_empty_choices_is_permanent(self, receipt_png: Path):
        """Test a response without choices is permanent."""
        invoker, client = _invoker(lambda request: httpx.Response(200, json={"choices": []}))
        async with client:
            with pytest.raises(PermanentInferenceError) as exc_info:
                await invoker.invoke(str(receipt_png))
        assert exc_info.value.error_type == "empty_response"

    @pytest.mark.asyncio
    async def test_missing_source_is_permanent(self, tmp_path: Path):
        """Test an unreadable source fails before any request is made."""
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return _ok()

        invoker, client = _invoker(handler)
        async with client:
            with pytest.raises(PermanentInferenceError) as exc_info:
                await invoker.invoke(str(tmp_path / "missing.pdf"))

        assert exc_info.value.error_type == "unreadable_source"
        assert calls == []

    @pytest.mark.asyncio
    async def test_unsupported_source_is_permanent(self, tmp_path: Path):
        """Test a file with unknown magic bytes is rejected."""
        path = tmp_path / "1.pdf"
        path.write_bytes(b"GIF89a....")
        invoker, client = _invoker(lambda request: _ok())
        async with client:
            with pytest.raises(PermanentInferenceError) as exc_info:
                await invoker.invoke(str(path))
        assert exc_info.value.error_type == "unsupported_source"


class TestFromSettings:
    """Tests for building the invoker from settings."""

    @pytest.mark.asyncio
    async def test_from_settings(self):
        """Test settings values flow into the invoker."""
        settings = LLMSettings(
            LLM_ENDPOINT_URL=ENDPOINT,
            LLM_API_KEY="sk-env",
            LLM_MODEL="gpt-4o-mini",
            LLM_MAX_TOKENS=256,
            LLM_TEMPERATURE=0.0,
        )
        async with build_async_client(settings) as client:
            invoker = OpenAIVisionInvoker.from_settings(client, settings, "prompt")

        assert invoker.endpoint_url == ENDPOINT
        assert invoker.api_key == "sk-env"
        assert invoker.model == "gpt-4o-mini"
        assert invoker.max_tokens == 256
        assert invoker.temperature == 0.0
