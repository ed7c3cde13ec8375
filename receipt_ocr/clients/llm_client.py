import asyncio
import base64
import logging
from http import HTTPStatus
from pathlib import Path
from typing import Any, Dict

import httpx

from receipt_ocr.core.config import (
    DEFAULT_MAX_TOKENS,
    DEFAULT_MODEL,
    DEFAULT_TEMPERATURE,
    ERROR_BODY_MAX_CHARS,
    TRANSIENT_HTTP_STATUSES,
)
from receipt_ocr.core.exceptions import (
    InferenceError,
    PermanentInferenceError,
    TransientInferenceError,
)
from receipt_ocr.core.settings import LLMSettings
from receipt_ocr.utils.file_detection import sniff_mime_type

logger = logging.getLogger(__name__)


def build_async_client(settings: LLMSettings) -> httpx.AsyncClient:
    """Create the shared HTTP client for chat completion calls.

    The caller owns the client and must close it (``async with``).
    """
    return httpx.AsyncClient(
        timeout=settings.LLM_REQUEST_TIMEOUT_SECONDS,
        verify=settings.LLM_VERIFY_SSL,
    )


def _read_error_body(response: httpx.Response) -> str:
    try:
        return response.text[:ERROR_BODY_MAX_CHARS]
    except UnicodeDecodeError:
        return ""


def _http_error(response: httpx.Response) -> InferenceError:
    status = response.status_code
    details: Dict[str, Any] = {
        "http_code": status,
        "reason": response.reason_phrase,
        "body": _read_error_body(response),
    }
    if status == HTTPStatus.TOO_MANY_REQUESTS:
        return TransientInferenceError(
            "LLM rate limit exceeded", error_type="rate_limit", details=details
        )
    if status in TRANSIENT_HTTP_STATUSES:
        return TransientInferenceError(
            f"LLM service returned HTTP {status}",
            error_type="unavailable",
            details=details,
        )
    return PermanentInferenceError(
        f"LLM service rejected the request with HTTP {status}",
        error_type="http_error",
        details=details,
    )


def _extract_content(body: Any) -> str:
    choices = body.get("choices") if isinstance(body, dict) else None
    if not isinstance(choices, list) or not choices:
        raise PermanentInferenceError(
            "LLM response contains no choices", error_type="empty_response"
        )
    message = choices[0].get("message") if isinstance(choices[0], dict) else None
    content = message.get("content") if isinstance(message, dict) else None
    # A null content is an answer with nothing in it; the transformer rejects it.
    return content if isinstance(content, str) else ""


class OpenAIVisionInvoker:
    """Send one document image plus the extraction prompt to a chat
    completions endpoint and return the assistant's text.

    Safe to share across concurrent tasks: it holds no per-call state and
    the underlying ``httpx.AsyncClient`` pools connections.

    Raises (from ``invoke``):
        TransientInferenceError: 408/409/429/5xx, timeouts, connection errors
        PermanentInferenceError: other HTTP errors, unreadable or unsupported
            source file, a response without choices
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        endpoint_url: str,
        api_key: str,
        prompt: str,
        model: str = DEFAULT_MODEL,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        temperature: float = DEFAULT_TEMPERATURE,
    ):
        self.client = client
        self.endpoint_url = endpoint_url
        self.api_key = api_key
        self.prompt = prompt
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature

    @classmethod
    def from_settings(
        cls, client: httpx.AsyncClient, settings: LLMSettings, prompt: str
    ) -> "OpenAIVisionInvoker":
        return cls(
            client,
            endpoint_url=settings.LLM_ENDPOINT_URL,
            api_key=settings.LLM_API_KEY.get_secret_value(),
            prompt=prompt,
            model=settings.LLM_MODEL,
            max_tokens=settings.LLM_MAX_TOKENS,
            temperature=settings.LLM_TEMPERATURE,
        )

    async def _encode_source(self, source_ref: str) -> str:
        try:
            data = await asyncio.to_thread(Path(source_ref).read_bytes)
        except OSError as e:
            raise PermanentInferenceError(
                f"Cannot read source document: {source_ref}",
                error_type="unreadable_source",
                details={"source_ref": source_ref, "reason": str(e)},
            ) from e

        mime_type = sniff_mime_type(data)
        if mime_type is None:
            raise PermanentInferenceError(
                f"Unsupported source document type: {source_ref}",
                error_type="unsupported_source",
                details={"source_ref": source_ref},
            )
        encoded = base64.b64encode(data).decode("ascii")
        return f"data:{mime_type};base64,{encoded}"

    def _build_payload(self, data_uri: str) -> Dict[str, Any]:
        return {
            "model": self.model,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": self.prompt},
                        {"type": "image_url", "image_url": {"url": data_uri}},
                    ],
                }
            ],
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
        }

    async def invoke(self, source_ref: str) -> str:
        """Return the raw assistant content for the document at ``source_ref``."""
        payload = self._build_payload(await self._encode_source(source_ref))
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            response = await self.client.post(
                self.endpoint_url, json=payload, headers=headers
            )
        except httpx.TimeoutException as e:
            raise TransientInferenceError(
                "LLM request timed out",
                error_type="timeout",
                details={"reason": str(e) or type(e).__name__},
            ) from e
        except httpx.TransportError as e:
            raise TransientInferenceError(
                "LLM service unreachable",
                error_type="unavailable",
                details={"reason": str(e) or type(e).__name__},
            ) from e

        if response.is_error:
            raise _http_error(response)

        try:
            body = response.json()
        except ValueError as e:
            raise PermanentInferenceError(
                "LLM response is not valid JSON",
                error_type="invalid_envelope",
                details={"body": _read_error_body(response)},
            ) from e

        content = _extract_content(body)
        logger.debug(f"LLM answered for {source_ref}")
        return content
