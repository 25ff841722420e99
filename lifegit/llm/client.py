"""DeepSeek chat-completion client for LifeGit.

httpx against an OpenAI-compatible ``/chat/completions`` endpoint. Each
call issues exactly one request; retry policy lives in AIFailurePolicy,
so every failure is mapped onto a typed AIServiceError and raised.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Protocol

import httpx

from lifegit.core.config import LLMConfig
from lifegit.core.exceptions import (
    AuthenticationError,
    BadRequestError,
    NetworkError,
    ParsingError,
    RateLimitError,
    ServerError,
)

logger = logging.getLogger("lifegit.llm")


class LLMMessage:
    """A single message in a conversation."""

    def __init__(self, role: str, content: str):
        self.role = role
        self.content = content

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


class LLMResponse:
    """Parsed response from the LLM."""

    def __init__(
        self,
        content: str,
        model: str,
        tokens_used: int = 0,
        raw: Optional[dict] = None,
    ):
        self.content = content
        self.model = model
        self.tokens_used = tokens_used
        self.raw = raw or {}


class CompletionClient(Protocol):
    """Anything that can turn chat messages into completion text."""

    async def complete(
        self,
        messages: list[LLMMessage],
        *,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> LLMResponse: ...


class DeepSeekClient:
    """Async HTTP client for DeepSeek's OpenAI-compatible API."""

    def __init__(self, config: Optional[LLMConfig] = None, api_key: str = ""):
        self.config = config or LLMConfig()
        self.api_key = api_key
        self.base_url = self.config.base_url.rstrip("/")
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.config.timeout_seconds),
            )
        return self._client

    async def complete(
        self,
        messages: list[LLMMessage],
        *,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> LLMResponse:
        """Send one chat completion request.

        Raises:
            AuthenticationError: missing key, 401 or 403.
            BadRequestError: 400 or any other non-retryable 4xx.
            RateLimitError: 429.
            ServerError: 5xx.
            NetworkError: transport failure or timeout.
            ParsingError: 2xx with a body that is not a completion.
        """
        if not self.api_key:
            raise AuthenticationError("Completion API key not set")

        payload: dict[str, Any] = {
            "model": model or self.config.model,
            "messages": [m.to_dict() for m in messages],
            "temperature": temperature if temperature is not None else self.config.temperature,
            "max_tokens": max_tokens or self.config.max_tokens,
            "stream": False,
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        try:
            resp = await self.client.post(
                f"{self.base_url}/chat/completions",
                json=payload,
                headers=headers,
            )
        except httpx.TimeoutException as e:
            raise NetworkError(f"Request timed out: {e}") from e
        except httpx.TransportError as e:
            raise NetworkError(f"Network error: {e}") from e

        _raise_for_status(resp)

        try:
            data = resp.json()
            content = data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ParsingError(f"Malformed completion body: {e}") from e

        if not isinstance(content, str) or not content.strip():
            raise ParsingError("Completion contained no text")

        used_model = data.get("model", payload["model"])
        tokens = (data.get("usage") or {}).get("total_tokens", 0)
        logger.debug("LLM response: model=%s tokens=%d", used_model, tokens)
        return LLMResponse(content=content, model=used_model, tokens_used=tokens, raw=data)

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None


def _error_detail(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:200] or "Unknown error"
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str):
            return error
    return "Unknown error"


def _raise_for_status(resp: httpx.Response) -> None:
    status = resp.status_code
    if status < 400:
        return
    if status in (401, 403):
        raise AuthenticationError("Invalid API key" if status == 401 else "Access forbidden")
    if status == 429:
        raise RateLimitError("Rate limit exceeded")
    if status >= 500:
        raise ServerError(f"Server error: {status}", status_code=status)
    raise BadRequestError(f"HTTP {status}: {_error_detail(resp)}")
