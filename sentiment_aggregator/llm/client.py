"""Async OpenRouter chat-completions client."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Sequence

import httpx
import structlog

from ..config.models import OpenRouterConfig
from ..contracts import TokenUsage
from ..engine.rate_limiter import RateLimitedExecutor
from ..errors import AnalysisError, ConnectorError, RateLimitError

_JSON_FENCE = re.compile(r"```(?:json)?\s*([\s\S]*?)```")


@dataclass(slots=True)
class ChatMessage:
    role: str
    content: str


@dataclass(slots=True)
class ChatResponse:
    content: str
    model: str
    finish_reason: str = "unknown"
    usage: TokenUsage = field(default_factory=TokenUsage)
    annotations: list[dict[str, Any]] = field(default_factory=list)


def parse_usage(payload: dict[str, Any]) -> TokenUsage:
    usage = payload.get("usage") or {}
    return TokenUsage(
        prompt_tokens=int(usage.get("prompt_tokens") or 0),
        completion_tokens=int(usage.get("completion_tokens") or 0),
        total_tokens=int(usage.get("total_tokens") or 0),
    )


def extract_json(content: str) -> Any:
    """Parse JSON from a completion, tolerating a markdown code fence."""

    match = _JSON_FENCE.search(content)
    if match:
        content = match.group(1)
    try:
        return json.loads(content.strip())
    except json.JSONDecodeError as exc:
        raise AnalysisError(f"Failed to parse JSON response: {exc}") from exc


class OpenRouterClient:
    """Thin wrapper over the OpenRouter HTTP API.

    :meth:`send` performs exactly one HTTP call; :meth:`chat_completion` runs it
    through this client's own :class:`RateLimitedExecutor`.
    """

    def __init__(
        self,
        settings: OpenRouterConfig | None = None,
        *,
        api_key: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        executor: RateLimitedExecutor | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.settings = settings or OpenRouterConfig()
        self._api_key = api_key
        self._http = http_client
        self._owns_http = http_client is None
        self.logger = logger or structlog.get_logger("sentiment_aggregator.openrouter")
        self.executor = executor or RateLimitedExecutor(self.settings.rate_limit, logger=self.logger)

    @property
    def api_key(self) -> str:
        key = self._api_key or self.settings.api_key()
        if not key:
            raise ConnectorError(f"{self.settings.api_key_env} environment variable is not set")
        return key

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self.settings.timeout)
        return self._http

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "HTTP-Referer": self.settings.referer,
            "X-Title": self.settings.title,
        }

    async def send(self, payload: dict[str, Any]) -> ChatResponse:
        headers = self._headers()
        self.logger.debug("openrouter_request", model=payload.get("model"))
        try:
            response = await self._client().post(self.settings.base_url, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            raise ConnectorError(f"OpenRouter request failed: {exc}") from exc

        if response.status_code == 429:
            raise RateLimitError(
                f"OpenRouter API error: 429 - {response.text}", status_code=429
            )
        if response.status_code >= 400:
            self.logger.warning(
                "openrouter_error", status=response.status_code, body=response.text[:500]
            )
            raise ConnectorError(
                f"OpenRouter API error: {response.status_code} - {response.text}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise ConnectorError(f"OpenRouter returned invalid JSON: {exc}") from exc
        choices = data.get("choices") or []
        if not choices:
            raise ConnectorError("No response from OpenRouter")
        choice = choices[0]
        message = choice.get("message") or {}
        result = ChatResponse(
            content=message.get("content") or "",
            model=data.get("model") or payload.get("model") or "",
            finish_reason=choice.get("finish_reason") or "unknown",
            usage=parse_usage(data),
            annotations=list(message.get("annotations") or []),
        )
        self.logger.debug(
            "openrouter_response",
            model=result.model,
            finish_reason=result.finish_reason,
            total_tokens=result.usage.total_tokens,
        )
        return result

    async def chat_completion(
        self,
        messages: Sequence[ChatMessage],
        *,
        model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 4096,
        response_format: dict[str, str] | None = None,
    ) -> ChatResponse:
        payload: dict[str, Any] = {
            "model": model or self.settings.model,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if response_format is not None:
            payload["response_format"] = response_format
        return await self.executor.execute(lambda: self.send(payload))

    async def json_completion(
        self, messages: Sequence[ChatMessage], **options: Any
    ) -> tuple[Any, TokenUsage]:
        response = await self.chat_completion(
            messages, response_format={"type": "json_object"}, **options
        )
        return extract_json(response.content), response.usage

    async def aclose(self) -> None:
        if self._http is not None and self._owns_http:
            await self._http.aclose()
            self._http = None

    async def __aenter__(self) -> "OpenRouterClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()


__all__ = ["ChatMessage", "ChatResponse", "OpenRouterClient", "extract_json", "parse_usage"]
