"""Streaming client for OpenAI-compatible ``/chat/completions`` endpoints."""

from __future__ import annotations

import time
from typing import Any, Iterator, Sequence

import httpx

from memochat.config.schema import ProviderConfig
from memochat.logging import get_logger, mask_secret
from memochat.providers.base import (
    CompletionError,
    CompletionHTTPError,
    CompletionResult,
    StreamCallbacks,
    StreamEvent,
)
from memochat.providers.sse import StreamDecoder

logger = get_logger(__name__)

_MAX_ERROR_BODY_CHARS = 2000


class StreamingCompletionClient:
    """
    Issue one streaming completion request and demultiplex its deltas.

    Content deltas (``choices[0].delta.content``) and reasoning deltas
    (``choices[0].delta.reasoning_content``) are accumulated separately and
    reported to the matching callback as they arrive. The aggregated result
    is returned only once the stream has ended.
    """

    def __init__(
        self,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        extra_headers: dict[str, str] | None = None,
    ) -> None:
        self._transport = transport
        self.extra_headers = extra_headers or {}

    @staticmethod
    def _value(obj: Any, key: str, default: Any = None) -> Any:
        if isinstance(obj, dict):
            return obj.get(key, default)
        return default

    @classmethod
    def events_from_payload(cls, payload: dict[str, Any]) -> Iterator[StreamEvent]:
        """Yield the non-empty channel deltas carried by one decoded record."""
        choices = cls._value(payload, "choices")
        if not isinstance(choices, list) or not choices:
            return
        delta = cls._value(choices[0], "delta")
        if not isinstance(delta, dict):
            return
        content = delta.get("content")
        if isinstance(content, str) and content:
            yield StreamEvent("content", content)
        reasoning = delta.get("reasoning_content")
        if isinstance(reasoning, str) and reasoning:
            yield StreamEvent("reasoning", reasoning)

    @staticmethod
    def _mask(text: str, api_key: str) -> str:
        if api_key and api_key in text:
            text = text.replace(api_key, mask_secret(api_key))
        return text

    def _build_request(
        self,
        messages: Sequence[dict[str, Any]],
        config: ProviderConfig,
        model: str,
    ) -> tuple[str, dict[str, str], dict[str, Any]]:
        url = f"{config.effective_api_base}/chat/completions"
        headers = {
            "Authorization": f"Bearer {config.resolved_api_key}",
            "Content-Type": "application/json",
            **self.extra_headers,
        }
        body = {
            "model": model,
            "messages": [{"role": m["role"], "content": m["content"]} for m in messages],
            "stream": True,
        }
        return url, headers, body

    async def complete(
        self,
        messages: Sequence[dict[str, Any]],
        config: ProviderConfig,
        callbacks: StreamCallbacks | None = None,
        *,
        model: str | None = None,
    ) -> CompletionResult:
        """
        Stream one chat completion.

        Args:
            messages: Ordered ``{role, content}`` dicts.
            config: Endpoint, credential and default model.
            callbacks: Optional per-delta observers, called synchronously in
                arrival order before the next chunk is read.
            model: Overrides ``config.effective_model`` for this call.

        Returns:
            The full content and reasoning accumulated over the stream.

        Raises:
            CompletionHTTPError: The endpoint returned a non-success status.
            CompletionError: The connection failed or broke mid-stream.
        """
        model_name = model or config.effective_model
        api_key = config.resolved_api_key
        url, headers, body = self._build_request(messages, config, model_name)

        content_parts: list[str] = []
        reasoning_parts: list[str] = []
        decoder = StreamDecoder()
        started = time.perf_counter()
        logger.debug("completion_started", model=model_name, message_count=len(body["messages"]))

        try:
            async with httpx.AsyncClient(timeout=config.timeout, transport=self._transport) as client:
                async with client.stream("POST", url, headers=headers, json=body) as response:
                    if not response.is_success:
                        raw = await response.aread()
                        detail = self._mask(raw.decode("utf-8", errors="replace"), api_key)
                        logger.error(
                            "completion_http_error",
                            model=model_name,
                            status_code=response.status_code,
                            body=detail[:_MAX_ERROR_BODY_CHARS],
                        )
                        raise CompletionHTTPError(response.status_code, detail)

                    async for chunk in response.aiter_bytes():
                        for payload in decoder.iter_payloads(chunk):
                            for event in self.events_from_payload(payload):
                                if event.channel == "content":
                                    content_parts.append(event.delta)
                                else:
                                    reasoning_parts.append(event.delta)
                                if callbacks is not None:
                                    callbacks.dispatch(event.channel, event.delta)
        except httpx.HTTPError as e:
            error_msg = self._mask(str(e) or type(e).__name__, api_key)
            logger.error("completion_transport_failed", model=model_name, error=error_msg)
            raise CompletionError(error_msg) from e
        finally:
            decoder.close()

        result = CompletionResult(content="".join(content_parts), reasoning="".join(reasoning_parts))
        logger.debug(
            "completion_finished",
            model=model_name,
            content_chars=len(result.content),
            reasoning_chars=len(result.reasoning),
            elapsed_ms=round((time.perf_counter() - started) * 1000, 3),
        )
        return result
