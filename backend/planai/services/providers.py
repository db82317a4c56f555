"""Chat completion providers.

One ``ChatProvider`` subclass per ``ProviderKind``; adding a provider means
adding a subclass and registering it in ``PROVIDERS``. All of them return a
``ChatReply`` and raise the typed errors from ``planai.services.errors``.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import TypeVar

import httpx
import openai
from openai import AsyncOpenAI

from planai.config import settings
from planai.services.errors import (
    AIServiceError,
    ProviderNotConfiguredError,
    UpstreamResponseError,
    raise_for_upstream_status,
    translate_httpx_error,
    translate_openai_error,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ProviderKind(str, Enum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    LOCAL = "local"
    CUSTOM = "custom"


@dataclass
class ToolSpec:
    name: str
    description: str
    parameters: dict


@dataclass
class ChatReply:
    content: str = ""
    tool_arguments: str | None = None  # raw JSON of the first tool call


class ChatProvider(ABC):
    kind: ProviderKind

    def __init__(
        self,
        model: str,
        api_key: str = "",
        endpoint: str = "",
        timeout: float | None = None,
    ):
        self.model = model
        self.api_key = api_key
        self.endpoint = endpoint
        self.timeout = timeout if timeout is not None else settings.ai_timeout

    @abstractmethod
    async def complete(
        self, system_prompt: str, user_message: str, tool: ToolSpec | None = None
    ) -> ChatReply:
        """Send one system + user exchange and return the assistant reply."""


def _openai_tool_payload(tool: ToolSpec) -> dict:
    return {
        "tools": [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.parameters,
                },
            }
        ],
        "tool_choice": {"type": "function", "function": {"name": tool.name}},
    }


class OpenAIChatProvider(ChatProvider):
    kind = ProviderKind.OPENAI

    def _client(self) -> AsyncOpenAI:
        return AsyncOpenAI(
            api_key=self.api_key,
            base_url=self.endpoint or None,
            timeout=self.timeout,
            max_retries=0,
        )

    async def complete(
        self, system_prompt: str, user_message: str, tool: ToolSpec | None = None
    ) -> ChatReply:
        if not self.api_key:
            raise ProviderNotConfiguredError("OpenAI API key not configured")
        try:
            response = await self._client().chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_message},
                ],
                **(_openai_tool_payload(tool) if tool else {}),
            )
        except openai.OpenAIError as exc:
            raise translate_openai_error(exc) from exc

        if not response.choices:
            raise UpstreamResponseError("OpenAI returned no choices")
        message = response.choices[0].message
        tool_calls = message.tool_calls or []
        return ChatReply(
            content=message.content or "",
            tool_arguments=tool_calls[0].function.arguments if tool_calls else None,
        )


class OpenAICompatibleProvider(ChatProvider):
    """OpenAI wire format over plain httpx, for AI gateways behind a custom URL."""

    kind = ProviderKind.CUSTOM

    def _url(self) -> str:
        endpoint = self.endpoint.rstrip("/")
        if not endpoint:
            raise ProviderNotConfiguredError(f"No endpoint configured for the {self.kind.value} provider")
        if endpoint.endswith("/chat/completions"):
            return endpoint
        return f"{endpoint}/chat/completions"

    async def complete(
        self, system_prompt: str, user_message: str, tool: ToolSpec | None = None
    ) -> ChatReply:
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_message},
            ],
            **(_openai_tool_payload(tool) if tool else {}),
        }
        url = self._url()
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(url, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            raise translate_httpx_error(exc) from exc
        raise_for_upstream_status(resp)

        try:
            data = resp.json()
        except ValueError as exc:
            raise UpstreamResponseError("AI gateway returned a non-JSON body") from exc
        choices = data.get("choices") or []
        if not choices:
            raise UpstreamResponseError("AI gateway returned no choices")
        message = choices[0].get("message") or {}
        tool_calls = message.get("tool_calls") or []
        arguments = tool_calls[0].get("function", {}).get("arguments") if tool_calls else None
        return ChatReply(content=message.get("content") or "", tool_arguments=arguments)


class LocalChatProvider(OpenAICompatibleProvider):
    """A model server on this machine (Ollama, llama.cpp, LM Studio)."""

    kind = ProviderKind.LOCAL

    def __init__(self, model: str, api_key: str = "", endpoint: str = "", timeout: float | None = None):
        super().__init__(model, api_key, endpoint or settings.local_endpoint, timeout)


class AnthropicChatProvider(ChatProvider):
    kind = ProviderKind.ANTHROPIC

    API_URL = "https://api.anthropic.com/v1/messages"
    API_VERSION = "2023-06-01"
    MAX_TOKENS = 4096

    async def complete(
        self, system_prompt: str, user_message: str, tool: ToolSpec | None = None
    ) -> ChatReply:
        if not self.api_key:
            raise ProviderNotConfiguredError("Anthropic API key not configured")
        payload: dict = {
            "model": self.model,
            "max_tokens": self.MAX_TOKENS,
            "system": system_prompt,
            "messages": [{"role": "user", "content": user_message}],
        }
        if tool:
            payload["tools"] = [
                {
                    "name": tool.name,
                    "description": tool.description,
                    "input_schema": tool.parameters,
                }
            ]
            payload["tool_choice"] = {"type": "tool", "name": tool.name}

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(
                    self.endpoint or self.API_URL,
                    json=payload,
                    headers={
                        "x-api-key": self.api_key,
                        "anthropic-version": self.API_VERSION,
                        "Content-Type": "application/json",
                    },
                )
        except httpx.HTTPError as exc:
            raise translate_httpx_error(exc) from exc
        raise_for_upstream_status(resp)

        try:
            blocks = resp.json().get("content") or []
        except ValueError as exc:
            raise UpstreamResponseError("Anthropic returned a non-JSON body") from exc
        text = "".join(b.get("text", "") for b in blocks if b.get("type") == "text")
        tool_input = next((b.get("input") for b in blocks if b.get("type") == "tool_use"), None)
        return ChatReply(
            content=text,
            tool_arguments=json.dumps(tool_input) if tool_input is not None else None,
        )


PROVIDERS: dict[ProviderKind, type[ChatProvider]] = {
    ProviderKind.OPENAI: OpenAIChatProvider,
    ProviderKind.ANTHROPIC: AnthropicChatProvider,
    ProviderKind.LOCAL: LocalChatProvider,
    ProviderKind.CUSTOM: OpenAICompatibleProvider,
}


def build_chat_provider(
    kind: str | ProviderKind,
    model: str,
    api_key: str = "",
    endpoint: str = "",
    timeout: float | None = None,
) -> ChatProvider:
    provider_cls = PROVIDERS[ProviderKind(kind)]
    return provider_cls(model=model, api_key=api_key, endpoint=endpoint, timeout=timeout)


async def with_retries(
    call: Callable[[], Awaitable[T]],
    operation: str,
    attempts: int | None = None,
    backoff: float | None = None,
) -> T:
    """Await ``call``, retrying retryable failures with exponential backoff."""
    attempts = attempts or settings.ai_max_attempts
    backoff = settings.ai_retry_backoff if backoff is None else backoff
    attempt = 1
    while True:
        try:
            return await call()
        except AIServiceError as exc:
            if not exc.retryable or attempt >= attempts:
                raise
            delay = backoff * 2 ** (attempt - 1)
            logger.warning(
                f"{operation} failed ({exc.reason}), retrying in {delay:.1f}s "
                f"(attempt {attempt}/{attempts})"
            )
            await asyncio.sleep(delay)
            attempt += 1
