"""Ollama /api/chat client for tool-calling rounds."""
from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol

import httpx

from config.settings import CommandSettings

logger = logging.getLogger(__name__)


# ============================================================================
# ERRORS
# ============================================================================

class LLMServiceError(Exception):
    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code


class LLMUnavailableError(LLMServiceError):
    status_code = 503


class LLMModelNotFoundError(LLMServiceError):
    status_code = 404


class LLMBadResponseError(LLMServiceError):
    status_code = 502


# ============================================================================
# MESSAGES
# ============================================================================

@dataclass
class LLMToolCall:
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)


@dataclass
class LLMMessage:
    content: str = ""
    tool_calls: List[LLMToolCall] = field(default_factory=list)

    def to_history(self) -> Dict[str, Any]:
        msg: Dict[str, Any] = {"role": "assistant", "content": self.content}
        if self.tool_calls:
            msg["tool_calls"] = [
                {"function": {"name": c.name, "arguments": c.arguments}} for c in self.tool_calls
            ]
        return msg


class ChatClient(Protocol):
    async def chat(
        self,
        messages: List[Dict[str, Any]],
        tools: List[Dict[str, Any]],
        *,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
    ) -> LLMMessage:
        ...


def _parse_arguments(raw: Any) -> Dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str) and raw.strip():
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("ollama.tool_args_unparseable raw_len=%s", len(raw))
            return {}
        return parsed if isinstance(parsed, dict) else {}
    return {}


def parse_chat_message(payload: Any) -> LLMMessage:
    if not isinstance(payload, dict) or not isinstance(payload.get("message"), dict):
        raise LLMBadResponseError("Invalid response from LLM")
    message = payload["message"]
    calls: List[LLMToolCall] = []
    for raw in message.get("tool_calls") or []:
        fn = (raw or {}).get("function") or {}
        name = str(fn.get("name") or "").strip()
        if not name:
            continue
        calls.append(LLMToolCall(name=name, arguments=_parse_arguments(fn.get("arguments"))))
    return LLMMessage(content=str(message.get("content") or ""), tool_calls=calls)


# ============================================================================
# CLIENT
# ============================================================================

class OllamaChatClient:
    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        model: str = "llama3.2:latest",
        timeout_s: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout_s = timeout_s
        self._transport = transport

    @staticmethod
    def from_settings(settings: CommandSettings) -> "OllamaChatClient":
        return OllamaChatClient(
            base_url=settings.ollama_base_url,
            model=settings.ollama_model,
            timeout_s=settings.llm_timeout_s,
        )

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        async with httpx.AsyncClient(timeout=self.timeout_s, transport=self._transport) as client:
            yield client

    async def chat(
        self,
        messages: List[Dict[str, Any]],
        tools: List[Dict[str, Any]],
        *,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
    ) -> LLMMessage:
        url = f"{(base_url or self.base_url).rstrip('/')}/api/chat"
        model_name = model or self.model
        body = {"model": model_name, "messages": messages, "tools": tools, "stream": False}
        try:
            async with self._client() as client:
                r = await client.post(url, json=body)
        except (httpx.ConnectError, httpx.TimeoutException) as exc:
            logger.warning("ollama.unreachable url=%s err=%s", url, type(exc).__name__)
            raise LLMUnavailableError(
                "Ollama not reachable. Make sure it is running (ollama serve)."
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning("ollama.http_error url=%s err=%s", url, type(exc).__name__)
            raise LLMUnavailableError(f"Ollama request failed: {type(exc).__name__}") from exc

        if r.status_code == 404:
            raise LLMModelNotFoundError(f'Model "{model_name}" not found. Run: ollama pull {model_name}')
        if r.status_code >= 400:
            logger.warning("ollama.bad_status status=%s body_len=%s", r.status_code, len(r.content))
            raise LLMServiceError(f"Ollama error {r.status_code}", status_code=502)
        try:
            payload = r.json()
        except ValueError as exc:
            raise LLMBadResponseError("Invalid response from LLM") from exc

        message = parse_chat_message(payload)
        logger.debug(
            "ollama.chat model=%s tools=%s tool_calls=%s",
            model_name, len(tools), [c.name for c in message.tool_calls],
        )
        return message
