from __future__ import annotations

import logging
import time
from collections import OrderedDict, deque
from threading import Lock
from typing import Deque, List, Optional, Protocol

import httpx

from app.core.errors import ConfigError, LlmBackendError
from app.core.metrics import metrics
from app.core.settings import Settings

logger = logging.getLogger(__name__)


class ChatModel(Protocol):
    def generate(self, messages: List[dict]) -> str:
        ...


class SessionMemoryStore:
    """Most-recent-N message windows keyed by session id.

    Windows are created on first reference. At most ``max_sessions`` windows
    are kept; the least recently used one is dropped to make room for a new
    session. Nothing here is persisted.
    """

    def __init__(self, max_messages: int = 20, max_sessions: int = 10000) -> None:
        self.max_messages = max(1, max_messages)
        self.max_sessions = max(1, max_sessions)
        self._windows: OrderedDict[str, Deque[dict]] = OrderedDict()
        self._lock = Lock()

    def messages(self, session_id: str) -> List[dict]:
        with self._lock:
            window = self._windows.get(session_id)
            if window is None:
                return []
            self._windows.move_to_end(session_id)
            return list(window)

    def append(self, session_id: str, role: str, content: str) -> None:
        with self._lock:
            window = self._windows.get(session_id)
            if window is None:
                window = deque(maxlen=self.max_messages)
                self._windows[session_id] = window
                while len(self._windows) > self.max_sessions:
                    evicted, _ = self._windows.popitem(last=False)
                    logger.debug("session memory evicted session=%s", evicted)
            else:
                self._windows.move_to_end(session_id)
            window.append({"role": role, "content": content})

    def __len__(self) -> int:
        with self._lock:
            return len(self._windows)


class OpenAICompatChatModel:
    def __init__(
        self,
        *,
        base_url: str,
        api_key: str,
        model: str,
        temperature: float,
        max_tokens: int,
        timeout_ms: int,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout_ms / 1000.0
        self._transport = transport

    def _url(self) -> str:
        return f"{self.base_url}/chat/completions"

    def _headers(self) -> dict[str, str]:
        headers = {"content-type": "application/json"}
        if self.api_key:
            headers["authorization"] = f"Bearer {self.api_key}"
        return headers

    def _payload(self, messages: List[dict]) -> dict:
        body = {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature,
            "stream": False,
        }
        if self.max_tokens:
            body["max_tokens"] = self.max_tokens
        return body

    def generate(self, messages: List[dict]) -> str:
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                response = client.post(self._url(), json=self._payload(messages), headers=self._headers())
                response.raise_for_status()
                data = response.json()
        except httpx.TimeoutException as exc:
            raise LlmBackendError(f"llm call timed out: {exc}", code="timeout") from exc
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            code = "unauthorized" if status in {401, 403} else "provider_error"
            raise LlmBackendError(f"llm provider returned {status}", code=code) from exc
        except httpx.HTTPError as exc:
            raise LlmBackendError(f"llm provider unavailable: {exc}", code="provider_error") from exc
        except ValueError as exc:
            raise LlmBackendError("llm provider returned invalid json", code="invalid_response") from exc
        return _extract_content(data)


def _extract_content(data: object) -> str:
    if not isinstance(data, dict):
        raise LlmBackendError("llm provider returned a non-object payload", code="invalid_response")
    choices = data.get("choices")
    if isinstance(choices, list) and choices:
        choice = choices[0]
        if isinstance(choice, dict):
            message = choice.get("message")
            if isinstance(message, dict) and message.get("content") is not None:
                return str(message.get("content"))
            if choice.get("text") is not None:
                return str(choice.get("text"))
    raise LlmBackendError("llm provider returned no choices", code="invalid_response")


class ToyChatModel:
    """Offline provider for local runs; answers with a fixed acknowledgement."""

    def generate(self, messages: List[dict]) -> str:
        last = ""
        for message in reversed(messages):
            if message.get("role") == "user":
                last = str(message.get("content") or "")
                break
        snippet = " ".join(last.split())[:80]
        return f'I received your message: "{snippet}". The toy provider does not generate real answers.'


class LlmBackend:
    """``invoke(session_id, text)`` over a chat model plus per-session memory."""

    def __init__(self, model: ChatModel, memory: SessionMemoryStore, *, system_prompt: str = "") -> None:
        self.model = model
        self.memory = memory
        self.system_prompt = system_prompt

    def _messages(self, session_id: str, text: str) -> List[dict]:
        messages: List[dict] = []
        if self.system_prompt:
            messages.append({"role": "system", "content": self.system_prompt})
        messages.extend(self.memory.messages(session_id))
        messages.append({"role": "user", "content": text})
        return messages

    def invoke(self, session_id: str, text: str) -> str:
        started = time.perf_counter()
        try:
            reply = self.model.generate(self._messages(session_id, text))
        except LlmBackendError as exc:
            metrics.inc("chat_llm_call_total", {"result": exc.code})
            logger.warning("llm call failed session=%s code=%s: %s", session_id, exc.code, exc)
            raise
        except Exception as exc:
            metrics.inc("chat_llm_call_total", {"result": "provider_error"})
            logger.warning("llm call failed session=%s: %s", session_id, exc)
            raise LlmBackendError(str(exc) or exc.__class__.__name__) from exc
        took_ms = int((time.perf_counter() - started) * 1000)
        metrics.inc("chat_llm_call_total", {"result": "ok"})
        metrics.observe("chat_llm_latency_ms", max(0, took_ms))
        self.memory.append(session_id, "user", text)
        self.memory.append(session_id, "assistant", reply)
        return reply


def build_chat_model(settings: Settings) -> ChatModel:
    if not settings.ai_enabled:
        raise ConfigError("AI_ENABLED is off; no chat model is available", code="ai_disabled")
    if settings.provider == "toy":
        return ToyChatModel()
    if settings.provider == "openai_compat":
        if not settings.api_key or not settings.api_key.strip():
            raise ConfigError("LLM_API_KEY (or DEEPSEEK_API_KEY) is required when AI is enabled", code="missing_api_key")
        return OpenAICompatChatModel(
            base_url=settings.base_url,
            api_key=settings.api_key,
            model=settings.model,
            temperature=settings.temperature,
            max_tokens=settings.max_tokens,
            timeout_ms=settings.timeout_ms,
        )
    raise ConfigError(f"unknown LLM_PROVIDER: {settings.provider}", code="unknown_provider")


def build_backend(settings: Settings, memory: Optional[SessionMemoryStore] = None) -> LlmBackend:
    model = build_chat_model(settings)
    if memory is None:
        memory = SessionMemoryStore(settings.memory_max_messages, settings.memory_max_sessions)
    return LlmBackend(model, memory, system_prompt=settings.system_prompt)
