from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class ChatServiceError(Exception):
    code = "chat_error"

    def __init__(self, message: str, *, code: Optional[str] = None) -> None:
        super().__init__(message)
        if code:
            self.code = code


class ConfigError(ChatServiceError):
    """Raised at construction time when the model backend cannot be built."""

    code = "config_error"


class LlmBackendError(ChatServiceError):
    """Hard failure of a model call: timeout, auth, upstream or payload error."""

    code = "provider_error"


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Result of a best-effort step.

    ``degraded`` is True when the step fell back to its substitute value;
    ``reason_code`` says which branch produced ``value``.
    """

    value: T
    reason_code: str
    degraded: bool = False

    @classmethod
    def ok(cls, value: T, reason_code: str) -> "Outcome[T]":
        return cls(value=value, reason_code=reason_code, degraded=False)

    @classmethod
    def fallback(cls, value: T, reason_code: str) -> "Outcome[T]":
        return cls(value=value, reason_code=reason_code, degraded=True)
