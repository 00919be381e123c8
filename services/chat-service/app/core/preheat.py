from __future__ import annotations

import logging
from typing import Optional, Protocol

from app.core.chat_context import parse_context
from app.core.errors import Outcome
from app.core.metrics import metrics

logger = logging.getLogger(__name__)

PREHEAT_HEADER = "[Conversation history - for your understanding only, do not repeat it verbatim in the answer]\n"
PREHEAT_FOOTER = "--- End of history. Use it to understand the user's background, then answer.\nUser message:\n"
DEFAULT_MAX_ENTRIES = 20
DEFAULT_MAX_CHARS = 2000


class ContextReader(Protocol):
    def get_context_json(self, user_id: int) -> Optional[str]:
        ...


def _render(value: object) -> str:
    return "" if value is None else str(value)


def prepare_with_preheat(
    store: ContextReader,
    user_id: Optional[int],
    message: Optional[str],
    *,
    max_entries: int = DEFAULT_MAX_ENTRIES,
    max_chars: int = DEFAULT_MAX_CHARS,
) -> Outcome[Optional[str]]:
    if user_id is None:
        return Outcome.ok(message, "PREHEAT_NO_USER")
    try:
        raw = store.get_context_json(user_id)
        if raw is None or not raw.strip():
            metrics.inc("chat_preheat_total", {"result": "empty"})
            return Outcome.fallback(message, "PREHEAT_EMPTY")
        entries = parse_context(raw)
        if entries is None:
            logger.warning("preheat context is not a json list user=%s", user_id)
            metrics.inc("chat_preheat_total", {"result": "malformed"})
            return Outcome.fallback(message, "PREHEAT_MALFORMED")
        if not entries:
            metrics.inc("chat_preheat_total", {"result": "empty"})
            return Outcome.fallback(message, "PREHEAT_EMPTY")

        block = PREHEAT_HEADER
        for entry in entries[-max_entries:]:
            block += f"[{_render(entry.get('role'))}]:{_render(entry.get('content'))}\n"
            if len(block) > max_chars:
                break
        block += PREHEAT_FOOTER
        block += message or ""
    except Exception as exc:
        logger.warning("preheat failed user=%s, using raw message: %s", user_id, exc)
        metrics.inc("chat_preheat_total", {"result": "error"})
        return Outcome.fallback(message, "PREHEAT_READ_ERROR")
    metrics.inc("chat_preheat_total", {"result": "applied"})
    return Outcome.ok(block, "PREHEAT_APPLIED")


def build_effective_message(
    store: ContextReader,
    user_id: Optional[int],
    message: Optional[str],
    **limits: int,
) -> Optional[str]:
    """Prefix ``message`` with a bounded excerpt of the user's history; never raises."""
    return prepare_with_preheat(store, user_id, message, **limits).value
