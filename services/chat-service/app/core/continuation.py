from __future__ import annotations

import logging
from typing import Optional, Protocol, Tuple

from app.core.completeness import is_complete
from app.core.errors import Outcome
from app.core.metrics import metrics
from app.core.reply_cleaner import clean_reply

logger = logging.getLogger(__name__)

CONTINUATION_INSTRUCTION = (
    "Please continue the content above that was cut off. Keep it consistent with what was already said, "
    "finish with one concise closing sentence, and do not repeat sentences that already appeared. "
    "Previous excerpt: "
)
DEFAULT_TAIL_CHARS = 180
MIN_OVERLAP = 20
MIN_WORD_OVERLAP = 5


class Backend(Protocol):
    def invoke(self, session_id: str, text: str) -> str:
        ...


def excerpt_tail(text: Optional[str], max_chars: int) -> str:
    if text is None:
        return ""
    if len(text) <= max_chars:
        return text
    return text[len(text) - max_chars:]


def build_continuation_prompt(current: Optional[str], tail_chars: int = DEFAULT_TAIL_CHARS) -> str:
    return CONTINUATION_INSTRUCTION + excerpt_tail(current, tail_chars)


def _is_word_aligned(base: str, extra: str, size: int) -> bool:
    start = len(base) - size
    if start > 0 and not base[start - 1].isspace():
        return False
    if base[start].isspace():
        return False
    return size >= len(extra) or not extra[size].isalnum()


def find_overlap(base: str, extra: str) -> int:
    """Length of the longest suffix of ``base`` that ``extra`` starts with.

    Overlaps longer than ``MIN_OVERLAP`` count anywhere. Shorter ones, down to
    ``MIN_WORD_OVERLAP``, count only when they start and end on word boundaries.
    """
    max_len = min(len(base), len(extra))
    for size in range(max_len, MIN_OVERLAP, -1):
        if extra.startswith(base[-size:]):
            return size
    for size in range(min(max_len, MIN_OVERLAP), MIN_WORD_OVERLAP - 1, -1):
        if extra.startswith(base[-size:]) and _is_word_aligned(base, extra, size):
            return size
    return 0


def merge_continuations(base: str, extra: Optional[str]) -> str:
    if extra is None or not extra.strip():
        return base
    trimmed = extra.strip()
    if base.endswith(trimmed) or trimmed in base:
        return base
    overlap = find_overlap(base, trimmed)
    if overlap > 0:
        return base + trimmed[overlap:]
    separator = "" if base.endswith("\n") else "\n"
    return base + separator + trimmed


def continue_if_truncated(
    backend: Backend,
    session_id: str,
    text: str,
    *,
    max_attempts: int = 1,
    tail_chars: int = DEFAULT_TAIL_CHARS,
) -> Tuple[Outcome[str], int]:
    """Ask the backend to finish a reply that looks cut off.

    Returns the outcome and the number of backend calls made. A failed call is
    absorbed and the text as it stood before that call is returned.
    """
    if is_complete(text):
        return Outcome.ok(text, "COMPLETE"), 0
    if max_attempts <= 0:
        return Outcome.ok(text, "CONTINUATION_DISABLED"), 0

    current = text
    calls = 0
    for _ in range(max_attempts):
        if calls and is_complete(current):
            break
        prompt = build_continuation_prompt(current, tail_chars)
        calls += 1
        try:
            extra = backend.invoke(session_id, prompt)
        except Exception as exc:
            logger.warning("continuation failed session=%s, keeping partial answer: %s", session_id, exc)
            metrics.inc("chat_continuation_total", {"result": "error"})
            return Outcome.fallback(current, "CONTINUATION_FAILED"), calls
        current = merge_continuations(current, clean_reply(extra, session_id))
        metrics.inc("chat_continuation_total", {"result": "merged"})
    return Outcome.ok(current, "CONTINUATION_MERGED"), calls
