"""Simulated streaming: replay a finished answer one code point at a time.

Generation happens first; this module only handles the timed emission phase,
which runs on its own thread so the requester is never blocked by it.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, List

from app.core.metrics import metrics

logger = logging.getLogger(__name__)

CharFilter = Callable[[str, str], str]


@dataclass(frozen=True)
class StreamSinks:
    on_session: Callable[[str], None]
    on_token: Callable[[str], None]
    on_complete: Callable[[str], None]
    on_error: Callable[[BaseException], None]


def default_char_filter(unit: str, emitted: str) -> str:
    """Drop ``\\r``, collapse repeated spaces, allow at most two newlines in a row."""
    if unit == "\r":
        return ""
    if unit == " " and emitted.endswith(" "):
        return ""
    if unit == "\n" and emitted.endswith("\n\n"):
        return ""
    return unit


def emit_units(
    text: str,
    sinks: StreamSinks,
    *,
    char_filter: CharFilter = default_char_filter,
    delay_ms: int = 0,
    session_id: str = "",
) -> None:
    """Deliver ``text`` to the sinks; ends with exactly one of on_complete or on_error."""
    emitted: List[str] = []
    emitted_text = ""
    try:
        # Python str iteration yields code points, so surrogate pairs never split.
        for ch in text:
            unit = char_filter(ch, emitted_text)
            if not unit:
                continue
            emitted.append(unit)
            emitted_text += unit
            sinks.on_token(unit)
            if delay_ms > 0:
                time.sleep(delay_ms / 1000.0)
    except Exception as exc:
        logger.warning("stream emission failed session=%s after %s units: %s", session_id, len(emitted), exc)
        metrics.inc("chat_stream_event_total", {"event": "error"})
        sinks.on_error(exc)
        return
    metrics.inc("chat_stream_event_total", {"event": "token"}, value=len(emitted))
    metrics.inc("chat_stream_event_total", {"event": "done"})
    sinks.on_complete("".join(emitted))


def start_emission(
    text: str,
    sinks: StreamSinks,
    *,
    session_id: str,
    char_filter: CharFilter = default_char_filter,
    delay_ms: int = 0,
) -> threading.Thread:
    thread = threading.Thread(
        target=emit_units,
        args=(text, sinks),
        kwargs={"char_filter": char_filter, "delay_ms": delay_ms, "session_id": session_id},
        name=f"ai-stream-{session_id}",
        daemon=True,
    )
    thread.start()
    return thread
