from __future__ import annotations

import logging
import re
from typing import Optional

from app.core.metrics import metrics

logger = logging.getLogger(__name__)

_UUID = r"[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}"
_UUID_RE = re.compile(_UUID)
_LEADING_UUID_RE = re.compile(rf"^{_UUID}\s*")
_LEADING_HEX_RUN_RE = re.compile(r"^[0-9a-fA-F-]{36,}\s*")


def strip_leading_id(text: Optional[str], session_id: Optional[str]) -> str:
    """Drop an echoed session id or uuid (and the whitespace after it) from the head of ``text``."""
    if text is None:
        return ""
    trimmed = text.strip()
    if session_id and trimmed.startswith(session_id):
        return trimmed[len(session_id):].lstrip()
    if _LEADING_UUID_RE.match(trimmed):
        return _LEADING_UUID_RE.sub("", trimmed, count=1)
    return text


def clean_reply(text: Optional[str], session_id: Optional[str]) -> str:
    # Display-only cleanup; the stored chat context keeps the raw text.
    if text is None:
        return ""
    cleaned = strip_leading_id(text, session_id)
    # Removals can expose a new match (ids glued together), so repeat until stable.
    previous = None
    while cleaned != previous:
        previous = cleaned
        if session_id and session_id.strip():
            cleaned = cleaned.replace(session_id, "")
        cleaned = _UUID_RE.sub("", cleaned)
        cleaned = _LEADING_HEX_RUN_RE.sub("", cleaned, count=1)
        cleaned = cleaned.strip()
    if len(cleaned) != len(text):
        logger.debug("reply cleaned before=%r after=%r", text, cleaned)
        metrics.inc("chat_reply_cleaned_total")
    return cleaned
