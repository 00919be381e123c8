"""Per-user conversation context used for preheat.

The cache (Redis, or the in-process fallback) holds the live record under
``chat:ctx:{user_id}`` with a TTL. The ``chat_history`` table is the durable
fallback: reads fall through to it on a cache miss, and ``persist_if_present``
flushes the last written snapshot to it.
"""

from __future__ import annotations

import json
import logging
import time
from collections import OrderedDict
from threading import Lock
from typing import Any, Dict, List, Optional

from app.core import chat_history_db
from app.core.cache import CacheClient, get_cache
from app.core.metrics import metrics
from app.core.settings import SETTINGS

logger = logging.getLogger(__name__)


def context_key(user_id: int) -> str:
    return f"chat:ctx:{user_id}"


def _to_json(messages: List[Dict[str, Any]]) -> str:
    try:
        return json.dumps(messages, ensure_ascii=False)
    except (TypeError, ValueError):
        return "[]"


def parse_context(raw: Optional[str]) -> Optional[List[Dict[str, Any]]]:
    """Decode a stored record; None when it is blank or not a JSON list of objects."""
    if raw is None or not raw.strip():
        return None
    try:
        parsed = json.loads(raw)
    except ValueError:
        return None
    if not isinstance(parsed, list):
        return None
    return [item for item in parsed if isinstance(item, dict)]


class ChatContextStore:
    def __init__(
        self,
        cache: CacheClient,
        *,
        max_chars: int,
        ttl_sec: int,
        max_pending: int = 10000,
        db=chat_history_db,
    ) -> None:
        self._cache = cache
        self._db = db
        self.max_chars = max_chars
        self.ttl_sec = ttl_sec
        self.max_pending = max(1, max_pending)
        self._last_snapshot: OrderedDict[int, str] = OrderedDict()
        self._lock = Lock()

    def get_context_json(self, user_id: int) -> Optional[str]:
        key = context_key(user_id)
        value = self._cache.get_text(key)
        if value is not None:
            logger.info("chat ctx read from cache key=%s user=%s size=%s", key, user_id, len(value))
            metrics.inc("chat_context_read_total", {"source": "cache"})
            return value
        value = self._db.select_context_json(user_id)
        if value is not None:
            logger.info("chat ctx fallback read from db user=%s size=%s", user_id, len(value))
            metrics.inc("chat_context_read_total", {"source": "db"})
        else:
            logger.info("chat ctx not found user=%s", user_id)
            metrics.inc("chat_context_read_total", {"source": "miss"})
        return value

    def append_message(self, user_id: Optional[int], role: Optional[str], content: Optional[str]) -> None:
        if user_id is None or role is None or content is None:
            return
        key = context_key(user_id)
        raw = self._cache.get_text(key)
        if raw is None:
            raw = self._db.select_context_json(user_id)
            if raw is not None:
                logger.info("chat ctx loaded from db user=%s size=%s", user_id, len(raw))
        messages = parse_context(raw) or []
        messages.append({"role": role, "content": content, "ts": int(time.time() * 1000)})

        payload = _to_json(messages)
        while len(payload) > self.max_chars and messages:
            messages.pop(0)
            payload = _to_json(messages)

        self._cache.set_text(key, payload, ttl=self.ttl_sec)
        with self._lock:
            self._last_snapshot[user_id] = payload
            self._last_snapshot.move_to_end(user_id)
            while len(self._last_snapshot) > self.max_pending:
                dropped, _ = self._last_snapshot.popitem(last=False)
                logger.warning("chat ctx snapshot dropped before persist user=%s", dropped)
        logger.info(
            "chat ctx wrote key=%s user=%s size=%s ttl=%ss role=%s",
            key,
            user_id,
            len(payload),
            self.ttl_sec,
            role,
        )
        metrics.inc("chat_context_append_total", {"role": role})

    def persist_if_present(self, user_id: int) -> bool:
        with self._lock:
            payload = self._last_snapshot.pop(user_id, None)
        if payload is None or not payload.strip():
            return False
        persisted = self._db.upsert_context_json(user_id, payload)
        metrics.inc("chat_context_persist_total", {"result": "ok" if persisted else "skipped"})
        return persisted

    def clear(self, user_id: int) -> None:
        self._cache.delete(context_key(user_id))
        with self._lock:
            self._last_snapshot.pop(user_id, None)


_store: ChatContextStore | None = None


def get_context_store() -> ChatContextStore:
    global _store
    if _store is not None:
        return _store
    _store = ChatContextStore(
        get_cache(),
        max_chars=SETTINGS.context_max_chars,
        ttl_sec=SETTINGS.context_ttl_sec,
        max_pending=SETTINGS.context_max_pending,
    )
    return _store
