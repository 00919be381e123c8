from __future__ import annotations

import logging
from threading import Lock
from typing import Any, Optional

import pymysql

from app.core.settings import SETTINGS

logger = logging.getLogger(__name__)
_lock = Lock()


def _safe_int(value: Any, minimum: int = 0) -> int:
    try:
        return max(minimum, int(value))
    except Exception:
        return minimum


def _enabled() -> bool:
    return bool(SETTINGS.history_db_enabled)


def _connect():
    timeout = max(0.05, SETTINGS.history_db_connect_timeout_ms / 1000.0)
    return pymysql.connect(
        host=SETTINGS.history_db_host,
        port=SETTINGS.history_db_port,
        user=SETTINGS.history_db_user,
        password=SETTINGS.history_db_password,
        database=SETTINGS.history_db_name,
        charset="utf8mb4",
        autocommit=True,
        cursorclass=pymysql.cursors.DictCursor,
        connect_timeout=timeout,
        read_timeout=timeout,
        write_timeout=timeout,
    )


def select_context_json(user_id: int) -> Optional[str]:
    if not _enabled():
        return None
    try:
        with _lock:
            connection = _connect()
            try:
                with connection.cursor() as cursor:
                    cursor.execute(
                        "SELECT context_json FROM chat_history WHERE user_id = %s LIMIT 1",
                        (_safe_int(user_id),),
                    )
                    row = cursor.fetchone()
            finally:
                connection.close()
    except Exception as exc:
        logger.warning("chat history select failed user=%s: %s", user_id, exc)
        return None
    if not row:
        return None
    value = row.get("context_json")
    return str(value) if value is not None else None


def upsert_context_json(user_id: int, context_json: str) -> bool:
    if not _enabled():
        return False
    total_chars = len(context_json or "")
    try:
        with _lock:
            connection = _connect()
            try:
                with connection.cursor() as cursor:
                    cursor.execute(
                        """
                        INSERT INTO chat_history (user_id, context_json, total_chars, updated_at)
                        VALUES (%s, %s, %s, NOW())
                        ON DUPLICATE KEY UPDATE
                          context_json = VALUES(context_json),
                          total_chars = VALUES(total_chars),
                          updated_at = NOW()
                        """,
                        (_safe_int(user_id), context_json, total_chars),
                    )
            finally:
                connection.close()
    except Exception as exc:
        logger.warning("chat history upsert failed user=%s: %s", user_id, exc)
        return False
    return True
