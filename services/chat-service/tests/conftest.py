import dataclasses

import pytest

from app.core.cache import CacheClient
from app.core.chat_context import ChatContextStore
from app.core.metrics import metrics
from app.core.settings import SETTINGS


class ScriptedBackend:
    """Model backend double: returns (or raises) scripted replies in order and records calls."""

    def __init__(self, replies):
        self._replies = list(replies)
        self.calls = []

    def invoke(self, session_id, text):
        self.calls.append((session_id, text))
        if not self._replies:
            raise AssertionError("unexpected backend call")
        reply = self._replies.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        return reply


class FakeHistoryDb:
    def __init__(self, rows=None, enabled=True):
        self.rows = dict(rows or {})
        self.enabled = enabled
        self.upserts = []

    def select_context_json(self, user_id):
        return self.rows.get(user_id)

    def upsert_context_json(self, user_id, context_json):
        if not self.enabled:
            return False
        self.upserts.append((user_id, context_json))
        self.rows[user_id] = context_json
        return True


@pytest.fixture(autouse=True)
def _reset_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def settings():
    return dataclasses.replace(SETTINGS, stream_token_delay_ms=0, max_continuations=1, system_prompt="")


@pytest.fixture
def make_history_db():
    return FakeHistoryDb


@pytest.fixture
def context_store():
    return ChatContextStore(CacheClient(None), max_chars=16000, ttl_sec=60, db=FakeHistoryDb())


@pytest.fixture
def make_backend():
    return ScriptedBackend
