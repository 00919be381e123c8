from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import List, Optional

from app.core.chat_context import get_context_store
from app.core.continuation import Backend, continue_if_truncated
from app.core.llm import build_backend
from app.core.metrics import metrics
from app.core.preheat import ContextReader, prepare_with_preheat
from app.core.reply_cleaner import clean_reply
from app.core.session import ensure_session_id
from app.core.settings import SETTINGS, Settings
from app.core.streaming import CharFilter, StreamSinks, default_char_filter, start_emission

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TurnRequest:
    session_id: str
    message: Optional[str]
    user_id: Optional[int] = None


@dataclass(frozen=True)
class TurnResult:
    session_id: str
    answer: str
    backend_calls: int
    reason_codes: List[str] = field(default_factory=list)


class ChatService:
    """One conversational turn: preheat, generate, clean, continue if cut off.

    ``chat`` returns the final answer; ``stream_chat`` replays it to sink
    callbacks on a worker thread. Only a failure of the first model call is
    fatal to a turn.
    """

    def __init__(
        self,
        backend: Backend,
        context_store: ContextReader,
        *,
        settings: Settings = SETTINGS,
    ) -> None:
        self.backend = backend
        self.context_store = context_store
        self.settings = settings

    @classmethod
    def from_settings(cls, settings: Settings = SETTINGS) -> "ChatService":
        return cls(build_backend(settings), get_context_store(), settings=settings)

    def generate(self, turn: TurnRequest) -> TurnResult:
        sid = turn.session_id
        preheat = prepare_with_preheat(
            self.context_store,
            turn.user_id,
            turn.message,
            max_entries=self.settings.preheat_max_entries,
            max_chars=self.settings.preheat_max_chars,
        )
        raw = self.backend.invoke(sid, preheat.value or "")
        answer = clean_reply(raw, sid)
        continuation, extra_calls = continue_if_truncated(
            self.backend,
            sid,
            answer,
            max_attempts=self.settings.max_continuations,
            tail_chars=self.settings.continuation_tail_chars,
        )
        metrics.inc("chat_turn_total", {"result": continuation.reason_code.lower()})
        logger.info(
            "chat turn done session=%s user=%s calls=%s preheat=%s continuation=%s chars=%s",
            sid,
            turn.user_id,
            1 + extra_calls,
            preheat.reason_code,
            continuation.reason_code,
            len(continuation.value),
        )
        return TurnResult(
            session_id=sid,
            answer=continuation.value,
            backend_calls=1 + extra_calls,
            reason_codes=[preheat.reason_code, continuation.reason_code],
        )

    def chat(self, session_id: Optional[str], message: Optional[str], user_id: Optional[int] = None) -> str:
        sid = ensure_session_id(session_id)
        return self.generate(TurnRequest(session_id=sid, message=message, user_id=user_id)).answer

    def stream_chat(
        self,
        session_id: Optional[str],
        message: Optional[str],
        user_id: Optional[int],
        sinks: StreamSinks,
        *,
        char_filter: CharFilter = default_char_filter,
    ) -> Optional[threading.Thread]:
        """Announce the session, generate the full answer, then replay it on a worker thread.

        Returns the emission thread, or None when generation failed and
        ``sinks.on_error`` has already been called.
        """
        sid = ensure_session_id(session_id)
        sinks.on_session(sid)
        metrics.inc("chat_stream_event_total", {"event": "session"})
        try:
            result = self.generate(TurnRequest(session_id=sid, message=message, user_id=user_id))
        except Exception as exc:
            logger.warning("stream generation failed session=%s: %s", sid, exc)
            metrics.inc("chat_stream_event_total", {"event": "error"})
            sinks.on_error(exc)
            return None
        return start_emission(
            result.answer,
            sinks,
            session_id=sid,
            char_filter=char_filter,
            delay_ms=self.settings.stream_token_delay_ms,
        )
