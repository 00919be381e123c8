import logging
from typing import Any, Optional

from fastapi import APIRouter, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from app.api.schemas import ChatRequest, ChatResponse, ContextEntry, ContextResponse
from app.core.chat import ChatService
from app.core.chat_context import get_context_store, parse_context
from app.core.errors import ConfigError, LlmBackendError
from app.core.metrics import metrics
from app.core.session import ensure_session_id
from app.core.settings import SETTINGS

router = APIRouter()
logger = logging.getLogger(__name__)

_service: Optional[ChatService] = None


def get_chat_service() -> ChatService:
    global _service
    if _service is None:
        _service = ChatService.from_settings(SETTINGS)
    return _service


def init_chat_service() -> None:
    """Build the chat service up front; a ConfigError here aborts startup."""
    if not SETTINGS.ai_enabled:
        logger.info("AI_ENABLED is off; /chat will answer 503")
        return
    get_chat_service()
    logger.info("chat service ready provider=%s model=%s", SETTINGS.provider, SETTINGS.model)


def _entry_ts(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return None


def _error_response(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": {"code": code, "message": message}})


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/metrics")
def metrics_endpoint():
    return metrics.snapshot()


@router.post("/chat")
async def chat(request: Request):
    try:
        body = await request.json()
    except Exception:
        return _error_response(400, "invalid_request", "Request body must be a valid JSON object.")
    if not isinstance(body, dict):
        return _error_response(400, "invalid_request", "Request body must be a JSON object.")
    try:
        payload = ChatRequest.model_validate(body)
    except ValidationError:
        return _error_response(400, "invalid_request", "Request body must contain a string message.")

    try:
        service = get_chat_service()
    except ConfigError as exc:
        logger.warning("chat service unavailable: %s", exc)
        return _error_response(503, exc.code, str(exc))

    sid = ensure_session_id(payload.session_id)
    try:
        answer = await run_in_threadpool(service.chat, sid, payload.message, payload.user_id)
    except LlmBackendError as exc:
        status_code = 504 if exc.code == "timeout" else 502
        return _error_response(status_code, exc.code, str(exc))

    if payload.user_id is not None:
        store = get_context_store()
        await run_in_threadpool(store.append_message, payload.user_id, "user", payload.message)
        await run_in_threadpool(store.append_message, payload.user_id, "assistant", answer)

    response = ChatResponse(session_id=sid, answer=answer)
    return JSONResponse(content=response.model_dump(by_alias=True))


@router.get("/internal/chat/context/{user_id}")
def chat_context(user_id: int):
    raw = get_context_store().get_context_json(user_id)
    entries = parse_context(raw) or []
    messages = [
        ContextEntry(
            role=str(item.get("role") or ""),
            content=str(item.get("content") or ""),
            ts=_entry_ts(item.get("ts")),
        )
        for item in entries
    ]
    return ContextResponse(user_id=user_id, messages=messages).model_dump(by_alias=True)


@router.delete("/internal/chat/context/{user_id}")
def clear_chat_context(user_id: int):
    store = get_context_store()
    persisted = store.persist_if_present(user_id)
    store.clear(user_id)
    return {"status": "ok", "persisted": persisted}
