import json

import pytest
from fastapi.testclient import TestClient

from app.api import routes
from app.core.cache import CacheClient
from app.core.chat import ChatService
from app.core.chat_context import ChatContextStore, context_key
from app.core.errors import ConfigError, LlmBackendError
from app.core.settings import SETTINGS
from app.main import app


@pytest.fixture
def client(monkeypatch, context_store):
    monkeypatch.setattr(routes, "get_context_store", lambda: context_store)
    return TestClient(app)


@pytest.fixture
def use_backend(monkeypatch, context_store, settings, make_backend):
    def _use(replies):
        backend = make_backend(replies)
        service = ChatService(backend, context_store, settings=settings)
        monkeypatch.setattr(routes, "get_chat_service", lambda: service)
        return backend

    return _use


def test_health_route(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_chat_route_returns_answer_and_session(client, use_backend):
    backend = use_backend(["Dune is on shelf B3."])

    response = client.post("/chat", json={"session_id": "s-1", "message": "Where is Dune?"})

    assert response.status_code == 200
    assert response.json() == {"version": "v1", "session_id": "s-1", "answer": "Dune is on shelf B3."}
    assert backend.calls == [("s-1", "Where is Dune?")]


def test_chat_route_generates_session_id_when_missing(client, use_backend):
    backend = use_backend(["ok"])

    response = client.post("/chat", json={"message": "hello"})

    sid = response.json()["session_id"]
    assert sid.strip()
    assert backend.calls[0][0] == sid


def test_chat_route_records_context_for_user(client, use_backend, context_store):
    use_backend(["Yes, two copies are available."])

    client.post("/chat", json={"session_id": "s-2", "message": "Do you have Dune?", "user_id": 42})

    entries = json.loads(context_store.get_context_json(42))
    assert [(e["role"], e["content"]) for e in entries] == [
        ("user", "Do you have Dune?"),
        ("assistant", "Yes, two copies are available."),
    ]


def test_chat_route_metrics_count_turns(client, use_backend):
    use_backend(["Fine."])
    client.post("/chat", json={"session_id": "s-3", "message": "hi"})

    response = client.get("/metrics")

    assert response.status_code == 200
    assert response.json()["chat_turn_total{result=complete}"] == 1


def test_chat_route_rejects_invalid_json_body(client):
    response = client.post("/chat", content="{invalid", headers={"content-type": "application/json"})

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "invalid_request"


def test_chat_route_rejects_missing_message(client):
    response = client.post("/chat", json={"session_id": "s-4"})

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "invalid_request"


@pytest.mark.parametrize(
    "error, status_code",
    [
        (LlmBackendError("upstream 500"), 502),
        (LlmBackendError("too slow", code="timeout"), 504),
    ],
)
def test_chat_route_maps_backend_failures(client, use_backend, error, status_code):
    use_backend([error])

    response = client.post("/chat", json={"session_id": "s-5", "message": "hi"})

    assert response.status_code == status_code
    assert response.json()["error"]["code"] == error.code


def test_chat_route_reports_unconfigured_model(client, monkeypatch):
    def _unconfigured():
        raise ConfigError("LLM_API_KEY is required", code="missing_api_key")

    monkeypatch.setattr(routes, "get_chat_service", _unconfigured)

    response = client.post("/chat", json={"message": "hi"})

    assert response.status_code == 503
    assert response.json()["error"]["code"] == "missing_api_key"


def test_context_routes_read_and_clear(client, context_store):
    context_store.append_message(8, "user", "hello")

    listed = client.get("/internal/chat/context/8").json()
    cleared = client.delete("/internal/chat/context/8").json()

    assert listed["user_id"] == 8
    assert [m["content"] for m in listed["messages"]] == ["hello"]
    assert cleared == {"status": "ok", "persisted": True}
    assert client.get("/internal/chat/context/8").json()["messages"] == []


def test_context_route_tolerates_irregular_timestamps(monkeypatch, make_history_db):
    cache = CacheClient(None)
    cache.set_text(
        context_key(7),
        json.dumps(
            [
                {"role": "user", "content": "hi", "ts": 1.5},
                {"role": "assistant", "content": "hello", "ts": "yesterday"},
                {"role": "user", "content": "bye", "timestamp": 1700000000000},
            ]
        ),
        ttl=60,
    )
    store = ChatContextStore(cache, max_chars=16000, ttl_sec=60, db=make_history_db())
    monkeypatch.setattr(routes, "get_context_store", lambda: store)

    response = TestClient(app).get("/internal/chat/context/7")

    assert response.status_code == 200
    assert [m["ts"] for m in response.json()["messages"]] == [1, None, None]


def test_startup_fails_when_api_key_is_missing(monkeypatch):
    monkeypatch.setattr(SETTINGS, "ai_enabled", True)
    monkeypatch.setattr(SETTINGS, "provider", "openai_compat")
    monkeypatch.setattr(SETTINGS, "api_key", "")
    monkeypatch.setattr(routes, "_service", None)

    with pytest.raises(ConfigError) as excinfo:
        with TestClient(app):
            pass

    assert excinfo.value.code == "missing_api_key"


def test_startup_builds_service_when_ai_enabled(monkeypatch):
    monkeypatch.setattr(SETTINGS, "ai_enabled", True)
    monkeypatch.setattr(SETTINGS, "provider", "toy")
    monkeypatch.setattr(routes, "_service", None)

    with TestClient(app) as client:
        assert client.get("/health").status_code == 200
        assert isinstance(routes._service, ChatService)


def test_disabled_ai_starts_and_answers_503(monkeypatch):
    monkeypatch.setattr(SETTINGS, "ai_enabled", False)
    monkeypatch.setattr(routes, "_service", None)

    with TestClient(app) as client:
        response = client.post("/chat", json={"message": "hi"})

    assert response.status_code == 503
    assert response.json()["error"]["code"] == "ai_disabled"
