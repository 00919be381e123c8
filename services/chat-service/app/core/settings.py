import os
from dataclasses import dataclass


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


def _first_env(*names: str, default: str = "") -> str:
    for name in names:
        value = os.getenv(name)
        if value is not None and value.strip():
            return value
    return default


@dataclass
class Settings:
    ai_enabled: bool
    provider: str
    base_url: str
    api_key: str
    model: str
    temperature: float
    max_tokens: int
    timeout_ms: int
    system_prompt: str
    memory_max_messages: int
    memory_max_sessions: int
    max_continuations: int
    continuation_tail_chars: int
    preheat_max_entries: int
    preheat_max_chars: int
    stream_token_delay_ms: int
    redis_url: str
    context_max_chars: int
    context_ttl_sec: int
    context_max_pending: int
    history_db_enabled: bool
    history_db_host: str
    history_db_port: int
    history_db_name: str
    history_db_user: str
    history_db_password: str
    history_db_connect_timeout_ms: int
    log_level: str


def load_settings() -> Settings:
    provider = os.getenv("LLM_PROVIDER", "openai_compat").strip().lower() or "openai_compat"
    return Settings(
        ai_enabled=_env_bool("AI_ENABLED", "true"),
        provider=provider,
        base_url=_first_env("LLM_BASE_URL", "DEEPSEEK_BASE_URL", default="https://api.deepseek.com/v1").rstrip("/"),
        api_key=_first_env("LLM_API_KEY", "DEEPSEEK_API_KEY"),
        model=_first_env("LLM_MODEL", "DEEPSEEK_MODEL", default="deepseek-chat").strip(),
        temperature=float(os.getenv("LLM_TEMPERATURE", "0.2")),
        max_tokens=max(1, int(os.getenv("LLM_MAX_TOKENS", "4096"))),
        timeout_ms=max(100, int(os.getenv("LLM_TIMEOUT_MS", "60000"))),
        system_prompt=os.getenv("LLM_SYSTEM_PROMPT", "").strip(),
        memory_max_messages=max(1, int(os.getenv("CHAT_MEMORY_MAX_MESSAGES", "20"))),
        memory_max_sessions=max(1, int(os.getenv("CHAT_MEMORY_MAX_SESSIONS", "10000"))),
        max_continuations=max(0, int(os.getenv("CHAT_MAX_CONTINUATIONS", "1"))),
        continuation_tail_chars=max(1, int(os.getenv("CHAT_CONTINUATION_TAIL_CHARS", "180"))),
        preheat_max_entries=max(1, int(os.getenv("CHAT_PREHEAT_MAX_ENTRIES", "20"))),
        preheat_max_chars=max(1, int(os.getenv("CHAT_PREHEAT_MAX_CHARS", "2000"))),
        stream_token_delay_ms=max(0, int(os.getenv("CHAT_STREAM_TOKEN_DELAY_MS", "25"))),
        redis_url=os.getenv("REDIS_URL", "").strip(),
        context_max_chars=max(2, int(os.getenv("CHAT_CONTEXT_MAX_CHARS", "16000"))),
        context_ttl_sec=max(1, int(os.getenv("CHAT_CONTEXT_TTL_SEC", "1800"))),
        context_max_pending=max(1, int(os.getenv("CHAT_CONTEXT_MAX_PENDING", "10000"))),
        history_db_enabled=_env_bool("CHAT_HISTORY_DB_ENABLED", "false"),
        history_db_host=os.getenv("CHAT_HISTORY_DB_HOST", "127.0.0.1").strip(),
        history_db_port=max(1, int(os.getenv("CHAT_HISTORY_DB_PORT", "3306"))),
        history_db_name=os.getenv("CHAT_HISTORY_DB_NAME", "library").strip(),
        history_db_user=os.getenv("CHAT_HISTORY_DB_USER", "library").strip(),
        history_db_password=os.getenv("CHAT_HISTORY_DB_PASSWORD", ""),
        history_db_connect_timeout_ms=max(50, int(os.getenv("CHAT_HISTORY_DB_CONNECT_TIMEOUT_MS", "200"))),
        log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO",
    )


SETTINGS = load_settings()
