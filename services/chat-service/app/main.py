import logging
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.routes import init_chat_service, router as api_router
from app.core.settings import SETTINGS

DEFAULT_CORS_ORIGINS = [
    "http://localhost:5173",
    "http://localhost:4173",
]


def parse_origins(raw: str) -> list[str]:
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


logging.basicConfig(level=SETTINGS.log_level)

origins = parse_origins(os.getenv("CORS_ALLOW_ORIGINS", "")) or DEFAULT_CORS_ORIGINS

app = FastAPI(title="chat-service", version="v1")
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(api_router)


@app.on_event("startup")
def startup():
    init_chat_service()
