"""FastAPI application for the WhatsApp CRM bridge."""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.adapters.whatsapp_gateway import build_gateway_adapter
from app.config import get_settings
from app.core.app_state import state
from app.core.session_registry import SessionRegistry
from app.db import db_manager
from app.infra.logging_config import LoggingConfig, get_logger
from app.routers import chats, duplicates, messages, webhooks
from app.workers.llm import build_reply_generator_from_env
from app.workers.outbound_poller import OutboundPoller
from app.workers.session_watcher import SessionWatcher

logger = get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Rebuild live sessions from the database and start the background workers."""
    settings = get_settings()
    state.reset(SessionRegistry(transport_factory=build_gateway_adapter))
    state.reply_generator = build_reply_generator_from_env()

    with db_manager.db_session() as db:
        await state.registry.rebuild(db)

    poller = OutboundPoller(state.registry)
    watcher = SessionWatcher(state.registry)
    if settings.outbound_poller_enabled:
        poller.start()
    watcher.start()
    logger.info(
        "Application started sessions=%d ai=%s",
        len(state.registry.session_ids()),
        state.reply_generator.is_configured,
    )

    yield

    logger.info("Application shutting down")
    await watcher.stop()
    await poller.stop()
    await state.registry.close_all()
    db_manager.engine.dispose()


def create_app(testing: bool = False) -> FastAPI:
    LoggingConfig()
    app = FastAPI(
        title="WhatsApp CRM Bridge",
        description="Identity reconciliation and exactly-once message storage for WhatsApp sessions.",
        version="0.1.0",
        lifespan=None if testing else lifespan,
    )

    if testing:
        state.reset()
        state.inline_inbound = True

    app.include_router(webhooks.router)
    app.include_router(messages.router)
    app.include_router(chats.router)
    app.include_router(duplicates.router)

    @app.get("/health", tags=["health"])
    def health() -> dict[str, str]:
        return {"status": "ok"}

    return app


app = create_app(testing=get_settings().is_test)
