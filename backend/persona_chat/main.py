from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from persona_chat.api import chat as chat_api
from persona_chat.api import personal as personal_api
from persona_chat.api import provider as provider_api
from persona_chat.api import roles as roles_api
from persona_chat.api import runtime_settings as runtime_settings_api
from persona_chat.api import websocket as websocket_api
from persona_chat.core.config import get_settings
from persona_chat.core.logging import setup_logging
from persona_chat.db.base import create_engine, create_sessionmaker, init_db
from persona_chat.services.chat_engine import ChatEngine
from persona_chat.services.memory_service import create_memory_service
from persona_chat.services.provider_service import ProviderService
from persona_chat.services.reply_pacer import ReplyPacer
from persona_chat.services.runtime_settings_service import RuntimeSettingsService


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""

    settings = get_settings()
    setup_logging(settings.log_level)

    engine = create_engine(settings.db_url)
    sessionmaker = create_sessionmaker(engine)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await init_db(engine)
        await app.state.chat_engine.start()
        yield
        await app.state.reply_pacer.shutdown()
        await app.state.chat_engine.shutdown()
        await engine.dispose()

    app = FastAPI(lifespan=lifespan)
    app.state.engine = engine
    app.state.sessionmaker = sessionmaker
    app.state.ws_manager = websocket_api.WebSocketManager()
    app.state.provider_service = ProviderService(sessionmaker, settings)
    app.state.memory_service = create_memory_service(sessionmaker=sessionmaker, settings=settings)
    app.state.chat_engine = ChatEngine(
        settings,
        app.state.provider_service,
        memory_service=app.state.memory_service,
    )
    app.state.reply_pacer = ReplyPacer(app.state.ws_manager)
    app.state.runtime_settings_service = RuntimeSettingsService(app, settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.parsed_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(chat_api.router)
    app.include_router(roles_api.router)
    app.include_router(personal_api.router)
    app.include_router(provider_api.router)
    app.include_router(runtime_settings_api.router)
    app.include_router(websocket_api.router)

    return app
