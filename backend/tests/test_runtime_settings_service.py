from __future__ import annotations

from fastapi import FastAPI
import pytest

from persona_chat.core.config import Settings
from persona_chat.services.runtime_settings_service import RuntimeSettingsService


def test_runtime_settings_persist_env_file(tmp_path):
    env_path = tmp_path / "runtime.env"
    app = FastAPI()
    settings = Settings()
    service = RuntimeSettingsService(
        app=app,
        settings=settings,
        env_file_candidates=(str(env_path),),
    )

    service.update_settings({"APP_HOST": "127.0.0.9"}, persist=True)
    service.update_settings({"LLM_MODEL": "gpt-4o-mini"}, persist=True)
    service.update_settings({"LLM_API_KEY": "sk-live-secret-value"}, persist=True)

    content = env_path.read_text(encoding="utf-8")
    assert "APP_HOST=127.0.0.9" in content
    assert "LLM_MODEL=gpt-4o-mini" in content
    assert "LLM_API_KEY=sk-live-secret-value" in content
    assert service.get_settings()["LLM_API_KEY"] == "sk-l…alue"


def test_runtime_settings_rejects_unknown_and_invalid_values(tmp_path):
    service = RuntimeSettingsService(
        app=FastAPI(),
        settings=Settings(),
        env_file_candidates=(str(tmp_path / "runtime.env"),),
    )

    with pytest.raises(ValueError):
        service.update_settings({"NO_SUCH_KEY": "x"}, persist=False)
    with pytest.raises(ValueError):
        service.update_settings({"APP_PORT": "not-a-port"}, persist=False)


def test_engine_settings_are_pushed_to_running_components(app):
    service = app.state.runtime_settings_service
    engine = app.state.chat_engine

    service.update_settings(
        {
            "QUEUE_MAX_CONCURRENT": 1,
            "CACHE_TTL_SEC": 42,
            "MEMORY_HISTORY_WINDOW": 2,
            "MEMORY_PERSIST_MODE": "sqlite",
        },
        persist=False,
    )

    assert engine.dispatcher.max_concurrent == 1
    assert engine.cache.ttl_sec == 42
    assert engine.prompt_builder.history_window == 2
    assert app.state.memory_service.enabled is True
