import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import httpx
import pytest

from persona_chat.core.config import get_settings
from persona_chat.db.base import init_db
from persona_chat.main import create_app
from persona_chat.providers.base import GenerationParams, LLMResult, ProviderRuntimeConfig
from persona_chat.services.provider_service import SUPPORTED_PROVIDERS


@pytest.fixture
def app(tmp_path, monkeypatch):
    db_path = tmp_path / "test_persona_chat.db"
    monkeypatch.setenv("DB_URL", f"sqlite+aiosqlite:///{db_path}")
    monkeypatch.setenv("APP_SECRET_KEY", "test-secret")
    monkeypatch.setenv("LLM_PROVIDER", "custom")
    monkeypatch.setenv("LLM_MODEL", "stub-model")
    monkeypatch.setenv("QUEUE_INTERVAL_MS", "0")
    monkeypatch.setenv("NARRATION_INTERVAL", "1000")
    monkeypatch.setenv("NARRATION_PROBABILITY", "0")
    get_settings.cache_clear()
    app = create_app()
    stub = StubAdapter()
    app.state.provider_service.set_adapters({name: stub for name in SUPPORTED_PROVIDERS})
    app.state.stub_adapter = stub
    yield app
    get_settings.cache_clear()


@pytest.fixture
async def client(app):
    await init_db(app.state.engine)
    await app.state.chat_engine.start()
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    await app.state.reply_pacer.shutdown()
    await app.state.chat_engine.shutdown()
    await app.state.engine.dispose()


@pytest.fixture
def anyio_backend():
    return "asyncio"


class StubAdapter:
    """Adapter stub used to avoid external API calls in tests."""

    def __init__(self, reply: str = "今天天气不错。我们出去走走吧！") -> None:
        self.reply = reply
        self.calls: list[list[dict]] = []
        self.params: list[GenerationParams | None] = []

    async def list_models(self, cfg: ProviderRuntimeConfig) -> list[str]:
        return ["stub-model", "stub-mini"]

    async def generate(
        self,
        cfg: ProviderRuntimeConfig,
        messages: list[dict],
        params: GenerationParams | None = None,
    ) -> LLMResult:
        self.calls.append(messages)
        self.params.append(params)
        return LLMResult(
            content=self.reply,
            model_provider=cfg.provider,
            model_name=cfg.model_name,
            token_in=1,
            token_out=1,
        )
