from __future__ import annotations

import pytest

from persona_chat.providers.base import ProviderError


@pytest.mark.anyio
async def test_chat_returns_bubbles_and_caches_reply(app, client):
    stub = app.state.stub_adapter

    response = await client.post("/api/chat/r1", json={"message": "你好"})
    assert response.status_code == 200
    data = response.json()
    assert data["role_id"] == "r1"
    assert data["scene"] == "private_chat"
    assert data["text"] == stub.reply
    assert "".join(data["bubbles"]) == data["text"]
    assert data["narration"] is None

    again = await client.post("/api/chat/r1", json={"message": "你好"})
    assert again.json()["text"] == stub.reply
    assert len(stub.calls) == 1
    assert stub.params[0].temperature == 0.85
    assert stub.params[0].max_tokens == 800

    stats = (await client.get("/api/stats")).json()
    assert stats["cache_size"] == 1
    assert stats["role_count"] == 1
    assert stats["memory_size"] == 2
    assert stats["queue_length"] == 0


@pytest.mark.anyio
async def test_chat_includes_role_persona_and_reminders_in_prompt(app, client):
    response = await client.put(
        "/api/roles/r7", json={"name": "小雪", "background": "一名咖啡师", "traits": ["温柔"]}
    )
    assert response.status_code == 200
    assert response.json()["registered"] is True

    response = await client.put(
        "/api/personal/persona",
        json={"persona": {"name": "阿杰", "gender": "male", "background": "程序员"}},
    )
    assert response.status_code == 200
    assert response.json()["persona"]["name"] == "阿杰"

    today = app.state.chat_engine._clock().date().isoformat()
    response = await client.put(
        "/api/personal/reminders",
        json={
            "reminders": [
                {"id": "1", "content": "看牙医", "date": today, "reminder_time": "15:00"},
                {"id": "2", "content": "过期提醒", "date": "2000-01-01"},
            ]
        },
    )
    assert response.json()["reminder_count"] == 2

    await client.post("/api/chat/r7", json={"message": "推荐一杯咖啡", "scene": "card"})

    system = app.state.stub_adapter.calls[-1][0]["content"]
    assert system.startswith("你是小雪，理解并回应卡片内容。")
    assert "- 名字：阿杰" in system
    assert "看牙医 (15:00)" in system
    assert "过期提醒" not in system


@pytest.mark.anyio
async def test_role_memory_endpoints(client):
    response = await client.get("/api/roles/nobody")
    assert response.status_code == 200
    data = response.json()
    assert data["name"] == "助手"
    assert data["registered"] is False

    response = await client.post(
        "/api/roles/r2/memory", json={"content": "用户昨天搬了家", "source": "event"}
    )
    assert response.status_code == 200
    memories = response.json()["memories"]
    assert memories[0]["content"] == "用户昨天搬了家"
    assert memories[0]["source"] == "event"


@pytest.mark.anyio
async def test_group_reply_endpoint(client):
    payload = {
        "message": "大家好 @小明",
        "members": [
            {"role_id": "g1", "name": "小明", "personality": "active"},
            {"role_id": "g2", "name": "小红"},
        ],
    }
    response = await client.post("/api/group/team/reply", json=payload)

    assert response.status_code == 200
    data = response.json()
    assert data["group_id"] == "team"
    assert data["items"]
    assert [item["position"] for item in data["items"]] == list(range(len(data["items"])))
    assert all(item["kind"] == "message" for item in data["items"])


@pytest.mark.anyio
async def test_backend_failure_degrades_to_fallback(app, client):
    class FailingAdapter:
        async def list_models(self, cfg):
            return ["stub-model"]

        async def generate(self, cfg, messages, params=None):
            raise ProviderError("PROVIDER_UPSTREAM", "boom", retryable=True, status_code=500)

    app.state.provider_service.set_adapters({"custom": FailingAdapter()})
    app.state.chat_engine.dispatcher.configure(3, 0, 1)

    response = await client.post("/api/chat/r1", json={"message": "hi", "scene": "moments"})

    assert response.status_code == 200
    assert response.json()["text"] in {"👍", "很棒！", "真不错", "支持！"}


@pytest.mark.anyio
async def test_missing_model_is_a_configuration_error(app, client):
    app.state.provider_service._settings.llm_model = ""

    response = await client.post("/api/chat/r1", json={"message": "hi"})

    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "PROVIDER_NOT_READY"


@pytest.mark.anyio
async def test_provider_set_select_and_status(client):
    response = await client.post(
        "/api/provider/set",
        json={
            "provider": "openai",
            "api_key": "sk-abcdefghijklmnop",
            "model_name": "stub-model",
            "temperature": 0.5,
        },
    )
    assert response.status_code == 200
    assert response.json() == {"provider": "openai", "model_name": "stub-model"}

    status = (await client.get("/api/provider")).json()
    assert status["source"] == "stored"
    assert status["base_url"] == "https://api.openai.com/v1"
    assert status["api_key_hint"] == "sk-a…mnop"
    assert status["ready"] is True

    models = await client.get("/api/provider/models")
    assert models.json() == {"provider": "openai", "models": ["stub-model", "stub-mini"]}

    response = await client.post("/api/provider/select-model", json={"model_name": "nope"})
    assert response.status_code == 400

    response = await client.post("/api/provider/set", json={"provider": "deepseek"})
    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "API_KEY_REQUIRED"


@pytest.mark.anyio
async def test_stored_temperature_overrides_scene(app, client):
    await client.post(
        "/api/provider/set",
        json={"provider": "custom", "model_name": "stub-model", "temperature": 0.3, "max_tokens": 64},
    )

    await client.post("/api/chat/r9", json={"message": "hi", "scene": "forum"})

    params = app.state.stub_adapter.params[-1]
    assert params.temperature == 0.3
    assert params.max_tokens == 64


@pytest.mark.anyio
async def test_runtime_settings_endpoint_reconfigures_engine(app, client):
    response = await client.patch(
        "/api/debug/settings",
        json={"updates": {"QUEUE_MAX_CONCURRENT": 5, "LLM_API_KEY": "sk-zzzzzzzzzzzz"}, "persist": False},
    )

    assert response.status_code == 200
    settings_map = response.json()["settings"]
    assert settings_map["QUEUE_MAX_CONCURRENT"] == 5
    assert settings_map["LLM_API_KEY"] == "sk-z…zzzz"
    assert app.state.chat_engine.dispatcher.max_concurrent == 5

    response = await client.patch(
        "/api/debug/settings", json={"updates": {"NOT_A_SETTING": 1}, "persist": False}
    )
    assert response.status_code == 400
