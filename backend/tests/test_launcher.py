from __future__ import annotations

import os

from cryptography.fernet import Fernet

from persona_chat.launcher import ensure_app_secret_key
from persona_chat.utils.crypto import SecretCipher


def test_missing_secret_is_generated_as_fernet_key(tmp_path, monkeypatch):
    monkeypatch.setenv("APP_SECRET_KEY", "")
    env_path = tmp_path / ".env"
    env_path.write_text("LOG_LEVEL=DEBUG\nAPP_SECRET_KEY=\n", encoding="utf-8")

    key = ensure_app_secret_key(env_path)

    Fernet(key.encode("ascii"))
    assert os.environ["APP_SECRET_KEY"] == key
    lines = env_path.read_text(encoding="utf-8").splitlines()
    assert lines[0] == "LOG_LEVEL=DEBUG"
    assert [line for line in lines if line.startswith("APP_SECRET_KEY=")] == [f"APP_SECRET_KEY={key}"]
    cipher = SecretCipher(key)
    assert cipher.decrypt(cipher.encrypt("sk-test-value")) == "sk-test-value"


def test_existing_secret_in_file_is_reused(tmp_path, monkeypatch):
    monkeypatch.setenv("APP_SECRET_KEY", "")
    env_path = tmp_path / ".env"
    env_path.write_text('APP_SECRET_KEY="kept-secret"\n', encoding="utf-8")

    assert ensure_app_secret_key(env_path) == "kept-secret"
    assert env_path.read_text(encoding="utf-8") == 'APP_SECRET_KEY="kept-secret"\n'


def test_environment_secret_wins_and_file_is_untouched(tmp_path, monkeypatch):
    monkeypatch.setenv("APP_SECRET_KEY", "from-env")
    env_path = tmp_path / ".env"

    assert ensure_app_secret_key(env_path) == "from-env"
    assert not env_path.exists()
