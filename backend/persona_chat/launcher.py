from __future__ import annotations

import os
from pathlib import Path
import re

from cryptography.fernet import Fernet
import uvicorn

from persona_chat.core.config import get_settings

SECRET_ENV_KEY = "APP_SECRET_KEY"
_SECRET_LINE = re.compile(rf"^\s*{SECRET_ENV_KEY}\s*=(.*)$")


def main() -> None:
    """Run the API server, creating an APP_SECRET_KEY on first start."""

    ensure_app_secret_key(Path.cwd() / ".env")
    settings = get_settings()
    uvicorn.run(
        "persona_chat.main:create_app",
        factory=True,
        host=settings.app_host,
        port=settings.app_port,
        log_level=settings.log_level.lower(),
    )


def ensure_app_secret_key(env_path: Path) -> str:
    """Return the secret used for stored API keys, writing a new Fernet key if none exists.

    The environment wins over the file. A blank ``APP_SECRET_KEY=`` line in
    the file is replaced rather than duplicated.
    """

    current = os.getenv(SECRET_ENV_KEY, "").strip()
    if current:
        return current

    lines = env_path.read_text(encoding="utf-8").splitlines() if env_path.exists() else []
    kept: list[str] = []
    for line in lines:
        match = _SECRET_LINE.match(line)
        if not match:
            kept.append(line)
            continue
        stored = match.group(1).strip().strip("\"'")
        if stored:
            os.environ[SECRET_ENV_KEY] = stored
            return stored

    key = Fernet.generate_key().decode("ascii")
    if kept and kept[-1].strip():
        kept.append("")
    kept.append(f"{SECRET_ENV_KEY}={key}")
    env_path.parent.mkdir(parents=True, exist_ok=True)
    env_path.write_text("\n".join(kept) + "\n", encoding="utf-8")
    os.environ[SECRET_ENV_KEY] = key
    return key


if __name__ == "__main__":
    main()
