from __future__ import annotations

import logging

from persona_chat.core.security import redact_secrets


class RedactionFilter(logging.Filter):
    """Log filter that redacts provider keys before output."""

    def filter(self, record: logging.LogRecord) -> bool:
        # Format first so numeric placeholders still see their original args.
        record.msg = redact_secrets(record.getMessage())
        record.args = None
        return True


def setup_logging(level: str) -> None:
    """Configure application logging with secret redaction."""

    resolved = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=resolved,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    root = logging.getLogger()
    root.setLevel(resolved)
    # Handler-level filters also see records propagated from module loggers.
    for handler in root.handlers:
        if not any(isinstance(item, RedactionFilter) for item in handler.filters):
            handler.addFilter(RedactionFilter())
