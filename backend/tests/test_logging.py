from __future__ import annotations

import io
import logging

from persona_chat.core.logging import RedactionFilter, setup_logging


def test_redaction_keeps_numeric_placeholders():
    stream = io.StringIO()
    handler = logging.StreamHandler(stream)
    root = logging.getLogger()
    root.addHandler(handler)
    try:
        setup_logging("INFO")
        assert any(isinstance(item, RedactionFilter) for item in handler.filters)

        logging.getLogger("persona_chat.tests").warning(
            "Request %s failed (%s); retry %d/%d", "req_1", "key sk-abcdef123456", 1, 3
        )
    finally:
        root.removeHandler(handler)

    output = stream.getvalue()
    assert "Request req_1 failed (key sk-***); retry 1/3" in output
    assert "sk-abcdef123456" not in output


def test_redacted_failure_lines_reach_log_capture(caplog):
    setup_logging("INFO")
    logger = logging.getLogger("persona_chat.tests")

    with caplog.at_level(logging.WARNING):
        logger.warning("Request %s exhausted %d retries (%s)", "req_2", 3, "AIza" + "x" * 24)

    assert "Request req_2 exhausted 3 retries (sk-***)" in caplog.text
