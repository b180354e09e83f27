from __future__ import annotations

import json
import logging
import sys

from pos_sync.bootstrap.logging import CRASH_LOG_NAME, MAIN_LOG_NAME, configure_logging, install_exception_hook


def test_configure_logging_writes_jsonl_log_file(tmp_path) -> None:
    configure_logging(tmp_path)

    logging.getLogger("tests.logging_smoke").info("smoke log message")

    log_file = tmp_path / MAIN_LOG_NAME
    event = json.loads(log_file.read_text(encoding="utf-8").strip().splitlines()[-1])
    assert event["message"] == "smoke log message"


def test_install_exception_hook_writes_crash_log(tmp_path) -> None:
    configure_logging(tmp_path)
    install_exception_hook(tmp_path)

    try:
        raise RuntimeError("boom")
    except RuntimeError:
        sys.excepthook(*sys.exc_info())

    crash_event = json.loads((tmp_path / CRASH_LOG_NAME).read_text(encoding="utf-8").strip().splitlines()[-1])
    assert crash_event["level"] == "CRITICAL"
    assert crash_event["logger"] == "pos_sync.crash"
    assert "RuntimeError: boom" in crash_event["exc_info"]
