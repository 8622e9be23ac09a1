from __future__ import annotations

from pathlib import Path

import pytest

from logger import setup_logger


def test_setup_is_idempotent(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("WAKE_PROOF_LOG_DIR", raising=False)
    first = setup_logger("test-idempotent")
    second = setup_logger("test-idempotent")

    assert first is second
    assert len(first.handlers) == 1


def test_file_handler_when_log_dir_set(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("WAKE_PROOF_LOG_DIR", str(tmp_path / "logs"))

    logger = setup_logger("test-file-handler")
    logger.info("ringing")
    for handler in logger.handlers:
        handler.flush()

    text = (tmp_path / "logs" / "wake_proof.log").read_text(encoding="utf-8")
    assert "[test-file-handler] [INFO] ringing" in text
