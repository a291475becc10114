"""Unit tests for queue-backed JSON logging, redaction and correlation scopes."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING
from uuid import uuid4

import pytest
import structlog

from vigil.observability.logging import (
    LoggingConfig,
    correlation_scope,
    get_correlation_context,
    setup_logging,
    setup_structured_logging,
    shutdown_logging,
)

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path


@pytest.fixture(autouse=True)
def _cleanup_logging() -> Iterator[None]:
    yield
    shutdown_logging()


def _logger_name() -> str:
    return f"vigil.tests.logging.{uuid4().hex}"


def _read_json_lines(path: Path) -> list[dict[str, object]]:
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]


def test_json_logging_redacts_secrets_and_carries_correlation(tmp_path: Path) -> None:
    logger_name = _logger_name()
    handle = setup_structured_logging(
        LoggingConfig(
            run_id="run-redaction",
            base_log_dir=tmp_path,
            logger_name=logger_name,
            log_to_stdout=False,
        )
    )
    logger = logging.getLogger(logger_name)

    with correlation_scope(cycle_id="cyc-1", action_id="act-9"):
        logger.info(
            "payload token=tok-FAKE and api_key=sk-FAKE123",
            extra={"nested": {"password": "hunter2", "safe": "ok"}},
        )
    shutdown_logging(handle)

    parsed = _read_json_lines(handle.log_path)
    assert len(parsed) == 1
    assert parsed[0]["run_id"] == "run-redaction"
    assert parsed[0]["cycle_id"] == "cyc-1"
    assert parsed[0]["action_id"] == "act-9"

    line = handle.log_path.read_text(encoding="utf-8")
    assert "tok-FAKE" not in line
    assert "sk-FAKE" not in line
    assert "hunter2" not in line
    assert "***REDACTED***" in line


def test_structlog_events_render_with_fields(tmp_path: Path) -> None:
    logger_name = _logger_name()
    handle = setup_structured_logging(
        LoggingConfig(
            run_id="run-structlog",
            base_log_dir=tmp_path,
            logger_name=logger_name,
            log_to_stdout=False,
        )
    )

    structlog.get_logger(f"{logger_name}.cycle").info(
        "cycle_completed", issues=3, name="reserved"
    )
    shutdown_logging(handle)

    (record,) = _read_json_lines(handle.log_path)
    assert record["event"] == "cycle_completed"
    assert record["fields"] == {"issues": 3, "name_": "reserved"}


def test_setup_logging_reads_observability_section(tmp_path: Path) -> None:
    handle = setup_logging(
        {"log_level": "WARNING", "log_dir": str(tmp_path), "log_to_stdout": False},
        run_id="run-wrapper",
    )

    handle.logger.info("filtered out")
    handle.logger.warning("kept", extra={"token": "t-123"})
    shutdown_logging()

    lines = (tmp_path / "run-wrapper" / "vigil.jsonl").read_text(encoding="utf-8").splitlines()
    assert len(lines) == 1
    assert "t-123" not in lines[0]


def test_correlation_scope_nests_and_restores() -> None:
    with correlation_scope(cycle_id="cyc-1"):
        with correlation_scope(plan_id="plan-1", cycle_id=None):
            assert get_correlation_context() == {"plan_id": "plan-1"}
        assert get_correlation_context() == {"cycle_id": "cyc-1"}
    assert get_correlation_context() == {}


def test_correlation_scope_rejects_unknown_keys() -> None:
    with pytest.raises(ValueError, match="unsupported correlation key"):
        with correlation_scope(work_item_id="x"):
            pass


def test_setup_rejects_invalid_configuration(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="run_id"):
        setup_structured_logging(LoggingConfig(run_id=" ", base_log_dir=tmp_path))
    with pytest.raises(ValueError, match="log_filename"):
        setup_structured_logging(
            LoggingConfig(run_id="run-x", base_log_dir=tmp_path, log_filename="a/b.jsonl")
        )


def test_shutdown_flushes_every_record(tmp_path: Path) -> None:
    logger_name = _logger_name()
    handle = setup_structured_logging(
        LoggingConfig(
            run_id="run-flush",
            base_log_dir=tmp_path,
            logger_name=logger_name,
            log_to_stdout=False,
            queue_size=10_000,
        )
    )
    logger = logging.getLogger(logger_name)
    for index in range(300):
        logger.info("message %s", index)

    shutdown_logging(handle)

    assert handle.is_shutdown
    assert handle.dropped_records == 0
    assert len(handle.log_path.read_text(encoding="utf-8").splitlines()) == 300
