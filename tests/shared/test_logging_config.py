"""Tests for stdout logging configuration and structured context."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from pathlib import Path

import pytest

from packages.storage_shared.config import load_settings
from packages.storage_shared.logging import (
    bind_context,
    clear_context,
    configure_logging,
    configure_logging_from_settings,
    get_context,
    get_logger,
    repository_context,
)


@pytest.fixture(autouse=True)
def restore_root_logger() -> Iterator[None]:
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    clear_context()
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    clear_context()


def test_json_output_carries_bound_and_scoped_context(
    capsys: pytest.CaptureFixture[str],
) -> None:
    """JSON lines should merge service fields with repository identities."""
    configure_logging(level="INFO", service="fedora-storage", environment="test")
    logger = get_logger("tests.logging")

    with repository_context(object_id="doc-1", payload_id="text"):
        logger.info("Payload stored")
    logger.debug("Filtered out")

    lines = capsys.readouterr().out.strip().splitlines()
    assert len(lines) == 1
    record = json.loads(lines[0])
    assert record["message"] == "Payload stored"
    assert record["level"] == "INFO"
    assert record["logger"] == "tests.logging"
    assert record["service"] == "fedora-storage"
    assert record["environment"] == "test"
    assert record["object_id"] == "doc-1"
    assert record["payload_id"] == "text"


def test_plain_output_appends_context(capsys: pytest.CaptureFixture[str]) -> None:
    """Plain output should append sorted key=value context."""
    configure_logging(level="DEBUG", json_output=False)
    bind_context(backend_pid="tf:abc")

    get_logger("tests.logging").warning("Purge failed")

    output = capsys.readouterr().out
    assert "WARNING tests.logging Purge failed" in output
    assert output.rstrip().endswith("backend_pid=tf:abc")


def test_configure_logging_is_idempotent() -> None:
    """Repeated configuration should keep exactly one root handler."""
    configure_logging()
    configure_logging()

    assert len(logging.getLogger().handlers) == 1


def test_configure_logging_from_settings(tmp_path: Path) -> None:
    """Typed logging settings should drive level and service fields."""
    settings = load_settings(
        cli_params={"logging": {"level": "ERROR", "service": "ingest-worker"}},
        config_path=tmp_path / "storage.yaml",
    )

    configure_logging_from_settings(settings.logging)

    assert logging.getLogger().level == logging.ERROR
    assert get_context()["service"] == "ingest-worker"


def test_clear_context_drops_selected_keys() -> None:
    """Clearing named keys should leave the others bound."""
    bind_context(object_id="doc-1", payload_id="text", ignored=None)

    clear_context("payload_id")

    assert get_context() == {"object_id": "doc-1"}
