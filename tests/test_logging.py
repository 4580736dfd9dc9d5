from __future__ import annotations

import logging
from pathlib import Path

import pytest
from rich.logging import RichHandler

from conftest import make_settings
from vibestream.logging import LOG_FILE_NAME, log_dir, log_level, setup_logging


@pytest.fixture(autouse=True)
def restore_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    access = logging.getLogger("uvicorn.access")
    access_disabled = access.disabled
    yield
    for h in root.handlers:
        if h not in handlers:
            h.close()
    root.handlers = handlers
    root.setLevel(level)
    access.disabled = access_disabled


def _rich_handlers() -> list[logging.Handler]:
    return [h for h in logging.getLogger().handlers if isinstance(h, RichHandler)]


def test_file_logging_writes_pipeline_lines(tmp_path: Path) -> None:
    settings = make_settings(tmp_path, VS_API_LOG_DIR=tmp_path / "logs")

    log_file = setup_logging(settings)
    logging.getLogger("vibestream.pipeline").info("auto fetch region=IN saved=3")
    for h in logging.getLogger().handlers:
        h.flush()

    assert log_file == tmp_path / "logs" / LOG_FILE_NAME
    text = log_file.read_text(encoding="utf-8")
    assert "| INFO | vibestream.pipeline | auto fetch region=IN saved=3" in text


def test_console_only_writes_no_file(tmp_path: Path) -> None:
    settings = make_settings(tmp_path, VS_API_LOG_DIR=tmp_path / "logs")

    assert setup_logging(settings, to_file=False) is None
    assert not (tmp_path / "logs").exists()
    assert len(_rich_handlers()) == 1
    assert logging.getLogger().level == logging.INFO


def test_repeated_setup_replaces_only_own_handlers(tmp_path: Path) -> None:
    foreign = logging.NullHandler()
    logging.getLogger().addHandler(foreign)
    settings = make_settings(tmp_path, VS_API_LOG_DIR=tmp_path / "logs")

    setup_logging(settings)
    setup_logging(settings)

    assert foreign in logging.getLogger().handlers
    assert len(_rich_handlers()) == 1


def test_serve_mutes_uvicorn_access(tmp_path: Path) -> None:
    settings = make_settings(tmp_path, VS_API_LOG_DIR=tmp_path / "logs")
    setup_logging(settings, serve=True)

    assert logging.getLogger("uvicorn.access").disabled is True
    assert logging.getLogger("uvicorn.error").propagate is True
    assert logging.getLogger("googleapiclient.discovery_cache").level == logging.ERROR


def test_log_level_and_dir_resolution(tmp_path: Path) -> None:
    assert log_level(make_settings(tmp_path, VS_API_LOG_LEVEL="debug")) == logging.DEBUG
    assert log_level(make_settings(tmp_path, VS_API_LOG_LEVEL="chatty")) == logging.INFO

    relative = log_dir(make_settings(tmp_path, VS_API_LOG_DIR=Path("_logs")))
    assert relative.is_absolute()
    assert relative.name == "_logs"
    assert log_dir(make_settings(tmp_path, VS_API_LOG_DIR=tmp_path)) == tmp_path
