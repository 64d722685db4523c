# ==============================================================================
#                  © 2025 Dedalus Labs, Inc. and affiliates
#                            Licensed under MIT
#               github.com/dedalus-labs/streamcache-python/LICENSE
# ==============================================================================

from __future__ import annotations

import io
import json
import logging
from typing import Any

import pytest

from streamcache.utils.logger import (
    ColoredFormatter,
    StreamCacheHandler,
    StructuredJSONFormatter,
    get_logger,
    setup_logger,
)


def _capture_logging(level: int, *, use_json: bool, **kwargs: Any) -> list[str]:
    stream = io.StringIO()

    handler = logging.StreamHandler(stream)
    handler.setLevel(level)

    if use_json:
        serializer = kwargs.pop("json_serializer", None)
        handler.setFormatter(StructuredJSONFormatter(serializer, datefmt=None))
    else:
        handler.setFormatter(logging.Formatter("%(levelname)s:%(name)s:%(message)s"))

    logger = logging.getLogger("streamcache.test.logger")
    logger.handlers = []
    logger.setLevel(level)
    logger.addHandler(handler)
    logger.propagate = False

    logger.info("fetched", extra={"context": {"stream_id": "/projects"}, "attempt": 2})
    handler.flush()
    logger.handlers = []
    logger.propagate = True

    return stream.getvalue().strip().splitlines()


@pytest.fixture
def restore_root() -> Any:
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
    for handler in handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(level)


def test_setup_logger_plain_stdout(monkeypatch: pytest.MonkeyPatch, restore_root: logging.Logger) -> None:
    monkeypatch.setenv("STREAMCACHE_LOG_JSON", "0")
    setup_logger(force=True)
    log = get_logger("streamcache.test")

    stream = io.StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(logging.Formatter("%(levelname)s:%(name)s:%(message)s"))
    log.handlers = [handler]

    log.info("demo")
    handler.flush()
    log.handlers = []

    assert stream.getvalue().strip().endswith("INFO:streamcache.test:demo")


def test_setup_logger_installs_single_handler(restore_root: logging.Logger) -> None:
    setup_logger(force=True)
    setup_logger()
    setup_logger(level="debug")

    installed = [handler for handler in restore_root.handlers if isinstance(handler, StreamCacheHandler)]
    assert len(installed) == 1
    assert restore_root.level == logging.INFO


def test_setup_logger_reads_level_and_json_from_env(
    monkeypatch: pytest.MonkeyPatch, restore_root: logging.Logger
) -> None:
    monkeypatch.setenv("STREAMCACHE_LOG_LEVEL", "warning")
    monkeypatch.setenv("STREAMCACHE_LOG_JSON", "true")

    setup_logger(force=True)

    handler = next(h for h in restore_root.handlers if isinstance(h, StreamCacheHandler))
    assert restore_root.level == logging.WARNING
    assert isinstance(handler.formatter, StructuredJSONFormatter)


def test_no_color_selects_plain_formatter(monkeypatch: pytest.MonkeyPatch, restore_root: logging.Logger) -> None:
    monkeypatch.delenv("STREAMCACHE_LOG_JSON", raising=False)
    monkeypatch.setenv("NO_COLOR", "1")

    setup_logger(force=True)

    handler = next(h for h in restore_root.handlers if isinstance(h, StreamCacheHandler))
    assert type(handler.formatter) is logging.Formatter


def test_json_formatter_uses_orjson_by_default() -> None:
    lines = _capture_logging(logging.INFO, use_json=True)

    assert len(lines) == 1
    payload = json.loads(lines[0])
    assert payload["logger"] == "streamcache.test.logger"
    assert payload["level"] == "info"
    assert payload["message"] == "fetched"
    assert payload["context"] == {"stream_id": "/projects", "attempt": 2}


def test_json_formatter_with_custom_serializer() -> None:
    lines = _capture_logging(
        logging.INFO,
        use_json=True,
        json_serializer=lambda payload: json.dumps({"wrapped": payload["message"]}),
    )

    assert json.loads(lines[0]) == {"wrapped": "fetched"}


def test_colored_formatter_restores_record() -> None:
    formatter = ColoredFormatter("%(levelname)s %(name)s %(message)s")
    record = logging.LogRecord("demo", logging.ERROR, __file__, 0, "boom", args=(), exc_info=None)

    rendered = formatter.format(record)

    assert "\033[" in rendered
    assert rendered.endswith("boom")
    assert record.levelname == "ERROR"
    assert record.name == "demo"
