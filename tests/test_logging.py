# tests/test_logging.py
import importlib
import logging
import logging as std_logging

from rich.logging import RichHandler

import utils.logging as logging_utils


def test_setup_logging_file_error(monkeypatch, caplog, narrator_settings):
    caplog.set_level(logging.ERROR)
    root_logger = std_logging.getLogger()

    class Handlers(list):
        def clear(self):
            pass

    monkeypatch.setattr(root_logger, "handlers", Handlers([caplog.handler]))

    logging_utils.structlog.configure(
        logger_factory=logging_utils.structlog.stdlib.LoggerFactory()
    )
    importlib.reload(logging_utils)

    def raise_handler(*_a, **_k):
        raise OSError("fail")

    monkeypatch.setattr(std_logging.handlers, "RotatingFileHandler", raise_handler)
    config = narrator_settings.model_copy(update={"LOG_FILE": "temp.log"})

    logging_utils.setup_logging(config)

    assert any(
        "Error setting up file logger" in record.message for record in caplog.records
    )


def test_setup_logging_writes_to_file(tmp_path, narrator_settings):
    log_file = tmp_path / "logs" / "narrator.log"
    config = narrator_settings.model_copy(
        update={"LOG_FILE": str(log_file), "LOG_LEVEL_STR": "DEBUG"}
    )
    logging_utils.setup_logging(config)
    root_logger = std_logging.getLogger()

    assert root_logger.level == logging.DEBUG
    assert any(
        isinstance(h, std_logging.handlers.RotatingFileHandler)
        for h in root_logger.handlers
    )
    assert not any(isinstance(h, RichHandler) for h in root_logger.handlers)
    for handler in root_logger.handlers:
        handler.flush()
    assert "Narrator logging setup complete." in log_file.read_text(encoding="utf-8")
    for handler in list(root_logger.handlers):
        handler.close()
        root_logger.removeHandler(handler)


def test_setup_logging_uses_rich_console(narrator_settings):
    config = narrator_settings.model_copy(update={"ENABLE_RICH_LOGGING": True})
    logging_utils.setup_logging(config)
    assert any(isinstance(h, RichHandler) for h in std_logging.getLogger().handlers)
    assert std_logging.getLogger("httpx").level == logging.WARNING
