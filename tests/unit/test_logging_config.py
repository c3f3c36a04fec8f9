import logging
import os

from i18n_sync.logging_config import PACKAGE_LOGGER_NAME, TqdmLoggingHandler, setup_logger


def _reset(logger):
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()
    logger.propagate = True


def test_setup_logger_file_and_console(tmp_path):
    log_file = tmp_path / "logs" / "run.log"
    logger = setup_logger("debug", str(log_file), True)
    try:
        assert logger.name == PACKAGE_LOGGER_NAME
        assert logger.level == logging.DEBUG
        assert logger.propagate is False
        assert any(isinstance(h, logging.FileHandler) for h in logger.handlers)
        assert any(isinstance(h, TqdmLoggingHandler) for h in logger.handlers)

        logging.disable(logging.NOTSET)
        logging.getLogger("i18n_sync.store").info("written to file")
        for handler in logger.handlers:
            handler.flush()
        assert "INFO - i18n_sync.store - written to file" in log_file.read_text(encoding="utf-8")
    finally:
        _reset(logger)


def test_setup_logger_does_not_stack_handlers(tmp_path):
    setup_logger("INFO", None, True)
    logger = setup_logger("INFO", None, True)
    try:
        assert len(logger.handlers) == 1
        assert not os.listdir(tmp_path)
    finally:
        _reset(logger)


def test_unknown_level_falls_back_to_info():
    logger = setup_logger("chatty", None, False)
    try:
        assert logger.level == logging.INFO
        assert logger.handlers == []
    finally:
        _reset(logger)
