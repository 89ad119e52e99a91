import logging
import os

from pipewatch.utils.logging_config import ColoredFormatter, setup_logging


def test_file_only_logging_for_the_ui(tmp_path):
    path = setup_logging(level=logging.DEBUG, log_dir=str(tmp_path), console=False)

    assert path is not None and os.path.basename(path).startswith("pipewatch_")
    logging.getLogger("pipewatch.test").info("hello file")
    for handler in logging.getLogger().handlers:
        handler.flush()
    with open(path, encoding="utf-8") as fh:
        assert "hello file" in fh.read()
    assert not any(isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
                   for h in logging.getLogger().handlers)


def test_httpx_quiet_unless_debug():
    setup_logging(level=logging.INFO, log_dir=None)
    assert logging.getLogger("httpx").level == logging.WARNING


def test_colored_formatter_handles_custom_levels():
    record = logging.LogRecord("pipewatch", 25, __file__, 1, "custom", None, None)
    assert ColoredFormatter().format(record).endswith("custom")
    record = logging.LogRecord("pipewatch", logging.ERROR, __file__, 1, "bad", None, None)
    assert ColoredFormatter().format(record).startswith("\x1b[31m")
