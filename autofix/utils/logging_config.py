import logging
import os
import sys
from datetime import datetime


class ColoredFormatter(logging.Formatter):
    """Console formatter that colours each line by level."""

    cyan = "\x1b[36m"
    green = "\x1b[32m"
    yellow = "\x1b[33m"
    red = "\x1b[31m"
    bold_red = "\x1b[31;1m"
    reset = "\x1b[0m"

    format_str = "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d - %(message)s"

    FORMATS = {
        logging.DEBUG: cyan + format_str + reset,
        logging.INFO: green + format_str + reset,
        logging.WARNING: yellow + format_str + reset,
        logging.ERROR: red + format_str + reset,
        logging.CRITICAL: bold_red + format_str + reset,
    }

    def format(self, record):
        log_fmt = self.FORMATS.get(record.levelno, self.format_str)
        return logging.Formatter(log_fmt, datefmt="%Y-%m-%d %H:%M:%S").format(record)


def setup_logging(level=logging.INFO, log_dir: str = None):
    """
    Configure the root logger for the service.

    Console output goes to stderr (coloured). When `log_dir` is given, or
    LOG_DIR is set, a daily remediation log file is written there as well.
    """
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    root_logger.setLevel(level)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(ColoredFormatter())
    root_logger.addHandler(console_handler)

    log_dir = log_dir or os.getenv("LOG_DIR")
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        file_handler = logging.FileHandler(
            os.path.join(log_dir, f"remediation_{datetime.now().strftime('%Y%m%d')}.log")
        )
        file_handler.setFormatter(logging.Formatter(ColoredFormatter.format_str, datefmt="%Y-%m-%d %H:%M:%S"))
        root_logger.addHandler(file_handler)

    # httpx logs every request at INFO, which drowns out the run log
    logging.getLogger("httpx").setLevel(logging.WARNING)

    for logger_name in ["autofix", "uvicorn", "uvicorn.error", "uvicorn.access", "main"]:
        named = logging.getLogger(logger_name)
        named.setLevel(level)
        named.propagate = True

    root_logger.info("Logging initialized (console%s).", f" + {log_dir}" if log_dir else "")
