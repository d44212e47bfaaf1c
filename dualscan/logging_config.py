"""Logging setup: console output plus daily-rotating application and error logs."""
import logging
import logging.handlers
from pathlib import Path
from typing import List, Optional

from dualscan.config import config
from dualscan.constants import (
    APP_LOG_FILE,
    APP_LOG_RETENTION_DAYS,
    ERROR_LOG_FILE,
    ERROR_LOG_RETENTION_DAYS,
    QUIET_LOGGERS,
)

DETAILED_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s"
CONSOLE_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _daily_file_handler(path: Path, level: int, retention_days: int) -> logging.Handler:
    handler = logging.handlers.TimedRotatingFileHandler(
        filename=str(path),
        when="midnight",
        interval=1,
        backupCount=retention_days,
        encoding="utf-8",
    )
    handler.suffix = "%Y-%m-%d"
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(DETAILED_FORMAT, datefmt=DATE_FORMAT))
    return handler


class LoggingConfig:
    """Installs the service's handlers on the root logger."""

    def __init__(self, log_dir: Optional[Path] = None) -> None:
        """
        Args:
            log_dir: Directory for the log files (defaults to ``LOG_DIR``)
        """
        self.log_dir = log_dir or config.log_dir
        self.log_file = self.log_dir / APP_LOG_FILE
        self.error_log_file = self.log_dir / ERROR_LOG_FILE

    def build_handlers(self, console_level: int) -> List[logging.Handler]:
        """
        Create the console handler and the two rotating file handlers.

        The application log keeps everything from DEBUG up for
        ``APP_LOG_RETENTION_DAYS``; the error log keeps ERROR and above for
        ``ERROR_LOG_RETENTION_DAYS``.
        """
        self.log_dir.mkdir(parents=True, exist_ok=True)

        console = logging.StreamHandler()
        console.setLevel(console_level)
        console.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt=DATE_FORMAT))

        return [
            console,
            _daily_file_handler(self.log_file, logging.DEBUG, APP_LOG_RETENTION_DAYS),
            _daily_file_handler(self.error_log_file, logging.ERROR, ERROR_LOG_RETENTION_DAYS),
        ]

    def setup_logging(self, level: int = logging.INFO) -> None:
        """Replace the root logger's handlers with this configuration's."""
        root_logger = logging.getLogger()
        for handler in list(root_logger.handlers):
            root_logger.removeHandler(handler)
            handler.close()

        # Root passes DEBUG through so the application log gets it
        root_logger.setLevel(min(level, logging.DEBUG))
        for handler in self.build_handlers(level):
            root_logger.addHandler(handler)

        # SDK and server loggers report every HTTP exchange at INFO
        for name in QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

        logging.getLogger(__name__).info(f"Logging initialized. Log files: {self.log_dir}")


def setup_app_logging(log_dir: Optional[Path] = None, level: Optional[int] = None) -> None:
    """
    Setup application logging (convenience function).

    Args:
        log_dir: Directory for log files (defaults to ``LOG_DIR``)
        level: Console log level (defaults to ``LOG_LEVEL``)
    """
    LoggingConfig(log_dir).setup_logging(config.log_level if level is None else level)
