import logging
import sys
from pathlib import Path

from deadswitch.core.config import settings


class LoggerConfig:
    """Configuration for logger singleton"""

    def __init__(self):
        self.logger = logging.getLogger("deadswitch")
        if not self.logger.handlers:
            self._setup_logging()

    def _setup_logging(self):
        formatter = logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
        )

        console = logging.StreamHandler(sys.stdout)
        console.setFormatter(formatter)
        self.logger.addHandler(console)

        if settings.LOG_FILE:
            file_handler = logging.FileHandler(Path(settings.LOG_FILE))
            file_handler.setFormatter(formatter)
            self.logger.addHandler(file_handler)

        self.logger.setLevel(settings.LOG_LEVEL.upper())
        self.logger.propagate = False

    def get_logger(self, name: str | None = None) -> logging.Logger:
        """Return the service logger, or a named child of it."""
        if name:
            return self.logger.getChild(name)
        return self.logger


logger_config = LoggerConfig()
logger = logger_config.get_logger()
