import logging
import os
from typing import Optional

from fastapi import Request

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class LoggerService:
    """Module logger; an optional prefix tags every line (the request route for API handlers)."""

    def __init__(self, name: str = "dronedesk", prefix: Optional[str] = None):
        self.logger = logging.getLogger(name)
        self.prefix = prefix
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter(LOG_FORMAT))
            self.logger.addHandler(handler)
            self.logger.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())

    def _format(self, message: str) -> str:
        return f"[{self.prefix}] {message}" if self.prefix else message

    def info(self, message: str, extra: Optional[dict] = None):
        self.logger.info(self._format(message), extra=extra)

    def error(self, message: str, extra: Optional[dict] = None):
        self.logger.error(self._format(message), extra=extra)

    def warning(self, message: str, extra: Optional[dict] = None):
        self.logger.warning(self._format(message), extra=extra)

    def debug(self, message: str, extra: Optional[dict] = None):
        self.logger.debug(self._format(message), extra=extra)


def get_logger_service(request: Request) -> LoggerService:
    return LoggerService("dronedesk.api", prefix=f"{request.method} {request.url.path}")
