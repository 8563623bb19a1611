import logging
import sys
from typing import TextIO

from pythonjsonlogger import jsonlogger

from parimutuel.core.config import get_settings

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


class PoolJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter that stamps every record with the environment and process role."""

    def __init__(self, *, role: str, app_env: str) -> None:
        super().__init__(LOG_FORMAT, rename_fields={"levelname": "level", "asctime": "ts"})
        self.role = role
        self.app_env = app_env

    def add_fields(self, log_record, record, message_dict) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record.setdefault("role", self.role)
        log_record.setdefault("env", self.app_env)


def setup_logging(role: str = "api", stream: TextIO | None = None) -> None:
    """Install one JSON handler on the root logger.

    The API and the scheduler worker log to stdout. The CLI passes stderr so its JSON
    results on stdout stay machine readable.
    """
    settings = get_settings()
    root_logger = logging.getLogger()
    if root_logger.handlers:
        return

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(PoolJsonFormatter(role=role, app_env=settings.app_env))

    root_logger.setLevel(settings.log_level.upper())
    root_logger.addHandler(handler)

    # RPC and price URLs can carry API keys in query strings.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
