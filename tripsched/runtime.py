from __future__ import annotations

import logging
import os
import re


_KEY_PARAM = re.compile(r"(key=)[^&\s]+")


class _RedactApiKeyFilter(logging.Filter):
    """urllib3 logs full request URLs at DEBUG; the distance service puts its API key in the query string."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not record.name.startswith("urllib3"):
            return True
        message = record.getMessage()
        if "key=" in message:
            record.msg = _KEY_PARAM.sub(r"\1***", message)
            record.args = ()
        return True


def configure_logging(name: str, level: str | None = None) -> logging.Logger:
    log_level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    root_logger = logging.getLogger()
    if not root_logger.handlers:
        logging.basicConfig(
            level=getattr(logging, log_level, logging.INFO),
            format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        )
    has_filter = any(isinstance(existing, _RedactApiKeyFilter) for handler in root_logger.handlers for existing in handler.filters)
    if not has_filter:
        for handler in root_logger.handlers:
            handler.addFilter(_RedactApiKeyFilter())
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, log_level, logging.INFO))
    return logger
