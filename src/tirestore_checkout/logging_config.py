"""Logging configuration with checkout-session correlation.

Every record gets the id of the checkout session it was emitted under, so
one shopper's path through the wizard can be followed in aggregated logs.
"""
from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Optional

checkout_session_id_var: ContextVar[Optional[str]] = ContextVar("checkout_session_id", default=None)

_STANDARD_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()
) | {"message", "asctime", "checkout_session_id"}


class CheckoutContextFilter(logging.Filter):
    """Adds the current checkout session id to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.checkout_session_id = checkout_session_id_var.get()
        return True


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        session_id = getattr(record, "checkout_session_id", None)
        if session_id:
            log_data["checkout_session_id"] = session_id

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _STANDARD_ATTRS and not key.startswith("_"):
                log_data[key] = value

        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable formatter that shows the session id when there is one."""

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        session_id = getattr(record, "checkout_session_id", None)
        return f"{base} [checkout={session_id}]" if session_id else base


def setup_logging(level: str = "INFO", json_format: bool = False) -> None:
    """Configure the ``tirestore_checkout`` logger hierarchy."""
    handler = logging.StreamHandler(sys.stderr)
    handler.addFilter(CheckoutContextFilter())
    if json_format:
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(TextFormatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))

    logger = logging.getLogger("tirestore_checkout")
    logger.handlers.clear()
    logger.addHandler(handler)
    logger.setLevel(level.upper())
    logger.propagate = False
