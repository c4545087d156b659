"""
Logging setup.

Every record passing the installed handler carries the tenant and actor of
the execution context bound when it was emitted, so interceptor and
escape-hatch lines can be correlated per tenant.
"""

import json
import logging
import sys
from datetime import datetime, timezone

from ..tenancy.context import current


class ExecutionContextFilter(logging.Filter):
    """Add tenant_id, actor_id and system_override to all log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        ctx = current()
        record.tenant_id = (ctx.tenant_id if ctx else None) or "-"
        record.actor_id = (ctx.actor_id if ctx else None) or "-"
        record.system_override = bool(ctx and ctx.system_override)
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "tenant_id": getattr(record, "tenant_id", "-"),
            "actor_id": getattr(record, "actor_id", "-"),
            "system_override": getattr(record, "system_override", False),
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_data["error"] = str(record.exc_info[1])
            log_data["traceback"] = self.formatException(record.exc_info)
        return json.dumps(log_data)


def configure_logging(level: str = "INFO", json_format: bool = False) -> None:
    """
    Configure application-wide logging.

    Args:
        level: Log level name (DEBUG shows every tenancy rewrite)
        json_format: Emit JSON lines instead of the plain text format
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(getattr(logging, level.upper()))
    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                "%(asctime)s - %(levelname)s - tenant=%(tenant_id)s actor=%(actor_id)s"
                " - %(name)s - %(message)s"
            )
        )
    handler.addFilter(ExecutionContextFilter())
    root_logger.addHandler(handler)

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
