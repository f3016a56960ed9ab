"""Log output with tenant correlation, configured from Settings."""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from tenancy_core.config import Settings, get_settings
from tenancy_core.tenancy.context import tenant_log_fields

PLAIN_FORMAT = "%(asctime)s %(levelname)s [%(tenant_id)s] %(name)s: %(message)s"

# Libraries whose INFO output drowns out tenancy events
_QUIET_LOGGERS = ("asyncpg", "uvicorn.access")


class StructuredLogFormatter(logging.Formatter):
    """
    Render each record as one JSON object.

    Records emitted while a tenant is bound carry its ``tenant_id``,
    ``tenant_tier`` and, when known, ``organization_id``.
    """

    def __init__(self, service_name: str | None = None) -> None:
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if self.service_name:
            entry["service"] = self.service_name
        entry.update(tenant_log_fields())

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


class TenantContextFilter(logging.Filter):
    """Stamp ``tenant_id`` and ``tenant_tier`` on records for plain-text formats."""

    def filter(self, record: logging.LogRecord) -> bool:
        fields = tenant_log_fields()
        record.tenant_id = fields.get("tenant_id", "unknown")
        record.tenant_tier = fields.get("tenant_tier", "-")
        return True


def configure_logging(
    level: str | None = None,
    json_format: bool | None = None,
    settings: Settings | None = None,
    module_levels: dict[str, str] | None = None,
) -> logging.Handler:
    """
    Replace the root logger's handlers with a single stdout handler.

    Args:
        level: Root log level (defaults to ``Settings.log_level``).
        json_format: Emit JSON lines (defaults to ``Settings.log_json``).
        settings: Settings to read defaults from (defaults to ``get_settings()``).
        module_levels: Per-logger levels, e.g. ``{"asyncpg": "ERROR"}``.

    Returns:
        The installed handler.
    """
    settings = settings or get_settings()
    level = (level or settings.log_level).upper()
    if json_format is None:
        json_format = settings.log_json

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(TenantContextFilter())
    if json_format:
        handler.setFormatter(StructuredLogFormatter(service_name=settings.service_name))
    else:
        handler.setFormatter(logging.Formatter(PLAIN_FORMAT))

    root = logging.getLogger()
    for existing in root.handlers[:]:
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    for name, name_level in (module_levels or {}).items():
        logging.getLogger(name).setLevel(name_level.upper())

    logging.getLogger(__name__).debug("Logging configured: level=%s json=%s", level, json_format)
    return handler


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
