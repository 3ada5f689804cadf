# tenantbridge/logging_config.py
from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from .config import settings
from .middleware.request_id import get_request_id

# structured fields callers pass via `extra=`
STRUCTURED_FIELDS = (
    "org_id",
    "user_id",
    "role",
    "operation",
    "entity",
    "status_code",
    "duration_ms",
    "error_kind",
)

_HANDLER_NAME = "tenantbridge-json"


class JsonLineFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        line: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        rid = get_request_id()
        if rid is not None:
            line["request_id"] = rid
        line.update({k: getattr(record, k) for k in STRUCTURED_FIELDS if hasattr(record, k)})
        if record.exc_info:
            line["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(line, ensure_ascii=False, default=str)


def configure_logging(level: str | None = None) -> None:
    """Installs the JSON handler on the root logger once; later calls only adjust levels."""
    level = (level or settings.log_level or "INFO").upper()
    root = logging.getLogger()
    root.setLevel(level)

    if not any(h.get_name() == _HANDLER_NAME for h in root.handlers):
        # uvicorn --reload re-imports the app; drop whatever it installed
        for h in list(root.handlers):
            root.removeHandler(h)
        handler = logging.StreamHandler(sys.stdout)
        handler.set_name(_HANDLER_NAME)
        handler.setFormatter(JsonLineFormatter())
        root.addHandler(handler)

    for h in root.handlers:
        h.setLevel(level)
    logging.getLogger("sqlalchemy.engine").setLevel((settings.sql_log_level or "WARNING").upper())
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
