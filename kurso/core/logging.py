from __future__ import annotations

from datetime import datetime, timezone
import json
import logging
import sys

from kurso.core.config import get_settings


_CONFIGURED_ATTR = "_kurso_handler"


class JsonLineFormatter(logging.Formatter):
    # One JSON object per line.
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def configure_logging() -> None:
    # Install a single root stream handler; repeated calls only refresh the level.
    settings = get_settings()
    root = logging.getLogger()
    root.setLevel(settings.log_level.upper())
    for handler in root.handlers:
        if getattr(handler, _CONFIGURED_ATTR, False):
            return
    handler = logging.StreamHandler(sys.stderr)
    if settings.log_json:
        handler.setFormatter(JsonLineFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s")
        )
    setattr(handler, _CONFIGURED_ATTR, True)
    root.addHandler(handler)
