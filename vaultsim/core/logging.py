"""vaultsim.core.logging

One handler, two formats.

Call sites log short snake_case event names and put context in ``extra``.
The JSON formatter lifts that context into the record.
"""

from __future__ import annotations

import json
import logging
import sys
from typing import Any

from vaultsim.core.config import LoggingConfig

_RESERVED = set(logging.LogRecord("", 0, "", 0, "", None, None).__dict__) | {"message", "asctime"}


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        body: dict[str, Any] = {
            "ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname.lower(),
            "logger": record.name,
            "event": record.getMessage(),
        }
        for k, v in record.__dict__.items():
            if k not in _RESERVED and not k.startswith("_"):
                body[k] = v
        if record.exc_info:
            body["exc"] = self.formatException(record.exc_info)
        return json.dumps(body, default=str)


def configure_logging(cfg: LoggingConfig | None = None, *, stream: Any = None) -> logging.Logger:
    """Attach a single stream handler to the ``vaultsim`` logger.

    Idempotent: previous vaultsim handlers are replaced, not stacked.
    """

    cfg = cfg or LoggingConfig()
    logger = logging.getLogger("vaultsim")
    logger.setLevel(getattr(logging, cfg.level.upper(), logging.INFO))

    for h in list(logger.handlers):
        logger.removeHandler(h)
        h.close()

    handler = logging.StreamHandler(stream or sys.stderr)
    if cfg.json_output:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s | %(levelname)-8s | %(name)s | %(message)s", datefmt="%Y-%m-%d %H:%M:%S"))
    logger.addHandler(handler)
    return logger
