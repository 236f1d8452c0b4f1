from __future__ import annotations

import json
import logging
from typing import Any

MIRROR_LOGGER = "launch_mirror.sync"

# Per-request chatter from these drowns the sync events at INFO.
QUIET_LOGGERS = ("urllib3", "apscheduler.executors.default")


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> logging.Logger:
    return logging.getLogger(name or MIRROR_LOGGER)


def log_json(logger: logging.Logger, level: int, event: str, **fields: Any) -> None:
    """One JSON object per record; None fields are dropped."""
    payload = {"event": event, **{k: v for k, v in fields.items() if v is not None}}
    logger.log(level, json.dumps(payload, default=str, ensure_ascii=False, sort_keys=True))
