from __future__ import annotations

import logging
import sys
from typing import Any

import structlog


_CONFIGURED = False


def _coerce_level(level: int | str) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.strip().upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def configure_logging(level: int | str = logging.INFO) -> None:
    """Route structlog and stdlib records (metrics, access, httpx) to JSON on stdout.

    ``level`` accepts a name such as ``LOG_LEVEL=debug``; unknown names fall
    back to INFO. Only the first call takes effect.
    """

    global _CONFIGURED
    if _CONFIGURED:
        return

    level = _coerce_level(level)

    pre_chain: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    structlog.configure(
        processors=[
            *pre_chain,
            # Let ProcessorFormatter render JSON for stdlib log records too.
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processor=structlog.processors.JSONRenderer(),
        foreign_pre_chain=pre_chain,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)

    # Push failures are logged by the exporter; per-request httpx lines are noise.
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))

    _CONFIGURED = True
