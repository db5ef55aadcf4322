"""
Logging setup for the scrape config sidecar.

The sidecar shares its pod with Telegraf, and both write to the same container
log stream. Every line therefore carries the ``scrape-config-sidecar[pid]``
tag and a UTC timestamp so it can be told apart from the agent's own output.

- ``SIDECAR_LOG_LEVEL`` sets the root level when no level is passed (default ``INFO``).
- ``SIDECAR_LOG_FORMAT`` replaces the line format.
"""
from __future__ import annotations

import logging
import os
import sys
import time
from typing import Final, Optional, TextIO, Union

COMPONENT: Final[str] = "scrape-config-sidecar"
DEFAULT_FORMAT: Final[str] = f"%(asctime)s %(levelname)s {COMPONENT}[%(process)d] %(name)s: %(message)s"
DEFAULT_DATEFMT: Final[str] = "%Y-%m-%dT%H:%M:%SZ"
_CONFIGURED: bool = False


def _resolve_level(level: Union[int, str, None]) -> int:
    if isinstance(level, int):
        return level
    if not level:
        return logging.INFO
    resolved = logging.getLevelName(level.strip().upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def build_formatter(fmt: Optional[str] = None) -> logging.Formatter:
    formatter = logging.Formatter(
        fmt=fmt or os.environ.get("SIDECAR_LOG_FORMAT") or DEFAULT_FORMAT,
        datefmt=DEFAULT_DATEFMT,
    )
    formatter.converter = time.gmtime
    return formatter


def configure_logging(
    level: Union[int, str, None] = None,
    *,
    stream: Optional[TextIO] = None,
    force: bool = False,
) -> None:
    """
    Attach a single stdout handler to the root logger.

    Args:
        level: Overrides ``SIDECAR_LOG_LEVEL`` when given.
        stream: Destination of log lines; stdout by default.
        force: Replace handlers installed by an earlier call.
    """
    global _CONFIGURED
    if _CONFIGURED and not force:
        return

    root_logger = logging.getLogger()
    if force:
        for handler in list(root_logger.handlers):
            root_logger.removeHandler(handler)

    resolved = _resolve_level(level if level is not None else os.environ.get("SIDECAR_LOG_LEVEL"))
    root_logger.setLevel(resolved)

    handler = logging.StreamHandler(stream=stream or sys.stdout)
    handler.setFormatter(build_formatter())
    root_logger.addHandler(handler)

    # redis-py logs every connection attempt; the reconnect loop would flood the stream.
    logging.getLogger("redis").setLevel(max(logging.WARNING, resolved))

    _CONFIGURED = True


__all__ = ["COMPONENT", "build_formatter", "configure_logging"]
