"""Optional debug logging tagged with the caller's file and line."""

from __future__ import annotations

import inspect
import logging
import os
from typing import Any

_logger = logging.getLogger("netsim")
_enabled = False


def set_debug(enabled: bool) -> None:
    """Turn debug output on or off."""
    global _enabled
    _enabled = bool(enabled)
    if _enabled:
        if not _logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(
                logging.Formatter("%(asctime)s.%(msecs)03d %(message)s", "%Y/%m/%d %H:%M:%S")
            )
            _logger.addHandler(handler)
        _logger.setLevel(logging.DEBUG)


def _emit(prefix: str, fmt: str, args: tuple[Any, ...]) -> None:
    frame = inspect.currentframe()
    caller = frame.f_back.f_back if frame is not None and frame.f_back is not None else None
    if caller is not None:
        location = f"{os.path.basename(caller.f_code.co_filename)}:{caller.f_lineno}"
    else:
        location = "?:0"
    del frame, caller
    message = fmt % args if args else fmt
    _logger.debug("%s%s (%s)", prefix, message, location)


def dprintf(fmt: str, *args: Any) -> None:
    """Log a %-formatted message when debugging is enabled."""
    if _enabled:
        _emit("", fmt, args)


def dprintf_from_node(me: int, fmt: str, *args: Any) -> None:
    """Log a %-formatted message prefixed with the node number."""
    if _enabled:
        _emit(f"[Node {me}] ", fmt, args)