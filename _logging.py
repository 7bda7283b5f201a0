# /_logging.py
# Plaxt - shared logger
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

import logging
import os
import sys
from typing import Any, Callable

RESET = "\033[0m"
DIM = "\033[2m"
BLUE = "\033[34m"
GREEN = "\033[32m"
YELLOW = "\033[33m"
RED = "\033[31m"

SUCCESS = 25
logging.addLevelName(SUCCESS, "SUCCESS")

_LEVELS: dict[str, int] = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "SUCCESS": SUCCESS,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}

_COLORS: dict[int, str] = {
    logging.DEBUG: DIM,
    logging.INFO: BLUE,
    SUCCESS: GREEN,
    logging.WARNING: YELLOW,
    logging.ERROR: RED,
}

_ROOT = "plaxt"


def _level_no(level: str | int | None) -> int:
    if isinstance(level, int):
        return level
    return _LEVELS.get(str(level or "INFO").upper(), logging.INFO)


class _Formatter(logging.Formatter):
    def __init__(self, use_color: bool) -> None:
        super().__init__("%(asctime)s %(levelname)s [%(module_tag)s] %(message)s", "%Y-%m-%d %H:%M:%S")
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        if not hasattr(record, "module_tag"):
            record.module_tag = record.name.rsplit(".", 1)[-1].upper()
        line = super().format(record)
        if self.use_color:
            return f"{_COLORS.get(record.levelno, '')}{line}{RESET}"
        return line


class Logger:
    """Module-tagged logger; `log(msg, level=..., module=...)` or `log.child("X").info(msg)`."""

    def __init__(self, module: str = "MAIN") -> None:
        self.module = module.upper()
        self._log = logging.getLogger(f"{_ROOT}.{module.lower()}")

    @property
    def use_color(self) -> bool:
        return bool(_STATE.get("use_color"))

    def __call__(self, msg: str, *, level: str = "INFO", module: str | None = None, **extra: Any) -> None:
        tag = (module or self.module).upper()
        target = self if tag == self.module else Logger(tag)
        target._log.log(_level_no(level), msg, extra={"module_tag": tag, **({"ctx": extra} if extra else {})})

    def child(self, name: str) -> "Logger":
        return Logger(name)

    def debug(self, msg: str) -> None:
        self(msg, level="DEBUG")

    def info(self, msg: str) -> None:
        self(msg, level="INFO")

    def success(self, msg: str) -> None:
        self(msg, level="SUCCESS")

    def warn(self, msg: str) -> None:
        self(msg, level="WARN")

    def error(self, msg: str) -> None:
        self(msg, level="ERROR")


_STATE: dict[str, Any] = {"use_color": False, "configured": False}


def configure(*, debug: bool = False, use_color: bool | None = None) -> None:
    root = logging.getLogger(_ROOT)
    if use_color is None:
        use_color = sys.stderr.isatty() and not os.getenv("NO_COLOR")
    _STATE["use_color"] = bool(use_color)
    if not _STATE["configured"]:
        handler = logging.StreamHandler(sys.stderr)
        root.addHandler(handler)
        root.propagate = True
        _STATE["configured"] = True
    for h in root.handlers:
        h.setFormatter(_Formatter(bool(use_color)))
    root.setLevel(logging.DEBUG if debug or os.getenv("PLAXT_DEBUG") == "1" else logging.INFO)


log = Logger("MAIN")


def emit(logger: Callable[..., None] | Any | None, msg: str, level: str = "INFO", module: str = "MAIN") -> None:
    """Route *msg* to an injected logger (callable or stdlib-like), else to the shared log."""
    lvl_up = str(level or "INFO").upper()
    if logger is not None:
        if callable(logger) and not isinstance(logger, logging.Logger):
            logger(msg, level=lvl_up, module=module)
            return
        logmeth = getattr(logger, "log", None)
        if callable(logmeth):
            logmeth(_level_no(lvl_up), msg)
            return
    log(msg, level=lvl_up, module=module)


__all__ = ["log", "emit", "Logger", "configure", "BLUE", "GREEN", "DIM", "RESET"]
