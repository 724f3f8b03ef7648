"""Logger construction and the `handle_log` plugin bridge."""

from __future__ import annotations

import asyncio
import contextvars
import itertools
import logging
import sys
from datetime import date
from pathlib import Path
from typing import TYPE_CHECKING

from .hooks import HANDLE_LOG

if TYPE_CHECKING:
    from .hooks import HookInvoker
    from .plugins import PluginRegistry

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(message)s"

_module_logger = logging.getLogger(__name__)
_logger_ids = itertools.count(1)
_dispatching: contextvars.ContextVar[bool] = contextvars.ContextVar("corekit_log_dispatching", default=False)


def level_number(name: str | None) -> int | None:
    if name is None:
        return None
    return logging.getLevelName(name.upper())


def create_logger(
    slug: str,
    log_folder: Path,
    *,
    level: str = "debug",
    console: bool = True,
) -> logging.Logger:
    """Build the application logger.

    `debug/<date>.txt` receives every record at or above `level`,
    `error/<date>.txt` receives warnings and errors. Every call returns a
    distinct logger under `corekit.app.<slug>`, so cores sharing a name never
    share handlers.
    """
    logger = logging.getLogger(f"corekit.app.{slug}.{next(_logger_ids)}")
    logger.setLevel(logging.DEBUG)

    formatter = logging.Formatter(LOG_FORMAT)
    file_name = f"{date.today().isoformat()}.txt"
    for folder_name, handler_level in (("debug", level_number(level)), ("error", logging.WARNING)):
        folder = log_folder / folder_name
        folder.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(folder / file_name, encoding="utf-8")
        handler.setLevel(handler_level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    if console:
        stream = logging.StreamHandler(sys.stderr)
        stream.setLevel(max(logging.INFO, level_number(level)))
        stream.setFormatter(formatter)
        logger.addHandler(stream)
    return logger


def close_logger(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


class PluginLogBridge(logging.Handler):
    """Forwards log records to plugins implementing `handle_log`.

    Dispatch is fire-and-forget on the running event loop. Records from other
    threads are handed to the loop passed to `bind()`; before that they are
    dropped. Records emitted from inside a dispatch are not forwarded again.
    """

    def __init__(self, registry: PluginRegistry, invoker: HookInvoker) -> None:
        super().__init__(logging.DEBUG)
        self._registry = registry
        self._invoker = invoker
        self._tasks: set[asyncio.Task[None]] = set()
        self._loop: asyncio.AbstractEventLoop | None = None

    def bind(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop

    def emit(self, record: logging.LogRecord) -> None:
        if _dispatching.get() or not self._registry.entries_with_member(HANDLE_LOG):
            return
        level = record.levelname.lower()
        message = record.getMessage()
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            loop = self._loop
            if loop is not None and not loop.is_closed():
                loop.call_soon_threadsafe(self._schedule, level, message)
            return
        self._schedule(level, message)

    def _schedule(self, level: str, message: str) -> None:
        task = asyncio.get_running_loop().create_task(self._dispatch(level, message))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _dispatch(self, level: str, message: str) -> None:
        _dispatching.set(True)
        try:
            await self._invoker.invoke(HANDLE_LOG, level, message)
        except Exception:
            _module_logger.exception("handle_log dispatch failed for %r", message)

    async def drain(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks))
