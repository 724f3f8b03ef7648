"""Lifecycle hook dispatch across registered plugins."""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections.abc import Collection, Sequence
from typing import Any

from .errors import PluginTimeoutError
from .plugins import PluginRegistry

SET_CORE_REFERENCE = "set_core_reference"
GET_CONFIG_SETUP = "get_config_setup"
PRE_INIT = "pre_init"
HANDLE_CONFIG = "handle_config"
HANDLE_SERVER = "handle_server"
HANDLE_HTTP_CLIENT = "handle_http_client"
COLLECT_MODELS = "collect_models"
INIT = "init"
POST_INIT = "post_init"
READY = "ready"
HANDLE_LOG = "handle_log"
CLOSE = "close"

HOOK_NAMES = (
    SET_CORE_REFERENCE,
    GET_CONFIG_SETUP,
    PRE_INIT,
    HANDLE_CONFIG,
    HANDLE_SERVER,
    HANDLE_HTTP_CLIENT,
    COLLECT_MODELS,
    INIT,
    POST_INIT,
    READY,
    HANDLE_LOG,
    CLOSE,
)

# A plugin returning exactly False from one of these leaves the registry.
REMOVABLE_HOOKS = frozenset({PRE_INIT, HANDLE_CONFIG, INIT, POST_INIT})


def readable_list(items: Sequence[str]) -> str:
    if not items:
        return "nothing"
    if len(items) == 1:
        return items[0]
    return f"{', '.join(items[:-1])} and {items[-1]}"


class HookInvoker:
    """Calls one hook on every plugin that exposes it, concurrently.

    Callable members are called with the hook arguments and awaited when they
    return an awaitable. Non-callable members are used as the result directly.
    Exceptions are not caught: the first failure propagates out of `invoke`.
    """

    def __init__(
        self,
        registry: PluginRegistry,
        logger: logging.Logger,
        *,
        timeout_seconds: float | None = None,
        quiet_hooks: Collection[str] = (HANDLE_LOG,),
    ) -> None:
        self._registry = registry
        self._logger = logger
        self._timeout_seconds = timeout_seconds
        self._quiet_hooks = frozenset(quiet_hooks)

    async def invoke(self, hook: str, *args: Any) -> dict[str, Any]:
        entries = self._registry.entries_with_member(hook)
        if not entries:
            return {}

        started = time.perf_counter()
        results = await asyncio.gather(
            *(self._call(hook, identifier, plugin, args) for identifier, plugin in entries)
        )
        identifiers = [identifier for identifier, _plugin in entries]
        if hook not in self._quiet_hooks:
            elapsed_ms = (time.perf_counter() - started) * 1000
            self._logger.info(
                "Hook %s finished in %.0fms for %s",
                hook,
                elapsed_ms,
                readable_list(identifiers),
            )
        return dict(zip(identifiers, results))

    async def invoke_removable(self, hook: str, *args: Any) -> None:
        results = await self.invoke(hook, *args)
        removed = [identifier for identifier, result in results.items() if result is False]
        for identifier in removed:
            self._registry.remove(identifier)
        if removed:
            noun = "plugin" if len(removed) == 1 else "plugins"
            self._logger.info(
                "Removed %d %s after %s: %s",
                len(removed),
                noun,
                hook,
                readable_list(removed),
            )

    async def _call(self, hook: str, identifier: str, plugin: object, args: tuple[Any, ...]) -> Any:
        member = getattr(plugin, hook)
        if not callable(member):
            return member

        result = member(*args)
        if not inspect.isawaitable(result):
            return result
        if self._timeout_seconds is None:
            return await result
        try:
            return await asyncio.wait_for(result, self._timeout_seconds)
        except asyncio.TimeoutError as error:
            raise PluginTimeoutError(
                hook=hook,
                plugin=identifier,
                timeout_seconds=self._timeout_seconds,
            ) from error
