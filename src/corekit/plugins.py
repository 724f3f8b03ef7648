"""Plugin registration and the managed plugin base class."""

from __future__ import annotations

import inspect
import logging
from collections.abc import Iterator, Mapping
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from .errors import PluginError

if TYPE_CHECKING:
    from .core import Core

MANAGED_MARKER = "is_managed_by_core"


class CorePlugin:
    """Base class for plugins that get `core` and `logger` injected on registration."""

    is_managed_by_core = True
    core: Core | None = None
    logger: logging.Logger | None = None

    def log(self, message: str, *args: Any) -> None:
        self._require_logger().info(message, *args)

    def log_warning(self, message: str, *args: Any) -> None:
        self._require_logger().warning(message, *args)

    def log_error(self, message: str, *args: Any) -> None:
        self._require_logger().error(message, *args)

    def log_debug(self, message: str, *args: Any) -> None:
        self._require_logger().debug(message, *args)

    def _require_logger(self) -> logging.Logger:
        if self.logger is None:
            raise PluginError(f"{type(self).__name__} has not been registered with a core yet")
        return self.logger


def is_managed(instance: object) -> bool:
    return getattr(instance, MANAGED_MARKER, False) is True


def has_member(instance: object, name: str) -> bool:
    return getattr(instance, name, None) is not None


def _accepts_core_argument(factory: type) -> bool:
    if factory.__init__ is object.__init__ and factory.__new__ is object.__new__:
        return False
    try:
        signature = inspect.signature(factory)
    except (TypeError, ValueError):
        return True
    positional = (
        inspect.Parameter.POSITIONAL_ONLY,
        inspect.Parameter.POSITIONAL_OR_KEYWORD,
        inspect.Parameter.VAR_POSITIONAL,
    )
    return any(parameter.kind in positional for parameter in signature.parameters.values())


def instantiate(source: Any, owner: Any) -> object:
    """Resolve a plugin source: classes are constructed with the owner, instances pass through."""
    if source is None:
        raise PluginError("plugin source must not be None")
    if not inspect.isclass(source):
        return source
    if _accepts_core_argument(source):
        return source(owner)
    return source()


class PluginRegistry:
    """Ordered plugin registry owned by a single core instance.

    Identifiers are unique. Registering an identifier twice replaces the
    previous instance (last write wins) while keeping its original position.
    """

    def __init__(self, owner: Any) -> None:
        self._owner = owner
        self._plugins: dict[str, object] = {}

    def register(self, identifier: str, source: Any) -> object:
        if not isinstance(identifier, str) or not identifier:
            raise PluginError("plugin identifier must be a non-empty string")
        instance = instantiate(source, self._owner)
        self._plugins[identifier] = instance
        return instance

    def remove(self, identifier: str) -> bool:
        return self._plugins.pop(identifier, None) is not None

    def entries_with_member(self, name: str) -> list[tuple[str, object]]:
        return [(identifier, plugin) for identifier, plugin in self._plugins.items() if has_member(plugin, name)]

    def get(self, identifier: str) -> object | None:
        return self._plugins.get(identifier)

    def count(self) -> int:
        return len(self._plugins)

    def items(self) -> list[tuple[str, object]]:
        return list(self._plugins.items())

    def view(self) -> Mapping[str, object]:
        return MappingProxyType(self._plugins)

    def describe(self) -> str:
        """Human readable roster, e.g. ``2 plugins: main (self-managed), db (auto-managed)``."""
        if not self._plugins:
            return "No plugins registered"
        entries = [
            f"{identifier} ({'auto-managed' if is_managed(plugin) else 'self-managed'})"
            for identifier, plugin in self._plugins.items()
        ]
        noun = "plugin" if len(entries) == 1 else "plugins"
        return f"{len(entries)} {noun}: {', '.join(entries)}"

    def __contains__(self, identifier: object) -> bool:
        return identifier in self._plugins

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._plugins))

    def __len__(self) -> int:
        return len(self._plugins)
