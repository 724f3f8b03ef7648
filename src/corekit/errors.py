"""Error hierarchy for corekit."""

from __future__ import annotations

from collections.abc import Iterable


class CoreError(Exception):
    """Base class for all corekit errors."""


class ConfigError(CoreError):
    """Raised when configuration cannot be loaded or validated."""

    def __init__(self, message: str, *, missing_keys: Iterable[str] = ()) -> None:
        super().__init__(message)
        self.missing_keys = tuple(missing_keys)


class PluginError(CoreError):
    """Raised for invalid plugin sources or malformed hook results."""


class PluginTimeoutError(PluginError):
    """Raised when a plugin hook does not finish within the configured timeout."""

    def __init__(self, *, hook: str, plugin: str, timeout_seconds: float) -> None:
        super().__init__(f"plugin {plugin!r} did not finish {hook} within {timeout_seconds:.2f}s")
        self.hook = hook
        self.plugin = plugin
        self.timeout_seconds = timeout_seconds


class DatabaseError(CoreError):
    """Raised when the database collaborator cannot be wired."""


class ModelDefinitionError(DatabaseError):
    """Raised when a collected model definition is malformed."""


class ServerError(CoreError):
    """Raised when an HTTP server cannot start listening."""


class LifecycleError(CoreError):
    """Raised when a lifecycle operation is called in the wrong state."""
