"""corekit: application bootstrap around a plugin lifecycle.

This module uses lazy exports so lightweight pieces (options, config fragments,
the plugin base class) can be imported without importing the server, database
and HTTP client dependencies.
"""

from __future__ import annotations

from importlib import import_module
from typing import TYPE_CHECKING, Any

__all__ = [
    "ConfigError",
    "ConfigResult",
    "ConfigSetup",
    "Core",
    "CoreError",
    "CoreOptions",
    "CorePlugin",
    "Database",
    "DatabaseError",
    "FieldSpec",
    "HookInvoker",
    "LifecycleError",
    "LifecycleState",
    "ModelDefinition",
    "ModelDefinitionError",
    "ModelMixin",
    "PluginError",
    "PluginRegistry",
    "PluginTimeoutError",
    "ServerError",
    "load_config",
]

_EXPORTS: dict[str, tuple[str, str]] = {
    "Core": (".core", "Core"),
    "LifecycleState": (".core", "LifecycleState"),
    "CoreOptions": (".options", "CoreOptions"),
    "ConfigSetup": (".config", "ConfigSetup"),
    "FieldSpec": (".config", "FieldSpec"),
    "ConfigResult": (".loader", "ConfigResult"),
    "load_config": (".loader", "load_config"),
    "CorePlugin": (".plugins", "CorePlugin"),
    "PluginRegistry": (".plugins", "PluginRegistry"),
    "HookInvoker": (".hooks", "HookInvoker"),
    "Database": (".database", "Database"),
    "ModelDefinition": (".models", "ModelDefinition"),
    "ModelMixin": (".models", "ModelMixin"),
    "CoreError": (".errors", "CoreError"),
    "ConfigError": (".errors", "ConfigError"),
    "DatabaseError": (".errors", "DatabaseError"),
    "LifecycleError": (".errors", "LifecycleError"),
    "ModelDefinitionError": (".errors", "ModelDefinitionError"),
    "PluginError": (".errors", "PluginError"),
    "PluginTimeoutError": (".errors", "PluginTimeoutError"),
    "ServerError": (".errors", "ServerError"),
}

if TYPE_CHECKING:
    from .config import ConfigSetup, FieldSpec
    from .core import Core, LifecycleState
    from .database import Database
    from .errors import (
        ConfigError,
        CoreError,
        DatabaseError,
        LifecycleError,
        ModelDefinitionError,
        PluginError,
        PluginTimeoutError,
        ServerError,
    )
    from .hooks import HookInvoker
    from .loader import ConfigResult, load_config
    from .models import ModelDefinition, ModelMixin
    from .options import CoreOptions
    from .plugins import CorePlugin, PluginRegistry


def __getattr__(name: str) -> Any:
    module_info = _EXPORTS.get(name)
    if module_info is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

    module_name, attribute = module_info
    module = import_module(module_name, __name__)
    value = getattr(module, attribute)
    globals()[name] = value
    return value
