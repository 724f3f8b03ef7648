"""Configuration setup fragments and their aggregation.

A fragment declares configuration fields, default values and the names of
secret keys. The core builds one fragment from its own options, merges every
plugin-contributed fragment in registration order and finally the caller's
fragment, then freezes the result before handing it to the config loader.
"""

from __future__ import annotations

from collections.abc import Mapping
from copy import deepcopy
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from .errors import PluginError
from .hooks import GET_CONFIG_SETUP

if TYPE_CHECKING:
    from .hooks import HookInvoker
    from .options import CoreOptions

DEFAULT_HTTP_CLIENT_TIMEOUT_SECONDS = 30.0
DEFAULT_SCHEMA_SYNC = "sync"


@dataclass(slots=True)
class FieldSpec:
    type: Any = Any
    required: bool = False
    description: str | None = None

    @classmethod
    def coerce(cls, value: Any) -> FieldSpec:
        if isinstance(value, FieldSpec):
            return value
        if isinstance(value, Mapping):
            return cls(**dict(value))
        return cls(type=value)


@dataclass(slots=True)
class ConfigSetup:
    fields: dict[str, FieldSpec] = field(default_factory=dict)
    defaults: dict[str, Any] = field(default_factory=dict)
    secret_keys: list[str] = field(default_factory=list)

    @classmethod
    def coerce(cls, value: Any, *, source: str = "config setup") -> ConfigSetup:
        """Accept a fragment instance or a mapping with `fields`, `defaults` and `secret_keys`."""
        if isinstance(value, ConfigSetup):
            return value
        if not isinstance(value, Mapping):
            raise PluginError(f"{source} must be a ConfigSetup or a mapping, got {type(value).__name__}")

        unknown = set(value) - {"fields", "defaults", "secret_keys"}
        if unknown:
            raise PluginError(f"{source} has unknown keys: {', '.join(sorted(unknown))}")

        fields = value.get("fields") or {}
        defaults = value.get("defaults") or {}
        secret_keys = value.get("secret_keys") or []
        if not isinstance(fields, Mapping) or not isinstance(defaults, Mapping):
            raise PluginError(f"{source} fields and defaults must be mappings")
        if isinstance(secret_keys, str):
            secret_keys = [secret_keys]
        return cls(
            fields={str(key): FieldSpec.coerce(spec) for key, spec in fields.items()},
            defaults=dict(defaults),
            secret_keys=[str(key) for key in secret_keys],
        )

    def frozen(self) -> ConfigSetup:
        return ConfigSetup(
            fields=MappingProxyType(dict(self.fields)),  # type: ignore[arg-type]
            defaults=MappingProxyType(deepcopy(dict(self.defaults))),  # type: ignore[arg-type]
            secret_keys=tuple(self.secret_keys),  # type: ignore[arg-type]
        )


def _deep_merge(target: dict[str, Any], source: Mapping[str, Any]) -> None:
    for key, value in source.items():
        existing = target.get(key)
        if isinstance(existing, dict) and isinstance(value, Mapping):
            _deep_merge(existing, value)
        else:
            target[key] = deepcopy(value)


def merge_setup(target: ConfigSetup, fragment: ConfigSetup) -> None:
    """Merge `fragment` into `target` in place; later values win, secret keys accumulate."""
    target.fields.update(fragment.fields)
    _deep_merge(target.defaults, fragment.defaults)
    target.secret_keys.extend(fragment.secret_keys)


class ConfigSetupAggregator:
    def __init__(self, options: CoreOptions, *, slug: str, app_folder: Path) -> None:
        self._options = options
        self._slug = slug
        self._app_folder = app_folder

    def base_setup(self) -> ConfigSetup:
        options = self._options
        setup = ConfigSetup(defaults={"disabled_plugins": []})

        if options.database:
            setup.defaults["database_schema_sync"] = DEFAULT_SCHEMA_SYNC
            if options.sqlite:
                setup.defaults["database_path"] = str(self._app_folder / "database.sqlite")
            else:
                setup.defaults.update(
                    {
                        "database_name": self._slug,
                        "database_user": "postgres",
                        "database_host": "localhost",
                        "database_port": 5432,
                    }
                )
                setup.secret_keys.append("database_password")

        if options.insecure_port is not None or options.secure_port is not None:
            setup.defaults["server_host"] = "0.0.0.0"
        if options.insecure_port is not None:
            setup.defaults["insecure_port"] = options.insecure_port
        if options.secure_port is not None:
            setup.defaults["secure_port"] = options.secure_port
            setup.fields["tls_key_file"] = FieldSpec(type=str, required=True, description="PEM private key")
            setup.fields["tls_cert_file"] = FieldSpec(type=str, required=True, description="PEM certificate chain")
            setup.secret_keys.append("tls_key_file")

        if options.use_http_client:
            setup.defaults["http_client_timeout"] = DEFAULT_HTTP_CLIENT_TIMEOUT_SECONDS

        return setup

    async def gather(self, invoker: HookInvoker) -> ConfigSetup:
        setup = self.base_setup()
        fragments = await invoker.invoke(GET_CONFIG_SETUP)
        for identifier, fragment in fragments.items():
            if fragment is None:
                continue
            merge_setup(setup, ConfigSetup.coerce(fragment, source=f"config setup of plugin {identifier!r}"))
        return setup

    async def assemble(self, invoker: HookInvoker) -> ConfigSetup:
        setup = await self.gather(invoker)
        merge_setup(setup, self._options.config_setup)
        return setup.frozen()
