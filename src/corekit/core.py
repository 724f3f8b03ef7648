"""Application core: drives plugins and collaborators through the lifecycle."""

from __future__ import annotations

import asyncio
import inspect
import time
from collections.abc import Mapping
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any

from .config import ConfigSetup, ConfigSetupAggregator
from .database import Database, database_url
from .errors import LifecycleError, PluginError
from .hooks import (
    CLOSE,
    COLLECT_MODELS,
    HANDLE_CONFIG,
    HANDLE_HTTP_CLIENT,
    HANDLE_SERVER,
    INIT,
    POST_INIT,
    PRE_INIT,
    READY,
    SET_CORE_REFERENCE,
    HookInvoker,
    readable_list,
)
from .loader import ConfigResult, load_config
from .logs import PluginLogBridge, close_logger, create_logger
from .models import ModelDefinition, resolve_definition
from .options import CoreOptions
from .plugins import PluginRegistry, is_managed
from .server import HttpServer, create_app
from .transport import DEFAULT_TIMEOUT_SECONDS, create_http_client

if TYPE_CHECKING:
    import httpx
    from fastapi import FastAPI

    from .protocols import ConfigLoader


class LifecycleState(Enum):
    CONSTRUCTED = "constructed"
    PLUGINS_REGISTERED = "plugins_registered"
    CONFIG_ASSEMBLED = "config_assembled"
    CONFIG_LOADED = "config_loaded"
    COLLABORATORS_WIRED = "collaborators_wired"
    SCHEMA_READY = "schema_ready"
    INITIALIZED = "initialized"
    CLOSING = "closing"
    CLOSED = "closed"


class Core:
    """Wires logger, configuration, optional database, server and HTTP client around plugins.

    Construction only resolves options, folders and the logger. `init()` runs
    every remaining phase in order; `close()` tears everything down again.
    """

    def __init__(
        self,
        options: CoreOptions | Mapping[str, Any] | None = None,
        *,
        config_loader: ConfigLoader | None = None,
        **values: Any,
    ) -> None:
        self.start_time = datetime.now(timezone.utc)
        self._started = time.perf_counter()
        if isinstance(options, CoreOptions) and not values:
            self.options = options
        else:
            # Overrides are validated like any other option.
            self.options = CoreOptions(**{**dict(options or {}), **values})

        self.name = self.options.name
        self.version = self.options.version
        self.slug = self.options.slug
        self.app_folder = self.options.resolve_app_folder()
        self.log_folder = self.app_folder / "log"
        self.logger = create_logger(
            self.slug,
            self.log_folder,
            level=self.options.log_level,
            console=self.options.log_to_console,
        )

        self.registry = PluginRegistry(self)
        self.hooks = HookInvoker(self.registry, self.logger, timeout_seconds=self.options.hook_timeout)
        self._log_bridge = PluginLogBridge(self.registry, self.hooks)
        self.logger.addHandler(self._log_bridge)
        self._config_loader = config_loader or load_config

        self.config_setup: ConfigSetup | None = None
        self.config: dict[str, Any] | None = None
        self.database: Database | None = None
        self.app: FastAPI | None = None
        self.insecure_server: HttpServer | None = None
        self.secure_server: HttpServer | None = None
        self.http_client: httpx.AsyncClient | None = None
        self.state = LifecycleState.CONSTRUCTED

    @property
    def plugins(self) -> Mapping[str, object]:
        return self.registry.view()

    @property
    def wants_server(self) -> bool:
        return self.options.insecure_port is not None or self.options.secure_port is not None

    def has_plugin(self, identifier: str) -> bool:
        return identifier in self.registry

    def get_plugin(self, identifier: str) -> object | None:
        return self.registry.get(identifier)

    async def init(self, plugins: Mapping[str, Any] | None = None) -> None:
        if self.state is not LifecycleState.CONSTRUCTED:
            raise LifecycleError(f"cannot initialize {self.name} in state {self.state.value}")

        self._log_bridge.bind(asyncio.get_running_loop())
        try:
            await self._register_plugins(plugins or {})
            setup = await self._assemble_config()
            config = await self._load_config(setup)
            await self._wire_collaborators(config)
            if self.database is not None:
                await self._prepare_schema(self.database, config)
            await self._initialize(config)
        except Exception as error:
            self.logger.error("Could not initialize %s: %s", self.name, error, exc_info=error)
            raise

    async def _register_plugins(self, plugins: Mapping[str, Any]) -> None:
        for identifier, source in plugins.items():
            self.registry.register(identifier, source)
        for _identifier, plugin in self.registry.items():
            if is_managed(plugin):
                plugin.core = self  # type: ignore[attr-defined]
                plugin.logger = self.logger  # type: ignore[attr-defined]
        self.logger.debug(self.registry.describe())
        await self.hooks.invoke(SET_CORE_REFERENCE, self)
        self.state = LifecycleState.PLUGINS_REGISTERED

    async def _assemble_config(self) -> ConfigSetup:
        aggregator = ConfigSetupAggregator(self.options, slug=self.slug, app_folder=self.app_folder)
        self.config_setup = await aggregator.assemble(self.hooks)
        await self.hooks.invoke_removable(PRE_INIT)
        self.state = LifecycleState.CONFIG_ASSEMBLED
        return self.config_setup

    async def _load_config(self, setup: ConfigSetup) -> dict[str, Any]:
        result = self._config_loader(self.app_folder, setup)
        if inspect.isawaitable(result):
            result = await result
        self._report_config(result)
        self.config = config = result.config

        disabled = config.get("disabled_plugins") or []
        self.disable_plugins([disabled] if isinstance(disabled, str) else list(disabled))
        await self.hooks.invoke_removable(HANDLE_CONFIG, config)
        self.state = LifecycleState.CONFIG_LOADED
        return config

    def _report_config(self, result: ConfigResult) -> None:
        if result.first_run:
            self.logger.info("Created configuration files in %s", self.app_folder)
        if result.new_keys:
            self.logger.info("Added new configuration keys: %s", readable_list(result.new_keys))
        if result.deprecated_keys:
            self.logger.warning("Deprecated configuration keys: %s", readable_list(result.deprecated_keys))

    def disable_plugins(self, identifiers: list[str]) -> None:
        for identifier in identifiers:
            if self.registry.remove(identifier):
                self.logger.info("Disabled plugin %s", identifier)
            else:
                self.logger.warning("Cannot disable plugin %s, it is not registered", identifier)

    async def _wire_collaborators(self, config: dict[str, Any]) -> None:
        options = self.options

        if options.database:
            self.database = Database(
                database_url(config, sqlite=options.sqlite),
                logger=self.logger,
                log_level=options.database_log_level,
                extensions=options.database_extensions,
            )

        if self.wants_server:
            self.app = create_app(
                title=self.name,
                version=self.version,
                logger=self.logger,
                log_level=options.server_log_level,
            )
            host = str(config.get("server_host") or "0.0.0.0")
            if options.insecure_port is not None:
                self.insecure_server = HttpServer(self.app, host=host, logger=self.logger)
            if options.secure_port is not None:
                self.secure_server = HttpServer(
                    self.app,
                    host=host,
                    logger=self.logger,
                    ssl_keyfile=config["tls_key_file"],
                    ssl_certfile=config["tls_cert_file"],
                )
            await self.hooks.invoke(HANDLE_SERVER, self.app)

        if options.use_http_client:
            self.http_client = create_http_client(
                name=self.name,
                version=self.version,
                logger=self.logger,
                log_level=options.http_client_log_level,
                timeout_seconds=float(config.get("http_client_timeout") or DEFAULT_TIMEOUT_SECONDS),
            )
            await self.hooks.invoke(HANDLE_HTTP_CLIENT, self.http_client)

        self.state = LifecycleState.COLLABORATORS_WIRED

    async def _prepare_schema(self, database: Database, config: dict[str, Any]) -> None:
        await database.ensure()
        await database.authenticate()

        definitions: dict[str, ModelDefinition] = {}
        collected = await self.hooks.invoke(COLLECT_MODELS)
        for identifier, models in collected.items():
            if models is None:
                continue
            if not isinstance(models, Mapping):
                raise PluginError(f"collect_models of plugin {identifier!r} must return a mapping")
            for name, value in models.items():
                definitions[name] = resolve_definition(name, value, core=self)

        database.register_models(definitions, core=self)
        if definitions:
            self.logger.debug("Registered models: %s", readable_list(sorted(definitions)))
        await database.sync(config.get("database_schema_sync"))
        self.state = LifecycleState.SCHEMA_READY

    async def _initialize(self, config: dict[str, Any]) -> None:
        await self.hooks.invoke_removable(INIT)

        listening = []
        if self.insecure_server is not None:
            listening.append(self.insecure_server.listen(int(config["insecure_port"])))
        if self.secure_server is not None:
            listening.append(self.secure_server.listen(int(config["secure_port"])))
        if listening:
            await asyncio.gather(*listening)

        if self.database is not None:
            await self.database.start_models()

        await self.hooks.invoke_removable(POST_INIT)
        await self.hooks.invoke(READY)
        self.state = LifecycleState.INITIALIZED

        elapsed_ms = (time.perf_counter() - self._started) * 1000
        self.logger.info(
            "Initialized %s in %.0fms with %d %s",
            f"{self.name} {self.version}" if self.version else self.name,
            elapsed_ms,
            self.registry.count(),
            "plugin" if self.registry.count() == 1 else "plugins",
        )

    async def close(self) -> None:
        if self.state in (LifecycleState.CLOSING, LifecycleState.CLOSED):
            return
        self.state = LifecycleState.CLOSING

        try:
            await self.hooks.invoke(CLOSE)
        finally:
            # No handle_log dispatch once the close hook has run.
            self.logger.removeHandler(self._log_bridge)
            teardown = [server.close() for server in (self.insecure_server, self.secure_server) if server is not None]
            if self.database is not None:
                teardown.append(self.database.close())
            if self.http_client is not None:
                teardown.append(self.http_client.aclose())
            try:
                await self._log_bridge.drain()
                await asyncio.gather(*teardown)
            finally:
                self.state = LifecycleState.CLOSED
                self.logger.info("Closed %s", self.name)
                close_logger(self.logger)

    async def __aenter__(self) -> Core:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
