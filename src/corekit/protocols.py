"""Protocol contracts for corekit plugins and collaborators.

Every lifecycle hook is optional. A plugin participates in a phase by exposing
a member named after the hook; the protocols below document the call shape and
can be used for static typing of plugin classes.
"""

from __future__ import annotations

from collections.abc import Awaitable, Mapping
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    import httpx
    from fastapi import FastAPI

    from .config import ConfigSetup
    from .core import Core
    from .loader import ConfigResult


@runtime_checkable
class SetCoreReferenceHook(Protocol):
    def set_core_reference(self, core: Core) -> Awaitable[None] | None: ...


@runtime_checkable
class GetConfigSetupHook(Protocol):
    def get_config_setup(self) -> ConfigSetup | Mapping[str, Any] | None: ...


@runtime_checkable
class PreInitHook(Protocol):
    def pre_init(self) -> Awaitable[bool | None] | bool | None: ...


@runtime_checkable
class HandleConfigHook(Protocol):
    def handle_config(self, config: dict[str, Any]) -> Awaitable[bool | None] | bool | None: ...


@runtime_checkable
class HandleServerHook(Protocol):
    def handle_server(self, app: FastAPI) -> Awaitable[None] | None: ...


@runtime_checkable
class HandleHttpClientHook(Protocol):
    def handle_http_client(self, client: httpx.AsyncClient) -> Awaitable[None] | None: ...


@runtime_checkable
class CollectModelsHook(Protocol):
    def collect_models(self) -> Mapping[str, Any] | Awaitable[Mapping[str, Any]]: ...


@runtime_checkable
class InitHook(Protocol):
    def init(self) -> Awaitable[bool | None] | bool | None: ...


@runtime_checkable
class PostInitHook(Protocol):
    def post_init(self) -> Awaitable[bool | None] | bool | None: ...


@runtime_checkable
class ReadyHook(Protocol):
    def ready(self) -> Awaitable[None] | None: ...


@runtime_checkable
class HandleLogHook(Protocol):
    def handle_log(self, level: str, message: str) -> Awaitable[None] | None: ...


@runtime_checkable
class CloseHook(Protocol):
    def close(self) -> Awaitable[None] | None: ...


@runtime_checkable
class ConfigLoader(Protocol):
    def __call__(self, app_folder: Path, setup: ConfigSetup) -> ConfigResult: ...


@runtime_checkable
class ServerHandle(Protocol):
    async def listen(self, port: int) -> None: ...

    async def close(self) -> None: ...
