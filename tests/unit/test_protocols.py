from __future__ import annotations

import logging
from pathlib import Path

from fastapi import FastAPI

from corekit import CorePlugin, load_config
from corekit.config import ConfigSetup
from corekit.loader import ConfigResult
from corekit.protocols import (
    CloseHook,
    ConfigLoader,
    HandleConfigHook,
    HandleLogHook,
    PreInitHook,
    ReadyHook,
    ServerHandle,
)
from corekit.server import HttpServer


class _Plugin(CorePlugin):
    def pre_init(self) -> bool:
        return True

    async def handle_config(self, config: dict) -> None:
        return None

    async def close(self) -> None:
        return None


def test_plugins_satisfy_the_hook_protocols_they_implement() -> None:
    plugin = _Plugin()

    assert isinstance(plugin, PreInitHook)
    assert isinstance(plugin, HandleConfigHook)
    assert isinstance(plugin, CloseHook)
    assert not isinstance(plugin, ReadyHook)
    assert not isinstance(plugin, HandleLogHook)


def test_http_server_is_a_server_handle() -> None:
    server = HttpServer(FastAPI(), host="127.0.0.1", logger=logging.getLogger("test"))

    assert isinstance(server, ServerHandle)
    assert not server.is_listening
    assert not server.is_secure


def test_config_loaders_satisfy_the_loader_protocol() -> None:
    def fixed_loader(app_folder: Path, setup: ConfigSetup) -> ConfigResult:
        return ConfigResult(
            config=dict(setup.defaults),
            config_file=app_folder / "config.json",
            secrets_file=app_folder / "secrets.json",
        )

    assert isinstance(load_config, ConfigLoader)
    assert isinstance(fixed_loader, ConfigLoader)
