from __future__ import annotations

import logging
from pathlib import Path

import pytest

from corekit.config import ConfigSetup, ConfigSetupAggregator, FieldSpec, merge_setup
from corekit.errors import PluginError
from corekit.hooks import HookInvoker
from corekit.options import CoreOptions
from corekit.plugins import PluginRegistry


def _aggregator(tmp_path: Path, **values) -> ConfigSetupAggregator:
    options = CoreOptions(name="demo-app", app_folder=tmp_path, **values)
    return ConfigSetupAggregator(options, slug=options.slug, app_folder=tmp_path)


def test_merge_is_right_biased_and_accumulates_secret_keys() -> None:
    target = ConfigSetup(
        fields={"x": FieldSpec(type=int)},
        defaults={"x": 1, "nested": {"a": 1, "b": 1}},
        secret_keys=["token"],
    )
    merge_setup(
        target,
        ConfigSetup(
            fields={"x": FieldSpec(type=str)},
            defaults={"x": 2, "nested": {"b": 2}},
            secret_keys=["token", "password"],
        ),
    )

    assert target.fields["x"].type is str
    assert target.defaults == {"x": 2, "nested": {"a": 1, "b": 2}}
    assert target.secret_keys == ["token", "token", "password"]


def test_merge_copies_fragment_values() -> None:
    fragment = ConfigSetup(defaults={"items": [1]})
    target = ConfigSetup()
    merge_setup(target, fragment)
    target.defaults["items"].append(2)

    assert fragment.defaults["items"] == [1]


def test_coerce_accepts_mappings() -> None:
    setup = ConfigSetup.coerce(
        {
            "fields": {"port": int, "name": {"type": str, "required": True}},
            "defaults": {"port": 80},
            "secret_keys": "api_key",
        }
    )

    assert setup.fields["port"] == FieldSpec(type=int)
    assert setup.fields["name"].required is True
    assert setup.defaults == {"port": 80}
    assert setup.secret_keys == ["api_key"]


@pytest.mark.parametrize("value", [42, ["defaults"], {"default": {}}])
def test_coerce_rejects_malformed_fragments(value: object) -> None:
    with pytest.raises(PluginError):
        ConfigSetup.coerce(value, source="plugin 'bad'")


def test_frozen_setup_cannot_be_mutated() -> None:
    frozen = ConfigSetup(defaults={"a": 1}, secret_keys=["s"]).frozen()

    with pytest.raises(TypeError):
        frozen.defaults["a"] = 2  # type: ignore[index]
    assert frozen.secret_keys == ("s",)


def test_base_setup_without_collaborators(tmp_path: Path) -> None:
    setup = _aggregator(tmp_path).base_setup()

    assert setup.defaults == {"disabled_plugins": []}
    assert setup.secret_keys == []


def test_base_setup_for_postgres_server_and_client(tmp_path: Path) -> None:
    setup = _aggregator(
        tmp_path,
        database=True,
        insecure_port=8080,
        secure_port=8443,
        use_http_client=True,
    ).base_setup()

    assert setup.defaults["database_name"] == "demo_app"
    assert setup.defaults["database_user"] == "postgres"
    assert setup.defaults["database_port"] == 5432
    assert setup.defaults["database_schema_sync"] == "sync"
    assert setup.defaults["insecure_port"] == 8080
    assert setup.defaults["secure_port"] == 8443
    assert setup.defaults["http_client_timeout"] == 30.0
    assert setup.fields["tls_cert_file"].required is True
    assert "database_password" in setup.secret_keys
    assert "tls_key_file" in setup.secret_keys


def test_base_setup_for_sqlite(tmp_path: Path) -> None:
    setup = _aggregator(tmp_path, database=True, sqlite=True).base_setup()

    assert setup.defaults["database_path"] == str(tmp_path / "database.sqlite")
    assert "database_name" not in setup.defaults
    assert "database_password" not in setup.secret_keys


@pytest.mark.asyncio
async def test_later_registered_plugins_override_earlier_defaults(tmp_path: Path) -> None:
    class First:
        def get_config_setup(self) -> dict:
            return {"defaults": {"x": "first", "only_first": True}, "secret_keys": ["a"]}

    class Second:
        get_config_setup = ConfigSetup(defaults={"x": "second"}, secret_keys=["b"])

    class Nothing:
        def get_config_setup(self) -> None:
            return None

    registry = PluginRegistry(object())
    registry.register("first", First())
    registry.register("nothing", Nothing())
    registry.register("second", Second())
    invoker = HookInvoker(registry, logging.getLogger("corekit.tests.config"))

    setup = await _aggregator(tmp_path).gather(invoker)

    assert setup.defaults["x"] == "second"
    assert setup.defaults["only_first"] is True
    assert setup.defaults["disabled_plugins"] == []
    assert setup.secret_keys == ["a", "b"]


@pytest.mark.asyncio
async def test_caller_setup_wins_over_plugin_defaults(tmp_path: Path) -> None:
    class Plugin:
        def get_config_setup(self) -> dict:
            return {"defaults": {"greeting": "plugin", "disabled_plugins": ["x"]}}

    registry = PluginRegistry(object())
    registry.register("plugin", Plugin())
    invoker = HookInvoker(registry, logging.getLogger("corekit.tests.config"))
    aggregator = _aggregator(tmp_path, config_setup={"defaults": {"greeting": "caller"}})

    setup = await aggregator.assemble(invoker)

    assert setup.defaults["greeting"] == "caller"
    assert setup.defaults["disabled_plugins"] == ["x"]
    with pytest.raises(TypeError):
        setup.defaults["greeting"] = "late"  # type: ignore[index]
