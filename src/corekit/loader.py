"""File-backed configuration loader.

Plain values live in `config.json`, secret keys in `secrets.json`, both inside
the application folder. Defaults that are missing from the files are written
back so the files always show every known key.
"""

from __future__ import annotations

import json
from copy import deepcopy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from pydantic import ConfigDict, ValidationError, create_model

from .config import ConfigSetup, FieldSpec
from .errors import ConfigError

CONFIG_FILE_NAME = "config.json"
SECRETS_FILE_NAME = "secrets.json"


@dataclass(slots=True)
class ConfigResult:
    config: dict[str, Any]
    config_file: Path
    secrets_file: Path
    new_keys: list[str] = field(default_factory=list)
    deprecated_keys: list[str] = field(default_factory=list)
    first_run: bool = False


def _read_json(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with path.open("r", encoding="utf-8") as handle:
            parsed = json.load(handle)
    except (OSError, json.JSONDecodeError) as error:
        raise ConfigError(f"could not read {path}: {error}") from error
    if not isinstance(parsed, dict):
        raise ConfigError(f"{path} must contain a JSON object")
    return parsed


def _write_json(path: Path, payload: dict[str, Any], *, private: bool = False) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2, default=str) + "\n", encoding="utf-8")
    if private:
        path.chmod(0o600)


def _validate(fields: dict[str, FieldSpec], values: dict[str, Any]) -> dict[str, Any]:
    if not fields:
        return values

    definitions: dict[str, Any] = {}
    for key, spec in fields.items():
        if spec.required:
            definitions[key] = (spec.type, ...)
        else:
            definitions[key] = (Optional[spec.type], values.get(key))
    model = create_model("LoadedConfig", __config__=ConfigDict(extra="allow"), **definitions)
    try:
        validated = model.model_validate(values)
    except ValidationError as error:
        raise ConfigError(f"invalid configuration: {error}") from error
    return {**values, **{key: getattr(validated, key) for key in fields}}


def load_config(app_folder: Path, setup: ConfigSetup) -> ConfigResult:
    config_file = app_folder / CONFIG_FILE_NAME
    secrets_file = app_folder / SECRETS_FILE_NAME
    first_run = not config_file.exists() and not secrets_file.exists()
    secret_keys = set(setup.secret_keys)

    stored = _read_json(config_file)
    stored_secrets = _read_json(secrets_file)

    added: list[str] = []
    for key, value in setup.defaults.items():
        target = stored_secrets if key in secret_keys else stored
        if key not in target:
            target[key] = deepcopy(value)
            added.append(key)
    for key in [*setup.fields, *setup.secret_keys]:
        target = stored_secrets if key in secret_keys else stored
        if key not in target:
            target[key] = None
            added.append(key)

    known = set(setup.defaults) | set(setup.fields) | secret_keys
    deprecated = [key for key in [*stored, *stored_secrets] if key not in known]

    if added:
        _write_json(config_file, stored)
        _write_json(secrets_file, stored_secrets, private=True)

    values = {**deepcopy(dict(setup.defaults)), **stored, **stored_secrets}
    missing = [key for key, spec in setup.fields.items() if spec.required and values.get(key) is None]
    if missing:
        keys = ", ".join(missing)
        if first_run:
            raise ConfigError(
                f"created default configuration in {app_folder}, fill in the required keys: {keys}",
                missing_keys=missing,
            )
        raise ConfigError(f"missing required configuration keys: {keys}", missing_keys=missing)

    return ConfigResult(
        config=_validate(dict(setup.fields), values),
        config_file=config_file,
        secrets_file=secrets_file,
        new_keys=[] if first_run else added,
        deprecated_keys=deprecated,
        first_run=first_run,
    )
