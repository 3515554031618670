"""YAML config loader with environment credentials and runtime get/set."""

import hashlib
import json
import os
from pathlib import Path
from typing import Any

import yaml

from weatheralert.config.schema import AppConfig

USERNAME_ENV = "METEOMATICS_USERNAME"
PASSWORD_ENV = "METEOMATICS_PASSWORD"


def load_config(path: str | Path | None = None) -> AppConfig:
    """Load and validate config from a YAML file.

    A missing file yields defaults. Empty provider credentials are filled
    from METEOMATICS_USERNAME / METEOMATICS_PASSWORD.
    """
    raw: dict = {}
    if path is not None and Path(path).exists():
        with open(path) as f:
            raw = yaml.safe_load(f) or {}

    provider = raw.setdefault("provider", {}) or {}
    raw["provider"] = provider
    if not provider.get("username"):
        provider["username"] = os.environ.get(USERNAME_ENV, "")
    if not provider.get("password"):
        provider["password"] = os.environ.get(PASSWORD_ENV, "")

    return AppConfig(**raw)


def config_hash(config: AppConfig) -> str:
    """Deterministic SHA256 hash of the config, credentials excluded."""
    data = config.model_dump(mode="json")
    data["provider"].pop("username", None)
    data["provider"].pop("password", None)
    encoded = json.dumps(data, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(encoded.encode()).hexdigest()[:16]


def redacted_dump(config: AppConfig) -> str:
    """JSON dump with the provider password masked."""
    data = json.loads(config.model_dump_json())
    if data["provider"].get("password"):
        data["provider"]["password"] = "***"
    return json.dumps(data, indent=2)


def get_config_value(config: AppConfig, dotted_key: str) -> Any:
    """Get a config value by dotted key path. E.g. 'ops.poll_interval_minutes'."""
    obj: Any = config
    for part in dotted_key.split("."):
        if hasattr(obj, part):
            obj = getattr(obj, part)
        elif isinstance(obj, dict):
            obj = obj[part]
        else:
            raise KeyError(f"Config key not found: {dotted_key}")
    return obj


def set_config_value(config: AppConfig, dotted_key: str, value: Any) -> AppConfig:
    """Set a config value by dotted key path and re-validate.

    Returns a new AppConfig instance.
    """
    data = json.loads(config.model_dump_json())
    parts = dotted_key.split(".")
    target = data
    for part in parts[:-1]:
        target = target[part]
    if parts[-1] not in target:
        raise KeyError(f"Config key not found: {dotted_key}")
    old_value = target.get(parts[-1])
    if isinstance(old_value, bool) and isinstance(value, str):
        value = value.strip().lower() in ("1", "true", "yes", "on")
    elif isinstance(old_value, int) and isinstance(value, str):
        value = int(value)
    elif isinstance(old_value, float) and isinstance(value, str):
        value = float(value)
    target[parts[-1]] = value
    return AppConfig(**data)


def save_config(config: AppConfig, path: str | Path) -> None:
    """Write config back to YAML. Credentials are never written."""
    data = json.loads(config.model_dump_json())
    data["provider"].pop("username", None)
    data["provider"].pop("password", None)
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        yaml.safe_dump(data, f, sort_keys=False)
