"""
Configuration for keyrotor.

Two layers:

- Settings: process-level knobs read from environment variables with
  sensible defaults (config file location, dry run, default intervals).
- RotorConfig: the YAML file naming plugins and secret sets.

Usage:
    from keyrotor.config import get_settings, load_config, prepare
    settings = get_settings()
    cfg = load_config(settings.config_file)
    prepare(cfg)   # raises AggregateError listing every problem
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any

import yaml  # type: ignore[import-untyped]

from keyrotor.errors import AggregateError, ConfigError
from keyrotor.models import (
    DEFAULT_DISABLE_AFTER,
    DEFAULT_ROTATE_AFTER,
    PluginConfig,
    RotorConfig,
    Secret,
    SecretSet,
    StorageMapping,
)

logger = logging.getLogger(__name__)

_TRUTHY = {"1", "true", "yes", "on"}

_DURATION_UNITS = {
    "s": 1,
    "m": 60,
    "h": 3600,
    "d": 86400,
    "w": 604800,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)([smhdw])")


def parse_duration(value: str | int | float | timedelta) -> timedelta:
    """Parse "168h", "1h30m", "7d" or a number of seconds into a timedelta."""
    if isinstance(value, timedelta):
        return value
    if isinstance(value, bool):
        raise ConfigError(f"invalid duration {value!r}")
    if isinstance(value, (int, float)):
        return timedelta(seconds=value)

    text = str(value).strip().lower()
    if text.isdigit():
        return timedelta(seconds=int(text))

    pos = 0
    seconds = 0.0
    for m in _DURATION_PART.finditer(text):
        if m.start() != pos:
            break
        seconds += float(m.group(1)) * _DURATION_UNITS[m.group(2)]
        pos = m.end()
    if not text or pos != len(text):
        raise ConfigError(f"invalid duration {value!r}")
    return timedelta(seconds=seconds)


# ─── Settings ────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Settings:
    """Process-level settings from environment variables."""

    config_file: Path = field(default_factory=lambda: Path.cwd() / "keyrotor.yaml")
    dry_run: bool = False
    verbose: bool = False
    # None = use the configuration file's value (or the built-in default)
    rotate_after: timedelta | None = None
    disable_after: timedelta | None = None

    @classmethod
    def from_env(cls) -> Settings:
        rotate_after = os.environ.get("KEYROTOR_ROTATE_AFTER")
        disable_after = os.environ.get("KEYROTOR_DISABLE_AFTER")
        return cls(
            config_file=Path(os.environ.get("KEYROTOR_CONFIG", Path.cwd() / "keyrotor.yaml")),
            dry_run=os.environ.get("KEYROTOR_DRY_RUN", "").strip().lower() in _TRUTHY,
            verbose=os.environ.get("KEYROTOR_VERBOSE", "").strip().lower() in _TRUTHY,
            rotate_after=parse_duration(rotate_after) if rotate_after else None,
            disable_after=parse_duration(disable_after) if disable_after else None,
        )


# Singleton
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create the singleton settings from environment variables."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def reset_settings() -> None:
    """Reset the singleton settings (for testing)."""
    global _settings
    _settings = None


# ─── Configuration file ──────────────────────────────────────────────


def load_config(
    path: Path | str,
    *,
    rotate_after: timedelta | None = None,
    disable_after: timedelta | None = None,
) -> RotorConfig:
    """Read and parse a YAML configuration file. See parse_config for the intervals."""
    path = Path(path)
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"configuration file not found: {path}") from e
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"unable to read configuration {path}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"configuration {path} must be a mapping at the top level")

    logger.debug("Loaded configuration from %s", path)
    return parse_config(data, rotate_after=rotate_after, disable_after=disable_after)


def parse_config(
    data: dict[str, Any],
    *,
    rotate_after: timedelta | None = None,
    disable_after: timedelta | None = None,
) -> RotorConfig:
    """Convert a configuration dict into a RotorConfig. Structural errors raise ConfigError.

    rotate_after / disable_after, when given, replace the file's top-level
    defaults. A secret set's own interval always wins.
    """
    if rotate_after is not None:
        default_rotate = rotate_after
    else:
        default_rotate = parse_duration(data.get("rotate_after", DEFAULT_ROTATE_AFTER))
    if disable_after is not None:
        default_disable = disable_after
    else:
        default_disable = parse_duration(data.get("disable_after", DEFAULT_DISABLE_AFTER))

    raw_plugins = data.get("plugins") or {}
    if not isinstance(raw_plugins, dict):
        raise ConfigError("'plugins' must be a mapping of name to plugin settings")

    plugins: dict[str, PluginConfig] = {}
    for name, raw in raw_plugins.items():
        raw = raw or {}
        if not isinstance(raw, dict):
            raise ConfigError(f"plugin {name!r} must be a mapping")
        options = raw.get("options") or {}
        if not isinstance(options, dict):
            raise ConfigError(f"options for plugin {name!r} must be a mapping")
        plugins[str(name)] = PluginConfig(
            name=str(name),
            package=str(raw.get("package") or ""),
            options=dict(options),
        )

    raw_sets = data.get("secret_sets") or []
    if not isinstance(raw_sets, list):
        raise ConfigError("'secret_sets' must be a list")

    secret_sets = [
        _parse_secret_set(raw, default_rotate, default_disable) for raw in raw_sets
    ]
    return RotorConfig(plugins=plugins, secret_sets=secret_sets)


def _parse_secret_set(
    raw: Any, default_rotate: timedelta, default_disable: timedelta
) -> SecretSet:
    if not isinstance(raw, dict):
        raise ConfigError(f"secret set entries must be mappings, got {raw!r}")

    name = str(raw.get("name", ""))
    secrets: list[Secret] = []
    for raw_secret in raw.get("secrets") or []:
        if not isinstance(raw_secret, dict):
            raise ConfigError(f"secret entries in set {name!r} must be mappings")
        storages = [
            _parse_storage(s, name) for s in raw_secret.get("storages") or []
        ]
        secrets.append(Secret(name=str(raw_secret.get("secret", "")), storages=storages))

    return SecretSet(
        name=name,
        rotation_client=str(raw.get("rotation_client", "")),
        disable_client=str(raw.get("disable_client", "")),
        rotate_after=parse_duration(raw.get("rotate_after", default_rotate)),
        disable_after=parse_duration(raw.get("disable_after", default_disable)),
        secrets=secrets,
    )


def _parse_storage(raw: Any, set_name: str) -> StorageMapping:
    if not isinstance(raw, dict):
        raise ConfigError(f"storage entries in set {set_name!r} must be mappings")
    keys = raw.get("keys") or {}
    if not isinstance(keys, dict):
        raise ConfigError(f"keys of storage {raw.get('name')!r} must be a mapping")
    return StorageMapping(
        storage_client=str(raw.get("storage_client", "")),
        name=str(raw.get("name", "")),
        keys={str(k): str(v) for k, v in keys.items()},
    )


def prepare(config: RotorConfig) -> RotorConfig:
    """Validate and normalize a configuration in place.

    Plugin names are lower-cased everywhere so lookups are case-insensitive.
    Every problem found is collected; if there are any, AggregateError is
    raised and the configuration must not be used.
    """
    errors: list[Exception] = []

    plugins: dict[str, PluginConfig] = {}
    for name, pc in config.plugins.items():
        lc = name.lower()
        if lc in plugins:
            errors.append(ConfigError(f"plugin name {name!r} is duplicated (names ignore case)"))
            continue
        if not pc.package:
            errors.append(ConfigError(f"plugin {name!r} has no package"))
        plugins[lc] = PluginConfig(name=lc, package=pc.package, options=pc.options)
    config.plugins = plugins

    def check_plugin(ref: str, what: str) -> str:
        lc = ref.lower()
        if lc not in plugins:
            errors.append(ConfigError(f"{what} refers to unknown plugin {ref!r}"))
        return lc

    seen_sets: set[str] = set()
    for ss in config.secret_sets:
        if not ss.name:
            errors.append(ConfigError("secret set has no name"))
        elif ss.name in seen_sets:
            errors.append(ConfigError(f"secret set name {ss.name!r} is duplicated"))
        seen_sets.add(ss.name)

        if not ss.rotation_client:
            errors.append(ConfigError(f"secret set {ss.name!r} has no rotation_client"))
        else:
            ss.rotation_client = check_plugin(
                ss.rotation_client, f"rotation_client of secret set {ss.name!r}"
            )
        if ss.disable_client:
            ss.disable_client = check_plugin(
                ss.disable_client, f"disable_client of secret set {ss.name!r}"
            )

        seen_secrets: set[str] = set()
        for s in ss.secrets:
            if not s.name:
                errors.append(ConfigError(f"secret set {ss.name!r} has a secret with no name"))
            elif s.name in seen_secrets:
                errors.append(
                    ConfigError(f"secret {s.name!r} is repeated twice in secret set {ss.name!r}")
                )
            seen_secrets.add(s.name)

            for sm in s.storages:
                sm.storage_client = check_plugin(
                    sm.storage_client, f"storage {sm.name!r} of secret {s.name!r}"
                )
                targets = list(sm.keys.values())
                if len(set(targets)) != len(targets):
                    errors.append(
                        ConfigError(
                            f"key map of storage {sm.name!r} for secret {s.name!r} "
                            "maps two keys to the same name"
                        )
                    )

    if errors:
        raise AggregateError(errors)
    return config
