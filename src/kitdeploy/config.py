"""User settings for kitdeploy, read from a YAML file plus environment overrides."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from platformdirs import user_config_dir
from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from kitdeploy.errors import ConfigError

CONFIG_ENV_VAR = "KITDEPLOY_CONFIG"
GLOBAL_ROOT_ENV_VAR = "KITDEPLOY_GLOBAL_ROOT"
BUNDLE_ROOT_ENV_VAR = "KITDEPLOY_BUNDLE_ROOT"

DEFAULT_RETENTION_DAYS = 30


@dataclass(slots=True)
class InstallerSettings:
    """Settings consulted by the path resolver and the CLI."""

    global_root: Path | None = None
    bundle_root: Path | None = None
    backup_retention_days: int = DEFAULT_RETENTION_DAYS

    def to_dict(self) -> dict[str, object]:
        return {
            "global_root": str(self.global_root) if self.global_root else None,
            "bundle_root": str(self.bundle_root) if self.bundle_root else None,
            "backups": {"retention_days": self.backup_retention_days},
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, object] | None) -> "InstallerSettings":
        if data is None:
            return cls()
        if not isinstance(data, Mapping):
            raise ConfigError("Settings must be a mapping at the top level", operation="load settings")

        retention = DEFAULT_RETENTION_DAYS
        backups = data.get("backups")
        if backups is not None:
            if not isinstance(backups, Mapping):
                raise ConfigError("'backups' must be a mapping", operation="load settings")
            value = backups.get("retention_days", DEFAULT_RETENTION_DAYS)
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ConfigError(
                    f"'backups.retention_days' must be a non-negative integer, got {value!r}",
                    operation="load settings",
                )
            retention = value

        return cls(
            global_root=_optional_path(data, "global_root"),
            bundle_root=_optional_path(data, "bundle_root"),
            backup_retention_days=retention,
        )


def _optional_path(data: Mapping[str, object], key: str) -> Path | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"'{key}' must be a non-empty string, got {value!r}", operation="load settings")
    return Path(value.strip()).expanduser()


def default_config_path(environ: Mapping[str, str] | None = None) -> Path:
    """Return the settings file location.

    Resolution order:
    1. KITDEPLOY_CONFIG environment variable
    2. ``config.yaml`` in the platform user config dir (via platformdirs)
    """
    env = os.environ if environ is None else environ
    if env_path := env.get(CONFIG_ENV_VAR):
        return Path(env_path).expanduser()
    return Path(user_config_dir("kitdeploy", appauthor=False)) / "config.yaml"


def load_settings(
    config_path: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> InstallerSettings:
    """Load settings from YAML, then apply environment overrides.

    A missing file yields defaults. Malformed YAML or invalid values raise
    :class:`ConfigError`.
    """
    env = os.environ if environ is None else environ
    path = config_path or default_config_path(env)

    settings = InstallerSettings()
    if path.exists():
        yaml = YAML(typ="safe")
        try:
            with path.open("r", encoding="utf-8") as handle:
                payload = yaml.load(handle)
        except (OSError, YAMLError) as exc:
            raise ConfigError(f"Failed to parse {path}: {exc}", path=path, operation="load settings") from exc
        settings = InstallerSettings.from_dict(payload)

    if env_root := env.get(GLOBAL_ROOT_ENV_VAR):
        settings.global_root = Path(env_root).expanduser()
    if env_bundle := env.get(BUNDLE_ROOT_ENV_VAR):
        settings.bundle_root = Path(env_bundle).expanduser()
    return settings
