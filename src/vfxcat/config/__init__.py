"""Configuration management for vfxcat."""

from __future__ import annotations

import os
import textwrap
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping

import yaml

from .exceptions import ConfigError
from .models import VfxcatConfig
from .resolver import ENV_PREFIX, flatten_for_env, parse_env_overrides, resolve_with_precedence

DEFAULT_CONFIG_PATH = Path("~/.vfxcat/config.yaml")
_CONFIG_HEADER = textwrap.dedent(
    """\
    # vfxcat configuration file
    # Manage with `vfxcat config set KEY --value VALUE` or edit by hand.
    """
)


class ConfigManager:
    """Load and persist the YAML configuration file, applying precedence rules."""

    def __init__(
        self,
        config_path: Path | None = None,
        *,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self._config_path = (config_path or DEFAULT_CONFIG_PATH).expanduser()
        self._env = env if env is not None else os.environ

    @property
    def config_path(self) -> Path:
        """Return the resolved configuration path."""
        return self._config_path

    def load(
        self,
        *,
        cli_overrides: Mapping[str, Any] | None = None,
        include_env: bool = True,
        ensure_file: bool = True,
    ) -> VfxcatConfig:
        """Load configuration from disk layered with environment and CLI overrides.

        Args:
            cli_overrides: Dotted-key overrides supplied on the command line.
            include_env: Whether ``VFXCAT__`` environment variables are applied.
            ensure_file: Whether to create a default file when none exists.

        Returns:
            VfxcatConfig: Validated configuration.

        Raises:
            ConfigError: If the file cannot be parsed or values fail validation.
        """
        if ensure_file:
            self.ensure_exists()

        return resolve_with_precedence(
            defaults=VfxcatConfig(),
            file_overrides=self._read_file(),
            env_overrides=parse_env_overrides(self._env) if include_env else None,
            cli_overrides=cli_overrides,
        )

    def load_file_overrides(self) -> dict[str, Any]:
        """Return raw overrides stored on disk."""
        return self._read_file()

    def read_text(self) -> str:
        """Return the configuration file contents, or an empty string when missing."""
        if not self._config_path.exists():
            return ""
        return self._config_path.read_text(encoding="utf-8")

    def save(self, config: VfxcatConfig | Mapping[str, Any]) -> None:
        """Persist configuration data to disk."""
        if isinstance(config, VfxcatConfig):
            data = config.model_dump(mode="python")
        else:
            data = dict(config)
        self._write_file(data)

    def ensure_exists(self) -> Path:
        """Create a configuration file with defaults if one does not exist."""
        if not self._config_path.exists():
            self._write_file(VfxcatConfig().model_dump(mode="python"))
        return self._config_path

    def _read_file(self) -> dict[str, Any]:
        if not self._config_path.exists():
            return {}

        try:
            raw = yaml.safe_load(self._config_path.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"Failed to parse configuration file: {exc}") from exc

        if not isinstance(raw, dict):
            raise ConfigError("Configuration file must contain a mapping at the top level.")
        return raw

    def _write_file(self, data: Mapping[str, Any]) -> None:
        self._config_path.parent.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
        body = yaml.safe_dump(dict(data), sort_keys=False)
        self._config_path.write_text(
            f"{_CONFIG_HEADER}# Last updated: {stamp}\n{body}", encoding="utf-8"
        )


__all__ = [
    "ConfigManager",
    "DEFAULT_CONFIG_PATH",
    "ENV_PREFIX",
    "VfxcatConfig",
    "resolve_with_precedence",
    "flatten_for_env",
    "parse_env_overrides",
    "ConfigError",
]
