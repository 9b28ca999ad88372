"""Resolve upload queue configuration from file, environment, and overrides."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml

from vitransfer.config_manager.helpers import parse_bytes, parse_delays
from vitransfer.config_manager.upload_config import UploadQueueConfig
from vitransfer.exceptions import ConfigLoadError

_ENV_MAP: dict[str, str] = {
    "api_url": "VT_API_URL",
    "tus_endpoint": "VT_TUS_ENDPOINT",
    "max_concurrent": "VT_MAX_CONCURRENT",
    "chunk_size": "VT_CHUNK_SIZE",
    "retry_delays": "VT_RETRY_DELAYS",
    "fingerprint_store_path": "VT_FINGERPRINT_STORE_PATH",
    "store_fingerprint_for_resuming": "VT_STORE_FINGERPRINT",
}

YES_CONFIRMATION = {"1", "true", "yes", "y"}


class ConfigManager:
    """Build effective upload configuration from file, env, and overrides."""

    def __init__(self, config_path: Path | None = None) -> None:
        """Initialise ConfigManager.

        Args:
            config_path: Optional YAML file holding the base configuration.
        """
        self.config_path = config_path

    def _read_file_config(self) -> dict[str, Any]:
        """Read the base configuration from the YAML file, if any.

        Raises:
            ConfigLoadError: If the file cannot be read or is not a mapping.
        """
        if self.config_path is None:
            return {}

        try:
            with open(self.config_path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigLoadError(
                f"Failed to load upload config {self.config_path}: {e}"
            ) from e

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigLoadError(
                f"Upload config {self.config_path} must contain a mapping"
            )
        return data

    def _read_env_overrides(self) -> dict[str, Any]:
        """Read configuration overrides from environment variables.

        Returns:
            A dictionary of configuration field names to override values.
        """
        overrides: dict[str, Any] = {}

        for field_name, env_var_name in _ENV_MAP.items():
            env_value = os.getenv(env_var_name)
            if env_value is None:
                continue

            if field_name == "chunk_size":
                try:
                    overrides[field_name] = parse_bytes(env_value)
                except ValueError:
                    continue
            elif field_name == "max_concurrent":
                try:
                    overrides[field_name] = int(env_value)
                except ValueError:
                    continue
            elif field_name == "retry_delays":
                try:
                    overrides[field_name] = parse_delays(env_value)
                except ValueError:
                    continue
            elif field_name == "store_fingerprint_for_resuming":
                overrides[field_name] = env_value.lower() in YES_CONFIRMATION
            else:
                overrides[field_name] = env_value

        return overrides

    def resolve_effective_config(
        self, overrides: dict[str, Any] | None = None
    ) -> UploadQueueConfig:
        """Resolve the effective upload configuration.

        Args:
            overrides: Optional caller-provided configuration overrides.

        Returns:
            The resolved ``UploadQueueConfig``.
        """
        merged: dict[str, Any] = {}
        merged.update(self._read_file_config())
        merged.update(self._read_env_overrides())
        if overrides:
            merged.update(overrides)

        return UploadQueueConfig(**merged)
