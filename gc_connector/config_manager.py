#!/usr/bin/env python3
"""
Configuration Manager for GC Log Connector
Loads, validates, and manages YAML configuration

Startup settings (watched directories, control plane, data directory,
periods) come from a YAML file. Upload destinations do NOT: those are
owned by the control plane and hot-reloaded by ConfigReloader.
"""

import logging
import os
import signal
from pathlib import Path
from typing import Any, Dict, List

import yaml

logger = logging.getLogger(__name__)

DEFAULTS = {
    'extension': '.log',
    'control_plane.https': True,
    'control_plane.timeout_seconds': 30,
    'periods.reload_config_seconds': 30,
    'periods.sync_files_seconds': 5,
    'periods.rescan_seconds': 60,
    'periods.ttl_sweep_seconds': 1800,
    'upload.ttl_days': 14,
    'upload.pool_size': None,
    'upload.marker_stale_seconds': 6 * 3600,
    'upload.seen_cache_size': 10000,
}


class ConfigValidationError(Exception):
    """
    Raised when configuration validation fails.

    This exception is raised when the configuration file is malformed,
    missing required fields, or contains invalid values.
    """

    pass


class ConfigManager:
    """
    Manages connector configuration from YAML file.

    Features:
    - Load and validate YAML config
    - Re-validate on SIGHUP signal
    - Environment variable and ~ expansion
    - Dot-notation access to nested values with built-in defaults

    Example:
        >>> config = ConfigManager('/etc/gc-connector/config.yaml')
        >>> host = config.get('control_plane.host')
        >>> config.get('periods.sync_files_seconds')  # 5 unless overridden

    Attributes:
        config_path (Path): Path to the configuration file
        config (dict): Loaded configuration dictionary
    """

    def __init__(self, config_path: str, handle_sighup: bool = True):
        """
        Initialize config manager and load configuration.

        Args:
            config_path: Path to YAML config file
            handle_sighup: Install a SIGHUP handler that re-validates the file

        Raises:
            FileNotFoundError: If config file doesn't exist
            yaml.YAMLError: If YAML syntax is invalid
            ConfigValidationError: If validation fails
        """
        self.config_path = Path(config_path)
        self.config = {}
        if handle_sighup:
            signal.signal(signal.SIGHUP, self._handle_reload_signal)
        self.load_config()

    def load_config(self) -> Dict[str, Any]:
        """Load and validate configuration from YAML file."""
        if not self.config_path.exists():
            raise FileNotFoundError(f"Config file not found: {self.config_path}")

        with open(self.config_path, "r") as f:
            config = yaml.safe_load(f)

        if config is None:
            raise ConfigValidationError("Config file is empty or contains only whitespace")

        if not isinstance(config, dict):
            raise ConfigValidationError("Config file must contain a mapping")

        # Expand environment variables in paths
        config = self._expand_env_vars(config)

        self.validate_config(config)
        self.config = config
        logger.info(f"Loaded config from {self.config_path}")
        return self.config

    def reload_config(self) -> Dict[str, Any]:
        """
        Reload configuration from disk (SIGHUP handler).

        NOTE: Changes require a restart - SIGHUP only validates and reports.
        Upload destinations are reloaded from the control plane regardless.
        """
        logger.info("Reloading configuration...")

        try:
            old_config = self.config.copy()
            new_config = self.load_config()

            changed = sorted(
                key for key in set(old_config) | set(new_config)
                if old_config.get(key) != new_config.get(key)
            )
            if changed:
                logger.warning(f"CONFIG CHANGES DETECTED: {', '.join(changed)}")
                logger.warning("These changes will NOT take effect until restart!")

            logger.info("Config validation successful (changes require restart)")
            return new_config

        except Exception as e:
            logger.error(f"Failed to reload config: {e}")
            logger.info("Keeping existing configuration")
            return self.config

    def _expand_env_vars(self, config: Any) -> Any:
        """
        Recursively expand environment variables in configuration values.

        Supports ${VAR_NAME}, $VAR_NAME and ~ (home directory).

        Examples:
            "${HOME}/gc" -> "/home/ABC/gc"
            "~/gc" -> "/home/ABC/gc"
        """
        if isinstance(config, dict):
            return {key: self._expand_env_vars(value) for key, value in config.items()}
        elif isinstance(config, list):
            return [self._expand_env_vars(item) for item in config]
        elif isinstance(config, str):
            expanded = os.path.expanduser(config)
            expanded = os.path.expandvars(expanded)
            return expanded
        else:
            return config

    def validate_config(self, config: Dict[str, Any]) -> bool:
        """Validate configuration schema and values."""
        required_keys = ["jvms", "control_plane", "data_dir", "analyze_id"]
        for key in required_keys:
            if key not in config:
                raise ConfigValidationError(f"Missing required key: {key}")

        self._validate_jvms(config["jvms"])
        self._validate_control_plane(config["control_plane"])

        data_dir = config["data_dir"]
        if not isinstance(data_dir, str) or not data_dir:
            raise ConfigValidationError("data_dir must be a non-empty string")
        if not Path(data_dir).is_dir():
            raise ConfigValidationError(f"data_dir does not exist: {data_dir}")

        if not self._is_non_empty_string(config["analyze_id"]):
            raise ConfigValidationError("analyze_id must be a non-empty string")

        if "extension" in config and not self._is_non_empty_string(config["extension"]):
            raise ConfigValidationError("extension must be a non-empty string")

        if "version" in config and not self._is_non_empty_string(config["version"]):
            raise ConfigValidationError("version must be a non-empty string")

        if "periods" in config:
            self._validate_periods(config["periods"])

        if "upload" in config:
            self._validate_upload(config["upload"])

        logger.info("Configuration validated successfully")
        return True

    def _validate_jvms(self, jvms: Any) -> None:
        """Validate watched JVM entries."""
        if not isinstance(jvms, list):
            raise ConfigValidationError("jvms must be a list")

        if len(jvms) == 0:
            raise ConfigValidationError("jvms cannot be empty")

        seen_ids = set()
        seen_paths = set()

        for idx, item in enumerate(jvms):
            if not isinstance(item, dict):
                raise ConfigValidationError(f"jvms[{idx}]: Must be a mapping, got {type(item)}")

            for field_name in ("jvm_id", "path"):
                if field_name not in item:
                    raise ConfigValidationError(f"jvms[{idx}]: Missing required field '{field_name}'")
                if not self._is_non_empty_string(item[field_name]):
                    raise ConfigValidationError(f"jvms[{idx}].{field_name}: Must be non-empty string")

            jvm_id = item["jvm_id"]
            if "/" in jvm_id or jvm_id in (".", ".."):
                raise ConfigValidationError(
                    f"jvms[{idx}].jvm_id: Must be usable as a directory name, got '{jvm_id}'"
                )
            if jvm_id in seen_ids:
                raise ConfigValidationError(f"jvms[{idx}]: Duplicate jvm_id '{jvm_id}'")
            seen_ids.add(jvm_id)

            path = item["path"]
            if path in seen_paths:
                raise ConfigValidationError(f"jvms[{idx}]: Duplicate path '{path}'")
            seen_paths.add(path)

            if not Path(path).is_dir():
                raise ConfigValidationError(f"jvms[{idx}].path: Directory does not exist - {path}")

        logger.info(f"Validated {len(jvms)} watched JVMs: {', '.join(sorted(seen_ids))}")

    def _validate_control_plane(self, control_plane: Any) -> None:
        """Validate control plane section."""
        if not isinstance(control_plane, dict):
            raise ConfigValidationError("control_plane must be a mapping")

        for key in ("host", "token"):
            if key not in control_plane:
                raise ConfigValidationError(f"Missing control_plane.{key}")
            if not self._is_non_empty_string(control_plane[key]):
                raise ConfigValidationError(f"control_plane.{key} must be a non-empty string")

        if "https" in control_plane and not isinstance(control_plane["https"], bool):
            raise ConfigValidationError("control_plane.https must be boolean")

        if "timeout_seconds" in control_plane:
            self._require_positive("control_plane.timeout_seconds", control_plane["timeout_seconds"])

    def _validate_periods(self, periods: Any) -> None:
        """Validate task periods section."""
        if not isinstance(periods, dict):
            raise ConfigValidationError("periods must be a mapping")

        for key in ("reload_config_seconds", "sync_files_seconds",
                    "rescan_seconds", "ttl_sweep_seconds"):
            if key in periods:
                self._require_positive(f"periods.{key}", periods[key])

    def _validate_upload(self, upload: Any) -> None:
        """Validate upload section."""
        if not isinstance(upload, dict):
            raise ConfigValidationError("upload must be a mapping")

        if "ttl_days" in upload:
            ttl = upload["ttl_days"]
            if isinstance(ttl, bool) or not isinstance(ttl, (int, float)) or ttl < 0:
                raise ConfigValidationError("upload.ttl_days must be >= 0")

        if upload.get("pool_size") is not None:
            pool_size = upload["pool_size"]
            if isinstance(pool_size, bool) or not isinstance(pool_size, int) or pool_size <= 0:
                raise ConfigValidationError("upload.pool_size must be a positive integer")

        if "marker_stale_seconds" in upload:
            self._require_positive("upload.marker_stale_seconds", upload["marker_stale_seconds"])

        if "seen_cache_size" in upload:
            size = upload["seen_cache_size"]
            if isinstance(size, bool) or not isinstance(size, int) or size <= 0:
                raise ConfigValidationError("upload.seen_cache_size must be a positive integer")

    @staticmethod
    def _require_positive(name: str, value: Any) -> None:
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
            raise ConfigValidationError(f"{name} must be a positive number")

    @staticmethod
    def _is_non_empty_string(value: Any) -> bool:
        return isinstance(value, str) and value.strip() != ""

    def _handle_reload_signal(self, signum, frame):
        """Signal handler for SIGHUP."""
        self.reload_config()

    def get(self, key: str, default=None) -> Any:
        """
        Get configuration value by dot-separated key path.

        Falls back to the built-in default for the key, then to ``default``.

        Examples:
            >>> config.get('analyze_id')  # 'group-1'
            >>> config.get('control_plane.host')  # 'api.example.com'
            >>> config.get('missing.key', 'default')  # 'default'
        """
        keys = key.split(".")
        value = self.config

        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return DEFAULTS.get(key, default)

        return value

    def get_jvms(self) -> List[Dict[str, str]]:
        """Watched JVM entries as ``[{'jvm_id': ..., 'path': ...}]``."""
        return [{'jvm_id': item['jvm_id'], 'path': item['path']} for item in self.config['jvms']]
