#!/usr/bin/env python3
"""
Configuration Manager for the image relocation engine

This module handles loading and managing configuration from config.yaml
and environment variables. The virtual transport toggle is read once, when
the ConfigManager is constructed, so a running process never flips between
routing modes.
"""

import logging
import os
import re
from typing import Any, Dict, Optional

import yaml


class ConfigValidationError(Exception):
    """Raised when configuration validation fails"""


VIRTUAL_TRANSPORT_ENV = "IMAGECOPY_VIRTUAL_TRANSPORT_ENABLED"

_TRUTHY = ("true", "1", "yes")


def _env_flag(name: str) -> Optional[bool]:
    value = os.environ.get(name)
    if value is None or value == "":
        return None
    return value.strip().lower() in _TRUTHY


class ConfigManager:
    """Manages configuration for the image relocation engine"""

    def __init__(self, config_file: str = None, validate: bool = True):
        """Initialize ConfigManager

        Args:
            config_file: Path to configuration YAML file (defaults to config.yaml or CONFIG_FILE env var)
            validate: If True, validate configuration on initialization
        """
        if config_file is None:
            config_file = os.environ.get("CONFIG_FILE", "config.yaml")
        self.config_file = config_file
        self.config = self._load_config()

        env_toggle = _env_flag(VIRTUAL_TRANSPORT_ENV)
        if env_toggle is None:
            env_toggle = bool(self.config["virtual_transport"].get("enabled", False))
        self._virtual_transport_enabled = env_toggle

        if validate:
            self.validate_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from YAML file with defaults"""
        default_config = {
            "copy": {
                "max_attempts": 7,
                "backoff_step": 5.0,
                "timeout": 600,  # Timeout for each skopeo invocation in seconds
                "skopeo_binary": "skopeo",
            },
            "virtual_transport": {
                "enabled": False,
                "staging_dir": "/tmp/imagecopy",
                "locations": {},
            },
            "logging": {"level": "INFO"},
        }

        try:
            if os.path.exists(self.config_file):
                with open(self.config_file, "r") as f:
                    user_config = yaml.safe_load(f) or {}
                return self._merge_config(default_config, user_config)
            else:
                logging.warning(f"Config file {self.config_file} not found, using defaults")
                return default_config
        except Exception as e:
            logging.error(f"Error loading config file: {e}")
            return default_config

    def _merge_config(self, default: Dict[str, Any], user: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively merge user config with defaults"""
        result = default.copy()
        for key, value in user.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_config(result[key], value)
            else:
                result[key] = value
        return result

    # Copy configuration
    def get_max_attempts(self) -> int:
        """Get the copy attempt budget from config, with type coercion"""
        attempts = self.config.get("copy", {}).get("max_attempts", 7)
        try:
            return int(attempts)
        except (ValueError, TypeError):
            raise ConfigValidationError(
                f"copy.max_attempts must be an integer, got: {attempts} (type: {type(attempts).__name__})"
            )

    def get_backoff_step(self) -> float:
        """Get the linear backoff step in seconds, with type coercion"""
        step = self.config.get("copy", {}).get("backoff_step", 5.0)
        try:
            return float(step)
        except (ValueError, TypeError):
            raise ConfigValidationError(
                f"copy.backoff_step must be a number, got: {step} (type: {type(step).__name__})"
            )

    def get_copy_timeout(self) -> int:
        """Get timeout for each skopeo invocation, with type coercion"""
        timeout = self.config.get("copy", {}).get("timeout", 600)
        try:
            return int(timeout)
        except (ValueError, TypeError):
            raise ConfigValidationError(
                f"copy.timeout must be an integer, got: {timeout} (type: {type(timeout).__name__})"
            )

    def get_skopeo_binary(self) -> str:
        """Get skopeo executable from environment or config"""
        return os.environ.get("SKOPEO_BINARY") or self.config.get("copy", {}).get("skopeo_binary", "skopeo")

    # Virtual transport configuration
    def is_virtual_transport_enabled(self) -> bool:
        """Whether bsl:// routing through the object-storage transport is available"""
        return self._virtual_transport_enabled

    def get_staging_dir(self) -> str:
        """Get the scratch directory used to stage image archives"""
        return os.environ.get("IMAGECOPY_STAGING_DIR") or self.config["virtual_transport"]["staging_dir"]

    def get_virtual_locations(self) -> Dict[str, Dict[str, Any]]:
        """Get object-storage settings keyed by backup storage location name"""
        return self.config.get("virtual_transport", {}).get("locations") or {}

    def get_virtual_location(self, name: str) -> Optional[Dict[str, Any]]:
        """Get object-storage settings for a single backup storage location"""
        return self.get_virtual_locations().get(name)

    # Logging configuration
    def get_log_level(self) -> str:
        """Get log level name from environment or config"""
        return os.environ.get("LOG_LEVEL") or self.config.get("logging", {}).get("level", "INFO")

    def validate_config(self) -> None:
        """Validate configuration values

        Raises:
            ConfigValidationError: If configuration is invalid
        """
        errors = []
        warnings = []

        max_attempts = self.get_max_attempts()
        if max_attempts < 1:
            errors.append(f"copy.max_attempts must be a positive integer, got: {max_attempts}")
        elif max_attempts > 20:
            warnings.append(f"copy.max_attempts is very high ({max_attempts}), a failing copy will block for a long time")

        backoff_step = self.get_backoff_step()
        if backoff_step < 0:
            errors.append(f"copy.backoff_step must be a non-negative number, got: {backoff_step}")

        timeout = self.get_copy_timeout()
        if timeout < 1:
            errors.append(f"copy.timeout must be a positive integer (seconds), got: {timeout}")
        elif timeout > 3600:
            warnings.append(f"copy.timeout is very high ({timeout}s), a stuck registry call will block for a long time")

        if not self.get_skopeo_binary().strip():
            errors.append("copy.skopeo_binary is required and cannot be empty")

        locations = self.get_virtual_locations()
        if not isinstance(locations, dict):
            errors.append("virtual_transport.locations must be a mapping of location name to settings")
        else:
            for name, settings in locations.items():
                bucket = (settings or {}).get("bucket", "")
                if not bucket:
                    errors.append(f"virtual_transport.locations.{name}.bucket is required")
                elif not self._is_valid_s3_bucket_name(bucket):
                    errors.append(
                        f"virtual_transport.locations.{name}.bucket '{bucket}' is invalid "
                        "(must be 3-63 characters, lowercase alphanumeric and hyphens only)"
                    )

        if self.is_virtual_transport_enabled() and not locations:
            warnings.append("virtual transport is enabled but no locations are configured")

        for warning in warnings:
            logging.warning(f"Configuration warning: {warning}")

        if errors:
            error_msg = "Configuration validation failed:\n  " + "\n  ".join(errors)
            logging.error(error_msg)
            raise ConfigValidationError(error_msg)

    def _is_valid_s3_bucket_name(self, name: str) -> bool:
        """Validate S3 bucket name format"""
        if not name:
            return False
        # S3 bucket names: 3-63 characters, lowercase alphanumeric and hyphens, not IP address format
        if len(name) < 3 or len(name) > 63:
            return False
        pattern = r"^[a-z0-9]([a-z0-9\-\.]*[a-z0-9])?$"
        if not re.match(pattern, name):
            return False
        if re.match(r"^\d+\.\d+\.\d+\.\d+$", name):
            return False
        return True


def load_config_manager(config_file: str = None) -> ConfigManager:
    """Build a ConfigManager, honouring SKIP_CONFIG_VALIDATION=true."""
    return ConfigManager(
        config_file=config_file,
        validate=os.environ.get("SKIP_CONFIG_VALIDATION", "").lower() not in _TRUTHY,
    )
