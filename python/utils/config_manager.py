#!/usr/bin/env python3
"""
Configuration Manager for the Registry Upload Cleaner

This module handles loading and managing configuration from config.yaml,
environment variables and command-line overrides (highest priority last).
"""

import logging
import os
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional

import yaml

from utils.time_utils import STARTED_AT_FORMAT

DEFAULT_REPOSITORIES_PREFIX = "docker/registry/v2/repositories/"


class ConfigValidationError(Exception):
    """Raised when configuration validation fails"""


@dataclass(frozen=True)
class CleanupPolicy:
    """Age policy applied to multipart uploads and upload session folders alike"""

    stale_after_hours: int = 12
    started_at_format: str = STARTED_AT_FORMAT


class ConfigManager:
    """Manages configuration for the registry upload cleaner"""

    def __init__(self, config_file: str = None, validate: bool = True):
        """Initialize ConfigManager

        Args:
            config_file: Path to configuration YAML file (defaults to config.yaml or CONFIG_FILE env var)
            validate: If True, validate configuration on initialization
        """
        # Allow override via environment variable for containerized deployments
        if config_file is None:
            config_file = os.environ.get("CONFIG_FILE", "config.yaml")
        self.config_file = config_file
        self.config = self._load_config()
        self.overrides: Dict[str, Any] = {}

        if validate:
            self.validate_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from YAML file with defaults"""
        default_config = {
            "s3": {
                "endpoint": "",
                "bucket": "",
                "region": "us-west-1",
                "skip_tls_verify": False,
            },
            "cleanup": {
                "stale_after_hours": 12,
                "started_at_format": STARTED_AT_FORMAT,
                "repositories_prefix": DEFAULT_REPOSITORIES_PREFIX,
                "repository_page_size": 100,
                "multipart_page_size": 1000,
                "object_page_size": 100,
                "folder_page_size": 1000,
            },
            "security": {"dry_run_by_default": False},
            "reports": {"output_dir": "reports"},
        }

        try:
            if os.path.exists(self.config_file):
                with open(self.config_file, "r") as f:
                    user_config = yaml.safe_load(f) or {}
                if not isinstance(user_config, dict):
                    raise ConfigValidationError(
                        f"Config file {self.config_file} must contain a mapping, got {type(user_config).__name__}"
                    )
                return self._merge_config(default_config, user_config)
            else:
                logging.debug(f"Config file {self.config_file} not found, using defaults")
                return default_config
        except yaml.YAMLError as e:
            raise ConfigValidationError(f"Error loading config file {self.config_file}: {e}")

    def _merge_config(self, default: Dict[str, Any], user: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively merge user config with defaults"""
        result = default.copy()
        for key, value in user.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_config(result[key], value)
            else:
                result[key] = value
        return result

    def apply_overrides(self, **overrides: Any) -> None:
        """Apply command-line overrides. ``None`` values are ignored."""
        for key, value in overrides.items():
            if value is not None:
                self.overrides[key] = value

    def _get(self, key: str, section: str, env_var: Optional[str] = None) -> Any:
        """Resolve a value: override -> environment -> config file / defaults"""
        if key in self.overrides:
            return self.overrides[key]
        if env_var and os.environ.get(env_var):
            return os.environ[env_var]
        return self.config.get(section, {}).get(key)

    # Object store configuration
    def get_endpoint(self) -> str:
        """Get object-store endpoint URL from override, environment or config"""
        return self._get("endpoint", "s3", "S3_ENDPOINT") or ""

    def get_bucket(self) -> str:
        """Get bucket name from override, environment or config"""
        return self._get("bucket", "s3", "S3_BUCKET") or ""

    def get_region(self) -> str:
        """Get region from override, environment or config"""
        return self._get("region", "s3", "S3_REGION") or "us-west-1"

    def get_skip_tls_verify(self) -> bool:
        """Whether TLS certificate verification is disabled"""
        return _to_bool(self._get("skip_tls_verify", "s3"))

    # Cleanup configuration
    def get_stale_after_hours(self) -> int:
        """Get the age threshold in hours, with type coercion"""
        hours = self._get("stale_after_hours", "cleanup", "STALE_AFTER_HOURS")
        try:
            return int(hours)
        except (ValueError, TypeError):
            raise ConfigValidationError(
                f"cleanup.stale_after_hours must be an integer, got: {hours} (type: {type(hours).__name__})"
            )

    def get_started_at_format(self) -> str:
        """Get the strptime format of startedat marker bodies"""
        return self._get("started_at_format", "cleanup") or STARTED_AT_FORMAT

    def get_repositories_prefix(self) -> str:
        """Get the key prefix holding one common prefix per repository"""
        return self._get("repositories_prefix", "cleanup") or DEFAULT_REPOSITORIES_PREFIX

    def _get_page_size(self, key: str) -> int:
        size = self._get(key, "cleanup")
        try:
            return int(size)
        except (ValueError, TypeError):
            raise ConfigValidationError(f"cleanup.{key} must be an integer, got: {size} (type: {type(size).__name__})")

    def get_repository_page_size(self) -> int:
        return self._get_page_size("repository_page_size")

    def get_multipart_page_size(self) -> int:
        return self._get_page_size("multipart_page_size")

    def get_object_page_size(self) -> int:
        return self._get_page_size("object_page_size")

    def get_folder_page_size(self) -> int:
        return self._get_page_size("folder_page_size")

    def is_dry_run(self) -> bool:
        """Dry run if requested on the command line or by default in config"""
        if self.overrides.get("dry_run"):
            return True
        return _to_bool(self.config.get("security", {}).get("dry_run_by_default", False))

    def get_output_dir(self) -> str:
        """Get report output directory from config"""
        return self.config.get("reports", {}).get("output_dir", "reports")

    def get_cleanup_policy(self) -> CleanupPolicy:
        """Build the cleanup policy handed to the reapers"""
        return CleanupPolicy(
            stale_after_hours=self.get_stale_after_hours(),
            started_at_format=self.get_started_at_format(),
        )

    def validate_config(self) -> None:
        """Validate configuration values

        Raises:
            ConfigValidationError: If configuration is invalid
        """
        errors = []
        warnings = []

        endpoint = self.get_endpoint()
        if not endpoint or not endpoint.strip():
            errors.append("Object-store endpoint is required (--endpoint, S3_ENDPOINT or s3.endpoint)")
        elif not self._is_valid_endpoint(endpoint):
            warnings.append(f"Endpoint '{endpoint}' may be invalid (expected format: http[s]://hostname[:port])")

        bucket = self.get_bucket()
        if not bucket or not bucket.strip():
            errors.append("Bucket is required (--bucket, S3_BUCKET or s3.bucket)")
        elif not self._is_valid_s3_bucket_name(bucket):
            errors.append(
                f"S3 bucket name '{bucket}' is invalid (must be 3-63 characters, lowercase alphanumeric, dots and hyphens only)"
            )

        try:
            stale_after_hours = self.get_stale_after_hours()
            if stale_after_hours < 0:
                errors.append(f"cleanup.stale_after_hours must be a non-negative integer, got: {stale_after_hours}")
            elif stale_after_hours < 2:
                warnings.append(
                    f"cleanup.stale_after_hours is very low ({stale_after_hours}), in-progress uploads may be removed"
                )
        except ConfigValidationError as e:
            errors.append(str(e))

        started_at_format = self.get_started_at_format()
        if "%" not in started_at_format:
            errors.append(f"cleanup.started_at_format '{started_at_format}' contains no strptime directives")

        prefix = self.get_repositories_prefix()
        if not prefix.endswith("/"):
            errors.append(f"cleanup.repositories_prefix must end with '/', got: {prefix}")

        for key in ("repository_page_size", "multipart_page_size", "object_page_size", "folder_page_size"):
            try:
                size = self._get_page_size(key)
                if size < 1 or size > 1000:
                    errors.append(f"cleanup.{key} must be between 1 and 1000, got: {size}")
            except ConfigValidationError as e:
                errors.append(str(e))

        # Log warnings
        for warning in warnings:
            logging.warning(f"Configuration warning: {warning}")

        # Raise error if there are validation errors
        if errors:
            error_msg = "Configuration validation failed:\n  " + "\n  ".join(errors)
            logging.error(error_msg)
            raise ConfigValidationError(error_msg)

    def _is_valid_endpoint(self, url: str) -> bool:
        """Validate endpoint URL format"""
        pattern = r"^https?://[a-zA-Z0-9]([a-zA-Z0-9\-\.]*[a-zA-Z0-9])?(:[0-9]{1,5})?(/.*)?$"
        return bool(re.match(pattern, url))

    def _is_valid_s3_bucket_name(self, name: str) -> bool:
        """Validate S3 bucket name format"""
        if not name:
            return False
        # S3 bucket names: 3-63 characters, lowercase alphanumeric, dots and hyphens, not IP address format
        if len(name) < 3 or len(name) > 63:
            return False
        pattern = r"^[a-z0-9]([a-z0-9\-\.]*[a-z0-9])?$"
        if not re.match(pattern, name):
            return False
        # Cannot be formatted as IP address
        if re.match(r"^\d+\.\d+\.\d+\.\d+$", name):
            return False
        return True

    def print_config(self) -> None:
        """Log the effective configuration"""
        logging.info("Current Configuration:")
        logging.info(f"  Endpoint: {self.get_endpoint()}")
        logging.info(f"  Bucket: {self.get_bucket()}")
        logging.info(f"  Region: {self.get_region()}")
        logging.info(f"  Skip TLS Verify: {self.get_skip_tls_verify()}")
        logging.info(f"  Repositories Prefix: {self.get_repositories_prefix()}")
        logging.info(f"  Stale After (hours): {self.get_stale_after_hours()}")
        logging.info(f"  Dry Run: {self.is_dry_run()}")


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes", "on")
    return bool(value)
