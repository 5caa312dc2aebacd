"""Configuration management - loads renewal.yaml and environment variables."""

import os
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import ValidationError

from graph_renewal.models import (
    GraphSettings,
    IdentitySettings,
    NotifierSettings,
    RenewalSettings,
    ServiceConfig,
)

# Environment variables that override individual settings: env var -> (section, key)
ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "RENEWAL_TICK_SECONDS": ("renewal", "tick_seconds"),
    "CREDENTIAL_LEAD_MINUTES": ("renewal", "credential_lead_minutes"),
    "SUBSCRIPTION_LEAD_MINUTES": ("renewal", "subscription_lead_minutes"),
    "CALL_TIMEOUT_SECONDS": ("renewal", "call_timeout_seconds"),
    "MAX_PARALLEL_USERS": ("renewal", "max_parallel_users"),
    "TENANT_ID": ("identity", "tenant_id"),
    "CLIENT_ID": ("identity", "client_id"),
    "CLIENT_SECRET": ("identity", "client_secret"),
    "REDIRECT_URI": ("identity", "redirect_uri"),
    "NOTIFICATION_URL": ("graph", "notification_url"),
    "CLIENT_STATE_SECRET": ("graph", "client_state"),
    "NOTIFIER_KIND": ("notifier", "kind"),
    "NOTIFIER_WEBHOOK_URL": ("notifier", "webhook_url"),
}


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing."""

    pass


class Config:
    """Application configuration loader and manager.

    Loads renewal.yaml (when present), applies environment overrides and
    provides validated access to:
    - Renewal timings
    - Identity provider settings
    - Subscription service settings
    - Notifier settings
    """

    def __init__(self, config_path: Optional[str] = None, require_file: bool = False):
        """Initialize configuration loader.

        Args:
            config_path: Path to renewal.yaml file. If not provided, uses CONFIG_PATH env var
                        or defaults to ./config/renewal.yaml
            require_file: Raise if the file does not exist instead of using defaults
        """
        self._config_path = self._resolve_config_path(config_path)
        self._require_file = require_file
        self._service_config: Optional[ServiceConfig] = None
        self._load_config()

    def _resolve_config_path(self, config_path: Optional[str]) -> Path:
        """Resolve configuration file path from argument, env var, or default."""
        if config_path:
            return Path(config_path)

        env_path = os.getenv("CONFIG_PATH")
        if env_path:
            return Path(env_path)

        return Path("config/renewal.yaml")

    def _read_file(self) -> dict[str, Any]:
        if not self._config_path.exists():
            if self._require_file:
                raise ConfigurationError(
                    f"Configuration file not found: {self._config_path}\n"
                    f"Please create config/renewal.yaml or set CONFIG_PATH environment variable"
                )
            return {}

        try:
            with open(self._config_path, encoding="utf-8") as f:
                raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Failed to parse YAML configuration: {e}") from e

        if raw_config is None:
            return {}
        if not isinstance(raw_config, dict):
            raise ConfigurationError(
                f"Configuration file must contain a mapping: {self._config_path}"
            )
        return raw_config

    @staticmethod
    def _apply_env_overrides(raw_config: dict[str, Any]) -> dict[str, Any]:
        for env_name, (section, key) in ENV_OVERRIDES.items():
            value = os.getenv(env_name)
            if value is None or value == "":
                continue
            section_values = raw_config.setdefault(section, {}) or {}
            section_values[key] = value
            raw_config[section] = section_values
        return raw_config

    def _load_config(self) -> None:
        """Load, override and validate configuration."""
        raw_config = self._apply_env_overrides(self._read_file())

        try:
            self._service_config = ServiceConfig(**raw_config)
        except ValidationError as e:
            raise ConfigurationError(f"Configuration validation failed:\n{e}") from e

    @property
    def service(self) -> ServiceConfig:
        """Get validated service configuration."""
        if self._service_config is None:
            raise ConfigurationError("Configuration not loaded")
        return self._service_config

    @property
    def config_path(self) -> Path:
        """Get path to configuration file."""
        return self._config_path

    @property
    def renewal(self) -> RenewalSettings:
        """Get renewal timing settings."""
        return self.service.renewal

    @property
    def identity(self) -> IdentitySettings:
        """Get identity provider settings."""
        return self.service.identity

    @property
    def graph(self) -> GraphSettings:
        """Get subscription service settings."""
        return self.service.graph

    @property
    def notifier(self) -> NotifierSettings:
        """Get notifier settings."""
        return self.service.notifier

    def reload(self) -> None:
        """Reload configuration from disk and environment."""
        self._load_config()


# Global configuration instance
_config_instance: Optional[Config] = None


def get_config(config_path: Optional[str] = None) -> Config:
    """Get global configuration instance (singleton).

    Args:
        config_path: Optional path to configuration file (only used on first call)

    Returns:
        Config instance
    """
    global _config_instance
    if _config_instance is None:
        _config_instance = Config(config_path)
    return _config_instance


def reload_config() -> None:
    """Reload global configuration from disk."""
    global _config_instance
    if _config_instance:
        _config_instance.reload()
    else:
        _config_instance = Config()


def reset_config() -> None:
    """Drop the global configuration so the next get_config() rebuilds it."""
    global _config_instance
    _config_instance = None
