"""
Configuration loader for the Cumulocity FastAPI helpers.

Looks for config.yaml in this order:
1. Environment variable CONFIG_PATH
2. ./config.yaml (local development)
3. Falls back to default config

Values under the ``c8y`` section can be overridden by process environment
variables (``C8Y_BASEURL``, ``C8Y_BOOTSTRAP_*``, ``C8Y_DEVELOPMENT_*``, ...),
which is how the platform injects them into a running microservice.
"""

import logging
import os
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CACHE_TTL = 600

REQUIRED_ENV_VARS = (
    "C8Y_BASEURL",
    "C8Y_BOOTSTRAP_TENANT",
    "C8Y_BOOTSTRAP_USER",
    "C8Y_BOOTSTRAP_PASSWORD",
)

DEVELOPMENT_ENV_VARS = (
    "C8Y_DEVELOPMENT_TENANT",
    "C8Y_DEVELOPMENT_USER",
    "C8Y_DEVELOPMENT_PASSWORD",
)


class Config:
    def __init__(self, config_path: str | None = None, data: dict[str, Any] | None = None):
        if data is not None:
            # Explicit mapping, used by tests and embedding applications
            self.config_path = None
            self._config = data
            return

        if config_path:
            self.config_path = Path(config_path)
        elif os.getenv("CONFIG_PATH"):
            self.config_path = Path(os.getenv("CONFIG_PATH"))
        elif Path("./config.yaml").exists():
            self.config_path = Path("./config.yaml")
        else:
            self.config_path = None

        self._config = self._load_config()

    def _load_config(self) -> dict[str, Any]:
        """
        Load configuration from the YAML file.

        Returns an empty config (all defaults) if the file is missing or broken.
        """
        if self.config_path and self.config_path.exists():
            try:
                with open(self.config_path, encoding="utf-8") as f:
                    config_data = yaml.safe_load(f) or {}
                    logger.info("Loaded config from: %s", self.config_path)
                    return config_data
            except (OSError, yaml.YAMLError) as e:
                logger.error("Error loading config from %s: %s", self.config_path, e)
        elif self.config_path:
            logger.warning("Config file not found, using defaults. Tried: %s", self.config_path)

        return {"c8y": {}}

    @property
    def _c8y(self) -> dict[str, Any]:
        return self._config.get("c8y") or {}

    @property
    def _cache(self) -> dict[str, Any]:
        return self._c8y.get("cache") or {}

    def _env_or(self, env_name: str, *path: str, default: Any = None) -> Any:
        env_value = os.getenv(env_name)
        if env_value:
            return env_value
        node: Any = self._c8y
        for part in path:
            if not isinstance(node, dict):
                return default
            node = node.get(part)
        return default if node is None else node

    # =========================================================================
    # Platform connection and bootstrap identity
    # =========================================================================

    @property
    def base_url(self) -> str:
        """Base URL of the platform, without trailing slash."""
        return str(self._env_or("C8Y_BASEURL", "base_url", default="")).rstrip("/")

    @property
    def bootstrap_tenant(self) -> str:
        return self._env_or("C8Y_BOOTSTRAP_TENANT", "bootstrap", "tenant", default="")

    @property
    def bootstrap_user(self) -> str:
        return self._env_or("C8Y_BOOTSTRAP_USER", "bootstrap", "user", default="")

    @property
    def bootstrap_password(self) -> str:
        return self._env_or("C8Y_BOOTSTRAP_PASSWORD", "bootstrap", "password", default="")

    @property
    def settings_category(self) -> str:
        """Category used for tenant option lookups (the microservice's settings category)."""
        return self._env_or("C8Y_SETTINGS_CATEGORY", "settings_category",
                            default=os.getenv("APPLICATION_NAME", ""))

    def missing_required_vars(self) -> list[str]:
        """Names of the required connection variables that have no value."""
        values = {
            "C8Y_BASEURL": self.base_url,
            "C8Y_BOOTSTRAP_TENANT": self.bootstrap_tenant,
            "C8Y_BOOTSTRAP_USER": self.bootstrap_user,
            "C8Y_BOOTSTRAP_PASSWORD": self.bootstrap_password,
        }
        return [name for name in REQUIRED_ENV_VARS if not values[name]]

    # =========================================================================
    # Development user injection
    # =========================================================================

    @property
    def dev_mode(self) -> bool:
        env_value = os.getenv("C8Y_DEV_MODE")
        if env_value is not None:
            return env_value.lower() in {"1", "true", "yes", "on"}
        return bool(self._c8y.get("dev_mode", False))

    @property
    def development_tenant(self) -> str:
        return self._env_or("C8Y_DEVELOPMENT_TENANT", "development", "tenant", default="")

    @property
    def development_user(self) -> str:
        return self._env_or("C8Y_DEVELOPMENT_USER", "development", "user", default="")

    @property
    def development_password(self) -> str:
        return self._env_or("C8Y_DEVELOPMENT_PASSWORD", "development", "password", default="")

    def missing_development_vars(self) -> list[str]:
        values = {
            "C8Y_DEVELOPMENT_TENANT": self.development_tenant,
            "C8Y_DEVELOPMENT_USER": self.development_user,
            "C8Y_DEVELOPMENT_PASSWORD": self.development_password,
        }
        return [name for name in DEVELOPMENT_ENV_VARS if not values[name]]

    # =========================================================================
    # Cache configuration
    # =========================================================================

    @property
    def credentials_cache_ttl(self) -> int:
        """TTL of the subscribed tenant credentials cache in seconds (default 10 minutes)."""
        return int(self._env_or("C8Y_CREDENTIALS_CACHE_TTL", "cache", "credentials_ttl",
                                default=DEFAULT_CACHE_TTL))

    @property
    def default_tenant_options_ttl(self) -> int:
        """Default TTL for every tenant option key in seconds (default 10 minutes)."""
        return int(self._env_or("C8Y_DEFAULT_TENANT_OPTIONS_TTL", "cache", "default_tenant_options_ttl",
                                default=DEFAULT_CACHE_TTL))

    @property
    def tenant_options_ttl(self) -> dict[str, int]:
        """Per-key TTL overrides for tenant options."""
        overrides = self._cache.get("tenant_options", {})
        if not isinstance(overrides, dict):
            return {}
        return {str(key): int(ttl) for key, ttl in overrides.items()}

    @property
    def cache_storage(self) -> str:
        """Storage backend: 'memory' (default) or 'file'."""
        return str(self._cache.get("storage", "memory")).lower()

    @property
    def cache_storage_dir(self) -> str:
        return self._cache.get("storage_dir", ".c8y_cache")

    @property
    def cache_max_entries(self) -> int:
        return int(self._cache.get("max_entries", 4096))

    # =========================================================================
    # Manifest probes
    # =========================================================================

    @property
    def manifest(self) -> dict[str, Any]:
        manifest = self._c8y.get("manifest", {})
        return manifest if isinstance(manifest, dict) else {}

    # =========================================================================
    # Demo server
    # =========================================================================

    @property
    def server_host(self) -> str:
        return self._c8y.get("server", {}).get("host", "0.0.0.0")

    @property
    def server_port(self) -> int:
        return self._c8y.get("server", {}).get("port", 80)


# Global config singleton used when no explicit Config is passed
config = Config()
