"""
Configuration loader for the fleet gateway.

Looks for config.yaml in this order:
1. Environment variable CONFIG_PATH
2. ./config.yaml (local development)
3. /etc/fleet-gateway/config.yaml (Docker)
4. Falls back to default config
"""

import logging
import os
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = {
    "trips": 60,
    "events": 45,
    "maintenance": 120,
    "meta": 300,
}


class Config:
    def __init__(self, config_path: str | None = None):
        # Determine config path in order of priority
        if config_path:
            self.config_path = Path(config_path)
        elif os.getenv("CONFIG_PATH"):
            self.config_path = Path(os.getenv("CONFIG_PATH"))
        elif Path("./config.yaml").exists():
            self.config_path = Path("./config.yaml")
        elif Path("/etc/fleet-gateway/config.yaml").exists():
            self.config_path = Path("/etc/fleet-gateway/config.yaml")
        else:
            self.config_path = None

        self._config = self._load_config()

    def _load_config(self) -> dict[str, Any]:
        """
        Load configuration from the YAML file.

        Returns default config if file not found or unreadable.
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
            logger.warning("Config file not found: %s, using defaults", self.config_path)

        return {
            "gateway": {
                "server": {"host": "0.0.0.0", "port": 8080},
                "upstream": {
                    "base_url": "https://api.pinme.io/api",
                    "timeout_seconds": 30,
                    "concurrency": 10,
                    "max_connections": 64,
                    "test_path": "/devices",
                },
                "cache": {
                    "max_entries": 4096,
                    "ttl_seconds": dict(DEFAULT_TTL_SECONDS),
                },
                "admin": {"username": "", "password": ""},
                "database": {
                    "url": "postgresql+asyncpg://postgres@localhost:5432/postgres",
                    "echo": False,
                },
            }
        }

    def _section(self, name: str) -> dict[str, Any]:
        section = self._config.get("gateway", {}).get(name, {})
        return section if isinstance(section, dict) else {}

    @property
    def server_host(self) -> str:
        return self._section("server").get("host", "0.0.0.0")

    @property
    def server_port(self) -> int:
        env_port = os.getenv("PORT")
        if env_port:
            return int(env_port)
        return self._section("server").get("port", 8080)

    # =========================================================================
    # Upstream telemetry API
    # =========================================================================

    @property
    def upstream_base_url(self) -> str:
        env_url = os.getenv("UPSTREAM_BASE")
        if env_url:
            return env_url.rstrip("/")
        return self._section("upstream").get("base_url", "https://api.pinme.io/api").rstrip("/")

    @property
    def upstream_timeout(self) -> float:
        return self._section("upstream").get("timeout_seconds", 30)

    @property
    def upstream_concurrency(self) -> int:
        """Maximum number of per-device upstream calls in flight for one report."""
        env_value = os.getenv("UPSTREAM_CONCURRENCY")
        if env_value:
            return int(env_value)
        return self._section("upstream").get("concurrency", 10)

    @property
    def upstream_max_connections(self) -> int:
        return self._section("upstream").get("max_connections", 64)

    @property
    def upstream_test_path(self) -> str:
        return os.getenv("TEST_PATH") or self._section("upstream").get("test_path", "/devices")

    # =========================================================================
    # Coalescing cache
    # =========================================================================

    @property
    def cache_max_entries(self) -> int:
        return self._section("cache").get("max_entries", 4096)

    @property
    def cache_ttl_seconds(self) -> dict[str, float]:
        """TTL per resource class; unknown classes in the file are ignored."""
        configured = self._section("cache").get("ttl_seconds", {}) or {}
        ttls = dict(DEFAULT_TTL_SECONDS)
        for resource_class in ttls:
            if resource_class in configured:
                ttls[resource_class] = configured[resource_class]
        return ttls

    # =========================================================================
    # Persistence
    # =========================================================================

    @property
    def admin_username(self) -> str:
        return os.getenv("ADMIN_USER") or self._section("admin").get("username", "")

    @property
    def admin_password(self) -> str:
        return os.getenv("ADMIN_PASS") or self._section("admin").get("password", "")

    @property
    def database_url(self) -> str:
        return os.getenv("DATABASE_URL") or self._section("database").get(
            "url", "postgresql+asyncpg://postgres@localhost:5432/postgres"
        )

    @property
    def database_echo(self) -> bool:
        return bool(self._section("database").get("echo", False))


# Global config singleton used across the gateway
config = Config()
