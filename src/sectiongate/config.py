"""sectiongate configuration management."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass
class Config:
    """sectiongate configuration."""

    home_path: Path = field(default_factory=lambda: Path.home() / ".sectiongate")
    log_level: str = "INFO"
    wal_mode: bool = True

    # Seconds a cached permission snapshot stays valid
    permission_cache_ttl: float = 300.0

    # When False, membership mutations use the no-op dispatcher
    notifications_enabled: bool = True

    seed_catalog_on_init: bool = True

    @classmethod
    def load(cls, home_path: Path | None = None) -> Config:
        """Load config from YAML file, env vars, then defaults."""
        config = cls()

        if home_path:
            config.home_path = home_path

        # Override from env
        env_path = os.environ.get("SECTIONGATE_HOME")
        if env_path:
            config.home_path = Path(env_path)

        env_log = os.environ.get("SECTIONGATE_LOG_LEVEL")
        if env_log:
            config.log_level = env_log

        env_notify = os.environ.get("SECTIONGATE_NOTIFICATIONS")
        if env_notify:
            config.notifications_enabled = env_notify.strip().lower() in _TRUTHY

        # Load YAML config if exists
        config_file = config.home_path / "config.yaml"
        if config_file.exists():
            with open(config_file) as f:
                data = yaml.safe_load(f) or {}
            for key, value in data.items():
                if key == "home_path" or not hasattr(config, key):
                    continue
                expected_type = type(getattr(config, key))
                if expected_type is bool and isinstance(value, str):
                    setattr(config, key, value.strip().lower() in _TRUTHY)
                else:
                    setattr(config, key, expected_type(value))

        return config

    @property
    def metadata_db_path(self) -> Path:
        return self.home_path / "metadata.db"

    def save(self) -> None:
        """Save current config to YAML."""
        self.home_path.mkdir(parents=True, exist_ok=True)
        config_file = self.home_path / "config.yaml"
        data = {
            "log_level": self.log_level,
            "wal_mode": self.wal_mode,
            "permission_cache_ttl": self.permission_cache_ttl,
            "notifications_enabled": self.notifications_enabled,
            "seed_catalog_on_init": self.seed_catalog_on_init,
        }
        with open(config_file, "w") as f:
            yaml.dump(data, f, default_flow_style=False)
