# src/campus_sync/config.py
"""
Configuration loader for campus-sync.
Loads configuration from YAML files and environment variables.
"""

from typing import Dict, Any, Optional
from pathlib import Path
import logging
import os

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)


class SyncConfig(BaseModel):
    """Remote store and reconciliation settings."""

    model_config = ConfigDict(extra="allow")

    # Remote store (Supabase)
    supabase_url: str = ""
    supabase_key: str = ""

    # Run a full sync whenever connectivity comes back
    auto_sync_on_reconnect: bool = True

    # Exponential backoff for entries that failed with a transient error
    retry_base_seconds: float = 2.0
    retry_max_seconds: float = 300.0

    # Connectivity probing
    probe_interval: float = 30.0  # seconds
    probe_timeout: float = 5.0

    @property
    def remote_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)


class CampusSyncConfig(BaseModel):
    """Main campus-sync configuration."""

    model_config = ConfigDict(extra="allow")

    # Environment
    environment: str = "development"
    debug: bool = False

    # Device identification (informational, shows up in logs)
    device_name: str = "campus-device"

    # Local store
    database_path: str = "campus.db"

    # Sync
    sync: SyncConfig = Field(default_factory=SyncConfig)

    # API
    api_host: str = "127.0.0.1"
    api_port: int = 8010

    # Logging
    log_level: str = "INFO"


class ConfigLoader:
    """Load and manage campus-sync configuration."""

    def __init__(self, config_dir: str = "config"):
        """
        Initialize config loader.

        Args:
            config_dir: Directory containing config files
        """
        self.config_dir = Path(config_dir)
        self.config: Optional[CampusSyncConfig] = None
        self.load()

    def load(self) -> CampusSyncConfig:
        """Load configuration from YAML and environment variables."""
        load_dotenv()

        env = os.getenv("CAMPUS_SYNC_ENV", "development")
        config_file = self.config_dir / f"{env}.yaml"

        merged = self._load_yaml(self.config_dir / "default.yaml")

        if config_file.exists():
            _deep_update(merged, self._load_yaml(config_file))
        else:
            logger.debug(f"Config file not found: {config_file}, using defaults")

        _deep_update(merged, self._load_from_env())
        merged.setdefault("environment", env)

        self.config = CampusSyncConfig(**merged)
        logger.info(
            f"Configuration loaded (environment: {self.config.environment}, "
            f"database: {self.config.database_path})"
        )
        return self.config

    def _load_yaml(self, path: Path) -> Dict[str, Any]:
        """Load YAML config file."""
        if not path.exists():
            return {}

        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f)
                return data or {}
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to load YAML config {path}: {e}")
            return {}

    def _load_from_env(self) -> Dict[str, Any]:
        """Load configuration from environment variables."""
        config: Dict[str, Any] = {}

        if db_path := os.getenv("CAMPUS_SYNC_DB_PATH"):
            config["database_path"] = db_path
        if log_level := os.getenv("CAMPUS_SYNC_LOG_LEVEL"):
            config["log_level"] = log_level
        if api_port := os.getenv("CAMPUS_SYNC_API_PORT"):
            config["api_port"] = int(api_port)
        if device_name := os.getenv("CAMPUS_SYNC_DEVICE_NAME"):
            config["device_name"] = device_name

        sync: Dict[str, Any] = {}
        if supabase_url := os.getenv("SUPABASE_URL"):
            sync["supabase_url"] = supabase_url
        if supabase_key := os.getenv("SUPABASE_KEY") or os.getenv("SUPABASE_ANON_KEY"):
            sync["supabase_key"] = supabase_key
        if auto_sync := os.getenv("CAMPUS_SYNC_AUTO_SYNC"):
            sync["auto_sync_on_reconnect"] = auto_sync.lower() == "true"

        if sync:
            config["sync"] = sync

        return config

    def get(self) -> CampusSyncConfig:
        """Get current configuration."""
        if not self.config:
            self.load()
        return self.config

    def reload(self):
        """Reload configuration (useful for development)."""
        logger.info("Reloading configuration...")
        self.load()


def _deep_update(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Merge nested dicts so an env override of one sync key keeps the others."""
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _deep_update(base[key], value)
        else:
            base[key] = value
    return base


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging for the app and scripts."""
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# Global config instance
_global_config_loader: Optional[ConfigLoader] = None


def get_config() -> CampusSyncConfig:
    """Get the global campus-sync configuration."""
    global _global_config_loader
    if _global_config_loader is None:
        _global_config_loader = ConfigLoader()
    return _global_config_loader.get()


def initialize_config(config_dir: str = "config") -> CampusSyncConfig:
    """Initialize the global configuration loader."""
    global _global_config_loader
    _global_config_loader = ConfigLoader(config_dir)
    return _global_config_loader.get()
