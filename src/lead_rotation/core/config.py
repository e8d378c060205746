"""Rotation configuration: persisted tunables plus environment settings."""

import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import List, Optional

logger = logging.getLogger(__name__)

DEFAULT_HOME = Path.home() / ".lead-rotation"

DEFAULT_PROPERTY_TYPES = ["MFH", "MF", "SFH", "Commercial"]


@dataclass
class RotationConfig:
    """Tunables for cushions, reservations and write retries."""

    # Cushion value given to a rep when an admin sets one without a value
    default_cushion: int = 2

    # How long a rep stays held for an operator
    reservation_ttl_minutes: int = 10

    # Attempts at a ledger append before the event is queued
    ledger_retry_attempts: int = 3

    # Extra attempts after a compare-and-swap conflict
    cas_retry_attempts: int = 1

    property_types: List[str] = field(default_factory=lambda: list(DEFAULT_PROPERTY_TYPES))

    updated_at: datetime = field(default_factory=datetime.now)


class RotationConfigManager:
    """Manage and persist rotation configuration."""

    def __init__(self, config_path: Optional[Path] = None):
        self.config_path = Path(config_path) if config_path else DEFAULT_HOME / "config.json"
        self.config = self._load_config()

    def _load_config(self) -> RotationConfig:
        """Load configuration from file, falling back to defaults."""
        if self.config_path.exists():
            try:
                with open(self.config_path, 'r') as f:
                    data = json.load(f)
                return RotationConfig(
                    default_cushion=int(data.get("default_cushion", 2)),
                    reservation_ttl_minutes=int(data.get("reservation_ttl_minutes", 10)),
                    ledger_retry_attempts=int(data.get("ledger_retry_attempts", 3)),
                    cas_retry_attempts=int(data.get("cas_retry_attempts", 1)),
                    property_types=data.get("property_types") or list(DEFAULT_PROPERTY_TYPES),
                )
            except (OSError, ValueError, TypeError) as e:
                logger.error(f"Error loading rotation config: {e}")

        return RotationConfig()

    def save_config(self):
        """Save configuration to file."""
        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        self.config.updated_at = datetime.now()
        data = {
            "default_cushion": self.config.default_cushion,
            "reservation_ttl_minutes": self.config.reservation_ttl_minutes,
            "ledger_retry_attempts": self.config.ledger_retry_attempts,
            "cas_retry_attempts": self.config.cas_retry_attempts,
            "property_types": self.config.property_types,
            "updated_at": self.config.updated_at.isoformat(),
        }
        with open(self.config_path, 'w') as f:
            json.dump(data, f, indent=2)

    def update(self, **changes) -> RotationConfig:
        """Apply changes to known fields and save."""
        for key, value in changes.items():
            if not hasattr(self.config, key) or key == "updated_at":
                raise KeyError(f"Unknown config field: {key}")
            setattr(self.config, key, value)
        self.save_config()
        logger.info(f"Updated rotation config: {', '.join(changes)}")
        return self.config


class Settings:
    """Process configuration loaded from environment variables."""

    def __init__(self):
        self.db_path = os.getenv(
            "LEAD_ROTATION_DB",
            str(DEFAULT_HOME / "rotation.db"),
        )
        self.config_path = os.getenv(
            "LEAD_ROTATION_CONFIG",
            str(DEFAULT_HOME / "config.json"),
        )
        self.log_level = os.getenv("LEAD_ROTATION_LOG_LEVEL", "INFO").upper()
        self.host = os.getenv("LEAD_ROTATION_HOST", "127.0.0.1")
        self.port = int(os.getenv("LEAD_ROTATION_PORT", "8000"))


_settings = None


def _get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings():
    """Drop cached settings so the next access re-reads the environment."""
    global _settings
    _settings = None


class _SettingsProxy:
    """Lazy proxy so settings aren't loaded until first access."""

    def __getattr__(self, name):
        return getattr(_get_settings(), name)


settings = _SettingsProxy()
