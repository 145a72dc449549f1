# =============================================================================
# school_core/settings.py
# Runtime configuration for the offline cache, sync engine and timetable
# =============================================================================
"""
Settings are resolved in this order:

1. Streamlit secrets (``.streamlit/secrets.toml``)::

    [supabase]
    url = "https://your-project.supabase.co"
    key = "your-anon-key"

    [offline]
    db_path = "local_data/school.db"
    sync_interval = 300
    storage_quota_bytes = 524288000
    payment_history_months = 6
    max_retry_attempts = 5
    use_remote_procedures = false

2. Environment variables ``SUPABASE_URL``, ``SUPABASE_KEY`` and
   ``SCHOOL_CORE_DB_PATH``.
3. Built-in defaults (local-only mode, no remote configured).
"""

from __future__ import annotations
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional
import logging

import streamlit as st

from school_core.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path(__file__).parent.parent / "local_data" / "school.db"


@dataclass
class Settings:
    """Resolved configuration for the school core."""
    db_path: Path = field(default_factory=lambda: DEFAULT_DB_PATH)
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    sync_interval: int = 300            # Seconds between background syncs
    connection_check_interval: int = 30 # Seconds between connectivity probes
    connection_timeout: int = 5         # Socket timeout for probes
    storage_quota_bytes: Optional[int] = None
    payment_history_months: int = 6
    max_retry_attempts: int = 5
    use_remote_procedures: bool = False

    @property
    def has_remote(self) -> bool:
        """True when Supabase credentials are present."""
        return bool(self.supabase_url and self.supabase_key)

    def validate(self) -> Settings:
        """Reject values the sync engine cannot work with."""
        for name in ("sync_interval", "connection_check_interval", "connection_timeout",
                     "payment_history_months", "max_retry_attempts"):
            value = getattr(self, name)
            if not isinstance(value, int) or value <= 0:
                raise ConfigurationError(
                    f"'{name}' must be a positive integer",
                    config_key=name,
                    expected_type="int > 0",
                )
        if self.storage_quota_bytes is not None and self.storage_quota_bytes <= 0:
            raise ConfigurationError(
                "'storage_quota_bytes' must be positive when set",
                config_key="storage_quota_bytes",
                expected_type="int > 0",
            )
        if bool(self.supabase_url) != bool(self.supabase_key):
            raise ConfigurationError(
                "Supabase url and key must be configured together",
                config_key="supabase",
            )
        return self


def _read_secrets() -> Dict[str, Dict[str, Any]]:
    """Read the relevant secrets sections, tolerating a missing secrets file."""
    sections: Dict[str, Dict[str, Any]] = {}
    try:
        for section in ("supabase", "offline"):
            if section in st.secrets:
                sections[section] = dict(st.secrets[section])
    except Exception as e:
        # No secrets.toml outside a configured Streamlit deployment
        logger.debug(f"Streamlit secrets not available: {e}")
    return sections


def load_settings(overrides: Optional[Dict[str, Any]] = None) -> Settings:
    """
    Build Settings from secrets, environment and defaults.

    Args:
        overrides: Explicit values that win over every other source

    Returns:
        Validated Settings
    """
    secrets = _read_secrets()
    supabase = secrets.get("supabase", {})
    offline = secrets.get("offline", {})

    values: Dict[str, Any] = {
        "supabase_url": supabase.get("url") or os.getenv("SUPABASE_URL"),
        "supabase_key": supabase.get("key") or os.getenv("SUPABASE_KEY"),
    }

    db_path = offline.get("db_path") or os.getenv("SCHOOL_CORE_DB_PATH")
    if db_path:
        values["db_path"] = Path(db_path)

    known = {f.name for f in fields(Settings)}
    for key, value in offline.items():
        if key in known and key != "db_path":
            values[key] = value

    if overrides:
        values.update(overrides)
        if "db_path" in overrides:
            values["db_path"] = Path(overrides["db_path"])

    unknown = set(values) - known
    if unknown:
        raise ConfigurationError(
            f"Unknown settings: {', '.join(sorted(unknown))}",
            config_key=sorted(unknown)[0],
        )

    return Settings(**values).validate()


# Process-wide settings
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the global Settings instance."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings
