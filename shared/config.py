"""
Runtime configuration.

Values come from environment variables (a local ``.env`` file is loaded
first). Push delivery needs all three VAPID values; when any is missing,
push is skipped and in-app notifications keep working.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


DEFAULT_DATA_DIR = Path(__file__).parent.parent / "data"
DEFAULT_HISTORY_LIMIT = 1000


@dataclass
class Settings:
    """Settings for the logistics notification core."""

    vapid_public_key: Optional[str] = field(default_factory=lambda: os.getenv("VAPID_PUBLIC_KEY"))
    vapid_private_key: Optional[str] = field(default_factory=lambda: os.getenv("VAPID_PRIVATE_KEY"))
    vapid_subject: Optional[str] = field(default_factory=lambda: os.getenv("VAPID_SUBJECT"))

    # Push provider calls are bounded; a timeout counts as a transient failure
    push_timeout_seconds: float = field(
        default_factory=lambda: float(os.getenv("PUSH_TIMEOUT_SECONDS", "3.0"))
    )

    notification_list_limit: int = field(
        default_factory=lambda: int(os.getenv("NOTIFICATION_LIST_LIMIT", "50"))
    )
    data_dir: Path = field(
        default_factory=lambda: Path(os.getenv("DATA_DIR", str(DEFAULT_DATA_DIR)))
    )
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))

    # Inspection histories (event log, outcomes, push attempts) keep only the newest entries
    history_limit: int = field(
        default_factory=lambda: int(os.getenv("HISTORY_LIMIT", str(DEFAULT_HISTORY_LIMIT)))
    )

    @property
    def push_enabled(self) -> bool:
        """True only when every VAPID value is configured."""
        return bool(self.vapid_public_key and self.vapid_private_key and self.vapid_subject)

    @property
    def vapid_claims(self) -> dict[str, str]:
        return {"sub": self.vapid_subject or ""}


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the process-wide settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings() -> Settings:
    """Re-read settings from the environment (useful for tests)."""
    global _settings
    _settings = Settings()
    return _settings
