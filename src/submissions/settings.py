"""Engine settings read once from the environment.

Form definitions live in a TOML file (see ``definitions/forms.toml``); the
knobs here decide where that file, staged uploads and lock files live, and
whether time-based expiration is enforced.
"""

import os
from dataclasses import dataclass
from pathlib import Path

from submissions.utils.logging import current_environment, get_logger

logger = get_logger(__name__)

DEFAULT_FORMS_FILE = Path(__file__).parent / "definitions" / "forms.toml"

# Expiration may only be switched off outside production
_BYPASS_ALLOWED_ENVIRONMENTS = ("development", "local", "test", "testing")

_TRUTHY = ("1", "true", "yes", "on")


def _flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in _TRUTHY


@dataclass(frozen=True)
class Settings:
    forms_file: Path = DEFAULT_FORMS_FILE
    bypass_expiration: bool = False
    blob_dir: Path | None = None
    lock_dir: Path | None = None
    reap_interval_seconds: int = 300
    reap_batch_size: int = 500

    @classmethod
    def from_env(cls) -> "Settings":
        environment = current_environment()
        bypass = _flag("SUBMISSIONS_BYPASS_EXPIRATION")
        if bypass and environment not in _BYPASS_ALLOWED_ENVIRONMENTS:
            logger.warning("Expiration bypass ignored outside development", environment=environment)
            bypass = False

        blob_dir = os.getenv("SUBMISSIONS_BLOB_DIR")
        lock_dir = os.getenv("SUBMISSIONS_LOCK_DIR")

        return cls(
            forms_file=Path(os.getenv("SUBMISSIONS_FORMS_FILE", str(DEFAULT_FORMS_FILE))),
            bypass_expiration=bypass,
            blob_dir=Path(blob_dir) if blob_dir else None,
            lock_dir=Path(lock_dir) if lock_dir else None,
            reap_interval_seconds=int(os.getenv("SUBMISSIONS_REAP_INTERVAL_SECONDS", "300")),
            reap_batch_size=int(os.getenv("SUBMISSIONS_REAP_BATCH_SIZE", "500")),
        )


_current_settings: Settings | None = None


def get_settings() -> Settings:
    """Return the process-wide settings, loading them from the environment on first use."""
    global _current_settings
    if _current_settings is None:
        _current_settings = Settings.from_env()
    return _current_settings


def set_settings(settings: Settings) -> None:
    """Override the active settings (useful for tests)."""
    global _current_settings
    _current_settings = settings


def reset_settings() -> None:
    """Forget the cached settings so the next access re-reads the environment."""
    global _current_settings
    _current_settings = None
