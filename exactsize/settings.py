"""
Settings persistence for target size and search tuning
"""

import json
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional

from .compression.result import EncoderOptions, SearchSettings
from .logger import get_logger
from .utils import UNIT_MULTIPLIERS, to_bytes

logger = get_logger("settings")

# Settings file location
SETTINGS_FILE = Path.cwd() / "exactsize_settings.json"

# Upper bound on concurrent searches
MAX_WORKERS_CAP = 32


def default_worker_count() -> int:
    """Default number of concurrent searches."""
    return max(1, min(4, os.cpu_count() or 1))


@dataclass
class AppSettings:
    """User defaults for a compression run.

    Attributes:
        target_size: Target size in target_unit
        target_unit: Unit of target_size (B, KB, MB, GB)
        max_workers: Concurrent searches in a batch
        search: Search tuning constants
        encoder: Fixed encoding options
    """
    target_size: float = 1.0
    target_unit: str = 'MB'
    max_workers: int = field(default_factory=default_worker_count)
    search: SearchSettings = field(default_factory=SearchSettings)
    encoder: EncoderOptions = field(default_factory=EncoderOptions)

    def __post_init__(self):
        """Validate settings."""
        self.target_unit = self.target_unit.upper()
        if self.target_unit not in UNIT_MULTIPLIERS:
            raise ValueError(f"Unknown unit: {self.target_unit}")
        if self.target_size <= 0:
            raise ValueError(f"target_size must be positive, got {self.target_size}")
        if not 1 <= self.max_workers <= MAX_WORKERS_CAP:
            raise ValueError(f"max_workers must be 1-{MAX_WORKERS_CAP}, got {self.max_workers}")

    @property
    def target_bytes(self) -> int:
        """Target size converted to bytes."""
        return to_bytes(self.target_size, self.target_unit)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AppSettings":
        """
        Build settings from a dict, ignoring unknown keys.

        Raises:
            ValueError: If a value fails validation
        """
        known = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in data.items() if k in known}
        if isinstance(kwargs.get('search'), dict):
            kwargs['search'] = _build(SearchSettings, kwargs['search'])
        if isinstance(kwargs.get('encoder'), dict):
            kwargs['encoder'] = _build(EncoderOptions, kwargs['encoder'])
        return cls(**kwargs)


def _build(cls, data: Dict[str, Any]):
    known = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in data.items() if k in known})


def load_settings(path: Optional[Path] = None) -> AppSettings:
    """
    Load settings from JSON file.

    Missing, unreadable or invalid files give the defaults.

    Args:
        path: Settings file (defaults to SETTINGS_FILE)

    Returns:
        AppSettings instance
    """
    path = Path(path) if path else SETTINGS_FILE
    if not path.exists():
        return AppSettings()

    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
        return AppSettings.from_dict(data)
    except (json.JSONDecodeError, IOError) as e:
        logger.warning("Could not read settings %s: %s", path, e)
    except (TypeError, ValueError, AttributeError) as e:
        logger.warning("Ignoring invalid settings in %s: %s", path, e)
    return AppSettings()


def save_settings(settings: AppSettings, path: Optional[Path] = None) -> bool:
    """
    Save settings to JSON file.

    Args:
        settings: Settings to save
        path: Settings file (defaults to SETTINGS_FILE)

    Returns:
        True if saved successfully
    """
    path = Path(path) if path else SETTINGS_FILE
    try:
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(settings.to_dict(), f, indent=2)
        return True
    except IOError as e:
        logger.warning("Could not save settings %s: %s", path, e)
        return False
