from __future__ import annotations

import math
import os
from dataclasses import dataclass

from .database import ActivityDatabase

INTERVAL_SETTING_KEY = "interval_minutes"
IDLE_THRESHOLD_SETTING_KEY = "idle_threshold_minutes"
MAX_RETRIES_SETTING_KEY = "max_retries"
ANALYSIS_INTERVAL_SETTING_KEY = "analysis_interval_minutes"
GEMINI_API_KEY_SETTING_KEY = "gemini_api_key"
GEMINI_MODEL_SETTING_KEY = "gemini_model"
KEEP_UNKNOWN_SETTING_KEY = "keep_unknown"

GEMINI_API_KEY_ENV_VAR = "GEMINI_API_KEY"
DEFAULT_GEMINI_MODEL = "gemini-2.0-flash"

SETTING_KEYS = (
    INTERVAL_SETTING_KEY,
    IDLE_THRESHOLD_SETTING_KEY,
    MAX_RETRIES_SETTING_KEY,
    ANALYSIS_INTERVAL_SETTING_KEY,
    GEMINI_API_KEY_SETTING_KEY,
    GEMINI_MODEL_SETTING_KEY,
    KEEP_UNKNOWN_SETTING_KEY,
)

_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    interval_minutes: float = 1.0
    # Skip a capture once the user has been idle for a whole interval.
    idle_threshold_minutes: float = 1.0
    max_retries: int = 2
    analysis_interval_minutes: float = 360.0
    gemini_api_key: str = ""
    gemini_model: str = DEFAULT_GEMINI_MODEL
    keep_unknown: bool = False

    @property
    def has_api_key(self) -> bool:
        return bool(self.gemini_api_key.strip())


def load_settings(db: ActivityDatabase) -> Settings:
    defaults = Settings()
    interval = db.get_setting_float(INTERVAL_SETTING_KEY, defaults.interval_minutes)
    api_key = db.get_setting(GEMINI_API_KEY_SETTING_KEY) or os.environ.get(GEMINI_API_KEY_ENV_VAR, "")
    return Settings(
        interval_minutes=interval,
        idle_threshold_minutes=_read_threshold(db, IDLE_THRESHOLD_SETTING_KEY, interval),
        max_retries=max(1, int(db.get_setting_float(MAX_RETRIES_SETTING_KEY, defaults.max_retries))),
        analysis_interval_minutes=db.get_setting_float(
            ANALYSIS_INTERVAL_SETTING_KEY,
            defaults.analysis_interval_minutes,
        ),
        gemini_api_key=api_key.strip(),
        gemini_model=(db.get_setting(GEMINI_MODEL_SETTING_KEY) or "").strip() or defaults.gemini_model,
        keep_unknown=(db.get_setting(KEEP_UNKNOWN_SETTING_KEY, "") or "").strip().lower() in _TRUE_VALUES,
    )


def _read_threshold(db: ActivityDatabase, key: str, default: float) -> float:
    # Zero and below are kept: they switch the idle check off.
    value = db.get_setting(key)
    if value is None:
        return default
    try:
        parsed = float(value)
    except ValueError:
        return default
    return parsed if math.isfinite(parsed) else default


def save_setting(db: ActivityDatabase, key: str, value: str) -> None:
    if key not in SETTING_KEYS:
        raise KeyError(f"Unknown setting: {key}")
    db.set_setting(key, value.strip())
