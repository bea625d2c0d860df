"""Business settings edited on the Settings page."""

import logging

from anzen.core.db import DEFAULT_SETTINGS, all_settings, set_setting

log = logging.getLogger("anzen.settings")

NUMERIC = {"tax_rate": (0.0, 1.0), "expiry_warning_days": (0, 3650)}


def get_settings() -> dict:
    return all_settings()


def update_settings(data: dict) -> dict:
    """Validate and store known keys. Unknown keys are rejected."""
    unknown = [k for k in data if k not in DEFAULT_SETTINGS]
    if unknown:
        raise ValueError(f"Unknown settings: {', '.join(sorted(unknown))}")
    for key, value in data.items():
        if key in NUMERIC:
            lo, hi = NUMERIC[key]
            try:
                num = float(value)
            except (TypeError, ValueError):
                raise ValueError(f"{key} must be a number")
            if not lo <= num <= hi:
                raise ValueError(f"{key} must be between {lo} and {hi}")
        if key == "default_currency" and not (value or "").strip():
            raise ValueError("default_currency is required")
    for key, value in data.items():
        set_setting(key, value)
    log.info("Settings updated: %s", ", ".join(sorted(data)))
    return all_settings()
