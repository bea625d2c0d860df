"""
anzen/core/paths.py: Centralized Path Configuration

Single source of truth for every directory the application touches.
Modules import DATA_DIR / OUTPUT_DIR from here instead of computing their own.

Priority for DATA_DIR: ANZEN_DATA_DIR env var → project data/ directory.
"""

import os
import logging

log = logging.getLogger("anzen.paths")

# ── Project Root ──────────────────────────────────────────────────────────────
_THIS_FILE = os.path.abspath(__file__)
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.dirname(_THIS_FILE)))

_DEFAULT_DATA_DIR = os.path.join(PROJECT_ROOT, "data")


def _resolve_data_dir() -> str:
    """Return the persistent data directory path."""
    env_dir = os.environ.get("ANZEN_DATA_DIR", "")
    if env_dir:
        return env_dir
    return _DEFAULT_DATA_DIR


DATA_DIR = _resolve_data_dir()
OUTPUT_DIR = os.path.join(DATA_DIR, "output")
LOG_DIR = os.path.join(DATA_DIR, "logs")
DB_PATH = os.path.join(DATA_DIR, "anzen.db")

for _d in (DATA_DIR, OUTPUT_DIR):
    os.makedirs(_d, exist_ok=True)


def validate_paths() -> dict:
    """Runtime validation, called at app startup to catch path issues early.

    Returns:
        {"ok": bool, "errors": [str], "warnings": [str], "resolved": {name: path}}
    """
    result = {"ok": True, "errors": [], "warnings": [], "resolved": {}}

    for name, path in (("PROJECT_ROOT", PROJECT_ROOT), ("DATA_DIR", DATA_DIR),
                       ("OUTPUT_DIR", OUTPUT_DIR)):
        result["resolved"][name] = path
        if not os.path.isdir(path):
            result["errors"].append(f"{name} not found: {path}")
            result["ok"] = False
    result["resolved"]["DB_PATH"] = DB_PATH

    test_file = os.path.join(DATA_DIR, ".write_test")
    try:
        with open(test_file, "w") as f:
            f.write("ok")
        os.remove(test_file)
    except OSError as e:
        result["errors"].append(f"DATA_DIR not writable: {e}")
        result["ok"] = False

    if DATA_DIR == _DEFAULT_DATA_DIR and os.environ.get("ANZEN_ENV") == "production":
        result["warnings"].append(
            "Running in production without ANZEN_DATA_DIR; data lives inside the checkout")

    return result
