"""
secrets.py: Centralized secret management for Anzen ERP

Single source of truth for every API key and credential.

Env vars:
  OPENAI_API_KEY         Chat-completion key used by the email parser
  OPENAI_MODEL           Model name (default gpt-4o-mini)
  GOOGLE_CLIENT_ID       Gmail OAuth2 client
  GOOGLE_CLIENT_SECRET   Gmail OAuth2 secret
  GMAIL_REDIRECT_URI     OAuth2 callback URL registered with Google
  SECRET_KEY             Flask session signing key
  ADMIN_USER             Bootstrap administrator username
  ADMIN_PASS             Bootstrap administrator password

Keys are never logged in full (masked to the first 8 chars).
"""

import os
import logging

log = logging.getLogger("anzen.secrets")

# ─── Secret Definitions ─────────────────────────────────────────────────────

_REGISTRY = {
    "openai_api_key": {
        "env": "OPENAI_API_KEY",
        "required": False,
        "desc": "OpenAI chat-completion key for inquiry extraction",
        "consumers": ["email_parser"],
        "sensitive": True,
    },
    "openai_model": {
        "env": "OPENAI_MODEL",
        "required": False,
        "desc": "Chat-completion model name",
        "consumers": ["email_parser"],
        "default": "gpt-4o-mini",
    },
    "google_client_id": {
        "env": "GOOGLE_CLIENT_ID",
        "fallback": "VITE_GOOGLE_CLIENT_ID",
        "required": False,
        "desc": "Gmail OAuth2 client ID",
        "consumers": ["gmail"],
    },
    "google_client_secret": {
        "env": "GOOGLE_CLIENT_SECRET",
        "fallback": "VITE_GOOGLE_CLIENT_SECRET",
        "required": False,
        "desc": "Gmail OAuth2 client secret",
        "consumers": ["gmail"],
        "sensitive": True,
    },
    "gmail_redirect_uri": {
        "env": "GMAIL_REDIRECT_URI",
        "required": False,
        "desc": "OAuth2 redirect URI (defaults to <host>/auth/gmail/callback)",
        "consumers": ["gmail"],
    },
    "secret_key": {
        "env": "SECRET_KEY",
        "required": True,
        "desc": "Flask session signing key",
        "consumers": ["dashboard"],
        "sensitive": True,
        "default": "anzen-erp-dev",
    },
    "admin_user": {
        "env": "ADMIN_USER",
        "required": False,
        "desc": "Bootstrap administrator username",
        "consumers": ["auth"],
        "default": "admin",
    },
    "admin_pass": {
        "env": "ADMIN_PASS",
        "required": False,
        "desc": "Bootstrap administrator password",
        "consumers": ["auth"],
        "sensitive": True,
    },
}


# ─── Public API ──────────────────────────────────────────────────────────────

def get_key(name: str) -> str:
    """Get a secret value by registry name. Returns empty string if not set."""
    entry = _REGISTRY.get(name)
    if not entry:
        log.warning("Unknown secret requested: %s", name)
        return ""

    val = os.environ.get(entry["env"], "")
    if not val and "fallback" in entry:
        val = os.environ.get(entry["fallback"], "")
    if not val and "default" in entry:
        val = entry["default"]
    return val


def mask(value: str) -> str:
    """Mask a secret for safe logging. Shows first 8 chars."""
    if not value:
        return "(not set)"
    if len(value) <= 12:
        return value[:4] + "****"
    return value[:8] + "****" + f"({len(value)} chars)"


def validate_all() -> dict:
    """Validate all secrets. Returns status report."""
    results = {}
    warnings = []
    for name, entry in _REGISTRY.items():
        val = get_key(name)
        is_set = bool(val)
        results[name] = {
            "set": is_set,
            "env": entry["env"],
            "desc": entry["desc"],
            "masked": mask(val) if not entry.get("sensitive") else ("set" if is_set else "not set"),
            "required": entry.get("required", False),
            "consumers": entry["consumers"],
        }
        if entry.get("required") and not is_set:
            warnings.append(f"REQUIRED secret missing: {entry['env']} ({entry['desc']})")
        if "fallback" in entry:
            results[name]["fallback"] = entry["fallback"]
            results[name]["using_fallback"] = (
                not os.environ.get(entry["env"]) and bool(os.environ.get(entry["fallback"]))
            )

    return {
        "secrets": results,
        "total": len(results),
        "set": sum(1 for r in results.values() if r["set"]),
        "missing": sum(1 for r in results.values() if not r["set"]),
        "warnings": warnings,
    }


def startup_check():
    """Run on startup. Logs warnings for missing critical secrets."""
    report = validate_all()
    log.info("Secrets: %d/%d configured", report["set"], report["total"])
    for w in report["warnings"]:
        log.warning("SECRET: %s", w)
    if get_key("secret_key") == _REGISTRY["secret_key"]["default"]:
        log.warning("SECRET_KEY is the development default; set it in production")
    return report
