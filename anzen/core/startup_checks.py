"""
anzen/core/startup_checks.py: Runtime self-test on app boot.

  1. Paths: DATA_DIR exists and is writable
  2. Schema: every table from SCHEMA is present
  3. Settings: tax rate and expiry window parse as numbers
  4. Secrets: report which integrations are configured
  5. Routes: no duplicate endpoints on the blueprint
"""

import logging

log = logging.getLogger("anzen.startup")

REQUIRED_ROUTES = ("/api/health", "/api/crm/gmail/sync", "/api/grns", "/api/crm/inquiries")


def run_startup_checks(app=None) -> dict:
    """Run all startup validation checks. Call from app.py after blueprint registration.

    Returns:
        {"passed": int, "failed": int, "warnings": int, "details": [...]}
    """
    results = {"passed": 0, "failed": 0, "warnings": 0, "details": []}

    def _pass(msg):
        results["passed"] += 1
        results["details"].append(("PASS", msg))
        log.info("PASS %s", msg)

    def _fail(msg):
        results["failed"] += 1
        results["details"].append(("FAIL", msg))
        log.error("STARTUP CHECK FAILED: %s", msg)

    def _warn(msg):
        results["warnings"] += 1
        results["details"].append(("WARN", msg))
        log.warning("%s", msg)

    # ── 1. Paths ──────────────────────────────────────────────────────────────
    from anzen.core.paths import validate_paths, DATA_DIR
    path_result = validate_paths()
    if path_result["ok"]:
        _pass(f"All paths valid (DATA_DIR={DATA_DIR})")
    else:
        for err in path_result["errors"]:
            _fail(err)
    for warn in path_result.get("warnings", []):
        _warn(warn)

    # ── 2. Schema ─────────────────────────────────────────────────────────────
    from anzen.core.db import get_db, TABLES
    with get_db() as conn:
        present = {r[0] for r in conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table'").fetchall()}
    missing = [t for t in TABLES if t not in present]
    if missing:
        _fail(f"Missing tables: {missing}")
    else:
        _pass(f"Schema complete ({len(TABLES)} tables)")

    # ── 3. Settings ───────────────────────────────────────────────────────────
    from anzen.core.db import get_setting
    for key in ("tax_rate", "expiry_warning_days"):
        value = get_setting(key)
        try:
            float(value)
            _pass(f"setting {key}={value}")
        except (TypeError, ValueError):
            _fail(f"setting {key} is not numeric: {value!r}")

    # ── 4. Secrets ────────────────────────────────────────────────────────────
    from anzen.core.secrets import get_key
    if not get_key("openai_api_key"):
        _warn("OPENAI_API_KEY not set: email parsing will fail")
    if not (get_key("google_client_id") and get_key("google_client_secret")):
        _warn("Google OAuth client not configured: Gmail connect disabled")

    # ── 5. Routes ─────────────────────────────────────────────────────────────
    if app:
        rules = [r for r in app.url_map.iter_rules()
                 if r.endpoint and not r.endpoint.startswith("static")]
        _pass(f"Flask routes registered: {len(rules)}")
        paths = {r.rule for r in rules}
        for route in REQUIRED_ROUTES:
            if route not in paths:
                _fail(f"Route missing: {route}")

    total = results["passed"] + results["failed"] + results["warnings"]
    if results["failed"] > 0:
        log.error("STARTUP: %d/%d checks FAILED", results["failed"], total)
    else:
        log.info("STARTUP: All %d checks passed (%d warnings)",
                 results["passed"], results["warnings"])
    return results
