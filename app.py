#!/usr/bin/env python3
"""
Anzen Pharma ERP: Application Entry Point
Creates the Flask app and registers the dashboard Blueprint.

Production: gunicorn "app:create_app()" --workers 1 --threads 4
(one worker, so only one email poller thread runs)
"""

import os
import logging
from flask import Flask

from logging_config import setup_logging


def create_app(testing: bool = False):
    """Application factory."""
    if not testing:
        setup_logging()
    log = logging.getLogger("anzen")

    app = Flask(__name__)
    from anzen.core.secrets import get_key, startup_check
    app.secret_key = get_key("secret_key")
    app.config["TESTING"] = testing
    app.config["JSON_SORT_KEYS"] = False

    # ── Database init + bootstrap admin ───────────────────────────────────────
    from anzen.core.db import startup as db_startup
    result = db_startup()
    log.info("DB: %s | profiles=%d products=%d inquiries=%d",
             result["db_path"],
             result["stats"].get("profiles", 0),
             result["stats"].get("products", 0),
             result["stats"].get("crm_inquiries", 0))
    startup_check()

    # Register the dashboard blueprint (all routes)
    from anzen.api.dashboard import bp, start_polling
    app.register_blueprint(bp)

    # ── Runtime self-test: catches path/route/schema bugs at boot ─────────────
    from anzen.core.startup_checks import run_startup_checks
    with app.app_context():
        checks = run_startup_checks(app)
        if checks["failed"] > 0:
            log.error("STARTUP: %d checks FAILED, review logs", checks["failed"])

    # Gmail → CRM sync in the background (production only)
    if not testing and os.environ.get("ENABLE_EMAIL_POLLING", "").lower() == "true":
        start_polling(app)

    return app


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 5000))
    create_app().run(host="0.0.0.0", port=port, debug=False)
