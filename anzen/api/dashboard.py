#!/usr/bin/env python3
"""
Anzen ERP Dashboard
Blueprint with the shell page, login / first-run setup, health and dashboard
endpoints. Feature routes live in anzen/api/modules/routes_*.py and register
on the same blueprint (imported at the bottom of this file).

Every JSON route answers {"ok": true, ...} on success. Domain errors raised by
the erp / crm / agents modules map to JSON errors here:
    ValueError → 400, PermissionError → 403, LookupError → 404,
    sqlite3.IntegrityError → 409
"""

import os
import time
import sqlite3
import logging
import threading
from datetime import datetime

from flask import (Blueprint, request, redirect, render_template_string, jsonify, g)

from anzen.core.auth import (auth_required, page_required, current_user, needs_setup,
                             setup_first_admin, login_user)
from anzen.core.db import get_db_stats, get_setting
from anzen.core import navigation
from anzen.erp import dashboard as erp_dashboard
from anzen.erp import settings as erp_settings
from anzen.agents.email_sync import POLL_STATUS, email_poll_loop
from anzen.api.templates import PAGE_HOME, PAGE_LOGIN, PAGE_SETUP

log = logging.getLogger("anzen.dashboard")

bp = Blueprint("dashboard", __name__)


# ── Request-level structured logging ─────────────────────────────────────────
@bp.before_app_request
def _log_request_start():
    g._start_time = time.time()


@bp.after_app_request
def _log_request_end(response):
    start = g.get("_start_time")
    if start is not None:
        duration_ms = round((time.time() - start) * 1000, 1)
        if request.path not in ("/api/health",) and not request.path.startswith("/static"):
            user = g.get("current_user")
            log.info("%s %s → %d (%.0fms)",
                     request.method, request.path, response.status_code, duration_ms,
                     extra={"route": request.path, "method": request.method,
                            "status": response.status_code, "duration_ms": duration_ms,
                            "user": user["username"] if user else None})
    return response


# ── Error mapping ────────────────────────────────────────────────────────────
def _error(message, status):
    return jsonify({"ok": False, "error": str(message)}), status


@bp.errorhandler(ValueError)
def _bad_request(e):
    return _error(e, 400)


@bp.errorhandler(PermissionError)
def _forbidden(e):
    return _error(e, 403)


@bp.errorhandler(LookupError)
def _not_found(e):
    if isinstance(e, KeyError):
        return _error(f"Missing field: {e.args[0] if e.args else ''}", 400)
    if isinstance(e, IndexError):
        log.error("Unhandled IndexError on %s", request.path, exc_info=True)
        return _error("Internal error", 500)
    return _error(e, 404)


@bp.errorhandler(sqlite3.IntegrityError)
def _conflict(e):
    log.warning("Integrity error on %s: %s", request.path, e)
    return _error(f"Conflicts with existing data: {e}", 409)


def body() -> dict:
    """JSON request body, or an empty dict."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def user_id():
    user = current_user()
    return user["id"] if user else None


# ── Pages ────────────────────────────────────────────────────────────────────
@bp.route("/")
def home():
    if needs_setup():
        return redirect("/setup")
    user = current_user()
    if user is None:
        return redirect("/login")
    lang = navigation.get_language()
    return render_template_string(
        PAGE_HOME,
        company=get_setting("company_name"),
        user=user,
        menu=navigation.visible_menu(user["role"], lang),
        nav=navigation.get_state(),
        stats=erp_dashboard.summary(),
        notifications=erp_dashboard.notifications(user),
        poll=POLL_STATUS,
        logout_label=navigation.t("common.logout", lang),
    )


@bp.route("/login")
def login_page():
    return render_template_string(PAGE_LOGIN, company=get_setting("company_name"))


@bp.route("/setup", methods=["GET", "POST"])
def setup():
    """Create the first administrator. Only available while no profile exists."""
    if not needs_setup():
        return redirect("/")
    error = None
    if request.method == "POST":
        form = request.form if request.form else body()
        try:
            profile = setup_first_admin(form.get("username", ""), form.get("password", ""),
                                        form.get("full_name", ""), form.get("email", ""))
        except ValueError as e:
            error = str(e)
        else:
            login_user(profile)
            if request.is_json:
                return jsonify({"ok": True, "user": profile})
            return redirect("/")
        if request.is_json:
            return _error(error, 400)
    return render_template_string(PAGE_SETUP, company=get_setting("company_name"), error=error)


# ── Health / dashboard ───────────────────────────────────────────────────────
@bp.route("/api/health")
def api_health():
    """Liveness + DB row counts. No auth so the platform can check it."""
    try:
        stats = get_db_stats()
        return jsonify({"ok": True, "status": "healthy", "db": stats,
                        "polling": POLL_STATUS["running"],
                        "time": datetime.now().isoformat()})
    except sqlite3.Error as e:
        log.error("Health check DB error: %s", e)
        return jsonify({"ok": False, "status": "degraded", "error": str(e)}), 503


@bp.route("/api/dashboard")
@auth_required
def api_dashboard():
    return jsonify({"ok": True, "summary": erp_dashboard.summary()})


@bp.route("/api/notifications")
@auth_required
def api_notifications():
    """Checks run after login: low stock, expiring batches, due reminders."""
    items = erp_dashboard.notifications(current_user())
    return jsonify({"ok": True, "notifications": items, "count": len(items)})


@bp.route("/api/settings")
@page_required("settings")
def api_settings():
    return jsonify({"ok": True, "settings": erp_settings.get_settings()})


@bp.route("/api/settings", methods=["POST"])
@page_required("settings")
def api_settings_update():
    return jsonify({"ok": True, "settings": erp_settings.update_settings(body())})


# ── Background email polling ─────────────────────────────────────────────────
_poll_thread = None


def start_polling(app=None):
    """Start the Gmail sync loop in a daemon thread (once per process)."""
    global _poll_thread
    if _poll_thread is not None and _poll_thread.is_alive():
        return _poll_thread
    interval = int(os.environ.get("EMAIL_SYNC_INTERVAL", "600"))
    _poll_thread = threading.Thread(target=email_poll_loop, args=(interval,),
                                    name="email-poller", daemon=True)
    _poll_thread.start()
    log.info("Email poller thread started (interval %ds)", interval)
    return _poll_thread


# Route modules register on `bp` when imported.
from anzen.api.modules import (routes_auth, routes_inventory, routes_purchasing,  # noqa: E402,F401
                               routes_sales, routes_crm, routes_gmail)
