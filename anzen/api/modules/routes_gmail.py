# routes_gmail.py
# Gmail connection (OAuth consent → callback → stored tokens) and email sync.

import uuid
import logging

import requests
from flask import request, jsonify, redirect, session

from anzen.api.dashboard import bp, user_id
from anzen.core.auth import auth_required, page_required, current_user
from anzen.core.secrets import get_key
from anzen.agents import gmail, email_sync
from anzen.agents.gmail import GmailError

log = logging.getLogger("anzen.routes.gmail")


def _redirect_uri() -> str:
    return get_key("gmail_redirect_uri") or request.host_url.rstrip("/") + "/auth/gmail/callback"


@bp.route("/api/crm/gmail")
@page_required("crm")
def api_gmail_status():
    status = gmail.connection_status(user_id())
    return jsonify({"ok": True, "connected": bool(status and status["is_connected"]),
                    "connection": status,
                    "configured": bool(get_key("google_client_id"))})


@bp.route("/api/crm/gmail/connect")
@page_required("crm")
def api_gmail_connect():
    """Consent URL. ?redirect=1 sends the browser straight to Google."""
    state = uuid.uuid4().hex
    session["gmail_oauth_state"] = state
    url = gmail.authorize_url(get_key("google_client_id"), _redirect_uri(), state)
    if request.args.get("redirect") == "1":
        return redirect(url)
    return jsonify({"ok": True, "url": url})


@bp.route("/auth/gmail/callback")
@auth_required
def gmail_callback():
    """Google redirects here with ?code=&state= after consent."""
    if request.args.get("error"):
        log.warning("Gmail consent refused: %s", request.args["error"])
        return redirect("/?gmail=denied")
    code = request.args.get("code", "")
    expected = session.pop("gmail_oauth_state", None)
    if not code or not expected or request.args.get("state") != expected:
        return jsonify({"ok": False, "error": "Invalid OAuth callback"}), 400
    try:
        tokens = gmail.exchange_code(code, _redirect_uri())
        profile = gmail.get_profile(tokens["access_token"])
    except (GmailError, requests.RequestException) as e:
        log.error("Gmail connect failed: %s", e)
        return redirect("/?gmail=error")
    gmail.save_connection(current_user()["id"], profile.get("emailAddress", ""),
                          tokens["access_token"], tokens.get("refresh_token"),
                          tokens.get("expires_in"))
    return redirect("/?gmail=connected")


@bp.route("/api/crm/gmail/disconnect", methods=["POST"])
@page_required("crm")
def api_gmail_disconnect():
    return jsonify({"ok": True, "connection": gmail.disconnect(user_id())})


@bp.route("/api/crm/gmail/toggle-sync", methods=["POST"])
@page_required("crm")
def api_gmail_toggle_sync():
    connection = gmail.toggle_sync(user_id())
    return jsonify({"ok": True, "sync_enabled": connection["sync_enabled"],
                    "connection": connection})


@bp.route("/api/crm/gmail/sync", methods=["POST"])
@page_required("crm")
def api_gmail_sync():
    """Sync the signed-in user's mailbox now."""
    try:
        result = email_sync.sync_user(user_id())
    except (GmailError, requests.RequestException) as e:
        log.error("Gmail sync failed: %s", e)
        return jsonify({"success": False, "error": str(e)}), 502
    return jsonify(result)


@bp.route("/api/crm/poll-status")
@auth_required
def api_poll_status():
    return jsonify({"ok": True, **email_sync.POLL_STATUS})
