"""
anzen/agents/gmail.py: Gmail REST client and per-user connection records.

OAuth2 (authorization code, offline access):
  - authorize_url() sends the user to Google's consent screen
  - /auth/gmail/callback exchanges the code and stores both tokens
  - ensure_access_token() refreshes the short-lived access token through the
    token endpoint when it has expired and persists the new token + expiry
"""

import logging
from datetime import datetime, timedelta, timezone
from urllib.parse import urlencode

import requests
from dateutil import parser as dateparser

from anzen.core.db import get_db, insert_row, update_row, fetch_row
from anzen.core.secrets import get_key

log = logging.getLogger("anzen.gmail")

AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_URL = "https://oauth2.googleapis.com/token"
API_BASE = "https://gmail.googleapis.com/gmail/v1/users/me"
SCOPES = (
    "https://www.googleapis.com/auth/gmail.readonly",
    "https://www.googleapis.com/auth/gmail.modify",
    "https://www.googleapis.com/auth/gmail.send",
)
UNREAD_QUERY = "label:inbox is:unread"
REQUEST_TIMEOUT = 30


class GmailError(Exception):
    """Gmail or Google OAuth returned an error."""


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _expiry(expires_in) -> str:
    return (_now() + timedelta(seconds=int(expires_in or 3600))).isoformat()


def _public(conn_row) -> dict | None:
    if conn_row is None:
        return None
    row = dict(conn_row)
    row["has_refresh_token"] = bool(row.pop("refresh_token", None))
    row.pop("access_token", None)
    row["is_connected"] = bool(row["is_connected"])
    row["sync_enabled"] = bool(row["sync_enabled"])
    return row


# ── Connection records ────────────────────────────────────────────────────────

def get_connection(user_id: int) -> dict | None:
    """Full row including tokens. Never send this to the browser."""
    with get_db() as conn:
        row = conn.execute("SELECT * FROM gmail_connections WHERE user_id=?",
                           (user_id,)).fetchone()
    return dict(row) if row else None


def connection_status(user_id: int) -> dict | None:
    return _public(get_connection(user_id))


def active_connections() -> list:
    with get_db() as conn:
        rows = conn.execute("SELECT * FROM gmail_connections "
                            "WHERE is_connected=1 AND sync_enabled=1").fetchall()
    return [dict(r) for r in rows]


def save_connection(user_id: int, email_address: str, access_token: str,
                    refresh_token: str, expires_in) -> dict:
    existing = get_connection(user_id)
    fields = {
        "email_address": email_address,
        "access_token": access_token,
        "access_token_expires_at": _expiry(expires_in),
        "is_connected": 1,
        "sync_enabled": 1,
    }
    if refresh_token:
        fields["refresh_token"] = refresh_token
    with get_db() as conn:
        if existing:
            update_row(conn, "gmail_connections", existing["id"], fields)
            cid = existing["id"]
        else:
            fields.update({"user_id": user_id, "created_at": datetime.now().isoformat()})
            cid = insert_row(conn, "gmail_connections", fields)
        row = fetch_row(conn, "gmail_connections", cid)
    log.info("Gmail connected for user %s: %s", user_id, email_address)
    return _public(row)


def disconnect(user_id: int) -> dict:
    existing = get_connection(user_id)
    if not existing:
        raise LookupError("Gmail not connected")
    with get_db() as conn:
        update_row(conn, "gmail_connections", existing["id"], {
            "access_token": None, "refresh_token": None,
            "access_token_expires_at": None,
            "is_connected": 0, "sync_enabled": 0})
        row = fetch_row(conn, "gmail_connections", existing["id"])
    log.info("Gmail disconnected for user %s", user_id)
    return _public(row)


def toggle_sync(user_id: int) -> dict:
    existing = get_connection(user_id)
    if not existing or not existing["is_connected"]:
        raise LookupError("Gmail not connected")
    with get_db() as conn:
        update_row(conn, "gmail_connections", existing["id"],
                   {"sync_enabled": 0 if existing["sync_enabled"] else 1})
        row = fetch_row(conn, "gmail_connections", existing["id"])
    return _public(row)


def mark_synced(connection_id: int):
    with get_db() as conn:
        update_row(conn, "gmail_connections", connection_id,
                   {"last_sync": _now().isoformat()})


# ── OAuth ─────────────────────────────────────────────────────────────────────

def authorize_url(client_id: str, redirect_uri: str, state: str = "") -> str:
    if not client_id:
        raise ValueError("Gmail integration is not configured (GOOGLE_CLIENT_ID)")
    params = {
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "response_type": "code",
        "scope": " ".join(SCOPES),
        "access_type": "offline",
        "prompt": "consent",
    }
    if state:
        params["state"] = state
    return f"{AUTH_URL}?{urlencode(params)}"


def exchange_code(code: str, redirect_uri: str) -> dict:
    """Authorization code → {access_token, refresh_token, expires_in}."""
    resp = requests.post(TOKEN_URL, data={
        "code": code,
        "client_id": get_key("google_client_id"),
        "client_secret": get_key("google_client_secret"),
        "redirect_uri": redirect_uri,
        "grant_type": "authorization_code",
    }, timeout=REQUEST_TIMEOUT)
    if not resp.ok:
        raise GmailError(f"Token exchange failed: {resp.status_code} {resp.text[:200]}")
    return resp.json()


def _is_expired(expires_at) -> bool:
    if not expires_at:
        return True
    try:
        expiry = dateparser.parse(expires_at)
    except (TypeError, ValueError, OverflowError):
        return True
    if expiry.tzinfo is None:
        expiry = expiry.replace(tzinfo=timezone.utc)
    return _now() >= expiry


def ensure_access_token(connection: dict) -> str:
    """Valid access token for a connection, refreshing it when expired."""
    if not _is_expired(connection.get("access_token_expires_at")):
        return connection["access_token"]
    if not connection.get("refresh_token"):
        raise GmailError("Gmail refresh token missing; reconnect the account")
    resp = requests.post(TOKEN_URL, data={
        "client_id": get_key("google_client_id"),
        "client_secret": get_key("google_client_secret"),
        "refresh_token": connection["refresh_token"],
        "grant_type": "refresh_token",
    }, timeout=REQUEST_TIMEOUT)
    if not resp.ok:
        raise GmailError("Failed to refresh access token")
    data = resp.json()
    token = data["access_token"]
    expires_at = _expiry(data.get("expires_in"))
    with get_db() as conn:
        update_row(conn, "gmail_connections", connection["id"],
                   {"access_token": token, "access_token_expires_at": expires_at})
    connection["access_token"] = token
    connection["access_token_expires_at"] = expires_at
    log.info("Gmail access token refreshed for %s", connection.get("email_address"))
    return token


# ── Gmail API ─────────────────────────────────────────────────────────────────

def _get(token: str, path: str, params: dict = None) -> dict:
    resp = requests.get(f"{API_BASE}{path}", params=params,
                        headers={"Authorization": f"Bearer {token}"},
                        timeout=REQUEST_TIMEOUT)
    resp.raise_for_status()
    return resp.json()


def get_profile(token: str) -> dict:
    return _get(token, "/profile")


def list_unread(token: str, max_results: int = 50) -> list:
    """[{id, threadId}] for unread inbox messages."""
    data = _get(token, "/messages", {"q": UNREAD_QUERY, "maxResults": max_results})
    return data.get("messages") or []


def get_message(token: str, message_id: str) -> dict:
    return _get(token, f"/messages/{message_id}")


def send_message(token: str, raw: str) -> dict:
    """Send a base64url-encoded RFC 2822 message."""
    resp = requests.post(f"{API_BASE}/messages/send",
                         headers={"Authorization": f"Bearer {token}"},
                         json={"raw": raw}, timeout=REQUEST_TIMEOUT)
    resp.raise_for_status()
    return resp.json()
