"""
anzen/core/auth.py: Users, roles and request authentication.

Browser sessions sign in through /api/auth/login (Flask session cookie).
Scripts and tests may send HTTP Basic credentials instead; both resolve to the
same profile row.
"""

import functools
import logging
from datetime import datetime

from flask import g, jsonify, request, session, Response
from werkzeug.security import generate_password_hash, check_password_hash

from anzen.core.db import get_db, fetch_row, require_row, update_row
from anzen.core.secrets import get_key

log = logging.getLogger("anzen.auth")

ROLES = ("admin", "accounts", "sales", "warehouse")

_PUBLIC_FIELDS = ("id", "username", "full_name", "email", "role", "is_active",
                  "created_at")


def _public(row) -> dict | None:
    if row is None:
        return None
    row = dict(row)
    return {k: row.get(k) for k in _PUBLIC_FIELDS}


# ── Profiles ──────────────────────────────────────────────────────────────────

def create_profile(username: str, password: str, full_name: str = "",
                   role: str = "sales", email: str = "") -> dict:
    username = (username or "").strip()
    if not username:
        raise ValueError("Username is required")
    if not password or len(password) < 6:
        raise ValueError("Password must be at least 6 characters")
    if role not in ROLES:
        raise ValueError(f"Invalid role: {role}")
    now = datetime.now().isoformat()
    with get_db() as conn:
        cur = conn.execute(
            "INSERT INTO profiles (username, full_name, email, role, password_hash, "
            "is_active, created_at) VALUES (?,?,?,?,?,1,?)",
            (username, full_name or username, email or None, role,
             generate_password_hash(password), now))
        row = fetch_row(conn, "profiles", cur.lastrowid)
    log.info("Profile created: %s (%s)", username, role)
    return _public(row)


def get_profile(user_id: int) -> dict | None:
    with get_db() as conn:
        return _public(fetch_row(conn, "profiles", user_id))


def list_profiles() -> list:
    with get_db() as conn:
        rows = conn.execute("SELECT * FROM profiles ORDER BY username").fetchall()
    return [_public(r) for r in rows]


def update_profile(user_id: int, role: str = None, is_active=None,
                   full_name: str = None, email: str = None,
                   password: str = None) -> dict:
    """Admin edit: role, active flag, name, email or password reset."""
    fields = {"updated_at": datetime.now().isoformat()}
    if role is not None:
        if role not in ROLES:
            raise ValueError(f"Invalid role: {role}")
        fields["role"] = role
    if is_active is not None:
        fields["is_active"] = 1 if is_active else 0
    if full_name is not None:
        fields["full_name"] = full_name
    if email is not None:
        fields["email"] = email or None
    if password is not None:
        if len(password) < 6:
            raise ValueError("Password must be at least 6 characters")
        fields["password_hash"] = generate_password_hash(password)
    with get_db() as conn:
        require_row(conn, "profiles", user_id)
        update_row(conn, "profiles", user_id, fields)
        row = fetch_row(conn, "profiles", user_id)
    return _public(row)


def authenticate(username: str, password: str) -> dict | None:
    """Return the profile for valid credentials, else None. Inactive users fail."""
    if not username or not password:
        return None
    with get_db() as conn:
        row = conn.execute("SELECT * FROM profiles WHERE username=?",
                           (username,)).fetchone()
    if row is None or not row["is_active"]:
        return None
    if not check_password_hash(row["password_hash"], password):
        return None
    return _public(row)


def needs_setup() -> bool:
    with get_db() as conn:
        return conn.execute("SELECT COUNT(*) FROM profiles").fetchone()[0] == 0


def setup_first_admin(username: str, password: str, full_name: str = "",
                      email: str = "") -> dict:
    if not needs_setup():
        raise PermissionError("Setup already completed")
    return create_profile(username, password, full_name, "admin", email)


def bootstrap_admin():
    """Create the admin from ADMIN_USER / ADMIN_PASS when no profile exists."""
    password = get_key("admin_pass")
    if not password or not needs_setup():
        return None
    profile = create_profile(get_key("admin_user"), password, "Administrator", "admin")
    log.info("Bootstrap admin created: %s", profile["username"])
    return profile


# ── Request context ───────────────────────────────────────────────────────────

def login_user(profile: dict):
    session["user_id"] = profile["id"]
    session.setdefault("language", "en")
    g.current_user = profile


def logout_user():
    session.pop("user_id", None)
    session.pop("nav", None)
    g.pop("current_user", None)


def current_user() -> dict | None:
    """Profile from the session cookie, else from HTTP Basic credentials."""
    if "current_user" in g:
        return g.current_user
    user = None
    user_id = session.get("user_id")
    if user_id:
        user = get_profile(user_id)
        if user and not user["is_active"]:
            user = None
    if user is None and request.authorization:
        auth = request.authorization
        user = authenticate(auth.username, auth.password)
    g.current_user = user
    return user


def _unauthorized():
    if request.path.startswith("/api/"):
        return jsonify({"ok": False, "error": "Login required"}), 401
    return Response(
        "Anzen ERP: Login Required", 401,
        {"WWW-Authenticate": 'Basic realm="Anzen ERP"'})


def auth_required(f):
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        if current_user() is None:
            return _unauthorized()
        return f(*args, **kwargs)
    return decorated


def page_required(page_id: str):
    """Allow the view only for roles that can see `page_id` in the menu."""
    def wrapper(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            from anzen.core.navigation import can_access
            user = current_user()
            if user is None:
                return _unauthorized()
            if not can_access(user["role"], page_id):
                log.warning("Access denied: %s (%s) → %s",
                            user["username"], user["role"], page_id,
                            extra={"user": user["username"], "route": request.path})
                return jsonify({"ok": False, "error": "Access denied"}), 403
            return f(*args, **kwargs)
        return decorated
    return wrapper
