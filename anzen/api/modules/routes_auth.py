# routes_auth.py
# Sign-in, user administration and the per-session navigation state.

import logging

from flask import jsonify

from anzen.api.dashboard import bp, body
from anzen.core import auth, navigation
from anzen.core.auth import auth_required, page_required, current_user

log = logging.getLogger("anzen.routes.auth")


# ═══════════════════════════════════════════════════════════════════════════════
# AUTH
# ═══════════════════════════════════════════════════════════════════════════════

@bp.route("/api/auth/login", methods=["POST"])
def api_login():
    """POST {username, password} → session cookie."""
    data = body()
    profile = auth.authenticate(data.get("username", ""), data.get("password", ""))
    if profile is None:
        log.warning("Failed login for %r", data.get("username"))
        return jsonify({"ok": False, "error": "Invalid username or password"}), 401
    auth.login_user(profile)
    log.info("Login: %s", profile["username"], extra={"user": profile["username"]})
    return jsonify({"ok": True, "user": profile,
                    "menu": navigation.visible_menu(profile["role"], navigation.get_language())})


@bp.route("/api/auth/logout", methods=["POST"])
def api_logout():
    auth.logout_user()
    return jsonify({"ok": True})


@bp.route("/api/auth/me")
@auth_required
def api_me():
    user = current_user()
    return jsonify({"ok": True, "user": user,
                    "menu": navigation.visible_menu(user["role"], navigation.get_language())})


# ═══════════════════════════════════════════════════════════════════════════════
# USERS (admin)
# ═══════════════════════════════════════════════════════════════════════════════

@bp.route("/api/users")
@page_required("settings")
def api_users():
    return jsonify({"ok": True, "users": auth.list_profiles()})


@bp.route("/api/users", methods=["POST"])
@page_required("settings")
def api_users_create():
    data = body()
    profile = auth.create_profile(data.get("username", ""), data.get("password", ""),
                                  data.get("full_name", ""), data.get("role", "sales"),
                                  data.get("email", ""))
    return jsonify({"ok": True, "user": profile}), 201


@bp.route("/api/users/<int:uid>", methods=["PATCH"])
@page_required("settings")
def api_users_update(uid):
    """Change role / active flag / name / email, or reset the password."""
    data = body()
    if uid == current_user()["id"] and (data.get("is_active") is False
                                        or data.get("role") not in (None, "admin")):
        raise ValueError("You cannot deactivate or demote your own account")
    profile = auth.update_profile(uid, role=data.get("role"), is_active=data.get("is_active"),
                                  full_name=data.get("full_name"), email=data.get("email"),
                                  password=data.get("password"))
    return jsonify({"ok": True, "user": profile})


# ═══════════════════════════════════════════════════════════════════════════════
# NAVIGATION
# ═══════════════════════════════════════════════════════════════════════════════

@bp.route("/api/navigation")
@auth_required
def api_navigation():
    user = current_user()
    state = navigation.get_state()
    state["menu"] = navigation.visible_menu(user["role"], state["language"])
    return jsonify({"ok": True, **state})


@bp.route("/api/navigation", methods=["POST"])
@auth_required
def api_navigation_set():
    """POST {page, data?}: switch page, optionally handing data to it."""
    data = body()
    page = navigation.set_current_page(data.get("page", ""), current_user()["role"])
    if "data" in data:
        navigation.set_navigation_data(data["data"])
    return jsonify({"ok": True, **navigation.get_state(), "current_page": page})


@bp.route("/api/navigation/data", methods=["DELETE"])
@auth_required
def api_navigation_clear():
    navigation.clear_navigation_data()
    return jsonify({"ok": True, **navigation.get_state()})


@bp.route("/api/navigation/language", methods=["POST"])
@auth_required
def api_navigation_language():
    lang = navigation.set_language(body().get("language", ""))
    return jsonify({"ok": True, "language": lang,
                    "menu": navigation.visible_menu(current_user()["role"], lang)})
