# routes_crm.py
# CRM page: contact database, inquiry grid, reminders, synced inbox,
# on-demand email parsing and the email composer.

import json
import logging

import requests
from flask import request, jsonify

from anzen.api.dashboard import bp, body, user_id
from anzen.core.auth import page_required, current_user
from anzen.crm import contacts, inquiries, reminders
from anzen.agents import email_parser, email_sync, mailer
from anzen.agents.gmail import GmailError

log = logging.getLogger("anzen.routes.crm")

CRM = "crm"


# ═══════════════════════════════════════════════════════════════════════════════
# CONTACTS
# ═══════════════════════════════════════════════════════════════════════════════

@bp.route("/api/crm/contacts")
@page_required(CRM)
def api_crm_contacts():
    """?q=company/contact/email&type=prospect|active|inactive|vip|all"""
    rows = contacts.list_contacts(request.args.get("q", ""), request.args.get("type", "all"))
    return jsonify({"ok": True, "contacts": rows, "count": len(rows)})


@bp.route("/api/crm/contacts", methods=["POST"])
@page_required(CRM)
def api_crm_contacts_create():
    return jsonify({"ok": True, "contact": contacts.create_contact(body(), user_id())}), 201


@bp.route("/api/crm/contacts/<int:cid>", methods=["PATCH"])
@page_required(CRM)
def api_crm_contact_update(cid):
    return jsonify({"ok": True, "contact": contacts.update_contact(cid, body())})


@bp.route("/api/crm/contacts/<int:cid>", methods=["DELETE"])
@page_required(CRM)
def api_crm_contact_delete(cid):
    return jsonify({"ok": True, **contacts.delete_contact(cid)})


@bp.route("/api/crm/contacts/import", methods=["POST"])
@page_required(CRM)
def api_crm_contacts_import():
    """CSV as an uploaded file (field "file"), JSON {"csv": "..."} or a raw text body."""
    upload = request.files.get("file")
    if upload is not None:
        text = upload.read().decode("utf-8", errors="replace")
    else:
        text = body().get("csv") or request.get_data(as_text=True) or ""
    result = contacts.import_csv(text, user_id())
    return jsonify({"ok": True, **result})


# ═══════════════════════════════════════════════════════════════════════════════
# INQUIRIES
# ═══════════════════════════════════════════════════════════════════════════════

def _filters_arg() -> dict:
    raw = request.args.get("filters", "")
    if not raw:
        return {}
    try:
        filters = json.loads(raw)
    except json.JSONDecodeError:
        raise ValueError("filters must be a JSON object of {column: [values]}")
    if not isinstance(filters, dict):
        raise ValueError("filters must be a JSON object of {column: [values]}")
    return filters


@bp.route("/api/crm/inquiries")
@page_required(CRM)
def api_inquiries():
    """?q=search&filters={"status":["new"],"priority":["high","urgent"]}"""
    rows = inquiries.list_inquiries(_filters_arg(), request.args.get("q", ""))
    return jsonify({"ok": True, "inquiries": rows, "count": len(rows)})


@bp.route("/api/crm/inquiries", methods=["POST"])
@page_required(CRM)
def api_inquiries_create():
    return jsonify({"ok": True, "inquiry": inquiries.create_inquiry(body(), user_id())}), 201


@bp.route("/api/crm/inquiries/<int:iid>")
@page_required(CRM)
def api_inquiry(iid):
    inquiry = inquiries.get_inquiry(iid)
    return jsonify({"ok": True, "inquiry": inquiry,
                    "activities": inquiries.list_activities(iid),
                    "reminders": reminders.list_reminders(include_completed=True, inquiry_id=iid)})


@bp.route("/api/crm/inquiries/<int:iid>", methods=["PATCH"])
@page_required(CRM)
def api_inquiry_update(iid):
    """PATCH {field, value} (inline edit) or {status} or {priority}."""
    data = body()
    if "status" in data:
        row = inquiries.update_status(iid, data["status"])
    elif "priority" in data:
        row = inquiries.update_priority(iid, data["priority"])
    elif "field" in data:
        row = inquiries.update_field(iid, data["field"], data.get("value"))
    else:
        raise ValueError("Nothing to update: send field/value, status or priority")
    return jsonify({"ok": True, "inquiry": row})


@bp.route("/api/crm/inquiries/<int:iid>", methods=["DELETE"])
@page_required(CRM)
def api_inquiry_delete(iid):
    return jsonify({"ok": True, **inquiries.delete_inquiry(iid)})


@bp.route("/api/crm/inquiries/values/<column>")
@page_required(CRM)
def api_inquiry_values(column):
    """Distinct values for a column filter dropdown."""
    return jsonify({"ok": True, "column": column, "values": inquiries.unique_values(column)})


@bp.route("/api/crm/inquiries/<int:iid>/call", methods=["POST"])
@page_required(CRM)
def api_inquiry_call(iid):
    notes = (body().get("notes") or "").strip()
    if not notes:
        raise ValueError("Call notes are required")
    return jsonify({"ok": True, "activity": inquiries.log_call(iid, notes, user_id())}), 201


@bp.route("/api/crm/inquiries/<int:iid>/follow-up", methods=["POST"])
@page_required(CRM)
def api_inquiry_follow_up(iid):
    data = body()
    activity = inquiries.schedule_follow_up(iid, data.get("follow_up_date"),
                                            data.get("notes", ""), user_id())
    return jsonify({"ok": True, "activity": activity}), 201


@bp.route("/api/crm/inquiries/<int:iid>/tasks", methods=["POST"])
@page_required(CRM)
def api_inquiry_task(iid):
    """POST {title, due_date, description?, reminder_type?, assigned_to?}"""
    return jsonify({"ok": True, "reminder": inquiries.create_task(iid, body(), user_id())}), 201


# ═══════════════════════════════════════════════════════════════════════════════
# REMINDERS
# ═══════════════════════════════════════════════════════════════════════════════

@bp.route("/api/crm/reminders")
@page_required(CRM)
def api_reminders():
    """?due_before=ISO datetime&all=true (include completed)&inquiry_id="""
    rows = reminders.list_reminders(request.args.get("due_before") or None,
                                    request.args.get("all", "") == "true",
                                    request.args.get("inquiry_id", type=int))
    return jsonify({"ok": True, "reminders": rows})


@bp.route("/api/crm/reminders/<int:rid>/complete", methods=["POST"])
@page_required(CRM)
def api_reminder_complete(rid):
    return jsonify({"ok": True, "reminder": reminders.complete_reminder(rid)})


# ═══════════════════════════════════════════════════════════════════════════════
# INBOX / COMMAND CENTER
# ═══════════════════════════════════════════════════════════════════════════════

@bp.route("/api/crm/inbox")
@page_required(CRM)
def api_crm_inbox():
    """Synced emails. ?open=true for emails not yet converted; admins see every mailbox."""
    user = current_user()
    owner = None if user["role"] == "admin" and request.args.get("mine") != "true" else user["id"]
    rows = email_sync.list_inbox(owner, request.args.get("open", "") == "true",
                                 min(request.args.get("limit", 100, type=int), 500))
    return jsonify({"ok": True, "emails": rows, "count": len(rows)})


@bp.route("/api/crm/inbox/<int:email_id>/inquiry", methods=["POST"])
@page_required(CRM)
def api_crm_inbox_convert(email_id):
    """Command center: create an inquiry (and its reminders) from an inbox email."""
    inquiry = inquiries.create_from_email(email_id, body(), user_id())
    return jsonify({"ok": True, "inquiry": inquiry}), 201


@bp.route("/api/crm/parse-email", methods=["POST"])
@page_required(CRM)
def api_parse_email():
    """POST {subject, body, fromEmail, fromName} → {success, data, rawAiResponse}"""
    data = body()
    from_email = data.get("fromEmail") or data.get("from_email") or ""
    if not (data.get("body") or data.get("subject")):
        return jsonify({"success": False, "error": "subject or body is required"}), 400
    try:
        result = email_parser.parse_email(data.get("subject", ""), data.get("body", ""),
                                          from_email,
                                          data.get("fromName") or data.get("from_name") or "")
    except (email_parser.ParseError, requests.RequestException) as e:
        log.error("parse-email failed: %s", e)
        return jsonify({"success": False, "error": str(e)}), 502
    return jsonify(result)


@bp.route("/api/crm/domains/confirm", methods=["POST"])
@page_required(CRM)
def api_confirm_domain():
    """POST {domain, company_name}: pin a sender domain to a company."""
    data = body()
    row = email_parser.confirm_domain(data.get("domain", ""), data.get("company_name", ""))
    return jsonify({"ok": True, "domain": row})


# ═══════════════════════════════════════════════════════════════════════════════
# EMAIL COMPOSER
# ═══════════════════════════════════════════════════════════════════════════════

@bp.route("/api/crm/inquiries/<int:iid>/compose")
@page_required(CRM)
def api_compose(iid):
    """?kind=price_quote|coa_msds|sample|general → prefilled {to, subject, body}"""
    draft = mailer.compose(iid, request.args.get("kind", "general"), current_user())
    return jsonify({"ok": True, "draft": draft})


@bp.route("/api/crm/email/send", methods=["POST"])
@page_required(CRM)
def api_send_email():
    """POST {to, subject, body, inquiry_id?, kind?}"""
    data = body()
    try:
        result = mailer.send_email(current_user(), data.get("to", ""), data.get("subject", ""),
                                   data.get("body", ""), data.get("inquiry_id"),
                                   data.get("kind") or "general")
    except (GmailError, requests.RequestException) as e:
        log.error("Email send failed: %s", e)
        return jsonify({"ok": False, "error": f"Gmail send failed: {e}"}), 502
    return jsonify({"ok": True, **result})
