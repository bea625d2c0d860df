"""
anzen/crm/inquiries.py: Sales inquiry grid.

Backs the spreadsheet-style table on the CRM page: per-column value filters,
double-click inline edits, status / priority dropdowns and the row actions
(log call, schedule follow-up, create task). Also converts a synced email into
an inquiry (command center) and derives its document reminders.
"""

import json
import logging
from datetime import datetime, date

from anzen.core.db import (get_db, insert_row, update_row, fetch_row, require_row,
                           next_number, json_field)
from anzen.crm.reminders import derive_reminders, _save as save_reminders, create_reminder

log = logging.getLogger("anzen.crm.inquiries")

STATUSES = ("new", "price_quoted", "coa_pending", "sample_sent", "negotiation",
            "po_received", "won", "lost", "on_hold")
PRIORITIES = ("low", "medium", "high", "urgent")

# Double-click editable cells.
EDITABLE_FIELDS = ("product_name", "specification", "quantity", "supplier_name",
                   "company_name", "remarks")

FILTER_COLUMNS = ("inquiry_number", "inquiry_date", "product_name", "specification",
                  "quantity", "supplier_name", "supplier_country", "company_name",
                  "contact_person", "contact_email", "status", "priority",
                  "pipeline_stage", "source")

_FLAGS = ("coa_requested", "msds_requested", "sample_requested", "price_requested",
          "coa_sent", "msds_sent", "sample_sent", "price_quoted",
          "auto_detected_company", "auto_detected_contact")


def _out(row) -> dict:
    row = dict(row)
    row["purpose_icons"] = json_field(row.get("purpose_icons"), [])
    for flag in _FLAGS:
        if flag in row:
            row[flag] = bool(row[flag])
    return row


def get_inquiry(inquiry_id: int) -> dict:
    with get_db() as conn:
        return _out(require_row(conn, "crm_inquiries", inquiry_id))


# ── Column filters ────────────────────────────────────────────────────────────

def apply_filters(rows: list, filters: dict) -> list:
    """Keep rows whose str(value or '') is in every non-empty filter list."""
    active = {col: set(vals) for col, vals in (filters or {}).items() if vals}
    for col in active:
        if col not in FILTER_COLUMNS:
            raise ValueError(f"Cannot filter on column: {col}")
    return [r for r in rows
            if all(str(r.get(col) or "") in vals for col, vals in active.items())]


def toggle_filter(filters: dict, column: str, value: str) -> dict:
    """Add or remove one value from a column filter. Empty filters are dropped."""
    result = {c: list(v) for c, v in (filters or {}).items()}
    values = result.get(column, [])
    if value in values:
        values = [v for v in values if v != value]
    else:
        values = values + [value]
    if values:
        result[column] = values
    else:
        result.pop(column, None)
    return result


def list_inquiries(filters: dict = None, search: str = "") -> list:
    with get_db() as conn:
        rows = [_out(r) for r in conn.execute(
            "SELECT * FROM crm_inquiries ORDER BY inquiry_date DESC, id DESC").fetchall()]
    if search:
        s = search.lower()
        rows = [r for r in rows if any(
            s in str(r.get(c) or "").lower()
            for c in ("inquiry_number", "product_name", "company_name", "contact_person"))]
    return apply_filters(rows, filters)


def unique_values(column: str) -> list:
    """Distinct non-empty values of a column, sorted, for the filter dropdown."""
    if column not in FILTER_COLUMNS:
        raise ValueError(f"Cannot filter on column: {column}")
    with get_db() as conn:
        rows = conn.execute(f"SELECT DISTINCT {column} FROM crm_inquiries").fetchall()
    return sorted({str(r[0]) for r in rows if r[0]})


# ── Create ────────────────────────────────────────────────────────────────────

def _bool(value) -> int:
    return 1 if value else 0


def _insert_inquiry(conn, data: dict, user_id: int = None, source: str = "manual",
                    email_inbox_id: int = None) -> int:
    """Insert one inquiry inside the caller's transaction. Returns its id."""
    product = (data.get("product_name") or "").strip() or "Unknown Product"
    priority = data.get("priority") or "medium"
    if priority not in PRIORITIES:
        raise ValueError(f"Invalid priority: {priority}")
    status = data.get("status") or "new"
    if status not in STATUSES:
        raise ValueError(f"Invalid status: {status}")
    now = datetime.now().isoformat()
    number = data.get("inquiry_number") or next_number(
        conn, "crm_inquiries", "inquiry_number", "INQ")
    inquiry_id = insert_row(conn, "crm_inquiries", {
        "inquiry_number": number,
        "inquiry_date": data.get("inquiry_date") or date.today().isoformat(),
        "product_name": product,
        "specification": data.get("specification") or None,
        "quantity": data.get("quantity") or None,
        "supplier_name": data.get("supplier_name") or None,
        "supplier_country": data.get("supplier_country") or None,
        "company_name": data.get("company_name") or None,
        "contact_person": data.get("contact_person") or None,
        "contact_email": data.get("contact_email") or None,
        "contact_phone": data.get("contact_phone") or None,
        "email_subject": data.get("email_subject"),
        "email_body": data.get("email_body"),
        "status": status,
        "priority": priority,
        "pipeline_stage": "inquiry_received",
        "source": source,
        "coa_requested": _bool(data.get("coa_requested")),
        "msds_requested": _bool(data.get("msds_requested")),
        "sample_requested": _bool(data.get("sample_requested")),
        "price_requested": _bool(data.get("price_requested")),
        "purpose_icons": json.dumps(data.get("purpose_icons") or []),
        "delivery_date_expected": data.get("delivery_date_expected") or None,
        "ai_confidence_score": float(data.get("ai_confidence_score") or 0),
        "auto_detected_company": _bool(data.get("auto_detected_company")),
        "auto_detected_contact": _bool(data.get("auto_detected_contact")),
        "remarks": data.get("remarks") or None,
        "email_inbox_id": email_inbox_id,
        "assigned_to": data.get("assigned_to") or user_id,
        "created_by": user_id,
        "created_at": now,
    })
    if data.get("contact_email"):
        conn.execute(
            "UPDATE crm_contacts SET total_inquiries = total_inquiries + 1, "
            "last_contact_date = ? WHERE LOWER(email) = ?",
            (date.today().isoformat(), data["contact_email"].lower()))
    return inquiry_id


def create_inquiry(data: dict, user_id: int = None) -> dict:
    """Manual inquiry entry. Requested documents get reminders like email inquiries."""
    if not (data.get("product_name") or "").strip():
        raise ValueError("product_name is required")
    with get_db() as conn:
        inquiry_id = _insert_inquiry(conn, data, user_id, "manual")
        save_reminders(conn, derive_reminders(inquiry_id, data, user_id))
        row = _out(fetch_row(conn, "crm_inquiries", inquiry_id))
    log.info("Inquiry created: %s", row["inquiry_number"],
             extra={"inquiry_number": row["inquiry_number"]})
    return row


def create_from_email(email_id: int, form: dict, user_id: int = None) -> dict:
    """Command center: turn an inbox email into an inquiry with reminders."""
    with get_db() as conn:
        email = require_row(conn, "crm_email_inbox", email_id)
        if email["converted_to_inquiry"]:
            raise ValueError(f"Email already converted to inquiry {email['converted_to_inquiry']}")
        data = dict(form)
        data.setdefault("email_subject", email["subject"])
        data.setdefault("email_body", email["body_text"])
        data.setdefault("contact_email", email["from_email"])
        inquiry_id = _insert_inquiry(conn, data, user_id, "email", email_id)
        update_row(conn, "crm_email_inbox", email_id, {
            "is_processed": 1, "is_inquiry": 1, "converted_to_inquiry": inquiry_id})
        reminder_ids = save_reminders(conn, derive_reminders(inquiry_id, data, user_id))
        row = _out(fetch_row(conn, "crm_inquiries", inquiry_id))
    log.info("Inquiry %s created from email %d (%d reminders)",
             row["inquiry_number"], email_id, len(reminder_ids),
             extra={"inquiry_number": row["inquiry_number"]})
    row["reminder_ids"] = reminder_ids
    return row


# ── Edits ─────────────────────────────────────────────────────────────────────

def update_field(inquiry_id: int, field: str, value) -> dict:
    """Inline cell edit. Empty input is stored as NULL."""
    if field not in EDITABLE_FIELDS:
        raise ValueError(f"Field not editable: {field}")
    value = value if value not in ("", None) else None
    if field == "product_name" and value is None:
        raise ValueError("product_name cannot be empty")
    with get_db() as conn:
        require_row(conn, "crm_inquiries", inquiry_id)
        update_row(conn, "crm_inquiries", inquiry_id,
                   {field: value, "updated_at": datetime.now().isoformat()})
        return _out(fetch_row(conn, "crm_inquiries", inquiry_id))


def update_status(inquiry_id: int, status: str) -> dict:
    if status not in STATUSES:
        raise ValueError(f"Invalid status: {status}")
    with get_db() as conn:
        require_row(conn, "crm_inquiries", inquiry_id)
        update_row(conn, "crm_inquiries", inquiry_id,
                   {"status": status, "updated_at": datetime.now().isoformat()})
        return _out(fetch_row(conn, "crm_inquiries", inquiry_id))


def update_priority(inquiry_id: int, priority: str) -> dict:
    if priority not in PRIORITIES:
        raise ValueError(f"Invalid priority: {priority}")
    with get_db() as conn:
        require_row(conn, "crm_inquiries", inquiry_id)
        update_row(conn, "crm_inquiries", inquiry_id,
                   {"priority": priority, "updated_at": datetime.now().isoformat()})
        return _out(fetch_row(conn, "crm_inquiries", inquiry_id))


def delete_inquiry(inquiry_id: int) -> dict:
    with get_db() as conn:
        row = require_row(conn, "crm_inquiries", inquiry_id)
        conn.execute("UPDATE crm_email_inbox SET converted_to_inquiry=NULL "
                     "WHERE converted_to_inquiry=?", (inquiry_id,))
        conn.execute("DELETE FROM crm_inquiries WHERE id=?", (inquiry_id,))
    log.info("Inquiry deleted: %s", row["inquiry_number"])
    return {"deleted": True}


# ── Row actions ───────────────────────────────────────────────────────────────

def _activity(inquiry_id: int, activity_type: str, description: str,
              user_id: int = None, follow_up_date: str = None,
              completed: bool = True, metadata: dict = None) -> dict:
    with get_db() as conn:
        require_row(conn, "crm_inquiries", inquiry_id)
        aid = insert_row(conn, "crm_activities", {
            "inquiry_id": inquiry_id,
            "activity_type": activity_type,
            "description": description,
            "activity_date": date.today().isoformat(),
            "follow_up_date": follow_up_date,
            "is_completed": 1 if completed else 0,
            "metadata": json.dumps(metadata) if metadata else None,
            "created_by": user_id,
            "created_at": datetime.now().isoformat(),
        })
        return fetch_row(conn, "crm_activities", aid)


def log_call(inquiry_id: int, notes: str, user_id: int = None) -> dict:
    return _activity(inquiry_id, "call", notes, user_id)


def schedule_follow_up(inquiry_id: int, follow_up_date: str, notes: str = "",
                       user_id: int = None) -> dict:
    if not follow_up_date:
        raise ValueError("Follow-up date is required")
    return _activity(inquiry_id, "follow_up", notes, user_id, follow_up_date, completed=False)


def create_task(inquiry_id: int, data: dict, user_id: int = None) -> dict:
    return create_reminder(dict(data, inquiry_id=inquiry_id,
                                reminder_type=data.get("reminder_type") or "task"), user_id)


def list_activities(inquiry_id: int) -> list:
    with get_db() as conn:
        rows = conn.execute(
            "SELECT * FROM crm_activities WHERE inquiry_id=? ORDER BY id DESC",
            (inquiry_id,)).fetchall()
    return [dict(r) for r in rows]
