"""
anzen/crm/reminders.py: Follow-up tasks attached to inquiries.

Requested documents on an inquiry turn into dated reminders:
  COA requested     → send_coa     due +2 days
  MSDS requested    → send_msds    due +2 days
  sample requested  → send_sample  due +3 days
  price requested   → send_price   due +1 day
"""

import logging
from datetime import datetime, timedelta

from anzen.core.db import get_db, insert_row, update_row, require_row, fetch_row

log = logging.getLogger("anzen.crm.reminders")

REMINDER_TYPES = ("send_coa", "send_msds", "send_sample", "send_price", "follow_up", "task")

# (flag, reminder_type, title, days until due)
DOCUMENT_RULES = (
    ("coa_requested", "send_coa", "Send COA to customer", 2),
    ("msds_requested", "send_msds", "Send MSDS to customer", 2),
    ("sample_requested", "send_sample", "Send sample to customer", 3),
    ("price_requested", "send_price", "Send price quote to customer", 1),
)


def derive_reminders(inquiry_id: int, flags: dict, user_id: int = None,
                     now: datetime = None) -> list:
    """Reminder rows for the requested-document flags of an inquiry."""
    now = now or datetime.now()
    rows = []
    for flag, rtype, title, days in DOCUMENT_RULES:
        if flags.get(flag):
            rows.append({
                "inquiry_id": inquiry_id,
                "reminder_type": rtype,
                "title": title,
                "due_date": (now + timedelta(days=days)).isoformat(timespec="seconds"),
                "assigned_to": user_id,
                "created_by": user_id,
                "created_at": now.isoformat(timespec="seconds"),
            })
    return rows


def _save(conn, reminders: list) -> list:
    return [insert_row(conn, "crm_reminders", r) for r in reminders]


def create_reminder(data: dict, user_id: int = None) -> dict:
    rtype = data.get("reminder_type") or "task"
    if rtype not in REMINDER_TYPES:
        raise ValueError(f"Invalid reminder type: {rtype}")
    title = (data.get("title") or "").strip()
    if not title:
        raise ValueError("Task title is required")
    if not data.get("due_date"):
        raise ValueError("Due date is required")
    with get_db() as conn:
        if data.get("inquiry_id"):
            require_row(conn, "crm_inquiries", int(data["inquiry_id"]))
        rid = insert_row(conn, "crm_reminders", {
            "inquiry_id": data.get("inquiry_id"),
            "reminder_type": rtype,
            "title": title,
            "description": data.get("description"),
            "due_date": data["due_date"],
            "assigned_to": data.get("assigned_to") or user_id,
            "created_by": user_id,
            "created_at": datetime.now().isoformat(timespec="seconds"),
        })
        return fetch_row(conn, "crm_reminders", rid)


def list_reminders(due_before: str = None, include_completed: bool = False,
                   inquiry_id: int = None) -> list:
    sql = ("SELECT r.*, i.inquiry_number, i.company_name, i.product_name "
           "FROM crm_reminders r LEFT JOIN crm_inquiries i ON i.id = r.inquiry_id WHERE 1=1")
    params = []
    if not include_completed:
        sql += " AND r.is_completed = 0"
    if due_before:
        sql += " AND r.due_date <= ?"
        params.append(due_before)
    if inquiry_id:
        sql += " AND r.inquiry_id = ?"
        params.append(inquiry_id)
    sql += " ORDER BY r.due_date, r.id"
    with get_db() as conn:
        return [dict(r) for r in conn.execute(sql, params).fetchall()]


def complete_reminder(reminder_id: int) -> dict:
    with get_db() as conn:
        require_row(conn, "crm_reminders", reminder_id)
        update_row(conn, "crm_reminders", reminder_id, {
            "is_completed": 1, "completed_at": datetime.now().isoformat(timespec="seconds")})
        return fetch_row(conn, "crm_reminders", reminder_id)
