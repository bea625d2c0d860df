"""
anzen/agents/mailer.py: Email composer for inquiry follow-ups, sent through Gmail.

Templates prefill the composer from an inquiry; sending logs a crm_activities
row, flips the document flags on the inquiry and closes the matching open
reminders.
"""

import json
import base64
import logging
from datetime import datetime, date
from email.mime.text import MIMEText

from anzen.core.db import get_db, insert_row, require_row, get_setting
from anzen.agents import gmail

log = logging.getLogger("anzen.mailer")

# kind → (inquiry flags set on send, reminder types closed on send)
KINDS = {
    "price_quote": (("price_quoted",), ("send_price",)),
    "coa_msds": (("coa_sent", "msds_sent"), ("send_coa", "send_msds")),
    "sample": (("sample_sent",), ("send_sample",)),
    "general": ((), ()),
}


def _greeting(inquiry: dict) -> str:
    name = inquiry.get("contact_person") or "Sir/Madam"
    return f"Dear {name},"


def _signature(user: dict) -> str:
    company = get_setting("company_name")
    lines = ["Best regards,", user.get("full_name") or "", company]
    phone = get_setting("company_phone")
    if phone:
        lines.append(phone)
    return "\n".join(l for l in lines if l)


def compose(inquiry_id: int, kind: str, user: dict) -> dict:
    """Draft {to, subject, body} for an inquiry."""
    if kind not in KINDS:
        raise ValueError(f"Unknown email kind: {kind}")
    with get_db() as conn:
        inquiry = require_row(conn, "crm_inquiries", inquiry_id)
    product = inquiry["product_name"]
    qty = f" ({inquiry['quantity']})" if inquiry.get("quantity") else ""
    origin = ""
    if inquiry.get("supplier_name") or inquiry.get("supplier_country"):
        origin = " from " + ", ".join(x for x in (inquiry.get("supplier_name"),
                                                   inquiry.get("supplier_country")) if x)

    if kind == "price_quote":
        subject = f"Price Quotation: {product}"
        text = (f"Thank you for your inquiry regarding {product}{qty}{origin}.\n\n"
                f"Please find our price quotation below:\n\n"
                f"Product: {product}\nQuantity: {inquiry.get('quantity') or '-'}\n"
                f"Price: \nDelivery: \nPayment terms: \nValidity: 30 days\n\n"
                f"Please let us know if you have any questions.")
    elif kind == "coa_msds":
        subject = f"COA & MSDS: {product}"
        text = (f"As requested, please find attached the Certificate of Analysis (COA) "
                f"and Material Safety Data Sheet (MSDS) for {product}{origin}.\n\n"
                f"Please let us know if you need any further documents.")
    elif kind == "sample":
        subject = f"Sample Dispatch: {product}"
        text = (f"We are pleased to inform you that a sample of {product}{origin} "
                f"will be dispatched to you.\n\nWe will share the tracking details shortly.")
    else:
        subject = f"Re: {inquiry.get('email_subject') or product}"
        text = f"Thank you for your inquiry regarding {product}{qty}."

    body = f"{_greeting(inquiry)}\n\n{text}\n\n{_signature(user)}"
    return {"to": inquiry.get("contact_email") or "", "subject": subject,
            "body": body, "kind": kind, "inquiry_id": inquiry_id}


def build_mime(from_addr: str, to: str, subject: str, body: str) -> MIMEText:
    msg = MIMEText(body, "plain", "utf-8")
    from_name = get_setting("company_name")
    msg["From"] = f"{from_name} <{from_addr}>" if from_name else from_addr
    msg["To"] = to
    msg["Subject"] = subject
    return msg


def send_email(user: dict, to: str, subject: str, body: str, inquiry_id: int = None,
               kind: str = "general") -> dict:
    """Send through the user's Gmail connection and record it on the inquiry."""
    if kind not in KINDS:
        raise ValueError(f"Unknown email kind: {kind}")
    if not to or "@" not in to:
        raise ValueError("A valid recipient address is required")
    if not subject:
        raise ValueError("Subject is required")
    connection = gmail.get_connection(user["id"])
    if not connection or not connection["is_connected"]:
        raise ValueError("Gmail not connected")
    if inquiry_id:
        with get_db() as conn:
            require_row(conn, "crm_inquiries", inquiry_id)

    token = gmail.ensure_access_token(connection)
    msg = build_mime(connection["email_address"], to, subject, body)
    raw = base64.urlsafe_b64encode(msg.as_bytes()).decode()
    sent = gmail.send_message(token, raw)

    flags, reminder_types = KINDS[kind]
    if inquiry_id:
        now = datetime.now().isoformat()
        with get_db() as conn:
            for flag in flags:
                conn.execute(f"UPDATE crm_inquiries SET {flag}=1, updated_at=? WHERE id=?",
                             (now, inquiry_id))
            if reminder_types:
                marks = ",".join("?" for _ in reminder_types)
                conn.execute(
                    f"UPDATE crm_reminders SET is_completed=1, completed_at=? "
                    f"WHERE inquiry_id=? AND is_completed=0 AND reminder_type IN ({marks})",
                    [now, inquiry_id, *reminder_types])
            insert_row(conn, "crm_activities", {
                "inquiry_id": inquiry_id,
                "activity_type": "email",
                "description": f"{subject} → {to}",
                "activity_date": date.today().isoformat(),
                "is_completed": 1,
                "metadata": json.dumps({"kind": kind, "gmail_id": sent.get("id")}),
                "created_by": user["id"],
                "created_at": now,
            })
    log.info("Email sent to %s (%s)", to, kind, extra={"user": user.get("username")})
    return {"sent": True, "gmail_id": sent.get("id"), "thread_id": sent.get("threadId")}
