"""
anzen/agents/email_sync.py: Gmail → CRM inbox → inquiry pipeline.

Per connection:
  1. refresh the access token if it expired
  2. list unread inbox messages (max 50)
  3. process them in batches of 5 in parallel threads
  4. per message: fetch, skip if the Gmail id is already in crm_email_inbox,
     parse with the LLM, decide is_inquiry, then write inbox row + inquiry +
     reminders in one transaction
  5. stamp last_sync

A failing message is logged and skipped; it never stops the batch. There is no
retry queue: unread mail that failed is simply seen again on the next run.
"""

import re
import json
import time
import base64
import sqlite3
import logging
import binascii
from datetime import datetime, timezone
from concurrent.futures import ThreadPoolExecutor

from bs4 import BeautifulSoup

from anzen.core.db import get_db, insert_row, update_row, json_field
from anzen.agents import gmail
from anzen.agents.email_parser import parse_email
from anzen.crm.inquiries import _insert_inquiry, PRIORITIES
from anzen.crm.reminders import derive_reminders, _save as save_reminders

log = logging.getLogger("anzen.email_sync")

BATCH_SIZE = 5
MAX_MESSAGES = 50

POLL_STATUS = {"running": False, "last_check": None, "emails_found": 0,
               "inquiries_created": 0, "error": None}


# ── MIME helpers ──────────────────────────────────────────────────────────────

def decode_base64url(data: str) -> str:
    """Decode Gmail's base64url body data. Empty string if it does not decode."""
    if not data:
        return ""
    try:
        raw = base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))
    except (binascii.Error, ValueError):
        return ""
    return raw.decode("utf-8", errors="replace")


def _strip_html(html: str) -> str:
    return BeautifulSoup(html, "html.parser").get_text().replace("\xa0", " ")


def extract_email_body(payload: dict) -> str:
    """Best plain-text body of a Gmail message payload.

    Order: the payload's own body, the first text/plain part, the first
    text/html part (tags stripped), then the first nested multipart that
    yields anything.
    """
    data = (payload.get("body") or {}).get("data")
    if data:
        return decode_base64url(data)
    parts = payload.get("parts") or []
    for part in parts:
        if part.get("mimeType") == "text/plain" and (part.get("body") or {}).get("data"):
            return decode_base64url(part["body"]["data"])
    for part in parts:
        if part.get("mimeType") == "text/html" and (part.get("body") or {}).get("data"):
            return _strip_html(decode_base64url(part["body"]["data"]))
    for part in parts:
        if part.get("parts"):
            nested = extract_email_body(part)
            if nested:
                return nested
    return ""


def get_header(headers: list, name: str) -> str:
    name = name.lower()
    for h in headers or []:
        if (h.get("name") or "").lower() == name:
            return h.get("value") or ""
    return ""


def split_sender(sender: str) -> tuple:
    """'Budi <budi@kimia.co.id>' → ('budi@kimia.co.id', 'Budi')."""
    sender = sender or ""
    m = re.search(r"<(.+?)>", sender)
    email = m.group(1) if m else sender
    name = re.sub(r"<.+?>", "", sender, count=1).strip()
    return email.strip(), name


def _received_at(message: dict) -> str:
    try:
        ms = int(message.get("internalDate") or 0)
    except (TypeError, ValueError):
        ms = 0
    if not ms:
        return datetime.now(timezone.utc).isoformat()
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).isoformat()


def is_inquiry(parsed: dict | None) -> bool:
    if not parsed:
        return False
    return len(parsed.get("product_name") or "") > 2 or (parsed.get("confidence_score") or 0) >= 0.5


# ── Pipeline ──────────────────────────────────────────────────────────────────

def _already_seen(message_id: str) -> bool:
    with get_db() as conn:
        return conn.execute("SELECT 1 FROM crm_email_inbox WHERE gmail_message_id=?",
                            (message_id,)).fetchone() is not None


def _inquiry_fields(parsed: dict, subject: str, body: str, received_at: str) -> dict:
    fields = dict(parsed)
    fields.update({
        "inquiry_date": received_at[:10],
        "product_name": parsed.get("product_name") or "Unknown Product",
        "priority": parsed.get("urgency") if parsed.get("urgency") in PRIORITIES else "medium",
        "ai_confidence_score": parsed.get("confidence_score") or 0.0,
        "email_subject": subject,
        "email_body": body,
    })
    return fields


def store_message(connection: dict, message: dict, parsed: dict | None) -> dict | None:
    """Write the inbox row and, for inquiries, the inquiry and its reminders.

    Returns {"processed", "inquiry", "inquiry_id"} or None when the message id
    was inserted concurrently by another run.
    """
    headers = (message.get("payload") or {}).get("headers") or []
    subject = get_header(headers, "subject")
    from_email, from_name = split_sender(get_header(headers, "from"))
    body = extract_email_body(message.get("payload") or {})
    received_at = _received_at(message)
    inquiry = is_inquiry(parsed)
    user_id = connection.get("user_id")
    try:
        with get_db() as conn:
            inbox_id = insert_row(conn, "crm_email_inbox", {
                "gmail_connection_id": connection["id"],
                "gmail_message_id": message["id"],
                "gmail_thread_id": message.get("threadId"),
                "subject": subject,
                "from_email": from_email,
                "from_name": from_name,
                "body_text": body,
                "received_at": received_at,
                "is_processed": 1 if inquiry else 0,
                "is_inquiry": 1 if inquiry else 0,
                "parsed_data": json.dumps(parsed) if parsed else None,
                "created_at": datetime.now().isoformat(),
            })
            inquiry_id = None
            if inquiry:
                fields = _inquiry_fields(parsed, subject, body, received_at)
                fields["contact_email"] = from_email
                inquiry_id = _insert_inquiry(conn, fields, user_id, "email", inbox_id)
                update_row(conn, "crm_email_inbox", inbox_id, {"converted_to_inquiry": inquiry_id})
                save_reminders(conn, derive_reminders(inquiry_id, parsed, user_id))
    except sqlite3.IntegrityError as e:
        if "gmail_message_id" in str(e):
            log.info("Message %s already stored, skipping", message["id"],
                     extra={"message_id": message["id"]})
            return None
        raise
    return {"processed": True, "inquiry": inquiry, "inquiry_id": inquiry_id}


def process_message(connection: dict, token: str, message_id: str) -> dict | None:
    """Fetch, de-duplicate, parse and store one message. Never raises."""
    try:
        if _already_seen(message_id):
            return None
        message = gmail.get_message(token, message_id)
        headers = (message.get("payload") or {}).get("headers") or []
        from_email, from_name = split_sender(get_header(headers, "from"))
        parsed = None
        try:
            result = parse_email(get_header(headers, "subject"),
                                 extract_email_body(message.get("payload") or {}),
                                 from_email, from_name)
            if result.get("success"):
                parsed = result["data"]
        except Exception as e:
            log.error("Failed to parse email %s: %s", message_id, e,
                      extra={"message_id": message_id})
        return store_message(connection, message, parsed)
    except Exception as e:
        log.error("Error processing message %s: %s", message_id, e, exc_info=True,
                  extra={"message_id": message_id})
        return None


def list_inbox(user_id: int = None, only_open: bool = False, limit: int = 100) -> list:
    """Synced emails, newest first. only_open: inquiries not yet converted."""
    sql = ("SELECT e.*, c.email_address AS mailbox FROM crm_email_inbox e "
           "LEFT JOIN gmail_connections c ON c.id = e.gmail_connection_id WHERE 1=1")
    params = []
    if user_id:
        sql += " AND c.user_id=?"
        params.append(user_id)
    if only_open:
        sql += " AND e.converted_to_inquiry IS NULL"
    sql += " ORDER BY e.received_at DESC, e.id DESC LIMIT ?"
    params.append(int(limit))
    with get_db() as conn:
        rows = [dict(r) for r in conn.execute(sql, params).fetchall()]
    for row in rows:
        row["parsed_data"] = json_field(row.get("parsed_data"))
        row["is_inquiry"] = bool(row["is_inquiry"])
        row["is_processed"] = bool(row["is_processed"])
    return rows


def sync_connection(connection: dict) -> dict:
    """Run one sync for a Gmail connection. Returns the run counters."""
    token = gmail.ensure_access_token(connection)
    messages = gmail.list_unread(token, MAX_MESSAGES)
    processed = new_inquiries = 0
    with ThreadPoolExecutor(max_workers=BATCH_SIZE) as pool:
        for i in range(0, len(messages), BATCH_SIZE):
            batch = messages[i:i + BATCH_SIZE]
            results = list(pool.map(
                lambda m: process_message(connection, token, m["id"]), batch))
            for result in results:
                if result and result.get("processed"):
                    processed += 1
                    if result.get("inquiry"):
                        new_inquiries += 1
    gmail.mark_synced(connection["id"])
    log.info("Gmail sync %s: %d/%d processed, %d inquiries",
             connection.get("email_address"), processed, len(messages), new_inquiries)
    return {"success": True, "processedCount": processed,
            "newInquiriesCount": new_inquiries, "totalMessages": len(messages)}


def sync_user(user_id: int) -> dict:
    connection = gmail.get_connection(user_id)
    if not connection or not connection["is_connected"]:
        raise ValueError("Gmail not connected")
    return sync_connection(connection)


def sync_all() -> list:
    """Sync every connection with sync enabled. One failure does not stop the rest."""
    results = []
    for connection in gmail.active_connections():
        try:
            result = sync_connection(connection)
        except Exception as e:
            log.error("Sync failed for %s: %s", connection.get("email_address"), e)
            result = {"success": False, "error": str(e)}
        result["connection_id"] = connection["id"]
        results.append(result)
    return results


def do_poll_check() -> list:
    """One background poll. Updates POLL_STATUS."""
    results = sync_all()
    POLL_STATUS["last_check"] = datetime.now().isoformat()
    POLL_STATUS["emails_found"] += sum(r.get("processedCount", 0) for r in results)
    POLL_STATUS["inquiries_created"] += sum(r.get("newInquiriesCount", 0) for r in results)
    errors = [r["error"] for r in results if not r.get("success")]
    POLL_STATUS["error"] = "; ".join(errors) if errors else None
    return results


def email_poll_loop(interval: int):
    """Background thread: sync every enabled mailbox every `interval` seconds."""
    POLL_STATUS["running"] = True
    log.info("Email polling started (every %ds)", interval)
    while POLL_STATUS["running"]:
        try:
            do_poll_check()
        except Exception as e:
            POLL_STATUS["error"] = str(e)
            log.error("Poll error: %s", e, exc_info=True)
        time.sleep(interval)
