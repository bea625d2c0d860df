"""
anzen/crm/contacts.py: CRM contact database (prospects and customers) with CSV import.
"""

import csv
import io
import json
import logging
from datetime import datetime, date

from anzen.core.db import get_db, insert_row, update_row, fetch_row, require_row, json_field

log = logging.getLogger("anzen.crm.contacts")

CUSTOMER_TYPES = ("prospect", "active", "inactive", "vip")

EDITABLE = ("company_name", "company_type", "industry", "country", "city", "address",
            "website", "contact_person", "designation", "email", "phone", "mobile",
            "customer_type", "tags", "last_contact_date", "notes", "is_active")

# Header keyword rules, checked in order; a header matches when it contains every keyword.
CSV_HEADER_RULES = [
    (("company", "name"), "company_name"),
    (("contact", "person"), "contact_person"),
    (("email",), "email"),
    (("phone",), "phone"),
    (("country",), "country"),
    (("city",), "city"),
    (("website",), "website"),
    (("industry",), "industry"),
]


def _out(row: dict) -> dict:
    row = dict(row)
    row["tags"] = json_field(row.get("tags"), [])
    return row


def _clean(data: dict) -> dict:
    fields = {k: data[k] for k in EDITABLE if k in data}
    if "company_name" in fields:
        fields["company_name"] = (fields["company_name"] or "").strip()
        if not fields["company_name"]:
            raise ValueError("company_name is required")
    if "customer_type" in fields and fields["customer_type"] not in CUSTOMER_TYPES:
        raise ValueError(f"Invalid customer type: {fields['customer_type']}")
    if "tags" in fields:
        tags = fields["tags"] or []
        if isinstance(tags, str):
            tags = [t.strip() for t in tags.split(",") if t.strip()]
        fields["tags"] = json.dumps(tags)
    if "is_active" in fields:
        fields["is_active"] = 1 if fields["is_active"] else 0
    return fields


def list_contacts(search: str = "", customer_type: str = "all") -> list:
    sql = "SELECT * FROM crm_contacts WHERE 1=1"
    params = []
    if search:
        like = f"%{search.lower()}%"
        sql += (" AND (LOWER(company_name) LIKE ? OR LOWER(COALESCE(contact_person,'')) LIKE ?"
                " OR LOWER(COALESCE(email,'')) LIKE ?)")
        params += [like, like, like]
    if customer_type and customer_type != "all":
        sql += " AND customer_type=?"
        params.append(customer_type)
    sql += " ORDER BY created_at DESC, id DESC"
    with get_db() as conn:
        return [_out(r) for r in conn.execute(sql, params).fetchall()]


def create_contact(data: dict, user_id: int = None) -> dict:
    fields = _clean(data)
    if "company_name" not in fields:
        raise ValueError("company_name is required")
    fields.setdefault("customer_type", "prospect")
    fields["first_contact_date"] = date.today().isoformat()
    fields["created_by"] = user_id
    fields["created_at"] = datetime.now().isoformat()
    with get_db() as conn:
        cid = insert_row(conn, "crm_contacts", fields)
        return _out(fetch_row(conn, "crm_contacts", cid))


def update_contact(contact_id: int, data: dict) -> dict:
    fields = _clean(data)
    with get_db() as conn:
        require_row(conn, "crm_contacts", contact_id)
        update_row(conn, "crm_contacts", contact_id, fields)
        return _out(fetch_row(conn, "crm_contacts", contact_id))


def delete_contact(contact_id: int) -> dict:
    with get_db() as conn:
        require_row(conn, "crm_contacts", contact_id)
        conn.execute("DELETE FROM crm_contacts WHERE id=?", (contact_id,))
    return {"deleted": True}


def _map_headers(headers: list) -> dict:
    mapping = {}
    for idx, header in enumerate(headers):
        lower = header.strip().strip('"').lower()
        for keywords, column in CSV_HEADER_RULES:
            if all(k in lower for k in keywords):
                mapping[idx] = column
                break
    return mapping


def parse_csv(text: str) -> list:
    """Rows from a contacts CSV. Rows without a company name are skipped."""
    reader = csv.reader(io.StringIO(text.lstrip("﻿")))
    rows = [r for r in reader if any(c.strip() for c in r)]
    if not rows:
        return []
    mapping = _map_headers(rows[0])
    contacts = []
    for values in rows[1:]:
        contact = {}
        for idx, column in mapping.items():
            if idx < len(values) and values[idx].strip():
                contact[column] = values[idx].strip()
        if contact.get("company_name"):
            contacts.append(contact)
    return contacts


def import_csv(text: str, user_id: int = None) -> dict:
    contacts = parse_csv(text)
    if not contacts:
        raise ValueError("No valid contacts found in CSV file")
    today = date.today().isoformat()
    now = datetime.now().isoformat()
    with get_db() as conn:
        for contact in contacts:
            contact.update({"customer_type": "prospect", "first_contact_date": today,
                            "created_by": user_id, "created_at": now})
            insert_row(conn, "crm_contacts", contact)
    log.info("Imported %d contacts from CSV", len(contacts))
    return {"imported": len(contacts)}


def find_by_email(email: str) -> dict | None:
    if not email:
        return None
    with get_db() as conn:
        row = conn.execute("SELECT * FROM crm_contacts WHERE LOWER(email)=? LIMIT 1",
                           (email.lower(),)).fetchone()
    return _out(row) if row else None
