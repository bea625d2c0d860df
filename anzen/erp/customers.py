"""Billing customers (trading entities that receive invoices and challans)."""

import logging
from datetime import datetime

from anzen.core.db import get_db, insert_row, update_row, fetch_row, require_row

log = logging.getLogger("anzen.customers")

EDITABLE = ("company_name", "contact_person", "email", "phone", "address",
            "city", "npwp", "payment_terms_days", "is_active")


def _clean(data: dict) -> dict:
    fields = {k: data[k] for k in EDITABLE if k in data}
    if "company_name" in fields:
        fields["company_name"] = (fields["company_name"] or "").strip()
        if not fields["company_name"]:
            raise ValueError("company_name is required")
    if "payment_terms_days" in fields:
        fields["payment_terms_days"] = int(fields["payment_terms_days"] or 0)
    if "is_active" in fields:
        fields["is_active"] = 1 if fields["is_active"] else 0
    return fields


def list_customers(search: str = "", active_only: bool = False) -> list:
    sql = "SELECT * FROM customers WHERE 1=1"
    params = []
    if search:
        like = f"%{search.lower()}%"
        sql += (" AND (LOWER(company_name) LIKE ? OR LOWER(COALESCE(contact_person,'')) LIKE ?"
                " OR LOWER(COALESCE(email,'')) LIKE ? OR LOWER(COALESCE(city,'')) LIKE ?)")
        params += [like] * 4
    if active_only:
        sql += " AND is_active=1"
    sql += " ORDER BY company_name"
    with get_db() as conn:
        return [dict(r) for r in conn.execute(sql, params).fetchall()]


def get_customer(customer_id: int) -> dict:
    with get_db() as conn:
        return require_row(conn, "customers", customer_id)


def create_customer(data: dict) -> dict:
    fields = _clean(data)
    if "company_name" not in fields:
        raise ValueError("company_name is required")
    fields.setdefault("payment_terms_days", 30)
    fields.setdefault("is_active", 1)
    fields["created_at"] = datetime.now().isoformat()
    with get_db() as conn:
        cid = insert_row(conn, "customers", fields)
        row = fetch_row(conn, "customers", cid)
    log.info("Customer created: %s", row["company_name"])
    return row


def update_customer(customer_id: int, data: dict) -> dict:
    fields = _clean(data)
    fields["updated_at"] = datetime.now().isoformat()
    with get_db() as conn:
        require_row(conn, "customers", customer_id)
        update_row(conn, "customers", customer_id, fields)
        return fetch_row(conn, "customers", customer_id)


def delete_customer(customer_id: int) -> dict:
    """Delete, or deactivate when invoices or challans reference the customer."""
    with get_db() as conn:
        require_row(conn, "customers", customer_id)
        refs = conn.execute(
            "SELECT (SELECT COUNT(*) FROM sales_invoices WHERE customer_id=?) + "
            "(SELECT COUNT(*) FROM delivery_challans WHERE customer_id=?)",
            (customer_id, customer_id)).fetchone()[0]
        if refs:
            update_row(conn, "customers", customer_id,
                       {"is_active": 0, "updated_at": datetime.now().isoformat()})
            return {"deleted": False, "deactivated": True}
        conn.execute("DELETE FROM customers WHERE id=?", (customer_id,))
    return {"deleted": True, "deactivated": False}
