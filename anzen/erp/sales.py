"""
anzen/erp/sales.py: Sales invoices and delivery challans.

Stock leaves the warehouse exactly once per sale:
  - a delivery challan consumes stock when it is created (cancel restores it)
  - an invoice raised from a challan does not touch stock again
  - a standalone invoice consumes stock itself
Lines without a named batch are picked first-expiry-first-out.
"""

import logging
from datetime import datetime, date, timedelta

from dateutil import parser as dateparser

from anzen.core.db import (get_db, insert_row, update_row, fetch_row, require_row,
                           next_number, get_tax_rate)
from anzen.erp.inventory import _pick, _consume, _move

log = logging.getLogger("anzen.sales")

CHALLAN_STATUSES = ("pending", "delivered", "cancelled")
PAYMENT_STATUSES = ("unpaid", "partial", "paid")


def _validate_lines(data: dict, items: list) -> list:
    if not data.get("customer_id"):
        raise ValueError("Please select a customer")
    lines = [i for i in (items or []) if i.get("product_id")]
    if not lines:
        raise ValueError("Please add at least one product")
    for line in lines:
        if float(line.get("quantity") or 0) <= 0:
            raise ValueError("Quantity must be positive")
    return lines


def _expand(conn, lines: list) -> list:
    """Turn request lines into per-batch lines using the named batch or FEFO."""
    expanded, taken = [], {}
    for line in lines:
        product_id = int(line["product_id"])
        product = require_row(conn, "products", product_id)
        price = line.get("unit_price")
        price = float(product["selling_price"] if price in (None, "") else price)
        for alloc in _pick(conn, product_id, float(line["quantity"]),
                           int(line["batch_id"]) if line.get("batch_id") else None,
                           taken):
            expanded.append({"product_id": product_id, "batch_id": alloc["batch_id"],
                             "quantity": alloc["quantity"],
                             "unit": line.get("unit") or product["unit"],
                             "unit_price": price})
    return expanded


# ── Delivery challans ─────────────────────────────────────────────────────────

def _challan_detail(conn, challan_id: int) -> dict:
    row = conn.execute(
        "SELECT c.*, cu.company_name AS customer_name, cu.address AS customer_address "
        "FROM delivery_challans c JOIN customers cu ON cu.id = c.customer_id WHERE c.id=?",
        (challan_id,)).fetchone()
    if row is None:
        raise LookupError(f"Delivery challan {challan_id} not found")
    challan = dict(row)
    challan["items"] = [dict(r) for r in conn.execute(
        "SELECT i.*, p.product_name, p.product_code, b.batch_number, b.expiry_date "
        "FROM delivery_challan_items i JOIN products p ON p.id = i.product_id "
        "LEFT JOIN batches b ON b.id = i.batch_id WHERE i.challan_id=? ORDER BY i.id",
        (challan_id,)).fetchall()]
    return challan


def get_challan(challan_id: int) -> dict:
    with get_db() as conn:
        return _challan_detail(conn, challan_id)


def list_challans(search: str = "", status: str = "") -> list:
    sql = ("SELECT c.*, cu.company_name AS customer_name FROM delivery_challans c "
           "JOIN customers cu ON cu.id = c.customer_id WHERE 1=1")
    params = []
    if search:
        like = f"%{search.lower()}%"
        sql += " AND (LOWER(c.challan_number) LIKE ? OR LOWER(cu.company_name) LIKE ?)"
        params += [like, like]
    if status and status != "all":
        sql += " AND c.status=?"
        params.append(status)
    sql += " ORDER BY c.challan_date DESC, c.id DESC"
    with get_db() as conn:
        return [dict(r) for r in conn.execute(sql, params).fetchall()]


def create_challan(data: dict, items: list, user_id: int = None) -> dict:
    lines = _validate_lines(data, items)
    with get_db() as conn:
        require_row(conn, "customers", int(data["customer_id"]))
        number = next_number(conn, "delivery_challans", "challan_number", "DC")
        challan_id = insert_row(conn, "delivery_challans", {
            "challan_number": number,
            "customer_id": int(data["customer_id"]),
            "challan_date": data.get("challan_date") or date.today().isoformat(),
            "vehicle_number": data.get("vehicle_number"),
            "driver_name": data.get("driver_name"),
            "status": "pending",
            "notes": data.get("notes"),
            "created_by": user_id,
            "created_at": datetime.now().isoformat(),
        })
        expanded = _expand(conn, lines)
        for line in expanded:
            insert_row(conn, "delivery_challan_items", dict(line, challan_id=challan_id))
        _consume(conn, expanded, "delivery", "challan", challan_id, user_id)
        challan = _challan_detail(conn, challan_id)
    log.info("Challan created: %s (%d lines)", number, len(expanded))
    return challan


def update_challan_status(challan_id: int, status: str, user_id: int = None) -> dict:
    if status not in CHALLAN_STATUSES:
        raise ValueError(f"Invalid status: {status}")
    with get_db() as conn:
        challan = _challan_detail(conn, challan_id)
        current = challan["status"]
        if current == status:
            return challan
        if current == "cancelled":
            raise ValueError("Cancelled challans cannot change status")
        if status == "pending":
            raise ValueError("A challan cannot go back to pending")
        if status == "cancelled":
            if challan["invoice_id"]:
                raise ValueError("Invoiced challans cannot be cancelled")
            for item in challan["items"]:
                if item["batch_id"]:
                    _move(conn, item["batch_id"], item["quantity"], "return", "challan",
                          challan_id, f"Challan {challan['challan_number']} cancelled", user_id)
        update_row(conn, "delivery_challans", challan_id, {"status": status})
        challan = _challan_detail(conn, challan_id)
    log.info("Challan %s: %s → %s", challan["challan_number"], current, status)
    return challan


# ── Invoices ──────────────────────────────────────────────────────────────────

def _due_date(conn, customer_id: int, invoice_date: str) -> str:
    customer = require_row(conn, "customers", customer_id)
    terms = customer["payment_terms_days"] or 0
    return (dateparser.parse(invoice_date).date() + timedelta(days=terms)).isoformat()


def _insert_invoice(conn, data: dict, lines: list, user_id: int,
                    challan_id: int = None) -> int:
    customer_id = int(data["customer_id"])
    invoice_date = data.get("invoice_date") or date.today().isoformat()
    subtotal = sum(l["quantity"] * l["unit_price"] for l in lines)
    tax = round(subtotal * get_tax_rate(), 2)
    invoice_id = insert_row(conn, "sales_invoices", {
        "invoice_number": next_number(conn, "sales_invoices", "invoice_number", "INV"),
        "customer_id": customer_id,
        "invoice_date": invoice_date,
        "due_date": data.get("due_date") or _due_date(conn, customer_id, invoice_date),
        "challan_id": challan_id,
        "subtotal": subtotal,
        "tax_amount": tax,
        "total_amount": subtotal + tax,
        "paid_amount": 0,
        "payment_status": "unpaid",
        "notes": data.get("notes"),
        "created_by": user_id,
        "created_at": datetime.now().isoformat(),
    })
    for line in lines:
        insert_row(conn, "sales_invoice_items", {
            "invoice_id": invoice_id,
            "product_id": line["product_id"],
            "batch_id": line.get("batch_id"),
            "quantity": line["quantity"],
            "unit_price": line["unit_price"],
            "line_total": line["quantity"] * line["unit_price"],
        })
    return invoice_id


def _invoice_detail(conn, invoice_id: int) -> dict:
    row = conn.execute(
        "SELECT i.*, c.company_name AS customer_name FROM sales_invoices i "
        "JOIN customers c ON c.id = i.customer_id WHERE i.id=?", (invoice_id,)).fetchone()
    if row is None:
        raise LookupError(f"Invoice {invoice_id} not found")
    invoice = dict(row)
    invoice["items"] = [dict(r) for r in conn.execute(
        "SELECT it.*, p.product_name, b.batch_number FROM sales_invoice_items it "
        "JOIN products p ON p.id = it.product_id LEFT JOIN batches b ON b.id = it.batch_id "
        "WHERE it.invoice_id=? ORDER BY it.id", (invoice_id,)).fetchall()]
    invoice["balance"] = round(invoice["total_amount"] - invoice["paid_amount"], 2)
    return invoice


def get_invoice(invoice_id: int) -> dict:
    with get_db() as conn:
        return _invoice_detail(conn, invoice_id)


def list_invoices(search: str = "", payment_status: str = "", customer_id: int = None) -> list:
    sql = ("SELECT i.*, c.company_name AS customer_name FROM sales_invoices i "
           "JOIN customers c ON c.id = i.customer_id WHERE 1=1")
    params = []
    if search:
        like = f"%{search.lower()}%"
        sql += " AND (LOWER(i.invoice_number) LIKE ? OR LOWER(c.company_name) LIKE ?)"
        params += [like, like]
    if payment_status and payment_status != "all":
        sql += " AND i.payment_status=?"
        params.append(payment_status)
    if customer_id:
        sql += " AND i.customer_id=?"
        params.append(customer_id)
    sql += " ORDER BY i.invoice_date DESC, i.id DESC"
    with get_db() as conn:
        return [dict(r) for r in conn.execute(sql, params).fetchall()]


def create_invoice(data: dict, items: list, user_id: int = None) -> dict:
    """Standalone invoice. Consumes stock for every line."""
    lines = _validate_lines(data, items)
    with get_db() as conn:
        require_row(conn, "customers", int(data["customer_id"]))
        expanded = _expand(conn, lines)
        invoice_id = _insert_invoice(conn, data, expanded, user_id)
        _consume(conn, expanded, "sale", "invoice", invoice_id, user_id)
        invoice = _invoice_detail(conn, invoice_id)
    log.info("Invoice created: %s total %.2f", invoice["invoice_number"], invoice["total_amount"])
    return invoice


def invoice_from_challan(challan_id: int, data: dict = None, user_id: int = None) -> dict:
    """Invoice the lines of a challan. Stock was already consumed by the challan."""
    data = dict(data or {})
    with get_db() as conn:
        challan = _challan_detail(conn, challan_id)
        if challan["status"] == "cancelled":
            raise ValueError("Cannot invoice a cancelled challan")
        if challan["invoice_id"]:
            raise ValueError(f"Challan {challan['challan_number']} is already invoiced")
        data["customer_id"] = challan["customer_id"]
        data.setdefault("notes", f"From challan {challan['challan_number']}")
        lines = [{"product_id": i["product_id"], "batch_id": i["batch_id"],
                  "quantity": i["quantity"], "unit_price": i["unit_price"]}
                 for i in challan["items"]]
        invoice_id = _insert_invoice(conn, data, lines, user_id, challan_id)
        update_row(conn, "delivery_challans", challan_id, {"invoice_id": invoice_id})
        invoice = _invoice_detail(conn, invoice_id)
    log.info("Invoice %s created from challan %s",
             invoice["invoice_number"], challan["challan_number"])
    return invoice
