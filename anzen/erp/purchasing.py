"""
anzen/erp/purchasing.py: Suppliers, purchase orders and Goods Receipt Notes.

GRN lifecycle:
  create_grn()  → status 'draft' (header + lines, nothing touches stock)
  post_grn()    → status 'posted': one batch per line, purchase stock
                  movements, PO received quantities, accounts-payable entry.
                  Posting is final; posted GRNs cannot be edited or deleted.
  delete_grn()  → drafts only
"""

import logging
from datetime import datetime, date

from anzen.core.db import (get_db, insert_row, update_row, fetch_row, require_row,
                           next_number, get_tax_rate, get_setting)
from anzen.erp.inventory import _create_batch

log = logging.getLogger("anzen.purchasing")

GRN_STATUSES = ("draft", "posted")


# ── Suppliers ─────────────────────────────────────────────────────────────────

def list_suppliers(search: str = "", active_only: bool = True) -> list:
    sql = "SELECT * FROM suppliers WHERE 1=1"
    params = []
    if active_only:
        sql += " AND is_active=1"
    if search:
        sql += " AND LOWER(company_name) LIKE ?"
        params.append(f"%{search.lower()}%")
    sql += " ORDER BY company_name"
    with get_db() as conn:
        return [dict(r) for r in conn.execute(sql, params).fetchall()]


def create_supplier(data: dict) -> dict:
    name = (data.get("company_name") or "").strip()
    if not name:
        raise ValueError("company_name is required")
    with get_db() as conn:
        sid = insert_row(conn, "suppliers", {
            "company_name": name,
            "contact_person": data.get("contact_person"),
            "phone": data.get("phone"),
            "email": data.get("email"),
            "country": data.get("country"),
            "address": data.get("address"),
            "is_active": 1,
            "created_at": datetime.now().isoformat(),
        })
        return fetch_row(conn, "suppliers", sid)


# ── Purchase orders ───────────────────────────────────────────────────────────

def _po_items(conn, po_id: int) -> list:
    rows = conn.execute(
        "SELECT i.*, p.product_name, p.product_code FROM purchase_order_items i "
        "JOIN products p ON p.id = i.product_id WHERE i.po_id=? ORDER BY i.id",
        (po_id,)).fetchall()
    return [dict(r) for r in rows]


def list_purchase_orders(status: str = "approved", supplier_id: int = None) -> list:
    sql = ("SELECT po.*, s.company_name AS supplier_name FROM purchase_orders po "
           "JOIN suppliers s ON s.id = po.supplier_id WHERE 1=1")
    params = []
    if status and status != "all":
        sql += " AND po.status=?"
        params.append(status)
    if supplier_id:
        sql += " AND po.supplier_id=?"
        params.append(supplier_id)
    sql += " ORDER BY po.po_date DESC, po.id DESC"
    with get_db() as conn:
        orders = [dict(r) for r in conn.execute(sql, params).fetchall()]
        for po in orders:
            po["items"] = _po_items(conn, po["id"])
    return orders


def create_purchase_order(data: dict, items: list) -> dict:
    if not data.get("supplier_id"):
        raise ValueError("Please select a supplier")
    lines = [i for i in (items or []) if i.get("product_id")]
    if not lines:
        raise ValueError("Please add at least one product")
    with get_db() as conn:
        require_row(conn, "suppliers", int(data["supplier_id"]))
        po_number = data.get("po_number") or next_number(
            conn, "purchase_orders", "po_number", "PO")
        po_id = insert_row(conn, "purchase_orders", {
            "po_number": po_number,
            "supplier_id": int(data["supplier_id"]),
            "po_date": data.get("po_date") or date.today().isoformat(),
            "status": data.get("status") or "approved",
            "currency": data.get("currency") or get_setting("default_currency", "IDR"),
            "notes": data.get("notes"),
            "created_at": datetime.now().isoformat(),
        })
        for line in lines:
            qty = float(line.get("quantity") or 0)
            if qty <= 0:
                raise ValueError("PO line quantity must be positive")
            insert_row(conn, "purchase_order_items", {
                "po_id": po_id,
                "product_id": int(line["product_id"]),
                "description": line.get("description"),
                "quantity": qty,
                "quantity_received": 0,
                "unit": line.get("unit"),
                "unit_price": float(line.get("unit_price") or 0),
            })
        po = fetch_row(conn, "purchase_orders", po_id)
        po["items"] = _po_items(conn, po_id)
    log.info("PO created: %s (%d lines)", po_number, len(lines))
    return po


def po_prefill(po_id: int) -> list:
    """GRN lines for the outstanding quantity of each PO item."""
    with get_db() as conn:
        require_row(conn, "purchase_orders", po_id)
        items = _po_items(conn, po_id)
    lines = []
    for item in items:
        outstanding = item["quantity"] - (item["quantity_received"] or 0)
        if outstanding <= 0:
            continue
        lines.append({
            "line_number": len(lines) + 1,
            "po_item_id": item["id"],
            "product_id": item["product_id"],
            "description": item["product_name"] or item["description"],
            "quantity_received": outstanding,
            "unit": item["unit"],
            "unit_cost": item["unit_price"],
            "line_total": outstanding * item["unit_price"],
            "batch_number": "",
            "expiry_date": "",
            "manufacture_date": "",
        })
    return lines


# ── GRN ───────────────────────────────────────────────────────────────────────

def calculate_totals(items: list, tax_rate: float = None) -> dict:
    """Line total = quantity received × unit cost; PPN on the subtotal."""
    if tax_rate is None:
        tax_rate = get_tax_rate()
    subtotal = 0.0
    total_qty = 0.0
    for item in items:
        qty = float(item.get("quantity_received") or 0)
        cost = float(item.get("unit_cost") or 0)
        item["line_total"] = qty * cost
        subtotal += item["line_total"]
        total_qty += qty
    tax = subtotal * tax_rate
    return {"subtotal": subtotal, "tax": tax, "total": subtotal + tax,
            "total_quantity": total_qty}


def _grn_detail(conn, grn_id: int) -> dict:
    grn = conn.execute(
        "SELECT g.*, s.company_name AS supplier_name, s.contact_person AS supplier_contact, "
        "s.phone AS supplier_phone FROM goods_receipt_notes g "
        "JOIN suppliers s ON s.id = g.supplier_id WHERE g.id=?", (grn_id,)).fetchone()
    if grn is None:
        raise LookupError(f"GRN {grn_id} not found")
    grn = dict(grn)
    grn["items"] = [dict(r) for r in conn.execute(
        "SELECT i.*, p.product_name, p.product_code, p.unit AS product_unit "
        "FROM goods_receipt_items i JOIN products p ON p.id = i.product_id "
        "WHERE i.grn_id=? ORDER BY i.line_number", (grn_id,)).fetchall()]
    return grn


def get_grn(grn_id: int) -> dict:
    with get_db() as conn:
        return _grn_detail(conn, grn_id)


def list_grns(search: str = "", status: str = "all") -> list:
    sql = ("SELECT g.*, s.company_name AS supplier_name FROM goods_receipt_notes g "
           "JOIN suppliers s ON s.id = g.supplier_id WHERE 1=1")
    params = []
    if search:
        like = f"%{search.lower()}%"
        sql += (" AND (LOWER(g.grn_number) LIKE ? OR LOWER(COALESCE(g.po_number,'')) LIKE ?"
                " OR LOWER(s.company_name) LIKE ?)")
        params += [like, like, like]
    if status and status != "all":
        if status not in GRN_STATUSES:
            raise ValueError(f"Invalid status filter: {status}")
        sql += " AND g.status=?"
        params.append(status)
    sql += " ORDER BY g.created_at DESC, g.id DESC"
    with get_db() as conn:
        return [dict(r) for r in conn.execute(sql, params).fetchall()]


def create_grn(data: dict, items: list, user_id: int = None) -> dict:
    if not data.get("supplier_id"):
        raise ValueError("Please select a supplier")
    lines = [dict(i) for i in (items or []) if i.get("product_id")]
    if not lines:
        raise ValueError("Please add at least one product")
    for line in lines:
        if float(line.get("quantity_received") or 0) < 0:
            raise ValueError("Quantity received cannot be negative")
    totals = calculate_totals(lines)

    with get_db() as conn:
        require_row(conn, "suppliers", int(data["supplier_id"]))
        po_number = data.get("po_number")
        po_id = data.get("po_id") or None
        if po_id:
            po = require_row(conn, "purchase_orders", int(po_id))
            po_number = po["po_number"]
        grn_number = next_number(conn, "goods_receipt_notes", "grn_number", "GRN")
        grn_id = insert_row(conn, "goods_receipt_notes", {
            "grn_number": grn_number,
            "grn_date": data.get("grn_date") or date.today().isoformat(),
            "supplier_id": int(data["supplier_id"]),
            "po_id": po_id,
            "po_number": po_number,
            "supplier_invoice_number": data.get("supplier_invoice_number"),
            "supplier_invoice_date": data.get("supplier_invoice_date") or None,
            "delivery_note_number": data.get("delivery_note_number"),
            "received_by": data.get("received_by"),
            "currency": data.get("currency") or get_setting("default_currency", "IDR"),
            "exchange_rate": float(data.get("exchange_rate") or 1),
            "total_quantity": totals["total_quantity"],
            "subtotal": totals["subtotal"],
            "tax_amount": totals["tax"],
            "total_amount": totals["total"],
            "status": "draft",
            "notes": data.get("notes"),
            "created_by": user_id,
            "created_at": datetime.now().isoformat(),
        })
        for n, line in enumerate(lines, start=1):
            insert_row(conn, "goods_receipt_items", {
                "grn_id": grn_id,
                "line_number": n,
                "po_item_id": line.get("po_item_id") or None,
                "product_id": int(line["product_id"]),
                "batch_number": line.get("batch_number") or None,
                "expiry_date": line.get("expiry_date") or None,
                "manufacture_date": line.get("manufacture_date") or None,
                "description": line.get("description"),
                "quantity_received": float(line.get("quantity_received") or 0),
                "unit": line.get("unit"),
                "unit_cost": float(line.get("unit_cost") or 0),
                "line_total": line["line_total"],
                "notes": line.get("notes"),
            })
        grn = _grn_detail(conn, grn_id)
    log.info("GRN created: %s (%d lines, total %.2f)", grn_number, len(lines),
             totals["total"], extra={"grn_number": grn_number})
    return grn


def post_grn(grn_id: int, user_id: int = None) -> dict:
    """Post a draft GRN: batches, stock, PO progress and payable. Irreversible."""
    with get_db() as conn:
        grn = _grn_detail(conn, grn_id)
        if grn["status"] != "draft":
            raise ValueError(f"GRN {grn['grn_number']} is already {grn['status']}")
        rate = grn["exchange_rate"] or 1
        batch_ids = []
        for item in grn["items"]:
            batch_number = item["batch_number"] or f"{grn['grn_number']}-{item['line_number']:02d}"
            batch_id = _create_batch(
                conn, item["product_id"], batch_number, item["quantity_received"],
                item["unit_cost"] * rate, item["expiry_date"], item["manufacture_date"],
                grn_id, user_id, "purchase", f"GRN {grn['grn_number']}")
            batch_ids.append(batch_id)
            if item["po_item_id"]:
                conn.execute(
                    "UPDATE purchase_order_items SET quantity_received = quantity_received + ? "
                    "WHERE id=?", (item["quantity_received"], item["po_item_id"]))
        if grn["po_id"]:
            open_lines = conn.execute(
                "SELECT COUNT(*) FROM purchase_order_items "
                "WHERE po_id=? AND quantity_received < quantity", (grn["po_id"],)).fetchone()[0]
            if open_lines == 0:
                update_row(conn, "purchase_orders", grn["po_id"], {"status": "closed"})
        insert_row(conn, "finance_entries", {
            "entry_date": grn["grn_date"],
            "entry_type": "payable",
            "category": "purchase",
            "amount": grn["total_amount"] * rate,
            "description": f"GRN {grn['grn_number']} from {grn['supplier_name']}",
            "reference_type": "grn",
            "reference_id": grn_id,
            "created_by": user_id,
            "created_at": datetime.now().isoformat(),
        })
        update_row(conn, "goods_receipt_notes", grn_id,
                   {"status": "posted", "posted_at": datetime.now().isoformat()})
        grn = _grn_detail(conn, grn_id)
    log.info("GRN posted: %s, %d batches created", grn["grn_number"], len(batch_ids),
             extra={"grn_number": grn["grn_number"]})
    grn["batch_ids"] = batch_ids
    return grn


def delete_grn(grn_id: int) -> dict:
    with get_db() as conn:
        grn = require_row(conn, "goods_receipt_notes", grn_id)
        if grn["status"] != "draft":
            raise ValueError("Only draft GRNs can be deleted")
        conn.execute("DELETE FROM goods_receipt_notes WHERE id=?", (grn_id,))
    log.info("GRN deleted: %s", grn["grn_number"], extra={"grn_number": grn["grn_number"]})
    return {"deleted": True, "grn_number": grn["grn_number"]}
