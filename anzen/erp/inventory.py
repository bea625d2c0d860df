"""
anzen/erp/inventory.py: Batches, stock levels and stock movements.

Stock is held per batch (`batches.current_stock`). Every change to it goes
through `_move()`, which also writes the matching inventory_transactions row,
so the ledger and the batch balances cannot drift apart.

Functions whose name starts with an underscore take an open connection and
are meant to run inside a caller's transaction (GRN posting, challans,
invoices). The public wrappers open their own.
"""

import logging
from datetime import datetime, date, timedelta

from anzen.core.db import (get_db, insert_row, update_row, fetch_row,
                           require_row, get_setting)

log = logging.getLogger("anzen.inventory")

TRANSACTION_TYPES = ("purchase", "sale", "delivery", "adjustment", "return")


# ── Movements ─────────────────────────────────────────────────────────────────

def _move(conn, batch_id: int, delta: float, transaction_type: str,
          reference_type: str = None, reference_id: int = None,
          notes: str = None, user_id: int = None) -> dict:
    if transaction_type not in TRANSACTION_TYPES:
        raise ValueError(f"Unknown transaction type: {transaction_type}")
    batch = require_row(conn, "batches", batch_id)
    new_stock = round(batch["current_stock"] + delta, 4)
    if new_stock < 0:
        raise ValueError(
            f"Insufficient stock in batch {batch['batch_number']}: "
            f"have {batch['current_stock']}, need {-delta}")
    conn.execute("UPDATE batches SET current_stock=? WHERE id=?", (new_stock, batch_id))
    insert_row(conn, "inventory_transactions", {
        "product_id": batch["product_id"],
        "batch_id": batch_id,
        "transaction_type": transaction_type,
        "quantity": delta,
        "reference_type": reference_type,
        "reference_id": reference_id,
        "notes": notes,
        "created_by": user_id,
        "created_at": datetime.now().isoformat(),
    })
    return {"batch_id": batch_id, "batch_number": batch["batch_number"],
            "current_stock": new_stock}


def adjust_stock(batch_id: int, delta: float, reason: str = "", user_id: int = None) -> dict:
    """Manual stock correction. Never takes a batch below zero."""
    delta = float(delta)
    if delta == 0:
        raise ValueError("Adjustment quantity cannot be zero")
    with get_db() as conn:
        result = _move(conn, batch_id, delta, "adjustment", "manual", None,
                       reason or "Manual adjustment", user_id)
    log.info("Stock adjusted: batch %s %+g (%s)", result["batch_number"], delta, reason)
    return result


# ── Batches ───────────────────────────────────────────────────────────────────

def list_batches(product_id: int = None, include_empty: bool = False,
                 expiring_within: int = None) -> list:
    sql = ("SELECT b.*, p.product_name, p.product_code, p.unit "
           "FROM batches b JOIN products p ON p.id = b.product_id WHERE 1=1")
    params = []
    if product_id:
        sql += " AND b.product_id=?"
        params.append(product_id)
    if not include_empty:
        sql += " AND b.current_stock > 0"
    if expiring_within is not None:
        cutoff = (date.today() + timedelta(days=int(expiring_within))).isoformat()
        sql += " AND b.expiry_date IS NOT NULL AND b.expiry_date <= ?"
        params.append(cutoff)
    sql += " ORDER BY b.expiry_date IS NULL, b.expiry_date, b.id"
    with get_db() as conn:
        return [dict(r) for r in conn.execute(sql, params).fetchall()]


def _create_batch(conn, product_id: int, batch_number: str, quantity: float,
                  unit_cost: float = 0, expiry_date: str = None,
                  manufacture_date: str = None, grn_id: int = None,
                  user_id: int = None, transaction_type: str = "adjustment",
                  notes: str = None) -> int:
    require_row(conn, "products", product_id)
    batch_number = (batch_number or "").strip()
    if not batch_number:
        raise ValueError("Batch number is required")
    if quantity < 0:
        raise ValueError("Quantity cannot be negative")
    batch_id = insert_row(conn, "batches", {
        "product_id": product_id,
        "batch_number": batch_number,
        "grn_id": grn_id,
        "quantity_received": quantity,
        "current_stock": 0,
        "unit_cost": unit_cost or 0,
        "manufacture_date": manufacture_date or None,
        "expiry_date": expiry_date or None,
        "created_at": datetime.now().isoformat(),
    })
    if quantity:
        _move(conn, batch_id, quantity, transaction_type,
              "grn" if grn_id else "batch", grn_id or batch_id, notes, user_id)
    return batch_id


def create_batch(data: dict, user_id: int = None) -> dict:
    """Opening-stock batch entered by hand (GRN posting creates the others)."""
    if not data.get("product_id"):
        raise ValueError("product_id is required")
    with get_db() as conn:
        batch_id = _create_batch(
            conn, int(data["product_id"]), data.get("batch_number"),
            float(data.get("quantity") or data.get("quantity_received") or 0),
            float(data.get("unit_cost") or 0), data.get("expiry_date"),
            data.get("manufacture_date"), None, user_id, "adjustment",
            "Opening stock")
        return fetch_row(conn, "batches", batch_id)


def update_batch(batch_id: int, data: dict) -> dict:
    """Edit batch metadata. Stock only changes through adjust_stock()."""
    allowed = ("batch_number", "expiry_date", "manufacture_date", "unit_cost")
    fields = {k: (data[k] or None) for k in allowed if k in data}
    if "unit_cost" in fields:
        fields["unit_cost"] = float(fields["unit_cost"] or 0)
    with get_db() as conn:
        require_row(conn, "batches", batch_id)
        update_row(conn, "batches", batch_id, fields)
        return fetch_row(conn, "batches", batch_id)


# ── Stock levels ──────────────────────────────────────────────────────────────

def stock_levels(search: str = "") -> list:
    """Current stock per active product with a low-stock flag."""
    sql = """
        SELECT p.id AS product_id, p.product_code, p.product_name, p.unit,
               p.min_stock_level,
               COALESCE(SUM(b.current_stock), 0) AS total_stock,
               COUNT(CASE WHEN b.current_stock > 0 THEN 1 END) AS batch_count,
               MIN(CASE WHEN b.current_stock > 0 THEN b.expiry_date END) AS nearest_expiry
        FROM products p LEFT JOIN batches b ON b.product_id = p.id
        WHERE p.is_active = 1
    """
    params = []
    if search:
        sql += " AND (LOWER(p.product_name) LIKE ? OR LOWER(p.product_code) LIKE ?)"
        params += [f"%{search.lower()}%"] * 2
    sql += " GROUP BY p.id ORDER BY p.product_name"
    with get_db() as conn:
        rows = [dict(r) for r in conn.execute(sql, params).fetchall()]
    for r in rows:
        r["low_stock"] = r["total_stock"] <= (r["min_stock_level"] or 0)
    return rows


def expiry_warning_days() -> int:
    try:
        return int(float(get_setting("expiry_warning_days", "90")))
    except ValueError:
        return 90


# ── FEFO picking ──────────────────────────────────────────────────────────────

def _allocate_fefo(conn, product_id: int, quantity: float, taken: dict = None) -> list:
    """taken: {batch_id: qty} already planned by earlier lines of the same document."""
    taken = taken if taken is not None else {}
    quantity = float(quantity)
    if quantity <= 0:
        raise ValueError("Quantity must be positive")
    today = date.today().isoformat()
    rows = conn.execute(
        "SELECT id, batch_number, current_stock, expiry_date FROM batches "
        "WHERE product_id=? AND current_stock > 0 "
        "AND (expiry_date IS NULL OR expiry_date >= ?) "
        "ORDER BY expiry_date IS NULL, expiry_date, id",
        (product_id, today)).fetchall()
    plan, remaining = [], quantity
    for r in rows:
        if remaining <= 0:
            break
        free = round(r["current_stock"] - taken.get(r["id"], 0), 4)
        if free <= 0:
            continue
        take = min(remaining, free)
        plan.append({"batch_id": r["id"], "batch_number": r["batch_number"],
                     "expiry_date": r["expiry_date"], "quantity": take})
        remaining = round(remaining - take, 4)
    if remaining > 0:
        available = quantity - remaining
        raise ValueError(
            f"Insufficient stock for product {product_id}: "
            f"requested {quantity}, available {available}")
    for a in plan:
        taken[a["batch_id"]] = taken.get(a["batch_id"], 0) + a["quantity"]
    return plan


def allocate_fefo(product_id: int, quantity: float) -> list:
    """First-expiry-first-out picking plan. Expired batches are never picked."""
    with get_db() as conn:
        return _allocate_fefo(conn, product_id, quantity)


def _consume(conn, allocations: list, transaction_type: str, reference_type: str,
             reference_id: int, user_id: int = None) -> list:
    return [_move(conn, a["batch_id"], -float(a["quantity"]), transaction_type,
                  reference_type, reference_id, None, user_id)
            for a in allocations]


def consume(allocations: list, transaction_type: str, reference_type: str,
            reference_id: int, user_id: int = None) -> list:
    with get_db() as conn:
        return _consume(conn, allocations, transaction_type, reference_type,
                        reference_id, user_id)


def _pick(conn, product_id: int, quantity: float, batch_id: int = None,
          taken: dict = None) -> list:
    """Allocation for one document line: the named batch, or FEFO.

    Pass the same ``taken`` dict for every line of a document so later lines
    only see stock that earlier lines have not claimed.
    """
    taken = taken if taken is not None else {}
    if batch_id:
        batch = require_row(conn, "batches", batch_id)
        if batch["product_id"] != product_id:
            raise ValueError(f"Batch {batch['batch_number']} is not for product {product_id}")
        taken[batch_id] = taken.get(batch_id, 0) + float(quantity)
        return [{"batch_id": batch_id, "batch_number": batch["batch_number"],
                 "expiry_date": batch["expiry_date"], "quantity": float(quantity)}]
    return _allocate_fefo(conn, product_id, quantity, taken)


def list_transactions(product_id: int = None, batch_id: int = None,
                      transaction_type: str = None, limit: int = 200) -> list:
    sql = ("SELECT t.*, p.product_name, b.batch_number FROM inventory_transactions t "
           "JOIN products p ON p.id = t.product_id "
           "LEFT JOIN batches b ON b.id = t.batch_id WHERE 1=1")
    params = []
    if product_id:
        sql += " AND t.product_id=?"
        params.append(product_id)
    if batch_id:
        sql += " AND t.batch_id=?"
        params.append(batch_id)
    if transaction_type:
        sql += " AND t.transaction_type=?"
        params.append(transaction_type)
    sql += " ORDER BY t.id DESC LIMIT ?"
    params.append(int(limit))
    with get_db() as conn:
        return [dict(r) for r in conn.execute(sql, params).fetchall()]
