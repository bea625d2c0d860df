"""Finance ledger: invoice payments, expenses and the period summary."""

import logging
from datetime import datetime, date

from anzen.core.db import get_db, insert_row, update_row, fetch_row

log = logging.getLogger("anzen.finance")

ENTRY_TYPES = ("income", "expense", "payable")


def record_payment(invoice_id: int, amount: float, payment_date: str = None,
                   method: str = "", notes: str = "", user_id: int = None) -> dict:
    """Apply a customer payment. Cannot exceed the outstanding balance."""
    amount = round(float(amount), 2)
    if amount <= 0:
        raise ValueError("Payment amount must be positive")
    with get_db() as conn:
        invoice = fetch_row(conn, "sales_invoices", invoice_id)
        if invoice is None:
            raise LookupError(f"Invoice {invoice_id} not found")
        balance = round(invoice["total_amount"] - invoice["paid_amount"], 2)
        if amount > balance:
            raise ValueError(f"Payment {amount} exceeds outstanding balance {balance}")
        paid = round(invoice["paid_amount"] + amount, 2)
        status = "paid" if paid >= round(invoice["total_amount"], 2) else "partial"
        update_row(conn, "sales_invoices", invoice_id,
                   {"paid_amount": paid, "payment_status": status})
        desc = f"Payment for {invoice['invoice_number']}"
        if method:
            desc += f" ({method})"
        if notes:
            desc += f": {notes}"
        entry_id = insert_row(conn, "finance_entries", {
            "entry_date": payment_date or date.today().isoformat(),
            "entry_type": "income",
            "category": "sales",
            "amount": amount,
            "description": desc,
            "reference_type": "invoice",
            "reference_id": invoice_id,
            "created_by": user_id,
            "created_at": datetime.now().isoformat(),
        })
    log.info("Payment %.2f on %s → %s", amount, invoice["invoice_number"], status)
    return {"invoice_id": invoice_id, "paid_amount": paid, "payment_status": status,
            "balance": round(invoice["total_amount"] - paid, 2), "entry_id": entry_id}


def record_expense(data: dict, user_id: int = None) -> dict:
    amount = float(data.get("amount") or 0)
    if amount <= 0:
        raise ValueError("Expense amount must be positive")
    if not (data.get("category") or "").strip():
        raise ValueError("Expense category is required")
    with get_db() as conn:
        entry_id = insert_row(conn, "finance_entries", {
            "entry_date": data.get("entry_date") or date.today().isoformat(),
            "entry_type": "expense",
            "category": data["category"].strip(),
            "amount": amount,
            "description": data.get("description"),
            "reference_type": data.get("reference_type"),
            "reference_id": data.get("reference_id"),
            "created_by": user_id,
            "created_at": datetime.now().isoformat(),
        })
        return fetch_row(conn, "finance_entries", entry_id)


def list_entries(start: str = None, end: str = None, entry_type: str = None) -> list:
    sql = "SELECT * FROM finance_entries WHERE 1=1"
    params = []
    if start:
        sql += " AND entry_date >= ?"
        params.append(start)
    if end:
        sql += " AND entry_date <= ?"
        params.append(end)
    if entry_type:
        if entry_type not in ENTRY_TYPES:
            raise ValueError(f"Invalid entry type: {entry_type}")
        sql += " AND entry_type=?"
        params.append(entry_type)
    sql += " ORDER BY entry_date DESC, id DESC"
    with get_db() as conn:
        return [dict(r) for r in conn.execute(sql, params).fetchall()]


def summary(start: str = None, end: str = None) -> dict:
    """Income, expense and net for the period; receivables and payables as of now.

    Payables are GRN payables less expenses booked against a GRN.
    """
    totals = {t: 0.0 for t in ENTRY_TYPES}
    for entry in list_entries(start, end):
        totals[entry["entry_type"]] += entry["amount"]
    with get_db() as conn:
        receivables = conn.execute(
            "SELECT COALESCE(SUM(total_amount - paid_amount), 0) FROM sales_invoices "
            "WHERE payment_status != 'paid'").fetchone()[0]
        payable = conn.execute(
            "SELECT COALESCE(SUM(amount), 0) FROM finance_entries "
            "WHERE entry_type='payable'").fetchone()[0]
        settled = conn.execute(
            "SELECT COALESCE(SUM(amount), 0) FROM finance_entries "
            "WHERE entry_type='expense' AND reference_type='grn'").fetchone()[0]
    return {
        "income": round(totals["income"], 2),
        "expense": round(totals["expense"], 2),
        "net": round(totals["income"] - totals["expense"], 2),
        "receivables": round(receivables, 2),
        "payables": round(max(payable - settled, 0), 2),
    }
