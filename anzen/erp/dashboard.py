"""
anzen/erp/dashboard.py: Home-page KPIs and the notification checks run after login.
"""

import logging
from datetime import date, timedelta

from anzen.core.db import get_db
from anzen.erp.inventory import stock_levels, expiry_warning_days

log = logging.getLogger("anzen.dashboard")


def summary() -> dict:
    today = date.today()
    cutoff = (today + timedelta(days=expiry_warning_days())).isoformat()
    levels = stock_levels()
    with get_db() as conn:
        expiring = conn.execute(
            "SELECT COUNT(*) FROM batches WHERE current_stock > 0 "
            "AND expiry_date IS NOT NULL AND expiry_date <= ?", (cutoff,)).fetchone()[0]
        open_inquiries = conn.execute(
            "SELECT COUNT(*) FROM crm_inquiries WHERE status NOT IN ('won','lost')"
        ).fetchone()[0]
        receivables = conn.execute(
            "SELECT COALESCE(SUM(total_amount - paid_amount), 0) FROM sales_invoices "
            "WHERE payment_status != 'paid'").fetchone()[0]
        unprocessed = conn.execute(
            "SELECT COUNT(*) FROM crm_email_inbox WHERE is_processed = 0").fetchone()[0]
        month_sales = conn.execute(
            "SELECT COALESCE(SUM(total_amount), 0) FROM sales_invoices WHERE invoice_date >= ?",
            (today.replace(day=1).isoformat(),)).fetchone()[0]
    return {
        "products": len(levels),
        "low_stock": sum(1 for r in levels if r["low_stock"]),
        "expiring_batches": expiring,
        "open_inquiries": open_inquiries,
        "receivables": round(receivables, 2),
        "unprocessed_emails": unprocessed,
        "sales_this_month": round(month_sales, 2),
    }


def notifications(user: dict = None) -> list:
    """Low stock, batches inside the expiry window, reminders due today or overdue."""
    today = date.today()
    items = []
    for row in stock_levels():
        if row["low_stock"]:
            items.append({
                "type": "low_stock", "severity": "warning",
                "title": f"Low stock: {row['product_name']}",
                "detail": f"{row['total_stock']:g} {row['unit'] or ''} (min {row['min_stock_level']:g})".strip(),
                "product_id": row["product_id"],
            })
    cutoff = (today + timedelta(days=expiry_warning_days())).isoformat()
    with get_db() as conn:
        batches = conn.execute(
            "SELECT b.id, b.batch_number, b.expiry_date, b.current_stock, p.product_name "
            "FROM batches b JOIN products p ON p.id = b.product_id "
            "WHERE b.current_stock > 0 AND b.expiry_date IS NOT NULL AND b.expiry_date <= ? "
            "ORDER BY b.expiry_date", (cutoff,)).fetchall()
        sql = ("SELECT r.*, i.inquiry_number FROM crm_reminders r "
               "LEFT JOIN crm_inquiries i ON i.id = r.inquiry_id "
               "WHERE r.is_completed = 0 AND r.due_date <= ?")
        params = [today.isoformat() + "T23:59:59"]
        if user and user.get("role") != "admin":
            sql += " AND (r.assigned_to IS NULL OR r.assigned_to = ? OR r.created_by = ?)"
            params += [user["id"], user["id"]]
        reminders = conn.execute(sql + " ORDER BY r.due_date", params).fetchall()
    for b in batches:
        expired = b["expiry_date"] < today.isoformat()
        items.append({
            "type": "expired" if expired else "expiring", "severity": "error" if expired else "warning",
            "title": f"{'Expired' if expired else 'Expiring'}: {b['product_name']} {b['batch_number']}",
            "detail": f"Expiry {b['expiry_date']}, {b['current_stock']:g} in stock",
            "batch_id": b["id"],
        })
    for r in reminders:
        overdue = r["due_date"][:10] < today.isoformat()
        items.append({
            "type": "reminder", "severity": "error" if overdue else "info",
            "title": r["title"],
            "detail": f"{'Overdue' if overdue else 'Due today'}"
                      + (f" · {r['inquiry_number']}" if r["inquiry_number"] else ""),
            "reminder_id": r["id"],
        })
    log.debug("Notifications: %d", len(items))
    return items
