"""Product master: codes, names, units and default prices."""

import logging
from datetime import datetime

from anzen.core.db import get_db, insert_row, update_row, fetch_row, require_row

log = logging.getLogger("anzen.products")

EDITABLE = ("product_code", "product_name", "category", "unit",
            "default_purchase_price", "selling_price", "min_stock_level",
            "description", "is_active")


def _clean(data: dict) -> dict:
    fields = {k: data[k] for k in EDITABLE if k in data}
    for key in ("product_code", "product_name"):
        if key in fields:
            fields[key] = (fields[key] or "").strip()
            if not fields[key]:
                raise ValueError(f"{key} is required")
    for key in ("default_purchase_price", "selling_price", "min_stock_level"):
        if key in fields:
            fields[key] = float(fields[key] or 0)
            if fields[key] < 0:
                raise ValueError(f"{key} cannot be negative")
    if "is_active" in fields:
        fields["is_active"] = 1 if fields["is_active"] else 0
    return fields


def list_products(search: str = "", active_only: bool = False) -> list:
    sql = "SELECT * FROM products WHERE 1=1"
    params = []
    if search:
        sql += " AND (LOWER(product_name) LIKE ? OR LOWER(product_code) LIKE ? OR LOWER(category) LIKE ?)"
        like = f"%{search.lower()}%"
        params += [like, like, like]
    if active_only:
        sql += " AND is_active=1"
    sql += " ORDER BY product_name"
    with get_db() as conn:
        return [dict(r) for r in conn.execute(sql, params).fetchall()]


def get_product(product_id: int) -> dict:
    with get_db() as conn:
        return require_row(conn, "products", product_id)


def create_product(data: dict) -> dict:
    fields = _clean(data)
    if "product_code" not in fields or "product_name" not in fields:
        raise ValueError("product_code and product_name are required")
    fields["created_at"] = datetime.now().isoformat()
    fields.setdefault("is_active", 1)
    with get_db() as conn:
        pid = insert_row(conn, "products", fields)
        row = fetch_row(conn, "products", pid)
    log.info("Product created: %s %s", row["product_code"], row["product_name"])
    return row


def update_product(product_id: int, data: dict) -> dict:
    fields = _clean(data)
    fields["updated_at"] = datetime.now().isoformat()
    with get_db() as conn:
        require_row(conn, "products", product_id)
        update_row(conn, "products", product_id, fields)
        return fetch_row(conn, "products", product_id)


def delete_product(product_id: int) -> dict:
    """Delete a product. Products with batches are deactivated instead."""
    with get_db() as conn:
        require_row(conn, "products", product_id)
        in_use = conn.execute("SELECT COUNT(*) FROM batches WHERE product_id=?",
                              (product_id,)).fetchone()[0]
        if in_use:
            update_row(conn, "products", product_id,
                       {"is_active": 0, "updated_at": datetime.now().isoformat()})
            log.info("Product %d has %d batches; deactivated", product_id, in_use)
            return {"deleted": False, "deactivated": True}
        conn.execute("DELETE FROM products WHERE id=?", (product_id,))
    return {"deleted": True, "deactivated": False}
