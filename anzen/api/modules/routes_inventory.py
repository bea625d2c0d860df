# routes_inventory.py
# Products, stock levels, batches, the inventory ledger and customers.
# Reads are open to any signed-in user (sales and challan forms need the
# product and customer lists); writes need the page's role.

from flask import request, jsonify

from anzen.api.dashboard import bp, body, user_id
from anzen.core.auth import auth_required, page_required
from anzen.erp import products, inventory, customers


def _flag(name: str) -> bool:
    return request.args.get(name, "").lower() in ("1", "true", "yes")


# ═══════════════════════════════════════════════════════════════════════════════
# PRODUCTS
# ═══════════════════════════════════════════════════════════════════════════════

@bp.route("/api/products")
@auth_required
def api_products():
    """?q=search&active=true"""
    rows = products.list_products(request.args.get("q", ""), _flag("active"))
    return jsonify({"ok": True, "products": rows, "count": len(rows)})


@bp.route("/api/products", methods=["POST"])
@page_required("products")
def api_products_create():
    return jsonify({"ok": True, "product": products.create_product(body())}), 201


@bp.route("/api/products/<int:pid>")
@auth_required
def api_product(pid):
    return jsonify({"ok": True, "product": products.get_product(pid)})


@bp.route("/api/products/<int:pid>", methods=["PATCH"])
@page_required("products")
def api_product_update(pid):
    return jsonify({"ok": True, "product": products.update_product(pid, body())})


@bp.route("/api/products/<int:pid>", methods=["DELETE"])
@page_required("products")
def api_product_delete(pid):
    """Products that have batches are deactivated instead of deleted."""
    return jsonify({"ok": True, **products.delete_product(pid)})


# ═══════════════════════════════════════════════════════════════════════════════
# STOCK / BATCHES
# ═══════════════════════════════════════════════════════════════════════════════

@bp.route("/api/stock")
@page_required("stock")
def api_stock():
    rows = inventory.stock_levels(request.args.get("q", ""))
    return jsonify({"ok": True, "stock": rows,
                    "low_stock": sum(1 for r in rows if r["low_stock"])})


@bp.route("/api/stock/<int:pid>/allocate")
@auth_required
def api_stock_allocate(pid):
    """FEFO picking plan preview: ?qty=25"""
    qty = float(request.args.get("qty", 0) or 0)
    if qty <= 0:
        raise ValueError("qty must be positive")
    return jsonify({"ok": True, "allocations": inventory.allocate_fefo(pid, qty)})


@bp.route("/api/batches")
@auth_required
def api_batches():
    """?product_id=&include_empty=true&expiring_within=90"""
    expiring = request.args.get("expiring_within")
    rows = inventory.list_batches(
        request.args.get("product_id", type=int),
        _flag("include_empty"),
        int(expiring) if expiring not in (None, "") else None)
    return jsonify({"ok": True, "batches": rows, "count": len(rows)})


@bp.route("/api/batches", methods=["POST"])
@page_required("batches")
def api_batches_create():
    return jsonify({"ok": True, "batch": inventory.create_batch(body(), user_id())}), 201


@bp.route("/api/batches/<int:bid>", methods=["PATCH"])
@page_required("batches")
def api_batch_update(bid):
    return jsonify({"ok": True, "batch": inventory.update_batch(bid, body())})


@bp.route("/api/batches/<int:bid>/adjust", methods=["POST"])
@page_required("inventory")
def api_batch_adjust(bid):
    """POST {delta, reason}: positive adds stock, negative removes it."""
    data = body()
    if data.get("delta") in (None, ""):
        raise ValueError("delta is required")
    result = inventory.adjust_stock(bid, data["delta"], data.get("reason", ""), user_id())
    return jsonify({"ok": True, **result})


@bp.route("/api/inventory/transactions")
@page_required("inventory")
def api_inventory_transactions():
    rows = inventory.list_transactions(
        request.args.get("product_id", type=int),
        request.args.get("batch_id", type=int),
        request.args.get("type") or None,
        min(request.args.get("limit", 200, type=int), 1000))
    return jsonify({"ok": True, "transactions": rows})


# ═══════════════════════════════════════════════════════════════════════════════
# CUSTOMERS
# ═══════════════════════════════════════════════════════════════════════════════

@bp.route("/api/customers")
@auth_required
def api_customers():
    rows = customers.list_customers(request.args.get("q", ""), _flag("active"))
    return jsonify({"ok": True, "customers": rows, "count": len(rows)})


@bp.route("/api/customers", methods=["POST"])
@page_required("customers")
def api_customers_create():
    return jsonify({"ok": True, "customer": customers.create_customer(body())}), 201


@bp.route("/api/customers/<int:cid>")
@auth_required
def api_customer(cid):
    return jsonify({"ok": True, "customer": customers.get_customer(cid)})


@bp.route("/api/customers/<int:cid>", methods=["PATCH"])
@page_required("customers")
def api_customer_update(cid):
    return jsonify({"ok": True, "customer": customers.update_customer(cid, body())})


@bp.route("/api/customers/<int:cid>", methods=["DELETE"])
@page_required("customers")
def api_customer_delete(cid):
    return jsonify({"ok": True, **customers.delete_customer(cid)})
