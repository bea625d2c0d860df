# routes_purchasing.py
# Suppliers, purchase orders and Goods Receipt Notes (GRN).

import os
import logging

from flask import request, jsonify, send_file

from anzen.api.dashboard import bp, body, user_id
from anzen.core.auth import page_required
from anzen.erp import purchasing
from anzen.forms.documents import generate_grn_pdf

log = logging.getLogger("anzen.routes.purchasing")

GRN_PAGE = "goods-receipt-notes"


# ═══════════════════════════════════════════════════════════════════════════════
# SUPPLIERS / PURCHASE ORDERS
# ═══════════════════════════════════════════════════════════════════════════════

@bp.route("/api/suppliers")
@page_required(GRN_PAGE)
def api_suppliers():
    rows = purchasing.list_suppliers(request.args.get("q", ""),
                                     request.args.get("all", "") != "true")
    return jsonify({"ok": True, "suppliers": rows})


@bp.route("/api/suppliers", methods=["POST"])
@page_required(GRN_PAGE)
def api_suppliers_create():
    return jsonify({"ok": True, "supplier": purchasing.create_supplier(body())}), 201


@bp.route("/api/purchase-orders")
@page_required(GRN_PAGE)
def api_purchase_orders():
    """Approved POs with items (GRN form dropdown). ?status=all&supplier_id="""
    rows = purchasing.list_purchase_orders(request.args.get("status", "approved"),
                                           request.args.get("supplier_id", type=int))
    return jsonify({"ok": True, "purchase_orders": rows})


@bp.route("/api/purchase-orders", methods=["POST"])
@page_required(GRN_PAGE)
def api_purchase_orders_create():
    """POST {supplier_id, po_date?, currency?, items: [{product_id, quantity, unit_price}]}"""
    data = body()
    po = purchasing.create_purchase_order(data, data.get("items") or [])
    return jsonify({"ok": True, "purchase_order": po}), 201


@bp.route("/api/purchase-orders/<int:po_id>/grn-lines")
@page_required(GRN_PAGE)
def api_po_grn_lines(po_id):
    """GRN lines prefilled from the PO's outstanding quantities."""
    lines = purchasing.po_prefill(po_id)
    return jsonify({"ok": True, "items": lines,
                    "totals": purchasing.calculate_totals(lines)})


# ═══════════════════════════════════════════════════════════════════════════════
# GOODS RECEIPT NOTES
# ═══════════════════════════════════════════════════════════════════════════════

@bp.route("/api/grns")
@page_required(GRN_PAGE)
def api_grns():
    """?q=GRN/PO number or supplier&status=all|draft|posted"""
    rows = purchasing.list_grns(request.args.get("q", ""), request.args.get("status", "all"))
    return jsonify({"ok": True, "grns": rows, "count": len(rows)})


@bp.route("/api/grns", methods=["POST"])
@page_required(GRN_PAGE)
def api_grns_create():
    """POST {supplier_id, po_id?, grn_date?, ..., items: [...], post?: true}"""
    data = body()
    grn = purchasing.create_grn(data, data.get("items") or [], user_id())
    if data.get("post"):
        grn = purchasing.post_grn(grn["id"], user_id())
    return jsonify({"ok": True, "grn": grn}), 201


@bp.route("/api/grns/<int:grn_id>")
@page_required(GRN_PAGE)
def api_grn(grn_id):
    return jsonify({"ok": True, "grn": purchasing.get_grn(grn_id)})


@bp.route("/api/grns/<int:grn_id>", methods=["DELETE"])
@page_required(GRN_PAGE)
def api_grn_delete(grn_id):
    return jsonify({"ok": True, **purchasing.delete_grn(grn_id)})


@bp.route("/api/grns/<int:grn_id>/post", methods=["POST"])
@page_required(GRN_PAGE)
def api_grn_post(grn_id):
    """Post a draft: creates batches and stock. Cannot be undone."""
    grn = purchasing.post_grn(grn_id, user_id())
    return jsonify({"ok": True, "grn": grn})


@bp.route("/api/grns/<int:grn_id>/pdf")
@page_required(GRN_PAGE)
def api_grn_pdf(grn_id):
    grn = purchasing.get_grn(grn_id)
    path = generate_grn_pdf(grn)
    return send_file(path, mimetype="application/pdf",
                     download_name=os.path.basename(path),
                     as_attachment=request.args.get("download") == "1")
