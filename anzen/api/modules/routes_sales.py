# routes_sales.py
# Sales invoices, delivery challans, payments and the finance ledger.

import os

from flask import request, jsonify, send_file

from anzen.api.dashboard import bp, body, user_id
from anzen.core.auth import page_required
from anzen.erp import sales, finance
from anzen.forms.documents import generate_challan_pdf


# ═══════════════════════════════════════════════════════════════════════════════
# INVOICES
# ═══════════════════════════════════════════════════════════════════════════════

@bp.route("/api/sales/invoices")
@page_required("sales")
def api_invoices():
    """?q=&status=unpaid|partial|paid&customer_id="""
    rows = sales.list_invoices(request.args.get("q", ""), request.args.get("status", ""),
                               request.args.get("customer_id", type=int))
    return jsonify({"ok": True, "invoices": rows, "count": len(rows)})


@bp.route("/api/sales/invoices", methods=["POST"])
@page_required("sales")
def api_invoices_create():
    """POST {customer_id, invoice_date?, items: [{product_id, quantity, unit_price?, batch_id?}]}"""
    data = body()
    invoice = sales.create_invoice(data, data.get("items") or [], user_id())
    return jsonify({"ok": True, "invoice": invoice}), 201


@bp.route("/api/sales/invoices/<int:iid>")
@page_required("sales")
def api_invoice(iid):
    return jsonify({"ok": True, "invoice": sales.get_invoice(iid)})


@bp.route("/api/sales/invoices/<int:iid>/payments", methods=["POST"])
@page_required("finance")
def api_invoice_payment(iid):
    """POST {amount, payment_date?, method?, notes?}"""
    data = body()
    if data.get("amount") in (None, ""):
        raise ValueError("amount is required")
    result = finance.record_payment(iid, data["amount"], data.get("payment_date"),
                                    data.get("method", ""), data.get("notes", ""), user_id())
    return jsonify({"ok": True, **result})


# ═══════════════════════════════════════════════════════════════════════════════
# DELIVERY CHALLANS
# ═══════════════════════════════════════════════════════════════════════════════

@bp.route("/api/delivery-challans")
@page_required("delivery-challan")
def api_challans():
    rows = sales.list_challans(request.args.get("q", ""), request.args.get("status", ""))
    return jsonify({"ok": True, "challans": rows, "count": len(rows)})


@bp.route("/api/delivery-challans", methods=["POST"])
@page_required("delivery-challan")
def api_challans_create():
    data = body()
    challan = sales.create_challan(data, data.get("items") or [], user_id())
    return jsonify({"ok": True, "challan": challan}), 201


@bp.route("/api/delivery-challans/<int:cid>")
@page_required("delivery-challan")
def api_challan(cid):
    return jsonify({"ok": True, "challan": sales.get_challan(cid)})


@bp.route("/api/delivery-challans/<int:cid>/status", methods=["POST"])
@page_required("delivery-challan")
def api_challan_status(cid):
    """POST {status: delivered|cancelled}. Cancelling returns the stock."""
    challan = sales.update_challan_status(cid, body().get("status", ""), user_id())
    return jsonify({"ok": True, "challan": challan})


@bp.route("/api/delivery-challans/<int:cid>/invoice", methods=["POST"])
@page_required("sales")
def api_challan_invoice(cid):
    invoice = sales.invoice_from_challan(cid, body(), user_id())
    return jsonify({"ok": True, "invoice": invoice}), 201


@bp.route("/api/delivery-challans/<int:cid>/pdf")
@page_required("delivery-challan")
def api_challan_pdf(cid):
    path = generate_challan_pdf(sales.get_challan(cid))
    return send_file(path, mimetype="application/pdf",
                     download_name=os.path.basename(path),
                     as_attachment=request.args.get("download") == "1")


# ═══════════════════════════════════════════════════════════════════════════════
# FINANCE
# ═══════════════════════════════════════════════════════════════════════════════

@bp.route("/api/finance/entries")
@page_required("finance")
def api_finance_entries():
    """?start=YYYY-MM-DD&end=YYYY-MM-DD&type=income|expense|payable"""
    rows = finance.list_entries(request.args.get("start") or None,
                                request.args.get("end") or None,
                                request.args.get("type") or None)
    return jsonify({"ok": True, "entries": rows})


@bp.route("/api/finance/expenses", methods=["POST"])
@page_required("finance")
def api_finance_expense():
    return jsonify({"ok": True, "entry": finance.record_expense(body(), user_id())}), 201


@bp.route("/api/finance/summary")
@page_required("finance")
def api_finance_summary():
    return jsonify({"ok": True, "summary": finance.summary(
        request.args.get("start") or None, request.args.get("end") or None)})
