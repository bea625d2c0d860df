"""
Anzen Document PDF Generator
============================
Printable Goods Receipt Notes and Delivery Challans.

Usage:
    from anzen.forms.documents import generate_grn_pdf, generate_challan_pdf
    path = generate_grn_pdf(get_grn(grn_id))
"""

import os
import logging
from datetime import datetime

from reportlab.lib.pagesizes import A4
from reportlab.lib.colors import Color, HexColor
from reportlab.lib.utils import simpleSplit
from reportlab.pdfgen import canvas

from anzen.core.db import all_settings
from anzen.core.paths import OUTPUT_DIR

log = logging.getLogger("anzen.documents")

LBL_BD  = Color(0.106, 0.341, 0.604)   # #1B579A
FILL    = Color(0.918, 0.945, 0.984)   # #EAF1FB
HEAD    = Color(0.118, 0.227, 0.373)   # #1E3A5F
BLACK   = HexColor("#000000")
WHITE   = HexColor("#FFFFFF")
GRAY    = HexColor("#555555")
ALT_ROW = Color(0.96, 0.96, 0.98)

PAGE_W, PAGE_H = A4
MARGIN_L = 36
MARGIN_R = 36
MARGIN_T = 36
MARGIN_B = 50
CONTENT_W = PAGE_W - MARGIN_L - MARGIN_R
ROW_H = 16


def format_currency(amount, currency: str = "IDR") -> str:
    amount = amount or 0
    if currency == "IDR":
        return "Rp " + f"{amount:,.0f}".replace(",", ".")
    return f"{currency} {amount:,.2f}"


def _qty(value) -> str:
    value = value or 0
    return str(int(value)) if value == int(value) else f"{value:,.2f}"


def _draw_header(c, title: str, company: dict, meta_left: list, meta_right: list,
                 page_num: int, total_pages: int) -> float:
    y = PAGE_H - MARGIN_T
    c.setFont("Helvetica-Bold", 15)
    c.setFillColor(HEAD)
    c.drawString(MARGIN_L, y - 16, company.get("company_name", ""))
    c.setFont("Helvetica", 8)
    c.setFillColor(GRAY)
    rx = PAGE_W - MARGIN_R
    contact = " | ".join(x for x in (company.get("company_phone"), company.get("company_email")) if x)
    c.drawRightString(rx, y - 10, company.get("company_address", ""))
    if contact:
        c.drawRightString(rx, y - 20, contact)

    y -= 50
    c.setFont("Helvetica-Bold", 18)
    c.setFillColor(BLACK)
    c.drawString(MARGIN_L, y, title)
    if total_pages > 1:
        c.setFont("Helvetica", 9)
        c.setFillColor(GRAY)
        c.drawRightString(rx, y + 4, f"Page {page_num} of {total_pages}")

    box_h = 14 * max(len(meta_left), len(meta_right)) + 10
    box_y = y - 14 - box_h
    half = (CONTENT_W - 12) / 2
    c.setStrokeColor(LBL_BD)
    c.setLineWidth(0.5)
    for x0, rows in ((MARGIN_L, meta_left), (MARGIN_L + half + 12, meta_right)):
        c.setFillColor(FILL)
        c.rect(x0, box_y, half, box_h, fill=1, stroke=1)
        c.setFillColor(BLACK)
        for i, (label, value) in enumerate(rows):
            ty = box_y + box_h - 16 - i * 14
            c.setFont("Helvetica-Bold", 8.5)
            c.drawString(x0 + 6, ty, f"{label}:")
            c.setFont("Helvetica", 8.5)
            c.drawString(x0 + 90, ty, str(value or "-")[:48])
    return box_y - 15


def _draw_table_header(c, y: float, columns: list) -> float:
    c.setFillColor(HEAD)
    c.rect(MARGIN_L, y - 18, CONTENT_W, 18, fill=1, stroke=0)
    c.setFillColor(WHITE)
    c.setFont("Helvetica-Bold", 7.5)
    for label, x, _width, align in columns:
        if align == "right":
            c.drawRightString(MARGIN_L + x, y - 13, label)
        else:
            c.drawString(MARGIN_L + x, y - 13, label)
    return y - 18


def _draw_row(c, y: float, idx: int, columns: list, values: list) -> float:
    wrapped = []
    for (label, x, width, align), value in zip(columns, values):
        lines = simpleSplit(str(value), "Helvetica", 7.5, width) if align == "left" else [str(value)]
        wrapped.append(lines[:2] or [""])
    height = max(ROW_H, max(len(w) for w in wrapped) * 9 + 7)
    if idx % 2 == 1:
        c.setFillColor(ALT_ROW)
        c.rect(MARGIN_L, y - height, CONTENT_W, height, fill=1, stroke=0)
    c.setFillColor(BLACK)
    c.setFont("Helvetica", 7.5)
    for (label, x, width, align), lines in zip(columns, wrapped):
        for li, line in enumerate(lines):
            if align == "right":
                c.drawRightString(MARGIN_L + x, y - 11 - li * 9, line)
            else:
                c.drawString(MARGIN_L + x, y - 11 - li * 9, line)
    return y - height


def _draw_signatures(c, labels: list):
    y = MARGIN_B + 45
    c.setStrokeColor(GRAY)
    c.setLineWidth(0.5)
    width = CONTENT_W / len(labels)
    c.setFont("Helvetica", 8)
    c.setFillColor(GRAY)
    for i, label in enumerate(labels):
        x0 = MARGIN_L + i * width + 10
        c.line(x0, y, x0 + width - 20, y)
        c.drawCentredString(x0 + (width - 20) / 2, y - 11, label)
    c.setFont("Helvetica", 7)
    c.drawString(MARGIN_L, MARGIN_B - 10, f"Printed {datetime.now().strftime('%Y-%m-%d %H:%M')}")


def _render(path: str, doc_title: str, company: dict, meta_left: list, meta_right: list,
            columns: list, rows: list, totals: list, signatures: list) -> str:
    # 18 two-line rows still clear the totals and signature block
    per_page = 18
    total_pages = max(1, (len(rows) + per_page - 1) // per_page)
    c = canvas.Canvas(path, pagesize=A4)
    c.setTitle(doc_title)
    c.setAuthor(company.get("company_name", ""))
    idx = 0
    for page in range(1, total_pages + 1):
        y = _draw_header(c, doc_title, company, meta_left, meta_right, page, total_pages)
        y = _draw_table_header(c, y, columns)
        for _ in range(per_page):
            if idx >= len(rows) or y < MARGIN_B + 140:
                break
            y = _draw_row(c, y, idx, columns, rows[idx])
            idx += 1
        if idx >= len(rows) and totals:
            y -= 8
            c.setStrokeColor(LBL_BD)
            c.line(MARGIN_L + CONTENT_W - 220, y + 2, MARGIN_L + CONTENT_W, y + 2)
            for i, (label, value) in enumerate(totals):
                last = i == len(totals) - 1
                c.setFont("Helvetica-Bold" if last else "Helvetica", 9)
                c.setFillColor(BLACK)
                c.drawRightString(MARGIN_L + CONTENT_W - 110, y - 12, f"{label}:")
                c.drawRightString(MARGIN_L + CONTENT_W - 6, y - 12, value)
                y -= 15
        _draw_signatures(c, signatures)
        if page < total_pages:
            c.showPage()
    c.save()
    return path


def _output_path(prefix: str, number: str, output_dir: str) -> str:
    output_dir = output_dir or os.path.join(OUTPUT_DIR, prefix.lower())
    os.makedirs(output_dir, exist_ok=True)
    safe = "".join(ch if ch.isalnum() or ch in "-_" else "_" for ch in number)
    return os.path.join(output_dir, f"{prefix}_{safe}.pdf")


def generate_grn_pdf(grn: dict, output_dir: str = "") -> str:
    """Print view of a Goods Receipt Note (header, lines, totals, signatures)."""
    company = all_settings()
    currency = grn.get("currency") or company.get("default_currency", "IDR")
    columns = [
        ("#", 4, 14, "left"),
        ("PRODUCT", 22, 150, "left"),
        ("BATCH", 176, 70, "left"),
        ("MFG", 250, 52, "left"),
        ("EXPIRY", 306, 52, "left"),
        ("QTY", 400, 40, "right"),
        ("UNIT COST", 470, 68, "right"),
        ("TOTAL", CONTENT_W - 4, 70, "right"),
    ]
    rows = [[
        item["line_number"],
        item.get("product_name") or item.get("description") or "",
        item.get("batch_number") or "Auto-generated",
        item.get("manufacture_date") or "-",
        item.get("expiry_date") or "-",
        f"{_qty(item['quantity_received'])} {item.get('unit') or item.get('product_unit') or ''}".strip(),
        format_currency(item["unit_cost"], currency),
        format_currency(item["line_total"], currency),
    ] for item in grn.get("items", [])]
    tax_pct = round((grn["tax_amount"] / grn["subtotal"]) * 100) if grn.get("subtotal") else 11
    path = _render(
        _output_path("GRN", grn["grn_number"], output_dir),
        "GOODS RECEIPT NOTE", company,
        [("GRN No", grn["grn_number"]), ("Date", grn["grn_date"]),
         ("Status", (grn.get("status") or "").upper()), ("PO No", grn.get("po_number"))],
        [("Supplier", grn.get("supplier_name")), ("Invoice No", grn.get("supplier_invoice_number")),
         ("Delivery Note", grn.get("delivery_note_number")), ("Received By", grn.get("received_by"))],
        columns, rows,
        [("Total Qty", _qty(grn.get("total_quantity"))),
         ("Subtotal", format_currency(grn.get("subtotal"), currency)),
         (f"PPN ({tax_pct}%)", format_currency(grn.get("tax_amount"), currency)),
         ("Total", format_currency(grn.get("total_amount"), currency))],
        ["Received By", "Checked By", "Approved By"])
    log.info("GRN PDF generated: %s (%d lines)", path, len(rows),
             extra={"grn_number": grn["grn_number"]})
    return path


def generate_challan_pdf(challan: dict, output_dir: str = "") -> str:
    """Delivery challan (surat jalan): goods, batches and quantities, no prices."""
    company = all_settings()
    columns = [
        ("#", 4, 14, "left"),
        ("PRODUCT", 22, 200, "left"),
        ("CODE", 226, 70, "left"),
        ("BATCH", 300, 80, "left"),
        ("EXPIRY", 384, 60, "left"),
        ("QTY", CONTENT_W - 4, 60, "right"),
    ]
    rows = [[
        i + 1,
        item.get("product_name") or "",
        item.get("product_code") or "",
        item.get("batch_number") or "-",
        item.get("expiry_date") or "-",
        f"{_qty(item['quantity'])} {item.get('unit') or ''}".strip(),
    ] for i, item in enumerate(challan.get("items", []))]
    path = _render(
        _output_path("DC", challan["challan_number"], output_dir),
        "DELIVERY CHALLAN", company,
        [("Challan No", challan["challan_number"]), ("Date", challan["challan_date"]),
         ("Status", (challan.get("status") or "").upper())],
        [("Customer", challan.get("customer_name")), ("Address", challan.get("customer_address")),
         ("Vehicle", challan.get("vehicle_number")), ("Driver", challan.get("driver_name"))],
        columns, rows, [],
        ["Prepared By", "Driver", "Received By"])
    log.info("Challan PDF generated: %s (%d lines)", path, len(rows))
    return path
