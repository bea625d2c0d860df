"""Printable PDF documents.

Key exports:
    generate_grn_pdf()      Goods Receipt Note print view
    generate_challan_pdf()  Delivery challan
"""
