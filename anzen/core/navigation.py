"""
anzen/core/navigation.py: Menu, per-session page state and UI language.

The shell page is a single-page app: the server keeps the current page id and
an optional hand-off payload (e.g. "open the GRN form prefilled from PO 12")
in the Flask session so a reload lands on the same screen.
"""

import logging

from flask import session

log = logging.getLogger("anzen.navigation")

ALL_ROLES = ("admin", "accounts", "sales", "warehouse")

# Ordered as shown in the sidebar.
MENU = [
    {"id": "dashboard", "label": "nav.dashboard", "roles": ALL_ROLES},
    {"id": "products", "label": "nav.products", "roles": ("admin", "sales", "warehouse")},
    {"id": "stock", "label": "nav.stock", "roles": ("admin", "sales", "warehouse", "accounts")},
    {"id": "batches", "label": "nav.batches", "roles": ("admin", "warehouse", "accounts")},
    {"id": "inventory", "label": "nav.inventory", "roles": ("admin", "warehouse")},
    {"id": "customers", "label": "nav.customers", "roles": ("admin", "accounts", "sales")},
    {"id": "crm", "label": "nav.crm", "roles": ("admin", "sales")},
    {"id": "delivery-challan", "label": "nav.delivery_challan", "roles": ALL_ROLES},
    {"id": "goods-receipt-notes", "label": "nav.grn", "roles": ("admin", "warehouse", "accounts")},
    {"id": "sales", "label": "nav.sales", "roles": ("admin", "accounts", "sales")},
    {"id": "finance", "label": "nav.finance", "roles": ("admin", "accounts")},
    {"id": "settings", "label": "nav.settings", "roles": ("admin",)},
]

_MENU_BY_ID = {item["id"]: item for item in MENU}

DEFAULT_PAGE = "dashboard"
LANGUAGES = ("en", "id")

TRANSLATIONS = {
    "en": {
        "nav.dashboard": "Dashboard",
        "nav.products": "Products",
        "nav.stock": "Stock",
        "nav.batches": "Batches",
        "nav.inventory": "Inventory",
        "nav.customers": "Customers",
        "nav.crm": "CRM",
        "nav.delivery_challan": "Delivery Challan",
        "nav.grn": "Goods Receipt Notes",
        "nav.sales": "Sales",
        "nav.finance": "Finance",
        "nav.settings": "Settings",
        "common.logout": "Sign out",
        "notify.low_stock": "Low stock",
        "notify.expiring": "Expiring soon",
        "notify.reminders": "Tasks due",
    },
    "id": {
        "nav.dashboard": "Dasbor",
        "nav.products": "Produk",
        "nav.stock": "Stok",
        "nav.batches": "Batch",
        "nav.inventory": "Inventaris",
        "nav.customers": "Pelanggan",
        "nav.crm": "CRM",
        "nav.delivery_challan": "Surat Jalan",
        "nav.grn": "Penerimaan Barang",
        "nav.sales": "Penjualan",
        "nav.finance": "Keuangan",
        "nav.settings": "Pengaturan",
        "common.logout": "Keluar",
        "notify.low_stock": "Stok menipis",
        "notify.expiring": "Segera kedaluwarsa",
        "notify.reminders": "Tugas jatuh tempo",
    },
}


def t(key: str, language: str = None) -> str:
    """Translate a UI key; falls back to English, then to the key itself."""
    lang = language or get_language()
    return TRANSLATIONS.get(lang, {}).get(key) or TRANSLATIONS["en"].get(key, key)


def can_access(role: str, page_id: str) -> bool:
    item = _MENU_BY_ID.get(page_id)
    return bool(item and role in item["roles"])


def visible_menu(role: str, language: str = "en") -> list:
    return [{"id": item["id"], "label": t(item["label"], language)}
            for item in MENU if role in item["roles"]]


# ── Session state ─────────────────────────────────────────────────────────────

def get_language() -> str:
    try:
        lang = session.get("language", "en")
    except RuntimeError:
        return "en"
    return lang if lang in LANGUAGES else "en"


def set_language(language: str) -> str:
    if language not in LANGUAGES:
        raise ValueError(f"Unsupported language: {language}")
    session["language"] = language
    return language


def get_state() -> dict:
    nav = session.get("nav") or {}
    return {
        "current_page": nav.get("current_page", DEFAULT_PAGE),
        "navigation_data": nav.get("navigation_data"),
        "language": get_language(),
    }


def _save(nav: dict):
    session["nav"] = nav
    session.modified = True


def set_current_page(page: str, role: str) -> str:
    """Switch page. Unknown ids fall back to the dashboard."""
    if page not in _MENU_BY_ID:
        log.debug("Unknown page %r, using %s", page, DEFAULT_PAGE)
        page = DEFAULT_PAGE
    if not can_access(role, page):
        raise PermissionError(f"Role '{role}' cannot open '{page}'")
    nav = dict(session.get("nav") or {})
    nav["current_page"] = page
    _save(nav)
    return page


def set_navigation_data(data):
    nav = dict(session.get("nav") or {})
    nav["navigation_data"] = data
    _save(nav)


def clear_navigation_data():
    nav = dict(session.get("nav") or {})
    nav["navigation_data"] = None
    _save(nav)
