"""
anzen/core/db.py: Persistent SQLite Database Layer

All structured ERP data lives in one SQLite file (DATA_DIR/anzen.db), WAL mode
so the web workers and the email-sync threads can share it.

A `with get_db() as conn:` block is one transaction: it commits when the block
exits cleanly and rolls back on any exception. Multi-table writes (GRN header +
lines, inbox row + inquiry + reminders) rely on this.

TABLES:
  profiles               users with role (admin|accounts|sales|warehouse)
  settings               key/value business settings
  products               product master
  batches                inventory batches per product (stock lives here)
  inventory_transactions every stock movement
  customers              billing customers
  suppliers              vendors
  purchase_orders        approved POs + purchase_order_items
  goods_receipt_notes    GRN headers + goods_receipt_items
  sales_invoices         invoices + sales_invoice_items
  delivery_challans      challans + delivery_challan_items
  finance_entries        income / expense ledger
  crm_contacts           CRM contact database
  crm_inquiries          sales inquiries
  crm_email_inbox        synced Gmail messages
  crm_reminders          follow-up tasks
  crm_activities         calls, follow-ups, emails against an inquiry
  gmail_connections      per-user Gmail OAuth connection
  crm_company_domains    sender domain → company name cache
"""

import os
import json
import sqlite3
import logging
import threading
from datetime import datetime
from contextlib import contextmanager

from anzen.core.paths import DB_PATH, DATA_DIR

log = logging.getLogger("anzen.db")

_db_lock = threading.RLock()


# ── Connection factory ────────────────────────────────────────────────────────
@contextmanager
def get_db():
    """Thread-safe SQLite connection. Commits on success, rolls back on error."""
    with _db_lock:
        conn = sqlite3.connect(DB_PATH, timeout=30, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        conn.execute("PRAGMA foreign_keys=ON")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()


# ── Schema ────────────────────────────────────────────────────────────────────
SCHEMA = """
CREATE TABLE IF NOT EXISTS profiles (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    username        TEXT UNIQUE NOT NULL,
    full_name       TEXT NOT NULL,
    email           TEXT,
    role            TEXT NOT NULL DEFAULT 'sales',   -- admin|accounts|sales|warehouse
    password_hash   TEXT NOT NULL,
    is_active       INTEGER DEFAULT 1,
    created_at      TEXT NOT NULL,
    updated_at      TEXT
);

CREATE TABLE IF NOT EXISTS settings (
    key             TEXT PRIMARY KEY,
    value           TEXT,
    updated_at      TEXT
);

CREATE TABLE IF NOT EXISTS products (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    product_code    TEXT UNIQUE NOT NULL,
    product_name    TEXT NOT NULL,
    category        TEXT,
    unit            TEXT DEFAULT 'KG',
    default_purchase_price REAL DEFAULT 0,
    selling_price   REAL DEFAULT 0,
    min_stock_level REAL DEFAULT 0,
    description     TEXT,
    is_active       INTEGER DEFAULT 1,
    created_at      TEXT NOT NULL,
    updated_at      TEXT
);

CREATE TABLE IF NOT EXISTS suppliers (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    company_name    TEXT NOT NULL,
    contact_person  TEXT,
    phone           TEXT,
    email           TEXT,
    country         TEXT,
    address         TEXT,
    is_active       INTEGER DEFAULT 1,
    created_at      TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS purchase_orders (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    po_number       TEXT UNIQUE NOT NULL,
    supplier_id     INTEGER NOT NULL REFERENCES suppliers(id),
    po_date         TEXT NOT NULL,
    status          TEXT DEFAULT 'approved',        -- draft|approved|closed
    currency        TEXT DEFAULT 'IDR',
    notes           TEXT,
    created_at      TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS purchase_order_items (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    po_id           INTEGER NOT NULL REFERENCES purchase_orders(id) ON DELETE CASCADE,
    product_id      INTEGER NOT NULL REFERENCES products(id),
    description     TEXT,
    quantity        REAL NOT NULL,
    quantity_received REAL DEFAULT 0,
    unit            TEXT,
    unit_price      REAL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS goods_receipt_notes (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    grn_number      TEXT UNIQUE NOT NULL,
    grn_date        TEXT NOT NULL,
    supplier_id     INTEGER NOT NULL REFERENCES suppliers(id),
    po_id           INTEGER REFERENCES purchase_orders(id),
    po_number       TEXT,
    supplier_invoice_number TEXT,
    supplier_invoice_date   TEXT,
    delivery_note_number    TEXT,
    received_by     TEXT,
    currency        TEXT DEFAULT 'IDR',
    exchange_rate   REAL DEFAULT 1,
    total_quantity  REAL DEFAULT 0,
    subtotal        REAL DEFAULT 0,
    tax_amount      REAL DEFAULT 0,
    total_amount    REAL DEFAULT 0,
    status          TEXT DEFAULT 'draft',           -- draft|posted
    notes           TEXT,
    created_by      INTEGER REFERENCES profiles(id),
    created_at      TEXT NOT NULL,
    posted_at       TEXT
);

CREATE TABLE IF NOT EXISTS goods_receipt_items (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    grn_id          INTEGER NOT NULL REFERENCES goods_receipt_notes(id) ON DELETE CASCADE,
    line_number     INTEGER NOT NULL,
    po_item_id      INTEGER REFERENCES purchase_order_items(id),
    product_id      INTEGER NOT NULL REFERENCES products(id),
    batch_number    TEXT,
    expiry_date     TEXT,
    manufacture_date TEXT,
    description     TEXT,
    quantity_received REAL NOT NULL DEFAULT 0,
    unit            TEXT,
    unit_cost       REAL DEFAULT 0,
    line_total      REAL DEFAULT 0,
    notes           TEXT
);

CREATE TABLE IF NOT EXISTS batches (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    product_id      INTEGER NOT NULL REFERENCES products(id),
    batch_number    TEXT NOT NULL,
    grn_id          INTEGER REFERENCES goods_receipt_notes(id),
    quantity_received REAL DEFAULT 0,
    current_stock   REAL DEFAULT 0 CHECK (current_stock >= 0),
    unit_cost       REAL DEFAULT 0,
    manufacture_date TEXT,
    expiry_date     TEXT,
    created_at      TEXT NOT NULL,
    UNIQUE(product_id, batch_number)
);

CREATE INDEX IF NOT EXISTS idx_batch_expiry ON batches(expiry_date);

CREATE TABLE IF NOT EXISTS inventory_transactions (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    product_id      INTEGER NOT NULL REFERENCES products(id),
    batch_id        INTEGER REFERENCES batches(id),
    transaction_type TEXT NOT NULL,                 -- purchase|sale|delivery|adjustment|return
    quantity        REAL NOT NULL,
    reference_type  TEXT,
    reference_id    INTEGER,
    notes           TEXT,
    created_by      INTEGER,
    created_at      TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_invtx_product ON inventory_transactions(product_id);

CREATE TABLE IF NOT EXISTS customers (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    company_name    TEXT NOT NULL,
    contact_person  TEXT,
    email           TEXT,
    phone           TEXT,
    address         TEXT,
    city            TEXT,
    npwp            TEXT,
    payment_terms_days INTEGER DEFAULT 30,
    is_active       INTEGER DEFAULT 1,
    created_at      TEXT NOT NULL,
    updated_at      TEXT
);

CREATE TABLE IF NOT EXISTS delivery_challans (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    challan_number  TEXT UNIQUE NOT NULL,
    customer_id     INTEGER NOT NULL REFERENCES customers(id),
    challan_date    TEXT NOT NULL,
    vehicle_number  TEXT,
    driver_name     TEXT,
    status          TEXT DEFAULT 'pending',         -- pending|delivered|cancelled
    invoice_id      INTEGER,
    notes           TEXT,
    created_by      INTEGER,
    created_at      TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS delivery_challan_items (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    challan_id      INTEGER NOT NULL REFERENCES delivery_challans(id) ON DELETE CASCADE,
    product_id      INTEGER NOT NULL REFERENCES products(id),
    batch_id        INTEGER REFERENCES batches(id),
    quantity        REAL NOT NULL,
    unit            TEXT,
    unit_price      REAL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS sales_invoices (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    invoice_number  TEXT UNIQUE NOT NULL,
    customer_id     INTEGER NOT NULL REFERENCES customers(id),
    invoice_date    TEXT NOT NULL,
    due_date        TEXT,
    challan_id      INTEGER REFERENCES delivery_challans(id),
    subtotal        REAL DEFAULT 0,
    tax_amount      REAL DEFAULT 0,
    total_amount    REAL DEFAULT 0,
    paid_amount     REAL DEFAULT 0,
    payment_status  TEXT DEFAULT 'unpaid',          -- unpaid|partial|paid
    notes           TEXT,
    created_by      INTEGER,
    created_at      TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS sales_invoice_items (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    invoice_id      INTEGER NOT NULL REFERENCES sales_invoices(id) ON DELETE CASCADE,
    product_id      INTEGER NOT NULL REFERENCES products(id),
    batch_id        INTEGER REFERENCES batches(id),
    quantity        REAL NOT NULL,
    unit_price      REAL DEFAULT 0,
    line_total      REAL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS finance_entries (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    entry_date      TEXT NOT NULL,
    entry_type      TEXT NOT NULL,                  -- income|expense|payable
    category        TEXT,
    amount          REAL NOT NULL,
    description     TEXT,
    reference_type  TEXT,
    reference_id    INTEGER,
    created_by      INTEGER,
    created_at      TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_finance_date ON finance_entries(entry_date);

CREATE TABLE IF NOT EXISTS crm_contacts (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    company_name    TEXT NOT NULL,
    company_type    TEXT,
    industry        TEXT,
    country         TEXT,
    city            TEXT,
    address         TEXT,
    website         TEXT,
    contact_person  TEXT,
    designation     TEXT,
    email           TEXT,
    phone           TEXT,
    mobile          TEXT,
    customer_type   TEXT DEFAULT 'prospect',        -- prospect|active|inactive|vip
    tags            TEXT,                           -- JSON array
    first_contact_date TEXT,
    last_contact_date  TEXT,
    total_inquiries INTEGER DEFAULT 0,
    total_orders    INTEGER DEFAULT 0,
    lifetime_value  REAL DEFAULT 0,
    notes           TEXT,
    is_active       INTEGER DEFAULT 1,
    created_by      INTEGER,
    created_at      TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_contact_email ON crm_contacts(email);

CREATE TABLE IF NOT EXISTS gmail_connections (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id         INTEGER UNIQUE NOT NULL REFERENCES profiles(id),
    email_address   TEXT,
    access_token    TEXT,
    refresh_token   TEXT,
    access_token_expires_at TEXT,
    is_connected    INTEGER DEFAULT 0,
    sync_enabled    INTEGER DEFAULT 1,
    last_sync       TEXT,
    created_at      TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS crm_email_inbox (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    gmail_connection_id INTEGER REFERENCES gmail_connections(id),
    gmail_message_id TEXT UNIQUE NOT NULL,
    gmail_thread_id TEXT,
    subject         TEXT,
    from_email      TEXT,
    from_name       TEXT,
    body_text       TEXT,
    received_at     TEXT,
    is_processed    INTEGER DEFAULT 0,
    is_inquiry      INTEGER DEFAULT 0,
    converted_to_inquiry INTEGER,
    parsed_data     TEXT,                           -- JSON from the parser
    created_at      TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS crm_inquiries (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    inquiry_number  TEXT UNIQUE NOT NULL,
    inquiry_date    TEXT NOT NULL,
    product_name    TEXT NOT NULL,
    specification   TEXT,
    quantity        TEXT,
    supplier_name   TEXT,
    supplier_country TEXT,
    company_name    TEXT,
    contact_person  TEXT,
    contact_email   TEXT,
    contact_phone   TEXT,
    email_subject   TEXT,
    email_body      TEXT,
    status          TEXT DEFAULT 'new',
    priority        TEXT DEFAULT 'medium',
    pipeline_stage  TEXT DEFAULT 'inquiry_received',
    source          TEXT DEFAULT 'manual',          -- manual|email
    coa_requested   INTEGER DEFAULT 0,
    msds_requested  INTEGER DEFAULT 0,
    sample_requested INTEGER DEFAULT 0,
    price_requested INTEGER DEFAULT 0,
    coa_sent        INTEGER DEFAULT 0,
    msds_sent       INTEGER DEFAULT 0,
    sample_sent     INTEGER DEFAULT 0,
    price_quoted    INTEGER DEFAULT 0,
    purpose_icons   TEXT,                           -- JSON array
    delivery_date_expected TEXT,
    ai_confidence_score REAL DEFAULT 0,
    auto_detected_company INTEGER DEFAULT 0,
    auto_detected_contact INTEGER DEFAULT 0,
    remarks         TEXT,
    email_inbox_id  INTEGER REFERENCES crm_email_inbox(id),
    assigned_to     INTEGER,
    created_by      INTEGER,
    created_at      TEXT NOT NULL,
    updated_at      TEXT
);

CREATE INDEX IF NOT EXISTS idx_inquiry_status ON crm_inquiries(status);

CREATE TABLE IF NOT EXISTS crm_reminders (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    inquiry_id      INTEGER REFERENCES crm_inquiries(id) ON DELETE CASCADE,
    reminder_type   TEXT NOT NULL,
    title           TEXT NOT NULL,
    description     TEXT,
    due_date        TEXT NOT NULL,
    is_completed    INTEGER DEFAULT 0,
    completed_at    TEXT,
    assigned_to     INTEGER,
    created_by      INTEGER,
    created_at      TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_reminder_due ON crm_reminders(is_completed, due_date);

CREATE TABLE IF NOT EXISTS crm_activities (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    inquiry_id      INTEGER REFERENCES crm_inquiries(id) ON DELETE CASCADE,
    activity_type   TEXT NOT NULL,                  -- call|follow_up|email|note
    description     TEXT,
    activity_date   TEXT NOT NULL,
    follow_up_date  TEXT,
    is_completed    INTEGER DEFAULT 0,
    metadata        TEXT,
    created_by      INTEGER,
    created_at      TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS crm_company_domains (
    domain          TEXT PRIMARY KEY,
    company_name    TEXT NOT NULL,
    is_confirmed    INTEGER DEFAULT 0,
    hit_count       INTEGER DEFAULT 0,
    created_at      TEXT NOT NULL,
    updated_at      TEXT
);
"""

TABLES = (
    "profiles", "settings", "products", "suppliers", "purchase_orders",
    "purchase_order_items", "goods_receipt_notes", "goods_receipt_items",
    "batches", "inventory_transactions", "customers", "delivery_challans",
    "delivery_challan_items", "sales_invoices", "sales_invoice_items",
    "finance_entries", "crm_contacts", "gmail_connections", "crm_email_inbox",
    "crm_inquiries", "crm_reminders", "crm_activities", "crm_company_domains",
)

DEFAULT_SETTINGS = {
    "company_name": "PT. Shubham Anzen Pharma Jaya",
    "company_address": "Jakarta, Indonesia",
    "company_phone": "",
    "company_email": "",
    "default_currency": "IDR",
    "tax_rate": "0.11",
    "expiry_warning_days": "90",
}


def init_db():
    """Create all tables if they don't exist. Safe to call multiple times."""
    with get_db() as conn:
        conn.executescript(SCHEMA)
        now = datetime.now().isoformat()
        for key, value in DEFAULT_SETTINGS.items():
            conn.execute(
                "INSERT OR IGNORE INTO settings (key, value, updated_at) VALUES (?,?,?)",
                (key, value, now))
    log.info("DB initialized at %s", DB_PATH)
    return True


# ── Row helpers ───────────────────────────────────────────────────────────────
_column_cache = {}


def table_columns(conn, table: str) -> set:
    """Column names of a table (cached). Guards every dynamic column list."""
    if table not in TABLES:
        raise ValueError(f"unknown table: {table}")
    if table not in _column_cache:
        rows = conn.execute(f"PRAGMA table_info({table})").fetchall()
        _column_cache[table] = {r["name"] for r in rows}
    return _column_cache[table]


def insert_row(conn, table: str, data: dict) -> int:
    """INSERT a dict into a table, ignoring keys that are not columns."""
    cols = table_columns(conn, table)
    fields = [k for k in data if k in cols and k != "id"]
    placeholders = ",".join("?" for _ in fields)
    cur = conn.execute(
        f"INSERT INTO {table} ({','.join(fields)}) VALUES ({placeholders})",
        [data[k] for k in fields])
    return cur.lastrowid


def update_row(conn, table: str, row_id: int, data: dict) -> int:
    """UPDATE columns of one row by id. Returns number of rows changed."""
    cols = table_columns(conn, table)
    fields = [k for k in data if k in cols and k != "id"]
    if not fields:
        return 0
    assignments = ",".join(f"{k}=?" for k in fields)
    cur = conn.execute(
        f"UPDATE {table} SET {assignments} WHERE id=?",
        [data[k] for k in fields] + [row_id])
    return cur.rowcount


def fetch_row(conn, table: str, row_id: int) -> dict | None:
    table_columns(conn, table)
    row = conn.execute(f"SELECT * FROM {table} WHERE id=?", (row_id,)).fetchone()
    return dict(row) if row else None


def require_row(conn, table: str, row_id: int) -> dict:
    """fetch_row that raises LookupError when the row is missing."""
    row = fetch_row(conn, table, row_id)
    if row is None:
        raise LookupError(f"{table} {row_id} not found")
    return row


def json_field(value, default=None):
    """Decode a JSON text column, tolerating NULL and legacy plain text."""
    if value in (None, ""):
        return default
    try:
        return json.loads(value)
    except (TypeError, ValueError):
        return default


def next_number(conn, table: str, column: str, prefix: str, width: int = 4) -> str:
    """Next sequential document number like GRN-2026-0007 for the current year."""
    table_columns(conn, table)
    year_prefix = f"{prefix}-{datetime.now().year}-"
    # numeric max: text order puts -10000 below -9999
    row = conn.execute(
        f"SELECT MAX(CAST(substr({column}, ?) AS INTEGER)) FROM {table} "
        f"WHERE {column} LIKE ?",
        (len(year_prefix) + 1, year_prefix + "%")).fetchone()
    seq = (row[0] or 0) + 1
    return f"{year_prefix}{seq:0{width}d}"


# ── Settings ──────────────────────────────────────────────────────────────────
def get_setting(key: str, default: str = "") -> str:
    with get_db() as conn:
        row = conn.execute("SELECT value FROM settings WHERE key=?", (key,)).fetchone()
    if row is None or row["value"] is None:
        return DEFAULT_SETTINGS.get(key, default)
    return row["value"]


def set_setting(key: str, value) -> None:
    with get_db() as conn:
        conn.execute(
            "INSERT INTO settings (key, value, updated_at) VALUES (?,?,?) "
            "ON CONFLICT(key) DO UPDATE SET value=excluded.value, updated_at=excluded.updated_at",
            (key, str(value), datetime.now().isoformat()))


def all_settings() -> dict:
    with get_db() as conn:
        rows = conn.execute("SELECT key, value FROM settings ORDER BY key").fetchall()
    result = dict(DEFAULT_SETTINGS)
    result.update({r["key"]: r["value"] for r in rows})
    return result


def get_tax_rate() -> float:
    try:
        return float(get_setting("tax_rate", "0.11"))
    except ValueError:
        log.warning("Invalid tax_rate setting, using 0.11")
        return 0.11


# ── DB stats ─────────────────────────────────────────────────────────────────
def get_db_stats() -> dict:
    """Return row counts for all tables, used in /api/health."""
    stats = {"db_path": DB_PATH, "db_size_kb": 0}
    try:
        stats["db_size_kb"] = round(os.path.getsize(DB_PATH) / 1024, 1)
    except FileNotFoundError:
        pass
    with get_db() as conn:
        for table in TABLES:
            try:
                stats[table] = conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
            except sqlite3.Error:
                stats[table] = 0
    return stats


def startup() -> dict:
    """Initialise schema + bootstrap admin. Called once from create_app()."""
    init_db()
    from anzen.core.auth import bootstrap_admin
    bootstrap_admin()
    return {"db_path": DB_PATH, "data_dir": DATA_DIR, "stats": get_db_stats()}
