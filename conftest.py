"""
Shared pytest fixtures for the Anzen ERP test suite.

Every test gets its own SQLite file under tmp_path. ANZEN_DATA_DIR is pointed at
a throwaway directory before anything from `anzen` is imported, so importing
anzen.core.paths never creates data/ inside the checkout.
"""
import os
import base64
import tempfile
from datetime import date, timedelta

import pytest

os.environ.setdefault("ANZEN_DATA_DIR", tempfile.mkdtemp(prefix="anzen-test-"))

ADMIN_USER = "admin"
ADMIN_PASS = "adminpass"

_INTEGRATION_ENV = ("OPENAI_API_KEY", "GOOGLE_CLIENT_ID", "GOOGLE_CLIENT_SECRET",
                    "VITE_GOOGLE_CLIENT_ID", "VITE_GOOGLE_CLIENT_SECRET",
                    "GMAIL_REDIRECT_URI", "ADMIN_USER", "ADMIN_PASS",
                    "ENABLE_EMAIL_POLLING")


# ── Temp data directory (per-test isolation) ──────────────────────────────────

@pytest.fixture(autouse=True)
def temp_data_dir(tmp_path, monkeypatch):
    """Redirect the database and every output dir to an isolated tmp directory."""
    data = str(tmp_path / "data")
    output = os.path.join(data, "output")
    os.makedirs(output, exist_ok=True)
    monkeypatch.setenv("ANZEN_DATA_DIR", data)
    for var in _INTEGRATION_ENV:
        monkeypatch.delenv(var, raising=False)

    from anzen.core import db, paths
    from anzen.forms import documents
    monkeypatch.setattr(paths, "DATA_DIR", data)
    monkeypatch.setattr(paths, "OUTPUT_DIR", output)
    monkeypatch.setattr(db, "DATA_DIR", data)
    monkeypatch.setattr(db, "DB_PATH", os.path.join(data, "anzen.db"))
    monkeypatch.setattr(documents, "OUTPUT_DIR", output)
    db._column_cache.clear()
    db.init_db()
    return data


# ── Flask test client ─────────────────────────────────────────────────────────

def _basic_auth_header(user=ADMIN_USER, pw=ADMIN_PASS):
    creds = base64.b64encode(f"{user}:{pw}".encode()).decode()
    return {"Authorization": f"Basic {creds}"}


class AuthenticatedClient:
    """Wraps Flask test client to add Basic Auth headers to every request."""
    def __init__(self, client, headers):
        self._client = client
        self._headers = headers

    def get(self, *args, **kwargs):
        kwargs.setdefault("headers", {}).update(self._headers)
        return self._client.get(*args, **kwargs)

    def post(self, *args, **kwargs):
        kwargs.setdefault("headers", {}).update(self._headers)
        return self._client.post(*args, **kwargs)

    def put(self, *args, **kwargs):
        kwargs.setdefault("headers", {}).update(self._headers)
        return self._client.put(*args, **kwargs)

    def patch(self, *args, **kwargs):
        kwargs.setdefault("headers", {}).update(self._headers)
        return self._client.patch(*args, **kwargs)

    def delete(self, *args, **kwargs):
        kwargs.setdefault("headers", {}).update(self._headers)
        return self._client.delete(*args, **kwargs)


@pytest.fixture
def app(temp_data_dir, monkeypatch):
    """Flask app for testing. The bootstrap admin comes from ADMIN_USER / ADMIN_PASS."""
    monkeypatch.setenv("ADMIN_USER", ADMIN_USER)
    monkeypatch.setenv("ADMIN_PASS", ADMIN_PASS)
    from app import create_app
    return create_app(testing=True)


@pytest.fixture
def fresh_app(temp_data_dir):
    """App with no profiles at all: first-run setup is pending."""
    from app import create_app
    return create_app(testing=True)


@pytest.fixture
def admin(app):
    from anzen.core.auth import authenticate
    return authenticate(ADMIN_USER, ADMIN_PASS)


@pytest.fixture
def client(app):
    """Admin test client (HTTP Basic Auth on every request)."""
    with app.test_client() as c:
        yield AuthenticatedClient(c, _basic_auth_header())


@pytest.fixture
def anon_client(app):
    """Unauthenticated test client."""
    with app.test_client() as c:
        yield c


def _role_client(app, username, role):
    from anzen.core.auth import create_profile
    create_profile(username, f"{username}-pass", username.title(), role)
    return AuthenticatedClient(app.test_client(), _basic_auth_header(username, f"{username}-pass"))


@pytest.fixture
def warehouse_client(app):
    return _role_client(app, "gudang", "warehouse")


@pytest.fixture
def sales_client(app):
    return _role_client(app, "penjualan", "sales")


@pytest.fixture
def accounts_client(app):
    return _role_client(app, "akuntan", "accounts")


# ── Seed helpers ──────────────────────────────────────────────────────────────

def _days(n):
    return (date.today() + timedelta(days=n)).isoformat()


@pytest.fixture
def sample_product():
    return {
        "product_code": "PRD-001",
        "product_name": "Paracetamol USP",
        "category": "API",
        "unit": "KG",
        "default_purchase_price": 85000,
        "selling_price": 120000,
        "min_stock_level": 50,
    }


@pytest.fixture
def product(temp_data_dir, sample_product):
    from anzen.erp.products import create_product
    return create_product(sample_product)


@pytest.fixture
def supplier(temp_data_dir):
    from anzen.erp.purchasing import create_supplier
    return create_supplier({"company_name": "Zhejiang Pharma Co.", "country": "China",
                            "contact_person": "Li Wei"})


@pytest.fixture
def customer(temp_data_dir):
    from anzen.erp.customers import create_customer
    return create_customer({"company_name": "PT Kimia Farma", "contact_person": "Budi",
                            "email": "budi@kimiafarma.co.id", "city": "Jakarta",
                            "address": "Jl. Veteran 9", "payment_terms_days": 30})


@pytest.fixture
def stocked_product(product):
    """Product with three batches: expired, near expiry (40) and far expiry (60)."""
    from anzen.erp.inventory import create_batch
    batches = {
        "expired": create_batch({"product_id": product["id"], "batch_number": "B-OLD",
                                 "quantity": 25, "unit_cost": 80000,
                                 "expiry_date": _days(-10)}),
        "near": create_batch({"product_id": product["id"], "batch_number": "B-NEAR",
                              "quantity": 40, "unit_cost": 82000,
                              "expiry_date": _days(30)}),
        "far": create_batch({"product_id": product["id"], "batch_number": "B-FAR",
                             "quantity": 60, "unit_cost": 84000,
                             "expiry_date": _days(400)}),
    }
    return {"product": product, "batches": batches}


@pytest.fixture
def inquiry(temp_data_dir):
    from anzen.crm.inquiries import create_inquiry
    return create_inquiry({"product_name": "Sodium Hypophosphite", "quantity": "150 KG",
                           "company_name": "PT Sido Muncul", "contact_person": "Sari",
                           "contact_email": "sari@sidomuncul.co.id",
                           "supplier_country": "Japan", "priority": "high",
                           "coa_requested": True})


@pytest.fixture
def gmail_connection(admin):
    """Connected mailbox for the admin with a token valid for an hour."""
    from anzen.agents.gmail import save_connection, get_connection
    save_connection(admin["id"], "sales@anzenpharma.co.id", "ya29.access", "1//refresh", 3600)
    return get_connection(admin["id"])


@pytest.fixture
def make_message():
    """Factory for Gmail API message resources with a single text/plain body."""
    def _make(message_id, subject, body_text, sender="Budi <budi@kimiafarma.co.id>",
              internal_date="1760000000000"):
        data = base64.urlsafe_b64encode(body_text.encode()).decode().rstrip("=")
        return {
            "id": message_id,
            "threadId": f"t-{message_id}",
            "internalDate": internal_date,
            "payload": {
                "mimeType": "multipart/alternative",
                "headers": [{"name": "Subject", "value": subject},
                            {"name": "From", "value": sender}],
                "body": {"size": 0},
                "parts": [{"mimeType": "text/plain", "body": {"data": data}}],
            },
        }
    return _make
