"""Tests for anzen.core: secrets registry, database helpers, auth, navigation."""

import sqlite3
from datetime import datetime

import pytest


# ═══════════════════════════════════════════════════════════════════════════════
# SECRETS
# ═══════════════════════════════════════════════════════════════════════════════

class TestSecrets:

    def test_mask_empty(self):
        from anzen.core.secrets import mask
        assert mask("") == "(not set)"

    def test_mask_short(self):
        from anzen.core.secrets import mask
        assert mask("abc") == "abc****"

    def test_mask_long_hides_the_tail(self):
        from anzen.core.secrets import mask
        result = mask("sk-proj-verylongkeyhere123456")
        assert result.startswith("sk-proj-")
        assert "verylongkeyhere" not in result
        assert "chars" in result

    def test_get_key_unknown(self):
        from anzen.core.secrets import get_key
        assert get_key("nonexistent_key_xyz") == ""

    def test_get_key_default(self, monkeypatch):
        from anzen.core.secrets import get_key
        monkeypatch.delenv("OPENAI_MODEL", raising=False)
        assert get_key("openai_model") == "gpt-4o-mini"
        assert get_key("admin_user") == "admin"

    def test_get_key_fallback_env(self, monkeypatch):
        from anzen.core.secrets import get_key
        monkeypatch.setenv("VITE_GOOGLE_CLIENT_ID", "client-from-vite")
        assert get_key("google_client_id") == "client-from-vite"
        monkeypatch.setenv("GOOGLE_CLIENT_ID", "client-primary")
        assert get_key("google_client_id") == "client-primary"

    def test_validate_all_structure(self):
        from anzen.core.secrets import validate_all
        report = validate_all()
        assert set(report) >= {"secrets", "total", "set", "missing", "warnings"}
        assert report["total"] == len(report["secrets"])
        assert report["secrets"]["openai_api_key"]["set"] is False

    def test_sensitive_values_never_masked_in_report(self, monkeypatch):
        from anzen.core.secrets import validate_all
        monkeypatch.setenv("OPENAI_API_KEY", "sk-secret-value-1234567890")
        entry = validate_all()["secrets"]["openai_api_key"]
        assert entry["masked"] == "set"


# ═══════════════════════════════════════════════════════════════════════════════
# DATABASE
# ═══════════════════════════════════════════════════════════════════════════════

class TestDatabase:

    def test_init_db_is_idempotent(self):
        from anzen.core.db import init_db, get_db_stats
        init_db()
        init_db()
        stats = get_db_stats()
        assert stats["profiles"] == 0
        assert stats["settings"] >= 7

    def test_default_settings(self):
        from anzen.core.db import get_setting, get_tax_rate, all_settings
        assert get_setting("company_name") == "PT. Shubham Anzen Pharma Jaya"
        assert get_tax_rate() == pytest.approx(0.11)
        assert all_settings()["default_currency"] == "IDR"

    def test_set_setting_overwrites(self):
        from anzen.core.db import get_setting, set_setting
        set_setting("tax_rate", 0.12)
        assert get_setting("tax_rate") == "0.12"

    def test_invalid_tax_rate_falls_back(self):
        from anzen.core.db import set_setting, get_tax_rate
        set_setting("tax_rate", "eleven percent")
        assert get_tax_rate() == pytest.approx(0.11)

    def test_next_number_sequence(self):
        from anzen.core.db import get_db, next_number
        year = datetime.now().year
        with get_db() as conn:
            assert next_number(conn, "crm_inquiries", "inquiry_number", "INQ") == f"INQ-{year}-0001"
            conn.execute(
                "INSERT INTO crm_inquiries (inquiry_number, inquiry_date, product_name, created_at) "
                "VALUES (?,?,?,?)", (f"INQ-{year}-0041", "2026-01-01", "X", "2026-01-01"))
            assert next_number(conn, "crm_inquiries", "inquiry_number", "INQ") == f"INQ-{year}-0042"

    def test_next_number_ignores_previous_years(self):
        from anzen.core.db import get_db, next_number
        year = datetime.now().year
        with get_db() as conn:
            conn.execute(
                "INSERT INTO crm_inquiries (inquiry_number, inquiry_date, product_name, created_at) "
                "VALUES (?,?,?,?)", (f"INQ-{year - 1}-0099", "2020-01-01", "X", "2020-01-01"))
            assert next_number(conn, "crm_inquiries", "inquiry_number", "INQ") == f"INQ-{year}-0001"

    def test_next_number_past_four_digits(self):
        from anzen.core.db import get_db, next_number
        year = datetime.now().year
        with get_db() as conn:
            for seq in ("9999", "10000"):
                conn.execute(
                    "INSERT INTO crm_inquiries (inquiry_number, inquiry_date, product_name, created_at) "
                    "VALUES (?,?,?,?)", (f"INQ-{year}-{seq}", "2026-01-01", "X", "2026-01-01"))
            assert next_number(conn, "crm_inquiries", "inquiry_number", "INQ") == f"INQ-{year}-10001"

    def test_unknown_table_rejected(self):
        from anzen.core.db import get_db, table_columns
        with get_db() as conn:
            with pytest.raises(ValueError):
                table_columns(conn, "sqlite_master")

    def test_insert_row_ignores_unknown_keys(self):
        from anzen.core.db import get_db, insert_row, fetch_row
        with get_db() as conn:
            sid = insert_row(conn, "suppliers", {"company_name": "Acme", "bogus": 1,
                                                 "created_at": "2026-01-01"})
            row = fetch_row(conn, "suppliers", sid)
        assert row["company_name"] == "Acme"
        assert "bogus" not in row

    def test_require_row_missing(self):
        from anzen.core.db import get_db, require_row
        with get_db() as conn:
            with pytest.raises(LookupError):
                require_row(conn, "products", 999)

    def test_transaction_rolls_back_on_error(self):
        from anzen.core.db import get_db, insert_row
        with pytest.raises(RuntimeError):
            with get_db() as conn:
                insert_row(conn, "suppliers", {"company_name": "Ghost", "created_at": "x"})
                raise RuntimeError("boom")
        with get_db() as conn:
            assert conn.execute("SELECT COUNT(*) FROM suppliers").fetchone()[0] == 0

    def test_json_field(self):
        from anzen.core.db import json_field
        assert json_field('["coa"]') == ["coa"]
        assert json_field(None, []) == []
        assert json_field("not json", {}) == {}


# ═══════════════════════════════════════════════════════════════════════════════
# AUTH
# ═══════════════════════════════════════════════════════════════════════════════

class TestProfiles:

    def test_create_and_authenticate(self):
        from anzen.core.auth import create_profile, authenticate
        profile = create_profile("rina", "rahasia1", "Rina", "accounts")
        assert profile["role"] == "accounts"
        assert "password_hash" not in profile
        assert authenticate("rina", "rahasia1")["id"] == profile["id"]
        assert authenticate("rina", "wrong-pass") is None
        assert authenticate("nobody", "rahasia1") is None

    def test_password_too_short(self):
        from anzen.core.auth import create_profile
        with pytest.raises(ValueError):
            create_profile("rina", "123")

    def test_invalid_role(self):
        from anzen.core.auth import create_profile
        with pytest.raises(ValueError):
            create_profile("rina", "rahasia1", role="superuser")

    def test_duplicate_username(self):
        from anzen.core.auth import create_profile
        create_profile("rina", "rahasia1")
        with pytest.raises(sqlite3.IntegrityError):
            create_profile("rina", "rahasia2")

    def test_inactive_user_cannot_sign_in(self):
        from anzen.core.auth import create_profile, update_profile, authenticate
        profile = create_profile("rina", "rahasia1")
        update_profile(profile["id"], is_active=False)
        assert authenticate("rina", "rahasia1") is None

    def test_password_reset(self):
        from anzen.core.auth import create_profile, update_profile, authenticate
        profile = create_profile("rina", "rahasia1")
        update_profile(profile["id"], password="baru12345")
        assert authenticate("rina", "baru12345") is not None
        assert authenticate("rina", "rahasia1") is None

    def test_update_missing_profile(self):
        from anzen.core.auth import update_profile
        with pytest.raises(LookupError):
            update_profile(42, role="sales")


class TestFirstRun:

    def test_needs_setup_until_first_admin(self):
        from anzen.core.auth import needs_setup, setup_first_admin
        assert needs_setup() is True
        admin = setup_first_admin("owner", "owner123")
        assert admin["role"] == "admin"
        assert needs_setup() is False

    def test_setup_only_once(self):
        from anzen.core.auth import setup_first_admin
        setup_first_admin("owner", "owner123")
        with pytest.raises(PermissionError):
            setup_first_admin("second", "second123")

    def test_bootstrap_admin_from_env(self, monkeypatch):
        from anzen.core.auth import bootstrap_admin, authenticate
        monkeypatch.setenv("ADMIN_USER", "boss")
        monkeypatch.setenv("ADMIN_PASS", "boss-pass")
        profile = bootstrap_admin()
        assert profile["username"] == "boss"
        assert authenticate("boss", "boss-pass")["role"] == "admin"
        assert bootstrap_admin() is None

    def test_bootstrap_admin_without_password(self):
        from anzen.core.auth import bootstrap_admin, needs_setup
        assert bootstrap_admin() is None
        assert needs_setup() is True


# ═══════════════════════════════════════════════════════════════════════════════
# NAVIGATION
# ═══════════════════════════════════════════════════════════════════════════════

class TestNavigation:

    def test_role_access(self):
        from anzen.core.navigation import can_access
        assert can_access("admin", "settings")
        assert not can_access("sales", "settings")
        assert can_access("sales", "crm")
        assert not can_access("warehouse", "crm")
        assert can_access("warehouse", "goods-receipt-notes")
        assert not can_access("admin", "no-such-page")

    def test_visible_menu_for_warehouse(self):
        from anzen.core.navigation import visible_menu
        ids = [item["id"] for item in visible_menu("warehouse")]
        assert ids == ["dashboard", "products", "stock", "batches", "inventory",
                       "delivery-challan", "goods-receipt-notes"]

    def test_visible_menu_translated(self):
        from anzen.core.navigation import visible_menu
        labels = {item["id"]: item["label"] for item in visible_menu("admin", "id")}
        assert labels["delivery-challan"] == "Surat Jalan"
        assert labels["settings"] == "Pengaturan"

    def test_translate_fallbacks(self):
        from anzen.core.navigation import t
        assert t("nav.grn", "id") == "Penerimaan Barang"
        assert t("nav.grn", "xx") == "Goods Receipt Notes"
        assert t("missing.key", "en") == "missing.key"

    def test_session_page_state(self, app):
        from anzen.core import navigation
        with app.test_request_context("/"):
            assert navigation.get_state()["current_page"] == "dashboard"
            assert navigation.set_current_page("goods-receipt-notes", "warehouse") == "goods-receipt-notes"
            navigation.set_navigation_data({"po_id": 7})
            state = navigation.get_state()
            assert state["current_page"] == "goods-receipt-notes"
            assert state["navigation_data"] == {"po_id": 7}
            navigation.clear_navigation_data()
            assert navigation.get_state()["navigation_data"] is None

    def test_unknown_page_falls_back_to_dashboard(self, app):
        from anzen.core import navigation
        with app.test_request_context("/"):
            assert navigation.set_current_page("reports-2019", "sales") == "dashboard"

    def test_page_not_allowed_for_role(self, app):
        from anzen.core import navigation
        with app.test_request_context("/"):
            with pytest.raises(PermissionError):
                navigation.set_current_page("finance", "warehouse")

    def test_language(self, app):
        from anzen.core import navigation
        with app.test_request_context("/"):
            assert navigation.get_language() == "en"
            navigation.set_language("id")
            assert navigation.get_language() == "id"
            with pytest.raises(ValueError):
                navigation.set_language("fr")


# ═══════════════════════════════════════════════════════════════════════════════
# STARTUP
# ═══════════════════════════════════════════════════════════════════════════════

class TestStartupChecks:

    def test_checks_pass_on_fresh_app(self, app):
        from anzen.core.startup_checks import run_startup_checks
        with app.app_context():
            result = run_startup_checks(app)
        assert result["failed"] == 0
        assert result["passed"] > 0

    def test_missing_integrations_are_warnings(self, app):
        from anzen.core.startup_checks import run_startup_checks
        with app.app_context():
            result = run_startup_checks(app)
        warnings = [msg for level, msg in result["details"] if level == "WARN"]
        assert any("OPENAI_API_KEY" in w for w in warnings)

    def test_validate_paths(self):
        from anzen.core.paths import validate_paths
        result = validate_paths()
        assert result["ok"] is True
        assert "DB_PATH" in result["resolved"]


# ═══════════════════════════════════════════════════════════════════════════════
# LOGGING
# ═══════════════════════════════════════════════════════════════════════════════

class TestLogging:

    def _record(self, **extra):
        import logging
        record = logging.LogRecord("anzen.email_sync", logging.ERROR, __file__, 10,
                                   "Failed to parse email %s", ("m-1",), None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_json_formatter_merges_extra_fields(self):
        import json
        from logging_config import JSONFormatter
        line = json.loads(JSONFormatter().format(self._record(message_id="m-1", ignored="x")))
        assert line["msg"] == "Failed to parse email m-1"
        assert line["level"] == "ERROR"
        assert line["message_id"] == "m-1"
        assert "ignored" not in line

    def test_human_formatter(self):
        from logging_config import HumanFormatter
        text = HumanFormatter().format(self._record())
        assert "[E] anzen.email_sync: Failed to parse email m-1" in text

    def test_human_formatter_shows_document_number(self):
        from logging_config import HumanFormatter
        text = HumanFormatter().format(self._record(grn_number="GRN-2026-0003"))
        assert "Failed to parse email m-1 [GRN-2026-0003]" in text

    def test_request_context_stamped(self, app, admin):
        from flask import g
        from logging_config import RequestContextFilter
        record = self._record()
        with app.test_request_context("/api/grns/7/post", method="POST"):
            g.current_user = admin
            assert RequestContextFilter().filter(record) is True
        assert record.route == "/api/grns/7/post"
        assert record.method == "POST"
        assert record.user == admin["username"]

    def test_request_context_outside_request(self):
        from logging_config import RequestContextFilter
        record = self._record()
        RequestContextFilter().filter(record)
        assert not hasattr(record, "route")

    def test_mail_pipeline_has_own_file(self, tmp_path, monkeypatch):
        import json
        import logging
        import logging_config
        monkeypatch.setattr(logging_config, "LOG_DIR", str(tmp_path))
        root = logging.getLogger()
        saved = (root.handlers[:], root.level)
        mail = logging.getLogger("anzen.email_sync")
        try:
            logging_config.setup_logging("INFO", json_logs=True)
            logging_config.setup_logging("INFO", json_logs=True)
            assert len([h for h in mail.handlers if hasattr(h, "baseFilename")]) == 1
            mail.info("Gmail sync done", extra={"message_id": "m-9"})
            logging.getLogger("anzen.sales").info("Invoice created")
            for h in root.handlers + mail.handlers:
                h.flush()
            lines = (tmp_path / "email_sync.log").read_text().splitlines()
            assert [json.loads(l)["message_id"] for l in lines] == ["m-9"]
            assert "Invoice created" in (tmp_path / "anzen.log").read_text()
        finally:
            for h in mail.handlers[:]:
                mail.removeHandler(h)
                h.close()
            for h in root.handlers[:]:
                if h not in saved[0]:
                    h.close()
            root.handlers[:] = saved[0]
            root.setLevel(saved[1])
