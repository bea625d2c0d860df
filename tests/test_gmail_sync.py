"""Tests for the Gmail client, connection records and the inbox sync pipeline."""

import base64
from unittest.mock import patch, MagicMock

import pytest


def _b64(text):
    return base64.urlsafe_b64encode(text.encode()).decode().rstrip("=")


def _response(payload, ok=True, status_code=200):
    resp = MagicMock()
    resp.ok = ok
    resp.status_code = status_code
    resp.text = "error" if not ok else ""
    resp.json.return_value = payload
    return resp


# ═══════════════════════════════════════════════════════════════════════════════
# OAUTH
# ═══════════════════════════════════════════════════════════════════════════════

class TestOAuth:

    def test_authorize_url(self):
        from anzen.agents.gmail import authorize_url
        url = authorize_url("client-123.apps.googleusercontent.com",
                            "http://localhost:5000/auth/gmail/callback", state="7")
        assert url.startswith("https://accounts.google.com/o/oauth2/v2/auth?")
        assert "client_id=client-123.apps.googleusercontent.com" in url
        assert "access_type=offline" in url
        assert "prompt=consent" in url
        assert "gmail.send" in url
        assert "state=7" in url

    def test_authorize_url_needs_client_id(self):
        from anzen.agents.gmail import authorize_url
        with pytest.raises(ValueError):
            authorize_url("", "http://localhost/cb")

    @patch("anzen.agents.gmail.requests.post")
    def test_exchange_code(self, mock_post):
        from anzen.agents.gmail import exchange_code
        mock_post.return_value = _response({"access_token": "ya29.a", "refresh_token": "1//r",
                                            "expires_in": 3599})
        tokens = exchange_code("4/code", "http://localhost/cb")
        assert tokens["refresh_token"] == "1//r"
        assert mock_post.call_args.kwargs["data"]["grant_type"] == "authorization_code"

    @patch("anzen.agents.gmail.requests.post")
    def test_exchange_code_failure(self, mock_post):
        from anzen.agents.gmail import exchange_code, GmailError
        mock_post.return_value = _response({}, ok=False, status_code=400)
        with pytest.raises(GmailError):
            exchange_code("bad", "http://localhost/cb")


class TestAccessToken:

    @patch("anzen.agents.gmail.requests.post")
    def test_valid_token_reused(self, mock_post, gmail_connection):
        from anzen.agents.gmail import ensure_access_token
        assert ensure_access_token(gmail_connection) == "ya29.access"
        mock_post.assert_not_called()

    @patch("anzen.agents.gmail.requests.post")
    def test_expired_token_refreshed(self, mock_post, gmail_connection, admin):
        from anzen.agents.gmail import ensure_access_token, get_connection
        gmail_connection["access_token_expires_at"] = "2020-01-01T00:00:00+00:00"
        mock_post.return_value = _response({"access_token": "ya29.fresh", "expires_in": 3599})
        assert ensure_access_token(gmail_connection) == "ya29.fresh"
        assert mock_post.call_args.kwargs["data"]["grant_type"] == "refresh_token"
        assert mock_post.call_args.kwargs["data"]["refresh_token"] == "1//refresh"
        stored = get_connection(admin["id"])
        assert stored["access_token"] == "ya29.fresh"
        assert stored["access_token_expires_at"] > "2020"

    def test_missing_expiry_without_refresh_token(self):
        from anzen.agents.gmail import ensure_access_token, GmailError
        with pytest.raises(GmailError, match="reconnect"):
            ensure_access_token({"id": 1, "access_token": "x",
                                 "access_token_expires_at": None, "refresh_token": None})

    @patch("anzen.agents.gmail.requests.post")
    def test_refresh_failure(self, mock_post, gmail_connection):
        from anzen.agents.gmail import ensure_access_token, GmailError
        gmail_connection["access_token_expires_at"] = "garbage"
        mock_post.return_value = _response({"error": "invalid_grant"}, ok=False, status_code=400)
        with pytest.raises(GmailError, match="Failed to refresh"):
            ensure_access_token(gmail_connection)


# ═══════════════════════════════════════════════════════════════════════════════
# CONNECTION RECORDS
# ═══════════════════════════════════════════════════════════════════════════════

class TestConnections:

    def test_status_hides_tokens(self, gmail_connection, admin):
        from anzen.agents.gmail import connection_status
        status = connection_status(admin["id"])
        assert status["email_address"] == "sales@anzenpharma.co.id"
        assert status["is_connected"] is True
        assert status["has_refresh_token"] is True
        assert "access_token" not in status
        assert "refresh_token" not in status

    def test_not_connected(self, admin):
        from anzen.agents.gmail import connection_status, toggle_sync, disconnect
        assert connection_status(admin["id"]) is None
        with pytest.raises(LookupError):
            toggle_sync(admin["id"])
        with pytest.raises(LookupError):
            disconnect(admin["id"])

    def test_reconnect_keeps_refresh_token(self, gmail_connection, admin):
        from anzen.agents.gmail import save_connection, get_connection
        save_connection(admin["id"], "sales@anzenpharma.co.id", "ya29.second", None, 3600)
        row = get_connection(admin["id"])
        assert row["id"] == gmail_connection["id"]
        assert row["access_token"] == "ya29.second"
        assert row["refresh_token"] == "1//refresh"

    def test_toggle_sync(self, gmail_connection, admin):
        from anzen.agents.gmail import toggle_sync, active_connections
        assert toggle_sync(admin["id"])["sync_enabled"] is False
        assert active_connections() == []
        assert toggle_sync(admin["id"])["sync_enabled"] is True
        assert len(active_connections()) == 1

    def test_disconnect_clears_tokens(self, gmail_connection, admin):
        from anzen.agents.gmail import disconnect, get_connection, toggle_sync
        status = disconnect(admin["id"])
        assert status["is_connected"] is False
        assert status["has_refresh_token"] is False
        assert get_connection(admin["id"])["access_token"] is None
        with pytest.raises(LookupError):
            toggle_sync(admin["id"])


class TestGmailApi:

    @patch("anzen.agents.gmail.requests.get")
    def test_list_unread(self, mock_get):
        from anzen.agents.gmail import list_unread
        mock_get.return_value = _response({"messages": [{"id": "m1", "threadId": "t1"}]})
        assert list_unread("tok", 10) == [{"id": "m1", "threadId": "t1"}]
        kwargs = mock_get.call_args.kwargs
        assert kwargs["params"] == {"q": "label:inbox is:unread", "maxResults": 10}
        assert kwargs["headers"]["Authorization"] == "Bearer tok"

    @patch("anzen.agents.gmail.requests.get")
    def test_empty_inbox(self, mock_get):
        from anzen.agents.gmail import list_unread
        mock_get.return_value = _response({"resultSizeEstimate": 0})
        assert list_unread("tok") == []


# ═══════════════════════════════════════════════════════════════════════════════
# MIME HELPERS
# ═══════════════════════════════════════════════════════════════════════════════

class TestMimeHelpers:

    def test_decode_base64url(self):
        from anzen.agents.email_sync import decode_base64url
        assert decode_base64url(_b64("Mohon penawaran")) == "Mohon penawaran"
        assert decode_base64url("") == ""
        assert decode_base64url("a") == ""

    def test_body_from_payload(self):
        from anzen.agents.email_sync import extract_email_body
        assert extract_email_body({"body": {"data": _b64("plain body")}}) == "plain body"

    def test_plain_part_preferred_over_html(self):
        from anzen.agents.email_sync import extract_email_body
        payload = {"parts": [
            {"mimeType": "text/html", "body": {"data": _b64("<p>html</p>")}},
            {"mimeType": "text/plain", "body": {"data": _b64("plain")}},
        ]}
        assert extract_email_body(payload) == "plain"

    def test_html_part_stripped(self):
        from anzen.agents.email_sync import extract_email_body
        payload = {"parts": [{"mimeType": "text/html",
                              "body": {"data": _b64("<div>Need <b>COA</b>&nbsp;please</div>")}}]}
        assert extract_email_body(payload) == "Need COA please"

    def test_nested_multipart(self):
        from anzen.agents.email_sync import extract_email_body
        payload = {"parts": [
            {"mimeType": "application/pdf", "body": {"attachmentId": "x"}},
            {"mimeType": "multipart/alternative", "parts": [
                {"mimeType": "text/plain", "body": {"data": _b64("nested")}}]},
        ]}
        assert extract_email_body(payload) == "nested"

    def test_no_body(self):
        from anzen.agents.email_sync import extract_email_body
        assert extract_email_body({"parts": []}) == ""

    def test_headers_and_sender(self):
        from anzen.agents.email_sync import get_header, split_sender
        headers = [{"name": "SUBJECT", "value": "Inquiry"}]
        assert get_header(headers, "subject") == "Inquiry"
        assert get_header(headers, "from") == ""
        assert split_sender("Budi Santoso <budi@kimiafarma.co.id>") == \
            ("budi@kimiafarma.co.id", "Budi Santoso")
        assert split_sender("budi@kimiafarma.co.id") == ("budi@kimiafarma.co.id", "")

    def test_is_inquiry(self):
        from anzen.agents.email_sync import is_inquiry
        assert is_inquiry(None) is False
        assert is_inquiry({"product_name": "Vitamin C", "confidence_score": 0}) is True
        assert is_inquiry({"product_name": "", "confidence_score": 0.6}) is True
        assert is_inquiry({"product_name": "ab", "confidence_score": 0.3}) is False


# ═══════════════════════════════════════════════════════════════════════════════
# SYNC PIPELINE
# ═══════════════════════════════════════════════════════════════════════════════

@pytest.fixture
def mailbox(make_message):
    """Three unread messages: an inquiry, a newsletter and one the parser chokes on."""
    return {
        "m1": make_message("m1", "Inquiry Vitamin C", "Mohon penawaran Vitamin C 500 KG + COA"),
        "m2": make_message("m2", "Newsletter", "Promo akhir tahun",
                           sender="Promo <news@shop.example>"),
        "m3": make_message("m3", "Re: meeting", "See you"),
    }


def _fake_parse(subject, body, from_email, from_name=""):
    from anzen.agents.email_parser import normalize, ParseError
    if subject == "Re: meeting":
        raise ParseError("Model returned invalid JSON")
    if subject == "Newsletter":
        ai = {"confidence": "low"}
    else:
        ai = {"productName": "Vitamin C", "quantity": "500 KG", "coaRequested": True,
              "urgency": "high", "confidence": "high", "companyName": "PT Kimia Farma"}
    return {"success": True, "data": normalize(ai, from_email, from_name), "rawAiResponse": ai}


@pytest.fixture
def gmail_api(mailbox):
    with patch("anzen.agents.gmail.ensure_access_token", return_value="ya29.access"), \
            patch("anzen.agents.gmail.list_unread",
                  return_value=[{"id": m} for m in mailbox]), \
            patch("anzen.agents.gmail.get_message",
                  side_effect=lambda token, mid: mailbox[mid]) as get_message, \
            patch("anzen.agents.email_sync.parse_email", side_effect=_fake_parse):
        yield get_message


class TestSyncPipeline:

    def test_counts(self, gmail_connection, gmail_api):
        from anzen.agents.email_sync import sync_connection
        result = sync_connection(gmail_connection)
        assert result == {"success": True, "processedCount": 3, "newInquiriesCount": 1,
                          "totalMessages": 3}

    def test_rerun_skips_stored_messages(self, gmail_connection, gmail_api):
        from anzen.agents.email_sync import sync_connection
        sync_connection(gmail_connection)
        again = sync_connection(gmail_connection)
        assert again["processedCount"] == 0
        assert again["newInquiriesCount"] == 0
        assert again["totalMessages"] == 3
        # the second run stops at the de-dup check
        assert gmail_api.call_count == 3

    def test_inquiry_created_with_reminders(self, gmail_connection, gmail_api):
        from anzen.agents.email_sync import sync_connection, list_inbox
        from anzen.crm.inquiries import list_inquiries
        from anzen.crm.reminders import list_reminders
        sync_connection(gmail_connection)
        inquiries = list_inquiries()
        assert len(inquiries) == 1
        inquiry = inquiries[0]
        assert inquiry["source"] == "email"
        assert inquiry["priority"] == "high"
        assert inquiry["contact_email"] == "budi@kimiafarma.co.id"
        assert inquiry["email_subject"] == "Inquiry Vitamin C"
        assert inquiry["ai_confidence_score"] == 0.9

        email = next(e for e in list_inbox() if e["gmail_message_id"] == "m1")
        assert email["converted_to_inquiry"] == inquiry["id"]
        assert inquiry["inquiry_date"] == email["received_at"][:10]

        types = {r["reminder_type"] for r in list_reminders(inquiry_id=inquiry["id"])}
        assert types == {"send_coa", "send_price"}

    def test_non_inquiries_stored_unconverted(self, gmail_connection, gmail_api):
        from anzen.agents.email_sync import sync_connection, list_inbox
        sync_connection(gmail_connection)
        emails = {e["gmail_message_id"]: e for e in list_inbox()}
        assert emails["m2"]["is_inquiry"] is False
        assert emails["m2"]["parsed_data"]["confidence"] == "low"
        assert emails["m3"]["is_inquiry"] is False
        assert emails["m3"]["parsed_data"] is None
        assert emails["m3"]["body_text"] == "See you"

    def test_inbox_filters(self, gmail_connection, gmail_api, admin):
        from anzen.agents.email_sync import sync_connection, list_inbox
        sync_connection(gmail_connection)
        assert len(list_inbox(admin["id"])) == 3
        assert all(e["mailbox"] == "sales@anzenpharma.co.id" for e in list_inbox())
        assert {e["gmail_message_id"] for e in list_inbox(only_open=True)} == {"m2", "m3"}

    def test_last_sync_stamped(self, gmail_connection, gmail_api, admin):
        from anzen.agents.email_sync import sync_connection
        from anzen.agents.gmail import get_connection
        sync_connection(gmail_connection)
        assert get_connection(admin["id"])["last_sync"]

    def test_fetch_error_skips_message(self, gmail_connection, gmail_api, mailbox):
        from anzen.agents.email_sync import sync_connection
        def flaky(token, mid):
            if mid == "m2":
                raise RuntimeError("503 Service Unavailable")
            return mailbox[mid]

        gmail_api.side_effect = flaky
        result = sync_connection(gmail_connection)
        assert result["processedCount"] == 2
        assert result["totalMessages"] == 3

    def test_reminder_failure_rolls_back_whole_message(self, gmail_connection, gmail_api):
        import sqlite3
        from anzen.agents.email_sync import sync_connection, list_inbox
        from anzen.crm.inquiries import list_inquiries
        from anzen.crm.reminders import list_reminders
        with patch("anzen.agents.email_sync.save_reminders",
                   side_effect=sqlite3.OperationalError("disk I/O error")):
            result = sync_connection(gmail_connection)
        assert result["processedCount"] == 2
        assert result["newInquiriesCount"] == 0
        assert "m1" not in {e["gmail_message_id"] for e in list_inbox()}
        assert list_inquiries() == []
        assert list_reminders() == []

        retry = sync_connection(gmail_connection)
        assert retry["processedCount"] == 1
        assert retry["newInquiriesCount"] == 1
        stored = [e for e in list_inbox() if e["gmail_message_id"] == "m1"]
        assert len(stored) == 1
        assert stored[0]["converted_to_inquiry"] == list_inquiries()[0]["id"]
        assert len(list_reminders()) == 2


class TestSyncRuns:

    def test_sync_user_not_connected(self, admin):
        from anzen.agents.email_sync import sync_user
        with pytest.raises(ValueError, match="not connected"):
            sync_user(admin["id"])

    def test_sync_user(self, gmail_connection, gmail_api, admin):
        from anzen.agents.email_sync import sync_user
        assert sync_user(admin["id"])["newInquiriesCount"] == 1

    def test_sync_all_isolates_failures(self, gmail_connection, gmail_api):
        from anzen.core.auth import create_profile
        from anzen.agents.gmail import save_connection, GmailError
        from anzen.agents.email_sync import sync_all
        rep = create_profile("penjualan", "penjualan-pass", role="sales")
        broken = save_connection(rep["id"], "rep@anzenpharma.co.id", "x", None, 3600)

        def token_for(connection):
            if connection["id"] == broken["id"]:
                raise GmailError("Failed to refresh access token")
            return "ya29.access"

        with patch("anzen.agents.gmail.ensure_access_token", side_effect=token_for):
            results = {r["connection_id"]: r for r in sync_all()}
        assert results[gmail_connection["id"]]["success"] is True
        assert results[broken["id"]] == {"success": False,
                                         "error": "Failed to refresh access token",
                                         "connection_id": broken["id"]}

    def test_poll_check_updates_status(self, gmail_connection, gmail_api, monkeypatch):
        from anzen.agents import email_sync
        status = {"running": False, "last_check": None, "emails_found": 0,
                  "inquiries_created": 0, "error": None}
        monkeypatch.setattr(email_sync, "POLL_STATUS", status)
        email_sync.do_poll_check()
        assert status["last_check"]
        assert status["emails_found"] == 3
        assert status["inquiries_created"] == 1
        assert status["error"] is None
