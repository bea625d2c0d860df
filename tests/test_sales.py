"""Tests for delivery challans, sales invoices and the finance ledger."""

from datetime import date, datetime, timedelta

import pytest


def _stock(batch):
    from anzen.core.db import get_db
    with get_db() as conn:
        return conn.execute("SELECT current_stock FROM batches WHERE id=?",
                            (batch["id"],)).fetchone()[0]


@pytest.fixture
def challan(customer, stocked_product):
    from anzen.erp.sales import create_challan
    return create_challan({"customer_id": customer["id"], "vehicle_number": "B 1234 XYZ",
                           "driver_name": "Joko"},
                          [{"product_id": stocked_product["product"]["id"], "quantity": 50}])


# ═══════════════════════════════════════════════════════════════════════════════
# DELIVERY CHALLANS
# ═══════════════════════════════════════════════════════════════════════════════

class TestChallans:

    def test_create_splits_lines_by_fefo(self, challan, stocked_product):
        assert challan["challan_number"] == f"DC-{datetime.now().year}-0001"
        assert challan["status"] == "pending"
        assert challan["customer_name"] == "PT Kimia Farma"
        assert [(i["batch_number"], i["quantity"]) for i in challan["items"]] == \
            [("B-NEAR", 40), ("B-FAR", 10)]
        assert all(i["unit_price"] == 120000 for i in challan["items"])

    def test_create_consumes_stock(self, challan, stocked_product):
        batches = stocked_product["batches"]
        assert _stock(batches["near"]) == 0
        assert _stock(batches["far"]) == 50
        assert _stock(batches["expired"]) == 25

    def test_named_batch(self, customer, stocked_product):
        from anzen.erp.sales import create_challan
        far = stocked_product["batches"]["far"]
        dc = create_challan({"customer_id": customer["id"]},
                            [{"product_id": stocked_product["product"]["id"], "quantity": 5,
                              "batch_id": far["id"], "unit_price": 99000}])
        assert dc["items"][0]["batch_id"] == far["id"]
        assert dc["items"][0]["unit_price"] == 99000
        assert _stock(far) == 55

    def test_batch_of_other_product_rejected(self, customer, stocked_product):
        from anzen.erp.products import create_product
        from anzen.erp.sales import create_challan
        other = create_product({"product_code": "PRD-009", "product_name": "Lactose"})
        with pytest.raises(ValueError, match="not for product"):
            create_challan({"customer_id": customer["id"]},
                           [{"product_id": other["id"], "quantity": 1,
                             "batch_id": stocked_product["batches"]["far"]["id"]}])

    def test_insufficient_stock_creates_nothing(self, customer, stocked_product):
        from anzen.erp.sales import create_challan, list_challans
        with pytest.raises(ValueError, match="Insufficient stock"):
            create_challan({"customer_id": customer["id"]},
                           [{"product_id": stocked_product["product"]["id"], "quantity": 500}])
        assert list_challans() == []
        assert _stock(stocked_product["batches"]["near"]) == 40

    def test_repeated_product_lines_share_stock(self, customer, stocked_product):
        from anzen.erp.sales import create_challan
        pid = stocked_product["product"]["id"]
        dc = create_challan({"customer_id": customer["id"]},
                            [{"product_id": pid, "quantity": 30}] * 2)
        assert [(i["batch_number"], i["quantity"]) for i in dc["items"]] == \
            [("B-NEAR", 30), ("B-NEAR", 10), ("B-FAR", 20)]
        assert _stock(stocked_product["batches"]["near"]) == 0
        assert _stock(stocked_product["batches"]["far"]) == 40

    def test_named_batch_then_fefo_on_same_batch(self, customer, stocked_product):
        from anzen.erp.sales import create_challan
        pid = stocked_product["product"]["id"]
        near = stocked_product["batches"]["near"]
        dc = create_challan({"customer_id": customer["id"]},
                            [{"product_id": pid, "quantity": 35, "batch_id": near["id"]},
                             {"product_id": pid, "quantity": 10}])
        assert [(i["batch_number"], i["quantity"]) for i in dc["items"]] == \
            [("B-NEAR", 35), ("B-NEAR", 5), ("B-FAR", 5)]
        assert _stock(near) == 0
        assert _stock(stocked_product["batches"]["far"]) == 55

    def test_repeated_lines_beyond_usable_stock_rejected(self, customer, stocked_product):
        from anzen.erp.sales import create_challan
        pid = stocked_product["product"]["id"]
        with pytest.raises(ValueError, match="Insufficient stock"):
            create_challan({"customer_id": customer["id"]},
                           [{"product_id": pid, "quantity": 60}] * 2)
        assert _stock(stocked_product["batches"]["near"]) == 40
        assert _stock(stocked_product["batches"]["far"]) == 60

    def test_validation(self, customer, stocked_product):
        from anzen.erp.sales import create_challan
        pid = stocked_product["product"]["id"]
        with pytest.raises(ValueError, match="customer"):
            create_challan({}, [{"product_id": pid, "quantity": 1}])
        with pytest.raises(ValueError, match="positive"):
            create_challan({"customer_id": customer["id"]}, [{"product_id": pid, "quantity": 0}])

    def test_deliver(self, challan):
        from anzen.erp.sales import update_challan_status
        assert update_challan_status(challan["id"], "delivered")["status"] == "delivered"

    def test_cancel_restores_stock(self, challan, stocked_product):
        from anzen.erp.sales import update_challan_status
        from anzen.erp.inventory import list_transactions
        update_challan_status(challan["id"], "cancelled")
        assert _stock(stocked_product["batches"]["near"]) == 40
        assert _stock(stocked_product["batches"]["far"]) == 60
        returns = list_transactions(stocked_product["product"]["id"], transaction_type="return")
        assert len(returns) == 2

    def test_cancelled_is_final(self, challan):
        from anzen.erp.sales import update_challan_status
        update_challan_status(challan["id"], "cancelled")
        with pytest.raises(ValueError):
            update_challan_status(challan["id"], "delivered")

    def test_cannot_return_to_pending(self, challan):
        from anzen.erp.sales import update_challan_status
        update_challan_status(challan["id"], "delivered")
        with pytest.raises(ValueError):
            update_challan_status(challan["id"], "pending")

    def test_invalid_status(self, challan):
        from anzen.erp.sales import update_challan_status
        with pytest.raises(ValueError):
            update_challan_status(challan["id"], "lost")

    def test_search(self, challan):
        from anzen.erp.sales import list_challans
        assert len(list_challans("kimia")) == 1
        assert list_challans(status="delivered") == []


# ═══════════════════════════════════════════════════════════════════════════════
# INVOICES
# ═══════════════════════════════════════════════════════════════════════════════

class TestInvoices:

    def test_invoice_from_challan(self, challan, stocked_product):
        from anzen.erp.sales import invoice_from_challan, get_challan
        invoice = invoice_from_challan(challan["id"])
        assert invoice["invoice_number"] == f"INV-{datetime.now().year}-0001"
        assert invoice["subtotal"] == pytest.approx(50 * 120000)
        assert invoice["tax_amount"] == pytest.approx(50 * 120000 * 0.11)
        assert invoice["payment_status"] == "unpaid"
        assert invoice["balance"] == pytest.approx(invoice["total_amount"])
        assert len(invoice["items"]) == 2
        assert get_challan(challan["id"])["invoice_id"] == invoice["id"]
        # stock already left with the challan
        assert _stock(stocked_product["batches"]["far"]) == 50

    def test_due_date_from_payment_terms(self, challan):
        from anzen.erp.sales import invoice_from_challan
        invoice = invoice_from_challan(challan["id"], {"invoice_date": "2026-03-01"})
        assert invoice["due_date"] == "2026-03-31"

    def test_challan_invoiced_once(self, challan):
        from anzen.erp.sales import invoice_from_challan
        invoice_from_challan(challan["id"])
        with pytest.raises(ValueError, match="already invoiced"):
            invoice_from_challan(challan["id"])

    def test_invoiced_challan_cannot_be_cancelled(self, challan):
        from anzen.erp.sales import invoice_from_challan, update_challan_status
        invoice_from_challan(challan["id"])
        with pytest.raises(ValueError):
            update_challan_status(challan["id"], "cancelled")

    def test_cancelled_challan_cannot_be_invoiced(self, challan):
        from anzen.erp.sales import invoice_from_challan, update_challan_status
        update_challan_status(challan["id"], "cancelled")
        with pytest.raises(ValueError):
            invoice_from_challan(challan["id"])

    def test_standalone_invoice_consumes_stock(self, customer, stocked_product):
        from anzen.erp.sales import create_invoice
        invoice = create_invoice({"customer_id": customer["id"]},
                                 [{"product_id": stocked_product["product"]["id"],
                                   "quantity": 5, "unit_price": 100000}])
        assert invoice["total_amount"] == pytest.approx(555000)
        assert invoice["items"][0]["batch_number"] == "B-NEAR"
        assert _stock(stocked_product["batches"]["near"]) == 35
        expected_due = (date.today() + timedelta(days=30)).isoformat()
        assert invoice["due_date"] == expected_due

    def test_standalone_invoice_repeated_lines(self, customer, stocked_product):
        from anzen.erp.sales import create_invoice
        pid = stocked_product["product"]["id"]
        invoice = create_invoice({"customer_id": customer["id"]},
                                 [{"product_id": pid, "quantity": 30, "unit_price": 100000}] * 2)
        assert sorted(i["quantity"] for i in invoice["items"]) == [10, 20, 30]
        assert invoice["subtotal"] == pytest.approx(6000000)
        assert _stock(stocked_product["batches"]["near"]) == 0
        assert _stock(stocked_product["batches"]["far"]) == 40

    def test_list_filters(self, customer, stocked_product):
        from anzen.erp.sales import create_invoice, list_invoices
        create_invoice({"customer_id": customer["id"]},
                       [{"product_id": stocked_product["product"]["id"], "quantity": 1}])
        assert len(list_invoices(customer_id=customer["id"])) == 1
        assert list_invoices(payment_status="paid") == []
        assert len(list_invoices("kimia")) == 1

    def test_missing_invoice(self):
        from anzen.erp.sales import get_invoice
        with pytest.raises(LookupError):
            get_invoice(12345)


# ═══════════════════════════════════════════════════════════════════════════════
# FINANCE
# ═══════════════════════════════════════════════════════════════════════════════

@pytest.fixture
def invoice(customer, stocked_product):
    from anzen.erp.sales import create_invoice
    return create_invoice({"customer_id": customer["id"]},
                          [{"product_id": stocked_product["product"]["id"],
                            "quantity": 10, "unit_price": 100000}])


class TestPayments:

    def test_partial_then_paid(self, invoice):
        from anzen.erp.finance import record_payment
        from anzen.erp.sales import get_invoice
        first = record_payment(invoice["id"], 500000, method="transfer")
        assert first["payment_status"] == "partial"
        assert first["balance"] == pytest.approx(610000)
        second = record_payment(invoice["id"], 610000)
        assert second["payment_status"] == "paid"
        assert get_invoice(invoice["id"])["balance"] == 0

    def test_overpayment_rejected(self, invoice):
        from anzen.erp.finance import record_payment
        with pytest.raises(ValueError, match="exceeds"):
            record_payment(invoice["id"], 2000000)

    def test_non_positive_rejected(self, invoice):
        from anzen.erp.finance import record_payment
        with pytest.raises(ValueError):
            record_payment(invoice["id"], 0)

    def test_unknown_invoice(self):
        from anzen.erp.finance import record_payment
        with pytest.raises(LookupError):
            record_payment(999, 10)

    def test_payment_booked_as_income(self, invoice):
        from anzen.erp.finance import record_payment, list_entries
        record_payment(invoice["id"], 100000, payment_date="2026-05-02", method="cash",
                       notes="DP")
        entry = list_entries(entry_type="income")[0]
        assert entry["amount"] == 100000
        assert entry["entry_date"] == "2026-05-02"
        assert invoice["invoice_number"] in entry["description"]
        assert "(cash)" in entry["description"]


class TestLedger:

    def test_expense_validation(self):
        from anzen.erp.finance import record_expense
        with pytest.raises(ValueError):
            record_expense({"amount": 0, "category": "freight"})
        with pytest.raises(ValueError):
            record_expense({"amount": 10})

    def test_invalid_entry_type_filter(self):
        from anzen.erp.finance import list_entries
        with pytest.raises(ValueError):
            list_entries(entry_type="refund")

    def test_summary(self, invoice):
        from anzen.erp.finance import record_payment, record_expense, summary
        record_payment(invoice["id"], 300000)
        record_expense({"amount": 50000, "category": "freight"})
        result = summary()
        assert result["income"] == 300000
        assert result["expense"] == 50000
        assert result["net"] == 250000
        assert result["receivables"] == pytest.approx(1110000 - 300000)

    def test_summary_period(self):
        from anzen.erp.finance import record_expense, summary
        record_expense({"amount": 100, "category": "office", "entry_date": "2026-01-15"})
        record_expense({"amount": 200, "category": "office", "entry_date": "2026-02-15"})
        assert summary("2026-02-01", "2026-02-28")["expense"] == 200

    def test_payables_settled_by_grn_expenses(self, supplier, product):
        from anzen.erp.purchasing import create_grn, post_grn
        from anzen.erp.finance import record_expense, summary
        grn = create_grn({"supplier_id": supplier["id"]},
                         [{"product_id": product["id"], "quantity_received": 10,
                           "unit_cost": 1000}])
        post_grn(grn["id"])
        assert summary()["payables"] == pytest.approx(11100)
        record_expense({"amount": 11100, "category": "supplier payment",
                        "reference_type": "grn", "reference_id": grn["id"]})
        assert summary()["payables"] == 0
