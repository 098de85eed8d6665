"""
Tests for the invoice and payment workflows.

Validates:
- Invoice creation runs the three-way match and sets the initial status
- Variance review and approval
- Payment creation against available headroom
- Process / clear / reverse / fail / retry / cancel and the invoice
  payment status they drive
- Read helpers for matching summaries and outstanding amounts
"""

from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

import pytest
from sqlalchemy import select

from procure_kernel.exceptions import ActionDeniedError, RecordNotFoundError
from procure_modules.ap.orm import ClearingEntryModel, InvoiceReceiptModel

FOUR_AT_100 = [{"item_code": "PUMP", "quantity": "4", "unit_price": "100"}]


@pytest.fixture
def received_po(procurement_service, ui_config, make_supplier):
    """Four pumps at 100 each, approved and fully received."""
    supplier = make_supplier(name="Pump Co", payment_terms_days=45)
    po_id = procurement_service.create_purchase_order(ui_config.buyer_id, supplier.id, FOUR_AT_100).entity_id
    procurement_service.submit_purchase_order(ui_config.buyer_id, po_id)
    procurement_service.approve_purchase_order(ui_config.approver_id, po_id)
    po = procurement_service.get_purchase_order(po_id)
    receipt = procurement_service.create_goods_receipt(
        ui_config.buyer_id, po_id, [{"purchase_order_line_id": po.lines[0].id, "quantity": "4"}],
    )
    procurement_service.accept_goods_receipt(ui_config.buyer_id, receipt.entity_id)
    return procurement_service.get_purchase_order(po_id)


@pytest.fixture
def approved_invoice(ap_service, ui_config, received_po):
    result = ap_service.create_invoice_receipt(ui_config.buyer_id, received_po.id)
    assert result.new_status == "approved", result.reason
    return result.entity_id


def invoice_line(po, quantity, unit_price):
    return {"purchase_order_line_id": po.lines[0].id, "quantity": quantity, "unit_price": unit_price}


def pay(ap_service, actor_id, invoice_id, amount):
    created = ap_service.create_payment(actor_id, invoice_id, amount)
    assert created.is_success, created.reason
    return created.entity_id


# =============================================================================
# Invoices
# =============================================================================


class TestInvoiceCreation:
    """create_invoice_receipt and the three-way match."""

    def test_matched_invoice_is_approved(self, ap_service, ui_config, received_po):
        result = ap_service.create_invoice_receipt(
            ui_config.buyer_id, received_po.id, [invoice_line(received_po, "4", "100")],
            supplier_invoice_number="PC-881",
        )

        assert result.new_status == "approved"
        assert result.data["matching_status"] == "matched"
        assert result.data["invoice_number"] == "INV-2024-00001"
        assert Decimal(result.data["total_amount"]) == Decimal("400")
        assert Decimal(result.data["total_variance"]) == 0
        assert result.data["variance_line_count"] == 0

    def test_due_date_uses_supplier_terms(self, ap_service, ui_config, received_po):
        result = ap_service.create_invoice_receipt(ui_config.buyer_id, received_po.id)

        assert result.data["due_date"] == "2024-04-29"

    def test_explicit_due_date(self, ap_service, ui_config, received_po):
        result = ap_service.create_invoice_receipt(ui_config.buyer_id, received_po.id, due_date="2024-05-01")

        assert result.data["due_date"] == "2024-05-01"

    def test_price_variance_goes_to_review(self, ap_service, ui_config, received_po):
        result = ap_service.create_invoice_receipt(
            ui_config.buyer_id, received_po.id, [invoice_line(received_po, "4", "115")],
        )

        assert result.new_status == "variance_review"
        assert result.data["matching_status"] == "variance"
        assert Decimal(result.data["total_variance"]) == Decimal("60")
        assert result.data["variance_line_count"] == 1

    def test_price_within_tolerance_matches(self, ap_service, ui_config, received_po):
        result = ap_service.create_invoice_receipt(
            ui_config.buyer_id, received_po.id, [invoice_line(received_po, "4", "104")],
        )

        assert result.new_status == "approved"

    def test_quantity_over_received_is_variance(self, ap_service, ui_config, received_po):
        result = ap_service.create_invoice_receipt(
            ui_config.buyer_id, received_po.id, [invoice_line(received_po, "5", "100")],
        )

        assert result.new_status == "variance_review"
        assert Decimal(result.data["total_variance"]) == Decimal("100")

    def test_nothing_left_to_invoice(self, ap_service, ui_config, received_po):
        ap_service.create_invoice_receipt(ui_config.buyer_id, received_po.id)

        again = ap_service.create_invoice_receipt(ui_config.buyer_id, received_po.id)

        assert again.code == "nothing_to_invoice"

    def test_tax_added_to_total(self, ap_service, ui_config, received_po):
        result = ap_service.create_invoice_receipt(ui_config.buyer_id, received_po.id, tax_amount="32.50")

        assert Decimal(result.data["total_amount"]) == Decimal("432.50")

    def test_no_accepted_receipt(self, procurement_service, ap_service, ui_config, make_supplier):
        supplier = make_supplier()
        po_id = procurement_service.create_purchase_order(ui_config.buyer_id, supplier.id, FOUR_AT_100).entity_id
        procurement_service.submit_purchase_order(ui_config.buyer_id, po_id)
        procurement_service.approve_purchase_order(ui_config.approver_id, po_id)

        result = ap_service.create_invoice_receipt(ui_config.buyer_id, po_id)

        assert result.code == "no_accepted_receipt"

    def test_draft_po_not_invoiceable(self, procurement_service, ap_service, ui_config, make_supplier):
        supplier = make_supplier()
        po_id = procurement_service.create_purchase_order(ui_config.buyer_id, supplier.id, FOUR_AT_100).entity_id

        assert ap_service.create_invoice_receipt(ui_config.buyer_id, po_id).code == "po_not_receivable"

    def test_currency_mismatch(self, ap_service, ui_config, received_po):
        result = ap_service.create_invoice_receipt(ui_config.buyer_id, received_po.id, currency="EUR")

        assert result.code == "currency_mismatch"

    @pytest.mark.parametrize(
        "quantity, price, code",
        [("0", "100", "invalid_quantity"), ("1", "-5", "invalid_price")],
    )
    def test_invalid_lines(self, ap_service, ui_config, received_po, quantity, price, code):
        result = ap_service.create_invoice_receipt(
            ui_config.buyer_id, received_po.id, [invoice_line(received_po, quantity, price)],
        )

        assert result.code == code

    def test_foreign_receipt_line(self, ap_service, ui_config, received_po):
        line = invoice_line(received_po, "4", "100")
        line["goods_receipt_line_id"] = uuid4()

        result = ap_service.create_invoice_receipt(ui_config.buyer_id, received_po.id, [line])

        assert result.code == "invalid_goods_receipt_line"

    def test_failed_create_writes_nothing(self, session, ap_service, ui_config, received_po):
        ap_service.create_invoice_receipt(ui_config.buyer_id, received_po.id, currency="EUR")

        assert session.execute(select(InvoiceReceiptModel)).first() is None


class TestVarianceApproval:
    """approve_invoice_variance."""

    @pytest.fixture
    def variance_invoice(self, ap_service, ui_config, received_po):
        return ap_service.create_invoice_receipt(
            ui_config.buyer_id, received_po.id, [invoice_line(received_po, "4", "115")],
        ).entity_id

    def test_payment_blocked_until_approved(self, ap_service, ui_config, variance_invoice):
        result = ap_service.create_payment(ui_config.buyer_id, variance_invoice, "460")

        assert result.code == "variance_not_approved"

    def test_approve_with_notes(self, session, ap_service, ui_config, variance_invoice):
        result = ap_service.approve_invoice_variance(ui_config.buyer_id, variance_invoice, "Freight surcharge agreed")

        assert (result.previous_status, result.new_status) == ("variance_review", "approved")
        assert session.get(InvoiceReceiptModel, variance_invoice).variance_notes == "Freight surcharge agreed"
        assert pay(ap_service, ui_config.buyer_id, variance_invoice, "460")

    def test_notes_required(self, ap_service, ui_config, variance_invoice):
        assert ap_service.approve_invoice_variance(ui_config.buyer_id, variance_invoice, "").code == "reason_required"

    def test_approve_matched_invoice_is_invalid(self, ap_service, ui_config, approved_invoice):
        result = ap_service.approve_invoice_variance(ui_config.buyer_id, approved_invoice, "why")

        assert result.code == "invalid_transition"


class TestPendingMatch:
    """Invoices with an unreceived line: rematch and cancel."""

    @pytest.fixture
    def half_received_po(self, procurement_service, ui_config, make_supplier):
        """Pumps received, seals not yet."""
        supplier = make_supplier(name="Seal Co")
        po_id = procurement_service.create_purchase_order(
            ui_config.buyer_id, supplier.id,
            [
                {"item_code": "PUMP", "quantity": "4", "unit_price": "100"},
                {"item_code": "SEAL", "quantity": "10", "unit_price": "5"},
            ],
        ).entity_id
        procurement_service.submit_purchase_order(ui_config.buyer_id, po_id)
        procurement_service.approve_purchase_order(ui_config.approver_id, po_id)
        po = procurement_service.get_purchase_order(po_id)
        receipt = procurement_service.create_goods_receipt(
            ui_config.buyer_id, po_id, [{"purchase_order_line_id": po.lines[0].id, "quantity": "4"}],
        )
        procurement_service.accept_goods_receipt(ui_config.buyer_id, receipt.entity_id)
        return procurement_service.get_purchase_order(po_id)

    @pytest.fixture
    def pending_invoice(self, ap_service, ui_config, half_received_po):
        po = half_received_po
        result = ap_service.create_invoice_receipt(
            ui_config.buyer_id, po.id,
            [
                {"purchase_order_line_id": po.lines[0].id, "quantity": "4", "unit_price": "100"},
                {"purchase_order_line_id": po.lines[1].id, "quantity": "10", "unit_price": "5"},
            ],
        )
        assert result.new_status == "pending_match", result.reason
        return result.entity_id

    def receive_seals(self, procurement_service, ui_config, po):
        receipt = procurement_service.create_goods_receipt(
            ui_config.buyer_id, po.id, [{"purchase_order_line_id": po.lines[1].id, "quantity": "10"}],
        )
        procurement_service.accept_goods_receipt(ui_config.buyer_id, receipt.entity_id)

    def test_pending_line_does_not_consume_quantity(self, procurement_service, ui_config, half_received_po,
                                                     pending_invoice):
        po = procurement_service.get_purchase_order(half_received_po.id)

        assert po.lines[0].quantity_invoiced == Decimal("4")
        assert po.lines[1].quantity_invoiced == Decimal("0")

    def test_pending_invoice_cannot_be_paid(self, ap_service, ui_config, pending_invoice):
        assert ap_service.create_payment(ui_config.buyer_id, pending_invoice, "450").code == "invoice_not_approved"

    def test_rematch_after_receipt_approves(self, session, procurement_service, ap_service, ui_config,
                                            half_received_po, pending_invoice):
        self.receive_seals(procurement_service, ui_config, half_received_po)

        result = ap_service.rematch_invoice(ui_config.buyer_id, pending_invoice)

        assert (result.previous_status, result.new_status) == ("pending_match", "approved")
        assert result.data["matching_status"] == "matched"
        invoice = session.get(InvoiceReceiptModel, pending_invoice)
        assert invoice.matching_status == "matched"
        assert [line.match_status for line in invoice.lines] == ["matched", "matched"]
        po = procurement_service.get_purchase_order(half_received_po.id)
        assert [line.quantity_invoiced for line in po.lines] == [Decimal("4"), Decimal("10")]
        assert pay(ap_service, ui_config.buyer_id, pending_invoice, "450")

    def test_rematch_with_price_variance_goes_to_review(self, procurement_service, ap_service, ui_config,
                                                        half_received_po):
        po = half_received_po
        invoice_id = ap_service.create_invoice_receipt(
            ui_config.buyer_id, po.id,
            [{"purchase_order_line_id": po.lines[1].id, "quantity": "10", "unit_price": "6"}],
        ).entity_id
        self.receive_seals(procurement_service, ui_config, po)

        result = ap_service.rematch_invoice(ui_config.buyer_id, invoice_id)

        assert result.new_status == "variance_review"
        assert Decimal(result.data["total_variance"]) == Decimal("10")

    def test_rematch_while_still_pending_changes_nothing(self, session, ap_service, ui_config, pending_invoice):
        result = ap_service.rematch_invoice(ui_config.buyer_id, pending_invoice)

        assert result.code == "match_pending"
        assert session.get(InvoiceReceiptModel, pending_invoice).status == "pending_match"

    def test_rematch_approved_invoice_is_invalid(self, ap_service, ui_config, approved_invoice):
        assert ap_service.rematch_invoice(ui_config.buyer_id, approved_invoice).code == "invalid_transition"

    def test_cancel_releases_quantity(self, procurement_service, ap_service, ui_config, half_received_po,
                                      pending_invoice):
        result = ap_service.cancel_invoice(ui_config.buyer_id, pending_invoice, "Supplier re-issued")

        assert (result.previous_status, result.new_status) == ("pending_match", "cancelled")
        assert Decimal(result.data["released_quantity"]) == Decimal("4")
        po = procurement_service.get_purchase_order(half_received_po.id)
        assert [line.quantity_invoiced for line in po.lines] == [Decimal("0"), Decimal("0")]

    def test_reentered_invoice_matches_after_cancel(self, procurement_service, ap_service, ui_config,
                                                    half_received_po, pending_invoice):
        ap_service.cancel_invoice(ui_config.buyer_id, pending_invoice, "Supplier re-issued")
        self.receive_seals(procurement_service, ui_config, half_received_po)

        again = ap_service.create_invoice_receipt(ui_config.buyer_id, half_received_po.id)

        assert again.new_status == "approved"
        assert Decimal(again.data["total_amount"]) == Decimal("450")

    def test_cancel_requires_reason(self, ap_service, ui_config, pending_invoice):
        assert ap_service.cancel_invoice(ui_config.buyer_id, pending_invoice, " ").code == "reason_required"

    def test_cancel_approved_invoice_is_invalid(self, ap_service, ui_config, approved_invoice):
        assert ap_service.cancel_invoice(ui_config.buyer_id, approved_invoice, "late").code == "invalid_transition"

    def test_rematch_denied_for_approver(self, ap_service, ui_config, pending_invoice):
        assert ap_service.rematch_invoice(ui_config.approver_id, pending_invoice).code == "action_denied"


# =============================================================================
# Payments
# =============================================================================


class TestPaymentCreation:
    """create_payment guards."""

    def test_overpayment_rejected(self, ap_service, ui_config, approved_invoice):
        result = ap_service.create_payment(ui_config.buyer_id, approved_invoice, "500")

        assert result.code == "exceeds_outstanding"

    def test_pending_payments_reserve_headroom(self, ap_service, ui_config, approved_invoice):
        pay(ap_service, ui_config.buyer_id, approved_invoice, "300")

        result = ap_service.create_payment(ui_config.buyer_id, approved_invoice, "200")

        assert result.code == "exceeds_outstanding"
        assert pay(ap_service, ui_config.buyer_id, approved_invoice, "100")

    @pytest.mark.parametrize("amount", ["0", "-10"])
    def test_non_positive_amount(self, ap_service, ui_config, approved_invoice, amount):
        assert ap_service.create_payment(ui_config.buyer_id, approved_invoice, amount).code == "invalid_amount"

    def test_unsupported_method(self, ap_service, ui_config, approved_invoice):
        result = ap_service.create_payment(ui_config.buyer_id, approved_invoice, "100", payment_method="barter")

        assert result.code == "invalid_payment_method"

    def test_currency_mismatch(self, ap_service, ui_config, approved_invoice):
        result = ap_service.create_payment(ui_config.buyer_id, approved_invoice, "100", currency="GBP")

        assert result.code == "currency_mismatch"

    def test_numbering(self, ap_service, ui_config, approved_invoice):
        result = ap_service.create_payment(ui_config.buyer_id, approved_invoice, "100")

        assert result.data["payment_number"] == "PAY-2024-00001"
        assert result.new_status == "pending"

    def test_approver_cannot_pay(self, ap_service, ui_config, approved_invoice):
        assert ap_service.create_payment(ui_config.approver_id, approved_invoice, "100").code == "action_denied"


class TestPaymentLifecycle:
    """Transitions and invoice settlement."""

    def test_exact_payment_settles_invoice(self, session, ap_service, ui_config, approved_invoice):
        payment_id = pay(ap_service, ui_config.buyer_id, approved_invoice, "400")

        processed = ap_service.process_payment(ui_config.buyer_id, payment_id)
        assert processed.data["invoice_status"] == "paid"
        assert processed.data["payment_status"] == "paid"
        assert Decimal(processed.data["outstanding"]) == 0

        cleared = ap_service.clear_payment(ui_config.buyer_id, payment_id, bank_reference="BANK-77")
        assert cleared.new_status == "cleared"
        entry = session.get(ClearingEntryModel, UUID(cleared.data["clearing_entry_id"]))
        assert entry.cleared_amount == Decimal("400")
        assert entry.bank_reference == "BANK-77"
        assert entry.clearing_date == date(2024, 3, 15)

        assert session.get(InvoiceReceiptModel, approved_invoice).status == "paid"

    def test_partial_payment(self, ap_service, ui_config, approved_invoice):
        payment_id = pay(ap_service, ui_config.buyer_id, approved_invoice, "150")

        processed = ap_service.process_payment(ui_config.buyer_id, payment_id)

        assert processed.data["invoice_status"] == "approved"
        assert processed.data["payment_status"] == "partially_paid"
        outstanding = ap_service.get_outstanding_amount(ui_config.buyer_id, approved_invoice)
        assert outstanding.outstanding == Decimal("250")
        assert outstanding.settled_amount == Decimal("150")
        assert outstanding.available_for_payment == Decimal("250")

    def test_reverse_reopens_paid_invoice(self, ap_service, ui_config, approved_invoice):
        payment_id = pay(ap_service, ui_config.buyer_id, approved_invoice, "400")
        ap_service.process_payment(ui_config.buyer_id, payment_id)
        ap_service.clear_payment(ui_config.buyer_id, payment_id)

        missing_reason = ap_service.reverse_payment(ui_config.buyer_id, payment_id, None)
        reversed_ = ap_service.reverse_payment(ui_config.buyer_id, payment_id, "duplicate remittance")

        assert missing_reason.code == "reason_required"
        assert reversed_.new_status == "reversed"
        assert reversed_.data["invoice_status"] == "approved"
        assert reversed_.data["payment_status"] == "unpaid"
        assert pay(ap_service, ui_config.buyer_id, approved_invoice, "400")

    def test_fail_and_retry(self, ap_service, ui_config, approved_invoice):
        payment_id = pay(ap_service, ui_config.buyer_id, approved_invoice, "400")

        failed = ap_service.fail_payment(ui_config.buyer_id, payment_id, "bank rejected")
        retried = ap_service.retry_payment(ui_config.buyer_id, payment_id)

        assert failed.new_status == "failed"
        assert (retried.previous_status, retried.new_status) == ("failed", "pending")

    def test_retry_blocked_when_headroom_taken(self, ap_service, ui_config, approved_invoice):
        first = pay(ap_service, ui_config.buyer_id, approved_invoice, "400")
        ap_service.fail_payment(ui_config.buyer_id, first, "bank rejected")
        pay(ap_service, ui_config.buyer_id, approved_invoice, "400")

        assert ap_service.retry_payment(ui_config.buyer_id, first).code == "exceeds_outstanding"

    def test_failing_processed_payment_unsettles(self, ap_service, ui_config, approved_invoice):
        payment_id = pay(ap_service, ui_config.buyer_id, approved_invoice, "400")
        ap_service.process_payment(ui_config.buyer_id, payment_id)

        failed = ap_service.fail_payment(ui_config.buyer_id, payment_id, "returned")

        assert failed.data["invoice_status"] == "approved"
        assert failed.data["payment_status"] == "unpaid"

    def test_cancel_frees_headroom(self, ap_service, ui_config, approved_invoice):
        payment_id = pay(ap_service, ui_config.buyer_id, approved_invoice, "400")

        cancelled = ap_service.cancel_payment(ui_config.buyer_id, payment_id, "wrong account")

        assert cancelled.new_status == "cancelled"
        assert ap_service.get_outstanding_amount(ui_config.buyer_id, approved_invoice).available_for_payment == 400

    def test_clear_pending_is_invalid(self, ap_service, ui_config, approved_invoice):
        payment_id = pay(ap_service, ui_config.buyer_id, approved_invoice, "100")

        assert ap_service.clear_payment(ui_config.buyer_id, payment_id).code == "invalid_transition"

    def test_unknown_payment(self, ap_service, ui_config):
        assert ap_service.process_payment(ui_config.buyer_id, uuid4()).code == "not_found"


# =============================================================================
# Read helpers
# =============================================================================


class TestReadHelpers:
    """Matching summary and outstanding amount."""

    def test_matching_summary(self, ap_service, ui_config, received_po):
        invoice_id = ap_service.create_invoice_receipt(
            ui_config.buyer_id, received_po.id, [invoice_line(received_po, "4", "115")],
        ).entity_id

        summary = ap_service.get_invoice_matching_summary(ui_config.buyer_id, invoice_id)

        assert summary.status == "variance_review"
        assert summary.matching_status == "variance"
        assert summary.total_variance == Decimal("60")
        [line] = summary.lines
        assert line.item_code == "PUMP"
        assert line.quantity_received == Decimal("4")
        assert line.invoice_unit_price == Decimal("115")
        assert line.variance_reason == "price_variance"

    def test_summary_requires_read(self, ap_service, ui_config, approved_invoice):
        with pytest.raises(ActionDeniedError):
            ap_service.get_invoice_matching_summary(ui_config.approver_id, approved_invoice)

    def test_unknown_invoice(self, ap_service, ui_config):
        with pytest.raises(RecordNotFoundError):
            ap_service.get_outstanding_amount(ui_config.buyer_id, uuid4())

    def test_fresh_invoice_unpaid(self, ap_service, ui_config, approved_invoice):
        outstanding = ap_service.get_outstanding_amount(ui_config.buyer_id, approved_invoice)

        assert outstanding.payment_status == "unpaid"
        assert outstanding.outstanding == Decimal("400")
