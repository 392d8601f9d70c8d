"""
Approval workflow tests.

Verifies:
- Approving an order applies stock, completes the order and creates one invoice
- Side effects run exactly once; a second approve/reject is AlreadyResolved
- A failure anywhere during approval rolls back the status change too
- Tax and side fees are replayed from the request snapshot
- Every state change leaves an audit entry
"""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import text

from tradebook.errors import (
    AlreadyResolved,
    DuplicateReference,
    InsufficientStock,
    InvalidReference,
    NoActiveTaxRate,
    NotFound,
    TransientStoreError,
    ValidationError,
)
from tradebook.models import (
    ApprovalRequest,
    AuditLog,
    InventoryTransaction,
    Invoice,
    Order,
    Product,
    TaxRule,
)
from tradebook.services import approval_service, expense_service, inventory_service, invoice_service


def _order(ctx, lines, order_type="EXPORT", code="ORD-1", **kwargs):
    items = [{"product_id": p.id, "quantity": q} for p, q in lines]
    return inventory_service.create_order(ctx, code, order_type, items, **kwargs)


@pytest.fixture
def approver(manager_user):
    return manager_user.id


# =============================================================================
# ORDER APPROVAL
# =============================================================================


class TestApproveOrder:
    def test_import_adds_stock_and_invoices(self, ctx, db_session, product, approver):
        order, request = _order(ctx, [(product, 3)], order_type="IMPORT", side_fees="2.5")

        approved = approval_service.approve_request(ctx, request.id, approver)

        assert approved.status == "APPROVED"
        assert approved.approved_by == approver
        assert approved.approved_at is not None
        assert db_session.get(Product, product.id).current_stock == 13
        assert db_session.get(Order, order.id).status == "COMPLETED"

        invoice = db_session.query(Invoice).filter_by(reference_type="ORDER_IMPORT", reference_id=order.id).one()
        assert invoice.subtotal == Decimal("30")
        assert invoice.tax_amount == Decimal("0")
        assert invoice.side_fees == Decimal("2.5")
        assert invoice.total_amount == Decimal("32.5")
        assert invoice.approved_by == approver
        assert invoice.approved_at == approved.approved_at
        assert invoice.invoice_no.startswith("INV-")

    def test_line_price_drives_subtotal(self, ctx, db_session, product, approver):
        items = [{"product_id": product.id, "quantity": 2, "unit_price": "3.50"}]
        order, request = inventory_service.create_order(ctx, "IMP-PRICE", "IMPORT", items)

        approval_service.approve_request(ctx, request.id, approver)

        invoice = db_session.query(Invoice).filter_by(reference_id=order.id).one()
        assert invoice.subtotal == Decimal("7")
        assert invoice.total_amount == Decimal("7")

    def test_export_removes_stock_and_links_ledger_to_order(self, ctx, db_session, product, approver):
        order, request = _order(ctx, [(product, 4)])

        approval_service.approve_request(ctx, request.id, approver)

        assert db_session.get(Product, product.id).current_stock == 6
        entry = db_session.query(InventoryTransaction).filter_by(order_id=order.id).one()
        assert entry.transaction_type == "OUT"
        assert entry.quantity_changed == -4
        assert entry.stock_after == 6
        assert db_session.query(Invoice).filter_by(reference_type="ORDER_EXPORT").count() == 1

    def test_repeated_product_lines_apply_in_sequence(self, ctx, db_session, product, approver):
        _, request = _order(ctx, [(product, 4), (product, 6)])

        approval_service.approve_request(ctx, request.id, approver)

        assert db_session.get(Product, product.id).current_stock == 0
        stock_after = [
            e.stock_after
            for e in db_session.query(InventoryTransaction)
            .filter_by(product_id=product.id, transaction_type="OUT")
            .order_by(InventoryTransaction.id)
        ]
        assert stock_after == [6, 0]

    def test_notifications_after_commit(self, ctx, notifier, product, approver):
        _, request = _order(ctx, [(product, 2)])
        notifier.events.clear()

        approval_service.approve_request(ctx, request.id, approver)

        assert notifier.events == [(product.id, 8)]


class TestExactlyOnce:
    def test_second_approve_is_already_resolved(self, ctx, db_session, product, approver):
        _, request = _order(ctx, [(product, 4)])
        approval_service.approve_request(ctx, request.id, approver)

        with pytest.raises(AlreadyResolved):
            approval_service.approve_request(ctx, request.id, approver)

        assert db_session.get(Product, product.id).current_stock == 6
        assert db_session.query(Invoice).count() == 1

    def test_reject_after_approve_is_already_resolved(self, ctx, product, approver):
        _, request = _order(ctx, [(product, 1)])
        approval_service.approve_request(ctx, request.id, approver)

        with pytest.raises(AlreadyResolved):
            approval_service.reject_request(ctx, request.id, approver, "too late")

    def test_new_request_for_approved_order_refused(self, ctx, product, approver):
        order, request = _order(ctx, [(product, 1)])
        approval_service.approve_request(ctx, request.id, approver)

        with pytest.raises((AlreadyResolved, DuplicateReference)):
            approval_service.create_approval_request(ctx, "CREATE_ORDER", order.id, {}, approver)

    def test_lost_version_race_is_already_resolved(self, ctx, db_session, product, approver, monkeypatch):
        order, request = _order(ctx, [(product, 2)])
        lock_pending = approval_service._lock_pending_request

        def resolved_by_someone_else(tx, approval_id):
            locked = lock_pending(tx, approval_id)
            tx.session.execute(
                text("UPDATE approval_requests SET status = 'APPROVED', version_id = version_id + 1 WHERE id = :id"),
                {"id": locked.id},
            )
            return locked

        monkeypatch.setattr(approval_service, "_lock_pending_request", resolved_by_someone_else)

        with pytest.raises(AlreadyResolved):
            approval_service.approve_request(ctx, request.id, approver)

        assert db_session.get(Order, order.id).status == "PENDING_APPROVAL"
        assert db_session.get(Product, product.id).current_stock == 10
        assert db_session.query(Invoice).count() == 0

    def test_order_no_longer_pending_blocks_execution(self, ctx, db_session, product, approver):
        order, request = _order(ctx, [(product, 1)])
        db_session.get(Order, order.id).status = "COMPLETED"
        db_session.commit()

        with pytest.raises(AlreadyResolved):
            approval_service.approve_request(ctx, request.id, approver)

        assert db_session.get(ApprovalRequest, request.id).status == "PENDING"
        assert db_session.get(Product, product.id).current_stock == 10


# =============================================================================
# ATOMICITY
# =============================================================================


class TestApprovalAtomicity:
    def test_oversell_rolls_back_everything(self, ctx, db_session, product, approver):
        order, request = _order(ctx, [(product, 11)])

        with pytest.raises(InsufficientStock):
            approval_service.approve_request(ctx, request.id, approver)

        assert db_session.get(ApprovalRequest, request.id).status == "PENDING"
        assert db_session.get(Order, order.id).status == "PENDING_APPROVAL"
        assert db_session.get(Product, product.id).current_stock == 10
        assert db_session.query(Invoice).count() == 0
        assert db_session.query(AuditLog).filter_by(action="APPROVE_REQUEST").count() == 0

    def test_failure_on_second_line_undoes_first(self, ctx, db_session, notifier, product, product_factory, approver):
        scarce = product_factory(sku="SCARCE", name="Scarce", stock=1)
        _, request = _order(ctx, [(product, 5), (scarce, 2)])
        notifier.events.clear()

        with pytest.raises(InsufficientStock) as exc_info:
            approval_service.approve_request(ctx, request.id, approver)

        assert exc_info.value.product_id == scarce.id
        assert db_session.get(Product, product.id).current_stock == 10
        assert db_session.get(Product, scarce.id).current_stock == 1
        assert db_session.query(InventoryTransaction).filter(InventoryTransaction.order_id.isnot(None)).count() == 0
        assert notifier.events == []

    def test_invoice_failure_rolls_back_stock_and_status(self, ctx, db_session, product, approver, monkeypatch):
        order, request = _order(ctx, [(product, 2)])

        def broken_invoice(*args, **kwargs):
            raise TransientStoreError("lock timeout")

        monkeypatch.setattr(invoice_service, "create_invoice", broken_invoice)

        with pytest.raises(TransientStoreError):
            approval_service.approve_request(ctx, request.id, approver)

        assert db_session.get(ApprovalRequest, request.id).status == "PENDING"
        assert db_session.get(Order, order.id).status == "PENDING_APPROVAL"
        assert db_session.get(Product, product.id).current_stock == 10

        monkeypatch.undo()
        approval_service.approve_request(ctx, request.id, approver)
        assert db_session.get(Product, product.id).current_stock == 8


# =============================================================================
# TAX / SIDE FEES REPLAY
# =============================================================================


class TestTaxReplay:
    def test_tax_type_uses_rule_active_at_approval(self, ctx, db_session, product, tax_rules, approver):
        order, request = _order(ctx, [(product, 3)], order_type="IMPORT", tax_type="VAT_INLAND", side_fees="2.5")

        approval_service.approve_request(ctx, request.id, approver)

        invoice = db_session.query(Invoice).filter_by(reference_id=order.id).one()
        assert invoice.tax_rule_id == tax_rules["VAT_INLAND"].id
        assert invoice.subtotal == Decimal("30")
        assert invoice.tax_amount == Decimal("3")
        assert invoice.total_amount == Decimal("35.5")

    def test_pinned_tax_rule(self, ctx, db_session, product, approver):
        rule = TaxRule(tax_type="VAT_INLAND", rate=Decimal("0.0800"), effective_from=date(2000, 1, 1),
                       effective_to=date(2000, 12, 31))
        db_session.add(rule)
        db_session.commit()
        order, request = _order(ctx, [(product, 5)], tax_rule_id=rule.id)

        approval_service.approve_request(ctx, request.id, approver)

        invoice = db_session.query(Invoice).filter_by(reference_id=order.id).one()
        assert invoice.tax_rule_id == rule.id
        assert invoice.tax_amount == Decimal("4")

    def test_no_active_rate_fails_and_keeps_request_pending(self, ctx, db_session, product, approver):
        _, request = _order(ctx, [(product, 1)], tax_type="FCT")

        with pytest.raises(NoActiveTaxRate):
            approval_service.approve_request(ctx, request.id, approver)

        assert db_session.get(ApprovalRequest, request.id).status == "PENDING"
        assert db_session.get(Product, product.id).current_stock == 10

    def test_snapshot_without_fee_keys_means_zero(self, ctx, db_session, product, approver):
        order, request = _order(ctx, [(product, 1)])
        stored = db_session.get(ApprovalRequest, request.id)
        stored.request_data = "{}"
        db_session.commit()

        approval_service.approve_request(ctx, request.id, approver)

        invoice = db_session.query(Invoice).filter_by(reference_id=order.id).one()
        assert invoice.side_fees == Decimal("0")
        assert invoice.tax_amount == Decimal("0")


# =============================================================================
# REJECT
# =============================================================================


class TestReject:
    def test_reject_order(self, ctx, db_session, product, approver):
        order, request = _order(ctx, [(product, 2)])

        rejected = approval_service.reject_request(ctx, request.id, approver, "  wrong quantity ")

        assert rejected.status == "REJECTED"
        assert rejected.rejection_reason == "wrong quantity"
        assert db_session.get(Order, order.id).status == "REJECTED"
        assert db_session.get(Product, product.id).current_stock == 10
        assert db_session.query(Invoice).count() == 0

        with pytest.raises(AlreadyResolved):
            approval_service.approve_request(ctx, request.id, approver)
        with pytest.raises(AlreadyResolved):
            approval_service.reject_request(ctx, request.id, approver)

    def test_reason_must_be_string(self, ctx, product, approver):
        _, request = _order(ctx, [(product, 1)])
        with pytest.raises(ValidationError):
            approval_service.reject_request(ctx, request.id, approver, reason=123)


# =============================================================================
# OTHER REQUEST TYPES
# =============================================================================


class TestProductAndExpenseApproval:
    def test_product_approval_changes_status_only(self, ctx, db_session, approver):
        product, request = inventory_service.create_product(ctx, "NEW-1", "New", "5")

        approval_service.approve_request(ctx, request.id, approver)

        assert db_session.get(ApprovalRequest, request.id).status == "APPROVED"
        assert db_session.get(Product, product.id).current_stock == 0
        assert db_session.query(Invoice).count() == 0

    def test_expense_approval_invoices_computed_totals(self, ctx, db_session, tax_rules, approver):
        expense, request = expense_service.create_expense(ctx, {
            "currency": "EUR",
            "exchange_rate": "1.1",
            "original_amount": "100",
            "document_type": "VAT_INVOICE",
            "vendor_tax_code": "0101234567",
            "description": "Freight",
        })

        approval_service.approve_request(ctx, request.id, approver)

        invoice = db_session.query(Invoice).filter_by(reference_type="EXPENSE", reference_id=expense.id).one()
        assert invoice.subtotal == Decimal("110")
        assert invoice.tax_amount == Decimal("11")
        assert invoice.side_fees == Decimal("0")
        assert invoice.total_amount == Decimal("121")
        assert invoice.note == "Freight"
        assert invoice.approved_at == db_session.get(ApprovalRequest, request.id).approved_at

    def test_expense_already_invoiced(self, ctx, db_session, approver):
        expense, request = expense_service.create_expense(ctx, {"original_amount": "10"})
        stored = db_session.get(ApprovalRequest, request.id)
        approval_service.approve_request(ctx, request.id, approver)

        db_session.add(ApprovalRequest(
            request_type="CREATE_EXPENSE", reference_id=expense.id, request_data="{}", status="PENDING",
        ))
        db_session.commit()
        second = db_session.query(ApprovalRequest).filter(ApprovalRequest.id != stored.id).one()

        with pytest.raises(AlreadyResolved):
            approval_service.approve_request(ctx, second.id, approver)
        assert db_session.query(Invoice).filter_by(reference_type="EXPENSE").count() == 1


# =============================================================================
# REQUEST CREATION
# =============================================================================


class TestCreateApprovalRequest:
    def test_duplicate_pending_request(self, ctx, product):
        order, _ = _order(ctx, [(product, 1)])
        with pytest.raises(DuplicateReference):
            approval_service.create_approval_request(ctx, "CREATE_ORDER", order.id, {}, None)

    def test_new_request_after_rejection(self, ctx, db_session, approver):
        product, request = inventory_service.create_product(ctx, "RETRY-1", "Retry", "1")
        approval_service.reject_request(ctx, request.id, approver)

        again = approval_service.create_approval_request(ctx, "CREATE_PRODUCT", product.id, None, approver)
        assert again.status == "PENDING"
        assert again.snapshot == {}

    def test_request_for_rejected_order_refused(self, ctx, product, approver):
        order, request = _order(ctx, [(product, 1)])
        approval_service.reject_request(ctx, request.id, approver)

        with pytest.raises(AlreadyResolved):
            approval_service.create_approval_request(ctx, "CREATE_ORDER", order.id, {}, approver)

    @pytest.mark.parametrize("reference_id", ["abc", 0, -3, "1.5", None, True])
    def test_invalid_reference(self, ctx, db_session, reference_id):
        with pytest.raises(InvalidReference):
            approval_service.create_approval_request(ctx, "CREATE_PRODUCT", reference_id, {}, None)

    def test_missing_reference(self, ctx, db_session):
        with pytest.raises(NotFound):
            approval_service.create_approval_request(ctx, "CREATE_EXPENSE", 424242, {}, None)

    def test_unknown_request_type(self, ctx, db_session):
        with pytest.raises(ValidationError):
            approval_service.create_approval_request(ctx, "CREATE_REFUND", 1, {}, None)

    def test_snapshot_must_be_object(self, ctx, db_session):
        with pytest.raises(ValidationError):
            approval_service.create_approval_request(ctx, "CREATE_PRODUCT", 1, ["x"], None)


# =============================================================================
# AUDIT COMPLETENESS / READS
# =============================================================================


class TestAuditTrail:
    def test_order_lifecycle_is_fully_audited(self, ctx, db_session, product, approver):
        order, request = _order(ctx, [(product, 2)])
        approval_service.approve_request(ctx, request.id, approver)

        actions = [a.action for a in db_session.query(AuditLog).order_by(AuditLog.id)]
        assert actions == [
            "CREATE_ORDER_EXPORT",
            "CREATE_APPROVAL_REQUEST",
            "CREATE_INVOICE_FROM_APPROVAL",
            "APPROVE_REQUEST",
        ]

        invoice = db_session.query(Invoice).one()
        approve_entry = db_session.query(AuditLog).filter_by(action="APPROVE_REQUEST").one()
        assert approve_entry.user_id == approver
        assert approve_entry.entity_id == str(request.id)
        assert f'"invoice_no": "{invoice.invoice_no}"' in approve_entry.details

    def test_reject_is_audited_with_reason(self, ctx, db_session, product, approver):
        _, request = _order(ctx, [(product, 2)])
        approval_service.reject_request(ctx, request.id, approver, "duplicate")

        entry = db_session.query(AuditLog).filter_by(action="REJECT_REQUEST").one()
        assert entry.user_id == approver
        assert '"reason": "duplicate"' in entry.details


class TestListApprovals:
    def test_filters_and_pagination(self, ctx, product, approver):
        _, first = _order(ctx, [(product, 1)], code="A-1")
        _, second = _order(ctx, [(product, 1)], code="A-2")
        inventory_service.create_product(ctx, "P-1", "P", "1")
        approval_service.approve_request(ctx, first.id, approver)

        pending, total = approval_service.list_approval_requests(ctx, status="PENDING")
        assert total == 2
        approved, _ = approval_service.list_approval_requests(ctx, status="APPROVED")
        assert [r.id for r in approved] == [first.id]
        orders, total = approval_service.list_approval_requests(ctx, request_type="CREATE_ORDER", limit=1)
        assert total == 2
        assert len(orders) == 1

    def test_unknown_status(self, ctx, db_session):
        with pytest.raises(ValidationError):
            approval_service.list_approval_requests(ctx, status="MAYBE")

    def test_get_missing(self, ctx, db_session):
        with pytest.raises(NotFound):
            approval_service.get_approval_request(ctx, 987654)
