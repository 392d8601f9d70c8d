"""
Reporting tests.

Verifies:
- Revenue buckets approved invoices: exports are revenue, imports and expenses are cost
- Trade statistics count only COMPLETED orders and value lines at their snapshotted price
- Period keys and range validation
"""

from datetime import datetime

import pytest

from tradebook.errors import ValidationError
from tradebook.services import approval_service, expense_service, inventory_service, reporting_service
from tradebook.time_utils import utc_today


@pytest.fixture
def approved_activity(ctx, db_session, product, tax_rules, manager_user):
    """One import (3 @ 4.00), one taxed export (5 @ catalog 10.00, fee 1) and one expense (20), all approved."""
    _, imp = inventory_service.create_order(
        ctx, "IMP-R", "IMPORT", [{"product_id": product.id, "quantity": 3, "unit_price": "4"}],
    )
    _, exp = inventory_service.create_order(
        ctx, "EXP-R", "EXPORT", [{"product_id": product.id, "quantity": 5}],
        tax_type="VAT_INLAND", side_fees="1",
    )
    _, expense_request = expense_service.create_expense(ctx, {"original_amount": "20", "description": "Fuel"})
    for request in (imp, exp, expense_request):
        approval_service.approve_request(ctx, request.id, manager_user.id)

    inventory_service.create_order(ctx, "EXP-PENDING", "EXPORT", [{"product_id": product.id, "quantity": 1}])
    return product


class TestPeriodStart:
    @pytest.mark.parametrize("group_by,expected", [
        ("week", "2026-05-11"),
        ("month", "2026-05-01"),
        ("quarter", "2026-04-01"),
        ("year", "2026-01-01"),
    ])
    def test_bucket_is_first_day(self, group_by, expected):
        assert reporting_service.period_start(datetime(2026, 5, 14, 15, 30), group_by).isoformat() == expected

    def test_unknown_grouping(self):
        with pytest.raises(ValidationError):
            reporting_service.period_start(datetime(2026, 5, 14), "day")


class TestRevenueReport:
    def test_buckets_approved_invoices(self, ctx, approved_activity):
        report = reporting_service.revenue_report(ctx, group_by="month")

        assert report["group_by"] == "month"
        assert report["rows"] == [{
            "period": utc_today().replace(day=1).isoformat(),
            "total_revenue": "56.0000",
            "total_expense": "32.0000",
            "total_tax_collected": "5.0000",
            "total_tax_paid": "0.0000",
            "total_side_fees": "1.0000",
        }]

    def test_window_excludes_invoices(self, ctx, approved_activity):
        report = reporting_service.revenue_report(ctx, start="2999-01-01T00:00:00Z")
        assert report["rows"] == []
        assert report["start"] == "2999-01-01T00:00:00Z"

    def test_empty_ledger(self, ctx, db_session):
        assert reporting_service.revenue_report(ctx)["rows"] == []

    @pytest.mark.parametrize("kwargs", [
        {"group_by": "day"},
        {"start": "yesterday"},
        {"start": "2026-02-01", "end": "2026-01-01"},
    ])
    def test_invalid_arguments(self, ctx, db_session, kwargs):
        with pytest.raises(ValidationError):
            reporting_service.revenue_report(ctx, **kwargs)


class TestTradeStatistics:
    def test_completed_orders_only(self, ctx, approved_activity):
        stats = reporting_service.trade_statistics(ctx)

        assert stats["total_import_value"] == "12.0000"
        assert stats["total_export_value"] == "50.0000"
        assert stats["total_import_orders"] == 1
        assert stats["total_export_orders"] == 1
        assert stats["profit"] == "38.0000"
        assert stats["top_exported_items"] == [{
            "product_id": approved_activity.id,
            "product_name": approved_activity.name,
            "product_sku": approved_activity.sku,
            "total_quantity": 5,
            "total_value": "50.0000",
        }]
        assert stats["top_imported_items"][0]["total_quantity"] == 3

    def test_top_products_ranked_by_quantity(self, ctx, db_session, product, product_factory, manager_user):
        other = product_factory(sku="SKU-002", name="Gadget", stock=20)
        _, request = inventory_service.create_order(ctx, "EXP-RANK", "EXPORT", [
            {"product_id": product.id, "quantity": 2},
            {"product_id": other.id, "quantity": 7},
        ])
        approval_service.approve_request(ctx, request.id, manager_user.id)

        stats = reporting_service.trade_statistics(ctx)

        assert [e["product_id"] for e in stats["top_exported_items"]] == [other.id, product.id]
        assert stats["total_export_orders"] == 1

    def test_window_defaults_to_month_to_date(self, ctx, db_session):
        stats = reporting_service.trade_statistics(ctx)

        assert stats["time_range_start_date"] == f"{utc_today().replace(day=1).isoformat()}T00:00:00Z"
        assert stats["profit"] == "0.0000"
        assert stats["top_imported_items"] == []
