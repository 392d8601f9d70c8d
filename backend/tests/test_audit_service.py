"""
Audit recorder tests.

Verifies:
- Write-path entries commit and roll back with the change they record
- Best-effort entries never break the caller
- Listing is newest first with action filter
"""

import pytest
from sqlalchemy.exc import OperationalError

from tradebook.errors import NotFound
from tradebook.models import AuditLog
from tradebook.services import audit_service
from tradebook.services.unit_of_work import ExecutionContext, run_in_tx


class TestLogAction:
    def test_entry_commits_with_transaction(self, ctx, db_session):
        run_in_tx(ctx, lambda tx: audit_service.log_action(
            tx, "CREATE_PRODUCT", 5, entity_name="Widget", details={"b": 2, "a": 1},
        ))

        entry = db_session.query(AuditLog).one()
        assert entry.action == "CREATE_PRODUCT"
        assert entry.entity_id == "5"
        assert entry.details == '{"a": 1, "b": 2}'

    def test_entry_rolls_back_with_transaction(self, ctx, db_session):
        def fn(tx):
            audit_service.log_action(tx, "CREATE_PRODUCT", 5)
            raise NotFound("abort")

        with pytest.raises(NotFound):
            run_in_tx(ctx, fn)
        assert db_session.query(AuditLog).count() == 0

    def test_defaults_user_to_principal(self, db_session, admin_user):
        ctx = ExecutionContext(user_id=admin_user.id)
        run_in_tx(ctx, lambda tx: audit_service.log_action(tx, "CREATE_EXPENSE", 1))
        assert db_session.query(AuditLog).one().user_id == admin_user.id

    def test_requires_unit_of_work(self, ctx, db_session):
        with pytest.raises(RuntimeError):
            audit_service.log_action(ctx, "CREATE_PRODUCT", 1)

    def test_action_required(self, ctx, db_session):
        with pytest.raises(ValueError):
            run_in_tx(ctx, lambda tx: audit_service.log_action(tx, "", 1))


class TestBestEffort:
    def test_outside_transaction_commits_own_entry(self, ctx, db_session):
        entry = audit_service.log_action_best_effort(ctx, "VIEW_TAX_RULE", 3)
        assert entry is not None
        assert db_session.query(AuditLog).filter_by(action="VIEW_TAX_RULE").count() == 1

    def test_inside_transaction_uses_savepoint(self, ctx, db_session):
        def fn(tx):
            audit_service.log_action_best_effort(tx, "VIEW_TAX_RULE", 3)
            audit_service.log_action(tx, "CREATE_PRODUCT", 4)

        run_in_tx(ctx, fn)
        assert db_session.query(AuditLog).count() == 2

    def test_store_failure_is_swallowed(self, ctx, db_session, monkeypatch):
        def broken_run_in_tx(*args, **kwargs):
            raise OperationalError("INSERT ...", {}, Exception("disk I/O error"))

        monkeypatch.setattr(audit_service, "run_in_tx", broken_run_in_tx)
        assert audit_service.log_action_best_effort(ctx, "VIEW_TAX_RULE", 3) is None


class TestListAuditLogs:
    def test_newest_first_with_filter(self, ctx, db_session):
        for action in ("CREATE_PRODUCT", "CREATE_EXPENSE", "CREATE_PRODUCT"):
            run_in_tx(ctx, lambda tx, a=action: audit_service.log_action(tx, a, 1))

        items, total = audit_service.list_audit_logs(ctx, action="CREATE_PRODUCT")
        assert total == 2
        assert items[0].id > items[1].id

        items, total = audit_service.list_audit_logs(ctx, page=2, limit=2)
        assert total == 3
        assert len(items) == 1
