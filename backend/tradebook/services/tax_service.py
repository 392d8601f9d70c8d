# Overview: Service-layer read contract for tax rules.

"""
Tax Rule Lookup

POLICY: calculate_active_tax() fails explicitly with NoActiveTaxRate when no
rule covers the requested date. Order approvals and expense creation both go
through it, so a missing rate never silently becomes zero tax.

A rule is active on day d when effective_from <= d and (effective_to is
NULL or effective_to >= d). If windows overlap, the newest effective_from
wins.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from sqlalchemy import or_

from ..errors import NoActiveTaxRate, NotFound, ValidationError
from ..models import TaxRule
from ..models.audit import ACTION_VIEW_TAX_RULE
from ..models.finance import TAX_TYPES
from ..time_utils import utc_today
from ..validation import MAX_PAGE_SIZE
from . import audit_service
from .unit_of_work import ExecutionContext


def _check_tax_type(tax_type: str) -> None:
    if tax_type not in TAX_TYPES:
        raise ValidationError(f"tax_type must be one of: {', '.join(sorted(TAX_TYPES))}")


def find_active_rule(ctx: ExecutionContext, tax_type: str, target_date: date) -> TaxRule | None:
    _check_tax_type(tax_type)
    return (
        ctx.session.query(TaxRule)
        .filter(
            TaxRule.tax_type == tax_type,
            TaxRule.effective_from <= target_date,
            or_(TaxRule.effective_to.is_(None), TaxRule.effective_to >= target_date),
        )
        .order_by(TaxRule.effective_from.desc(), TaxRule.id.desc())
        .first()
    )


def resolve_active_rule(ctx: ExecutionContext, tax_type: str, target_date: date) -> TaxRule:
    rule = find_active_rule(ctx, tax_type, target_date)
    if rule is None:
        raise NoActiveTaxRate(f"no active {tax_type} tax rate for {target_date.isoformat()}")
    return rule


def calculate_active_tax(ctx: ExecutionContext, tax_type: str, target_date: date | None = None) -> Decimal:
    """Rate effective on target_date (today by default); NoActiveTaxRate if none."""
    rule = resolve_active_rule(ctx, tax_type, target_date or utc_today())
    return Decimal(rule.rate)


def get_active_tax_rate(ctx: ExecutionContext, tax_type: str) -> TaxRule | None:
    """Lookup variant for the API: today's rule or None."""
    return find_active_rule(ctx, tax_type, utc_today())


def get_tax_rule(ctx: ExecutionContext, rule_id: int, user_id: int | None = None) -> TaxRule:
    rule = ctx.session.get(TaxRule, rule_id)
    if rule is None:
        raise NotFound(f"tax rule {rule_id} not found")

    audit_service.log_action_best_effort(
        ctx,
        ACTION_VIEW_TAX_RULE,
        rule.id,
        entity_name=rule.tax_type,
        details={"tax_type": rule.tax_type, "rate": str(rule.rate)},
        user_id=user_id,
    )
    return rule


def list_tax_rules(
    ctx: ExecutionContext,
    tax_type: str | None = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[TaxRule], int]:
    page = max(1, page)
    limit = min(max(1, limit), MAX_PAGE_SIZE)

    query = ctx.session.query(TaxRule)
    if tax_type:
        _check_tax_type(tax_type)
        query = query.filter(TaxRule.tax_type == tax_type)

    total = query.count()
    items = (
        query.order_by(TaxRule.effective_from.desc(), TaxRule.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return items, total


def seed_default_rules(ctx: ExecutionContext, effective_from: date) -> int:
    """
    Insert the standard rates if no rule of that type exists yet.

    Returns number of rules created. Used by `flask tax seed`.
    """
    defaults = [
        ("VAT_INLAND", Decimal("0.1000"), "Domestic VAT"),
        ("VAT_INTL", Decimal("0.0000"), "Imported-service VAT"),
        ("FCT", Decimal("0.0500"), "Foreign contractor tax"),
    ]
    ctx.require_uow()
    created = 0
    for tax_type, rate, description in defaults:
        exists = ctx.session.query(TaxRule.id).filter_by(tax_type=tax_type).first()
        if exists:
            continue
        ctx.session.add(TaxRule(
            tax_type=tax_type,
            rate=rate,
            effective_from=effective_from,
            description=description,
        ))
        created += 1
    ctx.session.flush()
    return created
