from __future__ import annotations

from ..extensions import db
from ..money import money_str
from ..time_utils import to_utc_z, utcnow


TAX_TYPE_VAT_INLAND = "VAT_INLAND"
TAX_TYPE_VAT_INTL = "VAT_INTL"
TAX_TYPE_FCT = "FCT"
TAX_TYPES = {TAX_TYPE_VAT_INLAND, TAX_TYPE_VAT_INTL, TAX_TYPE_FCT}

FCT_TYPE_NET = "NET"
FCT_TYPE_GROSS = "GROSS"
FCT_TYPES = {FCT_TYPE_NET, FCT_TYPE_GROSS}

DOC_TYPE_VAT_INVOICE = "VAT_INVOICE"
DOC_TYPE_DIRECT_INVOICE = "DIRECT_INVOICE"
DOC_TYPE_RETAIL_RECEIPT = "RETAIL_RECEIPT"
DOC_TYPE_NONE = "NONE"
DOCUMENT_TYPES = {DOC_TYPE_VAT_INVOICE, DOC_TYPE_DIRECT_INVOICE, DOC_TYPE_RETAIL_RECEIPT, DOC_TYPE_NONE}

REF_TYPE_ORDER_IMPORT = "ORDER_IMPORT"
REF_TYPE_ORDER_EXPORT = "ORDER_EXPORT"
REF_TYPE_EXPENSE = "EXPENSE"
INVOICE_REFERENCE_TYPES = {REF_TYPE_ORDER_IMPORT, REF_TYPE_ORDER_EXPORT, REF_TYPE_EXPENSE}


class TaxRule(db.Model):
    """
    Tax rate with a validity window.

    effective_to NULL means open-ended (currently active). Windows for the
    same tax_type are not expected to overlap; lookups still pick the newest
    effective_from if they do.
    """
    __tablename__ = "tax_rules"
    __table_args__ = (
        db.Index("ix_tax_rules_type_from", "tax_type", "effective_from"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tax_type = db.Column(db.String(20), nullable=False, index=True)
    rate = db.Column(db.Numeric(10, 4), nullable=False)
    effective_from = db.Column(db.Date, nullable=False)
    effective_to = db.Column(db.Date, nullable=True)
    description = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tax_type": self.tax_type,
            "rate": money_str(self.rate),
            "effective_from": self.effective_from.isoformat(),
            "effective_to": self.effective_to.isoformat() if self.effective_to else None,
            "description": self.description,
            "created_at": to_utc_z(self.created_at),
        }


class Expense(db.Model):
    """
    Cost entry with multi-currency support (base currency: USD).

    All tax figures are computed once at creation and never recomputed;
    approval turns them into an invoice as-is.
    """
    __tablename__ = "expenses"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)
    vendor_id = db.Column(db.Integer, nullable=True, index=True)

    # Currency & exchange rate
    currency = db.Column(db.String(10), nullable=False, default="USD")
    exchange_rate = db.Column(db.Numeric(18, 6), nullable=False, default=1)
    original_amount = db.Column(db.Numeric(18, 4), nullable=False)
    converted_amount_usd = db.Column(db.Numeric(18, 4), nullable=False)

    # FCT (foreign contractor tax)
    is_foreign_vendor = db.Column(db.Boolean, nullable=False, default=False)
    fct_type = db.Column(db.String(10), nullable=True)
    fct_rate = db.Column(db.Numeric(10, 4), nullable=False, default=0)
    fct_amount = db.Column(db.Numeric(18, 4), nullable=False, default=0)
    total_payable = db.Column(db.Numeric(18, 4), nullable=False, default=0)

    # VAT
    vat_rate = db.Column(db.Numeric(10, 4), nullable=False, default=0)
    vat_amount = db.Column(db.Numeric(18, 4), nullable=False, default=0)

    # Document & deductibility
    document_type = db.Column(db.String(30), nullable=False, default=DOC_TYPE_NONE)
    vendor_tax_code = db.Column(db.String(50), nullable=True)
    document_url = db.Column(db.Text, nullable=True)
    is_deductible_expense = db.Column(db.Boolean, nullable=False, default=False)

    description = db.Column(db.Text, nullable=True)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "vendor_id": self.vendor_id,
            "currency": self.currency,
            "exchange_rate": money_str(self.exchange_rate),
            "original_amount": money_str(self.original_amount),
            "converted_amount_usd": money_str(self.converted_amount_usd),
            "is_foreign_vendor": self.is_foreign_vendor,
            "fct_type": self.fct_type,
            "fct_rate": money_str(self.fct_rate),
            "fct_amount": money_str(self.fct_amount),
            "total_payable": money_str(self.total_payable),
            "vat_rate": money_str(self.vat_rate),
            "vat_amount": money_str(self.vat_amount),
            "document_type": self.document_type,
            "vendor_tax_code": self.vendor_tax_code,
            "document_url": self.document_url,
            "is_deductible_expense": self.is_deductible_expense,
            "description": self.description,
            "created_at": to_utc_z(self.created_at),
        }


class Invoice(db.Model):
    """
    Financial document generated only as a side effect of an approval.

    IMMUTABLE: created inside the approving unit of work, never updated.
    invoice_no format: INV-YYYYMMDD-NNNNN (unique, allocated per day).
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.Index("ix_invoices_reference", "reference_type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_no = db.Column(db.String(30), nullable=False, unique=True, index=True)

    reference_type = db.Column(db.String(20), nullable=False, index=True)
    reference_id = db.Column(db.Integer, nullable=False)

    tax_rule_id = db.Column(db.Integer, db.ForeignKey("tax_rules.id"), nullable=True, index=True)

    subtotal = db.Column(db.Numeric(18, 4), nullable=False)
    tax_amount = db.Column(db.Numeric(18, 4), nullable=False, default=0)
    side_fees = db.Column(db.Numeric(18, 4), nullable=False, default=0)
    total_amount = db.Column(db.Numeric(18, 4), nullable=False)

    approval_status = db.Column(db.String(20), nullable=False, index=True)
    approved_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)

    note = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    tax_rule = db.relationship("TaxRule")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_no": self.invoice_no,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "tax_rule_id": self.tax_rule_id,
            "subtotal": money_str(self.subtotal),
            "tax_amount": money_str(self.tax_amount),
            "side_fees": money_str(self.side_fees),
            "total_amount": money_str(self.total_amount),
            "approval_status": self.approval_status,
            "approved_by": self.approved_by,
            "approved_at": to_utc_z(self.approved_at) if self.approved_at else None,
            "note": self.note,
            "created_at": to_utc_z(self.created_at),
        }
