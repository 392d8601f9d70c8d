from __future__ import annotations

import json

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


REQUEST_TYPE_CREATE_ORDER = "CREATE_ORDER"
REQUEST_TYPE_CREATE_PRODUCT = "CREATE_PRODUCT"
REQUEST_TYPE_CREATE_EXPENSE = "CREATE_EXPENSE"
REQUEST_TYPES = {REQUEST_TYPE_CREATE_ORDER, REQUEST_TYPE_CREATE_PRODUCT, REQUEST_TYPE_CREATE_EXPENSE}

APPROVAL_STATUS_PENDING = "PENDING"
APPROVAL_STATUS_APPROVED = "APPROVED"
APPROVAL_STATUS_REJECTED = "REJECTED"
APPROVAL_STATUSES = {APPROVAL_STATUS_PENDING, APPROVAL_STATUS_APPROVED, APPROVAL_STATUS_REJECTED}


class ApprovalRequest(db.Model):
    """
    Pending approval for an economic event (order, product, expense).

    STATE MACHINE:
        PENDING -> APPROVED   (side effects executed exactly once)
        PENDING -> REJECTED
    APPROVED and REJECTED are terminal.

    reference_id points at orders.id, products.id or expenses.id depending on
    request_type; approval_service.RequestReference resolves it.

    request_data is the JSON snapshot of the original request. Readers must
    tolerate missing keys: old pending requests may be approved long after
    the snapshot format moved on.

    version_id guards the status write: a second approver racing on an
    engine that ignores FOR UPDATE fails the flush instead of approving twice.
    """
    __tablename__ = "approval_requests"
    __table_args__ = (
        db.Index("ix_approval_requests_reference", "request_type", "reference_id"),
        db.Index("ix_approval_requests_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    request_type = db.Column(db.String(30), nullable=False, index=True)
    reference_id = db.Column(db.Integer, nullable=False)
    request_data = db.Column(db.Text, nullable=False, default="{}")

    status = db.Column(db.String(20), nullable=False, default=APPROVAL_STATUS_PENDING, index=True)

    requested_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    approved_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    requester = db.relationship("User", foreign_keys=[requested_by])
    approver = db.relationship("User", foreign_keys=[approved_by])

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def snapshot(self) -> dict:
        """Parsed request_data; malformed or non-object snapshots read as {}."""
        try:
            data = json.loads(self.request_data or "{}")
        except (TypeError, ValueError):
            return {}
        return data if isinstance(data, dict) else {}

    def __repr__(self) -> str:
        return f"<ApprovalRequest id={self.id} type={self.request_type} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "request_type": self.request_type,
            "reference_id": self.reference_id,
            "request_data": self.request_data,
            "status": self.status,
            "requested_by": self.requested_by,
            "requester_name": self.requester.username if self.requester else None,
            "approved_by": self.approved_by,
            "approver_name": self.approver.username if self.approver else None,
            "approved_at": to_utc_z(self.approved_at) if self.approved_at else None,
            "rejection_reason": self.rejection_reason,
            "created_at": to_utc_z(self.created_at),
        }
