from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


ACTION_CREATE_PRODUCT = "CREATE_PRODUCT"
ACTION_CREATE_ORDER_IMPORT = "CREATE_ORDER_IMPORT"
ACTION_CREATE_ORDER_EXPORT = "CREATE_ORDER_EXPORT"
ACTION_CREATE_EXPENSE = "CREATE_EXPENSE"
ACTION_VIEW_TAX_RULE = "VIEW_TAX_RULE"

# Approval workflow actions
ACTION_CREATE_APPROVAL_REQUEST = "CREATE_APPROVAL_REQUEST"
ACTION_APPROVE_REQUEST = "APPROVE_REQUEST"
ACTION_REJECT_REQUEST = "REJECT_REQUEST"
ACTION_CREATE_INVOICE_FROM_APPROVAL = "CREATE_INVOICE_FROM_APPROVAL"


class AuditLog(db.Model):
    """
    Who did what, when.

    IMMUTABLE: Never update or delete. Append-only for audit integrity.
    Written inside the same transaction as the change it documents, so a
    rollback takes the entry with it.

    user_id is nullable for system actions.
    """
    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("ix_audit_logs_action_created", "action", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    action = db.Column(db.String(50), nullable=False, index=True)
    entity_id = db.Column(db.String(50), nullable=True, index=True)
    entity_name = db.Column(db.String(255), nullable=True)

    # Serialized JSON payload of the action
    details = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    user = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "username": self.user.username if self.user else "System",
            "action": self.action,
            "entity_id": self.entity_id,
            "entity_name": self.entity_name,
            "details": self.details,
            "created_at": to_utc_z(self.created_at),
        }
