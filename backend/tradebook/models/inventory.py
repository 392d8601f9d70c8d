from __future__ import annotations

from ..extensions import db
from ..money import PRICE_PLACES, money_str
from ..time_utils import to_utc_z, utcnow


ORDER_TYPE_IMPORT = "IMPORT"
ORDER_TYPE_EXPORT = "EXPORT"
ORDER_TYPES = {ORDER_TYPE_IMPORT, ORDER_TYPE_EXPORT}

ORDER_STATUS_PENDING_APPROVAL = "PENDING_APPROVAL"
ORDER_STATUS_COMPLETED = "COMPLETED"
ORDER_STATUS_REJECTED = "REJECTED"

TX_TYPE_IN = "IN"
TX_TYPE_OUT = "OUT"


class Product(db.Model):
    """
    Product master data.

    STOCK DESIGN DECISION:
    Product.current_stock is the authoritative on-hand quantity and is only
    ever written by the inventory ledger (inventory_service.adjust_stock),
    which appends an InventoryTransaction for every change. The ledger rows
    explain "why is stock at N"; this column answers "what is N" without a
    SUM over history.

    version_id is an optimistic lock: a concurrent writer that slipped past
    the row lock (SQLite ignores FOR UPDATE) fails with StaleDataError
    instead of silently overwriting stock.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("current_stock >= 0", name="ck_products_stock_non_negative"),
        db.Index("ix_products_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    sku = db.Column(db.String(100), nullable=False, unique=True, index=True)
    name = db.Column(db.String(255), nullable=False)

    current_stock = db.Column(db.Integer, nullable=False, default=0)
    price = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} stock={self.current_stock}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "current_stock": self.current_stock,
            "price": money_str(self.price, PRICE_PLACES),
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Order(db.Model):
    """
    Stock movement request (IMPORT adds stock, EXPORT removes stock).

    LIFECYCLE:
        PENDING_APPROVAL -> COMPLETED   (approval applied stock + invoice)
        PENDING_APPROVAL -> REJECTED    (no stock effect ever applied)

    Status only changes through the approval workflow.
    """
    __tablename__ = "orders"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_code = db.Column(db.String(100), nullable=False, unique=True, index=True)
    type = db.Column(db.String(20), nullable=False)
    status = db.Column(db.String(50), nullable=False, default=ORDER_STATUS_PENDING_APPROVAL, index=True)
    note = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    items = db.relationship(
        "OrderItem",
        backref="order",
        lazy=True,
        order_by="OrderItem.id",
        cascade="all, delete-orphan",
    )

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "order_code": self.order_code,
            "type": self.type,
            "status": self.status,
            "note": self.note,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class OrderItem(db.Model):
    __tablename__ = "order_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)

    # Price snapshot at request time; never recomputed from Product.price
    unit_price = db.Column(db.Numeric(12, 2), nullable=False)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_price": money_str(self.unit_price, PRICE_PLACES),
        }


class InventoryTransaction(db.Model):
    """
    Append-only stock ledger entry.

    One row per product per approved order line. stock_after is an immutable
    snapshot of Product.current_stock right after this change.
    """
    __tablename__ = "inventory_transactions"
    __table_args__ = (
        db.Index("ix_invtx_product_created", "product_id", "created_at"),
        db.CheckConstraint("stock_after >= 0", name="ck_invtx_stock_after_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    # Nullable for manual corrections that do not come from an order
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)

    transaction_type = db.Column(db.String(10), nullable=False)
    quantity_changed = db.Column(db.Integer, nullable=False)
    stock_after = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    product = db.relationship("Product", backref=db.backref("ledger_entries", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "order_id": self.order_id,
            "transaction_type": self.transaction_type,
            "quantity_changed": self.quantity_changed,
            "stock_after": self.stock_after,
            "created_at": to_utc_z(self.created_at),
        }
