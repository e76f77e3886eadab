from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow
from .base import SoftDeleteMixin, money_str


SALE_STATUS_PENDING = "PENDING"
SALE_STATUS_PAID = "PAID"
SALE_STATUS_CANCELLED = "CANCELLED"

VALID_SALE_STATUSES = [SALE_STATUS_PENDING, SALE_STATUS_PAID, SALE_STATUS_CANCELLED]

PAYMENT_TYPES = ["CASH", "CARD", "TRANSFER", "CREDIT", "CHECK", "OTHER"]


class PaymentMethod(SoftDeleteMixin, db.Model):
    """Organization-defined tender (e.g. "Cash drawer", "Visa terminal")."""
    __tablename__ = "payment_methods"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    name = db.Column(db.String(128), nullable=False)
    type = db.Column(db.String(16), nullable=False, default="CASH")
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "name": self.name,
            "type": self.type,
            "is_active": self.is_active,
        }


class Sale(SoftDeleteMixin, db.Model):
    """
    One commercial transaction against a store.

    INVARIANTS:
    - total == sum(subtotal) over live SaleItems (tax/discount pass through as zero)
    - sum(amount) over live SalePayments <= total
    - status is PAID iff live payments cover total and the sale is not cancelled
    - CANCELLED is terminal
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("store_id", "sale_number", name="uq_sales_store_sale_number"),
        db.Index("ix_sales_org_status_created", "org_id", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    # Human-readable, store-scoped (e.g. "S1-000042")
    sale_number = db.Column(db.String(64), nullable=False)

    subtotal = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    total = db.Column(db.Numeric(10, 2), nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default=SALE_STATUS_PENDING, index=True)

    sale_date = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    due_date = db.Column(db.DateTime(timezone=True), nullable=True)
    paid_date = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    notes = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    store = db.relationship("Store", backref=db.backref("sales", lazy=True))
    customer = db.relationship("Customer")
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Sale id={self.id} number={self.sale_number!r} status={self.status} total={self.total}>"

    @property
    def is_cancelled(self) -> bool:
        return self.status == SALE_STATUS_CANCELLED

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "store_id": self.store_id,
            "customer_id": self.customer_id,
            "user_id": self.user_id,
            "sale_number": self.sale_number,
            "subtotal": money_str(self.subtotal),
            "total": money_str(self.total),
            "status": self.status,
            "sale_date": to_utc_z(self.sale_date),
            "due_date": to_utc_z(self.due_date),
            "paid_date": to_utc_z(self.paid_date),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "notes": self.notes,
            "version_id": self.version_id,
        }


class SaleItem(SoftDeleteMixin, db.Model):
    """One product line on a sale. subtotal == quantity * unit_price."""
    __tablename__ = "sale_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_sale_items_quantity_positive"),
        db.CheckConstraint("unit_price >= 0", name="ck_sale_items_unit_price_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Numeric(10, 2), nullable=False)
    subtotal = db.Column(db.Numeric(10, 2), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sale = db.relationship("Sale", backref=db.backref("items", lazy=True, order_by="SaleItem.id"))
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_price": money_str(self.unit_price),
            "subtotal": money_str(self.subtotal),
            "is_deleted": self.is_deleted,
        }


class SalePayment(SoftDeleteMixin, db.Model):
    """One payment applied to a sale. Removal is a soft delete."""
    __tablename__ = "sale_payments"
    __table_args__ = (
        db.CheckConstraint("amount > 0", name="ck_sale_payments_amount_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    payment_method_id = db.Column(db.Integer, db.ForeignKey("payment_methods.id"), nullable=False, index=True)

    amount = db.Column(db.Numeric(10, 2), nullable=False)
    reference = db.Column(db.String(128), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    payment_date = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sale = db.relationship("Sale", backref=db.backref("payments", lazy=True, order_by="SalePayment.id"))
    payment_method = db.relationship("PaymentMethod")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "payment_method_id": self.payment_method_id,
            "amount": money_str(self.amount),
            "reference": self.reference,
            "notes": self.notes,
            "payment_date": to_utc_z(self.payment_date),
            "is_deleted": self.is_deleted,
        }
