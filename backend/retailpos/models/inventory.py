from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow
from .base import SoftDeleteMixin, money_str


MOVEMENT_IN = "IN"
MOVEMENT_OUT = "OUT"
MOVEMENT_ADJUSTMENT = "ADJUSTMENT"

VALID_MOVEMENT_TYPES = [MOVEMENT_IN, MOVEMENT_OUT, MOVEMENT_ADJUSTMENT]


class Product(SoftDeleteMixin, db.Model):
    """
    Catalog item, organization-scoped.

    current_stock is a cached projection of the stock ledger: it always equals
    new_stock of the product's most recent StockMovement. It is written only by
    StockLedger.apply_movement / delete_last_movement, never directly.

    version_id gives an optimistic check on concurrent writers of the row.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("current_stock >= 0", name="ck_products_stock_non_negative"),
        db.Index("ix_products_org_active", "org_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    sku = db.Column(db.String(64), nullable=True)
    barcode = db.Column(db.String(64), nullable=True)

    cost_price = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    sale_price = db.Column(db.Numeric(10, 2), nullable=False, default=0)

    min_stock = db.Column(db.Integer, nullable=False, default=0)
    current_stock = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} stock={self.current_stock}>"

    @property
    def is_low_stock(self) -> bool:
        return self.current_stock <= self.min_stock

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "name": self.name,
            "sku": self.sku,
            "barcode": self.barcode,
            "cost_price": money_str(self.cost_price),
            "sale_price": money_str(self.sale_price),
            "min_stock": self.min_stock,
            "current_stock": self.current_stock,
            "is_low_stock": self.is_low_stock,
            "is_active": self.is_active,
            "version_id": self.version_id,
        }


class StockMovement(db.Model):
    """
    Append-only stock ledger entry.

    new_stock - previous_stock == +quantity for IN, -quantity for OUT;
    ADJUSTMENT sets new_stock = quantity. Rows are never updated except for the
    free-text reason/reference, and only the most recent movement of a product
    may be deleted (which reverts the product to previous_stock).
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.CheckConstraint("new_stock >= 0", name="ck_stock_movements_new_stock_non_negative"),
        db.CheckConstraint("quantity >= 0", name="ck_stock_movements_quantity_non_negative"),
        db.Index("ix_stock_movements_product_seq", "product_id", "id"),
        db.Index("ix_stock_movements_org_created", "org_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=True, index=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)

    type = db.Column(db.String(16), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    previous_stock = db.Column(db.Integer, nullable=False)
    new_stock = db.Column(db.Integer, nullable=False)

    reason = db.Column(db.String(255), nullable=True)
    reference = db.Column(db.String(128), nullable=True, index=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    product = db.relationship("Product", backref=db.backref("stock_movements", lazy=True))

    def __repr__(self) -> str:
        return (
            f"<StockMovement id={self.id} product_id={self.product_id} type={self.type} "
            f"{self.previous_stock}->{self.new_stock}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "product_id": self.product_id,
            "store_id": self.store_id,
            "sale_id": self.sale_id,
            "type": self.type,
            "quantity": self.quantity,
            "previous_stock": self.previous_stock,
            "new_stock": self.new_stock,
            "reason": self.reason,
            "reference": self.reference,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
        }
