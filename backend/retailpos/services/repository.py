# Overview: Transactional repository over the injected SQLAlchemy session.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..errors import ConflictError, ValidationError
from ..models import (
    Customer,
    PaymentMethod,
    Product,
    Sale,
    SaleItem,
    SalePayment,
    StockMovement,
    Store,
)
from .concurrency import lock_for_update

"""
Repository invariants

- The session is injected; the repository never commits. The caller's
  atomic() scope owns the transaction.
- Every read of a soft-deletable model filters is_deleted = False unless the
  caller explicitly passes include_deleted=True (ledger reversals only).
- Locked reads use populate_existing() so a row already in the identity map is
  refreshed from the database under the lock.
- IntegrityError raised on flush is translated here and nowhere else.
"""


DEFAULT_PER_PAGE = 20
MAX_PER_PAGE = 100


def paginate(query, page: int | None, per_page: int | None, serialize) -> dict:
    """Run query one page at a time; page None returns every row."""
    if page is None:
        rows = query.all()
        return {
            "items": [serialize(r) for r in rows],
            "count": len(rows),
        }

    per_page = min(per_page or DEFAULT_PER_PAGE, MAX_PER_PAGE)
    per_page = max(per_page, 1)
    page = max(page, 1)

    total = query.count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1
    rows = query.offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": [serialize(r) for r in rows],
        "count": len(rows),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


def translate_integrity_error(exc: IntegrityError) -> Exception:
    text = str(getattr(exc, "orig", exc)).lower()
    if "unique" in text or "duplicate" in text:
        if "sale_number" in text:
            return ConflictError("A sale with that number already exists")
        if "stores" in text:
            return ConflictError("A store with that name already exists")
        return ConflictError("Duplicate value violates a unique constraint")
    if "foreign key" in text:
        return ValidationError("One of the referenced records does not exist")
    if "check constraint" in text or "ck_" in text:
        return ValidationError("Value violates a data constraint")
    return ConflictError("Write conflicts with existing data")


class Repository:
    def __init__(self, session):
        self.session = session

    # ------------------------------------------------------------------
    # Generic helpers
    # ------------------------------------------------------------------

    def live(self, model):
        """Query over present (non soft-deleted) rows of a model."""
        query = self.session.query(model)
        if hasattr(model, "is_deleted"):
            query = query.filter(model.is_deleted.is_(False))
        return query

    def _query(self, model, include_deleted: bool):
        return self.session.query(model) if include_deleted else self.live(model)

    @staticmethod
    def _locked(query, lock: bool):
        if lock:
            return lock_for_update(query).populate_existing()
        return query

    def add(self, obj):
        self.session.add(obj)
        self.flush()
        return obj

    def flush(self) -> None:
        try:
            self.session.flush()
        except IntegrityError as exc:
            raise translate_integrity_error(exc) from exc

    def soft_delete(self, obj) -> None:
        obj.mark_deleted()
        self.flush()

    def delete(self, obj) -> None:
        self.session.delete(obj)
        self.flush()

    # ------------------------------------------------------------------
    # Catalog / tenancy
    # ------------------------------------------------------------------

    def get_store(self, store_id: int, organization_id: int, *, lock: bool = False) -> Store | None:
        query = self.live(Store).filter(Store.id == store_id, Store.org_id == organization_id)
        return self._locked(query, lock).first()

    def increment_sale_number(self, store_id: int) -> int:
        """Atomically bump Store.last_sale_number and return the reserved value."""
        self.session.execute(
            update(Store)
            .where(Store.id == store_id)
            .values(last_sale_number=Store.last_sale_number + 1)
            .execution_options(synchronize_session="fetch")
        )
        return self.session.query(Store.last_sale_number).filter(Store.id == store_id).scalar()

    def get_product(
        self,
        product_id: int,
        organization_id: int | None = None,
        *,
        lock: bool = False,
        include_deleted: bool = False,
    ) -> Product | None:
        query = self._query(Product, include_deleted).filter(Product.id == product_id)
        if organization_id is not None:
            query = query.filter(Product.org_id == organization_id)
        return self._locked(query, lock).first()

    def get_payment_method(self, method_id: int, organization_id: int) -> PaymentMethod | None:
        return self.live(PaymentMethod).filter(
            PaymentMethod.id == method_id,
            PaymentMethod.org_id == organization_id,
        ).first()

    def get_customer(self, customer_id: int, organization_id: int) -> Customer | None:
        return self.live(Customer).filter(
            Customer.id == customer_id,
            Customer.org_id == organization_id,
        ).first()

    # ------------------------------------------------------------------
    # Sales
    # ------------------------------------------------------------------

    def get_sale(self, sale_id: int, organization_id: int | None = None, *, lock: bool = False) -> Sale | None:
        query = self.live(Sale).filter(Sale.id == sale_id)
        if organization_id is not None:
            query = query.filter(Sale.org_id == organization_id)
        return self._locked(query, lock).first()

    def get_sale_by_number(self, store_id: int, sale_number: str, organization_id: int) -> Sale | None:
        return self.live(Sale).filter(
            Sale.store_id == store_id,
            Sale.sale_number == sale_number,
            Sale.org_id == organization_id,
        ).first()

    def get_item(self, item_id: int, organization_id: int | None = None) -> SaleItem | None:
        query = self.live(SaleItem).join(Sale, Sale.id == SaleItem.sale_id).filter(
            SaleItem.id == item_id,
            Sale.is_deleted.is_(False),
        )
        if organization_id is not None:
            query = query.filter(Sale.org_id == organization_id)
        return query.first()

    def get_item_in_sale(self, item_id: int, sale_id: int) -> SaleItem | None:
        """Re-read an item once its sale is locked; a concurrent edit or removal is visible here."""
        query = self.live(SaleItem).filter(SaleItem.id == item_id, SaleItem.sale_id == sale_id)
        return self._locked(query, True).first()

    def live_items(self, sale_id: int) -> list[SaleItem]:
        return self.live(SaleItem).filter(SaleItem.sale_id == sale_id).order_by(SaleItem.id.asc()).all()

    def count_live_items(self, sale_id: int) -> int:
        return self.live(SaleItem).filter(SaleItem.sale_id == sale_id).count()

    def get_payment(self, payment_id: int, organization_id: int | None = None) -> SalePayment | None:
        query = self.live(SalePayment).join(Sale, Sale.id == SalePayment.sale_id).filter(
            SalePayment.id == payment_id,
            Sale.is_deleted.is_(False),
        )
        if organization_id is not None:
            query = query.filter(Sale.org_id == organization_id)
        return query.first()

    def get_payment_in_sale(self, payment_id: int, sale_id: int) -> SalePayment | None:
        query = self.live(SalePayment).filter(SalePayment.id == payment_id, SalePayment.sale_id == sale_id)
        return self._locked(query, True).first()

    def live_payments(self, sale_id: int) -> list[SalePayment]:
        return self.live(SalePayment).filter(SalePayment.sale_id == sale_id).order_by(SalePayment.id.asc()).all()

    # ------------------------------------------------------------------
    # Stock ledger
    # ------------------------------------------------------------------

    def get_movement(self, movement_id: int, organization_id: int | None = None) -> StockMovement | None:
        query = self.session.query(StockMovement).filter(StockMovement.id == movement_id)
        if organization_id is not None:
            query = query.filter(StockMovement.org_id == organization_id)
        return query.first()

    def last_movement(self, product_id: int) -> StockMovement | None:
        return (
            self.session.query(StockMovement)
            .filter(StockMovement.product_id == product_id)
            .order_by(StockMovement.id.desc())
            .first()
        )

    def movements_for(self, product_id: int) -> list[StockMovement]:
        """Chronological chain of a product's movements (creation order)."""
        return (
            self.session.query(StockMovement)
            .filter(StockMovement.product_id == product_id)
            .order_by(StockMovement.id.asc())
            .all()
        )
