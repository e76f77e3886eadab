# Overview: Service-layer operations for the stock ledger; the only writer of Product.current_stock.

from __future__ import annotations

from flask import current_app
from sqlalchemy import func

from ..errors import ConflictError, InsufficientStock, InvalidQuantity, NotFoundError, ValidationError
from ..models import Product, StockMovement
from ..models.inventory import MOVEMENT_ADJUSTMENT, MOVEMENT_IN, MOVEMENT_OUT, VALID_MOVEMENT_TYPES
from ..validation import coerce_optional_datetime, coerce_optional_text
from .repository import Repository, paginate
"""
Stock Ledger Invariants (authoritative)

- StockMovement rows form an append-only chain per product, ordered by id.
- For every movement: previous_stock is the product's stock when it was written;
  IN adds quantity, OUT subtracts it, ADJUSTMENT sets stock to quantity.
- Product.current_stock == new_stock of the product's latest movement.
- Replaying the chain from 0 reproduces current_stock.
- Stock never goes below zero; an OUT that would is rejected and writes nothing.
- The stock read and both writes (movement + product) happen inside the
  caller's transaction, on the locked product row.
- Only the latest movement of a product may be deleted, and only when no sale
  produced it. Deleting it reverts current_stock to its previous_stock.
"""


def compute_new_stock(movement_type: str, previous: int, quantity: int) -> int:
    if movement_type == MOVEMENT_IN:
        return previous + quantity
    if movement_type == MOVEMENT_OUT:
        return previous - quantity
    return quantity


def _check_quantity(movement_type: str, quantity) -> int:
    if not isinstance(quantity, int) or isinstance(quantity, bool):
        raise InvalidQuantity("quantity must be an integer")
    if movement_type == MOVEMENT_ADJUSTMENT:
        if quantity < 0:
            raise InvalidQuantity("Adjusted stock cannot be negative")
    elif quantity <= 0:
        raise InvalidQuantity("quantity must be greater than 0")
    return quantity


class StockLedger:
    def __init__(self, repo: Repository):
        self.repo = repo

    def apply_movement(
        self,
        product_id: int,
        movement_type: str,
        quantity: int,
        actor_id: int | None,
        reason: str | None,
        reference: str | None = None,
        *,
        sale_id: int | None = None,
        organization_id: int | None = None,
        store_id: int | None = None,
        include_deleted: bool = False,
    ) -> StockMovement:
        if movement_type not in VALID_MOVEMENT_TYPES:
            raise ValidationError(f"Invalid movement type: {movement_type}")
        quantity = _check_quantity(movement_type, quantity)

        product = self.repo.get_product(
            product_id,
            organization_id,
            lock=True,
            include_deleted=include_deleted,
        )
        if product is None:
            raise NotFoundError(f"Product {product_id} not found")

        previous = product.current_stock
        new_stock = compute_new_stock(movement_type, previous, quantity)
        if new_stock < 0:
            raise InsufficientStock(
                f"Insufficient stock for {product.name}. available: {previous}, requested: {quantity}",
                product_id=product.id,
                available=previous,
                requested=quantity,
            )

        movement = StockMovement(
            org_id=product.org_id,
            product_id=product.id,
            store_id=store_id,
            sale_id=sale_id,
            type=movement_type,
            quantity=quantity,
            previous_stock=previous,
            new_stock=new_stock,
            reason=coerce_optional_text(reason, "reason"),
            reference=coerce_optional_text(reference, "reference", max_length=128),
            user_id=actor_id,
        )
        product.current_stock = new_stock
        self.repo.add(movement)

        current_app.logger.debug(
            "Stock %s product_id=%s qty=%s %s->%s ref=%s",
            movement_type, product.id, quantity, previous, new_stock, reference,
        )
        return movement

    def delete_last_movement(self, movement_id: int, organization_id: int | None = None) -> Product:
        movement = self.repo.get_movement(movement_id, organization_id)
        if movement is None:
            raise NotFoundError("Stock movement not found")
        if movement.sale_id is not None:
            raise ConflictError("Stock movements created by a sale cannot be deleted")

        product = self.repo.get_product(movement.product_id, lock=True, include_deleted=True)
        latest = self.repo.last_movement(movement.product_id)
        if latest is None or latest.id != movement.id:
            raise ConflictError("Only the most recent movement of a product can be deleted")

        product.current_stock = movement.previous_stock
        self.repo.delete(movement)

        current_app.logger.info(
            "Deleted stock movement id=%s product_id=%s; stock reverted to %s",
            movement_id, product.id, product.current_stock,
        )
        return product

    def update_movement_notes(
        self,
        movement_id: int,
        *,
        reason: str | None = None,
        reference: str | None = None,
        organization_id: int | None = None,
    ) -> StockMovement:
        """Only the free-text fields of a movement are editable."""
        movement = self.get_movement(movement_id, organization_id)
        if reason is not None:
            movement.reason = coerce_optional_text(reason, "reason")
        if reference is not None:
            movement.reference = coerce_optional_text(reference, "reference", max_length=128)
        self.repo.flush()
        return movement

    def get_movement(self, movement_id: int, organization_id: int | None = None) -> StockMovement:
        movement = self.repo.get_movement(movement_id, organization_id)
        if movement is None:
            raise NotFoundError("Stock movement not found")
        return movement

    def list_movements(
        self,
        organization_id: int,
        *,
        product_id: int | None = None,
        movement_type: str | None = None,
        sale_id: int | None = None,
        date_from=None,
        date_to=None,
        page: int | None = 1,
        per_page: int | None = None,
    ) -> dict:
        if movement_type is not None and movement_type not in VALID_MOVEMENT_TYPES:
            raise ValidationError(f"Invalid movement type: {movement_type}")

        query = self.repo.session.query(StockMovement).filter(StockMovement.org_id == organization_id)
        if product_id is not None:
            query = query.filter(StockMovement.product_id == product_id)
        if movement_type is not None:
            query = query.filter(StockMovement.type == movement_type)
        if sale_id is not None:
            query = query.filter(StockMovement.sale_id == sale_id)

        date_from = coerce_optional_datetime(date_from, "date_from")
        date_to = coerce_optional_datetime(date_to, "date_to")
        if date_from is not None and date_to is not None and date_from > date_to:
            raise ValidationError("date_from must not be after date_to")
        if date_from is not None:
            query = query.filter(StockMovement.created_at >= date_from)
        if date_to is not None:
            query = query.filter(StockMovement.created_at <= date_to)

        query = query.order_by(StockMovement.id.desc())

        return paginate(query, page, per_page, lambda m: m.to_dict())

    def stock_summary(self, product_id: int, organization_id: int | None = None, recent: int = 10) -> dict:
        product = self.repo.get_product(product_id, organization_id)
        if product is None:
            raise NotFoundError(f"Product {product_id} not found")

        rows = (
            self.repo.session.query(
                StockMovement.type,
                func.count(StockMovement.id),
                func.coalesce(func.sum(StockMovement.quantity), 0),
            )
            .filter(StockMovement.product_id == product.id)
            .group_by(StockMovement.type)
            .all()
        )
        totals = {t: {"count": 0, "quantity": 0} for t in VALID_MOVEMENT_TYPES}
        for movement_type, count, quantity in rows:
            totals[movement_type] = {"count": int(count), "quantity": int(quantity)}

        recent_rows = (
            self.repo.session.query(StockMovement)
            .filter(StockMovement.product_id == product.id)
            .order_by(StockMovement.id.desc())
            .limit(recent)
            .all()
        )
        return {
            "product": product.to_dict(),
            "current_stock": product.current_stock,
            "total_in": totals[MOVEMENT_IN]["quantity"],
            "total_out": totals[MOVEMENT_OUT]["quantity"],
            "adjustment_count": totals[MOVEMENT_ADJUSTMENT]["count"],
            "recent_movements": [m.to_dict() for m in recent_rows],
        }

    def replay(self, product_id: int) -> dict:
        """
        Rebuild stock from the movement chain starting at 0.

        Reports every link whose previous_stock does not match the running
        value, or whose new_stock disagrees with the movement's rule.
        """
        product = self.repo.get_product(product_id, include_deleted=True)
        if product is None:
            raise NotFoundError(f"Product {product_id} not found")

        running = 0
        broken = []
        for movement in self.repo.movements_for(product.id):
            expected = compute_new_stock(movement.type, running, movement.quantity)
            if movement.previous_stock != running or movement.new_stock != expected:
                broken.append({
                    "movement_id": movement.id,
                    "expected_previous": running,
                    "previous_stock": movement.previous_stock,
                    "expected_new": expected,
                    "new_stock": movement.new_stock,
                })
            running = movement.new_stock

        return {
            "product_id": product.id,
            "current_stock": product.current_stock,
            "replayed_stock": running,
            "consistent": not broken and running == product.current_stock,
            "broken_links": broken,
        }
