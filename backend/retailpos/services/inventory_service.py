# Overview: Service-layer operations for inventory; translates sale and manual stock intents into ledger movements.

from __future__ import annotations

from ..errors import InsufficientStock, NotFoundError
from ..models import Product, StockMovement
from ..models.inventory import MOVEMENT_ADJUSTMENT, MOVEMENT_IN, MOVEMENT_OUT
from .ledger_service import StockLedger


def low_stock(product: Product) -> bool:
    return product.current_stock <= product.min_stock


class InventoryAdjuster:
    """
    Sale and manual stock operations on top of the ledger.

    The capacity pre-check here only produces a friendlier error from the
    product snapshot the caller can see; the ledger's check on the locked row
    is the one that guards against concurrent writers.
    """

    def __init__(self, ledger: StockLedger):
        self.ledger = ledger

    def check_available(self, product: Product, quantity: int) -> None:
        if product.current_stock < quantity:
            raise InsufficientStock(
                f"Insufficient stock for {product.name}. "
                f"available: {product.current_stock}, requested: {quantity}",
                product_id=product.id,
                available=product.current_stock,
                requested=quantity,
            )

    def decrement_for_sale(
        self,
        product_id: int,
        quantity: int,
        actor_id: int | None,
        sale_reference: str,
        *,
        sale_id: int | None = None,
        organization_id: int | None = None,
        store_id: int | None = None,
        reason: str | None = None,
    ) -> StockMovement:
        snapshot = self.ledger.repo.get_product(product_id, organization_id)
        if snapshot is None:
            raise NotFoundError(f"Product {product_id} not found")
        self.check_available(snapshot, quantity)

        return self.ledger.apply_movement(
            product_id,
            MOVEMENT_OUT,
            quantity,
            actor_id,
            reason or f"Sale {sale_reference}",
            sale_reference,
            sale_id=sale_id,
            organization_id=organization_id,
            store_id=store_id,
        )

    def restore_for_sale(
        self,
        product_id: int,
        quantity: int,
        actor_id: int | None,
        sale_reference: str,
        *,
        sale_id: int | None = None,
        organization_id: int | None = None,
        store_id: int | None = None,
        reason: str | None = None,
    ) -> StockMovement:
        # A product retired after the sale still gets its units back.
        return self.ledger.apply_movement(
            product_id,
            MOVEMENT_IN,
            quantity,
            actor_id,
            reason or f"Restock from sale {sale_reference}",
            sale_reference,
            sale_id=sale_id,
            organization_id=organization_id,
            store_id=store_id,
            include_deleted=True,
        )

    def set_exact(
        self,
        product_id: int,
        quantity: int,
        actor_id: int | None,
        reason: str | None = None,
        reference: str | None = None,
        *,
        organization_id: int | None = None,
        store_id: int | None = None,
    ) -> StockMovement:
        return self.ledger.apply_movement(
            product_id,
            MOVEMENT_ADJUSTMENT,
            quantity,
            actor_id,
            reason or "Manual adjustment",
            reference,
            organization_id=organization_id,
            store_id=store_id,
        )

    def receive(
        self,
        product_id: int,
        quantity: int,
        actor_id: int | None,
        reason: str | None = None,
        reference: str | None = None,
        *,
        organization_id: int | None = None,
        store_id: int | None = None,
    ) -> StockMovement:
        return self.ledger.apply_movement(
            product_id,
            MOVEMENT_IN,
            quantity,
            actor_id,
            reason or "Stock received",
            reference,
            organization_id=organization_id,
            store_id=store_id,
        )

    def issue(
        self,
        product_id: int,
        quantity: int,
        actor_id: int | None,
        reason: str | None = None,
        reference: str | None = None,
        *,
        organization_id: int | None = None,
        store_id: int | None = None,
    ) -> StockMovement:
        snapshot = self.ledger.repo.get_product(product_id, organization_id)
        if snapshot is None:
            raise NotFoundError(f"Product {product_id} not found")
        self.check_available(snapshot, quantity)
        return self.ledger.apply_movement(
            product_id,
            MOVEMENT_OUT,
            quantity,
            actor_id,
            reason or "Stock issued",
            reference,
            organization_id=organization_id,
            store_id=store_id,
        )
