# Overview: Catalog, store and payment-method lookups consumed by the sale engine.

from __future__ import annotations

from flask import current_app

from ..errors import NotFoundError, ValidationError
from ..models import Customer, Product, Store
from ..models.inventory import MOVEMENT_IN
from ..validation import coerce_int, coerce_optional_text, coerce_unit_price, to_money
from .repository import Repository


def format_sale_number(prefix: str | None, number: int, pad: int = 6) -> str:
    padded = f"{number:0{pad}d}"
    if prefix:
        return f"{prefix}-{padded}"
    return padded


class CatalogLookup:
    """Organization-scoped reads of stores, products, customers and tenders."""

    def __init__(self, repo: Repository, sale_number_pad: int = 6):
        self.repo = repo
        self.sale_number_pad = sale_number_pad

    def get_store(self, store_id: int, organization_id: int, *, lock: bool = False) -> Store:
        store = self.repo.get_store(store_id, organization_id, lock=lock)
        if store is None:
            raise NotFoundError("Store not found")
        return store

    def get_product(self, product_id: int, organization_id: int, *, lock: bool = False) -> Product:
        product = self.repo.get_product(product_id, organization_id, lock=lock)
        if product is None:
            raise NotFoundError(f"Product {product_id} not found")
        return product

    def get_active_product(self, product_id: int, organization_id: int, *, lock: bool = False) -> Product:
        product = self.get_product(product_id, organization_id, lock=lock)
        if not product.is_active:
            raise ValidationError(f"Product {product.name} is not active")
        return product

    def is_active_payment_method(self, method_id: int, organization_id: int) -> bool:
        method = self.repo.get_payment_method(method_id, organization_id)
        return method is not None and bool(method.is_active)

    def require_payment_method(self, method_id: int, organization_id: int) -> None:
        if not self.is_active_payment_method(method_id, organization_id):
            raise ValidationError(f"Payment method {method_id} is not valid")

    def get_customer(self, customer_id: int, organization_id: int) -> Customer:
        customer = self.repo.get_customer(customer_id, organization_id)
        if customer is None:
            raise NotFoundError("Customer not found")
        return customer

    def reserve_sale_number(self, store: Store) -> str:
        """
        Reserve the store's next sale number.

        The counter is bumped by a single UPDATE inside the caller's transaction,
        so a rolled-back sale never consumes a number.
        """
        number = self.repo.increment_sale_number(store.id)
        return format_sale_number(store.sale_number_prefix, number, self.sale_number_pad)


def create_product(
    repo: Repository,
    ledger,
    *,
    organization_id: int,
    name: str,
    sale_price,
    cost_price=0,
    sku: str | None = None,
    barcode: str | None = None,
    min_stock: int = 0,
    opening_stock: int = 0,
    actor_id: int | None = None,
    store_id: int | None = None,
) -> Product:
    """
    Create a catalog product.

    Opening stock is booked as an IN movement so the ledger reproduces
    current_stock from the very first row.
    """
    name = coerce_optional_text(name, "name")
    if not name:
        raise ValidationError("name is required")
    opening_stock = coerce_int(opening_stock, "opening_stock")
    min_stock = coerce_int(min_stock, "min_stock")
    if opening_stock < 0:
        raise ValidationError("opening_stock cannot be negative")
    if min_stock < 0:
        raise ValidationError("min_stock cannot be negative")

    cost = to_money(cost_price, "cost_price")
    if cost < 0:
        raise ValidationError("cost_price cannot be negative")

    product = Product(
        org_id=organization_id,
        name=name,
        sku=coerce_optional_text(sku, "sku", max_length=64),
        barcode=coerce_optional_text(barcode, "barcode", max_length=64),
        sale_price=coerce_unit_price(sale_price, "sale_price"),
        cost_price=cost,
        min_stock=min_stock,
        current_stock=0,
        is_active=True,
    )
    repo.add(product)

    if opening_stock:
        ledger.apply_movement(
            product.id,
            MOVEMENT_IN,
            opening_stock,
            actor_id,
            "Opening stock",
            organization_id=organization_id,
            store_id=store_id,
        )

    current_app.logger.info("Created product id=%s name=%r opening_stock=%s", product.id, product.name, opening_stock)
    return product
