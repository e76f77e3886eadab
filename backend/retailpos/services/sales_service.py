# Overview: Service-layer operations for sales; the aggregate that keeps items, totals, stock and status consistent.

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP

from flask import current_app
from sqlalchemy import or_

from ..errors import InvalidStateTransition, NotFoundError, ValidationError
from ..models import Sale, SaleItem, SalePayment
from ..models.base import money_str
from ..models.sales import (
    SALE_STATUS_CANCELLED,
    SALE_STATUS_PENDING,
    VALID_SALE_STATUSES,
)
from ..time_utils import utcnow
from ..validation import (
    MONEY_QUANTUM,
    coerce_id,
    coerce_optional_datetime,
    coerce_optional_text,
    coerce_quantity,
    coerce_unit_price,
    parse_item_requests,
    parse_payment_requests,
    to_money,
    within_tolerance,
)
from .catalog_service import CatalogLookup
from .inventory_service import InventoryAdjuster, low_stock
from .payment_service import PaymentReconciler
from .repository import Repository, paginate
"""
Sale aggregate (authoritative)

States: PENDING -> PAID (payments cover total), PAID -> PENDING (payment removed
or total raised), any -> CANCELLED (terminal).

- Sale.total == sum(subtotal) over live items after every mutation.
- Every stock effect of an item goes through the InventoryAdjuster, in the
  same transaction as the item write.
- A sale always keeps at least one live item.
- Status is never written directly; it follows payments (reconcile) or cancel.
"""


EDITABLE_DETAILS = {"customer_id", "due_date", "notes"}


def line_subtotal(quantity: int, unit_price: Decimal) -> Decimal:
    return (Decimal(unit_price) * quantity).quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)


def compute_totals(subtotals) -> tuple[Decimal, Decimal]:
    """
    Return (subtotal, total).

    Tax and discount pass through as zero, so total == subtotal.
    """
    subtotal = sum((Decimal(s) for s in subtotals), Decimal("0.00")).quantize(MONEY_QUANTUM)
    tax = Decimal("0.00")
    discount = Decimal("0.00")
    return subtotal, subtotal + tax - discount


def _append_note(notes: str | None, line: str) -> str:
    if notes:
        return f"{notes}\n{line}"
    return line


class SaleManager:
    def __init__(
        self,
        repo: Repository,
        adjuster: InventoryAdjuster,
        reconciler: PaymentReconciler,
        catalog: CatalogLookup,
    ):
        self.repo = repo
        self.adjuster = adjuster
        self.reconciler = reconciler
        self.catalog = catalog

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _locked_sale(self, sale_id: int, organization_id: int | None) -> Sale:
        sale = self.repo.get_sale(sale_id, organization_id, lock=True)
        if sale is None:
            raise NotFoundError("Sale not found")
        return sale

    def _item_and_sale(self, item_id: int, organization_id: int | None) -> tuple[SaleItem, Sale]:
        item = self.repo.get_item(item_id, organization_id)
        if item is None:
            raise NotFoundError("Sale item not found")
        sale = self._locked_sale(item.sale_id, organization_id)
        # Quantity and is_deleted must come from the row as it is under the lock
        item = self.repo.get_item_in_sale(item_id, sale.id)
        if item is None:
            raise NotFoundError("Sale item not found")
        return item, sale

    @staticmethod
    def _require_open(sale: Sale, action: str) -> None:
        if sale.is_cancelled:
            raise InvalidStateTransition(f"Cannot {action} a cancelled sale")

    def _recalculate(self, sale: Sale) -> None:
        """Refresh totals from live items, then re-derive payment status."""
        self.repo.flush()
        subtotal, total = compute_totals(i.subtotal for i in self.repo.live_items(sale.id))

        paid = self.reconciler.paid_amount(sale.id)
        if self.reconciler.exceeds(paid, total):
            raise ValidationError(
                f"Payments of {paid:.2f} would exceed the new sale total of {total:.2f}; remove a payment first",
                details={"paid": money_str(paid), "total": money_str(total)},
            )

        sale.subtotal = subtotal
        sale.total = total
        self.repo.flush()
        self.reconciler.reconcile(sale)

    def snapshot(self, sale: Sale) -> dict:
        """Sale with its live items and payments, as returned to callers."""
        items = []
        for item in self.repo.live_items(sale.id):
            data = item.to_dict()
            data["product_name"] = item.product.name
            data["low_stock"] = low_stock(item.product)
            items.append(data)

        payments = [p.to_dict() for p in self.repo.live_payments(sale.id)]
        paid = self.reconciler.paid_amount(sale.id)

        data = sale.to_dict()
        data["items"] = items
        data["payments"] = payments
        data["paid_amount"] = money_str(paid)
        data["balance"] = money_str(max(Decimal(sale.total) - paid, Decimal("0")))
        return data

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create(
        self,
        *,
        organization_id: int,
        store_id: int,
        actor_id: int | None,
        items,
        payments=None,
        customer_id: int | None = None,
        due_date=None,
        notes: str | None = None,
    ) -> Sale:
        item_requests = parse_item_requests(items)
        payment_requests = parse_payment_requests(payments)
        due_date = coerce_optional_datetime(due_date, "due_date")
        notes = coerce_optional_text(notes, "notes", max_length=2000)

        store = self.catalog.get_store(store_id, organization_id)
        if customer_id is not None:
            self.catalog.get_customer(coerce_id(customer_id, "customer_id"), organization_id)

        products = {}
        requested: dict[int, int] = {}
        for req in item_requests:
            if req.product_id not in products:
                products[req.product_id] = self.catalog.get_active_product(req.product_id, organization_id)
            requested[req.product_id] = requested.get(req.product_id, 0) + req.quantity

        for product_id, quantity in requested.items():
            self.adjuster.check_available(products[product_id], quantity)

        lines = []
        for req in item_requests:
            product = products[req.product_id]
            unit_price = req.unit_price if req.unit_price is not None else to_money(product.sale_price, "sale_price")
            lines.append((req, unit_price, line_subtotal(req.quantity, unit_price)))

        subtotal, total = compute_totals(sub for _, _, sub in lines)

        if payment_requests:
            for pay in payment_requests:
                self.catalog.require_payment_method(pay.payment_method_id, organization_id)
            paid = sum((p.amount for p in payment_requests), Decimal("0.00"))
            if not within_tolerance(paid, total, self.reconciler.tolerance):
                raise ValidationError(
                    f"Payment total {paid:.2f} does not match sale total {total:.2f}",
                    details={"paid": money_str(paid), "total": money_str(total)},
                )

        sale = Sale(
            org_id=organization_id,
            store_id=store.id,
            customer_id=customer_id,
            user_id=actor_id,
            sale_number=self.catalog.reserve_sale_number(store),
            subtotal=subtotal,
            total=total,
            status=SALE_STATUS_PENDING,
            sale_date=utcnow(),
            due_date=due_date,
            notes=notes,
        )
        self.repo.add(sale)

        for req, unit_price, sub in lines:
            self.repo.add(SaleItem(
                sale_id=sale.id,
                product_id=req.product_id,
                quantity=req.quantity,
                unit_price=unit_price,
                subtotal=sub,
            ))
            self.adjuster.decrement_for_sale(
                req.product_id,
                req.quantity,
                actor_id,
                sale.sale_number,
                sale_id=sale.id,
                organization_id=organization_id,
                store_id=store.id,
            )

        for pay in payment_requests:
            self.repo.add(SalePayment(
                sale_id=sale.id,
                payment_method_id=pay.payment_method_id,
                amount=pay.amount,
                reference=pay.reference,
                notes=pay.notes,
                payment_date=utcnow(),
            ))

        self.reconciler.reconcile(sale)
        current_app.logger.info(
            "Created sale %s store_id=%s items=%d total=%s status=%s",
            sale.sale_number, store.id, len(lines), sale.total, sale.status,
        )
        return sale

    def add_item(
        self,
        sale_id: int,
        product_id: int,
        quantity,
        unit_price=None,
        *,
        organization_id: int | None = None,
        actor_id: int | None = None,
    ) -> SaleItem:
        quantity = coerce_quantity(quantity)
        sale = self._locked_sale(sale_id, organization_id)
        self._require_open(sale, "add items to")

        product = self.catalog.get_active_product(product_id, sale.org_id)
        if unit_price is None:
            price = to_money(product.sale_price, "sale_price")
        else:
            price = coerce_unit_price(unit_price)

        item = SaleItem(
            sale_id=sale.id,
            product_id=product.id,
            quantity=quantity,
            unit_price=price,
            subtotal=line_subtotal(quantity, price),
        )
        self.repo.add(item)
        self.adjuster.decrement_for_sale(
            product.id,
            quantity,
            actor_id,
            sale.sale_number,
            sale_id=sale.id,
            organization_id=sale.org_id,
            store_id=sale.store_id,
        )
        self._recalculate(sale)
        return item

    def update_item(
        self,
        item_id: int,
        *,
        quantity=None,
        unit_price=None,
        organization_id: int | None = None,
        actor_id: int | None = None,
    ) -> SaleItem:
        if quantity is None and unit_price is None:
            raise ValidationError("Provide quantity or unit_price to update")
        new_quantity = coerce_quantity(quantity) if quantity is not None else None
        new_price = coerce_unit_price(unit_price) if unit_price is not None else None

        item, sale = self._item_and_sale(item_id, organization_id)
        self._require_open(sale, "modify items on")

        if new_quantity is not None:
            delta = new_quantity - item.quantity
            if delta > 0:
                self.catalog.get_active_product(item.product_id, sale.org_id)
                self.adjuster.decrement_for_sale(
                    item.product_id,
                    delta,
                    actor_id,
                    sale.sale_number,
                    sale_id=sale.id,
                    organization_id=sale.org_id,
                    store_id=sale.store_id,
                    reason=f"Quantity increased on sale {sale.sale_number}",
                )
            elif delta < 0:
                self.adjuster.restore_for_sale(
                    item.product_id,
                    -delta,
                    actor_id,
                    sale.sale_number,
                    sale_id=sale.id,
                    organization_id=sale.org_id,
                    store_id=sale.store_id,
                    reason=f"Quantity reduced on sale {sale.sale_number}",
                )
            item.quantity = new_quantity

        if new_price is not None:
            item.unit_price = new_price

        item.subtotal = line_subtotal(item.quantity, item.unit_price)
        self._recalculate(sale)
        return item

    def remove_item(
        self,
        item_id: int,
        *,
        organization_id: int | None = None,
        actor_id: int | None = None,
    ) -> Sale:
        item, sale = self._item_and_sale(item_id, organization_id)
        self._require_open(sale, "remove items from")
        if self.repo.count_live_items(sale.id) <= 1:
            raise InvalidStateTransition("Cannot remove the last item of a sale")

        self.repo.soft_delete(item)
        self.adjuster.restore_for_sale(
            item.product_id,
            item.quantity,
            actor_id,
            sale.sale_number,
            sale_id=sale.id,
            organization_id=sale.org_id,
            store_id=sale.store_id,
            reason=f"Item removed from sale {sale.sale_number}",
        )
        self._recalculate(sale)
        return sale

    def cancel(
        self,
        sale_id: int,
        reason: str | None = None,
        *,
        organization_id: int | None = None,
        actor_id: int | None = None,
    ) -> Sale:
        reason = coerce_optional_text(reason, "reason", max_length=1000)
        sale = self._locked_sale(sale_id, organization_id)
        if sale.is_cancelled:
            raise InvalidStateTransition("Sale is already cancelled")

        for item in self.repo.live_items(sale.id):
            self.adjuster.restore_for_sale(
                item.product_id,
                item.quantity,
                actor_id,
                sale.sale_number,
                sale_id=sale.id,
                organization_id=sale.org_id,
                store_id=sale.store_id,
                reason=f"Sale {sale.sale_number} cancelled",
            )

        sale.status = SALE_STATUS_CANCELLED
        sale.cancelled_at = utcnow()
        sale.notes = _append_note(sale.notes, f"CANCELLED: {reason}" if reason else "CANCELLED")
        self.repo.flush()

        current_app.logger.info("Cancelled sale %s reason=%r", sale.sale_number, reason)
        return sale

    def update_details(
        self,
        sale_id: int,
        changes: dict,
        *,
        organization_id: int | None = None,
    ) -> Sale:
        """
        Update sale metadata (customer, due date, notes).

        Status, totals and paid date are derived and cannot be set here.
        """
        if not changes:
            raise ValidationError("No changes provided")
        if "status" in changes or "paid_date" in changes:
            raise ValidationError("Sale status changes only through payments or cancellation")
        unknown = set(changes) - EDITABLE_DETAILS
        if unknown:
            raise ValidationError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")

        sale = self._locked_sale(sale_id, organization_id)

        if "customer_id" in changes:
            customer_id = changes["customer_id"]
            if customer_id is not None:
                customer_id = self.catalog.get_customer(coerce_id(customer_id, "customer_id"), sale.org_id).id
            sale.customer_id = customer_id
        if "due_date" in changes:
            sale.due_date = coerce_optional_datetime(changes["due_date"], "due_date")
        if "notes" in changes:
            sale.notes = coerce_optional_text(changes["notes"], "notes", max_length=2000)

        self.repo.flush()
        return sale

    def soft_delete(self, sale_id: int, *, organization_id: int | None = None) -> None:
        """Only a cancelled sale, whose stock is already restored, can be deleted."""
        sale = self._locked_sale(sale_id, organization_id)
        if not sale.is_cancelled:
            raise InvalidStateTransition("Only cancelled sales can be deleted")

        for item in self.repo.live_items(sale.id):
            item.mark_deleted()
        for payment in self.repo.live_payments(sale.id):
            payment.mark_deleted()
        self.repo.soft_delete(sale)
        current_app.logger.info("Soft-deleted sale %s", sale.sale_number)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_sale(self, sale_id: int, organization_id: int | None = None) -> Sale:
        sale = self.repo.get_sale(sale_id, organization_id)
        if sale is None:
            raise NotFoundError("Sale not found")
        return sale

    def get_sale_by_number(self, store_id: int, sale_number: str, organization_id: int) -> Sale:
        sale = self.repo.get_sale_by_number(store_id, sale_number, organization_id)
        if sale is None:
            raise NotFoundError("Sale not found")
        return sale

    def list_items(self, sale_id: int, organization_id: int | None = None) -> list[SaleItem]:
        sale = self.get_sale(sale_id, organization_id)
        return self.repo.live_items(sale.id)

    def list_sales(
        self,
        organization_id: int,
        *,
        store_id: int | None = None,
        customer_id: int | None = None,
        status: str | None = None,
        date_from=None,
        date_to=None,
        min_total=None,
        max_total=None,
        search: str | None = None,
        page: int | None = 1,
        per_page: int | None = None,
    ) -> dict:
        query = self.repo.live(Sale).filter(Sale.org_id == organization_id)

        if store_id is not None:
            query = query.filter(Sale.store_id == store_id)
        if customer_id is not None:
            query = query.filter(Sale.customer_id == customer_id)
        if status is not None:
            if status not in VALID_SALE_STATUSES:
                raise ValidationError(f"Invalid status: {status}")
            query = query.filter(Sale.status == status)

        date_from = coerce_optional_datetime(date_from, "date_from")
        date_to = coerce_optional_datetime(date_to, "date_to")
        if date_from is not None:
            query = query.filter(Sale.sale_date >= date_from)
        if date_to is not None:
            query = query.filter(Sale.sale_date <= date_to)

        if min_total is not None:
            query = query.filter(Sale.total >= to_money(min_total, "min_total"))
        if max_total is not None:
            query = query.filter(Sale.total <= to_money(max_total, "max_total"))

        if search:
            like = f"%{search.strip()}%"
            query = query.filter(or_(Sale.sale_number.ilike(like), Sale.notes.ilike(like)))

        query = query.order_by(Sale.sale_date.desc(), Sale.id.desc())
        return paginate(query, page, per_page, lambda s: s.to_dict())

    def list_pending_sales(self, organization_id: int, store_id: int | None = None) -> list[Sale]:
        query = self.repo.live(Sale).filter(
            Sale.org_id == organization_id,
            Sale.status == SALE_STATUS_PENDING,
        )
        if store_id is not None:
            query = query.filter(Sale.store_id == store_id)
        return query.order_by(Sale.due_date.asc(), Sale.id.asc()).all()

    def list_overdue_sales(self, organization_id: int, store_id: int | None = None, now=None) -> list[Sale]:
        """PENDING sales whose due date has passed."""
        now = now or utcnow()
        query = self.repo.live(Sale).filter(
            Sale.org_id == organization_id,
            Sale.status == SALE_STATUS_PENDING,
            Sale.due_date.isnot(None),
            Sale.due_date < now,
        )
        if store_id is not None:
            query = query.filter(Sale.store_id == store_id)
        return query.order_by(Sale.due_date.asc(), Sale.id.asc()).all()
