# Overview: Service-layer operations for payments; keeps sale status consistent with live payments.

from __future__ import annotations

from decimal import Decimal

from flask import current_app
from sqlalchemy import func

from ..errors import InvalidStateTransition, NotFoundError, ValidationError
from ..models import Sale, SalePayment
from ..models.base import money_str
from ..models.sales import SALE_STATUS_PAID, SALE_STATUS_PENDING
from ..time_utils import utcnow
from ..validation import (
    MONEY_QUANTUM,
    coerce_optional_datetime,
    coerce_optional_text,
    coerce_payment_amount,
    within_tolerance,
)
from .catalog_service import CatalogLookup
from .repository import Repository
"""
Payment invariants (authoritative)

- sum(amount) over live payments never exceeds Sale.total.
- A non-cancelled sale is PAID iff its live payments cover its total;
  paid_date is stamped on the PENDING -> PAID edge and cleared on the way back.
- Payments are never added to, changed on, or removed from a CANCELLED sale.
- Removal is a soft delete; the payment row stays for audit.
"""


class PaymentReconciler:
    def __init__(self, repo: Repository, catalog: CatalogLookup, tolerance: Decimal = MONEY_QUANTUM):
        self.repo = repo
        self.catalog = catalog
        self.tolerance = Decimal(tolerance)

    def paid_amount(self, sale_id: int, *, exclude_payment_id: int | None = None) -> Decimal:
        query = self.repo.live(SalePayment).with_entities(
            func.coalesce(func.sum(SalePayment.amount), 0)
        ).filter(SalePayment.sale_id == sale_id)
        if exclude_payment_id is not None:
            query = query.filter(SalePayment.id != exclude_payment_id)
        return Decimal(str(query.scalar() or 0)).quantize(MONEY_QUANTUM)

    def covers(self, paid: Decimal, total: Decimal) -> bool:
        return paid >= total or within_tolerance(paid, total, self.tolerance)

    def exceeds(self, paid: Decimal, total: Decimal) -> bool:
        return paid > total and not within_tolerance(paid, total, self.tolerance)

    def reconcile(self, sale: Sale) -> str:
        """Recompute status from live payments. CANCELLED is left alone."""
        if sale.is_cancelled:
            return sale.status

        paid = self.paid_amount(sale.id)
        if self.covers(paid, Decimal(sale.total)):
            if sale.status != SALE_STATUS_PAID:
                sale.status = SALE_STATUS_PAID
                sale.paid_date = utcnow()
                current_app.logger.info("Sale %s is now PAID (paid=%s total=%s)", sale.sale_number, paid, sale.total)
        elif sale.status == SALE_STATUS_PAID:
            sale.status = SALE_STATUS_PENDING
            sale.paid_date = None
            current_app.logger.info("Sale %s reverted to PENDING (paid=%s total=%s)", sale.sale_number, paid, sale.total)

        self.repo.flush()
        return sale.status

    def _locked_sale(self, sale_id: int, organization_id: int | None) -> Sale:
        sale = self.repo.get_sale(sale_id, organization_id, lock=True)
        if sale is None:
            raise NotFoundError("Sale not found")
        return sale

    def _payment_and_sale(self, payment_id: int, organization_id: int | None) -> tuple[SalePayment, Sale]:
        payment = self.repo.get_payment(payment_id, organization_id)
        if payment is None:
            raise NotFoundError("Payment not found")
        sale = self._locked_sale(payment.sale_id, organization_id)
        payment = self.repo.get_payment_in_sale(payment_id, sale.id)
        if payment is None:
            raise NotFoundError("Payment not found")
        return payment, sale

    def _check_bound(self, sale: Sale, paid_without: Decimal, amount: Decimal) -> None:
        remaining = Decimal(sale.total) - paid_without
        if self.exceeds(paid_without + amount, Decimal(sale.total)):
            raise ValidationError(
                f"Payment amount {amount:.2f} exceeds the remaining balance of {remaining:.2f}",
                details={"remaining": money_str(remaining), "amount": money_str(amount)},
            )

    def add_payment(
        self,
        sale_id: int,
        payment_method_id: int,
        amount,
        *,
        organization_id: int | None = None,
        reference: str | None = None,
        notes: str | None = None,
        payment_date=None,
    ) -> SalePayment:
        amount = coerce_payment_amount(amount)
        sale = self._locked_sale(sale_id, organization_id)
        if sale.is_cancelled:
            raise InvalidStateTransition("Cannot add a payment to a cancelled sale")

        self.catalog.require_payment_method(payment_method_id, sale.org_id)
        self._check_bound(sale, self.paid_amount(sale.id), amount)

        payment = SalePayment(
            sale_id=sale.id,
            payment_method_id=payment_method_id,
            amount=amount,
            reference=coerce_optional_text(reference, "reference", max_length=128),
            notes=coerce_optional_text(notes, "notes", max_length=1000),
            payment_date=coerce_optional_datetime(payment_date, "payment_date") or utcnow(),
        )
        self.repo.add(payment)
        self.reconcile(sale)
        return payment

    def remove_payment(self, payment_id: int, *, organization_id: int | None = None) -> Sale:
        payment, sale = self._payment_and_sale(payment_id, organization_id)
        if sale.is_cancelled:
            raise InvalidStateTransition("Cannot remove a payment from a cancelled sale")

        self.repo.soft_delete(payment)
        self.reconcile(sale)
        return sale

    def update_payment(
        self,
        payment_id: int,
        *,
        organization_id: int | None = None,
        amount=None,
        reference: str | None = None,
        notes: str | None = None,
        payment_date=None,
    ) -> SalePayment:
        payment, sale = self._payment_and_sale(payment_id, organization_id)
        if sale.is_cancelled:
            raise InvalidStateTransition("Cannot change a payment on a cancelled sale")

        if amount is not None:
            amount = coerce_payment_amount(amount)
            self._check_bound(sale, self.paid_amount(sale.id, exclude_payment_id=payment.id), amount)
            payment.amount = amount
        if reference is not None:
            payment.reference = coerce_optional_text(reference, "reference", max_length=128)
        if notes is not None:
            payment.notes = coerce_optional_text(notes, "notes", max_length=1000)
        if payment_date is not None:
            payment.payment_date = coerce_optional_datetime(payment_date, "payment_date")

        self.repo.flush()
        self.reconcile(sale)
        return payment

    def list_payments(self, sale_id: int, organization_id: int | None = None) -> list[SalePayment]:
        sale = self.repo.get_sale(sale_id, organization_id)
        if sale is None:
            raise NotFoundError("Sale not found")
        return self.repo.live_payments(sale.id)

    def payment_summary(self, sale_id: int, organization_id: int | None = None) -> dict:
        sale = self.repo.get_sale(sale_id, organization_id)
        if sale is None:
            raise NotFoundError("Sale not found")
        total = Decimal(sale.total)
        paid = self.paid_amount(sale.id)
        return {
            "sale_id": sale.id,
            "sale_number": sale.sale_number,
            "total": money_str(total),
            "paid": money_str(paid),
            "balance": money_str(max(total - paid, Decimal("0"))),
            "status": sale.status,
            "payment_count": len(self.repo.live_payments(sale.id)),
        }
