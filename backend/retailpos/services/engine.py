# Overview: Public entry point of the sale & inventory engine; every call returns an ActionResult.

from __future__ import annotations

from decimal import Decimal

from flask import current_app
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import EngineError, InternalError, NotFoundError, ValidationError
from ..extensions import db
from ..models.inventory import MOVEMENT_ADJUSTMENT, MOVEMENT_IN, MOVEMENT_OUT, VALID_MOVEMENT_TYPES
from ..results import ActionResult
from ..validation import coerce_id, coerce_int
from . import permission_service
from .catalog_service import CatalogLookup, create_product
from .concurrency import run_in_transaction
from .inventory_service import InventoryAdjuster
from .ledger_service import StockLedger
from .payment_service import PaymentReconciler
from .repository import Repository, translate_integrity_error
from .sales_service import SaleManager
"""
Engine boundary (authoritative)

- Mutations: privilege gate, then exactly one unit of work (atomic + retry).
- Queries: organization-scoped reads, no privilege gate.
- No exception crosses this boundary. Domain errors become their envelope;
  store errors are translated; anything else is logged with context and
  surfaced as a generic 500.
- Payloads are serialized inside the unit of work, before commit.
"""


class SaleEngine:
    def __init__(self, session=None, config=None):
        self.session = session if session is not None else db.session
        cfg = config if config is not None else current_app.config

        self.acquire_timeout = float(cfg.get("TX_ACQUIRE_TIMEOUT_SECONDS", 10))
        self.execution_timeout = float(cfg.get("TX_EXECUTION_TIMEOUT_SECONDS", 30))
        self.retry_attempts = int(cfg.get("TX_RETRY_ATTEMPTS", 3))
        self.retry_backoff = float(cfg.get("TX_RETRY_BACKOFF_SECONDS", 0.1))

        self.repo = Repository(self.session)
        self.catalog = CatalogLookup(self.repo, int(cfg.get("SALE_NUMBER_PAD", 6)))
        self.ledger = StockLedger(self.repo)
        self.adjuster = InventoryAdjuster(self.ledger)
        self.payments = PaymentReconciler(
            self.repo,
            self.catalog,
            Decimal(str(cfg.get("PAYMENT_TOLERANCE", "0.01"))),
        )
        self.sales = SaleManager(self.repo, self.adjuster, self.payments, self.catalog)

    # ------------------------------------------------------------------
    # Boundary
    # ------------------------------------------------------------------

    def _execute(
        self,
        operation: str,
        func,
        *,
        organization_id: int | None,
        actor_id: int | None = None,
        mutating: bool = True,
        message: str = "OK",
        status: int = 200,
        **context,
    ) -> ActionResult:
        try:
            if mutating:
                permission_service.require_privileged_actor(self.session, actor_id, organization_id)
                data = run_in_transaction(
                    self.session,
                    func,
                    attempts=self.retry_attempts,
                    backoff_base=self.retry_backoff,
                    acquire_timeout=self.acquire_timeout,
                    execution_timeout=self.execution_timeout,
                )
            else:
                data = func()
            return ActionResult.success(data, message, status)

        except EngineError as exc:
            self.session.rollback()
            if isinstance(exc, InternalError):
                current_app.logger.exception(
                    "%s failed: %s org_id=%s actor_id=%s %s",
                    operation, exc.message, organization_id, actor_id, context,
                )
            else:
                current_app.logger.info("%s rejected (%s): %s", operation, exc.kind.value, exc.message)
            return ActionResult.failure(exc)

        except IntegrityError as exc:
            self.session.rollback()
            current_app.logger.warning("%s hit an integrity error: %s", operation, exc.orig)
            return ActionResult.failure(translate_integrity_error(exc))

        except (OperationalError, StaleDataError):
            self.session.rollback()
            current_app.logger.exception(
                "%s gave up after %d attempts org_id=%s actor_id=%s %s",
                operation, self.retry_attempts, organization_id, actor_id, context,
            )
            return ActionResult.failure(
                InternalError("The store is busy, please retry", retryable=True)
            )

        except Exception:
            self.session.rollback()
            current_app.logger.exception(
                "Unexpected error in %s org_id=%s actor_id=%s %s",
                operation, organization_id, actor_id, context,
            )
            return ActionResult.failure(InternalError())

    # ------------------------------------------------------------------
    # Sales
    # ------------------------------------------------------------------

    def create_sale(
        self,
        organization_id: int,
        actor_id: int,
        store_id,
        items,
        payments=None,
        customer_id=None,
        due_date=None,
        notes=None,
    ) -> ActionResult:
        def _op():
            sale = self.sales.create(
                organization_id=organization_id,
                store_id=coerce_id(store_id, "store_id"),
                actor_id=actor_id,
                items=items,
                payments=payments,
                customer_id=customer_id,
                due_date=due_date,
                notes=notes,
            )
            return self.sales.snapshot(sale)

        return self._execute(
            "create_sale", _op,
            organization_id=organization_id, actor_id=actor_id,
            message="Sale created successfully", status=201,
            store_id=store_id,
        )

    def add_item(self, organization_id: int, actor_id: int, sale_id, product_id, quantity, unit_price=None) -> ActionResult:
        def _op():
            item = self.sales.add_item(
                coerce_id(sale_id, "sale_id"),
                coerce_id(product_id, "product_id"),
                quantity,
                unit_price,
                organization_id=organization_id,
                actor_id=actor_id,
            )
            return {"item": item.to_dict(), "sale": self.sales.snapshot(item.sale)}

        return self._execute(
            "add_item", _op,
            organization_id=organization_id, actor_id=actor_id,
            message="Item added successfully", status=201,
            sale_id=sale_id, product_id=product_id,
        )

    def update_item(self, organization_id: int, actor_id: int, item_id, quantity=None, unit_price=None) -> ActionResult:
        def _op():
            item = self.sales.update_item(
                coerce_id(item_id, "item_id"),
                quantity=quantity,
                unit_price=unit_price,
                organization_id=organization_id,
                actor_id=actor_id,
            )
            return {"item": item.to_dict(), "sale": self.sales.snapshot(item.sale)}

        return self._execute(
            "update_item", _op,
            organization_id=organization_id, actor_id=actor_id,
            message="Item updated successfully",
            item_id=item_id,
        )

    def remove_item(self, organization_id: int, actor_id: int, item_id) -> ActionResult:
        def _op():
            sale = self.sales.remove_item(
                coerce_id(item_id, "item_id"),
                organization_id=organization_id,
                actor_id=actor_id,
            )
            return self.sales.snapshot(sale)

        return self._execute(
            "remove_item", _op,
            organization_id=organization_id, actor_id=actor_id,
            message="Item removed successfully",
            item_id=item_id,
        )

    def cancel_sale(self, organization_id: int, actor_id: int, sale_id, reason=None) -> ActionResult:
        def _op():
            sale = self.sales.cancel(
                coerce_id(sale_id, "sale_id"),
                reason,
                organization_id=organization_id,
                actor_id=actor_id,
            )
            return self.sales.snapshot(sale)

        return self._execute(
            "cancel_sale", _op,
            organization_id=organization_id, actor_id=actor_id,
            message="Sale cancelled successfully",
            sale_id=sale_id,
        )

    def update_sale(self, organization_id: int, actor_id: int, sale_id, changes: dict) -> ActionResult:
        def _op():
            sale = self.sales.update_details(
                coerce_id(sale_id, "sale_id"),
                changes or {},
                organization_id=organization_id,
            )
            return self.sales.snapshot(sale)

        return self._execute(
            "update_sale", _op,
            organization_id=organization_id, actor_id=actor_id,
            message="Sale updated successfully",
            sale_id=sale_id,
        )

    def delete_sale(self, organization_id: int, actor_id: int, sale_id) -> ActionResult:
        def _op():
            ident = coerce_id(sale_id, "sale_id")
            self.sales.soft_delete(ident, organization_id=organization_id)
            return {"id": ident}

        return self._execute(
            "delete_sale", _op,
            organization_id=organization_id, actor_id=actor_id,
            message="Sale deleted successfully",
            sale_id=sale_id,
        )

    def get_sale(self, organization_id: int, sale_id) -> ActionResult:
        def _op():
            return self.sales.snapshot(self.sales.get_sale(coerce_id(sale_id, "sale_id"), organization_id))

        return self._execute(
            "get_sale", _op, organization_id=organization_id, mutating=False,
            message="Sale retrieved successfully",
        )

    def get_sale_by_number(self, organization_id: int, store_id, sale_number: str) -> ActionResult:
        def _op():
            if not sale_number:
                raise ValidationError("sale_number is required")
            sale = self.sales.get_sale_by_number(coerce_id(store_id, "store_id"), sale_number, organization_id)
            return self.sales.snapshot(sale)

        return self._execute(
            "get_sale_by_number", _op, organization_id=organization_id, mutating=False,
            message="Sale retrieved successfully",
        )

    def list_sale_items(self, organization_id: int, sale_id) -> ActionResult:
        def _op():
            items = self.sales.list_items(coerce_id(sale_id, "sale_id"), organization_id)
            return [i.to_dict() for i in items]

        return self._execute(
            "list_sale_items", _op, organization_id=organization_id, mutating=False,
            message="Sale items retrieved successfully",
        )

    def list_sales(self, organization_id: int, **filters) -> ActionResult:
        return self._execute(
            "list_sales",
            lambda: self.sales.list_sales(organization_id, **filters),
            organization_id=organization_id, mutating=False,
            message="Sales retrieved successfully",
        )

    def list_pending_sales(self, organization_id: int, store_id=None) -> ActionResult:
        def _op():
            ident = coerce_id(store_id, "store_id") if store_id is not None else None
            return [s.to_dict() for s in self.sales.list_pending_sales(organization_id, ident)]

        return self._execute(
            "list_pending_sales", _op, organization_id=organization_id, mutating=False,
            message="Pending sales retrieved successfully",
        )

    def list_overdue_sales(self, organization_id: int, store_id=None, now=None) -> ActionResult:
        def _op():
            ident = coerce_id(store_id, "store_id") if store_id is not None else None
            return [s.to_dict() for s in self.sales.list_overdue_sales(organization_id, ident, now)]

        return self._execute(
            "list_overdue_sales", _op, organization_id=organization_id, mutating=False,
            message="Overdue sales retrieved successfully",
        )

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    def add_payment(
        self,
        organization_id: int,
        actor_id: int,
        sale_id,
        payment_method_id,
        amount,
        reference=None,
        notes=None,
        payment_date=None,
    ) -> ActionResult:
        def _op():
            payment = self.payments.add_payment(
                coerce_id(sale_id, "sale_id"),
                coerce_id(payment_method_id, "payment_method_id"),
                amount,
                organization_id=organization_id,
                reference=reference,
                notes=notes,
                payment_date=payment_date,
            )
            return {"payment": payment.to_dict(), "sale": self.sales.snapshot(payment.sale)}

        return self._execute(
            "add_payment", _op,
            organization_id=organization_id, actor_id=actor_id,
            message="Payment added successfully", status=201,
            sale_id=sale_id, payment_method_id=payment_method_id,
        )

    def remove_payment(self, organization_id: int, actor_id: int, payment_id) -> ActionResult:
        def _op():
            sale = self.payments.remove_payment(coerce_id(payment_id, "payment_id"), organization_id=organization_id)
            return self.sales.snapshot(sale)

        return self._execute(
            "remove_payment", _op,
            organization_id=organization_id, actor_id=actor_id,
            message="Payment removed successfully",
            payment_id=payment_id,
        )

    def update_payment(self, organization_id: int, actor_id: int, payment_id, **changes) -> ActionResult:
        def _op():
            payment = self.payments.update_payment(
                coerce_id(payment_id, "payment_id"),
                organization_id=organization_id,
                **changes,
            )
            return {"payment": payment.to_dict(), "sale": self.sales.snapshot(payment.sale)}

        return self._execute(
            "update_payment", _op,
            organization_id=organization_id, actor_id=actor_id,
            message="Payment updated successfully",
            payment_id=payment_id,
        )

    def list_payments(self, organization_id: int, sale_id) -> ActionResult:
        def _op():
            return [p.to_dict() for p in self.payments.list_payments(coerce_id(sale_id, "sale_id"), organization_id)]

        return self._execute(
            "list_payments", _op, organization_id=organization_id, mutating=False,
            message="Payments retrieved successfully",
        )

    def payment_summary(self, organization_id: int, sale_id) -> ActionResult:
        return self._execute(
            "payment_summary",
            lambda: self.payments.payment_summary(coerce_id(sale_id, "sale_id"), organization_id),
            organization_id=organization_id, mutating=False,
            message="Payment summary retrieved successfully",
        )

    # ------------------------------------------------------------------
    # Stock
    # ------------------------------------------------------------------

    def create_product(self, organization_id: int, actor_id: int, **fields) -> ActionResult:
        def _op():
            if fields.get("store_id") is not None:
                fields["store_id"] = self.catalog.get_store(coerce_id(fields["store_id"], "store_id"), organization_id).id
            product = create_product(
                self.repo,
                self.ledger,
                organization_id=organization_id,
                actor_id=actor_id,
                **fields,
            )
            return product.to_dict()

        return self._execute(
            "create_product", _op,
            organization_id=organization_id, actor_id=actor_id,
            message="Product created successfully", status=201,
        )

    def apply_stock_movement(
        self,
        organization_id: int,
        actor_id: int,
        product_id,
        movement_type: str,
        quantity,
        reason=None,
        reference=None,
        store_id=None,
    ) -> ActionResult:
        def _op():
            if movement_type not in VALID_MOVEMENT_TYPES:
                raise ValidationError(f"type must be one of {', '.join(VALID_MOVEMENT_TYPES)}")
            ident = coerce_id(product_id, "product_id")
            qty = coerce_int(quantity, "quantity")
            store = None
            if store_id is not None:
                store = self.catalog.get_store(coerce_id(store_id, "store_id"), organization_id).id

            kwargs = {"organization_id": organization_id, "store_id": store}
            if movement_type == MOVEMENT_IN:
                movement = self.adjuster.receive(ident, qty, actor_id, reason, reference, **kwargs)
            elif movement_type == MOVEMENT_OUT:
                movement = self.adjuster.issue(ident, qty, actor_id, reason, reference, **kwargs)
            else:
                movement = self.adjuster.set_exact(ident, qty, actor_id, reason, reference, **kwargs)
            return {"movement": movement.to_dict(), "product": movement.product.to_dict()}

        return self._execute(
            "apply_stock_movement", _op,
            organization_id=organization_id, actor_id=actor_id,
            message="Stock movement recorded successfully", status=201,
            product_id=product_id, type=movement_type,
        )

    def delete_stock_movement(self, organization_id: int, actor_id: int, movement_id) -> ActionResult:
        def _op():
            product = self.ledger.delete_last_movement(coerce_id(movement_id, "movement_id"), organization_id)
            return {"product": product.to_dict()}

        return self._execute(
            "delete_stock_movement", _op,
            organization_id=organization_id, actor_id=actor_id,
            message="Stock movement deleted successfully",
            movement_id=movement_id,
        )

    def update_stock_movement(self, organization_id: int, actor_id: int, movement_id, reason=None, reference=None) -> ActionResult:
        def _op():
            movement = self.ledger.update_movement_notes(
                coerce_id(movement_id, "movement_id"),
                reason=reason,
                reference=reference,
                organization_id=organization_id,
            )
            return movement.to_dict()

        return self._execute(
            "update_stock_movement", _op,
            organization_id=organization_id, actor_id=actor_id,
            message="Stock movement updated successfully",
            movement_id=movement_id,
        )

    def get_stock_movement(self, organization_id: int, movement_id) -> ActionResult:
        return self._execute(
            "get_stock_movement",
            lambda: self.ledger.get_movement(coerce_id(movement_id, "movement_id"), organization_id).to_dict(),
            organization_id=organization_id, mutating=False,
            message="Stock movement retrieved successfully",
        )

    def list_stock_movements(self, organization_id: int, **filters) -> ActionResult:
        return self._execute(
            "list_stock_movements",
            lambda: self.ledger.list_movements(organization_id, **filters),
            organization_id=organization_id, mutating=False,
            message="Stock movements retrieved successfully",
        )

    def stock_summary(self, organization_id: int, product_id) -> ActionResult:
        return self._execute(
            "stock_summary",
            lambda: self.ledger.stock_summary(coerce_id(product_id, "product_id"), organization_id),
            organization_id=organization_id, mutating=False,
            message="Stock summary retrieved successfully",
        )

    def verify_stock(self, organization_id: int, product_id) -> ActionResult:
        def _op():
            ident = coerce_id(product_id, "product_id")
            if self.repo.get_product(ident, organization_id, include_deleted=True) is None:
                raise NotFoundError(f"Product {ident} not found")
            return self.ledger.replay(ident)

        return self._execute(
            "verify_stock", _op, organization_id=organization_id, mutating=False,
            message="Stock ledger verified",
        )
