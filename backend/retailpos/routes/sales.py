# Overview: Flask API routes for sales, items and payments; parses input and returns the result envelope.

"""Sales API routes. All business rules and privilege checks live in SaleEngine."""

from flask import Blueprint, request, jsonify, g

from ..decorators import require_actor
from ..services.engine import SaleEngine


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


def _respond(result):
    return jsonify(result.to_dict()), result.status


def _body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


@sales_bp.post("/")
@require_actor
def create_sale_route():
    """
    Create a sale with its items (and optionally full payment).

    Body: {store_id, items: [{product_id, quantity, unit_price?}], payments?: [...],
           customer_id?, due_date?, notes?}
    """
    data = _body()
    result = SaleEngine().create_sale(
        g.org_id,
        g.current_user.id,
        data.get("store_id"),
        data.get("items"),
        payments=data.get("payments"),
        customer_id=data.get("customer_id"),
        due_date=data.get("due_date"),
        notes=data.get("notes"),
    )
    return _respond(result)


@sales_bp.get("/")
@require_actor
def list_sales_route():
    args = request.args
    result = SaleEngine().list_sales(
        g.org_id,
        store_id=args.get("store_id", type=int),
        customer_id=args.get("customer_id", type=int),
        status=args.get("status"),
        date_from=args.get("date_from"),
        date_to=args.get("date_to"),
        min_total=args.get("min_total"),
        max_total=args.get("max_total"),
        search=args.get("search"),
        page=args.get("page", default=1, type=int),
        per_page=args.get("per_page", type=int),
    )
    return _respond(result)


@sales_bp.get("/pending")
@require_actor
def list_pending_route():
    return _respond(SaleEngine().list_pending_sales(g.org_id, request.args.get("store_id", type=int)))


@sales_bp.get("/overdue")
@require_actor
def list_overdue_route():
    return _respond(SaleEngine().list_overdue_sales(g.org_id, request.args.get("store_id", type=int)))


@sales_bp.get("/by-number")
@require_actor
def get_sale_by_number_route():
    result = SaleEngine().get_sale_by_number(
        g.org_id,
        request.args.get("store_id"),
        request.args.get("sale_number"),
    )
    return _respond(result)


@sales_bp.get("/<int:sale_id>")
@require_actor
def get_sale_route(sale_id: int):
    return _respond(SaleEngine().get_sale(g.org_id, sale_id))


@sales_bp.patch("/<int:sale_id>")
@require_actor
def update_sale_route(sale_id: int):
    """Update customer, due date or notes. Status is not writable."""
    return _respond(SaleEngine().update_sale(g.org_id, g.current_user.id, sale_id, _body()))


@sales_bp.delete("/<int:sale_id>")
@require_actor
def delete_sale_route(sale_id: int):
    return _respond(SaleEngine().delete_sale(g.org_id, g.current_user.id, sale_id))


@sales_bp.post("/<int:sale_id>/cancel")
@require_actor
def cancel_sale_route(sale_id: int):
    """Cancel a sale and restock every live item."""
    data = _body()
    return _respond(SaleEngine().cancel_sale(g.org_id, g.current_user.id, sale_id, data.get("reason")))


# ----------------------------------------------------------------------
# Items
# ----------------------------------------------------------------------

@sales_bp.get("/<int:sale_id>/items")
@require_actor
def list_items_route(sale_id: int):
    return _respond(SaleEngine().list_sale_items(g.org_id, sale_id))


@sales_bp.post("/<int:sale_id>/items")
@require_actor
def add_item_route(sale_id: int):
    data = _body()
    result = SaleEngine().add_item(
        g.org_id,
        g.current_user.id,
        sale_id,
        data.get("product_id"),
        data.get("quantity"),
        data.get("unit_price"),
    )
    return _respond(result)


@sales_bp.patch("/items/<int:item_id>")
@require_actor
def update_item_route(item_id: int):
    data = _body()
    result = SaleEngine().update_item(
        g.org_id,
        g.current_user.id,
        item_id,
        quantity=data.get("quantity"),
        unit_price=data.get("unit_price"),
    )
    return _respond(result)


@sales_bp.delete("/items/<int:item_id>")
@require_actor
def remove_item_route(item_id: int):
    return _respond(SaleEngine().remove_item(g.org_id, g.current_user.id, item_id))


# ----------------------------------------------------------------------
# Payments
# ----------------------------------------------------------------------

@sales_bp.get("/<int:sale_id>/payments")
@require_actor
def list_payments_route(sale_id: int):
    return _respond(SaleEngine().list_payments(g.org_id, sale_id))


@sales_bp.get("/<int:sale_id>/payments/summary")
@require_actor
def payment_summary_route(sale_id: int):
    return _respond(SaleEngine().payment_summary(g.org_id, sale_id))


@sales_bp.post("/<int:sale_id>/payments")
@require_actor
def add_payment_route(sale_id: int):
    data = _body()
    result = SaleEngine().add_payment(
        g.org_id,
        g.current_user.id,
        sale_id,
        data.get("payment_method_id"),
        data.get("amount"),
        reference=data.get("reference"),
        notes=data.get("notes"),
        payment_date=data.get("payment_date"),
    )
    return _respond(result)


@sales_bp.patch("/payments/<int:payment_id>")
@require_actor
def update_payment_route(payment_id: int):
    data = _body()
    changes = {
        key: data[key]
        for key in ("amount", "reference", "notes", "payment_date")
        if key in data
    }
    return _respond(SaleEngine().update_payment(g.org_id, g.current_user.id, payment_id, **changes))


@sales_bp.delete("/payments/<int:payment_id>")
@require_actor
def remove_payment_route(payment_id: int):
    return _respond(SaleEngine().remove_payment(g.org_id, g.current_user.id, payment_id))
