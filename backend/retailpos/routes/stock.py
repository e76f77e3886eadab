# Overview: Flask API routes for products and stock movements.

from flask import Blueprint, request, jsonify, g

from ..decorators import require_actor
from ..services.engine import SaleEngine


stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock")


def _respond(result):
    return jsonify(result.to_dict()), result.status


def _body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


@stock_bp.post("/products")
@require_actor
def create_product_route():
    """
    Create a product. opening_stock, if given, is booked as the first IN movement.

    Body: {name, sale_price, cost_price?, sku?, barcode?, min_stock?, opening_stock?, store_id?}
    """
    data = _body()
    fields = {
        key: data[key]
        for key in ("name", "sale_price", "cost_price", "sku", "barcode", "min_stock", "opening_stock", "store_id")
        if key in data
    }
    return _respond(SaleEngine().create_product(g.org_id, g.current_user.id, **fields))


@stock_bp.get("/products/<int:product_id>/summary")
@require_actor
def stock_summary_route(product_id: int):
    return _respond(SaleEngine().stock_summary(g.org_id, product_id))


@stock_bp.get("/products/<int:product_id>/verify")
@require_actor
def verify_stock_route(product_id: int):
    """Replay the product's movement chain and compare it to current_stock."""
    return _respond(SaleEngine().verify_stock(g.org_id, product_id))


@stock_bp.post("/movements")
@require_actor
def create_movement_route():
    """
    Manual stock movement.

    Body: {product_id, type: IN|OUT|ADJUSTMENT, quantity, reason?, reference?, store_id?}
    ADJUSTMENT sets stock to quantity.
    """
    data = _body()
    result = SaleEngine().apply_stock_movement(
        g.org_id,
        g.current_user.id,
        data.get("product_id"),
        (data.get("type") or "").upper(),
        data.get("quantity"),
        reason=data.get("reason"),
        reference=data.get("reference"),
        store_id=data.get("store_id"),
    )
    return _respond(result)


@stock_bp.get("/movements")
@require_actor
def list_movements_route():
    args = request.args
    movement_type = args.get("type")
    result = SaleEngine().list_stock_movements(
        g.org_id,
        product_id=args.get("product_id", type=int),
        movement_type=movement_type.upper() if movement_type else None,
        sale_id=args.get("sale_id", type=int),
        date_from=args.get("date_from"),
        date_to=args.get("date_to"),
        page=args.get("page", default=1, type=int),
        per_page=args.get("per_page", type=int),
    )
    return _respond(result)


@stock_bp.get("/movements/<int:movement_id>")
@require_actor
def get_movement_route(movement_id: int):
    return _respond(SaleEngine().get_stock_movement(g.org_id, movement_id))


@stock_bp.patch("/movements/<int:movement_id>")
@require_actor
def update_movement_route(movement_id: int):
    """Only reason and reference can be edited."""
    data = _body()
    result = SaleEngine().update_stock_movement(
        g.org_id,
        g.current_user.id,
        movement_id,
        reason=data.get("reason"),
        reference=data.get("reference"),
    )
    return _respond(result)


@stock_bp.delete("/movements/<int:movement_id>")
@require_actor
def delete_movement_route(movement_id: int):
    """Undo the product's most recent manual movement."""
    return _respond(SaleEngine().delete_stock_movement(g.org_id, g.current_user.id, movement_id))
