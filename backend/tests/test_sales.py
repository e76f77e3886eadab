"""
Sale aggregate tests, driven through SaleEngine.

Covers creation (including the insufficient-stock scenario), item mutations
and the totals / stock effects each must keep consistent.
"""

from datetime import timedelta
from decimal import Decimal

from retailpos.errors import ErrorKind
from retailpos.models import Product, Sale, SaleItem, StockMovement, Store
from retailpos.time_utils import utcnow


def _stock(db_session, product):
    db_session.expire_all()
    return db_session.get(Product, product.id).current_stock


def _live_item_total(db_session, sale_id):
    items = db_session.query(SaleItem).filter_by(sale_id=sale_id, is_deleted=False).all()
    return sum((i.subtotal for i in items), Decimal("0"))


class TestCreateSale:
    def test_create_pending_sale(self, engine, db_session, org, admin, store, widget):
        """Scenario: one item of qty 3 at 5.00 from stock 10, no payments."""
        result = engine.create_sale(org.id, admin.id, store.id, [{"product_id": widget.id, "quantity": 3}])

        assert result.status == 201
        sale = result.data
        assert sale["status"] == "PENDING"
        assert sale["total"] == "15.00"
        assert sale["subtotal"] == "15.00"
        assert sale["sale_number"] == "S1-000001"
        assert len(sale["items"]) == 1
        assert _stock(db_session, widget) == 7

        movement = (
            db_session.query(StockMovement)
            .filter_by(product_id=widget.id, type="OUT")
            .one()
        )
        assert movement.quantity == 3
        assert movement.previous_stock == 10
        assert movement.new_stock == 7
        assert movement.sale_id == sale["id"]
        assert movement.reference == "S1-000001"

    def test_create_with_full_payment_is_paid(self, engine, org, admin, store, widget, cash):
        result = engine.create_sale(
            org.id, admin.id, store.id,
            [{"product_id": widget.id, "quantity": 2}],
            payments=[{"payment_method_id": cash.id, "amount": "10.00"}],
        )

        assert result.status == 201
        assert result.data["status"] == "PAID"
        assert result.data["paid_date"] is not None
        assert result.data["balance"] == "0.00"

    def test_payment_sum_must_match_total(self, engine, db_session, org, admin, store, widget, cash):
        result = engine.create_sale(
            org.id, admin.id, store.id,
            [{"product_id": widget.id, "quantity": 2}],
            payments=[{"payment_method_id": cash.id, "amount": "9.99"}],
        )

        assert result.status == 400
        assert result.error_kind == ErrorKind.VALIDATION
        assert db_session.query(Sale).count() == 0
        assert _stock(db_session, widget) == 10

    def test_insufficient_stock_leaves_no_trace(self, engine, db_session, org, admin, store, gadget):
        """Scenario: selling 5 of a product with stock 3."""
        result = engine.create_sale(org.id, admin.id, store.id, [{"product_id": gadget.id, "quantity": 5}])

        assert result.status == 400
        assert result.error_kind == ErrorKind.INSUFFICIENT_STOCK
        assert "available: 3, requested: 5" in result.message
        assert result.details["available"] == 3
        assert db_session.query(Sale).count() == 0
        assert db_session.query(SaleItem).count() == 0
        assert db_session.query(StockMovement).filter_by(product_id=gadget.id).count() == 1
        assert _stock(db_session, gadget) == 3

    def test_duplicate_lines_are_checked_together(self, engine, db_session, org, admin, store, gadget):
        result = engine.create_sale(
            org.id, admin.id, store.id,
            [{"product_id": gadget.id, "quantity": 2}, {"product_id": gadget.id, "quantity": 2}],
        )
        assert result.error_kind == ErrorKind.INSUFFICIENT_STOCK
        assert result.details["requested"] == 4
        assert _stock(db_session, gadget) == 3

    def test_empty_items_rejected(self, engine, org, admin, store):
        result = engine.create_sale(org.id, admin.id, store.id, [])
        assert result.status == 400
        assert result.message == "A sale must have at least one item"

    def test_non_positive_quantity_rejected(self, engine, org, admin, store, widget):
        result = engine.create_sale(org.id, admin.id, store.id, [{"product_id": widget.id, "quantity": 0}])
        assert result.status == 400

    def test_store_of_other_org_not_found(self, engine, db_session, org, other_org, admin, widget):
        foreign = Store(org_id=other_org.id, name="Elsewhere")
        db_session.add(foreign)
        db_session.commit()

        result = engine.create_sale(org.id, admin.id, foreign.id, [{"product_id": widget.id, "quantity": 1}])
        assert result.status == 404

    def test_inactive_product_rejected(self, engine, db_session, org, admin, store, widget):
        db_session.get(Product, widget.id).is_active = False
        db_session.commit()

        result = engine.create_sale(org.id, admin.id, store.id, [{"product_id": widget.id, "quantity": 1}])
        assert result.status == 400
        assert "not active" in result.message

    def test_custom_unit_price_and_rounding(self, engine, org, admin, store, widget):
        result = engine.create_sale(
            org.id, admin.id, store.id,
            [{"product_id": widget.id, "quantity": 3, "unit_price": "3.335"}],
        )
        # 3.335 rounds half-up to 3.34; 3 x 3.34 = 10.02
        assert result.data["items"][0]["unit_price"] == "3.34"
        assert result.data["total"] == "10.02"

    def test_sale_numbers_are_sequential_per_store(self, engine, db_session, org, admin, store, widget):
        numbers = [
            engine.create_sale(org.id, admin.id, store.id, [{"product_id": widget.id, "quantity": 1}]).data["sale_number"]
            for _ in range(3)
        ]
        assert numbers == ["S1-000001", "S1-000002", "S1-000003"]
        db_session.expire_all()
        assert db_session.get(Store, store.id).last_sale_number == 3

    def test_store_without_prefix(self, engine, db_session, org, admin, widget):
        plain = Store(org_id=org.id, name="Kiosk")
        db_session.add(plain)
        db_session.commit()

        result = engine.create_sale(org.id, admin.id, plain.id, [{"product_id": widget.id, "quantity": 1}])
        assert result.data["sale_number"] == "000001"

    def test_failed_sale_does_not_consume_number(self, engine, org, admin, store, widget, gadget):
        engine.create_sale(org.id, admin.id, store.id, [{"product_id": gadget.id, "quantity": 50}])
        result = engine.create_sale(org.id, admin.id, store.id, [{"product_id": widget.id, "quantity": 1}])
        assert result.data["sale_number"] == "S1-000001"


class TestItemMutations:
    def test_add_item_updates_total_and_stock(self, engine, db_session, org, admin, pending_sale, gadget):
        result = engine.add_item(org.id, admin.id, pending_sale["id"], gadget.id, 2)

        assert result.status == 201
        assert result.data["item"]["subtotal"] == "25.00"
        assert result.data["sale"]["total"] == "40.00"
        assert _stock(db_session, gadget) == 1
        assert _live_item_total(db_session, pending_sale["id"]) == Decimal("40.00")

    def test_add_item_insufficient_stock(self, engine, db_session, org, admin, pending_sale, gadget):
        result = engine.add_item(org.id, admin.id, pending_sale["id"], gadget.id, 4)

        assert result.error_kind == ErrorKind.INSUFFICIENT_STOCK
        assert _stock(db_session, gadget) == 3
        assert db_session.query(SaleItem).filter_by(sale_id=pending_sale["id"]).count() == 1

    def test_update_item_increase_issues_out(self, engine, db_session, org, admin, pending_sale, widget):
        item_id = pending_sale["items"][0]["id"]
        result = engine.update_item(org.id, admin.id, item_id, quantity=5)

        assert result.status == 200
        assert result.data["item"]["quantity"] == 5
        assert result.data["sale"]["total"] == "25.00"
        assert _stock(db_session, widget) == 5

    def test_update_item_decrease_issues_in(self, engine, db_session, org, admin, pending_sale, widget):
        item_id = pending_sale["items"][0]["id"]
        result = engine.update_item(org.id, admin.id, item_id, quantity=1)

        assert result.data["sale"]["total"] == "5.00"
        assert _stock(db_session, widget) == 9
        last = db_session.query(StockMovement).filter_by(product_id=widget.id).order_by(StockMovement.id.desc()).first()
        assert last.type == "IN"
        assert last.quantity == 2

    def test_update_item_price_only(self, engine, db_session, org, admin, pending_sale, widget):
        item_id = pending_sale["items"][0]["id"]
        result = engine.update_item(org.id, admin.id, item_id, unit_price="4.00")

        assert result.data["sale"]["total"] == "12.00"
        assert _stock(db_session, widget) == 7

    def test_update_item_beyond_stock(self, engine, db_session, org, admin, pending_sale, widget):
        item_id = pending_sale["items"][0]["id"]
        result = engine.update_item(org.id, admin.id, item_id, quantity=20)

        assert result.error_kind == ErrorKind.INSUFFICIENT_STOCK
        assert result.details["available"] == 7
        assert result.details["requested"] == 17
        assert _stock(db_session, widget) == 7

    def test_remove_only_item_conflicts(self, engine, db_session, org, admin, pending_sale, widget):
        """Scenario: a sale must keep at least one item."""
        item_id = pending_sale["items"][0]["id"]
        result = engine.remove_item(org.id, admin.id, item_id)

        assert result.status == 409
        assert result.error_kind == ErrorKind.INVALID_STATE
        db_session.expire_all()
        assert db_session.get(SaleItem, item_id).is_deleted is False
        assert db_session.get(Sale, pending_sale["id"]).total == Decimal("15.00")
        assert _stock(db_session, widget) == 7

    def test_remove_item_restores_stock(self, engine, db_session, org, admin, pending_sale, gadget):
        added = engine.add_item(org.id, admin.id, pending_sale["id"], gadget.id, 1).data["item"]

        result = engine.remove_item(org.id, admin.id, added["id"])

        assert result.status == 200
        assert result.data["total"] == "15.00"
        assert [i["id"] for i in result.data["items"]] == [pending_sale["items"][0]["id"]]
        assert _stock(db_session, gadget) == 3
        assert db_session.get(SaleItem, added["id"]).is_deleted is True

    def test_removed_item_is_not_found_afterwards(self, engine, org, admin, pending_sale, gadget):
        added = engine.add_item(org.id, admin.id, pending_sale["id"], gadget.id, 1).data["item"]
        engine.remove_item(org.id, admin.id, added["id"])

        result = engine.update_item(org.id, admin.id, added["id"], quantity=2)
        assert result.status == 404


class TestSaleQueries:
    def test_get_sale_and_by_number(self, engine, org, store, pending_sale):
        by_id = engine.get_sale(org.id, pending_sale["id"])
        by_number = engine.get_sale_by_number(org.id, store.id, "S1-000001")

        assert by_id.status == 200
        assert by_number.data["id"] == pending_sale["id"]
        assert engine.get_sale_by_number(org.id, store.id, "S1-999999").status == 404

    def test_other_org_cannot_read_sale(self, engine, other_org, pending_sale):
        assert engine.get_sale(other_org.id, pending_sale["id"]).status == 404

    def test_list_sales_filters(self, engine, org, admin, store, widget, gadget, cash):
        engine.create_sale(org.id, admin.id, store.id, [{"product_id": widget.id, "quantity": 1}])
        engine.create_sale(
            org.id, admin.id, store.id,
            [{"product_id": gadget.id, "quantity": 1}],
            payments=[{"payment_method_id": cash.id, "amount": "12.50"}],
        )

        everything = engine.list_sales(org.id)
        assert everything.data["pagination"]["total"] == 2

        paid = engine.list_sales(org.id, status="PAID")
        assert [s["total"] for s in paid.data["items"]] == ["12.50"]

        big = engine.list_sales(org.id, min_total="10")
        assert big.data["count"] == 1

        found = engine.list_sales(org.id, search="000001")
        assert found.data["items"][0]["sale_number"] == "S1-000001"

        assert engine.list_sales(org.id, status="BOGUS").status == 400

    def test_pending_and_overdue(self, engine, org, admin, store, widget):
        yesterday = utcnow() - timedelta(days=1)
        tomorrow = utcnow() + timedelta(days=1)
        overdue = engine.create_sale(
            org.id, admin.id, store.id, [{"product_id": widget.id, "quantity": 1}], due_date=yesterday,
        ).data
        engine.create_sale(
            org.id, admin.id, store.id, [{"product_id": widget.id, "quantity": 1}], due_date=tomorrow,
        )

        assert len(engine.list_pending_sales(org.id).data) == 2
        overdue_ids = [s["id"] for s in engine.list_overdue_sales(org.id).data]
        assert overdue_ids == [overdue["id"]]

    def test_list_items(self, engine, org, pending_sale):
        result = engine.list_sale_items(org.id, pending_sale["id"])
        assert [i["quantity"] for i in result.data] == [3]


class TestSaleDetails:
    def test_update_details(self, engine, org, admin, pending_sale):
        result = engine.update_sale(
            org.id, admin.id, pending_sale["id"],
            {"notes": "Deliver Friday", "due_date": "2030-01-01T00:00:00Z"},
        )

        assert result.status == 200
        assert result.data["notes"] == "Deliver Friday"
        assert result.data["due_date"] == "2030-01-01T00:00:00Z"

    def test_status_cannot_be_set_directly(self, engine, org, admin, pending_sale):
        result = engine.update_sale(org.id, admin.id, pending_sale["id"], {"status": "PAID"})
        assert result.status == 400
        assert engine.get_sale(org.id, pending_sale["id"]).data["status"] == "PENDING"

    def test_only_cancelled_sale_can_be_deleted(self, engine, org, admin, pending_sale):
        assert engine.delete_sale(org.id, admin.id, pending_sale["id"]).status == 409

        engine.cancel_sale(org.id, admin.id, pending_sale["id"], "customer left")
        assert engine.delete_sale(org.id, admin.id, pending_sale["id"]).status == 200
        assert engine.get_sale(org.id, pending_sale["id"]).status == 404
