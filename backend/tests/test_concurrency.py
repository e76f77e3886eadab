"""
Concurrent writers against one product or one sale.

Uses a temporary SQLite file (the in-memory database is a single shared
connection) and one app context per writer, so each has its own session and
connection.
"""

import threading

import pytest

from retailpos import create_app
from retailpos.extensions import db
from retailpos.models import Organization, PaymentMethod, Product, SaleItem, SalePayment, Store, User
from retailpos.models.auth import ROLE_ADMIN
from retailpos.services import concurrency
from retailpos.services.engine import SaleEngine
from retailpos.services.payment_service import PaymentReconciler
from retailpos.services.sales_service import SaleManager


@pytest.fixture
def file_app(tmp_path):
    db_path = tmp_path / "concurrency.sqlite3"
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{db_path}",
        'SQLALCHEMY_ENGINE_OPTIONS': {"connect_args": {"check_same_thread": False}},
        'TX_RETRY_BACKOFF_SECONDS': 0,
    })
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.drop_all()
        db.engine.dispose()


def _seed(app) -> dict:
    with app.app_context():
        org = Organization(name="Acme Retail", code="ACME")
        db.session.add(org)
        db.session.commit()

        store = Store(org_id=org.id, name="Main Street", sale_number_prefix="S1")
        admin = User(org_id=org.id, username="admin", role=ROLE_ADMIN)
        cash = PaymentMethod(org_id=org.id, name="Cash")
        db.session.add_all([store, admin, cash])
        db.session.commit()

        engine = SaleEngine()
        seed = {"org_id": org.id, "admin_id": admin.id, "store_id": store.id, "cash_id": cash.id}
        seed["contested_id"] = engine.create_product(
            org.id, admin.id, name="Contested", sale_price="2.00", opening_stock=5,
        ).data["id"]
        seed["widget_id"] = engine.create_product(
            org.id, admin.id, name="Widget", sale_price="5.00", opening_stock=10,
        ).data["id"]
        seed["filler_id"] = engine.create_product(
            org.id, admin.id, name="Filler", sale_price="1.00", opening_stock=10,
        ).data["id"]
        return seed


def _seed_open_sale(app) -> dict:
    """Widget x3 (stock 10 -> 7) and Filler x1, with a 5.00 cash payment."""
    seed = _seed(app)
    with app.app_context():
        engine = SaleEngine()
        sale = engine.create_sale(seed["org_id"], seed["admin_id"], seed["store_id"], [
            {"product_id": seed["widget_id"], "quantity": 3},
            {"product_id": seed["filler_id"], "quantity": 1},
        ]).data
        payment = engine.add_payment(seed["org_id"], seed["admin_id"], sale["id"], seed["cash_id"], "5.00").data
        seed["sale_id"] = sale["id"]
        seed["item_id"] = sale["items"][0]["id"]
        seed["payment_id"] = payment["payment"]["id"]
    return seed


def _stock(app, product_id):
    with app.app_context():
        return db.session.get(Product, product_id).current_stock


def test_two_add_items_on_scarce_stock(file_app):
    """stock=5, two concurrent requests for 3: exactly one wins, stock ends at 2."""
    seed = _seed(file_app)
    org_id, admin_id, product_id = seed["org_id"], seed["admin_id"], seed["contested_id"]
    with file_app.app_context():
        engine = SaleEngine()
        sale_ids = [
            engine.create_sale(org_id, admin_id, seed["store_id"], [{"product_id": seed["filler_id"], "quantity": 1}]).data["id"]
            for _ in range(2)
        ]

    barrier = threading.Barrier(len(sale_ids))
    results = {}

    def worker(sale_id):
        with file_app.app_context():
            barrier.wait()
            results[sale_id] = SaleEngine().add_item(org_id, admin_id, sale_id, product_id, 3)

    threads = [threading.Thread(target=worker, args=(sid,)) for sid in sale_ids]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    statuses = sorted(r.status for r in results.values())
    assert statuses == [201, 400]
    loser = next(r for r in results.values() if r.status == 400)
    assert loser.error_kind.value == "INSUFFICIENT_STOCK"
    assert loser.details == {"product_id": product_id, "available": 2, "requested": 3}

    assert _stock(file_app, product_id) == 2
    with file_app.app_context():
        assert SaleEngine().verify_stock(org_id, product_id).data["consistent"] is True


class TestWriteBetweenReadAndLock:
    """
    Another writer commits after the item or payment was first read but
    before the sale lock is taken.

    The database-wide BEGIN IMMEDIATE is switched off so SQLite behaves like a
    row-locking store, where only the sale row serializes writers.
    """

    @pytest.fixture
    def interleave(self, file_app, monkeypatch):
        monkeypatch.setattr(concurrency, "_begin", lambda session, **kwargs: None)

        def _install(other_write, owner=SaleManager):
            real = owner._locked_sale
            fired = []

            def locked_sale(service, sale_id, organization_id):
                if not fired:
                    fired.append(True)
                    with file_app.app_context():
                        other_write(SaleEngine())
                return real(service, sale_id, organization_id)

            monkeypatch.setattr(owner, "_locked_sale", locked_sale)

        return _install

    def test_item_removed_twice_restores_once(self, file_app, interleave):
        seed = _seed_open_sale(file_app)
        assert _stock(file_app, seed["widget_id"]) == 7

        interleave(lambda engine: engine.remove_item(seed["org_id"], seed["admin_id"], seed["item_id"]))
        with file_app.app_context():
            result = SaleEngine().remove_item(seed["org_id"], seed["admin_id"], seed["item_id"])

        assert result.status == 404
        assert _stock(file_app, seed["widget_id"]) == 10
        with file_app.app_context():
            assert SaleEngine().verify_stock(seed["org_id"], seed["widget_id"]).data["consistent"] is True

    def test_quantity_delta_uses_committed_quantity(self, file_app, interleave):
        seed = _seed_open_sale(file_app)

        interleave(lambda engine: engine.update_item(seed["org_id"], seed["admin_id"], seed["item_id"], quantity=5))
        with file_app.app_context():
            result = SaleEngine().update_item(seed["org_id"], seed["admin_id"], seed["item_id"], quantity=4)

        assert result.status == 200
        assert result.data["item"]["quantity"] == 4
        # 10 - 3, then -2 more for quantity 5, then +1 back for quantity 4
        assert _stock(file_app, seed["widget_id"]) == 6
        with file_app.app_context():
            assert db.session.get(SaleItem, seed["item_id"]).quantity == 4
            assert SaleEngine().verify_stock(seed["org_id"], seed["widget_id"]).data["consistent"] is True

    def test_payment_removed_twice_is_not_found(self, file_app, interleave):
        seed = _seed_open_sale(file_app)

        interleave(lambda engine: engine.remove_payment(seed["org_id"], seed["admin_id"], seed["payment_id"]), PaymentReconciler)
        with file_app.app_context():
            result = SaleEngine().remove_payment(seed["org_id"], seed["admin_id"], seed["payment_id"])

        assert result.status == 404
        with file_app.app_context():
            assert db.session.get(SalePayment, seed["payment_id"]).is_deleted is True
