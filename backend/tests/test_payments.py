"""Payment reconciliation: the payment bound and PAID <-> PENDING transitions."""

from decimal import Decimal

import pytest

from retailpos.errors import ErrorKind
from retailpos.models import PaymentMethod, Product, Sale, SalePayment
from retailpos.validation import within_tolerance


def _sale(db_session, sale_id):
    db_session.expire_all()
    return db_session.get(Sale, sale_id)


class TestAddPayment:
    def test_full_payment_marks_paid(self, engine, db_session, org, admin, pending_sale, cash):
        """Scenario: paying 15.00 on the 15.00 sale."""
        result = engine.add_payment(org.id, admin.id, pending_sale["id"], cash.id, "15.00")

        assert result.status == 201
        assert result.data["sale"]["status"] == "PAID"
        sale = _sale(db_session, pending_sale["id"])
        assert sale.status == "PAID"
        assert sale.paid_date is not None

    def test_partial_payments_accumulate(self, engine, org, admin, pending_sale, cash):
        first = engine.add_payment(org.id, admin.id, pending_sale["id"], cash.id, 10)
        assert first.data["sale"]["status"] == "PENDING"
        assert first.data["sale"]["balance"] == "5.00"

        second = engine.add_payment(org.id, admin.id, pending_sale["id"], cash.id, 5.0)
        assert second.data["sale"]["status"] == "PAID"
        assert second.data["sale"]["paid_amount"] == "15.00"

    def test_overpayment_rejected(self, engine, db_session, org, admin, pending_sale, cash):
        engine.add_payment(org.id, admin.id, pending_sale["id"], cash.id, "10.00")
        result = engine.add_payment(org.id, admin.id, pending_sale["id"], cash.id, "5.01")

        assert result.status == 400
        assert result.error_kind == ErrorKind.VALIDATION
        assert result.details["remaining"] == "5.00"
        assert db_session.query(SalePayment).count() == 1

    @pytest.mark.parametrize("amount", [0, "-1", "abc", None])
    def test_invalid_amounts(self, engine, org, admin, pending_sale, cash, amount):
        result = engine.add_payment(org.id, admin.id, pending_sale["id"], cash.id, amount)
        assert result.status == 400

    def test_unknown_or_inactive_method(self, engine, db_session, org, admin, pending_sale):
        inactive = PaymentMethod(org_id=org.id, name="Old card", type="CARD", is_active=False)
        db_session.add(inactive)
        db_session.commit()

        assert engine.add_payment(org.id, admin.id, pending_sale["id"], inactive.id, "1.00").status == 400
        assert engine.add_payment(org.id, admin.id, pending_sale["id"], 9999, "1.00").status == 400

    def test_missing_sale(self, engine, org, admin, cash):
        assert engine.add_payment(org.id, admin.id, 424242, cash.id, "1.00").status == 404


class TestRemovePayment:
    def test_remove_reverts_to_pending(self, engine, db_session, org, admin, pending_sale, cash):
        payment = engine.add_payment(org.id, admin.id, pending_sale["id"], cash.id, "15.00").data["payment"]

        result = engine.remove_payment(org.id, admin.id, payment["id"])

        assert result.status == 200
        assert result.data["status"] == "PENDING"
        assert result.data["paid_date"] is None
        assert result.data["payments"] == []
        assert db_session.get(SalePayment, payment["id"]).is_deleted is True

    def test_removed_payment_not_found_again(self, engine, org, admin, pending_sale, cash):
        payment = engine.add_payment(org.id, admin.id, pending_sale["id"], cash.id, "5.00").data["payment"]
        engine.remove_payment(org.id, admin.id, payment["id"])

        assert engine.remove_payment(org.id, admin.id, payment["id"]).status == 404


class TestUpdatePayment:
    def test_update_amount_reconciles(self, engine, org, admin, pending_sale, cash):
        payment = engine.add_payment(org.id, admin.id, pending_sale["id"], cash.id, "5.00").data["payment"]

        result = engine.update_payment(org.id, admin.id, payment["id"], amount="15.00", reference="R-1")

        assert result.status == 200
        assert result.data["payment"]["reference"] == "R-1"
        assert result.data["sale"]["status"] == "PAID"

    def test_update_amount_respects_bound(self, engine, org, admin, pending_sale, cash):
        engine.add_payment(org.id, admin.id, pending_sale["id"], cash.id, "10.00")
        payment = engine.add_payment(org.id, admin.id, pending_sale["id"], cash.id, "1.00").data["payment"]

        result = engine.update_payment(org.id, admin.id, payment["id"], amount="6.00")
        assert result.status == 400


class TestStatusFollowsItems:
    def test_adding_item_to_paid_sale_reopens_it(self, engine, org, admin, pending_sale, cash, gadget):
        engine.add_payment(org.id, admin.id, pending_sale["id"], cash.id, "15.00")

        result = engine.add_item(org.id, admin.id, pending_sale["id"], gadget.id, 1)

        assert result.data["sale"]["status"] == "PENDING"
        assert result.data["sale"]["paid_date"] is None
        assert result.data["sale"]["balance"] == "12.50"

    def test_shrinking_below_paid_amount_rejected(self, engine, db_session, org, admin, pending_sale, cash, widget):
        engine.add_payment(org.id, admin.id, pending_sale["id"], cash.id, "15.00")
        item_id = pending_sale["items"][0]["id"]

        result = engine.update_item(org.id, admin.id, item_id, quantity=1)

        assert result.status == 400
        sale = _sale(db_session, pending_sale["id"])
        assert sale.total == Decimal("15.00")
        assert sale.status == "PAID"
        assert db_session.get(Product, widget.id).current_stock == 7


class TestPaymentQueries:
    def test_list_and_summary(self, engine, org, admin, pending_sale, cash):
        engine.add_payment(org.id, admin.id, pending_sale["id"], cash.id, "4.00", reference="T-1")

        listed = engine.list_payments(org.id, pending_sale["id"])
        assert [p["amount"] for p in listed.data] == ["4.00"]

        summary = engine.payment_summary(org.id, pending_sale["id"]).data
        assert summary == {
            "sale_id": pending_sale["id"],
            "sale_number": "S1-000001",
            "total": "15.00",
            "paid": "4.00",
            "balance": "11.00",
            "status": "PENDING",
            "payment_count": 1,
        }


def test_tolerance_is_strict_at_one_cent():
    assert within_tolerance(Decimal("15.00"), Decimal("15.00"), Decimal("0.01"))
    assert not within_tolerance(Decimal("15.01"), Decimal("15.00"), Decimal("0.01"))
