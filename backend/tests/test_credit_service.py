"""Credit payment service tests."""

from datetime import datetime

import pytest
from sqlalchemy import select

from stockpos.errors import CustomerNotFound, InvalidInputError
from stockpos.extensions import db
from stockpos.models import CreditPayment, Customer
from stockpos.services import credit_service

from conftest import make_customer


def balance_of(customer_id: int) -> int:
    return db.session.execute(
        select(Customer.outstanding_balance_cents).where(Customer.id == customer_id)
    ).scalar_one()


class TestRecordPayment:

    def test_partial_payment_reduces_balance(self, customer, cashier):
        payment = credit_service.record_payment(
            customer_id=customer.id, amount_cents=4_000, note="Cash", recorded_by_user_id=cashier.id,
        )
        assert payment.balance_before_cents == 10_000
        assert payment.balance_after_cents == 6_000
        assert payment.recorded_by_user_id == cashier.id
        assert balance_of(customer.id) == 6_000

    def test_overpayment_floors_at_zero(self, db_session):
        c = make_customer(db_session, "Overpayer", balance_cents=100)
        payment = credit_service.record_payment(customer_id=c.id, amount_cents=150)

        assert payment.amount_cents == 150
        assert payment.balance_after_cents == 0
        assert balance_of(c.id) == 0

    def test_exact_payment_clears_balance(self, customer):
        credit_service.record_payment(customer_id=customer.id, amount_cents=10_000)
        assert balance_of(customer.id) == 0

    @pytest.mark.parametrize("amount", [0, -5])
    def test_non_positive_amount_rejected(self, db_session, customer, amount):
        with pytest.raises(InvalidInputError):
            credit_service.record_payment(customer_id=customer.id, amount_cents=amount)
        assert balance_of(customer.id) == 10_000
        assert db_session.query(CreditPayment).count() == 0

    def test_missing_customer(self):
        with pytest.raises(CustomerNotFound):
            credit_service.record_payment(customer_id=4242, amount_cents=100)

    def test_inactive_customer(self, db_session):
        c = make_customer(db_session, "Closed", balance_cents=500, is_active=False)
        with pytest.raises(CustomerNotFound):
            credit_service.record_payment(customer_id=c.id, amount_cents=100)
        assert balance_of(c.id) == 500

    def test_paid_at_string(self, customer):
        payment = credit_service.record_payment(
            customer_id=customer.id, amount_cents=1, paid_at="2026-03-01",
        )
        assert payment.paid_at == datetime(2026, 3, 1)

    def test_malformed_paid_at(self, customer):
        with pytest.raises(InvalidInputError):
            credit_service.record_payment(customer_id=customer.id, amount_cents=1, paid_at="yesterday")


class TestPaymentReads:

    def test_list_ordered_by_paid_at_desc(self, customer):
        credit_service.record_payment(customer_id=customer.id, amount_cents=100, paid_at="2026-01-01")
        credit_service.record_payment(customer_id=customer.id, amount_cents=200, paid_at="2026-03-01")
        credit_service.record_payment(customer_id=customer.id, amount_cents=300, paid_at="2026-02-01")

        result = credit_service.list_payments(customer.id)
        assert result["total"] == 3
        assert [p.amount_cents for p in result["items"]] == [200, 300, 100]

    def test_same_paid_at_newest_record_first(self, customer):
        first = credit_service.record_payment(customer_id=customer.id, amount_cents=100, paid_at="2026-01-01")
        second = credit_service.record_payment(customer_id=customer.id, amount_cents=200, paid_at="2026-01-01")

        items = credit_service.list_payments(customer.id)["items"]
        assert [p.id for p in items] == [second.id, first.id]

    def test_history_readable_after_deactivation(self, db_session, customer):
        payment = credit_service.record_payment(customer_id=customer.id, amount_cents=100)
        customer.is_active = False
        db_session.commit()

        result = credit_service.list_payments(customer.id)
        assert result["total"] == 1
        assert result["items"][0].id == payment.id

    def test_list_for_missing_customer(self, db_session):
        with pytest.raises(CustomerNotFound):
            credit_service.list_payments(404)

    def test_credit_summary_active_only(self, db_session):
        make_customer(db_session, "A", balance_cents=1_000)
        make_customer(db_session, "B", balance_cents=0)
        make_customer(db_session, "C", balance_cents=9_999, is_active=False)

        summary = credit_service.credit_summary()
        assert summary == {
            "total_outstanding_cents": 1_000,
            "active_customers": 2,
            "customers_with_balance": 1,
        }
