"""Test payment arithmetic and the payment draft."""
import pytest

from docsmile.billing import (
    PaymentDraft,
    applied_line_total,
    calculate_change,
    compute_totals,
    sum_applied_totals,
    validate_split,
)
from docsmile.models import DentalService, PaymentCreate
from docsmile.taxonomy import DiscountType, PaymentMethod


@pytest.fixture
def cleaning():
    return DentalService(id="s2", name="Limpieza dental", category="preventivo", price=300, duration=45)


@pytest.fixture
def consultation():
    return DentalService(id="s1", name="Consulta general", category="preventivo", price=500, duration=60)


class TestComputeTotals:

    def test_percentage_discount(self):
        totals = compute_totals([{"unit_price": 300, "quantity": 1}], 10, "percentage")
        assert totals.subtotal == 300
        assert totals.discount_amount == 30
        assert totals.total == 270

    def test_fixed_discount_clamped_at_zero(self):
        totals = compute_totals([{"unit_price": 100, "quantity": 1}], 150, DiscountType.FIXED)
        assert totals.total == 0

    def test_quantities_multiply(self):
        totals = compute_totals([
            {"unit_price": 300, "quantity": 2},
            {"unitPrice": 500, "quantity": 1},
        ])
        assert totals.subtotal == 1100
        assert totals.total == 1100

    def test_no_items(self):
        assert compute_totals([], 10).total == 0

    def test_unknown_discount_type_rejected(self):
        with pytest.raises(ValueError):
            compute_totals([], 10, "bogus")


class TestSplit:

    def test_split_must_add_up(self):
        assert validate_split([{"amount": 150}, {"amount": 150}], 300) is True
        assert validate_split([{"amount": 100}], 300) is False

    def test_tolerance_of_one_cent(self):
        assert validate_split([{"amount": 299.99}], 300) is True
        assert validate_split([{"amount": 299.98}], 300) is False

    def test_change(self):
        assert calculate_change(100, 70) == 30
        assert calculate_change(50, 70) == 0


def test_applied_line_total_with_line_discount():
    assert applied_line_total(300, 2, 10) == 540
    assert applied_line_total(300, 1) == 300


def test_sum_applied_totals_reads_either_spelling():
    assert sum_applied_totals([{"totalAmount": 100}, {"total_amount": 50}]) == 150


class TestPaymentDraft:

    def test_totals_follow_items(self, cleaning, consultation):
        draft = PaymentDraft()
        draft.add_service(cleaning, quantity=2)
        draft.add_service(consultation)

        assert draft.subtotal == 1100
        assert draft.total == 1100
        assert len(draft.methods) == 1
        assert draft.methods[0].amount == 1100

    def test_discount_recomputes_total(self, cleaning):
        draft = PaymentDraft()
        draft.add_service(cleaning)
        draft.set_discount(10)

        assert draft.total == 270
        assert draft.methods[0].amount == 270

    def test_quantity_at_least_one(self, cleaning):
        draft = PaymentDraft()
        draft.add_service(cleaning)
        draft.set_quantity(0, 0)

        assert draft.items[0].quantity == 1
        assert draft.total == 300

    def test_change_after_split_collapses_to_first_method(self, cleaning):
        draft = PaymentDraft(method=PaymentMethod.CREDIT_CARD)
        draft.add_service(cleaning)
        draft.split([
            {"method": "tarjeta_credito", "amount": 200},
            {"method": "efectivo", "amount": 100},
        ])
        assert draft.is_split_valid() is True

        draft.set_quantity(0, 2)

        assert len(draft.methods) == 1
        assert draft.methods[0].method == PaymentMethod.CREDIT_CARD
        assert draft.methods[0].amount == 600

    def test_bad_split_is_invalid(self, cleaning):
        draft = PaymentDraft()
        draft.add_service(cleaning)
        draft.split([{"method": "efectivo", "amount": 100}])
        assert draft.is_split_valid() is False

    def test_remove_item(self, cleaning, consultation):
        draft = PaymentDraft()
        draft.add_service(cleaning)
        draft.add_service(consultation)
        draft.remove_item(0)
        assert draft.total == 500

    def test_to_request(self, cleaning):
        draft = PaymentDraft()
        draft.add_service(cleaning)
        request = draft.to_request("p1", "a2", notes="Pago en caja")

        assert isinstance(request, PaymentCreate)
        assert request.total == 300
        wire = request.to_wire()
        assert wire["paymentMethods"] == [{"method": "efectivo", "amount": 300.0}]
        assert wire["services"][0]["unitPrice"] == 300
        assert wire["discountType"] == "percentage"
