from decimal import Decimal

import pytest

from services import cart
from services.cart import BillingState, CustomerSnapshot, DiscountMode, normalize_discount
from services.errors import DiscountError, EmptyCartError, LoyaltyRedemptionError, StockLimitError
from services.pricing import ProductSnapshot

POINT_VALUE = Decimal("1")


@pytest.fixture
def soap():
    return ProductSnapshot(
        id=1, name="Soap", mrp=Decimal("125"), selling_price=Decimal("118"),
        gst_rate=Decimal("18"), stock_quantity=3,
    )


@pytest.fixture
def rice():
    return ProductSnapshot(
        id=2, name="Rice", mrp=Decimal("500"), selling_price=Decimal("500"),
        gst_rate=Decimal("0"), stock_quantity=10,
    )


@pytest.fixture
def member():
    return CustomerSnapshot(id=7, name="Ravi", phone="9876543210", loyalty_points=300)


def test_add_item_merges_quantity(soap):
    state = cart.add_item(BillingState(), soap)
    state = cart.add_item(state, soap)

    assert len(state.items) == 1
    assert state.find(soap.id).quantity == 2
    assert state.item_count == 2


def test_add_item_respects_stock(soap):
    state = BillingState()
    for _ in range(3):
        state = cart.add_item(state, soap)

    with pytest.raises(StockLimitError):
        cart.add_item(state, soap)
    assert state.find(soap.id).quantity == 3


def test_out_of_stock_product_rejected():
    product = ProductSnapshot(id=9, name="Butter", mrp=Decimal("58"), stock_quantity=0)
    with pytest.raises(StockLimitError):
        cart.add_item(BillingState(), product)


def test_set_quantity_zero_removes(soap, rice):
    state = cart.add_item(cart.add_item(BillingState(), soap), rice)
    state = cart.set_quantity(state, soap.id, 0)

    assert state.find(soap.id) is None
    assert state.find(rice.id) is not None


def test_set_quantity_above_stock(soap):
    state = cart.add_item(BillingState(), soap)
    with pytest.raises(StockLimitError):
        cart.set_quantity(state, soap.id, 4)


def test_increment_and_decrement(soap):
    state = cart.add_item(BillingState(), soap)
    state = cart.increment(state, soap.id)
    assert state.find(soap.id).quantity == 2

    state = cart.decrement(cart.decrement(state, soap.id), soap.id)
    assert state.is_empty


def test_percentage_and_amount_discount_agree():
    by_percent = normalize_discount(DiscountMode.PERCENTAGE, Decimal("20"), Decimal("500"))
    assert by_percent.amount == Decimal("100")
    assert by_percent.percentage == Decimal("20.00")

    by_amount = normalize_discount(DiscountMode.AMOUNT, Decimal("100"), Decimal("500"))
    assert by_amount.amount == Decimal("100")
    assert by_amount.percentage == Decimal("20.00")


@pytest.mark.parametrize("mode, value", [
    (DiscountMode.PERCENTAGE, "-1"),
    (DiscountMode.PERCENTAGE, "100.01"),
    (DiscountMode.AMOUNT, "500.01"),
    (DiscountMode.AMOUNT, "-5"),
])
def test_invalid_discounts(mode, value):
    with pytest.raises(DiscountError):
        normalize_discount(mode, Decimal(value), Decimal("500"))


def test_discount_needs_items():
    with pytest.raises(EmptyCartError):
        cart.apply_discount(BillingState(), DiscountMode.PERCENTAGE, Decimal("10"))


def test_percentage_discount_follows_cart(rice):
    state = cart.add_item(BillingState(), rice)
    state = cart.apply_discount(state, DiscountMode.PERCENTAGE, Decimal("10"))
    assert state.discount.amount == Decimal("50")

    state = cart.add_item(state, rice)
    assert state.discount.amount == Decimal("100")
    assert state.totals().rounded_total == Decimal("900")


def test_amount_discount_capped_when_cart_shrinks(rice, soap):
    state = cart.add_item(cart.add_item(BillingState(), rice), soap)
    state = cart.apply_discount(state, DiscountMode.AMOUNT, Decimal("400"))

    state = cart.remove_item(state, rice.id)
    assert state.discount.amount == Decimal("118")
    assert state.discount.percentage == Decimal("100.00")
    assert state.totals().rounded_total == Decimal("0")


def test_emptying_cart_resets_discounts(rice, member):
    state = cart.select_customer(cart.add_item(BillingState(), rice), member)
    state = cart.apply_loyalty(state, 50, POINT_VALUE)
    state = cart.apply_discount(state, DiscountMode.PERCENTAGE, Decimal("5"))

    state = cart.remove_item(state, rice.id)
    assert state.loyalty.amount == Decimal("0")
    assert state.discount.amount == Decimal("0")
    assert state.customer == member


def test_loyalty_requires_customer(rice):
    state = cart.add_item(BillingState(), rice)
    with pytest.raises(LoyaltyRedemptionError):
        cart.apply_loyalty(state, 10, POINT_VALUE)


def test_loyalty_limited_by_balance_and_bill(soap, member):
    state = cart.select_customer(cart.add_item(BillingState(), soap), member)

    with pytest.raises(LoyaltyRedemptionError):
        cart.apply_loyalty(state, 301, POINT_VALUE)
    with pytest.raises(LoyaltyRedemptionError):
        cart.apply_loyalty(state, 119, POINT_VALUE)

    state = cart.apply_loyalty(state, 100, POINT_VALUE)
    assert state.loyalty.amount == Decimal("100")
    assert state.totals().rounded_total == Decimal("18")


def test_loyalty_shrinks_with_cart(soap, rice, member):
    state = cart.add_item(cart.add_item(BillingState(), soap), rice)
    state = cart.select_customer(state, member)
    state = cart.apply_loyalty(state, 300, POINT_VALUE)

    state = cart.remove_item(state, rice.id)
    assert state.loyalty.amount == Decimal("118")
    assert state.loyalty.points == 118
    assert state.totals().after_loyalty == Decimal("0")


def test_discount_base_is_after_loyalty(rice, member):
    state = cart.select_customer(cart.add_item(BillingState(), rice), member)
    state = cart.apply_loyalty(state, 100, POINT_VALUE)

    state = cart.apply_discount(state, DiscountMode.PERCENTAGE, Decimal("10"))
    assert state.discount.amount == Decimal("40")
    with pytest.raises(DiscountError):
        cart.apply_discount(state, DiscountMode.AMOUNT, Decimal("401"))


def test_changing_customer_drops_redemption(rice, member):
    state = cart.select_customer(cart.add_item(BillingState(), rice), member)
    state = cart.apply_loyalty(state, 20, POINT_VALUE)

    other = CustomerSnapshot(id=8, name="Meena", loyalty_points=5)
    state = cart.select_customer(state, other)
    assert state.loyalty.points == 0
    assert state.customer.id == 8


def test_clear_cart(rice, member):
    state = cart.select_customer(cart.add_item(BillingState(), rice), member)
    assert cart.clear_cart(state) == BillingState()
