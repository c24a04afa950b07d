"""
Billing screen state and the actions that change it.

BillingState is immutable; every action takes a state and returns a new one,
or raises a BillingValidationError and leaves the caller's state as it was.
Cart changes re-derive both discounts from the new bill so a discount applied
earlier can never exceed what is left to pay.
"""
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict

from services.errors import (
    BillingValidationError,
    DiscountError,
    EmptyCartError,
    LoyaltyRedemptionError,
    StockLimitError,
)
from services.pricing import (
    HUNDRED,
    MONEY_PLACES,
    PERCENT_PLACES,
    ZERO,
    BillTotals,
    CartItem,
    PaymentMethod,
    ProductSnapshot,
    calculate_bill,
    gross_total,
)


class DiscountMode(str, Enum):
    PERCENTAGE = "percentage"
    AMOUNT = "amount"


class ManualDiscount(BaseModel):
    model_config = ConfigDict(frozen=True)

    mode: DiscountMode = DiscountMode.PERCENTAGE
    amount: Decimal = ZERO
    percentage: Decimal = ZERO


class LoyaltyRedemption(BaseModel):
    model_config = ConfigDict(frozen=True)

    points: int = 0
    amount: Decimal = ZERO
    point_value: Decimal = ZERO


class CustomerSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    phone: Optional[str] = None
    email: Optional[str] = None
    loyalty_points: int = 0
    total_spent: Decimal = ZERO

    @classmethod
    def from_customer(cls, customer) -> "CustomerSnapshot":
        return cls.model_validate(customer, from_attributes=True)


class BillingState(BaseModel):
    model_config = ConfigDict(frozen=True)

    items: Tuple[CartItem, ...] = ()
    customer: Optional[CustomerSnapshot] = None
    loyalty: LoyaltyRedemption = LoyaltyRedemption()
    discount: ManualDiscount = ManualDiscount()

    @property
    def is_empty(self) -> bool:
        return not self.items

    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self.items)

    def find(self, product_id: int) -> Optional[CartItem]:
        for item in self.items:
            if item.product.id == product_id:
                return item
        return None

    def totals(self, payment_method: Optional[PaymentMethod] = None, cash_tendered: Optional[Decimal] = None) -> BillTotals:
        return calculate_bill(self.items, self.loyalty.amount, self.discount.amount, payment_method, cash_tendered)


def normalize_discount(mode: DiscountMode, value: Decimal, base: Decimal) -> ManualDiscount:
    """Turn a percentage or flat amount into an (amount, percentage) pair against `base`."""
    if value < ZERO:
        raise DiscountError("Discount cannot be negative")

    if mode == DiscountMode.PERCENTAGE:
        if value > HUNDRED:
            raise DiscountError("Discount percentage cannot exceed 100%")
        amount = (base * value / HUNDRED).quantize(MONEY_PLACES, rounding=ROUND_HALF_UP)
        return ManualDiscount(mode=mode, amount=amount, percentage=value)

    if value > base:
        raise DiscountError("Discount cannot exceed the bill total")
    percentage = ZERO
    if base > ZERO:
        percentage = (value * HUNDRED / base).quantize(PERCENT_PLACES, rounding=ROUND_HALF_UP)
    return ManualDiscount(mode=mode, amount=value, percentage=percentage)


def _rebalance(state: BillingState) -> BillingState:
    if state.is_empty:
        return state.model_copy(update={"loyalty": LoyaltyRedemption(), "discount": ManualDiscount()})

    gross = gross_total(state.items)

    loyalty = state.loyalty
    if loyalty.amount > gross:
        points = int(gross // loyalty.point_value) if loyalty.point_value > ZERO else 0
        loyalty = LoyaltyRedemption(
            points=points,
            amount=(loyalty.point_value * points).quantize(MONEY_PLACES),
            point_value=loyalty.point_value,
        )

    base = gross - loyalty.amount
    discount = state.discount
    if discount.mode == DiscountMode.PERCENTAGE:
        discount = normalize_discount(discount.mode, discount.percentage, base)
    else:
        discount = normalize_discount(discount.mode, min(discount.amount, base), base)

    return state.model_copy(update={"loyalty": loyalty, "discount": discount})


def _with_quantity(state: BillingState, product: ProductSnapshot, quantity: int) -> BillingState:
    if quantity > product.stock_quantity:
        raise StockLimitError(f"Only {product.stock_quantity} of {product.name} in stock")

    new_item = CartItem(product=product, quantity=quantity)
    if state.find(product.id):
        items = tuple(new_item if item.product.id == product.id else item for item in state.items)
    else:
        items = state.items + (new_item,)
    return _rebalance(state.model_copy(update={"items": items}))


def add_item(state: BillingState, product: ProductSnapshot) -> BillingState:
    existing = state.find(product.id)
    quantity = existing.quantity + 1 if existing else 1
    if product.stock_quantity < 1:
        raise StockLimitError(f"{product.name} is out of stock")
    return _with_quantity(state, product, quantity)


def remove_item(state: BillingState, product_id: int) -> BillingState:
    items = tuple(item for item in state.items if item.product.id != product_id)
    return _rebalance(state.model_copy(update={"items": items}))


def set_quantity(state: BillingState, product_id: int, quantity: int) -> BillingState:
    item = state.find(product_id)
    if item is None:
        raise BillingValidationError("Product is not in the cart")
    if quantity <= 0:
        return remove_item(state, product_id)
    return _with_quantity(state, item.product, quantity)


def increment(state: BillingState, product_id: int) -> BillingState:
    item = state.find(product_id)
    if item is None:
        raise BillingValidationError("Product is not in the cart")
    return set_quantity(state, product_id, item.quantity + 1)


def decrement(state: BillingState, product_id: int) -> BillingState:
    item = state.find(product_id)
    if item is None:
        raise BillingValidationError("Product is not in the cart")
    return set_quantity(state, product_id, item.quantity - 1)


def select_customer(state: BillingState, customer: Optional[CustomerSnapshot]) -> BillingState:
    # Points being redeemed belong to the previous customer
    return state.model_copy(update={"customer": customer, "loyalty": LoyaltyRedemption()})


def apply_loyalty(state: BillingState, points: int, point_value: Decimal) -> BillingState:
    if state.customer is None:
        raise LoyaltyRedemptionError("Select a customer before redeeming points")
    if points < 0:
        raise LoyaltyRedemptionError("Points to redeem cannot be negative")
    if points > state.customer.loyalty_points:
        raise LoyaltyRedemptionError(f"Customer only has {state.customer.loyalty_points} points")
    if points == 0:
        return clear_loyalty(state)
    if state.is_empty:
        raise EmptyCartError("Add items before redeeming points")

    amount = (point_value * points).quantize(MONEY_PLACES)
    if amount > gross_total(state.items):
        raise LoyaltyRedemptionError("Points redeemed cannot exceed the bill total")

    loyalty = LoyaltyRedemption(points=points, amount=amount, point_value=point_value)
    return _rebalance(state.model_copy(update={"loyalty": loyalty}))


def clear_loyalty(state: BillingState) -> BillingState:
    return _rebalance(state.model_copy(update={"loyalty": LoyaltyRedemption()}))


def apply_discount(state: BillingState, mode: DiscountMode, value: Decimal) -> BillingState:
    if state.is_empty:
        raise EmptyCartError("Add items before applying a discount")
    # Validated against the current bill every time, never a stale base
    base = gross_total(state.items) - state.loyalty.amount
    return state.model_copy(update={"discount": normalize_discount(mode, value, base)})


def clear_discount(state: BillingState) -> BillingState:
    return state.model_copy(update={"discount": ManualDiscount()})


def clear_cart(state: BillingState) -> BillingState:
    return BillingState()
