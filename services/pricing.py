"""
Bill arithmetic for the POS screen.

Everything here is pure: the same cart and discounts always produce the same
breakdown, and nothing touches the database. Amounts are Decimals; per-line
base and tax are quantized to MONEY_PLACES so that every later sum is exact
and the rounding adjustment always reconciles the bill to the paise.
"""
from decimal import Decimal, ROUND_FLOOR, ROUND_HALF_UP
from enum import Enum
from typing import Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field

ZERO = Decimal("0")
HUNDRED = Decimal("100")
MONEY_PLACES = Decimal("0.0001")
PERCENT_PLACES = Decimal("0.01")
HALF_UNIT = Decimal("0.5")

# One loyalty point per 100 currency units paid
POINTS_EARN_STEP = Decimal("100")


class PaymentMethod(str, Enum):
    CASH = "cash"
    CARD = "card"
    UPI = "upi"


class ProductSnapshot(BaseModel):
    """Product as it was when it went into the cart."""
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    brand: str = "Generic"
    hsn_code: Optional[str] = None
    barcode: Optional[str] = None
    mrp: Decimal = ZERO
    cost_price: Decimal = ZERO
    selling_price: Optional[Decimal] = None
    gst_rate: Decimal = ZERO
    price_includes_gst: bool = True
    stock_quantity: int = 0

    @classmethod
    def from_product(cls, product) -> "ProductSnapshot":
        return cls.model_validate(product, from_attributes=True)

    @property
    def unit_price(self) -> Decimal:
        # selling_price defaults to mrp when unset
        return self.selling_price if self.selling_price else self.mrp


class CartItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    product: ProductSnapshot
    quantity: int = Field(gt=0)

    @property
    def total(self) -> Decimal:
        return self.product.unit_price * self.quantity


class BillTotals(BaseModel):
    model_config = ConfigDict(frozen=True)

    subtotal: Decimal = ZERO
    tax_total: Decimal = ZERO
    gross_total: Decimal = ZERO
    loyalty_discount: Decimal = ZERO
    after_loyalty: Decimal = ZERO
    manual_discount: Decimal = ZERO
    after_discount: Decimal = ZERO
    rounded_total: Decimal = ZERO
    rounding_adjustment: Decimal = ZERO
    change_due: Decimal = ZERO
    loyalty_points_earned: int = 0
    mrp_savings: Decimal = ZERO
    total_savings: Decimal = ZERO


def split_line_price(unit_price: Decimal, gst_rate: Decimal, price_includes_gst: bool) -> Tuple[Decimal, Decimal]:
    """Return (base, tax) for one unit. base + tax is the unit's gross price."""
    if price_includes_gst:
        base = (unit_price / (1 + gst_rate / HUNDRED)).quantize(MONEY_PLACES, rounding=ROUND_HALF_UP)
        return base, unit_price - base
    tax = (unit_price * gst_rate / HUNDRED).quantize(MONEY_PLACES, rounding=ROUND_HALF_UP)
    return unit_price, tax


def line_mrp_savings(mrp: Optional[Decimal], selling_price: Decimal, quantity: int) -> Decimal:
    if not mrp:
        return ZERO
    return max(ZERO, mrp - selling_price) * quantity


def round_to_currency_unit(amount: Decimal) -> Decimal:
    # Half rounds up, so the adjustment stays within (-0.5, 0.5]
    return (amount + HALF_UNIT).to_integral_value(rounding=ROUND_FLOOR)


def gross_total(items: Sequence[CartItem]) -> Decimal:
    """Tax-inclusive total before any discount."""
    total = ZERO
    for item in items:
        base, tax = split_line_price(item.product.unit_price, item.product.gst_rate, item.product.price_includes_gst)
        total += (base + tax) * item.quantity
    return total


def loyalty_points_for(rounded_total: Decimal) -> int:
    if rounded_total <= ZERO:
        return 0
    return int(rounded_total // POINTS_EARN_STEP)


def calculate_bill(
    items: Sequence[CartItem],
    loyalty_discount: Decimal = ZERO,
    manual_discount: Decimal = ZERO,
    payment_method: Optional[PaymentMethod] = None,
    cash_tendered: Optional[Decimal] = None,
) -> BillTotals:
    if not items:
        return BillTotals()

    subtotal = ZERO
    tax_total = ZERO
    mrp_savings = ZERO
    for item in items:
        product = item.product
        base, tax = split_line_price(product.unit_price, product.gst_rate, product.price_includes_gst)
        subtotal += base * item.quantity
        tax_total += tax * item.quantity
        mrp_savings += line_mrp_savings(product.mrp, product.unit_price, item.quantity)

    gross = subtotal + tax_total
    after_loyalty = gross - loyalty_discount
    after_discount = after_loyalty - manual_discount
    rounded_total = round_to_currency_unit(after_discount)
    rounding_adjustment = rounded_total - after_discount

    change_due = ZERO
    if payment_method == PaymentMethod.CASH and cash_tendered is not None:
        change_due = max(ZERO, cash_tendered - rounded_total)

    return BillTotals(
        subtotal=subtotal,
        tax_total=tax_total,
        gross_total=gross,
        loyalty_discount=loyalty_discount,
        after_loyalty=after_loyalty,
        manual_discount=manual_discount,
        after_discount=after_discount,
        rounded_total=rounded_total,
        rounding_adjustment=rounding_adjustment,
        change_due=change_due,
        loyalty_points_earned=loyalty_points_for(rounded_total),
        mrp_savings=mrp_savings,
        total_savings=manual_discount + loyalty_discount + mrp_savings,
    )
