"""
Printable receipts for committed sales.

Both layouts (80mm thermal and full-page tabular) are fed by the same
`build_receipt` derivation, so the totals, savings and tax split can never
disagree between them. Figures are re-derived from the stored transaction and
its item snapshots, never from live product rows.
"""
import os
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from jinja2 import Environment, FileSystemLoader, select_autoescape
from pydantic import BaseModel

from database.models import Transaction, TransactionItem
from services.pricing import ZERO, line_mrp_savings

CENTS = Decimal("0.01")
TEMPLATES_DIR = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "templates")


class ReceiptLayout(str, Enum):
    THERMAL = "thermal"
    TABULAR = "tabular"


RECEIPT_TEMPLATES = {
    ReceiptLayout.THERMAL: "receipts/thermal.html",
    ReceiptLayout.TABULAR: "receipts/tabular.html",
}


class ReceiptLine(BaseModel):
    name: str
    brand: Optional[str] = None
    hsn_code: Optional[str] = None
    gst_rate: Decimal = ZERO
    quantity: int
    unit_price: Decimal
    mrp: Optional[Decimal] = None  # only set when above the selling price
    unit_saving: Decimal = ZERO
    line_total: Decimal


class ReceiptTotals(BaseModel):
    subtotal: Decimal
    gst_amount: Decimal
    cgst: Decimal
    sgst: Decimal
    discount_amount: Decimal
    discount_percentage: Decimal
    loyalty_discount_amount: Decimal
    rounding_adjustment: Decimal
    total_savings: Decimal
    total_amount: Decimal


class Receipt(BaseModel):
    store: Dict[str, str]
    invoice_number: str
    created_at: datetime
    cashier_name: str
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    lines: List[ReceiptLine]
    totals: ReceiptTotals
    payment_method: str
    cash_received: Optional[Decimal] = None
    change_amount: Optional[Decimal] = None
    points_earned: int = 0
    points_redeemed: int = 0

    @property
    def show_loyalty(self) -> bool:
        return bool(self.customer_name) and (self.points_earned > 0 or self.points_redeemed > 0)


def split_tax(gst_amount: Decimal) -> Tuple[Decimal, Decimal]:
    """CGST and SGST halves at display precision; they always add up to the shown total."""
    total = gst_amount.quantize(CENTS, rounding=ROUND_HALF_UP)
    central = (total / 2).quantize(CENTS, rounding=ROUND_HALF_UP)
    return central, total - central


def receipt_savings(transaction: Transaction, items: Sequence[TransactionItem]) -> Decimal:
    savings = (transaction.discount_amount or ZERO) + (transaction.loyalty_discount_amount or ZERO)
    for item in items:
        savings += line_mrp_savings(item.mrp, item.selling_price, item.quantity)
    return savings


def build_receipt_line(item: TransactionItem) -> ReceiptLine:
    discounted = bool(item.mrp) and item.mrp > item.selling_price
    return ReceiptLine(
        name=item.product_name,
        brand=item.brand,
        hsn_code=item.hsn_code,
        gst_rate=item.gst_rate,
        quantity=item.quantity,
        unit_price=item.selling_price,
        mrp=item.mrp if discounted else None,
        unit_saving=item.mrp - item.selling_price if discounted else ZERO,
        line_total=item.selling_price * item.quantity,
    )


def build_receipt(transaction: Transaction, store: Dict[str, str], items: Optional[Sequence[TransactionItem]] = None) -> Receipt:
    items = list(items if items is not None else transaction.items)
    cgst, sgst = split_tax(transaction.gst_amount)

    customer_name = transaction.customer_name
    customer_phone = transaction.customer_phone
    if transaction.customer is not None:
        customer_name = transaction.customer.name
        customer_phone = transaction.customer.phone

    cashier_name = "Staff"
    if transaction.cashier is not None:
        cashier_name = transaction.cashier.full_name or transaction.cashier.username

    return Receipt(
        store=store,
        invoice_number=transaction.invoice_number,
        created_at=transaction.created_at,
        cashier_name=cashier_name,
        customer_name=customer_name,
        customer_phone=customer_phone,
        lines=[build_receipt_line(item) for item in items],
        totals=ReceiptTotals(
            subtotal=transaction.subtotal,
            gst_amount=transaction.gst_amount,
            cgst=cgst,
            sgst=sgst,
            discount_amount=transaction.discount_amount,
            discount_percentage=transaction.discount_percentage,
            loyalty_discount_amount=transaction.loyalty_discount_amount,
            rounding_adjustment=transaction.rounding_adjustment,
            total_savings=receipt_savings(transaction, items),
            total_amount=transaction.total_amount,
        ),
        payment_method=transaction.payment_method,
        cash_received=transaction.cash_received,
        change_amount=transaction.change_amount,
        points_earned=transaction.loyalty_points_earned,
        points_redeemed=transaction.loyalty_points_redeemed,
    )


def money(value) -> str:
    amount = Decimal(value or 0).quantize(CENTS, rounding=ROUND_HALF_UP)
    if amount < 0:
        return f"-₹{-amount}"
    return f"₹{amount}"


env = Environment(loader=FileSystemLoader(TEMPLATES_DIR), autoescape=select_autoescape(["html"]))
env.filters["money"] = money


def render_receipt(receipt: Receipt, layout: ReceiptLayout = ReceiptLayout.THERMAL, auto_print: bool = False) -> str:
    template = env.get_template(RECEIPT_TEMPLATES[layout])
    return template.render(receipt=receipt, totals=receipt.totals, store=receipt.store, auto_print=auto_print)
