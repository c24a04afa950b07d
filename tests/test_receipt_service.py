from decimal import Decimal

import pytest

from database.models import Transaction, TransactionItem
from services.receipt_service import (
    ReceiptLayout,
    build_receipt,
    money,
    receipt_savings,
    render_receipt,
    split_tax,
)
from services.settings_service import DEFAULT_STORE_SETTINGS

STORE = dict(DEFAULT_STORE_SETTINGS, store_address="12 Market Road", gst_number="29ABCDE1234F1Z5")


@pytest.fixture
def sale():
    transaction = Transaction(
        id=1,
        invoice_number="NM 0042",
        customer_name="Ravi Kumar",
        customer_phone="9876543210",
        subtotal=Decimal("250"),
        gst_amount=Decimal("38.5"),
        discount_amount=Decimal("10"),
        discount_percentage=Decimal("3.47"),
        loyalty_discount_amount=Decimal("5"),
        rounding_adjustment=Decimal("0.5"),
        total_amount=Decimal("274"),
        total_savings=Decimal("29"),
        payment_method="cash",
        cash_received=Decimal("300"),
        change_amount=Decimal("26"),
        loyalty_points_earned=2,
        loyalty_points_redeemed=5,
    )
    items = [
        TransactionItem(
            product_name="Dettol Soap 125g", brand="Dettol", hsn_code="34011190", quantity=2,
            unit_price=Decimal("118"), selling_price=Decimal("118"), mrp=Decimal("125"),
            gst_rate=Decimal("18"), price_includes_gst=True, total_price=Decimal("236"),
        ),
        TransactionItem(
            product_name="Loose Rice 1kg", brand="Generic", quantity=1,
            unit_price=Decimal("50"), selling_price=Decimal("50"), mrp=Decimal("50"),
            gst_rate=Decimal("5"), price_includes_gst=False, total_price=Decimal("50"),
        ),
    ]
    return transaction, items


@pytest.mark.parametrize("gst, cgst, sgst", [
    ("38.5", "19.25", "19.25"),
    ("0.03", "0.02", "0.01"),
    ("18.3333", "9.17", "9.16"),
    ("0", "0.00", "0.00"),
])
def test_split_tax_adds_up(gst, cgst, sgst):
    central, state = split_tax(Decimal(gst))
    assert (central, state) == (Decimal(cgst), Decimal(sgst))


def test_savings_from_item_snapshots(sale):
    transaction, items = sale
    assert receipt_savings(transaction, items) == Decimal("29")


def test_build_receipt(sale):
    transaction, items = sale
    receipt = build_receipt(transaction, STORE, items)

    assert receipt.cashier_name == "Staff"
    assert receipt.totals.cgst + receipt.totals.sgst == Decimal("38.50")
    assert receipt.lines[0].mrp == Decimal("125")
    assert receipt.lines[0].unit_saving == Decimal("7")
    assert receipt.lines[0].line_total == Decimal("236")
    assert receipt.lines[1].mrp is None
    assert receipt.show_loyalty


def test_walk_in_receipt_hides_loyalty(sale):
    transaction, items = sale
    transaction.customer_name = None
    transaction.loyalty_points_earned = 0
    transaction.loyalty_points_redeemed = 0

    receipt = build_receipt(transaction, STORE, items)
    assert not receipt.show_loyalty
    assert "LOYALTY POINTS" not in render_receipt(receipt, ReceiptLayout.THERMAL)


@pytest.mark.parametrize("layout", list(ReceiptLayout))
def test_layouts_show_the_same_figures(sale, layout):
    transaction, items = sale
    html = render_receipt(build_receipt(transaction, STORE, items), layout)

    assert "NATIONAL MINI MART" in html
    assert "NM 0042" in html
    assert "29ABCDE1234F1Z5" in html
    assert "Dettol Soap 125g" in html
    assert "₹19.25" in html
    assert "₹274.00" in html
    assert "₹29.00" in html
    assert "₹26.00" in html
    assert "window.print()" not in html


def test_auto_print(sale):
    transaction, items = sale
    html = render_receipt(build_receipt(transaction, STORE, items), ReceiptLayout.TABULAR, auto_print=True)
    assert "window.print()" in html


def test_money_filter():
    assert money(Decimal("12.5")) == "₹12.50"
    assert money(Decimal("-0.4")) == "-₹0.40"
    assert money(None) == "₹0.00"
