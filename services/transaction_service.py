import logging
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Callable, List, Optional, Tuple, TypeVar

from pydantic import BaseModel
from sqlalchemy import text, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlmodel import Session, col, select

from config import INVOICE_PREFIX
from database.models import Customer, LoyaltyTransaction, Product, Transaction, TransactionItem, User, utcnow
from services.cart import BillingState
from services.errors import CommitError
from services.pricing import PERCENT_PLACES, BillTotals, PaymentMethod

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CommitStep(str, Enum):
    INVOICE = "allocate_invoice"
    HEADER = "insert_transaction"
    ITEMS = "insert_items"
    STOCK = "decrement_stock"
    CUSTOMER = "update_customer"
    LEDGER = "insert_loyalty_ledger"


class Tender(BaseModel):
    method: PaymentMethod = PaymentMethod.CASH
    cash_received: Optional[Decimal] = None


@dataclass
class CommitResult:
    transaction: Transaction
    items: List[TransactionItem]
    totals: BillTotals
    customer: Optional[Customer] = None
    cashier: Optional[User] = None
    warnings: List[str] = field(default_factory=list)


def format_invoice_number(prefix: str, number: int) -> str:
    return f"{prefix}{number:04d}"


def parse_invoice_number(prefix: str, value: Optional[str]) -> Optional[int]:
    if not value or not value.startswith(prefix):
        return None
    try:
        return int(value[len(prefix):])
    except ValueError:
        return None


def describe_failure(exc: BaseException) -> Tuple[str, bool]:
    """
    Map a store failure to (message for the cashier, retryable).

    Retryable means the same cart can be paid again as is: a lost connection or
    a taken invoice number. A missing product or customer needs a refresh first.
    """
    if isinstance(exc, IntegrityError):
        code = getattr(exc.orig, "pgcode", None)
        detail = str(exc.orig)
        if code == "23505" or "UNIQUE constraint failed" in detail:
            return "Duplicate transaction detected. Please try again.", True
        if code == "23503" or "FOREIGN KEY constraint failed" in detail:
            return "Product not found. Please refresh and try again.", False
        return f"Payment failed: {detail}", False
    if isinstance(exc, OperationalError):
        return "Could not reach the database. Check the connection and try again.", True
    if isinstance(exc, LookupError):
        return f"{exc.args[0] if exc.args else exc}. Please refresh and try again.", False
    return f"Payment failed: {exc}", False


class TransactionService:
    """
    Persists a finalized bill as a sequence of dependent writes:
    invoice number, header, items, stock, customer, loyalty ledger.

    Every step is committed on its own and the sequence stops at the first
    failure. Earlier steps are NOT rolled back, so a failure after the header
    insert leaves an orphan header row behind; the cart is kept so the cashier
    can retry.
    """

    def __init__(self, invoice_prefix: str = INVOICE_PREFIX):
        self.invoice_prefix = invoice_prefix

    # --- Invoice numbering ---

    def last_invoice_number(self, session: Session) -> str:
        """Highest issued bill number, or prefix + "0000" when none exist."""
        try:
            last = session.exec(text("SELECT get_last_bill_number()")).scalar()
        except Exception as e:
            # The RPC only exists on the hosted database; scan instead
            logger.info("get_last_bill_number RPC unavailable, scanning transactions: %s", e)
            session.rollback()
            numbers = session.exec(
                select(Transaction.invoice_number).where(col(Transaction.invoice_number).startswith(self.invoice_prefix))
            ).all()
            parsed = [parse_invoice_number(self.invoice_prefix, n) for n in numbers]
            highest = max((n for n in parsed if n is not None), default=0)
            return format_invoice_number(self.invoice_prefix, highest)

        if parse_invoice_number(self.invoice_prefix, last) is None:
            return format_invoice_number(self.invoice_prefix, 0)
        return last

    def next_invoice_number(self, session: Session) -> str:
        current = parse_invoice_number(self.invoice_prefix, self.last_invoice_number(session)) or 0
        return format_invoice_number(self.invoice_prefix, current + 1)

    # --- Commit sequence ---

    def _run(self, session: Session, step: CommitStep, action: Callable[[], T], context: dict) -> T:
        logger.debug("Commit step %s started %s", step.value, context)
        try:
            result = action()
        except Exception as e:
            session.rollback()
            message, retryable = describe_failure(e)
            logger.error("Commit step %s failed %s: %r", step.value, context, e)
            raise CommitError(step.value, message, cause=e, retryable=retryable) from e
        logger.debug("Commit step %s done", step.value)
        return result

    def commit(self, session: Session, state: BillingState, tender: Tender, cashier: User) -> CommitResult:
        totals = state.totals(tender.method, tender.cash_received)
        customer = state.customer
        points_earned = totals.loyalty_points_earned if customer else 0
        points_redeemed = state.loyalty.points if customer else 0
        context = {"cashier_id": cashier.id, "customer_id": customer.id if customer else None}

        invoice_number = self._run(session, CommitStep.INVOICE, lambda: self.next_invoice_number(session), context)
        context["invoice_number"] = invoice_number

        is_cash = tender.method == PaymentMethod.CASH
        transaction = Transaction(
            invoice_number=invoice_number,
            cashier_id=cashier.id,
            customer_id=customer.id if customer else None,
            customer_name=customer.name if customer else None,
            customer_phone=customer.phone if customer else None,
            subtotal=totals.subtotal,
            gst_amount=totals.tax_total,
            discount_amount=totals.manual_discount,
            discount_percentage=state.discount.percentage.quantize(PERCENT_PLACES, rounding=ROUND_HALF_UP),
            loyalty_discount_amount=totals.loyalty_discount,
            rounding_adjustment=totals.rounding_adjustment,
            total_amount=totals.rounded_total,
            total_savings=totals.total_savings,
            payment_method=tender.method.value,
            cash_received=tender.cash_received if is_cash else None,
            change_amount=totals.change_due if is_cash else None,
            loyalty_points_earned=points_earned,
            loyalty_points_redeemed=points_redeemed,
            status="completed",
        )
        self._run(session, CommitStep.HEADER, lambda: self._insert_header(session, transaction), context)
        context["transaction_id"] = transaction.id

        self._run(session, CommitStep.ITEMS, lambda: self._insert_items(session, transaction.id, state), context)
        self._run(session, CommitStep.STOCK, lambda: self._decrement_stock(session, state), context)

        customer_row = None
        if customer:
            customer_row = self._run(
                session,
                CommitStep.CUSTOMER,
                lambda: self._update_customer(session, customer.id, points_earned, points_redeemed, totals.rounded_total),
                context,
            )

        warnings = []
        if customer and (points_earned > 0 or points_redeemed > 0):
            warning = self._insert_ledger(session, customer.id, transaction.id, points_earned, points_redeemed, totals.loyalty_discount)
            if warning:
                warnings.append(warning)

        session.refresh(transaction)
        logger.info(
            "Sale %s committed: total=%s method=%s items=%d",
            invoice_number, totals.rounded_total, tender.method.value, len(state.items),
        )
        return CommitResult(
            transaction=transaction,
            items=list(transaction.items),
            customer=customer_row,
            cashier=cashier,
            totals=totals,
            warnings=warnings,
        )

    def _insert_header(self, session: Session, transaction: Transaction) -> Transaction:
        session.add(transaction)
        session.commit()
        session.refresh(transaction)
        return transaction

    def _insert_items(self, session: Session, transaction_id: int, state: BillingState) -> None:
        for item in state.items:
            product = item.product
            session.add(TransactionItem(
                transaction_id=transaction_id,
                product_id=product.id,
                product_name=product.name,
                brand=product.brand,
                hsn_code=product.hsn_code,
                quantity=item.quantity,
                unit_price=product.unit_price,
                selling_price=product.unit_price,
                mrp=product.mrp,
                cost_price=product.cost_price,
                gst_rate=product.gst_rate,
                price_includes_gst=product.price_includes_gst,
                total_price=item.total,
            ))
        session.commit()

    def _decrement_stock(self, session: Session, state: BillingState) -> None:
        # One update per line; a failure part-way leaves earlier lines decremented
        for item in state.items:
            result = session.exec(
                update(Product)
                .where(col(Product.id) == item.product.id)
                .values(stock_quantity=col(Product.stock_quantity) - item.quantity, updated_at=utcnow())
            )
            if result.rowcount == 0:
                raise LookupError(f"Product {item.product.name} not found")
            session.commit()

    def _update_customer(self, session: Session, customer_id: int, earned: int, redeemed: int, spent: Decimal) -> Customer:
        customer = session.get(Customer, customer_id)
        if not customer:
            raise LookupError(f"Customer {customer_id} not found")

        new_points = customer.loyalty_points + earned - redeemed
        if new_points < 0:
            logger.warning(
                "Customer %s loyalty balance would go negative (%s + %s - %s), clamping to 0",
                customer_id, customer.loyalty_points, earned, redeemed,
            )
            new_points = 0

        customer.loyalty_points = new_points
        customer.total_spent = (customer.total_spent or Decimal("0")) + spent
        session.add(customer)
        session.commit()
        session.refresh(customer)
        return customer

    def _insert_ledger(self, session: Session, customer_id: int, transaction_id: int, earned: int, redeemed: int, discount: Decimal) -> Optional[str]:
        """Returns a warning instead of raising; the sale already stands."""
        entry = LoyaltyTransaction(
            customer_id=customer_id,
            transaction_id=transaction_id,
            points_earned=earned,
            points_redeemed=redeemed,
            discount_amount=discount,
            transaction_type="earned" if earned > 0 else "redeemed",
        )
        try:
            session.add(entry)
            session.commit()
        except Exception as e:
            session.rollback()
            logger.warning(
                "Commit step %s failed (customer=%s transaction=%s): %r",
                CommitStep.LEDGER.value, customer_id, transaction_id, e,
            )
            return "Transaction completed but loyalty record failed. Please check database setup."
        return None
