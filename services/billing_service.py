import logging
import threading
from decimal import Decimal
from typing import Callable, Dict, Optional

from sqlmodel import Session

from config import LOYALTY_POINT_VALUE
from database.models import User
from services import cart
from services.cart import BillingState, CustomerSnapshot, DiscountMode
from services.errors import BillingValidationError, CheckoutInProgressError, EmptyCartError, InsufficientCashError, NotAuthenticatedError
from services.pricing import BillTotals, PaymentMethod, ProductSnapshot
from services.transaction_service import CommitResult, Tender, TransactionService

logger = logging.getLogger(__name__)


class BillingDesk:
    """
    Owns one cashier's billing screen: the current BillingState plus the
    checkout guard. All changes go through the pure actions in services.cart.
    """

    def __init__(self, transaction_service: Optional[TransactionService] = None, loyalty_point_value: Decimal = LOYALTY_POINT_VALUE):
        self.state = BillingState()
        self.transaction_service = transaction_service or TransactionService()
        self.loyalty_point_value = loyalty_point_value
        self._checkout_lock = threading.Lock()

    @property
    def is_committing(self) -> bool:
        # The pay button stays disabled while this is True
        return self._checkout_lock.locked()

    def _dispatch(self, action: Callable[..., BillingState], *args) -> BillingState:
        # Same lock as checkout, so the cart cannot change under a payment
        if not self._checkout_lock.acquire(blocking=False):
            raise CheckoutInProgressError("A payment is being processed. Please wait.")
        try:
            self.state = action(self.state, *args)
            return self.state
        finally:
            self._checkout_lock.release()

    def add_item(self, product: ProductSnapshot) -> BillingState:
        return self._dispatch(cart.add_item, product)

    def remove_item(self, product_id: int) -> BillingState:
        return self._dispatch(cart.remove_item, product_id)

    def set_quantity(self, product_id: int, quantity: int) -> BillingState:
        return self._dispatch(cart.set_quantity, product_id, quantity)

    def select_customer(self, customer: Optional[CustomerSnapshot]) -> BillingState:
        return self._dispatch(cart.select_customer, customer)

    def apply_loyalty(self, points: int) -> BillingState:
        return self._dispatch(cart.apply_loyalty, points, self.loyalty_point_value)

    def clear_loyalty(self) -> BillingState:
        return self._dispatch(cart.clear_loyalty)

    def apply_discount(self, mode: DiscountMode, value: Decimal) -> BillingState:
        return self._dispatch(cart.apply_discount, mode, value)

    def clear_discount(self) -> BillingState:
        return self._dispatch(cart.clear_discount)

    def clear(self) -> BillingState:
        return self._dispatch(cart.clear_cart)

    def totals(self, method: Optional[PaymentMethod] = None, cash_received: Optional[Decimal] = None) -> BillTotals:
        return self.state.totals(method, cash_received)

    def validate_checkout(self, tender: Tender, cashier: Optional[User], state: Optional[BillingState] = None) -> BillTotals:
        state = state if state is not None else self.state
        if cashier is None or cashier.id is None:
            raise NotAuthenticatedError("Please log in to process payments")
        if state.is_empty:
            raise EmptyCartError("Cart is empty")
        totals = state.totals(tender.method, tender.cash_received)
        if tender.method == PaymentMethod.CASH:
            if tender.cash_received is None or tender.cash_received < totals.rounded_total:
                raise InsufficientCashError("Insufficient cash received")
        return totals

    def checkout(self, session: Session, tender: Tender, cashier: Optional[User]) -> CommitResult:
        if not self._checkout_lock.acquire(blocking=False):
            raise CheckoutInProgressError("A payment is being processed. Please wait.")
        try:
            # Validated and committed from one snapshot
            state = self.state
            try:
                self.validate_checkout(tender, cashier, state)
            except BillingValidationError as e:
                logger.info("Checkout rejected (cashier=%s): %s", getattr(cashier, "id", None), e)
                raise
            # On CommitError the state is kept so the cashier can retry
            result = self.transaction_service.commit(session, state, tender, cashier)
            self.state = cart.clear_cart(state)
            return result
        finally:
            self._checkout_lock.release()


_desks: Dict[int, BillingDesk] = {}
_desks_lock = threading.Lock()


def get_desk(user_id: int) -> BillingDesk:
    with _desks_lock:
        desk = _desks.get(user_id)
        if desk is None:
            desk = BillingDesk()
            _desks[user_id] = desk
        return desk


def reset_desks():
    with _desks_lock:
        _desks.clear()
