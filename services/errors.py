from typing import Optional


class BillingValidationError(ValueError):
    """Rejected before anything is written. State is left untouched."""


class EmptyCartError(BillingValidationError):
    pass


class InsufficientCashError(BillingValidationError):
    pass


class StockLimitError(BillingValidationError):
    pass


class DiscountError(BillingValidationError):
    pass


class LoyaltyRedemptionError(BillingValidationError):
    pass


class NotAuthenticatedError(BillingValidationError):
    pass


class DuplicateProductError(ValueError):
    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field


class CheckoutInProgressError(RuntimeError):
    pass


class CommitError(Exception):
    """
    A write failed part-way through committing a sale.
    Steps before `step` are persisted and are not rolled back.
    """

    def __init__(self, step: str, user_message: str, cause: Optional[BaseException] = None, retryable: bool = True):
        super().__init__(user_message)
        self.step = step
        self.user_message = user_message
        self.cause = cause
        self.retryable = retryable
