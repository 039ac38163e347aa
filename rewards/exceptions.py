class LedgerServiceError(Exception):
    pass


class UserNotVerifiedError(LedgerServiceError):
    pass


class DailyCapReachedError(LedgerServiceError):
    pass


class InsufficientBalanceError(LedgerServiceError):
    pass


class BelowMinimumError(LedgerServiceError):
    pass


class UnsupportedMethodError(LedgerServiceError):
    pass


class InvalidAmountError(LedgerServiceError):
    pass


class NotEligibleError(LedgerServiceError):
    pass


class TransferFailedError(LedgerServiceError):
    def __init__(self, message: str, transaction_id=None):
        super().__init__(message)
        self.transaction_id = transaction_id


class StoreUnavailableError(LedgerServiceError):
    pass


class WriteConflictError(LedgerServiceError):
    """A conditional update found the row changed since it was read."""


class TransactionNotFoundError(LedgerServiceError):
    pass


class InvalidStateTransitionError(LedgerServiceError):
    pass
