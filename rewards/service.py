from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Callable, Optional, Union
from uuid import UUID, uuid4

from pydantic import ValidationError

from .config import Settings, get_settings
from .exceptions import (
    BelowMinimumError,
    DailyCapReachedError,
    InsufficientBalanceError,
    InvalidAmountError,
    InvalidStateTransitionError,
    LedgerServiceError,
    NotEligibleError,
    StoreUnavailableError,
    TransactionNotFoundError,
    TransferFailedError,
    UnsupportedMethodError,
    UserNotVerifiedError,
    WriteConflictError,
)
from .gateway import HttpPaymentGateway, is_supported
from .logging import get_logger
from .models import (
    CreatorStats,
    Currency,
    DailyCapStatus,
    RewardRequest,
    RewardResponse,
    Transaction,
    TransactionHistoryResponse,
    TransactionStatus,
    TransactionType,
    VerificationEligibility,
    Wallet,
    WithdrawalMethod,
)
from .storage import InMemoryStorage, InMemoryUserDirectory

logger = get_logger(__name__)

ZERO = Decimal("0")

Amount = Union[Decimal, int, float, str]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _to_decimal(value: Amount) -> Decimal:
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except InvalidOperation:
        raise InvalidAmountError(f"Invalid amount {value!r}")
    if not amount.is_finite():
        raise InvalidAmountError(f"Amount must be a finite number, got {value}")
    return amount


class RewardLedger:
    """SA rewards, daily caps, conversions and withdrawals for creators.

    All balance changes go through conditional updates on the store, so
    concurrent callers acting for the same user never overwrite each other.
    A conflicting write is retried from a fresh read up to
    ``CONFLICT_RETRIES`` times.
    """

    def __init__(
        self,
        storage: Optional[InMemoryStorage] = None,
        directory: Optional[InMemoryUserDirectory] = None,
        gateway: Optional[HttpPaymentGateway] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.settings = settings or get_settings()
        self.storage = storage or InMemoryStorage()
        self.directory = directory or InMemoryUserDirectory()
        self.gateway = gateway or HttpPaymentGateway(self.directory, self.settings)
        self.clock = clock or _utc_now

    def today(self) -> date:
        return self.clock().astimezone(timezone.utc).date()

    # -- rewards -----------------------------------------------------------

    def reward_interaction(self, user_id: UUID, interaction_type: str, metadata: Optional[dict] = None) -> Decimal:
        try:
            request = RewardRequest(
                user_id=user_id,
                interaction_type=interaction_type,
                metadata=metadata or {},
            )
        except ValidationError:
            logger.warning("Rejected SA reward request for user %s", user_id, exc_info=True)
            return ZERO
        return self.credit_interaction(request).reward

    def credit_interaction(self, request: RewardRequest) -> RewardResponse:
        """Grant the per-interaction SA reward. Never raises; 0 means no reward."""
        cap = self.settings.DAILY_SA_CAP
        try:
            reward, daily_earned = self._with_retries(self._credit_once, request)
        except DailyCapReachedError:
            logger.debug("Daily SA cap reached for user %s", request.user_id)
            return self._zero_reward(request.user_id)
        except UserNotVerifiedError:
            logger.debug("User %s is not verified, no SA reward", request.user_id)
            return self._zero_reward(request.user_id)
        except (StoreUnavailableError, WriteConflictError):
            logger.exception("SA reward for user %s aborted", request.user_id)
            return self._zero_reward(request.user_id)
        except Exception:
            logger.exception("Unexpected error rewarding user %s", request.user_id)
            return self._zero_reward(request.user_id)

        logger.info(
            "Rewarded user %s %s SA for %s (daily %s/%s)",
            request.user_id, reward, request.interaction_type, daily_earned, cap,
        )
        return RewardResponse(reward=reward, daily_earned=daily_earned, remaining=cap - daily_earned)

    def check_daily_cap(self, user_id: UUID) -> DailyCapStatus:
        cap = self.settings.DAILY_SA_CAP
        try:
            stats = self.storage.get_stats(user_id)
        except Exception:
            logger.exception("Could not read daily SA stats for user %s", user_id)
            return DailyCapStatus(earned=ZERO, remaining=cap, percentage=ZERO)

        earned = ZERO
        if stats is not None and stats.last_reset_date == self.today():
            earned = stats.daily_sa_earned
        return DailyCapStatus(
            earned=earned,
            remaining=max(ZERO, cap - earned),
            percentage=earned / cap * 100,
        )

    def _credit_once(self, request: RewardRequest) -> tuple[Decimal, Decimal]:
        user_id = request.user_id
        today = self.today()
        cap = self.settings.DAILY_SA_CAP

        stats = self._get_or_create_stats(user_id, today)
        if stats.last_reset_date != today:
            stats = self._reset_stats(stats, today)

        if stats.daily_sa_earned >= cap:
            raise DailyCapReachedError(f"User {user_id} reached the daily cap of {cap} SA")

        if not self.directory.get_verification_status(user_id):
            raise UserNotVerifiedError(f"User {user_id} is not a verified creator")

        # Flat payout; the cap decides whether to pay, never how much.
        reward = self.settings.SA_PER_INTERACTION
        new_daily_earned = min(stats.daily_sa_earned + reward, cap)

        wallet = self.storage.get_wallet(user_id) or self.storage.create_wallet(user_id)
        record = self._new_transaction(
            user_id,
            TransactionType.REWARD,
            amount=reward,
            currency=Currency.SA,
            status=TransactionStatus.COMPLETED,
            metadata={"interaction_type": request.interaction_type, **request.metadata},
        )

        with self.storage.transaction():
            if not self.storage.update_stats(
                user_id,
                {"daily_sa_earned": new_daily_earned},
                expected={
                    "daily_sa_earned": stats.daily_sa_earned,
                    "last_reset_date": stats.last_reset_date,
                },
            ):
                raise WriteConflictError(f"Creator stats for {user_id} changed during reward")
            if not self.storage.update_wallet(
                user_id,
                {"sa_balance": wallet.sa_balance + reward},
                expected={"sa_balance": wallet.sa_balance},
            ):
                raise WriteConflictError(f"Wallet for {user_id} changed during reward")
            self.storage.append_transaction(record)

        return reward, new_daily_earned

    def _get_or_create_stats(self, user_id: UUID, today: date) -> CreatorStats:
        stats = self.storage.get_stats(user_id)
        if stats is not None:
            return stats

        initial = CreatorStats(user_id=user_id, daily_sa_earned=ZERO, last_reset_date=today)
        if self.storage.create_stats(user_id, initial):
            logger.info("Created creator stats for user %s", user_id)

        stats = self.storage.get_stats(user_id)
        if stats is None:
            raise StoreUnavailableError(f"Creator stats for {user_id} missing after create")
        return stats

    def _reset_stats(self, stats: CreatorStats, today: date) -> CreatorStats:
        reset = CreatorStats(user_id=stats.user_id, daily_sa_earned=ZERO, last_reset_date=today)
        if not self.storage.update_stats(
            stats.user_id,
            {"daily_sa_earned": reset.daily_sa_earned, "last_reset_date": today},
            expected={
                "daily_sa_earned": stats.daily_sa_earned,
                "last_reset_date": stats.last_reset_date,
            },
        ):
            raise WriteConflictError(f"Creator stats for {stats.user_id} changed during reset")
        logger.debug("Daily SA counter rolled over for user %s", stats.user_id)
        return reset

    def _zero_reward(self, user_id: UUID) -> RewardResponse:
        status = self.check_daily_cap(user_id)
        return RewardResponse(reward=ZERO, daily_earned=status.earned, remaining=status.remaining)

    # -- conversion and withdrawal -----------------------------------------

    def convert_sa_to_usd(self, user_id: UUID, sa_amount: Amount) -> Decimal:
        sa_amount = _to_decimal(sa_amount)
        if sa_amount <= 0:
            raise InvalidAmountError("SA amount must be greater than zero")

        usd_amount = sa_amount * self.settings.SA_TO_USD_RATE
        self._with_retries(self._convert_once, user_id, sa_amount, usd_amount)

        logger.info("User %s converted %s SA to %s USD", user_id, sa_amount, usd_amount)
        return usd_amount

    def _convert_once(self, user_id: UUID, sa_amount: Decimal, usd_amount: Decimal) -> None:
        wallet = self.storage.get_wallet(user_id)
        if wallet is None or wallet.sa_balance < sa_amount:
            raise InsufficientBalanceError("Insufficient SA balance")

        record = self._new_transaction(
            user_id,
            TransactionType.CONVERSION,
            amount=sa_amount,
            currency=Currency.SA,
            status=TransactionStatus.COMPLETED,
            metadata={"usd_amount": usd_amount},
        )
        with self.storage.transaction():
            if not self.storage.update_wallet(
                user_id,
                {
                    "sa_balance": wallet.sa_balance - sa_amount,
                    "usd_balance": wallet.usd_balance + usd_amount,
                },
                expected={"sa_balance": wallet.sa_balance, "usd_balance": wallet.usd_balance},
            ):
                raise WriteConflictError(f"Wallet for {user_id} changed during conversion")
            self.storage.append_transaction(record)

    def request_withdrawal(
        self,
        user_id: UUID,
        amount: Amount,
        currency: Union[Currency, str],
        method: Union[WithdrawalMethod, str],
    ) -> Transaction:
        """Pay out USD balance through a gateway.

        The pending transaction reserves the amount until the gateway answers.
        The wallet is debited only after the gateway confirms the payout.
        """
        amount = _to_decimal(amount)
        if amount < self.settings.MIN_WITHDRAWAL:
            raise BelowMinimumError(f"Minimum withdrawal amount is ${self.settings.MIN_WITHDRAWAL}")

        try:
            currency = Currency(currency)
            method = WithdrawalMethod(method)
        except ValueError:
            raise UnsupportedMethodError(f"Unsupported withdrawal method {method} for {currency}")
        if currency == Currency.SA or not is_supported(method, currency):
            raise UnsupportedMethodError(f"Invalid withdrawal method {method.value} for {currency.value}")

        payout_amount = amount if currency == Currency.USD else amount * self.settings.USD_TO_NGN_RATE
        record = self._new_transaction(
            user_id,
            TransactionType.WITHDRAWAL,
            amount=-amount,
            currency=Currency.USD,
            status=TransactionStatus.PENDING,
            metadata={
                "method": method.value,
                "payout_currency": currency.value,
                "payout_amount": payout_amount,
            },
        )

        with self.storage.transaction():
            wallet = self.storage.get_wallet(user_id)
            balance = wallet.usd_balance if wallet else ZERO
            available = balance - self.storage.pending_withdrawal_total(user_id)
            if available < amount:
                raise InsufficientBalanceError("Insufficient USD balance")
            self.storage.append_transaction(record)

        logger.info("Withdrawal %s of %s USD pending for user %s via %s", record.id, amount, user_id, method.value)

        try:
            confirmed = self.gateway.transfer(user_id, payout_amount, currency, method, reference=str(record.id))
        except Exception as e:
            logger.exception("Payment gateway raised for withdrawal %s", record.id)
            self.storage.update_transaction_status(record.id, TransactionStatus.FAILED)
            raise TransferFailedError("Withdrawal failed: payment gateway error", record.id) from e

        if not confirmed:
            self.storage.update_transaction_status(record.id, TransactionStatus.FAILED)
            logger.warning("Withdrawal %s for user %s failed at the gateway", record.id, user_id)
            raise TransferFailedError("Withdrawal failed: transfer was not completed", record.id)

        try:
            self._with_retries(self._settle_withdrawal, user_id, record.id, amount)
        except LedgerServiceError:
            logger.critical(
                "Withdrawal %s paid out but could not be debited from user %s; "
                "settle it with POST /admin/withdrawals/%s/resolve",
                record.id, user_id, record.id,
            )
            raise

        logger.info("Withdrawal %s completed for user %s", record.id, user_id)
        return self.storage.get_transaction(record.id)

    def _settle_withdrawal(self, user_id: UUID, transaction_id: UUID, amount: Decimal) -> None:
        wallet = self.storage.get_wallet(user_id)
        if wallet is None:
            raise StoreUnavailableError(f"Wallet for {user_id} disappeared during withdrawal")
        with self.storage.transaction():
            if not self.storage.update_wallet(
                user_id,
                {"usd_balance": wallet.usd_balance - amount},
                expected={"usd_balance": wallet.usd_balance},
            ):
                raise WriteConflictError(f"Wallet for {user_id} changed during withdrawal")
            if not self.storage.update_transaction_status(transaction_id, TransactionStatus.COMPLETED):
                raise InvalidStateTransitionError(f"Withdrawal {transaction_id} is no longer pending")

    def resolve_withdrawal(self, transaction_id: UUID, paid: bool) -> Transaction:
        """Settle a withdrawal left pending after the gateway answered.

        ``paid`` is the operator's answer from the gateway dashboard: True debits the
        wallet and completes the row, False marks it failed and releases the reservation.
        """
        record = self.storage.get_transaction(transaction_id)
        if record is None:
            raise TransactionNotFoundError(f"Transaction {transaction_id} not found")
        if record.type != TransactionType.WITHDRAWAL or record.status != TransactionStatus.PENDING:
            raise InvalidStateTransitionError(
                f"Transaction {transaction_id} is a {record.status.value} {record.type.value}, not a pending withdrawal"
            )

        if paid:
            self._with_retries(self._settle_withdrawal, record.user_id, record.id, -record.amount)
            logger.info("Withdrawal %s resolved as paid for user %s", record.id, record.user_id)
        else:
            if not self.storage.update_transaction_status(record.id, TransactionStatus.FAILED):
                raise InvalidStateTransitionError(f"Withdrawal {transaction_id} is no longer pending")
            logger.warning("Withdrawal %s resolved as failed for user %s", record.id, record.user_id)
        return self.storage.get_transaction(record.id)

    # -- maintenance -------------------------------------------------------

    def run_daily_reset(self) -> int:
        """Zero every stale daily counter. Safe to run any number of times."""
        today = self.today()
        count = self.storage.sweep_stale_stats(today)
        logger.info("Daily reset completed: %d creator stats rows reset for %s", count, today)
        return count

    # -- queries -----------------------------------------------------------

    def get_wallet(self, user_id: UUID) -> Wallet:
        return self.storage.get_wallet(user_id) or Wallet(user_id=user_id)

    def get_transaction_history(self, user_id: UUID, limit: int = 50, offset: int = 0) -> TransactionHistoryResponse:
        transactions, total = self.storage.list_transactions(user_id, limit, offset)
        return TransactionHistoryResponse(
            user_id=user_id,
            transactions=transactions,
            total_count=total,
            wallet=self.get_wallet(user_id),
        )

    # -- creator verification ----------------------------------------------

    def check_verification_eligibility(self, user_id: UUID) -> VerificationEligibility:
        followers = self.directory.get_follower_count(user_id)
        verified = self.directory.get_verification_status(user_id)
        required = self.settings.MIN_FOLLOWERS_FOR_VERIFICATION
        return VerificationEligibility(
            user_id=user_id,
            eligible=not verified and followers >= required,
            already_verified=verified,
            followers_count=followers,
            required_followers=required,
        )

    def record_verification_payment(
        self,
        user_id: UUID,
        amount: Amount,
        currency: Union[Currency, str],
        reference: Optional[str] = None,
    ) -> Transaction:
        eligibility = self.check_verification_eligibility(user_id)
        if eligibility.already_verified:
            raise NotEligibleError(f"User {user_id} is already verified")
        if not eligibility.eligible:
            raise NotEligibleError(
                f"You need at least {eligibility.required_followers:,} followers to apply for verification"
            )

        amount = _to_decimal(amount)
        fees = {
            Currency.USD: self.settings.VERIFICATION_FEE_USD,
            Currency.NGN: self.settings.VERIFICATION_FEE_NGN,
        }
        try:
            currency = Currency(currency)
        except ValueError:
            raise InvalidAmountError(f"Unknown currency {currency}")
        if currency not in fees:
            raise InvalidAmountError(f"Verification cannot be paid in {currency.value}")
        if amount < fees[currency]:
            raise InvalidAmountError(f"Verification fee is {fees[currency]} {currency.value}")

        record = self._new_transaction(
            user_id,
            TransactionType.VERIFICATION,
            amount=amount,
            currency=currency,
            status=TransactionStatus.COMPLETED,
            metadata={"reference": reference} if reference else {},
        )
        with self.storage.transaction():
            self.storage.append_transaction(record)
            self.directory.set_verified(user_id, True)

        logger.info("User %s verified after paying %s %s", user_id, amount, currency.value)
        return record

    # -- helpers -----------------------------------------------------------

    def _new_transaction(
        self,
        user_id: UUID,
        type: TransactionType,
        amount: Decimal,
        currency: Currency,
        status: TransactionStatus,
        metadata: dict,
    ) -> Transaction:
        return Transaction(
            id=uuid4(),
            user_id=user_id,
            type=type,
            amount=amount,
            currency=currency,
            status=status,
            metadata=metadata,
            created_at=self.clock(),
        )

    def _with_retries(self, operation, *args):
        retries = self.settings.CONFLICT_RETRIES
        for attempt in range(retries + 1):
            try:
                return operation(*args)
            except WriteConflictError:
                if attempt == retries:
                    raise
                logger.debug("Write conflict in %s, retry %d/%d", operation.__name__, attempt + 1, retries)
