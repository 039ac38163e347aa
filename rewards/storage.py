import threading
from contextlib import contextmanager
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Iterator, Optional
from uuid import UUID

from .models import (
    CreatorStats,
    Transaction,
    TransactionStatus,
    TransactionType,
    Wallet,
    WithdrawalMethod,
)


class InMemoryStorage:
    """Durable store for wallets, creator stats and transactions.

    Updates are conditional: ``expected`` holds the values the caller read,
    and the write only lands if the row still carries them. Writes made
    inside ``transaction()`` are applied together or not at all.
    """

    def __init__(self):
        self.wallets: dict[UUID, dict] = {}
        self.creator_stats: dict[UUID, dict] = {}
        self.transactions: dict[UUID, dict] = {}
        self._lock = threading.RLock()
        self._undo: Optional[list] = None

    @contextmanager
    def transaction(self) -> Iterator["InMemoryStorage"]:
        with self._lock:
            if self._undo is not None:
                # Nested units join the outer one.
                yield self
                return
            self._undo = []
            try:
                yield self
            except BaseException:
                for table, key, previous in reversed(self._undo):
                    if previous is None:
                        table.pop(key, None)
                    else:
                        table[key] = previous
                raise
            finally:
                self._undo = None

    def _remember(self, table: dict, key: UUID) -> None:
        """Record a row's prior state so an open unit can undo the write."""
        if self._undo is not None:
            previous = table.get(key)
            self._undo.append((table, key, dict(previous) if previous is not None else None))

    def get_wallet(self, user_id: UUID) -> Optional[Wallet]:
        with self._lock:
            data = self.wallets.get(user_id)
            return Wallet(**data) if data else None

    def create_wallet(self, user_id: UUID) -> Wallet:
        with self._lock:
            if user_id not in self.wallets:
                self._remember(self.wallets, user_id)
                self.wallets[user_id] = {
                    "user_id": user_id,
                    "sa_balance": Decimal("0"),
                    "usd_balance": Decimal("0"),
                    "updated_at": datetime.now(timezone.utc),
                }
            return Wallet(**self.wallets[user_id])

    def update_wallet(self, user_id: UUID, fields: dict, expected: dict) -> bool:
        with self._lock:
            data = self.wallets.get(user_id)
            if data is None or not _matches(data, expected):
                return False
            self._remember(self.wallets, user_id)
            data.update(fields)
            data["updated_at"] = datetime.now(timezone.utc)
            return True

    def get_stats(self, user_id: UUID) -> Optional[CreatorStats]:
        with self._lock:
            data = self.creator_stats.get(user_id)
            return CreatorStats(**data) if data else None

    def create_stats(self, user_id: UUID, initial: CreatorStats) -> bool:
        """Insert the stats row; False when one already exists."""
        with self._lock:
            if user_id in self.creator_stats:
                return False
            self._remember(self.creator_stats, user_id)
            self.creator_stats[user_id] = initial.model_dump()
            return True

    def update_stats(self, user_id: UUID, fields: dict, expected: Optional[dict] = None) -> bool:
        with self._lock:
            data = self.creator_stats.get(user_id)
            if data is None or not _matches(data, expected or {}):
                return False
            self._remember(self.creator_stats, user_id)
            data.update(fields)
            return True

    def append_transaction(self, record: Transaction) -> UUID:
        with self._lock:
            self._remember(self.transactions, record.id)
            self.transactions[record.id] = record.model_dump()
            return record.id

    def get_transaction(self, transaction_id: UUID) -> Optional[Transaction]:
        with self._lock:
            data = self.transactions.get(transaction_id)
            return Transaction(**data) if data else None

    def update_transaction_status(self, transaction_id: UUID, status: TransactionStatus) -> bool:
        """Settle a pending transaction. Settled rows never change again."""
        with self._lock:
            data = self.transactions.get(transaction_id)
            if data is None or data["status"] != TransactionStatus.PENDING:
                return False
            self._remember(self.transactions, transaction_id)
            data["status"] = status
            data["updated_at"] = datetime.now(timezone.utc)
            return True

    def list_transactions(self, user_id: UUID, limit: int = 50, offset: int = 0) -> tuple[list[Transaction], int]:
        with self._lock:
            rows = [
                Transaction(**t) for t in self.transactions.values()
                if t["user_id"] == user_id
            ]
        rows.sort(key=lambda t: t.created_at, reverse=True)
        return rows[offset:offset + limit], len(rows)

    def pending_withdrawal_total(self, user_id: UUID) -> Decimal:
        with self._lock:
            return sum(
                (-t["amount"] for t in self.transactions.values()
                 if t["user_id"] == user_id
                 and t["type"] == TransactionType.WITHDRAWAL
                 and t["status"] == TransactionStatus.PENDING),
                Decimal("0"),
            )

    def sweep_stale_stats(self, before_date: date) -> int:
        count = 0
        with self._lock:
            for user_id, data in self.creator_stats.items():
                if data["last_reset_date"] < before_date:
                    self._remember(self.creator_stats, user_id)
                    data["daily_sa_earned"] = Decimal("0")
                    data["last_reset_date"] = before_date
                    count += 1
        return count


class InMemoryUserDirectory:
    def __init__(self):
        self.users: dict[UUID, dict] = {}
        self._seed_data()

    def _seed_data(self):
        creator_id = UUID("550e8400-e29b-41d4-a716-446655440000")
        fan_id = UUID("660e8400-e29b-41d4-a716-446655440001")

        self.add_user(
            creator_id, is_verified=True, followers_count=12500,
            stripe_account_id="acct_1PcreatorDemo",
            paystack_recipient_code="RCP_creator_demo",
        )
        self.add_user(fan_id, is_verified=False, followers_count=240)

    def add_user(
        self,
        user_id: UUID,
        is_verified: bool = False,
        followers_count: int = 0,
        stripe_account_id: Optional[str] = None,
        paystack_recipient_code: Optional[str] = None,
    ) -> None:
        self.users[user_id] = {
            "id": user_id,
            "is_verified": is_verified,
            "followers_count": followers_count,
            "stripe_account_id": stripe_account_id,
            "paystack_recipient_code": paystack_recipient_code,
        }

    def get_verification_status(self, user_id: UUID) -> bool:
        user = self.users.get(user_id)
        return bool(user and user["is_verified"])

    def get_follower_count(self, user_id: UUID) -> int:
        user = self.users.get(user_id)
        return user["followers_count"] if user else 0

    def set_verified(self, user_id: UUID, verified: bool = True) -> None:
        if user_id not in self.users:
            self.add_user(user_id)
        self.users[user_id]["is_verified"] = verified

    def get_payout_destination(self, user_id: UUID, method: WithdrawalMethod) -> Optional[str]:
        user = self.users.get(user_id)
        if not user:
            return None
        if method == WithdrawalMethod.PAYSTACK:
            return user["paystack_recipient_code"]
        return user["stripe_account_id"]


def _matches(row: dict, expected: dict) -> bool:
    return all(row.get(key) == value for key, value in expected.items())
