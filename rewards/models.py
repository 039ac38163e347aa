from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID
from pydantic import BaseModel, Field, ConfigDict, field_validator
from pydantic_core import PydanticSerializationError, to_jsonable_python


class TransactionType(str, Enum):
    REWARD = "reward"
    CONVERSION = "conversion"
    WITHDRAWAL = "withdrawal"
    VERIFICATION = "verification"
    BOOST = "boost"


class Currency(str, Enum):
    SA = "SA"
    USD = "USD"
    NGN = "NGN"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class WithdrawalMethod(str, Enum):
    STRIPE = "stripe"
    PAYSTACK = "paystack"


def _json_metadata(value: dict) -> dict:
    try:
        to_jsonable_python(value)
    except PydanticSerializationError as exc:
        raise ValueError("metadata must be JSON serialisable") from exc
    return value


class Wallet(BaseModel):
    user_id: UUID
    sa_balance: Decimal = Decimal("0")
    usd_balance: Decimal = Decimal("0")
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class CreatorStats(BaseModel):
    user_id: UUID
    daily_sa_earned: Decimal = Decimal("0")
    last_reset_date: date

    model_config = ConfigDict(from_attributes=True)


class Transaction(BaseModel):
    id: UUID
    user_id: UUID
    type: TransactionType
    amount: Decimal
    currency: Currency
    status: TransactionStatus
    metadata: dict = Field(default_factory=dict)
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @field_validator("metadata")
    @classmethod
    def metadata_is_json(cls, value: dict) -> dict:
        return _json_metadata(value)


class RewardRequest(BaseModel):
    user_id: UUID
    interaction_type: str = Field(..., description="like, comment, follow, share...")
    metadata: dict = Field(default_factory=dict)

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "user_id": "550e8400-e29b-41d4-a716-446655440000",
            "interaction_type": "like",
            "metadata": {"post_id": "8f0e1a52-2b7c-4c1e-9a53-0f1b5f1d2c11"}
        }
    })

    @field_validator("metadata")
    @classmethod
    def metadata_is_json(cls, value: dict) -> dict:
        return _json_metadata(value)


class RewardResponse(BaseModel):
    reward: Decimal
    daily_earned: Decimal
    remaining: Decimal


class DailyCapStatus(BaseModel):
    earned: Decimal
    remaining: Decimal
    percentage: Decimal


class ConvertRequest(BaseModel):
    sa_amount: Decimal = Field(..., gt=0)


class ConvertResponse(BaseModel):
    sa_amount: Decimal
    usd_amount: Decimal
    wallet: Wallet


class WithdrawalRequest(BaseModel):
    amount: Decimal = Field(..., description="USD amount to withdraw")
    currency: Currency = Currency.USD
    method: WithdrawalMethod

    model_config = ConfigDict(json_schema_extra={
        "example": {"amount": 25.00, "currency": "USD", "method": "stripe"}
    })


class ResolveWithdrawalRequest(BaseModel):
    paid: bool = Field(..., description="Whether the gateway actually paid the withdrawal out")


class VerificationEligibility(BaseModel):
    user_id: UUID
    eligible: bool
    already_verified: bool
    followers_count: int
    required_followers: int


class VerificationPaymentRequest(BaseModel):
    amount: Decimal
    currency: Currency
    reference: Optional[str] = None


class TransactionHistoryResponse(BaseModel):
    user_id: UUID
    transactions: list[Transaction]
    total_count: int
    wallet: Wallet


class DailyResetResponse(BaseModel):
    reset_count: int
    reset_date: date
