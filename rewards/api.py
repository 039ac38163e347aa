from uuid import UUID
from fastapi import Depends, FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware

from .config import get_settings
from .exceptions import (
    LedgerServiceError, NotEligibleError, StoreUnavailableError,
    TransactionNotFoundError, TransferFailedError, WriteConflictError,
)
from .logging import configure_logging
from .models import (
    ConvertRequest, ConvertResponse, DailyCapStatus, DailyResetResponse,
    ResolveWithdrawalRequest, RewardRequest, RewardResponse, Transaction, TransactionHistoryResponse,
    VerificationEligibility, VerificationPaymentRequest, Wallet, WithdrawalRequest,
)
from .service import RewardLedger

configure_logging()

app = FastAPI(
    title="Creator Rewards API",
    description="SA reward crediting, daily caps, conversion and withdrawals for verified creators",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

ledger = RewardLedger()


def get_ledger() -> RewardLedger:
    return ledger


@app.get("/health", tags=["System"])
def health_check():
    return {"status": "healthy", "service": "creator-rewards"}


@app.post("/reward", response_model=RewardResponse, tags=["Rewards"])
def reward(request: RewardRequest, service: RewardLedger = Depends(get_ledger)) -> RewardResponse:
    return service.credit_interaction(request)


@app.get("/users/{user_id}/daily-cap", response_model=DailyCapStatus, tags=["Rewards"])
def get_daily_cap(user_id: UUID, service: RewardLedger = Depends(get_ledger)) -> DailyCapStatus:
    return service.check_daily_cap(user_id)


@app.get("/users/{user_id}/wallet", response_model=Wallet, tags=["Wallet"])
def get_wallet(user_id: UUID, service: RewardLedger = Depends(get_ledger)) -> Wallet:
    return service.get_wallet(user_id)


@app.get("/users/{user_id}/transactions", response_model=TransactionHistoryResponse, tags=["Wallet"])
def get_transactions(
    user_id: UUID, limit: int = 50, offset: int = 0, service: RewardLedger = Depends(get_ledger),
) -> TransactionHistoryResponse:
    return service.get_transaction_history(user_id, limit, offset)


@app.post("/users/{user_id}/convert", response_model=ConvertResponse, tags=["Wallet"])
def convert(user_id: UUID, request: ConvertRequest, service: RewardLedger = Depends(get_ledger)) -> ConvertResponse:
    try:
        usd_amount = service.convert_sa_to_usd(user_id, request.sa_amount)
    except (StoreUnavailableError, WriteConflictError) as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    except LedgerServiceError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return ConvertResponse(sa_amount=request.sa_amount, usd_amount=usd_amount, wallet=service.get_wallet(user_id))


@app.post(
    "/users/{user_id}/withdrawals", response_model=Transaction,
    status_code=status.HTTP_201_CREATED, tags=["Wallet"],
)
def withdraw(user_id: UUID, request: WithdrawalRequest, service: RewardLedger = Depends(get_ledger)) -> Transaction:
    try:
        return service.request_withdrawal(user_id, request.amount, request.currency, request.method)
    except TransferFailedError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    except (StoreUnavailableError, WriteConflictError) as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    except LedgerServiceError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@app.get("/users/{user_id}/verification", response_model=VerificationEligibility, tags=["Verification"])
def get_verification(user_id: UUID, service: RewardLedger = Depends(get_ledger)) -> VerificationEligibility:
    return service.check_verification_eligibility(user_id)


@app.post(
    "/users/{user_id}/verification", response_model=Transaction,
    status_code=status.HTTP_201_CREATED, tags=["Verification"],
)
def verify(
    user_id: UUID, request: VerificationPaymentRequest, service: RewardLedger = Depends(get_ledger),
) -> Transaction:
    try:
        return service.record_verification_payment(user_id, request.amount, request.currency, request.reference)
    except NotEligibleError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    except LedgerServiceError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@app.post("/admin/daily-reset", response_model=DailyResetResponse, tags=["System"])
def daily_reset(service: RewardLedger = Depends(get_ledger)) -> DailyResetResponse:
    try:
        count = service.run_daily_reset()
    except StoreUnavailableError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    return DailyResetResponse(reset_count=count, reset_date=service.today())


@app.post("/admin/withdrawals/{transaction_id}/resolve", response_model=Transaction, tags=["System"])
def resolve_withdrawal(
    transaction_id: UUID, request: ResolveWithdrawalRequest, service: RewardLedger = Depends(get_ledger),
) -> Transaction:
    try:
        return service.resolve_withdrawal(transaction_id, request.paid)
    except TransactionNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except (StoreUnavailableError, WriteConflictError) as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    except LedgerServiceError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
