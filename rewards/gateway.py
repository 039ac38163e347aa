from decimal import Decimal
from typing import Optional
from uuid import UUID

import httpx

from .config import Settings, get_settings
from .logging import get_logger
from .models import Currency, WithdrawalMethod
from .storage import InMemoryUserDirectory

logger = get_logger(__name__)

# Each payout rail settles in exactly one currency.
METHOD_CURRENCIES = {
    WithdrawalMethod.STRIPE: Currency.USD,
    WithdrawalMethod.PAYSTACK: Currency.NGN,
}


def is_supported(method: WithdrawalMethod, currency: Currency) -> bool:
    return METHOD_CURRENCIES.get(method) == currency


class HttpPaymentGateway:
    """Sends payouts through the Stripe and Paystack transfer endpoints.

    ``transfer`` only reports whether the payout went through; it never
    touches the ledger.
    """

    def __init__(
        self,
        directory: InMemoryUserDirectory,
        settings: Optional[Settings] = None,
        client: Optional[httpx.Client] = None,
    ):
        self.directory = directory
        self.settings = settings or get_settings()
        self.client = client or httpx.Client(timeout=self.settings.GATEWAY_TIMEOUT)

    def transfer(
        self,
        user_id: UUID,
        amount: Decimal,
        currency: Currency,
        method: WithdrawalMethod,
        reference: Optional[str] = None,
    ) -> bool:
        if not is_supported(method, currency):
            logger.warning("Rejected %s payout in %s for user %s", method.value, currency.value, user_id)
            return False

        destination = self.directory.get_payout_destination(user_id, method)
        if not destination:
            logger.warning("User %s has no %s payout destination", user_id, method.value)
            return False

        minor_units = int((amount * 100).to_integral_value())
        if method == WithdrawalMethod.PAYSTACK:
            url = self.settings.PAYSTACK_TRANSFER_URL
            payload = {
                "amount": minor_units,
                "recipient": destination,
                "reference": f"withdrawal_{reference}",
            }
            success_key = "status"
        else:
            url = self.settings.STRIPE_TRANSFER_URL
            payload = {
                "amount": minor_units,
                "destination": destination,
                "description": f"Withdrawal for transaction {reference}",
            }
            success_key = "success"

        try:
            response = self.client.post(url, json=payload)
            response.raise_for_status()
            result = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("%s transfer for user %s failed: %s", method.value, user_id, e)
            return False

        if not result.get(success_key):
            logger.warning(
                "%s transfer for user %s declined: %s",
                method.value, user_id, result.get("message") or result.get("error"),
            )
            return False
        return True

    def close(self) -> None:
        self.client.close()
