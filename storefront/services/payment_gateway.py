from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Optional

import razorpay
import structlog

from storefront.core.config import settings
from storefront.core.exceptions import PaymentProviderError

logger = structlog.get_logger()

# Intents minted locally when the provider is not in play. Never valid in production.
DEV_INTENT_PREFIX = "pi_dev_"


def is_development_reference(reference: str) -> bool:
    return (reference or "").startswith(DEV_INTENT_PREFIX)


@dataclass(frozen=True)
class IntentStatus:
    status: str
    amount_paid: Decimal

    @property
    def paid(self) -> bool:
        return self.status == "paid"


class RazorpayGateway:
    """Thin wrapper over the Razorpay orders API.

    A Razorpay order plays the part of a payment intent: it is created before
    the customer pays and reports ``status == "paid"`` once money is captured.
    Every provider failure surfaces as :class:`PaymentProviderError`.
    """

    def __init__(self, key_id: str, key_secret: str, timeout: int):
        self.key_id = key_id
        self.timeout = timeout
        self._client = None
        if key_id and key_secret:
            self._client = razorpay.Client(auth=(key_id, key_secret))

    @property
    def configured(self) -> bool:
        return self._client is not None

    def create_intent(
        self,
        amount: Decimal,
        currency: str,
        receipt: str,
        notes: Optional[Dict[str, str]] = None,
    ) -> str:
        if not self.configured:
            raise PaymentProviderError("Payment provider is not configured")

        payload = {
            "amount": int((amount * 100).to_integral_value()),
            "currency": currency,
            "receipt": receipt,
            "notes": notes or {},
        }
        try:
            provider_order = self._client.order.create(data=payload, timeout=self.timeout)
        except Exception as exc:
            logger.warning("payment_provider_create_failed", receipt=receipt, error=str(exc))
            raise PaymentProviderError() from exc

        return provider_order["id"]

    def fetch_status(self, reference: str) -> IntentStatus:
        if not self.configured:
            raise PaymentProviderError("Payment provider is not configured")
        try:
            provider_order = self._client.order.fetch(reference, timeout=self.timeout)
        except Exception as exc:
            logger.warning("payment_provider_fetch_failed", payment_intent_id=reference, error=str(exc))
            raise PaymentProviderError() from exc
        # Amounts come back in minor units
        return IntentStatus(
            status=provider_order.get("status", ""),
            amount_paid=Decimal(provider_order.get("amount_paid") or 0) / 100,
        )


_gateway: Optional[RazorpayGateway] = None


def get_payment_gateway() -> RazorpayGateway:
    """FastAPI dependency; tests override it with a fake."""
    global _gateway
    if _gateway is None:
        _gateway = RazorpayGateway(
            settings.RAZORPAY_KEY_ID.strip(),
            settings.RAZORPAY_KEY_SECRET.strip(),
            settings.PAYMENT_PROVIDER_TIMEOUT_SECONDS,
        )
    return _gateway
