"""
Payment provider registry.

Ethiopian gateways (Chapa, Telebirr, CBE Birr) and the international card
gateway are simulated: initiation hands back a PROCESSING result with a
checkout URL, verification reports COMPLETED. Swapping in a live gateway
means implementing PaymentProvider for it and registering it below.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from masada.core.config import settings
from masada.core.exceptions import PaymentError
from masada.core.logging_config import logger
from masada.models.payment import Payment, PaymentMethod, PaymentStatus


@dataclass
class ProviderResult:
    status: PaymentStatus
    transaction_id: Optional[str] = None
    payment_url: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


def _epoch_ms() -> int:
    return int(time.time() * 1000)


class PaymentProvider:
    """Base class; subclasses set `name` and `transaction_prefix`"""

    name: str = "generic"
    transaction_prefix: str = "TXN"

    def __init__(self, base_url: Optional[str] = None):
        self.base_url = (base_url or settings.PAYMENT_BASE_URL).rstrip("/")

    def checkout_url(self, payment: Payment) -> str:
        return f"{self.base_url}/{self.name}/pay/{payment.id}"

    async def initiate(self, payment: Payment) -> ProviderResult:
        logger.log_payment(
            "initiate", payment.id, self.name,
            {"amount": payment.amount, "currency": payment.currency.value},
        )
        return ProviderResult(
            status=PaymentStatus.PROCESSING,
            transaction_id=f"{self.transaction_prefix}_{_epoch_ms()}",
            payment_url=self.checkout_url(payment),
            metadata={
                "provider": self.name,
                "initiated_at": datetime.utcnow().isoformat(),
            },
        )

    async def verify(self, transaction_id: str) -> ProviderResult:
        logger.log_payment("verify", transaction_id, self.name)
        return ProviderResult(
            status=PaymentStatus.COMPLETED,
            transaction_id=transaction_id,
            metadata={
                "provider": self.name,
                "verified_at": datetime.utcnow().isoformat(),
            },
        )


class ChapaProvider(PaymentProvider):
    name = "chapa"
    transaction_prefix = "CHAPA"


class TelebirrProvider(PaymentProvider):
    name = "telebirr"
    transaction_prefix = "TELEBIRR"


class CBEBirrProvider(PaymentProvider):
    name = "cbe_birr"
    transaction_prefix = "CBE_BIRR"


class InternationalCardProvider(PaymentProvider):
    name = "international"
    transaction_prefix = "INTL"


_PROVIDERS: Dict[PaymentMethod, type] = {
    PaymentMethod.CHAPA: ChapaProvider,
    PaymentMethod.TELEBIRR: TelebirrProvider,
    PaymentMethod.CBE_BIRR: CBEBirrProvider,
    PaymentMethod.CREDIT_CARD: InternationalCardProvider,
}


def get_provider(method: PaymentMethod) -> PaymentProvider:
    provider_cls = _PROVIDERS.get(method)
    if provider_cls is None:
        raise PaymentError(f"Payment method not supported: {method.value}")
    return provider_cls()


async def process_payment(payment: Payment) -> ProviderResult:
    """Hand a PENDING payment to its provider"""
    provider = get_provider(payment.method)
    return await provider.initiate(payment)


async def verify_payment(payment: Payment) -> ProviderResult:
    provider = get_provider(payment.method)
    try:
        result = await provider.verify(payment.transaction_id)
    except PaymentError:
        raise
    except Exception as e:
        logger.log_error_with_context(e, "verify_payment", payment_id=payment.id)
        raise PaymentError("Payment verification failed", provider=provider.name)

    if result.status != PaymentStatus.COMPLETED:
        raise PaymentError("Payment verification failed", provider=provider.name)
    return result
