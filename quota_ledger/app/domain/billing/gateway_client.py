"""
Payment Gateway client.

Creates orders against a Razorpay-compatible orders API. Calls are guarded
by a circuit breaker so a failing gateway is not hammered by checkout
traffic.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional

import httpx

from quota_ledger.app.core.config import settings
from quota_ledger.app.core.exceptions import GatewayUnavailableError
from quota_ledger.app.core.reliability import CircuitBreaker, CircuitOpenError

logger = logging.getLogger(__name__)


@dataclass
class GatewayOrder:
    id: str
    amount: int
    currency: str


class PaymentGateway:

    def __init__(
        self,
        base_url: str,
        key_id: str,
        key_secret: str,
        timeout: float = 10.0,
        circuit_breaker: Optional[CircuitBreaker] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.key_id = key_id
        self._key_secret = key_secret
        self._timeout = timeout
        self._transport = transport
        self.circuit_breaker = circuit_breaker or CircuitBreaker(name="payment-gateway")

    async def create_order(self, amount_minor: int, currency: str, receipt: str, notes: Dict[str, str]) -> GatewayOrder:
        """
        Create a gateway order.

        Raises:
            GatewayUnavailableError: transport/HTTP failure, malformed
                response, or the circuit is open
        """
        try:
            return await self.circuit_breaker.call(self._post_order, amount_minor, currency, receipt, notes)
        except CircuitOpenError:
            logger.error("Gateway circuit open, refusing order for receipt %s", receipt)
            raise GatewayUnavailableError("Payment gateway temporarily unavailable")
        except (httpx.HTTPError, KeyError, TypeError, ValueError) as exc:
            logger.error("Gateway order creation failed for receipt %s: %s", receipt, exc)
            raise GatewayUnavailableError("Failed to create payment order")

    async def _post_order(self, amount_minor: int, currency: str, receipt: str, notes: Dict[str, str]) -> GatewayOrder:
        async with httpx.AsyncClient(
            base_url=self.base_url,
            auth=(self.key_id, self._key_secret),
            timeout=self._timeout,
            transport=self._transport,
        ) as client:
            response = await client.post(
                "/v1/orders",
                json={
                    "amount": amount_minor,
                    "currency": currency,
                    "receipt": receipt,
                    "notes": notes,
                },
            )
            response.raise_for_status()
            body = response.json()

        return GatewayOrder(id=str(body["id"]), amount=int(body["amount"]), currency=str(body["currency"]))


# Process-wide breaker so consecutive failures accumulate across requests
gateway_circuit_breaker = CircuitBreaker(
    failure_threshold=settings.gateway_failure_threshold,
    reset_timeout=settings.gateway_reset_timeout_seconds,
    name="payment-gateway",
)


def get_payment_gateway() -> PaymentGateway:
    """FastAPI dependency."""
    return PaymentGateway(
        base_url=settings.gateway_base_url,
        key_id=settings.gateway_key_id,
        key_secret=settings.gateway_key_secret,
        timeout=settings.gateway_timeout_seconds,
        circuit_breaker=gateway_circuit_breaker,
    )
