"""
Payment Verifier.

The gateway signs a successful checkout as
HMAC-SHA256(order_id + "|" + payment_id) with the merchant key secret,
and signs webhook bodies with a separate webhook secret. The signature is
the only trusted proof of payment; a "success" flag from a caller is not.
"""

import hashlib
import hmac
from typing import Optional

from quota_ledger.app.core.config import settings


class PaymentVerifier:

    def __init__(self, key_secret: str, webhook_secret: Optional[str] = None):
        self._key_secret = key_secret.encode()
        self._webhook_secret = (webhook_secret or key_secret).encode()

    def expected_signature(self, order_id: str, payment_id: str) -> str:
        message = f"{order_id}|{payment_id}".encode()
        return hmac.new(self._key_secret, message, hashlib.sha256).hexdigest()

    @staticmethod
    def _matches(expected: str, signature) -> bool:
        # compare_digest rejects non-ASCII str, so compare the encoded bytes
        if not isinstance(signature, str) or not signature:
            return False
        return hmac.compare_digest(expected.encode(), signature.encode("utf-8", "surrogateescape"))

    def verify(self, order_id: str, payment_id: str, signature: Optional[str]) -> bool:
        if not order_id or not payment_id:
            return False
        return self._matches(self.expected_signature(order_id, payment_id), signature)

    def webhook_signature(self, body: bytes) -> str:
        return hmac.new(self._webhook_secret, body, hashlib.sha256).hexdigest()

    def verify_webhook(self, body: bytes, signature: Optional[str]) -> bool:
        return self._matches(self.webhook_signature(body), signature)


def get_payment_verifier() -> PaymentVerifier:
    """FastAPI dependency."""
    return PaymentVerifier(settings.gateway_key_secret, settings.gateway_webhook_secret)
