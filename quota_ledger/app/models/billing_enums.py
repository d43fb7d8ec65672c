"""
Billing enumerations.
"""

import enum


class OrderStatus(str, enum.Enum):
    """Payment order status enumeration."""
    CREATED = "CREATED"  # Placed with the gateway, awaiting payment proof
    VERIFIED = "VERIFIED"  # Signature verified, quota credited (terminal)
    FAILED = "FAILED"  # Signature mismatch (terminal)


class FinalizeSource(str, enum.Enum):
    """Which signal finalized an order."""
    CLIENT = "CLIENT"  # Checkout success callback
    WEBHOOK = "WEBHOOK"  # Gateway asynchronous notification


class TransactionType(str, enum.Enum):
    """Ledger entry type enumeration."""
    PURCHASE = "PURCHASE"  # Credit from a verified order
    ACTIVATION = "ACTIVATION"  # Debit for a batch activation
    ADJUSTMENT = "ADJUSTMENT"  # Operator reversal / refund entry
