"""
Custom exceptions and error handlers for consistent error responses.

Provides standardized error codes and global exception handlers.
"""

import logging

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from typing import Any, Dict

logger = logging.getLogger(__name__)


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, error_code: str, status_code: int = 500, details: Dict[str, Any] = None):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class ResourceNotFoundError(AppException):
    """Raised when requested resource is not found."""

    def __init__(self, resource: str, resource_id: Any = None, error_code: str = "ERR_NOT_FOUND_001"):
        message = f"{resource} not found"
        if resource_id:
            message = f"{resource} with ID {resource_id} not found"
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource": resource, "id": resource_id}
        )


class OrderNotFoundError(ResourceNotFoundError):
    def __init__(self, order_id: Any):
        super().__init__("Order", order_id, error_code="ERR_NOT_FOUND_002")


class TenantNotFoundError(ResourceNotFoundError):
    def __init__(self, tenant_id: Any):
        super().__init__("Tenant", tenant_id, error_code="ERR_NOT_FOUND_003")


class TenantAlreadyExistsError(AppException):
    """Raised when registering a tenant id that is already taken."""

    def __init__(self, tenant_id: str):
        super().__init__(
            message=f"Tenant {tenant_id} already exists",
            error_code="ERR_TENANT_001",
            status_code=status.HTTP_409_CONFLICT,
            details={"tenant_id": tenant_id}
        )


# Billing / quota errors

class UnknownPackageError(AppException):
    """Raised when a package id does not resolve to a purchasable package."""

    def __init__(self, package_id: str):
        super().__init__(
            message=f"Unknown or inactive package: {package_id}",
            error_code="ERR_BILLING_001",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"package_id": package_id}
        )


class InsufficientQuotaError(AppException):
    """
    Raised when a debit would drive a tenant's balance below zero.

    Recoverable: the caller should prompt a purchase.
    """

    def __init__(self, tenant_id: str, required: int, available: int):
        self.required = required
        self.available = available
        self.shortfall = required - available
        super().__init__(
            message="Insufficient quota. Please purchase more activation slots.",
            error_code="ERR_QUOTA_001",
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            details={
                "tenant_id": tenant_id,
                "required": required,
                "available": available,
                "shortfall": self.shortfall,
            }
        )


class IdempotencyKeyReuseError(AppException):
    """Raised when an idempotency key is replayed with a different payload."""

    def __init__(self, idempotency_key: str, details: Dict[str, Any] = None):
        super().__init__(
            message=f"Idempotency key {idempotency_key} was already used for a different request",
            error_code="ERR_QUOTA_002",
            status_code=status.HTTP_409_CONFLICT,
            details={"idempotency_key": idempotency_key, **(details or {})}
        )


class VerificationFailedError(AppException):
    """Raised when a payment signature does not match. Terminal for the order."""

    def __init__(self, order_id: str):
        super().__init__(
            message="Payment could not be verified, contact support",
            error_code="ERR_PAYMENT_001",
            status_code=status.HTTP_400_BAD_REQUEST,
            details={"order_id": order_id}
        )


class PaymentMismatchError(AppException):
    """
    Raised when a payment claim disagrees with an order's recorded outcome.

    Always audited. Never auto-resolved.
    """

    def __init__(self, order_id: str, recorded_payment_id: str = None, claimed_payment_id: str = None):
        super().__init__(
            message="Payment does not match the recorded outcome for this order",
            error_code="ERR_PAYMENT_002",
            status_code=status.HTTP_409_CONFLICT,
            details={
                "order_id": order_id,
                "recorded_payment_id": recorded_payment_id,
                "claimed_payment_id": claimed_payment_id,
            }
        )


class LedgerUnavailableError(AppException):
    """Raised when the compare-and-append cycle keeps conflicting."""

    def __init__(self, tenant_id: str, attempts: int):
        super().__init__(
            message="Ledger is busy, please retry",
            error_code="ERR_LEDGER_001",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details={"tenant_id": tenant_id, "attempts": attempts}
        )


class GatewayUnavailableError(AppException):
    """Raised when the payment gateway cannot create an order."""

    def __init__(self, message: str = "Payment gateway unavailable"):
        super().__init__(
            message=message,
            error_code="ERR_GATEWAY_001",
            status_code=status.HTTP_502_BAD_GATEWAY
        )


class WebhookSignatureError(AppException):
    """Raised when a webhook body is not signed with the shared webhook secret."""

    def __init__(self):
        super().__init__(
            message="Invalid webhook signature",
            error_code="ERR_WEBHOOK_001",
            status_code=status.HTTP_400_BAD_REQUEST
        )


class MalformedWebhookError(AppException):
    """Raised when a signed webhook body is not a usable event envelope."""

    def __init__(self, reason: str):
        super().__init__(
            message=f"Malformed webhook: {reason}",
            error_code="ERR_WEBHOOK_002",
            status_code=status.HTTP_400_BAD_REQUEST
        )


# Global Exception Handlers

async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handler for custom application exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": exc.error_code,
            "message": exc.message,
            "details": exc.details
        }
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handler for FastAPI HTTPException with standardized format."""
    # Map status code to error code
    error_code_map = {
        400: "ERR_BAD_REQUEST",
        401: "ERR_UNAUTHORIZED",
        403: "ERR_FORBIDDEN",
        404: "ERR_NOT_FOUND",
        409: "ERR_CONFLICT",
        422: "ERR_VALIDATION",
        500: "ERR_INTERNAL_SERVER"
    }

    error_code = error_code_map.get(exc.status_code, "ERR_UNKNOWN")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": error_code,
            "message": exc.detail,
            "details": {}
        },
        headers=getattr(exc, "headers", None)
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handler for Pydantic validation errors."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error_code": "ERR_VALIDATION",
            "message": "Validation error",
            "details": {
                "errors": jsonable_encoder(exc.errors())
            }
        }
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.exception("Unhandled exception: %s: %s", type(exc).__name__, exc)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "ERR_INTERNAL_SERVER",
            "message": "An internal server error occurred",
            "details": {}
        }
    )
