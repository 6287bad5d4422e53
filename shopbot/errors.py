"""Failure taxonomy shared by the lifecycle, refund and webhook layers.

Expected failures (unknown order, transition already applied, processor
rejections) travel as tagged results. Exceptions are reserved for the
collaborator boundaries below and for misconfiguration at startup.
"""

import asyncio
import enum

import stripe
from pydantic import BaseModel
from sqlalchemy.exc import DisconnectionError, OperationalError


class ErrorKind(str, enum.Enum):
    NOT_FOUND = "not_found"
    ALREADY_TERMINAL = "already_terminal"
    MISSING_PRECONDITION = "missing_precondition"
    UPSTREAM_FAILURE = "upstream_failure"
    AUTHENTICATION_FAILURE = "authentication_failure"
    DELIVERY_FAILURE = "delivery_failure"
    INTERNAL_ERROR = "internal_error"


class PaymentProviderError(Exception):
    """A Stripe call failed. `code` carries Stripe's error code when there is one."""

    def __init__(self, message: str, code: str | None = None, transient: bool = False):
        super().__init__(message)
        self.message = message
        self.code = code
        self.transient = transient


class WebhookVerificationError(Exception):
    """The webhook payload or its signature could not be verified."""


def is_transient(error: BaseException) -> bool:
    """Whether a retry of the same operation could plausibly succeed."""
    if isinstance(error, PaymentProviderError):
        return error.transient
    return isinstance(
        error,
        (
            asyncio.TimeoutError,
            TimeoutError,
            OperationalError,
            DisconnectionError,
            stripe.APIConnectionError,
            stripe.RateLimitError,
        ),
    )


class RefundResult(BaseModel):
    success: bool
    refund_id: str | None = None
    error: str | None = None
    error_kind: ErrorKind | None = None
    transient: bool = False

    @classmethod
    def ok(cls, refund_id: str | None) -> "RefundResult":
        return cls(success=True, refund_id=refund_id)

    @classmethod
    def fail(cls, kind: ErrorKind, error: str, transient: bool = False) -> "RefundResult":
        return cls(success=False, error=error, error_kind=kind, transient=transient)
