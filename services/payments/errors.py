# services/payments/errors.py
"""
Error taxonomy for the payments layer.

Every error carries a stable ``code`` (what controllers put in the JSON
body) and a ``retryable`` flag so callers can tell "try again later"
apart from "this will never work".
"""

from __future__ import annotations


class PaymentError(Exception):
    code = "payment_error"
    retryable = False

    def __init__(self, message: str = "", *, code: str | None = None):
        super().__init__(message or self.__class__.__name__)
        if code:
            self.code = code


class ProviderConfigError(PaymentError):
    """Credentials missing or malformed. Never carries secret material."""
    code = "provider_unavailable"
    retryable = True

    def __init__(self, provider: str, missing: list[str] | tuple[str, ...] = ()):
        self.provider = provider
        self.missing = tuple(missing)
        super().__init__(f"{provider} credentials not configured")


class ProviderUnavailableError(PaymentError):
    """Timeout, transport failure or an error answer from the provider."""
    code = "provider_unavailable"
    retryable = True

    def __init__(self, provider: str, message: str = ""):
        self.provider = provider
        super().__init__(message or f"{provider} unavailable")


class UnknownProviderError(PaymentError):
    code = "unknown_provider"

    def __init__(self, provider: str):
        self.provider = provider
        super().__init__(f"Unknown payment provider: {provider}")


class UnsupportedOperationError(PaymentError):
    code = "unsupported_operation"

    def __init__(self, provider: str, operation: str):
        self.provider = provider
        self.operation = operation
        super().__init__(f"{operation} is not supported by {provider}")


class InvalidTransitionError(PaymentError):
    code = "invalid_transition"

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move payment status {current} -> {target}")


class CheckoutError(PaymentError):
    """Client-side problem with a checkout request (code names which one)."""
    code = "checkout_invalid"
