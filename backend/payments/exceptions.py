class PaymentError(Exception):
    """Base class for payment reconciliation failures."""


class PaymentValidationError(PaymentError):
    """Missing or malformed input the caller can fix."""


class PaymentNotFound(PaymentError):
    """A referenced booking or payment does not exist."""


class GatewayError(PaymentError):
    """A Stripe call failed or timed out."""

    def __init__(self, message: str, *, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable


class GatewayConfigurationError(GatewayError):
    """Stripe is not configured correctly in the environment."""


class InvalidSignature(PaymentError):
    """Webhook payload failed the Stripe signature check."""


class StoreError(PaymentError):
    """The database rejected or could not complete a write."""
