from typing import Optional


class PaymentLinkServiceError(Exception):
    """
    Base class for all errors in the payment-links service.
    Should not be exposed directly to the client; convert to HTTPException.
    """

    def __init__(self, message: str, original_exception: Optional[Exception] = None):
        super().__init__(message)
        self.message = message
        self.original_exception = original_exception


# ------------------------
# Token-related errors
# ------------------------
class TokenError(PaymentLinkServiceError):
    """Base class for token-related failures."""

    pass


class TokenExpiredError(TokenError):
    """Raised when a token's expiration time has passed."""

    pass


class TokenInvalidError(TokenError):
    """Raised when a token is malformed or has an invalid signature."""

    pass


class TokenMissingClaimError(TokenError):
    """Raised when a required claim (e.g. 'sub') is missing."""

    pass


# ------------------------
# Merchant-facing errors
# ------------------------
class ValidationError(PaymentLinkServiceError):
    """
    Raised when merchant input is invalid.
    Should be mapped to 400 Bad Request.
    """

    pass


class AuthError(PaymentLinkServiceError):
    """Raised when a bearer credential is missing or invalid (401)."""

    pass


class InvalidCredentialsError(AuthError):
    """Raised when email/password do not match a merchant."""

    pass


class NotFoundError(PaymentLinkServiceError):
    """Base class for lookups that found nothing (404)."""

    pass


class PaymentLinkNotFoundError(NotFoundError):
    """Raised when a link does not exist or belongs to another merchant."""

    pass


class MerchantNotFoundError(NotFoundError):
    """Raised when the merchant referenced by a token no longer exists."""

    pass


class MerchantAlreadyExistsError(PaymentLinkServiceError):
    """
    Raised when registering with an email that is already taken.
    Should be mapped to 409 Conflict.
    """

    pass


class InvalidTransitionError(PaymentLinkServiceError):
    """
    Raised when a payment link status change is not allowed
    (e.g. cancelling a paid link). Should be mapped to 400 Bad Request.
    """

    pass


class CredentialError(PaymentLinkServiceError):
    """Raised when gateway credentials cannot be encrypted or decrypted."""

    pass


class DatabaseError(PaymentLinkServiceError):
    """
    Raised when a there is a database error.
    """

    pass


# ------------------------
# Payment gateway errors
# ------------------------
class GatewayError(PaymentLinkServiceError):
    """
    Base class for failures talking to the payment gateway.
    Only subclasses of this error leave the gateway client.
    """

    pass


class GatewayAuthError(GatewayError):
    """Raised when the gateway rejects the merchant credentials (401/403)."""

    pass


class GatewayValidationError(GatewayError):
    """Raised when the gateway rejects the request payload (400)."""

    pass


class GatewayUnavailableError(GatewayError):
    """Raised on timeouts, connection failures, 5xx or malformed responses."""

    pass


class PaymentNotFoundError(GatewayError):
    """Raised when the gateway has no payment with the given id (404)."""

    pass
