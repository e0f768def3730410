# laundry_server/app/errors.py
"""Error taxonomy shared by the pricing, promo and order layers.

Every error carries the HTTP status the API answers with; the API installs a
single handler that turns them into ``{"detail": message}`` bodies.
"""


class LaundryError(Exception):
    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.__class__.__name__


class ValidationError(LaundryError):
    """Malformed input to a pure computation; raised before anything is persisted."""
    status_code = 400


class InvalidCart(ValidationError):
    pass


class InvalidStatus(ValidationError):
    pass


class InvalidTransition(ValidationError):
    """Only raised when strict transitions are enabled."""


class PromoRejected(ValidationError):
    def __init__(self, reason, message: str = ""):
        super().__init__(message or f"promo code rejected: {reason.value}")
        self.reason = reason


class NotFound(LaundryError):
    status_code = 404


class Conflict(LaundryError):
    status_code = 409


class CapacityExceeded(LaundryError):
    """Promo cap reached at redemption time even though validation passed."""
    status_code = 409

    def __init__(self, outcome, message: str = ""):
        super().__init__(message or "promo code is no longer redeemable")
        self.outcome = outcome


class AlreadyTerminal(LaundryError):
    status_code = 400
