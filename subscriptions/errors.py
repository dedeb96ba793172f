"""Error taxonomy surfaced by the entitlement registry."""
from __future__ import annotations


class RegistryError(Exception):
    """Raised when a registry call cannot be completed.

    Every subclass carries a stable ``kind`` so callers can tell a
    retry-worthy condition (re-approve and try again) from a terminal one.
    """

    kind = "registry_error"
    retryable = False

    def __init__(self, message: str, status_code: int = 400) -> None:
        super().__init__(message)
        self.status_code = status_code


class InvalidArgument(RegistryError):
    kind = "invalid_argument"

    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=400)


class BadAuthorization(RegistryError):
    kind = "bad_authorization"

    def __init__(self, message: str = "Mint authorization signature does not verify") -> None:
        super().__init__(message, status_code=401)


class PaymentFailed(RegistryError):
    kind = "payment_failed"
    retryable = True

    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=402)


class Unauthorized(RegistryError):
    kind = "unauthorized"

    def __init__(self, message: str = "Caller is not the content's service provider") -> None:
        super().__init__(message, status_code=403)


class NotFound(RegistryError):
    kind = "not_found"

    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=404)


class InsufficientBalance(RegistryError):
    kind = "insufficient_balance"

    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=409)


class ContentMismatch(RegistryError):
    kind = "content_mismatch"

    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=409)


class NothingToWithdraw(RegistryError):
    kind = "nothing_to_withdraw"

    def __init__(self, message: str = "No withdrawable fees") -> None:
        super().__init__(message, status_code=409)


class TransferFailed(RegistryError):
    kind = "transfer_failed"
    retryable = True

    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=502)


__all__ = [
    "BadAuthorization",
    "ContentMismatch",
    "InsufficientBalance",
    "InvalidArgument",
    "NotFound",
    "NothingToWithdraw",
    "PaymentFailed",
    "RegistryError",
    "TransferFailed",
    "Unauthorized",
]
