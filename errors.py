from typing import Iterable


class MarketplaceError(Exception):
    """Base class for every error surfaced to the user as a notification."""


class ValidationError(MarketplaceError):
    def __init__(self, message: str, missing: Iterable[str] = ()):
        self.missing = list(missing)
        if self.missing:
            message = f"{message} Missing: {', '.join(self.missing)}."
        super().__init__(message)


class PermissionDeniedError(MarketplaceError):
    pass


class NotFoundError(MarketplaceError):
    pass


class ConflictError(MarketplaceError):
    pass


class InsufficientFundsError(ConflictError):
    pass


class ExternalServiceError(MarketplaceError):
    pass


class StoreError(ExternalServiceError):
    """The document store rejected or failed an operation."""
