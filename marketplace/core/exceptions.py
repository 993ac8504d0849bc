"""
Marketplace error taxonomy.

Every failure the core can surface is one of these types. The HTTP layer maps
them to status codes via ``status_code``; library callers catch them directly.
"""


class MarketplaceError(Exception):
    """Base class for all marketplace errors."""
    status_code = 400
    code = "marketplace_error"

    def __init__(self, detail: str = ""):
        super().__init__(detail)
        self.detail = detail or self.__class__.__doc__ or self.code


class ValidationError(MarketplaceError):
    """Malformed input."""
    status_code = 422
    code = "validation_error"


class Unauthenticated(MarketplaceError):
    """No authenticated principal."""
    status_code = 401
    code = "unauthenticated"


class Forbidden(MarketplaceError):
    """Principal is not allowed to perform this operation."""
    status_code = 403
    code = "forbidden"


class NotFound(MarketplaceError):
    """Referenced entity does not exist."""
    status_code = 404
    code = "not_found"


class InvalidTransition(MarketplaceError):
    """Requested state change is not allowed from the current state."""
    status_code = 409
    code = "invalid_transition"


class InvoiceLocked(InvalidTransition):
    """Invoice is no longer open for offers."""
    code = "invoice_locked"


class DealNotNegotiating(InvalidTransition):
    """Messages can only be sent while the deal is negotiating."""
    code = "deal_not_negotiating"


class DuplicateOffer(MarketplaceError):
    """Buyer already has an active offer on this invoice."""
    status_code = 409
    code = "duplicate_offer"


class ConflictError(MarketplaceError):
    """Optimistic-concurrency precondition failed at the store."""
    status_code = 409
    code = "conflict"


class StoreUnavailable(MarketplaceError):
    """Record store could not be reached. Retry later."""
    status_code = 503
    code = "store_unavailable"
