"""
Cart Errors

Message constants and the exception hierarchy shared by the cart engine.
Validation errors are raised before any network call; sync errors are
line-scoped and reported as events rather than aborting the cart.
"""
from typing import Iterable, Optional

# Validation errors
ERROR_INVALID_PRICE = "Unit price must be a non-negative amount"
ERROR_INVALID_QUANTITY = "Quantity must be a positive integer"
ERROR_INVALID_STOCK_COUNT = "Stock count must be a non-negative integer"
ERROR_STOCK_EXCEEDED = "Requested quantity exceeds available stock"
ERROR_LINE_NOT_FOUND = "Line is not in the cart"

# Sync errors
ERROR_REMOTE_UNAVAILABLE = "Cart service unavailable"
ERROR_RETRIES_EXHAUSTED = "Cart service did not respond after retries"
ERROR_MALFORMED_PAYLOAD = "Cart service returned an unreadable response"

# Checkout errors
ERROR_EMPTY_CART = "Cart is empty"
ERROR_PENDING_OPERATIONS = "Cart has unsettled changes"


class CartError(Exception):
    """Base class for cart engine errors."""


class InvalidLineItem(CartError, ValueError):
    """Malformed price or quantity, rejected locally."""


class InvalidQuantity(CartError, ValueError):
    """Quantity below 1 or not an integer."""


class StockExceeded(InvalidQuantity):
    """Quantity above a known stock count."""

    def __init__(self, key, requested: int, available: int):
        self.key = key
        self.requested = requested
        self.available = available
        super().__init__(f"{ERROR_STOCK_EXCEEDED}: requested {requested}, available {available}")


class LineNotFound(CartError, KeyError):
    """Mutation targets a line that is not in the cart."""

    def __init__(self, key):
        self.key = key
        super().__init__(key)

    def __str__(self) -> str:
        return f"{ERROR_LINE_NOT_FOUND}: {self.key}"


class SyncError(CartError):
    """Remote cart call failed for one line."""

    def __init__(self, reason: str, key=None, status_code: Optional[int] = None):
        self.reason = reason
        self.key = key
        self.status_code = status_code
        super().__init__(reason)

    def for_key(self, key) -> "SyncError":
        """Attach the line key if the transport layer did not know it."""
        if self.key is None:
            self.key = key
        return self


class TransientSyncError(SyncError):
    """Network error or timeout; retried automatically."""


class DefiniteSyncError(SyncError):
    """Rejected by the server (stock, availability); rolled back, never retried."""


class CheckoutError(CartError):
    """Checkout cannot proceed."""


class EmptyCartError(CheckoutError):
    def __init__(self):
        super().__init__(ERROR_EMPTY_CART)


class PendingOperationsError(CheckoutError):
    """Some lines still have in-flight remote calls."""

    def __init__(self, keys: Iterable):
        self.keys = tuple(keys)
        super().__init__(f"{ERROR_PENDING_OPERATIONS}: {len(self.keys)} line(s) pending")
