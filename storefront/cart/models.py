"""Cart models with Decimal-based pricing."""
from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Iterator, NamedTuple, Optional, Tuple

from storefront.errors import (
    ERROR_INVALID_PRICE,
    ERROR_INVALID_QUANTITY,
    ERROR_INVALID_STOCK_COUNT,
    InvalidLineItem,
)
from storefront.money import parse_decimal


class StockStatus(str, Enum):
    """Availability of a product variant."""
    IN_STOCK = "in_stock"
    LOW_STOCK = "low_stock"
    OUT_OF_STOCK = "out_of_stock"
    EXPIRED = "expired"


class LineState(str, Enum):
    """
    Sync state of a cart line.

    Flow:
        settled -> pending -> settled
                           -> retrying -> settled / rolled back
    A rolled-back line is restored to its captured value and is settled again.
    """
    SETTLED = "settled"
    PENDING = "pending"
    RETRYING = "retrying"


class LineKey(NamedTuple):
    """Identity of a cart line."""
    product_id: str
    variant_key: str = ""

    def __str__(self) -> str:
        if not self.variant_key:
            return self.product_id
        return f"{self.product_id}:{self.variant_key}"


def make_variant_key(color: Optional[str] = None, size: Optional[str] = None) -> str:
    """
    Build the canonical variant key for a color/size combination.

    Example: make_variant_key("White", "One Size") -> "white/one size"
    """
    parts = [p.strip().lower() for p in (color, size) if p and p.strip()]
    return "/".join(parts)


def stock_label(status: StockStatus, count: int = 0) -> str:
    """Short availability text for a line."""
    if status == StockStatus.EXPIRED:
        return "Expired"
    if status == StockStatus.IN_STOCK:
        return f"In Stock ({count})"
    if status == StockStatus.LOW_STOCK:
        return f"Low Stock ({count})"
    return "Out of Stock"


def _check_quantity(quantity) -> None:
    # bool is an int subclass; True is not a quantity
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise InvalidLineItem(f"{ERROR_INVALID_QUANTITY}: {quantity!r}")


def validate_line_item(item: "LineItem") -> None:
    """
    Check price and quantity of a line item.

    Raises:
        InvalidLineItem: If the price is negative or not finite, or the
            quantity is not a positive integer
    """
    _check_quantity(item.quantity)
    price = item.unit_price
    if not isinstance(price, Decimal) or not price.is_finite() or price < 0:
        raise InvalidLineItem(f"{ERROR_INVALID_PRICE}: {price!r}")


@dataclass(frozen=True)
class LineItem:
    """Single product variant in the cart."""
    product_id: str
    quantity: int
    unit_price: Decimal
    variant_key: str = ""
    stock_status: StockStatus = StockStatus.IN_STOCK
    stock_count: int = 0
    expiry_date: Optional[date] = None
    name: str = ""
    color: Optional[str] = None
    size: Optional[str] = None
    image_url: Optional[str] = None

    def __post_init__(self):
        if not self.product_id or not isinstance(self.product_id, str):
            raise InvalidLineItem("product_id must be a non-empty string")
        try:
            price = parse_decimal(self.unit_price)
        except ValueError:
            raise InvalidLineItem(f"{ERROR_INVALID_PRICE}: {self.unit_price!r}") from None
        object.__setattr__(self, "unit_price", price)
        object.__setattr__(self, "stock_status", StockStatus(self.stock_status))
        count = self.stock_count
        if isinstance(count, bool) or not isinstance(count, int) or count < 0:
            raise InvalidLineItem(f"{ERROR_INVALID_STOCK_COUNT}: {count!r}")
        validate_line_item(self)

    @property
    def key(self) -> LineKey:
        return LineKey(self.product_id, self.variant_key)

    @property
    def line_total(self) -> Decimal:
        """Exact price for all units (no rounding)."""
        return self.unit_price * self.quantity

    @property
    def stock_known(self) -> bool:
        """Whether stock_count is meaningful for this line."""
        return self.stock_status in (StockStatus.IN_STOCK, StockStatus.LOW_STOCK)

    def effective_status(self, today: Optional[date] = None) -> StockStatus:
        """Stock status, with lines past their expiry date reported as expired."""
        today = today or date.today()
        if self.expiry_date is not None and self.expiry_date < today:
            return StockStatus.EXPIRED
        return self.stock_status

    def exceeds_stock(self, quantity: int) -> bool:
        return self.stock_known and quantity > self.stock_count

    def with_quantity(self, quantity: int) -> "LineItem":
        return replace(self, quantity=quantity)

    def to_dict(self) -> dict:
        """Convert to a JSON-able dictionary."""
        return {
            "product_id": self.product_id,
            "variant_key": self.variant_key,
            "name": self.name,
            "quantity": self.quantity,
            "unit_price": str(self.unit_price),
            "stock_status": self.stock_status.value,
            "stock_count": self.stock_count,
            "expiry_date": self.expiry_date.isoformat() if self.expiry_date else None,
            "color": self.color,
            "size": self.size,
            "image_url": self.image_url,
        }


@dataclass(frozen=True)
class SnapshotLine:
    """A line item together with its sync state."""
    item: LineItem
    state: LineState = LineState.SETTLED

    @property
    def key(self) -> LineKey:
        return self.item.key

    @property
    def pending(self) -> bool:
        return self.state != LineState.SETTLED


@dataclass(frozen=True)
class CartSnapshot:
    """Read-only view of the cart at one point in time."""
    lines: Tuple[SnapshotLine, ...] = field(default_factory=tuple)
    # Keys with in-flight remote calls, including lines removed locally
    unsettled: Tuple[LineKey, ...] = field(default_factory=tuple)

    def __len__(self) -> int:
        return len(self.lines)

    def __iter__(self) -> Iterator[SnapshotLine]:
        return iter(self.lines)

    @property
    def items(self) -> Tuple[LineItem, ...]:
        return tuple(line.item for line in self.lines)

    @property
    def keys(self) -> Tuple[LineKey, ...]:
        return tuple(line.key for line in self.lines)

    @property
    def is_empty(self) -> bool:
        return not self.lines

    @property
    def item_count(self) -> int:
        """Total number of units in the cart."""
        return sum(line.item.quantity for line in self.lines)

    @property
    def has_pending(self) -> bool:
        return bool(self.pending_keys)

    @property
    def pending_keys(self) -> Tuple[LineKey, ...]:
        keys = [line.key for line in self.lines if line.pending]
        keys.extend(key for key in self.unsettled if key not in keys)
        return tuple(keys)

    def line(self, key: LineKey) -> Optional[SnapshotLine]:
        for line in self.lines:
            if line.key == key:
                return line
        return None

    def get(self, key: LineKey) -> Optional[LineItem]:
        line = self.line(key)
        return line.item if line else None

    def is_pending(self, key: LineKey) -> bool:
        line = self.line(key)
        return bool(line and line.pending)

    def search(self, query: str) -> Tuple[SnapshotLine, ...]:
        """Lines whose name, color or size contains the query (case-insensitive)."""
        needle = query.strip().lower()
        if not needle:
            return self.lines
        return tuple(
            line for line in self.lines
            if any(
                needle in (value or "").lower()
                for value in (line.item.name, line.item.color, line.item.size)
            )
        )
