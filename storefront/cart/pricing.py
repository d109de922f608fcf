"""
Cart pricing.

Pure functions deriving subtotal, shipping, tax and total from line items.
Which lines count toward the subtotal is an explicit predicate, so the
stock policy stays visible at the call site.
"""
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Callable, Iterable, Optional

from storefront.cart.models import LineItem, StockStatus, validate_line_item
from storefront.config import Settings, get_settings
from storefront.money import format_money, minor_unit, parse_decimal, round_money

InclusionPredicate = Callable[[LineItem], bool]


def include_all(item: LineItem) -> bool:
    """Default policy: every line is charged, out-of-stock ones included."""
    return True


def exclude_unavailable(item: LineItem, today: Optional[date] = None) -> bool:
    """
    Alternative policy: skip out-of-stock and expired lines.

    Without ``today`` expiry is judged against the system clock, so the same
    cart can price differently on another day. Use exclude_unavailable_on to
    pin the date.
    """
    return item.effective_status(today) not in (StockStatus.OUT_OF_STOCK, StockStatus.EXPIRED)


def exclude_unavailable_on(today: date) -> InclusionPredicate:
    """exclude_unavailable with expiry judged as of a fixed date."""
    return lambda item: exclude_unavailable(item, today)


@dataclass(frozen=True)
class PricingRules:
    """Shipping and tax configuration."""
    shipping_fee: Decimal = Decimal("0")
    tax_rate: Decimal = Decimal("0")
    currency: str = "USD"
    free_shipping_threshold: Optional[Decimal] = None

    def __post_init__(self):
        object.__setattr__(self, "shipping_fee", parse_decimal(self.shipping_fee))
        object.__setattr__(self, "tax_rate", parse_decimal(self.tax_rate))
        object.__setattr__(self, "currency", self.currency.upper())
        if self.free_shipping_threshold is not None:
            object.__setattr__(
                self, "free_shipping_threshold", parse_decimal(self.free_shipping_threshold)
            )
        if self.shipping_fee < 0:
            raise ValueError("shipping_fee must not be negative")
        if self.tax_rate < 0:
            raise ValueError("tax_rate must not be negative")

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "PricingRules":
        settings = settings or get_settings()
        return cls(
            shipping_fee=settings.shipping_fee,
            tax_rate=settings.tax_rate,
            currency=settings.currency,
            free_shipping_threshold=settings.free_shipping_threshold,
        )


@dataclass(frozen=True)
class PricingBreakdown:
    """Price summary of a cart. Values are exact; round only for display."""
    subtotal: Decimal
    shipping_fee: Decimal
    tax: Decimal
    total: Decimal
    currency: str = "USD"

    def rounded(self) -> "PricingBreakdown":
        return PricingBreakdown(
            subtotal=round_money(self.subtotal, self.currency),
            shipping_fee=round_money(self.shipping_fee, self.currency),
            tax=round_money(self.tax, self.currency),
            total=round_money(self.total, self.currency),
            currency=self.currency,
        )

    def to_dict(self) -> dict:
        rounded = self.rounded()
        return {
            "subtotal": str(rounded.subtotal),
            "shipping_fee": str(rounded.shipping_fee),
            "tax": str(rounded.tax),
            "total": str(rounded.total),
            "currency": self.currency,
        }

    def format(self) -> dict:
        """Display strings for the order summary."""
        return {
            "subtotal": format_money(self.subtotal, self.currency),
            "shipping_fee": format_money(self.shipping_fee, self.currency),
            "tax": format_money(self.tax, self.currency),
            "total": format_money(self.total, self.currency),
        }


def _shipping_for(subtotal: Decimal, has_items: bool, rules: PricingRules) -> Decimal:
    if not has_items:
        return Decimal("0")
    threshold = rules.free_shipping_threshold
    if threshold is not None and subtotal >= threshold:
        return Decimal("0")
    return rules.shipping_fee


def compute(
    items: Iterable[LineItem],
    rules: PricingRules,
    include: InclusionPredicate = include_all,
) -> PricingBreakdown:
    """
    Derive the price breakdown of a list of line items.

    Args:
        items: Line items in cart order
        rules: Shipping fee, tax rate and currency
        include: Which lines count toward the subtotal

    Returns:
        PricingBreakdown with total == subtotal + shipping + tax

    Raises:
        InvalidLineItem: If any item has a negative price or a non-integer quantity
    """
    subtotal = Decimal("0")
    has_items = False
    for item in items:
        validate_line_item(item)
        if not include(item):
            continue
        has_items = True
        subtotal += item.line_total

    shipping = _shipping_for(subtotal, has_items, rules)
    # Single rounding step for tax; subtotal and shipping stay exact
    tax = (subtotal * rules.tax_rate).quantize(minor_unit(rules.currency), rounding=ROUND_HALF_UP)

    return PricingBreakdown(
        subtotal=subtotal,
        shipping_fee=shipping,
        tax=tax,
        total=subtotal + shipping + tax,
        currency=rules.currency,
    )
