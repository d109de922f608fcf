"""
Checkout Assembler

Freezes a settled cart snapshot, the chosen shipping method and an
optional note into an OrderDraft for the payment step.
"""
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Tuple

from storefront.cart.models import CartSnapshot, LineItem
from storefront.cart.pricing import (
    InclusionPredicate,
    PricingBreakdown,
    PricingRules,
    compute,
    include_all,
)
from storefront.config import Settings, get_settings
from storefront.errors import EmptyCartError, PendingOperationsError
from storefront.logging import get_logger
from storefront.money import parse_decimal, round_money
from storefront.session import Customer

logger = get_logger(__name__)


@dataclass(frozen=True)
class ShippingMethod:
    """Delivery option offered at checkout."""
    id: str
    name: str
    cost: Decimal
    estimate: str = ""

    def __post_init__(self):
        cost = parse_decimal(self.cost)
        if cost < 0:
            raise ValueError("Shipping cost must not be negative")
        object.__setattr__(self, "cost", cost)

    def to_dict(self, currency: str = "USD") -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "cost": str(round_money(self.cost, currency)),
            "estimate": self.estimate,
        }


def default_shipping_methods(settings: Optional[Settings] = None) -> Tuple[ShippingMethod, ...]:
    """Standard and express delivery priced from settings."""
    settings = settings or get_settings()
    return (
        ShippingMethod("standard", "Standard", settings.shipping_fee, "3-5 days"),
        ShippingMethod("fast", "Express (Fast)", settings.express_shipping_fee, "2-3 days"),
    )


@dataclass(frozen=True)
class OrderDraft:
    """Immutable order handed to the payment step."""
    items: Tuple[LineItem, ...]
    shipping_method: ShippingMethod
    pricing: PricingBreakdown
    note: Optional[str] = None
    customer: Optional[Customer] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def total(self) -> Decimal:
        return self.pricing.total

    def to_payload(self) -> dict:
        """JSON-able order data for the payment step. Amounts are rounded here."""
        currency = self.pricing.currency
        return {
            "id": self.id,
            "items": [item.to_dict() for item in self.items],
            "pricing": self.pricing.to_dict(),
            "total": str(round_money(self.pricing.total, currency)),
            "shipping_method": self.shipping_method.to_dict(currency),
            "note": self.note,
            "user": self.customer.to_dict() if self.customer else None,
            "created_at": self.created_at.isoformat(),
        }


class CheckoutAssembler:
    """
    Builds OrderDrafts from cart snapshots.

    Usage:
        assembler = CheckoutAssembler()
        draft = assembler.assemble(controller.snapshot, method, note="Leave at door")
    """

    def __init__(
        self,
        rules: Optional[PricingRules] = None,
        include: InclusionPredicate = include_all,
    ):
        self.rules = rules or PricingRules.from_settings()
        self.include = include

    def assemble(
        self,
        snapshot: CartSnapshot,
        shipping_method: ShippingMethod,
        note: Optional[str] = None,
        customer: Optional[Customer] = None,
    ) -> OrderDraft:
        """
        Freeze a snapshot into an order draft.

        Raises:
            EmptyCartError: If the snapshot has no lines
            PendingOperationsError: If any key still has an in-flight remote call,
                including a removal whose line is no longer in the snapshot
        """
        if snapshot.is_empty:
            raise EmptyCartError()
        if snapshot.has_pending:
            raise PendingOperationsError(snapshot.pending_keys)

        # The chosen method decides shipping; tax and currency come from the rules
        rules = replace(self.rules, shipping_fee=shipping_method.cost)
        items = snapshot.items
        pricing = compute(items, rules, self.include)

        note = note.strip() if note else None
        draft = OrderDraft(
            items=items,
            shipping_method=shipping_method,
            pricing=pricing,
            note=note or None,
            customer=customer,
        )
        logger.info(
            f"Order draft {draft.id[:8]} assembled: {len(items)} line(s), "
            f"total {pricing.rounded().total} {pricing.currency}"
        )
        return draft
