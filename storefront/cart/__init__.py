"""Cart package: models, store, sync controller, pricing and checkout."""
from .checkout import CheckoutAssembler, OrderDraft, ShippingMethod, default_shipping_methods
from .models import (
    CartSnapshot,
    LineItem,
    LineKey,
    LineState,
    SnapshotLine,
    StockStatus,
    make_variant_key,
    stock_label,
)
from .pricing import (
    PricingBreakdown,
    PricingRules,
    compute,
    exclude_unavailable,
    exclude_unavailable_on,
    include_all,
)
from .remote import HttpCartClient, RemoteCartClient
from .store import CartStore
from .sync import (
    CartSyncController,
    MutationKind,
    NoticeKind,
    PendingMutation,
    SyncNotice,
    SyncOutcome,
    SyncResult,
)

__all__ = [
    "CartSnapshot",
    "CartStore",
    "CartSyncController",
    "CheckoutAssembler",
    "HttpCartClient",
    "LineItem",
    "LineKey",
    "LineState",
    "MutationKind",
    "NoticeKind",
    "OrderDraft",
    "PendingMutation",
    "PricingBreakdown",
    "PricingRules",
    "RemoteCartClient",
    "ShippingMethod",
    "SnapshotLine",
    "StockStatus",
    "SyncNotice",
    "SyncOutcome",
    "SyncResult",
    "compute",
    "default_shipping_methods",
    "exclude_unavailable",
    "exclude_unavailable_on",
    "include_all",
    "make_variant_key",
    "stock_label",
]
