"""
Remote cart persistence.

Defines the contract the sync controller talks to and an httpx
implementation of it. Upstream payloads use several spellings for the same
field; they are normalized here into strict LineItems so nothing past this
module sees the variance.
"""
from abc import ABC, abstractmethod
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from storefront.cart.models import LineItem, LineKey, StockStatus, make_variant_key
from storefront.config import get_settings
from storefront.errors import (
    ERROR_MALFORMED_PAYLOAD,
    ERROR_REMOTE_UNAVAILABLE,
    CartError,
    DefiniteSyncError,
    TransientSyncError,
)
from storefront.logging import get_logger, sanitize_id_for_logging

logger = get_logger(__name__)

# Statuses worth retrying besides 5xx
TRANSIENT_STATUS_CODES = frozenset({408, 425, 429})

# Shorthand stock statuses seen in catalog payloads
STOCK_STATUS_ALIASES: Dict[str, StockStatus] = {
    "in": StockStatus.IN_STOCK,
    "in_stock": StockStatus.IN_STOCK,
    "instock": StockStatus.IN_STOCK,
    "low": StockStatus.LOW_STOCK,
    "low_stock": StockStatus.LOW_STOCK,
    "out": StockStatus.OUT_OF_STOCK,
    "out_of_stock": StockStatus.OUT_OF_STOCK,
    "outofstock": StockStatus.OUT_OF_STOCK,
    "expired": StockStatus.EXPIRED,
}


class RemoteCartClient(ABC):
    """
    Contract of the remote cart service.

    Every call may raise TransientSyncError (network, timeout) or
    DefiniteSyncError (rejected by the server). add and update_quantity
    take the absolute quantity and return the server-confirmed line; add
    creates the line or sets its quantity if it already exists.
    """

    @abstractmethod
    async def list(self) -> List[LineItem]:
        ...

    @abstractmethod
    async def add(self, key: LineKey, quantity: int) -> LineItem:
        ...

    @abstractmethod
    async def update_quantity(self, key: LineKey, quantity: int) -> LineItem:
        ...

    @abstractmethod
    async def remove(self, key: LineKey) -> None:
        ...


# ============================================
# Payload normalization
# ============================================

class RemoteLineItem(BaseModel):
    """Server representation of a cart line, any known spelling."""
    model_config = ConfigDict(extra="ignore")

    product_id: str = Field(validation_alias=AliasChoices(
        "productId", "product_id", "productIdentifier", "barcode", "id"
    ))
    variant_key: Optional[str] = Field(None, validation_alias=AliasChoices(
        "variantKey", "variant_key", "variant"
    ))
    quantity: int = Field(validation_alias=AliasChoices("quantity", "qty"))
    unit_price: Decimal = Field(validation_alias=AliasChoices(
        "unitPrice", "unit_price", "price"
    ))
    stock_status: StockStatus = Field(StockStatus.IN_STOCK, validation_alias=AliasChoices(
        "stockStatus", "stock_status", "status"
    ))
    stock_count: int = Field(0, validation_alias=AliasChoices("stockCount", "stock_count", "stock"))
    expiry_date: Optional[date] = Field(None, validation_alias=AliasChoices(
        "expiryDate", "expiry_date"
    ))
    name: str = Field("", validation_alias=AliasChoices("name", "title", "productName", "product_name"))
    color: Optional[str] = None
    size: Optional[str] = None
    image_url: Optional[str] = Field(None, validation_alias=AliasChoices(
        "imageUrl", "image_url", "thumbnail"
    ))

    @field_validator("product_id", mode="before")
    @classmethod
    def coerce_product_id(cls, v):
        return str(v) if isinstance(v, int) and not isinstance(v, bool) else v

    @field_validator("stock_status", mode="before")
    @classmethod
    def normalize_stock_status(cls, v):
        if v is None:
            return StockStatus.IN_STOCK
        if isinstance(v, str):
            return STOCK_STATUS_ALIASES.get(v.strip().lower().replace("-", "_"), v)
        return v

    @field_validator("stock_count", mode="before")
    @classmethod
    def default_stock_count(cls, v):
        return 0 if v is None else v

    def to_line_item(self) -> LineItem:
        variant = self.variant_key
        if variant is None:
            variant = make_variant_key(self.color, self.size)
        return LineItem(
            product_id=self.product_id,
            variant_key=variant,
            quantity=self.quantity,
            unit_price=self.unit_price,
            stock_status=self.stock_status,
            stock_count=self.stock_count,
            expiry_date=self.expiry_date,
            name=self.name,
            color=self.color,
            size=self.size,
            image_url=self.image_url,
        )


def parse_line_item(payload: Any, key: Optional[LineKey] = None) -> LineItem:
    """
    Normalize a single-line response (bare, or wrapped in "item"/"data").

    Raises:
        DefiniteSyncError: If the payload is not a readable line
    """
    if isinstance(payload, dict):
        for wrapper in ("item", "data"):
            if isinstance(payload.get(wrapper), dict):
                payload = payload[wrapper]
                break
    try:
        return RemoteLineItem.model_validate(payload).to_line_item()
    except (ValidationError, CartError) as e:
        logger.warning(f"Malformed cart line payload for {sanitize_id_for_logging(key)}: {e}")
        raise DefiniteSyncError(ERROR_MALFORMED_PAYLOAD, key=key) from e


def parse_line_items(payload: Any) -> List[LineItem]:
    """Normalize a listing response (bare list, or under "items"/"data"/"cart")."""
    if isinstance(payload, dict):
        cart = payload.get("cart")
        if isinstance(cart, dict):
            payload = cart
        for wrapper in ("items", "data"):
            if isinstance(payload.get(wrapper), list):
                payload = payload[wrapper]
                break
    if not isinstance(payload, list):
        raise DefiniteSyncError(ERROR_MALFORMED_PAYLOAD)
    return [parse_line_item(entry) for entry in payload]


def _error_reason(response: httpx.Response) -> str:
    """Extract the server's reason from an error payload."""
    try:
        data = response.json()
    except ValueError:
        return response.text.strip() or f"HTTP {response.status_code}"
    if isinstance(data, dict):
        for field in ("error", "message", "detail"):
            value = data.get(field)
            if isinstance(value, str) and value:
                return value
            if isinstance(value, dict) and value.get("message"):
                return str(value["message"])
    return f"HTTP {response.status_code}"


# ============================================
# HTTP client
# ============================================

class HttpCartClient(RemoteCartClient):
    """
    Cart service over HTTP.

    GET/POST /cart/items, PUT/DELETE /cart/items/{product_id}?variant=...
    Requests carry the session token as a bearer credential.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.base_url = (base_url or settings.cart_api_url).rstrip("/")
        self.token = token
        self.timeout = timeout if timeout is not None else settings.cart_api_timeout
        self._transport = transport
        self._http_client: Optional[httpx.AsyncClient] = None

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Lazily create the shared httpx client."""
        if self._http_client is None:
            headers = {"Accept": "application/json"}
            if self.token:
                headers["Authorization"] = f"Bearer {self.token}"
            self._http_client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                timeout=httpx.Timeout(self.timeout, connect=min(self.timeout, 5.0)),
                transport=self._transport,
            )
        return self._http_client

    async def aclose(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def __aenter__(self) -> "HttpCartClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    @staticmethod
    def _item_path(key: LineKey) -> str:
        return f"/cart/items/{quote(key.product_id, safe='')}"

    async def _request(self, method: str, path: str, key: Optional[LineKey] = None, **kwargs) -> Any:
        client = await self._get_http_client()
        try:
            response = await client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning(f"Cart {method} {path} timed out for {sanitize_id_for_logging(key)}")
            raise TransientSyncError(f"{ERROR_REMOTE_UNAVAILABLE}: timeout", key=key) from e
        except httpx.TransportError as e:
            logger.warning(f"Cart {method} {path} failed for {sanitize_id_for_logging(key)}: {e}")
            raise TransientSyncError(f"{ERROR_REMOTE_UNAVAILABLE}: {e}", key=key) from e

        status = response.status_code
        if status >= 500 or status in TRANSIENT_STATUS_CODES:
            raise TransientSyncError(
                f"{ERROR_REMOTE_UNAVAILABLE}: HTTP {status}", key=key, status_code=status
            )
        if status >= 400:
            reason = _error_reason(response)
            logger.info(f"Cart {method} {path} rejected ({status}): {reason}")
            raise DefiniteSyncError(reason, key=key, status_code=status)

        if status == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise DefiniteSyncError(ERROR_MALFORMED_PAYLOAD, key=key, status_code=status) from e

    async def list(self) -> List[LineItem]:
        payload = await self._request("GET", "/cart/items")
        return parse_line_items(payload if payload is not None else [])

    async def add(self, key: LineKey, quantity: int) -> LineItem:
        body = {"productId": key.product_id, "variantKey": key.variant_key, "quantity": quantity}
        payload = await self._request("POST", "/cart/items", key=key, json=body)
        return parse_line_item(payload, key)

    async def update_quantity(self, key: LineKey, quantity: int) -> LineItem:
        payload = await self._request(
            "PUT",
            self._item_path(key),
            key=key,
            params={"variant": key.variant_key},
            json={"quantity": quantity},
        )
        return parse_line_item(payload, key)

    async def remove(self, key: LineKey) -> None:
        try:
            await self._request(
                "DELETE", self._item_path(key), key=key, params={"variant": key.variant_key}
            )
        except DefiniteSyncError as e:
            # Already gone on the server
            if e.status_code != 404:
                raise
