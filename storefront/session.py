"""Current customer lookup for checkout (session service boundary)."""
from typing import Any, Optional

import httpx
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from storefront.config import get_settings
from storefront.logging import get_logger

logger = get_logger(__name__)


class Customer(BaseModel):
    """Who is checking out and where the order ships."""
    model_config = ConfigDict(extra="ignore", frozen=True)

    username: Optional[str] = Field(None, validation_alias=AliasChoices("username", "Username", "name"))
    address: Optional[str] = Field(None, validation_alias=AliasChoices("address", "Address"))
    phone_number: Optional[str] = Field(None, validation_alias=AliasChoices("phoneNumber", "phone_number", "phone"))
    role: Optional[str] = Field(None, validation_alias=AliasChoices("userRole", "role"))

    @classmethod
    def from_payload(cls, payload: Any) -> "Customer":
        """
        Build from a /users/me response.

        The user record may be nested under "user" with role and phone
        beside it: {"user": {...}, "userRole": "...", "phoneNumber": "..."}.
        """
        if not isinstance(payload, dict):
            return cls()
        user = payload.get("user")
        data = dict(user) if isinstance(user, dict) else dict(payload)
        for field in ("userRole", "role", "phoneNumber", "phone_number"):
            if field in payload and field not in data:
                data[field] = payload[field]
        return cls.model_validate(data)

    def to_dict(self) -> dict:
        return self.model_dump()


class SessionClient:
    """Reads the signed-in customer from the user service."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.base_url = (base_url or settings.cart_api_url).rstrip("/")
        self.token = token
        self.timeout = settings.cart_api_timeout
        self._transport = transport

    async def current_customer(self) -> Optional[Customer]:
        """
        Get the current customer.

        Returns:
            Customer, or None when the service reports no signed-in user

        Raises:
            httpx.HTTPError: On transport failures
        """
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        async with httpx.AsyncClient(
            base_url=self.base_url, timeout=self.timeout, transport=self._transport
        ) as client:
            response = await client.get("/users/me", headers=headers)

        if not response.is_success:
            logger.warning(f"No current user found (HTTP {response.status_code})")
            return None
        return Customer.from_payload(response.json())
