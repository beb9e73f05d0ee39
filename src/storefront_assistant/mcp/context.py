"""Ambient storefront context injected into tool arguments."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from storefront_assistant.telemetry import get_logger

log = get_logger(__name__)

_CART_TOOL_MARKERS = ("add-to-cart", "place-order", "cart", "checkout")


def is_cart_operation(tool_name: str) -> bool:
    """Whether a tool acts on the customer's cart and needs ``cartId``."""
    lowered = tool_name.lower()
    return any(marker in lowered for marker in _CART_TOOL_MARKERS)


@dataclass
class SiteContext:
    """Values the storefront knows that the model must not have to supply.

    Attributes:
        base_site_id: Site/tenant identifier.
        base_site_url: Public URL of the site.
        access_token: Customer credential, if signed in.
        cart_id: Static active cart id, used when ``cart_lookup`` is not set.
        cart_lookup: Coroutine returning the active cart id; only awaited for cart tools.
    """

    base_site_id: str | None = None
    base_site_url: str | None = None
    access_token: str | None = None
    cart_id: str | None = None
    cart_lookup: Callable[[], Awaitable[str | None]] | None = None

    async def active_cart_id(self) -> str | None:
        if self.cart_lookup is not None:
            return await self.cart_lookup()
        return self.cart_id

    async def enrich_arguments(self, tool_name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        """Return a copy of ``arguments`` with the ambient values filled in.

        Context values take precedence over model-supplied ones.
        """
        enriched = dict(arguments)
        if self.base_site_id:
            enriched["baseSiteId"] = self.base_site_id
        if self.base_site_url:
            enriched["baseSiteUrl"] = self.base_site_url
        if self.access_token:
            enriched["access_token"] = self.access_token

        if is_cart_operation(tool_name):
            cart_id = await self.active_cart_id()
            if cart_id:
                enriched["cartId"] = cart_id
            else:
                log.debug("no_active_cart", tool=tool_name)

        return enriched
