"""
Stripe adapter for checkout sessions and the product/price catalog.

Wraps the SDK's StripeClient, using its *_async methods over the SDK's httpx
client, and hands plain dicts back to the services. One instance is built in
the app lifespan and injected into request handlers (see deps.get_stripe).

SDK errors are mapped onto exceptions.PaymentProviderError and its
subclasses, so services never import stripe.
"""
import logging
from typing import Any, Optional

import stripe

from exceptions import PaymentProviderError, PaymentProviderTimeout, ResourceMissingError

logger = logging.getLogger(__name__)

_PAGE_SIZE = 100


def _plain(obj: Any) -> dict:
    if isinstance(obj, stripe.StripeObject):
        return obj.to_dict()
    return dict(obj)


def _without_none(params: dict) -> dict:
    return {k: v for k, v in params.items() if v is not None}


def translate_error(e: stripe.StripeError, action: str) -> PaymentProviderError:
    """Map an SDK exception onto the provider exceptions the services handle."""
    message = e.user_message or str(e) or f"Stripe {action} failed"
    if isinstance(e, stripe.APIConnectionError):
        logger.warning(f"Stripe {action} could not complete: {message}")
        return PaymentProviderTimeout(message, status_code=e.http_status, code=e.code)
    if isinstance(e, stripe.InvalidRequestError) and (e.code == "resource_missing" or e.http_status == 404):
        return ResourceMissingError(message, status_code=e.http_status, code=e.code)
    logger.warning(f"Stripe {action} failed ({e.http_status}): {message}")
    return PaymentProviderError(message, status_code=e.http_status, code=e.code)


class StripeClient:
    """The calls the order core makes against Stripe, and nothing else."""

    def __init__(self, client: stripe.StripeClient, http_client: Optional[stripe.HTTPXClient] = None):
        self._client = client
        self._http_client = http_client

    @classmethod
    def from_settings(cls, settings) -> "StripeClient":
        http_client = stripe.HTTPXClient(timeout=settings.stripe_timeout_seconds)
        client = stripe.StripeClient(
            settings.stripe_secret_key,
            base_addresses={"api": settings.stripe_api_base},
            max_network_retries=settings.stripe_max_network_retries,
            http_client=http_client,
        )
        return cls(client, http_client)

    async def aclose(self) -> None:
        if self._http_client is not None:
            await self._http_client.close_async()

    async def _call(self, action: str, request) -> dict:
        try:
            return _plain(await request)
        except stripe.StripeError as e:
            raise translate_error(e, action) from e

    async def _list_all(self, action: str, service, params: dict) -> list[dict]:
        """Collect every page of a list call."""
        try:
            page = await service.list_async(params={**_without_none(params), "limit": _PAGE_SIZE})
            return [_plain(obj) async for obj in page.auto_paging_iter()]
        except stripe.StripeError as e:
            raise translate_error(e, action) from e

    # ── Checkout ────────────────────────────────────────────────────

    async def retrieve_session(self, session_id: str) -> dict:
        return await self._call(
            f"retrieve session {session_id}",
            self._client.v1.checkout.sessions.retrieve_async(session_id),
        )

    async def create_checkout_session(self, params: dict) -> dict:
        params = {**params, "metadata": _without_none(params.get("metadata") or {})}
        return await self._call(
            "create checkout session",
            self._client.v1.checkout.sessions.create_async(params=_without_none(params)),
        )

    async def create_coupon(self, *, percent_off: float, name: str) -> dict:
        return await self._call(
            "create coupon",
            self._client.v1.coupons.create_async(
                params={"percent_off": percent_off, "duration": "once", "name": name}
            ),
        )

    # ── Catalog ─────────────────────────────────────────────────────

    async def create_product(self, fields: dict) -> dict:
        return await self._call("create product", self._client.v1.products.create_async(params=fields))

    async def update_product(self, product_id: str, fields: dict) -> dict:
        return await self._call(
            f"update product {product_id}",
            self._client.v1.products.update_async(product_id, params=fields),
        )

    async def delete_product(self, product_id: str) -> dict:
        return await self._call(
            f"delete product {product_id}",
            self._client.v1.products.delete_async(product_id),
        )

    async def list_products(self, *, active: Optional[bool] = None) -> list[dict]:
        return await self._list_all("list products", self._client.v1.products, {"active": active})

    async def create_price(
        self,
        *,
        product_id: str,
        unit_amount: int,
        currency: str,
        metadata: Optional[dict] = None,
    ) -> dict:
        return await self._call(
            f"create price on {product_id}",
            self._client.v1.prices.create_async(
                params={
                    "product": product_id,
                    "unit_amount": unit_amount,
                    "currency": currency,
                    "metadata": metadata or {},
                }
            ),
        )

    async def retrieve_price(self, price_id: str) -> dict:
        return await self._call(f"retrieve price {price_id}", self._client.v1.prices.retrieve_async(price_id))

    async def update_price(self, price_id: str, *, active: bool) -> dict:
        return await self._call(
            f"update price {price_id}",
            self._client.v1.prices.update_async(price_id, params={"active": active}),
        )

    async def list_prices(self, *, product_id: str, active: Optional[bool] = None) -> list[dict]:
        return await self._list_all(
            f"list prices of {product_id}",
            self._client.v1.prices,
            {"product": product_id, "active": active},
        )
