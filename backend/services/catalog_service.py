"""
Catalog service: keeps Stripe products/prices in step with local litters.

Each litter maps to one Stripe product and one active price per gender tier.
Stripe prices are immutable, so a sync creates new price objects, retires
the old ones, and the litter row is then pointed at the new ids.

This module is the only writer to the Stripe catalog besides the test-fixture
sweep.
"""
import asyncio
import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from db_models import Breeder, Litter, Puppy
from domain import constants as c
from domain.enums import Gender
from domain.errors import CatalogSyncFailedError, NotFoundError, PermissionDeniedError
from exceptions import PaymentProviderError, PaymentProviderTimeout, ResourceMissingError
from services import inventory_service

logger = logging.getLogger(__name__)

EDITABLE_LITTER_FIELDS = (
    "name",
    "breed",
    "description",
    "status",
    "price_per_male",
    "price_per_female",
    "quantity_discounts",
    "total_puppies",
)


@dataclass
class CatalogRefs:
    product_id: str
    male_price_id: str
    female_price_id: str

    def to_dict(self) -> dict:
        return asdict(self)


def product_fields(litter: Litter) -> dict:
    metadata = {
        c.TAG_APP_MANAGED: "true",
        c.TAG_ENTITY: c.ENTITY_LITTER,
        c.TAG_LITTER_ID: str(litter.id),
    }
    if litter.is_test_data:
        metadata[c.TAG_TEST_DATA] = "true"
    return {
        "name": litter.name,
        "description": litter.description or f"Litter of {litter.name}",
        "metadata": metadata,
    }


async def _retire_price(stripe, price_id: str) -> None:
    """Deactivate a price, retrying timeouts; a missing price counts as retired."""
    attempts = max(2, settings.catalog_retry_attempts)
    for attempt in range(1, attempts + 1):
        try:
            await stripe.update_price(price_id, active=False)
            return
        except ResourceMissingError:
            logger.info(f"Price {price_id} already gone; nothing to retire")
            return
        except PaymentProviderTimeout as e:
            if attempt == attempts:
                raise CatalogSyncFailedError(
                    f"Timed out retiring price {price_id} after {attempts} attempts",
                    details={"price_id": price_id},
                ) from e
            logger.warning(f"Timeout retiring price {price_id} (attempt {attempt}/{attempts}); retrying")
            await asyncio.sleep(settings.catalog_retry_backoff_seconds * attempt)
        except PaymentProviderError as e:
            raise CatalogSyncFailedError(
                f"Could not retire price {price_id}: {e.message}",
                details={"price_id": price_id},
            ) from e


async def _reactivate_price(stripe, price_id: str) -> None:
    try:
        await stripe.update_price(price_id, active=True)
    except PaymentProviderError as e:
        logger.error(f"Could not reactivate price {price_id} after a failed sync: {e.message}")


async def _discard_prices(stripe, price_ids: list[str]) -> None:
    """Retire prices created by a sync that is being abandoned."""
    for price_id in price_ids:
        try:
            await _retire_price(stripe, price_id)
        except CatalogSyncFailedError as e:
            logger.error(f"Could not retire abandoned price {price_id}: {e.message}")


async def sync_litter_catalog(stripe, litter: Litter) -> CatalogRefs:
    """
    Mirror a litter into Stripe and return the ids to store on it.

    Creates the product if the litter has none (or the recorded one was
    deleted on Stripe's side), otherwise updates its display fields. Then
    creates one fresh price per tier and only afterwards retires the
    recorded ones, so the product never drops to zero active prices. If
    anything fails, the new prices are retired and any old price already
    retired is reactivated before CatalogSyncFailedError propagates.
    """
    fields = product_fields(litter)
    try:
        product_id = litter.stripe_product_id
        if product_id:
            try:
                await stripe.update_product(product_id, fields)
            except ResourceMissingError:
                logger.warning(f"Stripe product {product_id} for litter {litter.id} is gone; recreating")
                product_id = None
        if not product_id:
            product = await stripe.create_product(fields)
            product_id = product["id"]
    except PaymentProviderError as e:
        raise CatalogSyncFailedError(
            f"Could not sync Stripe product for litter {litter.id}: {e.message}",
            details={"litter_id": litter.id},
        ) from e

    created: list[str] = []
    try:
        for gender, amount in (
            (Gender.MALE.value, litter.price_per_male),
            (Gender.FEMALE.value, litter.price_per_female),
        ):
            price = await stripe.create_price(
                product_id=product_id,
                unit_amount=amount,
                currency=settings.currency,
                metadata={c.TAG_GENDER: gender},
            )
            created.append(price["id"])
    except PaymentProviderError as e:
        await _discard_prices(stripe, created)
        raise CatalogSyncFailedError(
            f"Could not create Stripe prices for litter {litter.id}: {e.message}",
            details={"litter_id": litter.id, "product_id": product_id},
        ) from e

    # A recreated product has none of the old prices
    old_prices = []
    if product_id == litter.stripe_product_id:
        old_prices = [
            p for p in (litter.stripe_male_price_id, litter.stripe_female_price_id)
            if p and p not in created
        ]
    retired: list[str] = []
    try:
        for old_price in old_prices:
            await _retire_price(stripe, old_price)
            retired.append(old_price)
    except CatalogSyncFailedError:
        await _discard_prices(stripe, created)
        for old_price in retired:
            await _reactivate_price(stripe, old_price)
        raise

    refs = CatalogRefs(product_id=product_id, male_price_id=created[0], female_price_id=created[1])
    logger.info(f"Litter {litter.id} synced to Stripe: {refs}")
    return refs


async def _breeder_for(db: AsyncSession, user_id: int) -> Breeder:
    res = await db.execute(select(Breeder).where(Breeder.user_id == user_id))
    breeder = res.scalar_one_or_none()
    if not breeder:
        raise PermissionDeniedError("Breeder profile required.")
    return breeder


async def _owned_litter(db: AsyncSession, litter_id: int, caller_id: int) -> Litter:
    litter = await db.get(Litter, litter_id)
    if not litter:
        raise NotFoundError("Litter", str(litter_id))
    breeder = await _breeder_for(db, caller_id)
    if litter.breeder_id != breeder.id:
        raise PermissionDeniedError("You are not the breeder for this litter.")
    return litter


async def upsert_litter(
    db: AsyncSession,
    stripe,
    *,
    caller_id: int,
    fields: dict,
    litter_id: Optional[int] = None,
    new_puppies: Optional[list[dict]] = None,
    is_test_data: bool = False,
) -> Litter:
    """
    Create or edit a litter and re-sync its Stripe mirror.

    The caller commits. If the Stripe sync fails the local edit is rolled
    back and CatalogSyncFailedError propagates.
    """
    if litter_id is not None:
        litter = await _owned_litter(db, litter_id, caller_id)
    else:
        breeder = await _breeder_for(db, caller_id)
        litter = Litter(breeder_id=breeder.id, is_test_data=is_test_data)
        db.add(litter)

    for key in EDITABLE_LITTER_FIELDS:
        if fields.get(key) is not None:
            setattr(litter, key, fields[key])
    litter.updated_at = datetime.utcnow()

    try:
        await db.flush()
        if new_puppies:
            for puppy_fields in new_puppies:
                db.add(Puppy(
                    litter_id=litter.id,
                    name=puppy_fields.get("name"),
                    gender=puppy_fields["gender"],
                    color=puppy_fields.get("color"),
                    is_available=True,
                ))
            await db.flush()
            litter.total_puppies = await db.scalar(
                select(func.count(Puppy.id)).where(Puppy.litter_id == litter.id)
            )
        await inventory_service.refresh_available_counts(db, [litter.id])

        refs = await sync_litter_catalog(stripe, litter)
        litter.stripe_product_id = refs.product_id
        litter.stripe_male_price_id = refs.male_price_id
        litter.stripe_female_price_id = refs.female_price_id
        await db.flush()
    except Exception:
        await db.rollback()
        raise

    return litter


async def teardown_product(stripe, product_id: str) -> None:
    """
    Retire every active price of a Stripe product, then delete the product.

    Idempotent: objects that are already gone count as torn down. Any other
    provider error propagates.
    """
    try:
        prices = await stripe.list_prices(product_id=product_id, active=True)
    except ResourceMissingError:
        prices = []

    for price in prices:
        await _retire_price(stripe, price["id"])

    try:
        await stripe.delete_product(product_id)
        logger.info(f"Stripe product {product_id} deleted")
    except ResourceMissingError:
        logger.info(f"Stripe product {product_id} already deleted")


async def delete_litter(db: AsyncSession, stripe, *, litter_id: int, caller_id: int) -> dict:
    """
    Delete a litter locally and on Stripe.

    Stripe teardown is attempted first but is best-effort: a failure is
    reported in the result (catalog_teardown="failed" plus a warning) and the
    local delete still runs as one transaction. The caller commits.
    """
    litter = await _owned_litter(db, litter_id, caller_id)

    warnings: list[str] = []
    teardown = "skipped"
    product_id = litter.stripe_product_id
    if product_id:
        try:
            await teardown_product(stripe, product_id)
            teardown = "ok"
        except (PaymentProviderError, CatalogSyncFailedError) as e:
            message = getattr(e, "message", str(e))
            logger.warning(f"Stripe teardown failed for litter {litter_id} ({product_id}): {message}")
            warnings.append(f"Stripe product {product_id} could not be removed: {message}")
            teardown = "failed"

    try:
        counts = await inventory_service.delete_litter_rows(db, litter_id=litter_id)
    except Exception:
        await db.rollback()
        raise

    return {
        "litter_id": litter_id,
        "stripe_product_id": product_id,
        "catalog_teardown": teardown,
        "warnings": warnings,
        **counts,
    }


async def get_puppy_prices(db: AsyncSession, stripe, *, litter_id: int) -> dict[int, int | None]:
    """
    Price in cents for every puppy of a litter.

    Puppies with their own Stripe price use that price's amount; the rest
    use the litter's tier price.
    """
    litter = await db.get(Litter, litter_id)
    if not litter:
        raise NotFoundError("Litter", str(litter_id))
    res = await db.execute(select(Puppy).where(Puppy.litter_id == litter_id).order_by(Puppy.id))
    puppies = list(res.scalars().all())

    own = [p for p in puppies if p.stripe_price_id]
    try:
        fetched = await asyncio.gather(*(stripe.retrieve_price(p.stripe_price_id) for p in own))
    except PaymentProviderError as e:
        raise CatalogSyncFailedError(
            f"Could not load Stripe prices for litter {litter_id}: {e.message}",
            details={"litter_id": litter_id},
        ) from e

    prices: dict[int, int | None] = {p.id: litter.tier_price(p.gender) for p in puppies}
    for puppy, price in zip(own, fetched):
        prices[puppy.id] = price.get("unit_amount")
    return prices
