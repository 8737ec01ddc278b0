"""
Unit tests for sweep service.

Tests test-fixture seeding and the best-effort sweep of test_data products.
"""
import pytest
from sqlalchemy import func, select

from db_models import Litter, Puppy
from domain import constants as c
from exceptions import PaymentProviderError
from services import sweep_service


def _tagged(litter_id: str | None = None) -> dict:
    meta = {c.TAG_APP_MANAGED: "true", c.TAG_ENTITY: c.ENTITY_LITTER, c.TAG_TEST_DATA: "true"}
    if litter_id is not None:
        meta[c.TAG_LITTER_ID] = litter_id
    return {"name": "Leftover fixture", "metadata": meta}


@pytest.mark.asyncio
async def test_sweep_orphan_product(db_session, stripe):
    """A tagged product whose litter is already gone is only deactivated."""
    product = await stripe.create_product(_tagged("999"))

    report = await sweep_service.sweep_test_fixtures(db_session, stripe)

    assert report.products_found == 1
    assert report.products_deactivated == 1
    assert report.litters_deleted == 0
    assert report.failures == []
    assert stripe.products[product["id"]]["active"] is False


@pytest.mark.asyncio
async def test_sweep_ignores_real_products(db_session, stripe, litter):
    real = await stripe.create_product({"name": "Real litter", "metadata": {c.TAG_LITTER_ID: str(litter.id)}})

    report = await sweep_service.sweep_test_fixtures(db_session, stripe)

    assert report.products_found == 0
    assert stripe.products[real["id"]]["active"] is True
    assert await db_session.get(Litter, litter.id) is not None


@pytest.mark.asyncio
async def test_seed_then_sweep(db_session, stripe, admin_user):
    seeded = await sweep_service.seed_test_litters(db_session, stripe, caller_id=admin_user.id)

    assert [l.price_per_male for l in seeded] == [70000, 80000]
    assert [l.price_per_female for l in seeded] == [80000, 90000]
    assert all(l.is_test_data for l in seeded)
    assert await db_session.scalar(select(func.count(Puppy.id))) == 10

    report = await sweep_service.sweep_test_fixtures(db_session, stripe)

    assert report.products_found == 2
    assert report.litters_deleted == 2
    assert report.products_deactivated == 2
    assert await db_session.scalar(select(func.count(Litter.id))) == 0
    assert await db_session.scalar(select(func.count(Puppy.id))) == 0


@pytest.mark.asyncio
async def test_sweep_inactive_product_is_counted_not_redeactivated(db_session, stripe):
    product = await stripe.create_product(_tagged())
    stripe.products[product["id"]]["active"] = False

    report = await sweep_service.sweep_test_fixtures(db_session, stripe)

    assert report.products_found == 1
    assert report.products_deactivated == 0
    assert not [call for call in stripe.calls if call[0] == "update_product"]


@pytest.mark.asyncio
async def test_sweep_continues_after_failure(db_session, stripe):
    first = await stripe.create_product(_tagged("998"))
    second = await stripe.create_product(_tagged("999"))
    stripe.fail("update_product", PaymentProviderError("rate limited", status_code=429))

    report = await sweep_service.sweep_test_fixtures(db_session, stripe)

    assert report.products_deactivated == 1
    assert len(report.failures) == 1
    assert report.failures[0].product_id == first["id"]
    assert report.failures[0].litter_id == "998"
    assert stripe.products[second["id"]]["active"] is False
    assert report.to_dict()["failures"][0]["error"] == "rate limited"


@pytest.mark.asyncio
async def test_sweep_listing_failure(db_session, stripe):
    stripe.fail("list_products", PaymentProviderError("unauthorized", status_code=401))

    report = await sweep_service.sweep_test_fixtures(db_session, stripe)

    assert report.products_found == 0
    assert report.failures[0].product_id == "*"


@pytest.mark.asyncio
async def test_sweep_never_deletes_a_real_litter_with_a_reused_id(db_session, stripe, litter, puppies):
    """A stale fixture product whose litter_id now belongs to a real litter."""
    stale = await stripe.create_product(_tagged(str(litter.id)))
    stripe.products[stale["id"]]["active"] = False

    report = await sweep_service.sweep_test_fixtures(db_session, stripe)

    assert report.products_found == 1
    assert report.litters_deleted == 0
    assert await db_session.get(Litter, litter.id) is not None
    assert await db_session.scalar(select(func.count(Puppy.id)).where(Puppy.litter_id == litter.id)) == 4


@pytest.mark.asyncio
async def test_sweep_keeps_test_litter_mirrored_by_another_product(db_session, stripe, admin_user):
    seeded = await sweep_service.seed_test_litters(db_session, stripe, caller_id=admin_user.id)
    kept = seeded[0]
    # An older fixture product left behind for the same litter id
    stray = await stripe.create_product(_tagged(str(kept.id)))
    for product_id in [p for p in stripe.products if p != stray["id"]]:
        stripe.products[product_id]["metadata"] = {}

    report = await sweep_service.sweep_test_fixtures(db_session, stripe)

    assert report.products_found == 1
    assert report.litters_deleted == 0
    assert report.products_deactivated == 1
    assert stripe.products[stray["id"]]["active"] is False
    assert await db_session.get(Litter, kept.id) is not None
