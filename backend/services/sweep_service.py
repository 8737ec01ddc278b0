"""
Sweep service: garbage-collect test fixtures from Stripe and the database.

Test litters are tagged test_data=true on their Stripe product. The sweep
finds every such product (active or not), deletes the local test litter it
still mirrors, and deactivates the product. Products are deactivated rather
than deleted so superseded test objects stay auditable.

This is best-effort: each product is handled (and committed) on its own, and
a failure on one is recorded in the report instead of aborting the run.
"""
import logging
from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from db_models import Breeder, Litter
from domain import constants as c
from exceptions import PaymentProviderError
from services import catalog_service, inventory_service

logger = logging.getLogger(__name__)

TEST_LITTERS = [
    {"name": "Tough Guy Pitbulls", "breed": "Pitbull", "total_puppies": 5, "base_price": 70000},
    {"name": "Sweetheart Pitbulls", "breed": "Pitbull", "total_puppies": 5, "base_price": 80000},
]


@dataclass
class PartialSweepFailure:
    product_id: str
    litter_id: str | None
    error: str


@dataclass
class SweepReport:
    products_found: int = 0
    products_deactivated: int = 0
    litters_deleted: int = 0
    failures: list[PartialSweepFailure] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "products_found": self.products_found,
            "products_deactivated": self.products_deactivated,
            "litters_deleted": self.litters_deleted,
            "failures": [f.__dict__ for f in self.failures],
        }


def _is_test_fixture(product: dict) -> bool:
    return (product.get("metadata") or {}).get(c.TAG_TEST_DATA) == "true"


async def _find_test_products(stripe) -> list[dict]:
    products: dict[str, dict] = {}
    for active in (True, False):
        for product in await stripe.list_products(active=active):
            if _is_test_fixture(product):
                products[product["id"]] = product
    return list(products.values())


def _parse_litter_id(raw: str | None) -> int | None:
    try:
        return int(raw) if raw else None
    except ValueError:
        return None


async def _fixture_litter(db: AsyncSession, product: dict) -> Litter | None:
    """
    The local litter a tagged product still mirrors, if it provably is one.

    The litter_id tag alone is not trusted: ids can be reused after a
    fixture is gone, so the litter must itself be test data and must not
    point at a different product.
    """
    litter_id = _parse_litter_id((product.get("metadata") or {}).get(c.TAG_LITTER_ID))
    if litter_id is None:
        return None
    litter = await db.get(Litter, litter_id)
    if litter is None:
        return None
    if not litter.is_test_data or litter.stripe_product_id not in (None, product["id"]):
        logger.warning(
            f"Product {product['id']} is tagged for litter {litter_id}, but that litter is not its "
            f"test fixture; treating the product as orphaned"
        )
        return None
    return litter


async def sweep_test_fixtures(db: AsyncSession, stripe) -> SweepReport:
    """Remove test litters and deactivate their Stripe products."""
    report = SweepReport()
    try:
        products = await _find_test_products(stripe)
    except PaymentProviderError as e:
        logger.error(f"Sweep aborted: could not list Stripe products: {e}")
        report.failures.append(PartialSweepFailure(product_id="*", litter_id=None, error=e.message))
        return report

    report.products_found = len(products)
    logger.info(f"Sweep found {len(products)} test products")

    for product in products:
        raw_litter_id = (product.get("metadata") or {}).get(c.TAG_LITTER_ID)
        try:
            litter = await _fixture_litter(db, product)
            if litter is not None:
                await inventory_service.delete_litter_rows(db, litter_id=litter.id)
                await db.commit()
                report.litters_deleted += 1

            if product.get("active"):
                await stripe.update_product(product["id"], {"active": False})
                report.products_deactivated += 1
        except Exception as e:
            await db.rollback()
            logger.error(f"Sweep failed on product {product['id']} (litter {raw_litter_id}): {e}")
            report.failures.append(
                PartialSweepFailure(product_id=product["id"], litter_id=raw_litter_id, error=str(e))
            )

    logger.info(
        f"Sweep done: {report.litters_deleted} litters deleted, "
        f"{report.products_deactivated} products deactivated, {len(report.failures)} failures"
    )
    return report


async def seed_test_litters(db: AsyncSession, stripe, *, caller_id: int) -> list[Litter]:
    """
    Create the demo test litters (tagged test_data) with their puppies and
    sync them to Stripe. The sweep removes them again.
    """
    res = await db.execute(select(Breeder).where(Breeder.user_id == caller_id))
    if res.scalar_one_or_none() is None:
        db.add(Breeder(user_id=caller_id, business_name="Test Fixtures Kennel"))
        await db.flush()

    created = []
    for fixture in TEST_LITTERS:
        puppies = [
            {
                "name": f"{fixture['breed']} Puppy {i + 1}",
                "gender": "male" if i < 3 else "female",
                "color": "various",
            }
            for i in range(fixture["total_puppies"])
        ]
        litter = await catalog_service.upsert_litter(
            db,
            stripe,
            caller_id=caller_id,
            fields={
                "name": fixture["name"],
                "breed": fixture["breed"],
                "description": f"Test litter of {fixture['breed']} puppies for demonstration purposes.",
                "price_per_male": fixture["base_price"],
                "price_per_female": fixture["base_price"] + 10000,
            },
            new_puppies=puppies,
            is_test_data=True,
        )
        await db.commit()
        created.append(litter)
        logger.info(f"Seeded test litter {litter.id} ({fixture['name']})")
    return created
