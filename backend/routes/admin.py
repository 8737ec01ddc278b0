"""
Admin maintenance endpoints: test-fixture seeding/sweeping and the
archived-order retention purge. Intended for ops tooling and cron.
"""
import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from db_models import User
from deps import get_stripe, require_admin
from domain.responses import success_response
from services import order_service, sweep_service
from utils.serializers import litter_dict

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/admin", tags=["admin"])


@router.post("/sweep-test-fixtures")
async def sweep_test_fixtures(
    user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    stripe=Depends(get_stripe),
):
    """Delete every test litter and deactivate its Stripe product."""
    logger.info(f"Test fixture sweep requested by user {user.id}")
    report = await sweep_service.sweep_test_fixtures(db, stripe)
    return success_response(data=report.to_dict())


@router.post("/seed-test-litters")
async def seed_test_litters(
    user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    stripe=Depends(get_stripe),
):
    litters = await sweep_service.seed_test_litters(db, stripe, caller_id=user.id)
    return success_response(data=[litter_dict(l) for l in litters])


@router.post("/purge-archived-orders")
async def purge_archived_orders(
    retention_days: int | None = Query(default=None, ge=0, le=3650),
    user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    deleted = await order_service.purge_archived_orders(db, retention_days=retention_days)
    await db.commit()
    return success_response(data={"orders_deleted": deleted})
