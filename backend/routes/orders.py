"""
Order endpoints: buyer history, breeder cancellation/archival, and
force-release of a single puppy.
"""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from db_models import User
from deps import Pagination, pagination_params, require_breeder, require_user
from domain.enums import OrderStatus
from domain.responses import paginated_response, success_response
from services import cancellation_service, order_service
from utils.serializers import order_dict

logger = logging.getLogger(__name__)
router = APIRouter(tags=["orders"])


@router.get("/orders/mine")
async def list_my_orders(
    user: User = Depends(require_user),
    page: Pagination = Depends(pagination_params),
    db: AsyncSession = Depends(get_db),
):
    orders = await order_service.list_buyer_orders(
        db, user_id=user.id, limit=page["limit"], offset=page["offset"],
    )
    data = []
    for o in orders:
        items = await order_service.get_order_items(db, o.id)
        data.append(order_dict(o, items))
    return paginated_response(data, limit=page["limit"], offset=page["offset"])


@router.get("/orders/archived")
async def list_archived_orders(
    user: User = Depends(require_breeder),
    page: Pagination = Depends(pagination_params),
    db: AsyncSession = Depends(get_db),
):
    """Archived orders for the breeder's litters, newest first."""
    orders = await order_service.list_breeder_orders(
        db,
        breeder_user_id=user.id,
        status=OrderStatus.ARCHIVED.value,
        limit=page["limit"],
        offset=page["offset"],
    )
    return paginated_response(
        [order_dict(o) for o in orders], limit=page["limit"], offset=page["offset"],
    )


@router.post("/orders/{order_id}/cancel")
async def cancel_order(
    order_id: int,
    user: User = Depends(require_breeder),
    db: AsyncSession = Depends(get_db),
):
    order, released = await cancellation_service.cancel_order(
        db, order_id=order_id, caller_id=user.id,
    )
    await db.commit()
    return success_response(
        data={
            "order": order_dict(order),
            "puppies_released": released,
            "message": "Order cancelled and puppies are available again",
        }
    )


@router.post("/orders/{order_id}/archive")
async def archive_order(
    order_id: int,
    user: User = Depends(require_breeder),
    db: AsyncSession = Depends(get_db),
):
    order = await order_service.archive_order(db, order_id=order_id, caller_id=user.id)
    await db.commit()
    return success_response(data={"order": order_dict(order)})


@router.post("/puppies/{puppy_id}/force-release")
async def force_release_puppy(
    puppy_id: int,
    user: User = Depends(require_breeder),
    db: AsyncSession = Depends(get_db),
):
    """Make a puppy available again, cancelling any open order that holds it."""
    cancelled = await cancellation_service.force_release_puppy(
        db, puppy_id=puppy_id, caller_id=user.id,
    )
    await db.commit()
    return success_response(
        data={"puppy_id": puppy_id, "orders_cancelled": cancelled, "is_available": True}
    )
