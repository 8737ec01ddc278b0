"""
Order ledger: read paths and the tail of the order lifecycle.

    paid ──cancel──▶ cancelled ──archive──▶ archived ──retention──▶ deleted

Creation lives in checkout_service, cancellation in cancellation_service.
"""
import logging
from datetime import datetime, timedelta

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from db_models import Breeder, Litter, Order, OrderItem, Puppy
from domain.enums import OrderStatus
from domain.errors import ConflictError, NotFoundError, PermissionDeniedError

logger = logging.getLogger(__name__)


async def list_buyer_orders(
    db: AsyncSession,
    *,
    user_id: int,
    limit: int = 50,
    offset: int = 0,
) -> list[Order]:
    res = await db.execute(
        select(Order)
        .where(Order.user_id == user_id)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(res.scalars().all())


async def list_breeder_orders(
    db: AsyncSession,
    *,
    breeder_user_id: int,
    status: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[Order]:
    """Orders holding at least one puppy from the breeder's litters."""
    q = (
        select(Order)
        .join(OrderItem, OrderItem.order_id == Order.id)
        .join(Puppy, Puppy.id == OrderItem.puppy_id)
        .join(Litter, Litter.id == Puppy.litter_id)
        .join(Breeder, Breeder.id == Litter.breeder_id)
        .where(Breeder.user_id == breeder_user_id)
        .distinct()
        .order_by(Order.updated_at.desc(), Order.id.desc())
        .limit(limit)
        .offset(offset)
    )
    if status:
        q = q.where(Order.status == status)
    res = await db.execute(q)
    return list(res.scalars().all())


async def get_order_items(db: AsyncSession, order_id: int) -> list[OrderItem]:
    res = await db.execute(
        select(OrderItem).where(OrderItem.order_id == order_id).order_by(OrderItem.id)
    )
    return list(res.scalars().all())


async def archive_order(db: AsyncSession, *, order_id: int, caller_id: int) -> Order:
    """Move a cancelled order to archived, starting its retention window."""
    order = await db.get(Order, order_id)
    if not order:
        raise NotFoundError("Order", str(order_id))

    res = await db.execute(
        select(Breeder.user_id)
        .join(Litter, Litter.breeder_id == Breeder.id)
        .join(Puppy, Puppy.litter_id == Litter.id)
        .join(OrderItem, OrderItem.puppy_id == Puppy.id)
        .where(OrderItem.order_id == order_id)
        .distinct()
    )
    owners = set(res.scalars().all())
    if owners and owners != {caller_id}:
        raise PermissionDeniedError("You are not the breeder for this order.")

    if order.status != OrderStatus.CANCELLED.value:
        raise ConflictError(
            f"Only cancelled orders can be archived (order {order_id} is {order.status})",
            details={"order_id": order_id, "status": order.status},
        )

    order.status = OrderStatus.ARCHIVED.value
    order.updated_at = datetime.utcnow()
    await db.flush()
    logger.info(f"Order {order_id} archived")
    return order


async def purge_archived_orders(db: AsyncSession, *, retention_days: int | None = None) -> int:
    """
    Delete archived orders (and their line items) older than the retention
    window. Archived orders hold no puppies, so inventory is untouched.
    """
    days = settings.archived_order_retention_days if retention_days is None else retention_days
    cutoff = datetime.utcnow() - timedelta(days=days)

    res = await db.execute(
        select(Order.id).where(
            Order.status == OrderStatus.ARCHIVED.value,
            Order.updated_at < cutoff,
        )
    )
    order_ids = list(res.scalars().all())
    if not order_ids:
        return 0

    await db.execute(
        delete(OrderItem)
        .where(OrderItem.order_id.in_(order_ids))
        .execution_options(synchronize_session="fetch")
    )
    await db.execute(
        delete(Order)
        .where(Order.id.in_(order_ids))
        .execution_options(synchronize_session="fetch")
    )
    logger.info(f"Purged {len(order_ids)} archived orders older than {days} days")
    return len(order_ids)
