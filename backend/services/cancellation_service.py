"""
Cancellation service: reverse orders and put puppies back on sale.

Both entry points only transition state; nothing is deleted here. The caller
commits; on any failure the session is rolled back before the error leaves.
"""
import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from db_models import Breeder, Litter, Order, OrderItem, Puppy
from domain.enums import OrderStatus, TERMINAL_ORDER_STATUSES
from domain.errors import AlreadyTerminalError, NotFoundError, PermissionDeniedError
from services import inventory_service

logger = logging.getLogger(__name__)


async def _claimed_puppies(db: AsyncSession, order_id: int) -> list[tuple[Puppy, int]]:
    """Puppies held by the order, each with the user id of its litter's breeder."""
    res = await db.execute(
        select(Puppy, Breeder.user_id)
        .join(OrderItem, OrderItem.puppy_id == Puppy.id)
        .join(Litter, Litter.id == Puppy.litter_id)
        .join(Breeder, Breeder.id == Litter.breeder_id)
        .where(OrderItem.order_id == order_id)
    )
    return [(row[0], row[1]) for row in res.all()]


def _authorize(order: Order, owners: set[int], caller_id: int) -> None:
    """Only the breeder owning every puppy on the order may act on it."""
    if not owners:
        raise PermissionDeniedError(
            "Could not verify you as the breeder for this order.",
            details={"order_id": order.id},
        )
    if owners != {caller_id}:
        raise PermissionDeniedError(
            "You are not the breeder for this order.",
            details={"order_id": order.id},
        )


async def _cancel_loaded(db: AsyncSession, order: Order, puppies: list[Puppy]) -> int:
    puppy_ids = [p.id for p in puppies]
    released = await inventory_service.release_puppies(db, puppy_ids=puppy_ids)
    order.status = OrderStatus.CANCELLED.value
    order.updated_at = datetime.utcnow()
    await db.flush()
    await inventory_service.refresh_available_counts(db, [p.litter_id for p in puppies])
    logger.info(f"Order {order.id} cancelled; {released} puppies made available")
    return released


async def cancel_order(db: AsyncSession, *, order_id: int, caller_id: int) -> tuple[Order, int]:
    """
    Cancel a paid order on behalf of the breeder that owns its puppies.

    Returns (order, number of puppies made available).
    """
    order = await db.get(Order, order_id)
    if not order:
        raise NotFoundError("Order", str(order_id))

    claimed = await _claimed_puppies(db, order.id)
    _authorize(order, {owner for _, owner in claimed}, caller_id)

    if order.status in TERMINAL_ORDER_STATUSES:
        raise AlreadyTerminalError(order.id, order.status)

    try:
        released = await _cancel_loaded(db, order, [p for p, _ in claimed])
    except Exception:
        await db.rollback()
        raise
    return order, released


async def force_release_puppy(db: AsyncSession, *, puppy_id: int, caller_id: int) -> int:
    """
    Put a puppy back on sale regardless of order state.

    Every non-terminal order holding the puppy is cancelled exactly as
    cancel_order() would. Returns the number of orders cancelled.
    """
    res = await db.execute(
        select(Puppy, Breeder.user_id)
        .join(Litter, Litter.id == Puppy.litter_id)
        .join(Breeder, Breeder.id == Litter.breeder_id)
        .where(Puppy.id == puppy_id)
    )
    row = res.first()
    if not row:
        raise NotFoundError("Puppy", str(puppy_id))
    puppy, owner_id = row[0], row[1]
    if owner_id != caller_id:
        raise PermissionDeniedError("You are not the breeder for this puppy.")

    res = await db.execute(
        select(Order)
        .join(OrderItem, OrderItem.order_id == Order.id)
        .where(
            OrderItem.puppy_id == puppy_id,
            Order.status.not_in(TERMINAL_ORDER_STATUSES),
        )
        .distinct()
        .order_by(Order.id)
    )
    holding = list(res.scalars().all())

    try:
        for order in holding:
            claimed = await _claimed_puppies(db, order.id)
            # An order may also hold puppies from another breeder's litter
            _authorize(order, {owner for _, owner in claimed}, caller_id)
            await _cancel_loaded(db, order, [p for p, _ in claimed])

        if not holding and not puppy.is_available:
            logger.warning(f"Puppy {puppy_id} was unavailable with no open order; repairing flag")
            await inventory_service.release_puppies(db, puppy_ids=[puppy_id])
            await inventory_service.refresh_available_counts(db, [puppy.litter_id])
    except Exception:
        await db.rollback()
        raise

    logger.info(f"Force-released puppy {puppy_id}; {len(holding)} orders cancelled")
    return len(holding)
