"""
Inventory service: the only writer of Puppy.is_available.

Checkout finalization (available → sold) and cancellation (sold → available)
both go through here, so the flag and the order graph move together inside
the caller's transaction. Nothing in this module commits.
"""
import logging
from datetime import datetime

from sqlalchemy import delete, exists, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from db_models import Litter, Order, OrderItem, Puppy

logger = logging.getLogger(__name__)


async def get_puppies(db: AsyncSession, puppy_ids: list[int]) -> list[Puppy]:
    if not puppy_ids:
        return []
    res = await db.execute(
        select(Puppy).where(Puppy.id.in_(puppy_ids)).order_by(Puppy.id)
    )
    return list(res.scalars().all())


def _no_live_hold_but(buyer_id: int, now: datetime):
    """Filter: the puppy is unreserved, its hold has expired, or it is this buyer's."""
    return or_(
        Puppy.reserved_by.is_(None),
        Puppy.reserved_by == buyer_id,
        Puppy.reserved_until.is_(None),
        Puppy.reserved_until <= now,
    )


def held_by_other(puppy: Puppy, buyer_id: int, now: datetime | None = None) -> bool:
    """True while another buyer's unexpired checkout hold covers the puppy."""
    now = now or datetime.utcnow()
    return (
        puppy.reserved_by not in (None, buyer_id)
        and puppy.reserved_until is not None
        and puppy.reserved_until > now
    )


async def reserve_puppies(db: AsyncSession, *, puppy_ids: list[int], buyer_id: int, until: datetime) -> int:
    """Hold available puppies for the buyer's open checkout session until it expires."""
    now = datetime.utcnow()
    res = await db.execute(
        update(Puppy)
        .where(
            Puppy.id.in_(puppy_ids),
            Puppy.is_available == True,  # noqa: E712
            _no_live_hold_but(buyer_id, now),
        )
        .values(reserved_by=buyer_id, reserved_until=until, updated_at=now)
        .execution_options(synchronize_session="fetch")
    )
    return res.rowcount


async def mark_sold(db: AsyncSession, *, puppy_ids: list[int], buyer_id: int) -> int:
    """
    Conditionally flip puppies to sold.

    Only puppies that are still available and not under another buyer's
    unexpired hold are touched. Returns the number of rows updated; a short
    count means another buyer got there first.
    """
    now = datetime.utcnow()
    res = await db.execute(
        update(Puppy)
        .where(
            Puppy.id.in_(puppy_ids),
            Puppy.is_available == True,  # noqa: E712
            _no_live_hold_but(buyer_id, now),
        )
        .values(
            is_available=False,
            sold_to=buyer_id,
            reserved_by=None,
            reserved_until=None,
            updated_at=now,
        )
        .execution_options(synchronize_session="fetch")
    )
    return res.rowcount


async def release_puppies(db: AsyncSession, *, puppy_ids: list[int]) -> int:
    """Put puppies back on sale and drop any buyer claim."""
    if not puppy_ids:
        return 0
    res = await db.execute(
        update(Puppy)
        .where(Puppy.id.in_(puppy_ids))
        .values(
            is_available=True,
            sold_to=None,
            reserved_by=None,
            reserved_until=None,
            updated_at=datetime.utcnow(),
        )
        .execution_options(synchronize_session="fetch")
    )
    return res.rowcount


async def refresh_available_counts(db: AsyncSession, litter_ids) -> None:
    """Recompute Litter.available_puppies from the puppy flags."""
    for litter_id in sorted(set(litter_ids)):
        available = await db.scalar(
            select(func.count(Puppy.id)).where(
                Puppy.litter_id == litter_id,
                Puppy.is_available == True,  # noqa: E712
            )
        )
        await db.execute(
            update(Litter)
            .where(Litter.id == litter_id)
            .values(available_puppies=available or 0)
            .execution_options(synchronize_session="fetch")
        )


async def delete_litter_rows(db: AsyncSession, *, litter_id: int) -> dict:
    """
    Delete a litter and everything that hangs off it.

    Order: line items referencing its puppies, then orders left with no line
    items (they only held this litter's puppies), then puppies, then the
    litter. Orders that also hold puppies from other litters are kept.
    """
    puppy_ids = list(
        (await db.execute(select(Puppy.id).where(Puppy.litter_id == litter_id))).scalars().all()
    )

    order_items_deleted = 0
    orders_deleted = 0
    if puppy_ids:
        order_ids = list(
            (
                await db.execute(
                    select(OrderItem.order_id)
                    .where(OrderItem.puppy_id.in_(puppy_ids))
                    .distinct()
                )
            ).scalars().all()
        )

        res = await db.execute(
            delete(OrderItem)
            .where(OrderItem.puppy_id.in_(puppy_ids))
            .execution_options(synchronize_session="fetch")
        )
        order_items_deleted = res.rowcount

        if order_ids:
            emptied = list(
                (
                    await db.execute(
                        select(Order.id).where(
                            Order.id.in_(order_ids),
                            ~exists().where(OrderItem.order_id == Order.id),
                        )
                    )
                ).scalars().all()
            )
            if emptied:
                res = await db.execute(
                    delete(Order)
                    .where(Order.id.in_(emptied))
                    .execution_options(synchronize_session="fetch")
                )
                orders_deleted = res.rowcount

        await db.execute(
            delete(Puppy)
            .where(Puppy.id.in_(puppy_ids))
            .execution_options(synchronize_session="fetch")
        )

    await db.execute(
        delete(Litter)
        .where(Litter.id == litter_id)
        .execution_options(synchronize_session="fetch")
    )

    logger.info(
        f"Deleted litter {litter_id}: {len(puppy_ids)} puppies, "
        f"{order_items_deleted} order items, {orders_deleted} orders"
    )
    return {
        "puppies_deleted": len(puppy_ids),
        "order_items_deleted": order_items_deleted,
        "orders_deleted": orders_deleted,
    }
