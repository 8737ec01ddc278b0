"""
Checkout service: reservation and order finalization.

Flow:
    1. create_checkout_session(): buyer picks puppies, we open a Stripe
       Checkout session whose metadata carries the cart and hold the puppies
       for that buyer until the session expires.
    2. Buyer pays on Stripe and returns with ?session_id=...
    3. finalize_checkout(): resolve the session on Stripe, then write the
       Order, its OrderItems and the puppy flips as one transaction.

finalize_checkout() is safe to call any number of times for the same session:
the first call creates the order, later calls return it unchanged.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from db_models import Breeder, Litter, Order, OrderItem, Puppy, User
from domain import constants as c
from domain.enums import DeliveryOption, OrderStatus
from domain.errors import (
    BuyerMismatchError,
    DomainError,
    InvalidSessionMetadataError,
    ItemNoLongerAvailableError,
    NotFoundError,
    PaymentNotConfirmedError,
    ValidationError,
)
from exceptions import PaymentProviderError
from services import inventory_service

logger = logging.getLogger(__name__)


class CheckoutUnavailableError(DomainError):
    """Stripe refused or failed to open a checkout session (502)."""
    def __init__(self, message: str = "Checkout is temporarily unavailable", details: dict | None = None):
        super().__init__(message, status_code=502, details=details)


@dataclass
class SessionMetadata:
    litter_id: int
    puppy_ids: list[int]
    user_id: int
    delivery_option: str
    delivery_fee: int
    delivery_zip_code: Optional[str]


def parse_session_metadata(metadata: Optional[dict]) -> SessionMetadata:
    """Validate the metadata written by create_checkout_session()."""
    if not isinstance(metadata, dict) or not metadata:
        raise InvalidSessionMetadataError("Checkout session has no metadata")

    required = (c.META_LITTER_ID, c.META_PUPPY_IDS, c.META_USER_ID, c.META_DELIVERY_OPTION)
    missing = [key for key in required if not metadata.get(key)]
    if missing:
        raise InvalidSessionMetadataError(
            f"Missing metadata fields: {', '.join(missing)}",
            details={"missing": missing},
        )

    try:
        litter_id = int(metadata[c.META_LITTER_ID])
        user_id = int(metadata[c.META_USER_ID])
        puppy_ids = []
        for raw in str(metadata[c.META_PUPPY_IDS]).split(","):
            raw = raw.strip()
            if raw and int(raw) not in puppy_ids:
                puppy_ids.append(int(raw))
        delivery_fee = int(metadata.get(c.META_DELIVERY_FEE) or 0)
    except (TypeError, ValueError) as e:
        raise InvalidSessionMetadataError(f"Malformed metadata: {e}") from e

    if not puppy_ids:
        raise InvalidSessionMetadataError("Session does not reference any puppies")

    delivery_option = metadata[c.META_DELIVERY_OPTION]
    if delivery_option not in (DeliveryOption.PICKUP.value, DeliveryOption.DELIVERY.value):
        raise InvalidSessionMetadataError(f"Unknown delivery option: {delivery_option}")

    return SessionMetadata(
        litter_id=litter_id,
        puppy_ids=puppy_ids,
        user_id=user_id,
        delivery_option=delivery_option,
        delivery_fee=delivery_fee,
        delivery_zip_code=metadata.get(c.META_DELIVERY_ZIP) or None,
    )


async def get_order_by_session(db: AsyncSession, session_id: str) -> Order | None:
    res = await db.execute(select(Order).where(Order.stripe_session_id == session_id))
    return res.scalar_one_or_none()


async def get_order_puppies(db: AsyncSession, order_id: int) -> list[Puppy]:
    res = await db.execute(
        select(Puppy)
        .join(OrderItem, OrderItem.puppy_id == Puppy.id)
        .where(OrderItem.order_id == order_id)
        .order_by(Puppy.id)
    )
    return list(res.scalars().all())


# ════════════════════════════════════════════════════════════════════
# Reservation
# ════════════════════════════════════════════════════════════════════


def _pick_quantity_discount(litter: Litter, quantity: int) -> float:
    """Largest tier whose quantity threshold the cart meets; 0 if none."""
    tiers = litter.quantity_discounts or []
    for tier in sorted(tiers, key=lambda t: t.get("quantity", 0), reverse=True):
        if quantity >= tier.get("quantity", 0):
            return float(tier.get("discount_percentage") or 0)
    return 0.0


async def create_checkout_session(
    db: AsyncSession,
    stripe,
    *,
    buyer: User,
    litter_id: int,
    puppy_ids: list[int],
    delivery_option: str,
    delivery_zip_code: str | None = None,
    origin: str,
) -> dict:
    """
    Reserve puppies and open a Stripe Checkout session for them.

    Returns {session_id, url}. Caller commits (the reservation tags).
    """
    if not puppy_ids:
        raise ValidationError("At least one puppy is required", field="puppy_ids")
    puppy_ids = list(dict.fromkeys(puppy_ids))

    litter = await db.get(Litter, litter_id)
    if not litter:
        raise NotFoundError("Litter", str(litter_id))
    breeder = await db.get(Breeder, litter.breeder_id)

    puppies = await inventory_service.get_puppies(db, puppy_ids)
    found = {p.id for p in puppies}
    missing = [pid for pid in puppy_ids if pid not in found]
    if missing:
        raise NotFoundError("Puppy", ", ".join(str(m) for m in missing))

    for p in puppies:
        if p.litter_id != litter.id:
            raise ValidationError(f"Puppy {p.name or p.id} does not belong to this litter")
    taken = [
        p.id for p in puppies
        if not p.is_available or inventory_service.held_by_other(p, buyer.id)
    ]
    if taken:
        raise ItemNoLongerAvailableError(taken)

    line_items = []
    for p in puppies:
        price_id = p.stripe_price_id or (
            litter.stripe_male_price_id if p.gender == "male" else litter.stripe_female_price_id
        )
        if not price_id:
            raise ValidationError(f"Could not determine Stripe price for puppy {p.name or p.id}")
        line_items.append({"price": price_id, "quantity": 1})

    delivery_fee = 0
    if delivery_option == DeliveryOption.DELIVERY.value:
        if not delivery_zip_code:
            raise ValidationError("Delivery ZIP code is required for delivery", field="delivery_zip_code")
        areas = (breeder.delivery_areas if breeder else None) or []
        if delivery_zip_code not in areas:
            raise ValidationError(f"Delivery not available for ZIP code {delivery_zip_code}")
        delivery_fee = breeder.delivery_fee or 0
        if delivery_fee > 0:
            line_items.append({
                "price_data": {
                    "currency": settings.currency,
                    "product_data": {"name": "Local Delivery Fee"},
                    "unit_amount": delivery_fee,
                },
                "quantity": 1,
            })
    elif delivery_option != DeliveryOption.PICKUP.value:
        raise ValidationError(f"Unknown delivery option: {delivery_option}", field="delivery_option")

    hold_until = datetime.utcnow() + timedelta(minutes=settings.checkout_hold_minutes)
    params = {
        "mode": "payment",
        "expires_at": int(hold_until.replace(tzinfo=timezone.utc).timestamp()),
        "payment_method_types": ["card"],
        "customer_email": buyer.email,
        "line_items": line_items,
        "success_url": f"{origin}/schedule-pickup?session_id={{CHECKOUT_SESSION_ID}}",
        "cancel_url": f"{origin}/litters/{litter.id}",
        "metadata": {
            c.META_LITTER_ID: str(litter.id),
            c.META_PUPPY_IDS: ",".join(str(pid) for pid in puppy_ids),
            c.META_USER_ID: str(buyer.id),
            c.META_DELIVERY_OPTION: delivery_option,
            c.META_DELIVERY_FEE: str(delivery_fee),
            c.META_DELIVERY_ZIP: delivery_zip_code if delivery_option == DeliveryOption.DELIVERY.value else None,
        },
    }

    try:
        percent_off = _pick_quantity_discount(litter, len(puppies))
        if percent_off > 0:
            coupon = await stripe.create_coupon(
                percent_off=percent_off,
                name=f"{percent_off:g}% off for {len(puppies)} puppies",
            )
            params["discounts"] = [{"coupon": coupon["id"]}]
        session = await stripe.create_checkout_session(params)
    except PaymentProviderError as e:
        logger.error(f"Checkout session creation failed for litter {litter.id}: {e}")
        raise CheckoutUnavailableError(details={"litter_id": litter.id}) from e

    if session.get("expires_at"):
        hold_until = datetime.fromtimestamp(session["expires_at"], tz=timezone.utc).replace(tzinfo=None)
    reserved = await inventory_service.reserve_puppies(
        db, puppy_ids=puppy_ids, buyer_id=buyer.id, until=hold_until,
    )
    if reserved != len(puppy_ids):
        logger.warning(
            f"Session {session['id']}: only {reserved}/{len(puppy_ids)} puppies could be reserved"
        )

    logger.info(
        f"Checkout session {session['id']} opened for user {buyer.id} "
        f"(litter {litter.id}, puppies {puppy_ids})"
    )
    return {"session_id": session["id"], "url": session.get("url")}


# ════════════════════════════════════════════════════════════════════
# Finalization
# ════════════════════════════════════════════════════════════════════


async def _conflicting_puppies(db: AsyncSession, puppy_ids: list[int], buyer_id: int) -> list[int]:
    puppies = {p.id: p for p in await inventory_service.get_puppies(db, puppy_ids)}
    conflicts = []
    for pid in puppy_ids:
        p = puppies.get(pid)
        if p is None or not p.is_available or inventory_service.held_by_other(p, buyer_id):
            conflicts.append(pid)
    return conflicts


async def finalize_checkout(
    db: AsyncSession,
    stripe,
    *,
    session_id: str,
    caller_id: int,
) -> tuple[Order, list[Puppy]]:
    """
    Turn a paid Stripe Checkout session into exactly one local order.

    Raises:
        PaymentNotConfirmedError: Stripe lookup failed/timed out or not paid
        InvalidSessionMetadataError: metadata missing or malformed
        BuyerMismatchError: session was opened by another user
        ItemNoLongerAvailableError: a puppy was sold to someone else meanwhile

    The caller commits on success. On failure nothing has been written.
    """
    if not session_id:
        raise ValidationError("Stripe session id is required", field="session_id")

    try:
        session = await stripe.retrieve_session(session_id)
    except PaymentProviderError as e:
        logger.warning(f"Could not resolve checkout session {session_id}: {e}")
        raise PaymentNotConfirmedError(
            "Could not confirm payment with Stripe",
            details={"session_id": session_id},
        ) from e

    if session.get("payment_status") != "paid":
        raise PaymentNotConfirmedError(
            "Payment not successful",
            details={"session_id": session_id, "payment_status": session.get("payment_status")},
        )

    meta = parse_session_metadata(session.get("metadata"))
    if meta.user_id != caller_id:
        logger.warning(f"Session {session_id} belongs to user {meta.user_id}, not {caller_id}")
        raise BuyerMismatchError()

    existing = await get_order_by_session(db, session_id)
    if existing:
        logger.info(f"Session {session_id} already finalized as order {existing.id}")
        return existing, await get_order_puppies(db, existing.id)

    puppies = await inventory_service.get_puppies(db, meta.puppy_ids)
    if len(puppies) != len(meta.puppy_ids):
        raise ItemNoLongerAvailableError(await _conflicting_puppies(db, meta.puppy_ids, caller_id))
    for p in puppies:
        if p.litter_id != meta.litter_id:
            raise InvalidSessionMetadataError(
                f"Puppy {p.id} does not belong to litter {meta.litter_id}"
            )
    litter = await db.get(Litter, meta.litter_id)

    now = datetime.utcnow()
    order = Order(
        user_id=caller_id,
        stripe_session_id=session_id,
        stripe_payment_intent_id=session.get("payment_intent"),
        subtotal_amount=session.get("amount_subtotal") or 0,
        discount_amount=(session.get("total_details") or {}).get("amount_discount") or 0,
        total_amount=session.get("amount_total") or 0,
        status=OrderStatus.PAID.value,
        delivery_type="delivery" if meta.delivery_option == DeliveryOption.DELIVERY.value else "pickup",
        delivery_option=meta.delivery_option,
        delivery_cost=meta.delivery_fee,
        delivery_zip_code=meta.delivery_zip_code,
        scheduling_deadline=now + timedelta(days=settings.scheduling_window_days),
        created_at=now,
        updated_at=now,
    )

    try:
        db.add(order)
        await db.flush()
    except IntegrityError:
        # A concurrent finalize for the same session won the unique constraint
        await db.rollback()
        winner = await get_order_by_session(db, session_id)
        if winner is None:
            raise
        logger.info(f"Session {session_id} finalized concurrently as order {winner.id}")
        return winner, await get_order_puppies(db, winner.id)

    try:
        for p in puppies:
            db.add(OrderItem(order_id=order.id, puppy_id=p.id, price=litter.tier_price(p.gender)))
        await db.flush()

        updated = await inventory_service.mark_sold(db, puppy_ids=meta.puppy_ids, buyer_id=caller_id)
        if updated != len(meta.puppy_ids):
            await db.rollback()
            conflicts = await _conflicting_puppies(db, meta.puppy_ids, caller_id)
            logger.warning(
                f"Session {session_id}: {len(meta.puppy_ids) - updated} puppies already claimed {conflicts}"
            )
            raise ItemNoLongerAvailableError(conflicts)

        await inventory_service.refresh_available_counts(db, [meta.litter_id])
    except ItemNoLongerAvailableError:
        raise
    except Exception:
        await db.rollback()
        raise

    puppies = await inventory_service.get_puppies(db, meta.puppy_ids)
    logger.info(
        f"Order {order.id} finalized from session {session_id}: "
        f"{len(puppies)} puppies sold to user {caller_id}, total {order.total_amount}"
    )
    return order, puppies
