"""
Checkout endpoints: open a Stripe Checkout session, then finalize it.

The frontend calls /checkout/finalize from the success page with the
session_id Stripe appended to the return URL. Finalize may be retried freely.
"""
import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import get_db
from db_models import User
from deps import get_stripe, require_user
from domain.enums import DeliveryOption
from domain.responses import success_response
from middleware.rate_limit import rate_limit
from services import checkout_service, order_service
from utils.serializers import order_dict, puppy_dict
from utils.validators import validate_session_id, validate_zip_code

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/checkout", tags=["checkout"])


class CheckoutSessionRequest(BaseModel):
    litter_id: int = Field(..., gt=0, alias="litterId")
    puppy_ids: list[int] = Field(..., min_length=1, max_length=20, alias="puppyIds")
    delivery_option: DeliveryOption = Field(DeliveryOption.PICKUP, alias="deliveryOption")
    delivery_zip_code: str | None = Field(default=None, alias="deliveryZipCode")


class FinalizeRequest(BaseModel):
    session_id: str = Field(..., alias="sessionId")


@router.post("/session")
async def create_checkout_session(
    request: CheckoutSessionRequest,
    user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
    stripe=Depends(get_stripe),
    _rate=Depends(rate_limit(20, 60)),
):
    zip_code = validate_zip_code(request.delivery_zip_code) if request.delivery_zip_code else None
    result = await checkout_service.create_checkout_session(
        db,
        stripe,
        buyer=user,
        litter_id=request.litter_id,
        puppy_ids=request.puppy_ids,
        delivery_option=request.delivery_option.value,
        delivery_zip_code=zip_code,
        origin=settings.frontend_origin,
    )
    await db.commit()
    return success_response(data=result)


@router.post("/finalize")
async def finalize_checkout(
    request: FinalizeRequest,
    user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
    stripe=Depends(get_stripe),
    _rate=Depends(rate_limit(30, 60)),
):
    """Create the order for a paid session, or return the one already created."""
    session_id = validate_session_id(request.session_id)
    order, puppies = await checkout_service.finalize_checkout(
        db,
        stripe,
        session_id=session_id,
        caller_id=user.id,
    )
    await db.commit()

    items = await order_service.get_order_items(db, order.id)
    return success_response(
        data={
            "order": order_dict(order, items),
            "puppies": [puppy_dict(p) for p in puppies],
        }
    )
