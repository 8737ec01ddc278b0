"""
Litter endpoints: breeder catalog management mirrored to Stripe.
"""
import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from db_models import User
from deps import get_stripe, require_breeder
from domain.enums import Gender
from domain.responses import success_response
from services import catalog_service
from utils.serializers import litter_dict

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/litters", tags=["litters"])


class QuantityDiscount(BaseModel):
    quantity: int = Field(..., ge=2)
    discount_percentage: float = Field(..., gt=0, le=100)


class NewPuppy(BaseModel):
    name: str | None = Field(default=None, max_length=100)
    gender: Gender
    color: str | None = Field(default=None, max_length=50)


class LitterCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    breed: str = Field(..., min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=4000)
    price_per_male: int = Field(..., gt=0, description="Cents")
    price_per_female: int = Field(..., gt=0, description="Cents")
    quantity_discounts: list[QuantityDiscount] = Field(default_factory=list)
    puppies: list[NewPuppy] = Field(default_factory=list, max_length=30)


class LitterUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    breed: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=4000)
    status: str | None = Field(default=None, pattern="^(active|upcoming|sold_out|archived)$")
    price_per_male: int | None = Field(default=None, gt=0)
    price_per_female: int | None = Field(default=None, gt=0)
    quantity_discounts: list[QuantityDiscount] | None = None
    puppies: list[NewPuppy] = Field(default_factory=list, max_length=30)


def _fields(request: BaseModel) -> dict:
    return request.model_dump(exclude={"puppies"})


def _puppies(request) -> list[dict]:
    return [
        {"name": p.name, "gender": p.gender.value, "color": p.color}
        for p in request.puppies
    ]


@router.post("")
async def create_litter(
    request: LitterCreateRequest,
    user: User = Depends(require_breeder),
    db: AsyncSession = Depends(get_db),
    stripe=Depends(get_stripe),
):
    litter = await catalog_service.upsert_litter(
        db,
        stripe,
        caller_id=user.id,
        fields=_fields(request),
        new_puppies=_puppies(request),
    )
    await db.commit()
    return success_response(data=litter_dict(litter))


@router.put("/{litter_id}")
async def update_litter(
    litter_id: int,
    request: LitterUpdateRequest,
    user: User = Depends(require_breeder),
    db: AsyncSession = Depends(get_db),
    stripe=Depends(get_stripe),
):
    """Edit a litter; prices are re-synced to Stripe on every save."""
    litter = await catalog_service.upsert_litter(
        db,
        stripe,
        caller_id=user.id,
        litter_id=litter_id,
        fields=_fields(request),
        new_puppies=_puppies(request),
    )
    await db.commit()
    return success_response(data=litter_dict(litter))


@router.delete("/{litter_id}")
@router.post("/{litter_id}/delete")
async def delete_litter(
    litter_id: int,
    user: User = Depends(require_breeder),
    db: AsyncSession = Depends(get_db),
    stripe=Depends(get_stripe),
):
    result = await catalog_service.delete_litter(
        db, stripe, litter_id=litter_id, caller_id=user.id,
    )
    await db.commit()
    return success_response(data=result)


@router.get("/{litter_id}/prices")
async def get_puppy_prices(
    litter_id: int,
    db: AsyncSession = Depends(get_db),
    stripe=Depends(get_stripe),
):
    """Price in cents per puppy id."""
    prices = await catalog_service.get_puppy_prices(db, stripe, litter_id=litter_id)
    return success_response(data={str(pid): amount for pid, amount in prices.items()})
