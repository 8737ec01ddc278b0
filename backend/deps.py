"""
Shared FastAPI dependencies.

Routers import the DB session, the Stripe client, caller guards and
pagination from here.
"""

from __future__ import annotations

from typing import TypedDict

from fastapi import Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from db_models import User
from domain.errors import PermissionDeniedError, UnauthorizedError
from middleware.auth import Caller, require_caller
from stripe_client import StripeClient


class Pagination(TypedDict):
    limit: int
    offset: int


def pagination_params(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0, le=100_000),
) -> Pagination:
    return {"limit": limit, "offset": offset}


def get_stripe(request: Request) -> StripeClient:
    """The process-wide Stripe client created in the app lifespan."""
    return request.app.state.stripe


async def require_user(
    caller: Caller = Depends(require_caller),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Load the account behind the verified token."""
    user = await db.get(User, caller["user_id"])
    if not user:
        raise UnauthorizedError("Account not found for this token.")
    return user


async def require_breeder(user: User = Depends(require_user)) -> User:
    """
    Require a breeder (or admin) account.

    Ownership of the specific litter/order is checked in the services.
    """
    if user.role not in ("breeder", "admin"):
        raise PermissionDeniedError("Breeder role required for this endpoint.")
    return user


async def require_admin(user: User = Depends(require_user)) -> User:
    if user.role != "admin":
        raise PermissionDeniedError("Admin role required for this endpoint.")
    return user
