"""
Pytest configuration and shared fixtures for the order core tests.

Provides an in-memory SQLite DB, an in-memory Stripe, seeded accounts and a
litter, and an HTTP client wired to both.
"""
import pytest
from typing import AsyncGenerator

from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from config import settings
from database import Base, get_db
from db_models import Breeder, Litter, Puppy, User
from domain import constants as c
from tests.fake_stripe import FakeStripe

# ── Test Configuration ───────────────────────────────────────────────
# Set test-only values for settings that would normally come from .env
if not settings.jwt_secret:
    settings.jwt_secret = "test-jwt-secret-for-pytest-only-0123456789"
settings.catalog_retry_backoff_seconds = 0.0


@pytest.fixture(autouse=True)
def _reset_rate_limiter():
    from middleware.rate_limit import _limiter
    _limiter.reset()
    yield
    _limiter.reset()


# ── Database Fixtures ────────────────────────────────────────────────


@pytest.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Create an in-memory SQLite database session for each test.

    Uses StaticPool to allow in-memory SQLite with async SQLAlchemy.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async_session_maker = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False
    )

    async with async_session_maker() as session:
        yield session

    await engine.dispose()


@pytest.fixture
def stripe() -> FakeStripe:
    return FakeStripe()


@pytest.fixture
async def client(db_session: AsyncSession, stripe: FakeStripe) -> AsyncGenerator[AsyncClient, None]:
    """
    HTTP client against the app with the test DB and fake Stripe injected.

    The lifespan is not run, so no real Stripe client is built.
    """
    from main import app
    from deps import get_stripe

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_stripe] = lambda: stripe

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c

    app.dependency_overrides.clear()


# ── Test Data Fixtures ────────────────────────────────────────────────


async def _add_user(db: AsyncSession, email: str, role: str) -> User:
    user = User(email=email, role=role)
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


@pytest.fixture
async def buyer(db_session: AsyncSession) -> User:
    return await _add_user(db_session, "buyer@example.com", "buyer")


@pytest.fixture
async def other_buyer(db_session: AsyncSession) -> User:
    return await _add_user(db_session, "someone.else@example.com", "buyer")


@pytest.fixture
async def breeder_user(db_session: AsyncSession) -> User:
    user = await _add_user(db_session, "kennel@example.com", "breeder")
    db_session.add(Breeder(
        user_id=user.id,
        business_name="Sunny Acres Kennel",
        delivery_fee=5000,
        delivery_areas=["90210", "90211"],
    ))
    await db_session.commit()
    return user


@pytest.fixture
async def rival_breeder_user(db_session: AsyncSession) -> User:
    user = await _add_user(db_session, "rival@example.com", "breeder")
    db_session.add(Breeder(user_id=user.id, business_name="Rival Kennel"))
    await db_session.commit()
    return user


@pytest.fixture
async def admin_user(db_session: AsyncSession) -> User:
    return await _add_user(db_session, "ops@example.com", "admin")


@pytest.fixture
async def litter(db_session: AsyncSession, breeder_user: User) -> Litter:
    """
    A litter of four: two males at $100 and two females at $120, with a
    10% discount from three puppies up. Stripe ids are placeholders.
    """
    from sqlalchemy import select
    res = await db_session.execute(select(Breeder).where(Breeder.user_id == breeder_user.id))
    breeder = res.scalar_one()

    litter = Litter(
        breeder_id=breeder.id,
        name="Spring Labradors",
        breed="Labrador",
        price_per_male=10000,
        price_per_female=12000,
        quantity_discounts=[{"quantity": 3, "discount_percentage": 10}],
        stripe_product_id="prod_placeholder",
        stripe_male_price_id="price_male_placeholder",
        stripe_female_price_id="price_female_placeholder",
        total_puppies=4,
        available_puppies=4,
    )
    db_session.add(litter)
    await db_session.flush()
    for name, gender in (("Duke", "male"), ("Bear", "male"), ("Daisy", "female"), ("Rosie", "female")):
        db_session.add(Puppy(litter_id=litter.id, name=name, gender=gender, color="yellow", is_available=True))
    await db_session.commit()
    await db_session.refresh(litter)
    return litter


@pytest.fixture
async def puppies(db_session: AsyncSession, litter: Litter) -> list[Puppy]:
    from sqlalchemy import select
    res = await db_session.execute(select(Puppy).where(Puppy.litter_id == litter.id).order_by(Puppy.id))
    return list(res.scalars().all())


@pytest.fixture
def session_metadata():
    """Build checkout-session metadata the way create_checkout_session writes it."""
    def _build(litter: Litter, puppy_ids: list[int], user: User, *, delivery_option: str = "pickup",
               delivery_fee: int = 0, zip_code: str | None = None) -> dict:
        meta = {
            c.META_LITTER_ID: str(litter.id),
            c.META_PUPPY_IDS: ",".join(str(pid) for pid in puppy_ids),
            c.META_USER_ID: str(user.id),
            c.META_DELIVERY_OPTION: delivery_option,
            c.META_DELIVERY_FEE: str(delivery_fee),
        }
        if zip_code:
            meta[c.META_DELIVERY_ZIP] = zip_code
        return meta
    return _build


@pytest.fixture
def auth_headers():
    from middleware.auth import issue_access_token

    def _headers(user: User) -> dict:
        token = issue_access_token(user_id=user.id, role=user.role)
        return {"Authorization": f"Bearer {token}"}
    return _headers
