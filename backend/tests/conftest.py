import asyncio
from collections.abc import Generator
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict
from uuid import UUID

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext import asyncio as sa_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from bookstore.core import metrics
from bookstore.core.security import create_access_token
from bookstore.db.base import Base
from bookstore.db.session import get_session
from bookstore.main import app
from bookstore.models.catalog import Product
from bookstore.models.coupon import Coupon, CouponType
from bookstore.models.user import User, UserRole


async def _dispose(engine: sa_asyncio.AsyncEngine) -> None:
    try:
        await engine.dispose()
    except Exception:
        return


@pytest.fixture(autouse=True)
def _reset_metrics() -> Generator[None, None, None]:
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def session_factory() -> Generator[async_sessionmaker, None, None]:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    SessionLocal = async_sessionmaker(engine, expire_on_commit=False, autoflush=False)

    async def init_models() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(init_models())
    yield SessionLocal
    try:
        asyncio.run(_dispose(engine))
    except RuntimeError:
        loop = asyncio.new_event_loop()
        try:
            loop.run_until_complete(_dispose(engine))
        finally:
            loop.close()


@pytest.fixture
def test_app(session_factory) -> Generator[Dict[str, object], None, None]:
    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    client = TestClient(app)
    yield {"client": client, "session_factory": session_factory}
    client.close()
    app.dependency_overrides.clear()


def auth_headers(user_id: UUID) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(str(user_id))}"}


class Seeder:
    """Writes fixture rows in their own session and hands back ids."""

    def __init__(self, session_factory: async_sessionmaker) -> None:
        self.session_factory = session_factory
        self._counter = 0

    def headers(self, user_id: UUID) -> dict[str, str]:
        return auth_headers(user_id)

    def _next(self) -> int:
        self._counter += 1
        return self._counter

    def _add(self, obj: Any) -> UUID:
        async def _write() -> UUID:
            async with self.session_factory() as session:
                session.add(obj)
                await session.commit()
                return obj.id

        return asyncio.run(_write())

    def user(self, *, email: str | None = None, role: UserRole = UserRole.customer) -> UUID:
        n = self._next()
        return self._add(User(email=email or f"reader{n}@example.com", name=f"Reader {n}", role=role, is_active=True))

    def product(
        self,
        *,
        title: str | None = None,
        price: str = "15.00",
        stock: int = 10,
        category: str = "Fiction",
        isbn: str | None = None,
    ) -> UUID:
        n = self._next()
        return self._add(
            Product(
                title=title or f"Book {n}",
                isbn=isbn or f"978000000{n:04d}",
                author="Jane Author",
                category=category,
                price=Decimal(price),
                stock_quantity=stock,
                is_active=True,
            )
        )

    def coupon(
        self,
        code: str,
        *,
        type: CouponType = CouponType.percent,
        value: str = "10",
        max_discount_amount: str | None = None,
        min_subtotal: str | None = None,
        starts_at: datetime | None = None,
        ends_at: datetime | None = None,
        is_active: bool = True,
        usage_limit_total: int | None = None,
        usage_limit_per_user: int | None = None,
        eligible_product_ids: list[str] | None = None,
        eligible_category_slugs: list[str] | None = None,
    ) -> UUID:
        return self._add(
            Coupon(
                code=code,
                name=code.title(),
                type=type,
                value=Decimal(value),
                max_discount_amount=Decimal(max_discount_amount) if max_discount_amount is not None else None,
                min_subtotal=Decimal(min_subtotal) if min_subtotal is not None else None,
                starts_at=starts_at,
                ends_at=ends_at,
                is_active=is_active,
                usage_limit_total=usage_limit_total,
                usage_limit_per_user=usage_limit_per_user,
                eligible_product_ids=eligible_product_ids or [],
                eligible_category_slugs=eligible_category_slugs or [],
            )
        )

    def standard_coupons(self) -> dict[str, UUID]:
        return {
            "WELCOME10": self.coupon("WELCOME10", value="10", max_discount_amount="20", min_subtotal="30"),
            "FIVEOFF": self.coupon("FIVEOFF", type=CouponType.fixed, value="5", min_subtotal="25"),
        }


@pytest.fixture
def seed(session_factory) -> Seeder:
    return Seeder(session_factory)
