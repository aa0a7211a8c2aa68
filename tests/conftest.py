"""
Shared fixtures: a throwaway SQLite store per test, the in-memory change
feed, a seeded restaurant with a small menu, and an HTTP client wired to
both through dependency overrides.
"""

import os

# Settings are read once at import time
os.environ["ENV_MODE"] = "development"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["EXCEL_EXPORT_ENABLED"] = "false"
os.environ["DEFAULT_ADMIN_PIN"] = "1234"
os.environ["DEFAULT_SECURITY_PIN"] = "0000"
os.environ["RESTAURANT_TIMEZONE"] = "Africa/Djibouti"
os.environ["KITCHEN_HISTORY_LIMIT"] = "50"

from datetime import timedelta

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.database import Base, get_db, get_session_maker
from app.main import app
from app.models import Category, Dish, OrderStatus, SessionScope, StaffSession, utcnow
from app.services.changefeed import InMemoryChangeFeed, get_change_feed
from app.services.lifecycle import next_status
from app.services.menu import ensure_restaurant_settings
from app.services.orders import OrderService


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'orders.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
def feed():
    return InMemoryChangeFeed()


@pytest.fixture
async def restaurant(db):
    return await ensure_restaurant_settings(db)


@pytest.fixture
async def menu(db, restaurant):
    """Burger 10 EUR, Salade 5 EUR, Soda 2.5 EUR, Tajine (unavailable)."""
    plats = Category(name="Plats", display_order=1)
    db.add(plats)
    await db.flush()

    dishes = {
        "burger": Dish(name="Burger", price_eur=10.0, category_id=plats.id),
        "salade": Dish(name="Salade", price_eur=5.0, category_id=plats.id),
        "soda": Dish(name="Soda", price_eur=2.5),
        "tajine": Dish(name="Tajine", price_eur=15.0, category_id=plats.id, is_available=False),
    }
    db.add_all(dishes.values())
    await db.commit()
    return dishes


@pytest.fixture
def orders(db, feed):
    return OrderService(db, feed)


@pytest.fixture
def advance():
    """Walk an order forward until it reaches the target status."""
    async def _advance(service: OrderService, order_id: str, target: OrderStatus):
        order = await service.get_order(order_id)
        while order.status != target:
            order = await service.update_status(order_id, next_status(order.status))
        return order
    return _advance


def _staff(scope: SessionScope) -> StaffSession:
    now = utcnow()
    return StaffSession(
        token=f"test-{scope.value}",
        scope=scope,
        created_at=now,
        expires_at=now + timedelta(hours=1),
    )


@pytest.fixture
def admin_staff():
    return _staff(SessionScope.ADMIN)


@pytest.fixture
def security_staff():
    return _staff(SessionScope.SECURITY)


@pytest.fixture
async def client(session_maker, feed, restaurant):
    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_maker] = lambda: session_maker
    app.dependency_overrides[get_change_feed] = lambda: feed

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
async def admin_headers(client):
    response = await client.post("/api/staff/login", json={"pin": "1234", "scope": "admin"})
    assert response.status_code == 200
    return {"X-Staff-Token": response.json()["token"]}


@pytest.fixture
async def security_headers(client):
    response = await client.post("/api/staff/login", json={"pin": "0000", "scope": "security"})
    assert response.status_code == 200
    return {"X-Staff-Token": response.json()["token"]}
