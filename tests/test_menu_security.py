from datetime import timedelta

import pytest
from sqlalchemy import select

from app.core.errors import AuthenticationError, NotFoundError, ValidationError
from app.core.security import (
    close_session,
    hash_pin,
    open_session,
    require_scope,
    resolve_session,
    validate_new_pin,
    verify_pin,
)
from app.models import CurrencyCode, SessionScope, StaffSession, utcnow
from app.schemas import (
    CategoryCreate,
    DishCreate,
    DishUpdate,
    PinChange,
    SettingsUpdate,
)
from app.services.menu import MenuService, dish_view, ensure_restaurant_settings


# =============================================================================
# PINS & SESSIONS
# =============================================================================

def test_pin_hashing():
    pin_hash = hash_pin("4321")
    assert pin_hash != "4321"
    assert verify_pin("4321", pin_hash)
    assert not verify_pin("1234", pin_hash)
    assert not verify_pin("", pin_hash)
    assert not verify_pin("4321", "not-a-known-hash")


def test_new_pin_rules():
    validate_new_pin("2468", "2468")
    with pytest.raises(ValidationError):
        validate_new_pin("2468", "2469")
    with pytest.raises(ValidationError):
        validate_new_pin("12", "12")


async def test_seeded_settings_are_created_once(db):
    first = await ensure_restaurant_settings(db)
    second = await ensure_restaurant_settings(db)
    assert first.id == second.id
    assert verify_pin("1234", first.admin_pin_hash)
    assert verify_pin("0000", first.security_pin_hash)


async def test_session_lifecycle(db, restaurant):
    with pytest.raises(AuthenticationError):
        await open_session(db, restaurant, "9999", SessionScope.ADMIN)

    staff = await open_session(db, restaurant, "1234", SessionScope.ADMIN)
    assert (await resolve_session(db, staff.token)).scope == SessionScope.ADMIN

    await close_session(db, staff.token)
    with pytest.raises(AuthenticationError):
        await resolve_session(db, staff.token)


async def test_pins_are_scoped(db, restaurant):
    with pytest.raises(AuthenticationError):
        await open_session(db, restaurant, "1234", SessionScope.SECURITY)
    staff = await open_session(db, restaurant, "0000", SessionScope.SECURITY)
    assert staff.scope == SessionScope.SECURITY


async def test_expired_session_is_refused_and_removed(db, restaurant):
    staff = await open_session(db, restaurant, "1234")
    staff.expires_at = utcnow() - timedelta(minutes=1)
    await db.commit()

    with pytest.raises(AuthenticationError):
        await resolve_session(db, staff.token)
    remaining = await db.execute(select(StaffSession).where(StaffSession.token == staff.token))
    assert remaining.scalar_one_or_none() is None


async def test_missing_token(db):
    with pytest.raises(AuthenticationError):
        await resolve_session(db, None)


def test_require_scope(admin_staff, security_staff):
    assert require_scope(admin_staff, SessionScope.ADMIN) is admin_staff
    with pytest.raises(AuthenticationError):
        require_scope(admin_staff, SessionScope.SECURITY)
    with pytest.raises(AuthenticationError):
        require_scope(None)


# =============================================================================
# MENU ADMINISTRATION
# =============================================================================

async def test_dish_price_typed_in_display_currency(db, restaurant, admin_staff):
    restaurant.currency = CurrencyCode.DJF
    restaurant.eur_to_djf = 200.0
    await db.commit()
    service = MenuService(db)

    dish = await service.create_dish(admin_staff, DishCreate(name="Skoudehkaris", price=2000.0))
    assert dish.price_eur == pytest.approx(10.0)

    view = dish_view(dish, restaurant)
    assert view.price.formatted == "2000.00 Fdj"
    assert view.category_name == "Unknown category"

    dish = await service.update_dish(admin_staff, dish.id, DishUpdate(price=3000.0))
    assert dish.price_eur == pytest.approx(15.0)


async def test_dish_needs_an_existing_category(db, restaurant, admin_staff):
    with pytest.raises(ValidationError):
        await MenuService(db).create_dish(
            admin_staff, DishCreate(name="Pizza", price=9.0, category_id="nope")
        )


async def test_menu_admin_needs_admin_scope(db, restaurant, security_staff):
    with pytest.raises(AuthenticationError):
        await MenuService(db).create_category(security_staff, CategoryCreate(name="Desserts"))


async def test_deleting_a_category_keeps_its_dishes(db, menu, admin_staff):
    service = MenuService(db)
    plats_id = menu["burger"].category_id

    await service.delete_category(admin_staff, plats_id)

    dishes = {d.name: d for d in await service.list_dishes()}
    assert dishes["Burger"].category_id is None
    assert dish_view(dishes["Burger"], None).category_name == "Unknown category"
    with pytest.raises(NotFoundError):
        await service.delete_category(admin_staff, plats_id)


async def test_menu_view(db, menu):
    view = await MenuService(db).menu()
    assert view.restaurant_name == "Mon Restaurant"
    assert view.symbol == "€"
    assert [c.name for c in view.categories] == ["Plats"]
    assert {d.name for d in view.dishes} == {"Burger", "Salade", "Soda", "Tajine"}
    assert {d.name: d.is_available for d in view.dishes}["Tajine"] is False


async def test_settings_update(db, restaurant, admin_staff):
    updated = await MenuService(db).update_settings(
        admin_staff,
        SettingsUpdate(name="Chez Ali", currency="USD", eur_to_djf=195.0, eur_to_usd=1.08),
    )
    assert updated.name == "Chez Ali"
    assert updated.currency == CurrencyCode.USD
    assert updated.eur_to_usd == pytest.approx(1.08)


async def test_settings_reject_non_positive_rates(db, restaurant, admin_staff):
    bad = SettingsUpdate.model_construct(name="X", currency="EUR", eur_to_djf=0.0, eur_to_usd=1.1)
    with pytest.raises(ValidationError):
        await MenuService(db).update_settings(admin_staff, bad)


async def test_pin_change_needs_security_session(db, restaurant, admin_staff, security_staff):
    change = PinChange(pin_type="admin", current="1234", new_pin="5678", confirm="5678")
    service = MenuService(db)

    with pytest.raises(AuthenticationError):
        await service.change_pin(admin_staff, change)

    await service.change_pin(security_staff, change)
    assert verify_pin("5678", restaurant.admin_pin_hash)
    await open_session(db, restaurant, "5678", SessionScope.ADMIN)


async def test_pin_change_checks_current_pin(db, restaurant, security_staff):
    change = PinChange(pin_type="security", current="1111", new_pin="5678", confirm="5678")
    with pytest.raises(AuthenticationError):
        await MenuService(db).change_pin(security_staff, change)
    assert verify_pin("0000", restaurant.security_pin_hash)
