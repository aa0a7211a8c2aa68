"""
Menu & Restaurant Settings

Guest-facing menu reads plus the staff-only administration behind it:
categories, dishes (prices typed in display currency, stored in EUR),
restaurant settings and PIN changes.

Deleting a category or a dish never touches history: dishes lose their
category reference and order lines lose their dish reference, and the
views render "Unknown category" / "Unknown dish" for those.
"""

import logging
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.config import get_settings
from app.core.errors import AuthenticationError, NotFoundError, PersistenceError, ValidationError
from app.core.security import hash_pin, require_scope, validate_new_pin, verify_pin
from app.models import (
    Category,
    CurrencyCode,
    Dish,
    OrderItem,
    RestaurantSettings,
    SessionScope,
    StaffSession,
)
from app.schemas import (
    CategoryCreate,
    CategoryUpdate,
    CategoryView,
    DishCreate,
    DishUpdate,
    DishView,
    MenuView,
    PinChange,
    PinTypeEnum,
    PriceView,
    SettingsUpdate,
)
from app.services.currency import convert_from_eur, convert_to_eur, symbol_for

logger = logging.getLogger(__name__)

UNKNOWN_CATEGORY = "Unknown category"


async def get_restaurant_settings(db: AsyncSession) -> Optional[RestaurantSettings]:
    """The settings singleton, or None before the first seed."""
    try:
        result = await db.execute(
            select(RestaurantSettings).order_by(RestaurantSettings.id).limit(1)
        )
    except SQLAlchemyError as e:
        logger.exception("Failed to load restaurant settings")
        raise PersistenceError("Could not load restaurant settings", detail=str(e)) from e
    return result.scalar_one_or_none()


async def ensure_restaurant_settings(db: AsyncSession) -> RestaurantSettings:
    """
    Seed the settings row on first start.

    The configured default PINs are hashed before they are stored.
    """
    restaurant = await get_restaurant_settings(db)
    if restaurant is not None:
        return restaurant

    settings = get_settings()
    restaurant = RestaurantSettings(
        name="Mon Restaurant",
        currency=CurrencyCode.EUR,
        eur_to_djf=200.0,
        eur_to_usd=1.10,
        admin_pin_hash=hash_pin(settings.default_admin_pin),
        security_pin_hash=hash_pin(settings.default_security_pin),
    )
    db.add(restaurant)
    await db.commit()
    logger.info("Seeded restaurant settings with default PINs")
    return restaurant


def price_view(amount_eur: float, restaurant: Optional[RestaurantSettings]) -> PriceView:
    return PriceView(**convert_from_eur(amount_eur, restaurant).to_dict())


def dish_view(dish: Dish, restaurant: Optional[RestaurantSettings]) -> DishView:
    return DishView(
        id=dish.id,
        name=dish.name,
        description=dish.description,
        price_eur=dish.price_eur,
        price=price_view(dish.price_eur, restaurant),
        category_id=dish.category_id,
        category_name=dish.category.name if dish.category is not None else UNKNOWN_CATEGORY,
        image_url=dish.image_url,
        is_available=bool(dish.is_available),
    )


class MenuService:
    """Menu reads and staff administration, bound to one DB session."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _commit(self, action: str) -> None:
        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.exception(f"Failed to {action}")
            raise PersistenceError(f"Could not {action}", detail=str(e)) from e

    # =========================================================================
    # GUEST READS
    # =========================================================================

    async def list_categories(self) -> list[Category]:
        result = await self.db.execute(
            select(Category).order_by(Category.display_order, Category.name)
        )
        return list(result.scalars().all())

    async def list_dishes(self, category_id: Optional[str] = None) -> list[Dish]:
        query = select(Dish).options(selectinload(Dish.category)).order_by(Dish.name)
        if category_id:
            query = query.where(Dish.category_id == category_id)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def menu(self, category_id: Optional[str] = None) -> MenuView:
        """Everything the guest menu page needs, priced in display currency."""
        restaurant = await get_restaurant_settings(self.db)
        categories = await self.list_categories()
        dishes = await self.list_dishes(category_id)
        return MenuView(
            restaurant_name=restaurant.name if restaurant else "Mon Restaurant",
            currency=(restaurant.currency.value if restaurant else CurrencyCode.EUR.value),
            symbol=symbol_for(restaurant),
            categories=[CategoryView.model_validate(c) for c in categories],
            dishes=[dish_view(d, restaurant) for d in dishes],
        )

    # =========================================================================
    # CATEGORIES
    # =========================================================================

    async def _get_category(self, category_id: str) -> Category:
        category = await self.db.get(Category, category_id)
        if category is None:
            raise NotFoundError(f"Category {category_id} not found")
        return category

    async def create_category(self, staff: StaffSession, data: CategoryCreate) -> Category:
        require_scope(staff, SessionScope.ADMIN)
        category = Category(name=data.name.strip(), display_order=data.display_order)
        self.db.add(category)
        await self._commit("create category")
        logger.info(f"Category '{category.name}' created")
        return category

    async def update_category(
        self, staff: StaffSession, category_id: str, data: CategoryUpdate
    ) -> Category:
        require_scope(staff, SessionScope.ADMIN)
        category = await self._get_category(category_id)
        if data.name is not None:
            category.name = data.name.strip()
        if data.display_order is not None:
            category.display_order = data.display_order
        await self._commit("update category")
        return category

    async def delete_category(self, staff: StaffSession, category_id: str) -> None:
        require_scope(staff, SessionScope.ADMIN)
        category = await self._get_category(category_id)
        await self.db.execute(
            update(Dish).where(Dish.category_id == category_id).values(category_id=None)
        )
        await self.db.delete(category)
        await self._commit("delete category")
        logger.info(f"Category '{category.name}' deleted")

    # =========================================================================
    # DISHES
    # =========================================================================

    async def _get_dish(self, dish_id: str) -> Dish:
        result = await self.db.execute(
            select(Dish)
            .options(selectinload(Dish.category))
            .where(Dish.id == dish_id)
            .execution_options(populate_existing=True)
        )
        dish = result.scalar_one_or_none()
        if dish is None:
            raise NotFoundError(f"Dish {dish_id} not found")
        return dish

    async def _check_category(self, category_id: Optional[str]) -> None:
        if category_id and await self.db.get(Category, category_id) is None:
            raise ValidationError(f"Unknown category {category_id}")

    async def _price_to_eur(self, price: float) -> float:
        restaurant = await get_restaurant_settings(self.db)
        try:
            return convert_to_eur(price, restaurant)
        except ValueError as e:
            raise ValidationError(str(e)) from e

    async def create_dish(self, staff: StaffSession, data: DishCreate) -> Dish:
        require_scope(staff, SessionScope.ADMIN)
        await self._check_category(data.category_id)

        dish = Dish(
            name=data.name.strip(),
            description=(data.description or "").strip() or None,
            price_eur=await self._price_to_eur(data.price),
            category_id=data.category_id or None,
            image_url=data.image_url or None,
            is_available=data.is_available,
        )
        self.db.add(dish)
        await self._commit("create dish")
        logger.info(f"Dish '{dish.name}' created at {dish.price_eur:.4f} EUR")
        return await self._get_dish(dish.id)

    async def update_dish(self, staff: StaffSession, dish_id: str, data: DishUpdate) -> Dish:
        require_scope(staff, SessionScope.ADMIN)
        dish = await self._get_dish(dish_id)
        fields = data.model_dump(exclude_unset=True)

        if "category_id" in fields:
            await self._check_category(fields["category_id"])
            dish.category_id = fields["category_id"] or None
        if fields.get("name") is not None:
            dish.name = fields["name"].strip()
        if "description" in fields:
            dish.description = (fields["description"] or "").strip() or None
        if fields.get("price") is not None:
            dish.price_eur = await self._price_to_eur(fields["price"])
        if "image_url" in fields:
            dish.image_url = fields["image_url"] or None
        if fields.get("is_available") is not None:
            dish.is_available = fields["is_available"]

        await self._commit("update dish")
        return await self._get_dish(dish_id)

    async def delete_dish(self, staff: StaffSession, dish_id: str) -> None:
        require_scope(staff, SessionScope.ADMIN)
        dish = await self._get_dish(dish_id)
        await self.db.execute(
            update(OrderItem).where(OrderItem.dish_id == dish_id).values(dish_id=None)
        )
        await self.db.delete(dish)
        await self._commit("delete dish")
        logger.info(f"Dish '{dish.name}' deleted")

    # =========================================================================
    # SETTINGS & PINS
    # =========================================================================

    async def update_settings(self, staff: StaffSession, data: SettingsUpdate) -> RestaurantSettings:
        require_scope(staff, SessionScope.ADMIN)
        if data.eur_to_djf <= 0 or data.eur_to_usd <= 0:
            raise ValidationError("Conversion rates must be positive")

        restaurant = await ensure_restaurant_settings(self.db)
        restaurant.name = data.name.strip()
        restaurant.currency = CurrencyCode(data.currency.value)
        restaurant.eur_to_djf = data.eur_to_djf
        restaurant.eur_to_usd = data.eur_to_usd
        await self._commit("update settings")
        logger.info(f"Settings updated (currency={restaurant.currency.value})")
        return restaurant

    async def change_pin(self, staff: StaffSession, data: PinChange) -> None:
        """Replace the admin or security PIN. Needs a security session."""
        require_scope(staff, SessionScope.SECURITY)
        restaurant = await ensure_restaurant_settings(self.db)

        if data.pin_type == PinTypeEnum.ADMIN:
            current_hash = restaurant.admin_pin_hash
        else:
            current_hash = restaurant.security_pin_hash

        if not verify_pin(data.current, current_hash):
            raise AuthenticationError("Current PIN is incorrect")
        validate_new_pin(data.new_pin, data.confirm)

        if data.pin_type == PinTypeEnum.ADMIN:
            restaurant.admin_pin_hash = hash_pin(data.new_pin)
        else:
            restaurant.security_pin_hash = hash_pin(data.new_pin)
        await self._commit("change PIN")
        logger.info(f"{data.pin_type.value} PIN changed")
