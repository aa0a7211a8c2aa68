"""
FastAPI Application Entry Point

Table-side ordering: guests order from their table, the kitchen moves orders
along, the caisse takes payment. Every screen re-reads the store whenever
the change feed announces an order change.

Endpoints:
    Guest
    - GET  /api/menu: Menu priced in display currency
    - POST /api/orders: Submit a cart
    - GET  /api/orders/{id}: Order status page data
    - PUT  /api/orders/{id}/message: Message to the kitchen
    - WS   /ws/orders/{id}: Live order status

    Staff (X-Staff-Token)
    - POST /api/staff/login: PIN -> staff session
    - GET  /api/kitchen: Active orders + history
    - PATCH /api/orders/{id}/status: Next status
    - GET  /api/caisse: Today's orders + revenue
    - POST /api/orders/{id}/pay: Mark as paid
    - /api/admin/...: Menu, settings, PINs
    - WS   /ws/kitchen, /ws/caisse: Live staff views

    - GET /health: System health check
"""

import asyncio
import sys
import logging
from datetime import datetime, timezone
from typing import Any, Optional
from contextlib import asynccontextmanager

from fastapi import FastAPI, Depends, Query, Request, Header, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy import select, func

# Windows-specific event loop policy
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

# Internal imports
from app.core.config import get_settings, setup_logging
from app.core.errors import AuthenticationError, NotFoundError, OrderingError
from app.core.security import close_session, open_session, require_scope, resolve_session
from app.database import get_db, get_session_maker, init_db, engine, async_session_maker
from app.models import Order, OrderStatus, SessionScope, StaffSession
from app.schemas import (
    AdditionalMessageUpdate,
    ArchiveResponse,
    CaisseView,
    CategoryCreate,
    CategoryUpdate,
    CategoryView,
    DishCreate,
    DishUpdate,
    DishView,
    ErrorResponse,
    GuestOrderView,
    HealthResponse,
    KitchenView,
    MenuView,
    OrderCreate,
    OrderCreateResponse,
    OrderView,
    PinChange,
    PublicSettingsView,
    SessionResponse,
    SettingsUpdate,
    SettingsView,
    StaffLogin,
    StatusUpdate,
)
from app.services.changefeed import BaseChangeFeed, get_change_feed
from app.services.currency import symbol_for
from app.services.live import LiveView
from app.services.menu import (
    MenuService,
    dish_view,
    ensure_restaurant_settings,
    get_restaurant_settings,
)
from app.services import projections
from app.services.orders import OrderService
from app.tasks import export_paid_order

# Initialize configuration and logging
settings = get_settings()
setup_logging()
logger = logging.getLogger(__name__)


# =============================================================================
# APPLICATION LIFECYCLE
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application startup and shutdown events.
    """
    # Startup
    logger.info("=" * 60)
    logger.info(f"Starting {settings.app_name}")
    logger.info(f"   Version: {settings.app_version}")
    logger.info(f"   Environment: {settings.env_mode.value}")
    logger.info(f"   Debug: {settings.debug}")
    logger.info("=" * 60)

    await init_db()
    async with async_session_maker() as db:
        await ensure_restaurant_settings(db)
    logger.info("Database initialized")

    feed = get_change_feed()
    logger.info(f"Change Feed: {feed.provider_name}")

    problems = settings.validate_production_config()
    if problems:
        logger.warning(f"Production config still uses defaults: {problems}")

    logger.info("Application ready")

    yield  # Application runs

    # Shutdown
    logger.info("Shutting down...")
    await feed.close()
    await engine.dispose()
    logger.info("Cleanup complete")


# =============================================================================
# APPLICATION INSTANCE
# =============================================================================

app = FastAPI(
    title=settings.app_name,
    description=(
        "Table-side ordering with kitchen, caisse and guest views kept in sync "
        "through change notifications."
    ),
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# DEPENDENCIES
# =============================================================================

async def get_staff_session(
    x_staff_token: Optional[str] = Header(None, alias="x-staff-token"),
    db: AsyncSession = Depends(get_db),
) -> StaffSession:
    return await resolve_session(db, x_staff_token)


async def admin_session(staff: StaffSession = Depends(get_staff_session)) -> StaffSession:
    return require_scope(staff, SessionScope.ADMIN)


async def security_session(staff: StaffSession = Depends(get_staff_session)) -> StaffSession:
    return require_scope(staff, SessionScope.SECURITY)


def order_service(
    db: AsyncSession = Depends(get_db),
    feed: BaseChangeFeed = Depends(get_change_feed),
) -> OrderService:
    return OrderService(db, feed)


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def ledger_row(order: Order, view: OrderView) -> dict[str, Any]:
    """Sales ledger row for a paid order."""
    paid_at = order.paid_at or datetime.now(timezone.utc)
    return {
        "order_id": view.id,
        "table_number": view.table_number,
        "created_at": view.created_at.isoformat(),
        "paid_at": paid_at.isoformat(),
        "items": ", ".join(f"{item.quantity}x {item.dish_name}" for item in view.items),
        "total_eur": round(view.total_price, 2),
        "display_total": view.display_total.formatted,
        "currency": view.display_total.currency,
    }


def projection_fetcher(session_maker: async_sessionmaker, projection, *args):
    """Build a LiveView fetcher that reads through a fresh session each time."""
    async def fetch() -> dict[str, Any]:
        async with session_maker() as db:
            view = await projection(db, *args)
        return view.model_dump(mode="json")
    return fetch


async def serve_live_view(websocket: WebSocket, view: LiveView) -> None:
    """
    Push a LiveView's snapshots down a WebSocket until either side leaves.

    A failed refresh is reported to the client and retried on the next
    change; an unknown order ends the stream.
    """
    async def watch_disconnect() -> None:
        try:
            while (await websocket.receive())["type"] != "websocket.disconnect":
                pass
        finally:
            await view.close()

    watcher = asyncio.create_task(watch_disconnect())
    try:
        async with view:
            while not view.closed:
                try:
                    snapshot = await view.get()
                except NotFoundError as e:
                    await websocket.send_json(e.to_dict())
                    await websocket.close(code=1000)
                    break
                except OrderingError as e:
                    await websocket.send_json(e.to_dict())
                else:
                    if snapshot is not None:
                        await websocket.send_json(snapshot)
                if not await view.wait_for_change():
                    break
    except WebSocketDisconnect:
        pass
    finally:
        watcher.cancel()
        logger.info(f"WebSocket for '{view.name}' finished")


async def authorize_websocket(
    websocket: WebSocket,
    session_maker: async_sessionmaker,
    token: Optional[str],
) -> bool:
    async with session_maker() as db:
        try:
            require_scope(await resolve_session(db, token), SessionScope.ADMIN)
        except AuthenticationError as e:
            logger.warning(f"WebSocket refused: {e.message}")
            await websocket.close(code=1008)
            return False
    return True


# =============================================================================
# ROOT & HEALTH ENDPOINTS
# =============================================================================

@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """API root with navigation links."""
    return {
        "message": f"Welcome to {settings.app_name}",
        "version": settings.app_version,
        "environment": settings.env_mode.value,
        "documentation": "/docs",
        "menu": "/api/menu",
        "health": "/health",
    }


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["Health"],
    summary="System Health Check",
)
async def health_check(
    db: AsyncSession = Depends(get_db),
    feed: BaseChangeFeed = Depends(get_change_feed),
) -> HealthResponse:
    """Verify the store and the change feed are reachable."""

    db_status = "healthy"
    try:
        await db.execute(select(func.count()).select_from(StaffSession))
    except Exception as e:
        db_status = f"unhealthy: {str(e)}"
        logger.error(f"Database health check failed: {e}")

    feed_status = "healthy" if await feed.health_check() else "unhealthy"

    overall = "operational" if db_status == feed_status == "healthy" else "degraded"

    return HealthResponse(
        status=overall,
        database=db_status,
        change_feed=f"{feed_status} ({feed.provider_name})",
        timestamp=datetime.now(),
    )


# =============================================================================
# GUEST ENDPOINTS
# =============================================================================

@app.get("/api/menu", response_model=MenuView, tags=["Guest"])
async def get_menu(
    category_id: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
) -> MenuView:
    """Categories and dishes, priced in the restaurant's display currency."""
    return await MenuService(db).menu(category_id)


@app.get("/api/settings/public", response_model=PublicSettingsView, tags=["Guest"])
async def public_settings(db: AsyncSession = Depends(get_db)) -> PublicSettingsView:
    restaurant = await get_restaurant_settings(db)
    return PublicSettingsView(
        name=restaurant.name if restaurant else "Mon Restaurant",
        currency=restaurant.currency.value if restaurant else "EUR",
        symbol=symbol_for(restaurant),
    )


@app.post(
    "/api/orders",
    response_model=OrderCreateResponse,
    status_code=201,
    responses={422: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
    tags=["Guest"],
    summary="Submit Order",
)
async def create_order(
    order_data: OrderCreate,
    service: OrderService = Depends(order_service),
) -> OrderCreateResponse:
    """
    Submit a cart for a table.

    Prices are re-read from the menu; the response carries the id used for
    the status page.
    """
    logger.info(f"Creating order for table {order_data.table_number}")

    order = await service.create_order(
        order_data.table_number,
        order_data.items,
        order_data.customer_message,
    )
    restaurant = await get_restaurant_settings(service.db)
    view = projections.order_view(order, restaurant)

    return OrderCreateResponse(
        success=True,
        message="Order sent to the kitchen",
        order_id=order.id,
        status_url=f"/order-status/{order.id}?table={order.table_number}",
        total_price=order.total_price,
        display_total=view.display_total,
        order=view,
    )


@app.get(
    "/api/orders/{order_id}",
    response_model=GuestOrderView,
    responses={404: {"model": ErrorResponse}},
    tags=["Guest"],
)
async def get_order_status(
    order_id: str,
    db: AsyncSession = Depends(get_db),
) -> GuestOrderView:
    """Guest status page data."""
    return await projections.guest_view(db, order_id)


@app.put(
    "/api/orders/{order_id}/message",
    response_model=GuestOrderView,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
    tags=["Guest"],
)
async def send_additional_message(
    order_id: str,
    body: AdditionalMessageUpdate,
    service: OrderService = Depends(order_service),
) -> GuestOrderView:
    """Replace the guest's message to the kitchen (until the order is ready)."""
    await service.set_additional_message(order_id, body.message)
    return await projections.guest_view(service.db, order_id)


# =============================================================================
# STAFF SESSION ENDPOINTS
# =============================================================================

@app.post(
    "/api/staff/login",
    response_model=SessionResponse,
    responses={401: {"model": ErrorResponse}},
    tags=["Staff"],
)
async def staff_login(
    body: StaffLogin,
    db: AsyncSession = Depends(get_db),
) -> SessionResponse:
    restaurant = await ensure_restaurant_settings(db)
    staff = await open_session(db, restaurant, body.pin, SessionScope(body.scope.value))
    return SessionResponse(token=staff.token, scope=staff.scope.value, expires_at=staff.expires_at)


@app.post("/api/staff/logout", tags=["Staff"])
async def staff_logout(
    staff: StaffSession = Depends(get_staff_session),
    db: AsyncSession = Depends(get_db),
) -> dict[str, bool]:
    await close_session(db, staff.token)
    return {"success": True}


# =============================================================================
# KITCHEN ENDPOINTS
# =============================================================================

@app.get("/api/kitchen", response_model=KitchenView, tags=["Kitchen"])
async def kitchen(
    staff: StaffSession = Depends(admin_session),
    db: AsyncSession = Depends(get_db),
) -> KitchenView:
    return await projections.kitchen_view(db)


@app.get("/api/kitchen/active", response_model=list[OrderView], tags=["Kitchen"])
async def kitchen_active(
    staff: StaffSession = Depends(admin_session),
    db: AsyncSession = Depends(get_db),
) -> list[OrderView]:
    restaurant = await get_restaurant_settings(db)
    return [projections.order_view(o, restaurant) for o in await projections.kitchen_active(db)]


@app.get("/api/kitchen/history", response_model=list[OrderView], tags=["Kitchen"])
async def kitchen_history(
    staff: StaffSession = Depends(admin_session),
    db: AsyncSession = Depends(get_db),
) -> list[OrderView]:
    restaurant = await get_restaurant_settings(db)
    return [projections.order_view(o, restaurant) for o in await projections.kitchen_history(db)]


@app.patch(
    "/api/orders/{order_id}/status",
    response_model=OrderView,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
    tags=["Kitchen"],
)
async def update_order_status(
    order_id: str,
    body: StatusUpdate,
    staff: StaffSession = Depends(admin_session),
    service: OrderService = Depends(order_service),
) -> OrderView:
    """Move an order to its next status."""
    order = await service.update_status(order_id, OrderStatus(body.status.value))
    return projections.order_view(order, await get_restaurant_settings(service.db))


@app.post("/api/kitchen/clear-history", response_model=ArchiveResponse, tags=["Kitchen"])
async def clear_kitchen_history(
    staff: StaffSession = Depends(admin_session),
    service: OrderService = Depends(order_service),
) -> ArchiveResponse:
    """Archive every completed order."""
    return ArchiveResponse(success=True, archived=await service.archive_completed())


# =============================================================================
# CAISSE ENDPOINTS
# =============================================================================

@app.get("/api/caisse", response_model=CaisseView, tags=["Caisse"])
async def caisse(
    staff: StaffSession = Depends(admin_session),
    db: AsyncSession = Depends(get_db),
) -> CaisseView:
    return await projections.caisse_view(db)


@app.post(
    "/api/orders/{order_id}/pay",
    response_model=OrderView,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
    tags=["Caisse"],
)
async def mark_order_paid(
    order_id: str,
    staff: StaffSession = Depends(admin_session),
    service: OrderService = Depends(order_service),
) -> OrderView:
    """Mark a completed order as paid and queue its ledger row."""
    order, newly_paid = await service.mark_paid(order_id)
    view = projections.order_view(order, await get_restaurant_settings(service.db))

    if newly_paid and settings.excel_export_enabled:
        try:
            export_paid_order.delay(ledger_row(order, view))
        except Exception as e:
            logger.warning(f"Ledger export for order #{view.short_id} not queued: {e}")

    return view


@app.post("/api/caisse/clear-paid", response_model=ArchiveResponse, tags=["Caisse"])
async def clear_paid_orders(
    staff: StaffSession = Depends(admin_session),
    service: OrderService = Depends(order_service),
) -> ArchiveResponse:
    """Archive every paid order."""
    return ArchiveResponse(success=True, archived=await service.archive_paid())


# =============================================================================
# ADMIN ENDPOINTS
# =============================================================================

@app.get("/api/admin/categories", response_model=list[CategoryView], tags=["Admin"])
async def list_categories(
    staff: StaffSession = Depends(admin_session),
    db: AsyncSession = Depends(get_db),
) -> list[CategoryView]:
    return [CategoryView.model_validate(c) for c in await MenuService(db).list_categories()]


@app.post("/api/admin/categories", response_model=CategoryView, status_code=201, tags=["Admin"])
async def create_category(
    body: CategoryCreate,
    staff: StaffSession = Depends(admin_session),
    db: AsyncSession = Depends(get_db),
) -> CategoryView:
    return CategoryView.model_validate(await MenuService(db).create_category(staff, body))


@app.patch("/api/admin/categories/{category_id}", response_model=CategoryView, tags=["Admin"])
async def update_category(
    category_id: str,
    body: CategoryUpdate,
    staff: StaffSession = Depends(admin_session),
    db: AsyncSession = Depends(get_db),
) -> CategoryView:
    return CategoryView.model_validate(
        await MenuService(db).update_category(staff, category_id, body)
    )


@app.delete("/api/admin/categories/{category_id}", status_code=204, tags=["Admin"])
async def delete_category(
    category_id: str,
    staff: StaffSession = Depends(admin_session),
    db: AsyncSession = Depends(get_db),
) -> None:
    await MenuService(db).delete_category(staff, category_id)


@app.get("/api/admin/dishes", response_model=list[DishView], tags=["Admin"])
async def list_dishes(
    category_id: Optional[str] = Query(None),
    staff: StaffSession = Depends(admin_session),
    db: AsyncSession = Depends(get_db),
) -> list[DishView]:
    restaurant = await get_restaurant_settings(db)
    return [dish_view(d, restaurant) for d in await MenuService(db).list_dishes(category_id)]


@app.post("/api/admin/dishes", response_model=DishView, status_code=201, tags=["Admin"])
async def create_dish(
    body: DishCreate,
    staff: StaffSession = Depends(admin_session),
    db: AsyncSession = Depends(get_db),
) -> DishView:
    """Create a dish; the price is given in display currency."""
    dish = await MenuService(db).create_dish(staff, body)
    return dish_view(dish, await get_restaurant_settings(db))


@app.patch("/api/admin/dishes/{dish_id}", response_model=DishView, tags=["Admin"])
async def update_dish(
    dish_id: str,
    body: DishUpdate,
    staff: StaffSession = Depends(admin_session),
    db: AsyncSession = Depends(get_db),
) -> DishView:
    dish = await MenuService(db).update_dish(staff, dish_id, body)
    return dish_view(dish, await get_restaurant_settings(db))


@app.delete("/api/admin/dishes/{dish_id}", status_code=204, tags=["Admin"])
async def delete_dish(
    dish_id: str,
    staff: StaffSession = Depends(admin_session),
    db: AsyncSession = Depends(get_db),
) -> None:
    await MenuService(db).delete_dish(staff, dish_id)


@app.get("/api/admin/settings", response_model=SettingsView, tags=["Admin"])
async def read_settings(
    staff: StaffSession = Depends(admin_session),
    db: AsyncSession = Depends(get_db),
) -> SettingsView:
    return SettingsView.model_validate(await ensure_restaurant_settings(db))


@app.put("/api/admin/settings", response_model=SettingsView, tags=["Admin"])
async def write_settings(
    body: SettingsUpdate,
    staff: StaffSession = Depends(admin_session),
    db: AsyncSession = Depends(get_db),
) -> SettingsView:
    return SettingsView.model_validate(await MenuService(db).update_settings(staff, body))


@app.put("/api/admin/security/pin", tags=["Admin"])
async def change_pin(
    body: PinChange,
    staff: StaffSession = Depends(security_session),
    db: AsyncSession = Depends(get_db),
) -> dict[str, bool]:
    await MenuService(db).change_pin(staff, body)
    return {"success": True}


# =============================================================================
# LIVE VIEWS (WEBSOCKETS)
# =============================================================================

@app.websocket("/ws/kitchen")
async def ws_kitchen(
    websocket: WebSocket,
    token: Optional[str] = Query(None),
    session_maker: async_sessionmaker = Depends(get_session_maker),
    feed: BaseChangeFeed = Depends(get_change_feed),
):
    await websocket.accept()
    if not await authorize_websocket(websocket, session_maker, token):
        return
    view = LiveView(
        "kitchen",
        projection_fetcher(session_maker, projections.kitchen_view),
        feed,
        poll_interval=settings.kitchen_poll_seconds,
    )
    await serve_live_view(websocket, view)


@app.websocket("/ws/caisse")
async def ws_caisse(
    websocket: WebSocket,
    token: Optional[str] = Query(None),
    session_maker: async_sessionmaker = Depends(get_session_maker),
    feed: BaseChangeFeed = Depends(get_change_feed),
):
    await websocket.accept()
    if not await authorize_websocket(websocket, session_maker, token):
        return
    view = LiveView(
        "caisse",
        projection_fetcher(session_maker, projections.caisse_view),
        feed,
        poll_interval=settings.caisse_poll_seconds,
    )
    await serve_live_view(websocket, view)


@app.websocket("/ws/orders/{order_id}")
async def ws_order_status(
    websocket: WebSocket,
    order_id: str,
    session_maker: async_sessionmaker = Depends(get_session_maker),
    feed: BaseChangeFeed = Depends(get_change_feed),
):
    await websocket.accept()
    view = LiveView(
        f"order-{order_id[:8]}",
        projection_fetcher(session_maker, projections.guest_view, order_id),
        feed,
        row_id=order_id,
        poll_interval=settings.guest_poll_seconds,
    )
    await serve_live_view(websocket, view)


# =============================================================================
# ERROR HANDLERS
# =============================================================================

@app.exception_handler(OrderingError)
async def ordering_exception_handler(request: Request, exc: OrderingError) -> JSONResponse:
    """Domain errors carry their own status code."""
    if exc.status_code >= 500:
        logger.error(f"{exc.error} on {request.url.path}: {exc.message}")
    else:
        logger.info(f"{exc.error} on {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all exception handler."""
    logger.exception(f"Unhandled exception: {exc}")

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Internal Server Error",
            "detail": str(exc) if settings.debug else "An unexpected error occurred",
        },
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app.main:app", host=settings.api_host, port=settings.api_port, reload=settings.is_development)
