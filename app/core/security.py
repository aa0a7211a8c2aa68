"""
Staff Access

PINs are hashed with passlib and only ever compared through verify_pin().
A correct PIN opens a StaffSession row with an expiry; every staff-only
operation receives that session explicitly instead of reading an ambient
"authenticated" flag.
"""

import logging
import secrets
from datetime import timedelta
from typing import Optional

from passlib.context import CryptContext
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.errors import AuthenticationError, ValidationError
from app.models import RestaurantSettings, SessionScope, StaffSession, utcnow

logger = logging.getLogger(__name__)

pin_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

MIN_PIN_LENGTH = 4


def hash_pin(pin: str) -> str:
    return pin_context.hash(pin)


def verify_pin(pin: str, pin_hash: Optional[str]) -> bool:
    if not pin or not pin_hash:
        return False
    try:
        return pin_context.verify(pin, pin_hash)
    except ValueError:
        logger.error("Stored PIN hash is not recognised")
        return False


def validate_new_pin(new_pin: str, confirm: str) -> None:
    if new_pin != confirm:
        raise ValidationError("The new PINs do not match")
    if len(new_pin) < MIN_PIN_LENGTH:
        raise ValidationError(f"The PIN must contain at least {MIN_PIN_LENGTH} characters")


def _pin_hash_for(restaurant: RestaurantSettings, scope: SessionScope) -> str:
    if scope == SessionScope.SECURITY:
        return restaurant.security_pin_hash
    return restaurant.admin_pin_hash


async def open_session(
    db: AsyncSession,
    restaurant: RestaurantSettings,
    pin: str,
    scope: SessionScope = SessionScope.ADMIN,
) -> StaffSession:
    """
    Check a PIN and open a staff session.

    Raises:
        AuthenticationError: If the PIN is wrong
    """
    scope = SessionScope(scope)
    if not verify_pin(pin, _pin_hash_for(restaurant, scope)):
        logger.warning(f"Rejected {scope.value} PIN")
        raise AuthenticationError("Incorrect PIN")

    now = utcnow()
    await db.execute(delete(StaffSession).where(StaffSession.expires_at <= now))

    staff = StaffSession(
        token=secrets.token_urlsafe(32),
        scope=scope,
        created_at=now,
        expires_at=now + timedelta(minutes=get_settings().session_ttl_minutes),
    )
    db.add(staff)
    await db.commit()

    logger.info(f"Opened {scope.value} session (expires {staff.expires_at:%H:%M})")
    return staff


async def resolve_session(db: AsyncSession, token: Optional[str]) -> StaffSession:
    """
    Look up a session token.

    Raises:
        AuthenticationError: If the token is missing, unknown or expired
    """
    if not token:
        raise AuthenticationError("Staff session required")

    result = await db.execute(select(StaffSession).where(StaffSession.token == token))
    staff = result.scalar_one_or_none()
    if staff is None:
        raise AuthenticationError("Unknown staff session")
    if staff.is_expired():
        await db.delete(staff)
        await db.commit()
        raise AuthenticationError("Staff session expired")
    return staff


async def close_session(db: AsyncSession, token: str) -> None:
    await db.execute(delete(StaffSession).where(StaffSession.token == token))
    await db.commit()
    logger.info("Staff session closed")


def require_scope(staff: Optional[StaffSession], scope: SessionScope = SessionScope.ADMIN) -> StaffSession:
    """
    Guard for staff-only operations.

    Raises:
        AuthenticationError: If no session, an expired one, or the wrong scope
    """
    if staff is None:
        raise AuthenticationError("Staff session required")
    if staff.is_expired():
        raise AuthenticationError("Staff session expired")
    if SessionScope(staff.scope) != SessionScope(scope):
        raise AuthenticationError(f"This action needs a {SessionScope(scope).value} session")
    return staff
