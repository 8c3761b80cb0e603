"""
API Dependencies — DB session, clock, notifications, auth context, permission guards.

`get_request_context` runs on every authenticated request:
  1. Extracts the Bearer token from the Authorization header
  2. Decodes and validates the JWT issued by the identity service
  3. Loads the employee from the ``users`` mirror (must exist and be active)
  4. Recomputes the effective permission set from the policy store

Nothing the client holds about its own permissions is ever consulted.
Unauthenticated paths: /api/health, /metrics.
"""

import logging
from typing import AsyncGenerator

from fastapi import Depends, Request
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from debtdesk.auth.context import Identity, RequestContext
from debtdesk.auth.jwt import decode_access_token
from debtdesk.auth.permissions import Permission
from debtdesk.auth.roles import Role
from debtdesk.clock import Clock
from debtdesk.database import async_session
from debtdesk.errors import AuthenticationError, AuthorizationError
from debtdesk.middleware.request_context import set_employee_code
from debtdesk.models import User
from debtdesk.services.notifications import NotificationDispatcher
from debtdesk.services.permission_engine import load_effective_permissions

logger = logging.getLogger(__name__)


# ── Database session ─────────────────────────────────────────────────────────

async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield a DB session per request, commit on success, rollback on error."""
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


# ── Application handles ──────────────────────────────────────────────────────

def get_clock(request: Request) -> Clock:
    return request.app.state.clock


def get_dispatcher(request: Request) -> NotificationDispatcher:
    return request.app.state.dispatcher


# ── Request context (JWT authentication) ──────────────────────────────────────

def identity_for(user: User) -> Identity:
    try:
        role = Role(user.role)
    except ValueError:
        logger.warning("Employee %s has unknown role %r; treating as employee", user.employee_code, user.role)
        role = Role.EMPLOYEE
    return Identity(
        employee_code=user.employee_code,
        role=role,
        department=user.dept,
        branch_code=user.branch_code,
    )


async def authenticate_token(db: AsyncSession, token: str) -> Identity:
    """
    Turn a bearer token into an ``Identity`` backed by the users mirror.

    Role, department and branch come from the mirror row, not the token, so
    a reassignment takes effect on the next request.
    """
    try:
        claims = decode_access_token(token)
    except JWTError as e:
        logger.debug("JWT decode failed: %s", e)
        raise AuthenticationError("Invalid or expired token")

    user = await db.get(User, claims["sub"])
    if user is None:
        raise AuthenticationError("Unknown employee")
    if not user.is_active:
        raise AuthorizationError("Employee account is disabled")

    return identity_for(user)


async def get_request_context(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> RequestContext:
    """Build the RequestContext for the current request."""
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        raise AuthenticationError("Missing or invalid Authorization header")

    identity = await authenticate_token(db, auth_header[7:])  # strip "Bearer "
    set_employee_code(identity.employee_code)
    permissions = await load_effective_permissions(db, identity)
    return RequestContext(identity=identity, permissions=permissions)


# ── Permission guards ────────────────────────────────────────────────────────

def require_any(*perms: Permission, roles: tuple[Role, ...] = ()):
    """
    FastAPI dependency that checks the caller has AT LEAST ONE of the listed
    permissions, or holds one of ``roles``.
    """
    async def _check(ctx: RequestContext = Depends(get_request_context)) -> RequestContext:
        ctx.require_any(*perms, roles=roles)
        return ctx
    return _check


def require_role(*roles: Role):
    async def _check(ctx: RequestContext = Depends(get_request_context)) -> RequestContext:
        if ctx.role not in roles:
            raise AuthorizationError("Insufficient role")
        return ctx
    return _check
