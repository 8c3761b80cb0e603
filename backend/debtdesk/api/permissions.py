"""
Permissions API — catalog, the caller's effective set, per-user explicit grants.

``/api/permissions/me`` is advisory: clients use it to decide what to render.
Every protected route recomputes the set server-side regardless.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from debtdesk.api.deps import get_db, get_request_context, identity_for, require_any
from debtdesk.auth.context import RequestContext
from debtdesk.auth.permissions import Permission
from debtdesk.auth.roles import Role
from debtdesk.errors import AuthorizationError, NotFoundError
from debtdesk.models import User
from debtdesk.schemas.schemas import (
    EffectivePermissionsResponse,
    PermissionSchema,
    UserPermissionEntry,
    UserPermissionsResponse,
    UserPermissionsUpdate,
)
from debtdesk.services.audit_service import AuditService
from debtdesk.services.permission_engine import load_effective_permissions
from debtdesk.services.policy_store import PolicyStore

router = APIRouter(tags=["permissions"])

_ADMIN = (Role.ADMINISTRATOR,)


async def _user_permissions(db: AsyncSession, user: User) -> UserPermissionsResponse:
    store = PolicyStore(db)
    rows = await store.get_grant_rows(user.employee_code)
    effective = await load_effective_permissions(db, identity_for(user))
    return UserPermissionsResponse(
        employee_code=user.employee_code,
        explicit=[
            UserPermissionEntry(permission_id=r.permission_id, name=r.permission.name, granted=r.granted)
            for r in rows
        ],
        effective=effective.to_dict(),
    )


@router.get("/api/permissions", response_model=list[PermissionSchema])
async def list_permissions(
    ctx: RequestContext = Depends(require_any(
        Permission.VIEW_PERMISSIONS, Permission.MANAGE_PERMISSIONS, roles=_ADMIN,
    )),
    db: AsyncSession = Depends(get_db),
) -> list[PermissionSchema]:
    """Return the full permission catalog."""
    records = await PolicyStore(db).list_permissions()
    return [PermissionSchema.model_validate(r) for r in records]


@router.get("/api/permissions/me", response_model=EffectivePermissionsResponse)
async def my_permissions(
    ctx: RequestContext = Depends(get_request_context),
) -> EffectivePermissionsResponse:
    identity = ctx.identity
    return EffectivePermissionsResponse(
        employee_code=identity.employee_code,
        role=identity.role.value,
        department=identity.department,
        branch_code=identity.branch_code,
        permissions=ctx.permissions.to_dict(),
        can_export_report=ctx.permissions.can_export_report,
    )


@router.get("/api/users/{employee_code}/permissions", response_model=UserPermissionsResponse)
async def get_user_permissions(
    employee_code: str,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
) -> UserPermissionsResponse:
    """Explicit grant rows and the resulting effective set of one employee."""
    if employee_code != ctx.employee_code:
        ctx.require_any(Permission.VIEW_PERMISSIONS, Permission.MANAGE_PERMISSIONS, roles=_ADMIN)

    user = await db.get(User, employee_code)
    if user is None:
        raise NotFoundError(f"User {employee_code} not found")
    return await _user_permissions(db, user)


@router.put("/api/users/{employee_code}/permissions", response_model=UserPermissionsResponse)
async def update_user_permissions(
    employee_code: str,
    body: UserPermissionsUpdate,
    ctx: RequestContext = Depends(require_any(
        Permission.ASSIGN_PERMISSIONS, Permission.MANAGE_PERMISSIONS, roles=_ADMIN,
    )),
    db: AsyncSession = Depends(get_db),
) -> UserPermissionsResponse:
    """
    Replace the explicit grants of one employee.

    ``permissionIds`` become explicit allows, ``deniedPermissionIds`` explicit
    denies. The change applies from the employee's next request.
    """
    if employee_code == ctx.employee_code and not ctx.identity.is_admin:
        raise AuthorizationError("You cannot change your own permissions")

    store = PolicyStore(db)
    await store.set_grants(employee_code, body.permission_ids, body.denied_permission_ids)
    await AuditService(db).log_permissions_changed(
        employee_code,
        {"allowed": sorted(set(body.permission_ids)), "denied": sorted(set(body.denied_permission_ids))},
        actor=ctx.actor,
    )
    await db.commit()

    user = await db.get(User, employee_code)
    return await _user_permissions(db, user)
