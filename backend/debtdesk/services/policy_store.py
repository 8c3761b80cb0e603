"""
Policy Store — durable permission catalog, explicit grants, export allow list.
"""

import logging

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from debtdesk.errors import NotFoundError, ValidationError
from debtdesk.models import PermissionRecord, UserPermission, ExportAllowEntry, User

logger = logging.getLogger(__name__)


class PolicyStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    # ── Catalog ──────────────────────────────────────────────────────────

    async def list_permissions(self) -> list[PermissionRecord]:
        result = await self.session.execute(select(PermissionRecord).order_by(PermissionRecord.name))
        return list(result.scalars())

    # ── Explicit grants ──────────────────────────────────────────────────

    async def get_grant_rows(self, employee_code: str) -> list[UserPermission]:
        result = await self.session.execute(
            select(UserPermission)
            .where(UserPermission.employee_code == employee_code)
            .order_by(UserPermission.permission_id)
        )
        return list(result.scalars().unique())

    async def get_grants(self, employee_code: str) -> dict[str, bool]:
        """Explicit rows for one employee as ``{permission_name: granted}``."""
        result = await self.session.execute(
            select(PermissionRecord.name, UserPermission.granted)
            .join(UserPermission, UserPermission.permission_id == PermissionRecord.id)
            .where(UserPermission.employee_code == employee_code)
        )
        return {name: bool(granted) for name, granted in result.all()}

    async def set_grants(
        self,
        employee_code: str,
        permission_ids: list[int],
        denied_permission_ids: list[int] | None = None,
    ) -> list[UserPermission]:
        """
        Replace the explicit rows of one employee.

        ``permission_ids`` become allow rows, ``denied_permission_ids`` deny
        rows. Unknown ids or an id present in both lists raise
        ``ValidationError``; nothing is changed in that case.
        """
        denied_permission_ids = denied_permission_ids or []
        await self._get_user(employee_code)

        allow = list(dict.fromkeys(permission_ids))
        deny = list(dict.fromkeys(denied_permission_ids))
        overlap = set(allow) & set(deny)
        if overlap:
            raise ValidationError(
                "A permission cannot be both granted and denied",
                details={"permission_ids": sorted(overlap)},
            )

        requested = set(allow) | set(deny)
        if requested:
            known = set((await self.session.execute(
                select(PermissionRecord.id).where(PermissionRecord.id.in_(requested))
            )).scalars())
            invalid = sorted(requested - known)
            if invalid:
                raise ValidationError(
                    f"Unknown permission ids: {', '.join(str(i) for i in invalid)}",
                    details={"permission_ids": invalid},
                )

        await self.session.execute(
            delete(UserPermission).where(UserPermission.employee_code == employee_code)
        )
        for pid in allow:
            self.session.add(UserPermission(employee_code=employee_code, permission_id=pid, granted=True))
        for pid in deny:
            self.session.add(UserPermission(employee_code=employee_code, permission_id=pid, granted=False))
        await self.session.flush()

        logger.info(
            "Permissions replaced for %s: %d allowed, %d denied",
            employee_code, len(allow), len(deny),
        )
        return await self.get_grant_rows(employee_code)

    # ── Export allow list ────────────────────────────────────────────────

    async def list_export_allowed(self) -> list[str]:
        result = await self.session.execute(
            select(ExportAllowEntry.employee_code).order_by(ExportAllowEntry.employee_code)
        )
        return list(result.scalars())

    async def is_export_allowed(self, employee_code: str) -> bool:
        entry = await self.session.get(ExportAllowEntry, employee_code)
        return entry is not None

    async def add_export_allowed(self, employee_code: str, added_by: str | None = None) -> list[str]:
        await self._get_user(employee_code, error=ValidationError)
        if not await self.is_export_allowed(employee_code):
            self.session.add(ExportAllowEntry(employee_code=employee_code, added_by=added_by))
            await self.session.flush()
        return await self.list_export_allowed()

    async def remove_export_allowed(self, employee_code: str) -> list[str]:
        await self.session.execute(
            delete(ExportAllowEntry).where(ExportAllowEntry.employee_code == employee_code)
        )
        await self.session.flush()
        return await self.list_export_allowed()

    # ── Helpers ──────────────────────────────────────────────────────────

    async def _get_user(self, employee_code: str, error: type = NotFoundError) -> User:
        user = await self.session.get(User, employee_code)
        if user is None:
            raise error(f"User {employee_code} not found")
        return user
