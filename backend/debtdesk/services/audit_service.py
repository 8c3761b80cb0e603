"""
Audit Service

Immutable, hash-chained audit trail. Every delegation transition, permission
change and delegated case mutation writes one entry; ``actor`` is always the
identity that really acted, never the base owner it acted for.
"""

import hashlib
import json
from datetime import datetime
from uuid import uuid4

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from debtdesk.models import AuditLog


class AuditService:
    """Immutable, hash-chained audit trail."""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _calculate_hash(self, content: dict, previous_hash: str | None) -> str:
        """SHA-256 hash of entry contents + previous hash."""
        payload = {
            "content": content,
            "previous_hash": previous_hash or "",
        }
        raw = json.dumps(payload, sort_keys=True, default=str)
        return hashlib.sha256(raw.encode()).hexdigest()

    async def _get_latest_hash(self) -> str | None:
        """Get the hash of the most recent audit entry."""
        result = await self.session.execute(
            select(AuditLog.current_hash)
            .order_by(AuditLog.id.desc())
            .limit(1)
        )
        row = result.scalar()
        return row

    async def log_event(
        self,
        event_type: str,
        actor: str,
        action: str,
        resource_type: str | None = None,
        resource_id: str | None = None,
        details: dict | None = None,
    ) -> AuditLog:
        """
        Write an immutable audit entry.

        Args:
            event_type: e.g. "delegation_created", "delegations_expired"
            actor: e.g. "system:expiry_sweeper", "manager:E1024"
            action: Human-readable description
            resource_type: "delegation", "case", "user", etc.
            resource_id: The ID of the affected resource
            details: Full event details as dict
        """
        previous_hash = await self._get_latest_hash()

        entry_details = details or {}
        content_for_hash = {
            "event_type": event_type,
            "actor": actor,
            "action": action,
            "resource_type": resource_type,
            "resource_id": resource_id,
            "details": entry_details,
        }
        current_hash = self._calculate_hash(content_for_hash, previous_hash)

        entry = AuditLog(
            event_id=str(uuid4()),
            event_type=event_type,
            actor=actor,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            details=entry_details,
            previous_hash=previous_hash,
            current_hash=current_hash,
        )
        self.session.add(entry)
        await self.session.flush()
        return entry


    async def log_delegation_created(
        self, delegation_id: str, case_id: str, delegator: str, delegatee: str,
        expiry_at: datetime, actor: str,
    ) -> AuditLog:
        return await self.log_event(
            event_type="delegation_created",
            actor=actor,
            action=f"Case {case_id} delegated from {delegator} to {delegatee} until {expiry_at.isoformat()}",
            resource_type="delegation",
            resource_id=delegation_id,
            details={
                "case_id": case_id,
                "delegator": delegator,
                "delegatee": delegatee,
                "expiry_at": expiry_at.isoformat(),
            },
        )

    async def log_delegation_revoked(self, delegation_id: str, case_id: str, delegatee: str, actor: str) -> AuditLog:
        return await self.log_event(
            event_type="delegation_revoked",
            actor=actor,
            action=f"Delegation {delegation_id} of case {case_id} to {delegatee} revoked",
            resource_type="delegation",
            resource_id=delegation_id,
            details={"case_id": case_id, "delegatee": delegatee},
        )

    async def log_delegations_expired(self, delegation_ids: list[str], trigger: str) -> AuditLog:
        return await self.log_event(
            event_type="delegations_expired",
            actor="system:expiry_sweeper",
            action=f"Expired {len(delegation_ids)} overdue delegations ({trigger})",
            resource_type="delegation",
            details={"delegation_ids": delegation_ids, "trigger": trigger},
        )

    async def log_case_state_changed(
        self, case_id: str, old_state: str, new_state: str, actor: str,
        via_delegation_id: str | None = None,
    ) -> AuditLog:
        return await self.log_event(
            event_type="case_updated",
            actor=actor,
            action=f"Case {case_id} state: {old_state} → {new_state}",
            resource_type="case",
            resource_id=case_id,
            details={
                "old_state": old_state,
                "new_state": new_state,
                "via_delegation_id": via_delegation_id,
            },
        )

    async def log_permissions_changed(self, employee_code: str, changes: dict, actor: str) -> AuditLog:
        return await self.log_event(
            event_type="permissions_changed",
            actor=actor,
            action=f"Explicit permissions of {employee_code} replaced",
            resource_type="user",
            resource_id=employee_code,
            details=changes,
        )

    async def log_export_allowlist_changed(self, employee_code: str, added: bool, actor: str) -> AuditLog:
        verb = "added to" if added else "removed from"
        return await self.log_event(
            event_type="export_allowlist_changed",
            actor=actor,
            action=f"{employee_code} {verb} the report export allow list",
            resource_type="user",
            resource_id=employee_code,
            details={"added": added},
        )

    async def verify_chain_integrity(self) -> dict:
        """Walk the full chain and verify each entry's hash."""
        result = await self.session.execute(
            select(AuditLog).order_by(AuditLog.id.asc())
        )
        entries = list(result.scalars())

        if not entries:
            return {"valid": True, "entries_checked": 0, "first_invalid": None}

        for i, entry in enumerate(entries):
            expected_prev = entries[i - 1].current_hash if i > 0 else None
            if entry.previous_hash != expected_prev:
                return {
                    "valid": False,
                    "entries_checked": i + 1,
                    "first_invalid": entry.event_id,
                    "reason": "previous_hash mismatch",
                }

            # Re-compute hash
            content = {
                "event_type": entry.event_type,
                "actor": entry.actor,
                "action": entry.action,
                "resource_type": entry.resource_type,
                "resource_id": entry.resource_id,
                "details": entry.details,
            }
            expected_hash = self._calculate_hash(content, entry.previous_hash)
            if entry.current_hash != expected_hash:
                return {
                    "valid": False,
                    "entries_checked": i + 1,
                    "first_invalid": entry.event_id,
                    "reason": "current_hash mismatch (data tampered)",
                }

        return {"valid": True, "entries_checked": len(entries), "first_invalid": None}

    @staticmethod
    def _filters(
        event_type: str | None = None,
        actor: str | None = None,
        resource_type: str | None = None,
        resource_id: str | None = None,
    ) -> list:
        conditions = []
        if event_type:
            conditions.append(AuditLog.event_type == event_type)
        if actor:
            conditions.append(AuditLog.actor == actor)
        if resource_type:
            conditions.append(AuditLog.resource_type == resource_type)
        if resource_id:
            conditions.append(AuditLog.resource_id == resource_id)
        return conditions

    async def get_entries(
        self,
        event_type: str | None = None,
        actor: str | None = None,
        resource_type: str | None = None,
        resource_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[AuditLog]:
        """Query audit entries with optional filters, newest first."""
        result = await self.session.execute(
            select(AuditLog)
            .where(*self._filters(event_type, actor, resource_type, resource_id))
            .order_by(AuditLog.id.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars())

    async def get_entry_count(
        self,
        event_type: str | None = None,
        actor: str | None = None,
        resource_type: str | None = None,
        resource_id: str | None = None,
    ) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(AuditLog)
            .where(*self._filters(event_type, actor, resource_type, resource_id))
        )
        return result.scalar() or 0
