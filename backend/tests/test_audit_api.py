"""Tests for the audit trail endpoints."""

from sqlalchemy import update

from debtdesk.models import AuditLog

IN_A_WEEK = "2026-03-09T09:00:00Z"


async def _delegate_and_revoke(client, headers, revoker):
    resp = await client.post(
        "/api/delegations",
        json={"case_ids": ["C-1"], "delegated_to_employee_code": "E002", "expiry_date": IN_A_WEEK},
        headers=headers("E001"),
    )
    delegation_id = resp.json()["delegations"][0]["delegation_id"]
    await client.patch(f"/api/delegations/{delegation_id}/revoke", headers=headers(revoker))
    return delegation_id


async def test_filters_apply_to_total(client, headers):
    delegation_id = await _delegate_and_revoke(client, headers, revoker="M001")

    resp = await client.get("/api/audit", params={"actor": "manager:M001"}, headers=headers("A001"))
    body = resp.json()
    assert body["total"] == 1
    [entry] = body["items"]
    assert entry["event_type"] == "delegation_revoked"
    assert entry["resource_id"] == delegation_id

    resp = await client.get(
        "/api/audit", params={"resource_type": "delegation", "resource_id": delegation_id},
        headers=headers("A001"),
    )
    assert [e["event_type"] for e in resp.json()["items"]] == ["delegation_revoked", "delegation_created"]


async def test_employee_cannot_read(client, headers):
    resp = await client.get("/api/audit", headers=headers("E001"))
    assert resp.status_code == 403


async def test_view_audit_grant(client, headers):
    catalog = {p["name"]: p["id"] for p in (await client.get("/api/permissions", headers=headers("A001"))).json()}
    await client.put(
        "/api/users/D001/permissions",
        json={"permissionIds": [catalog["view_audit"]]},
        headers=headers("A001"),
    )
    resp = await client.get("/api/audit", headers=headers("D001"))
    assert resp.status_code == 200


async def test_tampering_detected(client, headers, session_factory):
    await _delegate_and_revoke(client, headers, revoker="E001")
    async with session_factory() as session:
        await session.execute(
            update(AuditLog)
            .where(AuditLog.event_type == "delegation_created")
            .values(actor="employee:E999")
        )
        await session.commit()

    resp = await client.get("/api/audit/integrity", headers=headers("A001"))
    body = resp.json()
    assert body["valid"] is False
    assert body["reason"] == "current_hash mismatch (data tampered)"
