"""Tests for the permissions and report-export endpoints."""

import pytest


@pytest.fixture
async def catalog(client, headers) -> dict[str, int]:
    resp = await client.get("/api/permissions", headers=headers("A001"))
    return {p["name"]: p["id"] for p in resp.json()}


async def _set(client, headers, employee_code, allow=(), deny=(), actor="A001"):
    return await client.put(
        f"/api/users/{employee_code}/permissions",
        json={"permissionIds": list(allow), "deniedPermissionIds": list(deny)},
        headers=headers(actor),
    )


class TestCatalog:
    async def test_admin_lists_catalog(self, client, headers, catalog):
        assert "export_reports" in catalog
        assert "manage_delegations" in catalog

    async def test_employee_cannot_list(self, client, headers):
        resp = await client.get("/api/permissions", headers=headers("E001"))
        assert resp.status_code == 403


class TestEffective:
    async def test_me(self, client, headers):
        resp = await client.get("/api/permissions/me", headers=headers("E001"))
        body = resp.json()
        assert body["role"] == "employee"
        assert body["department"] == "KHCN"
        assert body["permissions"]["create_delegation"] is True
        assert body["permissions"]["view_all_cases"] is False
        assert body["can_export_report"] is False

    async def test_department_default_export(self, client, headers):
        resp = await client.get("/api/reports/can-export", headers=headers("X001"))
        assert resp.json() == {"employee_code": "X001", "can_export": True}

    async def test_deny_beats_department_default(self, client, headers, catalog):
        resp = await _set(client, headers, "X001", deny=[catalog["export_reports"]])
        assert resp.status_code == 200
        assert resp.json()["effective"]["export_reports"] is False
        assert resp.json()["explicit"] == [
            {"permission_id": catalog["export_reports"], "name": "export_reports", "granted": False},
        ]

        resp = await client.get("/api/reports/can-export", headers=headers("X001"))
        assert resp.json()["can_export"] is False

    async def test_grant_takes_effect_next_request(self, client, headers, catalog):
        before = await client.get("/api/cases/C-1/access", headers=headers("E003"))
        assert before.json()["can_view"] is False

        await _set(client, headers, "E003", allow=[catalog["view_all_cases"]])

        after = await client.get("/api/cases/C-1/access", headers=headers("E003"))
        assert after.json()["can_view"] is True
        assert after.json()["can_edit"] is False

    async def test_admin_deny_is_ignored(self, client, headers, catalog):
        await _set(client, headers, "A001", deny=[catalog["export_reports"]])
        resp = await client.get("/api/reports/can-export", headers=headers("A001"))
        assert resp.json()["can_export"] is True


class TestUserPermissions:
    async def test_self_read_allowed(self, client, headers):
        resp = await client.get("/api/users/E001/permissions", headers=headers("E001"))
        assert resp.status_code == 200
        assert resp.json()["explicit"] == []

    async def test_other_read_forbidden(self, client, headers):
        resp = await client.get("/api/users/E002/permissions", headers=headers("E001"))
        assert resp.status_code == 403

    async def test_unknown_user(self, client, headers):
        resp = await client.get("/api/users/NOBODY/permissions", headers=headers("A001"))
        assert resp.status_code == 404
        resp = await _set(client, headers, "NOBODY")
        assert resp.status_code == 404

    async def test_overlap_rejected(self, client, headers, catalog):
        pid = catalog["export_reports"]
        resp = await _set(client, headers, "E001", allow=[pid], deny=[pid])
        assert resp.status_code == 400
        assert resp.json()["error"]["details"] == {"permission_ids": [pid]}

    async def test_unknown_permission_rejected(self, client, headers):
        resp = await _set(client, headers, "E001", allow=[9999])
        assert resp.status_code == 400

    async def test_employee_cannot_assign(self, client, headers, catalog):
        resp = await _set(client, headers, "E002", allow=[catalog["view_all_cases"]], actor="E001")
        assert resp.status_code == 403

    async def test_cannot_assign_to_self(self, client, headers, catalog):
        await _set(client, headers, "M001", allow=[catalog["manage_permissions"]])
        resp = await _set(client, headers, "M001", allow=[catalog["edit_all_cases"]], actor="M001")
        assert resp.status_code == 403

        resp = await _set(client, headers, "E001", allow=[catalog["view_all_cases"]], actor="M001")
        assert resp.status_code == 200

    async def test_changes_are_audited(self, client, headers, catalog):
        await _set(client, headers, "E003", allow=[catalog["view_all_cases"]])
        await _set(client, headers, "X001", deny=[catalog["export_reports"]])

        entries = await client.get(
            "/api/audit", params={"event_type": "permissions_changed"}, headers=headers("A001"),
        )
        assert entries.json()["total"] == 2

        integrity = await client.get("/api/audit/integrity", headers=headers("A001"))
        assert integrity.json()["valid"] is True
        assert integrity.json()["entries_checked"] == 2


class TestExportAllowlist:
    async def test_add_and_remove(self, client, headers):
        assert (await client.get("/api/reports/can-export", headers=headers("E001"))).json()["can_export"] is False

        resp = await client.post(
            "/api/reports/export-allowlist", json={"employee_code": "E001"}, headers=headers("A001"),
        )
        assert resp.status_code == 201
        assert resp.json()["employee_codes"] == ["E001"]
        assert resp.json()["department_defaults"] == ["KH&QLRR", "KH&XLRR"]
        assert (await client.get("/api/reports/can-export", headers=headers("E001"))).json()["can_export"] is True

        resp = await client.delete("/api/reports/export-allowlist/E001", headers=headers("A001"))
        assert resp.json()["employee_codes"] == []
        assert (await client.get("/api/reports/can-export", headers=headers("E001"))).json()["can_export"] is False

    async def test_unknown_employee(self, client, headers):
        resp = await client.post(
            "/api/reports/export-allowlist", json={"employee_code": "NOBODY"}, headers=headers("A001"),
        )
        assert resp.status_code == 400

    async def test_deny_beats_allowlist(self, client, headers, catalog):
        await client.post(
            "/api/reports/export-allowlist", json={"employee_code": "E001"}, headers=headers("A001"),
        )
        await _set(client, headers, "E001", deny=[catalog["export_reports"]])
        assert (await client.get("/api/reports/can-export", headers=headers("E001"))).json()["can_export"] is False

    @pytest.mark.parametrize("code", ["M001", "D001", "E001"])
    async def test_admin_only(self, client, headers, code):
        resp = await client.get("/api/reports/export-allowlist", headers=headers(code))
        assert resp.status_code == 403
