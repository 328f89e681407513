"""Integration tests for mapping template endpoints."""

import uuid

from httpx import AsyncClient

BASE = "/api/v1/mapping-templates"
TEMPLATE = {
    "name": "Planilla mensual",
    "column_mapping": {"CELULAR": "phone", "NOMBRE": "first_name"},
    "headers": ["CELULAR", "NOMBRE"],
}


class TestMappingTemplates:
    async def test_create_and_list(self, admin_client: AsyncClient) -> None:
        resp = await admin_client.post(BASE, json=TEMPLATE)

        assert resp.status_code == 201
        assert resp.json()["is_foh"] is False
        listed = (await admin_client.get(BASE)).json()
        assert [t["name"] for t in listed] == ["Planilla mensual"]
        assert (await admin_client.get(BASE, params={"is_foh": True})).json() == []

    async def test_duplicate_name_rejected(self, admin_client: AsyncClient) -> None:
        await admin_client.post(BASE, json=TEMPLATE)

        resp = await admin_client.post(BASE, json=TEMPLATE)

        assert resp.status_code == 400
        assert "already exists" in resp.json()["detail"]

    async def test_match_ignores_order_and_case(self, admin_client: AsyncClient) -> None:
        created = (await admin_client.post(BASE, json=TEMPLATE)).json()

        resp = await admin_client.post(f"{BASE}/match", json={"headers": ["nombre", " celular "]})

        assert resp.status_code == 200
        assert resp.json()["id"] == created["id"]

    async def test_match_none(self, admin_client: AsyncClient) -> None:
        await admin_client.post(BASE, json=TEMPLATE)

        resp = await admin_client.post(f"{BASE}/match", json={"headers": ["CELULAR", "NOMBRE", "EXTRA"]})

        assert resp.status_code == 200
        assert resp.json() is None

    async def test_delete(self, admin_client: AsyncClient) -> None:
        created = (await admin_client.post(BASE, json=TEMPLATE)).json()

        assert (await admin_client.delete(f"{BASE}/{created['id']}")).status_code == 204
        assert (await admin_client.delete(f"{BASE}/{created['id']}")).status_code == 404

    async def test_delete_unknown(self, admin_client: AsyncClient) -> None:
        resp = await admin_client.delete(f"{BASE}/{uuid.uuid4()}")
        assert resp.status_code == 404
