"""Tests for the financial categories admin endpoints."""

import uuid
from decimal import Decimal

from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.financial import FinancialCategory, FinancialTransaction

URL = "/api/v1/admin/financial-categories"


def _category(**overrides) -> dict:
    data = {
        "name": "hosting_expense",
        "label": "Hosting",
        "type": "expense",
        "group": "infrastructure",
        "description": "Servers and CDN",
    }
    data.update(overrides)
    return data


class TestCategoryCrud:
    async def test_create(self, client: AsyncClient, admin_headers: dict):
        response = await client.post(URL, json=_category(sort_order=3), headers=admin_headers)

        assert response.status_code == 201
        data = response.json()
        assert data["name"] == "hosting_expense"
        assert data["type"] == "expense"
        assert data["sort_order"] == 3
        assert data["is_active"] is True

    async def test_duplicate_name(self, client: AsyncClient, admin_headers: dict):
        await client.post(URL, json=_category(), headers=admin_headers)
        response = await client.post(URL, json=_category(label="Other"), headers=admin_headers)

        assert response.status_code == 409
        assert response.json()["detail"] == "Category with this name already exists"

    async def test_invalid_type(self, client: AsyncClient, admin_headers: dict):
        response = await client.post(URL, json=_category(type="refund"), headers=admin_headers)
        assert response.status_code == 422

    async def test_name_must_be_snake_case(self, client: AsyncClient, admin_headers: dict):
        response = await client.post(URL, json=_category(name="Hosting Expense"), headers=admin_headers)
        assert response.status_code == 422

    async def test_get_and_missing(self, client: AsyncClient, admin_headers: dict):
        created = (await client.post(URL, json=_category(), headers=admin_headers)).json()

        found = await client.get(f"{URL}/{created['id']}", headers=admin_headers)
        assert found.json()["label"] == "Hosting"

        missing = await client.get(f"{URL}/{uuid.uuid4()}", headers=admin_headers)
        assert missing.status_code == 404

    async def test_update(self, client: AsyncClient, admin_headers: dict):
        created = (await client.post(URL, json=_category(), headers=admin_headers)).json()

        response = await client.patch(
            f"{URL}/{created['id']}", json={"label": "Cloud hosting", "is_active": False}, headers=admin_headers
        )

        assert response.status_code == 200
        assert response.json()["label"] == "Cloud hosting"
        assert response.json()["is_active"] is False
        assert response.json()["name"] == "hosting_expense"

    async def test_rename_to_taken_name(self, client: AsyncClient, admin_headers: dict):
        await client.post(URL, json=_category(name="ads_expense"), headers=admin_headers)
        created = (await client.post(URL, json=_category(), headers=admin_headers)).json()

        response = await client.patch(f"{URL}/{created['id']}", json={"name": "ads_expense"}, headers=admin_headers)
        assert response.status_code == 409

    async def test_delete_unused(self, client: AsyncClient, admin_headers: dict):
        created = (await client.post(URL, json=_category(), headers=admin_headers)).json()

        response = await client.delete(f"{URL}/{created['id']}", headers=admin_headers)
        assert response.json() == {"message": "Category deleted"}

        assert (await client.get(f"{URL}/{created['id']}", headers=admin_headers)).status_code == 404

    async def test_delete_in_use(self, client: AsyncClient, db_session: AsyncSession, admin_headers: dict):
        category = FinancialCategory(name="sales", label="Sales", type="income", group="sales")
        db_session.add(category)
        await db_session.flush()
        db_session.add(
            FinancialTransaction(category_id=category.id, type="income", amount=Decimal("9.99"), description="Sale")
        )
        await db_session.flush()

        response = await client.delete(f"{URL}/{category.id}", headers=admin_headers)

        assert response.status_code == 400
        assert response.json()["detail"] == "Category has transactions. Deactivate it instead."


class TestCategoryList:
    async def _seed(self, client: AsyncClient, headers: dict) -> None:
        for data in (
            _category(name="hosting_expense", sort_order=2),
            _category(name="ads_expense", label="Advertising", group="marketing", sort_order=1),
            _category(name="token_sales", label="Token sales", type="income", group="sales", is_active=False),
        ):
            await client.post(URL, json=data, headers=headers)

    async def test_default_order_and_pagination(self, client: AsyncClient, admin_headers: dict):
        await self._seed(client, admin_headers)

        response = await client.get(URL, headers=admin_headers)

        data = response.json()
        assert [c["name"] for c in data["items"]] == ["token_sales", "ads_expense", "hosting_expense"]
        assert data["pagination"] == {"page": 1, "total": 3, "total_pages": 1, "size": 50}

    async def test_filters(self, client: AsyncClient, admin_headers: dict):
        await self._seed(client, admin_headers)

        by_type = await client.get(URL, params={"type": "income"}, headers=admin_headers)
        assert [c["name"] for c in by_type.json()["items"]] == ["token_sales"]

        active = await client.get(URL, params={"is_active": "true"}, headers=admin_headers)
        assert active.json()["pagination"]["total"] == 2

        searched = await client.get(URL, params={"search": "advert"}, headers=admin_headers)
        assert [c["name"] for c in searched.json()["items"]] == ["ads_expense"]

    async def test_groups(self, client: AsyncClient, admin_headers: dict):
        await self._seed(client, admin_headers)

        response = await client.get(f"{URL}/groups", headers=admin_headers)
        assert response.json() == ["infrastructure", "marketing", "sales"]

    async def test_admin_only(self, client: AsyncClient, auth_headers: dict, support_headers: dict):
        assert (await client.get(URL, headers=auth_headers)).status_code == 403
        assert (await client.get(URL, headers=support_headers)).status_code == 403
