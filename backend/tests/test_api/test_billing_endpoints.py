"""Tests for billing API endpoints — catalog, checkout, status, cancellation, admin."""

import json
import uuid
from datetime import timedelta
from decimal import Decimal

import httpx
import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from app.billing.coinremitter import CoinremitterClient
from app.billing.dependencies import get_coinremitter_client, get_nowpayments_client
from app.billing.nowpayments import JwtTokenCache, NowPaymentsClient
from app.database import utcnow
from app.main import app
from app.models.subscription import Subscription, SubscriptionPlan
from app.models.user import User
from app.services.subscription_service import get_subscription


class ProviderStub:
    """Records requests and answers them by URL path suffix."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.routes: dict[str, tuple[int, dict]] = {}

    def respond(self, suffix: str, status_code: int, **kwargs) -> None:
        self.routes[suffix] = (status_code, kwargs)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        for suffix, (status_code, kwargs) in self.routes.items():
            if request.url.path.endswith(suffix):
                return httpx.Response(status_code, **kwargs)
        return httpx.Response(500, text="unexpected request")


@pytest.fixture
def coinremitter_stub(client: AsyncClient) -> ProviderStub:
    stub = ProviderStub()
    cr = CoinremitterClient(
        api_key="cr-key",
        api_password="cr-pass",
        app_url="http://app.test",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(stub)),
    )
    app.dependency_overrides[get_coinremitter_client] = lambda: cr
    return stub


@pytest.fixture
def nowpayments_options() -> dict:
    return {"api_key": "np-key"}


@pytest.fixture
def nowpayments_stub(client: AsyncClient, nowpayments_options: dict) -> ProviderStub:
    stub = ProviderStub()
    stub.respond("/auth", 200, json={"token": "jwt"})
    np = NowPaymentsClient(
        api_key=nowpayments_options["api_key"],
        email="billing@test.com",
        password="secret",
        ipn_secret="ipn-secret",
        app_url="http://app.test",
        token_cache=JwtTokenCache(),
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(stub)),
    )
    app.dependency_overrides[get_nowpayments_client] = lambda: np
    return stub


async def _subscribe(db: AsyncSession, user: User, status: str = "active", **extra) -> Subscription:
    now = utcnow()
    subscription = Subscription(
        user_id=user.id,
        billing_cycle="monthly",
        status=status,
        current_period_start=now,
        current_period_end=now + timedelta(days=30),
        **extra,
    )
    db.add(subscription)
    await db.flush()
    return subscription


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


class TestCatalog:
    async def test_token_packages_public(self, client: AsyncClient):
        response = await client.get("/api/v1/billing/token-packages")
        assert response.status_code == 200
        packages = {p["id"]: p for p in response.json()["packages"]}
        assert len(packages) == 6
        assert packages["pack_550"]["total_tokens"] == 605
        assert packages["pack_550"]["bonus_tokens"] == 55
        assert Decimal(packages["pack_100"]["price"]) == Decimal("9.99")

    async def test_plans_lists_active_only(self, client: AsyncClient, db_session: AsyncSession):
        db_session.add_all(
            [
                SubscriptionPlan(
                    billing_cycle="quarterly",
                    label="Quarterly",
                    months=3,
                    price=Decimal("23.97"),
                    price_per_month=Decimal("7.99"),
                    tokens_granted=300,
                ),
                SubscriptionPlan(
                    billing_cycle="monthly",
                    label="Retired",
                    months=1,
                    price=Decimal("9.99"),
                    price_per_month=Decimal("9.99"),
                    tokens_granted=100,
                    is_active=False,
                ),
            ]
        )
        await db_session.flush()

        response = await client.get("/api/v1/billing/plans")
        assert response.status_code == 200
        plans = response.json()["plans"]
        assert [p["label"] for p in plans] == ["Quarterly"]


# ---------------------------------------------------------------------------
# Subscription status and cancellation
# ---------------------------------------------------------------------------


class TestSubscriptionStatus:
    async def test_requires_auth(self, client: AsyncClient):
        response = await client.get("/api/v1/billing/subscription")
        assert response.status_code in (401, 403)

    async def test_no_subscription(self, client: AsyncClient, auth_headers: dict):
        response = await client.get("/api/v1/billing/subscription", headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["has_subscription"] is False
        assert response.json()["days_remaining"] == 0

    async def test_active_subscription(
        self, client: AsyncClient, db_session: AsyncSession, test_user: User, auth_headers: dict
    ):
        await _subscribe(db_session, test_user, provider="coinremitter")
        response = await client.get("/api/v1/billing/subscription", headers=auth_headers)
        data = response.json()
        assert data["has_subscription"] is True
        assert data["status"] == "active"
        assert data["provider"] == "coinremitter"
        assert data["days_remaining"] == 30


class TestCancel:
    URL = "/api/v1/billing/subscription/cancel"

    async def test_no_subscription(self, client: AsyncClient, auth_headers: dict, nowpayments_stub):
        response = await client.post(self.URL, headers=auth_headers)
        assert response.status_code == 404
        assert response.json()["detail"] == "No subscription found"

    async def test_not_active(
        self, client: AsyncClient, db_session: AsyncSession, test_user: User, auth_headers: dict, nowpayments_stub
    ):
        await _subscribe(db_session, test_user, status="pending")
        response = await client.post(self.URL, headers=auth_headers)
        assert response.status_code == 400
        assert response.json()["detail"] == "Subscription is not active"

    async def test_cancels_even_if_provider_fails(
        self, client: AsyncClient, db_session: AsyncSession, test_user: User, auth_headers: dict, nowpayments_stub
    ):
        await _subscribe(db_session, test_user, nowpayments_subscription_id="777")
        nowpayments_stub.respond("/subscriptions/777", 502, text="bad gateway")

        response = await client.post(self.URL, headers=auth_headers)

        assert response.status_code == 200
        assert "retain access" in response.json()["message"]
        assert any(r.method == "DELETE" for r in nowpayments_stub.requests)
        sub = await get_subscription(db_session, test_user.id)
        assert sub.status == "cancelled"
        assert sub.cancelled_at is not None


# ---------------------------------------------------------------------------
# Subscription checkout
# ---------------------------------------------------------------------------


class TestSubscriptionCheckout:
    async def test_coinremitter_checkout(
        self, client: AsyncClient, db_session: AsyncSession, test_user: User, auth_headers: dict, coinremitter_stub
    ):
        coinremitter_stub.respond(
            "/invoice/create", 200, json={"success": True, "data": {"invoice_id": "INV-9", "url": "http://pay/INV-9"}}
        )

        response = await client.post(
            "/api/v1/billing/checkout/coinremitter", json={"billing_cycle": "annually"}, headers=auth_headers
        )

        assert response.status_code == 200
        assert response.json() == {
            "provider": "coinremitter",
            "payment_id": "INV-9",
            "url": "http://pay/INV-9",
            "status": None,
        }
        body = json.loads(coinremitter_stub.requests[0].content)
        assert body["amount"] == "47.88"
        assert body["custom_data1"] == str(test_user.id)

        sub = await get_subscription(db_session, test_user.id)
        assert sub.status == "pending"
        assert sub.external_order_id == "INV-9"

    async def test_already_active(
        self, client: AsyncClient, db_session: AsyncSession, test_user: User, auth_headers: dict, coinremitter_stub
    ):
        await _subscribe(db_session, test_user)
        response = await client.post(
            "/api/v1/billing/checkout/coinremitter", json={"billing_cycle": "monthly"}, headers=auth_headers
        )
        assert response.status_code == 409
        assert coinremitter_stub.requests == []

    async def test_invalid_cycle(self, client: AsyncClient, auth_headers: dict, coinremitter_stub):
        response = await client.post(
            "/api/v1/billing/checkout/coinremitter", json={"billing_cycle": "weekly"}, headers=auth_headers
        )
        assert response.status_code == 422

    async def test_provider_error_is_502(self, client: AsyncClient, auth_headers: dict, coinremitter_stub):
        response = await client.post(
            "/api/v1/billing/checkout/coinremitter", json={"billing_cycle": "monthly"}, headers=auth_headers
        )
        assert response.status_code == 502

    async def test_nowpayments_without_plan(self, client: AsyncClient, auth_headers: dict, nowpayments_stub):
        response = await client.post(
            "/api/v1/billing/checkout/nowpayments", json={"billing_cycle": "monthly"}, headers=auth_headers
        )
        assert response.status_code == 400
        assert "No active subscription plan" in response.json()["detail"]

    async def test_nowpayments_checkout(
        self, client: AsyncClient, db_session: AsyncSession, test_user: User, auth_headers: dict, nowpayments_stub
    ):
        plan = SubscriptionPlan(
            nowpayments_id="321",
            billing_cycle="monthly",
            label="Monthly",
            months=1,
            price=Decimal("12.99"),
            price_per_month=Decimal("12.99"),
            tokens_granted=100,
        )
        db_session.add(plan)
        await db_session.flush()
        nowpayments_stub.respond(
            "/subscriptions", 200, json={"result": {"id": 4242, "status": "WAITING_PAY"}}
        )

        response = await client.post(
            "/api/v1/billing/checkout/nowpayments", json={"billing_cycle": "monthly"}, headers=auth_headers
        )

        assert response.status_code == 200
        assert response.json()["payment_id"] == "4242"
        assert response.json()["status"] == "WAITING_PAY"
        sub = await get_subscription(db_session, test_user.id)
        assert sub.status == "pending"
        assert sub.nowpayments_subscription_id == "4242"
        assert sub.plan_id == plan.id


# ---------------------------------------------------------------------------
# Token checkout
# ---------------------------------------------------------------------------


class TestTokenCheckout:
    URL = "/api/v1/billing/tokens/checkout"

    async def test_requires_active_subscription(self, client: AsyncClient, auth_headers: dict, nowpayments_stub):
        response = await client.post(self.URL, json={"package_id": "pack_100"}, headers=auth_headers)
        assert response.status_code == 403
        assert response.json()["detail"] == "Active subscription required to purchase tokens"

    async def test_invalid_package(
        self, client: AsyncClient, db_session: AsyncSession, test_user: User, auth_headers: dict, nowpayments_stub
    ):
        await _subscribe(db_session, test_user)
        response = await client.post(self.URL, json={"package_id": "pack_1"}, headers=auth_headers)
        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid token package"

    async def test_nowpayments_token_checkout(
        self, client: AsyncClient, db_session: AsyncSession, test_user: User, auth_headers: dict, nowpayments_stub
    ):
        await _subscribe(db_session, test_user)
        nowpayments_stub.respond(
            "/payment", 200, json={"payment_id": 99, "payment_status": "waiting", "invoice_url": "http://np/99"}
        )

        response = await client.post(self.URL, json={"package_id": "pack_550"}, headers=auth_headers)

        assert response.status_code == 200
        assert response.json() == {
            "provider": "nowpayments",
            "payment_id": "99",
            "url": "http://np/99",
            "status": "waiting",
        }
        body = json.loads(nowpayments_stub.requests[-1].content)
        assert body["order_id"].startswith(f"tokens_{test_user.id}_pack_550_")

    @pytest.mark.parametrize("nowpayments_options", [{"api_key": ""}])
    async def test_unconfigured_provider_is_503(
        self, client: AsyncClient, db_session: AsyncSession, test_user: User, auth_headers: dict, nowpayments_stub
    ):
        await _subscribe(db_session, test_user)
        response = await client.post(self.URL, json={"package_id": "pack_100"}, headers=auth_headers)
        assert response.status_code == 503

    async def test_coinremitter_token_checkout(
        self, client: AsyncClient, db_session: AsyncSession, test_user: User, auth_headers: dict, coinremitter_stub
    ):
        await _subscribe(db_session, test_user)
        coinremitter_stub.respond(
            "/invoice/create", 200, json={"success": True, "data": {"invoice_id": "INV-TK", "url": "http://pay/INV-TK"}}
        )

        response = await client.post(
            "/api/v1/billing/tokens/checkout/coinremitter", json={"package_id": "pack_2400"}, headers=auth_headers
        )

        assert response.status_code == 200
        assert response.json()["payment_id"] == "INV-TK"
        body = json.loads(coinremitter_stub.requests[0].content)
        assert body["custom_data2"] == "tokens-pack-2400"


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------


class TestAdminBilling:
    async def test_expire_sweep(
        self, client: AsyncClient, db_session: AsyncSession, test_user: User, admin_headers: dict
    ):
        sub = await _subscribe(db_session, test_user)
        sub.current_period_end = utcnow() - timedelta(minutes=1)
        await db_session.flush()

        response = await client.post("/api/v1/billing/admin/subscriptions/expire", headers=admin_headers)

        assert response.status_code == 200
        assert response.json() == {"expired": 1}

    async def test_list_subscriptions(
        self, client: AsyncClient, db_session: AsyncSession, test_user: User, admin_headers: dict
    ):
        await _subscribe(db_session, test_user, status="pending")
        response = await client.get(
            "/api/v1/billing/admin/subscriptions", params={"status": "pending"}, headers=admin_headers
        )
        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        assert data["items"][0]["user_id"] == str(test_user.id)

    async def test_list_subscriptions_forbidden(self, client: AsyncClient, support_headers: dict):
        response = await client.get("/api/v1/billing/admin/subscriptions", headers=support_headers)
        assert response.status_code == 403

    async def test_create_plan(self, client: AsyncClient, admin_headers: dict, nowpayments_stub):
        nowpayments_stub.respond("/subscriptions/plans", 200, json={"result": {"id": 55}})

        response = await client.post(
            "/api/v1/billing/admin/plans",
            json={"billing_cycle": "quarterly", "label": "Quarterly", "months": 3, "price": "23.97", "tokens_granted": 300},
            headers=admin_headers,
        )

        assert response.status_code == 201
        data = response.json()
        assert data["nowpayments_id"] == "55"
        assert Decimal(data["price_per_month"]) == Decimal("7.99")
        sent = json.loads(nowpayments_stub.requests[-1].content)
        assert sent["interval_day"] == 90


class TestAdminPlanUpdate:
    async def _plan(self, db: AsyncSession, nowpayments_id: str | None = "55") -> SubscriptionPlan:
        plan = SubscriptionPlan(
            nowpayments_id=nowpayments_id,
            billing_cycle="quarterly",
            label="Quarterly",
            months=3,
            price=Decimal("23.97"),
            price_per_month=Decimal("7.99"),
            tokens_granted=300,
        )
        db.add(plan)
        await db.flush()
        return plan

    async def test_price_change_pushed_upstream(
        self, client: AsyncClient, db_session: AsyncSession, admin_headers: dict, nowpayments_stub
    ):
        plan = await self._plan(db_session)
        nowpayments_stub.respond("/subscriptions/plans/55", 200, json={"result": {"id": 55}})

        response = await client.patch(
            f"/api/v1/billing/admin/plans/{plan.id}",
            json={"label": "Quarterly Plus", "price": "29.97"},
            headers=admin_headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["label"] == "Quarterly Plus"
        assert Decimal(data["price_per_month"]) == Decimal("9.99")
        patch = nowpayments_stub.requests[-1]
        assert patch.method == "PATCH"
        assert json.loads(patch.content) == {"title": "Quarterly Plus", "amount": 29.97}

    async def test_local_only_change_skips_provider(
        self, client: AsyncClient, db_session: AsyncSession, admin_headers: dict, nowpayments_stub
    ):
        plan = await self._plan(db_session)

        response = await client.patch(
            f"/api/v1/billing/admin/plans/{plan.id}", json={"tokens_granted": 350}, headers=admin_headers
        )

        assert response.status_code == 200
        assert response.json()["tokens_granted"] == 350
        assert nowpayments_stub.requests == []

    async def test_provider_failure_leaves_plan_unchanged(
        self, client: AsyncClient, db_session: AsyncSession, admin_headers: dict, nowpayments_stub
    ):
        plan = await self._plan(db_session)

        response = await client.patch(
            f"/api/v1/billing/admin/plans/{plan.id}", json={"price": "29.97"}, headers=admin_headers
        )

        assert response.status_code == 502
        assert plan.price == Decimal("23.97")

    async def test_missing_plan(self, client: AsyncClient, admin_headers: dict, nowpayments_stub):
        response = await client.patch(
            f"/api/v1/billing/admin/plans/{uuid.uuid4()}", json={"label": "X"}, headers=admin_headers
        )
        assert response.status_code == 404


class TestAdminPlanListAndDelete:
    URL = "/api/v1/billing/admin/plans"

    async def _seed(self, db: AsyncSession) -> list[SubscriptionPlan]:
        plans = [
            SubscriptionPlan(
                billing_cycle=cycle,
                label=cycle.title(),
                months=months,
                price=Decimal(price),
                price_per_month=(Decimal(price) / months).quantize(Decimal("0.01")),
                tokens_granted=100 * months,
                is_active=active,
            )
            for cycle, months, price, active in (
                ("annually", 12, "47.88", True),
                ("monthly", 1, "12.99", True),
                ("quarterly", 3, "23.97", False),
            )
        ]
        db.add_all(plans)
        await db.flush()
        return plans

    async def test_lists_inactive_sorted_by_months(
        self, client: AsyncClient, db_session: AsyncSession, admin_headers: dict
    ):
        await self._seed(db_session)

        response = await client.get(self.URL, headers=admin_headers)

        assert response.status_code == 200
        data = response.json()
        assert [p["months"] for p in data["items"]] == [1, 3, 12]
        assert data["total"] == 3
        assert data["total_pages"] == 1

    async def test_filters_sorting_and_paging(
        self, client: AsyncClient, db_session: AsyncSession, admin_headers: dict
    ):
        await self._seed(db_session)

        active = await client.get(self.URL, params={"is_active": "true"}, headers=admin_headers)
        assert {p["billing_cycle"] for p in active.json()["items"]} == {"monthly", "annually"}

        cycle = await client.get(self.URL, params={"billing_cycle": "quarterly"}, headers=admin_headers)
        assert [p["label"] for p in cycle.json()["items"]] == ["Quarterly"]

        by_price = await client.get(
            self.URL,
            params={"sort_by": "price", "sort_order": "desc", "page_size": 2, "page": 2},
            headers=admin_headers,
        )
        data = by_price.json()
        assert [p["billing_cycle"] for p in data["items"]] == ["monthly"]
        assert data["total_pages"] == 2

    async def test_list_admin_only(self, client: AsyncClient, support_headers: dict):
        assert (await client.get(self.URL, headers=support_headers)).status_code == 403

    async def test_delete_unused(self, client: AsyncClient, db_session: AsyncSession, admin_headers: dict):
        plan = (await self._seed(db_session))[0]

        response = await client.delete(f"{self.URL}/{plan.id}", headers=admin_headers)

        assert response.status_code == 200
        assert response.json() == {"message": "Plan deleted"}
        assert (await client.get(self.URL, headers=admin_headers)).json()["total"] == 2

    async def test_delete_refused_while_referenced(
        self, client: AsyncClient, db_session: AsyncSession, admin_headers: dict, test_user: User
    ):
        plan = (await self._seed(db_session))[1]
        db_session.add(Subscription(user_id=test_user.id, billing_cycle="monthly", status="active", plan_id=plan.id))
        await db_session.flush()

        response = await client.delete(f"{self.URL}/{plan.id}", headers=admin_headers)

        assert response.status_code == 409
        assert "1 subscription(s)" in response.json()["detail"]

    async def test_delete_missing(self, client: AsyncClient, admin_headers: dict):
        response = await client.delete(f"{self.URL}/{uuid.uuid4()}", headers=admin_headers)
        assert response.status_code == 404
