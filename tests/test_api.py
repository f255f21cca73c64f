"""Tests for the HTTP API: authentication, envelopes and the referral flow."""
import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp import test_utils
from aiohttp.test_utils import AioHTTPTestCase

from app.config import settings
from app.main import build_app
from app.middlewares import auth_middleware, error_middleware
from core.exceptions import InsufficientEligibleFunds
from services.notifications import ReferralNotifier

SERVICE = {"X-Service-Token": "test-service-token"}
ADMIN = {"X-User-Id": "admin-1", "X-User-Role": "admin"}


def user(user_id: str) -> dict:
    return {"X-User-Id": user_id}


@pytest.fixture(autouse=True)
def service_token(monkeypatch):
    monkeypatch.setattr(settings, "service_token", SERVICE["X-Service-Token"])


@pytest_asyncio.fixture
async def client(session_maker, clock):
    app = build_app(session_maker=session_maker, clock=clock, notifier=ReferralNotifier())
    async with test_utils.TestClient(test_utils.TestServer(app)) as client:
        yield client


async def _init_referrer(client, user_id: str = "alice", user_type: str = "normal") -> dict:
    resp = await client.post(
        "/api/internal/referrals/init",
        json={"userId": user_id, "userType": user_type},
        headers=SERVICE,
    )
    assert resp.status == 200
    return (await resp.json())["data"]


async def _credit(client, referred: str, txn: str, amount="100.00", **extra) -> web.Response:
    body = {
        "referredUserId": referred,
        "transactionId": txn,
        "transactionType": "subscription",
        "grossAmount": amount,
        "currency": "USD",
    }
    body.update(extra)
    return await client.post("/api/internal/referrals/earnings", json=body, headers=SERVICE)


# ========== Authentication ==========

@pytest.mark.asyncio
async def test_health_is_public(client):
    resp = await client.get("/health")
    assert resp.status == 200
    assert (await resp.json())["status"] == "ok"


@pytest.mark.asyncio
async def test_referrer_routes_require_identity(client):
    resp = await client.get("/api/referrals/dashboard")

    assert resp.status == 401
    body = await resp.json()
    assert body["success"] is False
    assert body["error"]["code"] == "authentication_required"


@pytest.mark.asyncio
async def test_admin_routes_require_admin_role(client):
    resp = await client.get("/api/referrals/admin/overview", headers=user("alice"))

    assert resp.status == 403
    assert (await resp.json())["error"]["code"] == "permission_denied"


@pytest.mark.asyncio
@pytest.mark.parametrize("role", ["admin", "super_admin", "Admin"])
async def test_admin_roles(client, role):
    resp = await client.get(
        "/api/referrals/admin/overview", headers={"X-User-Id": "boss", "X-User-Role": role}
    )
    assert resp.status == 200


@pytest.mark.asyncio
@pytest.mark.parametrize("headers", [{}, {"X-Service-Token": "wrong"}, user("alice")])
async def test_internal_routes_require_service_token(client, headers):
    resp = await client.post("/api/internal/referrals/init", json={"userId": "alice"}, headers=headers)

    assert resp.status == 401
    assert (await resp.json())["error"]["code"] == "authentication_required"


@pytest.mark.asyncio
async def test_internal_routes_closed_without_configured_token(client, monkeypatch):
    monkeypatch.setattr(settings, "service_token", "")

    resp = await client.post(
        "/api/internal/referrals/init", json={"userId": "alice"}, headers={"X-Service-Token": ""}
    )
    assert resp.status == 401


# ========== Referral flow ==========

@pytest.mark.asyncio
async def test_referral_flow(client, clock):
    """Initialize, share, sign up, earn, request and approve a payout."""
    settings_body = await _init_referrer(client)
    assert settings_body["initialCommissionRate"] == 20.0
    assert settings_body["recurringCommissionRate"] == 10.0

    resp = await client.get("/api/referrals/link", headers=user("alice"))
    link = (await resp.json())["data"]
    code = link["referralCode"]

    resp = await client.get(f"/api/referrals/track/{code}")
    assert (await resp.json())["data"] == {"referralCode": code, "clicks": 1}

    resp = await client.post("/api/referrals/signup", json={"referredUserId": "bob", "referralCode": code})
    assert (await resp.json())["data"] == {"referredUserId": "bob", "referrerId": "alice"}

    resp = await _credit(client, "bob", "txn-1")
    assert resp.status == 201
    credited = (await resp.json())["data"]
    assert credited["outcome"] == "created"
    assert credited["earning"]["earningAmount"] == 20.0
    assert credited["earning"]["earningType"] == "initial"

    resp = await _credit(client, "bob", "txn-1")
    assert resp.status == 200
    assert (await resp.json())["data"]["outcome"] == "duplicate"

    resp = await client.get("/api/referrals/dashboard", headers=user("alice"))
    dashboard = (await resp.json())["data"]
    assert dashboard["stats"]["totalEarnings"] == 20.0
    assert dashboard["stats"]["conversionRate"] == 100.0
    assert dashboard["eligibleForPayout"] == 0.0

    clock.advance(days=settings.eligibility_days)

    resp = await client.post(
        "/api/referrals/payouts",
        json={"requestedAmount": 10, "currency": "USD", "paymentMethod": "paypal", "paymentDetails": {"email": "a@b.c"}},
        headers=user("alice"),
    )
    assert resp.status == 201
    payout = (await resp.json())["data"]
    assert payout["status"] == "pending"
    assert payout["requestedAmount"] == 10.0
    assert payout["reservedAmount"] == 20.0

    resp = await client.get("/api/referrals/payouts", headers=user("alice"))
    listed = (await resp.json())["data"]
    assert [p["id"] for p in listed["items"]] == [payout["id"]]

    resp = await client.get("/api/referrals/admin/payouts?status=pending", headers=ADMIN)
    assert (await resp.json())["data"]["pagination"]["total"] == 1

    resp = await client.patch(
        f"/api/referrals/admin/payouts/{payout['id']}", json={"status": "approved"}, headers=ADMIN
    )
    assert resp.status == 200
    approved = (await resp.json())["data"]
    assert approved["status"] == "approved"
    assert approved["processedBy"] == "admin-1"

    resp = await client.patch(
        f"/api/referrals/admin/payouts/{payout['id']}", json={"status": "approved"}, headers=ADMIN
    )
    assert resp.status == 409
    error = (await resp.json())["error"]
    assert error["code"] == "invalid_transition"
    assert error["currentStatus"] == "approved"
    assert error["targetStatus"] == "approved"


@pytest.mark.asyncio
async def test_insufficient_funds_response(client):
    await _init_referrer(client)

    resp = await client.post(
        "/api/referrals/payouts",
        json={"requestedAmount": "25.50", "paymentMethod": "stripe", "paymentDetails": {"account": "acct_1"}},
        headers=user("alice"),
    )

    assert resp.status == 400
    error = (await resp.json())["error"]
    assert error["code"] == InsufficientEligibleFunds.code
    assert error["eligibleTotal"] == 0.0
    assert error["requestedAmount"] == 25.5
    assert error["currency"] == settings.default_currency


@pytest.mark.asyncio
async def test_unreferred_purchase_is_not_credited(client):
    resp = await _credit(client, "stranger", "txn-1")

    assert resp.status == 200
    data = (await resp.json())["data"]
    assert data["outcome"] == "no_referrer"
    assert data["earning"] is None


@pytest.mark.asyncio
async def test_list_earnings(client, clock):
    await _init_referrer(client)
    for i in range(3):
        await _credit(client, f"buyer-{i}", f"txn-{i}", referrerId="alice")
        clock.advance(minutes=1)

    resp = await client.get("/api/referrals/earnings?limit=2&page=2", headers=user("alice"))

    assert resp.status == 200
    data = (await resp.json())["data"]
    assert [e["transactionId"] for e in data["items"]] == ["txn-0"]
    assert data["pagination"] == {"page": 2, "limit": 2, "total": 3, "pages": 2}


@pytest.mark.asyncio
async def test_list_earnings_by_type(client, clock):
    await _init_referrer(client)
    await _credit(client, "bob", "txn-1", referrerId="alice")
    clock.advance(minutes=1)
    await _credit(client, "bob", "txn-2", referrerId="alice")

    resp = await client.get("/api/referrals/earnings?earningType=initial", headers=user("alice"))
    items = (await resp.json())["data"]["items"]
    assert [(e["transactionId"], e["earningType"]) for e in items] == [("txn-1", "initial")]

    resp = await client.get("/api/referrals/earnings?earningType=recurring", headers=user("alice"))
    items = (await resp.json())["data"]["items"]
    assert [e["transactionId"] for e in items] == ["txn-2"]


@pytest.mark.asyncio
async def test_admin_update_commission(client):
    await _init_referrer(client)

    resp = await client.patch(
        "/api/referrals/admin/users/alice/commission",
        json={"initialCommissionRate": 30, "paymentModel": "one-time"},
        headers=ADMIN,
    )

    assert resp.status == 200
    data = (await resp.json())["data"]
    assert data["initialCommissionRate"] == 30.0
    assert data["paymentModel"] == "one-time"
    assert data["customRates"] is True


@pytest.mark.asyncio
async def test_admin_update_commission_creates_settings(session_maker):
    """Updating a referrer that was never initialized, with the wall clock."""
    app = build_app(session_maker=session_maker, notifier=ReferralNotifier())
    async with test_utils.TestClient(test_utils.TestServer(app)) as live:
        resp = await live.patch(
            "/api/referrals/admin/users/newbie/commission",
            json={"recurringCommissionRate": 15},
            headers=ADMIN,
        )

        assert resp.status == 200
        data = (await resp.json())["data"]
        assert data["userId"] == "newbie"
        assert data["userType"] == "normal"
        assert data["initialCommissionRate"] == 20.0
        assert data["recurringCommissionRate"] == 15.0
        assert data["customRates"] is True
        assert data["updatedAt"] is not None


@pytest.mark.asyncio
async def test_admin_cancel_earning(client):
    await _init_referrer(client)
    resp = await _credit(client, "bob", "txn-1", referrerId="alice")
    earning_id = (await resp.json())["data"]["earning"]["id"]

    resp = await client.post(
        f"/api/referrals/admin/earnings/{earning_id}/cancel", json={"reason": "refund"}, headers=ADMIN
    )
    assert resp.status == 200
    assert (await resp.json())["data"]["status"] == "cancelled"

    resp = await client.post(f"/api/referrals/admin/earnings/{earning_id}/cancel", headers=ADMIN)
    assert resp.status == 409


@pytest.mark.asyncio
async def test_admin_referrers(client):
    await _init_referrer(client, "alice")
    await _init_referrer(client, "carol", "subscribed")

    resp = await client.get("/api/referrals/admin/referrers?userType=subscribed", headers=ADMIN)

    data = (await resp.json())["data"]
    assert [r["userId"] for r in data["items"]] == ["carol"]


# ========== Errors ==========

@pytest.mark.asyncio
@pytest.mark.parametrize(
    "method, path, body, field",
    [
        ("post", "/api/referrals/payouts", {"requestedAmount": 0, "paymentMethod": "paypal", "paymentDetails": {"a": 1}}, "requestedAmount"),
        ("post", "/api/referrals/payouts", {"requestedAmount": 5, "paymentMethod": "cash", "paymentDetails": {"a": 1}}, "paymentMethod"),
        ("post", "/api/referrals/payouts", {"requestedAmount": 5, "paymentMethod": "paypal", "paymentDetails": {}}, "paymentDetails"),
        ("patch", "/api/referrals/admin/users/alice/commission", {"initialCommissionRate": 150}, "initialCommissionRate"),
        ("patch", "/api/referrals/admin/payouts/1", {"status": "pending"}, "status"),
        ("patch", "/api/referrals/admin/payouts/abc", {"status": "approved"}, "id"),
        ("get", "/api/referrals/admin/referrers?sortBy=mood", None, "sortBy"),
    ],
)
async def test_validation_errors(client, method, path, body, field):
    headers = {"X-User-Id": "alice", "X-User-Role": "admin"}
    resp = await getattr(client, method)(path, json=body, headers=headers)

    assert resp.status == 400
    error = (await resp.json())["error"]
    assert error["code"] == "validation_error"
    assert error["field"] == field


@pytest.mark.asyncio
async def test_invalid_json_body(client):
    resp = await client.post(
        "/api/referrals/signup", data="{not json", headers={"Content-Type": "application/json"}
    )

    assert resp.status == 400
    assert (await resp.json())["error"]["field"] == "body"


@pytest.mark.asyncio
async def test_not_found(client):
    resp = await client.patch("/api/referrals/admin/payouts/999", json={"status": "approved"}, headers=ADMIN)
    assert resp.status == 404
    assert (await resp.json())["error"]["code"] == "not_found"

    resp = await client.get("/api/referrals/track/unknown-code")
    assert resp.status == 404


class TestErrorMiddleware(AioHTTPTestCase):
    """Test exception translation on a bare application."""

    async def get_application(self):
        app = web.Application(middlewares=[error_middleware, auth_middleware])

        async def boom(request):
            raise RuntimeError("unexpected")

        async def missing(request):
            raise web.HTTPNotFound()

        app.router.add_get('/api/referrals/boom', boom)
        app.router.add_get('/health/missing', missing)
        return app

    async def test_unexpected_error_is_500(self):
        resp = await self.client.get('/api/referrals/boom', headers=user("alice"))
        assert resp.status == 500
        body = await resp.json()
        assert body == {"success": False, "error": {"code": "internal_error", "message": "Internal server error"}}

    async def test_http_exceptions_pass_through(self):
        resp = await self.client.get('/health/missing')
        assert resp.status == 404

    async def test_unknown_route(self):
        resp = await self.client.get('/nowhere')
        assert resp.status == 404
