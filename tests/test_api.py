import inspect
from types import SimpleNamespace

import httpx
import pytest
from eth_account import Account

from subscriptions.api import create_app
from subscriptions.currency import LocalCurrency
from subscriptions.events import EventJournal
from subscriptions.registry import EntitlementRegistry
from subscriptions.signer import LocalSigner, sign_mint_authorization
from subscriptions.store import StateStore
from subscriptions.validity import ManualClock

ETHER = 10**18
REGISTRY = "0x" + "ab" * 20
PROVIDER = Account.from_key("0x" + "22" * 32)
HOLDER = "0x" + "a1" * 20
RECIPIENT = "0x" + "b2" * 20


@pytest.fixture()
def anyio_backend():
    return "asyncio"


@pytest.fixture()
def clock():
    return ManualClock(current=1_700_000_000)


@pytest.fixture()
def registry(tmp_path, clock):
    currency = LocalCurrency(REGISTRY, tmp_path / "currency.json")
    currency.fund(HOLDER, 200 * ETHER)
    currency.approve(HOLDER, REGISTRY, 200 * ETHER)
    return EntitlementRegistry(
        REGISTRY,
        currency,
        store=StateStore(tmp_path / "state.json"),
        journal=EventJournal(tmp_path / "events.log"),
        clock=clock,
    )


def build_settings(**overrides):
    defaults = dict(api_admin_token=None)
    defaults.update(overrides)
    return SimpleNamespace(**defaults)


def mint_payload(nonce: int = 0, **overrides):
    signature = sign_mint_authorization(LocalSigner(PROVIDER), REGISTRY, 7, nonce)
    payload = {
        "content_id": 7,
        "unit_validity": 5000,
        "holder": HOLDER,
        "royalty_rate": 10,
        "unit_fee": str(100 * ETHER),
        "service_provider": PROVIDER.address,
        "signature": "0x" + signature.hex(),
        "name": "Weekly digest",
    }
    payload.update(overrides)
    return payload


def client_for(app):
    transport = httpx.ASGITransport(app=app)
    return httpx.AsyncClient(transport=transport, base_url="http://test")


@pytest.mark.anyio("asyncio")
async def test_mint_transfer_withdraw_flow(registry, clock):
    app = create_app(registry, build_settings())

    async with client_for(app) as client:
        resp = await client.post("/api/subscriptions/mint", json=mint_payload())
        assert resp.status_code == 200
        body = resp.json()
        assert body["nonce"] == "0"
        assert body["total_supply"] == "1"
        assert body["fee_paid"] == str(100 * ETHER)

        clock.advance(1000)
        resp = await client.get(f"/api/subscriptions/{HOLDER}/7")
        assert resp.status_code == 200
        assert resp.json()["validity_left"] == 4000
        assert resp.json()["net_royalty"] == str(8 * 10**17)

        resp = await client.post(
            "/api/subscriptions/transfer",
            json={
                "sender": HOLDER,
                "recipient": RECIPIENT,
                "content_id": 7,
                "amount": 1,
                "operator": HOLDER,
            },
        )
        assert resp.status_code == 200
        assert resp.json()["validity_transferred"] == 4000
        assert resp.json()["royalty_paid"] == str(8 * 10**17)

        resp = await client.get(f"/api/fees/{PROVIDER.address}")
        assert resp.json()["withdrawable"] == str(1008 * 10**17)

        resp = await client.post(f"/api/fees/{PROVIDER.address}/withdraw")
        assert resp.status_code == 200
        assert resp.json()["amount"] == str(1008 * 10**17)

        resp = await client.get("/api/events")
        events = resp.json()["events"]
        assert [event["event"] for event in events] == ["FeeWithdrawn", "TransferSingle", "NewAccess"]

    assert registry.currency.balance_of(PROVIDER.address) == 1008 * 10**17


@pytest.mark.anyio("asyncio")
async def test_replayed_mint_signature_maps_to_401(registry):
    app = create_app(registry, build_settings())

    async with client_for(app) as client:
        first = await client.post("/api/subscriptions/mint", json=mint_payload())
        assert first.status_code == 200
        replay = await client.post("/api/subscriptions/mint", json=mint_payload())

    assert replay.status_code == 401
    assert replay.json()["kind"] == "bad_authorization"
    assert replay.json()["retryable"] is False


@pytest.mark.anyio("asyncio")
async def test_transfer_without_balance_maps_to_409(registry):
    app = create_app(registry, build_settings())

    async with client_for(app) as client:
        resp = await client.post(
            "/api/subscriptions/transfer",
            json={
                "sender": RECIPIENT,
                "recipient": HOLDER,
                "content_id": 7,
                "amount": "1",
                "operator": RECIPIENT,
            },
        )

    assert resp.status_code == 409
    assert resp.json()["kind"] == "insufficient_balance"


@pytest.mark.anyio("asyncio")
async def test_uri_update_requires_provider(registry):
    app = create_app(registry, build_settings())

    async with client_for(app) as client:
        missing = await client.get("/api/contents/7/uri")
        assert missing.status_code == 404

        await client.post("/api/subscriptions/mint", json=mint_payload())

        denied = await client.put("/api/contents/7/uri", json={"caller": HOLDER, "uri": "ipfs://x"})
        assert denied.status_code == 403
        assert denied.json()["kind"] == "unauthorized"

        updated = await client.put(
            "/api/contents/7/uri",
            json={"caller": PROVIDER.address, "uri": "ipfs://digest/{id}.json"},
        )
        assert updated.status_code == 200

        resp = await client.get("/api/contents/7")

    assert resp.status_code == 200
    body = resp.json()
    assert body["uri"] == "ipfs://digest/{id}.json"
    assert body["service_provider"] == PROVIDER.address.lower()
    assert body["total_supply"] == "1"


@pytest.mark.anyio("asyncio")
async def test_admin_token_guards_mutations(registry):
    app = create_app(registry, build_settings(api_admin_token="secret"))

    async with client_for(app) as client:
        denied = await client.post("/api/subscriptions/mint", json=mint_payload())
        assert denied.status_code == 401

        allowed = await client.post(
            "/api/subscriptions/mint",
            json=mint_payload(),
            headers={"X-Admin-Token": "secret"},
        )
        assert allowed.status_code == 200

        reads = await client.get(f"/api/subscriptions/{HOLDER}/7")
        assert reads.status_code == 200


@pytest.mark.anyio("asyncio")
async def test_invalid_payload_is_rejected(registry):
    app = create_app(registry, build_settings())

    async with client_for(app) as client:
        resp = await client.post("/api/subscriptions/mint", json=mint_payload(holder="not-an-address"))
        assert resp.status_code == 422

        resp = await client.post("/api/subscriptions/mint", json=mint_payload(unit_fee="-5"))
        assert resp.status_code == 422

        resp = await client.post(f"/api/fees/{PROVIDER.address}/withdraw")

    assert resp.status_code == 409
    assert resp.json()["kind"] == "nothing_to_withdraw"


@pytest.mark.anyio("asyncio")
async def test_transfer_requires_sender_or_approved_operator(registry):
    app = create_app(registry, build_settings())
    operator = "0x" + "dd" * 20
    transfer = {
        "sender": HOLDER,
        "recipient": operator,
        "content_id": 7,
        "amount": 1,
        "operator": operator,
    }

    async with client_for(app) as client:
        await client.post("/api/subscriptions/mint", json=mint_payload())

        missing = await client.post(
            "/api/subscriptions/transfer",
            json={key: value for key, value in transfer.items() if key != "operator"},
        )
        assert missing.status_code == 422

        denied = await client.post("/api/subscriptions/transfer", json=transfer)
        assert denied.status_code == 403
        assert denied.json()["kind"] == "unauthorized"

        resp = await client.put(
            "/api/operators/approval",
            json={"owner": HOLDER, "operator": operator, "approved": True},
        )
        assert resp.status_code == 200

        resp = await client.get(f"/api/operators/{HOLDER}/{operator}")
        assert resp.json()["approved"] is True

        allowed = await client.post("/api/subscriptions/transfer", json=transfer)

    assert allowed.status_code == 200
    assert allowed.json()["operator"] == operator
    assert registry.balance_of(operator, 7) == 1


def test_registry_routes_run_in_threadpool(registry):
    app = create_app(registry, build_settings())

    registry_routes = [route for route in app.routes if getattr(route, "path", "").startswith("/api/")]

    assert registry_routes
    for route in registry_routes:
        assert not inspect.iscoroutinefunction(route.endpoint), route.path
