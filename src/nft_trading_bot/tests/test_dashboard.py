from __future__ import annotations

import asyncio
from datetime import datetime, timezone

from httpx import ASGITransport, AsyncClient

from nft_trading_bot.config.settings import AppConfig, DashboardAuthMode, DashboardConfig, ScannerConfig
from nft_trading_bot.dashboard import DashboardState, create_dashboard_app
from nft_trading_bot.dashboard.__main__ import build_app
from nft_trading_bot.datalake.schemas import AssetInfo, CollectionStats
from nft_trading_bot.execution.paper import PaperMarketplaceExecutor
from nft_trading_bot.ingestion.market_trends import StaticMarketTrends
from nft_trading_bot.ingestion.portfolio import InMemoryPortfolio
from nft_trading_bot.service import TradingAutomationService

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
CONTROL_TOKEN = "c0ntrol"
CONTROL_CONFIG = AppConfig(
    dashboard=DashboardConfig(auth_mode=DashboardAuthMode.AUTHENTICATED, control_token=CONTROL_TOKEN)
)
CONTROL_HEADERS = {"X-Auth-Token": CONTROL_TOKEN}


class KnownTokenSource:
    name = "known"

    async def get_asset(self, contract_address, token_id):
        if token_id != "1":
            return None
        return AssetInfo(contract_address=contract_address, token_id=token_id)

    async def get_floor_price(self, collection_id):
        return 1.5

    async def get_asset_listings(self, contract_address, token_id):
        return []

    async def get_asset_offers(self, contract_address, token_id):
        return []

    async def get_asset_trades(self, contract_address, token_id, limit=20):
        return []

    async def get_collection_stats(self, collection_id):
        if collection_id != "0xabc":
            return None
        return CollectionStats(collection_id=collection_id, name="Apes", floor_price=1.5)


def _app(config: AppConfig | None = None):
    config = config or AppConfig()
    service = TradingAutomationService(
        [KnownTokenSource()],
        InMemoryPortfolio(),
        StaticMarketTrends(ScannerConfig(), trending=[]),
        PaperMarketplaceExecutor(),
        config=config,
        clock=lambda: NOW,
    )
    return create_dashboard_app(DashboardState(service=service, config=config)), service


def test_dashboard_app_basic_endpoints() -> None:
    app, _ = _app()

    async def _exercise() -> None:
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://testserver") as client:
            resp = await client.get("/health")
            assert resp.status_code == 200
            assert resp.json()["status"] == "healthy"
            metrics_resp = await client.get("/api/metrics")
            assert metrics_resp.status_code == 200
            assert "metrics" in metrics_resp.json()
            index = await client.get("/")
            assert "NFT Trading Bot Dashboard" in index.text
            prometheus = await client.get("/metrics")
            assert prometheus.status_code == 200

    asyncio.run(_exercise())


def test_rule_management_endpoints() -> None:
    app, service = _app(CONTROL_CONFIG)
    rule_payload = {
        "name": "Ping",
        "type": "buy",
        "cooldown_period": 0,
        "actions": [{"type": "alert", "parameters": {"message": "hello"}}],
    }

    async def _exercise() -> None:
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://testserver", headers=CONTROL_HEADERS) as client:
            created = await client.post("/api/owners/alice/rules", json=rule_payload)
            assert created.status_code == 201
            rule_id = created.json()["id"]
            assert created.json()["type"] == "buy"

            listed = await client.get("/api/owners/alice/rules")
            assert [item["id"] for item in listed.json()] == [rule_id]

            patched = await client.patch(f"/api/owners/alice/rules/{rule_id}", json={"priority": 7})
            assert patched.status_code == 200
            assert patched.json()["priority"] == 7

            missing = await client.patch("/api/owners/alice/rules/rule-nope", json={"priority": 1})
            assert missing.status_code == 404
            forbidden = await client.patch(f"/api/owners/alice/rules/{rule_id}", json={"execution_count": 0})
            assert forbidden.status_code == 400
            malformed = await client.post("/api/owners/alice/rules", json={"type": "buy"})
            assert malformed.status_code == 400

            executed = await client.post(f"/api/owners/alice/rules/{rule_id}/execute")
            assert executed.status_code == 200
            assert executed.json()["executed"] is True
            assert executed.json()["trade"]["status"] == "completed"

            trades = await client.get("/api/owners/alice/trades")
            assert len(trades.json()) == 1
            performance = await client.get("/api/owners/alice/performance")
            assert performance.json()["total_trades"] == 1

            events = await client.get("/api/events", params={"owner": "alice"})
            assert {"rule:created", "trade:executed"} <= {item["type"] for item in events.json()}

            deleted = await client.delete(f"/api/owners/alice/rules/{rule_id}")
            assert deleted.status_code == 200
            again = await client.delete(f"/api/owners/alice/rules/{rule_id}")
            assert again.status_code == 404

    asyncio.run(_exercise())
    assert service.get_rules("alice") == []


def test_valuation_and_collection_endpoints_map_not_found() -> None:
    app, _ = _app()

    async def _exercise() -> None:
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://testserver") as client:
            found = await client.get("/api/valuations/0xabc/1")
            assert found.status_code == 200
            assert found.json()["estimated_value"] == 1.5
            assert found.json()["sentiment"] == "neutral"
            missing = await client.get("/api/valuations/0xabc/2")
            assert missing.status_code == 404
            collection = await client.get("/api/collections/0xabc")
            assert collection.json()["wash_trading_is_placeholder"] is True
            unknown = await client.get("/api/collections/ghosts")
            assert unknown.status_code == 404

    asyncio.run(_exercise())


def test_automation_and_scan_endpoints() -> None:
    app, service = _app(CONTROL_CONFIG)

    async def _exercise() -> None:
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://testserver", headers=CONTROL_HEADERS) as client:
            started = await client.post("/api/owners/alice/automation", json={"interval_minutes": 5})
            assert started.status_code == 200
            assert service.scheduler.is_running("alice")
            invalid = await client.post("/api/owners/bob/automation", json={"interval_minutes": 0})
            assert invalid.status_code == 422
            stopped = await client.delete("/api/owners/alice/automation")
            assert stopped.json()["stopped"] is True

            scanned = await client.post("/api/owners/alice/opportunities")
            assert scanned.status_code == 200
            assert scanned.json() == []
            cached = await client.get("/api/owners/alice/opportunities")
            assert cached.json() == []
        await service.aclose()

    asyncio.run(_exercise())


def test_read_only_token_is_enforced() -> None:
    app, _ = _app(AppConfig(dashboard=DashboardConfig(read_only_token="s3cret")))

    async def _exercise() -> None:
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://testserver") as client:
            denied = await client.get("/api/metrics")
            assert denied.status_code == 401
            allowed = await client.get("/api/metrics", headers={"X-Auth-Token": "s3cret"})
            assert allowed.status_code == 200
            via_query = await client.get("/api/owners/alice/rules", params={"token": "s3cret"})
            assert via_query.status_code == 200

    asyncio.run(_exercise())


RULE = {"name": "Ping", "actions": [{"type": "alert"}]}


def test_read_only_dashboard_refuses_changes() -> None:
    app, service = _app()

    async def _exercise() -> None:
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://testserver") as client:
            created = await client.post("/api/owners/alice/rules", json=RULE)
            assert created.status_code == 403
            started = await client.post("/api/owners/alice/automation", json={"interval_minutes": 5})
            assert started.status_code == 403
            scanned = await client.post("/api/owners/alice/opportunities")
            assert scanned.status_code == 403
            listed = await client.get("/api/owners/alice/rules")
            assert listed.status_code == 200

    asyncio.run(_exercise())
    assert service.get_rules("alice") == []
    assert not service.scheduler.is_running("alice")


def test_authenticated_dashboard_needs_a_configured_control_token() -> None:
    config = AppConfig(
        dashboard=DashboardConfig(auth_mode=DashboardAuthMode.AUTHENTICATED, read_only_token="viewer")
    )
    app, service = _app(config)

    async def _exercise() -> None:
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://testserver") as client:
            created = await client.post("/api/owners/alice/rules", json=RULE, headers={"X-Auth-Token": "viewer"})
            assert created.status_code == 403
            read = await client.get("/api/owners/alice/rules", headers={"X-Auth-Token": "viewer"})
            assert read.status_code == 200

    asyncio.run(_exercise())
    assert service.get_rules("alice") == []


def test_authenticated_dashboard_rejects_unknown_tokens() -> None:
    config = AppConfig(
        dashboard=DashboardConfig(
            auth_mode=DashboardAuthMode.AUTHENTICATED,
            read_only_token="viewer",
            control_token=CONTROL_TOKEN,
        )
    )
    app, service = _app(config)

    async def _exercise() -> None:
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://testserver") as client:
            assert (await client.get("/api/metrics")).status_code == 401
            assert (await client.get("/api/metrics", headers={"X-Auth-Token": "anything"})).status_code == 401
            assert (await client.post("/api/owners/alice/rules", json=RULE)).status_code == 401
            viewer = await client.post("/api/owners/alice/rules", json=RULE, headers={"X-Auth-Token": "viewer"})
            assert viewer.status_code == 401
            guessed = await client.post("/api/owners/alice/rules", json=RULE, params={"token": "anything"})
            assert guessed.status_code == 401
            created = await client.post("/api/owners/alice/rules", json=RULE, headers=CONTROL_HEADERS)
            assert created.status_code == 201

    asyncio.run(_exercise())
    assert [rule.name for rule in service.get_rules("alice")] == ["Ping"]


def test_build_app_wires_a_dry_run_service() -> None:
    app = build_app(AppConfig())

    async def _exercise() -> None:
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://testserver") as client:
            resp = await client.get("/health")
            assert resp.json()["mode"] == "dry_run"

    asyncio.run(_exercise())
