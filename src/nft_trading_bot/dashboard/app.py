"""Dashboard and control API application factory."""

from __future__ import annotations

import asyncio
import hmac
from typing import Any, Dict, Optional, Tuple

from fastapi import Body, Depends, FastAPI, Header, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse
from pydantic import BaseModel, Field

from ..config.settings import DashboardAuthMode, DashboardConfig
from ..utils.errors import ConfigurationError, NotFoundError
from .state import DashboardState
from .utils import to_serializable

HTML_TEMPLATE = """<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>NFT Trading Bot Dashboard</title>
  <style>
    :root { --bg: #f4f6f8; --panel: #ffffff; --ink: #1d2733; --muted: #6b7785; --line: #dfe4ea; --bad: #c0392b; --accent: #2f6fdf; }
    * { box-sizing: border-box; }
    body { margin: 0; font: 14px/1.45 "Helvetica Neue", Helvetica, sans-serif; background: var(--bg); color: var(--ink); }
    .topbar { display: flex; flex-wrap: wrap; align-items: flex-end; gap: 16px; padding: 14px 28px; background: var(--panel); border-bottom: 3px solid var(--accent); }
    .topbar h1 { flex: 1 0 100%; margin: 0 0 4px; font-size: 20px; letter-spacing: 0.02em; }
    .field { display: flex; flex-direction: column; font-size: 12px; color: var(--muted); min-width: 260px; }
    .field input { margin-top: 4px; padding: 7px 9px; border: 1px solid var(--line); border-radius: 4px; font: inherit; color: var(--ink); }
    .panels { display: grid; grid-template-columns: repeat(auto-fill, minmax(360px, 1fr)); gap: 18px; padding: 22px 28px; }
    .panel { background: var(--panel); border: 1px solid var(--line); border-radius: 6px; padding: 14px 16px; }
    .panel h2 { margin: 0 0 10px; font-size: 15px; text-transform: uppercase; color: var(--muted); }
    table { width: 100%; border-collapse: collapse; font-size: 13px; }
    thead th { color: var(--muted); font-weight: 600; }
    th, td { padding: 5px 6px; border-bottom: 1px solid var(--line); text-align: left; word-break: break-all; }
    #events { list-style: none; margin: 0; padding: 0; max-height: 300px; overflow-y: auto; font: 12px/1.5 Menlo, monospace; }
    #events li { padding: 2px 0; border-bottom: 1px dotted var(--line); }
    .error { color: var(--bad); }
    .fineprint { margin-top: 10px; font-size: 11px; color: var(--muted); }
  </style>
</head>
<body>
  <div class="topbar">
    <h1>NFT Trading Bot</h1>
    <label class="field">Owner wallet<input id="owner" placeholder="0x..." /></label>
    <label class="field">API token<input id="auth-token" placeholder="Only needed when the dashboard is locked" /></label>
  </div>
  <div class="panels">
    <div class="panel"><h2>Overview</h2><div id="overview"></div></div>
    <div class="panel"><h2>Rules</h2><div id="rules"></div></div>
    <div class="panel"><h2>Opportunities</h2><div id="opportunities"></div></div>
    <div class="panel"><h2>Trades</h2><div id="trades"></div></div>
    <div class="panel"><h2>Event stream</h2><ul id="events"></ul></div>
  </div>
  <script>
    const tokenInput = document.getElementById('auth-token');
    const ownerInput = document.getElementById('owner');
    const eventsEl = document.getElementById('events');
    tokenInput.value = window.localStorage.getItem('dashboard_token') || '';
    ownerInput.value = window.localStorage.getItem('dashboard_owner') || '';
    tokenInput.addEventListener('change', () => { window.localStorage.setItem('dashboard_token', tokenInput.value.trim()); connectWebSocket(); refreshAll(); });
    ownerInput.addEventListener('change', () => { window.localStorage.setItem('dashboard_owner', ownerInput.value.trim()); refreshAll(); });

    function authHeaders() {
      const token = tokenInput.value.trim();
      return token ? { 'X-Auth-Token': token } : {};
    }

    async function fetchJson(url) {
      const response = await fetch(url, { headers: authHeaders() });
      if (!response.ok) { throw new Error(`Request failed: ${response.status}`); }
      return await response.json();
    }

    function escapeHtml(value) {
      return String(value).replace(/[&<>"']/g, (char) => ({'&': '&amp;', '<': '&lt;', '>': '&gt;', '"': '&quot;', "'": '&#39;'})[char] || char);
    }

    function table(target, headers, rows) {
      const el = document.getElementById(target);
      if (!rows.length) { el.innerHTML = '<em>Nothing yet</em>'; return; }
      const head = headers.map((h) => `<th>${h}</th>`).join('');
      const body = rows.map((row) => `<tr>${row.map((cell) => `<td>${escapeHtml(cell ?? '')}</td>`).join('')}</tr>`).join('');
      el.innerHTML = `<table><thead><tr>${head}</tr></thead><tbody>${body}</tbody></table>`;
    }

    async function refreshOverview() {
      const el = document.getElementById('overview');
      try {
        const data = await fetchJson('/api/metrics');
        const health = data.health.metrics;
        el.innerHTML = `
          <p><strong>Status:</strong> ${escapeHtml(data.health.status)}</p>
          <p><strong>Active rules:</strong> ${health.active_rules}</p>
          <p><strong>Trades:</strong> ${health.active_trades}</p>
          <p><strong>Running automations:</strong> ${health.monitoring_intervals}</p>
          <p class="fineprint">${escapeHtml(data.disclaimer || '')}</p>`;
      } catch (err) {
        el.innerHTML = `<span class="error">${err}</span>`;
      }
    }

    async function refreshOwner() {
      const owner = ownerInput.value.trim();
      if (!owner) { return; }
      const base = `/api/owners/${encodeURIComponent(owner)}`;
      try {
        const rules = await fetchJson(`${base}/rules`);
        table('rules', ['Name', 'Type', 'Enabled', 'Executions', 'Success %'], rules.map((r) => [r.name, r.type, r.enabled, r.total_executions, r.success_rate.toFixed(1)]));
        const opportunities = await fetchJson(`${base}/opportunities`);
        table('opportunities', ['Strategy', 'Contract', 'Return', 'Confidence', 'Risk'], opportunities.map((o) => [o.strategy_type, o.contract_address, o.expected_return.toFixed(4), o.confidence.toFixed(0), o.risk_level]));
        const trades = await fetchJson(`${base}/trades`);
        table('trades', ['Time', 'Action', 'Price', 'Status', 'Error'], trades.slice(0, 20).map((t) => [t.created_at, t.action_type, t.price, t.status, t.error]));
      } catch (err) {
        document.getElementById('rules').innerHTML = `<span class="error">${err}</span>`;
      }
    }

    function renderEvent(event) {
      const entry = document.createElement('li');
      entry.textContent = `[${event.timestamp}] ${event.type.toUpperCase()} :: ${JSON.stringify(event.payload)}`;
      return entry;
    }

    async function refreshEvents() {
      try {
        const events = await fetchJson('/api/events?limit=50');
        eventsEl.replaceChildren(...events.map(renderEvent));
      } catch (err) {
        eventsEl.innerHTML = `<li class="error">${err}</li>`;
      }
    }

    function refreshAll() {
      refreshOverview();
      refreshOwner();
      refreshEvents();
    }

    let ws;
    function connectWebSocket() {
      if (ws) { ws.close(); }
      const token = tokenInput.value.trim();
      const protocol = window.location.protocol === 'https:' ? 'wss' : 'ws';
      const base = `${protocol}://${window.location.host}/ws/events`;
      ws = new WebSocket(token ? `${base}?token=${encodeURIComponent(token)}` : base);
      ws.onmessage = (message) => {
        try {
          eventsEl.prepend(renderEvent(JSON.parse(message.data)));
          while (eventsEl.children.length > 200) { eventsEl.removeChild(eventsEl.lastChild); }
        } catch (err) {
          console.error('Failed to parse event', err);
        }
      };
      ws.onclose = () => { setTimeout(connectWebSocket, 5000); };
    }

    connectWebSocket();
    refreshAll();
    setInterval(refreshAll, 7000);
  </script>
</body>
</html>
"""


def _token_error(config: DashboardConfig, token: Optional[str]) -> Optional[str]:
    """Reason a read must be rejected, or None when the token is acceptable."""

    known = {value for value in (config.read_only_token, config.control_token) if value}
    if config.auth_mode == DashboardAuthMode.AUTHENTICATED:
        if not token:
            return "Authentication required"
        return None if token in known else "Invalid token"
    if config.read_only_token:
        return None if token in known else "Invalid token"
    return None


def _control_error(config: DashboardConfig, token: Optional[str]) -> Optional[Tuple[int, str]]:
    """Status and reason a change must be rejected; changes need the control token."""

    if config.auth_mode != DashboardAuthMode.AUTHENTICATED:
        return 403, "Dashboard is read-only"
    if not config.control_token:
        return 403, "No control token configured"
    if not token:
        return 401, "Authentication required"
    if not hmac.compare_digest(token, config.control_token):
        return 401, "Invalid token"
    return None


class AutomationRequest(BaseModel):
    interval_minutes: Optional[float] = Field(default=None, gt=0.0)


def create_dashboard_app(state: DashboardState) -> FastAPI:
    app = FastAPI(title="NFT Trading Bot Dashboard", version="1.0.0")
    cfg = state.config.dashboard
    service = state.service
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(NotFoundError)
    async def not_found_handler(_: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse({"detail": str(exc)}, status_code=404)

    @app.exception_handler(ConfigurationError)
    async def configuration_error_handler(_: Request, exc: ConfigurationError) -> JSONResponse:
        return JSONResponse({"detail": str(exc)}, status_code=400)

    @app.exception_handler(ValueError)
    async def value_error_handler(_: Request, exc: ValueError) -> JSONResponse:
        return JSONResponse({"detail": str(exc)}, status_code=400)

    def get_state() -> DashboardState:
        return state

    async def require_auth(
        token_header: Optional[str] = Header(default=None, alias="X-Auth-Token"),
        token_query: Optional[str] = Query(default=None, alias="token"),
        dashboard_state: DashboardState = Depends(get_state),
    ) -> Optional[str]:
        token = token_header or token_query or None
        problem = _token_error(dashboard_state.config.dashboard, token)
        if problem:
            raise HTTPException(status_code=401, detail=problem)
        return token

    async def require_control(
        token_header: Optional[str] = Header(default=None, alias="X-Auth-Token"),
        token_query: Optional[str] = Query(default=None, alias="token"),
        dashboard_state: DashboardState = Depends(get_state),
    ) -> Optional[str]:
        token = token_header or token_query or None
        problem = _control_error(dashboard_state.config.dashboard, token)
        if problem:
            status_code, detail = problem
            raise HTTPException(status_code=status_code, detail=detail)
        return token

    @app.get("/", response_class=HTMLResponse)
    async def index() -> str:
        return HTML_TEMPLATE

    @app.get("/health")
    async def healthcheck() -> JSONResponse:
        return JSONResponse(state.health())

    @app.get("/metrics", response_class=PlainTextResponse)
    async def prometheus_metrics() -> str:
        return state.metrics.export_prometheus()

    @app.get("/api/metrics")
    async def api_metrics(_: Optional[str] = Depends(require_auth)) -> JSONResponse:
        return JSONResponse(state.metrics_snapshot())

    @app.get("/api/events")
    async def api_events(
        limit: int = Query(200, ge=1, le=1000),
        owner: Optional[str] = Query(default=None),
        _: Optional[str] = Depends(require_auth),
    ) -> JSONResponse:
        return JSONResponse(state.event_history(limit=limit, owner=owner))

    @app.get("/api/valuations/{contract_address}/{token_id}")
    async def api_valuation(
        contract_address: str,
        token_id: str,
        refresh: bool = Query(default=False),
        _: Optional[str] = Depends(require_auth),
    ) -> JSONResponse:
        valuation = await service.get_valuation(contract_address, token_id, refresh=refresh)
        return JSONResponse(to_serializable(valuation))

    @app.get("/api/collections/{collection_id}")
    async def api_collection(collection_id: str, _: Optional[str] = Depends(require_auth)) -> JSONResponse:
        analytics = await service.get_collection_analytics(collection_id)
        return JSONResponse(to_serializable(analytics))

    @app.get("/api/owners/{owner}/rules")
    async def api_rules(owner: str, _: Optional[str] = Depends(require_auth)) -> JSONResponse:
        return JSONResponse(state.rules(owner))

    @app.post("/api/owners/{owner}/rules", status_code=201)
    async def api_create_rule(
        owner: str,
        payload: Dict[str, Any] = Body(...),
        _: Optional[str] = Depends(require_control),
    ) -> JSONResponse:
        rule = service.create_rule(owner, payload)
        return JSONResponse(to_serializable(rule), status_code=201)

    @app.patch("/api/owners/{owner}/rules/{rule_id}")
    async def api_update_rule(
        owner: str,
        rule_id: str,
        payload: Dict[str, Any] = Body(...),
        _: Optional[str] = Depends(require_control),
    ) -> JSONResponse:
        if not service.update_rule(owner, rule_id, payload):
            raise NotFoundError("rule", rule_id)
        return JSONResponse(to_serializable(service.get_rule(owner, rule_id)))

    @app.delete("/api/owners/{owner}/rules/{rule_id}")
    async def api_delete_rule(
        owner: str, rule_id: str, _: Optional[str] = Depends(require_control)
    ) -> JSONResponse:
        if not service.delete_rule(owner, rule_id):
            raise NotFoundError("rule", rule_id)
        return JSONResponse({"deleted": rule_id})

    @app.post("/api/owners/{owner}/rules/{rule_id}/execute")
    async def api_execute_rule(
        owner: str, rule_id: str, _: Optional[str] = Depends(require_control)
    ) -> JSONResponse:
        if service.get_rule(owner, rule_id) is None:
            raise NotFoundError("rule", rule_id)
        trade = await service.execute_rule(owner, rule_id)
        return JSONResponse({"executed": trade is not None, "trade": to_serializable(trade)})

    @app.get("/api/owners/{owner}/opportunities")
    async def api_opportunities(owner: str, _: Optional[str] = Depends(require_auth)) -> JSONResponse:
        return JSONResponse(state.opportunities(owner))

    @app.post("/api/owners/{owner}/opportunities")
    async def api_scan(owner: str, _: Optional[str] = Depends(require_control)) -> JSONResponse:
        opportunities = await service.scan_opportunities(owner)
        return JSONResponse(to_serializable(opportunities))

    @app.get("/api/owners/{owner}/trades")
    async def api_trades(
        owner: str,
        limit: int = Query(100, ge=1, le=500),
        _: Optional[str] = Depends(require_auth),
    ) -> JSONResponse:
        return JSONResponse(state.trades(owner, limit=limit))

    @app.get("/api/owners/{owner}/performance")
    async def api_performance(owner: str, _: Optional[str] = Depends(require_auth)) -> JSONResponse:
        return JSONResponse(state.performance(owner))

    @app.post("/api/owners/{owner}/automation")
    async def api_start_automation(
        owner: str,
        request: Optional[AutomationRequest] = Body(default=None),
        _: Optional[str] = Depends(require_control),
    ) -> JSONResponse:
        interval = request.interval_minutes if request is not None else None
        service.start_automation(owner, interval)
        return JSONResponse({"owner": owner, "running": True})

    @app.delete("/api/owners/{owner}/automation")
    async def api_stop_automation(owner: str, _: Optional[str] = Depends(require_control)) -> JSONResponse:
        return JSONResponse({"owner": owner, "running": False, "stopped": service.stop_automation(owner)})

    @app.websocket("/ws/events")
    async def ws_events(websocket: WebSocket) -> None:
        token = websocket.headers.get("X-Auth-Token") or websocket.query_params.get("token")
        if _token_error(state.config.dashboard, token):
            await websocket.close(code=4403)
            return
        await websocket.accept()
        listener = state.subscribe_events()
        try:
            while True:
                event = await asyncio.to_thread(listener.get)
                await websocket.send_json(event.to_dict())
        except WebSocketDisconnect:
            pass
        finally:
            state.remove_listener(listener)

    return app


__all__ = ["create_dashboard_app"]
