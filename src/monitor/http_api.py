"""Ops HTTP API — health snapshots and on-demand retention sweeps.

Runs as an ``aiohttp`` web server alongside the workers.
Exposes:
- ``GET /health``  → HealthSnapshot JSON (``?window_hours=`` overrides the window)
- ``POST /sweep``  → per-category deletion counts
"""

from __future__ import annotations

import base64
import datetime
import hmac
from typing import Any

from aiohttp import web

from src.monitor.health import HealthMonitor
from src.monitor.retention import RetentionSweeper

_HEALTH_KEY = web.AppKey("health", HealthMonitor)
_SWEEPER_KEY = web.AppKey("sweeper", RetentionSweeper)
_USERNAME_KEY = web.AppKey("auth_username", str)
_PASSWORD_KEY = web.AppKey("auth_password", str)


def _check_basic_auth(request: web.Request, username: str, password: str) -> bool:
    """Validate HTTP Basic Auth credentials."""
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Basic "):
        return False
    try:
        decoded = base64.b64decode(auth_header[6:]).decode("utf-8")
        req_user, req_pass = decoded.split(":", 1)
    except (ValueError, UnicodeDecodeError):
        return False
    user_ok = hmac.compare_digest(req_user, username)
    pass_ok = hmac.compare_digest(req_pass, password)
    return user_ok and pass_ok


@web.middleware
async def _auth_middleware(request: web.Request, handler: Any) -> web.StreamResponse:
    """Require HTTP Basic Auth on all routes when credentials are configured."""
    username = request.app.get(_USERNAME_KEY)
    password = request.app.get(_PASSWORD_KEY)
    if username and password:
        if not _check_basic_auth(request, username, password):
            return web.Response(
                status=401,
                text="Unauthorized",
                headers={"WWW-Authenticate": 'Basic realm="Alert Evaluation"'},
            )
    return await handler(request)


async def _handle_health(request: web.Request) -> web.Response:
    monitor = request.app[_HEALTH_KEY]
    window: datetime.timedelta | None = None
    raw = request.query.get("window_hours")
    if raw is not None:
        try:
            hours = float(raw)
        except ValueError:
            raise web.HTTPBadRequest(text="window_hours must be a number") from None
        if hours <= 0:
            raise web.HTTPBadRequest(text="window_hours must be positive")
        window = datetime.timedelta(hours=hours)
    snap = monitor.snapshot(window)
    return web.json_response(snap.model_dump(mode="json"))


async def _handle_sweep(request: web.Request) -> web.Response:
    sweeper = request.app[_SWEEPER_KEY]
    return web.json_response(sweeper.sweep())


def create_web_app(
    health: HealthMonitor,
    sweeper: RetentionSweeper,
    username: str | None = None,
    password: str | None = None,
) -> web.Application:
    """Create the aiohttp web application."""
    app = web.Application(middlewares=[_auth_middleware])
    app[_HEALTH_KEY] = health
    app[_SWEEPER_KEY] = sweeper
    app[_USERNAME_KEY] = username or ""
    app[_PASSWORD_KEY] = password or ""
    app.router.add_get("/health", _handle_health)
    app.router.add_post("/sweep", _handle_sweep)
    return app


async def start_http_api(
    health: HealthMonitor,
    sweeper: RetentionSweeper,
    host: str = "127.0.0.1",
    port: int = 8080,
    username: str | None = None,
    password: str | None = None,
) -> web.AppRunner:
    """Start the ops API server. Returns the runner for cleanup."""
    app = create_web_app(health, sweeper, username=username, password=password)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    return runner
