"""Admin HTTP surface for the automation engine.

Runs in the same asyncio event loop as the scheduler. Uses aiohttp's
AppRunner/TCPSite for non-blocking start/stop. Every route except
``/health`` requires the ``X-Admin-Token`` header to match ``ADMIN_TOKEN``.
"""

from __future__ import annotations

import logging
from typing import Any

from aiohttp import web

from automations.config import settings
from automations.scheduler.driver import AutomationNotFoundError, SchedulerDriver
from automations.scheduler.engine import SchedulerEngine

logger = logging.getLogger(__name__)

DRIVER_KEY = web.AppKey("driver", SchedulerDriver)
ENGINE_KEY = web.AppKey("engine", SchedulerEngine)

_FORBIDDEN = {"message": "Not authorized, admin access required"}


def _is_admin(request: web.Request) -> bool:
    token = request.headers.get("X-Admin-Token", "")
    return bool(settings.admin_token) and token == settings.admin_token


@web.middleware
async def _admin_only(request: web.Request, handler) -> web.StreamResponse:
    """Reject non-administrators before any engine logic runs."""
    if request.path != "/health" and not _is_admin(request):
        logger.warning("Admin route rejected: %s %s", request.method, request.path)
        return web.json_response(_FORBIDDEN, status=403)
    return await handler(request)


async def _health(request: web.Request) -> web.Response:
    """GET /health — basic liveness check."""
    return web.json_response({"status": "ok"})


async def _status(request: web.Request) -> web.Response:
    """GET /automations/status — next run and state for every automation."""
    driver = request.app[DRIVER_KEY]
    try:
        report = await driver.status_report()
    except Exception as exc:
        logger.exception("Failed to build automation status report")
        return web.json_response(
            {"message": "Failed to get automation status", "error": str(exc)}, status=500
        )
    return web.json_response(report.to_dict())


async def _force_run(request: web.Request) -> web.Response:
    """POST /automations/{id}/force-run — clear the run marker and fire now."""
    driver = request.app[DRIVER_KEY]
    automation_id = request.match_info["id"]
    try:
        result = await driver.force_run(automation_id)
    except AutomationNotFoundError:
        return web.json_response({"message": "Automation not found"}, status=404)
    except Exception as exc:
        logger.exception("Force-run failed: %s", automation_id)
        return web.json_response(
            {"message": "Failed to force run automation", "error": str(exc)}, status=500
        )
    return web.json_response(
        {"message": f"Forced automation {result.name} to run", "result": result.to_dict()}
    )


async def _check_trigger(request: web.Request) -> web.Response:
    """POST /automations/check-trigger — run one tick now."""
    engine = request.app[ENGINE_KEY]
    try:
        summary = await engine.run_now()
    except Exception as exc:
        logger.exception("Manual tick failed")
        return web.json_response(
            {"message": "Error processing automations", "error": str(exc)}, status=500
        )
    return web.json_response(
        {
            "message": f"Successfully processed {summary.fired_count} due automations",
            **summary.to_dict(),
        }
    )


async def _reset_run_status(request: web.Request) -> web.Response:
    """POST /automations/reset-run-status — clear run markers.

    Body ``{"automationId": "..."}`` targets one automation; without it every
    day-of-month automation is reset.
    """
    driver = request.app[DRIVER_KEY]
    body: dict[str, Any] = {}
    if request.can_read_body:
        try:
            body = await request.json()
        except ValueError:
            return web.json_response({"message": "invalid JSON"}, status=400)
    automation_id = body.get("automationId") if isinstance(body, dict) else None

    modified = await driver.reset_run_status(automation_id)
    return web.json_response(
        {
            "message": f"Successfully reset {modified} automations",
            "modifiedCount": modified,
        }
    )


def _create_web_app(driver: SchedulerDriver, engine: SchedulerEngine) -> web.Application:
    """Build the aiohttp Application with routes."""
    app = web.Application(middlewares=[_admin_only])
    app[DRIVER_KEY] = driver
    app[ENGINE_KEY] = engine
    app.router.add_get("/health", _health)
    app.router.add_get("/automations/status", _status)
    app.router.add_post("/automations/check-trigger", _check_trigger)
    app.router.add_post("/automations/reset-run-status", _reset_run_status)
    app.router.add_post("/automations/{id}/force-run", _force_run)
    return app


class ApiServer:
    """Manages the aiohttp server lifecycle."""

    def __init__(
        self,
        driver: SchedulerDriver,
        engine: SchedulerEngine,
        host: str | None = None,
        port: int | None = None,
    ) -> None:
        self._driver = driver
        self._engine = engine
        self.host = host or settings.api_host
        self.port = port or settings.api_port
        self._runner: web.AppRunner | None = None

    async def start(self) -> None:
        """Start listening for admin requests."""
        if not settings.admin_token:
            logger.warning("ADMIN_TOKEN empty — admin API disabled")
            return

        app = _create_web_app(self._driver, self._engine)
        self._runner = web.AppRunner(app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        logger.info("Admin API listening on %s:%d", self.host, self.port)

    async def stop(self) -> None:
        """Shut down the server gracefully."""
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
            logger.info("Admin API stopped")
