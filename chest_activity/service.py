import asyncio
import contextlib
import logging
import signal
import time
from typing import Optional

from aiohttp import web

from .config import AppConfig
from .models import SessionContext
from .pipeline import ActivityPipeline, PipelineSettings
from .rpc import ChestReader, EventLogSource, RPCClient
from .scheduler import RefreshScheduler

logger = logging.getLogger(__name__)


class ActivityService:
    def __init__(
        self,
        cfg: AppConfig,
        rpc: Optional[RPCClient] = None,
        scheduler: Optional[RefreshScheduler] = None,
    ):
        self.cfg = cfg
        self.cors_allow_origins = {
            str(x).strip().rstrip("/") for x in cfg.cors_allow_origins if str(x).strip()
        }
        self.rpc = rpc or RPCClient(
            cfg.http_rpc_url,
            max_retries=cfg.max_rpc_retries,
            timeout_sec=cfg.rpc_timeout_sec,
        )
        if scheduler is None:
            pipeline = ActivityPipeline(
                chain=self.rpc,
                logs=EventLogSource(self.rpc, cfg.contracts, cfg.max_log_block_range),
                reader=ChestReader(self.rpc, cfg.chest_contract_addr),
                settings=PipelineSettings(
                    feed_lookback_blocks=cfg.feed_lookback_blocks,
                    payout_lookback_blocks=cfg.payout_lookback_blocks,
                    feed_limit=cfg.feed_limit,
                    token_decimals=cfg.token_decimals,
                ),
            )
            scheduler = RefreshScheduler(
                pipeline,
                interval_sec=cfg.refresh_interval_sec,
                context=SessionContext(subject=cfg.subject_account),
            )
        self.scheduler = scheduler
        self.stop_event = asyncio.Event()

    async def __aenter__(self) -> "ActivityService":
        await self.rpc.__aenter__()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if not self.stop_event.is_set():
            await self.shutdown()
        await self.rpc.__aexit__(exc_type, exc, tb)

    def max_state_age(self) -> float:
        return 2 * max(1, self.cfg.refresh_interval_sec)

    async def state_handler(self, request: web.Request) -> web.Response:
        state = self.scheduler.state
        payload = state.to_api(self.cfg.explorer_tx_url)
        payload["stale"] = state.is_stale(time.time(), self.max_state_age())
        payload["subject"] = self.scheduler.context.subject
        return web.json_response(payload)

    async def activity_handler(self, request: web.Request) -> web.Response:
        state = self.scheduler.state
        limit = self.cfg.feed_limit
        limit_raw = request.query.get("limit")
        if limit_raw is not None:
            try:
                limit = max(0, min(self.cfg.feed_limit, int(limit_raw)))
            except ValueError:
                return web.json_response({"error": "limit must be an integer"}, status=400)
        return web.json_response(
            {
                "status": state.status.value,
                "cycle": state.cycle,
                "lastUpdated": state.last_updated,
                "staleSources": list(state.stale_sources),
                "feed": [x.to_api(self.cfg.explorer_tx_url) for x in state.feed[:limit]],
            }
        )

    async def stats_handler(self, request: web.Request) -> web.Response:
        state = self.scheduler.state
        payload = state.stats.to_api()
        payload["status"] = state.status.value
        payload["lastUpdated"] = state.last_updated
        payload["stale"] = state.is_stale(time.time(), self.max_state_age())
        payload["subject"] = self.scheduler.context.subject
        return web.json_response(payload)

    async def health_handler(self, request: web.Request) -> web.Response:
        state = self.scheduler.state
        return web.json_response(
            {
                "ok": True,
                "status": state.status.value,
                "cycle": state.cycle,
                "latestCycle": self.scheduler.cycle,
                "lastUpdated": state.last_updated,
                "blockNumber": state.block_number,
                "error": state.error,
                "stats": dict(self.scheduler.stats),
                "chainId": self.cfg.chain_id,
            }
        )

    async def refresh_handler(self, request: web.Request) -> web.Response:
        reason = "api"
        if request.can_read_body:
            try:
                payload = await request.json()
            except Exception:
                return web.json_response({"error": "invalid json body"}, status=400)
            if isinstance(payload, dict) and payload.get("reason"):
                reason = str(payload["reason"])[:64]
        cycle = self.scheduler.trigger(reason)
        return web.json_response({"ok": True, "cycle": cycle}, status=202)

    async def subject_handler(self, request: web.Request) -> web.Response:
        try:
            payload = await request.json()
        except Exception:
            return web.json_response({"error": "invalid json body"}, status=400)
        if not isinstance(payload, dict) or "account" not in payload:
            return web.json_response({"error": "account is required"}, status=400)
        try:
            cycle = self.scheduler.set_subject(payload["account"])
        except ValueError as e:
            return web.json_response({"error": str(e)}, status=400)
        return web.json_response(
            {"ok": True, "subject": self.scheduler.context.subject, "cycle": cycle}
        )

    def resolve_cors_origin(self, request_origin: Optional[str]) -> Optional[str]:
        if not request_origin or not self.cors_allow_origins:
            return None
        origin = str(request_origin).strip().rstrip("/")
        if not origin:
            return None
        if "*" in self.cors_allow_origins:
            return "*"
        if origin in self.cors_allow_origins:
            return origin
        return None

    async def create_api_app(self) -> web.Application:
        @web.middleware
        async def cors_middleware(request: web.Request, handler):
            allow_origin = self.resolve_cors_origin(request.headers.get("Origin"))
            if request.method == "OPTIONS":
                response: web.StreamResponse = web.Response(status=204)
            else:
                try:
                    response = await handler(request)
                except web.HTTPException as ex:
                    response = ex

            if allow_origin:
                response.headers["Access-Control-Allow-Origin"] = allow_origin
                response.headers["Vary"] = "Origin"
                response.headers["Access-Control-Allow-Methods"] = "GET,POST,OPTIONS"
                response.headers["Access-Control-Allow-Headers"] = "Content-Type"
                response.headers["Access-Control-Max-Age"] = "86400"
            return response

        middlewares = [cors_middleware] if self.cors_allow_origins else []
        app = web.Application(middlewares=middlewares)
        app.router.add_get("/state", self.state_handler)
        app.router.add_get("/activity", self.activity_handler)
        app.router.add_get("/stats", self.stats_handler)
        app.router.add_get("/health", self.health_handler)
        app.router.add_post("/refresh", self.refresh_handler)
        app.router.add_post("/subject", self.subject_handler)
        return app

    async def run(self) -> None:
        await self.scheduler.start()

        app = await self.create_api_app()
        runner = web.AppRunner(app)
        await runner.setup()
        site = web.TCPSite(runner, host=self.cfg.api_host, port=self.cfg.api_port)
        await site.start()
        logger.info("serving activity API on %s:%d", self.cfg.api_host, self.cfg.api_port)

        try:
            await self.stop_event.wait()
        finally:
            await runner.cleanup()

    async def shutdown(self) -> None:
        self.stop_event.set()
        await self.scheduler.stop()


async def main_async(cfg: AppConfig) -> None:
    async with ActivityService(cfg) as service:
        loop = asyncio.get_running_loop()
        stop_event = asyncio.Event()

        def _on_stop() -> None:
            stop_event.set()

        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError):
                loop.add_signal_handler(sig, _on_stop)

        run_task = asyncio.create_task(service.run())
        wait_task = asyncio.create_task(stop_event.wait())

        done, pending = await asyncio.wait(
            {run_task, wait_task},
            return_when=asyncio.FIRST_COMPLETED,
        )
        await service.shutdown()
        for p in pending:
            p.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await p
        for d in done:
            if d is run_task and d.exception():
                raise d.exception()
