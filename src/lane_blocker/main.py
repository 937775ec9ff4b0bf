"""
Lane Blocker Main Application
=============================

FastAPI entry point for the lane blocker.

Background tasks (lifespan-managed):
    - Obstacle feed consumer (ObstacleFeedConsumer -> ObservationBuffer)
    - Ingestion loop (ObservationBuffer -> ObservationIngestor)
    - Process trigger (periodic full recompute)
    - Cull trigger (periodic eviction of expired obstacles)

Endpoints:
    GET  /                     - Service information
    GET  /health               - Liveness probe (is process alive?)
    GET  /ready                - Readiness probe (lanes loaded + feed connected?)
    GET  /metrics              - Detailed metrics
    GET  /lanes/closed         - Lanes currently closed by this service
    GET  /obstacles            - Tracked obstacles and their vicinity lanes
    GET  /requests             - Recently published requests
    PUT  /graphs/{fleet}       - Replace a fleet's navigation graph
    PUT  /lane_states/{fleet}  - Report a fleet's current lane states
    WS   /ws/requests          - Real-time request stream
"""

import asyncio
import logging
import os
import signal
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse

from lane_blocker.agent import ClosureThresholds, LaneBlockerGraph
from lane_blocker.agent.ingestion import ObservationIngestor
from lane_blocker.agent.scheduler import PeriodicTrigger
from lane_blocker.config import Settings, settings
from lane_blocker.exceptions import IndexInvariantError
from lane_blocker.geometry.transforms import StaticTransformTree, Transform2D
from lane_blocker.models.graph import NavGraph
from lane_blocker.models.input import LaneStates
from lane_blocker.stream import ObservationBuffer, ObstacleFeedConsumer, RequestDispatcher


logger = logging.getLogger(__name__)


# =============================================================================
# Service
# =============================================================================

class LaneBlockerService:
    """
    Wires every component of the lane blocker together.

    Components are built eagerly so they can be inspected before start();
    background tasks only run between start() and stop().
    """

    def __init__(self, config: Settings) -> None:
        self.config = config
        blocker_cfg = config.blocker

        self.dispatcher = RequestDispatcher(
            mitigation=blocker_cfg.mitigation,
            speed_limit=blocker_cfg.speed_limit,
            history_size=config.server.request_history_size,
        )
        self.blocker = LaneBlockerGraph(
            lane_width=blocker_cfg.lane_width,
            proximity_threshold=blocker_cfg.proximity_threshold,
            thresholds=ClosureThresholds(
                closure_threshold=blocker_cfg.closure_threshold,
                reopen_threshold=blocker_cfg.reopen_threshold,
            ),
            obstacle_ttl=blocker_cfg.obstacle_ttl_sec,
            dispatcher=self.dispatcher,
            max_pass_ms=blocker_cfg.max_pass_ms,
        )

        self.transforms = StaticTransformTree()
        for entry in config.transforms.static:
            self.transforms.add(
                entry.parent_frame,
                entry.child_frame,
                Transform2D(x=entry.x, y=entry.y, yaw=entry.yaw),
            )

        self.ingestor = ObservationIngestor(
            self.blocker,
            self.transforms,
            target_frame=blocker_cfg.rmf_frame,
            lookup_timeout=blocker_cfg.transform_timeout_sec,
            incremental=blocker_cfg.incremental_recompute,
        )

        self.buffer = ObservationBuffer(
            maxsize=config.feed.max_queue_size,
            max_age=blocker_cfg.obstacle_ttl_sec,
        )
        self.consumer: Optional[ObstacleFeedConsumer] = None
        if config.feed.enabled:
            self.consumer = ObstacleFeedConsumer(
                url=config.feed.url,
                buffer=self.buffer,
                reconnect_backoff_ms=config.feed.reconnect_backoff_ms,
                max_reconnect_attempts=config.feed.max_reconnect_attempts,
            )

        self.process_trigger = PeriodicTrigger(
            "process", blocker_cfg.process_period_sec, self.blocker.process
        )
        self.cull_trigger = PeriodicTrigger(
            "cull", blocker_cfg.cull_period_sec, self.blocker.cull
        )

        self._tasks: List[asyncio.Task] = []
        self._running: bool = False
        self.started_at: float = time.time()
        self.ingest_errors: int = 0

    @property
    def running(self) -> bool:
        return self._running

    def load_graphs(self) -> None:
        """Load every navigation graph file listed in config."""
        for path in self.config.graphs.paths:
            self.blocker.load_graph_file(path)

    async def start(self) -> None:
        self.started_at = time.time()
        self._running = True
        self.load_graphs()

        if self.consumer is not None:
            logger.info(f"Obstacle feed URL: {self.config.feed.url}")
            self._tasks.append(asyncio.create_task(self.consumer.run(), name="feed_consumer"))
        else:
            logger.info("Obstacle feed disabled")

        self._tasks.append(asyncio.create_task(self._ingest_loop(), name="ingestion"))
        for trigger in (self.process_trigger, self.cull_trigger):
            task = asyncio.create_task(trigger.run(), name=f"{trigger.name}_trigger")
            task.add_done_callback(self._on_task_done)
            self._tasks.append(task)

        logger.info("All components started")

    async def stop(self) -> None:
        self._running = False
        await self.process_trigger.stop()
        await self.cull_trigger.stop()
        if self.consumer is not None:
            await self.consumer.stop()

        for task in self._tasks:
            try:
                await asyncio.wait_for(task, timeout=5.0)
            except asyncio.TimeoutError:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
            except IndexInvariantError:
                pass
        self._tasks.clear()

    async def _ingest_loop(self) -> None:
        logger.info("Ingestion loop started")
        while self._running:
            message = await self.buffer.get(timeout=1.0)
            if message is None:
                continue
            try:
                await self.ingestor.ingest(message)
            except IndexInvariantError as e:
                logger.critical(f"Invariant violation during ingestion: {e}")
                self._request_shutdown()
                break
            except Exception as e:
                self.ingest_errors += 1
                logger.error(f"Ingestion error (frame={message.header.frame_id}): {e}")
        logger.info("Ingestion loop stopped")

    def _on_task_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        if isinstance(task.exception(), IndexInvariantError):
            self._request_shutdown()

    def _request_shutdown(self) -> None:
        if not self._running:
            return
        self._running = False
        logger.critical("Vicinity index is inconsistent, shutting down")
        os.kill(os.getpid(), signal.SIGTERM)

    def get_metrics(self) -> dict:
        feed_metrics = {"feed_enabled": self.consumer is not None}
        if self.consumer is not None:
            feed_metrics["feed_connected"] = self.consumer.connected
            feed_metrics.update(self.consumer.metrics.to_dict())

        return {
            "uptime_seconds": round(time.time() - self.started_at, 1),
            **feed_metrics,
            "buffer": self.buffer.metrics(),
            "ingestion": {**self.ingestor.metrics.to_dict(), "errors": self.ingest_errors},
            "triggers": {
                "process": self.process_trigger.metrics(),
                "cull": self.cull_trigger.metrics(),
            },
            "blocker": self.blocker.get_metrics(),
            "subscribers": self.dispatcher.subscriber_count,
        }


# =============================================================================
# FastAPI Application
# =============================================================================

def create_app(config: Settings) -> FastAPI:
    """Build the application around a new LaneBlockerService."""
    service = LaneBlockerService(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info(f"Starting {config.agent.name} {config.agent.version}")
        logger.info(f"Configured port: {config.server.port}")
        await service.start()

        yield

        logger.info("Shutting down gracefully...")
        await service.stop()
        logger.info("Shutdown complete")

    app = FastAPI(
        title="LaneBlocker",
        description="Obstacle-aware lane closure agent",
        version=config.agent.version,
        lifespan=lifespan,
    )
    app.state.service = service

    # -------------------------------------------------------------------------
    # HTTP Endpoints
    # -------------------------------------------------------------------------

    @app.get("/")
    async def root() -> JSONResponse:
        """Service information endpoint."""
        return JSONResponse({
            "service": "LaneBlocker",
            "version": config.agent.version,
            "name": config.agent.name,
            "status": "running",
            "rmf_frame": config.blocker.rmf_frame,
            "mitigation": config.blocker.mitigation.value,
        })

    @app.get("/health")
    async def health() -> JSONResponse:
        """Liveness probe. Always 200 while the process is up."""
        return JSONResponse({
            "status": "healthy",
            "uptime_seconds": round(time.time() - service.started_at, 1),
        })

    @app.get("/ready")
    async def ready() -> JSONResponse:
        """
        Readiness probe.

        Ready once at least one fleet's lanes are known and the obstacle
        feed (when enabled) is connected.
        """
        fleets = service.blocker.lanes.fleets()
        feed_connected = service.consumer.connected if service.consumer else None
        is_ready = service.running and bool(fleets) and feed_connected is not False

        body = {
            "status": "ready" if is_ready else "not_ready",
            "fleets": sorted(fleets),
            "feed_connected": feed_connected,
        }
        return JSONResponse(body, status_code=200 if is_ready else 503)

    @app.get("/metrics")
    async def metrics() -> JSONResponse:
        """Detailed metrics for observability."""
        return JSONResponse(service.get_metrics())

    @app.get("/lanes/closed")
    async def closed_lanes() -> JSONResponse:
        lanes = sorted(service.blocker.closed_lanes_snapshot())
        return JSONResponse({
            "count": len(lanes),
            "lanes": [{"fleet": lane.fleet, "index": lane.index} for lane in lanes],
        })

    @app.get("/obstacles")
    async def obstacles() -> JSONResponse:
        records = service.blocker.obstacles_snapshot()
        vicinity = service.blocker.vicinity_snapshot()

        lanes_by_obstacle: dict = {}
        for lane, keys in vicinity.items():
            for key in keys:
                lanes_by_obstacle.setdefault(key, []).append(str(lane))

        payload = []
        for record in sorted(records, key=lambda r: r.key):
            cx, cy = record.box.center
            payload.append({
                "key": str(record.key),
                "source": record.key.source,
                "id": record.key.id,
                "x": round(cx, 4),
                "y": round(cy, 4),
                "heading": record.box.heading,
                "size_x": record.box.size_x,
                "size_y": record.box.size_y,
                "observed_at": record.observed_at,
                "expires_at": record.expires_at,
                "lanes": sorted(lanes_by_obstacle.get(record.key, [])),
            })
        return JSONResponse({"count": len(payload), "obstacles": payload})

    @app.get("/requests")
    async def requests(limit: int = 50) -> JSONResponse:
        """Most recent published requests, oldest first."""
        history = list(service.dispatcher.history)[-limit:] if limit > 0 else []
        return JSONResponse({
            "total": service.dispatcher.total_requests,
            "requests": [
                {"type": type(request).__name__, **request.model_dump(mode="json")}
                for request in history
            ],
        })

    @app.put("/graphs/{fleet}")
    async def put_graph(fleet: str, graph: NavGraph) -> JSONResponse:
        """Replace a fleet's navigation graph. The path names the fleet."""
        try:
            result = await asyncio.to_thread(service.blocker.rebuild_graph, graph, fleet)
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e))

        return JSONResponse({
            "fleet": result.fleet,
            "lanes": len(service.blocker.lanes.lanes_of(fleet)),
            "added": len(result.added),
            "removed": len(result.removed),
            "retained": len(result.retained),
        })

    @app.put("/lane_states/{fleet}")
    async def put_lane_states(fleet: str, states: LaneStates) -> JSONResponse:
        """Record the lane states a fleet adapter currently reports."""
        states = states.model_copy(update={"fleet_name": fleet})
        released = await asyncio.to_thread(service.blocker.update_lane_states, states)
        return JSONResponse({
            "fleet": fleet,
            "closed_lanes": len(states.closed_lanes),
            "speed_limits": len(states.speed_limits),
            "released_requests": len(released),
        })

    # -------------------------------------------------------------------------
    # WebSocket Endpoints
    # -------------------------------------------------------------------------

    @app.websocket("/ws/requests")
    async def request_stream(websocket: WebSocket) -> None:
        """Push every published request to the client as it happens."""
        queue = service.dispatcher.subscribe()
        await websocket.accept()
        logger.info("Client connected to /ws/requests")

        async def forward() -> None:
            while True:
                payload = await queue.get()
                await websocket.send_json(payload)

        sender = asyncio.create_task(forward())
        try:
            # Client messages are ignored; receiving only detects disconnects
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            pass
        finally:
            sender.cancel()
            service.dispatcher.unsubscribe(queue)
            logger.info("Client disconnected from /ws/requests")

    return app


app = create_app(settings)


# =============================================================================
# Main Entry Point
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "lane_blocker.main:app",
        host=settings.server.host,
        port=settings.server.port,
        reload=False,
    )
