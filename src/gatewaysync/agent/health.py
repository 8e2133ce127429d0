"""Health, readiness and metrics endpoints.

This module provides:
- create_health_app: FastAPI app serving /healthz, /readyz and /metrics
- HealthServer: Runs the app with uvicorn in a background thread

Readiness flips once, after the first sync attempt finished (whatever its
outcome), and never flips back.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

import uvicorn
from fastapi import FastAPI, Response
from fastapi.responses import PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST

if TYPE_CHECKING:
    from gatewaysync.agent.metrics import AgentMetrics

logger = logging.getLogger(__name__)


def create_health_app(ready: threading.Event, metrics: AgentMetrics | None = None) -> FastAPI:
    """Create the health endpoint application.

    Args:
        ready: Set once the agent finished its first sync attempt.
        metrics: Agent metrics to expose, None to disable /metrics.

    Returns:
        Configured FastAPI application.
    """
    app = FastAPI(title="gatewaysync agent", docs_url=None, redoc_url=None, openapi_url=None)

    @app.get("/healthz", response_class=PlainTextResponse)
    def healthz() -> str:
        """Liveness probe."""
        return "ok"

    @app.get("/readyz", response_class=PlainTextResponse)
    def readyz(response: Response) -> str:
        """Readiness probe."""
        if ready.is_set():
            return "ok"
        response.status_code = 503
        return "not ready"

    if metrics is not None:

        @app.get("/metrics")
        def metrics_endpoint() -> Response:
            """Prometheus scrape endpoint."""
            return Response(content=metrics.render(), media_type=CONTENT_TYPE_LATEST)

    return app


class HealthServer:
    """Serves the health app from a daemon thread."""

    def __init__(
        self,
        host: str = "0.0.0.0",
        port: int = 8082,
        metrics: AgentMetrics | None = None,
    ) -> None:
        self._ready = threading.Event()
        self.app = create_health_app(self._ready, metrics)
        self._config = uvicorn.Config(
            self.app,
            host=host,
            port=port,
            log_level="warning",
            access_log=False,
        )
        self._server: uvicorn.Server | None = None
        self._thread: threading.Thread | None = None

    @property
    def is_ready(self) -> bool:
        return self._ready.is_set()

    def mark_ready(self) -> None:
        """Report ready on /readyz from now on."""
        self._ready.set()

    def start(self) -> None:
        """Start serving in the background."""
        if self._thread is not None:
            return
        self._server = uvicorn.Server(self._config)
        self._thread = threading.Thread(
            target=self._server.run, name="gatewaysync-health", daemon=True
        )
        self._thread.start()
        logger.info(f"Health server listening on {self._config.host}:{self._config.port}")

    def stop(self) -> None:
        """Ask uvicorn to exit and wait for the thread."""
        if self._server is None or self._thread is None:
            return
        self._server.should_exit = True
        self._thread.join(timeout=5.0)
        self._server = None
        self._thread = None
