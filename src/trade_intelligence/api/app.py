"""HTTP surface: FastAPI application over :class:`IntelligenceService`.

Usage::

    from trade_intelligence.api.app import create_app

    app = create_app(service)
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from trade_intelligence.core.errors import (
    IntelligenceError,
    OverrideConflict,
    RecomputeFailure,
)
from trade_intelligence.pipeline.scheduler import RefreshScheduler
from trade_intelligence.service import IntelligenceService

logger = logging.getLogger(__name__)


class OverrideRequest(BaseModel):
    # Validated by the override store so bad values map to OverrideConflict
    weight: Any


def create_app(service: IntelligenceService) -> FastAPI:
    """Create the intelligence API application.

    When ``scheduler.enabled`` is set the nightly refresh loop runs for
    the lifetime of the app.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        scheduler = None
        if service.settings.scheduler.enabled:
            scheduler = RefreshScheduler(service.settings.scheduler, service.refresh)
            await scheduler.start()
        app.state.scheduler = scheduler
        try:
            yield
        finally:
            if scheduler is not None:
                await scheduler.stop()

    app = FastAPI(title="Trade Intelligence", version="0.1.0", lifespan=lifespan)

    # Store component references on app state
    app.state.service = service

    def _svc(request: Request) -> IntelligenceService:
        return request.app.state.service

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @app.get("/api/engines")
    async def engines(request: Request) -> dict[str, Any]:
        result = await asyncio.to_thread(_svc(request).engine_metrics)
        return result.to_dict()

    @app.get("/api/health-summary")
    async def health_summary(request: Request) -> dict[str, Any]:
        result = await asyncio.to_thread(_svc(request).health_summary)
        return result.to_dict()

    @app.get("/api/calibration")
    async def calibration(request: Request) -> dict[str, Any]:
        result = await asyncio.to_thread(_svc(request).calibration_report)
        return result.to_dict()

    @app.get("/api/signal-weights")
    async def signal_weights(request: Request) -> dict[str, Any]:
        result = await asyncio.to_thread(_svc(request).signal_weight_summary)
        return result.to_dict()

    @app.get("/api/stats")
    async def stats(request: Request) -> dict[str, Any]:
        result = await asyncio.to_thread(_svc(request).platform_stats)
        return result.to_dict()

    @app.get("/api/symbols/{symbol}")
    async def symbol(request: Request, symbol: str) -> dict[str, Any]:
        result = await asyncio.to_thread(_svc(request).symbol_intelligence, symbol)
        return result.to_dict()

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    @app.put("/api/signal-weights/{signal}/override")
    async def set_override(
        request: Request, signal: str, body: OverrideRequest
    ) -> dict[str, Any]:
        result = await asyncio.to_thread(
            _svc(request).set_override, signal, body.weight
        )
        return result.to_dict()

    @app.delete("/api/signal-weights/{signal}/override")
    async def remove_override(request: Request, signal: str) -> JSONResponse:
        removed = await asyncio.to_thread(_svc(request).remove_override, signal)
        if not removed:
            return JSONResponse(
                {"error": "not_found", "message": f"No override for {signal!r}"},
                status_code=404,
            )
        return JSONResponse({"signal": signal, "removed": True})

    @app.post("/api/refresh")
    async def refresh(request: Request) -> dict[str, Any]:
        return await asyncio.to_thread(_svc(request).refresh)

    # ------------------------------------------------------------------
    # Health endpoint
    # ------------------------------------------------------------------

    @app.get("/health")
    async def health(request: Request) -> dict[str, Any]:
        return _svc(request).status()

    # ------------------------------------------------------------------
    # Error mapping
    # ------------------------------------------------------------------

    @app.exception_handler(OverrideConflict)
    async def override_conflict_handler(
        request: Request, exc: OverrideConflict,
    ) -> JSONResponse:
        return JSONResponse(
            {
                "error": "override_conflict",
                "message": str(exc),
                "signal": exc.signal,
            },
            status_code=422,
        )

    @app.exception_handler(RecomputeFailure)
    async def recompute_failure_handler(
        request: Request, exc: RecomputeFailure,
    ) -> JSONResponse:
        logger.error("Recompute failed on %s: %s", request.url.path, exc)
        return JSONResponse(
            {"error": exc.kind, "message": exc.message}, status_code=500
        )

    @app.exception_handler(IntelligenceError)
    async def intelligence_error_handler(
        request: Request, exc: IntelligenceError,
    ) -> JSONResponse:
        return JSONResponse(
            {"error": type(exc).__name__, "message": str(exc)}, status_code=400
        )

    return app
