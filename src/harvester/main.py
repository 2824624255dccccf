"""Results harvester micro-service.

Reads hotel search results off a page the operator has already opened in
their browser. It never navigates: it decides when the page is ready and
how to read it.

This FastAPI app exposes:
- POST /extract                      to run an extract/continue/end_session call
- POST /sessions/{session_id}/cancel to end a running stability wait
- /metrics for Prometheus and /healthz for liveness
"""

from __future__ import annotations

import datetime
from typing import Any, Dict, Optional

import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram

from .batch import SessionAggregator
from .config.production import get_config
from .coordinator import StrategyChain
from .models import ExtractionRequest, ExtractionResponse
from .observability.metrics import HarvestMetrics
from .reliability.errors import BindingUnavailable
from .runtime import BrowserRuntime

config = get_config()
service_logger = config.setup_logging()

# ----------------------------------------------------------------------------
# Metrics
# ----------------------------------------------------------------------------

metrics = HarvestMetrics()

REQUEST_COUNT = Counter(
    "harvest_request_count",
    "Number of requests received",
    labelnames=["endpoint", "method", "status"],
    registry=metrics.registry,
)
REQUEST_LATENCY = Histogram(
    "harvest_request_latency_seconds",
    "Request latency in seconds",
    labelnames=["endpoint"],
    registry=metrics.registry,
)

# ----------------------------------------------------------------------------
# App + global runtime
# ----------------------------------------------------------------------------

app = FastAPI(title="Results Harvester Service", version="1.0.0")

browser_runtime: Optional[BrowserRuntime] = None
aggregator: Optional[SessionAggregator] = None
startup_time: Optional[datetime.datetime] = None


@app.middleware("http")
async def prometheus_middleware(request: Request, call_next):
    """Collect Prometheus metrics for each request."""
    endpoint = request.url.path
    with REQUEST_LATENCY.labels(endpoint).time():
        response = await call_next(request)
    REQUEST_COUNT.labels(endpoint, request.method, response.status_code).inc()
    return response


@app.get("/healthz")
async def healthz() -> Dict[str, Any]:
    """Liveness probe with component status."""
    components = {
        "browser": "ok" if browser_runtime and browser_runtime.connected else "not_connected",
        "aggregator": "ok" if aggregator else "not_initialized",
    }
    return {
        "status": "ok" if all(status == "ok" for status in components.values()) else "degraded",
        "components": components,
        "errors": aggregator.chain.error_handler.get_error_stats() if aggregator else {},
        "uptime_seconds": int((datetime.datetime.utcnow() - startup_time).total_seconds()) if startup_time else 0,
    }


@app.get("/metrics")
async def prometheus_metrics() -> Response:
    """Prometheus metrics endpoint."""
    if not config.monitoring.prometheus_enabled:
        raise HTTPException(status_code=404, detail="Metrics disabled")
    return Response(content=metrics.export(), media_type=CONTENT_TYPE_LATEST)


@app.post("/extract", response_model=ExtractionResponse, response_model_by_alias=True)
async def extract(request: ExtractionRequest) -> ExtractionResponse:
    """Run one extract, continue or end_session call against the operator page."""
    if aggregator is None:
        raise HTTPException(status_code=503, detail="Harvester not initialized")

    try:
        if browser_runtime is not None:
            aggregator.chain.binding = browser_runtime.binding()
        return await aggregator.handle(request)
    except BindingUnavailable as e:
        service_logger.error(f"Binding unavailable for session {request.session_id}: {e.message}")
        raise HTTPException(status_code=503, detail=e.to_dict())


@app.post("/sessions/{session_id}/cancel")
async def cancel_session(session_id: str) -> Dict[str, Any]:
    """End the session's running stability wait; the pass returns what it has."""
    if aggregator is None:
        raise HTTPException(status_code=503, detail="Harvester not initialized")
    cancelled = aggregator.cancel(session_id)
    if not cancelled and aggregator.get(session_id) is None:
        raise HTTPException(status_code=404, detail=f"Unknown session '{session_id}'")
    return {"sessionId": session_id, "cancelled": cancelled}


@app.on_event("startup")
async def on_startup() -> None:
    """Attach to the operator browser and build the extraction pipeline."""
    global browser_runtime, aggregator, startup_time

    startup_time = datetime.datetime.utcnow()
    service_logger.info("Starting results harvester service...")
    service_logger.info(f"Configuration: {config.get_configuration_summary()}")

    browser_runtime = BrowserRuntime(browser_config=config.browser, capture=config.capture, logger=service_logger)
    try:
        await browser_runtime.start()
        binding = browser_runtime.binding()
    except BindingUnavailable as e:
        service_logger.error(f"❌ Browser attach failed, service degraded: {e.message}")
        return

    chain = StrategyChain(binding, config=config, metrics=metrics, logger=service_logger.getChild("coordinator"))
    aggregator = SessionAggregator(chain, config=config, metrics=metrics, logger=service_logger.getChild("sessions"))
    service_logger.info("✅ Harvester ready")


@app.on_event("shutdown")
async def on_shutdown() -> None:
    """Detach from the browser without closing the operator's pages."""
    global browser_runtime, aggregator
    service_logger.info("Shutting down results harvester service...")
    if browser_runtime:
        await browser_runtime.stop()
    browser_runtime = None
    aggregator = None


def run() -> None:
    """Console entry point."""
    uvicorn.run("harvester.main:app", host="0.0.0.0", port=config.system.service_port)
