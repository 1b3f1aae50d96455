from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Annotated, Any

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .cancellation import CancellationToken
from .errors import (
    GraphLoadError,
    IncidentSourceUnavailableError,
    NoPathError,
    NoRegionError,
    NoRoadNearbyError,
    RouteCancelledError,
    RoutingError,
    normalize_reason_code,
)
from .logging_utils import log_event
from .models import (
    DebugCrimeCheckRequest,
    DebugCrimeCheckResponse,
    ErrorDetail,
    RouteRequest,
    RouteResponse,
)
from .planner import SafestRoutePlanner, get_planner
from .regions import REGIONS
from .settings import settings

# 499: client closed request / request abandoned (nginx convention).
ERROR_STATUS: dict[type[RoutingError], int] = {
    NoRegionError: 422,
    NoRoadNearbyError: 422,
    NoPathError: 404,
    GraphLoadError: 503,
    IncidentSourceUnavailableError: 503,
    RouteCancelledError: 499,
}


def status_for(exc: RoutingError) -> int:
    for kind, status in ERROR_STATUS.items():
        if isinstance(exc, kind):
            return status
    return 500


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.planner = get_planner()
    yield
    close = getattr(app.state.planner.incident_source, "close", None)
    if callable(close):
        close()


app = FastAPI(title="Safest Route Engine", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RoutingError)
async def routing_error_handler(request: Request, exc: RoutingError) -> JSONResponse:
    return JSONResponse(
        status_code=status_for(exc),
        content={
            "detail": ErrorDetail(
                reason_code=normalize_reason_code(exc.reason_code),
                message=exc.message,
            ).model_dump()
        },
    )


def route_planner(request: Request) -> SafestRoutePlanner:
    planner: SafestRoutePlanner | None = getattr(request.app.state, "planner", None)
    return planner if planner is not None else get_planner()


PlannerDep = Annotated[SafestRoutePlanner, Depends(route_planner)]


def _request_token() -> CancellationToken:
    return CancellationToken(timeout_s=settings.route_timeout_s)


@app.get("/")
def root() -> dict[str, str]:
    return {"message": "Safest route engine is running. Visit /docs for the API UI.", "docs": "/docs"}


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/regions")
def list_regions() -> list[dict[str, Any]]:
    return [{"name": region.name, **region.box.as_dict()} for region in REGIONS]


@app.get("/graphs")
def graphs_status(planner: PlannerDep) -> dict[str, Any]:
    return planner.catalog.status()


@app.get("/cache/stats")
def cache_stats(planner: PlannerDep) -> dict[str, int | float]:
    return planner.cache.snapshot()


@app.delete("/cache")
def cache_clear(planner: PlannerDep) -> dict[str, int]:
    cleared = planner.cache.clear()
    log_event("edge_weight_cache_cleared", cleared=cleared)
    return {"cleared": cleared}


# Sync handlers: graph loads and incident fetches block, so they run in the threadpool.
@app.post("/api/routes/safest", response_model=RouteResponse)
def safest_route(req: RouteRequest, planner: PlannerDep) -> RouteResponse:
    return planner.find_safest_route(req, cancel=_request_token())


@app.post("/api/routes/debug-crime-check", response_model=DebugCrimeCheckResponse)
def debug_crime_check(req: DebugCrimeCheckRequest, planner: PlannerDep) -> DebugCrimeCheckResponse:
    return planner.debug_crime_check(req, cancel=_request_token())
