from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime

from .astar import PathNotFoundError, PathResult, astar_search
from .cancellation import CancellationToken, checkpoint
from .edge_weight_cache import EDGE_WEIGHT_CACHE, EdgeWeightCache
from .errors import (
    IncidentSourceUnavailableError,
    NoPathError,
    NoRegionError,
    NoRoadNearbyError,
    RouteCancelledError,
    RoutingError,
)
from .geo import BoundingBox, haversine_m, polyline_length_m
from .incidents import Incident, IncidentSource, TimeWindow, incident_source_from_settings
from .logging_utils import log_event
from .models import (
    DebugCrimeCheckRequest,
    DebugCrimeCheckResponse,
    EdgeWeight,
    LatLng,
    NetworkType,
    RouteRequest,
    RouteResponse,
)
from .regions import REGIONS, Region, find_region
from .risk_model import RiskModel
from .routing_graph import EdgeKey, GraphCatalog, GraphEdge, WorkingGraph, nearest_node
from .settings import settings

Clock = Callable[[], datetime]
_CANCEL_CHECK_EVERY_EDGES = 5_000


def _utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class RouteComputation:
    graph: WorkingGraph
    path: PathResult
    start_node: int
    end_node: int
    risk: dict[EdgeKey, float]
    lengths: dict[EdgeKey, float]
    incident_count: int

    @property
    def path_edges(self) -> tuple[GraphEdge, ...]:
        return tuple(edge for edge in self.path.edges if isinstance(edge, GraphEdge))

    def coordinates(self) -> list[LatLng]:
        coords = [LatLng(lat=lat, lng=lng) for lat, lng in (self.graph.coord(n) for n in self.path.nodes)]
        if len(coords) == 1:
            # Start and end snapped to one node: repeat it so callers always get a segment.
            coords.append(coords[0].model_copy())
        return coords


class SafestRoutePlanner:
    def __init__(
        self,
        *,
        catalog: GraphCatalog | None = None,
        incident_source: IncidentSource | None = None,
        cache: EdgeWeightCache | None = None,
        risk_model: RiskModel | None = None,
        regions: Sequence[Region] = REGIONS,
        clock: Clock = _utc_now,
        alpha: float | None = None,
        beta: float | None = None,
        incident_bbox_pad_deg: float | None = None,
        time_window: TimeWindow | None = None,
        snap_max_distance_m: float | None = None,
        incident_source_strict: bool | None = None,
    ) -> None:
        self.catalog = catalog or GraphCatalog()
        self.incident_source = incident_source if incident_source is not None else incident_source_from_settings()
        self.cache = cache or EDGE_WEIGHT_CACHE
        self.risk_model = risk_model or RiskModel.from_settings()
        self.regions = tuple(regions)
        self.clock = clock
        self.alpha = float(settings.alpha if alpha is None else alpha)
        self.beta = float(settings.beta if beta is None else beta)
        self.incident_bbox_pad_deg = float(
            settings.incident_bbox_pad_deg if incident_bbox_pad_deg is None else incident_bbox_pad_deg
        )
        self.time_window = time_window if time_window is not None else TimeWindow.from_settings()
        self.snap_max_distance_m = (
            settings.snap_max_distance_m if snap_max_distance_m is None else float(snap_max_distance_m)
        )
        self.incident_source_strict = bool(
            settings.incident_source_strict if incident_source_strict is None else incident_source_strict
        )

    def edge_cost(self, risk: float, length_m: float) -> float:
        return (self.alpha * risk) + (self.beta * length_m)

    def _resolve_region(self, lat: float, lng: float, *, endpoint: str) -> Region:
        region = find_region(lat, lng, catalog=self.regions)
        if region is None:
            raise NoRegionError(
                f"no region covers the {endpoint} point",
                details={"endpoint": endpoint, "lat": lat, "lng": lng},
            )
        return region

    def _working_graph(
        self,
        start_region: Region,
        end_region: Region,
        network: NetworkType,
        *,
        cancel: CancellationToken | None,
    ) -> WorkingGraph:
        graphs = [self.catalog.get(start_region.name, network, cancel=cancel)]
        if end_region.name != start_region.name:
            graphs.append(self.catalog.get(end_region.name, network, cancel=cancel))
        return WorkingGraph(graphs=tuple(graphs))

    def _fetch_incidents(
        self,
        box: BoundingBox,
        *,
        now: datetime,
        cancel: CancellationToken | None,
    ) -> list[Incident]:
        try:
            incidents = self.incident_source.incidents_within_box(
                box,
                window=None if self.time_window.unbounded else self.time_window,
                now=now,
                cancel=cancel,
            )
        except IncidentSourceUnavailableError as exc:
            if self.incident_source_strict:
                raise
            log_event(
                "incident_fetch_degraded",
                level=logging.WARNING,
                reason_code=exc.reason_code,
                error_message=exc.message,
            )
            return []
        return list(incidents)

    def _snap(self, graph: WorkingGraph, lat: float, lng: float, *, endpoint: str) -> int:
        node_id, distance_m = nearest_node(graph, lat=lat, lng=lng)
        if node_id is None or (
            self.snap_max_distance_m is not None and distance_m > self.snap_max_distance_m
        ):
            raise NoRoadNearbyError(
                f"no road node near the {endpoint} point",
                details={
                    "endpoint": endpoint,
                    "nearest_distance_m": None if node_id is None else round(distance_m, 1),
                    "max_distance_m": self.snap_max_distance_m,
                },
            )
        return node_id

    def _fully_fetched(self, edge: GraphEdge, box: BoundingBox) -> bool:
        reach = self.risk_model.reach(edge.geometry)
        return reach is None or box.covers(reach)

    def compute(self, request: RouteRequest, *, cancel: CancellationToken | None = None) -> RouteComputation:
        started = time.monotonic()
        network = NetworkType.parse(request.network_type)
        start_region = self._resolve_region(request.start_lat, request.start_lng, endpoint="start")
        end_region = self._resolve_region(request.end_lat, request.end_lng, endpoint="end")
        graph = self._working_graph(start_region, end_region, network, cancel=cancel)

        now = self.clock()
        now_ms = int(now.timestamp() * 1000)
        box = BoundingBox.around(
            [(request.start_lat, request.start_lng), (request.end_lat, request.end_lng)],
            pad_deg=self.incident_bbox_pad_deg,
        )
        incidents = self._fetch_incidents(box, now=now, cancel=cancel)
        scored = self.risk_model.score_incidents(incidents, now=now)

        # Request-local scratch; shared graphs stay untouched.
        risk: dict[EdgeKey, float] = {}
        lengths: dict[EdgeKey, float] = {}
        staged: dict[EdgeKey, tuple[float, int]] = {}
        local_only = 0
        for idx, edge in enumerate(graph.iter_edges()):
            if idx % _CANCEL_CHECK_EVERY_EDGES == 0:
                checkpoint(cancel, "edge_weights")
            # Only edges whose whole reach was fetched are scored against a complete snapshot.
            if self._fully_fetched(edge, box):
                weight = self.cache.lookup(edge.key, now_ms=now_ms)
                if weight is None:
                    weight = self.risk_model.edge_risk(edge.geometry, scored)
                    staged[edge.key] = (weight, now_ms)
            else:
                weight = self.risk_model.edge_risk(edge.geometry, scored)
                local_only += 1
            risk[edge.key] = weight
            lengths[edge.key] = edge.length_m if edge.length_m > 0.0 else polyline_length_m(edge.geometry)

        start_node = self._snap(graph, request.start_lat, request.start_lng, endpoint="start")
        end_node = self._snap(graph, request.end_lat, request.end_lng, endpoint="end")
        end_lat, end_lng = graph.coord(end_node)

        def _neighbors(node_id: int):
            for edge in graph.out_edges(node_id):
                yield edge.target, self.edge_cost(risk[edge.key], lengths[edge.key]), edge

        def _heuristic(node_id: int) -> float:
            lat, lng = graph.coord(node_id)
            return self.beta * haversine_m(lat, lng, end_lat, end_lng)

        try:
            path = astar_search(
                start=start_node,
                goal=end_node,
                neighbors=_neighbors,
                heuristic=_heuristic,
                cancel=cancel,
            )
        except PathNotFoundError as exc:
            self._commit(staged)
            raise NoPathError(
                "no path between the snapped start and end nodes",
                details={"start_node": start_node, "end_node": end_node, "regions": [g.region for g in graph.graphs]},
            ) from exc
        self._commit(staged)

        log_event(
            "safest_route_computed",
            network_type=network.value,
            regions=[g.region for g in graph.graphs],
            node_count=len(path.nodes),
            explored=path.explored,
            reopened=path.reopened,
            cost=round(path.cost, 6),
            incident_count=len(incidents),
            edge_count=graph.edge_count,
            weights_computed=len(staged),
            weights_uncached=local_only,
            elapsed_ms=round((time.monotonic() - started) * 1000.0, 2),
        )
        return RouteComputation(
            graph=graph,
            path=path,
            start_node=start_node,
            end_node=end_node,
            risk=risk,
            lengths=lengths,
            incident_count=len(incidents),
        )

    def _commit(self, staged: dict[EdgeKey, tuple[float, int]]) -> None:
        self.cache.store_many(staged)
        self.cache.record_computations(len(staged))

    def find_safest_route(self, request: RouteRequest, *, cancel: CancellationToken | None = None) -> RouteResponse:
        try:
            computation = self.compute(request, cancel=cancel)
        except RouteCancelledError as exc:
            log_event("safest_route_cancelled", stage=(exc.details or {}).get("stage"))
            raise
        except RoutingError as exc:
            log_event(
                "safest_route_failed",
                level=logging.WARNING,
                reason_code=exc.reason_code,
                error_message=exc.message,
                details=exc.details,
            )
            raise
        return RouteResponse(route=computation.coordinates())

    def debug_crime_check(
        self,
        request: DebugCrimeCheckRequest,
        *,
        cancel: CancellationToken | None = None,
    ) -> DebugCrimeCheckResponse:
        """Would a crime at (crime_lat, crime_lng) touch the safest route as computed now?"""
        computation = self.compute(request, cancel=cancel)
        edges = computation.path_edges
        on_route = any(
            self.risk_model.is_near(request.crime_lat, request.crime_lng, edge.geometry) for edge in edges
        )
        weights: list[EdgeWeight] = []
        for edge in edges:
            from_lat, from_lng = computation.graph.coord(edge.source)
            to_lat, to_lng = computation.graph.coord(edge.target)
            weights.append(
                EdgeWeight(
                    from_lat=from_lat,
                    from_lng=from_lng,
                    to_lat=to_lat,
                    to_lng=to_lng,
                    weight=computation.risk[edge.key],
                )
            )
        return DebugCrimeCheckResponse(
            result="yes" if on_route else "no",
            route=computation.coordinates(),
            edge_weights=weights,
        )


_PLANNER: SafestRoutePlanner | None = None
_PLANNER_LOCK = threading.Lock()


def get_planner() -> SafestRoutePlanner:
    global _PLANNER
    with _PLANNER_LOCK:
        if _PLANNER is None:
            _PLANNER = SafestRoutePlanner()
        return _PLANNER


def reset_planner() -> None:
    global _PLANNER
    with _PLANNER_LOCK:
        _PLANNER = None


def find_safest_route(
    start_lat: float,
    start_lng: float,
    end_lat: float,
    end_lng: float,
    network_type: NetworkType | str,
    *,
    cancel: CancellationToken | None = None,
) -> RouteResponse:
    request = RouteRequest(
        start_lat=start_lat,
        start_lng=start_lng,
        end_lat=end_lat,
        end_lng=end_lng,
        network_type=network_type,
    )
    return get_planner().find_safest_route(request, cancel=cancel)
