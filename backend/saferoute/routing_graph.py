from __future__ import annotations

import math
import threading
import time
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from functools import cached_property
from pathlib import Path
from types import MappingProxyType
from typing import Any

import ijson

from .cancellation import CancellationToken, checkpoint
from .errors import GraphLoadError
from .geo import LatLngPoint, haversine_m
from .logging_utils import log_event
from .models import NetworkType
from .settings import settings

# Polyline ends further than this from their node are counted, not rejected.
ENDPOINT_TOLERANCE_M = 1.0
_CANCEL_CHECK_EVERY = 10_000

GraphKey = tuple[str, str]
EdgeKey = tuple[str, str, int, int, int]


def region_slug(region: str) -> str:
    return str(region).strip().lower().replace(" ", "_")


def graph_key(region: str, network_type: NetworkType | str) -> GraphKey:
    return (region_slug(region), NetworkType.parse(network_type).value)


def graph_file_name(region: str, network_type: NetworkType | str) -> str:
    slug, network = graph_key(region, network_type)
    return f"{slug}_{network}.json"


def graph_path(region: str, network_type: NetworkType | str, *, graph_dir: str | Path | None = None) -> Path:
    base = Path(graph_dir) if graph_dir is not None else Path(settings.graph_dir)
    return base / graph_file_name(region, network_type)


@dataclass(frozen=True)
class GraphEdge:
    key: EdgeKey
    source: int
    target: int
    geometry: tuple[LatLngPoint, ...]
    # 0.0 when the file does not carry a length; the planner derives it from the polyline.
    length_m: float = 0.0


@dataclass(frozen=True)
class RoadGraph:
    region: str
    network_type: str
    source: str
    nodes: Mapping[int, LatLngPoint]
    adjacency: Mapping[int, tuple[GraphEdge, ...]]
    edges: tuple[GraphEdge, ...]
    skipped_edges: int = 0
    repaired_geometries: int = 0
    mismatched_endpoints: int = 0
    duplicate_nodes: int = 0

    @property
    def key(self) -> GraphKey:
        return (self.region, self.network_type)

    def out_edges(self, node_id: int) -> tuple[GraphEdge, ...]:
        return self.adjacency.get(node_id, ())

    def summary(self) -> dict[str, Any]:
        return {
            "region": self.region,
            "network_type": self.network_type,
            "source": self.source,
            "node_count": len(self.nodes),
            "edge_count": len(self.edges),
            "skipped_edges": self.skipped_edges,
            "repaired_geometries": self.repaired_geometries,
            "mismatched_endpoints": self.mismatched_endpoints,
            "duplicate_nodes": self.duplicate_nodes,
        }


@dataclass(frozen=True)
class WorkingGraph:
    """Read-only view over one or more regional graphs used by a single request.

    Nodes are the union (a node id present in several graphs is the same
    physical node); outgoing edges are concatenated in graph order.
    """

    graphs: tuple[RoadGraph, ...]
    _merged: bool = field(default=False, init=False, repr=False)

    def __post_init__(self) -> None:
        if not self.graphs:
            raise ValueError("working graph needs at least one road graph")
        object.__setattr__(self, "_merged", len(self.graphs) > 1)

    @cached_property
    def nodes(self) -> Mapping[int, LatLngPoint]:
        if not self._merged:
            return self.graphs[0].nodes
        merged: dict[int, LatLngPoint] = {}
        for graph in self.graphs:
            for node_id, coord in graph.nodes.items():
                merged.setdefault(node_id, coord)
        return MappingProxyType(merged)

    def coord(self, node_id: int) -> LatLngPoint:
        return self.nodes[node_id]

    def out_edges(self, node_id: int) -> tuple[GraphEdge, ...]:
        if not self._merged:
            return self.graphs[0].out_edges(node_id)
        out: list[GraphEdge] = []
        for graph in self.graphs:
            out.extend(graph.out_edges(node_id))
        return tuple(out)

    def iter_edges(self) -> Iterator[GraphEdge]:
        for graph in self.graphs:
            yield from graph.edges

    def has_edge(self, source: int, target: int) -> bool:
        return any(edge.target == target for edge in self.out_edges(source))

    @property
    def edge_count(self) -> int:
        return sum(len(graph.edges) for graph in self.graphs)


def nearest_node(graph: WorkingGraph, *, lat: float, lng: float) -> tuple[int | None, float]:
    best_id: int | None = None
    best_m = math.inf
    for node_id, (node_lat, node_lng) in graph.nodes.items():
        d = haversine_m(lat, lng, node_lat, node_lng)
        if d < best_m:
            best_m = d
            best_id = node_id
    return best_id, best_m


def _is_number(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _parse_node(raw: object, *, index: int, path: Path) -> tuple[int, float, float]:
    if not isinstance(raw, dict):
        raise GraphLoadError(f"node #{index} is not an object", details={"path": str(path)})
    node_id = raw.get("id")
    lat = raw.get("lat")
    lng = raw.get("lng")
    if not isinstance(node_id, int) or isinstance(node_id, bool):
        raise GraphLoadError(f"node #{index} has no integer id", details={"path": str(path)})
    if not _is_number(lat) or not _is_number(lng):
        raise GraphLoadError(f"node {node_id} is missing lat/lng", details={"path": str(path)})
    lat_f = float(lat)  # type: ignore[arg-type]
    lng_f = float(lng)  # type: ignore[arg-type]
    if not (-90.0 <= lat_f <= 90.0 and -180.0 <= lng_f <= 180.0):
        raise GraphLoadError(f"node {node_id} has out-of-range coordinates", details={"path": str(path)})
    return node_id, lat_f, lng_f


def _parse_edge(raw: object, *, index: int, path: Path) -> tuple[int, int, tuple[LatLngPoint, ...], float]:
    if not isinstance(raw, dict):
        raise GraphLoadError(f"edge #{index} is not an object", details={"path": str(path)})
    source = raw.get("from")
    target = raw.get("to")
    geometry_raw = raw.get("geometry")
    if not isinstance(source, int) or isinstance(source, bool) or not isinstance(target, int) or isinstance(target, bool):
        raise GraphLoadError(f"edge #{index} has no integer from/to", details={"path": str(path)})
    if not isinstance(geometry_raw, list):
        raise GraphLoadError(f"edge #{index} has no geometry array", details={"path": str(path)})
    geometry: list[LatLngPoint] = []
    for vertex in geometry_raw:
        if (
            not isinstance(vertex, list)
            or len(vertex) < 2
            or not _is_number(vertex[0])
            or not _is_number(vertex[1])
        ):
            raise GraphLoadError(f"edge #{index} has a malformed geometry vertex", details={"path": str(path)})
        geometry.append((float(vertex[0]), float(vertex[1])))
    length_raw = raw.get("length")
    length_m = float(length_raw) if _is_number(length_raw) and float(length_raw) > 0.0 else 0.0  # type: ignore[arg-type]
    return source, target, tuple(geometry), length_m


def _stream_items(path: Path, *, cancel: CancellationToken | None) -> tuple[list[Any], list[Any], set[str]]:
    """Single streaming pass collecting `nodes.item` and `edges.item` objects."""
    nodes_raw: list[Any] = []
    edges_raw: list[Any] = []
    array_keys: set[str] = set()
    targets = {"nodes.item": nodes_raw, "edges.item": edges_raw}
    # Object under construction and the list it lands in.
    active: tuple[ijson.ObjectBuilder, list[Any]] | None = None
    depth = 0
    seen = 0
    with path.open("rb") as fh:
        for prefix, event, value in ijson.parse(fh, use_float=True):
            if active is None:
                if prefix in ("nodes", "edges") and event == "start_array":
                    array_keys.add(prefix)
                    continue
                if prefix in targets:
                    if event in ("start_map", "start_array"):
                        builder = ijson.ObjectBuilder()
                        builder.event(event, value)
                        active = (builder, targets[prefix])
                        depth = 1
                    else:
                        targets[prefix].append(value)
                continue
            builder, sink = active
            builder.event(event, value)
            if event in ("start_map", "start_array"):
                depth += 1
            elif event in ("end_map", "end_array"):
                depth -= 1
                if depth == 0:
                    sink.append(builder.value)
                    active = None
                    seen += 1
                    if seen % _CANCEL_CHECK_EVERY == 0:
                        checkpoint(cancel, "graph_load")
    return nodes_raw, edges_raw, array_keys


def load_road_graph(
    path: Path,
    *,
    region: str,
    network_type: NetworkType | str,
    cancel: CancellationToken | None = None,
) -> RoadGraph:
    slug, network = graph_key(region, network_type)
    checkpoint(cancel, "graph_load")
    if not path.exists():
        raise GraphLoadError(
            f"graph file not found for {region}/{network}",
            details={"path": str(path), "region": region, "network_type": network},
        )
    started = time.monotonic()
    try:
        nodes_raw, edges_raw, array_keys = _stream_items(path, cancel=cancel)
    except (ijson.JSONError, OSError, UnicodeDecodeError) as exc:
        raise GraphLoadError(
            f"graph file unreadable for {region}/{network}: {exc}",
            details={"path": str(path)},
        ) from exc
    missing = sorted({"nodes", "edges"} - array_keys)
    if missing:
        raise GraphLoadError(
            f"graph file missing required arrays: {', '.join(missing)}",
            details={"path": str(path)},
        )

    nodes: dict[int, LatLngPoint] = {}
    duplicate_nodes = 0
    for idx, raw in enumerate(nodes_raw):
        node_id, lat, lng = _parse_node(raw, index=idx, path=path)
        if node_id in nodes:
            duplicate_nodes += 1
            continue
        nodes[node_id] = (lat, lng)
    if not nodes:
        raise GraphLoadError("graph file has no nodes", details={"path": str(path)})

    checkpoint(cancel, "graph_load")
    adjacency_mut: dict[int, list[GraphEdge]] = {}
    edges: list[GraphEdge] = []
    skipped = 0
    repaired = 0
    mismatched = 0
    for idx, raw in enumerate(edges_raw):
        source, target, geometry, length_m = _parse_edge(raw, index=idx, path=path)
        if source not in nodes or target not in nodes:
            skipped += 1
            continue
        start, end = nodes[source], nodes[target]
        if len(geometry) < 2:
            geometry = (start, end)
            repaired += 1
        elif (
            haversine_m(geometry[0][0], geometry[0][1], start[0], start[1]) > ENDPOINT_TOLERANCE_M
            or haversine_m(geometry[-1][0], geometry[-1][1], end[0], end[1]) > ENDPOINT_TOLERANCE_M
        ):
            mismatched += 1
        edge = GraphEdge(
            key=(slug, network, source, target, len(edges)),
            source=source,
            target=target,
            geometry=geometry,
            length_m=length_m,
        )
        edges.append(edge)
        adjacency_mut.setdefault(source, []).append(edge)
        if len(edges) % _CANCEL_CHECK_EVERY == 0:
            checkpoint(cancel, "graph_load")

    graph = RoadGraph(
        region=slug,
        network_type=network,
        source=str(path),
        nodes=MappingProxyType(nodes),
        adjacency=MappingProxyType({k: tuple(v) for k, v in adjacency_mut.items()}),
        edges=tuple(edges),
        skipped_edges=skipped,
        repaired_geometries=repaired,
        mismatched_endpoints=mismatched,
        duplicate_nodes=duplicate_nodes,
    )
    if skipped or repaired or mismatched or duplicate_nodes:
        log_event("route_graph_edges_adjusted", **graph.summary())
    log_event(
        "route_graph_parsed",
        elapsed_ms=round((time.monotonic() - started) * 1000.0, 2),
        **graph.summary(),
    )
    return graph


class GraphCatalog:
    """Process-wide (region, network type) -> RoadGraph map.

    Parsing happens outside the lock. If two requests race on one key both
    parse; the first to publish wins and the other copy is dropped.
    """

    def __init__(self, *, graph_dir: str | Path | None = None) -> None:
        self._graph_dir = graph_dir
        self._lock = threading.Lock()
        self._graphs: dict[GraphKey, RoadGraph] = {}
        self._loads = 0
        self._load_failures = 0
        self._discarded = 0

    def peek(self, region: str, network_type: NetworkType | str) -> RoadGraph | None:
        key = graph_key(region, network_type)
        with self._lock:
            return self._graphs.get(key)

    def get(
        self,
        region: str,
        network_type: NetworkType | str,
        *,
        cancel: CancellationToken | None = None,
    ) -> RoadGraph:
        key = graph_key(region, network_type)
        with self._lock:
            existing = self._graphs.get(key)
        if existing is not None:
            return existing

        path = graph_path(region, network_type, graph_dir=self._graph_dir)
        try:
            graph = load_road_graph(path, region=region, network_type=network_type, cancel=cancel)
        except GraphLoadError as exc:
            with self._lock:
                self._load_failures += 1
            log_event(
                "route_graph_load_failed",
                region=key[0],
                network_type=key[1],
                path=str(path),
                error_message=exc.message,
            )
            raise

        with self._lock:
            published = self._graphs.setdefault(key, graph)
            if published is graph:
                self._loads += 1
            else:
                self._discarded += 1
        if published is graph:
            log_event("route_graph_loaded", **graph.summary())
        else:
            log_event("route_graph_load_discarded", region=key[0], network_type=key[1])
        return published

    def clear(self) -> int:
        with self._lock:
            cleared = len(self._graphs)
            self._graphs.clear()
            return cleared

    def status(self) -> dict[str, Any]:
        with self._lock:
            graphs = [graph.summary() for _, graph in sorted(self._graphs.items())]
            return {
                "graph_dir": str(self._graph_dir or settings.graph_dir),
                "loaded": graphs,
                "loads": self._loads,
                "load_failures": self._load_failures,
                "discarded": self._discarded,
            }
