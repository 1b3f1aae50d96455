from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

import saferoute.routing_graph as routing_graph
from saferoute.cancellation import CancellationToken
from saferoute.errors import GraphLoadError, RouteCancelledError
from saferoute.geo import haversine_m
from saferoute.models import NetworkType
from saferoute.routing_graph import (
    GraphCatalog,
    WorkingGraph,
    graph_file_name,
    graph_path,
    load_road_graph,
    nearest_node,
)


def _node(node_id: int, lat: float, lng: float) -> dict[str, Any]:
    return {"id": node_id, "lat": lat, "lng": lng}


def _edge(source: int, target: int, geometry: list[list[float]], **extra: Any) -> dict[str, Any]:
    return {"from": source, "to": target, "geometry": geometry, **extra}


def _write(path: Path, payload: Any) -> Path:
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


def _square_payload() -> dict[str, Any]:
    return {
        "nodes": [_node(1, 0.0, 0.0), _node(2, 0.0, 0.001), _node(3, 0.001, 0.001)],
        "edges": [
            _edge(1, 2, [[0.0, 0.0], [0.0, 0.001]]),
            _edge(2, 3, [[0.0, 0.001], [0.0005, 0.001], [0.001, 0.001]], length=120.0),
        ],
    }


def test_graph_file_naming_follows_region_and_network() -> None:
    assert graph_file_name("Dhaka", "walk") == "dhaka_walk.json"
    assert graph_file_name("Chapai Nawabganj", "DRIVE") == "chapai_nawabganj_drive.json"
    assert graph_path("Cox's Bazar", NetworkType.BIKE, graph_dir="/graphs") == Path("/graphs/cox's_bazar_bike.json")
    with pytest.raises(ValueError):
        graph_file_name("Dhaka", "boat")


def test_load_road_graph_builds_adjacency_and_keys(tmp_path: Path) -> None:
    path = _write(tmp_path / "dhaka_walk.json", _square_payload())
    graph = load_road_graph(path, region="Dhaka", network_type="walk")

    assert graph.key == ("dhaka", "walk")
    assert set(graph.nodes) == {1, 2, 3}
    assert len(graph.edges) == 2
    first, second = graph.edges
    assert first.key == ("dhaka", "walk", 1, 2, 0)
    assert first.length_m == 0.0
    assert second.length_m == 120.0
    assert len(second.geometry) == 3
    assert graph.out_edges(1) == (first,)
    assert graph.out_edges(3) == ()
    assert graph.summary()["edge_count"] == 2


def test_loader_accepts_edges_before_nodes(tmp_path: Path) -> None:
    payload = _square_payload()
    reordered = {"edges": payload["edges"], "nodes": payload["nodes"]}
    path = tmp_path / "dhaka_walk.json"
    path.write_text(json.dumps(reordered), encoding="utf-8")
    graph = load_road_graph(path, region="Dhaka", network_type="walk")
    assert len(graph.edges) == 2


def test_stream_items_routes_each_object_to_its_own_list(tmp_path: Path) -> None:
    path = _write(
        tmp_path / "streamed.json",
        {
            "meta": {"nodes": [{"id": 99}]},
            "edges": [_edge(1, 2, [[0.0, 0.0], [0.0, 0.001]], tags={"kind": ["primary", {"lanes": 2}]})],
            "nodes": [_node(1, 0.0, 0.0), 7, _node(2, 0.0, 0.001)],
        },
    )

    nodes_raw, edges_raw, array_keys = routing_graph._stream_items(path, cancel=None)

    assert nodes_raw == [_node(1, 0.0, 0.0), 7, _node(2, 0.0, 0.001)]
    assert edges_raw[0]["tags"] == {"kind": ["primary", {"lanes": 2}]}
    assert len(edges_raw) == 1
    assert array_keys == {"nodes", "edges"}


def test_parallel_edges_are_kept_with_distinct_keys(tmp_path: Path) -> None:
    payload = {
        "nodes": [_node(1, 0.0, 0.0), _node(2, 0.0, 0.001)],
        "edges": [
            _edge(1, 2, [[0.0, 0.0], [0.0, 0.001]]),
            _edge(1, 2, [[0.0, 0.0], [0.0002, 0.0005], [0.0, 0.001]]),
        ],
    }
    graph = load_road_graph(_write(tmp_path / "g.json", payload), region="Dhaka", network_type="drive")
    keys = {edge.key for edge in graph.out_edges(1)}
    assert len(keys) == 2


def test_loader_repairs_and_counts_irregular_edges(tmp_path: Path) -> None:
    payload = {
        "nodes": [_node(1, 0.0, 0.0), _node(2, 0.0, 0.001), _node(2, 5.0, 5.0)],
        "edges": [
            _edge(1, 2, [[0.0, 0.0]]),  # single vertex, replaced by a straight segment
            _edge(2, 1, [[0.0, 0.0011], [0.0, 0.0]]),  # starts ~11 m away from node 2
            _edge(1, 99, [[0.0, 0.0], [1.0, 1.0]]),  # unknown endpoint
        ],
    }
    graph = load_road_graph(_write(tmp_path / "g.json", payload), region="Dhaka", network_type="walk")

    assert graph.nodes[2] == (0.0, 0.001)  # first occurrence wins
    assert graph.duplicate_nodes == 1
    assert graph.repaired_geometries == 1
    assert graph.mismatched_endpoints == 1
    assert graph.skipped_edges == 1
    assert len(graph.edges) == 2
    assert graph.edges[0].geometry == ((0.0, 0.0), (0.0, 0.001))


@pytest.mark.parametrize(
    "payload",
    [
        {"nodes": [_node(1, 0.0, 0.0)]},
        {"edges": []},
        {"nodes": [], "edges": []},
        {"nodes": [{"id": 1, "lat": 0.0}], "edges": []},
        {"nodes": [{"id": "n1", "lat": 0.0, "lng": 0.0}], "edges": []},
        {"nodes": [_node(1, 0.0, 0.0)], "edges": [{"from": 1, "to": 1}]},
        {"nodes": [_node(1, 0.0, 0.0)], "edges": [_edge(1, 1, [[0.0, "x"]])]},
    ],
)
def test_loader_rejects_structurally_broken_files(tmp_path: Path, payload: dict[str, Any]) -> None:
    path = _write(tmp_path / "broken.json", payload)
    with pytest.raises(GraphLoadError) as excinfo:
        load_road_graph(path, region="Dhaka", network_type="walk")
    assert excinfo.value.reason_code == "graph_load_failed"


def test_loader_rejects_missing_and_invalid_json_files(tmp_path: Path) -> None:
    with pytest.raises(GraphLoadError):
        load_road_graph(tmp_path / "absent.json", region="Dhaka", network_type="walk")

    bad = tmp_path / "bad.json"
    bad.write_text('{"nodes": [', encoding="utf-8")
    with pytest.raises(GraphLoadError):
        load_road_graph(bad, region="Dhaka", network_type="walk")


def test_loader_honours_cancellation(tmp_path: Path) -> None:
    path = _write(tmp_path / "dhaka_walk.json", _square_payload())
    token = CancellationToken()
    token.cancel("test")
    with pytest.raises(RouteCancelledError) as excinfo:
        load_road_graph(path, region="Dhaka", network_type="walk", cancel=token)
    assert excinfo.value.details == {"stage": "graph_load", "reason": "test"}


def test_catalog_loads_once_and_reports_status(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _write(tmp_path / "dhaka_walk.json", _square_payload())
    calls: list[Path] = []
    real_loader = routing_graph.load_road_graph

    def _counting_loader(path: Path, **kwargs: Any):
        calls.append(path)
        return real_loader(path, **kwargs)

    monkeypatch.setattr(routing_graph, "load_road_graph", _counting_loader)
    catalog = GraphCatalog(graph_dir=tmp_path)
    assert catalog.peek("Dhaka", "walk") is None

    first = catalog.get("Dhaka", "WALK")
    second = catalog.get("dhaka", NetworkType.WALK)
    assert first is second
    assert len(calls) == 1
    assert catalog.peek("Dhaka", "walk") is first

    status = catalog.status()
    assert status["loads"] == 1
    assert status["loaded"][0]["region"] == "dhaka"
    assert catalog.clear() == 1
    assert catalog.peek("Dhaka", "walk") is None


def test_catalog_failure_leaves_slot_empty_and_is_retryable(tmp_path: Path) -> None:
    catalog = GraphCatalog(graph_dir=tmp_path)
    with pytest.raises(GraphLoadError):
        catalog.get("Dhaka", "walk")
    assert catalog.peek("Dhaka", "walk") is None
    assert catalog.status()["load_failures"] == 1

    _write(tmp_path / "dhaka_walk.json", _square_payload())
    assert catalog.get("Dhaka", "walk").key == ("dhaka", "walk")


def test_catalog_race_publishes_first_graph(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = _write(tmp_path / "dhaka_walk.json", _square_payload())
    catalog = GraphCatalog(graph_dir=tmp_path)
    winner = load_road_graph(path, region="Dhaka", network_type="walk")
    real_loader = routing_graph.load_road_graph

    def _loader_that_loses_the_race(path: Path, **kwargs: Any):
        graph = real_loader(path, **kwargs)
        # Another request publishes while this one is still parsing.
        catalog._graphs.setdefault(("dhaka", "walk"), winner)
        return graph

    monkeypatch.setattr(routing_graph, "load_road_graph", _loader_that_loses_the_race)
    assert catalog.get("Dhaka", "walk") is winner
    assert catalog.status()["discarded"] == 1


def test_working_graph_merges_node_sets_and_out_edges(tmp_path: Path) -> None:
    west = load_road_graph(
        _write(
            tmp_path / "west_drive.json",
            {
                "nodes": [_node(1, 0.0, 0.0), _node(2, 0.0, 0.002)],
                "edges": [_edge(1, 2, [[0.0, 0.0], [0.0, 0.002]])],
            },
        ),
        region="West",
        network_type="drive",
    )
    east = load_road_graph(
        _write(
            tmp_path / "east_drive.json",
            {
                "nodes": [_node(2, 0.0, 0.002), _node(3, 0.0, 0.004)],
                "edges": [_edge(2, 3, [[0.0, 0.002], [0.0, 0.004]])],
            },
        ),
        region="East",
        network_type="drive",
    )
    merged = WorkingGraph(graphs=(west, east))
    assert set(merged.nodes) == {1, 2, 3}
    assert merged.has_edge(1, 2)
    assert merged.has_edge(2, 3)
    assert not merged.has_edge(1, 3)
    assert merged.edge_count == 2
    assert [edge.key[0] for edge in merged.iter_edges()] == ["west", "east"]

    single = WorkingGraph(graphs=(west,))
    assert single.nodes is west.nodes
    with pytest.raises(ValueError):
        WorkingGraph(graphs=())


def test_nearest_node_linear_scan(tmp_path: Path) -> None:
    graph = load_road_graph(_write(tmp_path / "g.json", _square_payload()), region="Dhaka", network_type="walk")
    working = WorkingGraph(graphs=(graph,))
    node_id, distance_m = nearest_node(working, lat=0.0009, lng=0.0011)
    assert node_id == 3
    assert distance_m == pytest.approx(haversine_m(0.0009, 0.0011, 0.001, 0.001))
