from __future__ import annotations

# ruff: noqa: E402
import argparse
import json
import sys
from pathlib import Path
from typing import Any

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from saferoute.errors import GraphLoadError
from saferoute.models import NetworkType
from saferoute.regions import REGIONS
from saferoute.routing_graph import load_road_graph, region_slug
from saferoute.settings import settings


def _split_asset_name(path: Path) -> tuple[str, str] | None:
    stem = path.stem
    if "_" not in stem:
        return None
    slug, network = stem.rsplit("_", 1)
    try:
        return slug, NetworkType.parse(network).value
    except ValueError:
        return None


def check(*, graph_dir: Path, min_nodes: int = 1, min_edges: int = 0) -> dict[str, Any]:
    if not graph_dir.is_dir():
        raise RuntimeError(f"Graph directory not found: {graph_dir}")
    known = {region_slug(region.name): region.name for region in REGIONS}
    loaded: list[dict[str, Any]] = []
    failures: list[dict[str, Any]] = []
    unrecognised: list[str] = []
    for path in sorted(graph_dir.glob("*.json")):
        parts = _split_asset_name(path)
        if parts is None or parts[0] not in known:
            unrecognised.append(path.name)
            continue
        slug, network = parts
        try:
            graph = load_road_graph(path, region=known[slug], network_type=network)
        except GraphLoadError as exc:
            failures.append({"file": path.name, "reason_code": exc.reason_code, "message": exc.message})
            continue
        summary = graph.summary()
        if summary["node_count"] < min_nodes or summary["edge_count"] < min_edges:
            failures.append(
                {
                    "file": path.name,
                    "reason_code": "graph_too_small",
                    "message": f"{summary['node_count']} nodes / {summary['edge_count']} edges",
                }
            )
            continue
        loaded.append(summary)
    covered = {(item["region"], item["network_type"]) for item in loaded}
    return {
        "graph_dir": str(graph_dir),
        "loaded": loaded,
        "failures": failures,
        "unrecognised": unrecognised,
        "regions_without_graphs": sorted(
            slug for slug in known if not any((slug, nt.value) in covered for nt in NetworkType)
        ),
        "passed": not failures,
    }


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Load every district graph file and report counts.")
    parser.add_argument(
        "--graph-dir",
        type=Path,
        default=Path(settings.graph_dir),
        help="Directory holding <district>_<network>.json graph files.",
    )
    parser.add_argument("--min-nodes", type=int, default=1)
    parser.add_argument("--min-edges", type=int, default=0)
    args = parser.parse_args(argv)
    report = check(
        graph_dir=args.graph_dir,
        min_nodes=max(1, int(args.min_nodes)),
        min_edges=max(0, int(args.min_edges)),
    )
    print(json.dumps(report, indent=2))
    return 0 if report["passed"] else 1


if __name__ == "__main__":
    raise SystemExit(main())
