from __future__ import annotations

import json
from pathlib import Path

import pytest

import scripts.check_graph_assets as check_graph_assets


def _graph(nodes: int) -> dict[str, object]:
    return {
        "nodes": [{"id": i, "lat": 23.70 + i * 0.001, "lng": 90.40} for i in range(nodes)],
        "edges": [
            {"from": i, "to": i + 1, "geometry": [[23.70 + i * 0.001, 90.40], [23.70 + (i + 1) * 0.001, 90.40]]}
            for i in range(nodes - 1)
        ],
    }


def test_check_reports_loaded_failed_and_unrecognised_files(tmp_path: Path) -> None:
    (tmp_path / "dhaka_walk.json").write_text(json.dumps(_graph(3)), encoding="utf-8")
    (tmp_path / "gazipur_drive.json").write_text('{"nodes": [', encoding="utf-8")
    (tmp_path / "atlantis_walk.json").write_text(json.dumps(_graph(2)), encoding="utf-8")
    (tmp_path / "notes.json").write_text("{}", encoding="utf-8")

    report = check_graph_assets.check(graph_dir=tmp_path)

    assert [item["region"] for item in report["loaded"]] == ["dhaka"]
    assert report["loaded"][0]["edge_count"] == 2
    assert report["failures"][0]["file"] == "gazipur_drive.json"
    assert report["failures"][0]["reason_code"] == "graph_load_failed"
    assert sorted(report["unrecognised"]) == ["atlantis_walk.json", "notes.json"]
    assert "dhaka" not in report["regions_without_graphs"]
    assert "gazipur" in report["regions_without_graphs"]
    assert report["passed"] is False


def test_check_enforces_minimum_sizes(tmp_path: Path) -> None:
    (tmp_path / "chapai_nawabganj_bike.json").write_text(json.dumps(_graph(2)), encoding="utf-8")
    assert check_graph_assets.check(graph_dir=tmp_path)["passed"] is True

    report = check_graph_assets.check(graph_dir=tmp_path, min_nodes=5)
    assert report["failures"][0]["reason_code"] == "graph_too_small"


def test_main_exit_code_and_missing_dir(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    (tmp_path / "dhaka_walk.json").write_text(json.dumps(_graph(2)), encoding="utf-8")
    assert check_graph_assets.main(["--graph-dir", str(tmp_path)]) == 0
    assert json.loads(capsys.readouterr().out)["passed"] is True

    with pytest.raises(RuntimeError):
        check_graph_assets.check(graph_dir=tmp_path / "absent")
