from __future__ import annotations

from dataclasses import dataclass
from typing import Any

FROZEN_REASON_CODES: frozenset[str] = frozenset(
    {
        "no_region",
        "graph_load_failed",
        "no_road_nearby",
        "no_path",
        "incident_source_unavailable",
        "route_cancelled",
        "routing_failed",
    }
)


@dataclass
class RoutingError(ValueError):
    reason_code: str
    message: str
    details: dict[str, Any] | None = None

    def __str__(self) -> str:
        return self.message


def normalize_reason_code(reason_code: str, *, default: str = "routing_failed") -> str:
    code = str(reason_code or "").strip()
    if code in FROZEN_REASON_CODES:
        return code
    return default


class NoRegionError(RoutingError):
    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__("no_region", message, details)


class GraphLoadError(RoutingError):
    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__("graph_load_failed", message, details)


class NoRoadNearbyError(RoutingError):
    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__("no_road_nearby", message, details)


class NoPathError(RoutingError):
    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__("no_path", message, details)


class IncidentSourceUnavailableError(RoutingError):
    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__("incident_source_unavailable", message, details)


class RouteCancelledError(RoutingError):
    def __init__(self, message: str = "request cancelled", *, details: dict[str, Any] | None = None) -> None:
        super().__init__("route_cancelled", message, details)
