from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime

from .geo import BoundingBox, LatLngPoint, point_polyline_distance_m
from .incidents import Incident, ensure_utc
from .settings import DEFAULT_RECENCY_BUCKETS, DEFAULT_SEVERITY_TABLE, settings

_SECONDS_PER_DAY = 86_400


@dataclass(frozen=True)
class ScoredIncident:
    lat: float
    lng: float
    score: float


@dataclass(frozen=True)
class RiskModel:
    """Severity x recency scoring of incidents and buffer test against edge polylines."""

    severity_table: Mapping[str, float] = field(default_factory=lambda: dict(DEFAULT_SEVERITY_TABLE))
    recency_buckets: Sequence[tuple[int, float]] = field(default_factory=lambda: tuple(DEFAULT_RECENCY_BUCKETS))
    recency_fallback_score: float = 1.0
    proximity_m: float = 30.0
    unknown_severity: float = 1.0

    @classmethod
    def from_settings(cls) -> RiskModel:
        return cls(
            severity_table=dict(settings.severity_table),
            recency_buckets=tuple(settings.recency_buckets),
            recency_fallback_score=float(settings.recency_fallback_score),
            proximity_m=float(settings.proximity_m),
        )

    def severity(self, kind: str) -> float:
        return float(self.severity_table.get(str(kind).strip().lower(), self.unknown_severity))

    def recency(self, timestamp: datetime, *, now: datetime) -> float:
        age_s = (ensure_utc(now) - ensure_utc(timestamp)).total_seconds()
        # Whole days, truncated toward zero; future-dated incidents count as today.
        age_days = int(max(0.0, age_s) // _SECONDS_PER_DAY)
        for max_days, score in self.recency_buckets:
            if age_days < max_days:
                return float(score)
        return float(self.recency_fallback_score)

    def incident_score(self, incident: Incident, *, now: datetime) -> float:
        return self.severity(incident.kind) * self.recency(incident.timestamp, now=now)

    def score_incidents(self, incidents: Iterable[Incident], *, now: datetime) -> list[ScoredIncident]:
        out: list[ScoredIncident] = []
        for incident in incidents:
            score = self.incident_score(incident, now=now)
            if score > 0.0:
                out.append(ScoredIncident(lat=incident.lat, lng=incident.lng, score=score))
        return out

    def is_near(self, lat: float, lng: float, geometry: Sequence[LatLngPoint]) -> bool:
        return point_polyline_distance_m((lat, lng), geometry) <= self.proximity_m

    def reach(self, geometry: Sequence[LatLngPoint]) -> BoundingBox | None:
        """Box holding every point that can lie within `proximity_m` of the polyline."""
        if not geometry:
            return None
        return BoundingBox.around(geometry).expanded_m(self.proximity_m)

    def edge_risk(self, geometry: Sequence[LatLngPoint], scored: Sequence[ScoredIncident]) -> float:
        reach = self.reach(geometry)
        if not scored or reach is None:
            return 0.0
        # Coarse reject first; the box is conservative so it never drops a true hit.
        total = 0.0
        for item in scored:
            if not reach.contains(item.lat, item.lng):
                continue
            if self.is_near(item.lat, item.lng, geometry):
                total += item.score
        return total
