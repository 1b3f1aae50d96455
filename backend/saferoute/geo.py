from __future__ import annotations

import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

EARTH_RADIUS_M = 6_371_000.0
# Meters per degree of latitude on the mean sphere.
METERS_PER_DEG = math.pi * EARTH_RADIUS_M / 180.0

LatLngPoint = tuple[float, float]


def haversine_m(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = phi2 - phi1
    dlambda = math.radians(lng2 - lng1)
    a = (
        math.sin(dphi / 2.0) ** 2
        + (math.cos(phi1) * math.cos(phi2) * (math.sin(dlambda / 2.0) ** 2))
    )
    return 2.0 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(max(0.0, a))))


def point_segment_distance_m(point: LatLngPoint, a: LatLngPoint, b: LatLngPoint) -> float:
    """Distance from `point` to segment a-b in a tangent plane anchored at `a`.

    x = dlng * cos(mean lat of a, b) * R, y = dlat * R. Good to well under a
    meter over a few kilometers, which is plenty for a 30-50 m buffer test.
    """
    lat0, lng0 = a
    cos_lat = math.cos(math.radians((a[0] + b[0]) / 2.0))

    def _project(p: LatLngPoint) -> tuple[float, float]:
        x = math.radians(p[1] - lng0) * cos_lat * EARTH_RADIUS_M
        y = math.radians(p[0] - lat0) * EARTH_RADIUS_M
        return x, y

    px, py = _project(point)
    bx, by = _project(b)
    seg_len_sq = bx * bx + by * by
    if seg_len_sq <= 0.0:
        return math.hypot(px, py)
    t = max(0.0, min(1.0, (px * bx + py * by) / seg_len_sq))
    return math.hypot(px - t * bx, py - t * by)


def point_polyline_distance_m(point: LatLngPoint, polyline: Sequence[LatLngPoint]) -> float:
    if not polyline:
        return math.inf
    if len(polyline) == 1:
        return point_segment_distance_m(point, polyline[0], polyline[0])
    return min(
        point_segment_distance_m(point, polyline[idx - 1], polyline[idx])
        for idx in range(1, len(polyline))
    )


def polyline_length_m(polyline: Sequence[LatLngPoint]) -> float:
    total = 0.0
    for idx in range(1, len(polyline)):
        lat1, lng1 = polyline[idx - 1]
        lat2, lng2 = polyline[idx]
        total += haversine_m(lat1, lng1, lat2, lng2)
    return total


@dataclass(frozen=True)
class BoundingBox:
    min_lat: float
    max_lat: float
    min_lng: float
    max_lng: float

    def contains(self, lat: float, lng: float) -> bool:
        return self.min_lat <= lat <= self.max_lat and self.min_lng <= lng <= self.max_lng

    def covers(self, other: BoundingBox) -> bool:
        return (
            self.min_lat <= other.min_lat
            and other.max_lat <= self.max_lat
            and self.min_lng <= other.min_lng
            and other.max_lng <= self.max_lng
        )

    def as_dict(self) -> dict[str, float]:
        return {
            "min_lat": self.min_lat,
            "max_lat": self.max_lat,
            "min_lng": self.min_lng,
            "max_lng": self.max_lng,
        }

    def padded(self, pad_deg: float) -> BoundingBox:
        pad = max(0.0, float(pad_deg))
        return BoundingBox(
            min_lat=self.min_lat - pad,
            max_lat=self.max_lat + pad,
            min_lng=self.min_lng - pad,
            max_lng=self.max_lng + pad,
        )

    def expanded_m(self, meters: float) -> BoundingBox:
        dlat = max(0.0, float(meters)) / METERS_PER_DEG
        widest_lat = max(abs(self.min_lat), abs(self.max_lat))
        cos_lat = max(1e-6, math.cos(math.radians(min(89.9, widest_lat + dlat))))
        dlng = dlat / cos_lat
        return BoundingBox(
            min_lat=self.min_lat - dlat,
            max_lat=self.max_lat + dlat,
            min_lng=self.min_lng - dlng,
            max_lng=self.max_lng + dlng,
        )

    @classmethod
    def around(cls, points: Iterable[LatLngPoint], *, pad_deg: float = 0.0) -> BoundingBox:
        pts = list(points)
        if not pts:
            raise ValueError("bounding box needs at least one point")
        box = cls(
            min_lat=min(lat for lat, _ in pts),
            max_lat=max(lat for lat, _ in pts),
            min_lng=min(lng for _, lng in pts),
            max_lng=max(lng for _, lng in pts),
        )
        return box.padded(pad_deg) if pad_deg else box
