from __future__ import annotations

import json
import threading
import time
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any, Protocol

import httpx

from .cancellation import CancellationToken, checkpoint
from .errors import IncidentSourceUnavailableError
from .geo import BoundingBox
from .logging_utils import log_event
from .settings import settings


def ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


@dataclass(frozen=True)
class Incident:
    lat: float
    lng: float
    type: str
    timestamp: datetime

    def __post_init__(self) -> None:
        # Naive timestamps are UTC.
        object.__setattr__(self, "timestamp", ensure_utc(self.timestamp))

    @property
    def kind(self) -> str:
        return self.type.strip().lower()


@dataclass(frozen=True)
class TimeWindow:
    """Accept incidents with now - before <= t <= now + after; None is unbounded."""

    before: timedelta | None = None
    after: timedelta | None = None

    @property
    def unbounded(self) -> bool:
        return self.before is None and self.after is None

    def bounds(self, now: datetime) -> tuple[datetime | None, datetime | None]:
        lo = now - self.before if self.before is not None else None
        hi = now + self.after if self.after is not None else None
        return lo, hi

    def admits(self, timestamp: datetime, *, now: datetime) -> bool:
        lo, hi = self.bounds(now)
        if lo is not None and timestamp < lo:
            return False
        if hi is not None and timestamp > hi:
            return False
        return True

    @classmethod
    def from_settings(cls) -> TimeWindow:
        before_h = settings.incident_window_before_h
        after_h = settings.incident_window_after_h
        return cls(
            before=timedelta(hours=float(before_h)) if before_h is not None else None,
            after=timedelta(hours=float(after_h)) if after_h is not None else None,
        )


def _parse_timestamp(raw: object) -> datetime | None:
    if isinstance(raw, datetime):
        return ensure_utc(raw)
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        # Epoch milliseconds, as the upstream store serialises them.
        return datetime.fromtimestamp(float(raw) / 1000.0, tz=UTC)
    if isinstance(raw, str) and raw.strip():
        text = raw.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return ensure_utc(datetime.fromisoformat(text))
        except ValueError:
            return None
    return None


def _parse_location(raw: object) -> tuple[float, float] | None:
    if not isinstance(raw, dict):
        return None
    if "lat" in raw and "lng" in raw:
        lat, lng = raw.get("lat"), raw.get("lng")
    else:
        # GeoJSON point: coordinates are [lng, lat].
        coords = raw.get("coordinates")
        if not isinstance(coords, list) or len(coords) < 2:
            return None
        lng, lat = coords[0], coords[1]
    if not isinstance(lat, (int, float)) or not isinstance(lng, (int, float)):
        return None
    if isinstance(lat, bool) or isinstance(lng, bool):
        return None
    lat_f, lng_f = float(lat), float(lng)
    if not (-90.0 <= lat_f <= 90.0 and -180.0 <= lng_f <= 180.0):
        return None
    return lat_f, lng_f


def parse_incident_record(raw: object) -> Incident | None:
    if not isinstance(raw, dict):
        return None
    location = _parse_location(raw.get("location"))
    kind = raw.get("type")
    timestamp = _parse_timestamp(raw.get("timestamp", raw.get("time")))
    if location is None or not isinstance(kind, str) or timestamp is None:
        return None
    return Incident(lat=location[0], lng=location[1], type=kind, timestamp=timestamp)


def parse_incident_records(rows: Iterable[object], *, source: str) -> list[Incident]:
    out: list[Incident] = []
    rejected = 0
    for row in rows:
        incident = parse_incident_record(row)
        if incident is None:
            rejected += 1
            continue
        out.append(incident)
    if rejected:
        log_event("incident_records_rejected", source=source, rejected=rejected, accepted=len(out))
    return out


def select_incidents(
    incidents: Iterable[Incident],
    box: BoundingBox,
    *,
    window: TimeWindow | None,
    now: datetime,
) -> list[Incident]:
    out: list[Incident] = []
    for incident in incidents:
        if not box.contains(incident.lat, incident.lng):
            continue
        if window is not None and not window.admits(incident.timestamp, now=now):
            continue
        out.append(incident)
    return out


class IncidentSource(Protocol):
    def incidents_within_box(
        self,
        box: BoundingBox,
        *,
        window: TimeWindow | None = None,
        now: datetime | None = None,
        cancel: CancellationToken | None = None,
    ) -> list[Incident]: ...


class InMemoryIncidentSource:
    def __init__(self, incidents: Iterable[Incident] = ()) -> None:
        self._lock = threading.Lock()
        self._items: list[Incident] = list(incidents)

    def add(self, incident: Incident) -> None:
        with self._lock:
            self._items.append(incident)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def incidents_within_box(
        self,
        box: BoundingBox,
        *,
        window: TimeWindow | None = None,
        now: datetime | None = None,
        cancel: CancellationToken | None = None,
    ) -> list[Incident]:
        checkpoint(cancel, "incident_fetch")
        with self._lock:
            snapshot = list(self._items)
        return select_incidents(snapshot, box, window=window, now=now or datetime.now(UTC))


class JsonFileIncidentSource:
    """Incident records exported from the report store as a JSON array."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    def incidents_within_box(
        self,
        box: BoundingBox,
        *,
        window: TimeWindow | None = None,
        now: datetime | None = None,
        cancel: CancellationToken | None = None,
    ) -> list[Incident]:
        checkpoint(cancel, "incident_fetch")
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise IncidentSourceUnavailableError(
                f"incident file unreadable: {exc}",
                details={"path": str(self._path)},
            ) from exc
        if not isinstance(payload, list):
            raise IncidentSourceUnavailableError(
                "incident file must hold a JSON array",
                details={"path": str(self._path)},
            )
        incidents = parse_incident_records(payload, source=str(self._path))
        return select_incidents(incidents, box, window=window, now=now or datetime.now(UTC))


_RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


class HttpIncidentSource:
    """Crime-report service client: GET {base_url}/api/crimes/within-box."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout_s: float | None = None,
        retries: int | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout_s = float(timeout_s if timeout_s is not None else settings.incident_source_timeout_s)
        self._retries = int(retries if retries is not None else settings.incident_source_retries)
        self._client = client or httpx.Client(timeout=self._timeout_s)

    def close(self) -> None:
        self._client.close()

    def _params(self, box: BoundingBox, window: TimeWindow | None, now: datetime) -> dict[str, str]:
        params = {
            "minLat": f"{box.min_lat:.6f}",
            "maxLat": f"{box.max_lat:.6f}",
            "minLng": f"{box.min_lng:.6f}",
            "maxLng": f"{box.max_lng:.6f}",
        }
        if window is not None and not window.unbounded:
            lo, hi = window.bounds(now)
            if lo is not None:
                params["from"] = lo.isoformat()
            if hi is not None:
                params["to"] = hi.isoformat()
        return params

    def _fetch_json(self, params: dict[str, str], *, cancel: CancellationToken | None) -> Any:
        url = f"{self._base_url}/api/crimes/within-box"
        attempts = max(1, self._retries + 1)
        last_error = ""
        for attempt in range(1, attempts + 1):
            checkpoint(cancel, "incident_fetch")
            try:
                response = self._client.get(url, params=params, timeout=self._timeout_s)
            except httpx.HTTPError as exc:
                last_error = f"{type(exc).__name__}: {exc}"
            else:
                if response.status_code in _RETRYABLE_STATUS_CODES:
                    last_error = f"status {response.status_code}"
                elif response.is_error:
                    raise IncidentSourceUnavailableError(
                        f"incident service returned {response.status_code}",
                        details={"url": url, "status_code": response.status_code},
                    )
                else:
                    try:
                        return response.json()
                    except ValueError as exc:
                        raise IncidentSourceUnavailableError(
                            "incident service returned invalid JSON",
                            details={"url": url},
                        ) from exc
            if attempt < attempts:
                time.sleep(min(1.0, 0.1 * (2 ** (attempt - 1))))
        raise IncidentSourceUnavailableError(
            f"incident service unavailable after {attempts} attempts ({last_error})",
            details={"url": url, "attempts": attempts},
        )

    def incidents_within_box(
        self,
        box: BoundingBox,
        *,
        window: TimeWindow | None = None,
        now: datetime | None = None,
        cancel: CancellationToken | None = None,
    ) -> list[Incident]:
        now_utc = now or datetime.now(UTC)
        payload = self._fetch_json(self._params(box, window, now_utc), cancel=cancel)
        checkpoint(cancel, "incident_fetch")
        rows = payload.get("crimes", payload.get("items")) if isinstance(payload, dict) else payload
        if not isinstance(rows, list):
            raise IncidentSourceUnavailableError(
                "incident service payload is not a list of records",
                details={"base_url": self._base_url},
            )
        incidents = parse_incident_records(rows, source=self._base_url)
        # The service may ignore the window or round the box; re-filter locally.
        return select_incidents(incidents, box, window=window, now=now_utc)


def incident_source_from_settings() -> IncidentSource:
    url = (settings.incident_source_url or "").strip()
    if url:
        return HttpIncidentSource(url)
    path = (settings.incident_source_path or "").strip()
    if path:
        return JsonFileIncidentSource(path)
    return InMemoryIncidentSource()
