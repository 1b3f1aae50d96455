from __future__ import annotations

from pathlib import Path

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SEVERITY_TABLE: dict[str, float] = {
    "murder": 10.0,
    "rape": 9.0,
    "kidnap": 8.0,
    "assault": 7.0,
    "robbery": 6.0,
    "harassment": 5.0,
    "theft": 3.0,
    "other": 1.0,
}

# (max whole-day age, exclusive) -> score; ages past the last bucket use the fallback score.
DEFAULT_RECENCY_BUCKETS: list[tuple[int, float]] = [
    (1, 10.0),
    (7, 8.0),
    (21, 6.0),
    (42, 4.0),
    (56, 2.0),
]


def _default_graph_dir() -> str:
    return str(Path(__file__).resolve().parents[1] / "osm_graphs")


def _default_out_dir() -> str:
    return str(Path(__file__).resolve().parents[1] / "out")


class Settings(BaseSettings):
    """Validated settings (env-driven), keeping routing knobs out of code."""

    model_config = SettingsConfigDict(
        env_file=(".env", "../.env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    graph_dir: str = Field(default_factory=_default_graph_dir, alias="GRAPH_DIR")
    out_dir: str = Field(default_factory=_default_out_dir, alias="OUT_DIR")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Cost = alpha * risk + beta * length_m. Risk dominates; distance breaks ties.
    alpha: float = Field(default=10_000.0, ge=0.0, alias="ROUTE_RISK_ALPHA")
    beta: float = Field(default=1e-5, gt=0.0, alias="ROUTE_DISTANCE_BETA")

    proximity_m: float = Field(default=30.0, gt=0.0, le=500.0, alias="RISK_PROXIMITY_M")
    severity_table: dict[str, float] = Field(
        default_factory=lambda: dict(DEFAULT_SEVERITY_TABLE),
        alias="SEVERITY_TABLE",
    )
    recency_buckets: list[tuple[int, float]] = Field(
        default_factory=lambda: list(DEFAULT_RECENCY_BUCKETS),
        alias="RECENCY_BUCKETS",
    )
    recency_fallback_score: float = Field(default=1.0, ge=0.0, alias="RECENCY_FALLBACK_SCORE")

    cache_ttl_s: int = Field(default=1800, ge=0, alias="EDGE_WEIGHT_CACHE_TTL_S")
    cache_max_entries: int = Field(default=0, ge=0, alias="EDGE_WEIGHT_CACHE_MAX_ENTRIES")

    incident_bbox_pad_deg: float = Field(default=0.1, ge=0.0, le=5.0, alias="INCIDENT_BBOX_PAD_DEG")
    incident_window_before_h: float | None = Field(default=None, ge=0.0, alias="INCIDENT_WINDOW_BEFORE_H")
    incident_window_after_h: float | None = Field(default=None, ge=0.0, alias="INCIDENT_WINDOW_AFTER_H")

    # Upstream crime store. URL wins over path; neither configured means an empty in-memory store.
    incident_source_url: str = Field(default="", alias="INCIDENT_SOURCE_URL")
    incident_source_path: str = Field(default="", alias="INCIDENT_SOURCE_PATH")
    incident_source_timeout_s: float = Field(default=5.0, ge=0.1, le=120.0, alias="INCIDENT_SOURCE_TIMEOUT_S")
    incident_source_retries: int = Field(default=2, ge=0, le=10, alias="INCIDENT_SOURCE_RETRIES")
    incident_source_strict: bool = Field(default=False, alias="INCIDENT_SOURCE_STRICT")

    snap_max_distance_m: float | None = Field(default=None, gt=0.0, alias="SNAP_MAX_DISTANCE_M")
    # HTTP requests only; the Python API takes an explicit CancellationToken.
    route_timeout_s: float | None = Field(default=None, gt=0.0, alias="ROUTE_TIMEOUT_S")

    @field_validator("severity_table")
    @classmethod
    def normalise_severity_keys(cls, value: dict[str, float]) -> dict[str, float]:
        out: dict[str, float] = {}
        for key, score in value.items():
            if float(score) < 0.0:
                raise ValueError(f"severity for {key!r} must be nonnegative")
            out[str(key).strip().lower()] = float(score)
        return out

    @field_validator("recency_buckets")
    @classmethod
    def ordered_buckets(cls, value: list[tuple[int, float]]) -> list[tuple[int, float]]:
        bounds = [int(max_days) for max_days, _ in value]
        if bounds != sorted(bounds) or len(set(bounds)) != len(bounds):
            raise ValueError("recency_buckets must be strictly increasing by max_days")
        if any(float(score) < 0.0 for _, score in value):
            raise ValueError("recency scores must be nonnegative")
        return [(int(max_days), float(score)) for max_days, score in value]

    @model_validator(mode="after")
    def snap_radius_covers_proximity(self) -> Settings:
        if self.snap_max_distance_m is not None and self.snap_max_distance_m < self.proximity_m:
            raise ValueError("snap_max_distance_m must not be smaller than proximity_m")
        return self


settings = Settings()
