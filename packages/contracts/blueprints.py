from pathlib import Path
from typing import List

import yaml
from pydantic import BaseModel, Field, model_validator

from .vocabulary.general import ApproximationMode, ChartKind, DedupPolicy


class AttributionConfig(BaseModel):
    enabled: bool = True
    max_features: int = Field(default=10, ge=1)
    # Accepted for parity with kernel-SHAP style configs; echoed on every result
    background_samples: int = Field(default=100, ge=1)
    approximation_mode: ApproximationMode = ApproximationMode.KERNEL

    # Pairwise interactions
    interaction_candidates: int = Field(default=5, ge=2)  # Top-N ranked features
    interaction_threshold: float = Field(default=0.1, ge=0.0)
    interaction_scale: float = 0.01
    max_interactions: int = Field(default=3, ge=0)


class SurrogateConfig(BaseModel):
    enabled: bool = True
    num_samples: int = Field(default=1000, ge=10)
    num_features: int = Field(default=8, ge=1)
    kernel_width: float = Field(default=0.75, gt=0.0)

    # Perturbation
    noise_fraction: float = Field(default=0.1, gt=0.0)
    clip_negative: bool = True  # Count-like attributes never go below lower_bound
    lower_bound: float = 0.0
    random_seed: int | None = None  # None -> derived from the input fingerprint

    # Predictor batching (each batch boundary is a cancellation point)
    batch_size: int = Field(default=50, ge=1)

    # Coefficient intervals
    confidence_level: float = Field(default=0.95, gt=0.0, lt=1.0)


class CacheConfig(BaseModel):
    enabled: bool = True
    ttl_ms: int = Field(default=300_000, ge=0)  # 5 minutes
    max_entries: int = Field(default=1000, ge=1)


class ConcurrencyConfig(BaseModel):
    max_in_flight: int = Field(default=10, ge=1)
    timeout_ms: int = Field(default=5000, gt=0)
    dedup_policy: DedupPolicy = DedupPolicy.FAIL_FAST


class VisualizationConfig(BaseModel):
    enabled: bool = True
    chart_types: List[ChartKind] = [
        ChartKind.WATERFALL,
        ChartKind.BAR,
        ChartKind.SCATTER,
        ChartKind.HEATMAP,
    ]
    max_data_points: int = Field(default=100, ge=1)
    domain_heatmap: bool = True


class NarrativeConfig(BaseModel):
    high_threshold: float = 3.0
    medium_threshold: float = 1.0
    top_factors: int = Field(default=3, ge=1)
    volume_patterns: List[str] = ["target"]

    @model_validator(mode="after")
    def _check_thresholds(self):
        if self.medium_threshold > self.high_threshold:
            raise ValueError("medium_threshold must not exceed high_threshold")
        return self


class MetricsConfig(BaseModel):
    window_size: int = Field(default=100, ge=1)  # Rolling window for health
    max_error_rate: float = Field(default=0.05, gt=0.0, le=1.0)


class EventsConfig(BaseModel):
    queue_size: int = Field(default=256, ge=1)


class ExplainerBlueprint(BaseModel):
    """
    Everything the explanation engine needs to know about how to behave.
    Loaded from a .yml file and injected into the engine at construction.
    """

    enabled: bool = True
    prediction_floor: float | None = 0.0  # Lower clamp on prediction intervals

    attribution: AttributionConfig = AttributionConfig()
    surrogate: SurrogateConfig = SurrogateConfig()
    cache: CacheConfig = CacheConfig()
    concurrency: ConcurrencyConfig = ConcurrencyConfig()
    visualization: VisualizationConfig = VisualizationConfig()
    narrative: NarrativeConfig = NarrativeConfig()
    metrics: MetricsConfig = MetricsConfig()
    events: EventsConfig = EventsConfig()

    @classmethod
    def from_yaml(cls, path: Path) -> "ExplainerBlueprint":
        with open(path, "r") as f:
            return cls.model_validate(yaml.safe_load(f) or {})
