import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .vocabulary.general import (
    ApproximationMode,
    ChartKind,
    ConfidenceLevel,
    ExplanationMethod,
    Impact,
    LifecycleEventType,
    Strength,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# --------------------------------------------------------------------------------------
# INPUT
# --------------------------------------------------------------------------------------


class PredictionMetadata(BaseModel):
    model_id: str
    prediction_id: str | None = None
    prediction_type: str = "point"
    timestamp: datetime = Field(default_factory=_utcnow)


class PredictionInput(BaseModel):
    """One prediction to be explained: the features that produced it plus its situation."""

    entity_id: str
    entity_class: str  # Selects the domain tables (e.g. a position or category)
    features: Dict[str, float]
    context: Dict[str, Any] = {}  # Situational attributes, nesting allowed
    status: Dict[str, str] = {}  # Entity status flags, e.g. {"injury": "healthy"}
    history: List[float] = []  # Recent realized values of the predicted quantity
    metadata: PredictionMetadata

    @field_validator("features")
    @classmethod
    def _finite_features(cls, v: Dict[str, float]) -> Dict[str, float]:
        bad = [name for name, value in v.items() if not math.isfinite(value)]
        if bad:
            raise ValueError(f"Non-finite feature values: {sorted(bad)}")
        return v


# --------------------------------------------------------------------------------------
# SUB-RESULTS (frozen once built)
# --------------------------------------------------------------------------------------


class FeatureAttribution(BaseModel):
    model_config = ConfigDict(frozen=True)

    feature: str
    value: float
    raw_contribution: float  # Before the additivity rescale
    contribution: float
    importance: float  # |contribution|
    rank: int


class FeatureInteraction(BaseModel):
    model_config = ConfigDict(frozen=True)

    feature_a: str
    feature_b: str
    score: float


class AttributionResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    base_value: float
    features: List[FeatureAttribution]
    interactions: List[FeatureInteraction] = []
    global_importance: Dict[str, float] = {}
    remainder: float = 0.0  # Contributions of features truncated by max_features
    approximation_mode: ApproximationMode = ApproximationMode.KERNEL

    @property
    def total_contribution(self) -> float:
        return sum(f.contribution for f in self.features) + self.remainder


class LocalFeature(BaseModel):
    model_config = ConfigDict(frozen=True)

    feature: str
    coefficient: float
    value: float
    confidence_interval: Tuple[float, float]
    rank: int


class SurrogateResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    features: List[LocalFeature]
    intercept: float
    fidelity: float = Field(ge=0.0, le=1.0)
    r2_score: float = Field(ge=0.0, le=1.0)
    num_samples: int
    local_prediction: float


class ReasoningEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    factor: str
    impact: Impact
    strength: Strength
    explanation: str


class NarrativeResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    summary: str
    key_factors: List[str]
    reasoning: List[ReasoningEntry]
    confidence: ConfidenceLevel
    risks: List[str]
    opportunities: List[str]


class VisualizationPayload(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: ChartKind
    title: str
    data: Dict[str, Any]
    config: Dict[str, Any]
    caption: str


# --------------------------------------------------------------------------------------
# AGGREGATE ROOT
# --------------------------------------------------------------------------------------


class PredictionEstimate(BaseModel):
    model_config = ConfigDict(frozen=True)

    value: float
    confidence: float = Field(ge=0.0, le=1.0)
    lower: float
    upper: float


class PerformanceBlock(BaseModel):
    model_config = ConfigDict(frozen=True)

    computation_ms: float
    cache_hit: bool
    confidence: float = Field(ge=0.0, le=1.0)


class ExplanationRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    explanation_id: str
    prediction_id: str
    fingerprint: str
    method: ExplanationMethod
    prediction: PredictionEstimate
    attribution: AttributionResult | None = None
    surrogate: SurrogateResult | None = None
    narrative: NarrativeResult
    visualizations: List[VisualizationPayload] = []
    performance: PerformanceBlock
    created_at: datetime = Field(default_factory=_utcnow)

    def as_cache_hit(self) -> "ExplanationRecord":
        """Returns a copy flagged as served from cache. The original is left untouched."""
        perf = self.performance.model_copy(update={"cache_hit": True})
        return self.model_copy(update={"performance": perf})


# --------------------------------------------------------------------------------------
# OPERATIONAL
# --------------------------------------------------------------------------------------


class MetricsSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_explanations: int
    successful: int
    failed: int
    cache_hits: int
    cache_hit_rate: float
    error_rate: float  # Over the rolling window
    avg_computation_ms: float  # Over the rolling window
    window_size: int
    in_flight: int = 0
    cache_size: int = 0


class LifecycleEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: LifecycleEventType
    explanation_id: str
    prediction_id: str
    elapsed_ms: float = 0.0
    confidence: float | None = None
    error: str | None = None
    timestamp: datetime = Field(default_factory=_utcnow)
