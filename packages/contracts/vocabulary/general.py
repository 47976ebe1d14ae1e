from enum import Enum


class StrEnum(str, Enum):
    """Base class to make enums behave like strings for easy use in Pydantic/JSON."""

    def __str__(self):
        return self.value


class ExplanationMethod(StrEnum):
    """Which explainers contributed to a record."""

    SHAP = "shap"  # Additive attribution only
    LIME = "lime"  # Local surrogate only
    HYBRID = "hybrid"  # Both


class ApproximationMode(StrEnum):
    """Declared attribution approximation family."""

    EXACT = "exact"
    KERNEL = "kernel"
    TREE = "tree"


class Impact(StrEnum):
    POSITIVE = "positive"
    NEGATIVE = "negative"


class Strength(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ConfidenceLevel(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Outlook(StrEnum):
    FAVORABLE = "favorable"
    CHALLENGING = "challenging"
    NEUTRAL = "neutral"


class ChartKind(StrEnum):
    """The chart SHAPES the visualization builder knows how to emit."""

    WATERFALL = "waterfall"  # Baseline -> contributions -> prediction
    BAR = "bar"  # Ranked importance
    SCATTER = "scatter"  # Local coefficients with intervals
    HEATMAP = "heatmap"  # Class feature correlation matrix


class LifecycleEventType(StrEnum):
    STARTED = "explanation.started"
    COMPLETED = "explanation.completed"
    FAILED = "explanation.failed"


class DedupPolicy(StrEnum):
    """What a caller sees when its fingerprint is already being computed."""

    FAIL_FAST = "fail_fast"  # Raise AlreadyInProgressError
    WAIT = "wait"  # Block until the first computation finishes
