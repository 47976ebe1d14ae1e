from pathlib import Path
from typing import Any, Dict, List

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .vocabulary.general import Impact, Strength


class ContextCondition(BaseModel):
    """
    A single test against the (flattened) situational context.
    Keys are dotted paths into nested context, e.g. "weather.conditions".
    """

    model_config = ConfigDict(frozen=True)

    key: str
    equals: Any | None = None
    greater_than: float | None = None

    @model_validator(mode="after")
    def _one_test(self):
        if self.equals is None and self.greater_than is None:
            raise ValueError(f"Condition on '{self.key}' needs 'equals' or 'greater_than'")
        return self

    def matches(self, flat_context: Dict[str, Any]) -> bool:
        if self.key not in flat_context:
            return False
        actual = flat_context[self.key]
        if self.equals is not None and actual != self.equals:
            return False
        if self.greater_than is not None:
            if not isinstance(actual, (int, float)) or isinstance(actual, bool):
                return False
            if not actual > self.greater_than:
                return False
        return True


class SituationalRule(BaseModel):
    """Scales contributions of matching features when any condition holds."""

    model_config = ConfigDict(frozen=True)

    name: str
    any_of: List[ContextCondition]
    feature_contains: str | None = None  # None -> applies to every feature
    multiplier: float = Field(gt=0.0)

    def applies(self, feature: str, flat_context: Dict[str, Any]) -> bool:
        if self.feature_contains is not None and self.feature_contains not in feature:
            return False
        return any(c.matches(flat_context) for c in self.any_of)


class InteractionRule(BaseModel):
    """
    Domain override for a feature pair: score = coefficient * value_a * value_b.
    Positive coefficients reinforce (same-domain pairs), negative ones compete.
    """

    model_config = ConfigDict(frozen=True)

    first_contains: str
    second_contains: str
    coefficient: float

    def matches(self, feature_a: str, feature_b: str) -> bool:
        forward = self.first_contains in feature_a and self.second_contains in feature_b
        backward = self.first_contains in feature_b and self.second_contains in feature_a
        return forward or backward


class ContextInsight(BaseModel):
    """A reasoning entry produced straight from the situational context."""

    model_config = ConfigDict(frozen=True)

    factor: str
    any_of: List[ContextCondition]
    impact: Impact
    strength: Strength = Strength.LOW
    explanation: str
    impact_by_class: Dict[str, Impact] = {}


class ContextRisk(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str
    any_of: List[ContextCondition]


class ClassProfile(BaseModel):
    """All per-class tables for one entity class."""

    model_config = ConfigDict(frozen=True)

    baseline: float
    features: List[str]
    feature_baselines: Dict[str, float] = {}
    weights: Dict[str, float] = {}
    global_importance: Dict[str, float] = {}


class DomainKnowledge(BaseModel):
    """
    Static lookup tables keyed by entity class. Read-only once loaded.
    Every lookup has a documented default so the provider is total.
    """

    model_config = ConfigDict(frozen=True)

    name: str = "default"
    prediction_unit: str = "points"

    # Fallbacks
    default_baseline: float = 10.0
    default_feature_baseline: float = 0.0
    default_weight: float = 0.1
    default_correlation: float = 0.0
    default_multiplier: float = 1.0

    classes: Dict[str, ClassProfile] = {}
    # Keys are "feature_a|feature_b"; order inside the key does not matter
    correlations: Dict[str, float] = {}
    situational_rules: List[SituationalRule] = []
    interaction_rules: List[InteractionRule] = []

    # Narrative material
    feature_templates: Dict[str, str] = {}
    context_insights: List[ContextInsight] = []
    context_risks: List[ContextRisk] = []
    nominal_status: Dict[str, str] = {}

    @field_validator("correlations")
    @classmethod
    def _canonical_pairs(cls, v: Dict[str, float]) -> Dict[str, float]:
        canonical = {}
        for key, value in v.items():
            parts = key.split("|")
            if len(parts) != 2 or not all(parts):
                raise ValueError(f"Correlation key '{key}' must look like 'a|b'")
            if not -1.0 <= value <= 1.0:
                raise ValueError(f"Correlation for '{key}' is outside [-1, 1]")
            canonical[pair_key(parts[0], parts[1])] = value
        return canonical

    @classmethod
    def from_yaml(cls, path: Path) -> "DomainKnowledge":
        with open(path, "r") as f:
            return cls.model_validate(yaml.safe_load(f) or {})


def pair_key(feature_a: str, feature_b: str) -> str:
    """Order-independent key for a feature pair."""
    return "|".join(sorted((feature_a, feature_b)))
