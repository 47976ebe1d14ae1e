import asyncio
from typing import Any, Dict, Tuple

import pytest
from loguru import logger as _logger

from packages.contracts.blueprints import ExplainerBlueprint
from packages.contracts.knowledge import DomainKnowledge
from packages.contracts.payloads import (
    AttributionResult,
    FeatureAttribution,
    LocalFeature,
    PredictionInput,
    PredictionMetadata,
    SurrogateResult,
)
from packages.xai_core.knowledge.provider import DomainKnowledgeProvider
from packages.xai_core.predictors import KnowledgePredictor
from packages.xai_lib.config import PROJECT_ROOT

FOOTBALL_PACK = PROJECT_ROOT / "configs" / "domain" / "football.yml"

QB_FEATURES = {
    "passing_yards": 300.0,
    "passing_tds": 2.5,
    "interceptions": 1.0,
    "completion_percentage": 0.68,
    "qb_rating": 102.0,
}


class FakeClock:
    """Monotonic clock the tests can move by hand."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class RecordingSink:
    def __init__(self):
        self.events = []

    def emit(self, event):
        self.events.append(event)

    @property
    def types(self):
        return [e.type.value for e in self.events]


class GatedPredictor:
    """Async predictor that counts calls and can be held back with an asyncio.Event."""

    def __init__(self, inner, gate: asyncio.Event | None = None, fail: Exception | None = None):
        self.inner = inner
        self.gate = gate
        self.fail = fail
        self.calls = 0

    async def predict(self, features: Dict[str, float], context: Dict[str, Any]) -> float:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.fail is not None:
            raise self.fail
        return self.inner.predict(features, context)


@pytest.fixture
def logger():
    return _logger.bind(app="tests", context="test")


@pytest.fixture
def knowledge() -> DomainKnowledge:
    return DomainKnowledge.from_yaml(FOOTBALL_PACK)


@pytest.fixture
def provider(knowledge) -> DomainKnowledgeProvider:
    return DomainKnowledgeProvider(knowledge)


@pytest.fixture
def view(provider):
    return provider.snapshot()


@pytest.fixture
def blueprint() -> ExplainerBlueprint:
    return ExplainerBlueprint.model_validate(
        {"surrogate": {"num_samples": 200, "random_seed": 7}}
    )


@pytest.fixture
def qb_predictor(provider) -> KnowledgePredictor:
    return KnowledgePredictor(provider, "QB")


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_input():
    def _make(
        features: Dict[str, float] | None = None,
        entity_class: str = "QB",
        context: Dict[str, Any] | None = None,
        status: Dict[str, str] | None = None,
        history=None,
        entity_id: str = "player_1",
    ) -> PredictionInput:
        return PredictionInput(
            entity_id=entity_id,
            entity_class=entity_class,
            features=dict(QB_FEATURES) if features is None else features,
            context=context or {},
            status=status or {},
            history=history or [],
            metadata=PredictionMetadata(model_id="fantasy_points_v1", prediction_id="pred_1"),
        )

    return _make


@pytest.fixture
def gated(qb_predictor):
    """Factory for GatedPredictor around the QB white-box scorer."""

    def _make(gate: asyncio.Event | None = None, fail: Exception | None = None) -> GatedPredictor:
        return GatedPredictor(qb_predictor, gate=gate, fail=fail)

    return _make


def attribution_of(*items: Tuple[str, float, float], base_value: float = 18.5, remainder: float = 0.0):
    """Builds an AttributionResult from (feature, value, contribution) triples, already ranked."""
    features = [
        FeatureAttribution(
            feature=name,
            value=value,
            raw_contribution=contribution,
            contribution=contribution,
            importance=abs(contribution),
            rank=i + 1,
        )
        for i, (name, value, contribution) in enumerate(items)
    ]
    return AttributionResult(base_value=base_value, features=features, remainder=remainder)


def surrogate_of(fidelity: float = 0.9, *items: Tuple[str, float, float]) -> SurrogateResult:
    """(feature, value, coefficient) triples; intervals are +/- 10%."""
    features = [
        LocalFeature(
            feature=name,
            coefficient=coef,
            value=value,
            confidence_interval=(coef - abs(coef) * 0.1, coef + abs(coef) * 0.1),
            rank=i + 1,
        )
        for i, (name, value, coef) in enumerate(items)
    ]
    return SurrogateResult(
        features=features,
        intercept=0.0,
        fidelity=fidelity,
        r2_score=fidelity,
        num_samples=100,
        local_prediction=0.0,
    )


@pytest.fixture(name="attribution_of")
def attribution_of_fixture():
    return attribution_of


@pytest.fixture(name="surrogate_of")
def surrogate_of_fixture():
    return surrogate_of
