from typing import Any, Awaitable, Dict, List, Protocol, Union

from packages.contracts.payloads import LifecycleEvent, PredictionInput, ReasoningEntry

from .knowledge.provider import KnowledgeView


class Predictor(Protocol):
    """
    The black-box model being explained.
    `predict` may be a plain function or a coroutine; it should be
    near-deterministic for a fixed input.
    """

    def predict(
        self, features: Dict[str, float], context: Dict[str, Any]
    ) -> Union[float, Awaitable[float]]: ...


class EventSink(Protocol):
    """Receives lifecycle notifications. Sync or async; failures are contained."""

    def emit(self, event: LifecycleEvent) -> Union[None, Awaitable[None]]: ...


class ContextAnalyzer(Protocol):
    """Turns situational attributes (venue, weather...) into reasoning entries."""

    def analyze(
        self, prediction_input: PredictionInput, knowledge: KnowledgeView
    ) -> List[ReasoningEntry]: ...
