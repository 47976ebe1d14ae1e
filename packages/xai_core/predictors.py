from typing import Any, Callable, Dict

from .knowledge.provider import DomainKnowledgeProvider


class CallablePredictor:
    """Adapts a plain `fn(features, context) -> float` to the Predictor protocol."""

    def __init__(self, fn: Callable[[Dict[str, float], Dict[str, Any]], float]):
        self.fn = fn

    def predict(self, features: Dict[str, float], context: Dict[str, Any]) -> float:
        return float(self.fn(features, context))


class KnowledgePredictor:
    """
    White-box linear scorer over the domain tables:
    baseline(c) + sum((x_f - baseline(c, f)) * weight(c, f) * multiplier(f, ctx))

    Useful for manual runs and as a ground truth, since a local linear
    surrogate should recover its weights exactly.
    """

    def __init__(self, provider: DomainKnowledgeProvider, entity_class: str):
        self.provider = provider
        self.entity_class = entity_class

    def predict(self, features: Dict[str, float], context: Dict[str, Any]) -> float:
        view = self.provider.snapshot()
        total = view.baseline(self.entity_class)
        for name, value in features.items():
            total += (
                (value - view.feature_baseline(self.entity_class, name))
                * view.weight(self.entity_class, name)
                * view.situational_multiplier(name, context)
            )
        return total
