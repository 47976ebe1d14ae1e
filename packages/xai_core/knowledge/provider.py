import threading
from pathlib import Path
from typing import Any, Dict, List

from packages.contracts.knowledge import DomainKnowledge, pair_key
from packages.xai_lib.helpers.structs import flatten_dict


class KnowledgeView:
    """
    A read-only view over one DomainKnowledge snapshot.
    Every lookup is total: missing entries resolve to the documented defaults
    carried by the knowledge pack itself.
    """

    def __init__(self, knowledge: DomainKnowledge):
        self.knowledge = knowledge

    @property
    def prediction_unit(self) -> str:
        return self.knowledge.prediction_unit

    @property
    def nominal_status(self) -> Dict[str, str]:
        return self.knowledge.nominal_status

    def is_known_class(self, entity_class: str) -> bool:
        return entity_class in self.knowledge.classes

    def baseline(self, entity_class: str) -> float:
        profile = self.knowledge.classes.get(entity_class)
        return profile.baseline if profile else self.knowledge.default_baseline

    def feature_baseline(self, entity_class: str, feature: str) -> float:
        profile = self.knowledge.classes.get(entity_class)
        if profile and feature in profile.feature_baselines:
            return profile.feature_baselines[feature]
        return self.knowledge.default_feature_baseline

    def weight(self, entity_class: str, feature: str) -> float:
        profile = self.knowledge.classes.get(entity_class)
        if profile and feature in profile.weights:
            return profile.weights[feature]
        return self.knowledge.default_weight

    def correlation(self, feature_a: str, feature_b: str) -> float:
        if feature_a == feature_b:
            return 1.0
        return self.knowledge.correlations.get(
            pair_key(feature_a, feature_b), self.knowledge.default_correlation
        )

    def situational_multiplier(self, feature: str, context: Dict[str, Any]) -> float:
        flat = flatten_dict(context)
        multiplier = self.knowledge.default_multiplier
        for rule in self.knowledge.situational_rules:
            if rule.applies(feature, flat):
                multiplier *= rule.multiplier
        return multiplier

    def class_features(self, entity_class: str) -> List[str] | None:
        profile = self.knowledge.classes.get(entity_class)
        return list(profile.features) if profile else None

    def global_importance(self, entity_class: str) -> Dict[str, float]:
        profile = self.knowledge.classes.get(entity_class)
        return dict(profile.global_importance) if profile else {}

    def interaction_override(
        self, feature_a: str, feature_b: str, value_a: float, value_b: float
    ) -> float | None:
        for rule in self.knowledge.interaction_rules:
            if rule.matches(feature_a, feature_b):
                return rule.coefficient * value_a * value_b
        return None

    def template(self, feature: str) -> str | None:
        return self.knowledge.feature_templates.get(feature)


class DomainKnowledgeProvider:
    """
    Owns the current knowledge pack. Tables can be swapped between requests
    with `reload`; a computation grabs one `snapshot()` up front and keeps it.
    """

    def __init__(self, knowledge: DomainKnowledge, logger=None):
        self.logger = logger
        self._lock = threading.Lock()
        self._view = KnowledgeView(knowledge)
        self._generation = 0

    @classmethod
    def from_yaml(cls, path: Path, logger=None) -> "DomainKnowledgeProvider":
        provider = cls(DomainKnowledge.from_yaml(path), logger)
        if logger:
            logger.info(f"Loaded domain knowledge '{provider.snapshot().knowledge.name}' from {path}")
        return provider

    def snapshot(self) -> KnowledgeView:
        with self._lock:
            return self._view

    @property
    def generation(self) -> int:
        """Bumped on every reload; results computed across a bump are stale."""
        with self._lock:
            return self._generation

    def reload(self, knowledge: DomainKnowledge):
        with self._lock:
            self._view = KnowledgeView(knowledge)
            self._generation += 1
        if self.logger:
            self.logger.info(
                f"Domain knowledge reloaded: '{knowledge.name}' ({len(knowledge.classes)} classes)."
            )
