import math
from typing import Dict, List

import numpy as np

from packages.contracts.blueprints import AttributionConfig
from packages.contracts.payloads import (
    AttributionResult,
    FeatureAttribution,
    FeatureInteraction,
    PredictionInput,
)
from packages.xai_core.knowledge.provider import KnowledgeView
from packages.xai_core.ranking import rank_by_magnitude

# Below this share of the absolute raw mass, the raw total is treated as
# cancelled out and the residual is spread instead of rescaled.
CANCELLATION_RATIO = 0.05


class AttributionEngine:
    """
    SHAP-style additive attribution over the domain tables.

    raw(f) = (x_f - baseline(c, f)) * weight(c, f) * situational_multiplier(f, ctx)

    A final pass rescales the raw values so that
    base_value + sum(contributions) == predicted_value.
    """

    def __init__(self, config: AttributionConfig, logger):
        self.config = config
        self.logger = logger

    def explain(
        self,
        prediction_input: PredictionInput,
        predicted_value: float,
        knowledge: KnowledgeView,
    ) -> AttributionResult:
        entity_class = prediction_input.entity_class
        base_value = knowledge.baseline(entity_class)

        # 1. Raw per-feature contributions
        names = self._select_features(prediction_input, knowledge)
        raw = {
            name: self.raw_contribution(name, prediction_input, knowledge)
            for name in names
        }

        # 2. Additivity
        contributions = self._enforce_additivity(raw, predicted_value - base_value)

        # 3. Rank and truncate
        ranked = rank_by_magnitude(contributions)
        attributions = [
            FeatureAttribution(
                feature=name,
                value=prediction_input.features[name],
                raw_contribution=raw[name],
                contribution=score,
                importance=abs(score),
                rank=rank,
            )
            for name, score, rank in ranked
        ]
        kept = attributions[: self.config.max_features]
        remainder = sum(a.contribution for a in attributions[self.config.max_features :])

        # 4. Interactions among the strongest features
        interactions = self._interactions(
            attributions[: self.config.interaction_candidates], knowledge
        )

        self.logger.debug(
            f"Attribution for {prediction_input.entity_id}: {len(kept)}/{len(attributions)} features, "
            f"{len(interactions)} interactions, remainder={remainder:.4f}"
        )

        return AttributionResult(
            base_value=base_value,
            features=kept,
            interactions=interactions,
            global_importance=knowledge.global_importance(entity_class),
            remainder=remainder,
            approximation_mode=self.config.approximation_mode,
        )

    def raw_contribution(
        self, feature: str, prediction_input: PredictionInput, knowledge: KnowledgeView
    ) -> float:
        entity_class = prediction_input.entity_class
        value = prediction_input.features[feature]
        deviation = value - knowledge.feature_baseline(entity_class, feature)
        return (
            deviation
            * knowledge.weight(entity_class, feature)
            * knowledge.situational_multiplier(feature, prediction_input.context)
        )

    def _select_features(
        self, prediction_input: PredictionInput, knowledge: KnowledgeView
    ) -> List[str]:
        class_features = knowledge.class_features(prediction_input.entity_class)
        if class_features is None:
            # Unknown class: every supplied feature is in play
            return list(prediction_input.features)
        return [f for f in class_features if f in prediction_input.features]

    def _enforce_additivity(self, raw: Dict[str, float], target: float) -> Dict[str, float]:
        """
        Makes the contributions sum to `target` (prediction minus base value).
        Rescales multiplicatively when the raw total points the same way as the
        target; otherwise spreads the residual in proportion to |raw|.
        """
        if not raw:
            return {}

        names = list(raw)
        values = np.array([raw[n] for n in names], dtype=float)
        total = float(values.sum())
        mass = float(np.abs(values).sum())

        if total * target > 0 and abs(total) > CANCELLATION_RATIO * mass:
            adjusted = values * (target / total)
        else:
            if mass > 0:
                share = np.abs(values) / mass
            else:
                share = np.full(len(values), 1.0 / len(values))
            adjusted = values + (target - total) * share

        return dict(zip(names, adjusted.tolist()))

    def _interactions(
        self, candidates: List[FeatureAttribution], knowledge: KnowledgeView
    ) -> List[FeatureInteraction]:
        found = []
        for i in range(len(candidates) - 1):
            for j in range(i + 1, len(candidates)):
                a, b = candidates[i], candidates[j]
                score = knowledge.interaction_override(a.feature, b.feature, a.value, b.value)
                if score is None:
                    score = (
                        knowledge.correlation(a.feature, b.feature)
                        * math.sqrt(max(0.0, a.value * b.value))
                        * self.config.interaction_scale
                    )
                if abs(score) > self.config.interaction_threshold:
                    found.append(
                        FeatureInteraction(feature_a=a.feature, feature_b=b.feature, score=score)
                    )

        found.sort(key=lambda x: (-abs(x.score), x.feature_a, x.feature_b))
        return found[: self.config.max_interactions]
