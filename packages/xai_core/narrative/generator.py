from typing import List

from packages.contracts.blueprints import NarrativeConfig
from packages.contracts.payloads import (
    AttributionResult,
    FeatureAttribution,
    NarrativeResult,
    PredictionInput,
    ReasoningEntry,
    SurrogateResult,
)
from packages.contracts.vocabulary.general import ConfidenceLevel, Impact, Outlook, Strength
from packages.xai_core.knowledge.provider import KnowledgeView
from packages.xai_core.protocols import ContextAnalyzer
from packages.xai_lib.helpers.structs import flatten_dict


def narrative_confidence(
    attribution: AttributionResult | None, surrogate: SurrogateResult | None
) -> float:
    """0.5 + min(top_importance / 10, 0.3) + fidelity * 0.2"""
    score = 0.5
    if attribution and attribution.features:
        score += min(attribution.features[0].importance / 10.0, 0.3)
    if surrogate:
        score += surrogate.fidelity * 0.2
    return score


def bucket_confidence(score: float) -> ConfidenceLevel:
    if score > 0.8:
        return ConfidenceLevel.HIGH
    if score > 0.6:
        return ConfidenceLevel.MEDIUM
    return ConfidenceLevel.LOW


class NarrativeGenerator:
    """
    Turns attribution + surrogate output into reasoning entries, a one-line
    summary, risks and opportunities.
    """

    def __init__(self, config: NarrativeConfig, context_analyzer: ContextAnalyzer, logger):
        self.config = config
        self.context_analyzer = context_analyzer
        self.logger = logger

    def generate(
        self,
        prediction_input: PredictionInput,
        predicted_value: float,
        attribution: AttributionResult | None,
        surrogate: SurrogateResult | None,
        knowledge: KnowledgeView,
    ) -> NarrativeResult:
        key_factors: List[str] = []
        reasoning: List[ReasoningEntry] = []

        # 1. Strongest attributed features
        if attribution:
            for feature in attribution.features[: self.config.top_factors]:
                key_factors.append(feature.feature)
                reasoning.append(
                    ReasoningEntry(
                        factor=feature.feature,
                        impact=Impact.POSITIVE if feature.contribution > 0 else Impact.NEGATIVE,
                        strength=self.strength(abs(feature.contribution)),
                        explanation=self._explain_feature(feature, prediction_input, knowledge),
                    )
                )

        # 2. Situational factors
        for entry in self.context_analyzer.analyze(prediction_input, knowledge):
            key_factors.append(entry.factor)
            reasoning.append(entry)

        score = narrative_confidence(attribution, surrogate)

        return NarrativeResult(
            summary=self._summary(prediction_input, predicted_value, key_factors, reasoning, knowledge),
            key_factors=key_factors,
            reasoning=reasoning,
            confidence=bucket_confidence(score),
            risks=self._risks(prediction_input, reasoning, knowledge),
            opportunities=self._opportunities(reasoning),
        )

    def strength(self, magnitude: float) -> Strength:
        if magnitude > self.config.high_threshold:
            return Strength.HIGH
        if magnitude > self.config.medium_threshold:
            return Strength.MEDIUM
        return Strength.LOW

    def _explain_feature(
        self, feature: FeatureAttribution, prediction_input: PredictionInput, knowledge: KnowledgeView
    ) -> str:
        fallback = f"{feature.feature}: {feature.value:g} ({feature.contribution:+.1f})"
        template = knowledge.template(feature.feature)
        if template is None:
            return fallback

        try:
            return template.format(
                feature=feature.feature,
                value=feature.value,
                contribution=feature.contribution,
                direction="above" if feature.contribution > 0 else "below",
                entity_class=prediction_input.entity_class,
                unit=knowledge.prediction_unit,
            )
        except (KeyError, IndexError, ValueError) as e:
            self.logger.warning(f"Template for '{feature.feature}' is unusable ({e}). Using default text.")
            return fallback

    @staticmethod
    def outlook(reasoning: List[ReasoningEntry]) -> Outlook:
        positive = sum(1 for r in reasoning if r.impact == Impact.POSITIVE)
        negative = sum(1 for r in reasoning if r.impact == Impact.NEGATIVE)
        if positive > negative:
            return Outlook.FAVORABLE
        if positive < negative:
            return Outlook.CHALLENGING
        return Outlook.NEUTRAL

    def _summary(
        self,
        prediction_input: PredictionInput,
        predicted_value: float,
        key_factors: List[str],
        reasoning: List[ReasoningEntry],
        knowledge: KnowledgeView,
    ) -> str:
        head = (
            f"{prediction_input.entity_class} projection of {predicted_value:.1f} "
            f"{knowledge.prediction_unit} with {self.outlook(reasoning).value} outlook"
        )
        if not key_factors:
            return f"{head}."
        return (
            f"{head} based on {len(key_factors)} key factors including "
            f"{' and '.join(key_factors[:2])}."
        )

    def _risks(
        self,
        prediction_input: PredictionInput,
        reasoning: List[ReasoningEntry],
        knowledge: KnowledgeView,
    ) -> List[str]:
        risks = []

        # Status flags that are off their nominal value
        for flag, value in prediction_input.status.items():
            nominal = knowledge.nominal_status.get(flag)
            if nominal is not None and value != nominal:
                risks.append(f"Listed as {value} on {flag} report")

        strong_negative = [
            r for r in reasoning if r.impact == Impact.NEGATIVE and r.strength == Strength.HIGH
        ]
        if len(strong_negative) >= 2:
            risks.append("Multiple significant negative factors present")

        flat = flatten_dict(prediction_input.context)
        for rule in knowledge.knowledge.context_risks:
            if any(c.matches(flat) for c in rule.any_of):
                risks.append(rule.message)

        return risks

    def _opportunities(self, reasoning: List[ReasoningEntry]) -> List[str]:
        opportunities = []

        strong_positive = [
            r for r in reasoning if r.impact == Impact.POSITIVE and r.strength == Strength.HIGH
        ]
        if len(strong_positive) >= 2:
            opportunities.append("Multiple strong positive factors align for potential upside")

        for pattern in self.config.volume_patterns:
            if any(pattern in r.factor and r.impact == Impact.POSITIVE for r in reasoning):
                opportunities.append(
                    f"High {pattern} share provides a solid floor with upside potential"
                )

        return opportunities
