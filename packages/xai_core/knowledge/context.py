from typing import List

from packages.contracts.payloads import PredictionInput, ReasoningEntry
from packages.xai_lib.helpers.structs import flatten_dict

from .provider import KnowledgeView


class RuleContextAnalyzer:
    """
    Context analyzer backed by the knowledge pack's `context_insights` rules.
    Stateless: it reads only the snapshot it is handed.
    """

    def analyze(
        self, prediction_input: PredictionInput, knowledge: KnowledgeView
    ) -> List[ReasoningEntry]:
        flat = flatten_dict(prediction_input.context)

        entries = []
        for insight in knowledge.knowledge.context_insights:
            if not any(c.matches(flat) for c in insight.any_of):
                continue
            impact = insight.impact_by_class.get(
                prediction_input.entity_class, insight.impact
            )
            entries.append(
                ReasoningEntry(
                    factor=insight.factor,
                    impact=impact,
                    strength=insight.strength,
                    explanation=insight.explanation,
                )
            )
        return entries
