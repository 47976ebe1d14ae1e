from typing import List

import numpy as np

from packages.contracts.blueprints import VisualizationConfig
from packages.contracts.payloads import (
    AttributionResult,
    PredictionInput,
    SurrogateResult,
    VisualizationPayload,
)
from packages.contracts.vocabulary.general import ChartKind
from packages.xai_core.knowledge.provider import KnowledgeView


class VisualizationBuilder:
    """
    Pure transform from explanation results to chart-ready payloads.
    No I/O; only chart kinds listed in the config are emitted.
    """

    def __init__(self, config: VisualizationConfig):
        self.config = config

    def build(
        self,
        prediction_input: PredictionInput,
        predicted_value: float,
        attribution: AttributionResult | None,
        surrogate: SurrogateResult | None,
        knowledge: KnowledgeView,
    ) -> List[VisualizationPayload]:
        wanted = set(self.config.chart_types)
        charts = []

        if attribution:
            if ChartKind.WATERFALL in wanted:
                charts.append(self.waterfall(attribution, predicted_value))
            if ChartKind.BAR in wanted:
                charts.append(self.ranked_bar(attribution))

        if surrogate and ChartKind.SCATTER in wanted:
            charts.append(self.scatter(surrogate))

        if self.config.domain_heatmap and ChartKind.HEATMAP in wanted:
            heatmap = self.correlation_heatmap(prediction_input, knowledge)
            if heatmap is not None:
                charts.append(heatmap)

        return charts

    def waterfall(self, attribution: AttributionResult, predicted_value: float) -> VisualizationPayload:
        # Keep room for the base and prediction bars
        limit = max(self.config.max_data_points - 3, 0)
        shown = attribution.features[:limit]
        hidden = sum(f.contribution for f in attribution.features[limit:]) + attribution.remainder

        categories = ["Base"] + [f.feature for f in shown]
        steps = [attribution.base_value] + [f.contribution for f in shown]
        if abs(hidden) > 1e-12:
            categories.append("Other")
            steps.append(hidden)

        cumulative = np.cumsum(steps).tolist()
        categories.append("Prediction")
        steps.append(predicted_value)
        cumulative.append(predicted_value)

        return VisualizationPayload(
            kind=ChartKind.WATERFALL,
            title="Feature Contribution Breakdown",
            data={"categories": categories, "values": steps, "cumulative": cumulative},
            config={
                "yAxis": {"title": "Predicted value"},
                "xAxis": {"title": "Features"},
                "colors": ["#1f77b4", "#ff7f0e", "#2ca02c", "#d62728"],
            },
            caption="Shows how each feature moves the prediction away from the baseline",
        )

    def ranked_bar(self, attribution: AttributionResult) -> VisualizationPayload:
        shown = attribution.features[: self.config.max_data_points]
        return VisualizationPayload(
            kind=ChartKind.BAR,
            title="Feature Importance Ranking",
            data={
                "labels": [f.feature for f in shown],
                "values": [f.importance for f in shown],
                "ranks": [f.rank for f in shown],
            },
            config={"orientation": "horizontal", "colors": ["#1f77b4"]},
            caption="Ranking of features by their importance to the prediction",
        )

    def scatter(self, surrogate: SurrogateResult) -> VisualizationPayload:
        points = [
            {
                "x": f.value,
                "y": f.coefficient,
                "feature": f.feature,
                "lower": f.confidence_interval[0],
                "upper": f.confidence_interval[1],
            }
            for f in surrogate.features[: self.config.max_data_points]
        ]
        return VisualizationPayload(
            kind=ChartKind.SCATTER,
            title="Local Feature Effects",
            data={"points": points},
            config={"showConfidenceInterval": True, "colors": ["#2ca02c", "#d62728"]},
            caption="Local effects of features on the prediction with confidence intervals",
        )

    def correlation_heatmap(
        self, prediction_input: PredictionInput, knowledge: KnowledgeView
    ) -> VisualizationPayload | None:
        features = knowledge.class_features(prediction_input.entity_class)
        if features is None:
            features = sorted(prediction_input.features)
        # Matrix cells grow quadratically; cap the axis instead
        side = int(np.sqrt(self.config.max_data_points))
        features = features[:side]
        if not features:
            return None

        matrix = np.array(
            [[knowledge.correlation(a, b) for b in features] for a in features], dtype=float
        )
        return VisualizationPayload(
            kind=ChartKind.HEATMAP,
            title=f"{prediction_input.entity_class} Feature Correlation Matrix",
            data={"features": features, "correlations": matrix.tolist()},
            config={"colorScale": "RdYlBu", "showValues": True},
            caption="Correlation between the factors that matter for this class",
        )
