import asyncio
import sys
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))

from packages.contracts.payloads import PredictionInput, PredictionMetadata
from packages.xai_core.engine import ExplanationEngine
from packages.xai_core.knowledge.provider import DomainKnowledgeProvider
from packages.xai_core.predictors import KnowledgePredictor
from packages.xai_lib.config import settings
from packages.xai_lib.logging import LogManager


async def main():
    print("--- Starting Manual Explanation Run ---")

    log_manager = LogManager(service_name="run_explanation", debug=settings.system.debug)
    logger = log_manager.get_logger("main")

    # 1. Engine wired to a white-box predictor over the same tables
    provider = DomainKnowledgeProvider.from_yaml(settings.paths.knowledge_path, logger)
    predictor = KnowledgePredictor(provider, "QB")
    engine = ExplanationEngine.from_settings(predictor, provider=provider, logger=logger)

    prediction_input = PredictionInput(
        entity_id="player_qb_001",
        entity_class="QB",
        features={
            "passing_yards": 300,
            "passing_tds": 2.5,
            "interceptions": 0.5,
            "completion_percentage": 0.68,
            "qb_rating": 102,
        },
        context={"venue": "home", "weather": {"conditions": "clear", "wind_speed": 22}},
        status={"injury": "questionable"},
        history=[21.4, 17.8, 24.2, 19.9],
        metadata=PredictionMetadata(model_id="fantasy_points_v1"),
    )
    predicted_value = predictor.predict(prediction_input.features, prediction_input.context)

    # 2. Explain
    record = await engine.explain(prediction_input, predicted_value)

    # 3. Display Results
    print(f"\n--- {record.narrative.summary} ---")
    for feature in record.attribution.features:
        print(f"  #{feature.rank} {feature.feature:<24} {feature.contribution:+.2f}")
    print(f"  remainder {record.attribution.remainder:+.2f}")
    print(f"\nSurrogate fidelity: {record.surrogate.fidelity:.3f} (r2={record.surrogate.r2_score:.3f})")
    print(f"Risks: {record.narrative.risks}")
    print(f"Charts: {[v.kind.value for v in record.visualizations]}")

    # 4. Second call is served from cache
    again = await engine.explain(prediction_input, predicted_value)
    print(f"\nCache hit on repeat: {again.performance.cache_hit}")
    print(engine.get_metrics())

    await engine.aclose()
    print("\n✅ Explanation complete.")


if __name__ == "__main__":
    asyncio.run(main())
