import pytest

from packages.contracts.blueprints import AttributionConfig
from packages.xai_core.attribution.engine import AttributionEngine


@pytest.fixture
def engine(logger):
    return AttributionEngine(AttributionConfig(), logger)


def _assert_additive(result, predicted):
    assert result.base_value + result.total_contribution == pytest.approx(predicted, abs=1e-9)


def _assert_ranked(result):
    ranks = [f.rank for f in result.features]
    assert ranks == list(range(1, len(ranks) + 1))
    for a, b in zip(result.features, result.features[1:]):
        assert a.importance >= b.importance
        if a.importance == b.importance:
            assert a.feature < b.feature


class TestContributions:
    def test_single_feature_above_baseline(self, engine, view, make_input):
        result = engine.explain(make_input(features={"passing_yards": 300}), 22.5, view)

        assert result.base_value == 18.5
        [feature] = result.features
        assert feature.feature == "passing_yards"
        assert feature.raw_contribution == pytest.approx(4.0)
        assert feature.contribution == pytest.approx(4.0)
        assert feature.importance == pytest.approx(4.0)
        assert feature.rank == 1

    def test_rain_scales_passing(self, engine, view, make_input):
        prediction_input = make_input(
            features={"passing_yards": 300}, context={"weather": {"conditions": "rain"}}
        )
        result = engine.explain(prediction_input, 22.1, view)

        assert result.features[0].raw_contribution == pytest.approx(3.6)
        assert result.features[0].contribution == pytest.approx(3.6)

    def test_only_class_features_are_attributed(self, engine, view, make_input):
        features = {"passing_yards": 300, "rushing_yards": 40}
        result = engine.explain(make_input(features=features), 22.5, view)

        assert [f.feature for f in result.features] == ["passing_yards"]

    def test_unknown_class_uses_every_feature(self, engine, view, make_input):
        features = {"b": 5.0, "a": 5.0, "c": 1.0}
        result = engine.explain(make_input(features=features, entity_class="P"), 11.1, view)

        assert result.base_value == 10.0
        assert [f.feature for f in result.features] == ["a", "b", "c"]
        _assert_ranked(result)
        _assert_additive(result, 11.1)


class TestAdditivity:
    @pytest.mark.parametrize("predicted", [25.0, 18.5, 12.0, 40.0])
    def test_sum_matches_prediction(self, engine, view, make_input, predicted):
        result = engine.explain(make_input(), predicted, view)
        _assert_additive(result, predicted)
        _assert_ranked(result)

    def test_raw_total_cancels_out(self, engine, view, make_input):
        # +4.0 and -4.0 raw: the residual is spread by |raw|
        features = {"passing_yards": 300, "passing_tds": 0.8}
        result = engine.explain(make_input(features=features), 20.5, view)

        _assert_additive(result, 20.5)
        by_name = {f.feature: f.contribution for f in result.features}
        assert by_name["passing_yards"] == pytest.approx(5.0)
        assert by_name["passing_tds"] == pytest.approx(-3.0)

    def test_all_features_at_baseline(self, engine, view, make_input):
        features = {"passing_yards": 250, "passing_tds": 1.8}
        result = engine.explain(make_input(features=features), 20.5, view)

        _assert_additive(result, 20.5)
        assert all(f.contribution == pytest.approx(1.0) for f in result.features)

    def test_truncation_keeps_remainder(self, logger, view, make_input):
        engine = AttributionEngine(AttributionConfig(max_features=3), logger)
        features = {f"f{i}": float(i + 1) for i in range(6)}
        result = engine.explain(make_input(features=features, entity_class="P"), 13.0, view)

        assert len(result.features) == 3
        assert result.remainder != 0.0
        _assert_additive(result, 13.0)
        _assert_ranked(result)

    def test_no_features(self, engine, view, make_input):
        result = engine.explain(make_input(features={"sacks": 3}), 19.0, view)
        assert result.features == []
        assert result.interactions == []


class TestInteractions:
    def test_reinforcing_pair(self, engine, view, make_input):
        features = {"targets": 20, "red_zone_targets": 10}
        result = engine.explain(make_input(features=features, entity_class="TE"), 12.0, view)

        [interaction] = result.interactions
        assert {interaction.feature_a, interaction.feature_b} == {"targets", "red_zone_targets"}
        assert interaction.score == pytest.approx(0.2)

    def test_competing_pair(self, engine, view, make_input):
        features = {"rushing_yards": 100, "passing_yards": 300}
        result = engine.explain(make_input(features=features, entity_class="P"), 50.0, view)

        [interaction] = result.interactions
        assert interaction.score == pytest.approx(-3.0)

    def test_correlation_fallback(self, engine, view, make_input):
        features = {"targets": 100, "receptions": 100}
        result = engine.explain(make_input(features=features, entity_class="P"), 30.0, view)

        assert result.interactions[0].score == pytest.approx(0.82)

    def test_weak_pairs_are_dropped(self, engine, view, make_input):
        features = {"targets": 8, "red_zone_targets": 3}
        result = engine.explain(make_input(features=features, entity_class="TE"), 9.0, view)
        assert result.interactions == []

    def test_at_most_three(self, engine, view, make_input):
        features = {"targets": 100, "receptions": 100, "passing_yards": 100, "passing_tds": 100, "rushing_yards": 100}
        result = engine.explain(make_input(features=features, entity_class="P"), 60.0, view)

        assert len(result.interactions) <= 3
        scores = [abs(i.score) for i in result.interactions]
        assert scores == sorted(scores, reverse=True)
