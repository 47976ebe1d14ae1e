import asyncio

import numpy as np
import pandas as pd
import pytest

from packages.contracts.blueprints import SurrogateConfig
from packages.xai_core.predictors import CallablePredictor
from packages.xai_core.surrogate.engine import SurrogateEngine, fit_weighted_linear
from packages.xai_core.surrogate.sampler import PerturbationSampler


@pytest.fixture
def config():
    return SurrogateConfig(num_samples=300, batch_size=64)


class TestSampler:
    def test_first_row_is_original(self, config):
        samples = PerturbationSampler(config).sample({"b": 2.0, "a": 10.0}, seed=1)

        assert list(samples.columns) == ["a", "b"]
        assert samples.shape == (300, 2)
        assert samples.iloc[0].tolist() == [10.0, 2.0]

    def test_clipped_at_lower_bound(self):
        config = SurrogateConfig(num_samples=500, noise_fraction=2.0)
        samples = PerturbationSampler(config).sample({"a": 1.0}, seed=3)
        assert samples["a"].min() >= 0.0

    def test_negative_feature_is_not_clipped(self):
        config = SurrogateConfig(num_samples=500, noise_fraction=2.0)
        samples = PerturbationSampler(config).sample({"point_diff": -5.0, "yards": 1.0}, seed=3)

        assert samples.iloc[0].tolist() == [-5.0, 1.0]
        assert samples["point_diff"].min() < -5.0
        assert samples["point_diff"].nunique() == 500
        assert samples["yards"].min() >= 0.0

    def test_same_seed_same_neighbourhood(self, config):
        sampler = PerturbationSampler(config)
        pd.testing.assert_frame_equal(sampler.sample({"a": 5.0}, 11), sampler.sample({"a": 5.0}, 11))

    def test_kernel_peaks_at_original(self, config):
        sampler = PerturbationSampler(config)
        features = {"a": 5.0, "b": 3.0}
        samples = sampler.sample(features, seed=2)
        weights = sampler.kernel_weights(sampler.distances(samples, features))

        assert weights[0] == pytest.approx(1.0)
        assert np.all((weights > 0) & (weights <= 1.0))


class TestWeightedFit:
    def test_exact_linear_relation(self):
        rng = np.random.default_rng(0)
        X = pd.DataFrame({"a": rng.normal(5, 1, 100), "b": rng.normal(2, 1, 100)})
        y = 3.0 + 2.0 * X["a"].to_numpy() - 0.5 * X["b"].to_numpy()

        fit = fit_weighted_linear(X, y, np.ones(100), 0.95)

        assert fit.coefficients["a"] == pytest.approx(2.0)
        assert fit.coefficients["b"] == pytest.approx(-0.5)
        assert fit.intercept == pytest.approx(3.0)
        assert fit.r2_score == pytest.approx(1.0)
        assert fit.fidelity == pytest.approx(1.0, abs=1e-6)

    def test_noisy_relation_has_intervals(self):
        rng = np.random.default_rng(1)
        X = pd.DataFrame({"a": rng.normal(0, 1, 200)})
        y = 1.5 * X["a"].to_numpy() + rng.normal(0, 0.5, 200)

        fit = fit_weighted_linear(X, y, np.ones(200), 0.999)
        lower, upper = fit.intervals["a"]

        assert lower < fit.coefficients["a"] < upper
        assert lower < 1.5 < upper
        assert 0.0 < fit.fidelity < 1.0

    def test_constant_feature(self):
        X = pd.DataFrame({"a": np.linspace(0, 1, 20), "b": np.zeros(20)})
        y = X["a"].to_numpy() * 4.0

        fit = fit_weighted_linear(X, y, np.ones(20), 0.95)

        assert fit.coefficients["b"] == 0.0
        assert fit.intervals["b"] == (0.0, 0.0)


class TestSurrogateEngine:
    async def test_recovers_linear_predictor(self, config, logger, qb_predictor, make_input):
        engine = SurrogateEngine(config, qb_predictor, logger)
        prediction_input = make_input()

        result = await engine.explain(prediction_input, seed=5)
        coefficients = {f.feature: f.coefficient for f in result.features}

        assert coefficients["passing_yards"] == pytest.approx(0.08, rel=1e-6)
        assert coefficients["passing_tds"] == pytest.approx(4.0, rel=1e-6)
        assert coefficients["interceptions"] == pytest.approx(-2.0, rel=1e-6)
        assert result.features[0].feature == "completion_percentage"
        assert result.num_samples == 300
        assert result.local_prediction == pytest.approx(
            qb_predictor.predict(prediction_input.features, {}), rel=1e-6
        )

    async def test_recovers_weight_of_negative_feature(self, config, logger, make_input):
        predictor = CallablePredictor(lambda f, ctx: 2.0 * f["point_diff"] + f["x"])
        engine = SurrogateEngine(config, predictor, logger)

        result = await engine.explain(make_input(features={"point_diff": -5.0, "x": 10.0}), seed=4)
        coefficients = {f.feature: f.coefficient for f in result.features}

        assert coefficients["point_diff"] == pytest.approx(2.0, rel=1e-6)
        assert coefficients["x"] == pytest.approx(1.0, rel=1e-6)
        assert result.local_prediction == pytest.approx(0.0, abs=1e-6)

    async def test_scores_bounded_for_nonlinear_model(self, config, logger, make_input):
        predictor = CallablePredictor(lambda f, ctx: f["passing_yards"] * f["passing_tds"] / 100.0)
        engine = SurrogateEngine(config, predictor, logger)

        result = await engine.explain(make_input(), seed=9)

        assert 0.0 <= result.fidelity <= 1.0
        assert 0.0 <= result.r2_score <= 1.0
        ranks = [f.rank for f in result.features]
        assert ranks == list(range(1, len(ranks) + 1))

    async def test_async_predictor(self, config, logger, gated, make_input):
        predictor = gated()
        engine = SurrogateEngine(config, predictor, logger)

        result = await engine.explain(make_input(), seed=5)

        assert predictor.calls == 300
        assert result.r2_score == pytest.approx(1.0)

    async def test_truncates_to_num_features(self, logger, qb_predictor, make_input):
        engine = SurrogateEngine(SurrogateConfig(num_samples=100, num_features=2), qb_predictor, logger)
        result = await engine.explain(make_input(), seed=5)
        assert len(result.features) == 2

    async def test_rejects_empty_features(self, config, logger, qb_predictor, make_input):
        engine = SurrogateEngine(config, qb_predictor, logger)
        with pytest.raises(ValueError):
            await engine.explain(make_input(features={}), seed=1)

    async def test_rejects_non_finite_predictions(self, config, logger, make_input):
        engine = SurrogateEngine(config, CallablePredictor(lambda f, ctx: float("nan")), logger)
        with pytest.raises(ValueError):
            await engine.explain(make_input(), seed=1)

    async def test_cancellation_stops_predictor(self, config, logger, gated, make_input):
        predictor = gated(gate=asyncio.Event())
        engine = SurrogateEngine(config, predictor, logger)

        task = asyncio.create_task(engine.explain(make_input(), seed=1))
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        # Only the first batch ever started
        assert predictor.calls == config.batch_size
