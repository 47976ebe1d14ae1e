import asyncio
import inspect
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Tuple

import numpy as np
import pandas as pd
from scipy import stats
from sklearn.linear_model import LinearRegression
from sklearn.metrics import r2_score

from packages.contracts.blueprints import SurrogateConfig
from packages.contracts.payloads import LocalFeature, PredictionInput, SurrogateResult
from packages.xai_core.protocols import Predictor
from packages.xai_core.ranking import rank_by_magnitude

from .sampler import PerturbationSampler


@dataclass
class LocalFit:
    """Output of one weighted least-squares fit."""

    coefficients: Dict[str, float]
    intervals: Dict[str, Tuple[float, float]]
    intercept: float
    r2_score: float
    fidelity: float
    local_prediction: float


def fit_weighted_linear(
    X: pd.DataFrame, y: np.ndarray, weights: np.ndarray, confidence_level: float
) -> LocalFit:
    """
    Weighted linear regression of predictor outputs on perturbed features.
    Coefficient intervals come from the regression standard error; features
    that never moved in the neighbourhood get a zero coefficient.
    """
    coefficients = {c: 0.0 for c in X.columns}
    intervals = {c: (0.0, 0.0) for c in X.columns}
    active = [c for c in X.columns if np.ptp(X[c].to_numpy()) > 0]

    if active:
        model = LinearRegression().fit(X[active], y, sample_weight=weights)
        y_hat = model.predict(X[active])
        intercept = float(model.intercept_)
        coefficients.update(zip(active, (float(c) for c in model.coef_)))
    else:
        intercept = float(np.average(y, weights=weights))
        y_hat = np.full(len(y), intercept)

    residuals = y - y_hat
    n, p = len(y), len(active)
    dof = n - p - 1

    # Standard errors: Cov(beta) = sigma^2 * (X'WX)^+
    if active and dof > 0:
        design = np.column_stack([np.ones(n), X[active].to_numpy()])
        sigma2 = float(np.sum(weights * residuals**2) / dof)
        xtwx = design.T @ (design * weights[:, None])
        cov = sigma2 * np.linalg.pinv(xtwx)
        se = np.sqrt(np.clip(np.diag(cov)[1:], 0.0, None))
        t_crit = float(stats.t.ppf((1.0 + confidence_level) / 2.0, dof))
        for name, s in zip(active, se):
            coef = coefficients[name]
            intervals[name] = (coef - t_crit * float(s), coef + t_crit * float(s))

    r2 = float(r2_score(y, y_hat, sample_weight=weights))
    r2 = min(max(r2, 0.0), 1.0) if np.isfinite(r2) else 0.0

    # Fidelity: weighted RMSE relative to the weighted spread of the black box
    w_rmse = float(np.sqrt(np.average(residuals**2, weights=weights)))
    y_mean = float(np.average(y, weights=weights))
    w_std = float(np.sqrt(np.average((y - y_mean) ** 2, weights=weights)))
    spread = max(w_std, 1e-12 * max(1.0, abs(y_mean)))
    fidelity = 1.0 / (1.0 + w_rmse / spread)

    return LocalFit(
        coefficients=coefficients,
        intervals=intervals,
        intercept=intercept,
        r2_score=r2,
        fidelity=fidelity,
        local_prediction=float(y_hat[0]),
    )


class SurrogateEngine:
    """
    LIME-style local surrogate: perturb, query the real predictor, fit a
    kernel-weighted linear model, report coefficients with intervals.
    """

    def __init__(self, config: SurrogateConfig, predictor: Predictor, logger):
        self.config = config
        self.predictor = predictor
        self.logger = logger
        self.sampler = PerturbationSampler(config)

    async def explain(self, prediction_input: PredictionInput, seed: int) -> SurrogateResult:
        features = prediction_input.features
        if not features:
            raise ValueError("Cannot fit a local surrogate without features")

        # 1. Neighbourhood
        samples = self.sampler.sample(features, seed)

        # 2. Black-box labels
        y = await self._query_predictor(samples, prediction_input.context)

        # 3. Weighted fit
        weights = self.sampler.kernel_weights(self.sampler.distances(samples, features))
        fit = fit_weighted_linear(samples, y, weights, self.config.confidence_level)

        # 4. Rank and truncate
        ranked = rank_by_magnitude(fit.coefficients)
        local_features = [
            LocalFeature(
                feature=name,
                coefficient=coef,
                value=features[name],
                confidence_interval=fit.intervals[name],
                rank=rank,
            )
            for name, coef, rank in ranked[: self.config.num_features]
        ]

        self.logger.debug(
            f"Surrogate for {prediction_input.entity_id}: r2={fit.r2_score:.3f}, "
            f"fidelity={fit.fidelity:.3f} over {len(y)} samples"
        )

        return SurrogateResult(
            features=local_features,
            intercept=fit.intercept,
            fidelity=fit.fidelity,
            r2_score=fit.r2_score,
            num_samples=len(y),
            local_prediction=fit.local_prediction,
        )

    async def _query_predictor(self, samples: pd.DataFrame, context: Dict[str, Any]) -> np.ndarray:
        rows = self.sampler.rows(samples)
        batch_size = self.config.batch_size
        is_async = inspect.iscoroutinefunction(self.predictor.predict)
        cancelled = threading.Event()

        outputs: List[float] = []
        try:
            for start in range(0, len(rows), batch_size):
                chunk = rows[start : start + batch_size]
                if is_async:
                    values = await asyncio.gather(
                        *(self.predictor.predict(row, context) for row in chunk)
                    )
                else:
                    # Blocking predictors run off the event loop, one batch at a time
                    values = await asyncio.to_thread(self._predict_chunk, chunk, context, cancelled)
                outputs.extend(values)
        except asyncio.CancelledError:
            # Stop the worker thread from finishing a batch nobody will read
            cancelled.set()
            raise

        y = np.asarray(outputs, dtype=float)
        if not np.all(np.isfinite(y)):
            raise ValueError("Predictor returned non-finite values")
        return y

    def _predict_chunk(
        self, chunk: List[Dict[str, float]], context: Dict[str, Any], cancelled: threading.Event
    ) -> List[float]:
        values = []
        for row in chunk:
            if cancelled.is_set():
                break
            values.append(float(self.predictor.predict(row, context)))
        return values
