# packages/xai_core/engine.py

import asyncio
import math
import time
import uuid
from typing import List, Tuple

import numpy as np

from packages.contracts.blueprints import ExplainerBlueprint
from packages.contracts.knowledge import DomainKnowledge
from packages.contracts.payloads import (
    AttributionResult,
    ExplanationRecord,
    LifecycleEvent,
    MetricsSnapshot,
    PerformanceBlock,
    PredictionEstimate,
    PredictionInput,
    SurrogateResult,
)
from packages.contracts.vocabulary.general import DedupPolicy, ExplanationMethod, LifecycleEventType
from packages.xai_lib.config import settings
from packages.xai_lib.logging import LogManager

from .attribution.engine import AttributionEngine
from .errors import (
    AlreadyInProgressError,
    ComputationError,
    EngineDisabledError,
    ExplanationError,
    ExplanationTimeoutError,
)
from .knowledge.context import RuleContextAnalyzer
from .knowledge.provider import DomainKnowledgeProvider, KnowledgeView
from .narrative.generator import NarrativeGenerator
from .protocols import ContextAnalyzer, EventSink, Predictor
from .runtime.cache import ExplanationCache
from .runtime.events import EventDispatcher
from .runtime.fingerprint import fingerprint_input
from .runtime.guard import InFlightGuard
from .runtime.metrics import MetricsTracker
from .surrogate.engine import SurrogateEngine
from .visualization.builder import VisualizationBuilder

MAX_CONFIDENCE = 0.95
NO_HISTORY_VARIANCE = 5.0


def estimate_prediction(
    value: float, history: List[float], floor: float | None
) -> PredictionEstimate:
    """
    Point value plus a rough interval from the spread of recent outcomes.
    Three or more history points raise confidence as variance shrinks.
    """
    confidence = 0.7
    if len(history) >= 3:
        variance = float(np.var(history))
        confidence += max(0.0, (1.0 - variance / 100.0) * 0.2)
    confidence = min(confidence, MAX_CONFIDENCE)

    variance = float(np.var(history)) if history else NO_HISTORY_VARIANCE
    half_width = math.sqrt(variance) * 1.5
    lower = value - half_width
    if floor is not None:
        lower = min(max(lower, floor), value)

    return PredictionEstimate(
        value=value, confidence=confidence, lower=lower, upper=value + half_width
    )


def aggregate_confidence(
    attribution: AttributionResult | None, surrogate: SurrogateResult | None
) -> float:
    score = 0.5
    if attribution:
        score += 0.25
    if surrogate:
        score += surrogate.fidelity * 0.25
    return min(score, MAX_CONFIDENCE)


def explanation_method(
    attribution: AttributionResult | None, surrogate: SurrogateResult | None
) -> ExplanationMethod:
    if attribution and not surrogate:
        return ExplanationMethod.SHAP
    if surrogate and not attribution:
        return ExplanationMethod.LIME
    return ExplanationMethod.HYBRID


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000.0


class ExplanationEngine:
    """
    Orchestrates one explanation per call:

    1. Short-circuit when disabled, serve fresh cache entries, deduplicate
       identical requests that are already computing.
    2. Run attribution and the local surrogate concurrently, then the
       narrative and the charts, all under one deadline.
    3. Cache the record, update metrics, emit lifecycle events.

    The in-flight marker is released on every exit path.
    """

    def __init__(
        self,
        blueprint: ExplainerBlueprint,
        knowledge: DomainKnowledgeProvider,
        predictor: Predictor,
        event_sink: EventSink | None = None,
        context_analyzer: ContextAnalyzer | None = None,
        logger=None,
        clock=time.monotonic,
    ):
        if logger:
            self.logger = logger
        else:
            lm = LogManager("explanation-engine", settings.system.debug, settings.system.log_dir)
            self.logger = lm.get_logger("main")

        self.blueprint = blueprint
        self.knowledge = knowledge
        self.predictor = predictor
        self.enabled = blueprint.enabled

        # 1. Sub-engines
        self.attribution = AttributionEngine(blueprint.attribution, self.logger)
        self.surrogate = SurrogateEngine(blueprint.surrogate, predictor, self.logger)
        self.narrative = NarrativeGenerator(
            blueprint.narrative, context_analyzer or RuleContextAnalyzer(), self.logger
        )
        self.visualizer = VisualizationBuilder(blueprint.visualization)

        # 2. Runtime state
        self.cache = ExplanationCache(
            blueprint.cache.ttl_ms, blueprint.cache.max_entries, clock=clock
        )
        self.guard = InFlightGuard()
        self.metrics = MetricsTracker(
            blueprint.metrics.window_size, blueprint.metrics.max_error_rate
        )
        self.events = EventDispatcher(event_sink, blueprint.events.queue_size, self.logger)
        self._slots = asyncio.Semaphore(blueprint.concurrency.max_in_flight)

    @classmethod
    def from_settings(
        cls,
        predictor: Predictor,
        provider: DomainKnowledgeProvider | None = None,
        event_sink: EventSink | None = None,
        logger=None,
    ) -> "ExplanationEngine":
        """Builds an engine from the blueprint (and, unless given, the knowledge pack) named in settings."""
        blueprint = ExplainerBlueprint.from_yaml(settings.paths.blueprint_path)
        if provider is None:
            provider = DomainKnowledgeProvider.from_yaml(settings.paths.knowledge_path, logger)
        return cls(blueprint, provider, predictor, event_sink=event_sink, logger=logger)

    # ----------------------------------------------------------------------------------
    # PUBLIC API
    # ----------------------------------------------------------------------------------

    async def explain(
        self,
        prediction_input: PredictionInput,
        predicted_value: float,
        timeout_ms: float | None = None,
    ) -> ExplanationRecord:
        # 1. Switched off: no side effects at all
        if not self.enabled:
            raise EngineDisabledError()
        if not math.isfinite(predicted_value):
            raise ValueError(f"Predicted value must be finite, got {predicted_value}")

        started = time.perf_counter()
        timeout_ms = timeout_ms or self.blueprint.concurrency.timeout_ms
        fingerprint = fingerprint_input(prediction_input, predicted_value)

        # 2. Fresh cache entry
        if self.blueprint.cache.enabled:
            cached = self.cache.get(fingerprint)
            if cached is not None:
                self.metrics.record(_elapsed_ms(started), success=True, cache_hit=True)
                self.logger.debug(f"Cache hit for {prediction_input.entity_id} ({fingerprint[:12]})")
                return cached.as_cache_hit()

        # 3. Same request already computing
        pending = self.guard.claim(fingerprint)
        if pending is not None:
            return await self._join(pending, fingerprint, started, timeout_ms)

        # 4. Owned computation
        explanation_id = f"exp_{uuid.uuid4().hex[:16]}"
        prediction_id = (
            prediction_input.metadata.prediction_id
            or f"{prediction_input.metadata.model_id}:{prediction_input.entity_id}"
        )
        self.events.publish(
            LifecycleEvent(
                type=LifecycleEventType.STARTED,
                explanation_id=explanation_id,
                prediction_id=prediction_id,
            )
        )
        generation = self.knowledge.generation

        record: ExplanationRecord | None = None
        error: BaseException | None = None
        try:
            record = await asyncio.wait_for(
                self._compute(
                    prediction_input,
                    predicted_value,
                    fingerprint,
                    explanation_id,
                    prediction_id,
                    started,
                ),
                timeout=timeout_ms / 1000.0,
            )
        except asyncio.TimeoutError:
            error = ExplanationTimeoutError(timeout_ms)
            self._record_failure(explanation_id, prediction_id, started, error)
            raise error from None
        except ExplanationError as e:
            error = e
            self._record_failure(explanation_id, prediction_id, started, e)
            raise
        except asyncio.CancelledError as e:
            error = ComputationError("explain", e)
            self._record_failure(explanation_id, prediction_id, started, error)
            raise
        except Exception as e:
            error = ComputationError("assemble", e)
            self._record_failure(explanation_id, prediction_id, started, error)
            raise error from e
        finally:
            self.guard.release(fingerprint, record=record, error=error)

        # 5. Success; a record built across a reload is returned but never cached
        if self.knowledge.generation != generation:
            self.logger.debug(f"Knowledge reloaded during {explanation_id}; result not cached")
        elif self.blueprint.cache.enabled:
            self.cache.put(fingerprint, record)
        self.metrics.record(record.performance.computation_ms, success=True)
        self.events.publish(
            LifecycleEvent(
                type=LifecycleEventType.COMPLETED,
                explanation_id=explanation_id,
                prediction_id=prediction_id,
                elapsed_ms=record.performance.computation_ms,
                confidence=record.performance.confidence,
            )
        )
        self.logger.success(
            f"Explained {prediction_input.entity_id} via {record.method.value} "
            f"in {record.performance.computation_ms:.1f} ms"
        )
        return record

    def get_metrics(self) -> MetricsSnapshot:
        return self.metrics.snapshot(in_flight=len(self.guard), cache_size=len(self.cache))

    def clear_cache(self):
        self.cache.clear()
        self.logger.info("Explanation cache cleared.")

    def is_healthy(self) -> bool:
        return self.metrics.is_healthy(self.blueprint.concurrency.timeout_ms)

    def reload_knowledge(self, knowledge: DomainKnowledge):
        """Swaps the domain tables. Cached records were built on the old tables, so drop them."""
        self.knowledge.reload(knowledge)
        self.cache.clear()

    async def aclose(self):
        await self.events.aclose()
        self.logger.info("Explanation engine closed.")

    # ----------------------------------------------------------------------------------
    # INTERNALS
    # ----------------------------------------------------------------------------------

    async def _join(
        self, pending: asyncio.Future, fingerprint: str, started: float, timeout_ms: float
    ) -> ExplanationRecord:
        if self.blueprint.concurrency.dedup_policy == DedupPolicy.FAIL_FAST:
            raise AlreadyInProgressError(fingerprint)

        self.logger.debug(f"Waiting on in-flight explanation {fingerprint[:12]}")
        try:
            # Shielded: a waiter giving up must not cancel the owner
            record = await asyncio.wait_for(asyncio.shield(pending), timeout=timeout_ms / 1000.0)
        except asyncio.TimeoutError:
            raise ExplanationTimeoutError(timeout_ms) from None

        self.metrics.record(_elapsed_ms(started), success=True, cache_hit=True)
        return record.as_cache_hit()

    async def _compute(
        self,
        prediction_input: PredictionInput,
        predicted_value: float,
        fingerprint: str,
        explanation_id: str,
        prediction_id: str,
        started: float,
    ) -> ExplanationRecord:
        # One snapshot for the whole computation
        knowledge = self.knowledge.snapshot()

        async with self._slots:
            # 1. Attribution and surrogate side by side
            attribution, surrogate = await self._run_concurrently(
                self._run_attribution(prediction_input, predicted_value, knowledge),
                self._run_surrogate(prediction_input, fingerprint),
            )

            # 2. Narrative
            try:
                narrative = self.narrative.generate(
                    prediction_input, predicted_value, attribution, surrogate, knowledge
                )
            except Exception as e:
                raise ComputationError("narrative", e) from e

            # 3. Charts
            visualizations = []
            if self.blueprint.visualization.enabled:
                try:
                    visualizations = self.visualizer.build(
                        prediction_input, predicted_value, attribution, surrogate, knowledge
                    )
                except Exception as e:
                    raise ComputationError("visualization", e) from e

        return ExplanationRecord(
            explanation_id=explanation_id,
            prediction_id=prediction_id,
            fingerprint=fingerprint,
            method=explanation_method(attribution, surrogate),
            prediction=estimate_prediction(
                predicted_value, prediction_input.history, self.blueprint.prediction_floor
            ),
            attribution=attribution,
            surrogate=surrogate,
            narrative=narrative,
            visualizations=visualizations,
            performance=PerformanceBlock(
                computation_ms=_elapsed_ms(started),
                cache_hit=False,
                confidence=aggregate_confidence(attribution, surrogate),
            ),
        )

    @staticmethod
    async def _run_concurrently(*coros) -> Tuple:
        """gather() that cancels the siblings as soon as one of them fails."""
        tasks = [asyncio.ensure_future(c) for c in coros]
        try:
            return tuple(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def _run_attribution(
        self, prediction_input: PredictionInput, predicted_value: float, knowledge: KnowledgeView
    ) -> AttributionResult | None:
        if not self.blueprint.attribution.enabled:
            return None
        try:
            return await asyncio.to_thread(
                self.attribution.explain, prediction_input, predicted_value, knowledge
            )
        except Exception as e:
            raise ComputationError("attribution", e) from e

    async def _run_surrogate(
        self, prediction_input: PredictionInput, fingerprint: str
    ) -> SurrogateResult | None:
        if not self.blueprint.surrogate.enabled:
            return None
        seed = self.blueprint.surrogate.random_seed
        if seed is None:
            seed = int(fingerprint[:8], 16)
        try:
            return await self.surrogate.explain(prediction_input, seed)
        except Exception as e:
            raise ComputationError("surrogate", e) from e

    def _record_failure(
        self, explanation_id: str, prediction_id: str, started: float, error: BaseException
    ):
        elapsed = _elapsed_ms(started)
        self.metrics.record(elapsed, success=False)
        self.logger.opt(exception=error).error(
            f"Explanation {explanation_id} failed after {elapsed:.1f} ms: {error}"
        )
        self.events.publish(
            LifecycleEvent(
                type=LifecycleEventType.FAILED,
                explanation_id=explanation_id,
                prediction_id=prediction_id,
                elapsed_ms=elapsed,
                error=str(error),
            )
        )
