from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
import logging
import threading
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

from app.pipeline import EstimationPipeline
from calibration import CalibrationAnalyzer
from config import Config, get_default_config
from errors import AuthorizationError, PersistenceConflictError
from forecast import ForecastGenerator
from kalman import confidence_intervals, data_quality_score, signal_to_noise_ratio
from records import (
    CalibrationReport,
    Estimate,
    EstimateResult,
    Insight,
    MetricKey,
    MetricState,
    Observation,
    StateView,
    utcnow,
)
from state_store import CommitBatch, StateStore

Authorizer = Callable[[str, str], bool]
Narrator = Callable[[str, Dict[str, Any]], Optional[str]]
ObservationLike = Union[Observation, Mapping[str, Any]]


class KeyLocks:
    """One lock per metric key; different keys never contend.

    A lock is dropped once nobody holds or waits for it, so the map only
    holds keys that are in use.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[MetricKey, List[Any]] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, key: MetricKey) -> Iterator[None]:
        with self._guard:
            slot = self._locks.setdefault(key, [threading.Lock(), 0])
            slot[1] += 1
        try:
            with slot[0]:
                yield
        finally:
            with self._guard:
                slot[1] -= 1
                if slot[1] == 0:
                    del self._locks[key]


class EstimationService:
    def __init__(
        self,
        store: StateStore,
        config: Optional[Config] = None,
        authorizer: Optional[Authorizer] = None,
        narrator: Optional[Narrator] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.config = config or get_default_config()
        self.store = store
        self.pipeline = EstimationPipeline(self.config)
        self.forecaster = ForecastGenerator(self.config.forecast, self.pipeline.kalman)
        self.calibrator = CalibrationAnalyzer(self.config.calibration, float(self.pipeline.kalman.R[0, 0]))
        self.authorizer = authorizer
        self.narrator = narrator
        self.clock = clock
        self._locks = KeyLocks()

    def _key(self, user_id: str, metric: str) -> MetricKey:
        if self.authorizer is not None and not self.authorizer(user_id, metric):
            raise AuthorizationError(f"User {user_id!r} may not access metric {metric!r}",
                                     user_id=user_id, metric=metric)
        return MetricKey(user_id, metric)

    def estimate(
        self,
        user_id: str,
        metric: str,
        observations: Sequence[ObservationLike],
        forecast_horizon: Optional[int] = None,
    ) -> EstimateResult:
        key = self._key(user_id, metric)
        horizon = self.config.forecast.default_horizon if forecast_horizon is None else int(forecast_horizon)
        if horizon < 0:
            raise ValueError(f"forecast_horizon must be >= 0, got {horizon}")

        now = self.clock()
        default_confidence = self.config.kalman.default_confidence
        batch = [
            (o if isinstance(o, Observation) else Observation.from_dict(o)).resolved(default_confidence, now)
            for o in observations
        ]

        attempts = self.config.service.max_retries + 1
        committed = False
        with self._locks.hold(key):
            for attempt in range(1, attempts + 1):
                stored = self.store.load_state(key)
                result, commit = self._run(key, stored.state if stored else None, batch, horizon, now)
                if commit is None:
                    result.version = stored.version if stored else 0
                    break
                expected = stored.version if stored else 0
                try:
                    result.version = self.store.commit(key, expected, commit)
                    committed = True
                    break
                except PersistenceConflictError as e:
                    logging.warning(f"Version conflict on {key} (attempt {attempt}/{attempts}): {e}")
                    if attempt == attempts:
                        raise

        logging.info(
            f"Estimated {key}: level={result.estimate.estimated_value:.2f} trend={result.estimate.trend:.4f} "
            f"observations={len(batch)} anomalies={len(result.anomalies)} version={result.version}"
        )
        if self.narrator is not None:
            result.insight = self._narrate(metric, result)
            if result.insight and committed:
                self._keep_insight(key, Insight(result.insight, now))
        return result

    def _run(
        self,
        key: MetricKey,
        prior: Optional[MetricState],
        batch: List[Observation],
        horizon: int,
        now: datetime,
    ) -> Tuple[EstimateResult, Optional[CommitBatch]]:
        kalman = self.pipeline.kalman
        if prior is not None:
            x, P = prior.x, prior.P
            P, _ = kalman.sanitize_covariance(P)
            last_gain = prior.kalman_gain
        else:
            x, P = kalman.initial_state(batch[0].value if batch else None)
            last_gain = 0.0

        outcome = self.pipeline.process(x, P, batch)
        update = outcome.last_update
        gain = float(update.gain[0]) if update is not None else last_gain
        ceiling = self.config.service.snr_ceiling
        snr = signal_to_noise_ratio(outcome.x, outcome.P, ceiling)
        ci95, ci68 = confidence_intervals(outcome.x, outcome.P, self.config.forecast.z_score)

        estimate = Estimate(
            estimated_value=float(outcome.x[0]),
            trend=float(outcome.x[1]),
            ci95=ci95,
            ci68=ci68,
            innovation=update.innovation if update is not None else 0.0,
            kalman_gain=gain,
            signal_to_noise_ratio=snr,
            data_quality_score=data_quality_score(snr, ceiling),
            timestamp=now,
        )
        forecasts = list(self.forecaster.generate(outcome.x, outcome.P, horizon, now.date()))
        state = MetricState.from_arrays(key, outcome.x, outcome.P, gain, snr, now)
        result = EstimateResult(key.metric_name, estimate, forecasts, outcome.anomalies,
                                outcome.degraded, state)
        if not batch:
            # Nothing observed: report from the prior without touching the store
            return result, None
        commit = CommitBatch(
            state=state,
            observations=batch,
            estimate=estimate,
            forecasts=forecasts[: self.config.forecast.persisted_days],
            anomalies=outcome.anomalies,
        )
        return result, commit

    def _narrate(self, metric: str, result: EstimateResult) -> Optional[str]:
        try:
            return self.narrator(metric, result.to_dict())
        except Exception:
            # Commentary is optional; the committed estimate stands without it
            logging.exception(f"Narrator failed for metric {metric!r}")
            return None

    def _keep_insight(self, key: MetricKey, insight: Insight) -> None:
        try:
            self.store.add_insight(key, insight)
        except (OSError, PersistenceConflictError):
            logging.exception(f"Could not store insight for {key}")

    def get_state(self, user_id: str, metric: str) -> StateView:
        key = self._key(user_id, metric)
        svc = self.config.service
        stored = self.store.load_state(key)
        return StateView(
            state=stored.state if stored else None,
            version=stored.version if stored else 0,
            estimates=self.store.recent_estimates(key, svc.recent_estimates),
            forecasts=self.store.recent_forecasts(key, svc.recent_forecasts),
            anomalies=self.store.recent_anomalies(key, svc.recent_anomalies),
            insights=self.store.recent_insights(key, svc.recent_insights),
        )

    def calibrate(self, user_id: str, metric: str) -> CalibrationReport:
        key = self._key(user_id, metric)
        estimates = self.store.recent_estimates(key, self.config.calibration.window)
        return self.calibrator.analyze(estimates, metric_name=metric, key=str(key))
