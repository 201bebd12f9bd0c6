from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import List, Optional, Sequence

import numpy as np

from anomaly import AnomalyDetector
from config import Config
from kalman import LocalLinearTrendKalman, UpdateResult
from records import Anomaly, DegradedUpdate, Observation


@dataclass
class BatchOutcome:
    x: np.ndarray
    P: np.ndarray
    last_update: Optional[UpdateResult] = None
    anomalies: List[Anomaly] = field(default_factory=list)
    degraded: List[DegradedUpdate] = field(default_factory=list)


class EstimationPipeline:
    def __init__(self, config: Config):
        config.validate()
        self.config = config
        self.kalman = LocalLinearTrendKalman(config.kalman)
        self.detector = AnomalyDetector(config.anomaly)

    def process(self, x: np.ndarray, P: np.ndarray, observations: Sequence[Observation]) -> BatchOutcome:
        # Each posterior is the next prior, so the fold is strictly sequential
        outcome = BatchOutcome(x, P)
        for obs in observations:
            x_pred, P_pred = self.kalman.predict(outcome.x, outcome.P)
            result = self.kalman.update(obs.value, x_pred, P_pred, confidence=obs.confidence)
            if result.degenerate:
                logging.warning(
                    f"Degraded update for source {obs.source!r}: S={result.innovation_variance!r}, gain forced to 0"
                )
                outcome.degraded.append(DegradedUpdate(result.innovation_variance, obs.source, obs.timestamp))

            anomaly = self.detector.inspect(result.innovation, float(P_pred[0, 0]),
                                            obs.value, obs.source, obs.timestamp)
            if anomaly is not None:
                outcome.anomalies.append(anomaly)

            outcome.x, outcome.P, outcome.last_update = result.x, result.P, result
        return outcome
