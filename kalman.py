from __future__ import annotations

from dataclasses import dataclass
import logging
import math
from typing import Optional, Tuple
import warnings

import numpy as np

import linalg
from config import KalmanConfig
from errors import ConfigurationError, NumericalDegeneracyWarning


@dataclass(frozen=True)
class UpdateResult:
    x: np.ndarray
    P: np.ndarray
    innovation: float
    gain: np.ndarray
    innovation_variance: float
    degenerate: bool = False
    covariance_reset: bool = False


class LocalLinearTrendKalman:
    """Two-state [level, trend] Kalman filter with a scalar observation.

    The model holds only configuration. State (x, P) is passed in and
    returned by every call, so one instance can serve any number of metrics.
    """

    def __init__(self, config: KalmanConfig):
        self.config = config
        self.F = linalg.as_matrix(config.transition, (2, 2), "F")
        self.H = linalg.as_matrix(config.observation, (1, 2), "H")
        self.Q = linalg.as_matrix(config.process_noise, (2, 2), "Q")
        self.R = self.measurement_noise(config.measurement_noise)
        self.P0 = linalg.as_matrix(config.initial_covariance, (2, 2), "P0")
        for name, m in (("Q", self.Q), ("P0", self.P0)):
            if not np.allclose(m, m.T) or np.any(np.diag(m) < 0):
                raise ConfigurationError(
                    f"{name} must be symmetric with a non-negative diagonal",
                    matrix=name,
                    values=m.tolist(),
                )
        if not 0.0 < config.default_confidence <= 1.0:
            raise ConfigurationError("default_confidence must be in (0, 1]",
                                     default_confidence=config.default_confidence)
        self.eps = config.singular_eps

    @staticmethod
    def measurement_noise(R) -> np.ndarray:
        """Coerce R to a non-negative 1x1 matrix; a bare number is accepted."""
        if np.ndim(R) == 0:
            R = [[R]]
        R = linalg.as_matrix(R, (1, 1), "R")
        if R[0, 0] < 0:
            raise ConfigurationError("R must be non-negative", matrix="R", values=R.tolist())
        return R

    def initial_state(self, level: Optional[float] = None) -> Tuple[np.ndarray, np.ndarray]:
        start = self.config.initial_level if level is None else float(level)
        return np.array([start, 0.0]), self.P0.copy()

    def predict(self, x: np.ndarray, P: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        x_pred = linalg.multiply(self.F, x)
        P_pred = linalg.add(linalg.multiply(linalg.multiply(self.F, P), linalg.transpose(self.F)), self.Q)
        return x_pred, P_pred

    def update(
        self,
        z: float,
        x_pred: np.ndarray,
        P_pred: np.ndarray,
        R: Optional[np.ndarray] = None,
        confidence: float = 1.0,
    ) -> UpdateResult:
        R = self.R if R is None else self.measurement_noise(R)
        innovation = float(z - linalg.multiply(self.H, x_pred)[0])

        # Less trusted sources get a proportionally wider measurement noise
        R_eff = R / confidence
        Ht = linalg.transpose(self.H)
        S = float(linalg.add(linalg.multiply(linalg.multiply(self.H, P_pred), Ht), R_eff)[0, 0])
        S_inv = linalg.safe_inverse(S, self.eps)

        if S_inv is None:
            warnings.warn(
                NumericalDegeneracyWarning(f"Innovation variance {S!r} is near zero; observation ignored", S),
                stacklevel=2,
            )
            return UpdateResult(x_pred.copy(), P_pred.copy(), innovation, np.zeros(2), S, degenerate=True)

        K = (linalg.multiply(P_pred, Ht) * S_inv)[:, 0]
        x_est = x_pred + K * innovation
        KH = np.outer(K, self.H[0])
        P_est = linalg.multiply(linalg.subtract(linalg.identity(2), KH), P_pred)
        P_est, reset = self.sanitize_covariance(P_est)
        return UpdateResult(x_est, P_est, innovation, K, S, covariance_reset=reset)

    def sanitize_covariance(self, P: np.ndarray) -> Tuple[np.ndarray, bool]:
        P = linalg.symmetrize(P)
        if linalg.is_valid_covariance(P):
            return P, False
        logging.warning(f"Covariance drifted to {P.tolist()}; resetting to the wide prior")
        return self.P0.copy(), True


def confidence_intervals(x: np.ndarray, P: np.ndarray, z_score: float = 1.96) -> Tuple[Tuple[float, float], Tuple[float, float]]:
    std = math.sqrt(max(float(P[0, 0]), 0.0))
    level = float(x[0])
    return (level - z_score * std, level + z_score * std), (level - std, level + std)


def signal_to_noise_ratio(x: np.ndarray, P: np.ndarray, ceiling: float = 10.0) -> float:
    noise_variance = float(P[0, 0])
    if noise_variance <= 0:
        return ceiling
    return math.sqrt(float(x[0]) ** 2 / noise_variance)


def data_quality_score(snr: float, ceiling: float = 10.0) -> float:
    return min(1.0, max(0.0, snr / ceiling))
