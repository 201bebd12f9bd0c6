from __future__ import annotations

from dataclasses import dataclass, field
from typing import Tuple

from errors import ConfigurationError

Matrix = Tuple[Tuple[float, ...], ...]


@dataclass(frozen=True)
class KalmanConfig:
    # Local linear trend: state is [level, trend]
    transition: Matrix = ((1.0, 1.0), (0.0, 1.0))
    observation: Matrix = ((1.0, 0.0),)
    process_noise: Matrix = ((100.0, 0.0), (0.0, 10.0))
    measurement_noise: Matrix = ((1000.0,),)
    # Wide prior used for new metrics and for covariance resets
    initial_covariance: Matrix = ((10000.0, 0.0), (0.0, 100.0))
    initial_level: float = 100000.0
    default_confidence: float = 0.8
    singular_eps: float = 1e-10


@dataclass(frozen=True)
class AnomalyConfig:
    outlier_sigma: float = 2.5
    severe_sigma: float = 4.0

    def validate(self) -> None:
        if not 0.0 < self.outlier_sigma < self.severe_sigma:
            raise ConfigurationError(
                f"Anomaly thresholds must satisfy 0 < outlier < severe, got {self.outlier_sigma}, {self.severe_sigma}",
                outlier_sigma=self.outlier_sigma,
                severe_sigma=self.severe_sigma,
            )


@dataclass(frozen=True)
class ForecastConfig:
    default_horizon: int = 30
    z_score: float = 1.96
    confidence_decay: float = 0.02
    confidence_floor: float = 0.5
    # Only the first days of each forecast run are persisted
    persisted_days: int = 7

    def validate(self) -> None:
        if self.default_horizon < 0 or self.persisted_days < 0:
            raise ConfigurationError("Forecast horizons must be non-negative",
                                     default_horizon=self.default_horizon,
                                     persisted_days=self.persisted_days)
        if self.confidence_decay < 0 or not 0.0 <= self.confidence_floor <= 1.0:
            raise ConfigurationError("Forecast confidence decay must be >= 0 and floor within [0, 1]",
                                     confidence_decay=self.confidence_decay,
                                     confidence_floor=self.confidence_floor)


@dataclass(frozen=True)
class CalibrationConfig:
    min_estimates: int = 10
    window: int = 50
    high_variance_ratio: float = 3.0
    low_variance_ratio: float = 0.1
    bias_sign_fraction: float = 0.9
    quality_samples: int = 5

    def validate(self) -> None:
        if self.min_estimates < 1 or self.window < self.min_estimates:
            raise ConfigurationError("Calibration window must hold at least min_estimates",
                                     min_estimates=self.min_estimates, window=self.window)
        if not 0.0 <= self.low_variance_ratio < self.high_variance_ratio:
            raise ConfigurationError("Calibration variance ratios must satisfy 0 <= low < high",
                                     low_variance_ratio=self.low_variance_ratio,
                                     high_variance_ratio=self.high_variance_ratio)


@dataclass(frozen=True)
class ServiceConfig:
    max_retries: int = 3
    recent_estimates: int = 20
    recent_forecasts: int = 30
    recent_anomalies: int = 10
    recent_insights: int = 5
    snr_ceiling: float = 10.0


@dataclass(frozen=True)
class Config:
    kalman: KalmanConfig = field(default_factory=KalmanConfig)
    anomaly: AnomalyConfig = field(default_factory=AnomalyConfig)
    forecast: ForecastConfig = field(default_factory=ForecastConfig)
    calibration: CalibrationConfig = field(default_factory=CalibrationConfig)
    service: ServiceConfig = field(default_factory=ServiceConfig)
    logging_level: str = "INFO"

    def validate(self) -> None:
        # Matrix checks live with the estimator, which builds the arrays
        self.anomaly.validate()
        self.forecast.validate()
        self.calibration.validate()
        if self.service.max_retries < 0:
            raise ConfigurationError("max_retries must be >= 0", max_retries=self.service.max_retries)


def get_default_config() -> Config:
    return Config()
