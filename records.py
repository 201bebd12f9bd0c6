from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
import math
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from errors import ObservationError

Vector2 = Tuple[float, float]
Matrix2 = Tuple[Tuple[float, float], Tuple[float, float]]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_time(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def _parse_date(value: Any) -> date:
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value))


class AnomalyType(str, Enum):
    MEASUREMENT_OUTLIER = "measurement_outlier"
    SEVERE_OUTLIER = "severe_outlier"


class Severity(str, Enum):
    MEDIUM = "medium"
    HIGH = "high"


class TuningGuidance(str, Enum):
    PROCESS_NOISE_TOO_SMALL = "process_noise_too_small"
    SYSTEMATIC_BIAS = "systematic_bias"
    MEASUREMENT_NOISE_OVERSTATED = "measurement_noise_overstated"
    WELL_TUNED = "well_tuned"


@dataclass(frozen=True)
class MetricKey:
    user_id: str
    metric_name: str

    def __str__(self) -> str:
        return f"{self.user_id}/{self.metric_name}"


@dataclass(frozen=True)
class Observation:
    value: float
    source: str = "unknown"
    confidence: Optional[float] = None
    timestamp: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Observation":
        if "value" not in data:
            raise ObservationError("Observation is missing 'value'", observation=dict(data))
        timestamp = data.get("timestamp")
        return cls(
            value=data["value"],
            source=str(data.get("source") or "unknown"),
            confidence=data.get("confidence"),
            timestamp=_parse_time(timestamp) if timestamp is not None else None,
        )

    def resolved(self, default_confidence: float, now: datetime) -> "Observation":
        """Validate and fill in the confidence and timestamp defaults."""
        try:
            value = float(self.value)
        except (TypeError, ValueError) as e:
            raise ObservationError(f"Observation value is not numeric: {self.value!r}", value=self.value) from e
        if not math.isfinite(value):
            raise ObservationError(f"Observation value must be finite, got {value}", value=value)
        confidence = default_confidence if self.confidence is None else float(self.confidence)
        if not 0.0 < confidence <= 1.0:
            raise ObservationError(
                f"Observation confidence must be in (0, 1], got {confidence}",
                confidence=confidence,
                source=self.source,
            )
        return Observation(value, self.source, confidence, self.timestamp or now)

    def to_record(self) -> Dict[str, Any]:
        return {
            "observed_value": self.value,
            "source": self.source,
            "confidence": self.confidence,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Observation":
        ts = record.get("timestamp")
        return cls(record["observed_value"], record["source"], record.get("confidence"),
                   _parse_time(ts) if ts else None)


@dataclass(frozen=True)
class MetricState:
    user_id: str
    metric_name: str
    state_vector: Vector2
    covariance_matrix: Matrix2
    kalman_gain: float
    signal_to_noise_ratio: float
    last_updated_at: datetime

    @property
    def key(self) -> MetricKey:
        return MetricKey(self.user_id, self.metric_name)

    @property
    def x(self) -> np.ndarray:
        return np.array(self.state_vector, dtype=float)

    @property
    def P(self) -> np.ndarray:
        return np.array(self.covariance_matrix, dtype=float)

    @classmethod
    def from_arrays(cls, key: MetricKey, x: np.ndarray, P: np.ndarray, kalman_gain: float,
                    snr: float, updated_at: datetime) -> "MetricState":
        return cls(
            user_id=key.user_id,
            metric_name=key.metric_name,
            state_vector=(float(x[0]), float(x[1])),
            covariance_matrix=((float(P[0, 0]), float(P[0, 1])), (float(P[1, 0]), float(P[1, 1]))),
            kalman_gain=float(kalman_gain),
            signal_to_noise_ratio=float(snr),
            last_updated_at=updated_at,
        )

    def to_record(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "metric_name": self.metric_name,
            "state_vector": list(self.state_vector),
            "covariance_matrix": [list(row) for row in self.covariance_matrix],
            "kalman_gain": self.kalman_gain,
            "signal_to_noise_ratio": self.signal_to_noise_ratio,
            "last_updated_at": self.last_updated_at.isoformat(),
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "MetricState":
        x = record["state_vector"]
        P = record["covariance_matrix"]
        return cls(
            user_id=record["user_id"],
            metric_name=record["metric_name"],
            state_vector=(float(x[0]), float(x[1])),
            covariance_matrix=((float(P[0][0]), float(P[0][1])), (float(P[1][0]), float(P[1][1]))),
            kalman_gain=float(record.get("kalman_gain") or 0.0),
            signal_to_noise_ratio=float(record.get("signal_to_noise_ratio") or 0.0),
            last_updated_at=_parse_time(record["last_updated_at"]),
        )


@dataclass(frozen=True)
class Estimate:
    estimated_value: float
    trend: float
    ci95: Tuple[float, float]
    ci68: Tuple[float, float]
    innovation: float
    kalman_gain: float
    signal_to_noise_ratio: float
    data_quality_score: float
    timestamp: datetime

    def to_record(self) -> Dict[str, Any]:
        return {
            "estimated_value": self.estimated_value,
            "trend": self.trend,
            "confidence_interval_95_lower": self.ci95[0],
            "confidence_interval_95_upper": self.ci95[1],
            "confidence_interval_68_lower": self.ci68[0],
            "confidence_interval_68_upper": self.ci68[1],
            "innovation": self.innovation,
            "kalman_gain": self.kalman_gain,
            "signal_to_noise_ratio": self.signal_to_noise_ratio,
            "data_quality_score": self.data_quality_score,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_record(cls, r: Dict[str, Any]) -> "Estimate":
        return cls(
            estimated_value=r["estimated_value"],
            trend=r["trend"],
            ci95=(r["confidence_interval_95_lower"], r["confidence_interval_95_upper"]),
            ci68=(r["confidence_interval_68_lower"], r["confidence_interval_68_upper"]),
            innovation=r["innovation"],
            kalman_gain=r["kalman_gain"],
            signal_to_noise_ratio=r["signal_to_noise_ratio"],
            data_quality_score=r["data_quality_score"],
            timestamp=_parse_time(r["timestamp"]),
        )


@dataclass(frozen=True)
class Forecast:
    forecast_date: date
    step: int
    predicted_value: float
    lower_95: float
    upper_95: float
    model_confidence: float
    horizon: int

    def to_record(self) -> Dict[str, Any]:
        return {
            "forecast_date": self.forecast_date.isoformat(),
            "step": self.step,
            "predicted_value": self.predicted_value,
            "confidence_interval_lower": self.lower_95,
            "confidence_interval_upper": self.upper_95,
            "model_confidence": self.model_confidence,
            "forecast_horizon_days": self.horizon,
        }

    @classmethod
    def from_record(cls, r: Dict[str, Any]) -> "Forecast":
        return cls(_parse_date(r["forecast_date"]), r["step"], r["predicted_value"],
                   r["confidence_interval_lower"], r["confidence_interval_upper"],
                   r["model_confidence"], r["forecast_horizon_days"])


@dataclass(frozen=True)
class Anomaly:
    anomaly_type: AnomalyType
    severity: Severity
    std_deviations: float
    innovation: float
    observed_value: Optional[float] = None
    source: Optional[str] = None
    timestamp: Optional[datetime] = None

    def to_record(self) -> Dict[str, Any]:
        return {
            "anomaly_type": self.anomaly_type.value,
            "severity": self.severity.value,
            "std_deviations": self.std_deviations,
            "innovation": self.innovation,
            "observed_value": self.observed_value,
            "source": self.source,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    @classmethod
    def from_record(cls, r: Dict[str, Any]) -> "Anomaly":
        ts = r.get("timestamp")
        return cls(AnomalyType(r["anomaly_type"]), Severity(r["severity"]), r["std_deviations"],
                   r["innovation"], r.get("observed_value"), r.get("source"),
                   _parse_time(ts) if ts else None)


@dataclass(frozen=True)
class Insight:
    text: str
    created_at: datetime

    def to_record(self) -> Dict[str, Any]:
        return {"text": self.text, "created_at": self.created_at.isoformat()}

    @classmethod
    def from_record(cls, r: Dict[str, Any]) -> "Insight":
        return cls(r["text"], _parse_time(r["created_at"]))


@dataclass(frozen=True)
class DegradedUpdate:
    innovation_variance: float
    source: Optional[str] = None
    timestamp: Optional[datetime] = None
    reason: str = "near_singular_innovation_variance"

    def to_record(self) -> Dict[str, Any]:
        return {
            "reason": self.reason,
            "innovation_variance": self.innovation_variance,
            "source": self.source,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }


@dataclass(frozen=True)
class CalibrationReport:
    metric_name: str
    sample_size: int
    mean_innovation: float
    innovation_variance: float
    variance_to_noise_ratio: float
    sign_consistency: float
    recent_quality_scores: Tuple[float, ...]
    guidance: TuningGuidance

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metric": self.metric_name,
            "sample_size": self.sample_size,
            "avg_innovation": self.mean_innovation,
            "innovation_variance": self.innovation_variance,
            "variance_to_noise_ratio": self.variance_to_noise_ratio,
            "sign_consistency": self.sign_consistency,
            "recent_quality_scores": list(self.recent_quality_scores),
            "guidance": self.guidance.value,
        }


@dataclass
class EstimateResult:
    metric_name: str
    estimate: Estimate
    forecasts: List[Forecast] = field(default_factory=list)
    anomalies: List[Anomaly] = field(default_factory=list)
    degraded_updates: List[DegradedUpdate] = field(default_factory=list)
    state: Optional[MetricState] = None
    version: int = 0
    insight: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        e = self.estimate
        return {
            "metric": self.metric_name,
            "timestamp": e.timestamp.isoformat(),
            "estimated_value": e.estimated_value,
            "trend": e.trend,
            "confidence_interval": {
                "lower_95": e.ci95[0],
                "upper_95": e.ci95[1],
                "lower_68": e.ci68[0],
                "upper_68": e.ci68[1],
            },
            "kalman_gain": e.kalman_gain,
            "signal_to_noise_ratio": e.signal_to_noise_ratio,
            "data_quality_score": e.data_quality_score,
            "innovation": e.innovation,
            "forecasts": [f.to_record() for f in self.forecasts],
            "anomalies": [a.to_record() for a in self.anomalies],
            "degraded_updates": [d.to_record() for d in self.degraded_updates],
            "insight": self.insight,
        }


@dataclass
class StateView:
    state: Optional[MetricState]
    version: int
    estimates: List[Estimate] = field(default_factory=list)
    forecasts: List[Forecast] = field(default_factory=list)
    anomalies: List[Anomaly] = field(default_factory=list)
    insights: List[Insight] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.to_record() if self.state else None,
            "version": self.version,
            "estimates": [e.to_record() for e in self.estimates],
            "forecasts": [f.to_record() for f in self.forecasts],
            "anomalies": [a.to_record() for a in self.anomalies],
            "insights": [i.to_record() for i in self.insights],
        }
