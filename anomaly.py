from __future__ import annotations

from datetime import datetime
import math
from typing import Optional

from config import AnomalyConfig
from records import Anomaly, AnomalyType, Severity


class AnomalyDetector:
    def __init__(self, config: AnomalyConfig):
        config.validate()
        self.config = config

    def normalized_innovation(self, innovation: float, level_variance: float) -> float:
        if level_variance <= 0:
            # No predicted spread: any surprise at all is unbounded
            return math.inf if innovation != 0 else 0.0
        return abs(innovation) / math.sqrt(level_variance)

    def inspect(
        self,
        innovation: float,
        level_variance: float,
        observed_value: Optional[float] = None,
        source: Optional[str] = None,
        timestamp: Optional[datetime] = None,
    ) -> Optional[Anomaly]:
        normalized = self.normalized_innovation(innovation, level_variance)
        if normalized <= self.config.outlier_sigma:
            return None
        if normalized > self.config.severe_sigma:
            kind, severity = AnomalyType.SEVERE_OUTLIER, Severity.HIGH
        else:
            kind, severity = AnomalyType.MEASUREMENT_OUTLIER, Severity.MEDIUM
        return Anomaly(kind, severity, normalized, innovation, observed_value, source, timestamp)
