from __future__ import annotations

from datetime import date, timedelta
import math
from typing import Iterator

import numpy as np

from config import ForecastConfig
from kalman import LocalLinearTrendKalman
from records import Forecast


class ForecastGenerator:
    def __init__(self, config: ForecastConfig, model: LocalLinearTrendKalman):
        config.validate()
        self.config = config
        self.model = model

    def model_confidence(self, step: int) -> float:
        return max(self.config.confidence_floor, 1.0 - self.config.confidence_decay * step)

    def generate(self, x: np.ndarray, P: np.ndarray, horizon: int, start: date) -> Iterator[Forecast]:
        """Yield one forecast per day for `horizon` days after `start`.

        Predict-only: no measurements are assumed, so the band widens with
        every step.
        """
        if horizon < 0:
            raise ValueError(f"Forecast horizon must be >= 0, got {horizon}")
        z = self.config.z_score
        for step in range(1, horizon + 1):
            x, P = self.model.predict(x, P)
            level = float(x[0])
            std = math.sqrt(max(float(P[0, 0]), 0.0))
            yield Forecast(
                forecast_date=start + timedelta(days=step),
                step=step,
                predicted_value=level,
                lower_95=level - z * std,
                upper_95=level + z * std,
                model_confidence=self.model_confidence(step),
                horizon=horizon,
            )
