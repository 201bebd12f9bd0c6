from __future__ import annotations

from typing import Optional, Sequence

import numpy as np

from config import CalibrationConfig
from errors import InsufficientDataError
from records import CalibrationReport, Estimate, TuningGuidance


class CalibrationAnalyzer:
    """Summarizes innovation statistics over a window of past estimates.

    Innovations of a well-tuned filter are zero-mean with a variance close to
    the predicted innovation variance, which is never below R. The guidance
    code compares the observed variance with R and looks for a persistent sign.
    """

    def __init__(self, config: CalibrationConfig, measurement_noise: float):
        config.validate()
        self.config = config
        self.measurement_noise = float(measurement_noise)

    def analyze(self, estimates: Sequence[Estimate], metric_name: str = "",
                key: Optional[str] = None) -> CalibrationReport:
        # estimates are ordered newest first
        if len(estimates) < self.config.min_estimates:
            raise InsufficientDataError(
                f"Need at least {self.config.min_estimates} estimates to calibrate, have {len(estimates)}",
                key=key,
                required=self.config.min_estimates,
                available=len(estimates),
            )
        window = list(estimates[: self.config.window])
        innovations = np.array([e.innovation for e in window], dtype=float)
        mean = float(innovations.mean())
        variance = float(innovations.var())

        if self.measurement_noise > 0:
            ratio = variance / self.measurement_noise
        else:
            ratio = np.inf if variance > 0 else 0.0
        positive = int(np.count_nonzero(innovations > 0))
        negative = int(np.count_nonzero(innovations < 0))
        sign_consistency = max(positive, negative) / len(innovations)

        return CalibrationReport(
            metric_name=metric_name,
            sample_size=len(window),
            mean_innovation=mean,
            innovation_variance=variance,
            variance_to_noise_ratio=float(ratio),
            sign_consistency=sign_consistency,
            recent_quality_scores=tuple(e.data_quality_score for e in window[: self.config.quality_samples]),
            guidance=self.guidance(ratio, sign_consistency),
        )

    def guidance(self, ratio: float, sign_consistency: float) -> TuningGuidance:
        cfg = self.config
        if ratio > cfg.high_variance_ratio:
            return TuningGuidance.PROCESS_NOISE_TOO_SMALL
        if ratio < cfg.low_variance_ratio:
            if sign_consistency >= cfg.bias_sign_fraction:
                return TuningGuidance.SYSTEMATIC_BIAS
            return TuningGuidance.MEASUREMENT_NOISE_OVERSTATED
        return TuningGuidance.WELL_TUNED
