import unittest
import sys
import os
from datetime import datetime, timezone
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from calibration import CalibrationAnalyzer
from config import CalibrationConfig
from errors import InsufficientDataError
from records import Estimate, TuningGuidance

T0 = datetime(2024, 3, 1, tzinfo=timezone.utc)


def make_estimates(innovations, quality=0.5):
    return [
        Estimate(100.0, 0.0, (90.0, 110.0), (95.0, 105.0), inn, 0.5, 5.0, quality, T0)
        for inn in innovations
    ]


class TestCalibrationAnalyzer(unittest.TestCase):
    def setUp(self):
        self.analyzer = CalibrationAnalyzer(CalibrationConfig(), measurement_noise=1000.0)

    def test_nine_estimates_is_not_enough(self):
        with self.assertRaises(InsufficientDataError) as ctx:
            self.analyzer.analyze(make_estimates([1.0] * 9), key="u/revenue")
        self.assertEqual(ctx.exception.details["required"], 10)
        self.assertEqual(ctx.exception.details["available"], 9)

    def test_ten_estimates_is_enough(self):
        report = self.analyzer.analyze(make_estimates([3.0, -1.0] * 5), metric_name="revenue")
        self.assertEqual(report.sample_size, 10)
        self.assertGreaterEqual(report.innovation_variance, 0.0)
        self.assertAlmostEqual(report.mean_innovation, 1.0)
        self.assertAlmostEqual(report.innovation_variance, 4.0)
        self.assertEqual(report.metric_name, "revenue")

    def test_high_variance_suggests_more_process_noise(self):
        report = self.analyzer.analyze(make_estimates([100.0, -100.0] * 5))
        self.assertAlmostEqual(report.variance_to_noise_ratio, 10.0)
        self.assertEqual(report.guidance, TuningGuidance.PROCESS_NOISE_TOO_SMALL)

    def test_one_signed_small_innovations_mean_bias(self):
        report = self.analyzer.analyze(make_estimates([5.0] * 12))
        self.assertEqual(report.innovation_variance, 0.0)
        self.assertEqual(report.sign_consistency, 1.0)
        self.assertEqual(report.guidance, TuningGuidance.SYSTEMATIC_BIAS)

    def test_small_balanced_innovations(self):
        report = self.analyzer.analyze(make_estimates([2.0, -2.0] * 5))
        self.assertEqual(report.guidance, TuningGuidance.MEASUREMENT_NOISE_OVERSTATED)

    def test_well_tuned(self):
        report = self.analyzer.analyze(make_estimates([40.0, -40.0] * 5))
        self.assertAlmostEqual(report.innovation_variance, 1600.0)
        self.assertEqual(report.guidance, TuningGuidance.WELL_TUNED)

    def test_window_and_quality_samples(self):
        estimates = make_estimates([1.0] * 60, quality=0.9)
        report = self.analyzer.analyze(estimates)
        self.assertEqual(report.sample_size, 50)
        self.assertEqual(report.recent_quality_scores, (0.9,) * 5)
        self.assertEqual(report.to_dict()["guidance"], "systematic_bias")


if __name__ == '__main__':
    unittest.main()
