import unittest
import sys
import os
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from anomaly import AnomalyDetector
from config import AnomalyConfig
from errors import ConfigurationError
from records import AnomalyType, Severity


class TestAnomalyDetector(unittest.TestCase):
    def setUp(self):
        # level variance 100 -> one sigma is 10
        self.detector = AnomalyDetector(AnomalyConfig())

    def test_exactly_at_threshold_is_not_flagged(self):
        self.assertIsNone(self.detector.inspect(25.0, 100.0))
        self.assertIsNone(self.detector.inspect(-25.0, 100.0))

    def test_measurement_outlier(self):
        a = self.detector.inspect(26.0, 100.0, observed_value=126.0, source="crm")
        self.assertEqual(a.anomaly_type, AnomalyType.MEASUREMENT_OUTLIER)
        self.assertEqual(a.severity, Severity.MEDIUM)
        self.assertAlmostEqual(a.std_deviations, 2.6)
        self.assertEqual(a.innovation, 26.0)
        self.assertEqual(a.source, "crm")

    def test_upper_edge_of_medium(self):
        a = self.detector.inspect(40.0, 100.0)
        self.assertEqual(a.anomaly_type, AnomalyType.MEASUREMENT_OUTLIER)

    def test_severe_outlier(self):
        a = self.detector.inspect(-50.0, 100.0)
        self.assertEqual(a.anomaly_type, AnomalyType.SEVERE_OUTLIER)
        self.assertEqual(a.severity, Severity.HIGH)
        self.assertAlmostEqual(a.std_deviations, 5.0)
        self.assertEqual(a.innovation, -50.0)

    def test_zero_variance(self):
        self.assertIsNone(self.detector.inspect(0.0, 0.0))
        self.assertEqual(self.detector.inspect(1.0, 0.0).anomaly_type, AnomalyType.SEVERE_OUTLIER)

    def test_custom_thresholds(self):
        detector = AnomalyDetector(AnomalyConfig(outlier_sigma=1.0, severe_sigma=2.0))
        self.assertEqual(detector.inspect(15.0, 100.0).severity, Severity.MEDIUM)
        self.assertEqual(detector.inspect(21.0, 100.0).severity, Severity.HIGH)

    def test_invalid_thresholds(self):
        with self.assertRaises(ConfigurationError):
            AnomalyDetector(AnomalyConfig(outlier_sigma=4.0, severe_sigma=2.5))


if __name__ == '__main__':
    unittest.main()
