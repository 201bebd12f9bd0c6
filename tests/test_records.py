import unittest
import sys
import os
from datetime import datetime, timezone
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

import numpy as np
import yaml

from config import KalmanConfig
from errors import ObservationError
from kalman import LocalLinearTrendKalman
from records import MetricKey, MetricState, Observation

T0 = datetime(2024, 3, 1, 12, 30, tzinfo=timezone.utc)


class TestMetricStateRoundTrip(unittest.TestCase):
    def setUp(self):
        self.kf = LocalLinearTrendKalman(KalmanConfig())
        x_pred, P_pred = self.kf.predict(np.array([100000.0, 0.0]), np.diag([10000.0, 100.0]))
        r = self.kf.update(105000.0, x_pred, P_pred)
        self.x, self.P = r.x, r.P
        self.state = MetricState.from_arrays(MetricKey("u1", "revenue"), r.x, r.P, r.gain[0], 3.2, T0)

    def test_record_shape(self):
        rec = self.state.to_record()
        self.assertEqual(set(rec), {"user_id", "metric_name", "state_vector", "covariance_matrix",
                                    "kalman_gain", "signal_to_noise_ratio", "last_updated_at"})
        self.assertEqual(len(rec["state_vector"]), 2)
        self.assertEqual(len(rec["covariance_matrix"]), 2)

    def test_predict_after_reload_is_identical(self):
        expected_x, expected_P = self.kf.predict(self.x, self.P)
        loaded = MetricState.from_record(self.state.to_record())
        x, P = self.kf.predict(loaded.x, loaded.P)
        np.testing.assert_array_equal(x, expected_x)
        np.testing.assert_array_equal(P, expected_P)
        self.assertEqual(loaded, self.state)

    def test_round_trip_through_yaml(self):
        text = yaml.safe_dump(self.state.to_record())
        loaded = MetricState.from_record(yaml.safe_load(text))
        self.assertEqual(loaded.state_vector, self.state.state_vector)
        self.assertEqual(loaded.covariance_matrix, self.state.covariance_matrix)
        self.assertEqual(loaded.last_updated_at, T0)


class TestObservation(unittest.TestCase):
    def test_defaults(self):
        obs = Observation.from_dict({"value": 10}).resolved(0.8, T0)
        self.assertEqual(obs.value, 10.0)
        self.assertEqual(obs.confidence, 0.8)
        self.assertEqual(obs.timestamp, T0)
        self.assertEqual(obs.source, "unknown")

    def test_rejects_bad_confidence(self):
        for c in (0.0, -0.1, 1.5):
            with self.assertRaises(ObservationError):
                Observation(1.0, "s", c).resolved(0.8, T0)

    def test_rejects_bad_values(self):
        with self.assertRaises(ObservationError):
            Observation(float("nan")).resolved(0.8, T0)
        with self.assertRaises(ObservationError):
            Observation("abc").resolved(0.8, T0)
        with self.assertRaises(ObservationError):
            Observation.from_dict({"source": "crm"})

    def test_parses_timestamp(self):
        obs = Observation.from_dict({"value": 1.0, "timestamp": "2024-03-01T12:30:00+00:00"})
        self.assertEqual(obs.timestamp, T0)


if __name__ == '__main__':
    unittest.main()
