import unittest
import sys
import os
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

import numpy as np

import linalg
from errors import ConfigurationError


class TestLinalg(unittest.TestCase):
    def test_multiply_matrix_and_vector(self):
        F = np.array([[1.0, 1.0], [0.0, 1.0]])
        np.testing.assert_array_equal(linalg.multiply(F, np.array([3.0, 2.0])), [5.0, 2.0])
        np.testing.assert_array_equal(linalg.multiply(F, linalg.transpose(F)), [[2.0, 1.0], [1.0, 1.0]])

    def test_shape_mismatch(self):
        with self.assertRaises(ConfigurationError) as ctx:
            linalg.multiply(np.ones((1, 2)), np.ones((3, 1)))
        self.assertEqual(ctx.exception.details["left_shape"], (1, 2))
        with self.assertRaises(ConfigurationError):
            linalg.add(np.ones((2, 2)), np.ones((1, 1)))
        with self.assertRaises(ConfigurationError):
            linalg.subtract(np.ones((2, 1)), np.ones((2, 2)))

    def test_safe_inverse(self):
        self.assertEqual(linalg.safe_inverse(4.0), 0.25)
        self.assertIsNone(linalg.safe_inverse(1e-12))
        self.assertIsNone(linalg.safe_inverse(0.0))
        self.assertIsNone(linalg.safe_inverse(float("nan")))

    def test_as_matrix(self):
        m = linalg.as_matrix(((1, 2), (3, 4)), (2, 2), "A")
        self.assertEqual(m.dtype, np.float64)
        with self.assertRaises(ConfigurationError):
            linalg.as_matrix(((1.0, float("inf")), (0.0, 1.0)), (2, 2), "A")
        with self.assertRaises(ConfigurationError):
            linalg.as_matrix((1.0, 2.0), (1, 2), "H")

    def test_covariance_helpers(self):
        P = linalg.symmetrize(np.array([[1.0, 2.0], [4.0, 1.0]]))
        np.testing.assert_array_equal(P, [[1.0, 3.0], [3.0, 1.0]])
        self.assertTrue(linalg.is_valid_covariance(P))
        self.assertFalse(linalg.is_valid_covariance(np.array([[-1.0, 0.0], [0.0, 1.0]])))
        self.assertFalse(linalg.is_valid_covariance(np.array([[np.nan, 0.0], [0.0, 1.0]])))


if __name__ == '__main__':
    unittest.main()
