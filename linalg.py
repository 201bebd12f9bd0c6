from __future__ import annotations

from typing import Optional, Sequence, Tuple
import numpy as np

from errors import ConfigurationError

SINGULAR_EPS = 1e-10


def as_matrix(values: Sequence, shape: Tuple[int, ...], name: str) -> np.ndarray:
    try:
        arr = np.array(values, dtype=float)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"{name} is not numeric: {e}", matrix=name) from e
    if arr.shape != tuple(shape):
        raise ConfigurationError(
            f"{name} must have shape {tuple(shape)}, got {arr.shape}",
            matrix=name,
            expected_shape=tuple(shape),
            actual_shape=arr.shape,
        )
    if not np.all(np.isfinite(arr)):
        raise ConfigurationError(f"{name} contains non-finite entries", matrix=name, values=arr.tolist())
    return arr


def _check(cond: bool, op: str, a: np.ndarray, b: np.ndarray) -> None:
    if not cond:
        raise ConfigurationError(
            f"Cannot {op} shapes {a.shape} and {b.shape}",
            operation=op,
            left_shape=a.shape,
            right_shape=b.shape,
        )


def multiply(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    # 1-D operands act as column vectors on the right
    _check(a.shape[-1] == b.shape[0], "multiply", a, b)
    return a @ b


def transpose(a: np.ndarray) -> np.ndarray:
    return a.T.copy()


def add(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    _check(a.shape == b.shape, "add", a, b)
    return a + b


def subtract(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    _check(a.shape == b.shape, "subtract", a, b)
    return a - b


def identity(n: int = 2) -> np.ndarray:
    return np.eye(n)


def safe_inverse(value: float, eps: float = SINGULAR_EPS) -> Optional[float]:
    """Reciprocal of a 1x1 quantity, or None when it is too close to zero."""
    if not np.isfinite(value) or abs(value) < eps:
        return None
    return 1.0 / value


def symmetrize(P: np.ndarray) -> np.ndarray:
    return (P + P.T) / 2.0


def is_valid_covariance(P: np.ndarray) -> bool:
    return bool(np.all(np.isfinite(P)) and np.all(np.diag(P) >= 0.0))
