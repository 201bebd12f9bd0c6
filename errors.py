from __future__ import annotations

from typing import Any, Dict


class EstimationError(Exception):
    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.details: Dict[str, Any] = details


class ConfigurationError(EstimationError, ValueError):
    pass


class ObservationError(EstimationError, ValueError):
    pass


class InsufficientDataError(EstimationError):
    pass


class PersistenceConflictError(EstimationError):
    pass


class AuthorizationError(EstimationError, PermissionError):
    pass


class NumericalDegeneracyWarning(RuntimeWarning):
    # Recovered locally: the update falls back to a zero gain.
    def __init__(self, message: str, innovation_variance: float):
        super().__init__(message)
        self.innovation_variance = innovation_variance
