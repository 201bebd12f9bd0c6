from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field, replace
import os
from pathlib import Path
import logging
import threading
import time
from typing import Any, Dict, Iterator, List, Optional

import yaml

from errors import PersistenceConflictError
from records import Anomaly, Estimate, Forecast, Insight, MetricKey, MetricState, Observation

STORE_VERSION = "1.0"


@dataclass(frozen=True)
class StoredState:
    state: MetricState
    version: int


@dataclass
class CommitBatch:
    state: MetricState
    observations: List[Observation] = field(default_factory=list)
    estimate: Optional[Estimate] = None
    forecasts: List[Forecast] = field(default_factory=list)
    anomalies: List[Anomaly] = field(default_factory=list)


class StateStore:
    """Record store for per-(user, metric) filter state and its history.

    `commit` is an optimistic compare-and-set: it applies the whole batch only
    if the stored version still equals `expected_version` (0 for a key that
    has never been written) and returns the new version. Otherwise it raises
    PersistenceConflictError and writes nothing.
    """

    def load_state(self, key: MetricKey) -> Optional[StoredState]:
        raise NotImplementedError

    def commit(self, key: MetricKey, expected_version: int, batch: CommitBatch) -> int:
        raise NotImplementedError

    def recent_estimates(self, key: MetricKey, limit: int) -> List[Estimate]:
        """Newest first."""
        raise NotImplementedError

    def recent_forecasts(self, key: MetricKey, limit: int) -> List[Forecast]:
        """Ordered by forecast date."""
        raise NotImplementedError

    def recent_anomalies(self, key: MetricKey, limit: int) -> List[Anomaly]:
        """Newest first."""
        raise NotImplementedError

    def add_insight(self, key: MetricKey, insight: Insight) -> None:
        """Attach commentary to a key without changing its version."""
        raise NotImplementedError

    def recent_insights(self, key: MetricKey, limit: int) -> List[Insight]:
        """Newest first."""
        raise NotImplementedError

    def observations(self, key: MetricKey) -> List[Observation]:
        raise NotImplementedError


@dataclass
class _Entry:
    state: Optional[MetricState] = None
    version: int = 0
    observations: List[Observation] = field(default_factory=list)
    estimates: List[Estimate] = field(default_factory=list)
    forecasts: List[Forecast] = field(default_factory=list)
    anomalies: List[Anomaly] = field(default_factory=list)
    insights: List[Insight] = field(default_factory=list)


class InMemoryStateStore(StateStore):
    def __init__(self):
        self._entries: Dict[MetricKey, _Entry] = {}
        self._lock = threading.Lock()

    def _entry(self, key: MetricKey) -> Optional[_Entry]:
        return self._entries.get(key)

    def load_state(self, key: MetricKey) -> Optional[StoredState]:
        with self._lock:
            entry = self._entry(key)
            if entry is None or entry.state is None:
                return None
            return StoredState(entry.state, entry.version)

    def commit(self, key: MetricKey, expected_version: int, batch: CommitBatch) -> int:
        with self._lock:
            return self._commit(key, expected_version, batch)

    def _commit(self, key: MetricKey, expected_version: int, batch: CommitBatch) -> int:
        entry = self._entries.get(key) or _Entry()
        if entry.version != expected_version:
            raise PersistenceConflictError(
                f"State for {key} is at version {entry.version}, expected {expected_version}",
                key=str(key),
                expected_version=expected_version,
                actual_version=entry.version,
            )
        updated = _Entry(
            state=batch.state,
            version=entry.version + 1,
            observations=entry.observations + list(batch.observations),
            estimates=entry.estimates + ([batch.estimate] if batch.estimate else []),
            # Each run regenerates the whole curve, so the newest set replaces the old one
            forecasts=list(batch.forecasts) or entry.forecasts,
            anomalies=entry.anomalies + list(batch.anomalies),
            insights=entry.insights,
        )
        self._swap(key, updated)
        return updated.version

    def add_insight(self, key: MetricKey, insight: Insight) -> None:
        with self._lock:
            self._add_insight(key, insight)

    def _add_insight(self, key: MetricKey, insight: Insight) -> None:
        entry = self._entries.get(key) or _Entry()
        self._swap(key, replace(entry, insights=entry.insights + [insight]))

    def _swap(self, key: MetricKey, entry: _Entry) -> None:
        entries = dict(self._entries)
        entries[key] = entry
        self._write(entries)
        self._entries = entries

    def _write(self, entries: Dict[MetricKey, _Entry]) -> None:
        pass

    def recent_estimates(self, key: MetricKey, limit: int) -> List[Estimate]:
        with self._lock:
            entry = self._entry(key)
            return list(reversed(entry.estimates))[:limit] if entry else []

    def recent_forecasts(self, key: MetricKey, limit: int) -> List[Forecast]:
        with self._lock:
            entry = self._entry(key)
            if not entry:
                return []
            return sorted(entry.forecasts, key=lambda f: f.forecast_date)[:limit]

    def recent_anomalies(self, key: MetricKey, limit: int) -> List[Anomaly]:
        with self._lock:
            entry = self._entry(key)
            return list(reversed(entry.anomalies))[:limit] if entry else []

    def recent_insights(self, key: MetricKey, limit: int) -> List[Insight]:
        with self._lock:
            entry = self._entry(key)
            return list(reversed(entry.insights))[:limit] if entry else []

    def observations(self, key: MetricKey) -> List[Observation]:
        with self._lock:
            entry = self._entry(key)
            return list(entry.observations) if entry else []


class YamlStateStore(InMemoryStateStore):
    """Single-file store for command-line use.

    Several processes may share one file. Every read goes to disk, and a
    commit holds `<path>.lock` while it re-reads the file, checks the version
    and rewrites it, so only the committed key changes. A lock file left by a
    killed process has to be removed by hand.
    """

    def __init__(self, path: str = "state.yaml", lock_timeout: float = 5.0):
        super().__init__()
        self.path = Path(path)
        self.lock_path = self.path.with_suffix(self.path.suffix + ".lock")
        self.lock_timeout = lock_timeout
        self.load()

    def load(self) -> None:
        self._entries = self._read()

    def _read(self) -> Dict[MetricKey, _Entry]:
        if not self.path.exists():
            return {}
        with open(self.path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if data.get("version") != STORE_VERSION:
            logging.warning(f"Ignoring state file {self.path} with unknown version {data.get('version')!r}")
            return {}
        entries = {}
        for item in data.get("metrics", []):
            key = MetricKey(item["user_id"], item["metric_name"])
            entries[key] = _Entry(
                state=MetricState.from_record(item["state"]) if item.get("state") else None,
                version=int(item["version"]),
                observations=[Observation.from_record(r) for r in item.get("observations", [])],
                estimates=[Estimate.from_record(r) for r in item.get("estimates", [])],
                forecasts=[Forecast.from_record(r) for r in item.get("forecasts", [])],
                anomalies=[Anomaly.from_record(r) for r in item.get("anomalies", [])],
                insights=[Insight.from_record(r) for r in item.get("insights", [])],
            )
        return entries

    def _entry(self, key: MetricKey) -> Optional[_Entry]:
        self.load()
        return self._entries.get(key)

    @contextmanager
    def _file_lock(self) -> Iterator[None]:
        deadline = time.monotonic() + self.lock_timeout
        while True:
            try:
                fd = os.open(self.lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
                break
            except FileExistsError:
                if time.monotonic() >= deadline:
                    raise PersistenceConflictError(
                        f"Timed out after {self.lock_timeout}s waiting for {self.lock_path}",
                        lock_path=str(self.lock_path),
                    )
                time.sleep(0.01)
        try:
            yield
        finally:
            os.close(fd)
            os.unlink(self.lock_path)

    def commit(self, key: MetricKey, expected_version: int, batch: CommitBatch) -> int:
        with self._lock, self._file_lock():
            self.load()
            return self._commit(key, expected_version, batch)

    def add_insight(self, key: MetricKey, insight: Insight) -> None:
        with self._lock, self._file_lock():
            self.load()
            self._add_insight(key, insight)

    def _write(self, entries: Dict[MetricKey, _Entry]) -> None:
        # Runs before the new entries become visible, so a failed write changes nothing
        metrics: List[Dict[str, Any]] = []
        for key, entry in entries.items():
            metrics.append({
                "user_id": key.user_id,
                "metric_name": key.metric_name,
                "version": entry.version,
                "state": entry.state.to_record() if entry.state else None,
                "observations": [o.to_record() for o in entry.observations],
                "estimates": [e.to_record() for e in entry.estimates],
                "forecasts": [f.to_record() for f in entry.forecasts],
                "anomalies": [a.to_record() for a in entry.anomalies],
                "insights": [i.to_record() for i in entry.insights],
            })
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            yaml.dump({"version": STORE_VERSION, "metrics": metrics}, f, indent=2, Dumper=yaml.SafeDumper)
        tmp.replace(self.path)
