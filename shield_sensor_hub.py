"""
Privacy Shield — Sensor Hub
===========================
Fan-in point for the four independent sensor collaborators.

Each collaborator thread calls `publish(reading)`; the hub keeps only the
latest reading per kind and bumps a version counter. The assessment
pipeline waits on the version and snapshots all slots together
(combine-latest). A sensor that never publishes simply stays absent.
"""

from __future__ import annotations

import logging
import threading
from typing import Dict, Optional, Tuple

from shield_types import SensorKind, SensorReading, SensorSnapshot, now_ms

_log = logging.getLogger("SensorHub")


class SensorHub:
    """Thread-safe latest-value store, one slot per SensorKind."""

    def __init__(self, clock=now_ms):
        self._clock = clock
        self._cond = threading.Condition()
        self._latest: Dict[SensorKind, SensorReading] = {}
        self._version = 0

    @property
    def version(self) -> int:
        with self._cond:
            return self._version

    def publish(self, reading: SensorReading) -> int:
        """Replace the slot for the reading's kind. Returns the new version."""
        with self._cond:
            self._latest[reading.kind] = reading
            self._version += 1
            self._cond.notify_all()
            _log.debug("%s reading published (v%d)", reading.kind.value, self._version)
            return self._version

    def clear(self, kind: Optional[SensorKind] = None) -> None:
        """Drop one kind's reading (or all) e.g. when its sensor stops."""
        with self._cond:
            if kind is None:
                self._latest.clear()
            else:
                self._latest.pop(kind, None)
            self._version += 1
            self._cond.notify_all()

    def latest(self, kind: SensorKind) -> Optional[SensorReading]:
        with self._cond:
            return self._latest.get(kind)

    def snapshot(self) -> SensorSnapshot:
        with self._cond:
            return self._snapshot_locked()

    def snapshot_with_version(self) -> Tuple[SensorSnapshot, int]:
        with self._cond:
            return self._snapshot_locked(), self._version

    def wait_for_change(self, since_version: int, timeout: Optional[float] = None) -> int:
        """Block until the version moves past `since_version` or timeout.

        Returns the current version (unchanged on timeout).
        """
        with self._cond:
            self._cond.wait_for(lambda: self._version > since_version, timeout=timeout)
            return self._version

    def _snapshot_locked(self) -> SensorSnapshot:
        return SensorSnapshot(
            timestamp=self._clock(),
            **{kind.value: reading for kind, reading in self._latest.items()},
        )
