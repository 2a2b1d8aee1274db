"""
Privacy Shield — Structured Audit Logger
========================================
Records every emitted assessment, protection change and error as
newline-delimited JSON for post-mortem analysis and history display.

Key Features:
  - JSONL format: {"timestamp", "level", "event", "data"} per line
  - Thread-safe (one lock around write + flush)
  - Levels: AUDIT, SYSTEM, WARN, ERROR
  - Doubles as the persistence collaborator (DetectionEventSink)
"""

import json
import logging
import os
import sys
import threading
import time
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, Optional

import numpy as np

from shield_types import DetectionEvent, ProtectionAction, ThreatAssessment

_log = logging.getLogger("ShieldLogger")


class ShieldJSONEncoder(json.JSONEncoder):
    """Handles NumPy scalars and enums for JSON serialization."""
    def default(self, obj):
        if isinstance(obj, np.ndarray):
            return obj.tolist()
        if isinstance(obj, np.floating):
            return float(obj)
        if isinstance(obj, np.integer):
            return int(obj)
        if isinstance(obj, Enum):
            return obj.name
        if isinstance(obj, (set, frozenset, tuple)):
            return list(obj)
        return super().default(obj)


class DetectionEventSink(ABC):
    """Receives completed detection events. The pipeline never depends
    on a sink succeeding; failures are logged and dropped by the caller."""

    @abstractmethod
    def record(self, event: DetectionEvent) -> None:
        pass


class ShieldLogger(DetectionEventSink):
    """
    Audit trail for the privacy shield pipeline.
    Appends one JSON object per line to <log_dir>/shield_audit.jsonl.
    """

    def __init__(self, log_dir: str = "logs", filename: str = "shield_audit.jsonl"):
        self.log_dir = log_dir
        os.makedirs(self.log_dir, exist_ok=True)

        self.log_path = os.path.join(self.log_dir, filename)
        self._file = open(self.log_path, "a", encoding="utf-8")
        self._lock = threading.Lock()

        self.log({"python": sys.version.split()[0], "platform": sys.platform,
                  "pid": os.getpid()}, level="SYSTEM", event="system_startup")

    @property
    def closed(self) -> bool:
        return self._file.closed

    def log(self, data: Dict[str, Any], level: str = "AUDIT", event: Optional[str] = None):
        """Append log entry. Writes after close() are dropped."""
        entry = {
            "timestamp": time.time(),
            "level": level,
            "event": event or data.get("event", "unknown"),
            "data": data
        }
        line = json.dumps(entry, cls=ShieldJSONEncoder) + "\n"

        with self._lock:
            if self._file.closed:
                return
            self._file.write(line)
            self._file.flush()

    def log_assessment(self, assessment: ThreatAssessment):
        """Helper for emitted assessments."""
        self.log(assessment.to_dict(), level="AUDIT", event="assessment_emitted")

    def log_action(self, previous: ProtectionAction, current: ProtectionAction,
                   assessment: Optional[ThreatAssessment] = None):
        """Helper for protection state changes."""
        self.log({
            "from": previous.name,
            "to": current.name,
            "threat_score": assessment.threat_score if assessment else None,
            "reasons": list(assessment.trigger_reasons) if assessment else [],
        }, level="AUDIT", event="protection_changed")

    def record(self, event: DetectionEvent) -> None:
        self.log(event.to_dict(), level="AUDIT", event="detection_event")

    def warn(self, message: str, context: Optional[Dict] = None):
        """Warning that does not stop the pipeline (e.g. a sensor went quiet)."""
        _log.warning(message)
        self.log({"message": message, "context": context}, level="WARN", event="system_warning")

    def error(self, message: str, exception: Optional[Exception] = None):
        """Absorbed failure, with the exception repr for later triage."""
        _log.error(message)
        err_details = repr(exception) if exception else None
        self.log({"message": message, "exception": err_details}, level="ERROR", event="system_error")

    def close(self):
        """Write the shutdown record and release the file. Idempotent."""
        self.log({"message": "Logger shutting down"}, level="SYSTEM", event="system_shutdown")
        with self._lock:
            if not self._file.closed:
                self._file.close()


# Process-wide audit trail
_logger = None


def get_logger(log_dir: str = "logs") -> ShieldLogger:
    global _logger
    if _logger is None or _logger.closed:
        _logger = ShieldLogger(log_dir)
    return _logger
