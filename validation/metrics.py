import threading
from collections import Counter
from typing import Dict

from .face import FaceOutcome


class AnalysisMetrics:
    """
    Counters owned by one pipeline instance and passed to the analyzers that
    update them. Thread-safe; snapshot() returns a plain copy.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._counts: Counter = Counter()

    def incr(self, name: str, amount: int = 1) -> None:
        with self._lock:
            self._counts[name] += amount

    def record_face(self, outcome: FaceOutcome) -> None:
        self.incr("analyzed")
        if outcome.is_unavailable:
            self.incr("unavailable")
            return
        check = outcome.check
        if check.face_detected:
            self.incr("detected")
        if check.fraud_score > 0.7:
            self.incr("fraud_high")
        if check.quality_score < 0.3:
            self.incr("low_quality")

    def snapshot(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._counts)
