import json
import logging
import os
import threading
from typing import Dict, List, Optional

from policy_qa.config import STORAGE_DIR


logger = logging.getLogger(__name__)

# Bounded so the metrics file cannot grow without limit
_MAX_LATENCY_SAMPLES = 1000

ANSWER_OUTCOMES = ("expert", "expert_with_context", "ai", "none", "failed")


class MetricsTracker:
    """
    Request and answer-outcome counters, persisted as JSON.

    All mutations happen under one lock and are flushed to disk when a path
    is configured.
    """

    def __init__(self, path: Optional[str] = None):

        self._path = path
        self._lock = threading.Lock()

        self._metrics = self._empty()

        self._load()


    @staticmethod
    def _empty() -> Dict:

        return {
            "total_requests": 0,
            "successful_requests": 0,
            "failed_requests": 0,
            "total_latency": 0.0,
            "avg_latency": 0.0,
            "latencies": [],
            "answers": {outcome: 0 for outcome in ANSWER_OUTCOMES},
        }


    def _load(self):

        if not self._path or not os.path.exists(self._path):
            return

        try:

            with open(self._path, "r") as f:
                data = json.load(f)

        except (OSError, ValueError) as e:

            logger.warning(
                "Metrics file unreadable, starting fresh",
                extra={"path": self._path, "error": str(e)},
            )
            return

        merged = self._empty()
        merged.update(data)
        merged["answers"] = {**self._empty()["answers"], **data.get("answers", {})}

        self._metrics = merged


    def _save(self):

        if not self._path:
            return

        directory = os.path.dirname(self._path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        with open(self._path, "w") as f:
            json.dump(self._metrics, f, indent=2)


    def record_success(self, latency: float):

        with self._lock:

            self._metrics["total_requests"] += 1
            self._metrics["successful_requests"] += 1
            self._metrics["total_latency"] += latency
            self._metrics["avg_latency"] = (
                self._metrics["total_latency"] / self._metrics["total_requests"]
            )

            latencies = self._metrics["latencies"]
            latencies.append(latency)
            del latencies[:-_MAX_LATENCY_SAMPLES]

            self._save()


    def record_failure(self):

        with self._lock:

            self._metrics["total_requests"] += 1
            self._metrics["failed_requests"] += 1

            self._save()


    def record_answer(self, outcome: str):

        if outcome not in ANSWER_OUTCOMES:
            raise ValueError(f"Unknown answer outcome: {outcome}")

        with self._lock:

            self._metrics["answers"][outcome] += 1

            self._save()


    def get_metrics(self) -> Dict:

        with self._lock:
            snapshot = json.loads(json.dumps(self._metrics))

        snapshot["p95_latency"] = self.get_latency_percentile(95)

        return snapshot


    def get_latency_percentile(self, percentile: float) -> float:

        latencies: List[float] = list(self._metrics.get("latencies", []))

        if not latencies:
            return 0.0

        sorted_latencies = sorted(latencies)

        index = int(len(sorted_latencies) * percentile / 100)
        index = min(index, len(sorted_latencies) - 1)

        return sorted_latencies[index]


metrics_tracker = MetricsTracker(os.path.join(STORAGE_DIR, "metrics.json"))
