"""Durations and outcomes of finished operations.

Kept in memory and, when a file is given, persisted as JSON so the CLI and
the server build up one shared history.
"""

import json
import threading
from collections import Counter, defaultdict
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from pathlib import Path

import numpy as np
from filelock import FileLock, Timeout

from . import get_logger

logger = get_logger("observability.metrics")

# Fewer runs than this make percentiles meaningless
MIN_RUNS_FOR_PERCENTILE = 3


@dataclass
class OperationRecord:
    kind: str
    operation_id: str
    timestamp: str
    duration_ms: float
    success: bool
    error_code: str | None = None


def _summarize(records: list[OperationRecord]) -> dict:
    if not records:
        return {
            "call_count": 0,
            "success_count": 0,
            "failure_count": 0,
            "success_rate": 0.0,
            "avg_duration_ms": 0.0,
            "min_duration_ms": 0.0,
            "max_duration_ms": 0.0,
            "last_run": None,
            "last_status": "unknown",
        }

    durations = np.array([r.duration_ms for r in records])
    successes = sum(r.success for r in records)
    last = max(records, key=lambda r: r.timestamp)
    return {
        "call_count": len(records),
        "success_count": successes,
        "failure_count": len(records) - successes,
        "success_rate": successes / len(records),
        "avg_duration_ms": float(durations.mean()),
        "min_duration_ms": float(durations.min()),
        "max_duration_ms": float(durations.max()),
        "last_run": last.timestamp,
        "last_status": "success" if last.success else "failure",
    }


class OperationMetrics:
    """Thread-safe store of ``OperationRecord``s with aggregate views.

    Example:
        metrics = get_metrics(settings.paths.metrics_file)
        metrics.record_operation("build", "op_1_abc", 5.2, True)
        print(f"{metrics.get_stats('build')['success_rate']:.0%}")
    """

    def __init__(self, metrics_file: Path | None = None, retention_days: int = 30):
        self.metrics_file = Path(metrics_file) if metrics_file else None
        self.retention_days = retention_days
        self._records: list[OperationRecord] = []
        self._lock = threading.RLock()
        self._load()

    def record_operation(
        self,
        kind: str,
        operation_id: str,
        duration: float,
        success: bool,
        error_code: str | None = None,
    ) -> None:
        """Store one finished operation. ``duration`` is in seconds."""
        record = OperationRecord(
            kind=kind,
            operation_id=operation_id,
            timestamp=datetime.now().isoformat(),
            duration_ms=duration * 1000,
            success=success,
            error_code=error_code,
        )
        with self._lock:
            self._records.append(record)
            self._prune()
            self._save()

    def _grouped(self) -> dict[str, list[OperationRecord]]:
        groups = defaultdict(list)
        with self._lock:
            for record in self._records:
                groups[record.kind].append(record)
        return groups

    def get_stats(self, kind: str) -> dict:
        """Counts, success rate, durations and the last outcome for ``kind``."""
        return _summarize(self._grouped().get(kind, []))

    def get_all_stats(self) -> dict[str, dict]:
        return {kind: _summarize(records) for kind, records in self._grouped().items()}

    def get_bottlenecks(self, percentile: float = 90.0) -> list[dict]:
        """Kinds ranked by their ``percentile`` duration, slowest first.

        Kinds with fewer than ``MIN_RUNS_FOR_PERCENTILE`` runs are left out.
        The percentile lands under the ``p{N}_duration_ms`` key.
        """
        key = f"p{int(percentile)}_duration_ms"
        ranked = []
        for kind, records in self._grouped().items():
            if len(records) < MIN_RUNS_FOR_PERCENTILE:
                continue
            durations = np.array([r.duration_ms for r in records])
            ranked.append(
                {
                    "kind": kind,
                    "avg_duration_ms": float(durations.mean()),
                    key: float(np.percentile(durations, percentile)),
                    "call_count": len(records),
                }
            )
        return sorted(ranked, key=lambda entry: entry[key], reverse=True)

    def get_failure_summary(self) -> dict[str, dict]:
        """Failure count, rate and the five most common error codes per kind.

        Kinds that never failed are left out.
        """
        summary = {}
        for kind, records in self._grouped().items():
            failures = [r for r in records if not r.success]
            if not failures:
                continue
            codes = Counter(r.error_code for r in failures if r.error_code)
            summary[kind] = {
                "total_failures": len(failures),
                "failure_rate": len(failures) / len(records),
                "common_errors": [
                    {"error_code": code, "count": count} for code, count in codes.most_common(5)
                ],
            }
        return summary

    def clear(self) -> None:
        with self._lock:
            self._records = []
            self._save()

    def _prune(self) -> None:
        if self.retention_days <= 0:
            return
        cutoff = (datetime.now() - timedelta(days=self.retention_days)).isoformat()
        # ISO timestamps from datetime.now() sort chronologically as strings
        self._records = [r for r in self._records if r.timestamp > cutoff]

    def _load(self) -> None:
        if self.metrics_file is None or not self.metrics_file.exists():
            return
        try:
            data = json.loads(self.metrics_file.read_text(encoding="utf-8"))
            self._records = [OperationRecord(**entry) for entry in data["operations"]]
        except (OSError, ValueError, TypeError, KeyError) as e:
            logger.warning(
                "Discarding unreadable metrics", path=str(self.metrics_file), reason=str(e)
            )
            self._records = []
            return
        self._prune()

    def _save(self) -> None:
        if self.metrics_file is None:
            return
        data = {
            "operations": [asdict(record) for record in self._records],
            "last_updated": datetime.now().isoformat(),
        }
        # CLI and server processes share the file
        lock_path = self.metrics_file.with_name(f".{self.metrics_file.name}.lock")
        tmp_path = self.metrics_file.with_name(f".{self.metrics_file.name}.tmp")
        try:
            self.metrics_file.parent.mkdir(parents=True, exist_ok=True)
            with FileLock(lock_path, timeout=2):
                tmp_path.write_text(json.dumps(data, indent=2), encoding="utf-8")
                tmp_path.replace(self.metrics_file)
        except (OSError, Timeout) as e:
            logger.warning("Could not persist metrics", path=str(self.metrics_file), reason=str(e))
