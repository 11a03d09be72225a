"""
Metrics collection for publish runs.

Each coordinator invocation owns one ``PublishMetrics`` instance; on completion
it emits a single structured log record with duration, outcome and external
call latencies.
"""

import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from docs_preview.utils.logging import get_logger, log_api_call

logger = get_logger(__name__)


class PublishMetrics:
    """
    Collects metrics during one publish run.

    Tracks:
    - Start/end time and duration
    - Mode and final status
    - Number of files pushed
    - External call counts and latency per service
    """

    def __init__(self, run_id: str):
        self.run_id = run_id
        self.pr_number: Optional[int] = None
        self.target: Optional[str] = None
        self.mode: Optional[str] = None

        self.start_time: Optional[datetime] = None
        self.end_time: Optional[datetime] = None
        self.duration_ms: Optional[int] = None

        self.files_pushed: int = 0

        self.api_calls: Dict[str, int] = {}
        self.api_latencies: Dict[str, List[float]] = {}

        self.status: str = "running"
        self.error_message: Optional[str] = None

    def start(self) -> None:
        """Mark run start."""
        self.start_time = datetime.now(timezone.utc)
        self.status = "running"

    def complete(self, status: str, error_message: Optional[str] = None) -> None:
        """
        Mark run completion and emit the summary record.

        Args:
            status: Final status ('published', 'deleted', 'unchanged',
                'superseded', 'failed')
            error_message: Error message if failed
        """
        self.end_time = datetime.now(timezone.utc)
        self.status = status
        self.error_message = error_message

        if self.start_time:
            duration = (self.end_time - self.start_time).total_seconds()
            self.duration_ms = int(duration * 1000)

        logger.info(
            f"Publish run {self.run_id} finished: {status}",
            extra=self.to_dict()
        )

    def record_target(self, pr_number: int, target: str, mode: str) -> None:
        self.pr_number = pr_number
        self.target = target
        self.mode = mode

    def record_files_pushed(self, count: int) -> None:
        self.files_pushed = count

    def record_api_call(self, service: str, duration_ms: float) -> None:
        """
        Record an external call and its latency.

        Args:
            service: Service name (e.g., 'artifacts', 'destination', 'notifier')
            duration_ms: Call duration in milliseconds
        """
        self.api_calls[service] = self.api_calls.get(service, 0) + 1
        self.api_latencies.setdefault(service, []).append(duration_ms)

    def get_average_latency(self, service: str) -> Optional[float]:
        latencies = self.api_latencies.get(service)
        if not latencies:
            return None
        return sum(latencies) / len(latencies)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "pr_number": self.pr_number,
            "target": self.target,
            "mode": self.mode,
            "status": self.status,
            "duration_ms": self.duration_ms,
            "files_pushed": self.files_pushed,
            "api_calls": dict(self.api_calls),
            "avg_latency_ms": {
                service: round(self.get_average_latency(service) or 0.0, 2)
                for service in self.api_latencies
            },
            "error_message": self.error_message,
        }


@asynccontextmanager
async def track_api_call(
    metrics: Optional[PublishMetrics],
    service: str,
    endpoint: str,
    method: str,
    logger_adapter=None
):
    """
    Time an external call, record it on ``metrics`` and log it.

    Usage:
        async with track_api_call(metrics, "artifacts", "rendered-docs", "GET"):
            data = await store.get(run_id, "rendered-docs")
    """
    start_time = time.perf_counter()
    error = None

    try:
        yield
    except Exception as e:
        error = e
        raise
    finally:
        duration_ms = (time.perf_counter() - start_time) * 1000

        if metrics is not None:
            metrics.record_api_call(service, duration_ms)

        log_api_call(
            logger_adapter or logger,
            service=service,
            endpoint=endpoint,
            method=method,
            duration_ms=duration_ms,
            error=str(error) if error else None
        )
