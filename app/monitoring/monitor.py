"""
Command Monitor - Unified logging and metrics for the command pipeline.

One object tracks everything about a command:
- Structured JSON logs (request, resolved intent, executed endpoint, response)
- In-memory metrics aggregation (per response type, latency, success rate)

Usage:
    from app.monitoring import command_monitor

    command_monitor.track_request(request_id, sentence, user_id="uid-1")
    command_monitor.track_response(
        request_id=request_id,
        response_type="file",
        success=True,
        latency_ms=812.4,
    )

    stats = command_monitor.get_stats()
"""

import json
import logging
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Dict, List, Optional, Any


# ---------------------------------------------------------------------------
# LOGGING SETUP
# ---------------------------------------------------------------------------
logger = logging.getLogger("cvenom.commands")
logger.setLevel(logging.INFO)

if not logger.handlers:
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(logging.INFO)
    formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s [%(name)s] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)


# ---------------------------------------------------------------------------
# METRICS DATA CLASSES
# ---------------------------------------------------------------------------
@dataclass
class CommandMetrics:
    """Metrics for a single command."""
    request_id: str
    response_type: str
    success: bool
    latency_ms: float
    executed: bool = False
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class AggregatedMetrics:
    """Aggregated metrics since start (or last reset)."""
    total_commands: int = 0
    successful_commands: int = 0
    failed_commands: int = 0
    executed_commands: int = 0
    session_retries: int = 0
    total_latency_ms: float = 0.0
    commands_by_type: Dict[str, int] = field(default_factory=dict)

    @property
    def avg_latency_ms(self) -> float:
        if self.total_commands == 0:
            return 0.0
        return self.total_latency_ms / self.total_commands

    @property
    def success_rate(self) -> float:
        if self.total_commands == 0:
            return 0.0
        return (self.successful_commands / self.total_commands) * 100

    def to_dict(self) -> Dict:
        return {
            "total_commands": self.total_commands,
            "successful_commands": self.successful_commands,
            "failed_commands": self.failed_commands,
            "executed_commands": self.executed_commands,
            "session_retries": self.session_retries,
            "success_rate": f"{self.success_rate:.1f}%",
            "avg_latency_ms": round(self.avg_latency_ms, 2),
            "commands_by_type": dict(self.commands_by_type),
        }


# ---------------------------------------------------------------------------
# UNIFIED MONITOR
# ---------------------------------------------------------------------------

class CommandMonitor:
    """
    Logging and metrics for chat commands.

    Sentences are logged truncated; attachments are logged by count only.
    """

    def __init__(self, max_history: int = 1000):
        """
        Args:
            max_history: Maximum number of commands kept in memory
        """
        self._history: List[CommandMetrics] = []
        self._max_history = max_history
        self._lock = Lock()
        self._aggregated = AggregatedMetrics()

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()

    @staticmethod
    def _preview(text: str, limit: int = 100) -> str:
        return text[:limit] + "..." if len(text) > limit else text

    def _log(self, level: int, label: str, log_data: Dict[str, Any]) -> None:
        logger.log(level, f"{label}: {json.dumps(log_data, default=str)}")

    # -------------------------------------------------------------------------
    # TRACKING
    # -------------------------------------------------------------------------

    def track_request(
        self,
        request_id: str,
        sentence: str,
        user_id: Optional[str] = None,
        attachment_count: int = 0,
        conversation_id: Optional[str] = None,
    ) -> None:
        """Log an incoming command."""
        self._log(logging.INFO, "Command Request", {
            "event": "command_request",
            "request_id": request_id,
            "sentence_length": len(sentence),
            "sentence_preview": self._preview(sentence),
            "attachments": attachment_count,
            "user_id": user_id,
            "conversation_id": conversation_id,
            "timestamp": self._now(),
        })

    def track_intent(
        self,
        request_id: str,
        intent: str,
        endpoint_id: str,
        completion_percent: float,
        missing_required: Optional[List[str]] = None,
    ) -> None:
        """Log the candidate API0 resolved a sentence to."""
        self._log(logging.INFO, "Intent Resolved", {
            "event": "intent_resolved",
            "request_id": request_id,
            "intent": intent,
            "endpoint_id": endpoint_id,
            "completion_percent": completion_percent,
            "missing_required": missing_required or [],
            "timestamp": self._now(),
        })

    def track_execution(
        self,
        request_id: str,
        endpoint_name: str,
        result_kind: Optional[str],
        latency_ms: float,
    ) -> None:
        """Log an executed backend endpoint."""
        self._log(logging.INFO, "Endpoint Executed", {
            "event": "endpoint_executed",
            "request_id": request_id,
            "endpoint_name": endpoint_name,
            "result_kind": result_kind,
            "latency_ms": round(latency_ms, 2),
            "timestamp": self._now(),
        })

    def track_session_retry(self, request_id: str, conversation_id: Optional[str]) -> None:
        """Count a transparent session restart."""
        with self._lock:
            self._aggregated.session_retries += 1
        self._log(logging.WARNING, "Session Retry", {
            "event": "session_retry",
            "request_id": request_id,
            "conversation_id": conversation_id,
            "timestamp": self._now(),
        })

    def track_response(
        self,
        request_id: str,
        response_type: str,
        success: bool,
        latency_ms: float,
        executed: bool = False,
        error: Optional[str] = None,
    ) -> CommandMetrics:
        """Log the final outcome of a command and record its metrics."""
        metrics = CommandMetrics(
            request_id=request_id,
            response_type=response_type,
            success=success,
            latency_ms=latency_ms,
            executed=executed,
        )

        with self._lock:
            self._history.append(metrics)
            if len(self._history) > self._max_history:
                self._history = self._history[-self._max_history:]
            self._update_aggregated(metrics)

        log_data = {
            "event": "command_response",
            "request_id": request_id,
            "response_type": response_type,
            "success": success,
            "executed": executed,
            "latency_ms": round(latency_ms, 2),
            "timestamp": self._now(),
        }
        if error:
            log_data["error"] = error

        self._log(logging.INFO if success else logging.WARNING, "Command Response", log_data)
        return metrics

    def track_error(
        self,
        request_id: str,
        error: str,
        stage: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Log an error in the command pipeline.

        Args:
            request_id: Request identifier
            error: Error message
            stage: Where the error occurred (analyze, execute, upload)
            metadata: Additional context
        """
        log_data = {
            "event": "command_error",
            "request_id": request_id,
            "error": error,
            "stage": stage,
            "timestamp": self._now(),
        }
        if metadata:
            log_data["metadata"] = metadata
        self._log(logging.ERROR, "Command Error", log_data)

    # -------------------------------------------------------------------------
    # STATS
    # -------------------------------------------------------------------------

    def get_stats(self) -> AggregatedMetrics:
        with self._lock:
            return self._aggregated

    def get_recent_commands(self, limit: int = 10) -> List[CommandMetrics]:
        with self._lock:
            return list(reversed(self._history[-limit:]))

    def reset(self) -> None:
        """Reset all metrics (useful for testing)."""
        with self._lock:
            self._history = []
            self._aggregated = AggregatedMetrics()

    def _update_aggregated(self, metrics: CommandMetrics) -> None:
        self._aggregated.total_commands += 1
        if metrics.success:
            self._aggregated.successful_commands += 1
        else:
            self._aggregated.failed_commands += 1
        if metrics.executed:
            self._aggregated.executed_commands += 1
        self._aggregated.total_latency_ms += metrics.latency_ms
        self._aggregated.commands_by_type[metrics.response_type] = \
            self._aggregated.commands_by_type.get(metrics.response_type, 0) + 1


# ---------------------------------------------------------------------------
# SINGLETON INSTANCE
# ---------------------------------------------------------------------------
command_monitor = CommandMonitor()
