"""
Monitoring Module - Logging and metrics for chat commands.

Usage:
======
    from app.monitoring import command_monitor

    command_monitor.track_request(request_id, sentence)
    command_monitor.track_response(request_id, "text", True, 120.0)

    stats = command_monitor.get_stats()
"""

from app.monitoring.monitor import (
    AggregatedMetrics,
    CommandMetrics,
    CommandMonitor,
    command_monitor,
)

__all__ = [
    "AggregatedMetrics",
    "CommandMetrics",
    "CommandMonitor",
    "command_monitor",
]
