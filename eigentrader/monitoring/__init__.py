"""
Monitoring package.

Prometheus counters for inference, verification, trading and registry submission.
"""

from eigentrader.monitoring.metrics import AgentMetrics, start_metrics_server

__all__ = [
    "AgentMetrics",
    "start_metrics_server",
]
