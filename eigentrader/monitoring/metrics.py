"""
Prometheus metrics for the inference pipeline and trading loop, plus a tiny
asyncio HTTP server exposing /metrics and /health.

Organized into: inference, verification, trading, registry.
"""

from __future__ import annotations

import asyncio
import time
from typing import Optional

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Counter, Gauge, Histogram, generate_latest

from eigentrader.core.json_utils import dumps


class AgentMetrics:
    """All counters live in a private registry so tests can build isolated instances."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        reg = registry or CollectorRegistry()
        self.registry = reg

        # === Inference ===
        self.inference_requests = Counter(
            'inference_requests_total',
            'Chat completion requests sent to the provider',
            labelnames=['model', 'outcome'],
            registry=reg
        )
        self.synthetic_decisions = Counter(
            'synthetic_decisions_total',
            'Decisions synthesized after tool-result exhaustion',
            labelnames=['action'],
            registry=reg
        )
        self.grant_refreshes = Counter(
            'grant_refreshes_total',
            'Grant challenge/sign round trips',
            registry=reg
        )
        self.grant_cache_hits = Counter(
            'grant_cache_hits_total',
            'Authentication requests served from the cached grant',
            registry=reg
        )
        self.inference_latency_ms = Histogram(
            'inference_latency_ms',
            'Provider round trip (milliseconds)',
            labelnames=['model'],
            buckets=[250, 500, 1000, 2500, 5000, 10000, 30000, 60000],
            registry=reg
        )

        # === Verification ===
        self.signature_checks = Counter(
            'signature_checks_total',
            'Local signature verification results',
            labelnames=['result'],
            registry=reg
        )
        self.inferences_saved = Counter(
            'inferences_saved_total',
            'Signed inferences persisted',
            registry=reg
        )

        # === Trading ===
        self.trade_outcomes = Counter(
            'trade_outcomes_total',
            'Execution outcome tags appended to decisions',
            labelnames=['outcome'],
            registry=reg
        )
        self.iterations = Counter(
            'iterations_total',
            'Trading iterations completed',
            labelnames=['pair', 'action'],
            registry=reg
        )
        self.iteration_duration_sec = Histogram(
            'iteration_duration_sec',
            'Wall time per trading iteration (seconds)',
            buckets=[1, 5, 10, 30, 60, 120, 300],
            registry=reg
        )

        # === Registry ===
        self.registry_submissions = Counter(
            'registry_submissions_total',
            'Signature submissions to the verification registry',
            labelnames=['status'],
            registry=reg
        )
        self.pending_inferences = Gauge(
            'pending_inferences',
            'Inferences waiting for registry submission (sampled per tick)',
            registry=reg
        )

    def render(self) -> bytes:
        return generate_latest(self.registry)


async def start_metrics_server(metrics: AgentMetrics, port: int, host: str = "0.0.0.0") -> asyncio.AbstractServer:
    """
    Serve:
    - GET /metrics - Prometheus exposition
    - GET /health  - liveness JSON
    """
    started = time.time()

    async def handle(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        req = await reader.read(2048)
        path = "/"
        first = req.split(b"\r\n", 1)[0]
        parts = first.split(b" ")
        if len(parts) >= 2:
            path = parts[1].decode("utf-8", errors="ignore").split("?", 1)[0]

        if path == "/health":
            body = dumps({"healthy": True, "uptime_sec": round(time.time() - started, 1)}).encode()
            head = b"HTTP/1.1 200 OK\r\nContent-Type: application/json\r\n"
        elif path == "/metrics":
            body = metrics.render()
            head = b"HTTP/1.1 200 OK\r\nContent-Type: " + CONTENT_TYPE_LATEST.encode() + b"\r\n"
        else:
            body = b""
            head = b"HTTP/1.1 404 Not Found\r\n"

        writer.write(head + b"Content-Length: " + str(len(body)).encode() + b"\r\nConnection: close\r\n\r\n" + body)
        try:
            await writer.drain()
        finally:
            writer.close()

    return await asyncio.start_server(handle, host=host, port=port)
