"""
Prometheus Metrics for PedsQuery

Tracks:
- queries_total / queries_failed: questions answered and pipeline errors
- answers_by_confidence: answer labels (high, medium, low)
- queries_rejected / queries_no_evidence: safety refusals and empty retrievals
- fallback_embeddings_total: queries embedded with the hash fallback
- query_latency_seconds: latency histogram and percentiles
"""

import logging
import threading

logger = logging.getLogger(__name__)

# Thread-safe metrics storage
_lock = threading.Lock()

_metrics: dict[str, float] = {
    "queries_total": 0,
    "queries_failed": 0,
    "queries_rejected": 0,
    "queries_no_evidence": 0,
    "fallback_embeddings_total": 0,
    "confidence_high": 0,
    "confidence_medium": 0,
    "confidence_low": 0,
}

_latencies: list[float] = []

OUTCOMES = ("answered", "rejected", "no_evidence", "error")


def record_query(
    latency_ms: float,
    confidence: str,
    outcome: str = "answered",
    fallback_embedding: bool = False,
) -> None:
    """Record metrics for one pipeline invocation."""
    if outcome not in OUTCOMES:
        raise ValueError(f"Unknown query outcome: {outcome}")
    with _lock:
        _metrics["queries_total"] += 1
        if outcome == "error":
            _metrics["queries_failed"] += 1
        elif outcome == "rejected":
            _metrics["queries_rejected"] += 1
        elif outcome == "no_evidence":
            _metrics["queries_no_evidence"] += 1
        if fallback_embedding:
            _metrics["fallback_embeddings_total"] += 1
        key = f"confidence_{confidence}"
        if key in _metrics:
            _metrics[key] += 1
        _latencies.append(latency_ms)


def get_metrics_text() -> str:
    """Generate Prometheus-compatible metrics text."""
    with _lock:
        sorted_latencies = sorted(_latencies) if _latencies else [0]
        p50 = _percentile(sorted_latencies, 50)
        p95 = _percentile(sorted_latencies, 95)
        p99 = _percentile(sorted_latencies, 99)

        lines = [
            "# HELP queries_total Total number of queries processed",
            "# TYPE queries_total counter",
            f'queries_total {int(_metrics["queries_total"])}',
            "",
            "# HELP queries_failed Queries that ended in a pipeline error",
            "# TYPE queries_failed counter",
            f'queries_failed {int(_metrics["queries_failed"])}',
            "",
            "# HELP queries_rejected Queries refused by the safety gate",
            "# TYPE queries_rejected counter",
            f'queries_rejected {int(_metrics["queries_rejected"])}',
            "",
            "# HELP queries_no_evidence Queries with no matching chunks",
            "# TYPE queries_no_evidence counter",
            f'queries_no_evidence {int(_metrics["queries_no_evidence"])}',
            "",
            "# HELP fallback_embeddings_total Queries embedded with the hash fallback",
            "# TYPE fallback_embeddings_total counter",
            f'fallback_embeddings_total {int(_metrics["fallback_embeddings_total"])}',
            "",
            "# HELP answers_by_confidence Answers by confidence label",
            "# TYPE answers_by_confidence counter",
            f'answers_by_confidence{{level="high"}} {int(_metrics["confidence_high"])}',
            f'answers_by_confidence{{level="medium"}} {int(_metrics["confidence_medium"])}',
            f'answers_by_confidence{{level="low"}} {int(_metrics["confidence_low"])}',
            "",
            "# HELP query_latency_seconds Query response time histogram",
            "# TYPE query_latency_seconds histogram",
            f'query_latency_seconds{{le="1.0"}} {_count_below(sorted_latencies, 1000)}',
            f'query_latency_seconds{{le="5.0"}} {_count_below(sorted_latencies, 5000)}',
            f'query_latency_seconds{{le="15.0"}} {_count_below(sorted_latencies, 15000)}',
            f'query_latency_seconds{{le="30.0"}} {_count_below(sorted_latencies, 30000)}',
            f"query_latency_seconds_p50 {p50 / 1000:.4f}",
            f"query_latency_seconds_p95 {p95 / 1000:.4f}",
            f"query_latency_seconds_p99 {p99 / 1000:.4f}",
        ]

        return "\n".join(lines) + "\n"


def reset_metrics() -> None:
    """Reset all metrics to zero."""
    with _lock:
        for key in _metrics:
            _metrics[key] = 0
        _latencies.clear()


def _percentile(sorted_data: list[float], percentile: int) -> float:
    if not sorted_data:
        return 0.0
    idx = int(len(sorted_data) * percentile / 100)
    idx = min(idx, len(sorted_data) - 1)
    return sorted_data[idx]


def _count_below(sorted_data: list[float], threshold_ms: float) -> int:
    count = 0
    for v in sorted_data:
        if v <= threshold_ms:
            count += 1
        else:
            break
    return count
