"""
PedsQuery Observability Module

Prometheus-style metrics for answered, refused and failed queries.
"""

from pedsquery.observability.metrics import get_metrics_text, record_query

__all__ = ["get_metrics_text", "record_query"]
