"""
Monitoring and observability package.

This package contains alerting and Prometheus metrics components.
"""

from mmbot.monitoring.alerting import (
    Alert,
    AlertConfig,
    AlertManager,
    AlertSeverity,
    AlertType,
    ThrottledNotifier,
)
from mmbot.monitoring.metrics_rich import RichMetrics

__all__ = [
    "Alert",
    "AlertConfig",
    "AlertManager",
    "AlertSeverity",
    "AlertType",
    "ThrottledNotifier",
    "RichMetrics",
]
