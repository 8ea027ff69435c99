"""
Prometheus metrics for market-making observability.

Organized into: orders, iterations, price band.
"""

from prometheus_client import Counter, Gauge, Histogram, CollectorRegistry
from typing import Optional


class RichMetrics:
    """Counters and gauges shared by the strategies and the price watcher."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        reg = registry or CollectorRegistry()
        self.registry = reg

        # === Order Metrics ===
        self.orders_placed = Counter(
            'orders_placed_total',
            'Orders placed on the exchange',
            labelnames=['pair', 'purpose', 'side'],
            registry=reg
        )
        self.orders_failed = Counter(
            'orders_failed_total',
            'Order placements refused or failed',
            labelnames=['pair', 'purpose'],
            registry=reg
        )
        self.orders_closed = Counter(
            'orders_closed_total',
            'Order records closed by the bot',
            labelnames=['pair', 'purpose', 'reason'],
            registry=reg
        )
        self.orders_active = Gauge(
            'orders_active',
            'Active order records',
            labelnames=['pair', 'purpose'],
            registry=reg
        )

        # === Iteration Metrics ===
        self.iterations_total = Counter(
            'iterations_total',
            'Strategy iterations executed',
            labelnames=['strategy'],
            registry=reg
        )
        self.iteration_errors = Counter(
            'iteration_errors_total',
            'Strategy iterations that raised',
            labelnames=['strategy'],
            registry=reg
        )
        self.iterations_postponed = Counter(
            'iterations_postponed_total',
            'Scheduled slots skipped because the previous iteration was running',
            labelnames=['strategy'],
            registry=reg
        )
        self.iteration_duration_ms = Histogram(
            'iteration_duration_ms',
            'Iteration duration (milliseconds)',
            labelnames=['strategy'],
            buckets=[10, 50, 100, 500, 1000, 5000, 10000],
            registry=reg
        )

        # === Price Band Metrics ===
        self.price_band_low = Gauge(
            'price_band_low',
            'Price watcher lower bound',
            labelnames=['pair'],
            registry=reg
        )
        self.price_band_high = Gauge(
            'price_band_high',
            'Price watcher upper bound',
            labelnames=['pair'],
            registry=reg
        )
        self.price_band_actual = Gauge(
            'price_band_actual',
            'Price watcher band freshness (1=actual, 0=stale)',
            labelnames=['pair'],
            registry=reg
        )
        self.price_band_failures = Gauge(
            'price_band_failures',
            'Consecutive price source failures',
            labelnames=['pair'],
            registry=reg
        )

    def record_placed(self, pair: str, purpose: str, side: str) -> None:
        self.orders_placed.labels(pair=pair, purpose=purpose, side=side).inc()

    def record_failed(self, pair: str, purpose: str) -> None:
        self.orders_failed.labels(pair=pair, purpose=purpose).inc()

    def record_closed(self, pair: str, purpose: str, reason: str) -> None:
        self.orders_closed.labels(pair=pair, purpose=purpose, reason=reason).inc()

    def set_active(self, pair: str, purpose: str, count: int) -> None:
        self.orders_active.labels(pair=pair, purpose=purpose).set(count)

    def set_price_band(self, pair: str, low: float, high: float, is_actual: bool, failures: int) -> None:
        self.price_band_low.labels(pair=pair).set(low)
        self.price_band_high.labels(pair=pair).set(high)
        self.price_band_actual.labels(pair=pair).set(1 if is_actual else 0)
        self.price_band_failures.labels(pair=pair).set(failures)

    def get_registry(self) -> CollectorRegistry:
        """Return the Prometheus registry for export."""
        return self.registry
