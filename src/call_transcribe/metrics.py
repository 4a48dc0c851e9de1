"""Prometheus counters for pipeline outcomes."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from threading import RLock

from prometheus_client import CollectorRegistry, Counter, start_http_server

logger = logging.getLogger(__name__)

METRIC_NAMESPACE = "call_transcribe"

_DOCUMENTATION = {
    "items_processed_total": "Recordings that finished the pipeline, by outcome.",
    "item_failures_total": "Recording failures, by pipeline stage and error code.",
}


class PrometheusMetricsSink:
    """Labelled counters created on first use in a private registry."""

    def __init__(
        self,
        *,
        registry: CollectorRegistry | None = None,
        namespace: str = METRIC_NAMESPACE,
    ) -> None:
        self.registry = registry or CollectorRegistry()
        self.namespace = namespace
        self._lock = RLock()
        self._counters: dict[tuple[str, tuple[str, ...]], Counter] = {}

    def increment(self, counter_name: str, labels: Mapping[str, str]) -> None:
        label_names = tuple(sorted(labels))
        self._counter(counter_name, label_names).labels(
            **{name: str(labels[name]) for name in label_names},
        ).inc()

    def value(self, counter_name: str, labels: Mapping[str, str]) -> float:
        """Current counter value, ``0.0`` when never incremented."""

        sample = self.registry.get_sample_value(
            f"{self.namespace}_{counter_name}",
            {name: str(value) for name, value in labels.items()},
        )
        return sample or 0.0

    def serve(self, port: int, addr: str = "0.0.0.0") -> None:  # noqa: S104
        start_http_server(port, addr=addr, registry=self.registry)
        logger.info("Serving Prometheus metrics on %s:%d", addr, port)

    def _counter(self, counter_name: str, label_names: tuple[str, ...]) -> Counter:
        cache_key = (counter_name, label_names)
        with self._lock:
            metric = self._counters.get(cache_key)
            if metric is None:
                # prometheus_client appends "_total" itself.
                metric = Counter(
                    counter_name.removesuffix("_total"),
                    _DOCUMENTATION.get(counter_name, counter_name),
                    labelnames=label_names,
                    namespace=self.namespace,
                    registry=self.registry,
                )
                self._counters[cache_key] = metric
            return metric
