"""
Metrics, timing spans, and structured logging for indexing and search.

Every long-lived component of the hybrid index (the store writer, the
document indexer, and the hybrid searcher) accepts an optional
:class:`Observability` instance. Components share one instance when wired
together by :class:`~DocsToIndex.HybridIndex.api.DocumentIndexAPI` so that a
single :meth:`Observability.metrics_snapshot` call reports ingestion and
retrieval activity side by side.

Log records are emitted on the ``DocsToIndex.HybridIndex`` logger hierarchy
with short kebab-case messages and a structured ``event`` payload attached
through ``extra``. Log handlers can therefore route on ``record.event``
without parsing message strings.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

__all__ = (
    "CounterSample",
    "HistogramSample",
    "MetricsCollector",
    "Observability",
    "TraceRecorder",
)

_LabelKey = Tuple[str, Tuple[Tuple[str, str], ...]]


def _label_key(name: str, labels: Mapping[str, str]) -> _LabelKey:
    return name, tuple(sorted((key, str(value)) for key, value in labels.items()))


def _percentile(ordered: List[float], fraction: float) -> float:
    return ordered[int(fraction * (len(ordered) - 1))]


@dataclass(frozen=True)
class CounterSample:
    """Point-in-time value of one labelled counter.

    Attributes:
        name: Counter identifier such as ``chunks_indexed``.
        labels: Label key/value pairs the counter was recorded with.
        value: Accumulated total.
    """

    name: str
    labels: Mapping[str, str]
    value: float


@dataclass(frozen=True)
class HistogramSample:
    """Percentile summary of one labelled histogram.

    Attributes:
        name: Histogram identifier such as ``trace_search_ms``.
        labels: Label key/value pairs the observations were recorded with.
        count: Number of observations.
        p50: Median observation.
        p95: 95th percentile observation.
        p99: 99th percentile observation.
    """

    name: str
    labels: Mapping[str, str]
    count: int
    p50: float
    p95: float
    p99: float


class MetricsCollector:
    """Thread-safe in-memory counters and histograms.

    Searches may run concurrently with each other and with an in-flight
    indexing call, so every mutation happens under an internal lock.

    Examples:
        >>> collector = MetricsCollector()
        >>> collector.increment("chunks_indexed", 3)
        >>> collector.counter("chunks_indexed")
        3.0
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: Dict[_LabelKey, float] = defaultdict(float)
        self._histograms: Dict[_LabelKey, List[float]] = defaultdict(list)

    def increment(self, name: str, amount: float = 1.0, **labels: str) -> None:
        """Add ``amount`` to the counter identified by ``name`` and ``labels``."""
        key = _label_key(name, labels)
        with self._lock:
            self._counters[key] += float(amount)

    def observe(self, name: str, value: float, **labels: str) -> None:
        """Append one observation to the histogram identified by ``name`` and ``labels``."""
        key = _label_key(name, labels)
        with self._lock:
            self._histograms[key].append(float(value))

    def counter(self, name: str, **labels: str) -> float:
        """Return the current value of a counter, ``0.0`` when never incremented."""
        key = _label_key(name, labels)
        with self._lock:
            return self._counters.get(key, 0.0)

    def export_counters(self) -> Iterable[CounterSample]:
        with self._lock:
            items = list(self._counters.items())
        for (name, labels), value in items:
            yield CounterSample(name=name, labels=dict(labels), value=value)

    def export_histograms(self) -> Iterable[HistogramSample]:
        with self._lock:
            items = [(key, sorted(samples)) for key, samples in self._histograms.items()]
        for (name, labels), ordered in items:
            if not ordered:
                continue
            yield HistogramSample(
                name=name,
                labels=dict(labels),
                count=len(ordered),
                p50=_percentile(ordered, 0.5),
                p95=_percentile(ordered, 0.95),
                p99=_percentile(ordered, 0.99),
            )


class TraceRecorder:
    """Produce timing spans that feed both histograms and the log stream.

    Each span records ``trace_<name>_ms`` on the metrics collector and logs a
    ``hybrid-trace`` record whose ``event`` payload carries the span name,
    duration, status (``ok`` or ``error``), and caller-supplied attributes.
    """

    def __init__(self, metrics: MetricsCollector, logger: logging.Logger) -> None:
        self._metrics = metrics
        self._logger = logger

    @contextmanager
    def span(self, name: str, **attributes: str) -> Iterator[None]:
        """Time the enclosed block; exceptions propagate after being recorded.

        Args:
            name: Span name, used in metric and log emission.
            **attributes: Additional context attached to metrics and logs.

        Yields:
            None
        """
        status = "error"
        start = time.perf_counter()
        try:
            yield
            status = "ok"
        finally:
            duration_ms = (time.perf_counter() - start) * 1000.0
            self._metrics.observe(f"trace_{name}_ms", duration_ms, **attributes)
            event = {"span": name, "duration_ms": round(duration_ms, 3), "status": status}
            event.update(attributes)
            self._logger.info("hybrid-trace", extra={"event": event})


class Observability:
    """Facade bundling metrics, the component logger, and tracing.

    Examples:
        >>> obs = Observability()
        >>> with obs.trace("search"):
        ...     pass
        >>> sorted(obs.metrics_snapshot())
        ['counters', 'histograms']
    """

    def __init__(self, *, logger: Optional[logging.Logger] = None) -> None:
        self._metrics = MetricsCollector()
        self._logger = logger or logging.getLogger("DocsToIndex.HybridIndex")
        self._tracer = TraceRecorder(self._metrics, self._logger)

    @property
    def metrics(self) -> MetricsCollector:
        return self._metrics

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    def trace(self, name: str, **attributes: str) -> Iterator[None]:
        """Return a context manager timing the named operation."""
        return self._tracer.span(name, **attributes)

    def metrics_snapshot(self) -> Dict[str, List[Mapping[str, object]]]:
        """Return counters and histogram summaries as plain dictionaries."""
        return {
            "counters": [asdict(sample) for sample in self._metrics.export_counters()],
            "histograms": [asdict(sample) for sample in self._metrics.export_histograms()],
        }
