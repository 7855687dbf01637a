"""Processing-time monitoring for the refinement pipeline.

Each record carries an optional typed detail: one of `StageDetail`, `CacheDetail`,
`ParallelDetail`, `BottleneckDetail` or `OptimizationDetail`.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import Counter, deque
from dataclasses import dataclass, field, replace
from typing import Deque, Literal, Union

LOG = logging.getLogger(__name__)

PerformanceStatus = Literal["excellent", "good", "warning", "critical"]
PerformanceTrend = Literal["improving", "stable", "degrading"]
BottleneckSeverity = Literal["medium", "high"]

MAX_RECORDS = 100
REPORT_WINDOW = 20
STATUS_WINDOW = 10


@dataclass(frozen=True)
class StageDetail:
    relationships_found: int = 0
    conflicts_resolved: int = 0
    filtered: int = 0
    kept: int = 0


@dataclass(frozen=True)
class CacheDetail:
    hit: bool
    size: int


@dataclass(frozen=True)
class ParallelDetail:
    tasks: int


@dataclass(frozen=True)
class BottleneckDetail:
    stage: str
    severity: BottleneckSeverity = "medium"
    # Share of the total processing time spent in `stage`.
    impact: float = 0.0


@dataclass(frozen=True)
class OptimizationDetail:
    applied: tuple[str, ...] = ()


MetricDetail = Union[StageDetail, CacheDetail, ParallelDetail, BottleneckDetail, OptimizationDetail]


@dataclass(frozen=True)
class PerformanceRecord:
    operation: str
    duration_ms: float
    item_count: int = 0
    success: bool = True
    error: str | None = None
    detail: MetricDetail | None = None
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True, slots=True, kw_only=True)
class PerformanceThresholds:
    """Per-operation time budgets in milliseconds."""

    max_total_ms: float = 3000.0
    max_category_filtering_ms: float = 100.0
    max_spatial_analysis_ms: float = 500.0
    max_overlap_resolution_ms: float = 1000.0
    # Fraction of a budget at which an "approaching" warning is logged.
    warning_ratio: float = 0.8

    def budget_for(self, operation: str) -> float:
        if operation == "category_filtering":
            return self.max_category_filtering_ms
        if operation == "spatial_analysis":
            return self.max_spatial_analysis_ms
        if operation == "overlap_resolution":
            return self.max_overlap_resolution_ms
        return self.max_total_ms


@dataclass(frozen=True)
class PerformanceReport:
    total_operations: int = 0
    average_ms: float = 0.0
    max_ms: float = 0.0
    min_ms: float = 0.0
    success_rate: float = 0.0
    trend: PerformanceTrend = "stable"
    recommendations: list[str] = field(default_factory=list)
    recent: list[PerformanceRecord] = field(default_factory=list)


@dataclass(frozen=True)
class OptimizationResult:
    optimized: bool
    applied: list[str]
    estimated_gain_pct: float
    estimated_processing_ms: float


def _mean(values: list[float]) -> float:
    return sum(values) / len(values) if values else 0.0


class PerformanceMonitor:
    """Bounded log of timed operations with status, reports and optimization hints."""

    def __init__(
        self,
        thresholds: PerformanceThresholds | None = None,
        *,
        max_records: int = MAX_RECORDS,
    ) -> None:
        self._thresholds = thresholds or PerformanceThresholds()
        self._records: Deque[PerformanceRecord] = deque(maxlen=max_records)
        self._lock = threading.Lock()

    @property
    def thresholds(self) -> PerformanceThresholds:
        with self._lock:
            return self._thresholds

    def update_thresholds(self, **changes: float) -> PerformanceThresholds:
        with self._lock:
            self._thresholds = replace(self._thresholds, **changes)
            return self._thresholds

    def record(self, rec: PerformanceRecord) -> None:
        with self._lock:
            self._records.append(rec)
            budget = self._thresholds.budget_for(rec.operation)
            warn_at = budget * self._thresholds.warning_ratio
        if rec.duration_ms > budget:
            LOG.warning("%s took %.1fms (budget %.0fms)", rec.operation, rec.duration_ms, budget)
        elif rec.duration_ms > warn_at:
            LOG.info("%s approaching budget (%.1fms / %.0fms)", rec.operation, rec.duration_ms, budget)

    def record_operation(
        self,
        operation: str,
        duration_ms: float,
        *,
        item_count: int = 0,
        success: bool = True,
        error: str | None = None,
        detail: MetricDetail | None = None,
    ) -> None:
        self.record(
            PerformanceRecord(
                operation=operation,
                duration_ms=float(duration_ms),
                item_count=item_count,
                success=success,
                error=error,
                detail=detail,
            )
        )

    def record_cache(self, operation: str, duration_ms: float, *, hit: bool, size: int, item_count: int = 0) -> None:
        self.record_operation(
            f"cache_{operation}", duration_ms, item_count=item_count, detail=CacheDetail(hit=hit, size=size)
        )

    def record_parallel(self, operation: str, duration_ms: float, *, tasks: int, item_count: int = 0) -> None:
        self.record_operation(
            f"parallel_{operation}", duration_ms, item_count=item_count, detail=ParallelDetail(tasks=tasks)
        )

    def record_bottleneck(
        self,
        operation: str,
        duration_ms: float,
        *,
        stage: str,
        severity: BottleneckSeverity = "medium",
        impact: float = 0.0,
        item_count: int = 0,
    ) -> None:
        self.record_operation(
            f"bottleneck_{operation}",
            duration_ms,
            item_count=item_count,
            detail=BottleneckDetail(stage=stage, severity=severity, impact=impact),
        )

    def record_optimization(
        self, operation: str, duration_ms: float, *, applied: list[str], item_count: int = 0
    ) -> None:
        self.record_operation(
            f"optimization_{operation}",
            duration_ms,
            item_count=item_count,
            detail=OptimizationDetail(applied=tuple(applied)),
        )

    def records(self) -> list[PerformanceRecord]:
        with self._lock:
            return list(self._records)

    def clear(self) -> None:
        with self._lock:
            self._records.clear()

    def status(self) -> PerformanceStatus:
        """Classify the mean duration of the last few records against the total budget."""
        with self._lock:
            recent = list(self._records)[-STATUS_WINDOW:]
            budget = self._thresholds.max_total_ms
        if not recent:
            return "good"
        avg = _mean([r.duration_ms for r in recent])
        if avg < budget * 0.5:
            return "excellent"
        if avg < budget * 0.8:
            return "good"
        if avg < budget:
            return "warning"
        return "critical"

    def should_optimize(self) -> bool:
        return self.status() in ("warning", "critical")

    def report(self) -> PerformanceReport:
        with self._lock:
            recent = list(self._records)[-REPORT_WINDOW:]
            thresholds = self._thresholds
        if not recent:
            return PerformanceReport(recommendations=["No data available for analysis"])

        times = [r.duration_ms for r in recent]
        half = len(times) // 2
        first, second = _mean(times[:half]), _mean(times[half:])
        trend: PerformanceTrend = "stable"
        if half > 0:
            if second < first * 0.9:
                trend = "improving"
            elif second > first * 1.1:
                trend = "degrading"

        return PerformanceReport(
            total_operations=len(recent),
            average_ms=_mean(times),
            max_ms=max(times),
            min_ms=min(times),
            success_rate=sum(1 for r in recent if r.success) / len(recent),
            trend=trend,
            recommendations=performance_recommendations(recent, thresholds),
            recent=recent,
        )

    def optimize_processing(self, item_count: int) -> OptimizationResult:
        """Suggest optimizations from the recent report and the pending item count.

        The gain is an estimate; nothing is changed automatically.
        """
        rep = self.report()
        applied: list[str] = []
        gain = 0.0
        if item_count > 100:
            applied.append("Large dataset detected - consider pagination")
            gain += 20.0
        if rep.average_ms > 2000.0:
            applied.append("High processing time - increasing confidence thresholds")
            gain += 15.0
        spatial = [
            r.detail.relationships_found
            for r in rep.recent
            if r.operation == "spatial_analysis" and isinstance(r.detail, StageDetail)
        ]
        if spatial and _mean([float(n) for n in spatial]) > 20.0:
            applied.append("High relationship count - optimizing spatial analysis")
            gain += 10.0
        return OptimizationResult(
            optimized=bool(applied),
            applied=applied,
            estimated_gain_pct=gain,
            estimated_processing_ms=max(rep.average_ms * (1.0 - gain / 100.0), 100.0),
        )


def identify_bottlenecks(stage_ms: dict[str, float], total_ms: float) -> list[BottleneckDetail]:
    """Stages taking more than 30% (high) or 20% (medium) of `total_ms`, slowest first."""
    if total_ms <= 0.0:
        return []
    out: list[BottleneckDetail] = []
    for stage, ms in stage_ms.items():
        impact = ms / total_ms
        if impact > 0.3:
            out.append(BottleneckDetail(stage=stage, severity="high", impact=impact))
        elif impact > 0.2:
            out.append(BottleneckDetail(stage=stage, severity="medium", impact=impact))
    out.sort(key=lambda b: b.impact, reverse=True)
    return out


def performance_recommendations(
    records: list[PerformanceRecord],
    thresholds: PerformanceThresholds,
) -> list[str]:
    out: list[str] = []
    if not records:
        return out

    slow = [r.operation for r in records if r.duration_ms > thresholds.budget_for(r.operation)]
    if slow:
        out.append(f"Consider optimizing {', '.join(dict.fromkeys(slow))} operations")
    if any(r.item_count > 50 for r in records):
        out.append("Consider implementing pagination or batching for large datasets")
    if sum(1 for r in records if not r.success) / len(records) > 0.1:
        out.append("High error rate detected - investigate error handling")

    cache = [r.detail for r in records if isinstance(r.detail, CacheDetail)]
    if cache and sum(1 for d in cache if d.hit) / len(cache) < 0.7:
        out.append("Low cache hit rate - consider improving cache strategy")

    parallel = [r.detail for r in records if isinstance(r.detail, ParallelDetail)]
    if parallel and _mean([float(d.tasks) for d in parallel]) < 2.0:
        out.append("Consider increasing parallel processing for better performance")

    stages = Counter(r.detail.stage for r in records if isinstance(r.detail, BottleneckDetail))
    if stages:
        stage, count = stages.most_common(1)[0]
        if count > 3:
            out.append(f"Frequent bottleneck in {stage} - consider optimization")

    if not out:
        out.append("Performance is within acceptable ranges")
    return out
