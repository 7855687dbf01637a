"""Detection quality metrics: precision/recall, confidence statistics, trends and alerts.

Without labelled data the tracker scores a batch with *proxy* precision/recall derived
from confidence and category mix. Those snapshots carry `basis="proxy"`; callers with
ground truth record real counts through `QualityMetricsTracker.record_ground_truth`.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Literal

import numpy as np

from detection_refinery.vision.labels import norm_category
from detection_refinery.vision.types import DetectedItem

MetricBasis = Literal["proxy", "ground_truth"]
TrendDirection = Literal["improving", "declining", "stable"]
AlertType = Literal["low_confidence", "slow_processing", "low_precision", "low_recall", "high_variance"]
Severity = Literal["low", "medium", "high"]

MAX_HISTORY = 100
TARGET_PROCESSING_MS = 3000.0

_PROXY_BONUS_CATEGORIES = frozenset({"electronics", "accessories", "clothing"})


@dataclass(frozen=True)
class ConfidenceStatistics:
    mean: float = 0.0
    median: float = 0.0
    min: float = 0.0
    max: float = 0.0
    std: float = 0.0
    outlier_count: int = 0


@dataclass(frozen=True)
class QualityMetrics:
    """One snapshot per analyzed batch."""

    precision: float
    recall: float
    f1_score: float
    confidence_stats: ConfidenceStatistics
    processing_time_ms: float
    timestamp: float
    item_count: int = 0
    basis: MetricBasis = "proxy"


@dataclass(frozen=True)
class MetricTrend:
    direction: TrendDirection = "stable"
    strength: float = 0.0
    slope: float = 0.0


@dataclass(frozen=True)
class QualityTrend:
    precision: MetricTrend = field(default_factory=MetricTrend)
    recall: MetricTrend = field(default_factory=MetricTrend)
    f1_score: MetricTrend = field(default_factory=MetricTrend)
    strength: float = 0.0


@dataclass(frozen=True)
class QualityAlert:
    type: AlertType
    severity: Severity
    message: str
    recommendation: str
    timestamp: float


@dataclass(frozen=True)
class QualitySummary:
    """Latest snapshot condensed for dashboards; zeros when nothing was recorded."""

    total_detections: int = 0
    precision: float = 0.0
    recall: float = 0.0
    f1_score: float = 0.0
    mean_confidence: float = 0.0
    processing_time_ms: float = 0.0
    basis: MetricBasis = "proxy"
    last_update: float | None = None


def calculate_precision(true_positives: int, false_positives: int) -> float:
    denom = true_positives + false_positives
    return true_positives / denom if denom > 0 else 0.0


def calculate_recall(true_positives: int, false_negatives: int) -> float:
    denom = true_positives + false_negatives
    return true_positives / denom if denom > 0 else 0.0


def calculate_f1_score(precision: float, recall: float) -> float:
    denom = precision + recall
    return 2.0 * precision * recall / denom if denom > 0 else 0.0


def confidence_statistics(items: list[DetectedItem]) -> ConfidenceStatistics:
    """Mean, median, extrema and population std of item confidences.

    Outliers (more than 2 std from the mean) are only counted for 3 or more items.
    """
    if not items:
        return ConfidenceStatistics()
    conf = np.asarray([it.confidence for it in items], dtype=np.float64)
    mean = float(conf.mean())
    std = float(conf.std())
    outliers = int(np.count_nonzero(np.abs(conf - mean) > 2.0 * std)) if conf.size >= 3 else 0
    return ConfidenceStatistics(
        mean=mean,
        median=float(np.median(conf)),
        min=float(conf.min()),
        max=float(conf.max()),
        std=std,
        outlier_count=outliers,
    )


def detect_confidence_outliers(items: list[DetectedItem]) -> list[DetectedItem]:
    if len(items) < 3:
        return []
    stats = confidence_statistics(items)
    return [it for it in items if abs(it.confidence - stats.mean) > 2.0 * stats.std]


def metric_trend(values: list[float]) -> MetricTrend:
    """Least-squares slope over the series index.

    `|slope| >= 0.01` is a trend, with strength `min(|slope| * 10, 1)`.
    """
    if len(values) < 2:
        return MetricTrend()
    y = np.asarray(values, dtype=np.float64)
    x = np.arange(y.size, dtype=np.float64)
    x_c = x - x.mean()
    slope = float(np.dot(x_c, y - y.mean()) / np.dot(x_c, x_c))
    if abs(slope) < 0.01:
        return MetricTrend(slope=slope)
    return MetricTrend(
        direction="improving" if slope > 0 else "declining",
        strength=min(abs(slope) * 10.0, 1.0),
        slope=slope,
    )


def quality_trend(history: list[QualityMetrics]) -> QualityTrend:
    if len(history) < 2:
        return QualityTrend()
    p = metric_trend([m.precision for m in history])
    r = metric_trend([m.recall for m in history])
    f = metric_trend([m.f1_score for m in history])
    return QualityTrend(precision=p, recall=r, f1_score=f, strength=(p.strength + r.strength + f.strength) / 3.0)


def quality_recommendations(metrics: QualityMetrics) -> list[str]:
    """Fixed rule table mapping a snapshot to advice strings."""
    out: list[str] = []
    if metrics.precision < 0.7:
        out.append("Consider increasing confidence thresholds to reduce false positives")
        out.append("Review category filtering rules for better precision")
    if metrics.recall < 0.7:
        out.append("Consider lowering confidence thresholds to catch more true positives")
        out.append("Review filtering rules that might be too restrictive")
    if metrics.confidence_stats.std > 0.2:
        out.append("High confidence variance detected - consider reviewing detection consistency")
    if metrics.processing_time_ms > TARGET_PROCESSING_MS:
        out.append("Processing time exceeds target - consider optimizing detection pipeline")
    if metrics.item_count > 0 and metrics.confidence_stats.outlier_count > metrics.item_count * 0.3:
        out.append("High number of confidence outliers detected - review detection quality")
    return out


def quality_alerts(metrics: QualityMetrics) -> list[QualityAlert]:
    alerts: list[QualityAlert] = []
    stats = metrics.confidence_stats
    ts = metrics.timestamp
    if stats.mean < 0.6:
        alerts.append(
            QualityAlert(
                type="low_confidence",
                severity="medium",
                message=f"Average confidence is low: {stats.mean * 100:.1f}%",
                recommendation="Consider improving image quality or adjusting detection parameters",
                timestamp=ts,
            )
        )
    if metrics.processing_time_ms > TARGET_PROCESSING_MS:
        alerts.append(
            QualityAlert(
                type="slow_processing",
                severity="high",
                message=f"Processing time is slow: {metrics.processing_time_ms:.0f}ms",
                recommendation="Consider optimizing detection pipeline or reducing image complexity",
                timestamp=ts,
            )
        )
    if metrics.precision < 0.7:
        alerts.append(
            QualityAlert(
                type="low_precision",
                severity="medium",
                message=f"Precision is low: {metrics.precision * 100:.1f}%",
                recommendation="Review filtering rules and confidence thresholds",
                timestamp=ts,
            )
        )
    if metrics.recall < 0.7:
        alerts.append(
            QualityAlert(
                type="low_recall",
                severity="medium",
                message=f"Recall is low: {metrics.recall * 100:.1f}%",
                recommendation="Consider lowering confidence thresholds or relaxing filtering rules",
                timestamp=ts,
            )
        )
    if stats.std > 0.2:
        alerts.append(
            QualityAlert(
                type="high_variance",
                severity="low",
                message=f"High confidence variance detected: {stats.std * 100:.1f}%",
                recommendation="Review detection consistency and image quality",
                timestamp=ts,
            )
        )
    return alerts


def proxy_precision(items: list[DetectedItem]) -> float:
    """Heuristic precision: mean confidence plus a bonus for well-localized categories.

    Not an accuracy measurement; no ground truth is involved.
    """
    if not items:
        return 0.0
    mean = sum(it.confidence for it in items) / len(items)
    bonus = sum(1 for it in items if norm_category(it.category) in _PROXY_BONUS_CATEGORIES) / len(items)
    return min(0.95, mean + bonus * 0.1)


def proxy_recall(items: list[DetectedItem]) -> float:
    """Heuristic recall: mean confidence plus a bonus growing with the item count."""
    if not items:
        return 0.0
    mean = sum(it.confidence for it in items) / len(items)
    return min(0.95, mean + min(0.2, len(items) * 0.05))


class QualityMetricsTracker:
    """Rolling quality history (bounded, oldest evicted first).

    Safe to share between threads; one instance per session.
    """

    def __init__(self, max_history: int = MAX_HISTORY) -> None:
        self._history: Deque[QualityMetrics] = deque(maxlen=max_history)
        self._lock = threading.Lock()

    def record_detection_result(
        self,
        items: list[DetectedItem],
        processing_time_ms: float,
        *,
        timestamp: float | None = None,
    ) -> QualityMetrics:
        """Score a batch with proxy precision/recall and append the snapshot."""
        p = proxy_precision(items)
        r = proxy_recall(items)
        snap = QualityMetrics(
            precision=p,
            recall=r,
            f1_score=calculate_f1_score(p, r),
            confidence_stats=confidence_statistics(items),
            processing_time_ms=float(processing_time_ms),
            timestamp=time.time() if timestamp is None else timestamp,
            item_count=len(items),
            basis="proxy",
        )
        with self._lock:
            self._history.append(snap)
        return snap

    def record_ground_truth(
        self,
        true_positives: int,
        false_positives: int,
        false_negatives: int,
        *,
        items: list[DetectedItem] | None = None,
        processing_time_ms: float = 0.0,
        timestamp: float | None = None,
    ) -> QualityMetrics:
        """Append a snapshot computed from labelled counts."""
        items = items or []
        p = calculate_precision(true_positives, false_positives)
        r = calculate_recall(true_positives, false_negatives)
        snap = QualityMetrics(
            precision=p,
            recall=r,
            f1_score=calculate_f1_score(p, r),
            confidence_stats=confidence_statistics(items),
            processing_time_ms=float(processing_time_ms),
            timestamp=time.time() if timestamp is None else timestamp,
            item_count=len(items),
            basis="ground_truth",
        )
        with self._lock:
            self._history.append(snap)
        return snap

    def history(self) -> list[QualityMetrics]:
        with self._lock:
            return list(self._history)

    def latest(self) -> QualityMetrics | None:
        with self._lock:
            return self._history[-1] if self._history else None

    def current_metrics(self) -> QualitySummary:
        with self._lock:
            count = len(self._history)
            latest = self._history[-1] if self._history else None
        if latest is None:
            return QualitySummary()
        return QualitySummary(
            total_detections=count,
            precision=latest.precision,
            recall=latest.recall,
            f1_score=latest.f1_score,
            mean_confidence=latest.confidence_stats.mean,
            processing_time_ms=latest.processing_time_ms,
            basis=latest.basis,
            last_update=latest.timestamp,
        )

    def alerts(self) -> list[QualityAlert]:
        latest = self.latest()
        return quality_alerts(latest) if latest is not None else []

    def trend(self) -> QualityTrend:
        return quality_trend(self.history())

    def recommendations(self) -> list[str]:
        latest = self.latest()
        return quality_recommendations(latest) if latest is not None else []

    def clear(self) -> None:
        with self._lock:
            self._history.clear()
