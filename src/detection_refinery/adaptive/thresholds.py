"""Adaptive per-category confidence thresholds.

Three independent adjustment mechanisms feed one session-scoped threshold map:

- detection context (image quality, lighting, item count, mean confidence);
- user feedback on single items (accepted / rejected / modified);
- trends in recorded quality metrics.

Every value that leaves this module is clamped to [MIN_THRESHOLD, MAX_THRESHOLD].
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field, replace
from typing import Deque, Literal

from detection_refinery.adaptive.quality import QualityMetrics
from detection_refinery.vision.labels import norm_category
from detection_refinery.vision.types import DetectedItem

LOG = logging.getLogger(__name__)

MIN_THRESHOLD = 0.3
MAX_THRESHOLD = 0.95
MAX_HISTORY = 100

ImageQuality = Literal["high", "medium", "low"]
Lighting = Literal["excellent", "good", "poor"]
UserAction = Literal["accepted", "rejected", "modified"]
ThresholdDirection = Literal["increasing", "decreasing", "stable"]

DEFAULT_THRESHOLDS: dict[str, float] = {
    "Accessories": 0.7,
    "Electronics": 0.75,
    "Clothing": 0.65,
    "Furniture": 0.8,
    "Books": 0.6,
    "Sports": 0.65,
    "Home": 0.7,
    # Anatomy detections are almost always false positives for a catalog.
    "Body Part": 0.9,
    "default": 0.65,
}

CATEGORY_WEIGHTS: dict[str, float] = {
    "Accessories": 1.2,
    "Electronics": 1.1,
    "Clothing": 1.0,
    "Books": 0.9,
    "Sports": 0.9,
    "Home": 0.8,
    "Furniture": 0.7,
    "Body Part": 0.5,
    "default": 1.0,
}

_QUALITY_FACTOR: dict[str, float] = {"high": 0.9, "medium": 1.0, "low": 1.1}
_LIGHTING_FACTOR: dict[str, float] = {"excellent": 0.9, "good": 1.0, "poor": 1.15}

LEARNING_RATE = 0.05
METRICS_STEP = 0.05


def clamp_threshold(t: float) -> float:
    return max(MIN_THRESHOLD, min(MAX_THRESHOLD, float(t)))


def _lookup(table: dict[str, float], category: str) -> tuple[str, float]:
    """Return (key, value) for a category, matching keys case-insensitively."""
    wanted = norm_category(category)
    for key, value in table.items():
        if norm_category(key) == wanted:
            return key, value
    return category, table["default"] if "default" in table else DEFAULT_THRESHOLDS["default"]


def category_weight(category: str) -> float:
    return _lookup(CATEGORY_WEIGHTS, category)[1]


@dataclass(frozen=True, slots=True, kw_only=True)
class DetectionContext:
    """Per-image conditions used to scale the base threshold."""

    image_quality: ImageQuality = "medium"
    lighting: Lighting = "good"
    item_count: int = 0
    average_confidence: float = 0.0
    category_distribution: dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_items(
        cls,
        items: list[DetectedItem],
        *,
        image_quality: ImageQuality = "medium",
        lighting: Lighting = "good",
    ) -> DetectionContext:
        dist: dict[str, int] = {}
        for it in items:
            dist[it.category] = dist.get(it.category, 0) + 1
        mean = sum(it.confidence for it in items) / len(items) if items else 0.0
        return cls(
            image_quality=image_quality,
            lighting=lighting,
            item_count=len(items),
            average_confidence=mean,
            category_distribution=dist,
        )


@dataclass(frozen=True)
class CategoryPerformance:
    precision: float = 0.8
    recall: float = 0.8
    f1_score: float = 0.8
    sample_count: int = 0


@dataclass(frozen=True)
class UserFeedback:
    item_id: str
    user_action: UserAction
    confidence: float
    category: str
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class ThresholdHistoryEntry:
    timestamp: float
    thresholds: dict[str, float]
    reason: str
    performance_metrics: QualityMetrics | None = None


@dataclass(frozen=True)
class ThresholdTrend:
    overall: ThresholdDirection = "stable"
    strength: float = 0.0
    categories: dict[str, ThresholdDirection] = field(default_factory=dict)


@dataclass(frozen=True)
class ThresholdPerformanceSummary:
    total_updates: int
    recent_updates: int
    category_performance: dict[str, CategoryPerformance]
    user_feedback_count: int
    average_threshold: float


def adaptive_threshold(context: DetectionContext) -> float:
    """Scale the default threshold by the four context factors."""
    quality = _QUALITY_FACTOR.get(context.image_quality, 1.0)
    lighting = _LIGHTING_FACTOR.get(context.lighting, 1.0)
    count = max(0.8, min(1.2, 1.0 - (context.item_count - 3) * 0.05))
    conf = max(0.7, min(1.3, 1.0 - (context.average_confidence - 0.7) * 0.5))
    return clamp_threshold(DEFAULT_THRESHOLDS["default"] * quality * lighting * count * conf)


def adjust_threshold_for_category(base: float, category: str, performance: CategoryPerformance) -> float:
    """Scale `base` by the category weight, then by historical precision/recall/F1."""
    t = base * category_weight(category)

    if performance.precision < 0.7:
        t *= 1.1
    elif performance.precision > 0.9:
        t *= 0.95

    if performance.recall < 0.7:
        t *= 0.9
    elif performance.recall > 0.9:
        t *= 1.05

    strength = 0.1 * min(1.0, performance.sample_count / 100.0)
    if performance.f1_score < 0.7:
        t *= 1.0 - strength
    elif performance.f1_score > 0.9:
        t *= 1.0 + strength
    return clamp_threshold(t)


def learn_from_feedback(feedback: UserFeedback, thresholds: dict[str, float]) -> dict[str, float]:
    """Nudge the feedback category's threshold; returns a new map.

    Accepting a below-threshold item lowers the threshold, rejecting an
    at-or-above-threshold item raises it. Items well on the expected side move it
    by half as much in the opposite direction. "modified" changes nothing.
    """
    out = dict(thresholds)
    key, current = _lookup(out, feedback.category)
    if current <= 0:
        return out
    gap = abs(feedback.confidence - current) / current
    rate = LEARNING_RATE * min(1.0, gap * 2.0)

    if feedback.user_action == "accepted":
        if feedback.confidence < current:
            out[key] = clamp_threshold(current - rate)
        elif feedback.confidence > current + 0.1:
            out[key] = clamp_threshold(current + rate * 0.5)
    elif feedback.user_action == "rejected":
        if feedback.confidence >= current:
            out[key] = clamp_threshold(current + rate)
        elif feedback.confidence < current - 0.1:
            out[key] = clamp_threshold(current - rate * 0.5)
    return out


def optimal_thresholds(metrics: QualityMetrics) -> dict[str, float]:
    """Derive a full threshold map from a single quality snapshot."""
    base = DEFAULT_THRESHOLDS["default"]
    if metrics.precision < 0.7:
        base *= 1.15
    elif metrics.precision > 0.9:
        base *= 0.9

    if metrics.recall < 0.7:
        base *= 0.85
    elif metrics.recall > 0.9:
        base *= 1.05

    mean = metrics.confidence_stats.mean
    if mean < 0.6:
        base *= 0.8
    elif mean > 0.9:
        base *= 1.1
    if metrics.confidence_stats.std > 0.2:
        base *= 1.1

    out = {
        category: clamp_threshold(base * CATEGORY_WEIGHTS.get(category, 1.0))
        for category in DEFAULT_THRESHOLDS
        if category != "default"
    }
    out["default"] = clamp_threshold(base)
    return out


def update_thresholds_from_metrics(
    recent: list[QualityMetrics],
    thresholds: dict[str, float],
) -> dict[str, float]:
    """Scale every threshold by the last two snapshots' trends and the latest levels.

    Falling precision, low precision and high confidence spread raise thresholds;
    falling or low recall lowers them. Fewer than two snapshots leave the map unchanged.
    """
    if len(recent) < 2:
        return dict(thresholds)
    latest, previous = recent[-1], recent[-2]
    precision_trend = latest.precision - previous.precision
    recall_trend = latest.recall - previous.recall

    adj = 0.0
    if precision_trend < -0.05:
        adj += METRICS_STEP
    elif precision_trend > 0.05:
        adj -= METRICS_STEP * 0.5
    if recall_trend < -0.05:
        adj -= METRICS_STEP
    elif recall_trend > 0.05:
        adj += METRICS_STEP * 0.5

    if latest.precision < 0.7:
        adj += METRICS_STEP * 0.5
    if latest.confidence_stats.std > 0.2:
        adj += METRICS_STEP * 0.5
    if latest.recall < 0.7:
        adj -= METRICS_STEP * 0.5

    return {category: clamp_threshold(t * (1.0 + adj)) for category, t in thresholds.items()}


def threshold_trend(history: list[ThresholdHistoryEntry]) -> ThresholdTrend:
    """Per-category direction of the mean step between consecutive history entries."""
    if len(history) < 2:
        return ThresholdTrend()

    categories: list[str] = []
    for entry in history:
        for c in entry.thresholds:
            if c not in categories:
                categories.append(c)

    directions: dict[str, ThresholdDirection] = {}
    total_strength = 0.0
    measured = 0
    for c in categories:
        steps = [
            cur.thresholds[c] - prev.thresholds[c]
            for prev, cur in zip(history, history[1:])
            if c in cur.thresholds and c in prev.thresholds
        ]
        if not steps:
            directions[c] = "stable"
            continue
        avg = sum(steps) / len(steps)
        if avg > 0.01:
            directions[c] = "increasing"
        elif avg < -0.01:
            directions[c] = "decreasing"
        else:
            directions[c] = "stable"
        total_strength += min(1.0, abs(avg) / 0.1)
        measured += 1

    up = sum(1 for d in directions.values() if d == "increasing")
    down = sum(1 for d in directions.values() if d == "decreasing")
    overall: ThresholdDirection = "stable"
    if up > down:
        overall = "increasing"
    elif down > up:
        overall = "decreasing"
    return ThresholdTrend(
        overall=overall,
        strength=total_strength / measured if measured else 0.0,
        categories=directions,
    )


class AdaptiveThresholdManager:
    """Session-scoped threshold map with bounded update and feedback histories.

    Construct one per session and hand it to the pipeline; all public methods are
    safe to call from several threads.
    """

    def __init__(self, initial: dict[str, float] | None = None, *, max_history: int = MAX_HISTORY) -> None:
        seed = dict(DEFAULT_THRESHOLDS if initial is None else initial)
        seed.setdefault("default", DEFAULT_THRESHOLDS["default"])
        self._seed = {k: clamp_threshold(v) for k, v in seed.items()}
        self._thresholds = dict(self._seed)
        self._history: Deque[ThresholdHistoryEntry] = deque(maxlen=max_history)
        self._feedback: Deque[UserFeedback] = deque(maxlen=max_history)
        self._performance: dict[str, CategoryPerformance] = {}
        self._lock = threading.Lock()
        with self._lock:
            self._record_locked("Initial threshold setup")

    def thresholds(self) -> dict[str, float]:
        with self._lock:
            return dict(self._thresholds)

    def threshold_for(self, category: str) -> float:
        with self._lock:
            return clamp_threshold(_lookup(self._thresholds, category)[1])

    def update_thresholds(
        self,
        thresholds: dict[str, float],
        reason: str,
        performance_metrics: QualityMetrics | None = None,
    ) -> dict[str, float]:
        """Replace the map (values clamped) and record why."""
        with self._lock:
            new = {k: clamp_threshold(v) for k, v in thresholds.items()}
            new.setdefault("default", self._thresholds.get("default", DEFAULT_THRESHOLDS["default"]))
            self._thresholds = new
            self._record_locked(f"Threshold update: {reason}", performance_metrics)
            return dict(self._thresholds)

    def record_user_feedback(self, feedback: UserFeedback) -> dict[str, float]:
        with self._lock:
            self._feedback.append(feedback)
            self._thresholds = learn_from_feedback(feedback, self._thresholds)
            self._record_locked(f"User feedback: {feedback.user_action} for {feedback.category}")
            LOG.debug("Feedback %s on %s (conf=%.2f)", feedback.user_action, feedback.category, feedback.confidence)
            return dict(self._thresholds)

    def update_from_metrics(self, recent: list[QualityMetrics]) -> dict[str, float]:
        """Apply the metrics-trend rules; a no-op until two snapshots exist."""
        with self._lock:
            if len(recent) < 2:
                return dict(self._thresholds)
            self._thresholds = update_thresholds_from_metrics(recent, self._thresholds)
            self._record_locked("Threshold update: quality metrics trend", recent[-1])
            return dict(self._thresholds)

    def apply_optimal_thresholds(self, metrics: QualityMetrics) -> dict[str, float]:
        return self.update_thresholds(optimal_thresholds(metrics), "optimal thresholds", metrics)

    def adjusted_threshold(self, category: str) -> float:
        """Current threshold for `category` adjusted by its recorded performance."""
        with self._lock:
            _, base = _lookup(self._thresholds, category)
            perf = self._performance.get(norm_category(category), CategoryPerformance())
        return adjust_threshold_for_category(base, category, perf)

    def record_detection_result(self, items: list[DetectedItem]) -> None:
        """Count samples per category for later performance-based adjustment."""
        with self._lock:
            for it in items:
                key = norm_category(it.category)
                perf = self._performance.get(key, CategoryPerformance())
                self._performance[key] = replace(perf, sample_count=perf.sample_count + 1)

    def history(self) -> list[ThresholdHistoryEntry]:
        with self._lock:
            return list(self._history)

    def feedback(self) -> list[UserFeedback]:
        with self._lock:
            return list(self._feedback)

    def trend(self) -> ThresholdTrend:
        return threshold_trend(self.history())

    def performance_summary(self, *, window_s: float = 24 * 3600.0) -> ThresholdPerformanceSummary:
        now = time.time()
        with self._lock:
            values = list(self._thresholds.values())
            return ThresholdPerformanceSummary(
                total_updates=len(self._history),
                recent_updates=sum(1 for e in self._history if e.timestamp > now - window_s),
                category_performance=dict(self._performance),
                user_feedback_count=len(self._feedback),
                average_threshold=sum(values) / len(values) if values else 0.0,
            )

    def clear(self) -> None:
        """Reset to the seed thresholds and drop all history and feedback."""
        with self._lock:
            self._thresholds = dict(self._seed)
            self._history.clear()
            self._feedback.clear()
            self._performance.clear()
            self._record_locked("Threshold reset")

    def _record_locked(self, reason: str, metrics: QualityMetrics | None = None) -> None:
        self._history.append(
            ThresholdHistoryEntry(
                timestamp=time.time(),
                thresholds=dict(self._thresholds),
                reason=reason,
                performance_metrics=metrics,
            )
        )
