"""Orchestrator for the category filter → spatial → overlap → contextual → threshold pipeline."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from time import perf_counter
from typing import Any

from detection_refinery.adaptive.quality import QualityMetrics, QualityMetricsTracker
from detection_refinery.adaptive.thresholds import (
    DEFAULT_THRESHOLDS,
    AdaptiveThresholdManager,
    DetectionContext,
    adaptive_threshold,
    clamp_threshold,
)
from detection_refinery.pipelines.cache import DetectionCache
from detection_refinery.pipelines.config import DEFAULT_CONFIG, RefinementConfig
from detection_refinery.refinement.category_filter import FilteringStats, apply_category_filter, filtering_stats
from detection_refinery.refinement.contextual import ContextualStats, apply_contextual_filter
from detection_refinery.refinement.overlap import ConflictStats, OverlapStats, resolve_overlaps
from detection_refinery.refinement.providers import ProviderResult, merge_provider_detections
from detection_refinery.refinement.spatial import SpatialParams, SpatialStats, analyze
from detection_refinery.telemetry.performance import (
    BottleneckDetail,
    PerformanceMonitor,
    StageDetail,
    identify_bottlenecks,
)
from detection_refinery.vision.records import item_to_payload
from detection_refinery.vision.types import DetectedItem

LOG = logging.getLogger(__name__)


@dataclass(frozen=True)
class StageTimings:
    """Wall time per stage, in milliseconds."""

    total_ms: float = 0.0
    category_filtering_ms: float = 0.0
    spatial_analysis_ms: float = 0.0
    overlap_resolution_ms: float = 0.0
    contextual_filtering_ms: float = 0.0
    threshold_application_ms: float = 0.0


@dataclass(frozen=True)
class DynamicThresholdStats:
    applied: bool = False
    context_threshold: float = 0.0
    context_multiplier: float = 0.0
    items_before: int = 0
    items_after: int = 0
    items_removed: int = 0
    thresholds_used: dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class ProcessingMetrics:
    timings: StageTimings = field(default_factory=StageTimings)
    filtering_stats: FilteringStats = field(default_factory=FilteringStats)
    spatial_stats: SpatialStats = field(default_factory=SpatialStats)
    overlap_stats: OverlapStats = field(default_factory=OverlapStats)
    conflict_stats: ConflictStats = field(default_factory=ConflictStats)
    contextual_stats: ContextualStats = field(default_factory=ContextualStats)
    dynamic_threshold_stats: DynamicThresholdStats = field(default_factory=DynamicThresholdStats)


@dataclass(frozen=True)
class RefinementResult:
    items: list[DetectedItem]
    processing_metrics: ProcessingMetrics
    quality_metrics: QualityMetrics | None = None
    success: bool = True
    error: str | None = None


def _ms_since(t0: float) -> float:
    return (perf_counter() - t0) * 1000.0


def stage_bottlenecks(timings: StageTimings) -> list[BottleneckDetail]:
    """Stages that took more than a fifth of the total time, slowest first."""
    return identify_bottlenecks(
        {
            "category_filtering": timings.category_filtering_ms,
            "spatial_analysis": timings.spatial_analysis_ms,
            "overlap_resolution": timings.overlap_resolution_ms,
            "contextual_filtering": timings.contextual_filtering_ms,
            "threshold_application": timings.threshold_application_ms,
        },
        timings.total_ms,
    )


class RefinementPipeline:
    """Runs the refinement stages for one image at a time.

    The threshold manager, quality tracker and performance monitor are session-scoped
    and shared by every call; pass the same instances to share them across pipelines.
    With a `cache`, results of calls given a `cache_key` are reused until they expire.
    """

    def __init__(
        self,
        config: RefinementConfig = DEFAULT_CONFIG,
        *,
        thresholds: AdaptiveThresholdManager | None = None,
        quality: QualityMetricsTracker | None = None,
        monitor: PerformanceMonitor | None = None,
        cache: DetectionCache | None = None,
    ) -> None:
        self.config = config
        self.thresholds = thresholds if thresholds is not None else AdaptiveThresholdManager()
        self.quality = quality if quality is not None else QualityMetricsTracker()
        self.monitor = monitor if monitor is not None else PerformanceMonitor()
        self.cache = cache
        # Guards the record-snapshot / read-window / update-thresholds sequence.
        self._session_lock = threading.Lock()

    def refine(
        self,
        items: list[DetectedItem],
        context: DetectionContext | None = None,
        *,
        cache_key: str | None = None,
    ) -> RefinementResult:
        """Refine one image's detections. Never raises; failures come back as `success=False`.

        Only successful results are cached.
        """
        t0 = perf_counter()
        if cache_key is not None and self.cache is not None:
            cached = self._cache_lookup(self.cache, cache_key, len(items))
            if cached is not None:
                return cached

        try:
            result = self._run(list(items), context, t0)
        except Exception as e:
            LOG.exception("Refinement failed for %d items", len(items))
            failed = RefinementResult(
                items=[],
                processing_metrics=ProcessingMetrics(),
                success=False,
                error=f"{type(e).__name__}: {e}",
            )
            if self.config.enable_metrics:
                self._record_failure(_ms_since(t0), len(items), failed.error)
            return failed

        if cache_key is not None and self.cache is not None:
            self.cache.put(cache_key, result)
        if self.config.enable_metrics:
            self._record_performance(result, len(items))
        total = result.processing_metrics.timings.total_ms
        if total > self.config.max_processing_ms:
            LOG.warning(
                "Refinement exceeded time budget: %.1fms > %.0fms",
                total,
                self.config.max_processing_ms,
            )
            self._request_optimization(len(items))
        return result

    def refine_provider_detections(
        self,
        results: list[ProviderResult],
        context: DetectionContext | None = None,
        *,
        nms_iou: float | None = None,
        cache_key: str | None = None,
    ) -> RefinementResult:
        """Merge per-provider detections for one image, then refine them."""
        merged = merge_provider_detections(results, nms_iou=nms_iou)
        if results and not merged.success:
            errors = "; ".join(f"{r.provider}: {r.error or 'failed'}" for r in results)
            return RefinementResult(
                items=[],
                processing_metrics=ProcessingMetrics(),
                success=False,
                error=f"All providers failed ({errors})",
            )
        LOG.debug("Merged %d items from providers %s", len(merged.items), merged.providers)
        return self.refine(merged.items, context, cache_key=cache_key)

    def refine_batch(
        self,
        batches: list[list[DetectedItem]],
        *,
        max_workers: int = 4,
    ) -> list[RefinementResult]:
        """Refine independent images in parallel; results keep the input order."""
        if not batches:
            return []
        workers = max(1, min(max_workers, len(batches)))
        t0 = perf_counter()
        with ThreadPoolExecutor(max_workers=workers) as pool:
            results = list(pool.map(self.refine, batches))
        if self.config.enable_metrics:
            try:
                self.monitor.record_parallel(
                    "refine_batch",
                    _ms_since(t0),
                    tasks=workers,
                    item_count=sum(len(b) for b in batches),
                )
            except Exception:
                LOG.exception("Performance monitor failed; result unaffected")
        return results

    def _run(self, items: list[DetectedItem], context: DetectionContext | None, t0: float) -> RefinementResult:
        cfg = self.config
        if not items:
            return RefinementResult(
                items=[],
                processing_metrics=ProcessingMetrics(timings=StageTimings(total_ms=_ms_since(t0))),
            )

        t = perf_counter()
        filtered = apply_category_filter(items, cfg.filtering)
        f_stats = filtering_stats(items, cfg.filtering)
        category_ms = _ms_since(t)

        t = perf_counter()
        spatial = analyze(
            filtered,
            SpatialParams(
                min_containment_ratio=cfg.min_containment_ratio,
                same_object_ratio=cfg.same_object_ratio,
            ),
        )
        spatial_ms = _ms_since(t)

        t = perf_counter()
        overlap = resolve_overlaps(spatial.filtered_items, cfg.overlap_threshold)
        overlap_ms = _ms_since(t)

        t = perf_counter()
        current = overlap.resolved_items
        c_stats = ContextualStats()
        if cfg.enable_contextual:
            contextual = apply_contextual_filter(current, overlap_threshold=cfg.contextual_overlap_threshold)
            current = contextual.items
            c_stats = contextual.stats
        contextual_ms = _ms_since(t)

        t = perf_counter()
        d_stats = DynamicThresholdStats(items_before=len(current), items_after=len(current))
        if cfg.adapt_thresholds and current:
            current, d_stats = self._apply_thresholds(current, context)
        threshold_ms = _ms_since(t)

        total_ms = _ms_since(t0)
        quality = self._record_quality(current, total_ms) if cfg.enable_metrics else None

        LOG.info(
            "Refined %d -> %d items in %.1fms (filtered=%d relationships=%d conflicts=%d)",
            len(items),
            len(current),
            total_ms,
            f_stats.filtered,
            spatial.stats.total_relationships,
            overlap.conflicts.stats.resolved_conflicts,
        )
        return RefinementResult(
            items=current,
            processing_metrics=ProcessingMetrics(
                timings=StageTimings(
                    total_ms=total_ms,
                    category_filtering_ms=category_ms,
                    spatial_analysis_ms=spatial_ms,
                    overlap_resolution_ms=overlap_ms,
                    contextual_filtering_ms=contextual_ms,
                    threshold_application_ms=threshold_ms,
                ),
                filtering_stats=f_stats,
                spatial_stats=spatial.stats,
                overlap_stats=overlap.statistics,
                conflict_stats=overlap.conflicts.stats,
                contextual_stats=c_stats,
                dynamic_threshold_stats=d_stats,
            ),
            quality_metrics=quality,
        )

    def _apply_thresholds(
        self,
        items: list[DetectedItem],
        context: DetectionContext | None,
    ) -> tuple[list[DetectedItem], DynamicThresholdStats]:
        ctx = context if context is not None else DetectionContext.from_items(items)
        context_threshold = adaptive_threshold(ctx)
        multiplier = context_threshold / DEFAULT_THRESHOLDS["default"]

        used: dict[str, float] = {}
        kept: list[DetectedItem] = []
        for it in items:
            if it.category not in used:
                used[it.category] = clamp_threshold(self.thresholds.threshold_for(it.category) * multiplier)
            if it.confidence >= used[it.category]:
                kept.append(it)
        return kept, DynamicThresholdStats(
            applied=True,
            context_threshold=context_threshold,
            context_multiplier=multiplier,
            items_before=len(items),
            items_after=len(kept),
            items_removed=len(items) - len(kept),
            thresholds_used=used,
        )

    def _record_quality(self, items: list[DetectedItem], total_ms: float) -> QualityMetrics | None:
        try:
            # One window per snapshot: concurrent calls must not apply the same trend twice.
            with self._session_lock:
                snap = self.quality.record_detection_result(items, total_ms)
                self.thresholds.record_detection_result(items)
                if self.config.adapt_thresholds:
                    self.thresholds.update_from_metrics(self.quality.history()[-2:])
        except Exception:
            LOG.exception("Failed to record quality metrics; continuing without them")
            return None
        return snap

    def _record_performance(self, result: RefinementResult, item_count: int) -> None:
        m = result.processing_metrics
        try:
            self.monitor.record_operation(
                "total_processing",
                m.timings.total_ms,
                item_count=item_count,
                success=result.success,
                error=result.error,
                detail=StageDetail(
                    relationships_found=m.spatial_stats.total_relationships,
                    conflicts_resolved=m.conflict_stats.resolved_conflicts,
                    filtered=m.filtering_stats.filtered,
                    kept=m.filtering_stats.kept,
                ),
            )
            self.monitor.record_operation(
                "category_filtering",
                m.timings.category_filtering_ms,
                item_count=m.filtering_stats.total,
                detail=StageDetail(filtered=m.filtering_stats.filtered, kept=m.filtering_stats.kept),
            )
            self.monitor.record_operation(
                "spatial_analysis",
                m.timings.spatial_analysis_ms,
                item_count=m.spatial_stats.filtered_count,
                detail=StageDetail(relationships_found=m.spatial_stats.total_relationships),
            )
            self.monitor.record_operation(
                "overlap_resolution",
                m.timings.overlap_resolution_ms,
                item_count=len(result.items),
                detail=StageDetail(conflicts_resolved=m.conflict_stats.resolved_conflicts),
            )
            for b in stage_bottlenecks(m.timings):
                self.monitor.record_bottleneck(
                    "refinement",
                    b.impact * m.timings.total_ms,
                    stage=b.stage,
                    severity=b.severity,
                    impact=b.impact,
                    item_count=item_count,
                )
        except Exception:
            LOG.exception("Performance monitor failed; result unaffected")

    def _record_failure(self, duration_ms: float, item_count: int, error: str | None) -> None:
        try:
            self.monitor.record_operation(
                "total_processing",
                duration_ms,
                item_count=item_count,
                success=False,
                error=error,
            )
        except Exception:
            LOG.exception("Performance monitor failed; result unaffected")

    def _cache_lookup(self, cache: DetectionCache, key: str, item_count: int) -> RefinementResult | None:
        t = perf_counter()
        hit: RefinementResult | None = cache.get(key)
        if self.config.enable_metrics:
            try:
                self.monitor.record_cache(
                    "lookup",
                    _ms_since(t),
                    hit=hit is not None,
                    size=len(cache),
                    item_count=item_count,
                )
            except Exception:
                LOG.exception("Performance monitor failed; result unaffected")
        if hit is not None:
            LOG.debug("Cache hit for %s", key[:12])
        return hit

    def _request_optimization(self, item_count: int) -> None:
        try:
            if self.monitor.should_optimize():
                t = perf_counter()
                opt = self.monitor.optimize_processing(item_count)
                if opt.optimized:
                    LOG.info("Suggested optimizations: %s", "; ".join(opt.applied))
                    if self.config.enable_metrics:
                        self.monitor.record_optimization(
                            "refinement", _ms_since(t), applied=opt.applied, item_count=item_count
                        )
        except Exception:
            LOG.exception("Optimization request failed; result unaffected")


def result_to_payload(result: RefinementResult) -> dict[str, Any]:
    """JSON-ready dict of a refinement result."""
    out: dict[str, Any] = {
        "items": [item_to_payload(it) for it in result.items],
        "processing_metrics": asdict(result.processing_metrics),
        "success": result.success,
    }
    if result.quality_metrics is not None:
        out["quality_metrics"] = asdict(result.quality_metrics)
    if result.error is not None:
        out["error"] = result.error
    return out
