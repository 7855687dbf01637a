import json
import logging
import time
from dataclasses import asdict
from pathlib import Path

import pytest
import yaml

from detection_refinery.adaptive.quality import QualityMetrics, QualityMetricsTracker
from detection_refinery.adaptive.thresholds import AdaptiveThresholdManager, DetectionContext
from detection_refinery.pipelines.batch import refine_files
from detection_refinery.pipelines.cache import DetectionCache
from detection_refinery.pipelines.config import merge_config
from detection_refinery.pipelines.refinement import (
    ProcessingMetrics,
    RefinementPipeline,
    StageTimings,
    result_to_payload,
    stage_bottlenecks,
)
from detection_refinery.refinement.providers import ProviderResult
from detection_refinery.telemetry.performance import ParallelDetail, PerformanceMonitor
from detection_refinery.vision.records import item_to_payload
from detection_refinery.vision.types import BoundingBox, DetectedItem


def _item(
    id_: str,
    box: tuple[float, float, float, float],
    *,
    conf: float,
    name: str,
    category: str,
) -> DetectedItem:
    x, y, w, h = box
    return DetectedItem(
        id=id_,
        name=name,
        confidence=conf,
        category=category,
        bounding_box=BoundingBox(x=x, y=y, width=w, height=h),
    )


def _watch() -> DetectedItem:
    return _item("watch", (0.4, 0.4, 0.1, 0.1), conf=0.9, name="Watch", category="Accessories")


def _sleeve() -> DetectedItem:
    return _item("sleeve", (0.2, 0.2, 0.6, 0.6), conf=0.85, name="Sleeve", category="Clothing")


class _BrokenThresholds(AdaptiveThresholdManager):
    def threshold_for(self, category: str) -> float:
        raise RuntimeError("threshold store unavailable")


class _BrokenMonitor(PerformanceMonitor):
    def record_operation(self, operation: str, duration_ms: float, **kwargs: object) -> None:
        raise OSError("disk full")


class _SlowQuality(QualityMetricsTracker):
    def record_detection_result(
        self,
        items: list[DetectedItem],
        processing_time_ms: float,
        *,
        timestamp: float | None = None,
    ) -> QualityMetrics:
        snap = super().record_detection_result(items, processing_time_ms, timestamp=timestamp)
        # Widen the gap between recording a snapshot and reading the history window.
        time.sleep(0.02)
        return snap


class _WindowLog(AdaptiveThresholdManager):
    def __init__(self) -> None:
        super().__init__()
        self.windows: list[list[QualityMetrics]] = []

    def update_from_metrics(self, recent: list[QualityMetrics]) -> dict[str, float]:
        self.windows.append(list(recent))
        return super().update_from_metrics(recent)


def test_empty_input_succeeds_with_zero_stats() -> None:
    pipeline = RefinementPipeline()
    res = pipeline.refine([])
    assert res.success
    assert res.items == []
    assert res.quality_metrics is None
    assert res.processing_metrics.filtering_stats.total == 0
    assert res.processing_metrics.spatial_stats.total_relationships == 0
    assert pipeline.quality.history() == []


def test_watch_in_sleeve_end_to_end() -> None:
    pipeline = RefinementPipeline()
    res = pipeline.refine([_watch(), _sleeve()])
    assert res.success
    assert [it.id for it in res.items] == ["watch"]

    m = res.processing_metrics
    assert m.filtering_stats.kept == 2
    assert m.contextual_stats.is_watch_sleeve_scenario
    assert m.dynamic_threshold_stats.applied
    assert m.dynamic_threshold_stats.items_removed == 0
    assert m.timings.total_ms >= m.timings.category_filtering_ms
    assert res.quality_metrics is not None
    assert res.quality_metrics.item_count == 1
    assert len(pipeline.quality.history()) == 1
    assert "total_processing" in {r.operation for r in pipeline.monitor.records()}


def test_category_filter_runs_first() -> None:
    table = _item("table", (0.0, 0.0, 0.2, 0.2), conf=0.85, name="Table", category="Furniture")
    sleeve = _item("sleeve", (0.5, 0.5, 0.2, 0.2), conf=0.75, name="Sleeve", category="Clothing")
    res = RefinementPipeline().refine([sleeve, table])
    assert res.processing_metrics.filtering_stats.filtered == 1
    assert "sleeve" not in {it.id for it in res.items}


def test_harsh_context_raises_thresholds() -> None:
    ctx = DetectionContext(image_quality="low", lighting="poor")
    res = RefinementPipeline().refine([_watch(), _sleeve()], ctx)
    d = res.processing_metrics.dynamic_threshold_stats
    assert res.success
    assert res.items == []
    assert d.items_removed == 1
    assert d.thresholds_used == {"Accessories": pytest.approx(0.95)}


def test_disabled_stages() -> None:
    cfg = merge_config(enable_contextual=False, adapt_thresholds=False, enable_metrics=False)
    pipeline = RefinementPipeline(cfg)
    res = pipeline.refine([_watch(), _sleeve()])
    assert [it.id for it in res.items] == ["watch", "sleeve"]
    assert not res.processing_metrics.contextual_stats.applied
    assert not res.processing_metrics.dynamic_threshold_stats.applied
    assert res.quality_metrics is None
    assert pipeline.monitor.records() == []


def test_stage_failure_becomes_error_result() -> None:
    pipeline = RefinementPipeline(thresholds=_BrokenThresholds())
    res = pipeline.refine([_watch(), _sleeve()])
    assert not res.success
    assert res.items == []
    assert res.error == "RuntimeError: threshold store unavailable"
    assert res.processing_metrics == ProcessingMetrics()

    [rec] = pipeline.monitor.records()
    assert rec.operation == "total_processing"
    assert not rec.success
    assert rec.error == res.error
    assert pipeline.monitor.report().success_rate == 0.0


def test_monitor_failure_does_not_change_result(caplog: pytest.LogCaptureFixture) -> None:
    pipeline = RefinementPipeline(monitor=_BrokenMonitor())
    with caplog.at_level(logging.ERROR, logger="detection_refinery.pipelines.refinement"):
        res = pipeline.refine([_watch(), _sleeve()])
    assert res.success
    assert [it.id for it in res.items] == ["watch"]
    assert "Performance monitor failed" in caplog.text


def test_budget_overrun_logs_warning(caplog: pytest.LogCaptureFixture) -> None:
    pipeline = RefinementPipeline(merge_config(max_processing_ms=1e-9))
    with caplog.at_level(logging.WARNING, logger="detection_refinery.pipelines.refinement"):
        res = pipeline.refine([_watch(), _sleeve()])
    assert res.success
    assert "exceeded time budget" in caplog.text


def test_quality_history_drives_threshold_updates() -> None:
    pipeline = RefinementPipeline()
    pipeline.refine([_watch(), _sleeve()])
    assert len(pipeline.thresholds.history()) == 1
    pipeline.refine([_watch()])
    assert len(pipeline.quality.history()) == 2
    assert pipeline.thresholds.history()[-1].reason == "Threshold update: quality metrics trend"


def test_refine_batch_keeps_order() -> None:
    table = _item("table", (0.0, 0.0, 0.2, 0.2), conf=0.85, name="Table", category="Furniture")
    results = RefinementPipeline().refine_batch([[_watch(), _sleeve()], [], [table]], max_workers=3)
    assert len(results) == 3
    assert all(r.success for r in results)
    assert [it.id for it in results[0].items] == ["watch"]
    assert results[1].items == []
    assert RefinementPipeline().refine_batch([]) == []


def test_refine_provider_detections() -> None:
    pipeline = RefinementPipeline()
    res = pipeline.refine_provider_detections(
        [
            ProviderResult("vision", [_watch()]),
            ProviderResult("labels", [_sleeve()]),
            ProviderResult("broken", success=False, error="timeout"),
        ]
    )
    assert res.success
    assert [it.id for it in res.items] == ["watch"]

    failed = pipeline.refine_provider_detections([ProviderResult("broken", success=False, error="timeout")])
    assert not failed.success
    assert failed.error == "All providers failed (broken: timeout)"


def test_result_to_payload() -> None:
    res = RefinementPipeline().refine([_watch(), _sleeve()])
    payload = result_to_payload(res)
    assert payload["success"] is True
    assert payload["items"] == [item_to_payload(_watch())]
    assert payload["processing_metrics"] == asdict(res.processing_metrics)
    assert "quality_metrics" in payload
    assert "error" not in payload
    json.dumps(payload)


def test_refine_files_writes_outputs_and_summary(tmp_path: Path) -> None:
    src = tmp_path / "in"
    src.mkdir()
    good = src / "good.json"
    good.write_text(json.dumps([item_to_payload(_watch()), item_to_payload(_sleeve())]), encoding="utf-8")
    bad = src / "bad.json"
    bad.write_text("{not json", encoding="utf-8")
    out = tmp_path / "out"

    pipeline = RefinementPipeline()
    summary, failures = refine_files(pipeline, files=[good, bad], out_root=out)
    assert failures == 1
    assert [e["success"] for e in summary] == [True, False]
    assert summary[0]["items"] == ["Watch"]
    assert str(summary[1]["error"]).startswith("ValueError")

    written = json.loads((out / "good.json").read_text(encoding="utf-8"))
    assert [it["id"] for it in written["items"]] == ["watch"]

    report = yaml.safe_load((out / "summary.yaml").read_text(encoding="utf-8"))
    assert report["failures"] == 1
    assert len(report["files"]) == 2
    assert report["quality"]["basis"] == "proxy"
    assert "Accessories" in report["thresholds"]


def test_refine_files_reuses_existing_output(tmp_path: Path) -> None:
    src = tmp_path / "one.json"
    src.write_text(json.dumps([item_to_payload(_watch())]), encoding="utf-8")
    out = tmp_path / "out"
    out.mkdir()
    (out / "one.json").write_text(json.dumps({"items": [], "success": True}), encoding="utf-8")

    summary, failures = refine_files(RefinementPipeline(), files=[src], out_root=out)
    assert failures == 0
    assert summary[0]["items"] == []

    summary, _ = refine_files(RefinementPipeline(), files=[src], out_root=out, overwrite=True)
    assert summary[0]["items"] == ["Watch"]


def test_provider_items_sharing_an_id_are_refined_independently() -> None:
    laptop = _item("0", (0.0, 0.0, 0.5, 0.5), conf=0.9, name="Laptop", category="Electronics")
    phone = _item("1", (0.4, 0.4, 0.2, 0.2), conf=0.9, name="Phone", category="Electronics")
    book = _item("0", (0.8, 0.8, 0.1, 0.1), conf=0.9, name="Book", category="Books")
    res = RefinementPipeline().refine_provider_detections(
        [ProviderResult("vision", [laptop, phone]), ProviderResult("labels", [book])]
    )
    assert res.success
    assert [it.name for it in res.items] == ["Phone", "Book"]
    assert res.processing_metrics.spatial_stats.parents_removed == 1


def test_concurrent_batch_applies_each_trend_once() -> None:
    mgr = _WindowLog()
    pipeline = RefinementPipeline(thresholds=mgr, quality=_SlowQuality())
    results = pipeline.refine_batch([[_watch(), _sleeve()] for _ in range(4)], max_workers=4)
    assert all(r.success for r in results)

    assert [len(w) for w in mgr.windows] == [1, 2, 2, 2]
    # Every update sees its own snapshot as the newest one.
    assert len({id(w[-1]) for w in mgr.windows}) == 4
    trend_updates = [e for e in mgr.history() if e.reason == "Threshold update: quality metrics trend"]
    assert len(trend_updates) == 3


def test_refine_batch_records_parallel_run() -> None:
    pipeline = RefinementPipeline()
    pipeline.refine_batch([[_watch()], [_sleeve()], []], max_workers=8)
    [rec] = [r for r in pipeline.monitor.records() if r.operation == "parallel_refine_batch"]
    assert rec.detail == ParallelDetail(tasks=3)
    assert rec.item_count == 2


def test_stage_bottlenecks() -> None:
    timings = StageTimings(
        total_ms=100.0,
        category_filtering_ms=5.0,
        spatial_analysis_ms=45.0,
        overlap_resolution_ms=25.0,
        contextual_filtering_ms=15.0,
        threshold_application_ms=5.0,
    )
    found = stage_bottlenecks(timings)
    assert [(b.stage, b.severity) for b in found] == [("spatial_analysis", "high"), ("overlap_resolution", "medium")]
    assert found[0].impact == pytest.approx(0.45)
    assert stage_bottlenecks(StageTimings()) == []


def test_cached_result_is_reused() -> None:
    pipeline = RefinementPipeline(cache=DetectionCache())
    first = pipeline.refine([_watch(), _sleeve()], cache_key="img-1")
    second = pipeline.refine([_watch(), _sleeve()], cache_key="img-1")
    assert second is first
    assert len(pipeline.quality.history()) == 1

    lookups = [r.detail for r in pipeline.monitor.records() if r.operation == "cache_lookup"]
    assert [d.hit for d in lookups] == [False, True]  # type: ignore[union-attr]
    stats = pipeline.cache.stats()  # type: ignore[union-attr]
    assert (stats.hits, stats.misses, stats.size) == (1, 1, 1)


def test_failed_result_is_not_cached() -> None:
    cache = DetectionCache()
    pipeline = RefinementPipeline(thresholds=_BrokenThresholds(), cache=cache)
    assert not pipeline.refine([_watch(), _sleeve()], cache_key="img-1").success
    assert len(cache) == 0


def test_refine_files_cache_hits_identical_content(tmp_path: Path) -> None:
    body = json.dumps([item_to_payload(_watch()), item_to_payload(_sleeve())])
    a = tmp_path / "a.json"
    b = tmp_path / "b.json"
    a.write_text(body, encoding="utf-8")
    b.write_text(body, encoding="utf-8")
    out = tmp_path / "out"

    summary, failures = refine_files(RefinementPipeline(cache=DetectionCache()), files=[a, b], out_root=out)
    assert failures == 0
    assert [e["items"] for e in summary] == [["Watch"], ["Watch"]]
    report = yaml.safe_load((out / "summary.yaml").read_text(encoding="utf-8"))
    assert report["cache"] == {"size": 1, "hits": 1, "misses": 1, "hit_rate": 0.5}
