"""Merging detections from independent vision providers."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from detection_refinery.vision.geometry import nms
from detection_refinery.vision.labels import norm_category
from detection_refinery.vision.types import DetectedItem

LOG = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderResult:
    """Detections returned by one provider for one image."""

    provider: str
    items: list[DetectedItem] = field(default_factory=list)
    success: bool = True
    processing_time_ms: float = 0.0
    error: str | None = None


@dataclass(frozen=True)
class MergedDetections:
    items: list[DetectedItem]
    processing_time_ms: float
    success: bool
    providers: list[str]


def _merge_key(item: DetectedItem) -> tuple[str, str]:
    return item.name.strip().lower(), norm_category(item.category)


def merge_provider_detections(
    results: list[ProviderResult],
    *,
    nms_iou: float | None = None,
) -> MergedDetections:
    """Combine successful provider results into one item list.

    Items with the same name (case-insensitive) and category collapse to the most
    confident one, at the position of the first. With `nms_iou` set, same-name items
    are additionally suppressed by box overlap.

    The merge succeeds when at least one provider succeeded; providers run in
    parallel, so the reported time is the slowest provider's.
    """
    merged: list[DetectedItem] = []
    index: dict[tuple[str, str], int] = {}
    used: list[str] = []
    for res in results:
        if not res.success:
            LOG.warning("Provider %s failed: %s", res.provider, res.error or "unknown error")
            continue
        used.append(res.provider)
        for it in res.items:
            key = _merge_key(it)
            pos = index.get(key)
            if pos is None:
                index[key] = len(merged)
                merged.append(it)
            elif it.confidence > merged[pos].confidence:
                merged[pos] = it

    if nms_iou is not None:
        merged = _nms_by_name(merged, nms_iou)

    return MergedDetections(
        items=merged,
        processing_time_ms=max((r.processing_time_ms for r in results), default=0.0),
        success=any(r.success for r in results),
        providers=used,
    )


def _nms_by_name(items: list[DetectedItem], iou_thr: float) -> list[DetectedItem]:
    by_name: dict[str, list[DetectedItem]] = {}
    for it in items:
        by_name.setdefault(it.name.strip().lower(), []).append(it)
    keep_ids = {id(k) for group in by_name.values() for k in nms(group, iou_thr=iou_thr)}
    return [it for it in items if id(it) in keep_ids]
