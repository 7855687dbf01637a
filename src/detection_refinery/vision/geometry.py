"""Geometry helpers (area, intersection, IoU, containment, NMS) for detection boxes.

All functions are pure and operate on normalized `BoundingBox` values. No coordinate
transform happens here; boxes are compared in whatever frame the caller uses.
"""

from __future__ import annotations

from dataclasses import dataclass
from math import hypot

from .types import BoundingBox, DetectedItem


@dataclass(frozen=True)
class OverlapMetrics:
    """Pairwise overlap measurements between two boxes."""

    intersection_area: float
    union_area: float
    overlap_percentage: float
    iou: float


def area(box: BoundingBox) -> float:
    """Return the box area; degenerate boxes yield 0."""
    return box.area()


def center(box: BoundingBox) -> tuple[float, float]:
    """Return the (x, y) center point of a box."""
    return box.x + box.width / 2.0, box.y + box.height / 2.0


def distance(p: tuple[float, float], q: tuple[float, float]) -> float:
    """Euclidean distance between two points."""
    return hypot(q[0] - p[0], q[1] - p[1])


def intersection(a: BoundingBox, b: BoundingBox) -> BoundingBox | None:
    """Return the intersection box, or None when the boxes do not overlap."""
    left = max(a.x, b.x)
    top = max(a.y, b.y)
    right = min(a.x2, b.x2)
    bottom = min(a.y2, b.y2)
    if left < right and top < bottom:
        return BoundingBox(x=left, y=top, width=right - left, height=bottom - top)
    return None


def intersection_area(a: BoundingBox, b: BoundingBox) -> float:
    inter = intersection(a, b)
    return inter.area() if inter is not None else 0.0


def union_area(a: BoundingBox, b: BoundingBox) -> float:
    return a.area() + b.area() - intersection_area(a, b)


def iou(a: BoundingBox, b: BoundingBox) -> float:
    """Compute intersection-over-union (IoU) between two boxes."""
    inter = intersection_area(a, b)
    if inter <= 0.0:
        return 0.0
    union = a.area() + b.area() - inter
    return float(inter / union) if union > 0 else 0.0


def overlap_metrics(a: BoundingBox, b: BoundingBox) -> OverlapMetrics:
    """Return intersection, union, overlap percentage and IoU for two boxes.

    The overlap percentage is the IoU; both fields are kept because consumers
    read them under different names.
    """
    inter = intersection_area(a, b)
    union = a.area() + b.area() - inter
    ratio = inter / union if union > 0 else 0.0
    return OverlapMetrics(
        intersection_area=inter,
        union_area=union,
        overlap_percentage=ratio,
        iou=ratio,
    )


def containment_ratio(parent: BoundingBox, child: BoundingBox) -> float:
    """Fraction of the child's area covered by the parent (intersection / child area)."""
    child_area = child.area()
    if child_area <= 0.0:
        return 0.0
    return intersection_area(parent, child) / child_area


def contains(outer: BoundingBox, inner: BoundingBox, ratio: float = 0.8) -> bool:
    """Return True when at least `ratio` of `inner` lies inside `outer`."""
    return containment_ratio(outer, inner) >= ratio


def is_fully_contained(outer: BoundingBox, inner: BoundingBox) -> bool:
    """Edge-inclusive check that `inner` lies entirely within `outer`."""
    return (
        inner.x >= outer.x
        and inner.y >= outer.y
        and inner.x2 <= outer.x2
        and inner.y2 <= outer.y2
    )


def nms(items: list[DetectedItem], iou_thr: float = 0.5) -> list[DetectedItem]:
    """Non-maximum suppression (NMS) by IoU, keeping highest-confidence items."""
    items_sorted = sorted(items, key=lambda it: it.confidence, reverse=True)
    kept: list[DetectedItem] = []
    for it in items_sorted:
        if all(iou(it.bounding_box, k.bounding_box) < iou_thr for k in kept):
            kept.append(it)
    return kept
