"""Segmentation-polygon processing (bounding box + precision level from a mask outline).

Only vertex geometry is handled here; pixel masks are passed through untouched.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace

from shapely.geometry import MultiPoint

from .types import BoundingBox, DetectedItem, PrecisionLevel, SegmentationMask

LOG = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProcessedSegmentation:
    """Summary of a segmentation polygon."""

    bounding_box: BoundingBox
    precision_level: PrecisionLevel
    quality_score: float
    vertex_count: int
    area: float


def vertices_to_box(vertices: tuple[tuple[float, float], ...] | list[tuple[float, float]]) -> BoundingBox:
    """Tightest box around the vertices (zero-size box for 0 or 1 vertex)."""
    if not vertices:
        return BoundingBox(x=0.0, y=0.0, width=0.0, height=0.0)
    if len(vertices) == 1:
        x, y = vertices[0]
        return BoundingBox(x=float(x), y=float(y), width=0.0, height=0.0)
    minx, miny, maxx, maxy = MultiPoint([(float(x), float(y)) for x, y in vertices]).bounds
    return BoundingBox(x=minx, y=miny, width=maxx - minx, height=maxy - miny)


def segmentation_quality(vertices: tuple[tuple[float, float], ...], area: float) -> float:
    """Heuristic quality in [0, 1] from aspect ratio, covered area and vertex density."""
    if len(vertices) < 3:
        return 0.0
    xs = [v[0] for v in vertices]
    ys = [v[1] for v in vertices]
    x_range = max(xs) - min(xs)
    y_range = max(ys) - min(ys)
    longest = max(x_range, y_range)
    aspect = min(x_range, y_range) / longest if longest > 0 else 0.0
    area_score = min(area * 100.0, 1.0)
    vertex_score = min(len(vertices) / 10.0, 1.0)
    return aspect * 0.3 + area_score * 0.4 + vertex_score * 0.3


def process_segmentation_mask(mask: SegmentationMask) -> ProcessedSegmentation:
    """Derive box, precision level and quality score from a polygon outline."""
    vertices = tuple(mask.normalized_vertices)
    if not vertices:
        return ProcessedSegmentation(
            bounding_box=BoundingBox(x=0.0, y=0.0, width=0.0, height=0.0),
            precision_level="low",
            quality_score=0.0,
            vertex_count=0,
            area=0.0,
        )

    box = vertices_to_box(vertices)
    area = box.area()
    quality = segmentation_quality(vertices, area)
    level: PrecisionLevel = "low"
    if quality >= 0.8 and len(vertices) >= 8 and area > 0.01:
        level = "high"
    elif quality >= 0.6 and len(vertices) >= 4 and area > 0.005:
        level = "medium"
    return ProcessedSegmentation(
        bounding_box=box,
        precision_level=level,
        quality_score=quality,
        vertex_count=len(vertices),
        area=area,
    )


def refine_item_with_mask(item: DetectedItem) -> DetectedItem:
    """Replace an item's box and precision level with values derived from its polygon.

    Items without a usable polygon (fewer than 3 vertices) are returned unchanged.
    """
    mask = item.segmentation_mask
    if mask is None or len(mask.normalized_vertices) < 3:
        return item
    processed = process_segmentation_mask(mask)
    LOG.debug(
        "Mask refine id=%s vertices=%d level=%s quality=%.3f",
        item.id,
        processed.vertex_count,
        processed.precision_level,
        processed.quality_score,
    )
    return replace(
        item,
        bounding_box=processed.bounding_box,
        precision_level=processed.precision_level,
    )
