"""Core vision data types shared across the refinement stages."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

PrecisionLevel = Literal["high", "medium", "low"]
DetectionSource = Literal["object_localization", "label_detection", "fallback"]
RelationshipType = Literal["containment", "overlap"]


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned box in normalized image coordinates.

    Attributes:
        x, y: Top-left corner, relative to image width/height.
        width, height: Extent, relative to image width/height. Zero is allowed.
    """

    x: float
    y: float
    width: float
    height: float

    @property
    def x2(self) -> float:
        return self.x + self.width

    @property
    def y2(self) -> float:
        return self.y + self.height

    def area(self) -> float:
        """Return the box area (0 for degenerate boxes)."""
        return max(0.0, self.width) * max(0.0, self.height)

    def clip(self) -> BoundingBox:
        """Clip to the unit square, keeping width/height non-negative."""
        x1 = float(min(max(self.x, 0.0), 1.0))
        y1 = float(min(max(self.y, 0.0), 1.0))
        x2 = float(min(max(self.x2, 0.0), 1.0))
        y2 = float(min(max(self.y2, 0.0), 1.0))
        if x2 < x1:
            x1, x2 = x2, x1
        if y2 < y1:
            y1, y2 = y2, y1
        return BoundingBox(x=x1, y=y1, width=x2 - x1, height=y2 - y1)


@dataclass(frozen=True)
class SegmentationMask:
    """Polygon outline of a detection, optionally with an encoded pixel mask."""

    normalized_vertices: tuple[tuple[float, float], ...] = ()
    pixel_mask: str | None = None


@dataclass(frozen=True)
class DetectedItem:
    """A single detection returned by a vision provider.

    Attributes:
        id: Provider-unique identifier.
        name: Free-text label (e.g. "Wrist watch").
        confidence: Provider score in [0, 1].
        category: Free-text catalog category (e.g. "Accessories").
        bounding_box: Normalized location of the item.
        segmentation_mask: Optional polygon outline.
        precision_level: Localisation quality derived from the mask.
        source: Which provider feature produced the item.
        description: Optional human-readable text.
    """

    id: str
    name: str
    confidence: float
    category: str
    bounding_box: BoundingBox
    segmentation_mask: SegmentationMask | None = None
    precision_level: PrecisionLevel = "low"
    source: DetectionSource = "object_localization"
    description: str = ""

    def area(self) -> float:
        return self.bounding_box.area()


@dataclass(frozen=True)
class Relationship:
    """Parent/child spatial relationship between two detections."""

    parent: DetectedItem
    child: DetectedItem
    containment_ratio: float
    intersection_area: float
    confidence: float = 0.0
    relationship_type: RelationshipType = "containment"
