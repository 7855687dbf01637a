"""JSON payload models for detection records.

Provider adapters hand over camelCase JSON (`boundingBox`, `segmentationMask`,
`precisionLevel`); the snake_case field names are accepted too.
"""

from __future__ import annotations

import json
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .labels import categorize_item
from .segmentation import process_segmentation_mask
from .types import BoundingBox, DetectedItem, SegmentationMask


class _JsonBox(BaseModel):
    model_config = ConfigDict(extra="ignore")

    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0

    @field_validator("width", "height", mode="before")
    @classmethod
    def _non_negative(cls, v: Any) -> float:
        if v is None:
            return 0.0
        return max(0.0, float(v))


class _JsonVertex(BaseModel):
    model_config = ConfigDict(extra="ignore")

    x: float
    y: float


class _JsonMask(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    normalized_vertices: list[_JsonVertex] = Field(default_factory=list, alias="normalizedVertices")
    pixel_mask: str | None = Field(default=None, alias="pixelMask")

    @field_validator("normalized_vertices", mode="before")
    @classmethod
    def _coerce_vertices(cls, v: Any) -> list[Any]:
        if v is None:
            return []
        if not isinstance(v, list):
            return []
        out: list[Any] = []
        for p in v:
            # [x, y] pairs are accepted alongside {"x": .., "y": ..} objects.
            if isinstance(p, (list, tuple)) and len(p) == 2:
                out.append({"x": p[0], "y": p[1]})
            else:
                out.append(p)
        return out


class _JsonItem(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str
    name: str
    confidence: float = 0.0
    category: str = ""
    bounding_box: _JsonBox | None = Field(default=None, alias="boundingBox")
    segmentation_mask: _JsonMask | None = Field(default=None, alias="segmentationMask")
    precision_level: Literal["high", "medium", "low"] | None = Field(
        default=None, alias="precisionLevel"
    )
    source: Literal["object_localization", "label_detection", "fallback"] = "object_localization"
    description: str = ""

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, v: Any) -> str:
        return str(v)

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, v: Any) -> float:
        if v is None:
            return 0.0
        return min(1.0, max(0.0, float(v)))

    def to_item(self) -> DetectedItem:
        mask = None
        if self.segmentation_mask is not None:
            mask = SegmentationMask(
                normalized_vertices=tuple((p.x, p.y) for p in self.segmentation_mask.normalized_vertices),
                pixel_mask=self.segmentation_mask.pixel_mask,
            )

        precision = self.precision_level
        if self.bounding_box is not None:
            box = BoundingBox(
                x=self.bounding_box.x,
                y=self.bounding_box.y,
                width=self.bounding_box.width,
                height=self.bounding_box.height,
            ).clip()
        elif mask is not None and mask.normalized_vertices:
            processed = process_segmentation_mask(mask)
            box = processed.bounding_box
            precision = precision or processed.precision_level
        else:
            box = BoundingBox(x=0.0, y=0.0, width=0.0, height=0.0)

        return DetectedItem(
            id=self.id,
            name=self.name,
            confidence=self.confidence,
            category=self.category.strip() or categorize_item(self.name),
            bounding_box=box,
            segmentation_mask=mask,
            precision_level=precision or "low",
            source=self.source,
            description=self.description,
        )


class _JsonItems(BaseModel):
    model_config = ConfigDict(extra="ignore")

    items: list[_JsonItem] = Field(default_factory=list)

    @field_validator("items", mode="before")
    @classmethod
    def _coerce_items(cls, v: Any) -> list[Any]:
        if v is None:
            return []
        if isinstance(v, list):
            return v
        if isinstance(v, dict):
            return [v]
        return []


def items_from_payload(data: Any) -> list[DetectedItem]:
    """Parse detection records from a JSON string, a list of records or `{"items": [...]}`.

    Boxes are clipped to the unit square. Records without a bounding box get one derived
    from their polygon. Records without a category get one inferred from their name.

    Raises:
        ValueError: When the payload is not valid JSON or a record is malformed.
    """
    if isinstance(data, (str, bytes)):
        try:
            data = json.loads(data)
        except json.JSONDecodeError as e:
            raise ValueError("Detection payload is not valid JSON") from e
    if isinstance(data, list):
        data = {"items": data}
    try:
        parsed = _JsonItems.model_validate(data)
    except ValidationError as e:
        raise ValueError("Invalid detection payload") from e
    return [it.to_item() for it in parsed.items]


def item_to_payload(item: DetectedItem) -> dict[str, Any]:
    """Serialize one item to the camelCase record shape providers emit."""
    out: dict[str, Any] = {
        "id": item.id,
        "name": item.name,
        "confidence": item.confidence,
        "category": item.category,
        "boundingBox": {
            "x": item.bounding_box.x,
            "y": item.bounding_box.y,
            "width": item.bounding_box.width,
            "height": item.bounding_box.height,
        },
        "precisionLevel": item.precision_level,
        "source": item.source,
    }
    if item.segmentation_mask is not None:
        mask: dict[str, Any] = {
            "normalizedVertices": [
                {"x": x, "y": y} for x, y in item.segmentation_mask.normalized_vertices
            ]
        }
        if item.segmentation_mask.pixel_mask is not None:
            mask["pixelMask"] = item.segmentation_mask.pixel_mask
        out["segmentationMask"] = mask
    if item.description:
        out["description"] = item.description
    return out
