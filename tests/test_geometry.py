import pytest

from detection_refinery.vision.geometry import (
    area,
    center,
    containment_ratio,
    contains,
    distance,
    intersection,
    intersection_area,
    iou,
    is_fully_contained,
    nms,
    overlap_metrics,
    union_area,
)
from detection_refinery.vision.types import BoundingBox, DetectedItem


def _box(x: float, y: float, w: float, h: float) -> BoundingBox:
    return BoundingBox(x=x, y=y, width=w, height=h)


def _item(id_: str, conf: float, box: BoundingBox) -> DetectedItem:
    return DetectedItem(id=id_, name=id_, confidence=conf, category="Other", bounding_box=box)


@pytest.mark.parametrize(
    ("box", "expected"),
    [
        (_box(0.1, 0.1, 0.4, 0.5), 0.2),
        (_box(0.1, 0.1, 0.0, 0.5), 0.0),
        (_box(0.1, 0.1, 0.4, 0.0), 0.0),
        (_box(0.0, 0.0, 0.0, 0.0), 0.0),
    ],
)
def test_area_non_negative_and_zero_for_degenerate(box: BoundingBox, expected: float) -> None:
    assert area(box) == pytest.approx(expected)
    assert area(box) >= 0.0


def test_center_and_distance() -> None:
    c = center(_box(0.2, 0.4, 0.2, 0.2))
    assert c == pytest.approx((0.3, 0.5))
    assert distance((0.0, 0.0), (0.3, 0.4)) == pytest.approx(0.5)


def test_reference_overlap_scenario() -> None:
    a = _box(0.1, 0.1, 0.4, 0.4)
    b = _box(0.2, 0.2, 0.4, 0.4)
    m = overlap_metrics(a, b)
    assert m.intersection_area == pytest.approx(0.09, abs=1e-2)
    assert m.overlap_percentage == pytest.approx(0.391, abs=1e-2)
    assert m.iou == pytest.approx(m.overlap_percentage)
    assert m.union_area == pytest.approx(0.23)


def test_overlap_percentage_is_symmetric() -> None:
    a = _box(0.05, 0.1, 0.3, 0.6)
    b = _box(0.2, 0.3, 0.5, 0.2)
    assert overlap_metrics(a, b).overlap_percentage == pytest.approx(overlap_metrics(b, a).overlap_percentage)


def test_non_overlapping_boxes() -> None:
    a = _box(0.0, 0.0, 0.2, 0.2)
    b = _box(0.5, 0.5, 0.2, 0.2)
    assert intersection(a, b) is None
    m = overlap_metrics(a, b)
    assert m.intersection_area == 0.0
    assert m.overlap_percentage == 0.0


def test_touching_edges_do_not_intersect() -> None:
    a = _box(0.0, 0.0, 0.2, 0.2)
    b = _box(0.2, 0.0, 0.2, 0.2)
    assert intersection(a, b) is None
    assert intersection_area(a, b) == 0.0
    assert union_area(a, b) == pytest.approx(0.08)


def test_degenerate_boxes_have_zero_overlap() -> None:
    a = _box(0.1, 0.1, 0.0, 0.0)
    b = _box(0.0, 0.0, 0.5, 0.5)
    m = overlap_metrics(a, b)
    assert m.intersection_area == 0.0
    assert m.overlap_percentage == 0.0
    assert containment_ratio(b, a) == 0.0


def test_containment_ratio_uses_child_area() -> None:
    parent = _box(0.0, 0.0, 0.5, 0.5)
    child = _box(0.4, 0.4, 0.2, 0.2)
    # Intersection is 0.1 x 0.1 over a child area of 0.04.
    assert containment_ratio(parent, child) == pytest.approx(0.25)
    assert contains(parent, child, ratio=0.2)
    assert not contains(parent, child, ratio=0.8)


def test_is_fully_contained_is_edge_inclusive() -> None:
    outer = _box(0.0, 0.0, 0.5, 0.5)
    assert is_fully_contained(outer, _box(0.0, 0.0, 0.5, 0.5))
    assert is_fully_contained(outer, _box(0.1, 0.1, 0.2, 0.2))
    assert not is_fully_contained(outer, _box(0.4, 0.4, 0.2, 0.2))


def test_iou_and_nms_keep_highest_confidence() -> None:
    a = _item("a", 0.6, _box(0.1, 0.1, 0.3, 0.3))
    b = _item("b", 0.9, _box(0.11, 0.11, 0.3, 0.3))
    c = _item("c", 0.5, _box(0.7, 0.7, 0.2, 0.2))
    assert iou(a.bounding_box, b.bounding_box) > 0.5
    kept = nms([a, b, c], iou_thr=0.5)
    assert [it.id for it in kept] == ["b", "c"]
