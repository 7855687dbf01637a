import pytest

from detection_refinery.refinement.spatial import (
    analyze,
    analyze_enhanced,
    detect_enhanced_relationships,
    detect_relationships,
    drop_parents,
    enhanced_containment_ratio,
    prioritize_children,
    priority_score,
)
from detection_refinery.vision.types import BoundingBox, DetectedItem


def _item(
    id_: str,
    box: tuple[float, float, float, float],
    *,
    conf: float = 0.9,
    name: str | None = None,
    category: str = "Other",
) -> DetectedItem:
    x, y, w, h = box
    return DetectedItem(
        id=id_,
        name=name or id_,
        confidence=conf,
        category=category,
        bounding_box=BoundingBox(x=x, y=y, width=w, height=h),
    )


def _parent_child_standalone() -> list[DetectedItem]:
    return [
        _item("parent", (0.0, 0.0, 0.5, 0.5)),
        _item("child", (0.4, 0.4, 0.2, 0.2)),  # a quarter of it lies inside the parent
        _item("alone", (0.8, 0.8, 0.1, 0.1)),
    ]


def test_basic_relationship_window() -> None:
    items = _parent_child_standalone()
    rels = detect_relationships(items)
    assert len(rels) == 1
    r = rels[0]
    assert (r.parent.id, r.child.id) == ("parent", "child")
    assert r.containment_ratio == pytest.approx(0.25)
    assert r.intersection_area == pytest.approx(0.01)
    assert r.relationship_type == "containment"


def test_fully_contained_child_is_treated_as_same_object() -> None:
    items = [_item("big", (0.0, 0.0, 0.5, 0.5)), _item("small", (0.1, 0.1, 0.1, 0.1))]
    assert detect_relationships(items) == []


def test_equal_sizes_never_form_a_relationship() -> None:
    items = [_item("a", (0.0, 0.0, 0.4, 0.4)), _item("b", (0.2, 0.0, 0.4, 0.4))]
    assert detect_relationships(items) == []


def test_prioritize_children_orders_children_standalone_parents() -> None:
    items = _parent_child_standalone()
    rels = detect_relationships(items)
    ordered = prioritize_children(items, rels)
    assert [it.id for it in ordered] == ["child", "alone", "parent"]
    assert sorted(it.id for it in ordered) == sorted(it.id for it in items)


def test_drop_parents_and_analyze_stats() -> None:
    items = _parent_child_standalone()
    rels = detect_relationships(items)
    assert [it.id for it in drop_parents(items, rels)] == ["child", "alone"]

    result = analyze(items)
    assert [it.id for it in result.filtered_items] == ["child", "alone"]
    assert result.stats.total_relationships == 1
    assert result.stats.containment_relationships == 1
    assert result.stats.parents_removed == 1
    assert result.stats.filtered_count == 2


def test_analyze_empty_input() -> None:
    result = analyze([])
    assert result.relationships == []
    assert result.filtered_items == []
    assert result.stats.total_relationships == 0


def test_enhanced_containment_ratio_is_confidence_weighted_and_capped() -> None:
    sleeve = _item("s", (0.2, 0.2, 0.6, 0.6), conf=0.85)
    watch = _item("w", (0.4, 0.4, 0.1, 0.1), conf=0.9)
    assert enhanced_containment_ratio(sleeve, watch) == pytest.approx(0.875)
    assert enhanced_containment_ratio(watch, sleeve) < 0.1

    sure_parent = _item("p", (0.0, 0.0, 1.0, 1.0), conf=1.0)
    sure_child = _item("c", (0.1, 0.1, 0.1, 0.1), conf=1.0)
    assert enhanced_containment_ratio(sure_parent, sure_child) == pytest.approx(1.0)


def test_enhanced_containment_uses_category_weight() -> None:
    watch = _item("w", (0.4, 0.4, 0.1, 0.1), conf=0.9, name="Watch", category="Accessories")
    sleeve = _item("s", (0.2, 0.2, 0.6, 0.6), conf=0.85, name="Sleeve", category="Clothing")
    rels = detect_enhanced_relationships([watch, sleeve])
    assert len(rels) == 1
    r = rels[0]
    assert (r.parent.id, r.child.id) == ("s", "w")
    assert r.relationship_type == "containment"
    assert r.confidence == pytest.approx(0.875 * 1.1)


def test_enhanced_overlap_relationship() -> None:
    a = _item("a", (0.0, 0.0, 0.4, 0.4), conf=0.9)
    b = _item("b", (0.1, 0.0, 0.4, 0.4), conf=0.9)
    rels = detect_enhanced_relationships([a, b])
    assert len(rels) == 1
    assert rels[0].relationship_type == "overlap"
    assert rels[0].confidence == pytest.approx(0.675)


def test_enhanced_drops_demoted_parent_of_prioritized_child() -> None:
    arm = _item("arm", (0.2, 0.2, 0.6, 0.6), conf=0.1, name="Arm", category="Body Part")
    watch = _item("watch", (0.4, 0.4, 0.1, 0.1), conf=0.9, name="Watch", category="Accessories")
    result = analyze_enhanced([arm, watch])
    assert [it.id for it in result.prioritized_items] == ["watch"]
    assert [it.id for it in result.filtered_items] == ["watch"]
    assert result.stats.parents_removed == 1
    assert result.stats.overlap_relationships == 1
    assert result.stats.containment_relationships == 0


def test_enhanced_keeps_prioritized_parent() -> None:
    watch = _item("w", (0.4, 0.4, 0.1, 0.1), conf=0.9, name="Watch", category="Accessories")
    sleeve = _item("s", (0.2, 0.2, 0.6, 0.6), conf=0.85, name="Sleeve", category="Clothing")
    result = analyze_enhanced([watch, sleeve])
    assert [it.id for it in result.filtered_items] == ["w", "s"]
    assert result.stats.parents_removed == 0


def test_priority_score() -> None:
    watch = _item("w", (0.0, 0.0, 0.1, 0.1), conf=0.9, category="Accessories")
    assert priority_score(watch, 1, 0) == pytest.approx(0.36 + 0.27 + 0.2)
    assert priority_score(watch, 0, 2) == pytest.approx(0.36 + 0.27 + 0.2)


def test_items_sharing_an_id_are_kept_apart() -> None:
    # Ids are only unique per provider: two merged detections may both be "0".
    laptop = _item("0", (0.0, 0.0, 0.5, 0.5), name="Laptop")
    phone = _item("1", (0.4, 0.4, 0.2, 0.2), name="Phone")
    book = _item("0", (0.8, 0.8, 0.1, 0.1), name="Book")
    items = [laptop, phone, book]

    result = analyze(items)
    assert [it.name for it in result.filtered_items] == ["Phone", "Book"]
    assert [it.name for it in result.prioritized_items] == ["Phone", "Book", "Laptop"]
    assert result.stats.parents_removed == 1


def test_enhanced_drop_only_hits_the_demoted_parent() -> None:
    arm = _item("0", (0.2, 0.2, 0.6, 0.6), conf=0.1, name="Arm", category="Body Part")
    watch = _item("1", (0.4, 0.4, 0.1, 0.1), conf=0.9, name="Watch", category="Accessories")
    lamp = _item("0", (0.85, 0.85, 0.1, 0.1), conf=0.9, name="Lamp", category="Home")
    result = analyze_enhanced([arm, watch, lamp])
    assert [it.name for it in result.filtered_items] == ["Watch", "Lamp"]
    assert result.stats.parents_removed == 1
