"""Parent/child spatial relationship analysis.

Two flavours are provided:

- the basic analysis records a relationship for every (parent, child) pair where
  the strictly smaller child is partly covered by the parent, then drops parents;
- the enhanced analysis weights containment by detection confidence and a
  category-hierarchy table, labels each relationship `containment` or `overlap`,
  and ranks items by a priority score instead of dropping every parent.

Both use the same containment ratio: intersection area / child area.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from detection_refinery.vision.geometry import containment_ratio, intersection_area
from detection_refinery.vision.labels import category_priority, category_relationship_weight
from detection_refinery.vision.types import DetectedItem, Relationship, RelationshipType

LOG = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True, kw_only=True)
class SpatialParams:
    """Thresholds for both relationship analyses."""

    min_containment_ratio: float = 0.1
    same_object_ratio: float = 0.9

    containment_cutoff: float = 0.7
    overlap_cutoff: float = 0.3
    min_relationship_confidence: float = 0.5
    priority_cutoff: float = 0.4


@dataclass(frozen=True)
class SpatialStats:
    """Counts reported for one spatial analysis pass."""

    total_relationships: int = 0
    containment_relationships: int = 0
    overlap_relationships: int = 0
    parents_removed: int = 0
    filtered_count: int = 0


@dataclass(frozen=True)
class SpatialAnalysis:
    relationships: list[Relationship] = field(default_factory=list)
    prioritized_items: list[DetectedItem] = field(default_factory=list)
    filtered_items: list[DetectedItem] = field(default_factory=list)
    stats: SpatialStats = field(default_factory=SpatialStats)


DEFAULT_SPATIAL_PARAMS = SpatialParams()


def detect_relationships(
    items: list[DetectedItem],
    params: SpatialParams = DEFAULT_SPATIAL_PARAMS,
) -> list[Relationship]:
    """Find parent/child pairs among `items`.

    A pair (parent=i, child=j) is considered only when the child box is strictly smaller,
    and recorded when `min_containment_ratio < ratio < same_object_ratio`. Ratios at or above
    `same_object_ratio` are treated as the same object seen twice and skipped.
    """
    rels: list[Relationship] = []
    for i, parent in enumerate(items):
        parent_area = parent.area()
        for j, child in enumerate(items):
            if i == j:
                continue
            if not child.area() < parent_area:
                continue
            ratio = containment_ratio(parent.bounding_box, child.bounding_box)
            if params.min_containment_ratio < ratio < params.same_object_ratio:
                rels.append(
                    Relationship(
                        parent=parent,
                        child=child,
                        containment_ratio=ratio,
                        intersection_area=intersection_area(parent.bounding_box, child.bounding_box),
                        confidence=ratio,
                    )
                )
    return rels


def prioritize_children(items: list[DetectedItem], relationships: list[Relationship]) -> list[DetectedItem]:
    """Order items as children first, then standalone items, then parents.

    Children keep the order in which their relationships were found; the other two
    groups keep input order. Every input item appears exactly once.
    """
    parents = {id(r.parent) for r in relationships}
    out: list[DetectedItem] = []
    seen: set[int] = set()

    for r in relationships:
        if id(r.child) not in seen:
            seen.add(id(r.child))
            out.append(r.child)
    for it in items:
        if id(it) not in parents and id(it) not in seen:
            seen.add(id(it))
            out.append(it)
    for it in items:
        if id(it) not in seen:
            seen.add(id(it))
            out.append(it)
    return out


def drop_parents(items: list[DetectedItem], relationships: list[Relationship]) -> list[DetectedItem]:
    """Remove every item that is a parent in at least one relationship."""
    parents = {id(r.parent) for r in relationships}
    return [it for it in items if id(it) not in parents]


def analyze(
    items: list[DetectedItem],
    params: SpatialParams = DEFAULT_SPATIAL_PARAMS,
) -> SpatialAnalysis:
    """Run the basic analysis: relationships, prioritized ordering and parent-free set."""
    rels = detect_relationships(items, params)
    prioritized = prioritize_children(items, rels)
    filtered = drop_parents(items, rels)
    LOG.debug("Spatial: %d items, %d relationships, %d kept", len(items), len(rels), len(filtered))
    return SpatialAnalysis(
        relationships=rels,
        prioritized_items=prioritized,
        filtered_items=filtered,
        stats=SpatialStats(
            total_relationships=len(rels),
            containment_relationships=len(rels),
            overlap_relationships=0,
            parents_removed=len(items) - len(filtered),
            filtered_count=len(filtered),
        ),
    )


def enhanced_containment_ratio(parent: DetectedItem, child: DetectedItem) -> float:
    """Containment of `child` in `parent`, scaled by mean confidence and capped at 1."""
    ratio = containment_ratio(parent.bounding_box, child.bounding_box)
    if ratio <= 0.0:
        return 0.0
    weight = (parent.confidence + child.confidence) / 2.0
    return min(ratio * weight, 1.0)


def detect_enhanced_relationships(
    items: list[DetectedItem],
    params: SpatialParams = DEFAULT_SPATIAL_PARAMS,
) -> list[Relationship]:
    """Confidence- and category-weighted relationships, one per unordered pair at most."""
    rels: list[Relationship] = []
    for i in range(len(items)):
        for j in range(i + 1, len(items)):
            a, b = items[i], items[j]
            a_holds_b = enhanced_containment_ratio(a, b)
            b_holds_a = enhanced_containment_ratio(b, a)

            kind: RelationshipType
            if a_holds_b > params.containment_cutoff and a_holds_b >= b_holds_a:
                parent, child, kind, conf = a, b, "containment", a_holds_b
            elif b_holds_a > params.containment_cutoff:
                parent, child, kind, conf = b, a, "containment", b_holds_a
            elif a_holds_b > params.overlap_cutoff or b_holds_a > params.overlap_cutoff:
                if a_holds_b > b_holds_a:
                    parent, child = a, b
                else:
                    parent, child = b, a
                kind, conf = "overlap", max(a_holds_b, b_holds_a)
            else:
                continue

            weighted = conf * category_relationship_weight(parent.category, child.category)
            if weighted <= params.min_relationship_confidence:
                continue
            rels.append(
                Relationship(
                    parent=parent,
                    child=child,
                    containment_ratio=max(a_holds_b, b_holds_a),
                    intersection_area=intersection_area(parent.bounding_box, child.bounding_box),
                    confidence=weighted,
                    relationship_type=kind,
                )
            )
    return rels


def priority_score(item: DetectedItem, child_count: int, parent_count: int) -> float:
    """Ranking score mixing confidence, category value and relationship counts."""
    return (
        item.confidence * 0.4
        + category_priority(item.category) * 0.3
        + child_count * 0.2
        + parent_count * 0.1
    )


def analyze_enhanced(
    items: list[DetectedItem],
    params: SpatialParams = DEFAULT_SPATIAL_PARAMS,
) -> SpatialAnalysis:
    """Run the enhanced analysis.

    Items scoring above `priority_cutoff` are prioritized. The rest are demoted, and a
    demoted item that is the parent of a prioritized child is dropped. `filtered_items`
    holds the survivors (prioritized plus remaining demoted) in input order.
    """
    rels = detect_enhanced_relationships(items, params)
    # Keyed by object identity: ids are only unique per provider.
    as_child: dict[int, int] = {}
    as_parent: dict[int, int] = {}
    for r in rels:
        as_child[id(r.child)] = as_child.get(id(r.child), 0) + 1
        as_parent[id(r.parent)] = as_parent.get(id(r.parent), 0) + 1

    prioritized: list[DetectedItem] = []
    demoted: set[int] = set()
    for it in items:
        score = priority_score(it, as_child.get(id(it), 0), as_parent.get(id(it), 0))
        if score > params.priority_cutoff:
            prioritized.append(it)
        else:
            demoted.add(id(it))

    kept = {id(it) for it in prioritized}
    dropped = {
        id(r.parent)
        for r in rels
        if id(r.parent) in demoted and id(r.child) in kept
    }
    survivors = [it for it in items if id(it) not in dropped]

    containment = sum(1 for r in rels if r.relationship_type == "containment")
    return SpatialAnalysis(
        relationships=rels,
        prioritized_items=prioritized,
        filtered_items=survivors,
        stats=SpatialStats(
            total_relationships=len(rels),
            containment_relationships=containment,
            overlap_relationships=len(rels) - containment,
            parents_removed=len(items) - len(survivors),
            filtered_count=len(survivors),
        ),
    )
