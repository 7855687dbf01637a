"""Overlap conflict resolution by specificity and relative size."""

from __future__ import annotations

import logging
from bisect import bisect_left
from dataclasses import dataclass, field

from detection_refinery.vision.geometry import overlap_metrics
from detection_refinery.vision.labels import GENERIC_CATEGORIES, SPECIFIC_CATEGORIES, norm_category
from detection_refinery.vision.types import DetectedItem

LOG = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConflictStats:
    total_conflicts: int = 0
    resolved_conflicts: int = 0
    average_overlap_percentage: float = 0.0


@dataclass(frozen=True)
class ConflictResolution:
    """Winners plus untouched items (`resolved_items`) and losers (`conflicting_items`)."""

    resolved_items: list[DetectedItem] = field(default_factory=list)
    conflicting_items: list[DetectedItem] = field(default_factory=list)
    stats: ConflictStats = field(default_factory=ConflictStats)


@dataclass(frozen=True)
class OverlapDistribution:
    low: int = 0
    medium: int = 0
    high: int = 0
    complete: int = 0


@dataclass(frozen=True)
class OverlapStats:
    """Distribution of all positive pairwise overlaps, independent of resolution."""

    total_overlaps: int = 0
    average_overlap_percentage: float = 0.0
    max_overlap_percentage: float = 0.0
    distribution: OverlapDistribution = field(default_factory=OverlapDistribution)


@dataclass(frozen=True)
class OverlapResolution:
    resolved_items: list[DetectedItem]
    statistics: OverlapStats
    conflicts: ConflictResolution


def object_specificity(item: DetectedItem) -> float:
    """How descriptive an item's category and name are, in [0, 1].

    Specific categories add 0.3, generic ones 0.1, anything else 0.2. Names of three or
    more words add 0.2 (two words 0.1), names longer than 10 characters add 0.1, and
    30% of the confidence is added on top.
    """
    category = norm_category(item.category)
    if category in SPECIFIC_CATEGORIES:
        score = 0.3
    elif category in GENERIC_CATEGORIES:
        score = 0.1
    else:
        score = 0.2

    words = len(item.name.split(" "))
    if words > 2:
        score += 0.2
    elif words == 2:
        score += 0.1
    if len(item.name) > 10:
        score += 0.1

    score += item.confidence * 0.3
    return min(score, 1.0)


def size_priority(item: DetectedItem, items: list[DetectedItem]) -> float:
    """1 minus the area percentile of `item` among `items`; smaller boxes score higher.

    Equal areas share the rank of the first of them.
    """
    if not items:
        return 1.0
    areas = sorted(it.area() for it in items)
    return 1.0 - bisect_left(areas, item.area()) / len(areas)


def has_significant_overlap(a: DetectedItem, b: DetectedItem, threshold: float = 0.1) -> bool:
    return overlap_metrics(a.bounding_box, b.bounding_box).overlap_percentage >= threshold


def resolve_conflicts(items: list[DetectedItem], overlap_threshold: float = 0.1) -> ConflictResolution:
    """Pick one winner for every pair overlapping at least `overlap_threshold`.

    Pairs are handled most-overlapping first. The winner has the higher
    specificity + size priority; on a tie the earlier item in `items` wins. An item
    that already took part in a conflict is not reconsidered.
    """
    pairs: list[tuple[float, int, int]] = []
    for i in range(len(items)):
        for j in range(i + 1, len(items)):
            pct = overlap_metrics(items[i].bounding_box, items[j].bounding_box).overlap_percentage
            if pct >= overlap_threshold:
                pairs.append((pct, i, j))
    # Stable sort keeps discovery order among equal overlaps.
    pairs.sort(key=lambda p: p[0], reverse=True)

    scores = [object_specificity(it) + size_priority(it, items) for it in items]
    decided: set[int] = set()
    winners: list[DetectedItem] = []
    losers: list[DetectedItem] = []
    for _, i, j in pairs:
        if i in decided or j in decided:
            continue
        win, lose = (i, j) if scores[i] >= scores[j] else (j, i)
        winners.append(items[win])
        losers.append(items[lose])
        decided.update((i, j))

    resolved = winners + [it for k, it in enumerate(items) if k not in decided]
    avg = sum(p[0] for p in pairs) / len(pairs) if pairs else 0.0
    if pairs:
        LOG.debug("Overlap: %d conflicts, %d losers, avg overlap %.3f", len(pairs), len(losers), avg)
    return ConflictResolution(
        resolved_items=resolved,
        conflicting_items=losers,
        stats=ConflictStats(
            total_conflicts=len(pairs),
            resolved_conflicts=len(losers),
            average_overlap_percentage=avg,
        ),
    )


def overlap_statistics(items: list[DetectedItem]) -> OverlapStats:
    """Bucket every positive pairwise overlap into low/medium/high/complete."""
    overlaps: list[float] = []
    for i in range(len(items)):
        for j in range(i + 1, len(items)):
            pct = overlap_metrics(items[i].bounding_box, items[j].bounding_box).overlap_percentage
            if pct > 0.0:
                overlaps.append(pct)
    if not overlaps:
        return OverlapStats()

    low = medium = high = complete = 0
    for o in overlaps:
        if o < 0.25:
            low += 1
        elif o < 0.5:
            medium += 1
        elif o < 0.75:
            high += 1
        else:
            complete += 1
    return OverlapStats(
        total_overlaps=len(overlaps),
        average_overlap_percentage=sum(overlaps) / len(overlaps),
        max_overlap_percentage=max(overlaps),
        distribution=OverlapDistribution(low=low, medium=medium, high=high, complete=complete),
    )


def resolve_overlaps(items: list[DetectedItem], overlap_threshold: float = 0.1) -> OverlapResolution:
    """Resolve conflicts and collect distribution statistics over the same input."""
    conflicts = resolve_conflicts(items, overlap_threshold)
    return OverlapResolution(
        resolved_items=conflicts.resolved_items,
        statistics=overlap_statistics(items),
        conflicts=conflicts,
    )
