"""Contextual scenario filtering.

Some detections are only ambiguous in context: a watch localized inside a sleeve
region makes the sleeve a redundant, low-value container. Known patterns are
described as `ScenarioRule` rows; when a rule fires, its container is removed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from time import perf_counter

from detection_refinery.refinement.overlap import resolve_conflicts
from detection_refinery.refinement.spatial import (
    DEFAULT_SPATIAL_PARAMS,
    SpatialParams,
    analyze_enhanced,
    enhanced_containment_ratio,
)
from detection_refinery.vision.labels import category_priority, matches_any, norm_category
from detection_refinery.vision.types import DetectedItem

LOG = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True, kw_only=True)
class ScenarioRule:
    """A small valuable item inside a larger container of low value.

    An item plays a role when its category is one of the role's categories and its
    name contains one of the role's keywords.
    """

    name: str
    accessory_categories: tuple[str, ...]
    accessory_keywords: tuple[str, ...]
    container_categories: tuple[str, ...]
    container_keywords: tuple[str, ...]
    min_containment: float = 0.5

    def is_accessory(self, item: DetectedItem) -> bool:
        return _plays_role(item, self.accessory_categories, self.accessory_keywords)

    def is_container(self, item: DetectedItem) -> bool:
        return _plays_role(item, self.container_categories, self.container_keywords)


WATCH_SLEEVE = ScenarioRule(
    name="watch_sleeve",
    accessory_categories=("Accessories",),
    accessory_keywords=("watch", "timepiece"),
    container_categories=("Clothing",),
    container_keywords=("sleeve", "shirt", "jacket"),
)

DEFAULT_SCENARIO_RULES: tuple[ScenarioRule, ...] = (WATCH_SLEEVE,)


def _plays_role(item: DetectedItem, categories: tuple[str, ...], keywords: tuple[str, ...]) -> bool:
    cat = norm_category(item.category)
    return any(cat == norm_category(c) for c in categories) and matches_any(item.name, keywords)


@dataclass(frozen=True)
class ScenarioMatch:
    rule: str
    accessory: DetectedItem
    container: DetectedItem
    confidence: float
    containment_ratio: float


@dataclass(frozen=True)
class ContextualStats:
    applied: bool = False
    relationships_found: int = 0
    conflicts_resolved: int = 0
    scenarios_detected: int = 0
    is_watch_sleeve_scenario: bool = False
    fallback_used: bool = False
    processing_time_ms: float = 0.0


@dataclass(frozen=True)
class ContextualResult:
    items: list[DetectedItem] = field(default_factory=list)
    scenarios: list[ScenarioMatch] = field(default_factory=list)
    stats: ContextualStats = field(default_factory=ContextualStats)


def detect_scenarios(
    items: list[DetectedItem],
    rules: tuple[ScenarioRule, ...] = DEFAULT_SCENARIO_RULES,
) -> list[ScenarioMatch]:
    """Find accessory/container pairs for every rule.

    Each accessory and each container takes part in at most one match per rule;
    pairs are tried in input order.
    """
    matches: list[ScenarioMatch] = []
    for rule in rules:
        accessories = [it for it in items if rule.is_accessory(it)]
        containers = [it for it in items if rule.is_container(it)]
        used_containers: set[int] = set()
        for acc in accessories:
            for cont in containers:
                if id(cont) in used_containers or cont is acc:
                    continue
                ratio = enhanced_containment_ratio(cont, acc)
                if ratio > rule.min_containment:
                    matches.append(
                        ScenarioMatch(
                            rule=rule.name,
                            accessory=acc,
                            container=cont,
                            confidence=(acc.confidence + cont.confidence) / 2.0,
                            containment_ratio=ratio,
                        )
                    )
                    used_containers.add(id(cont))
                    break
    return matches


def detect_watch_sleeve_scenario(items: list[DetectedItem]) -> ScenarioMatch | None:
    """Best watch-in-sleeve pair by containment, or None."""
    best: ScenarioMatch | None = None
    for acc in (it for it in items if WATCH_SLEEVE.is_accessory(it)):
        for cont in (it for it in items if WATCH_SLEEVE.is_container(it)):
            ratio = enhanced_containment_ratio(cont, acc)
            if ratio > WATCH_SLEEVE.min_containment and (best is None or ratio > best.containment_ratio):
                best = ScenarioMatch(
                    rule=WATCH_SLEEVE.name,
                    accessory=acc,
                    container=cont,
                    confidence=(acc.confidence + cont.confidence) / 2.0,
                    containment_ratio=ratio,
                )
    return best


def keep_by_category_priority(items: list[DetectedItem]) -> list[DetectedItem]:
    """Top half (at least one) of `items` ranked by category priority."""
    ranked = sorted(items, key=lambda it: category_priority(it.category), reverse=True)
    return ranked[: max(1, len(ranked) // 2)]


def apply_contextual_filter(
    items: list[DetectedItem],
    *,
    rules: tuple[ScenarioRule, ...] = DEFAULT_SCENARIO_RULES,
    overlap_threshold: float = 0.3,
    spatial: SpatialParams = DEFAULT_SPATIAL_PARAMS,
) -> ContextualResult:
    """Enhanced spatial analysis, conflict resolution, then removal of scenario containers.

    Only the items the spatial analysis prioritizes reach conflict resolution, so
    low-scoring detections (typically weak body parts) are dropped here.

    Never turns a non-empty input into an empty output: if everything would be removed,
    the top half of the stage's items by category priority is kept instead.
    """
    t0 = perf_counter()
    if not items:
        return ContextualResult(stats=ContextualStats(applied=True))

    scenarios = detect_scenarios(items, rules)
    analysis = analyze_enhanced(items, spatial)
    conflicts = resolve_conflicts(analysis.prioritized_items, overlap_threshold)

    containers = {id(m.container) for m in scenarios}
    accessories = {id(m.accessory) for m in scenarios}
    # An item cannot be dropped as a container while it is also a detected accessory.
    removable = containers - accessories
    kept = [it for it in conflicts.resolved_items if id(it) not in removable]

    fallback = False
    if not kept:
        pool = conflicts.resolved_items or items
        kept = keep_by_category_priority(pool)
        fallback = True
        LOG.warning("Contextual filter removed every item; keeping %d by category priority", len(kept))

    for m in scenarios:
        LOG.info(
            "Scenario %s: %r inside %r (containment %.2f)",
            m.rule,
            m.accessory.name,
            m.container.name,
            m.containment_ratio,
        )

    return ContextualResult(
        items=kept,
        scenarios=scenarios,
        stats=ContextualStats(
            applied=True,
            relationships_found=len(analysis.relationships),
            conflicts_resolved=conflicts.stats.resolved_conflicts,
            scenarios_detected=len(scenarios),
            is_watch_sleeve_scenario=any(m.rule == WATCH_SLEEVE.name for m in scenarios),
            fallback_used=fallback,
            processing_time_ms=(perf_counter() - t0) * 1000.0,
        ),
    )
