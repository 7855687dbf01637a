"""Category classification and per-class confidence filtering."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from detection_refinery.vision.labels import (
    DEFAULT_OBJECTS_OF_INTEREST,
    DEFAULT_OBJECTS_TO_IGNORE,
    FilterClass,
    matches_any,
)
from detection_refinery.vision.types import DetectedItem

LOG = logging.getLogger(__name__)


@dataclass(frozen=True)
class KeywordRule:
    """One row of the keyword table: a label substring and the class it selects."""

    keyword: str
    filter_class: FilterClass


@dataclass(frozen=True, slots=True, kw_only=True)
class ConfidenceThresholds:
    """Minimum confidence per filter class."""

    objects_of_interest: float = 0.6
    objects_to_ignore: float = 0.8
    default: float = 0.7

    def for_class(self, filter_class: FilterClass) -> float:
        if filter_class == "objects_of_interest":
            return self.objects_of_interest
        if filter_class == "objects_to_ignore":
            return self.objects_to_ignore
        return self.default


@dataclass(frozen=True, slots=True, kw_only=True)
class FilteringConfig:
    """Keyword lists plus class thresholds. Never mutated by the pipeline."""

    objects_of_interest: tuple[str, ...] = DEFAULT_OBJECTS_OF_INTEREST
    objects_to_ignore: tuple[str, ...] = DEFAULT_OBJECTS_TO_IGNORE
    confidence_thresholds: ConfidenceThresholds = field(default_factory=ConfidenceThresholds)

    def keyword_table(self) -> tuple[KeywordRule, ...]:
        """The keyword lists as (keyword, class) rows, interest rows first."""
        return tuple(KeywordRule(k, "objects_of_interest") for k in self.objects_of_interest) + tuple(
            KeywordRule(k, "objects_to_ignore") for k in self.objects_to_ignore
        )

    @classmethod
    def from_keyword_table(
        cls,
        rules: list[KeywordRule],
        *,
        thresholds: ConfidenceThresholds | None = None,
    ) -> FilteringConfig:
        """Build a config from (keyword, class) rows; rows of class "default" are ignored."""
        return cls(
            objects_of_interest=tuple(
                r.keyword for r in rules if r.filter_class == "objects_of_interest"
            ),
            objects_to_ignore=tuple(r.keyword for r in rules if r.filter_class == "objects_to_ignore"),
            confidence_thresholds=thresholds or ConfidenceThresholds(),
        )

    @classmethod
    def from_yaml(cls, path: Path) -> FilteringConfig:
        """Load a filtering config from YAML.

        Accepted keys: `objects_of_interest`, `objects_to_ignore` (lists of keywords),
        `keywords` (list of `{keyword, class}` rows, appended to the lists) and
        `confidence_thresholds` (partial mapping; missing classes keep defaults).
        """
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        try:
            return cls.from_mapping(data)
        except ValueError as e:
            raise ValueError(f"Invalid filtering config: {path}") from e

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> FilteringConfig:
        """Build a config from an already-parsed mapping (same keys as `from_yaml`)."""
        try:
            parsed = _FilteringYaml.model_validate(data)
        except ValidationError as e:
            raise ValueError("Invalid filtering config") from e
        return parsed.to_config()


class _KeywordRow(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    keyword: str
    filter_class: FilterClass = Field(alias="class")


class _ThresholdsYaml(BaseModel):
    model_config = ConfigDict(extra="ignore")

    objects_of_interest: float | None = None
    objects_to_ignore: float | None = None
    default: float | None = None


class _FilteringYaml(BaseModel):
    model_config = ConfigDict(extra="ignore")

    objects_of_interest: list[str] | None = None
    objects_to_ignore: list[str] | None = None
    keywords: list[_KeywordRow] = Field(default_factory=list)
    confidence_thresholds: _ThresholdsYaml = Field(default_factory=_ThresholdsYaml)

    @field_validator("objects_of_interest", "objects_to_ignore", mode="before")
    @classmethod
    def _coerce_keywords(cls, v: Any) -> list[str] | None:
        if v is None:
            return None
        if isinstance(v, str):
            return [v]
        if isinstance(v, list):
            return [str(s) for s in v]
        return None

    def to_config(self) -> FilteringConfig:
        interest = list(
            DEFAULT_OBJECTS_OF_INTEREST if self.objects_of_interest is None else self.objects_of_interest
        )
        ignore = list(
            DEFAULT_OBJECTS_TO_IGNORE if self.objects_to_ignore is None else self.objects_to_ignore
        )
        for row in self.keywords:
            if row.filter_class == "objects_of_interest":
                interest.append(row.keyword)
            elif row.filter_class == "objects_to_ignore":
                ignore.append(row.keyword)
        return custom_filtering_config(
            interest,
            ignore,
            self.confidence_thresholds.model_dump(exclude_none=True),
        )


@dataclass(frozen=True)
class FilteringStats:
    """Per-class counts for one filtering pass. `filtered + kept == total`."""

    total: int = 0
    objects_of_interest: int = 0
    objects_to_ignore: int = 0
    default: int = 0
    filtered: int = 0
    kept: int = 0


DEFAULT_FILTERING_CONFIG = FilteringConfig()


def classify(name: str, config: FilteringConfig = DEFAULT_FILTERING_CONFIG) -> FilterClass:
    """Classify a label by case-insensitive substring match.

    The interest list is checked first, so a label matching both lists is an
    object of interest.
    """
    if matches_any(name, config.objects_of_interest):
        return "objects_of_interest"
    if matches_any(name, config.objects_to_ignore):
        return "objects_to_ignore"
    return "default"


def threshold(item: DetectedItem, config: FilteringConfig = DEFAULT_FILTERING_CONFIG) -> float:
    """Confidence threshold that applies to `item` under `config`."""
    return config.confidence_thresholds.for_class(classify(item.name, config))


def apply_category_filter(
    items: list[DetectedItem],
    config: FilteringConfig = DEFAULT_FILTERING_CONFIG,
) -> list[DetectedItem]:
    """Keep items whose confidence reaches their class threshold."""
    return [it for it in items if it.confidence >= threshold(it, config)]


def filtering_stats(
    items: list[DetectedItem],
    config: FilteringConfig = DEFAULT_FILTERING_CONFIG,
) -> FilteringStats:
    counts = {"objects_of_interest": 0, "objects_to_ignore": 0, "default": 0}
    kept = 0
    for it in items:
        cls = classify(it.name, config)
        counts[cls] += 1
        if it.confidence >= config.confidence_thresholds.for_class(cls):
            kept += 1
    return FilteringStats(
        total=len(items),
        objects_of_interest=counts["objects_of_interest"],
        objects_to_ignore=counts["objects_to_ignore"],
        default=counts["default"],
        filtered=len(items) - kept,
        kept=kept,
    )


def custom_filtering_config(
    objects_of_interest: list[str] | tuple[str, ...],
    objects_to_ignore: list[str] | tuple[str, ...],
    confidence_thresholds: dict[str, float] | None = None,
) -> FilteringConfig:
    """Build a config from keyword lists and a partial threshold mapping."""
    overrides = dict(confidence_thresholds or {})
    unknown = set(overrides) - {"objects_of_interest", "objects_to_ignore", "default"}
    if unknown:
        LOG.warning("Ignoring unknown threshold classes: %s", sorted(unknown))
    base = ConfidenceThresholds()
    return FilteringConfig(
        objects_of_interest=tuple(objects_of_interest),
        objects_to_ignore=tuple(objects_to_ignore),
        confidence_thresholds=ConfidenceThresholds(
            objects_of_interest=float(overrides.get("objects_of_interest", base.objects_of_interest)),
            objects_to_ignore=float(overrides.get("objects_to_ignore", base.objects_to_ignore)),
            default=float(overrides.get("default", base.default)),
        ),
    )
