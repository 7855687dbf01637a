"""Refinement pipeline configuration: defaults, builder-style overrides, validation, YAML."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from detection_refinery.refinement.category_filter import FilteringConfig, custom_filtering_config


@dataclass(frozen=True, slots=True, kw_only=True)
class RefinementConfig:
    """Everything the pipeline can be tuned with. Defaults ship with the package."""

    filtering: FilteringConfig = field(default_factory=FilteringConfig)

    # Spatial analysis: a child covered by more than `min_containment_ratio` but less
    # than `same_object_ratio` of its area forms a relationship.
    min_containment_ratio: float = 0.1
    same_object_ratio: float = 0.9

    overlap_threshold: float = 0.1
    contextual_overlap_threshold: float = 0.3
    enable_contextual: bool = True

    max_processing_ms: float = 3000.0
    enable_metrics: bool = True
    adapt_thresholds: bool = True


DEFAULT_CONFIG = RefinementConfig()


def merge_config(
    base: RefinementConfig | None = None,
    *,
    objects_of_interest: list[str] | None = None,
    objects_to_ignore: list[str] | None = None,
    confidence_thresholds: dict[str, float] | None = None,
    **overrides: Any,
) -> RefinementConfig:
    """Return `base` (default config if None) with the given fields replaced.

    Keyword lists replace the base lists; `confidence_thresholds` may name only some
    classes, the others keep their base value.
    """
    cfg = base or DEFAULT_CONFIG
    if objects_of_interest is not None or objects_to_ignore is not None or confidence_thresholds:
        cur = cfg.filtering
        thresholds = {
            "objects_of_interest": cur.confidence_thresholds.objects_of_interest,
            "objects_to_ignore": cur.confidence_thresholds.objects_to_ignore,
            "default": cur.confidence_thresholds.default,
        }
        thresholds.update(confidence_thresholds or {})
        filtering = custom_filtering_config(
            cur.objects_of_interest if objects_of_interest is None else objects_of_interest,
            cur.objects_to_ignore if objects_to_ignore is None else objects_to_ignore,
            thresholds,
        )
        overrides["filtering"] = filtering
    if not overrides:
        return cfg
    try:
        return replace(cfg, **overrides)
    except TypeError as e:
        raise ValueError(f"Unknown refinement config field in {sorted(overrides)}") from e


def _in_unit(v: float) -> bool:
    return 0.0 <= v <= 1.0


def validate_config(config: RefinementConfig) -> list[str]:
    """Human-readable problems with `config`; empty when it is usable."""
    errors: list[str] = []
    th = config.filtering.confidence_thresholds
    if not _in_unit(th.objects_of_interest):
        errors.append("objects_of_interest confidence threshold must be between 0 and 1")
    if not _in_unit(th.objects_to_ignore):
        errors.append("objects_to_ignore confidence threshold must be between 0 and 1")
    if not _in_unit(th.default):
        errors.append("default confidence threshold must be between 0 and 1")

    if not _in_unit(config.min_containment_ratio):
        errors.append("containment threshold must be between 0 and 1")
    if not _in_unit(config.same_object_ratio):
        errors.append("same-object ratio must be between 0 and 1")
    elif config.same_object_ratio <= config.min_containment_ratio:
        errors.append("same-object ratio must be greater than containment threshold")

    if not _in_unit(config.overlap_threshold):
        errors.append("overlap threshold must be between 0 and 1")
    if not _in_unit(config.contextual_overlap_threshold):
        errors.append("contextual overlap threshold must be between 0 and 1")

    if config.max_processing_ms <= 0:
        errors.append("max processing time must be greater than 0")
    return errors


class _ConfigYaml(BaseModel):
    model_config = ConfigDict(extra="ignore")

    filtering: dict[str, Any] = Field(default_factory=dict)
    min_containment_ratio: float | None = None
    same_object_ratio: float | None = None
    overlap_threshold: float | None = None
    contextual_overlap_threshold: float | None = None
    enable_contextual: bool | None = None
    max_processing_ms: float | None = None
    enable_metrics: bool | None = None
    adapt_thresholds: bool | None = None

    @field_validator("filtering", mode="before")
    @classmethod
    def _coerce_filtering(cls, v: Any) -> dict[str, Any]:
        if v is None:
            return {}
        return v


def load_config(path: Path) -> RefinementConfig:
    """Load a `RefinementConfig` from YAML; keys left out keep their defaults.

    Example:
        filtering:
          objects_of_interest: [watch, phone]
          confidence_thresholds: {objects_of_interest: 0.5}
        overlap_threshold: 0.2
        max_processing_ms: 1500
    """
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    try:
        parsed = _ConfigYaml.model_validate(data)
        filtering = FilteringConfig.from_mapping(parsed.filtering) if parsed.filtering else FilteringConfig()
    except (ValidationError, ValueError) as e:
        raise ValueError(f"Invalid refinement config: {path}") from e

    overrides = parsed.model_dump(exclude={"filtering"}, exclude_none=True)
    return replace(DEFAULT_CONFIG, filtering=filtering, **overrides)
