"""File-level batch runner: JSON detection files in, refined JSON plus `summary.yaml` out."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import yaml

from detection_refinery.pipelines.cache import content_key
from detection_refinery.pipelines.refinement import RefinementPipeline, result_to_payload
from detection_refinery.vision.records import items_from_payload

LOG = logging.getLogger(__name__)


def refine_file(pipeline: RefinementPipeline, src: Path, dst: Path, *, overwrite: bool = False) -> dict[str, Any]:
    """Refine the detections stored in `src` and write the result payload to `dst`.

    An existing `dst` is returned as-is unless `overwrite` is set. With a pipeline cache,
    files with identical content are refined once.
    """
    if dst.exists() and not overwrite:
        return json.loads(dst.read_text(encoding="utf-8"))

    raw = src.read_text(encoding="utf-8")
    items = items_from_payload(raw)
    payload = result_to_payload(pipeline.refine(items, cache_key=content_key(raw)))
    dst.parent.mkdir(parents=True, exist_ok=True)
    dst.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    return payload


def refine_files(
    pipeline: RefinementPipeline,
    *,
    files: list[Path],
    out_root: Path,
    overwrite: bool = False,
    verbose: bool = False,
) -> tuple[list[dict[str, object]], int]:
    """Refine every file into `out_root/<stem>.json` and write `out_root/summary.yaml`.

    A file that cannot be parsed, or whose refinement reports `success=False`, counts
    as a failure; the remaining files are still processed.

    Returns:
        (summary_entries, failures)
    """
    if verbose:
        logging.basicConfig(level=logging.INFO, format="%(asctime)s | %(levelname)s | %(message)s")

    out_root.mkdir(parents=True, exist_ok=True)
    summary: list[dict[str, object]] = []
    failures = 0

    for src in files:
        dst = out_root / f"{src.stem}.json"
        try:
            payload = refine_file(pipeline, src, dst, overwrite=overwrite)
            ok = bool(payload.get("success", False))
            if not ok:
                failures += 1
            entry: dict[str, object] = {
                "input": str(src),
                "output": str(dst),
                "success": ok,
                "items": [it.get("name", "") for it in payload.get("items", [])],
            }
            if payload.get("error"):
                entry["error"] = payload["error"]
            summary.append(entry)
        except Exception as e:
            failures += 1
            LOG.exception("Refinement failed for file=%s", src)
            summary.append({"input": str(src), "output": str(dst), "success": False, "error": f"{type(e).__name__}: {e}"})

    report = pipeline.monitor.report()
    quality = pipeline.quality.current_metrics()
    doc: dict[str, Any] = {
        "files": summary,
        "failures": failures,
        "performance": {
            "status": pipeline.monitor.status(),
            "average_ms": round(report.average_ms, 3),
            "recommendations": list(report.recommendations),
        },
        "quality": {
            "basis": quality.basis,
            "precision": round(quality.precision, 4),
            "recall": round(quality.recall, 4),
            "f1_score": round(quality.f1_score, 4),
            "recommendations": pipeline.quality.recommendations(),
        },
        "thresholds": {k: round(v, 4) for k, v in pipeline.thresholds.thresholds().items()},
    }
    if pipeline.cache is not None:
        cs = pipeline.cache.stats()
        doc["cache"] = {"size": cs.size, "hits": cs.hits, "misses": cs.misses, "hit_rate": round(cs.hit_rate, 4)}
    dumped = yaml.safe_dump(doc, sort_keys=False)
    (out_root / "summary.yaml").write_text(dumped or "", encoding="utf-8")
    return summary, failures
