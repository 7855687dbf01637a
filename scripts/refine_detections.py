#!/usr/bin/env python3
"""Batch runner: refine JSON detection files (one file per image).

Core logic lives in `detection_refinery.pipelines`. This script only wires arguments,
environment overrides and the optional YAML config.
"""

import argparse
import os
import sys
from pathlib import Path

from detection_refinery.pipelines.batch import refine_files
from detection_refinery.pipelines.cache import DetectionCache
from detection_refinery.pipelines.config import load_config, merge_config, validate_config
from detection_refinery.pipelines.refinement import RefinementPipeline


def _iter_json(input_dir: Path) -> list[Path]:
    return sorted(p for p in input_dir.iterdir() if p.is_file() and p.suffix.lower() == ".json")


def main(argv: list[str]) -> int:
    ap = argparse.ArgumentParser()
    ap.add_argument("--input_dir", type=str, default="assets/detections")
    ap.add_argument("--out_root", type=str, default="outputs/refined")
    ap.add_argument("--config", type=str, default=None, help="YAML refinement config")
    ap.add_argument("--overwrite", action="store_true")
    ap.add_argument("--cache", action="store_true", help="reuse results for files with identical content")
    ap.add_argument("--verbose", action="store_true")
    args = ap.parse_args(argv)

    input_dir = Path(args.input_dir).expanduser().resolve()
    if not input_dir.is_dir():
        raise SystemExit(f"--input_dir is not a directory: {input_dir}")

    files = _iter_json(input_dir)
    if not files:
        raise SystemExit(f"No JSON files found under: {input_dir}")

    config = load_config(Path(args.config).expanduser()) if args.config else merge_config()
    # Environment overrides win over the YAML file.
    overrides: dict[str, float] = {}
    if "OVERLAP_THRESHOLD" in os.environ:
        overrides["overlap_threshold"] = float(os.environ["OVERLAP_THRESHOLD"])
    if "MAX_PROCESSING_MS" in os.environ:
        overrides["max_processing_ms"] = float(os.environ["MAX_PROCESSING_MS"])
    config = merge_config(config, **overrides)
    errors = validate_config(config)
    if errors:
        raise SystemExit("Invalid config:\n  " + "\n  ".join(errors))

    _, failures = refine_files(
        RefinementPipeline(config, cache=DetectionCache() if args.cache else None),
        files=files,
        out_root=Path(args.out_root).expanduser().resolve(),
        overwrite=bool(args.overwrite),
        verbose=bool(args.verbose),
    )
    return 1 if failures else 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
