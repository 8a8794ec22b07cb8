#!/usr/bin/env python3
"""Command line entry point for Tristogram analysis and benchmarks."""
from __future__ import annotations

import argparse
import base64
import json
import logging
import os
import sys
from pathlib import Path
from typing import Dict, List, Optional

import requests

from src.tristogram import (
    ClusteringLimitError,
    ClusteringParameterError,
    HistogramBuilderConfig,
    RasterError,
    Tristogram,
    TristogramConfig,
    VisualizationMode,
)
from src.tristogram.benchmark import BenchmarkConfig, run_benchmark
from src.tristogram.synthetic import ImageType

SERVICE_URL_ENV = "TRISTOGRAM_SERVICE_URL"
CACHE_DIR_ENV = "TRISTOGRAM_CACHE_DIR"
HTTP_TIMEOUT_DEFAULT = int(os.getenv("TRISTOGRAM_HTTP_TIMEOUT", "120"))

logger = logging.getLogger("tristogram.cli")


def _parse_size(value: str) -> tuple[int, int]:
    try:
        width, height = (int(part) for part in value.lower().split("x", 1))
    except ValueError:
        raise argparse.ArgumentTypeError(f"Expected WIDTHxHEIGHT, got '{value}'") from None
    if width < 1 or height < 1:
        raise argparse.ArgumentTypeError("Image sizes must be positive")
    return width, height


def analyze_local(args: argparse.Namespace) -> Dict[str, object]:
    cache_dir = args.cache_dir or os.environ.get(CACHE_DIR_ENV)
    config = TristogramConfig(
        builder=HistogramBuilderConfig(track_sources=not args.no_sources),
        mode=VisualizationMode(args.mode),
        min_threshold=args.min_threshold,
        max_threshold=args.max_threshold,
        max_cluster_points=args.max_cluster_points,
        cache_dir=Path(cache_dir) if cache_dir else None,
        ignore_cache=args.ignore_cache,
    )
    tristogram = Tristogram(config, logger)
    tristogram.load_file(args.image)
    view = tristogram.filtered()

    report = tristogram.summary()
    report["filtered_count"] = len(view)
    report["count_range"] = [view.count_lo, view.count_hi]

    if args.epsilon is not None:
        assignment = tristogram.cluster(
            epsilon=args.epsilon,
            min_points=args.min_points,
            use_filter=True,
            neighbor_search=args.neighbor_search,
        )
        report = tristogram.summary()
        report["filtered_count"] = len(view)
        report["count_range"] = [view.count_lo, view.count_hi]
        report["noise_indices"] = assignment.noise[: args.preview]
    return report


def analyze_remote(args: argparse.Namespace, service_url: str) -> Dict[str, object]:
    payload = {
        "image_base64": base64.b64encode(Path(args.image).read_bytes()).decode("ascii"),
        "name": str(args.image),
        "track_sources": not args.no_sources,
    }
    response = requests.post(f"{service_url}/histograms", json=payload, timeout=args.http_timeout)
    response.raise_for_status()
    stats = response.json()
    histogram_id = stats["histogram_id"]

    filter_payload = {"min_threshold": args.min_threshold, "max_threshold": args.max_threshold, "mode": args.mode}
    response = requests.post(
        f"{service_url}/histograms/{histogram_id}/filter", json=filter_payload, timeout=args.http_timeout
    )
    response.raise_for_status()
    view = response.json()

    report: Dict[str, object] = dict(stats)
    report["filtered_count"] = len(view.get("indices", []))
    report["count_range"] = [view.get("count_lo"), view.get("count_hi")]

    if args.epsilon is not None:
        cluster_payload = {
            "epsilon": args.epsilon,
            "min_points": args.min_points,
            "min_threshold": args.min_threshold,
            "max_threshold": args.max_threshold,
            "neighbor_search": args.neighbor_search,
        }
        response = requests.post(
            f"{service_url}/histograms/{histogram_id}/cluster", json=cluster_payload, timeout=args.http_timeout
        )
        response.raise_for_status()
        result = response.json()
        report["clustering"] = {
            "job_id": result.get("job_id"),
            "status": result.get("status"),
            "clusters": len(result.get("clusters", [])),
            "noise": len(result.get("noise", [])),
            "silhouette": result.get("silhouette"),
            "detail": [
                {key: cluster[key] for key in ("id", "size", "total_frequency", "centroid")}
                for cluster in result.get("clusters", [])
            ],
        }
    return report


def run_bench(args: argparse.Namespace) -> List[Dict[str, object]]:
    config = BenchmarkConfig(
        image_sizes=args.sizes or BenchmarkConfig().image_sizes,
        image_types=[ImageType(value) for value in args.types] if args.types else BenchmarkConfig().image_types,
        iterations=args.iterations,
        warmup_runs=args.warmup,
        track_sources=not args.no_sources,
    )
    return [result.as_dict() for result in run_benchmark(config, logger)]


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Build and cluster 3D color histograms")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    analyze = subparsers.add_parser("analyze", help="Analyze a single image")
    analyze.add_argument("image", type=Path, help="Image file to analyze")
    analyze.add_argument(
        "--mode",
        choices=[mode.value for mode in VisualizationMode],
        default=VisualizationMode.OPACITY.value,
        help="Frequency encoding (default: opacity)",
    )
    analyze.add_argument("--min-threshold", type=float, default=0.0, help="Lower frequency fraction (default: 0.0)")
    analyze.add_argument("--max-threshold", type=float, default=1.0, help="Upper frequency fraction (default: 1.0)")
    analyze.add_argument("--epsilon", type=float, default=None, help="Run DBSCAN with this RGB radius")
    analyze.add_argument("--min-points", type=int, default=4, help="DBSCAN min points (default: 4)")
    analyze.add_argument(
        "--neighbor-search",
        choices=["auto", "brute", "kdtree"],
        default=None,
        help="Neighbor search strategy (default: auto)",
    )
    analyze.add_argument(
        "--max-cluster-points",
        type=int,
        default=50_000,
        help="Refuse to cluster more colors than this (default: 50000, 0 disables)",
    )
    analyze.add_argument("--no-sources", action="store_true", help="Skip pixel provenance tracking")
    analyze.add_argument("--cache-dir", type=str, default=None, help=f"Histogram cache directory (env {CACHE_DIR_ENV})")
    analyze.add_argument("--ignore-cache", action="store_true", help="Rebuild even when a cached histogram exists")
    analyze.add_argument("--preview", type=int, default=20, help="Number of noise indices to include (default: 20)")
    analyze.add_argument("--output", type=Path, default=None, help="Write the JSON report to this path")
    analyze.add_argument(
        "--service-url",
        default=None,
        help=f"Run against a Tristogram service instead of locally (default: env {SERVICE_URL_ENV})",
    )
    analyze.add_argument("--http-timeout", type=int, default=HTTP_TIMEOUT_DEFAULT, help="HTTP timeout in seconds")

    bench = subparsers.add_parser("bench", help="Benchmark histogram construction on synthetic images")
    bench.add_argument("--sizes", type=_parse_size, nargs="+", default=None, help="Image sizes, e.g. 256x256")
    bench.add_argument(
        "--types",
        choices=[kind.value for kind in ImageType],
        nargs="+",
        default=None,
        help="Synthetic image types",
    )
    bench.add_argument("--iterations", type=int, default=5, help="Timed iterations per case (default: 5)")
    bench.add_argument("--warmup", type=int, default=1, help="Warmup runs per case (default: 1)")
    bench.add_argument("--no-sources", action="store_true", help="Skip pixel provenance tracking")
    bench.add_argument("--output", type=Path, default=None, help="Write the JSON results to this path")
    return parser.parse_args(argv)


def _emit(payload: object, output: Optional[Path]) -> None:
    text = json.dumps(payload, indent=2)
    if output:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(text + "\n", encoding="utf-8")
        print(f"[INFO] Report written to {output}")
    else:
        print(text)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "bench":
        _emit(run_bench(args), args.output)
        return 0

    service_url = args.service_url or os.environ.get(SERVICE_URL_ENV)
    try:
        if service_url:
            report = analyze_remote(args, service_url.rstrip("/"))
        else:
            report = analyze_local(args)
    except (RasterError, ClusteringParameterError, ClusteringLimitError) as error:
        print(f"[ERROR] {error}", file=sys.stderr)
        return 2
    except requests.RequestException as error:
        print(f"[ERROR] Service request failed: {error}", file=sys.stderr)
        return 1
    except OSError as error:
        print(f"[ERROR] Cannot read {args.image}: {error}", file=sys.stderr)
        return 2
    _emit(report, args.output)
    return 0


if __name__ == "__main__":
    sys.exit(main())
