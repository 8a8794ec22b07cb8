"""Timing harness for histogram construction."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from .attributes import AttributeEncoder
from .histogram import HistogramBuilder, HistogramBuilderConfig
from .synthetic import ImageType, generate


@dataclass
class BenchmarkConfig:
    image_sizes: Sequence[Tuple[int, int]] = ((100, 100), (500, 500), (1000, 1000))
    image_types: Sequence[ImageType] = (ImageType.SOLID_COLOR, ImageType.GRADIENT, ImageType.RANDOM_NOISE)
    iterations: int = 5
    warmup_runs: int = 1
    track_sources: bool = True
    phase_timings: bool = True


@dataclass
class BenchmarkResult:
    test_case: str
    width: int
    height: int
    image_type: ImageType
    avg_time: float
    min_time: float
    max_time: float
    standard_deviation: float
    raw_timings: List[float]
    iterations: int
    histogram_stats: Dict[str, int]
    phase_timings: Dict[str, float] = field(default_factory=dict)

    @property
    def pixels_per_second(self) -> float:
        if self.avg_time <= 0:
            return 0.0
        return (self.width * self.height) / (self.avg_time / 1000.0)

    def as_dict(self) -> Dict[str, object]:
        return {
            "test_case": self.test_case,
            "width": self.width,
            "height": self.height,
            "image_type": self.image_type.value,
            "avg_ms": round(self.avg_time, 3),
            "min_ms": round(self.min_time, 3),
            "max_ms": round(self.max_time, 3),
            "std_ms": round(self.standard_deviation, 3),
            "iterations": self.iterations,
            "pixels_per_second": round(self.pixels_per_second, 1),
            "histogram_stats": dict(self.histogram_stats),
            "phase_timings": {key: round(value, 3) for key, value in self.phase_timings.items()},
        }


def run_benchmark(config: BenchmarkConfig | None = None, logger: Optional[logging.Logger] = None) -> List[BenchmarkResult]:
    config = config or BenchmarkConfig()
    log = logger or logging.getLogger(__name__)
    builder = HistogramBuilder(HistogramBuilderConfig(track_sources=config.track_sources))
    encoder = AttributeEncoder()
    iterations = max(1, int(config.iterations))

    results: List[BenchmarkResult] = []
    for width, height in config.image_sizes:
        for image_type in config.image_types:
            kind = ImageType(image_type)
            raster = generate(kind, width, height)
            test_case = f"{width}x{height} {kind.value}"

            for _ in range(max(0, int(config.warmup_runs))):
                builder.build(raster)

            timings: List[float] = []
            encode_timings: List[float] = []
            histogram = None
            for _ in range(iterations):
                started = time.perf_counter()
                histogram = builder.build(raster)
                timings.append((time.perf_counter() - started) * 1000.0)
                if config.phase_timings:
                    started = time.perf_counter()
                    encoder.encode(histogram)
                    encode_timings.append((time.perf_counter() - started) * 1000.0)

            samples = np.asarray(timings, dtype=np.float64)
            phases: Dict[str, float] = {}
            if config.phase_timings:
                phases = {
                    "histogram_building": float(samples.mean()),
                    "attribute_encoding": float(np.mean(encode_timings)),
                }
            result = BenchmarkResult(
                test_case=test_case,
                width=width,
                height=height,
                image_type=kind,
                avg_time=float(samples.mean()),
                min_time=float(samples.min()),
                max_time=float(samples.max()),
                standard_deviation=float(samples.std()),
                raw_timings=timings,
                iterations=iterations,
                histogram_stats={
                    "nonzero_count": histogram.nonzero_count,
                    "max_value": int(histogram.max_count),
                    "total_pixels": histogram.pixel_count,
                },
                phase_timings=phases,
            )
            log.info("%s: avg %.2fms (min %.2f, max %.2f)", test_case, result.avg_time, result.min_time, result.max_time)
            results.append(result)
    return results
