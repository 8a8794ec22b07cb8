"""Per-bin visual attributes derived from histogram frequencies."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Union

import numpy as np

from .types import Histogram, VisualAttributes, VisualizationMode


@dataclass
class AttributeEncoderConfig:
    min_size: float = 1.0
    max_size: float = 20.0


def parse_mode(mode: Union[str, VisualizationMode]) -> VisualizationMode:
    if isinstance(mode, VisualizationMode):
        return mode
    try:
        return VisualizationMode(str(mode).lower())
    except ValueError:
        raise ValueError(f"Unsupported visualization mode '{mode}'") from None


class AttributeEncoder:
    """Maps bin counts to opacity or point size relative to the maximum count."""

    def __init__(self, config: AttributeEncoderConfig | None = None) -> None:
        self._config = config or AttributeEncoderConfig()
        if self._config.min_size > self._config.max_size:
            raise ValueError("min_size must not exceed max_size")

    def encode(self, histogram: Histogram, mode: Union[str, VisualizationMode] = VisualizationMode.OPACITY) -> VisualAttributes:
        mode = parse_mode(mode)
        count = len(histogram)
        if count:
            ratio = histogram.counts.astype(np.float64) / float(histogram.max_count)
        else:
            ratio = np.zeros(0, dtype=np.float64)

        if mode is VisualizationMode.OPACITY:
            opacity = ratio
            sizes = np.ones(count, dtype=np.float64)
        else:
            opacity = np.ones(count, dtype=np.float64)
            span = self._config.max_size - self._config.min_size
            sizes = self._config.min_size + span * ratio

        colors = np.ones((count, 4), dtype=np.float32)
        colors[:, 3] = opacity
        return VisualAttributes(
            mode=mode,
            opacity=opacity.astype(np.float32),
            sizes=sizes.astype(np.float32),
            colors=colors,
        )
