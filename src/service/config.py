"""Runtime configuration for the Tristogram service."""
from __future__ import annotations

import os

MAX_CLUSTER_POINTS = int(os.environ.get("TRISTOGRAM_MAX_CLUSTER_POINTS", "50000"))
WARN_CLUSTER_POINTS = int(os.environ.get("TRISTOGRAM_WARN_CLUSTER_POINTS", "10000"))
CLUSTER_TIMEOUT_MS = int(os.environ.get("TRISTOGRAM_CLUSTER_TIMEOUT_MS", "60000"))
MAX_IMAGE_BYTES = int(os.environ.get("TRISTOGRAM_MAX_IMAGE_BYTES", str(64 * 1024 * 1024)))
MAX_HISTOGRAMS = int(os.environ.get("TRISTOGRAM_MAX_HISTOGRAMS", "16"))
MAX_JOBS = int(os.environ.get("TRISTOGRAM_MAX_JOBS", "64"))


__all__ = [
    "MAX_CLUSTER_POINTS",
    "WARN_CLUSTER_POINTS",
    "CLUSTER_TIMEOUT_MS",
    "MAX_IMAGE_BYTES",
    "MAX_HISTOGRAMS",
    "MAX_JOBS",
]
