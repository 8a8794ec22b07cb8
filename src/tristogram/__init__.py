"""Color histogram and clustering engine for Tristogram."""

from .analyzer import ClusteringLimitError, Tristogram, TristogramConfig
from .attributes import AttributeEncoder, AttributeEncoderConfig
from .clusterer import (
    CancellationToken,
    Clusterer,
    ClustererConfig,
    ClusteringParameterError,
    DBSCANClusterer,
    dbscan,
)
from .filtering import RangeFilter, filter_histogram
from .histogram import HistogramBuilder, HistogramBuilderConfig, build_histogram
from .raster import RasterBuffer, RasterError, decode_raster, load_raster, raster_from_array, raster_from_bytes
from .types import (
    EXCLUDED,
    NOISE,
    TOTAL_CELLS,
    UNASSIGNED,
    Cluster,
    ClusterAssignment,
    ColorBin,
    FilteredView,
    Histogram,
    VisualAttributes,
    VisualizationMode,
)

__all__ = [
    "Tristogram",
    "TristogramConfig",
    "ClusteringLimitError",
    "AttributeEncoder",
    "AttributeEncoderConfig",
    "CancellationToken",
    "Clusterer",
    "ClustererConfig",
    "ClusteringParameterError",
    "DBSCANClusterer",
    "dbscan",
    "RangeFilter",
    "filter_histogram",
    "HistogramBuilder",
    "HistogramBuilderConfig",
    "build_histogram",
    "RasterBuffer",
    "RasterError",
    "decode_raster",
    "load_raster",
    "raster_from_array",
    "raster_from_bytes",
    "EXCLUDED",
    "NOISE",
    "TOTAL_CELLS",
    "UNASSIGNED",
    "Cluster",
    "ClusterAssignment",
    "ColorBin",
    "FilteredView",
    "Histogram",
    "VisualAttributes",
    "VisualizationMode",
]
