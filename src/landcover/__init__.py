"""
Land-Cover Classification Pipeline - Core Library

This package provides the stages of a supervised land-cover classification:
- cloud_mask: Scene filtering and SCL-based cloud masking
- composite: Per-pixel median compositing over time
- indices: Normalized-difference spectral indices (NDVI, NDWI)
- sample_extractor: Labeled pixel samples from training polygons
- splitter: Seeded random train/test partitioning
- classifier: Random forest training and prediction
- evaluation: Confusion matrix, overall accuracy and kappa
- export: Classified raster export with a pixel-count guard
"""

from .classifier import LandCoverClassifier
from .cloud_mask import CloudMasker, SceneFilter, SceneQuery
from .composite import CompositeBuilder
from .config import PipelineConfig
from .errors import (
    DataAvailabilityError,
    EmptyTestSetError,
    ExportTooLargeError,
    InsufficientDataError,
    LandCoverError,
    SchemaMismatchError,
)
from .evaluation import AccuracyEvaluator, AccuracyReport
from .export import ClassifiedRasterExporter
from .geometry import LabeledPolygonSet, Region, load_labeled_polygons
from .indices import IndexDeriver, normalized_difference
from .pipeline import ClassificationPipeline, PipelineResult
from .raster import CLASS_NODATA, NODATA, GridGeometry, RasterImage, RasterStore, Scene
from .sample_extractor import SampleExtractor
from .samples import SampleRecord, SampleSet
from .splitter import DatasetSplitter

__version__ = "1.0.0"
__author__ = "Land Cover Classification Team"

__all__ = [
    "AccuracyEvaluator",
    "AccuracyReport",
    "CLASS_NODATA",
    "ClassificationPipeline",
    "ClassifiedRasterExporter",
    "CloudMasker",
    "CompositeBuilder",
    "DataAvailabilityError",
    "DatasetSplitter",
    "EmptyTestSetError",
    "ExportTooLargeError",
    "GridGeometry",
    "IndexDeriver",
    "InsufficientDataError",
    "LabeledPolygonSet",
    "LandCoverClassifier",
    "LandCoverError",
    "NODATA",
    "PipelineConfig",
    "PipelineResult",
    "RasterImage",
    "RasterStore",
    "Region",
    "SampleExtractor",
    "SampleRecord",
    "SampleSet",
    "Scene",
    "SceneFilter",
    "SceneQuery",
    "SchemaMismatchError",
    "load_labeled_polygons",
    "normalized_difference",
]
