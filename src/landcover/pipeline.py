"""
Classification Pipeline

Runs the complete workflow from raw scenes to a classified raster and an
accuracy report:
1. Filter scenes by date, area of interest and cloudiness
2. Mask cloud/shadow pixels and build a median composite
3. Derive spectral indices
4. Extract labeled samples and split them into train/test
5. Train the random forest and classify the composite
6. Assess accuracy on the test split
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Optional, Sequence

from .classifier import LandCoverClassifier
from .cloud_mask import CloudMasker, SceneFilter, SceneQuery
from .composite import CompositeBuilder
from .config import PipelineConfig
from .evaluation import AccuracyEvaluator, AccuracyReport
from .geometry import LabeledPolygonSet
from .indices import IndexDeriver
from .raster import RasterImage, RasterStore, Scene
from .sample_extractor import SampleExtractor
from .splitter import DatasetSplitter

logger = logging.getLogger(__name__)


@dataclass
class PipelineResult:
    """Outputs of one pipeline run."""

    store: RasterStore
    classifier: LandCoverClassifier
    report: AccuracyReport
    sample_counts: Dict[str, int]
    statistics: Dict[str, Dict] = field(default_factory=dict)

    @property
    def classified(self) -> RasterImage:
        return self.store.get("classified")

    @property
    def features(self) -> RasterImage:
        return self.store.get("features")


def _banner(title: str) -> None:
    logger.info("=" * 50)
    logger.info(title)
    logger.info("=" * 50)


class ClassificationPipeline:
    """
    Orchestrate every stage with explicit inputs.

    Args:
        config: Pipeline configuration (stage settings and class table)
    """

    def __init__(self, config: Optional[PipelineConfig] = None):
        self.config = config or PipelineConfig()
        cfg = self.config

        self.masker = CloudMasker(cfg.cloud_mask.scl_band, cfg.cloud_mask.unusable_codes)
        self.compositor = CompositeBuilder(
            bands=cfg.compositing.bands,
            tile_rows=cfg.compositing.tile_rows,
            max_workers=cfg.compositing.max_workers,
        )
        self.deriver = IndexDeriver({k: tuple(v) for k, v in cfg.indices.items()})
        self.extractor = SampleExtractor(
            bands=cfg.feature_bands,
            scale=cfg.sampling.scale,
            overlap_policy=cfg.sampling.overlap_policy,
        )
        self.splitter = DatasetSplitter(cfg.splitting.fraction, cfg.splitting.seed)
        self.evaluator = AccuracyEvaluator(cfg.class_ids, cfg.class_names)

    def build_features(self, scenes: Sequence[Scene], query: SceneQuery, store: RasterStore) -> RasterImage:
        """Filter, mask, composite, clip and derive indices; registers each raster."""
        _banner("STEP 1: Scene Filtering and Cloud Masking")
        kept = SceneFilter(query).apply(scenes)
        masked = self.masker.mask_collection(kept)

        _banner("STEP 2: Median Composite")
        composite = self.compositor.build(masked)
        composite = self.compositor.clip(composite, query.region)
        store.put("composite", composite)

        _banner("STEP 3: Spectral Indices")
        features = self.deriver.derive(store.get("composite"))
        store.put("features", features)
        return features

    def run(
        self,
        scenes: Sequence[Scene],
        polygons: LabeledPolygonSet,
        query: Optional[SceneQuery] = None
    ) -> PipelineResult:
        """
        Run the full pipeline.

        Args:
            scenes: Raw scenes (reflectance bands plus SCL)
            polygons: Labeled training polygons
            query: Scene query; defaults to the configured AOI and dates

        Returns:
            PipelineResult with the classified raster, model and report
        """
        query = query or self.config.scene_query.to_query()
        store = RasterStore()

        features = self.build_features(scenes, query, store)

        _banner("STEP 4: Sample Extraction and Split")
        samples = self.extractor.extract(features, polygons)
        train_set, test_set = self.splitter.split(samples)
        counts = {"total": len(samples), "train": len(train_set), "test": len(test_set)}
        logger.info(f"Total samples: {counts['total']}")
        logger.info(f"Training size: {counts['train']}, Test size: {counts['test']}")

        _banner("STEP 5: Training and Classification")
        classifier = LandCoverClassifier(
            num_trees=self.config.classifier.num_trees,
            class_ids=self.config.class_ids,
            seed=self.config.classifier.seed,
            n_jobs=self.config.classifier.n_jobs,
            tile_rows=self.config.compositing.tile_rows,
        )
        classifier.train(train_set, self.extractor.bands)
        store.put("classified", classifier.predict(store.get("features")))

        _banner("STEP 6: Accuracy Assessment")
        predicted = classifier.predict(test_set)
        report = self.evaluator.evaluate(test_set.labels, predicted, sample_counts=counts)

        _banner("PIPELINE COMPLETE")
        return PipelineResult(
            store=store,
            classifier=classifier,
            report=report,
            sample_counts=counts,
            statistics={
                "composite": self.compositor.get_statistics(),
                "sampling": self.extractor.get_statistics(),
                "split": self.splitter.get_split_statistics(),
                "training": classifier.metrics,
            },
        )
