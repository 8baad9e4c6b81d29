#!/usr/bin/env python3
"""
Land-Cover Classification Pipeline - Main Script

This script orchestrates the supervised land-cover classification pipeline:
1. Build a cloud-masked median composite with spectral indices
2. Extract labeled samples from training polygons
3. Split samples into train/test subsets
4. Train a random forest and classify the composite
5. Assess accuracy on the test subset

Usage:
    python main.py --help
    python main.py setup
    python main.py composite --scenes-dir data/raw/scenes --output data/processed/features.tif
    python main.py extract --features data/processed/features.tif --polygons data/raw/vectors/training.geojson
    python main.py split --samples data/processed/samples/samples.csv
    python main.py train --train data/processed/samples/train.csv
    python main.py classify --features data/processed/features.tif --output output/predictions/lulc.tif
    python main.py evaluate --test data/processed/samples/test.csv --plot
    python main.py pipeline --scenes-dir data/raw/scenes --class-vector water=data/raw/vectors/water.geojson ...
"""

import os
import sys
import json
import argparse
import logging

# Add src directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), 'src'))

from landcover.classifier import LandCoverClassifier
from landcover.cloud_mask import CloudMasker, SceneFilter
from landcover.composite import CompositeBuilder
from landcover.config import PipelineConfig
from landcover.errors import LandCoverError
from landcover.evaluation import AccuracyEvaluator
from landcover.export import ClassifiedRasterExporter
from landcover.geometry import LabeledPolygonSet, load_labeled_polygons
from landcover.indices import IndexDeriver
from landcover.pipeline import ClassificationPipeline
from landcover.raster import load_scenes, read_raster, write_raster
from landcover.sample_extractor import SampleExtractor
from landcover.samples import SampleSet
from landcover.splitter import DatasetSplitter

logger = logging.getLogger(__name__)

SPLIT_COUNTS_FILE = "split_counts.json"


def configure_logging(log_file: str = 'pipeline.log') -> None:
    """Log to both a file and the console."""
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler()
        ]
    )


def load_config(args) -> PipelineConfig:
    """Load the JSON config if one was given, otherwise defaults."""
    if getattr(args, 'config', None):
        return PipelineConfig.from_json(args.config)
    return PipelineConfig()


def load_polygons(args, config: PipelineConfig) -> LabeledPolygonSet:
    """Polygons from a single labeled file or from per-class files."""
    if args.polygons:
        return LabeledPolygonSet.from_file(args.polygons, class_column=args.class_column)
    if args.class_vector:
        paths = {}
        for mapping in args.class_vector:
            name, path = mapping.split('=', 1)
            paths[name] = path
        return load_labeled_polygons(paths, config.class_ids_by_name)
    raise ValueError("Provide --polygons or at least one --class-vector NAME=PATH")


def setup_directories(base_dir: str = ".") -> None:
    """Create necessary directory structure and a default config."""
    directories = [
        "data/raw/scenes",
        "data/raw/vectors",
        "data/processed/samples",
        "output/models",
        "output/predictions",
        "output/reports",
        "configs"
    ]

    for dir_path in directories:
        full_path = os.path.join(base_dir, dir_path)
        os.makedirs(full_path, exist_ok=True)
        logger.info(f"Created directory: {full_path}")

    config_path = os.path.join(base_dir, "configs", "config.json")
    if not os.path.exists(config_path):
        PipelineConfig().save(config_path)
        logger.info(f"Created: {config_path}")


def build_composite(args) -> str:
    """
    Build the cloud-masked median composite with indices.

    Returns:
        Path to the written feature raster
    """
    config = load_config(args)
    query = config.scene_query.to_query()

    scenes = load_scenes(args.scenes_dir, args.pattern)
    scenes = SceneFilter(query).apply(scenes)
    scenes = CloudMasker(config.cloud_mask.scl_band, config.cloud_mask.unusable_codes).mask_collection(scenes)

    builder = CompositeBuilder(
        bands=config.compositing.bands,
        tile_rows=config.compositing.tile_rows,
        max_workers=config.compositing.max_workers
    )
    composite = builder.clip(builder.build(scenes), query.region)
    features = IndexDeriver({k: tuple(v) for k, v in config.indices.items()}).derive(composite)

    stats = builder.get_statistics()
    logger.info(f"Composite statistics:")
    logger.info(f"  Scenes: {stats['scenes']}")
    for band, frac in stats['valid_fraction'].items():
        logger.info(f"  {band}: {frac:.1%} valid")

    return write_raster(features, args.output)


def extract_samples(args) -> str:
    """
    Extract labeled samples from the feature raster.

    Returns:
        Path to the samples CSV
    """
    config = load_config(args)
    features, _ = read_raster(args.features)
    polygons = load_polygons(args, config)

    extractor = SampleExtractor(
        bands=config.feature_bands,
        scale=config.sampling.scale,
        overlap_policy=config.sampling.overlap_policy
    )
    samples = extractor.extract(features, polygons)

    stats = extractor.get_statistics()
    logger.info(f"Extraction complete. Statistics:")
    logger.info(f"  Total samples: {stats['total_samples']}")
    for label, count in stats['class_distribution'].items():
        logger.info(f"  Class {config.class_names.get(label, label)}: {count}")

    os.makedirs(os.path.dirname(args.output) or ".", exist_ok=True)
    return samples.to_csv(args.output)


def split_samples(args) -> tuple:
    """
    Split samples into train/test CSVs.

    Returns:
        Tuple of (train_path, test_path)
    """
    config = load_config(args)
    samples = SampleSet.from_csv(args.samples, config.feature_bands)

    splitter = DatasetSplitter(config.splitting.fraction, config.splitting.seed)
    train_set, test_set = splitter.split(samples)

    stats = splitter.get_split_statistics()
    logger.info(f"Splitting complete. Statistics:")
    logger.info(f"  Total samples: {stats['total_samples']}")
    for split, count in stats['split_distribution'].items():
        logger.info(f"  {split.capitalize()}: {count} samples")

    os.makedirs(args.output_dir, exist_ok=True)
    train_path = train_set.to_csv(os.path.join(args.output_dir, "train.csv"))
    test_path = test_set.to_csv(os.path.join(args.output_dir, "test.csv"))

    counts = {"total": stats["total_samples"], **stats["split_distribution"]}
    with open(os.path.join(args.output_dir, SPLIT_COUNTS_FILE), "w") as f:
        json.dump(counts, f, indent=2)
    return train_path, test_path


def train_model(args) -> str:
    """
    Train the random forest on the training CSV.

    Returns:
        Path to the saved model
    """
    config = load_config(args)
    train_set = SampleSet.from_csv(args.train, config.feature_bands)

    classifier = LandCoverClassifier(
        num_trees=args.num_trees or config.classifier.num_trees,
        class_ids=config.class_ids,
        seed=config.classifier.seed,
        n_jobs=config.classifier.n_jobs
    )
    metrics = classifier.train(train_set, config.feature_bands)
    for name, value in sorted(metrics['feature_importance'].items(), key=lambda kv: -kv[1]):
        logger.info(f"  {name}: {value:.3f}")

    return classifier.save(args.model_dir)


def classify_raster(args) -> str:
    """
    Classify the feature raster and export it over the AOI.

    Returns:
        Path to the classified GeoTIFF
    """
    config = load_config(args)
    features, _ = read_raster(args.features)
    classifier = LandCoverClassifier.load(args.model_dir, n_jobs=config.classifier.n_jobs)
    classified = classifier.predict(features)

    exporter = ClassifiedRasterExporter(
        scale=args.scale or config.export.scale,
        max_pixels=args.max_pixels or config.export.max_pixels
    )
    return exporter.export(
        classified, config.scene_query.region, args.output,
        config.export.description, colors=config.class_colors
    )


def evaluate_model(args) -> str:
    """
    Evaluate the model on the test CSV.

    Sample counts written by the split command next to the test CSV (or
    given with --split-counts) are carried into the report.

    Returns:
        Path to the JSON accuracy report
    """
    config = load_config(args)
    test_set = SampleSet.from_csv(args.test, config.feature_bands)
    classifier = LandCoverClassifier.load(args.model_dir, n_jobs=config.classifier.n_jobs)

    evaluator = AccuracyEvaluator(config.class_ids, config.class_names)
    counts_path = args.split_counts or os.path.join(os.path.dirname(args.test), SPLIT_COUNTS_FILE)
    counts = None
    if os.path.exists(counts_path):
        with open(counts_path) as f:
            counts = json.load(f)
    else:
        logger.warning(f"No split counts at {counts_path}; report carries the test count only")

    report = evaluator.evaluate(test_set.labels, classifier.predict(test_set), sample_counts=counts)
    paths = report.save(args.output_dir)
    if args.plot:
        report.plot(os.path.join(args.output_dir, "confusion_matrix.png"))
    return paths["report"]


def run_full_pipeline(args) -> None:
    """
    Run the complete pipeline and write all outputs.

    Args:
        args: Parsed command line arguments
    """
    logger.info("Starting full classification pipeline")
    config = load_config(args)

    scenes = load_scenes(args.scenes_dir, args.pattern)
    polygons = load_polygons(args, config)
    result = ClassificationPipeline(config).run(scenes, polygons)

    os.makedirs(args.output_dir, exist_ok=True)
    features_path = write_raster(result.features, os.path.join(args.output_dir, "features.tif"))
    model_path = result.classifier.save(os.path.join(args.output_dir, "model"))
    report_paths = result.report.save(os.path.join(args.output_dir, "report"))

    exporter = ClassifiedRasterExporter(config.export.scale, config.export.max_pixels)
    map_path = exporter.export(
        result.classified,
        config.scene_query.region,
        os.path.join(args.output_dir, f"{config.export.description}.tif"),
        config.export.description,
        colors=config.class_colors
    )

    with open(os.path.join(args.output_dir, "statistics.json"), "w") as f:
        json.dump(result.statistics, f, indent=2, default=str)

    logger.info(f"Results saved to:")
    logger.info(f"  Features: {features_path}")
    logger.info(f"  Model: {model_path}")
    logger.info(f"  Report: {report_paths['report']}")
    logger.info(f"  Classified map: {map_path}")


def add_polygon_arguments(parser) -> None:
    parser.add_argument('--polygons', help='Vector file with all training polygons and a class column')
    parser.add_argument('--class-column', default='landcover', help='Class column in --polygons')
    parser.add_argument('--class-vector', nargs='+', help='Per-class vector files (format: name=path)')


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Land-Cover Classification Pipeline",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )
    parser.add_argument('--config', help='Path to JSON configuration')
    parser.add_argument('--log-file', default='pipeline.log', help='Log file path')

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    # Setup subcommand
    setup_parser = subparsers.add_parser('setup', help='Setup directory structure and default config')
    setup_parser.add_argument('--base-dir', default='.', help='Base directory for setup')

    # Composite subcommand
    composite_parser = subparsers.add_parser('composite', help='Build median composite with indices')
    composite_parser.add_argument('--scenes-dir', required=True, help='Directory containing scene GeoTIFFs')
    composite_parser.add_argument('--pattern', default='*.tif', help='Glob pattern for scene files')
    composite_parser.add_argument('--output', default='data/processed/features.tif', help='Output feature raster')

    # Extract samples subcommand
    extract_parser = subparsers.add_parser('extract', help='Extract labeled samples from polygons')
    extract_parser.add_argument('--features', required=True, help='Feature raster (composite + indices)')
    extract_parser.add_argument('--output', default='data/processed/samples/samples.csv', help='Output samples CSV')
    add_polygon_arguments(extract_parser)

    # Split subcommand
    split_parser = subparsers.add_parser('split', help='Split samples into train/test')
    split_parser.add_argument('--samples', required=True, help='Samples CSV')
    split_parser.add_argument('--output-dir', default='data/processed/samples', help='Output directory for splits')

    # Train subcommand
    train_parser = subparsers.add_parser('train', help='Train the random forest')
    train_parser.add_argument('--train', required=True, help='Training samples CSV')
    train_parser.add_argument('--model-dir', default='output/models', help='Model output directory')
    train_parser.add_argument('--num-trees', type=int, help='Number of trees (overrides config)')

    # Classify subcommand
    classify_parser = subparsers.add_parser('classify', help='Classify the feature raster')
    classify_parser.add_argument('--features', required=True, help='Feature raster (composite + indices)')
    classify_parser.add_argument('--model-dir', default='output/models', help='Trained model directory')
    classify_parser.add_argument('--output', default='output/predictions/lulc.tif', help='Output classified GeoTIFF')
    classify_parser.add_argument('--scale', type=float, help='Export pixel size (overrides config)')
    classify_parser.add_argument('--max-pixels', type=float, help='Export pixel-count guard (overrides config)')

    # Evaluate subcommand
    evaluate_parser = subparsers.add_parser('evaluate', help='Assess accuracy on the test split')
    evaluate_parser.add_argument('--test', required=True, help='Test samples CSV')
    evaluate_parser.add_argument('--model-dir', default='output/models', help='Trained model directory')
    evaluate_parser.add_argument('--output-dir', default='output/reports', help='Report output directory')
    evaluate_parser.add_argument('--plot', action='store_true', help='Also save a confusion matrix figure')
    evaluate_parser.add_argument('--split-counts', help='Split counts JSON (defaults to the one beside --test)')

    # Full pipeline subcommand
    pipeline_parser = subparsers.add_parser('pipeline', help='Run the complete pipeline')
    pipeline_parser.add_argument('--scenes-dir', required=True, help='Directory containing scene GeoTIFFs')
    pipeline_parser.add_argument('--pattern', default='*.tif', help='Glob pattern for scene files')
    pipeline_parser.add_argument('--output-dir', default='output', help='Directory for all outputs')
    add_polygon_arguments(pipeline_parser)

    return parser


def main(argv=None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_file)

    commands = {
        'setup': lambda a: setup_directories(a.base_dir),
        'composite': build_composite,
        'extract': extract_samples,
        'split': split_samples,
        'train': train_model,
        'classify': classify_raster,
        'evaluate': evaluate_model,
        'pipeline': run_full_pipeline,
    }

    if args.command not in commands:
        parser.print_help()
        return 0

    try:
        commands[args.command](args)
    except LandCoverError as e:
        logger.error(f"Pipeline failed: {e}")
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
