"""Random forest land-cover classifier over pixel feature vectors."""

import os
import json
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Optional, Sequence, Union

import joblib
import numpy as np
from joblib import Parallel, delayed
from sklearn.ensemble import RandomForestClassifier

from .errors import InsufficientDataError, SchemaMismatchError
from .raster import CLASS_NODATA, RasterImage, iter_row_tiles
from .samples import SampleSet

logger = logging.getLogger(__name__)

MODEL_FILE = "random_forest.joblib"
METADATA_FILE = "model_metadata.json"


class LandCoverClassifier:
    """
    Ensemble of randomized decision trees with hard majority voting.

    Each tree is grown on a bootstrap resample with a random feature subset
    at every split. Per-tree seeds come from the single `seed` stream, so a
    fixed seed reproduces the forest. Prediction is the modal class across
    trees, ties going to the lowest class id.
    """

    def __init__(
        self,
        num_trees: int = 200,
        class_ids: Sequence[int] = (0, 1, 2, 3),
        max_features: Union[str, int, float] = "sqrt",
        seed: int = 0,
        n_jobs: Optional[int] = None,
        tile_rows: int = 256
    ):
        """
        Initialize the classifier.

        Args:
            num_trees: Trees in the ensemble
            class_ids: Classes every training set must contain
            max_features: Features considered per split (default sqrt(schema length))
            seed: Seed for bootstrap and feature sampling
            n_jobs: Parallel jobs for tree fitting and voting
            tile_rows: Rows per work unit when classifying a raster
        """
        self.num_trees = num_trees
        self.class_ids = tuple(sorted(int(c) for c in class_ids))
        self.max_features = max_features
        self.seed = seed
        self.n_jobs = n_jobs
        self.tile_rows = tile_rows

        self.model: Optional[RandomForestClassifier] = None
        self.feature_schema: Optional[list] = None
        self.metrics: Dict[str, Any] = {}

    @property
    def is_trained(self) -> bool:
        return self.model is not None

    @staticmethod
    def _check_schema(schema: Sequence[str], names: Sequence[str], width: int, stage: str) -> None:
        schema = list(schema)
        if list(names) != schema or width != len(schema):
            raise SchemaMismatchError(
                "Feature vectors do not match the training schema",
                stage=stage,
                details={"expected": schema, "received": list(names), "width": width},
            )

    def train(self, train_set: SampleSet, feature_schema: Sequence[str], num_trees: Optional[int] = None) -> Dict[str, Any]:
        """
        Fit the ensemble on a training set.

        The classifier's state (schema, tree count, model) only changes once
        fitting succeeds; a failed retrain leaves the previous model usable.

        Args:
            train_set: Labeled samples
            feature_schema: Ordered feature names the model is trained on
            num_trees: Overrides the constructor tree count

        Returns:
            Training metrics dictionary
        """
        schema = list(feature_schema)
        X = train_set.features
        y = train_set.labels
        self._check_schema(schema, train_set.feature_names, X.shape[1], stage="training")

        unknown = sorted(set(y.tolist()) - set(self.class_ids))
        if unknown:
            raise ValueError(f"Training labels {unknown} are not configured classes {self.class_ids}")

        counts = {c: int(np.sum(y == c)) for c in self.class_ids}
        empty = [c for c, n in counts.items() if n == 0]
        if empty:
            raise InsufficientDataError(
                f"Classes {empty} have no training samples",
                stage="training",
                details={"class_counts": counts, "total": len(y)},
            )

        trees = num_trees if num_trees is not None else self.num_trees
        model = RandomForestClassifier(
            n_estimators=trees,
            max_features=self.max_features,
            bootstrap=True,
            random_state=self.seed,
            n_jobs=self.n_jobs,
        )
        logger.info(
            f"Training random forest: trees={trees}, "
            f"features={len(schema)}, samples={len(y)}"
        )
        model.fit(X, y)

        self.model = model
        self.num_trees = trees
        self.feature_schema = schema

        train_acc = float(np.mean(self._vote(X) == y))
        importance = dict(zip(schema, model.feature_importances_.tolist()))
        logger.info(f"Training accuracy: {train_acc:.4f}")

        self.metrics = {
            "train_accuracy": train_acc,
            "feature_importance": importance,
            "n_samples_used": int(len(y)),
            "class_counts": counts,
        }
        return self.metrics

    def _tile_workers(self) -> int:
        """Thread count for raster tiles, following joblib n_jobs semantics."""
        return joblib.effective_n_jobs(self.n_jobs)

    def _vote(self, X: np.ndarray, n_jobs: Optional[int] = None) -> np.ndarray:
        """Majority vote over trees; ties resolve to the lowest class id."""
        if len(X) == 0:
            return np.empty(0, dtype="int64")

        # Trees predict indices into the sorted model.classes_
        votes = Parallel(n_jobs=self.n_jobs if n_jobs is None else n_jobs, prefer="threads")(
            delayed(tree.predict)(X) for tree in self.model.estimators_
        )
        votes = np.asarray(votes, dtype="int64")
        n_classes = len(self.model.classes_)
        tally = np.stack([(votes == k).sum(axis=0) for k in range(n_classes)], axis=0)
        return self.model.classes_[np.argmax(tally, axis=0)].astype("int64")

    def predict(self, data: Union[RasterImage, SampleSet]) -> Union[RasterImage, np.ndarray]:
        """
        Predict class labels.

        Args:
            data: A raster (returns a single-band classified raster with
                no-data propagated) or a SampleSet (returns one label per record)
        """
        if not self.is_trained:
            raise RuntimeError("Classifier has not been trained")

        if isinstance(data, SampleSet):
            X = data.features
            self._check_schema(self.feature_schema, data.feature_names, X.shape[1], stage="prediction")
            return self._vote(X)

        if isinstance(data, RasterImage):
            return self._predict_raster(data)

        raise TypeError(f"Cannot predict on {type(data).__name__}")

    def _predict_raster(self, image: RasterImage) -> RasterImage:
        image.require(self.feature_schema, stage="prediction")
        values = image.stack(self.feature_schema)
        valid = image.valid_mask(self.feature_schema)
        out = np.full(image.shape, CLASS_NODATA, dtype="uint8")

        def classify_tile(rows: slice) -> int:
            tile_valid = valid[rows]
            X = values[:, rows][:, tile_valid].T.astype("float64")
            tile_out = out[rows]
            # Tiles already run in parallel, so each votes on one thread
            tile_out[tile_valid] = self._vote(X, n_jobs=1)
            return int(tile_valid.sum())

        tiles = list(iter_row_tiles(image.shape[0], self.tile_rows))
        with ThreadPoolExecutor(max_workers=self._tile_workers()) as pool:
            classified = sum(pool.map(classify_tile, tiles))

        logger.info(f"Classified {classified}/{valid.size} pixels ({valid.size - classified} no-data)")
        return RasterImage({"classification": out}, image.geometry, nodata=CLASS_NODATA, dtype="uint8")

    def save(self, save_dir: str) -> str:
        """
        Save model and metadata.

        Args:
            save_dir: Directory to save model artifacts
        """
        if not self.is_trained:
            raise RuntimeError("Classifier has not been trained")

        os.makedirs(save_dir, exist_ok=True)
        model_path = os.path.join(save_dir, MODEL_FILE)
        joblib.dump(self.model, model_path)

        metadata = {
            "feature_schema": self.feature_schema,
            "class_ids": list(self.class_ids),
            "num_trees": self.num_trees,
            "max_features": self.max_features,
            "seed": self.seed,
            "metrics": self.metrics,
        }
        with open(os.path.join(save_dir, METADATA_FILE), "w") as f:
            json.dump(metadata, f, indent=2)

        logger.info(f"Saved model to {model_path}")
        return model_path

    @classmethod
    def load(cls, save_dir: str, n_jobs: Optional[int] = None) -> "LandCoverClassifier":
        """
        Load a model saved with save().

        Args:
            save_dir: Directory containing model artifacts
        """
        with open(os.path.join(save_dir, METADATA_FILE)) as f:
            metadata = json.load(f)

        clf = cls(
            num_trees=metadata["num_trees"],
            class_ids=metadata["class_ids"],
            max_features=metadata["max_features"],
            seed=metadata["seed"],
            n_jobs=n_jobs,
        )
        clf.model = joblib.load(os.path.join(save_dir, MODEL_FILE))
        clf.feature_schema = metadata["feature_schema"]
        clf.metrics = metadata.get("metrics", {})
        logger.info(f"Loaded model from {save_dir}")
        return clf
