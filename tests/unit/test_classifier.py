"""Tests for the random forest classifier."""

from types import SimpleNamespace

import numpy as np
import pandas as pd
import pytest

from landcover.classifier import METADATA_FILE, MODEL_FILE, LandCoverClassifier
from landcover.errors import InsufficientDataError, SchemaMismatchError
from landcover.geometry import CLASS_COLUMN
from landcover.raster import CLASS_NODATA, NODATA, RasterImage
from landcover.samples import SampleSet

from tests.synthetic import BANDS, CLASS_SPECTRA, class_layout, make_grid


def spectral_samples(n_per_class=40, seed=0, classes=(0, 1, 2, 3)):
    rng = np.random.default_rng(seed)
    rows = []
    for c in classes:
        for _ in range(n_per_class):
            row = {b: CLASS_SPECTRA[c][b] + rng.normal(0.0, 0.01) for b in BANDS}
            row[CLASS_COLUMN] = c
            rows.append(row)
    return SampleSet(pd.DataFrame(rows), BANDS)


@pytest.fixture
def trained():
    clf = LandCoverClassifier(num_trees=15, seed=0, tile_rows=4)
    clf.train(spectral_samples(), BANDS)
    return clf


class TestTraining:
    """Test fitting and training-time validation."""

    def test_separable_classes(self, trained):
        test = spectral_samples(n_per_class=20, seed=1)
        assert np.mean(trained.predict(test) == test.labels) > 0.95

    def test_metrics(self, trained):
        metrics = trained.metrics
        assert metrics["n_samples_used"] == 160
        assert metrics["class_counts"] == {0: 40, 1: 40, 2: 40, 3: 40}
        assert set(metrics["feature_importance"]) == set(BANDS)
        assert metrics["train_accuracy"] > 0.95

    def test_missing_class(self):
        clf = LandCoverClassifier(num_trees=5)
        with pytest.raises(InsufficientDataError) as exc:
            clf.train(spectral_samples(classes=(0, 1, 2)), BANDS)
        assert exc.value.details["class_counts"][3] == 0
        assert not clf.is_trained

    def test_schema_order_mismatch(self):
        with pytest.raises(SchemaMismatchError):
            LandCoverClassifier(num_trees=5).train(spectral_samples(), list(reversed(BANDS)))

    def test_unknown_label(self):
        samples = spectral_samples(classes=(0, 1, 2, 3, 3))
        relabeled = samples.with_column(CLASS_COLUMN, np.where(samples.labels == 3, 7, samples.labels))
        with pytest.raises(ValueError):
            LandCoverClassifier(num_trees=5, class_ids=(0, 1, 2)).train(relabeled, BANDS)

    def test_fixed_seed_is_reproducible(self):
        test = spectral_samples(n_per_class=10, seed=2)
        a = LandCoverClassifier(num_trees=10, seed=7)
        b = LandCoverClassifier(num_trees=10, seed=7)
        a.train(spectral_samples(), BANDS)
        b.train(spectral_samples(), BANDS)
        np.testing.assert_array_equal(a.predict(test), b.predict(test))


class TestVoting:
    """Test hard majority voting over trees."""

    def _with_trees(self, tree_outputs, classes=(0, 1, 2, 3)):
        clf = LandCoverClassifier()
        clf.model = SimpleNamespace(
            estimators_=[SimpleNamespace(predict=lambda X, out=out: np.full(len(X), out)) for out in tree_outputs],
            classes_=np.array(classes),
        )
        clf.feature_schema = ["B2"]
        return clf

    def _one_sample(self):
        return SampleSet(pd.DataFrame({"B2": [0.1], CLASS_COLUMN: [0]}), ["B2"])

    def test_majority_wins(self):
        clf = self._with_trees([2, 2, 1])
        assert clf.predict(self._one_sample()).tolist() == [2]

    def test_tie_goes_to_lowest_class(self):
        clf = self._with_trees([3, 1, 3, 1])
        assert clf.predict(self._one_sample()).tolist() == [1]

    def test_tree_indices_map_to_class_ids(self):
        clf = self._with_trees([1, 1, 0], classes=(2, 5))
        assert clf.predict(self._one_sample()).tolist() == [5]


class TestPrediction:
    """Test prediction inputs and outputs."""

    def test_untrained(self):
        with pytest.raises(RuntimeError):
            LandCoverClassifier().predict(spectral_samples())

    def test_unsupported_input(self, trained):
        with pytest.raises(TypeError):
            trained.predict(np.zeros((2, 4)))

    def test_sample_schema_mismatch(self, trained):
        samples = SampleSet(spectral_samples().to_frame(), ["B2", "B3", "B4"])
        with pytest.raises(SchemaMismatchError):
            trained.predict(samples)

    def test_raster_prediction(self, trained, spectral_image):
        classified = trained.predict(spectral_image)
        assert classified.band_names == ["classification"]
        assert classified["classification"].dtype == np.uint8
        assert classified.nodata == CLASS_NODATA
        assert np.mean(classified["classification"] == class_layout()) > 0.95

    def test_raster_nodata_propagates(self, trained):
        bands = {b: np.full((3, 3), CLASS_SPECTRA[1][b]) for b in BANDS}
        bands["B4"][1, 1] = NODATA
        classified = trained.predict(RasterImage(bands, make_grid(3, 3)))["classification"]

        assert classified[1, 1] == CLASS_NODATA
        assert np.all(classified[classified != CLASS_NODATA] == 1)
        assert (classified == CLASS_NODATA).sum() == 1

    def test_raster_missing_band(self, trained, grid_2x2):
        with pytest.raises(SchemaMismatchError):
            trained.predict(RasterImage({"B2": np.ones((2, 2))}, grid_2x2))


class TestPersistence:
    """Test saving and loading model artifacts."""

    def test_save_and_load(self, trained, tmp_path):
        trained.save(str(tmp_path))
        assert (tmp_path / MODEL_FILE).exists()
        assert (tmp_path / METADATA_FILE).exists()

        loaded = LandCoverClassifier.load(str(tmp_path))
        test = spectral_samples(n_per_class=5, seed=3)
        assert loaded.feature_schema == BANDS
        assert loaded.num_trees == 15
        np.testing.assert_array_equal(loaded.predict(test), trained.predict(test))

    def test_save_untrained(self, tmp_path):
        with pytest.raises(RuntimeError):
            LandCoverClassifier().save(str(tmp_path))


class TestRetraining:
    """Test that a failed retrain leaves the fitted model intact."""

    @pytest.mark.parametrize("bad_call", [
        lambda clf: clf.train(spectral_samples(), list(reversed(BANDS))),
        lambda clf: clf.train(spectral_samples(classes=(0, 1, 2)), BANDS, num_trees=3),
    ])
    def test_failed_retrain_keeps_previous_model(self, trained, spectral_image, bad_call):
        before = trained.predict(spectral_image)["classification"].copy()
        model = trained.model

        with pytest.raises((SchemaMismatchError, InsufficientDataError)):
            bad_call(trained)

        assert trained.model is model
        assert trained.feature_schema == BANDS
        assert trained.num_trees == 15
        np.testing.assert_array_equal(trained.predict(spectral_image)["classification"], before)

    def test_successful_retrain_updates_state(self, trained):
        trained.train(spectral_samples(seed=4), BANDS, num_trees=5)
        assert trained.num_trees == 5
        assert len(trained.model.estimators_) == 5


class TestTileWorkers:
    """Test raster tile parallelism follows n_jobs."""

    @pytest.mark.parametrize("n_jobs,expected", [(None, 1), (1, 1), (3, 3)])
    def test_pool_size(self, n_jobs, expected):
        assert LandCoverClassifier(n_jobs=n_jobs)._tile_workers() == expected

    def test_parallel_tiles_match_serial(self, spectral_image):
        serial = LandCoverClassifier(num_trees=10, n_jobs=1, tile_rows=3)
        parallel = LandCoverClassifier(num_trees=10, n_jobs=2, tile_rows=3)
        serial.train(spectral_samples(), BANDS)
        parallel.train(spectral_samples(), BANDS)
        np.testing.assert_array_equal(
            serial.predict(spectral_image)["classification"],
            parallel.predict(spectral_image)["classification"],
        )
