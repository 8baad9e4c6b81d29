"""Tests for labeled pixel sampling."""

import numpy as np
import pytest
from shapely.geometry import box

from landcover.errors import SchemaMismatchError
from landcover.geometry import LabeledPolygonSet
from landcover.indices import IndexDeriver
from landcover.raster import NODATA, RasterImage
from landcover.sample_extractor import SampleExtractor

from tests.synthetic import CRS, make_grid

BANDS = ["B2", "B3", "B4", "B8"]


def polygons(*items):
    """items are (geometry, class_id) pairs."""
    return LabeledPolygonSet.from_collections(
        {f"c{i}": [geom] for i, (geom, _) in enumerate(items)},
        class_ids={f"c{i}": label for i, (_, label) in enumerate(items)},
        crs=CRS,
    )


def tiny_image(grid, b4):
    return RasterImage({
        "B2": np.ones((2, 2)),
        "B3": np.full((2, 2), 2.0),
        "B4": np.array(b4, dtype=float),
        "B8": np.full((2, 2), 4.0),
    }, grid)


class TestTwoByTwo:
    """Small rasters with hand-checked samples."""

    def test_left_column_with_uniform_columns(self, grid_2x2):
        image = IndexDeriver().derive(tiny_image(grid_2x2, [[1, 3], [1, 3]]))
        left = polygons((box(0, 0, 1, 2), 1))

        extractor = SampleExtractor(BANDS + ["NDVI", "NDWI"])
        samples = extractor.extract(image, left)
        records = list(samples.records())

        assert len(records) == 2
        assert all(r.label == 1 for r in records)
        assert records[0].features == records[1].features
        assert records[0].features[:4] == (1.0, 2.0, 1.0, 4.0)
        assert records[0].features[4] == pytest.approx(0.6, rel=1e-6)
        assert records[0].features[5] == pytest.approx(-1.0 / 3.0, rel=1e-6)

    def test_left_column_of_row_major_bands(self, grid_2x2):
        # B4 rows are [1, 1] and [3, 3], so the left column holds 1 then 3
        image = tiny_image(grid_2x2, [[1, 1], [3, 3]])
        samples = SampleExtractor(BANDS).extract(image, polygons((box(0, 0, 1, 2), 1)))

        records = list(samples.records())
        assert [(r.row, r.col) for r in records] == [(0, 0), (1, 0)]
        assert [r.features[2] for r in records] == [1.0, 3.0]

    def test_top_row_of_row_major_bands(self, grid_2x2):
        image = tiny_image(grid_2x2, [[1, 1], [3, 3]])
        samples = SampleExtractor(BANDS).extract(image, polygons((box(0, 1, 2, 2), 1)))

        records = list(samples.records())
        assert len(records) == 2
        assert records[0].features == records[1].features == (1.0, 2.0, 1.0, 4.0)

    def test_pixel_locations(self, grid_2x2):
        image = tiny_image(grid_2x2, [[1, 1], [1, 1]])
        samples = SampleExtractor(BANDS).extract(image, polygons((box(1, 0, 2, 1), 2)))
        record = next(samples.records())
        assert (record.row, record.col, record.x, record.y) == (1, 1, 1.5, 0.5)


class TestExtractionRules:
    """Test nodata, boundary and overlap handling."""

    def test_nodata_pixels_skipped(self, grid_2x2):
        image = tiny_image(grid_2x2, [[1, 1], [NODATA, 1]])
        extractor = SampleExtractor(BANDS)
        samples = extractor.extract(image, polygons((box(0, 0, 2, 2), 0)))

        assert len(samples) == 3
        assert not np.any(samples.features == NODATA)
        assert extractor.get_statistics()["skipped_nodata"] == 1

    def test_center_on_boundary_excluded(self, grid_2x2):
        image = tiny_image(grid_2x2, [[1, 1], [1, 1]])
        extractor = SampleExtractor(BANDS)
        samples = extractor.extract(image, polygons((box(0, 0, 0.5, 2), 0)))

        assert len(samples) == 0
        assert extractor.get_statistics()["empty_polygons"] == 1

    def test_conflicting_overlap_dropped(self, grid_2x2):
        image = tiny_image(grid_2x2, [[1, 1], [1, 1]])
        overlapping = polygons((box(0, 0, 2, 2), 0), (box(0, 0, 1, 2), 1))

        extractor = SampleExtractor(BANDS)
        samples = extractor.extract(image, overlapping)

        assert len(samples) == 2
        assert samples.class_counts() == {0: 2}
        assert extractor.get_statistics()["dropped_overlap"] == 4

    def test_conflicting_overlap_kept(self, grid_2x2):
        image = tiny_image(grid_2x2, [[1, 1], [1, 1]])
        overlapping = polygons((box(0, 0, 2, 2), 0), (box(0, 0, 1, 2), 1))

        samples = SampleExtractor(BANDS, overlap_policy="keep").extract(image, overlapping)
        assert samples.class_counts() == {0: 4, 1: 2}

    def test_same_class_overlap_not_dropped(self, grid_2x2):
        image = tiny_image(grid_2x2, [[1, 1], [1, 1]])
        overlapping = polygons((box(0, 0, 2, 2), 3), (box(0, 0, 1, 2), 3))

        samples = SampleExtractor(BANDS).extract(image, overlapping)
        assert samples.class_counts() == {3: 6}

    def test_invalid_policy(self):
        with pytest.raises(ValueError):
            SampleExtractor(BANDS, overlap_policy="first")

    def test_missing_band(self, grid_2x2):
        image = tiny_image(grid_2x2, [[1, 1], [1, 1]])
        with pytest.raises(SchemaMismatchError):
            SampleExtractor(BANDS + ["NDVI"]).extract(image, polygons((box(0, 0, 2, 2), 0)))


class TestScaleAndStatistics:
    """Test resampled sampling and extraction statistics."""

    def test_coarser_scale_uses_nearest_pixel(self):
        values = np.arange(16, dtype=float).reshape(4, 4)
        image = RasterImage({"B2": values}, make_grid(4, 4))
        samples = SampleExtractor(["B2"], scale=2.0).extract(image, polygons((box(0, 0, 4, 4), 0)))

        assert len(samples) == 4
        assert sorted(samples.features[:, 0]) == [5.0, 7.0, 13.0, 15.0]

    def test_native_scale_is_not_resampled(self, spectral_image, quadrant_polygons):
        native = SampleExtractor(BANDS).extract(spectral_image, quadrant_polygons)
        explicit = SampleExtractor(BANDS, scale=1.0).extract(spectral_image, quadrant_polygons)
        np.testing.assert_array_equal(native.features, explicit.features)

    def test_quadrant_counts(self, spectral_image, quadrant_polygons):
        extractor = SampleExtractor(BANDS)
        samples = extractor.extract(spectral_image, quadrant_polygons)

        assert samples.class_counts() == {0: 64, 1: 64, 2: 64, 3: 64}
        stats = extractor.get_statistics()
        assert stats["total_samples"] == 256
        assert stats["dropped_overlap"] == 0
