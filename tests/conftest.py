"""Shared fixtures: synthetic grids, images, scenes and polygons."""

from datetime import date

import numpy as np
import pytest
from shapely.geometry import box

from landcover.geometry import LabeledPolygonSet, Region
from landcover.raster import RasterImage, Scene

from tests.synthetic import CRS, SIZE, make_grid, make_spectral_bands


@pytest.fixture
def grid_2x2():
    return make_grid(2, 2)


@pytest.fixture
def grid():
    return make_grid(SIZE, SIZE)


@pytest.fixture
def spectral_image(grid):
    return RasterImage(make_spectral_bands(), grid)


@pytest.fixture
def region():
    """AOI covering the whole synthetic grid."""
    return Region(((0, 0), (SIZE, 0), (SIZE, SIZE), (0, SIZE)), crs=CRS)


@pytest.fixture
def scenes(grid):
    """Five November scenes with a cloud strip in the second one."""
    out = []
    for i in range(5):
        bands = make_spectral_bands(seed=i)
        scl = np.full(grid.shape, 4.0)
        if i == 1:
            scl[:4, :] = 9
        bands["SCL"] = scl
        out.append(Scene(
            image=RasterImage(bands, grid),
            acquired=date(2023, 11, 3 + 5 * i),
            scene_id=f"S2_{i}",
            cloud_percent=2.0 * i,
        ))
    return out


@pytest.fixture
def quadrant_polygons():
    """One interior training polygon per class quadrant."""
    half = SIZE // 2
    return LabeledPolygonSet.from_collections(
        {
            "water": [box(1, half + 1, half - 1, SIZE - 1)],
            "vegetation": [box(half + 1, half + 1, SIZE - 1, SIZE - 1)],
            "built": [box(1, 1, half - 1, half - 1)],
            "barren": [box(half + 1, 1, SIZE - 1, half - 1)],
        },
        class_ids={"water": 0, "vegetation": 1, "built": 2, "barren": 3},
        crs=CRS,
    )
