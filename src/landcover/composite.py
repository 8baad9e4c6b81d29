"""
Temporal Composite Module

This module reduces a stack of cloud-masked scenes into one representative
image by taking the per-pixel median over valid observations.
"""

import os
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional, Sequence

import numpy as np
from rasterio.features import geometry_mask
from tqdm import tqdm

from .errors import DataAvailabilityError
from .geometry import Region
from .raster import RasterImage, Scene, iter_row_tiles

logger = logging.getLogger(__name__)


def median_of_valid(stack: np.ndarray, nodata: float) -> np.ndarray:
    """
    Median along axis 0 ignoring no-data.

    Args:
        stack: Observations shaped (times, rows, cols)
        nodata: Sentinel marking missing observations

    Returns:
        (rows, cols) median, nodata where no observation is valid
    """
    valid = stack != nodata
    count = valid.sum(axis=0)
    data = np.where(valid, stack, np.nan).astype("float64")
    empty = count == 0
    data[:, empty] = 0.0
    median = np.nanmedian(data, axis=0)
    median[empty] = nodata
    return median.astype("float32")


class CompositeBuilder:
    """
    Build a median composite from a time series of scenes.

    This class handles:
    1. Checking that all scenes share one grid
    2. Reducing each band tile-by-tile in a thread pool
    3. Clipping the composite to the area of interest
    """

    def __init__(
        self,
        bands: Sequence[str] = ("B2", "B3", "B4", "B8"),
        tile_rows: int = 256,
        max_workers: Optional[int] = None
    ):
        """
        Initialize the CompositeBuilder.

        Args:
            bands: Bands to composite, in output order
            tile_rows: Rows per parallel work unit
            max_workers: Thread pool size (defaults to CPU count)
        """
        self.bands = list(bands)
        self.tile_rows = tile_rows
        self.max_workers = max_workers or os.cpu_count() or 1

        self.scene_count = 0
        self.observation_count: Optional[np.ndarray] = None
        self.composite: Optional[RasterImage] = None

    def _check_grids(self, scenes: List[Scene]) -> None:
        reference = scenes[0].image.geometry
        for scene in scenes[1:]:
            if not scene.image.geometry.matches(reference):
                raise ValueError(
                    f"Scene {scene.scene_id} does not share the grid of {scenes[0].scene_id}"
                )
        for scene in scenes:
            scene.image.require(self.bands, stage="composite")

    def build(self, scenes: Sequence[Scene]) -> RasterImage:
        """
        Composite the scenes.

        Args:
            scenes: Cloud-masked scenes sharing one grid

        Returns:
            Median composite with the configured bands
        """
        scenes = list(scenes)
        if not scenes:
            raise DataAvailabilityError("No scenes to composite", stage="composite")

        self._check_grids(scenes)
        geometry = scenes[0].image.geometry
        nodata = scenes[0].image.nodata
        logger.info(f"Compositing {len(scenes)} scenes, bands {self.bands}")

        stacks = {
            name: np.stack([s.image[name] for s in scenes], axis=0)
            for name in self.bands
        }
        out = {name: np.full(geometry.shape, nodata, dtype="float32") for name in self.bands}
        tiles = list(iter_row_tiles(geometry.height, self.tile_rows))

        def reduce_tile(rows: slice) -> slice:
            for name in self.bands:
                out[name][rows] = median_of_valid(stacks[name][:, rows], nodata)
            return rows

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            for _ in tqdm(pool.map(reduce_tile, tiles), total=len(tiles), desc="Compositing tiles"):
                pass

        valid_any = np.zeros(geometry.shape, dtype=bool)
        counts = np.zeros(geometry.shape, dtype="int32")
        for name in self.bands:
            valid_any |= out[name] != nodata
        for scene in scenes:
            counts += np.all(scene.image.stack(self.bands) != nodata, axis=0)

        if not valid_any.any():
            raise DataAvailabilityError(
                "Composite has no valid pixels",
                stage="composite",
                details={"scenes": len(scenes)},
            )

        self.scene_count = len(scenes)
        self.observation_count = counts
        self.composite = RasterImage(out, geometry, nodata)
        logger.info(
            f"Composite complete: {int(valid_any.sum())}/{valid_any.size} pixels with data"
        )
        return self.composite

    @staticmethod
    def clip(image: RasterImage, region: Region) -> RasterImage:
        """Set pixels whose centers fall outside the region to no-data."""
        outside = geometry_mask(
            [region.geometry_in(image.geometry.crs)],
            out_shape=image.shape,
            transform=image.geometry.transform,
        )
        bands = {
            name: np.where(outside, image.nodata, image[name])
            for name in image.band_names
        }
        logger.info(f"Clipped composite to AOI: {int((~outside).sum())} pixels inside")
        return RasterImage(bands, image.geometry, image.nodata)

    def get_statistics(self) -> Dict:
        """
        Get statistics about the last composite.

        Returns:
            Dictionary with scene count, per-band valid fraction and
            valid-observation counts per pixel
        """
        if self.composite is None:
            return {"scenes": 0}

        image = self.composite
        return {
            "scenes": self.scene_count,
            "valid_fraction": {
                name: float(np.mean(image[name] != image.nodata))
                for name in image.band_names
            },
            "observations_per_pixel": {
                "min": int(self.observation_count.min()),
                "max": int(self.observation_count.max()),
                "mean": float(self.observation_count.mean()),
            },
        }
