"""
Sample Extractor Module

This module provides functionality for extracting labeled pixel samples from
a composite image using training polygons.
"""

import math
import logging
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
import shapely
from tqdm import tqdm

from .geometry import CLASS_COLUMN, LabeledPolygonSet
from .raster import GridGeometry, RasterImage, resample_nearest
from .samples import SampleSet

logger = logging.getLogger(__name__)

OVERLAP_POLICIES = ("drop", "keep")


class SampleExtractor:
    """
    Extract one labeled feature vector per pixel inside each training polygon.

    This class handles:
    1. Aligning the sampling grid (native, or nearest-neighbour at another scale)
    2. Finding pixel centers strictly inside each polygon
    3. Skipping pixels with no-data in any requested band
    4. Resolving pixels claimed by polygons of different classes
    """

    def __init__(
        self,
        bands: Sequence[str],
        scale: Optional[float] = None,
        overlap_policy: str = "drop"
    ):
        """
        Initialize the SampleExtractor.

        Args:
            bands: Ordered feature schema to extract
            scale: Sampling pixel size in CRS units (None = native grid)
            overlap_policy: "drop" excludes pixels claimed by more than one
                class, "keep" emits them once per polygon
        """
        if overlap_policy not in OVERLAP_POLICIES:
            raise ValueError(f"overlap_policy must be one of {OVERLAP_POLICIES}, got {overlap_policy!r}")
        self.bands = list(bands)
        self.scale = scale
        self.overlap_policy = overlap_policy

        self.stats: Dict = {}

    def _sampling_image(self, image: RasterImage) -> RasterImage:
        """Image on the grid samples are taken from."""
        if self.scale is None:
            return image

        native_x, native_y = image.geometry.pixel_size
        if math.isclose(self.scale, native_x) and math.isclose(self.scale, native_y):
            return image

        target = GridGeometry.for_bounds(image.geometry.bounds, self.scale, image.geometry.crs)
        logger.info(
            f"Resampling from native {native_x}x{native_y} to {self.scale} "
            f"with nearest-neighbour lookup (no interpolation)"
        )
        return resample_nearest(image, target)

    @staticmethod
    def _pixels_inside(geom, grid: GridGeometry) -> Tuple[np.ndarray, np.ndarray]:
        """Row-major rows/cols of pixels whose centers lie strictly inside geom."""
        minx, miny, maxx, maxy = geom.bounds
        corner_rows, corner_cols = grid.rowcol(
            np.array([minx, minx, maxx, maxx]),
            np.array([miny, maxy, miny, maxy]),
        )
        r0 = max(int(corner_rows.min()), 0)
        r1 = min(int(corner_rows.max()), grid.height - 1)
        c0 = max(int(corner_cols.min()), 0)
        c1 = min(int(corner_cols.max()), grid.width - 1)
        if r0 > r1 or c0 > c1:
            return np.empty(0, dtype="int64"), np.empty(0, dtype="int64")

        rows, cols = np.meshgrid(np.arange(r0, r1 + 1), np.arange(c0, c1 + 1), indexing="ij")
        rows, cols = rows.ravel(), cols.ravel()
        xs, ys = grid.pixel_centers(rows, cols)
        inside = shapely.contains_xy(geom, xs, ys)
        return rows[inside], cols[inside]

    def extract(self, image: RasterImage, polygons: LabeledPolygonSet) -> SampleSet:
        """
        Extract samples for every labeled polygon.

        Args:
            image: Composite with (at least) the schema bands
            polygons: Labeled training polygons

        Returns:
            SampleSet ordered by polygon, then row-major pixel order
        """
        image.require(self.bands, stage="sampling")
        image = self._sampling_image(image)
        grid = image.geometry
        polygons = polygons.to_crs(grid.crs)

        values = image.stack(self.bands)
        valid = image.valid_mask(self.bands)

        hits: List[Tuple[int, np.ndarray, np.ndarray]] = []
        claimed = np.full(grid.shape, -1, dtype="int64")
        conflict = np.zeros(grid.shape, dtype=bool)

        for geom, label in tqdm(polygons, total=len(polygons), desc="Locating pixels"):
            rows, cols = self._pixels_inside(geom, grid)
            previous = claimed[rows, cols]
            conflict[rows, cols] |= (previous >= 0) & (previous != label)
            claimed[rows, cols] = np.where(previous >= 0, previous, label)
            hits.append((int(label), rows, cols))

        frames = []
        skipped_nodata = 0
        dropped_overlap = 0
        empty_polygons = 0

        for label, rows, cols in hits:
            keep = valid[rows, cols]
            skipped_nodata += int((~keep).sum())
            if self.overlap_policy == "drop":
                overlapping = conflict[rows, cols] & keep
                dropped_overlap += int(overlapping.sum())
                keep &= ~conflict[rows, cols]

            rows, cols = rows[keep], cols[keep]
            if rows.size == 0:
                empty_polygons += 1
                continue

            xs, ys = grid.pixel_centers(rows, cols)
            frame = pd.DataFrame(values[:, rows, cols].T.astype("float64"), columns=self.bands)
            frame[CLASS_COLUMN] = label
            frame["row"] = rows
            frame["col"] = cols
            frame["x"] = xs
            frame["y"] = ys
            frames.append(frame)

        if frames:
            df = pd.concat(frames, ignore_index=True)
        else:
            df = pd.DataFrame(columns=self.bands + [CLASS_COLUMN, "row", "col", "x", "y"])

        samples = SampleSet(df, self.bands)

        if skipped_nodata:
            logger.warning(f"Skipped {skipped_nodata} polygon pixels with no-data")
        if dropped_overlap:
            logger.warning(f"Dropped {dropped_overlap} pixels claimed by polygons of different classes")
        if empty_polygons:
            logger.warning(f"{empty_polygons} polygons yielded no samples")

        self.stats = {
            "total_samples": len(samples),
            "class_distribution": samples.class_counts(),
            "skipped_nodata": skipped_nodata,
            "dropped_overlap": dropped_overlap,
            "empty_polygons": empty_polygons,
        }
        logger.info(f"Extracted {len(samples)} samples from {len(polygons)} polygons")
        return samples

    def get_statistics(self) -> Dict:
        """
        Get statistics about the last extraction.

        Returns:
            Dictionary with sample counts per class and skipped pixel counts
        """
        return dict(self.stats) or {"total_samples": 0}
