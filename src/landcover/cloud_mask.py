"""
Cloud Mask Module

Scene-level filtering (date range, area of interest, cloudiness) and
per-pixel masking of cloud and shadow observations from the Sentinel-2
Scene Classification Layer (SCL).
"""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Iterable, List, Sequence

import numpy as np
from shapely.geometry import box

from .errors import DataAvailabilityError
from .geometry import Region
from .raster import RasterImage, Scene

logger = logging.getLogger(__name__)

# SCL codes: cloud shadow, cloud medium probability, cloud high probability, thin cirrus
DEFAULT_UNUSABLE_CODES = (3, 8, 9, 10)


@dataclass(frozen=True)
class SceneQuery:
    """Image collection query: AOI, [start, end) date range and cloud threshold."""

    region: Region
    start: date
    end: date
    max_cloud_percent: float = 10.0

    def __post_init__(self):
        if self.end <= self.start:
            raise ValueError(f"Empty date range: {self.start} .. {self.end}")


class SceneFilter:
    """Select the scenes of a collection that satisfy a SceneQuery."""

    def __init__(self, query: SceneQuery):
        self.query = query
        self.excluded = {"date": 0, "bounds": 0, "cloud": 0}

    def accepts(self, scene: Scene) -> bool:
        q = self.query
        if not (q.start <= scene.acquired < q.end):
            self.excluded["date"] += 1
            logger.debug(f"{scene.scene_id}: outside {q.start}..{q.end}")
            return False

        footprint = box(*scene.image.geometry.bounds)
        if not footprint.intersects(q.region.geometry_in(scene.image.geometry.crs)):
            self.excluded["bounds"] += 1
            logger.debug(f"{scene.scene_id}: does not intersect AOI")
            return False

        if not scene.cloud_percent < q.max_cloud_percent:
            self.excluded["cloud"] += 1
            logger.debug(f"{scene.scene_id}: {scene.cloud_percent:.1f}% cloudy")
            return False

        return True

    def apply(self, scenes: Iterable[Scene]) -> List[Scene]:
        scenes = list(scenes)
        self.excluded = {"date": 0, "bounds": 0, "cloud": 0}
        kept = [s for s in scenes if self.accepts(s)]
        logger.info(
            f"Scene filter kept {len(kept)}/{len(scenes)} scenes "
            f"(excluded: {self.excluded})"
        )
        if not kept:
            raise DataAvailabilityError(
                "No scenes pass the date, bounds and cloud filters",
                stage="scene_filter",
                details={"candidates": len(scenes), **self.excluded},
            )
        return kept


class CloudMasker:
    """
    Replace cloud and shadow observations with no-data.

    Args:
        scl_band: Name of the scene classification band
        unusable_codes: SCL values treated as unusable
    """

    def __init__(self, scl_band: str = "SCL", unusable_codes: Sequence[int] = DEFAULT_UNUSABLE_CODES):
        self.scl_band = scl_band
        self.unusable_codes = tuple(int(c) for c in unusable_codes)

    def unusable(self, image: RasterImage) -> np.ndarray:
        """Boolean grid, True where the SCL value is an unusable code."""
        image.require([self.scl_band], stage="cloud_mask")
        return np.isin(image[self.scl_band], self.unusable_codes)

    def mask_scene(self, image: RasterImage) -> RasterImage:
        bad = self.unusable(image)
        bands = {
            name: np.where(bad, image.nodata, image[name])
            for name in image.band_names
        }
        masked = RasterImage(bands, image.geometry, image.nodata)
        if bad.all():
            logger.warning("Scene is fully masked by clouds")
        return masked

    def mask_collection(self, scenes: Iterable[Scene]) -> List[Scene]:
        masked = []
        for scene in scenes:
            image = self.mask_scene(scene.image)
            masked.append(Scene(image, scene.acquired, scene.scene_id, scene.cloud_percent))
        logger.info(f"Cloud-masked {len(masked)} scenes with SCL codes {self.unusable_codes}")
        return masked
