"""
Export Module

Writes the classified raster over the area of interest as a byte GeoTIFF,
refusing requests whose output grid exceeds a pixel-count guard.
"""

import logging
from typing import Dict, Mapping, Optional, Tuple

import numpy as np
from matplotlib.colors import to_rgba
from rasterio.features import geometry_mask

from .errors import ExportTooLargeError
from .geometry import Region
from .raster import CLASS_NODATA, GridGeometry, RasterImage, resample_nearest, write_raster

logger = logging.getLogger(__name__)


def palette_to_colormap(colors: Mapping[int, str]) -> Dict[int, Tuple[int, int, int, int]]:
    """Class id -> color spec (e.g. "#008000") to a GeoTIFF RGBA colormap."""
    return {
        int(class_id): tuple(int(round(c * 255)) for c in to_rgba(color))
        for class_id, color in colors.items()
    }


class ClassifiedRasterExporter:
    """
    Export a classified raster clipped to a region.

    Args:
        scale: Output pixel size in CRS units (meters for projected grids)
        max_pixels: Largest output grid allowed
    """

    def __init__(self, scale: float = 10.0, max_pixels: float = 1e13):
        if scale <= 0:
            raise ValueError(f"scale must be positive, got {scale}")
        self.scale = scale
        self.max_pixels = max_pixels

    def plan(self, classified: RasterImage, region: Region) -> GridGeometry:
        """Output grid for the region at the export scale; fails fast if too large."""
        crs = classified.geometry.crs
        bounds = region.geometry_in(crs).bounds
        grid = GridGeometry.for_bounds(bounds, self.scale, crs)
        pixels = grid.height * grid.width
        if pixels > self.max_pixels:
            raise ExportTooLargeError(
                "Requested export exceeds the pixel-count guard",
                stage="export",
                details={"pixels": pixels, "max_pixels": self.max_pixels, "scale": self.scale},
            )
        return grid

    def export(
        self,
        classified: RasterImage,
        region: Region,
        destination: str,
        description: Optional[str] = None,
        colors: Optional[Mapping[int, str]] = None
    ) -> str:
        """
        Write the classified raster to destination.

        Args:
            classified: Single-band classified raster
            region: Area of interest; pixels outside become no-data
            destination: Output GeoTIFF path
            description: Free-text description stored as a dataset tag
            colors: Optional class id -> color palette written as the colormap

        Returns:
            Path to the written file
        """
        grid = self.plan(classified, region)
        image = resample_nearest(classified, grid)

        outside = geometry_mask(
            [region.geometry_in(grid.crs)],
            out_shape=grid.shape,
            transform=grid.transform,
        )
        bands = {
            name: np.where(outside, CLASS_NODATA, image[name])
            for name in image.band_names
        }
        image = RasterImage(bands, grid, nodata=CLASS_NODATA, dtype="uint8")

        tags = {"SCALE": str(self.scale)}
        if description:
            tags["DESCRIPTION"] = description

        logger.info(f"Exporting {grid.width}x{grid.height} classified raster at scale {self.scale}")
        colormap = palette_to_colormap(colors) if colors else None
        return write_raster(image, destination, dtype="uint8", tags=tags, colormap=colormap)
