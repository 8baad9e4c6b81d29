"""Normalized-difference spectral indices."""

import logging
from typing import Dict, Mapping, Tuple

import numpy as np

from .raster import NODATA, RasterImage

logger = logging.getLogger(__name__)

DEFAULT_INDICES: Dict[str, Tuple[str, str]] = {
    "NDVI": ("B8", "B4"),
    "NDWI": ("B3", "B8"),
}


def normalized_difference(a: np.ndarray, b: np.ndarray, nodata: float = NODATA) -> np.ndarray:
    """(a - b) / (a + b), nodata where either input is nodata or a + b == 0."""
    a = np.asarray(a, dtype="float64")
    b = np.asarray(b, dtype="float64")
    denom = a + b
    invalid = (a == nodata) | (b == nodata) | (denom == 0)
    safe = np.where(invalid, 1.0, denom)
    nd = np.where(invalid, nodata, (a - b) / safe)
    return nd.astype("float32")


class IndexDeriver:
    """Append normalized-difference bands (name -> (band_a, band_b)) to an image."""

    def __init__(self, indices: Mapping[str, Tuple[str, str]] = None):
        self.indices = dict(indices or DEFAULT_INDICES)

    @property
    def band_names(self):
        return list(self.indices)

    def derive(self, image: RasterImage) -> RasterImage:
        sources = sorted({b for pair in self.indices.values() for b in pair})
        image.require(sources, stage="indices")

        derived = {
            name: normalized_difference(image[a], image[b], image.nodata)
            for name, (a, b) in self.indices.items()
        }
        for name, values in derived.items():
            valid = values != image.nodata
            logger.info(f"Derived {name}: {int(valid.sum())} valid pixels")
        return image.with_bands(derived)
