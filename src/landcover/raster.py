"""
Raster Module

This module provides the in-memory raster model shared by every pipeline stage:
grid geometry, immutable multi-band images, dated scenes, GeoTIFF I/O and a
small keyed store that owns the rasters produced by each stage.
"""

import os
import re
import glob
import math
import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import rasterio
from rasterio.crs import CRS
from rasterio.transform import Affine, array_bounds, from_origin
from tqdm import tqdm

from .errors import SchemaMismatchError

logger = logging.getLogger(__name__)

# No-data sentinel for reflectance/index bands
NODATA = -9999.0

# No-data value for classified (uint8) rasters
CLASS_NODATA = 255


@dataclass(frozen=True)
class GridGeometry:
    """Spatial grid shared by all bands of one image."""

    crs: CRS
    transform: Affine
    height: int
    width: int

    def __post_init__(self):
        object.__setattr__(self, "crs", CRS.from_user_input(self.crs))

    @property
    def shape(self) -> Tuple[int, int]:
        return self.height, self.width

    @property
    def pixel_size(self) -> Tuple[float, float]:
        return abs(self.transform.a), abs(self.transform.e)

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        """(west, south, east, north) in grid CRS units."""
        return array_bounds(self.height, self.width, self.transform)

    def matches(self, other: "GridGeometry") -> bool:
        return (
            self.shape == other.shape
            and self.crs == other.crs
            and self.transform.almost_equals(other.transform)
        )

    def pixel_centers(self, rows: np.ndarray, cols: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Map coordinates of the centers of the given pixels."""
        t = self.transform
        c = np.asarray(cols, dtype="float64") + 0.5
        r = np.asarray(rows, dtype="float64") + 0.5
        return t.c + c * t.a + r * t.b, t.f + c * t.d + r * t.e

    def rowcol(self, xs: np.ndarray, ys: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Row/column of the pixel containing each coordinate."""
        inv = ~self.transform
        xs = np.asarray(xs, dtype="float64")
        ys = np.asarray(ys, dtype="float64")
        cols = np.floor(inv.a * xs + inv.b * ys + inv.c).astype("int64")
        rows = np.floor(inv.d * xs + inv.e * ys + inv.f).astype("int64")
        return rows, cols

    @classmethod
    def for_bounds(cls, bounds: Sequence[float], scale: float, crs) -> "GridGeometry":
        """North-up grid covering bounds at the given pixel size."""
        west, south, east, north = bounds
        width = max(1, int(math.ceil(round((east - west) / scale, 9))))
        height = max(1, int(math.ceil(round((north - south) / scale, 9))))
        return cls(crs, from_origin(west, north, scale, scale), height, width)


class RasterImage:
    """
    Immutable mapping from band name to a 2-D grid of values.

    Band arrays are copied to float32 (unless a dtype is given) and made
    read-only; operations return new images.
    """

    def __init__(
        self,
        bands: Mapping[str, np.ndarray],
        geometry: GridGeometry,
        nodata: float = NODATA,
        dtype: str = "float32"
    ):
        if not bands:
            raise ValueError("A raster image needs at least one band")

        self.geometry = geometry
        self.nodata = nodata
        self._bands: Dict[str, np.ndarray] = {}

        for name, arr in bands.items():
            arr = np.array(arr, dtype=dtype, copy=True)
            if arr.shape != geometry.shape:
                raise ValueError(
                    f"Band {name!r} has shape {arr.shape}, grid expects {geometry.shape}"
                )
            arr.setflags(write=False)
            self._bands[name] = arr

    def __getitem__(self, name: str) -> np.ndarray:
        return self._bands[name]

    def __contains__(self, name: str) -> bool:
        return name in self._bands

    def __repr__(self) -> str:
        return f"RasterImage(bands={self.band_names}, shape={self.shape})"

    @property
    def band_names(self) -> List[str]:
        return list(self._bands)

    @property
    def shape(self) -> Tuple[int, int]:
        return self.geometry.shape

    def require(self, names: Iterable[str], stage: str) -> None:
        """Raise SchemaMismatchError if any band in names is absent."""
        missing = [n for n in names if n not in self._bands]
        if missing:
            raise SchemaMismatchError(
                "Raster is missing required bands",
                stage=stage,
                details={"missing": missing, "available": self.band_names},
            )

    def select(self, names: Sequence[str]) -> "RasterImage":
        self.require(names, stage="select")
        return RasterImage({n: self._bands[n] for n in names}, self.geometry, self.nodata)

    def with_bands(self, extra: Mapping[str, np.ndarray]) -> "RasterImage":
        """New image with extra bands appended after the existing ones."""
        merged = dict(self._bands)
        merged.update(extra)
        return RasterImage(merged, self.geometry, self.nodata)

    def stack(self, names: Optional[Sequence[str]] = None) -> np.ndarray:
        """Bands stacked to (bands, H, W)."""
        names = list(names) if names is not None else self.band_names
        self.require(names, stage="stack")
        return np.stack([self._bands[n] for n in names], axis=0)

    def valid_mask(self, names: Optional[Sequence[str]] = None) -> np.ndarray:
        """True where every selected band holds data."""
        return np.all(self.stack(names) != self.nodata, axis=0)


@dataclass(frozen=True)
class Scene:
    """One dated acquisition with its scene-level cloudiness."""

    image: RasterImage
    acquired: date
    scene_id: str = ""
    cloud_percent: float = 0.0


def iter_row_tiles(height: int, tile_rows: int) -> Iterator[slice]:
    """Yield contiguous row slices covering [0, height)."""
    if tile_rows <= 0:
        raise ValueError(f"tile_rows must be positive, got {tile_rows}")
    for start in range(0, height, tile_rows):
        yield slice(start, min(start + tile_rows, height))


def resample_nearest(image: RasterImage, target: GridGeometry) -> RasterImage:
    """
    Nearest-neighbour resampling onto target (same CRS).

    Each target pixel takes the value of the source pixel containing its
    center; centers outside the source grid become no-data.
    """
    if target.crs != image.geometry.crs:
        raise ValueError(f"Cannot resample from {image.geometry.crs} to {target.crs}")

    rows, cols = np.indices(target.shape)
    xs, ys = target.pixel_centers(rows, cols)
    src_rows, src_cols = image.geometry.rowcol(xs, ys)
    inside = (
        (src_rows >= 0) & (src_rows < image.shape[0]) &
        (src_cols >= 0) & (src_cols < image.shape[1])
    )
    src_rows = np.clip(src_rows, 0, image.shape[0] - 1)
    src_cols = np.clip(src_cols, 0, image.shape[1] - 1)

    bands = {}
    for name in image.band_names:
        values = image[name][src_rows, src_cols]
        bands[name] = np.where(inside, values, image.nodata)

    dtype = image[image.band_names[0]].dtype
    return RasterImage(bands, target, image.nodata, dtype=dtype)


def read_raster(path: str) -> Tuple[RasterImage, Dict[str, str]]:
    """
    Read a GeoTIFF into a RasterImage.

    Band names come from band descriptions (falling back to B1..Bn) and the
    file's nodata value is rewritten to NODATA.

    Returns:
        Tuple of (image, dataset tags)
    """
    with rasterio.open(path) as src:
        data = src.read().astype("float32")
        names = [
            desc if desc else f"B{i}"
            for i, desc in enumerate(src.descriptions, 1)
        ]
        geometry = GridGeometry(src.crs, src.transform, src.height, src.width)
        tags = src.tags()
        if src.nodata is not None and not np.isnan(src.nodata):
            data[data == src.nodata] = NODATA
        data[np.isnan(data)] = NODATA

    image = RasterImage(dict(zip(names, data)), geometry)
    return image, tags


def write_raster(
    image: RasterImage,
    path: str,
    dtype: Optional[str] = None,
    tags: Optional[Dict[str, str]] = None,
    colormap: Optional[Dict[int, Tuple[int, int, int, int]]] = None
) -> str:
    """
    Write an image to GeoTIFF, band descriptions set to band names.

    A colormap (value -> RGBA) is attached to band 1; GDAL only accepts
    one for single-band byte rasters.
    """
    out_dir = os.path.dirname(path)
    if out_dir:
        os.makedirs(out_dir, exist_ok=True)

    data = image.stack()
    dtype = dtype or str(data.dtype)
    profile = {
        "driver": "GTiff",
        "count": len(image.band_names),
        "height": image.shape[0],
        "width": image.shape[1],
        "crs": image.geometry.crs,
        "transform": image.geometry.transform,
        "dtype": dtype,
        "nodata": image.nodata,
        "compress": "lzw",
    }
    with rasterio.open(path, "w", **profile) as dst:
        dst.write(data.astype(dtype))
        for i, name in enumerate(image.band_names, 1):
            dst.set_band_description(i, name)
        if tags:
            dst.update_tags(**tags)
        if colormap:
            dst.write_colormap(1, colormap)

    logger.info(f"Wrote {len(image.band_names)} band(s) to {path}")
    return path


def _scene_date(path: str, tags: Dict[str, str]) -> date:
    """Acquisition date from the DATE_ACQUIRED tag or a YYYYMMDD filename token."""
    if tags.get("DATE_ACQUIRED"):
        return datetime.strptime(tags["DATE_ACQUIRED"][:10], "%Y-%m-%d").date()
    match = re.search(r"(\d{8})", os.path.basename(path))
    if not match:
        raise ValueError(f"Cannot extract acquisition date from {path}")
    return datetime.strptime(match.group(1), "%Y%m%d").date()


def load_scenes(directory: str, pattern: str = "*.tif") -> List[Scene]:
    """
    Load every GeoTIFF scene in a directory, sorted by acquisition date.

    Args:
        directory: Directory containing scene GeoTIFFs
        pattern: Glob pattern for scene files

    Returns:
        List of scenes
    """
    paths = sorted(glob.glob(os.path.join(directory, pattern)))
    if not paths:
        raise ValueError(f"No scene files matching {pattern} in {directory}")

    scenes = []
    for path in tqdm(paths, desc="Loading scenes"):
        image, tags = read_raster(path)
        scenes.append(Scene(
            image=image,
            acquired=_scene_date(path, tags),
            scene_id=os.path.splitext(os.path.basename(path))[0],
            cloud_percent=float(tags.get("CLOUDY_PIXEL_PERCENTAGE", 0.0)),
        ))

    scenes.sort(key=lambda s: s.acquired)
    logger.info(f"Loaded {len(scenes)} scenes from {directory}")
    return scenes


class RasterStore:
    """
    Keyed store of the rasters produced by each stage.

    A key is written once; later stages receive the key and read the
    immutable image back.
    """

    def __init__(self):
        self._images: Dict[str, RasterImage] = {}

    def put(self, key: str, image: RasterImage) -> str:
        if key in self._images:
            raise ValueError(f"Raster {key!r} is already registered")
        self._images[key] = image
        logger.debug(f"Registered raster {key!r}: {image}")
        return key

    def get(self, key: str) -> RasterImage:
        try:
            return self._images[key]
        except KeyError:
            raise KeyError(f"No raster registered under {key!r}") from None

    def __contains__(self, key: str) -> bool:
        return key in self._images

    def keys(self) -> List[str]:
        return list(self._images)
