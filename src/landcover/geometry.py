"""
Geometry Module

Area of interest and labeled training polygons. Polygons are held in a
GeoDataFrame with one integer class id per feature.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterator, Mapping, Sequence, Tuple

import geopandas as gpd
import pandas as pd
from rasterio.crs import CRS
from rasterio.warp import transform_geom
from shapely.geometry import Polygon, mapping, shape
from shapely.geometry.base import BaseGeometry

logger = logging.getLogger(__name__)

CLASS_COLUMN = "landcover"
NAME_COLUMN = "class_name"


@dataclass(frozen=True)
class Region:
    """Immutable polygon bounding all spatial operations."""

    vertices: Tuple[Tuple[float, float], ...]
    crs: str = "EPSG:4326"

    def __post_init__(self):
        verts = tuple((float(x), float(y)) for x, y in self.vertices)
        if len(verts) < 3:
            raise ValueError(f"A region needs at least 3 vertices, got {len(verts)}")
        object.__setattr__(self, "vertices", verts)

    @property
    def polygon(self) -> Polygon:
        return Polygon(self.vertices)

    def geometry_in(self, crs) -> BaseGeometry:
        """Region polygon expressed in the given CRS."""
        target = CRS.from_user_input(crs)
        if target == CRS.from_user_input(self.crs):
            return self.polygon
        return shape(transform_geom(self.crs, target, mapping(self.polygon)))


def _to_polygon(geom):
    """Convert LineString geometries to Polygons if they form closed loops."""
    if geom is None:
        return geom
    if geom.geom_type == "LineString":
        coords = list(geom.coords)
        if coords[0] == coords[-1]:
            return Polygon(coords)
    elif geom.geom_type == "MultiLineString":
        for part in geom.geoms:
            pts = list(part.coords)
            if pts[0] == pts[-1]:
                return Polygon(pts)
    return geom


class LabeledPolygonSet:
    """
    Training polygons, each carrying exactly one integer class label.

    Polygons of different classes may overlap; the sample extractor decides
    how such pixels are handled.
    """

    def __init__(self, gdf: gpd.GeoDataFrame):
        if CLASS_COLUMN not in gdf.columns:
            raise ValueError(f"Polygon set needs a {CLASS_COLUMN!r} column")

        gdf = gdf.copy()
        gdf["geometry"] = gdf.geometry.map(_to_polygon)

        empty = gdf.geometry.isna() | gdf.geometry.is_empty
        if empty.any():
            logger.warning(f"Dropping {int(empty.sum())} features without geometry")
            gdf = gdf.loc[~empty]

        areal = gdf.geometry.geom_type.isin(["Polygon", "MultiPolygon"])
        if not areal.all():
            logger.warning(f"Dropping {int((~areal).sum())} non-polygon features")
            gdf = gdf.loc[areal]

        gdf[CLASS_COLUMN] = gdf[CLASS_COLUMN].astype(int)
        if NAME_COLUMN not in gdf.columns:
            gdf[NAME_COLUMN] = gdf[CLASS_COLUMN].astype(str)
        self.gdf = gdf.reset_index(drop=True)

    def __len__(self) -> int:
        return len(self.gdf)

    def __iter__(self) -> Iterator[Tuple[BaseGeometry, int]]:
        return iter(zip(self.gdf.geometry, self.gdf[CLASS_COLUMN]))

    @property
    def crs(self):
        return self.gdf.crs

    @property
    def class_ids(self):
        return sorted(self.gdf[CLASS_COLUMN].unique().tolist())

    def to_crs(self, crs) -> "LabeledPolygonSet":
        if self.gdf.crs is None or CRS.from_user_input(self.gdf.crs) == CRS.from_user_input(crs):
            return self
        return LabeledPolygonSet(self.gdf.to_crs(crs))

    def counts(self) -> Dict[int, int]:
        counts = self.gdf[CLASS_COLUMN].value_counts().sort_index()
        return {int(k): int(v) for k, v in counts.items()}

    @classmethod
    def from_collections(
        cls,
        collections: Mapping[str, Sequence[BaseGeometry]],
        class_ids: Mapping[str, int],
        crs: str = "EPSG:4326"
    ) -> "LabeledPolygonSet":
        """
        Merge named geometry collections into one labeled set.

        Args:
            collections: Class name -> list of polygons
            class_ids: Class name -> integer label
            crs: CRS of the supplied geometries
        """
        frames = []
        for name, geoms in collections.items():
            if name not in class_ids:
                raise ValueError(f"No class id configured for collection {name!r}")
            frames.append(gpd.GeoDataFrame(
                {CLASS_COLUMN: [class_ids[name]] * len(geoms), NAME_COLUMN: [name] * len(geoms)},
                geometry=list(geoms),
                crs=crs,
            ))
        if not frames:
            raise ValueError("No polygon collections supplied")
        return cls(gpd.GeoDataFrame(pd.concat(frames, ignore_index=True), crs=crs))

    @classmethod
    def from_file(cls, path: str, class_column: str = CLASS_COLUMN) -> "LabeledPolygonSet":
        """Load polygons from one vector file carrying a class column."""
        logger.info(f"Loading labeled polygons from {path}")
        gdf = gpd.read_file(path)
        if class_column not in gdf.columns:
            raise ValueError(f"{path} has no {class_column!r} column")
        gdf = gdf.rename(columns={class_column: CLASS_COLUMN})
        return cls(gdf)


def load_labeled_polygons(paths_by_class: Mapping[str, str], class_ids: Mapping[str, int]) -> LabeledPolygonSet:
    """
    Load one vector file per class and merge them.

    Args:
        paths_by_class: Class name -> vector file (GeoJSON/Shapefile)
        class_ids: Class name -> integer label
    """
    frames = []
    for name, path in paths_by_class.items():
        if name not in class_ids:
            raise ValueError(f"No class id configured for {name!r}")
        gdf = gpd.read_file(path)
        if frames and gdf.crs != frames[0].crs:
            gdf = gdf.to_crs(frames[0].crs)
        gdf[CLASS_COLUMN] = class_ids[name]
        gdf[NAME_COLUMN] = name
        frames.append(gdf[[CLASS_COLUMN, NAME_COLUMN, "geometry"]])
        logger.info(f"Loaded {len(gdf)} polygons for class {name!r} from {path}")

    if not frames:
        raise ValueError("No polygon files supplied")
    merged = gpd.GeoDataFrame(pd.concat(frames, ignore_index=True), crs=frames[0].crs)
    return LabeledPolygonSet(merged)
