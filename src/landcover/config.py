"""
Pipeline Configuration

Nested dataclasses mirroring configs/config.json. Defaults reproduce the
Delhi NCR November 2023 Sentinel-2 classification.
"""

import os
import json
import logging
from dataclasses import asdict, dataclass, field, fields
from datetime import date, datetime
from typing import Dict, List, Optional

from .cloud_mask import DEFAULT_UNUSABLE_CODES, SceneQuery
from .geometry import Region

logger = logging.getLogger(__name__)

DELHI_NCR_AOI = [
    [76.8402, 28.2506],
    [77.6785, 28.2506],
    [77.6785, 28.9845],
    [76.8402, 28.9845],
]


def _parse_date(value: str) -> date:
    return datetime.strptime(value, "%Y-%m-%d").date()


@dataclass
class SceneQueryConfig:
    aoi: List[List[float]] = field(default_factory=lambda: [list(v) for v in DELHI_NCR_AOI])
    aoi_crs: str = "EPSG:4326"
    start_date: str = "2023-11-01"
    end_date: str = "2023-11-30"
    max_cloud_percent: float = 10.0

    @property
    def region(self) -> Region:
        return Region(tuple(tuple(v) for v in self.aoi), crs=self.aoi_crs)

    def to_query(self) -> SceneQuery:
        return SceneQuery(
            region=self.region,
            start=_parse_date(self.start_date),
            end=_parse_date(self.end_date),
            max_cloud_percent=self.max_cloud_percent,
        )


@dataclass
class CloudMaskConfig:
    scl_band: str = "SCL"
    unusable_codes: List[int] = field(default_factory=lambda: list(DEFAULT_UNUSABLE_CODES))


@dataclass
class CompositingConfig:
    bands: List[str] = field(default_factory=lambda: ["B2", "B3", "B4", "B8"])
    tile_rows: int = 256
    max_workers: Optional[int] = None


@dataclass
class SamplingConfig:
    scale: Optional[float] = 10.0
    overlap_policy: str = "drop"


@dataclass
class SplittingConfig:
    fraction: float = 0.7
    seed: int = 0


@dataclass
class ClassifierConfig:
    num_trees: int = 200
    seed: int = 0
    n_jobs: Optional[int] = None


@dataclass
class ExportConfig:
    scale: float = 10.0
    max_pixels: float = 1e13
    description: str = "Delhi_NCR_LULC_Map"


@dataclass
class ClassConfig:
    id: int
    name: str
    color: str = "#000000"


def _default_classes() -> List[ClassConfig]:
    return [
        ClassConfig(0, "water", "#0000FF"),
        ClassConfig(1, "vegetation", "#008000"),
        ClassConfig(2, "built", "#808080"),
        ClassConfig(3, "barren", "#A52A2A"),
    ]


def _section(cls, data: Dict, name: str):
    """Build a section dataclass, rejecting unknown keys."""
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown keys in config section {name!r}: {unknown}")
    return cls(**data)


@dataclass
class PipelineConfig:
    scene_query: SceneQueryConfig = field(default_factory=SceneQueryConfig)
    cloud_mask: CloudMaskConfig = field(default_factory=CloudMaskConfig)
    compositing: CompositingConfig = field(default_factory=CompositingConfig)
    indices: Dict[str, List[str]] = field(default_factory=lambda: {"NDVI": ["B8", "B4"], "NDWI": ["B3", "B8"]})
    sampling: SamplingConfig = field(default_factory=SamplingConfig)
    splitting: SplittingConfig = field(default_factory=SplittingConfig)
    classifier: ClassifierConfig = field(default_factory=ClassifierConfig)
    export: ExportConfig = field(default_factory=ExportConfig)
    classes: List[ClassConfig] = field(default_factory=_default_classes)

    @property
    def feature_bands(self) -> List[str]:
        """Composite bands followed by derived indices."""
        return list(self.compositing.bands) + list(self.indices)

    @property
    def class_ids(self) -> List[int]:
        return [c.id for c in self.classes]

    @property
    def class_names(self) -> Dict[int, str]:
        return {c.id: c.name for c in self.classes}

    @property
    def class_colors(self) -> Dict[int, str]:
        return {c.id: c.color for c in self.classes}

    @property
    def class_ids_by_name(self) -> Dict[str, int]:
        return {c.name: c.id for c in self.classes}

    @classmethod
    def from_dict(cls, data: Dict) -> "PipelineConfig":
        sections = {
            "scene_query": SceneQueryConfig,
            "cloud_mask": CloudMaskConfig,
            "compositing": CompositingConfig,
            "sampling": SamplingConfig,
            "splitting": SplittingConfig,
            "classifier": ClassifierConfig,
            "export": ExportConfig,
        }
        unknown = sorted(set(data) - set(sections) - {"indices", "classes"})
        if unknown:
            raise ValueError(f"Unknown config sections: {unknown}")

        kwargs = {
            name: _section(section_cls, data[name], name)
            for name, section_cls in sections.items()
            if name in data
        }
        if "indices" in data:
            indices = {}
            for name, pair in data["indices"].items():
                if len(pair) != 2:
                    raise ValueError(f"Index {name!r} needs exactly two bands, got {pair}")
                indices[name] = list(pair)
            kwargs["indices"] = indices
        if "classes" in data:
            kwargs["classes"] = [_section(ClassConfig, c, "classes") for c in data["classes"]]

        config = cls(**kwargs)
        config.validate()
        return config

    @classmethod
    def from_json(cls, path: str) -> "PipelineConfig":
        logger.info(f"Loading configuration from {path}")
        with open(path) as f:
            return cls.from_dict(json.load(f))

    def validate(self) -> None:
        ids = self.class_ids
        if len(set(ids)) != len(ids):
            raise ValueError(f"Duplicate class ids: {ids}")
        if any(not 0 <= i < 255 for i in ids):
            raise ValueError(f"Class ids must be in [0, 254]: {ids}")
        if not 0.0 <= self.splitting.fraction <= 1.0:
            raise ValueError(f"splitting.fraction must be in [0, 1], got {self.splitting.fraction}")
        if self.classifier.num_trees < 1:
            raise ValueError(f"classifier.num_trees must be positive, got {self.classifier.num_trees}")

    def to_dict(self) -> Dict:
        return asdict(self)

    def save(self, path: str) -> str:
        out_dir = os.path.dirname(path)
        if out_dir:
            os.makedirs(out_dir, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=4)
        return path
