"""
Sample Records

A SampleSet is a table of labeled pixels: one column per feature band, the
class label, and optionally the split key and pixel location.
"""

from dataclasses import dataclass
from typing import Iterator, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .errors import SchemaMismatchError
from .geometry import CLASS_COLUMN

KEY_COLUMN = "rand"
LOCATION_COLUMNS = ["row", "col", "x", "y"]


@dataclass(frozen=True)
class SampleRecord:
    features: Tuple[float, ...]
    label: int
    split_key: Optional[float] = None
    row: Optional[int] = None
    col: Optional[int] = None
    x: Optional[float] = None
    y: Optional[float] = None


class SampleSet:
    """
    Immutable collection of sample records backed by a DataFrame.

    Args:
        df: Table with feature columns, a label column and optional extras
        feature_names: Ordered feature schema (columns of df)
    """

    def __init__(self, df: pd.DataFrame, feature_names: Sequence[str]):
        feature_names = list(feature_names)
        missing = [c for c in feature_names + [CLASS_COLUMN] if c not in df.columns]
        if missing:
            raise ValueError(f"Sample table is missing columns: {missing}")
        self._df = df.reset_index(drop=True).copy()
        self.feature_names = feature_names

    def __len__(self) -> int:
        return len(self._df)

    def __repr__(self) -> str:
        return f"SampleSet(n={len(self)}, features={self.feature_names})"

    @property
    def features(self) -> np.ndarray:
        return self._df[self.feature_names].to_numpy(dtype="float64")

    @property
    def labels(self) -> np.ndarray:
        return self._df[CLASS_COLUMN].to_numpy(dtype="int64")

    @property
    def split_keys(self) -> Optional[np.ndarray]:
        if KEY_COLUMN not in self._df.columns:
            return None
        return self._df[KEY_COLUMN].to_numpy(dtype="float64")

    def to_frame(self) -> pd.DataFrame:
        return self._df.copy()

    def class_counts(self) -> dict:
        counts = self._df[CLASS_COLUMN].value_counts().sort_index()
        return {int(k): int(v) for k, v in counts.items()}

    def records(self) -> Iterator[SampleRecord]:
        extras = [c for c in LOCATION_COLUMNS if c in self._df.columns]
        has_key = KEY_COLUMN in self._df.columns
        for features, label, (_, row) in zip(self.features, self.labels, self._df.iterrows()):
            yield SampleRecord(
                features=tuple(float(v) for v in features),
                label=int(label),
                split_key=float(row[KEY_COLUMN]) if has_key else None,
                **{c: (int(row[c]) if c in ("row", "col") else float(row[c])) for c in extras},
            )

    def subset(self, mask: np.ndarray) -> "SampleSet":
        return SampleSet(self._df.loc[np.asarray(mask, dtype=bool)], self.feature_names)

    def with_column(self, name: str, values: np.ndarray) -> "SampleSet":
        df = self._df.copy()
        df[name] = values
        return SampleSet(df, self.feature_names)

    @classmethod
    def from_records(cls, records: Sequence[SampleRecord], feature_names: Sequence[str]) -> "SampleSet":
        feature_names = list(feature_names)
        rows: List[dict] = []
        for rec in records:
            if len(rec.features) != len(feature_names):
                raise SchemaMismatchError(
                    "Record length does not match the feature schema",
                    stage="samples",
                    details={"record_length": len(rec.features), "schema_length": len(feature_names)},
                )
            row = dict(zip(feature_names, rec.features))
            row[CLASS_COLUMN] = rec.label
            if rec.split_key is not None:
                row[KEY_COLUMN] = rec.split_key
            for c in LOCATION_COLUMNS:
                if getattr(rec, c) is not None:
                    row[c] = getattr(rec, c)
            rows.append(row)
        df = pd.DataFrame(rows, columns=None if rows else feature_names + [CLASS_COLUMN])
        return cls(df, feature_names)

    def to_csv(self, path: str) -> str:
        self._df.to_csv(path, index=False)
        return path

    @classmethod
    def from_csv(cls, path: str, feature_names: Optional[Sequence[str]] = None) -> "SampleSet":
        """
        Read a sample table written by to_csv.

        When feature_names is omitted every column that is not the label,
        split key or a location column is taken as a feature, in file order.
        """
        df = pd.read_csv(path)
        if feature_names is None:
            reserved = {CLASS_COLUMN, KEY_COLUMN, *LOCATION_COLUMNS}
            feature_names = [c for c in df.columns if c not in reserved]
        return cls(df, feature_names)
