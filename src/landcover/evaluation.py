"""
Accuracy Evaluation Module

Confusion matrix and agreement statistics for predictions on the held-out
test set. Rows of the matrix are reference (true) classes, columns are
predicted classes.
"""

import os
import json
import math
import logging
from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Sequence

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
from sklearn.metrics import confusion_matrix

from .errors import EmptyTestSetError

logger = logging.getLogger(__name__)


def kappa_from_matrix(matrix: np.ndarray) -> float:
    """
    Cohen's kappa from a confusion matrix.

    Expected agreement comes from the row/column marginals under
    independence. When expected agreement is 1 (a single class in both
    reference and prediction) observed agreement is 1 too and kappa is 1.
    """
    total = matrix.sum()
    observed = np.trace(matrix) / total
    expected = float(np.sum(matrix.sum(axis=1) * matrix.sum(axis=0))) / float(total) ** 2
    if math.isclose(expected, 1.0):
        return 1.0
    return float((observed - expected) / (1.0 - expected))


def _ratio(num: np.ndarray, den: np.ndarray) -> np.ndarray:
    num = num.astype("float64")
    den = den.astype("float64")
    return np.divide(num, den, out=np.full_like(num, np.nan), where=den > 0)


@dataclass(frozen=True)
class AccuracyReport:
    """Confusion matrix plus the summary statistics derived from it."""

    matrix: np.ndarray
    class_ids: tuple
    class_names: tuple
    overall_accuracy: float
    kappa: float
    producers_accuracy: np.ndarray
    consumers_accuracy: np.ndarray
    sample_counts: Dict[str, int]

    def matrix_frame(self) -> pd.DataFrame:
        """Confusion matrix labeled with class names."""
        return pd.DataFrame(
            self.matrix,
            index=pd.Index(self.class_names, name="reference"),
            columns=pd.Index(self.class_names, name="predicted"),
        )

    def to_dict(self) -> Dict:
        def clean(values):
            return [None if np.isnan(v) else float(v) for v in values]

        return {
            "class_ids": list(self.class_ids),
            "class_names": list(self.class_names),
            "confusion_matrix": self.matrix.tolist(),
            "overall_accuracy": self.overall_accuracy,
            "kappa": self.kappa,
            "producers_accuracy": clean(self.producers_accuracy),
            "consumers_accuracy": clean(self.consumers_accuracy),
            "sample_counts": dict(self.sample_counts),
        }

    def log_summary(self) -> None:
        logger.info(f"Confusion matrix (test):\n{self.matrix_frame().to_string()}")
        logger.info(f"Overall accuracy (test): {self.overall_accuracy:.4f}")
        logger.info(f"Kappa coefficient: {self.kappa:.4f}")
        for key, value in self.sample_counts.items():
            logger.info(f"  {key}: {value}")

    def save(self, output_dir: str) -> Dict[str, str]:
        """Write the report as JSON and the matrix as CSV."""
        os.makedirs(output_dir, exist_ok=True)
        json_path = os.path.join(output_dir, "accuracy_report.json")
        csv_path = os.path.join(output_dir, "confusion_matrix.csv")

        with open(json_path, "w") as f:
            json.dump(self.to_dict(), f, indent=2)
        self.matrix_frame().to_csv(csv_path)

        logger.info(f"Saved accuracy report to {json_path}")
        return {"report": json_path, "matrix": csv_path}

    def plot(self, path: str, normalize: bool = False) -> str:
        """Save the confusion matrix as an annotated heatmap."""
        values = self.matrix.astype("float64")
        if normalize:
            row_sums = values.sum(axis=1, keepdims=True)
            values = np.divide(values, row_sums, out=np.zeros_like(values), where=row_sums > 0)

        fig, ax = plt.subplots(figsize=(6, 5))
        im = ax.imshow(values, cmap="Blues")
        fig.colorbar(im, ax=ax)
        ax.set_xticks(range(len(self.class_names)))
        ax.set_yticks(range(len(self.class_names)))
        ax.set_xticklabels(self.class_names, rotation=45, ha="right")
        ax.set_yticklabels(self.class_names)
        ax.set_xlabel("Predicted")
        ax.set_ylabel("Reference")
        ax.set_title(f"OA {self.overall_accuracy:.3f}, kappa {self.kappa:.3f}")

        fmt = "{:.2f}" if normalize else "{:.0f}"
        for i in range(values.shape[0]):
            for j in range(values.shape[1]):
                ax.text(j, i, fmt.format(values[i, j]), ha="center", va="center")

        fig.tight_layout()
        fig.savefig(path, dpi=150)
        plt.close(fig)
        logger.info(f"Saved confusion matrix plot to {path}")
        return path


class AccuracyEvaluator:
    """
    Compare true and predicted labels over a fixed set of classes.

    Args:
        class_ids: Matrix dimensions, in order; classes absent from the
            test set still get a zero-filled row and column
        class_names: Optional id -> display name mapping
    """

    def __init__(self, class_ids: Sequence[int] = (0, 1, 2, 3), class_names: Optional[Mapping[int, str]] = None):
        self.class_ids = tuple(int(c) for c in class_ids)
        names = class_names or {}
        self.class_names = tuple(names.get(c, str(c)) for c in self.class_ids)

    def evaluate(
        self,
        true_labels: Sequence[int],
        predicted_labels: Sequence[int],
        sample_counts: Optional[Mapping[str, int]] = None
    ) -> AccuracyReport:
        """
        Build the accuracy report.

        Args:
            true_labels: Reference labels of the test set
            predicted_labels: Classifier output for the same records
            sample_counts: Extra counts (total/train/test) carried in the report
        """
        y_true = np.asarray(true_labels, dtype="int64")
        y_pred = np.asarray(predicted_labels, dtype="int64")

        if y_true.size == 0:
            raise EmptyTestSetError(
                "Accuracy is undefined for an empty test set",
                stage="evaluation",
                details=dict(sample_counts or {}),
            )
        if y_true.shape != y_pred.shape:
            raise ValueError(f"Got {y_true.size} true labels but {y_pred.size} predictions")

        unknown = sorted(set(np.concatenate([y_true, y_pred]).tolist()) - set(self.class_ids))
        if unknown:
            raise ValueError(f"Labels {unknown} are not configured classes {self.class_ids}")

        matrix = confusion_matrix(y_true, y_pred, labels=list(self.class_ids))
        overall = float(np.trace(matrix) / matrix.sum())
        kappa = kappa_from_matrix(matrix)

        counts = {"test": int(y_true.size)}
        counts.update({k: int(v) for k, v in (sample_counts or {}).items()})

        report = AccuracyReport(
            matrix=matrix,
            class_ids=self.class_ids,
            class_names=self.class_names,
            overall_accuracy=overall,
            kappa=kappa,
            producers_accuracy=_ratio(np.diag(matrix), matrix.sum(axis=1)),
            consumers_accuracy=_ratio(np.diag(matrix), matrix.sum(axis=0)),
            sample_counts=counts,
        )
        report.log_summary()
        return report
