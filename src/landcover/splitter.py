"""
Dataset Splitter Module

This module partitions extracted samples into training and test subsets by
thresholding a seeded uniform random key assigned to every record.
"""

import logging
from typing import Dict, Optional, Tuple

import numpy as np

from .samples import KEY_COLUMN, SampleSet

logger = logging.getLogger(__name__)


class DatasetSplitter:
    """
    Split a SampleSet into train (key < fraction) and test (key >= fraction).

    The split is probabilistic: each record falls on the train side with
    probability `fraction`, so the realised proportion varies around it.
    Keys are drawn from one seeded generator in record order, which makes the
    partition reproducible for a given seed and sample order.
    """

    def __init__(self, fraction: float = 0.7, seed: int = 0, key_column: str = KEY_COLUMN):
        """
        Initialize the DatasetSplitter.

        Args:
            fraction: Threshold on the random key for the train side
            seed: Seed for the key generator
            key_column: Column holding the split key
        """
        if not 0.0 <= fraction <= 1.0:
            raise ValueError(f"fraction must be in [0, 1], got {fraction}")
        self.fraction = fraction
        self.seed = seed
        self.key_column = key_column

        self.train: Optional[SampleSet] = None
        self.test: Optional[SampleSet] = None

    def add_random_column(self, samples: SampleSet) -> SampleSet:
        """Return samples with a uniform [0, 1) key per record."""
        rng = np.random.default_rng(self.seed)
        return samples.with_column(self.key_column, rng.random(len(samples)))

    def split(self, samples: SampleSet) -> Tuple[SampleSet, SampleSet]:
        """
        Partition samples into (train, test).

        Existing keys are reused; otherwise keys are assigned first.
        """
        if self.key_column not in samples.to_frame().columns:
            samples = self.add_random_column(samples)

        keys = samples.to_frame()[self.key_column].to_numpy(dtype="float64")
        in_train = keys < self.fraction

        self.train = samples.subset(in_train)
        self.test = samples.subset(~in_train)

        logger.info(
            f"Split {len(samples)} samples at {self.fraction}: "
            f"train={len(self.train)}, test={len(self.test)}"
        )
        return self.train, self.test

    def get_split_statistics(self) -> Dict:
        """
        Get statistics about the last split.

        Returns:
            Dictionary with counts and class distribution by split
        """
        if self.train is None:
            return {}

        return {
            "total_samples": len(self.train) + len(self.test),
            "split_distribution": {"train": len(self.train), "test": len(self.test)},
            "class_distribution_by_split": {
                "train": self.train.class_counts(),
                "test": self.test.class_counts(),
            },
        }
