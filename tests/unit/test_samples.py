"""Tests for sample records and sample sets."""

import pandas as pd
import pytest

from landcover.errors import SchemaMismatchError
from landcover.geometry import CLASS_COLUMN
from landcover.samples import SampleRecord, SampleSet

from tests.synthetic import BANDS


class TestSampleSet:
    """Test building and reading sample tables."""

    def test_from_records(self):
        records = [
            SampleRecord((0.1, 0.2, 0.3, 0.4), 1, split_key=0.5, row=2, col=3, x=3.5, y=7.5),
            SampleRecord((0.4, 0.3, 0.2, 0.1), 0, split_key=0.9, row=0, col=0, x=0.5, y=9.5),
        ]
        samples = SampleSet.from_records(records, BANDS)

        assert len(samples) == 2
        assert samples.labels.tolist() == [1, 0]
        assert list(samples.records()) == records

    def test_record_length_must_match_schema(self):
        with pytest.raises(SchemaMismatchError) as exc:
            SampleSet.from_records([SampleRecord((1.0, 2.0, 3.0), 0)], BANDS)
        assert exc.value.stage == "samples"
        assert exc.value.details == {"record_length": 3, "schema_length": 4}

    def test_missing_columns(self):
        with pytest.raises(ValueError):
            SampleSet(pd.DataFrame({"B2": [0.1]}), ["B2"])

    def test_csv_round_trip_infers_features(self, tmp_path):
        df = pd.DataFrame({"B2": [0.1], "B8": [0.4], CLASS_COLUMN: [2], "rand": [0.3], "row": [1]})
        path = SampleSet(df, ["B2", "B8"]).to_csv(str(tmp_path / "samples.csv"))

        loaded = SampleSet.from_csv(path)
        assert loaded.feature_names == ["B2", "B8"]
        assert loaded.split_keys.tolist() == [0.3]
        assert loaded.class_counts() == {2: 1}
