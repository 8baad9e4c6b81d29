"""Tests for the JSON-backed pipeline configuration."""

from datetime import date

import pytest

from landcover.config import PipelineConfig


class TestPipelineConfig:
    """Test defaults, validation and persistence."""

    def test_defaults(self):
        config = PipelineConfig()
        assert config.feature_bands == ["B2", "B3", "B4", "B8", "NDVI", "NDWI"]
        assert config.class_ids == [0, 1, 2, 3]
        assert config.class_ids_by_name["built"] == 2
        assert config.splitting.fraction == 0.7
        assert config.classifier.num_trees == 200
        assert config.export.max_pixels == 1e13

    def test_default_query(self):
        query = PipelineConfig().scene_query.to_query()
        assert query.start == date(2023, 11, 1)
        assert query.end == date(2023, 11, 30)
        assert query.max_cloud_percent == 10.0
        assert len(query.region.vertices) == 4

    def test_partial_override(self):
        config = PipelineConfig.from_dict({
            "classifier": {"num_trees": 50},
            "indices": {"NDVI": ["B8", "B4"]},
        })
        assert config.classifier.num_trees == 50
        assert config.classifier.seed == 0
        assert config.feature_bands == ["B2", "B3", "B4", "B8", "NDVI"]

    def test_unknown_section(self):
        with pytest.raises(ValueError):
            PipelineConfig.from_dict({"training": {}})

    def test_unknown_key(self):
        with pytest.raises(ValueError):
            PipelineConfig.from_dict({"splitting": {"ratio": 0.5}})

    def test_duplicate_class_ids(self):
        with pytest.raises(ValueError):
            PipelineConfig.from_dict({"classes": [{"id": 0, "name": "a"}, {"id": 0, "name": "b"}]})

    def test_index_needs_two_bands(self):
        with pytest.raises(ValueError):
            PipelineConfig.from_dict({"indices": {"NDVI": ["B8"]}})

    def test_save_and_load(self, tmp_path):
        config = PipelineConfig.from_dict({"sampling": {"scale": None, "overlap_policy": "keep"}})
        path = config.save(str(tmp_path / "configs" / "config.json"))

        loaded = PipelineConfig.from_json(path)
        assert loaded.sampling.scale is None
        assert loaded.sampling.overlap_policy == "keep"
        assert loaded.to_dict() == config.to_dict()
