"""
Unit tests for JSON parameter files.
"""

import json

import numpy as np
import pytest

from bdmm.io.params import load_config, parse_config
from bdmm.models.rates import BirthDeathMigrationParameters, EpidemiologicalParameters


def write_json(tmp_path, data, name="params.json"):
    path = tmp_path / name
    path.write_text(json.dumps(data))
    return path


class TestLoadConfig:
    """Test reading parameter files."""

    def test_direct_rates(self, two_type_params_file):
        config = load_config(two_type_params_file)
        params = config.parameters
        assert isinstance(params, BirthDeathMigrationParameters)
        assert params.n_types == 2
        np.testing.assert_array_equal(params.birth_rate.values, [[1.2, 0.9]])
        assert config.origin_branch is None
        assert config.condition_on_survival
        assert not config.use_scaled_numbers

    def test_schedule_objects(self, tmp_path):
        path = write_json(tmp_path, {
            "n_types": 1,
            "birth_rate": {"values": [2.0, 1.0], "change_times": [1.5], "reverse_time": True},
            "death_rate": 0.5,
            "sampling_rate": 0.1,
            "root_frequencies": [1.0],
            "rho": {"values": [0.3]},
            "use_scaled_numbers": True,
        })
        config = load_config(path)
        birth = config.parameters.birth_rate
        assert birth.reverse_time
        np.testing.assert_array_equal(birth.change_times, [1.5])
        np.testing.assert_array_equal(birth.values, [[2.0], [1.0]])
        assert config.parameters.rho.times is None
        assert config.use_scaled_numbers

    def test_epidemiological(self, tmp_path):
        path = write_json(tmp_path, {
            "reproductive_number": [2.0, 1.5],
            "become_uninfectious_rate": 0.5,
            "sampling_proportion": 0.2,
            "removal_probability": 0.5,
            "root_frequencies": [0.5, 0.5],
        })
        config = load_config(path)
        assert isinstance(config.parameters, EpidemiologicalParameters)
        rates = config.parameters.to_rates()
        assert rates.sampled_ancestors

    def test_origin_with_labels(self, tmp_path):
        path = write_json(tmp_path, {
            "birth_rate": 1.0, "death_rate": 0.5, "sampling_rate": 0.2,
            "root_frequencies": [0.5, 0.5],
            "type_labels": ["north", "south"],
            "origin": {"time": 4.0, "events": [[2.0, "south"], {"time": 3.0, "type": 0}]},
            "condition_on_survival": False,
        })
        config = load_config(path)
        branch = config.origin_branch
        assert branch.origin == 4.0
        assert [(e.time, e.type) for e in branch.events] == [(2.0, 1), (3.0, 0)]
        assert config.type_labels == ["north", "south"]
        assert not config.condition_on_survival

    def test_origin_as_number(self):
        config = parse_config({
            "birth_rate": 1.0, "death_rate": 0.5, "sampling_rate": 0.2,
            "root_frequencies": [1.0], "origin": 3.0,
        })
        assert config.origin_branch.origin == 3.0
        assert config.origin_branch.events == []

    @pytest.mark.parametrize("data,message", [
        ({"birth_rate": 1.0, "death_rate": 0.5, "root_frequencies": [1.0]}, "sampling_rate"),
        ({"birth_rate": 1.0, "death_rate": 0.5, "sampling_rate": 0.1}, "root_frequencies"),
        ({"birth_rate": 1.0, "death_rate": 0.5, "sampling_rate": 0.1,
          "reproductive_number": 2.0, "root_frequencies": [1.0]}, "either"),
        ({"birth_rate": {"value": 1.0}, "death_rate": 0.5, "sampling_rate": 0.1,
          "root_frequencies": [1.0]}, "Unknown schedule"),
        ({"birth_rate": 1.0, "death_rate": 0.5, "sampling_rate": 0.1,
          "root_frequencies": [0.5, 0.5], "type_labels": ["a"]}, "type labels"),
    ])
    def test_invalid(self, data, message):
        with pytest.raises(ValueError, match=message):
            parse_config(data)

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json")
        with pytest.raises(ValueError, match="Invalid JSON"):
            load_config(path)

    def test_not_an_object(self, tmp_path):
        path = write_json(tmp_path, [1, 2, 3])
        with pytest.raises(ValueError, match="JSON object"):
            load_config(path)
