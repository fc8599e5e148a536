"""Tests for zinbwave.config."""

from __future__ import annotations

import numpy as np
import pytest
import yaml

from zinbwave.config import ZinbConfig, load_config, save_config
from zinbwave.core.exceptions import ConfigurationError


class TestZinbConfigDefaults:
    def test_defaults(self):
        cfg = ZinbConfig()
        assert cfg.K == 2
        assert cfg.epsilon is None
        assert cfg.max_iterations == 100
        assert cfg.tolerance == 1e-4
        assert cfg.theta_bounds == (1e-4, 1e4)
        assert cfg.compute_normalized_values is True
        assert cfg.compute_weights is True
        assert cfg.compute_imputed is False
        assert cfg.n_jobs == 1

    def test_theta_bounds_become_floats(self):
        cfg = ZinbConfig(theta_bounds=[1, 100])
        assert cfg.theta_bounds == (1.0, 100.0)


class TestNumpyIntegers:
    def test_numpy_integers_accepted(self):
        cfg = ZinbConfig(K=np.int64(3), max_iterations=np.int32(20), n_jobs=np.int64(-1))
        assert cfg.K == 3
        assert type(cfg.K) is int
        assert type(cfg.max_iterations) is int
        assert cfg.n_jobs == -1

    def test_numpy_integer_config_saves(self, tmp_path):
        path = tmp_path / "zinb.yaml"
        save_config(ZinbConfig(K=np.int64(3)), path)
        assert load_config(path).K == 3


class TestZinbConfigValidation:
    @pytest.mark.parametrize(
        "options",
        [
            {"K": -1},
            {"K": 1.5},
            {"K": True},
            {"epsilon": -0.1},
            {"max_iterations": 0},
            {"tolerance": 0.0},
            {"timeout": -1.0},
            {"n_jobs": 0},
            {"n_jobs": -2},
            {"init": "pca"},
            {"theta_bounds": (10.0, 1.0)},
            {"theta_bounds": (0.0, 1.0)},
            {"newton_steps": 0},
            {"max_step_halvings": -1},
            {"step_shrink": 1.0},
            {"normalized_clip": 0.0},
        ],
    )
    def test_invalid_values(self, options):
        with pytest.raises(ConfigurationError):
            ZinbConfig(**options)

    def test_error_names_parameter(self):
        with pytest.raises(ConfigurationError) as excinfo:
            ZinbConfig(tolerance=-1.0)
        assert excinfo.value.parameter == "tolerance"
        assert "tolerance" in str(excinfo.value)


class TestFromDict:
    def test_none_gives_defaults(self):
        assert ZinbConfig.from_dict(None) == ZinbConfig()

    def test_camel_case_aliases(self):
        cfg = ZinbConfig.from_dict(
            {
                "K": 3,
                "maxIterations": 20,
                "computeNormalizedValues": False,
                "X": "~ batch",
                "nJobs": 2,
                "zeroInflation": False,
            }
        )
        assert cfg.K == 3
        assert cfg.max_iterations == 20
        assert cfg.compute_normalized_values is False
        assert cfg.sample_formula == "~ batch"
        assert cfg.n_jobs == 2
        assert cfg.zero_inflation is False

    def test_unknown_key(self):
        with pytest.raises(ConfigurationError, match="Unknown configuration option 'learning_rate'"):
            ZinbConfig.from_dict({"learning_rate": 0.1})

    def test_duplicate_alias(self):
        with pytest.raises(ConfigurationError, match="more than once"):
            ZinbConfig.from_dict({"maxIterations": 5, "max_iterations": 6})

    def test_formula_must_be_string(self):
        with pytest.raises(ConfigurationError, match="formula string"):
            ZinbConfig.from_dict({"X": [[1, 0], [0, 1]]})

    def test_not_a_mapping(self):
        with pytest.raises(ConfigurationError, match="mapping"):
            ZinbConfig.from_dict([1, 2, 3])  # type: ignore[arg-type]

    def test_bad_type_is_configuration_error(self):
        with pytest.raises(ConfigurationError):
            ZinbConfig.from_dict({"theta_bounds": 5})

    def test_replace(self):
        cfg = ZinbConfig()
        new = cfg.replace(K=4, maxIterations=7)
        assert new.K == 4
        assert new.max_iterations == 7
        assert cfg.K == 2
        assert cfg.replace() is cfg


class TestYaml:
    def test_round_trip(self, tmp_path):
        cfg = ZinbConfig(K=3, epsilon=50.0, sample_formula="~ batch", timeout=10.0)
        path = tmp_path / "nested" / "zinb.yaml"
        save_config(cfg, path)
        assert load_config(path) == cfg
        assert ZinbConfig.from_yaml(path) == cfg

    def test_camel_case_file(self, tmp_path):
        path = tmp_path / "zinb.yaml"
        path.write_text("K: 1\nmaxIterations: 12\ncomputeResiduals: false\n", encoding="utf-8")
        cfg = load_config(path)
        assert cfg.K == 1
        assert cfg.max_iterations == 12
        assert cfg.compute_residuals is False

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("", encoding="utf-8")
        assert load_config(path) == ZinbConfig()

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("K: [1, 2\n", encoding="utf-8")
        with pytest.raises(ConfigurationError, match="Failed to parse YAML") as excinfo:
            load_config(path)
        assert excinfo.value.config_path == path

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="Failed to read"):
            load_config(tmp_path / "missing.yaml")

    def test_invalid_value_reports_path(self, tmp_path):
        path = tmp_path / "zinb.yaml"
        path.write_text("K: -3\n", encoding="utf-8")
        with pytest.raises(ConfigurationError) as excinfo:
            load_config(path)
        assert excinfo.value.config_path == path

    def test_saved_file_is_plain_yaml(self, tmp_path):
        path = tmp_path / "zinb.yaml"
        save_config(ZinbConfig(), path)
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
        assert data["theta_bounds"] == [1e-4, 1e4]
        assert data["K"] == 2
