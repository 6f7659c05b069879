"""
Configuration loading and validation tests.
"""

import math
from pathlib import Path

import pytest

from mpcdrive.core.common.errors import ConfigurationError
from mpcdrive.scenario_testing.config_yaml import MPCConfig, load_yaml

project_root = Path(__file__).parent.parent
CONFIG_PATH = project_root / 'scenarios' / 'mpc_test.yaml'


def test_defaults_are_valid():
    config = MPCConfig()
    assert config.horizon == 10
    assert config.steer_max == pytest.approx(math.radians(25.0))
    assert config.n_vars == 6 * 10 + 2 * 9


def test_load_scenario_yaml():
    config = load_yaml(CONFIG_PATH)
    assert config.horizon == 10
    assert config.dt == pytest.approx(0.1)
    assert config.steer_max == pytest.approx(math.radians(25.0))
    assert config.failure_policy == 'hold'


def test_load_flat_yaml(tmp_path):
    path = tmp_path / 'flat.yaml'
    path.write_text('horizon: 5\nref_speed: 12.0\nw_cte: 100.0\n')
    config = load_yaml(path)
    assert config.horizon == 5
    assert config.ref_speed == 12.0
    assert config.w_cte == 100.0


def test_missing_file(tmp_path):
    with pytest.raises(ConfigurationError):
        load_yaml(tmp_path / 'nope.yaml')


def test_config_is_immutable():
    config = MPCConfig()
    with pytest.raises(Exception):
        config.horizon = 20


@pytest.mark.parametrize('overrides', [
    {'horizon': 1},
    {'dt': 0.0},
    {'latency': -0.1},
    {'steer_max': 0.0},
    {'lf': -2.0},
    {'w_cte': -1.0},
    {'w_steer_rate': -0.5},
    {'max_iter': -1},
    {'max_cpu_time': 0.0},
    {'poly_degree': 0},
    {'failure_policy': 'retry'},
    {'dt': math.nan},
    {'w_cte': math.nan},
    {'latency': math.inf},
    {'ref_speed': -math.inf},
    {'horizon': math.inf},
])
def test_invalid_parameters(overrides):
    with pytest.raises(ConfigurationError):
        MPCConfig.from_dict(overrides)


def test_zero_iteration_budget_is_allowed():
    assert MPCConfig(max_iter=0).max_iter == 0


def test_unknown_key():
    with pytest.raises(ConfigurationError):
        MPCConfig.from_dict({'horizn': 10})


def test_steer_max_in_degrees():
    config = MPCConfig.from_dict({'mpc': {'steer_max_deg': 30.0}})
    assert config.steer_max == pytest.approx(math.radians(30.0))
    with pytest.raises(ConfigurationError):
        MPCConfig.from_dict({'steer_max_deg': 30.0, 'steer_max': 0.5})


def test_empty_mpc_section_uses_defaults(tmp_path):
    path = tmp_path / 'empty.yaml'
    path.write_text('mpc:\n')
    assert load_yaml(path) == MPCConfig()


def test_mpc_section_must_be_mapping():
    with pytest.raises(ConfigurationError):
        MPCConfig.from_dict({'mpc': [1, 2, 3]})
