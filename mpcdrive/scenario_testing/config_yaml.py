"""
Loading and validation of the MPC configuration.

The configuration is built once at startup and shared read-only by every
pipeline stage.
"""

import logging
import math
from dataclasses import dataclass, fields, replace
from pathlib import Path

import yaml

from mpcdrive.core.common.errors import ConfigurationError

logger = logging.getLogger(__name__)

FAILURE_POLICIES = ('hold', 'stop')


@dataclass(frozen=True)
class MPCConfig:
    # Latency compensation
    latency: float = 0.1  # Actuation latency modelled by the predictor (s)
    actuation_delay: float = 0.1  # Sleep before emitting a command in simulation (s)

    # Horizon
    horizon: int = 10
    dt: float = 0.1

    # Vehicle
    ref_speed: float = 20.0  # Target speed (m/s)
    steer_max: float = math.radians(25.0)  # Physical steering bound (rad)
    lf: float = 2.67  # Centre of gravity to front axle (m)
    throttle_accel_scale: float = 9.81  # Throttle fraction -> m/s^2 for the predictor
    speed_unit_scale: float = 0.44704  # Telemetry speed (mph) -> m/s
    poly_degree: int = 3

    # Cost weights
    w_cte: float = 2000.0
    w_epsi: float = 2000.0
    w_speed: float = 1.0
    w_steer: float = 5.0
    w_throttle: float = 5.0
    w_steer_rate: float = 200.0
    w_throttle_rate: float = 10.0

    # Solver budget
    max_iter: int = 200
    max_cpu_time: float = 0.5
    tol: float = 1e-8

    failure_policy: str = 'hold'

    def __post_init__(self):
        self.validate()

    def validate(self):
        """Raise ConfigurationError on any invalid parameter."""
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, (int, float)) and not math.isfinite(value):
                raise ConfigurationError(f"{f.name} must be finite, got {value}")
        if int(self.horizon) != self.horizon or self.horizon < 2:
            raise ConfigurationError(f"horizon must be an integer >= 2, got {self.horizon}")
        if self.dt <= 0:
            raise ConfigurationError(f"dt must be positive, got {self.dt}")
        if self.latency < 0:
            raise ConfigurationError(f"latency must be >= 0, got {self.latency}")
        if self.actuation_delay < 0:
            raise ConfigurationError(f"actuation_delay must be >= 0, got {self.actuation_delay}")
        for name in ('steer_max', 'lf', 'speed_unit_scale', 'max_cpu_time', 'tol'):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive, got {getattr(self, name)}")
        if self.throttle_accel_scale < 0:
            raise ConfigurationError(f"throttle_accel_scale must be >= 0, got {self.throttle_accel_scale}")
        for name, value in self.weights.items():
            if value < 0:
                raise ConfigurationError(f"cost weight {name} must be >= 0, got {value}")
        if int(self.max_iter) != self.max_iter or self.max_iter < 0:
            raise ConfigurationError(f"max_iter must be a non-negative integer, got {self.max_iter}")
        if int(self.poly_degree) != self.poly_degree or self.poly_degree < 1:
            raise ConfigurationError(f"poly_degree must be an integer >= 1, got {self.poly_degree}")
        if self.failure_policy not in FAILURE_POLICIES:
            raise ConfigurationError(
                f"failure_policy must be one of {FAILURE_POLICIES}, got {self.failure_policy!r}"
            )

    @property
    def weights(self):
        return {f.name: getattr(self, f.name) for f in fields(self) if f.name.startswith('w_')}

    @property
    def n_vars(self):
        """Decision vector size: 6 states over N steps plus 2 controls over N-1."""
        return 6 * self.horizon + 2 * (self.horizon - 1)

    def with_overrides(self, **kwargs):
        return replace(self, **kwargs)

    @classmethod
    def from_dict(cls, params):
        """
        Build a config from a mapping, flat or nested under 'mpc'.

        'steer_max_deg' may be given instead of 'steer_max' (radians).
        """
        if params is None:
            params = {}
        if not isinstance(params, dict):
            raise ConfigurationError(f"configuration must be a mapping, got {type(params).__name__}")
        section = params.get('mpc', params) or {}
        if not isinstance(section, dict):
            raise ConfigurationError(f"mpc section must be a mapping, got {type(section).__name__}")
        params = dict(section)

        if 'steer_max_deg' in params:
            if 'steer_max' in params:
                raise ConfigurationError("give only one of steer_max and steer_max_deg")
            params['steer_max'] = math.radians(float(params.pop('steer_max_deg')))

        known = {f.name for f in fields(cls)}
        unknown = sorted(set(params) - known)
        if unknown:
            raise ConfigurationError(f"unknown configuration keys: {unknown}")

        try:
            return cls(**params)
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(str(exc)) from exc


def load_yaml(path):
    """Read an MPCConfig from a YAML file."""
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"config file not found: {path}")
    with open(path, 'r') as f:
        try:
            params = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"cannot parse {path}: {exc}") from exc

    config = MPCConfig.from_dict(params)
    logger.info(f"Loaded configuration from {path}")
    return config
