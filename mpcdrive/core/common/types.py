"""
Plain data carried between pipeline stages.

All containers are frozen: a cycle builds them once and never mutates them.
"""

import math
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import numpy as np

from mpcdrive.core.common.errors import InputValidationError, MPCError


@dataclass(frozen=True)
class VehicleState:
    """
    Six-scalar vehicle state.

    In world frame this is the telemetry pose/speed (errors are zero); in
    vehicle-local frame x = y = heading = 0 and the errors come from the
    fitted reference curve.
    """
    x: float = 0.0
    y: float = 0.0
    heading: float = 0.0
    speed: float = 0.0
    cross_track_error: float = 0.0
    heading_error: float = 0.0

    def as_array(self):
        """State vector in optimizer order [x, y, psi, v, cte, epsi]."""
        return np.array([self.x, self.y, self.heading, self.speed,
                         self.cross_track_error, self.heading_error])


@dataclass(frozen=True)
class ControlCommand:
    """Normalized actuator command, both fields in [-1, 1]."""
    steering: float = 0.0
    throttle: float = 0.0

    def clamped(self):
        return ControlCommand(
            steering=float(np.clip(self.steering, -1.0, 1.0)),
            throttle=float(np.clip(self.throttle, -1.0, 1.0)),
        )


@dataclass(frozen=True)
class Trajectory:
    """Equal-length x/y sequences in the vehicle-local frame."""
    xs: List[float] = field(default_factory=list)
    ys: List[float] = field(default_factory=list)

    def __post_init__(self):
        if len(self.xs) != len(self.ys):
            raise ValueError(f"trajectory length mismatch: {len(self.xs)} x vs {len(self.ys)} y")

    def __len__(self):
        return len(self.xs)


@dataclass(frozen=True)
class Telemetry:
    """
    Decoded inbound telemetry.

    speed is in the platform's unit (mph); ControlManager converts it.
    last_steering is radians in the vehicle model's sign convention; when
    last_steering/last_throttle are None the session's previous command is used.
    """
    waypoints_x: Sequence[float]
    waypoints_y: Sequence[float]
    x: float
    y: float
    heading: float
    speed: float
    last_steering: Optional[float] = None
    last_throttle: Optional[float] = None

    @classmethod
    def from_message(cls, data):
        """Build telemetry from the simulator's decoded JSON payload."""
        try:
            return cls(
                waypoints_x=[float(v) for v in data['ptsx']],
                waypoints_y=[float(v) for v in data['ptsy']],
                x=float(data['x']),
                y=float(data['y']),
                heading=float(data['psi']),
                speed=float(data['speed']),
                last_steering=_optional_float(data.get('steering_angle')),
                last_throttle=_optional_float(data.get('throttle')),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise InputValidationError(f"malformed telemetry payload: {exc!r}") from exc

    def validate(self):
        """Raise InputValidationError for mismatched or non-finite fields."""
        if len(self.waypoints_x) != len(self.waypoints_y):
            raise InputValidationError(
                f"waypoint length mismatch: {len(self.waypoints_x)} x vs {len(self.waypoints_y)} y"
            )
        scalars = [self.x, self.y, self.heading, self.speed]
        scalars += [v for v in (self.last_steering, self.last_throttle) if v is not None]
        if not all(math.isfinite(v) for v in scalars):
            raise InputValidationError("non-finite pose, speed or command in telemetry")
        if not (np.all(np.isfinite(self.waypoints_x)) and np.all(np.isfinite(self.waypoints_y))):
            raise InputValidationError("non-finite waypoint coordinates")


def _optional_float(value):
    return None if value is None else float(value)


@dataclass(frozen=True)
class CommandMessage:
    """
    Outbound command plus diagnostic trajectories.

    Trajectories are in the vehicle-local frame centred at pose, the
    latency-predicted world pose of this cycle.
    """
    command: ControlCommand
    predicted: Trajectory
    reference: Trajectory
    pose: Optional[VehicleState] = None

    @property
    def steering(self):
        return self.command.steering

    @property
    def throttle(self):
        return self.command.throttle

    def to_message(self):
        """Payload keys expected by the simulator's steer event."""
        return {
            'steering_angle': self.command.steering,
            'throttle': self.command.throttle,
            'mpc_x': list(self.predicted.xs),
            'mpc_y': list(self.predicted.ys),
            'next_x': list(self.reference.xs),
            'next_y': list(self.reference.ys),
        }


@dataclass(frozen=True)
class CycleResult:
    """
    Outcome of one control cycle.

    Exactly one of message/error is set. On failure, fallback holds the
    command the configured failure policy suggests; the caller decides
    whether to apply it.
    """
    message: Optional[CommandMessage] = None
    error: Optional[MPCError] = None
    fallback: Optional[ControlCommand] = None

    @property
    def ok(self):
        return self.error is None

    @property
    def kind(self):
        return 'ok' if self.error is None else self.error.kind
