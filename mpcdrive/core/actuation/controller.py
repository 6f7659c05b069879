"""
Per-session control pipeline: predict -> transform -> fit -> optimize -> map.
"""

import logging

import numpy as np

from mpcdrive.core.actuation.mpc_controller import MPCController
from mpcdrive.core.common.errors import MPCError
from mpcdrive.core.common.types import (CommandMessage, ControlCommand, CycleResult,
                                        Trajectory, VehicleState)
from mpcdrive.core.planning.reference_curve import ReferenceCurve, to_vehicle_frame

logger = logging.getLogger(__name__)

STOP_COMMAND = ControlCommand(steering=0.0, throttle=-1.0)


def map_actuation(solution, steer_max, reference, pose=None):
    """
    Convert raw optimizer output into a bounded command message.
    Args:
        solution (MPCSolution): Optimizer result (steering in radians).
        steer_max (float): Physical steering bound (radians).
        reference (Trajectory): Waypoints in the vehicle frame, for display.
        pose (VehicleState): Predicted world pose the vehicle frame is centred at.
    Returns:
        CommandMessage: Normalized steering/throttle in [-1, 1] and trajectories.
    """
    # Model steering decreases yaw; the platform's positive steer is the opposite turn
    command = ControlCommand(
        steering=-solution.steering / steer_max,
        throttle=solution.throttle,
    ).clamped()
    predicted = Trajectory(xs=[float(v) for v in solution.xs], ys=[float(v) for v in solution.ys])
    return CommandMessage(command=command, predicted=predicted, reference=reference, pose=pose)


class ControlManager:
    def __init__(self, config):
        """
        Initialize one control session.
        Args:
            config (MPCConfig): Validated configuration shared read-only.
        """
        self.config = config
        self.controller = MPCController(config)
        self.dynamics = self.controller.dynamics
        # Only state carried between cycles
        self.last_command = ControlCommand()

    def run_step(self, telemetry):
        """
        Execute one control cycle.
        Args:
            telemetry (Telemetry): Decoded inbound telemetry.
        Returns:
            CycleResult: The command message, or the failure and the fallback
            command chosen by the configured failure policy.
        """
        try:
            message = self._compute(telemetry)
        except MPCError as exc:
            fallback = self._fallback()
            logger.warning(f"Control cycle rejected ({exc.kind}): {exc}; "
                           f"policy={self.config.failure_policy} fallback={fallback}")
            return CycleResult(error=exc, fallback=fallback)

        self.last_command = message.command
        return CycleResult(message=message)

    def _compute(self, telemetry):
        config = self.config
        telemetry.validate()

        steering, throttle = self._last_actuation(telemetry)
        current = VehicleState(
            x=telemetry.x,
            y=telemetry.y,
            heading=telemetry.heading,
            speed=telemetry.speed * config.speed_unit_scale,
        )
        predicted = self.dynamics.predict(current, steering, throttle, config.latency)

        local_x, local_y = to_vehicle_frame(predicted, telemetry.waypoints_x, telemetry.waypoints_y)
        curve = ReferenceCurve.fit(local_x, local_y, config.poly_degree)
        state = curve.local_state(predicted.speed)

        solution = self.controller.solve(state, curve.coeffs)
        reference = Trajectory(xs=local_x.tolist(), ys=local_y.tolist())
        message = map_actuation(solution, config.steer_max, reference, pose=predicted)

        logger.debug(f"cte={state.cross_track_error:.4f} epsi={state.heading_error:.4f} "
                     f"steering={message.steering:.4f} throttle={message.throttle:.4f} "
                     f"solve_time={solution.solve_time * 1000:.1f}ms")
        return message

    def _last_actuation(self, telemetry):
        """Last steering (radians, model convention) and throttle applied to the vehicle."""
        steering = telemetry.last_steering
        if steering is None:
            steering = -self.last_command.steering * self.config.steer_max
        throttle = telemetry.last_throttle
        if throttle is None:
            throttle = self.last_command.throttle
        return float(steering), float(np.clip(throttle, -1.0, 1.0))

    def _fallback(self):
        if self.config.failure_policy == 'stop':
            return STOP_COMMAND
        return self.last_command
