"""
Defines the vehicle's kinematic model for MPC.
States: [x, y, yaw (psi), speed (v), cross-track error (cte), heading error (epsi)]
Controls: [steering angle (delta), acceleration (a)]

Sign convention: positive delta turns the vehicle so that psi decreases.
"""

import math

import casadi as ca
import numpy as np

from mpcdrive.core.common.types import VehicleState
from mpcdrive.core.planning.reference_curve import polyeval


class VehicleModel:
    def __init__(self, lf=2.67, throttle_accel_scale=9.81):
        # Number of states and controls
        self.n_states = 6  # [x, y, psi, v, cte, epsi]
        self.n_controls = 2  # [delta, a]
        self.Lf = lf  # Centre of gravity to front axle (meters)
        self.throttle_accel_scale = throttle_accel_scale
        self._step_fn = None

    @classmethod
    def from_config(cls, config):
        return cls(lf=config.lf, throttle_accel_scale=config.throttle_accel_scale)

    def predict(self, state, steering, throttle, latency):
        """
        Advance a world-frame state by the actuation latency.

        Single Euler step of the kinematic bicycle model driven by the last
        command, so the optimizer starts from where the vehicle will be when
        the next command takes effect.
        Args:
            state (VehicleState): World-frame pose and speed (m/s).
            steering (float): Last steering angle (radians).
            throttle (float): Last throttle fraction.
            latency (float): Prediction interval (seconds).
        Returns:
            VehicleState: Predicted world-frame pose and speed.
        """
        v = state.speed
        return VehicleState(
            x=state.x + v * math.cos(state.heading) * latency,
            y=state.y + v * math.sin(state.heading) * latency,
            heading=state.heading - v / self.Lf * steering * latency,
            speed=v + throttle * self.throttle_accel_scale * latency,
        )

    def kinematic_model(self, state, control, coeffs, dt):
        """
        One horizon step of the kinematic model with error dynamics.
        Args:
            state (casadi.SX): Current state [x, y, psi, v, cte, epsi]
            control (casadi.SX): Control inputs [delta, a]
            coeffs (list): Reference curve coefficients, lowest degree first
            dt (float): Step length (seconds)
        Returns:
            casadi.SX: State at the next step
        """
        x, y, psi, v, cte, epsi = ca.vertsplit(state)
        delta, a = ca.vertsplit(control)

        f = polyeval(coeffs, x)
        psi_des = ca.atan(polyeval([i * coeffs[i] for i in range(1, len(coeffs))], x))

        # Equations of motion
        x_next = x + v * ca.cos(psi) * dt
        y_next = y + v * ca.sin(psi) * dt
        psi_next = psi - v / self.Lf * delta * dt
        v_next = v + a * dt
        # Error dynamics relative to the reference curve
        cte_next = (f - y) + v * ca.sin(epsi) * dt
        epsi_next = (psi - psi_des) - v / self.Lf * delta * dt

        return ca.vertcat(x_next, y_next, psi_next, v_next, cte_next, epsi_next)

    def step(self, state, control, coeffs, dt):
        """Numeric evaluation of kinematic_model; returns a numpy state vector."""
        coeffs = np.asarray(coeffs, dtype=float)
        fn = self._transition_function(coeffs.size, dt)
        return fn(state, control, coeffs).full().ravel()

    def _transition_function(self, n_coeffs, dt):
        key = (n_coeffs, dt)
        if self._step_fn is None or self._step_fn[0] != key:
            s = ca.SX.sym('s', self.n_states)
            u = ca.SX.sym('u', self.n_controls)
            c = ca.SX.sym('c', n_coeffs)
            coeffs = [c[i] for i in range(n_coeffs)]
            self._step_fn = (key, ca.Function('step', [s, u, c],
                                              [self.kinematic_model(s, u, coeffs, dt)]))
        return self._step_fn[1]
