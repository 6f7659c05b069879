"""
Model Predictive Controller (MPC) for tracking a fitted reference curve.
Uses CasADi for symbolic optimization and IPOPT as the solver.
"""

import logging
import time
from dataclasses import dataclass

import casadi as ca
import numpy as np

from mpcdrive.core.common.errors import Infeasible, NoConvergence
from mpcdrive.dynamics.vehicle_module import VehicleModel

logger = logging.getLogger(__name__)

# Effectively unbounded state variables (IPOPT treats |bound| >= 1e19 as infinite)
STATE_BOUND = 1.0e19

INFEASIBLE_STATUSES = ('Infeasible_Problem_Detected', 'Restoration_Failed')


@dataclass(frozen=True)
class MPCSolution:
    steering: float  # First steering angle (radians)
    throttle: float  # First acceleration command
    xs: np.ndarray  # Predicted x over the horizon (vehicle frame)
    ys: np.ndarray  # Predicted y over the horizon (vehicle frame)
    states: np.ndarray  # (N, 6) [x, y, psi, v, cte, epsi]
    controls: np.ndarray  # (N-1, 2) [delta, a]
    cost: float
    status: str
    solve_time: float  # seconds


class MPCController:
    def __init__(self, config):
        """
        Initialize MPC with configuration parameters.
        Args:
            config (MPCConfig): Validated controller configuration.
        """
        # Prediction horizon and timestep
        self.horizon = config.horizon  # Number of prediction steps
        self.dt = config.dt  # Time per step (seconds)
        self.n_coeffs = config.poly_degree + 1

        # Cost function weights and targets
        self.weights = config.weights
        self.ref_speed = config.ref_speed

        # Actuator limits
        self.steer_max = config.steer_max  # Max steering angle (radians)

        # Solver budget
        self.max_iter = config.max_iter
        self.max_cpu_time = config.max_cpu_time
        self.tol = config.tol

        # Vehicle dynamics model
        self.dynamics = VehicleModel.from_config(config)
        # Setup MPC optimization problem
        self.setup_mpc()

    def setup_mpc(self):
        """Setup symbolic variables, cost function, and constraints for CasADi solver."""
        n_states = self.dynamics.n_states
        n_controls = self.dynamics.n_controls
        w = self.weights

        # X: States over horizon (6 x N)
        # U: Controls over horizon (2 x N-1)
        # P: Initial state (6) followed by the reference curve coefficients
        self.X = ca.SX.sym('X', n_states, self.horizon)
        self.U = ca.SX.sym('U', n_controls, self.horizon - 1)
        self.P = ca.SX.sym('P', n_states + self.n_coeffs)
        x_init = self.P[:n_states]
        coeffs = [self.P[n_states + i] for i in range(self.n_coeffs)]

        cost = 0
        constraints = []

        # Constraint 1: Initial state must match the predicted vehicle state
        constraints.append(self.X[:, 0] - x_init)

        # Constraint 2: Each next state must follow the vehicle model
        for t in range(self.horizon - 1):
            next_state = self.dynamics.kinematic_model(self.X[:, t], self.U[:, t], coeffs, self.dt)
            constraints.append(self.X[:, t + 1] - next_state)

        # Cost 1: Tracking and reference speed
        for t in range(self.horizon):
            cte = self.X[4, t]
            epsi = self.X[5, t]
            v = self.X[3, t]
            cost += w['w_cte'] * cte ** 2 + w['w_epsi'] * epsi ** 2
            cost += w['w_speed'] * (v - self.ref_speed) ** 2

        # Cost 2: Control effort
        for t in range(self.horizon - 1):
            cost += w['w_steer'] * self.U[0, t] ** 2 + w['w_throttle'] * self.U[1, t] ** 2

        # Cost 3: Control smoothness (penalize abrupt changes)
        for t in range(self.horizon - 2):
            cost += w['w_steer_rate'] * (self.U[0, t + 1] - self.U[0, t]) ** 2
            cost += w['w_throttle_rate'] * (self.U[1, t + 1] - self.U[1, t]) ** 2

        # Combine decision variables (flatten states and controls into a vector)
        opt_variables = ca.vertcat(
            ca.reshape(self.X, -1, 1),  # [x0, y0, psi0, v0, cte0, epsi0, x1, ...]
            ca.reshape(self.U, -1, 1)   # [delta0, a0, delta1, a1, ...]
        )

        nlp = {
            'x': opt_variables,
            'f': cost,
            'g': ca.vertcat(*constraints),
            'p': self.P,
        }

        opts = {
            'ipopt.print_level': 0,
            'ipopt.sb': 'yes',
            'print_time': 0,
            'ipopt.tol': self.tol,
            'ipopt.max_iter': self.max_iter,
            'ipopt.max_cpu_time': self.max_cpu_time,
            # Return controls inside the original bounds, not IPOPT's relaxed ones
            'ipopt.honor_original_bounds': 'yes',
            'error_on_fail': False,
        }

        self.solver = ca.nlpsol('solver', 'ipopt', nlp, opts)
        self.n_vars = opt_variables.shape[0]
        self.n_constraints = n_states * self.horizon
        self._lbx = self._get_lower_bounds()
        self._ubx = self._get_upper_bounds()

    def solve(self, state, coeffs):
        """
        Solve the horizon problem from a vehicle-frame start state.
        Args:
            state (VehicleState): Predicted local state (x = y = psi = 0).
            coeffs (sequence): Reference curve coefficients, lowest degree first.
        Returns:
            MPCSolution: First control pair plus the optimized trajectory.
        Raises:
            NoConvergence: IPOPT stopped without a feasible stationary point.
            Infeasible: IPOPT reported the problem as locally infeasible.
        """
        coeffs = np.asarray(coeffs, dtype=float)
        if coeffs.size != self.n_coeffs:
            raise ValueError(f"expected {self.n_coeffs} curve coefficients, got {coeffs.size}")
        x_init = state.as_array()

        # Initial guess: current state repeated, zero controls
        initial_guess = np.concatenate([
            np.tile(x_init, self.horizon),
            np.zeros(self.dynamics.n_controls * (self.horizon - 1)),
        ])

        start = time.perf_counter()
        try:
            sol = self.solver(
                x0=initial_guess,
                p=np.concatenate([x_init, coeffs]),
                lbg=0,  # All constraints are equalities
                ubg=0,
                lbx=self._lbx,
                ubx=self._ubx,
            )
        except RuntimeError as exc:
            raise NoConvergence(f"solver raised: {exc}") from exc
        solve_time = time.perf_counter() - start

        stats = self.solver.stats()
        status = stats.get('return_status', 'unknown')
        logger.debug(f"IPOPT status={status} iterations={stats.get('iter_count')} time={solve_time:.4f}s")
        if not stats.get('success', False):
            if status in INFEASIBLE_STATUSES:
                raise Infeasible(f"MPC problem infeasible ({status})", status=status)
            raise NoConvergence(f"MPC solve did not converge ({status})", status=status)

        opt_vars = sol['x'].full().ravel()
        n_state_vars = self.dynamics.n_states * self.horizon
        states = opt_vars[:n_state_vars].reshape(self.horizon, self.dynamics.n_states)
        controls = opt_vars[n_state_vars:].reshape(self.horizon - 1, self.dynamics.n_controls)
        controls[:, 0] = np.clip(controls[:, 0], -self.steer_max, self.steer_max)
        controls[:, 1] = np.clip(controls[:, 1], -1.0, 1.0)
        delta, acc = controls[0]

        return MPCSolution(
            steering=float(delta),
            throttle=float(acc),
            xs=states[:, 0].copy(),
            ys=states[:, 1].copy(),
            states=states,
            controls=controls,
            cost=float(sol['f']),
            status=status,
            solve_time=solve_time,
        )

    def _get_lower_bounds(self):
        """Lower bounds for states and controls, in decision-vector order."""
        lb_states = [-STATE_BOUND] * (self.dynamics.n_states * self.horizon)
        lb_controls = [-self.steer_max, -1.0] * (self.horizon - 1)
        return lb_states + lb_controls

    def _get_upper_bounds(self):
        """Upper bounds for states and controls, in decision-vector order."""
        ub_states = [STATE_BOUND] * (self.dynamics.n_states * self.horizon)
        ub_controls = [self.steer_max, 1.0] * (self.horizon - 1)
        return ub_states + ub_controls
