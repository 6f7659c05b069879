"""
Waypoint handling for the MPC: world -> vehicle frame transform and the
cubic reference curve fitted in the vehicle frame.
"""

import math
from dataclasses import dataclass
from typing import Tuple

import numpy as np

from mpcdrive.core.common.errors import DegenerateFit, InsufficientReferenceData
from mpcdrive.core.common.types import VehicleState

# Relative threshold on |diag(R)| below which the design matrix is treated as rank deficient
RANK_TOL = 1e-10


def to_vehicle_frame(pose, xs, ys):
    """
    Express world-frame points in the frame of `pose`.

    Translate by (-x, -y), then rotate by -heading so the vehicle's heading
    becomes the local +x axis.

    Raises:
        InsufficientReferenceData: no points were given.
    """
    xs = np.asarray(xs, dtype=float)
    ys = np.asarray(ys, dtype=float)
    if xs.size == 0:
        raise InsufficientReferenceData("at least one waypoint is required")

    dx = xs - pose.x
    dy = ys - pose.y
    cos_h = math.cos(-pose.heading)
    sin_h = math.sin(-pose.heading)
    local_x = dx * cos_h - dy * sin_h
    local_y = dx * sin_h + dy * cos_h
    return local_x, local_y


def to_world_frame(pose, xs, ys):
    """Inverse of to_vehicle_frame: rotate by +heading, then translate."""
    xs = np.asarray(xs, dtype=float)
    ys = np.asarray(ys, dtype=float)
    cos_h = math.cos(pose.heading)
    sin_h = math.sin(pose.heading)
    world_x = xs * cos_h - ys * sin_h + pose.x
    world_y = xs * sin_h + ys * cos_h + pose.y
    return world_x, world_y


def polyfit(xs, ys, degree=3):
    """
    Least-squares polynomial fit, coefficients lowest degree first.

    Solved through a QR factorisation of the Vandermonde matrix rather than
    the normal equations.

    Raises:
        DegenerateFit: fewer than degree + 1 points, or a rank-deficient
            design matrix (e.g. repeated x values).
    """
    xs = np.asarray(xs, dtype=float)
    ys = np.asarray(ys, dtype=float)
    if xs.shape != ys.shape:
        raise DegenerateFit(f"x/y length mismatch: {xs.size} vs {ys.size}")
    if degree < 1:
        raise DegenerateFit(f"degree must be >= 1, got {degree}")
    if xs.size < degree + 1:
        raise DegenerateFit(f"need at least {degree + 1} points for a degree {degree} fit, got {xs.size}")

    A = np.vander(xs, degree + 1, increasing=True)
    Q, R = np.linalg.qr(A)
    diag = np.abs(np.diag(R))
    if diag.min() <= RANK_TOL * max(diag.max(), 1.0):
        raise DegenerateFit("design matrix is rank deficient")

    return np.linalg.solve(R, Q.T @ ys)


def polyeval(coeffs, x):
    """Evaluate a lowest-degree-first polynomial at x (Horner's scheme)."""
    result = 0.0
    for c in reversed(list(coeffs)):
        result = result * x + c
    return result


def polyderiv(coeffs):
    """Coefficients of the first derivative."""
    coeffs = np.asarray(coeffs, dtype=float)
    if coeffs.size <= 1:
        return np.zeros(1)
    return coeffs[1:] * np.arange(1, coeffs.size)


@dataclass(frozen=True)
class ReferenceCurve:
    """
    Desired path y = f(x) in the vehicle frame of the current cycle.
    """
    coeffs: Tuple[float, ...]

    @classmethod
    def fit(cls, xs, ys, degree=3):
        return cls(tuple(float(c) for c in polyfit(xs, ys, degree)))

    @property
    def degree(self):
        return len(self.coeffs) - 1

    def __call__(self, x):
        return polyeval(self.coeffs, x)

    def heading_at(self, x):
        """Tangent direction atan(f'(x))."""
        return math.atan(polyeval(polyderiv(self.coeffs), x))

    @property
    def cross_track_error(self):
        return float(polyeval(self.coeffs, 0.0))

    @property
    def heading_error(self):
        # psi - psi_des at the origin with psi = 0
        return -math.atan(self.coeffs[1])

    def local_state(self, speed):
        """Optimizer start state: zero pose, errors read off the curve at x = 0."""
        return VehicleState(0.0, 0.0, 0.0, speed,
                            self.cross_track_error, self.heading_error)
