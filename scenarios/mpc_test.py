"""
Closed-loop test of the MPC pipeline on a simulated sinusoidal track.
"""

import argparse
import logging
import math
import time
from pathlib import Path

import numpy as np

from mpcdrive.core.actuation.controller import ControlManager
from mpcdrive.core.common.types import Telemetry, VehicleState
from mpcdrive.core.planning.reference_curve import to_world_frame
from mpcdrive.scenario_testing.config_yaml import load_yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = Path(__file__).parent / 'mpc_test.yaml'

TRACK_AMPLITUDE = 6.0  # meters
TRACK_WAVELENGTH = 120.0  # meters
WAYPOINT_SPACING = 5.0  # meters
WAYPOINTS_PER_MESSAGE = 6


def build_track(length=2000.0):
    xs = np.arange(0.0, length, WAYPOINT_SPACING)
    ys = TRACK_AMPLITUDE * np.sin(2 * math.pi * xs / TRACK_WAVELENGTH)
    return xs, ys


def next_waypoints(track_x, track_y, x):
    """Waypoints starting just behind the vehicle's longitudinal position."""
    start = max(int(np.searchsorted(track_x, x)) - 1, 0)
    end = start + WAYPOINTS_PER_MESSAGE
    return track_x[start:end], track_y[start:end]


def run_scenario(config_path=DEFAULT_CONFIG, steps=300, realtime=True):
    """
    Drive the simulated vehicle with the MPC and report tracking quality.
    Returns:
        dict: mean/max absolute lateral offset, number of rejected cycles and
        the last predicted path in world coordinates.
    """
    # -------------------------------------------------------------------------
    # 1. Load Configuration and Initialize the Session
    # -------------------------------------------------------------------------
    config = load_yaml(config_path)
    manager = ControlManager(config)
    model = manager.dynamics
    track_x, track_y = build_track()

    # Start slightly off the track, pointing along +x
    vehicle = VehicleState(x=0.0, y=1.0, heading=0.0, speed=5.0)
    applied_steering = 0.0  # radians, model convention
    applied_throttle = 0.0

    # -------------------------------------------------------------------------
    # 2. Main Simulation Loop
    # -------------------------------------------------------------------------
    offsets = []
    failures = 0
    predicted_path = ([], [])
    for step in range(steps):
        wp_x, wp_y = next_waypoints(track_x, track_y, vehicle.x)
        if len(wp_x) == 0:
            logger.info("End of track reached")
            break

        telemetry = Telemetry(
            waypoints_x=wp_x.tolist(),
            waypoints_y=wp_y.tolist(),
            x=vehicle.x,
            y=vehicle.y,
            heading=vehicle.heading,
            speed=vehicle.speed / config.speed_unit_scale,
            last_steering=applied_steering,
            last_throttle=applied_throttle,
        )
        result = manager.run_step(telemetry)

        if result.ok:
            command = result.message.command
            # Optimizer path back in world coordinates for display
            path_x, path_y = to_world_frame(result.message.pose, result.message.predicted.xs,
                                            result.message.predicted.ys)
            predicted_path = (path_x.tolist(), path_y.tolist())
            logger.debug(f"predicted path end=({path_x[-1]:.1f}, {path_y[-1]:.2f})")
        else:
            failures += 1
            command = result.fallback

        # Emulate actuation latency before the command reaches the vehicle
        if realtime and config.actuation_delay > 0:
            time.sleep(config.actuation_delay)

        # The vehicle keeps moving on the old command during the latency
        vehicle = model.predict(vehicle, applied_steering, applied_throttle, config.latency)
        applied_steering = -command.steering * config.steer_max
        applied_throttle = command.throttle
        vehicle = model.predict(vehicle, applied_steering, applied_throttle, config.dt)

        offset = abs(vehicle.y - TRACK_AMPLITUDE * math.sin(2 * math.pi * vehicle.x / TRACK_WAVELENGTH))
        offsets.append(offset)
        logger.debug(f"step={step} x={vehicle.x:.1f} y={vehicle.y:.2f} v={vehicle.speed:.2f} "
                     f"offset={offset:.3f} status={result.kind}")

    summary = {
        'steps': len(offsets),
        'mean_offset': float(np.mean(offsets)) if offsets else float('nan'),
        'max_offset': float(np.max(offsets)) if offsets else float('nan'),
        'failures': failures,
        'predicted_path': predicted_path,
    }
    return summary


def main():
    parser = argparse.ArgumentParser(description='Run the MPC controller on a simulated track')
    parser.add_argument('--config', type=str, default=str(DEFAULT_CONFIG),
                        help='Path to configuration YAML file')
    parser.add_argument('--steps', type=int, default=300, help='Number of control cycles')
    parser.add_argument('--no-delay', action='store_true',
                        help='Skip the simulated actuation delay between cycles')
    parser.add_argument('--log-level', type=str, default='INFO',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'])
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )

    try:
        summary = run_scenario(args.config, steps=args.steps, realtime=not args.no_delay)
    except KeyboardInterrupt:
        print("Shutting down...")
        return

    print(f"Cycles: {summary['steps']}  failures: {summary['failures']}")
    print(f"Mean |offset|: {summary['mean_offset']:.3f} m  max: {summary['max_offset']:.3f} m")


if __name__ == '__main__':
    main()
