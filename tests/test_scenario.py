"""
Short closed-loop run of the simulation scenario.
"""

from scenarios.mpc_test import DEFAULT_CONFIG, build_track, next_waypoints, run_scenario


def test_next_waypoints_start_behind_vehicle():
    track_x, track_y = build_track()
    wp_x, wp_y = next_waypoints(track_x, track_y, 12.0)
    assert len(wp_x) == len(wp_y) == 6
    assert wp_x[0] <= 12.0 < wp_x[1]


def test_closed_loop_tracks_road():
    summary = run_scenario(DEFAULT_CONFIG, steps=30, realtime=False)
    assert summary['steps'] == 30
    assert summary['failures'] == 0
    assert summary['max_offset'] < 3.0

    path_x, path_y = summary['predicted_path']
    assert len(path_x) == len(path_y) == 10
    # World-frame path starts ahead of the origin and moves forward
    assert path_x[0] > 0.0
    assert path_x[-1] > path_x[0]
