#!/usr/bin/env python3
"""
EKF-SLAM Simulator
==================

Drives a simulated robot through a walled environment while it maps
landmarks with EKF-SLAM, builds a hit grid from its laser scans and,
given a goal, plans and follows an A* path on that grid.

Runs headless; --plot shows the trajectories, landmarks with their
95% ellipses, the last extracted segments and the planned path at the
end of the run.

Usage:
    python main.py --env rectangle --ticks 3000
    python main.py --env block --goal 250 -200 --method iep --plot
    python main.py --config config/default.yaml --seed 7 --save-map out/map
"""

import sys
import argparse
import logging
from dataclasses import replace
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent / 'src'))

logger = logging.getLogger("slam")


def build_config(args):
    """Load the YAML config and apply command line overrides."""
    from core.config import SimulationConfig, load_config

    config = load_config(args.config) if args.config else SimulationConfig()

    if args.method:
        config = replace(config, extractor=replace(config.extractor, method=args.method))
    if args.seed is not None:
        config = replace(config, seed=args.seed,
                         extractor=replace(config.extractor, seed=args.seed))
    if args.dt is not None:
        config = replace(config, dt=args.dt)
    return config


def run(args) -> int:
    from core.errors import ConfigError
    from simulation import ENVIRONMENTS, Simulator
    from slam_controller import SLAMController

    try:
        config = build_config(args)
    except ConfigError as e:
        logger.error("%s", e)
        return 1

    env = ENVIRONMENTS[args.env]()
    sim = Simulator(env, config)
    goal = tuple(args.goal) if args.goal else None

    try:
        controller = SLAMController(sim, config, goal=goal)
    except ValueError as e:
        logger.error("%s", e)
        return 1

    true_path, estimated_path = [], []
    for tick in range(args.ticks):
        sim.step()
        controller.tick()

        true_path.append(sim.get_true_pose()[:2])
        estimated_path.append(controller.ekf.current_pose_estimate()[0][:2])

        if args.status_every and tick % args.status_every == 0:
            logger.info("Status: %s", controller.get_status())
        if sim.crashed:
            logger.error("Robot crashed after %d ticks", tick + 1)
            break
        if controller.reached_goal:
            break

    status = controller.get_status()
    logger.info("Done: %d ticks, %.1f s simulated, %d landmarks, pose error %.2f",
                status["tick"], status["time"], status["landmarks"], status["pose_error"])

    if args.save_map:
        Path(args.save_map).parent.mkdir(parents=True, exist_ok=True)
        controller.grid.save(args.save_map + ".pgm", args.save_map + ".yaml")
        logger.info("Hit grid saved to %s.pgm", args.save_map)

    if args.plot:
        plot_run(env, controller.snapshot(), true_path, estimated_path)

    return 0 if not sim.crashed else 2


def plot_run(env, snapshot, true_path, estimated_path):
    """Show the final state of a run with matplotlib."""
    import numpy as np
    import matplotlib.pyplot as plt
    from core.linalg import covariance_ellipse

    fig, ax = plt.subplots(1, 1, figsize=(10, 8))

    for wall in env.walls:
        ax.plot([wall.x1, wall.x2], [wall.y1, wall.y2], 'k-', linewidth=2)

    if true_path:
        true_path = np.array(true_path)
        ax.plot(true_path[:, 0], true_path[:, 1], 'g-', label='True')
    if estimated_path:
        estimated_path = np.array(estimated_path)
        ax.plot(estimated_path[:, 0], estimated_path[:, 1], 'b--', label='Estimated')

    for segment in snapshot.segments:
        ax.plot([segment.start[0], segment.end[0]], [segment.start[1], segment.end[1]], 'm-')

    for mean, cov in snapshot.landmarks:
        ellipse = covariance_ellipse(mean, cov)
        ax.plot(ellipse[:, 0], ellipse[:, 1], 'r-', linewidth=0.8)
        ax.plot(mean[0], mean[1], 'r+')

    pose_ellipse = covariance_ellipse(snapshot.pose_mean[:2], snapshot.pose_covariance[:2, :2])
    ax.plot(pose_ellipse[:, 0], pose_ellipse[:, 1], 'b-')

    if snapshot.path:
        path = np.array(snapshot.path)
        ax.plot(path[:, 0], path[:, 1], 'c.-', label='Plan')
    if snapshot.goal:
        ax.plot(snapshot.goal[0], snapshot.goal[1], 'c*', markersize=15)

    ax.set_aspect('equal')
    ax.set_title(f"t = {snapshot.elapsed_time:.1f} s, {len(snapshot.landmarks)} landmarks")
    ax.legend(loc='upper right')
    plt.show()


def main():
    parser = argparse.ArgumentParser(
        description='EKF-SLAM simulator with line/landmark extraction and grid planning',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    python main.py --env rectangle --ticks 3000
    python main.py --env block --goal 250 -200 --plot
    python main.py --method iep_ransac --seed 3 --verbose
"""
    )

    parser.add_argument(
        '--env', '-e',
        choices=['rectangle', 'block'],
        default='block',
        help='Simulation environment (default: block)'
    )
    parser.add_argument(
        '--ticks', '-n',
        type=int,
        default=3000,
        help='Number of simulation ticks (default: 3000)'
    )
    parser.add_argument(
        '--dt',
        type=float,
        help='Simulation step in seconds (default: from config)'
    )
    parser.add_argument(
        '--method',
        choices=['ransac', 'ransac_ls', 'iep', 'iep_ransac'],
        help='Line extraction method (default: from config)'
    )
    parser.add_argument(
        '--goal',
        type=float,
        nargs=2,
        metavar=('X', 'Y'),
        help='Navigate to this world point instead of cruising'
    )
    parser.add_argument(
        '--config', '-c',
        type=str,
        help='YAML configuration file'
    )
    parser.add_argument(
        '--seed',
        type=int,
        help='Seed for simulator noise and RANSAC'
    )
    parser.add_argument(
        '--save-map',
        type=str,
        metavar='PREFIX',
        help='Write the hit grid to PREFIX.pgm and PREFIX.yaml'
    )
    parser.add_argument(
        '--status-every',
        type=int,
        default=500,
        help='Log a status line every N ticks, 0 to disable (default: 500)'
    )
    parser.add_argument(
        '--plot',
        action='store_true',
        help='Plot the run with matplotlib at the end'
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Debug logging'
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='[%(name)s] %(levelname)s: %(message)s'
    )

    return run(args)


if __name__ == '__main__':
    sys.exit(main())
