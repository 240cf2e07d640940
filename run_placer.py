#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Placement Entry Point (run_placer.py)

Runs a fixed-rate tick loop that places the remote participant's proxy
relative to a static observer, printing the target pose once per second.
Useful to check a server and a config end to end without a renderer.

Configuration Model:
--------------------
    YAML config is the single source of truth for placement settings.
    CLI provides only the config path, the observer pose and runtime flags.

Usage:
    python run_placer.py --config configs/config_default.yaml \\
        --observer 0,1.6,0 --observer_yaw 0 \\
        --origin 35.0,135.0 --heading 0

    # Ground-surface mode against a flat floor at y=0:
    python run_placer.py --config config.yaml --ground_y 0.0 --duration 30

Author: geoanchor project
"""

import argparse
import logging
import sys
import time

import numpy as np


def _floats(text: str, n: int):
    vals = [float(v) for v in text.split(",")]
    if len(vals) != n:
        raise argparse.ArgumentTypeError(f"expected {n} comma-separated numbers, got {text!r}")
    return vals


def parse_args():
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Geodetic proxy placement - tick loop",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python run_placer.py --config configs/config_default.yaml --origin 35.0,135.0 --heading 0
  python run_placer.py --config config.yaml --save_debug_data --duration 60
        """,
    )
    parser.add_argument("--config", type=str, default="configs/config_default.yaml",
                        help="Path to YAML config file")
    parser.add_argument("--observer", type=lambda s: _floats(s, 3), default=[0.0, 1.6, 0.0],
                        help="Observer local position x,y,z")
    parser.add_argument("--observer_yaw", type=float, default=0.0,
                        help="Observer yaw in the local frame (deg)")
    parser.add_argument("--origin", type=lambda s: _floats(s, 2), default=None,
                        help="Observer's own GPS fix lat,lon (enables calibration)")
    parser.add_argument("--heading", type=float, default=None,
                        help="Observer's compass true heading (deg)")
    parser.add_argument("--ground_y", type=float, default=None,
                        help="Flat ground height for ground_surface mode")
    parser.add_argument("--rate_hz", type=float, default=60.0, help="Tick rate")
    parser.add_argument("--duration", type=float, default=0.0,
                        help="Run time in seconds (0 = until Ctrl-C)")
    parser.add_argument("--save_debug_data", action="store_true",
                        help="Write debug_placement.csv")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    return parser.parse_args()


def main():
    args = parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    from geoanchor import __version__
    from geoanchor.config import load_config
    from geoanchor.math_utils import yaw_rotation
    from geoanchor.placement import estimate_target_geo
    from geoanchor.runner import PlacerRunner
    from geoanchor.types import GeoPose, ObserverPose
    from geoanchor.vertical import FlatGroundProbe

    print("=" * 70)
    print(f"geoanchor placement loop (v{__version__})")
    print("=" * 70)

    try:
        config = load_config(args.config)
    except (OSError, ValueError) as e:
        print(f"❌ Config error: {e}")
        sys.exit(1)
    if args.save_debug_data:
        config["SAVE_DEBUG_DATA"] = True

    probe = FlatGroundProbe(args.ground_y) if args.ground_y is not None else None
    if config["VERTICAL_MODE"] == "ground_surface" and probe is None:
        print("❌ vertical.mode=ground_surface needs --ground_y")
        sys.exit(1)

    geo = GeoPose(lat_deg=args.origin[0], lon_deg=args.origin[1]) if args.origin else None
    observer = ObserverPose(
        position=np.array(args.observer, dtype=float),
        rotation=yaw_rotation(args.observer_yaw),
        geo=geo,
        heading_deg=args.heading,
    )

    print(f"  Config: {args.config}")
    print(f"  Source: {config['SOURCE_MODE']} {config['SERVER_BASE_URL']}")
    print(f"  Max distance: {config['MAX_DISTANCE_M']:.1f} m, yaw frame: {config['YAW_FRAME']}")
    print(f"  Vertical mode: {config['VERTICAL_MODE']}")
    print("=" * 70)

    period = 1.0 / max(1.0, args.rate_hz)
    t_start = time.monotonic()
    next_report = t_start
    with PlacerRunner(config, probe=probe) as runner:
        try:
            while True:
                now = time.monotonic()
                if args.duration > 0 and now - t_start >= args.duration:
                    break
                pose = runner.tick(observer, now=now)
                if pose is not None and now >= next_report:
                    next_report = now + 1.0
                    est = estimate_target_geo(runner.session)
                    est_txt = f" est={est[0]:.6f},{est[1]:.6f}" if est else ""
                    p = pose.position
                    print(f"[{runner.session.mode.value:>8}] pos=({p[0]:+.2f},{p[1]:+.2f},{p[2]:+.2f}) "
                          f"yaw={pose.yaw_deg:+.1f}{est_txt}")
                time.sleep(max(0.0, period - (time.monotonic() - now)))
        except KeyboardInterrupt:
            print("\nInterrupted")

    print("=" * 70)
    print(f"✅ Done after {runner.session.ticks} ticks")
    print("=" * 70)


if __name__ == "__main__":
    main()
