"""
geoanchor - Geodetic pose placement for remote-participant proxies

Converts a remotely reported geodetic pose (lat, lon, heading) into a
stable pose in a local spatial frame, every tick, relative to an observer
that has no access to the remote coordinate system.

Modules:
- types: GeoPose, ObserverPose, CalibrationFrame, LocalTargetPose, ...
- math_utils: yaw/euler rotations, wrapping, interpolation
- projection: equirectangular projection, frame alignment, range clamp
- calibration: one-shot origin calibration
- smoothing: jump-limited low-pass filter, pose blending
- vertical: height policies, surface probes, anchor correction
- placement: per-tick PlacementEngine and SessionState
- ingest: wire decoding and the single-slot PoseMailbox
- relay: root-frame relay placement (UDP channel)
- services: HTTP poller/sender, UDP receiver/sender
- runner: PlacerRunner wiring a session to its source
- config: YAML configuration
- output_utils: per-tick debug CSV

Usage:
    from geoanchor.config import load_config
    from geoanchor.runner import PlacerRunner

    config = load_config("configs/config_default.yaml")
    with PlacerRunner(config) as runner:
        pose = runner.tick(observer)
"""

__version__ = "0.3.0"

import importlib

_SUBMODULES = {
    "types", "math_utils", "projection", "calibration", "smoothing",
    "vertical", "placement", "ingest", "relay", "services", "runner",
    "config", "output_utils",
}


def __getattr__(name):
    """Lazy module loading so the I/O stack is only imported when used."""
    if name in _SUBMODULES:
        module = importlib.import_module(f".{name}", __name__)
        globals()[name] = module
        return module
    raise AttributeError(f"module 'geoanchor' has no attribute '{name}'")


def __dir__():
    return list(_SUBMODULES)


__all__ = list(_SUBMODULES)
