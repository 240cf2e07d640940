#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Placement Math Utilities
========================

Yaw/euler rotation helpers and interpolation used by the placement pipeline.

Frame Conventions:
------------------
- Local frame is Y-up with +Z forward (game-engine convention)
- Yaw: rotation about +Y in degrees, 0 = +Z, 90 = +X
- Euler (pitch, yaw, roll) follows the engine order: roll about Z first,
  then pitch about X, then yaw about Y, i.e. R = Ry @ Rx @ Rz
- East/North offsets map to (x=East, y=0, z=North) before frame alignment

Author: geoanchor project
"""

import numpy as np
from scipy.spatial.transform import Rotation as R_scipy
from scipy.spatial.transform import Slerp


# =============================================================================
# Angles
# =============================================================================

def wrap_360(angle_deg: float) -> float:
    """Wrap angle to [0, 360)."""
    wrapped = float(angle_deg) % 360.0
    # -1e-17 % 360 rounds to 360.0
    return 0.0 if wrapped >= 360.0 else wrapped


# =============================================================================
# Rotations
# =============================================================================

def yaw_rotation(yaw_deg: float) -> R_scipy:
    """Rotation about +Y by ``yaw_deg``."""
    return R_scipy.from_euler("y", float(yaw_deg), degrees=True)


def euler_rotation(yaw_deg: float, pitch_deg: float = 0.0, roll_deg: float = 0.0) -> R_scipy:
    """
    Rotation from engine-style euler angles.

    Intrinsic 'YXZ' gives R = Ry(yaw) @ Rx(pitch) @ Rz(roll).
    """
    return R_scipy.from_euler("YXZ", [float(yaw_deg), float(pitch_deg), float(roll_deg)], degrees=True)


def forward_to_yaw_deg(forward: np.ndarray) -> float:
    """
    Yaw of a forward vector projected onto the horizontal plane.

    Returns:
        Yaw in [0, 360); 0.0 when the vector is (nearly) vertical
    """
    f = np.asarray(forward, dtype=float).reshape(3,)
    if f[0] * f[0] + f[2] * f[2] < 1e-8:
        return 0.0
    return wrap_360(np.degrees(np.arctan2(f[0], f[2])))


def look_rotation(forward: np.ndarray) -> R_scipy:
    """
    Rotation whose +Z points along ``forward`` with +Y kept as close to up as possible.

    Falls back to identity for a zero vector and to pure yaw for a vertical one.
    """
    f = np.asarray(forward, dtype=float).reshape(3,)
    norm = np.linalg.norm(f)
    if norm < 1e-9:
        return R_scipy.identity()
    f = f / norm
    horiz = np.hypot(f[0], f[2])
    if horiz < 1e-6:
        return yaw_rotation(0.0)
    yaw = np.degrees(np.arctan2(f[0], f[2]))
    # Positive pitch about +X tilts +Z downward
    pitch = -np.degrees(np.arctan2(f[1], horiz))
    return euler_rotation(yaw, pitch, 0.0)


# =============================================================================
# Interpolation
# =============================================================================

def lerp(a, b, t: float):
    """Linear interpolation with ``t`` clamped to [0, 1]."""
    t = float(np.clip(t, 0.0, 1.0))
    return a + (b - a) * t


def slerp_rotation(r0: R_scipy, r1: R_scipy, t: float) -> R_scipy:
    """Spherical interpolation between two rotations, ``t`` clamped to [0, 1]."""
    t = float(np.clip(t, 0.0, 1.0))
    if t <= 0.0:
        return R_scipy.from_quat(r0.as_quat())
    if t >= 1.0:
        return R_scipy.from_quat(r1.as_quat())
    keys = R_scipy.from_quat(np.vstack([r0.as_quat(), r1.as_quat()]))
    return Slerp([0.0, 1.0], keys)([t])[0]


def frame_rate_factor(per_tick: float, dt: float, reference_hz: float) -> float:
    """
    Rescale a per-tick blend factor tuned at ``reference_hz`` to a tick of ``dt`` seconds.

    f' = 1 - (1 - f) ** (dt * reference_hz)
    """
    f = float(np.clip(per_tick, 0.0, 1.0))
    if f >= 1.0:
        return 1.0
    ticks = max(0.0, float(dt)) * float(reference_hz)
    return float(1.0 - (1.0 - f) ** ticks)
