#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Geodetic Projection, Frame Alignment and Range Limiting
=======================================================

Turns a geodetic sample into a horizontal offset in the local frame:

    (lat, lon) --project_geodetic--> (east, north) meters
               --align_to_frame----> local (x, 0, z) offset
               --clamp_range-------> offset with |offset| <= max distance

Projection uses the equirectangular (flat-earth) approximation around the
calibration origin:

    north = (lat - lat0) * 111320
    east  = (lon - lon0) * 111320 * cos(lat0)

Only valid at city scale. Error grows with distance from the origin and
near the poles; no ellipsoidal correction is applied.

Author: geoanchor project
"""

from typing import Tuple

import numpy as np

from .math_utils import yaw_rotation


METERS_PER_DEG_LAT = 111320.0
_MIN_COS_LAT = 1e-6


def meters_per_deg_lon(origin_lat_deg: float) -> float:
    """Meters per degree of longitude at the origin latitude."""
    return METERS_PER_DEG_LAT * max(_MIN_COS_LAT, float(np.cos(np.radians(float(origin_lat_deg)))))


def project_geodetic(origin_lat_deg: float, origin_lon_deg: float,
                     target_lat_deg: float, target_lon_deg: float) -> np.ndarray:
    """
    Project a geodetic target into planar East/North meters relative to an origin.

    Args:
        origin_lat_deg: Origin latitude (degrees)
        origin_lon_deg: Origin longitude (degrees)
        target_lat_deg: Target latitude (degrees)
        target_lon_deg: Target longitude (degrees)

    Returns:
        np.array([east_m, north_m])

    Example:
        >>> en = project_geodetic(35.0, 135.0, 35.0009, 135.0)
        >>> round(float(en[1]), 1)
        100.2
    """
    d_lat = float(target_lat_deg) - float(origin_lat_deg)
    d_lon = float(target_lon_deg) - float(origin_lon_deg)
    north = d_lat * METERS_PER_DEG_LAT
    east = d_lon * meters_per_deg_lon(origin_lat_deg)
    return np.array([east, north], dtype=float)


def unproject_geodetic(origin_lat_deg: float, origin_lon_deg: float,
                       east_m: float, north_m: float) -> Tuple[float, float]:
    """Inverse of :func:`project_geodetic`: East/North meters back to (lat, lon)."""
    lat = float(origin_lat_deg) + float(north_m) / METERS_PER_DEG_LAT
    lon = float(origin_lon_deg) + float(east_m) / meters_per_deg_lon(origin_lat_deg)
    return lat, lon


def align_to_frame(east_north: np.ndarray, rotation_offset_deg: float) -> np.ndarray:
    """
    Rotate an East/North offset into the local frame.

    East maps to +X and North to +Z before the yaw-only calibration rotation
    is applied. The vertical component of the result is always 0.
    """
    en = np.asarray(east_north, dtype=float).reshape(2,)
    enu_local = np.array([en[0], 0.0, en[1]], dtype=float)
    out = yaw_rotation(rotation_offset_deg).apply(enu_local)
    out[1] = 0.0
    return out


def clamp_range(offset: np.ndarray, max_distance: float) -> np.ndarray:
    """
    Limit an offset's magnitude to ``max_distance`` while keeping its direction.

    Raises:
        ValueError: If max_distance is not a positive finite number
    """
    max_d = float(max_distance)
    if not np.isfinite(max_d) or max_d <= 0.0:
        raise ValueError(f"max_distance must be positive, got {max_distance!r}")
    v = np.asarray(offset, dtype=float)
    dist = float(np.linalg.norm(v))
    if dist <= max_d or dist < 1e-9:
        return v.copy()
    out = v * (max_d / dist)
    # Guard the last ulp so the bound holds exactly
    out_norm = float(np.linalg.norm(out))
    if out_norm > max_d:
        out *= max_d / out_norm
    return out
