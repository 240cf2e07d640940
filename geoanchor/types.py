"""Pose and calibration dataclasses shared across the placement pipeline.

Local frame convention (left-handed, Y-up):
- X = right/East after calibration, Y = up, Z = forward/North
- Yaw is a rotation about +Y, 0 = +Z, 90 = +X (clockwise seen from above)
- Rotations are scipy ``Rotation`` objects
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import numpy as np
from scipy.spatial.transform import Rotation as R_scipy

SENTINEL_EPS_DEG = 1e-9


def _vec3(value) -> np.ndarray:
    return np.asarray(value, dtype=float).reshape(3,)


@dataclass(frozen=True)
class GeoPose:
    """Geodetic pose sample reported by the remote participant."""

    lat_deg: float
    lon_deg: float
    yaw_deg: float = 0.0
    pitch_deg: float = 0.0
    roll_deg: float = 0.0
    alt_m: Optional[float] = None
    timestamp: Optional[str] = None

    def is_sentinel(self) -> bool:
        """(0, 0) is what an unset GPS fix looks like; never a real reading."""
        return abs(self.lat_deg) < SENTINEL_EPS_DEG and abs(self.lon_deg) < SENTINEL_EPS_DEG

    def is_valid(self) -> bool:
        vals = (self.lat_deg, self.lon_deg, self.yaw_deg)
        if not all(math.isfinite(float(v)) for v in vals):
            return False
        if not (-90.0 <= self.lat_deg <= 90.0 and -180.0 <= self.lon_deg <= 180.0):
            return False
        return not self.is_sentinel()


@dataclass(frozen=True)
class ObserverPose:
    """
    Observer reference pose in the local frame.

    ``geo`` and ``heading_deg`` are the observer's own GPS fix and compass
    true heading; both are optional and only consulted for calibration.
    """

    position: np.ndarray
    rotation: R_scipy = field(default_factory=R_scipy.identity)
    geo: Optional[GeoPose] = None
    heading_deg: Optional[float] = None

    def __post_init__(self):
        object.__setattr__(self, "position", _vec3(self.position))

    @property
    def forward(self) -> np.ndarray:
        return self.rotation.apply([0.0, 0.0, 1.0])

    @property
    def height(self) -> float:
        return float(self.position[1])


@dataclass(frozen=True)
class CalibrationFrame:
    """Mapping from the geodetic origin to the local anchor. Immutable once set."""

    origin_lat_deg: float
    origin_lon_deg: float
    origin_position: np.ndarray
    rotation_offset_deg: float
    reference_height: float
    heading_source: str

    def __post_init__(self):
        pos = _vec3(self.origin_position).copy()
        pos.setflags(write=False)
        object.__setattr__(self, "origin_position", pos)

    @property
    def rotation(self) -> R_scipy:
        return R_scipy.from_euler("y", self.rotation_offset_deg, degrees=True)


@dataclass
class LocalTargetPose:
    """Target pose in the local frame, recomputed every tick."""

    position: np.ndarray
    rotation: R_scipy

    def __post_init__(self):
        self.position = _vec3(self.position)

    def copy(self) -> "LocalTargetPose":
        return LocalTargetPose(self.position.copy(), R_scipy.from_quat(self.rotation.as_quat()))

    @property
    def yaw_deg(self) -> float:
        fwd = self.rotation.apply([0.0, 0.0, 1.0])
        return float(np.degrees(np.arctan2(fwd[0], fwd[2])))


@dataclass(frozen=True)
class PoseSnapshot:
    """Immutable content of the single-slot handoff between producer and tick."""

    sample: Optional[GeoPose] = None
    received_at: Optional[float] = None
    valid: bool = False
    reason: str = "empty"
    ever_received: bool = False

    def age(self, now: float) -> float:
        if self.received_at is None:
            return float("inf")
        return max(0.0, float(now) - float(self.received_at))


@dataclass(frozen=True)
class FramePose:
    """Head pose expressed in a shared root frame (low-latency relay channel)."""

    position: np.ndarray
    yaw_deg: float
    pitch_deg: float = 0.0
    roll_deg: float = 0.0

    def __post_init__(self):
        object.__setattr__(self, "position", _vec3(self.position))

    def to_payload(self, include_tilt: bool = False) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "pos": {
                "x": float(self.position[0]),
                "y": float(self.position[1]),
                "z": float(self.position[2]),
            },
            "yaw_deg": float(self.yaw_deg),
        }
        if include_tilt:
            payload["pitch_deg"] = float(self.pitch_deg)
            payload["roll_deg"] = float(self.roll_deg)
        return payload


@dataclass(frozen=True)
class RemoteRecord:
    """Data-bearing shape of the server's latest-sample response."""

    lat: float
    lon: float
    yaw_deg: float = 0.0
    alt: Optional[float] = None
    timestamp: Optional[str] = None
    pos: Optional[np.ndarray] = None
    calibrated: bool = False
    calib_method: str = ""
    calib_scale: float = 1.0
    calib_theta_deg: float = 0.0

    def to_geo_pose(self) -> GeoPose:
        return GeoPose(
            lat_deg=float(self.lat),
            lon_deg=float(self.lon),
            yaw_deg=float(self.yaw_deg),
            alt_m=self.alt,
            timestamp=self.timestamp,
        )
