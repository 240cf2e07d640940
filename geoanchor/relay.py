"""
Low-latency relay placement.

Both ends share a root frame (e.g. a city model's root transform). The sender
expresses its head pose in that frame; the receiver maps it back out through
its own copy of the root and blends toward it. No geodesy is involved.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

import numpy as np
from scipy.spatial.transform import Rotation as R_scipy

from .math_utils import euler_rotation, forward_to_yaw_deg, look_rotation, yaw_rotation
from .smoothing import PoseBlender
from .types import FramePose, LocalTargetPose, ObserverPose


@dataclass
class RootFrame:
    """Position / rotation / uniform scale of the shared root in the local frame."""

    position: np.ndarray = field(default_factory=lambda: np.zeros(3))
    rotation: R_scipy = field(default_factory=R_scipy.identity)
    scale: float = 1.0

    def __post_init__(self):
        self.position = np.asarray(self.position, dtype=float).reshape(3,)
        if not self.scale > 0.0:
            raise ValueError(f"root scale must be > 0, got {self.scale!r}")

    @classmethod
    def from_config(cls, cfg) -> "RootFrame":
        return cls(
            position=np.asarray(cfg.get("RELAY_ROOT_POSITION", [0.0, 0.0, 0.0]), dtype=float),
            rotation=yaw_rotation(float(cfg.get("RELAY_ROOT_YAW_DEG", 0.0))),
            scale=float(cfg.get("RELAY_ROOT_SCALE", 1.0)),
        )

    def transform_point(self, p_root: np.ndarray) -> np.ndarray:
        return self.position + self.rotation.apply(np.asarray(p_root, dtype=float) * self.scale)

    def inverse_transform_point(self, p_local: np.ndarray) -> np.ndarray:
        return self.rotation.inv().apply(np.asarray(p_local, dtype=float) - self.position) / self.scale

    def inverse_transform_direction(self, d_local: np.ndarray) -> np.ndarray:
        return self.rotation.inv().apply(np.asarray(d_local, dtype=float))


def frame_pose_from_observer(root: RootFrame, observer: ObserverPose) -> Optional[FramePose]:
    """
    Express the observer's head pose in the root frame for sending.

    Yaw comes from the forward vector flattened onto the root's horizontal
    plane, in [0, 360). Returns None if the result is not finite.
    """
    p_root = root.inverse_transform_point(observer.position)
    f_root = root.inverse_transform_direction(observer.forward)
    flat = np.array([f_root[0], 0.0, f_root[2]])
    if float(flat @ flat) < 1e-8:
        flat = np.array([0.0, 0.0, 1.0])
    yaw = forward_to_yaw_deg(flat)
    if not (np.all(np.isfinite(p_root)) and np.isfinite(yaw)):
        return None
    return FramePose(position=p_root, yaw_deg=yaw)


class FrameRelayPlacer:
    """Receiver-side placement for relay samples."""

    def __init__(self, root: RootFrame, blender: Optional[PoseBlender] = None,
                 spawn_if_no_data: bool = True, spawn_distance_m: float = 1.5):
        self.root = root
        self.blender = blender or PoseBlender()
        self.spawn_if_no_data = bool(spawn_if_no_data)
        self.spawn_distance_m = float(spawn_distance_m)
        # No-data spawn approaches faster than regular tracking
        self._spawn_blender = PoseBlender(0.5, 0.5)
        self.latest: Optional[FramePose] = None
        self.last_pose: Optional[LocalTargetPose] = None

    @classmethod
    def from_config(cls, cfg) -> "FrameRelayPlacer":
        return cls(
            RootFrame.from_config(cfg),
            blender=PoseBlender(float(cfg.get("POS_LERP", 0.25)), float(cfg.get("ROT_LERP", 0.25))),
            spawn_if_no_data=bool(cfg.get("RELAY_SPAWN_IF_NO_DATA", True)),
            spawn_distance_m=float(cfg.get("RELAY_SPAWN_DISTANCE_M", 1.5)),
        )

    def target_for(self, frame: FramePose) -> LocalTargetPose:
        pos = self.root.transform_point(frame.position)
        rot = self.root.rotation * euler_rotation(frame.yaw_deg, frame.pitch_deg, frame.roll_deg)
        return LocalTargetPose(pos, rot)

    def tick(self, frame: Optional[FramePose], observer: Optional[ObserverPose]) -> Optional[LocalTargetPose]:
        """
        Args:
            frame: Newest relay sample this tick, or None
            observer: Observer pose, used for the no-data spawn

        Returns:
            Displayed pose, or None when there is nothing to show yet
        """
        if frame is not None:
            self.latest = frame

        if self.latest is None:
            if not self.spawn_if_no_data or observer is None:
                return self.last_pose.copy() if self.last_pose is not None else None
            spawn = LocalTargetPose(
                observer.position + observer.forward * self.spawn_distance_m,
                look_rotation(observer.forward),
            )
            self.last_pose = self._spawn_blender.blend(self.last_pose, spawn)
            return self.last_pose.copy()

        self.last_pose = self.blender.blend(self.last_pose, self.target_for(self.latest))
        return self.last_pose.copy()
