#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Placement Debug Output

Per-tick CSV log for offline analysis of placement behaviour.

Author: geoanchor project
"""

import os
from typing import Optional

import numpy as np

from .placement import SessionState
from .types import LocalTargetPose, PoseSnapshot


class PlacementDebugLogger:
    """
    Writes ``debug_placement.csv`` with one row per tick.

    Usage:
        logger = PlacementDebugLogger(output_dir="output/", enabled=True)
        logger.log_tick(t=1.0, session=session, pose=pose, snapshot=snap)
        logger.close()
    """

    HEADER = (
        "t,tick,mode,calibrated,sample_valid,sample_age_s,sample_lat,sample_lon,sample_yaw_deg,"
        "raw_distance_m,pos_x,pos_y,pos_z,yaw_deg,filtered_y\n"
    )

    def __init__(self, output_dir: str, enabled: bool = False):
        self.output_dir = output_dir
        self.enabled = enabled
        self.placement_csv: Optional[str] = None
        self._fh = None
        if self.enabled:
            self._init_files()

    def _init_files(self):
        os.makedirs(self.output_dir, exist_ok=True)
        self.placement_csv = os.path.join(self.output_dir, "debug_placement.csv")
        self._fh = open(self.placement_csv, "w", newline="")
        self._fh.write(self.HEADER)

    def log_tick(self, t: float, session: SessionState, pose: LocalTargetPose,
                 snapshot: Optional[PoseSnapshot] = None):
        """Append one row; no-op when disabled."""
        if not self.enabled or self._fh is None:
            return
        nan = float("nan")
        sample = snapshot.sample if snapshot is not None else None
        age = snapshot.age(t) if snapshot is not None else nan
        filtered = session.smoothing.filtered_value if session.smoothing.initialized else nan
        if np.ndim(filtered) != 0:
            filtered = nan
        self._fh.write(
            f"{t:.4f},{session.ticks},{session.mode.value},{int(session.calibration is not None)},"
            f"{int(bool(snapshot is not None and snapshot.valid))},{age:.3f},"
            f"{sample.lat_deg if sample else nan:.8f},{sample.lon_deg if sample else nan:.8f},"
            f"{sample.yaw_deg if sample else nan:.2f},{session.last_distance_m:.3f},"
            f"{pose.position[0]:.4f},{pose.position[1]:.4f},{pose.position[2]:.4f},"
            f"{pose.yaw_deg:.2f},{float(filtered):.4f}\n"
        )

    def close(self):
        if self._fh is not None:
            self._fh.close()
            self._fh = None
