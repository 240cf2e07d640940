"""Origin calibration: one-shot mapping from a geodetic reference to the local frame."""

from __future__ import annotations

import logging
import math
import threading
from enum import Enum
from typing import Optional

import numpy as np

from .math_utils import forward_to_yaw_deg, wrap_360
from .types import CalibrationFrame, GeoPose

logger = logging.getLogger(__name__)


class HeadingSource(str, Enum):
    """Where the reference heading at calibration time comes from."""

    # Compass true heading reported alongside the reference fix
    TRUE_HEADING = "true_heading"
    # Observer's forward direction is taken as north (self-consistent, not geodetic)
    OBSERVER_FORWARD = "observer_forward"


class OriginCalibrator:
    """
    Captures the CalibrationFrame once per session.

    ``calibrate`` returns None (pending) until a valid reference fix is
    available, and returns the stored frame unchanged on every call after
    the first success. The Pending -> Set transition happens under a lock so
    attempts may run from a different thread than the tick.
    """

    def __init__(self, heading_source: HeadingSource | str):
        self.heading_source = HeadingSource(heading_source)
        self._lock = threading.Lock()
        self._frame: Optional[CalibrationFrame] = None
        self.attempts = 0
        self.last_pending_reason = ""

    @property
    def frame(self) -> Optional[CalibrationFrame]:
        return self._frame

    @property
    def is_calibrated(self) -> bool:
        return self._frame is not None

    def calibrate(
        self,
        observer_position: np.ndarray,
        observer_forward: np.ndarray,
        reference_geo: Optional[GeoPose],
        reference_heading_deg: Optional[float] = None,
    ) -> Optional[CalibrationFrame]:
        """
        Attempt calibration.

        Args:
            observer_position: Observer's local position (becomes the anchor)
            observer_forward: Observer's local forward vector
            reference_geo: Observer's geodetic fix at this moment
            reference_heading_deg: True heading (north = 0), used with TRUE_HEADING

        Returns:
            The CalibrationFrame, or None while pending
        """
        frame = self._frame
        if frame is not None:
            return frame

        with self._lock:
            if self._frame is not None:
                return self._frame
            self.attempts += 1

            if reference_geo is None or not reference_geo.is_valid():
                return self._pending("no valid reference fix")

            local_yaw = forward_to_yaw_deg(observer_forward)
            if self.heading_source is HeadingSource.TRUE_HEADING:
                if reference_heading_deg is None or not math.isfinite(float(reference_heading_deg)):
                    return self._pending("no true heading reading")
                ref_heading = float(reference_heading_deg)
            else:
                ref_heading = 0.0

            pos = np.asarray(observer_position, dtype=float).reshape(3,)
            self._frame = CalibrationFrame(
                origin_lat_deg=float(reference_geo.lat_deg),
                origin_lon_deg=float(reference_geo.lon_deg),
                origin_position=pos,
                rotation_offset_deg=wrap_360(local_yaw - ref_heading),
                reference_height=float(pos[1]),
                heading_source=self.heading_source.value,
            )
            self.last_pending_reason = ""

        logger.info(
            "[Calib] Geo origin set lat=%.7f lon=%.7f rot_offset=%.2f deg (%s, %d attempts)",
            self._frame.origin_lat_deg,
            self._frame.origin_lon_deg,
            self._frame.rotation_offset_deg,
            self._frame.heading_source,
            self.attempts,
        )
        return self._frame

    def _pending(self, reason: str) -> None:
        if reason != self.last_pending_reason:
            logger.debug("[Calib] Pending: %s", reason)
        self.last_pending_reason = reason
        return None

    def reset(self) -> None:
        """Drop the frame (explicit session reset only)."""
        with self._lock:
            self._frame = None
            self.attempts = 0
            self.last_pending_reason = ""
