#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Placement Engine
================

Per-tick orchestration turning the latest remote sample plus the observer's
pose into a target pose for the remote participant's proxy.

Tick algorithm (priority order):
--------------------------------
1. Forced always-visible, or no remote data ever received
   -> DEGRADED: fixed standoff ahead of the observer
2. Not calibrated -> attempt calibration; while pending
   -> PENDING: hold previous pose (or degraded placement)
3. Calibrated with a live, valid, fresh sample
   -> GEO: project -> align -> clamp -> resolve Y, yaw + offset
   Calibrated without a usable sample
   -> HOLD: previous pose unchanged
4. Blend previous displayed pose toward the candidate (PoseBlender)

Session state (calibration, height filter memory, last pose) lives in a
SessionState owned by the caller; the engine itself only holds settings and
strategies, so one engine can drive any number of sessions.

Author: geoanchor project
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Union

import numpy as np

from .calibration import HeadingSource, OriginCalibrator
from .math_utils import yaw_rotation
from .projection import align_to_frame, clamp_range, project_geodetic, unproject_geodetic
from .smoothing import PoseBlender, SmoothingState, TemporalSmoother
from .types import CalibrationFrame, GeoPose, LocalTargetPose, ObserverPose, PoseSnapshot
from .vertical import AnchorCorrection, SurfaceProbe, VerticalContext, VerticalResolver

logger = logging.getLogger(__name__)


class YawFrame(str, Enum):
    """What the remote sample's yaw is relative to."""

    # True north = 0; re-expressed through the calibration rotation
    GEODETIC = "geodetic"
    # Already a local-frame yaw; used as is
    LOCAL = "local"


class PendingFallback(str, Enum):
    HOLD = "hold"
    DEGRADED = "degraded"


class PlacementMode(str, Enum):
    DEGRADED = "degraded"
    PENDING = "pending"
    HOLD = "hold"
    GEO = "geo"


@dataclass
class SessionState:
    """Everything that changes during one session."""

    calibrator: OriginCalibrator
    smoothing: SmoothingState = field(default_factory=SmoothingState)
    last_pose: Optional[LocalTargetPose] = None
    start_height: Optional[float] = None
    last_tick_t: Optional[float] = None
    ever_received: bool = False
    ticks: int = 0
    mode: PlacementMode = PlacementMode.DEGRADED
    last_distance_m: float = float("nan")

    @property
    def calibration(self) -> Optional[CalibrationFrame]:
        return self.calibrator.frame

    @property
    def snapshot_height(self) -> Optional[float]:
        frame = self.calibrator.frame
        if frame is not None:
            return frame.reference_height
        return self.start_height


@dataclass(frozen=True)
class PlacementSettings:
    """Engine-level options, read from the flat config dict."""

    max_distance_m: float = 30.0
    yaw_offset_deg: float = 0.0
    yaw_frame: YawFrame = YawFrame.GEODETIC
    heading_source: HeadingSource = HeadingSource.TRUE_HEADING
    pending_fallback: PendingFallback = PendingFallback.HOLD
    always_visible: bool = False
    standoff_m: float = 1.0
    use_sample_yaw: bool = True
    stale_after_sec: float = 5.0

    @classmethod
    def from_config(cls, cfg: Dict[str, Any]) -> "PlacementSettings":
        if cfg.get("YAW_FRAME") is None:
            raise ValueError("YAW_FRAME must be set explicitly ('geodetic' or 'local')")
        return cls(
            max_distance_m=float(cfg["MAX_DISTANCE_M"]),
            yaw_offset_deg=float(cfg.get("YAW_OFFSET_DEG", 0.0)),
            yaw_frame=YawFrame(cfg["YAW_FRAME"]),
            heading_source=HeadingSource(cfg.get("HEADING_SOURCE", "true_heading")),
            pending_fallback=PendingFallback(cfg.get("PENDING_FALLBACK", "hold")),
            always_visible=bool(cfg.get("DEGRADED_ALWAYS_VISIBLE", False)),
            standoff_m=float(cfg.get("DEGRADED_STANDOFF_M", 1.0)),
            use_sample_yaw=bool(cfg.get("DEGRADED_USE_SAMPLE_YAW", True)),
            stale_after_sec=float(cfg.get("STALE_AFTER_SEC", 5.0) or 0.0),
        )


SampleInput = Union[PoseSnapshot, GeoPose, None]


class PlacementEngine:
    """Computes the proxy's target pose every tick."""

    def __init__(self, settings: PlacementSettings, resolver: VerticalResolver,
                 blender: Optional[PoseBlender] = None):
        if not settings.max_distance_m > 0.0:
            raise ValueError(f"max_distance_m must be > 0, got {settings.max_distance_m!r}")
        self.settings = settings
        self.resolver = resolver
        self.blender = blender or PoseBlender()

    @classmethod
    def from_config(cls, cfg: Dict[str, Any], probe: Optional[SurfaceProbe] = None,
                    anchor: Optional[AnchorCorrection] = None) -> "PlacementEngine":
        settings = PlacementSettings.from_config(cfg)
        smoother = TemporalSmoother(
            tau_sec=float(cfg.get("SMOOTHING_TAU_SEC", 0.25)),
            max_step=float(cfg.get("SMOOTHING_MAX_STEP_M", 0.5)),
        )
        resolver = VerticalResolver(
            mode=cfg.get("VERTICAL_MODE", "snapshot_reference"),
            fixed_y=float(cfg.get("VERTICAL_FIXED_Y", 0.0)),
            y_offset_m=float(cfg.get("VERTICAL_Y_OFFSET_M", 0.0)),
            extra_offset_m=float(cfg.get("VERTICAL_EXTRA_OFFSET_M", 0.0)),
            smoother=smoother,
            probe=probe,
            ray_start_height_m=float(cfg.get("RAY_START_HEIGHT_M", 5.0)),
            ray_max_distance_m=float(cfg.get("RAY_MAX_DISTANCE_M", 50.0)),
            foot_offset_m=float(cfg.get("FOOT_OFFSET_M", 0.0)),
            anchor=anchor if cfg.get("VERTICAL_ALIGN_ANCHOR", True) else None,
        )
        blender = PoseBlender(
            position_factor=float(cfg.get("POS_LERP", 0.25)),
            rotation_factor=float(cfg.get("ROT_LERP", 0.25)),
            reference_hz=cfg.get("BLEND_REFERENCE_HZ"),
        )
        return cls(settings, resolver, blender)

    def new_session(self) -> SessionState:
        return SessionState(calibrator=OriginCalibrator(self.settings.heading_source))

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    def tick(self, session: SessionState, latest: SampleInput, observer: ObserverPose,
             now: Optional[float] = None) -> LocalTargetPose:
        """
        Advance one tick.

        Args:
            session: Session state, updated in place
            latest: Mailbox snapshot, a bare sample, or None for "no data"
            observer: Observer's current pose (and optional own fix/heading)
            now: Tick time in seconds (monotonic); defaults to time.monotonic()

        Returns:
            The pose to display this tick
        """
        t = time.monotonic() if now is None else float(now)
        dt = None if session.last_tick_t is None else max(0.0, t - session.last_tick_t)
        session.last_tick_t = t
        session.ticks += 1
        if session.start_height is None:
            session.start_height = observer.height

        sample = self.active_sample(session, latest, t)
        cfg = self.settings

        if cfg.always_visible or not session.ever_received:
            return self._commit(session, PlacementMode.DEGRADED,
                                self._degraded_candidate(session, sample, observer, t), dt)

        if not session.calibrator.is_calibrated:
            frame = session.calibrator.calibrate(
                observer.position, observer.forward, observer.geo, observer.heading_deg
            )
            if frame is None:
                if session.last_pose is not None and cfg.pending_fallback is PendingFallback.HOLD:
                    return self._hold(session, PlacementMode.PENDING)
                return self._commit(session, PlacementMode.PENDING,
                                    self._degraded_candidate(session, sample, observer, t), dt)

        if sample is None:
            if session.last_pose is not None:
                return self._hold(session, PlacementMode.HOLD)
            return self._commit(session, PlacementMode.HOLD,
                                self._degraded_candidate(session, sample, observer, t), dt)

        candidate = self._geo_candidate(session, sample, observer, t)
        if candidate is None:
            return self._commit(session, PlacementMode.DEGRADED,
                                self._degraded_candidate(session, sample, observer, t), dt)
        return self._commit(session, PlacementMode.GEO, candidate, dt)

    def active_sample(self, session: SessionState, latest: SampleInput, now: float) -> Optional[GeoPose]:
        """The sample usable this tick, or None (absent, invalid, sentinel or stale)."""
        if isinstance(latest, PoseSnapshot):
            if latest.ever_received:
                session.ever_received = True
            if not latest.valid or latest.sample is None:
                return None
            stale = self.settings.stale_after_sec
            if stale > 0.0 and latest.age(now) > stale:
                return None
            sample = latest.sample
        else:
            sample = latest
        if sample is None or not sample.is_valid():
            return None
        session.ever_received = True
        return sample

    # ------------------------------------------------------------------
    # Candidates
    # ------------------------------------------------------------------

    def _degraded_candidate(self, session: SessionState, sample: Optional[GeoPose],
                            observer: ObserverPose, now: float) -> LocalTargetPose:
        pos = observer.position + observer.forward * self.settings.standoff_m
        y = self.resolver.resolve_y(self._vertical_context(session, pos, observer, now))
        if y is not None:
            pos[1] = y

        if sample is not None and self.settings.use_sample_yaw:
            rot = yaw_rotation(sample.yaw_deg + self.settings.yaw_offset_deg)
        else:
            rot = observer.rotation
        return LocalTargetPose(pos, rot)

    def _geo_candidate(self, session: SessionState, sample: GeoPose,
                       observer: ObserverPose, now: float) -> Optional[LocalTargetPose]:
        frame = session.calibration
        en = project_geodetic(frame.origin_lat_deg, frame.origin_lon_deg, sample.lat_deg, sample.lon_deg)
        offset = align_to_frame(en, frame.rotation_offset_deg)
        session.last_distance_m = float(np.linalg.norm(offset))
        offset = clamp_range(offset, self.settings.max_distance_m)

        pos = frame.origin_position + offset
        y = self.resolver.resolve_y(self._vertical_context(session, pos, observer, now))
        if y is None:
            return None
        pos[1] = y

        yaw = sample.yaw_deg + self.settings.yaw_offset_deg
        if self.settings.yaw_frame is YawFrame.GEODETIC:
            rot = frame.rotation * yaw_rotation(yaw)
        else:
            rot = yaw_rotation(yaw)
        return LocalTargetPose(pos, rot)

    def _vertical_context(self, session: SessionState, candidate: np.ndarray,
                          observer: ObserverPose, now: float) -> VerticalContext:
        return VerticalContext(
            candidate=candidate,
            observer_height=observer.height,
            snapshot_height=session.snapshot_height,
            smoothing=session.smoothing,
            now=now,
        )

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def _commit(self, session: SessionState, mode: PlacementMode,
                candidate: LocalTargetPose, dt: Optional[float]) -> LocalTargetPose:
        if mode is not session.mode:
            logger.debug("[Placement] mode %s -> %s", session.mode.value, mode.value)
        session.mode = mode
        pose = self.blender.blend(session.last_pose, candidate, dt)
        session.last_pose = pose
        return pose.copy()

    def _hold(self, session: SessionState, mode: PlacementMode) -> LocalTargetPose:
        session.mode = mode
        return session.last_pose.copy()


def estimate_target_geo(session: SessionState) -> Optional[tuple]:
    """Geodetic coordinate of the current displayed pose (None before calibration)."""
    frame = session.calibration
    pose = session.last_pose
    if frame is None or pose is None:
        return None
    local = pose.position - frame.origin_position
    local[1] = 0.0
    en_local = frame.rotation.inv().apply(local)
    lat, lon = unproject_geodetic(frame.origin_lat_deg, frame.origin_lon_deg, en_local[0], en_local[2])
    if not (math.isfinite(lat) and math.isfinite(lon)):
        return None
    return lat, lon
