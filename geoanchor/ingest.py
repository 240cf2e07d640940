#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Pose Ingestion
==============

Wire shapes and the single-slot handoff between the producer (poller,
push handler) and the tick consumer.

Pull response (GET /latest.json), data-bearing:
    {"ts": "...", "yaw_deg": 12.5, "pos": {"x":..,"y":..,"z":..},
     "lat": 35.0, "lon": 135.0, "alt": 40.2, "calibrated": true,
     "calib_method": "...", "calib_scale": 1.0, "calib_theta_deg": 0.0}
Pull response, no data:
    {"ok": false, "reason": "no_data"}
Push payload (POST /ar/ingest):
    {"lat", "lon", "alt", "heading_deg", "pitch_deg", "roll_deg"}
Relay datagram:
    {"pos": {"x","y","z"}, "yaw_deg"[, "pitch_deg", "roll_deg"]}

Author: geoanchor project
"""

from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

import numpy as np

from .types import FramePose, GeoPose, PoseSnapshot, RemoteRecord

logger = logging.getLogger(__name__)


# =============================================================================
# Decoding
# =============================================================================

@dataclass(frozen=True)
class DecodeResult:
    """Outcome of decoding one pull response body."""

    status: str  # ok | no_data | sentinel | invalid | empty | parse_error
    record: Optional[RemoteRecord] = None
    reason: str = ""

    @property
    def sample(self) -> Optional[GeoPose]:
        return self.record.to_geo_pose() if self.record is not None else None


def _looks_like_no_data(text: str) -> bool:
    return '"ok"' in text and '"reason"' in text


def _float(obj: Dict[str, Any], key: str, default: Optional[float] = None) -> Optional[float]:
    val = obj.get(key, default)
    if val is None:
        return default
    return float(val)


def _pos(obj: Any) -> Optional[np.ndarray]:
    """Lenient x/y/z decode; None for anything that is not three finite numbers."""
    if not isinstance(obj, dict):
        return None
    try:
        pos = np.array([float(obj.get("x", 0.0)), float(obj.get("y", 0.0)), float(obj.get("z", 0.0))])
    except (TypeError, ValueError, OverflowError):
        return None
    return pos if np.all(np.isfinite(pos)) else None


def decode_latest(text: Union[str, bytes, None]) -> DecodeResult:
    """
    Decode a pull response body.

    Never raises: every failure is reported through ``status``.
    """
    if isinstance(text, bytes):
        text = text.decode("utf-8", errors="replace")
    body = (text or "").strip()
    if not body:
        return DecodeResult("empty", reason="Empty response")

    try:
        obj = json.loads(body)
    except (ValueError, RecursionError) as e:
        return DecodeResult("parse_error", reason=f"JSON parse failed: {e}")
    if not isinstance(obj, dict):
        return DecodeResult("parse_error", reason=f"Unexpected JSON type: {type(obj).__name__}")

    if _looks_like_no_data(body) and obj.get("ok") is False:
        return DecodeResult("no_data", reason=f"no_data: {obj.get('reason', '')}")

    if "lat" not in obj or "lon" not in obj:
        return DecodeResult("invalid", reason="Missing lat/lon")

    try:
        record = RemoteRecord(
            lat=float(obj["lat"]),
            lon=float(obj["lon"]),
            yaw_deg=_float(obj, "yaw_deg", 0.0),
            alt=_float(obj, "alt"),
            timestamp=obj.get("ts", obj.get("timestamp")),
            pos=_pos(obj.get("pos")),
            calibrated=bool(obj.get("calibrated", False)),
            calib_method=str(obj.get("calib_method") or ""),
            calib_scale=_float(obj, "calib_scale", 1.0),
            calib_theta_deg=_float(obj, "calib_theta_deg", 0.0),
        )
    except (TypeError, ValueError, OverflowError) as e:
        return DecodeResult("parse_error", reason=f"Bad field value: {e}")

    geo = record.to_geo_pose()
    if geo.is_sentinel():
        return DecodeResult("sentinel", reason="Suspicious lat/lon (0,0). Ignored.")
    if not geo.is_valid():
        return DecodeResult("invalid", reason=f"Invalid lat/lon/yaw ({record.lat}, {record.lon}, {record.yaw_deg})")
    return DecodeResult("ok", record=record, reason="ok")


def encode_ingest_payload(geo: GeoPose, heading_deg: Optional[float] = None) -> Dict[str, float]:
    """Push payload; heading defaults to the pose's yaw."""
    return {
        "lat": float(geo.lat_deg),
        "lon": float(geo.lon_deg),
        "alt": float(geo.alt_m) if geo.alt_m is not None else 0.0,
        "heading_deg": float(geo.yaw_deg if heading_deg is None else heading_deg),
        "pitch_deg": float(geo.pitch_deg),
        "roll_deg": float(geo.roll_deg),
    }


def decode_frame_datagram(data: bytes) -> Optional[FramePose]:
    """Decode a relay datagram; None when it is not a usable pose."""
    try:
        obj = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, ValueError, RecursionError):
        return None
    if not isinstance(obj, dict):
        return None
    try:
        pos = _pos(obj.get("pos"))
        if pos is None:
            return None
        frame = FramePose(
            position=pos,
            yaw_deg=float(obj.get("yaw_deg", 0.0)),
            pitch_deg=float(obj.get("pitch_deg", 0.0)),
            roll_deg=float(obj.get("roll_deg", 0.0)),
        )
    except (TypeError, ValueError, OverflowError):
        return None
    if not (np.all(np.isfinite(frame.position)) and np.isfinite(frame.yaw_deg)):
        return None
    return frame


def encode_frame_datagram(frame: FramePose, include_tilt: bool = False) -> bytes:
    return json.dumps(frame.to_payload(include_tilt), separators=(",", ":")).encode("utf-8")


# =============================================================================
# Single-slot handoff
# =============================================================================

class PoseMailbox:
    """
    Most-recent-sample slot shared by one producer and one consumer.

    Writers replace an immutable PoseSnapshot under a lock; the reader takes
    the current snapshot reference and never waits on the producer.
    """

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._lock = threading.Lock()
        self._snapshot = PoseSnapshot()
        self.stats = {"published": 0, "rejected": 0, "invalidated": 0}

    def publish(self, sample: Optional[GeoPose], now: Optional[float] = None) -> bool:
        """
        Make ``sample`` the active sample.

        Sentinel and invalid samples are not stored; they invalidate the slot.

        Returns:
            True if the sample became active
        """
        t = self._clock() if now is None else float(now)
        if sample is None or not sample.is_valid():
            reason = "sentinel" if (sample is not None and sample.is_sentinel()) else "invalid"
            with self._lock:
                self.stats["rejected"] += 1
            self.invalidate(reason, now=t)
            return False
        with self._lock:
            self._snapshot = PoseSnapshot(sample=sample, received_at=t, valid=True,
                                          reason="ok", ever_received=True)
            self.stats["published"] += 1
        return True

    def invalidate(self, reason: str, now: Optional[float] = None) -> None:
        """Drop the active sample (no-data signal, sentinel); ``ever_received`` is kept."""
        t = self._clock() if now is None else float(now)
        with self._lock:
            prev = self._snapshot
            self._snapshot = PoseSnapshot(sample=None, received_at=t, valid=False,
                                          reason=str(reason), ever_received=prev.ever_received)
            self.stats["invalidated"] += 1

    def apply(self, result: DecodeResult, now: Optional[float] = None) -> bool:
        """
        Route a decode result into the slot.

        Transport/parse failures leave the slot untouched; no_data, sentinel
        and invalid payloads invalidate it.
        """
        if result.status == "ok":
            return self.publish(result.sample, now=now)
        if result.status in ("no_data", "sentinel", "invalid"):
            self.invalidate(result.status, now=now)
        return False

    def snapshot(self) -> PoseSnapshot:
        with self._lock:
            return self._snapshot

    def clear(self) -> None:
        with self._lock:
            self._snapshot = PoseSnapshot()
