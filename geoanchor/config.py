#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Placement Configuration Module
==============================

Handles YAML configuration loading for the geodetic placement pipeline.

Configuration Structure:
------------------------
The YAML config file contains:
- server: pull/push endpoints, poll interval, timeout, staleness, token
- udp: relay channel addresses and send rate
- placement: max distance, yaw offset and yaw frame, heading source,
  pending behaviour, blend factors
- degraded: always-visible toggle, standoff distance, sample-yaw use
- vertical: height policy and its parameters (fixed value, smoothing,
  ground probe ray)
- relay: shared root frame and no-data spawn
- debug: per-tick CSV output

Everything is flattened to UPPER_CASE keys, e.g.
``placement.max_distance_m`` -> ``MAX_DISTANCE_M``.

``placement.yaw_frame`` has no default. Whether the remote yaw is
north-relative or local-frame-relative cannot be inferred from the data,
so a config that does not say is rejected.

Author: geoanchor project
"""

import os
from typing import Any, Dict, Optional

import numpy as np
import yaml


YAW_FRAMES = ("geodetic", "local")
HEADING_SOURCES = ("true_heading", "observer_forward")
PENDING_FALLBACKS = ("hold", "degraded")
VERTICAL_MODES = ("fixed", "live_reference", "snapshot_reference", "ground_surface")
SOURCE_MODES = ("http", "udp")


def load_config(config_path: str) -> Dict[str, Any]:
    """
    Load YAML configuration file and convert to flat key format.

    Args:
        config_path: Path to YAML configuration file

    Returns:
        Validated flat configuration dictionary

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If config file is malformed
        ValueError: If a value is missing or out of range

    Example:
        >>> config = load_config("configs/config_default.yaml")
        >>> print(f"Max distance: {config['MAX_DISTANCE_M']:.1f} m")
    """
    if not os.path.exists(config_path):
        raise FileNotFoundError(f"Config file not found: {config_path}")
    with open(config_path, "r") as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"Config root must be a mapping: {config_path}")
    config = build_config(raw)
    validate_config(config)
    return config


def build_config(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Flatten a nested config mapping, filling per-key defaults."""
    result: Dict[str, Any] = {}

    # ========================================
    # Server (pull + push)
    # ========================================
    srv = raw.get("server", {}) or {}
    result["SERVER_BASE_URL"] = srv.get("base_url", "http://127.0.0.1:8000")
    result["LATEST_PATH"] = srv.get("latest_path", "/latest.json")
    result["INGEST_PATH"] = srv.get("ingest_path", "/ar/ingest")
    result["POLL_INTERVAL_SEC"] = float(srv.get("poll_interval_sec", 0.2))
    result["REQUEST_TIMEOUT_SEC"] = float(srv.get("timeout_sec", 3.0))
    result["STALE_AFTER_SEC"] = float(srv.get("stale_after_sec", 5.0) or 0.0)
    result["AUTH_TOKEN"] = str(srv.get("token", "") or "")
    result["SEND_INTERVAL_SEC"] = float(srv.get("send_interval_sec", 0.5))
    result["SOURCE_MODE"] = srv.get("source_mode", "http")

    # ========================================
    # UDP relay channel
    # ========================================
    udp = raw.get("udp", {}) or {}
    result["UDP_LISTEN_HOST"] = udp.get("listen_host", "0.0.0.0")
    result["UDP_LISTEN_PORT"] = int(udp.get("listen_port", 5010))
    result["UDP_SEND_HOST"] = udp.get("send_host", "127.0.0.1")
    result["UDP_SEND_PORT"] = int(udp.get("send_port", 5005))
    result["UDP_SEND_ENABLED"] = bool(udp.get("send_enabled", False))
    result["UDP_SEND_HZ"] = float(udp.get("send_hz", 30.0))

    # ========================================
    # Placement
    # ========================================
    plc = raw.get("placement", {}) or {}
    result["MAX_DISTANCE_M"] = float(plc.get("max_distance_m", 30.0))
    result["YAW_OFFSET_DEG"] = float(plc.get("yaw_offset_deg", 0.0))
    result["YAW_FRAME"] = plc.get("yaw_frame")  # required, no default
    result["HEADING_SOURCE"] = plc.get("heading_source", "true_heading")
    result["PENDING_FALLBACK"] = plc.get("pending_fallback", "hold")
    result["POS_LERP"] = float(plc.get("pos_lerp", 0.25))
    result["ROT_LERP"] = float(plc.get("rot_lerp", 0.25))
    ref_hz = plc.get("blend_reference_hz")
    result["BLEND_REFERENCE_HZ"] = float(ref_hz) if ref_hz else None

    # ========================================
    # Degraded placement
    # ========================================
    deg = raw.get("degraded", {}) or {}
    result["DEGRADED_ALWAYS_VISIBLE"] = bool(deg.get("always_visible", False))
    result["DEGRADED_STANDOFF_M"] = float(deg.get("standoff_m", 1.0))
    result["DEGRADED_USE_SAMPLE_YAW"] = bool(deg.get("use_sample_yaw", True))

    # ========================================
    # Vertical resolution
    # ========================================
    vert = raw.get("vertical", {}) or {}
    result["VERTICAL_MODE"] = vert.get("mode", "snapshot_reference")
    result["VERTICAL_FIXED_Y"] = float(vert.get("fixed_y", 0.0))
    result["VERTICAL_Y_OFFSET_M"] = float(vert.get("y_offset_m", 0.0))
    result["VERTICAL_EXTRA_OFFSET_M"] = float(vert.get("extra_offset_m", 0.0))
    result["VERTICAL_ALIGN_ANCHOR"] = bool(vert.get("align_anchor", True))
    result["SMOOTHING_TAU_SEC"] = float(vert.get("smoothing_tau_sec", 0.25))
    result["SMOOTHING_MAX_STEP_M"] = float(vert.get("smoothing_max_step_m", 0.5))
    result["RAY_START_HEIGHT_M"] = float(vert.get("ray_start_height_m", 5.0))
    result["RAY_MAX_DISTANCE_M"] = float(vert.get("ray_max_distance_m", 50.0))
    result["FOOT_OFFSET_M"] = float(vert.get("foot_offset_m", 0.0))

    # ========================================
    # Relay root frame
    # ========================================
    rel = raw.get("relay", {}) or {}
    result["RELAY_ROOT_POSITION"] = np.asarray(rel.get("root_position", [0.0, 0.0, 0.0]), dtype=float)
    result["RELAY_ROOT_YAW_DEG"] = float(rel.get("root_yaw_deg", 0.0))
    result["RELAY_ROOT_SCALE"] = float(rel.get("root_scale", 1.0))
    result["RELAY_SPAWN_IF_NO_DATA"] = bool(rel.get("spawn_if_no_data", True))
    result["RELAY_SPAWN_DISTANCE_M"] = float(rel.get("spawn_distance_m", 1.5))
    result["RELAY_INCLUDE_TILT"] = bool(rel.get("include_tilt", False))

    # ========================================
    # Debug output
    # ========================================
    dbg = raw.get("debug", {}) or {}
    result["SAVE_DEBUG_DATA"] = bool(dbg.get("save_debug_data", False))
    result["OUTPUT_DIR"] = dbg.get("output_dir", "output")

    return result


def default_config(yaw_frame: Optional[str] = None, **overrides: Any) -> Dict[str, Any]:
    """
    Flat defaults, optionally with ``yaw_frame`` and UPPER_CASE overrides.

    Not validated: without ``yaw_frame`` the result is rejected by
    :func:`validate_config`.
    """
    config = build_config({"placement": {"yaw_frame": yaw_frame}})
    config.update(overrides)
    return config


def _check_choice(config: Dict[str, Any], key: str, choices) -> None:
    if config.get(key) not in choices:
        raise ValueError(f"{key} must be one of {list(choices)}, got {config.get(key)!r}")


def _check_positive(config: Dict[str, Any], key: str) -> None:
    val = config.get(key)
    if val is None or not np.isfinite(val) or not val > 0.0:
        raise ValueError(f"{key} must be > 0, got {val!r}")


def validate_config(config: Dict[str, Any]) -> None:
    """
    Raise ValueError for any invalid setting.

    Runs once at startup; nothing downstream re-validates.
    """
    if config.get("YAW_FRAME") is None:
        raise ValueError(
            "placement.yaw_frame must be set explicitly: 'geodetic' if the remote yaw is "
            "north-relative, 'local' if it is already in the local frame"
        )
    _check_choice(config, "YAW_FRAME", YAW_FRAMES)
    _check_choice(config, "HEADING_SOURCE", HEADING_SOURCES)
    _check_choice(config, "PENDING_FALLBACK", PENDING_FALLBACKS)
    _check_choice(config, "VERTICAL_MODE", VERTICAL_MODES)
    _check_choice(config, "SOURCE_MODE", SOURCE_MODES)

    for key in ("MAX_DISTANCE_M", "POLL_INTERVAL_SEC", "REQUEST_TIMEOUT_SEC", "SEND_INTERVAL_SEC",
                "SMOOTHING_TAU_SEC", "SMOOTHING_MAX_STEP_M", "UDP_SEND_HZ", "RELAY_ROOT_SCALE"):
        _check_positive(config, key)

    for key in ("POS_LERP", "ROT_LERP"):
        if not 0.0 <= float(config[key]) <= 1.0:
            raise ValueError(f"{key} must be in [0, 1], got {config[key]!r}")

    for key in ("STALE_AFTER_SEC", "DEGRADED_STANDOFF_M", "RAY_START_HEIGHT_M", "RAY_MAX_DISTANCE_M"):
        if float(config[key]) < 0.0:
            raise ValueError(f"{key} must be >= 0, got {config[key]!r}")

    if config.get("BLEND_REFERENCE_HZ") is not None:
        _check_positive(config, "BLEND_REFERENCE_HZ")

    if np.asarray(config["RELAY_ROOT_POSITION"]).shape != (3,):
        raise ValueError(f"relay.root_position must have 3 elements, got {config['RELAY_ROOT_POSITION']!r}")
