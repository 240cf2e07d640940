#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Temporal Smoothing Module
=========================

Two different smoothers live here:

TemporalSmoother
    Jump-limited one-pole low-pass filter for scalar or vector signals.
    Each update first clamps the incoming sample to within ``max_step`` of
    the current filtered value, then blends with a time-constant based
    factor:

        dt    = max(now - t_last, min_dt)
        alpha = 1 - exp(-dt / tau)
        x     = x + alpha * (clamp(z) - x)

    A single outlier (e.g. a misdetected ground hit) moves the output by at
    most ``max_step``; a persistent change is tracked within roughly tau.

PoseBlender
    Per-tick exponential approach of the displayed pose toward the target
    pose (lerp for position, slerp for rotation). Damps visible jitter from
    sample noise; it is not tied to wall-clock time unless a reference tick
    rate is configured.

Author: geoanchor project
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional, Union

import numpy as np

from .math_utils import frame_rate_factor, lerp, slerp_rotation
from .types import LocalTargetPose

Signal = Union[float, np.ndarray]


@dataclass
class SmoothingState:
    """Filter memory. Only TemporalSmoother mutates it."""

    filtered_value: Optional[Signal] = None
    last_update_t: Optional[float] = None
    initialized: bool = False

    def reset(self) -> None:
        self.filtered_value = None
        self.last_update_t = None
        self.initialized = False


class TemporalSmoother:
    """Jump-limited exponential low-pass filter."""

    def __init__(self, tau_sec: float, max_step: float, min_dt: float = 1e-3,
                 state: Optional[SmoothingState] = None):
        if not tau_sec > 0.0:
            raise ValueError(f"tau_sec must be > 0, got {tau_sec!r}")
        if not max_step > 0.0:
            raise ValueError(f"max_step must be > 0, got {max_step!r}")
        self.tau_sec = float(tau_sec)
        self.max_step = float(max_step)
        self.min_dt = max(1e-9, float(min_dt))
        self.state = state if state is not None else SmoothingState()

    @property
    def value(self) -> Optional[Signal]:
        return self.state.filtered_value if self.state.initialized else None

    def update(self, measured: Signal, now: float) -> Signal:
        """Feed one sample into this smoother's own state."""
        return self.apply(self.state, measured, now)

    def apply(self, state: SmoothingState, measured: Signal, now: float) -> Signal:
        """
        Feed one sample into ``state`` using this smoother's parameters.

        Args:
            state: Filter memory to update in place
            measured: New sample (float or array)
            now: Sample time in seconds

        Returns:
            The new filtered value (same kind as ``measured``)
        """
        is_scalar = np.ndim(measured) == 0
        z = float(measured) if is_scalar else np.asarray(measured, dtype=float).copy()

        if not state.initialized:
            state.filtered_value = z
            state.last_update_t = float(now)
            state.initialized = True
            return z

        x = state.filtered_value
        delta = z - x
        mag = abs(delta) if is_scalar else float(np.linalg.norm(delta))
        if mag > self.max_step:
            z = x + delta * (self.max_step / mag)

        dt = max(float(now) - float(state.last_update_t), self.min_dt)
        alpha = 1.0 - math.exp(-dt / self.tau_sec)
        filtered = x + (z - x) * alpha

        state.filtered_value = float(filtered) if is_scalar else filtered
        state.last_update_t = float(now)
        return state.filtered_value

    def reset(self) -> None:
        self.state.reset()


class PoseBlender:
    """Blends the previously displayed pose toward a candidate pose."""

    def __init__(self, position_factor: float = 0.25, rotation_factor: float = 0.25,
                 reference_hz: Optional[float] = None):
        self.position_factor = float(np.clip(position_factor, 0.0, 1.0))
        self.rotation_factor = float(np.clip(rotation_factor, 0.0, 1.0))
        self.reference_hz = float(reference_hz) if reference_hz else None

    def factors(self, dt: Optional[float] = None):
        if self.reference_hz is None or dt is None:
            return self.position_factor, self.rotation_factor
        return (
            frame_rate_factor(self.position_factor, dt, self.reference_hz),
            frame_rate_factor(self.rotation_factor, dt, self.reference_hz),
        )

    def blend(self, previous: Optional[LocalTargetPose], candidate: LocalTargetPose,
              dt: Optional[float] = None) -> LocalTargetPose:
        """First pose snaps to the candidate; later ones approach it."""
        if previous is None:
            return candidate.copy()
        pos_f, rot_f = self.factors(dt)
        return LocalTargetPose(
            position=lerp(previous.position, candidate.position, pos_f),
            rotation=slerp_rotation(previous.rotation, candidate.rotation, rot_f),
        )
