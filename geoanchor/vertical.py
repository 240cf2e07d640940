"""
Vertical coordinate resolution.

The horizontal position comes from geodesy; the local height never does
(altitude is ignored). Instead one of four policies picks it:

- FIXED:              constant ``fixed_y``
- LIVE_REFERENCE:     observer's current height, every call
- SNAPSHOT_REFERENCE: observer's height captured at calibration
- GROUND_SURFACE:     downward probe at the candidate position, smoothed

Non-ground modes may subtract a cached anchor-to-root height so that e.g. an
articulated figure's head, not its root, lands at the reference height.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

import numpy as np

from .smoothing import SmoothingState, TemporalSmoother

logger = logging.getLogger(__name__)

MIN_ANCHOR_HEIGHT_M = 0.01


class VerticalMode(str, Enum):
    FIXED = "fixed"
    LIVE_REFERENCE = "live_reference"
    SNAPSHOT_REFERENCE = "snapshot_reference"
    GROUND_SURFACE = "ground_surface"


# =============================================================================
# Surface probes
# =============================================================================

class SurfaceProbe:
    """Collaborator that casts a ray straight down and reports the hit height."""

    def probe_down(self, origin: np.ndarray, max_distance: float) -> Optional[float]:
        """
        Args:
            origin: Ray start in the local frame
            max_distance: Ray length

        Returns:
            Height (local Y) of the first hit, or None for no hit
        """
        raise NotImplementedError


class FlatGroundProbe(SurfaceProbe):
    """Infinite horizontal plane at ``ground_y``."""

    def __init__(self, ground_y: float = 0.0):
        self.ground_y = float(ground_y)

    def probe_down(self, origin, max_distance):
        drop = float(origin[1]) - self.ground_y
        if drop < 0.0 or drop > float(max_distance):
            return None
        return self.ground_y


class CallableSurfaceProbe(SurfaceProbe):
    """Adapts ``fn(x, z) -> Optional[height]`` (e.g. a terrain lookup) to a probe."""

    def __init__(self, fn: Callable[[float, float], Optional[float]]):
        self.fn = fn

    def probe_down(self, origin, max_distance):
        h = self.fn(float(origin[0]), float(origin[2]))
        if h is None or not np.isfinite(h):
            return None
        drop = float(origin[1]) - float(h)
        if drop < 0.0 or drop > float(max_distance):
            return None
        return float(h)


# =============================================================================
# Anchor correction
# =============================================================================

@dataclass(frozen=True)
class AnchorCorrection:
    """Cached vertical distance from the representation's root to its anchor feature."""

    root_to_anchor_m: float = 0.0

    @classmethod
    def from_heights(cls, anchor_y: float, root_y: float) -> Optional["AnchorCorrection"]:
        """Measure once from a freshly spawned representation; tiny offsets are ignored."""
        d = float(anchor_y) - float(root_y)
        if d > MIN_ANCHOR_HEIGHT_M:
            return cls(root_to_anchor_m=d)
        return None

    def apply(self, reference_y: float) -> float:
        return float(reference_y) - self.root_to_anchor_m


# =============================================================================
# Resolver
# =============================================================================

@dataclass
class VerticalContext:
    """Per-call inputs of :meth:`VerticalResolver.resolve_y`."""

    candidate: np.ndarray
    observer_height: float
    snapshot_height: Optional[float]
    smoothing: SmoothingState
    now: float


class VerticalResolver:
    """Selects the local height of the target under the configured policy."""

    def __init__(
        self,
        mode: VerticalMode | str = VerticalMode.SNAPSHOT_REFERENCE,
        fixed_y: float = 0.0,
        y_offset_m: float = 0.0,
        extra_offset_m: float = 0.0,
        smoother: Optional[TemporalSmoother] = None,
        probe: Optional[SurfaceProbe] = None,
        ray_start_height_m: float = 5.0,
        ray_max_distance_m: float = 50.0,
        foot_offset_m: float = 0.0,
        anchor: Optional[AnchorCorrection] = None,
    ):
        self.mode = VerticalMode(mode)
        self.fixed_y = float(fixed_y)
        self.y_offset_m = float(y_offset_m)
        self.extra_offset_m = float(extra_offset_m)
        self.smoother = smoother or TemporalSmoother(tau_sec=0.25, max_step=0.5)
        self.probe = probe
        self.ray_start_height_m = float(ray_start_height_m)
        self.ray_max_distance_m = float(ray_max_distance_m)
        self.foot_offset_m = float(foot_offset_m)
        self.anchor = anchor
        if self.mode is VerticalMode.GROUND_SURFACE and self.probe is None:
            raise ValueError("ground_surface vertical mode needs a surface probe")

    def resolve_y(self, ctx: VerticalContext) -> Optional[float]:
        """
        Returns:
            Local height, or None when no geometry at all is available
            (ground mode with no hit, no prior smoothed value and no snapshot)
        """
        if self.mode is VerticalMode.GROUND_SURFACE:
            return self._resolve_ground(ctx)

        if self.mode is VerticalMode.FIXED:
            base = self.fixed_y
        elif self.mode is VerticalMode.LIVE_REFERENCE:
            base = float(ctx.observer_height)
        else:
            base = float(ctx.snapshot_height) if ctx.snapshot_height is not None else float(ctx.observer_height)

        if self.anchor is not None:
            base = self.anchor.apply(base)
        return base + self.y_offset_m + self.extra_offset_m

    def _resolve_ground(self, ctx: VerticalContext) -> Optional[float]:
        ref = ctx.snapshot_height if ctx.snapshot_height is not None else ctx.observer_height
        origin = np.asarray(ctx.candidate, dtype=float).reshape(3,).copy()
        origin[1] = float(ref) + self.ray_start_height_m
        hit = self.probe.probe_down(origin, self.ray_start_height_m + self.ray_max_distance_m)

        if hit is not None:
            y = self.smoother.apply(ctx.smoothing, float(hit) + self.foot_offset_m, ctx.now)
            return float(y) + self.y_offset_m

        if ctx.smoothing.initialized:
            return float(ctx.smoothing.filtered_value) + self.y_offset_m
        if ctx.snapshot_height is not None:
            logger.debug("[Vertical] Probe missed with no history, using snapshot height")
            return float(ctx.snapshot_height) + self.y_offset_m
        return None
