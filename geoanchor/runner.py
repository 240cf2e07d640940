"""
PlacerRunner: one placement session wired to its data source.

HTTP source:  PosePoller -> PoseMailbox -> PlacementEngine.tick
UDP source:   UdpFrameReceiver.drain -> FrameRelayPlacer.tick
              observer -> frame_pose_from_observer -> UdpFrameSender (if enabled)
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Optional

from .ingest import PoseMailbox
from .output_utils import PlacementDebugLogger
from .placement import PlacementEngine, SessionState
from .relay import FrameRelayPlacer, frame_pose_from_observer
from .services import PosePoller, PoseSender, UdpFrameReceiver, UdpFrameSender
from .types import GeoPose, LocalTargetPose, ObserverPose
from .vertical import AnchorCorrection, SurfaceProbe

logger = logging.getLogger(__name__)


class PlacerRunner:
    """Owns mailbox, services and session state for one placement session."""

    def __init__(
        self,
        config: Dict[str, Any],
        probe: Optional[SurfaceProbe] = None,
        anchor: Optional[AnchorCorrection] = None,
        pose_source: Optional[Callable[[], Optional[GeoPose]]] = None,
        http_session: Optional[Any] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        # Mailbox arrival stamps and tick times share this clock
        self.clock = clock
        self.source_mode = config.get("SOURCE_MODE", "http")
        self.mailbox = PoseMailbox(clock=clock)
        self.engine = PlacementEngine.from_config(config, probe=probe, anchor=anchor)
        self.session: SessionState = self.engine.new_session()

        self.poller: Optional[PosePoller] = None
        self.sender: Optional[PoseSender] = None
        self.udp: Optional[UdpFrameReceiver] = None
        self.udp_sender: Optional[UdpFrameSender] = None
        self.relay: Optional[FrameRelayPlacer] = None

        if self.source_mode == "udp":
            self.relay = FrameRelayPlacer.from_config(config)
        else:
            self.poller = PosePoller.from_config(self.mailbox, config, session=http_session)
        if pose_source is not None:
            self.sender = PoseSender.from_config(pose_source, config, session=http_session)

        self.debug = PlacementDebugLogger(config.get("OUTPUT_DIR", "output"),
                                          enabled=bool(config.get("SAVE_DEBUG_DATA", False)))

    def start(self) -> None:
        if self.poller is not None:
            self.poller.start()
        if self.sender is not None:
            self.sender.start()
        if self.source_mode == "udp" and self.udp is None:
            self.udp = UdpFrameReceiver.from_config(self.config)
            if self.config.get("UDP_SEND_ENABLED", False):
                self.udp_sender = UdpFrameSender.from_config(self.config)
        logger.info("[Runner] started (source=%s)", self.source_mode)

    def stop(self) -> None:
        """Stop background work; nothing in flight carries over to a new session."""
        if self.poller is not None:
            self.poller.stop()
        if self.sender is not None:
            self.sender.stop()
        if self.udp is not None:
            self.udp.close()
            self.udp = None
        if self.udp_sender is not None:
            self.udp_sender.close()
            self.udp_sender = None
        self.debug.close()
        logger.info("[Runner] stopped after %d ticks", self.session.ticks)

    def reset(self) -> None:
        """Start a fresh session: calibration, filter memory and last pose are dropped."""
        self.session = self.engine.new_session()
        self.mailbox.clear()
        if self.relay is not None:
            self.relay = FrameRelayPlacer.from_config(self.config)

    def tick(self, observer: ObserverPose, now: Optional[float] = None) -> Optional[LocalTargetPose]:
        """
        Advance one tick.

        ``now`` must be on the runner's clock (the one stamping mailbox arrivals),
        otherwise staleness compares unrelated time bases. Defaults to ``clock()``.
        """
        t = self.clock() if now is None else float(now)
        if self.relay is not None:
            if self.udp_sender is not None:
                self.udp_sender.maybe_send(frame_pose_from_observer(self.relay.root, observer), t)
            frame = self.udp.drain() if self.udp is not None else None
            return self.relay.tick(frame, observer)

        snapshot = self.mailbox.snapshot()
        pose = self.engine.tick(self.session, snapshot, observer, now=t)
        self.debug.log_tick(t, self.session, pose, snapshot)
        return pose

    def __enter__(self) -> "PlacerRunner":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()
