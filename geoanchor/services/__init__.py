"""Background I/O services feeding the placement engine."""

from .pose_poller import PosePoller
from .pose_sender import PoseSender
from .udp_relay import UdpFrameReceiver, UdpFrameSender

__all__ = [
    "PosePoller",
    "PoseSender",
    "UdpFrameReceiver",
    "UdpFrameSender",
]
