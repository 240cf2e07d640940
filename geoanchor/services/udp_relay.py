"""Connectionless relay channel: rate-limited sender and non-blocking draining receiver."""

from __future__ import annotations

import logging
import socket
from typing import Any, Dict, Optional, Tuple

from ..ingest import decode_frame_datagram, encode_frame_datagram
from ..types import FramePose

logger = logging.getLogger(__name__)

MAX_DATAGRAM_BYTES = 65507


class UdpFrameReceiver:
    """Bound non-blocking socket; :meth:`drain` returns the newest valid pose."""

    def __init__(self, port: int = 5010, host: str = "0.0.0.0"):
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self.sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self.sock.bind((host, int(port)))
        self.sock.setblocking(False)
        self.stats = {"received": 0, "dropped": 0}
        logger.info("[UDP] receiver started <- %s:%d", *self.address)

    @classmethod
    def from_config(cls, cfg: Dict[str, Any]) -> "UdpFrameReceiver":
        return cls(port=int(cfg.get("UDP_LISTEN_PORT", 5010)), host=cfg.get("UDP_LISTEN_HOST", "0.0.0.0"))

    @property
    def address(self) -> Tuple[str, int]:
        return self.sock.getsockname()[:2]

    def drain(self) -> Optional[FramePose]:
        """Read every pending datagram; keep only the most recent decodable one."""
        latest = None
        while self.sock is not None:
            try:
                data, _addr = self.sock.recvfrom(MAX_DATAGRAM_BYTES)
            except BlockingIOError:
                break
            except OSError as e:
                logger.warning("[UDP] receive failed: %s", e)
                break
            frame = decode_frame_datagram(data)
            if frame is None:
                self.stats["dropped"] += 1
                continue
            self.stats["received"] += 1
            latest = frame
        return latest

    def close(self) -> None:
        if self.sock is not None:
            self.sock.close()
            self.sock = None


class UdpFrameSender:
    """Sends FramePose datagrams no faster than ``send_hz``."""

    def __init__(self, host: str, port: int = 5005, send_hz: float = 30.0, include_tilt: bool = False):
        self.target = (host, int(port))
        self.period = 1.0 / max(1.0, min(120.0, float(send_hz)))
        self.include_tilt = bool(include_tilt)
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self._next_t = float("-inf")
        self.sent = 0

    @classmethod
    def from_config(cls, cfg: Dict[str, Any]) -> "UdpFrameSender":
        return cls(
            host=cfg.get("UDP_SEND_HOST", "127.0.0.1"),
            port=int(cfg.get("UDP_SEND_PORT", 5005)),
            send_hz=float(cfg.get("UDP_SEND_HZ", 30.0)),
            include_tilt=bool(cfg.get("RELAY_INCLUDE_TILT", False)),
        )

    def maybe_send(self, frame: Optional[FramePose], now: float) -> bool:
        """Send if the rate allows; returns True when a datagram went out."""
        if frame is None or self.sock is None or now < self._next_t:
            return False
        self._next_t = now + self.period
        try:
            self.sock.sendto(encode_frame_datagram(frame, self.include_tilt), self.target)
        except OSError as e:
            logger.warning("[UDP] send failed: %s", e)
            return False
        self.sent += 1
        return True

    def close(self) -> None:
        if self.sock is not None:
            self.sock.close()
            self.sock = None
