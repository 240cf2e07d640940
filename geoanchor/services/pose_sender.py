"""Periodic push of the local participant's geodetic pose to the ingest endpoint."""

from __future__ import annotations

import json
import logging
import threading
import time
from typing import Any, Callable, Dict, Optional

import requests

from ..ingest import encode_ingest_payload
from ..types import GeoPose

logger = logging.getLogger(__name__)


class PoseSender:
    """
    POSTs ``{lat, lon, alt, heading_deg, pitch_deg, roll_deg}`` every interval.

    ``source`` returns the current GeoPose or None when no fix is available
    (nothing is sent that round).
    """

    def __init__(
        self,
        source: Callable[[], Optional[GeoPose]],
        base_url: str,
        ingest_path: str = "/ar/ingest",
        token: str = "",
        interval_sec: float = 0.5,
        timeout_sec: float = 3.0,
        session: Optional[Any] = None,
    ):
        self.source = source
        self.url = base_url.rstrip("/") + "/" + ingest_path.lstrip("/")
        self.token = token or ""
        self.interval_sec = max(0.05, float(interval_sec))
        self.timeout_sec = max(0.1, float(timeout_sec))
        self.session = session if session is not None else requests.Session()

        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.stats = {"sent": 0, "failed": 0, "skipped": 0, "worker_errors": 0}

    @classmethod
    def from_config(cls, source, cfg: Dict[str, Any], session: Optional[Any] = None) -> "PoseSender":
        return cls(
            source,
            base_url=cfg["SERVER_BASE_URL"],
            ingest_path=cfg.get("INGEST_PATH", "/ar/ingest"),
            token=cfg.get("AUTH_TOKEN", ""),
            interval_sec=float(cfg.get("SEND_INTERVAL_SEC", 0.5)),
            timeout_sec=float(cfg.get("REQUEST_TIMEOUT_SEC", 3.0)),
            session=session,
        )

    def headers(self) -> Dict[str, str]:
        h = {"Content-Type": "application/json"}
        if self.token:
            h["Authorization"] = "Bearer " + self.token
        return h

    def send_once(self, geo: Optional[GeoPose] = None) -> bool:
        """Send one sample (from ``source`` when not given). Returns True on 2xx."""
        if geo is None:
            geo = self.source()
        if geo is None or not geo.is_valid():
            self.stats["skipped"] += 1
            return False

        body = json.dumps(encode_ingest_payload(geo))
        try:
            resp = self.session.post(self.url, data=body, headers=self.headers(), timeout=self.timeout_sec)
        except requests.RequestException as e:
            self.stats["failed"] += 1
            logger.warning("[Sender] POST failed: %s", e)
            return False

        if not (200 <= int(resp.status_code) < 300):
            self.stats["failed"] += 1
            logger.warning("[Sender] POST failed: %s body=%s", resp.status_code, getattr(resp, "text", ""))
            return False

        self.stats["sent"] += 1
        logger.debug("[Sender] ok %s json=%s", resp.status_code, body)
        return True

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._worker_loop, name="pose-sender", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        t = self._thread
        if t is not None:
            t.join(timeout=self.timeout_sec + 1.5)
        self._thread = None

    def _worker_loop(self) -> None:
        while not self._stop.is_set():
            t0 = time.monotonic()
            try:
                self.send_once()
            except Exception as e:
                self.stats["worker_errors"] += 1
                logger.exception("[Sender] Unexpected error, continuing: %s", e)
            self._stop.wait(max(0.0, self.interval_sec - (time.monotonic() - t0)))
