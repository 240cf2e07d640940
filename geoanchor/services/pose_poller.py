#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Background pull of the latest remote sample into the mailbox.

The tick never waits on this:
- one worker thread round-trips GET <base_url>/latest.json every interval
- each result is decoded and routed into the PoseMailbox
- transport/parse failures leave the mailbox untouched
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Dict, Optional

import requests

from ..ingest import DecodeResult, PoseMailbox, decode_latest

logger = logging.getLogger(__name__)


class PosePoller:
    """Periodically fetches the latest sample and publishes it to a mailbox."""

    def __init__(
        self,
        mailbox: PoseMailbox,
        base_url: str,
        latest_path: str = "/latest.json",
        interval_sec: float = 0.2,
        timeout_sec: float = 3.0,
        session: Optional[Any] = None,
    ):
        self.mailbox = mailbox
        self.url = base_url.rstrip("/") + "/" + latest_path.lstrip("/")
        self.interval_sec = max(0.01, float(interval_sec))
        self.timeout_sec = max(0.1, float(timeout_sec))
        self.session = session if session is not None else requests.Session()

        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._failing = False

        self.last_status = "idle"
        self.last_message = ""
        self.last_fetch_t: Optional[float] = None
        self.stats: Dict[str, int] = {
            "fetches": 0,
            "ok": 0,
            "no_data": 0,
            "rejected": 0,
            "transport_errors": 0,
            "parse_errors": 0,
            "worker_errors": 0,
        }

    @classmethod
    def from_config(cls, mailbox: PoseMailbox, cfg: Dict[str, Any], session: Optional[Any] = None) -> "PosePoller":
        return cls(
            mailbox,
            base_url=cfg["SERVER_BASE_URL"],
            latest_path=cfg.get("LATEST_PATH", "/latest.json"),
            interval_sec=float(cfg.get("POLL_INTERVAL_SEC", 0.2)),
            timeout_sec=float(cfg.get("REQUEST_TIMEOUT_SEC", 3.0)),
            session=session,
        )

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._worker_loop, name="pose-poller", daemon=True)
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
                self.fetch_once()
            except Exception as e:
                self.stats["worker_errors"] += 1
                logger.exception("[Poller] Unexpected error, continuing: %s", e)
            sleep_s = max(0.0, self.interval_sec - (time.monotonic() - t0))
            # Event.wait so stop() interrupts the sleep
            self._stop.wait(sleep_s)

    def fetch_once(self) -> str:
        """
        One round trip.

        Returns:
            Decode status (ok, no_data, sentinel, invalid, empty, parse_error)
            or "transport_error"
        """
        self.stats["fetches"] += 1
        self.last_fetch_t = time.monotonic()
        try:
            resp = self.session.get(self.url, timeout=self.timeout_sec)
        except requests.RequestException as e:
            self.stats["transport_errors"] += 1
            return self._fail("transport_error", f"Fetch failed: {e}")

        if not (200 <= int(resp.status_code) < 300):
            self.stats["transport_errors"] += 1
            return self._fail("transport_error", f"Fetch failed: HTTP {resp.status_code}")

        result = decode_latest(resp.text)
        self.mailbox.apply(result)
        return self._record(result)

    def _record(self, result: DecodeResult) -> str:
        status = result.status
        if status == "ok":
            self.stats["ok"] += 1
            if self._failing:
                logger.info("[Poller] Recovered: %s", self.url)
            self._failing = False
            self.last_status, self.last_message = status, "ok"
            return status
        if status == "no_data":
            self.stats["no_data"] += 1
            self._failing = False
            self.last_status, self.last_message = status, result.reason
            return status
        if status in ("sentinel", "invalid"):
            self.stats["rejected"] += 1
        else:
            self.stats["parse_errors"] += 1
        return self._fail(status, result.reason)

    def _fail(self, status: str, message: str) -> str:
        if not self._failing or status != self.last_status:
            logger.warning("[Poller] %s", message)
        else:
            logger.debug("[Poller] %s", message)
        self._failing = True
        self.last_status, self.last_message = status, message
        return status
