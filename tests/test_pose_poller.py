import json
import time

import requests

from geoanchor.ingest import PoseMailbox
from geoanchor.services import PosePoller
from geoanchor.types import GeoPose


class _DummyResponse:
    def __init__(self, status_code=200, text=""):
        self.status_code = status_code
        self.text = text


class _DummySession:
    def __init__(self, responses, repeat_last=False):
        self.responses = list(responses)
        self.repeat_last = repeat_last
        self.calls = []

    def get(self, url, timeout=None):
        self.calls.append((url, timeout))
        if self.repeat_last and len(self.responses) == 1:
            r = self.responses[0]
        else:
            r = self.responses.pop(0)
        if isinstance(r, Exception):
            raise r
        return r


OK_BODY = json.dumps({"lat": 35.0, "lon": 135.0, "yaw_deg": 10.0})
NO_DATA_BODY = json.dumps({"ok": False, "reason": "no_data"})


def _poller(responses, **kwargs):
    mb = PoseMailbox()
    session = _DummySession(responses, **kwargs)
    poller = PosePoller(mb, "http://example.test:8000/", latest_path="/latest.json",
                        timeout_sec=2.0, session=session)
    return poller, mb, session


def test_fetch_ok_publishes_sample():
    poller, mb, session = _poller([_DummyResponse(200, OK_BODY)])
    assert poller.fetch_once() == "ok"
    assert session.calls == [("http://example.test:8000/latest.json", 2.0)]
    assert mb.snapshot().valid
    assert mb.snapshot().sample.yaw_deg == 10.0
    assert poller.stats["ok"] == 1


def test_timeout_keeps_previous_sample():
    poller, mb, _ = _poller([_DummyResponse(200, OK_BODY), requests.Timeout("slow")])
    poller.fetch_once()
    before = mb.snapshot()
    assert poller.fetch_once() == "transport_error"
    assert mb.snapshot() is before
    assert poller.stats["transport_errors"] == 1


def test_http_error_status_is_transport_error():
    poller, mb, _ = _poller([_DummyResponse(503, "unavailable")])
    assert poller.fetch_once() == "transport_error"
    assert not mb.snapshot().ever_received


def test_empty_and_malformed_bodies_do_not_touch_mailbox():
    poller, mb, _ = _poller([_DummyResponse(200, OK_BODY), _DummyResponse(200, ""),
                             _DummyResponse(200, "{oops")])
    poller.fetch_once()
    before = mb.snapshot()
    assert poller.fetch_once() == "empty"
    assert poller.fetch_once() == "parse_error"
    assert mb.snapshot() is before
    assert poller.stats["parse_errors"] == 2


def test_no_data_invalidates_mailbox():
    poller, mb, _ = _poller([_DummyResponse(200, OK_BODY), _DummyResponse(200, NO_DATA_BODY)])
    poller.fetch_once()
    assert poller.fetch_once() == "no_data"
    snap = mb.snapshot()
    assert snap.sample is None and snap.ever_received
    assert poller.stats["no_data"] == 1


def test_sentinel_body_is_rejected():
    body = json.dumps({"lat": 0.0, "lon": 0.0})
    poller, mb, _ = _poller([_DummyResponse(200, body)])
    assert poller.fetch_once() == "sentinel"
    assert mb.snapshot().sample is None
    assert poller.stats["rejected"] == 1


def test_background_thread_fills_mailbox_and_stops():
    mb = PoseMailbox()
    session = _DummySession([_DummyResponse(200, OK_BODY)], repeat_last=True)
    poller = PosePoller(mb, "http://example.test", interval_sec=0.01, session=session)
    poller.start()
    try:
        deadline = time.monotonic() + 2.0
        while not mb.snapshot().valid and time.monotonic() < deadline:
            time.sleep(0.01)
    finally:
        poller.stop()
    assert mb.snapshot().sample == GeoPose(35.0, 135.0, yaw_deg=10.0)
    assert not poller.running


def test_from_config_builds_url():
    cfg = {"SERVER_BASE_URL": "http://10.0.0.2:9000", "LATEST_PATH": "latest.json",
           "POLL_INTERVAL_SEC": 0.5, "REQUEST_TIMEOUT_SEC": 1.0}
    poller = PosePoller.from_config(PoseMailbox(), cfg, session=_DummySession([]))
    assert poller.url == "http://10.0.0.2:9000/latest.json"
    assert poller.interval_sec == 0.5


def test_out_of_range_number_is_a_parse_error():
    body = '{"lat": 35.0, "lon": 135.0, "yaw_deg": 1%s}' % ("0" * 400)
    poller, mb, _ = _poller([_DummyResponse(200, OK_BODY), _DummyResponse(200, body)])
    poller.fetch_once()
    before = mb.snapshot()
    assert poller.fetch_once() == "parse_error"
    assert mb.snapshot() is before


class _FlakySession:
    """Raises something unexpected once, then serves a good body."""

    def __init__(self):
        self.calls = 0

    def get(self, url, timeout=None):
        self.calls += 1
        if self.calls == 1:
            raise RuntimeError("adapter exploded")
        return _DummyResponse(200, OK_BODY)


def test_worker_survives_unexpected_errors():
    mb = PoseMailbox()
    poller = PosePoller(mb, "http://example.test", interval_sec=0.01, session=_FlakySession())
    poller.start()
    try:
        deadline = time.monotonic() + 2.0
        while not mb.snapshot().valid and time.monotonic() < deadline:
            time.sleep(0.01)
        assert poller.running
    finally:
        poller.stop()
    assert poller.stats["worker_errors"] == 1
    assert mb.snapshot().valid
