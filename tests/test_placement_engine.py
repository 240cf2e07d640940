import numpy as np
import pytest

from geoanchor.config import default_config
from geoanchor.ingest import PoseMailbox
from geoanchor.math_utils import yaw_rotation
from geoanchor.placement import (
    PlacementEngine,
    PlacementMode,
    PlacementSettings,
    estimate_target_geo,
)
from geoanchor.projection import METERS_PER_DEG_LAT
from geoanchor.types import GeoPose, ObserverPose, PoseSnapshot
from geoanchor.vertical import CallableSurfaceProbe


ORIGIN = GeoPose(lat_deg=35.0, lon_deg=135.0)


def _engine(yaw_frame="geodetic", **overrides):
    cfg = default_config(yaw_frame=yaw_frame, POS_LERP=1.0, ROT_LERP=1.0)
    cfg.update(overrides)
    return PlacementEngine.from_config(cfg)


def _observer(yaw_deg=0.0, geo=ORIGIN, heading_deg=0.0, position=(0.0, 1.6, 0.0)):
    return ObserverPose(position=np.array(position), rotation=yaw_rotation(yaw_deg),
                        geo=geo, heading_deg=heading_deg)


def _north_of_origin(meters, yaw_deg=0.0):
    return GeoPose(lat_deg=ORIGIN.lat_deg + meters / METERS_PER_DEG_LAT, lon_deg=ORIGIN.lon_deg,
                   yaw_deg=yaw_deg)


def test_missing_yaw_frame_is_rejected():
    with pytest.raises(ValueError):
        PlacementSettings.from_config(default_config())


def test_no_data_ever_stays_degraded_in_front_of_observer():
    engine = _engine()
    session = engine.new_session()
    mailbox = PoseMailbox()
    obs = _observer()
    for k in range(100):
        pose = engine.tick(session, mailbox.snapshot(), obs, now=k * 0.016)
        assert session.mode is PlacementMode.DEGRADED
        assert np.allclose(pose.position, [0.0, 1.6, 1.0])
        assert not np.allclose(pose.position, 0.0)
    assert not session.calibrator.is_calibrated


def test_geo_sample_is_clamped_to_max_distance():
    engine = _engine()
    session = engine.new_session()
    sample = GeoPose(lat_deg=35.0009, lon_deg=135.0, yaw_deg=0.0)

    pose = engine.tick(session, sample, _observer(), now=0.0)

    assert session.mode is PlacementMode.GEO
    assert session.last_distance_m == pytest.approx(100.2, abs=1.0)
    assert np.allclose(pose.position, [0.0, 1.6, 30.0], atol=1e-6)
    assert pose.yaw_deg == pytest.approx(0.0, abs=1e-6)


def test_pending_calibration_holds_previous_pose():
    engine = _engine()
    session = engine.new_session()
    no_fix = _observer(geo=None)
    sample = _north_of_origin(10.0)

    first = engine.tick(session, sample, no_fix, now=0.0)
    assert session.mode is PlacementMode.PENDING
    assert np.allclose(first.position, [0.0, 1.6, 1.0])

    moved = _observer(geo=None, position=(5.0, 1.6, 5.0))
    second = engine.tick(session, sample, moved, now=0.1)
    assert session.mode is PlacementMode.PENDING
    assert np.allclose(second.position, first.position)


def test_pending_fallback_degraded_follows_observer():
    engine = _engine(PENDING_FALLBACK="degraded")
    session = engine.new_session()
    sample = _north_of_origin(10.0)
    engine.tick(session, sample, _observer(geo=None), now=0.0)
    pose = engine.tick(session, sample, _observer(geo=None, position=(5.0, 1.6, 5.0)), now=0.1)
    assert session.mode is PlacementMode.PENDING
    assert np.allclose(pose.position, [5.0, 1.6, 6.0])


def test_sentinel_sample_never_becomes_active():
    engine = _engine()
    session = engine.new_session()
    obs = _observer()
    good = engine.tick(session, _north_of_origin(10.0), obs, now=0.0)
    assert session.mode is PlacementMode.GEO

    pose = engine.tick(session, GeoPose(0.0, 0.0), obs, now=0.1)
    assert session.mode is PlacementMode.HOLD
    assert np.allclose(pose.position, good.position)

    mailbox = PoseMailbox()
    assert not mailbox.publish(GeoPose(0.0, 0.0), now=0.2)
    assert engine.active_sample(session, mailbox.snapshot(), 0.2) is None


def test_stale_snapshot_is_held():
    engine = _engine(STALE_AFTER_SEC=5.0)
    session = engine.new_session()
    obs = _observer()
    snap = PoseSnapshot(sample=_north_of_origin(10.0), received_at=0.5, valid=True,
                        reason="ok", ever_received=True)
    fresh = engine.tick(session, snap, obs, now=1.0)
    assert session.mode is PlacementMode.GEO

    held = engine.tick(session, snap, _observer(position=(3.0, 1.6, 3.0)), now=100.0)
    assert session.mode is PlacementMode.HOLD
    assert np.allclose(held.position, fresh.position)


def test_staleness_check_can_be_disabled():
    engine = _engine(STALE_AFTER_SEC=0.0)
    session = engine.new_session()
    snap = PoseSnapshot(sample=_north_of_origin(10.0), received_at=0.0, valid=True,
                        reason="ok", ever_received=True)
    engine.tick(session, snap, _observer(), now=1000.0)
    assert session.mode is PlacementMode.GEO


def test_invalidated_mailbox_keeps_session_out_of_degraded():
    engine = _engine()
    session = engine.new_session()
    mailbox = PoseMailbox()
    obs = _observer()
    mailbox.publish(_north_of_origin(10.0), now=0.0)
    engine.tick(session, mailbox.snapshot(), obs, now=0.0)
    mailbox.invalidate("no_data", now=0.1)
    engine.tick(session, mailbox.snapshot(), obs, now=0.2)
    assert session.mode is PlacementMode.HOLD


def test_geodetic_yaw_is_rotated_by_calibration_offset():
    engine = _engine("geodetic")
    session = engine.new_session()
    # Observer looks along local +X while facing north -> offset 90
    obs = _observer(yaw_deg=90.0, heading_deg=0.0)
    pose = engine.tick(session, _north_of_origin(10.0, yaw_deg=10.0), obs, now=0.0)
    assert session.calibration.rotation_offset_deg == pytest.approx(90.0)
    assert np.allclose(pose.position, [10.0, 1.6, 0.0], atol=1e-6)
    assert pose.yaw_deg == pytest.approx(100.0, abs=1e-6)


def test_local_yaw_is_used_as_is():
    engine = _engine("local")
    session = engine.new_session()
    obs = _observer(yaw_deg=90.0, heading_deg=0.0)
    pose = engine.tick(session, _north_of_origin(10.0, yaw_deg=10.0), obs, now=0.0)
    assert pose.yaw_deg == pytest.approx(10.0, abs=1e-6)


def test_yaw_offset_is_added():
    engine = _engine("local", YAW_OFFSET_DEG=15.0)
    session = engine.new_session()
    pose = engine.tick(session, _north_of_origin(10.0, yaw_deg=10.0), _observer(), now=0.0)
    assert pose.yaw_deg == pytest.approx(25.0, abs=1e-6)


def test_always_visible_forces_degraded_with_sample_yaw():
    engine = _engine(DEGRADED_ALWAYS_VISIBLE=True)
    session = engine.new_session()
    pose = engine.tick(session, _north_of_origin(10.0, yaw_deg=45.0), _observer(), now=0.0)
    assert session.mode is PlacementMode.DEGRADED
    assert np.allclose(pose.position, [0.0, 1.6, 1.0])
    assert pose.yaw_deg == pytest.approx(45.0, abs=1e-6)
    assert not session.calibrator.is_calibrated


def test_degraded_can_face_observer_direction():
    engine = _engine(DEGRADED_ALWAYS_VISIBLE=True, DEGRADED_USE_SAMPLE_YAW=False, DEGRADED_STANDOFF_M=2.0)
    session = engine.new_session()
    pose = engine.tick(session, _north_of_origin(10.0, yaw_deg=45.0), _observer(yaw_deg=90.0), now=0.0)
    assert np.allclose(pose.position, [2.0, 1.6, 0.0], atol=1e-9)
    assert pose.yaw_deg == pytest.approx(90.0, abs=1e-6)


def test_blending_moves_part_way_toward_candidate():
    cfg = default_config(yaw_frame="geodetic", POS_LERP=0.5, ROT_LERP=0.5)
    engine = PlacementEngine.from_config(cfg)
    session = engine.new_session()
    obs = _observer()
    first = engine.tick(session, None, obs, now=0.0)
    assert np.allclose(first.position, [0.0, 1.6, 1.0])

    second = engine.tick(session, _north_of_origin(100.0), obs, now=0.016)
    assert np.allclose(second.position, [0.0, 1.6, 15.5], atol=1e-6)


def test_returned_pose_is_a_copy():
    engine = _engine()
    session = engine.new_session()
    pose = engine.tick(session, None, _observer(), now=0.0)
    pose.position[:] = 99.0
    assert np.allclose(session.last_pose.position, [0.0, 1.6, 1.0])


def test_new_session_starts_clean():
    engine = _engine()
    session = engine.new_session()
    engine.tick(session, _north_of_origin(10.0), _observer(), now=0.0)
    fresh = engine.new_session()
    assert fresh.calibration is None
    assert fresh.last_pose is None
    assert not fresh.ever_received


def test_estimate_target_geo_recovers_sample():
    engine = _engine()
    session = engine.new_session()
    sample = GeoPose(lat_deg=35.00005, lon_deg=135.00007)
    engine.tick(session, sample, _observer(yaw_deg=30.0, heading_deg=75.0), now=0.0)
    lat, lon = estimate_target_geo(session)
    assert lat == pytest.approx(sample.lat_deg, abs=1e-9)
    assert lon == pytest.approx(sample.lon_deg, abs=1e-9)


def test_estimate_target_geo_needs_calibration():
    engine = _engine()
    session = engine.new_session()
    engine.tick(session, None, _observer(), now=0.0)
    assert estimate_target_geo(session) is None


def _ground_engine(heights):
    probe = CallableSurfaceProbe(lambda x, z: heights.pop(0))
    cfg = default_config(yaw_frame="geodetic", POS_LERP=1.0, ROT_LERP=1.0,
                         VERTICAL_MODE="ground_surface", SMOOTHING_TAU_SEC=0.1,
                         SMOOTHING_MAX_STEP_M=0.5)
    return PlacementEngine.from_config(cfg, probe=probe)


def test_ground_surface_mode_needs_a_probe():
    cfg = default_config(yaw_frame="geodetic", VERTICAL_MODE="ground_surface")
    with pytest.raises(ValueError):
        PlacementEngine.from_config(cfg)


def test_ground_surface_height_is_smoothed_across_ticks():
    # steady, steady, outlier, miss, back to steady
    engine = _ground_engine([0.2, 0.2, 5.0, None, 0.2])
    session = engine.new_session()
    obs = _observer()
    sample = _north_of_origin(10.0)

    ys = []
    for k in range(5):
        pose = engine.tick(session, sample, obs, now=float(k))
        assert session.mode is PlacementMode.GEO
        ys.append(pose.position[1])

    assert ys[0] == pytest.approx(0.2)
    assert ys[1] == pytest.approx(0.2)
    # Outlier moves the displayed height by at most the step limit
    assert 0.6 < ys[2] <= 0.7 + 1e-9
    # Miss keeps the last smoothed height
    assert ys[3] == pytest.approx(ys[2])
    assert ys[4] == pytest.approx(0.2, abs=1e-3)
    assert session.smoothing.initialized


def test_ground_surface_miss_before_any_hit_uses_snapshot_height():
    engine = _ground_engine([None])
    session = engine.new_session()
    pose = engine.tick(session, _north_of_origin(10.0), _observer(), now=0.0)
    assert session.mode is PlacementMode.GEO
    assert pose.position[1] == pytest.approx(1.6)
