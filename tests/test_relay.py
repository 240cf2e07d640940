import numpy as np
import pytest

from geoanchor.config import default_config
from geoanchor.math_utils import yaw_rotation
from geoanchor.relay import FrameRelayPlacer, RootFrame, frame_pose_from_observer
from geoanchor.smoothing import PoseBlender
from geoanchor.types import FramePose, ObserverPose


def test_root_frame_transforms_points():
    root = RootFrame(position=np.array([10.0, 0.0, 0.0]), rotation=yaw_rotation(90.0))
    assert np.allclose(root.transform_point([0.0, 0.0, 1.0]), [11.0, 0.0, 0.0])
    p = np.array([3.0, 1.0, -2.0])
    assert np.allclose(root.inverse_transform_point(root.transform_point(p)), p)


def test_root_frame_scale():
    root = RootFrame(scale=2.0)
    assert np.allclose(root.transform_point([1.0, 1.0, 1.0]), [2.0, 2.0, 2.0])
    with pytest.raises(ValueError):
        RootFrame(scale=0.0)


def test_frame_pose_from_observer_is_root_relative():
    root = RootFrame(position=np.array([10.0, 0.0, 0.0]), rotation=yaw_rotation(90.0))
    obs = ObserverPose(position=np.array([11.0, 1.6, 0.0]), rotation=yaw_rotation(90.0))
    frame = frame_pose_from_observer(root, obs)
    assert np.allclose(frame.position, [0.0, 1.6, 1.0], atol=1e-9)
    assert frame.yaw_deg == pytest.approx(0.0, abs=1e-6)


def test_sender_and_receiver_agree_through_shared_root():
    root = RootFrame(position=np.array([-4.0, 0.0, 7.0]), rotation=yaw_rotation(30.0))
    obs = ObserverPose(position=np.array([2.0, 1.7, 3.0]), rotation=yaw_rotation(200.0))
    placer = FrameRelayPlacer(root, blender=PoseBlender(1.0, 1.0))
    pose = placer.tick(frame_pose_from_observer(root, obs), None)
    assert np.allclose(pose.position, obs.position, atol=1e-9)
    assert pose.yaw_deg % 360.0 == pytest.approx(200.0, abs=1e-6)


def test_no_data_spawns_in_front_of_observer():
    placer = FrameRelayPlacer(RootFrame(), spawn_distance_m=1.5)
    obs = ObserverPose(position=np.array([0.0, 1.6, 0.0]))
    pose = placer.tick(None, obs)
    assert np.allclose(pose.position, [0.0, 1.6, 1.5])


def test_no_data_without_spawn_shows_nothing():
    placer = FrameRelayPlacer(RootFrame(), spawn_if_no_data=False)
    assert placer.tick(None, ObserverPose(position=np.zeros(3))) is None


def test_last_frame_is_reused_between_datagrams():
    placer = FrameRelayPlacer(RootFrame(), blender=PoseBlender(0.5, 0.5))
    placer.tick(FramePose(position=np.zeros(3), yaw_deg=0.0), None)
    placer.tick(FramePose(position=np.array([2.0, 0.0, 0.0]), yaw_deg=0.0), None)
    pose = placer.tick(None, None)
    assert np.allclose(pose.position, [1.5, 0.0, 0.0])


def test_from_config_reads_root():
    cfg = default_config(yaw_frame="local", RELAY_ROOT_POSITION=np.array([1.0, 2.0, 3.0]),
                         RELAY_ROOT_YAW_DEG=90.0, RELAY_SPAWN_DISTANCE_M=2.5)
    placer = FrameRelayPlacer.from_config(cfg)
    assert np.allclose(placer.root.position, [1.0, 2.0, 3.0])
    assert placer.spawn_distance_m == 2.5
