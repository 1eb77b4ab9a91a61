import importlib.util
import math
import sys
import unittest
from pathlib import Path
from types import SimpleNamespace
from unittest import mock

import numpy as np


def _pkg_dir() -> Path:
    return Path(__file__).resolve().parents[1]


def _load_node_module():
    script = _pkg_dir() / "scripts" / "obstacles_detection_node.py"
    spec = importlib.util.spec_from_file_location("obstacles_detection_node", str(script))
    if spec is None or spec.loader is None:
        raise RuntimeError(f"Failed to import module from: {script}")
    mod = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(mod)  # type: ignore[union-attr]
    return mod


class _FakeTfBuffer:
    def __init__(self, exc=None, tf_msg=None) -> None:
        self.exc = exc
        self.tf_msg = tf_msg
        self.calls = []

    def lookup_transform(self, target, source, stamp, timeout):
        self.calls.append((target, source, stamp, timeout))
        if self.exc is not None:
            raise self.exc
        return self.tf_msg


class _FakePublisher:
    def __init__(self, connections: int) -> None:
        self.connections = connections
        self.msgs = []

    def get_num_connections(self) -> int:
        return self.connections

    def publish(self, msg) -> None:
        self.msgs.append(msg)


class TestObstaclesDetectionNode(unittest.TestCase):
    @classmethod
    def setUpClass(cls) -> None:
        sys.path.insert(0, str(_pkg_dir()))
        try:
            import rospy  # noqa: F401
            import tf2_ros  # noqa: F401
            from sensor_msgs import point_cloud2  # noqa: F401
        except ImportError:
            raise unittest.SkipTest("ROS Python packages not available (source a ROS env to enable node tests)")
        cls.node = _load_node_module()

    def _tf_msg(self, t, q):
        return SimpleNamespace(
            transform=SimpleNamespace(
                translation=SimpleNamespace(x=t[0], y=t[1], z=t[2]),
                rotation=SimpleNamespace(x=q[0], y=q[1], z=q[2], w=q[3]),
            )
        )

    def test_transform_from_msg(self):
        s = math.sqrt(0.5)
        tf = self.node._transform_from_msg(self._tf_msg((0.0, 0.0, 1.0), (0.0, 0.0, s, s)))
        out = tf.apply(np.array([[1.0, 0.0, 0.0]], dtype=np.float32))
        self.assertTrue(np.allclose(out[0], [0.0, 1.0, 1.0], atol=1e-6))

    def test_resolver_maps_tf_errors(self):
        import rospy
        import tf2_ros
        from obstacles_detection.pipeline import TransformUnavailable

        errors = (
            tf2_ros.LookupException("frame does not exist"),
            tf2_ros.ConnectivityException("not connected"),
            tf2_ros.ExtrapolationException("extrapolation into the future"),
            tf2_ros.InvalidArgumentException("frame id must not start with '/'"),
        )
        for err in errors:
            with self.subTest(error=type(err).__name__):
                buf = _FakeTfBuffer(exc=err)
                resolver = self.node.Tf2TransformResolver(buf, wait_for_transform=True, wait_duration=1.0)
                with self.assertRaises(TransformUnavailable):
                    resolver.resolve("base_link", "/camera_link", rospy.Time(0))
                self.assertEqual(buf.calls[0][3], rospy.Duration(1.0))

    def test_resolver_does_not_wait_by_default(self):
        import rospy

        buf = _FakeTfBuffer(tf_msg=self._tf_msg((0.0, 0.0, 0.0), (0.0, 0.0, 0.0, 1.0)))
        resolver = self.node.Tf2TransformResolver(buf, wait_for_transform=False, wait_duration=1.0)
        resolver.resolve("base_link", "camera_link", rospy.Time(0))
        self.assertEqual(buf.calls[0][3], rospy.Duration(0.0))

    def test_sink_gates_on_connections(self):
        import rospy
        from obstacles_detection.cloud import PointCloud

        idle = self.node.RosCloudSink(_FakePublisher(0))
        busy_pub = _FakePublisher(2)
        busy = self.node.RosCloudSink(busy_pub)
        self.assertFalse(idle.has_consumers())
        self.assertTrue(busy.has_consumers())

        cloud = PointCloud(np.array([[1.0, 2.0, 3.0]], dtype=np.float32), "base_link", rospy.Time(5))
        busy.publish(cloud)
        msg = busy_pub.msgs[0]
        self.assertEqual(msg.header.frame_id, "base_link")
        self.assertEqual(msg.header.stamp, rospy.Time(5))
        self.assertEqual(msg.width * msg.height, 1)

    def test_cloud_msg_round_trip_skips_nans(self):
        import rospy
        from obstacles_detection.cloud import PointCloud

        pts = np.array([[1.0, 0.0, 0.0], [np.nan, 0.0, 0.0], [2.0, 1.0, -1.0]], dtype=np.float32)
        msg = self.node._to_cloud_msg(PointCloud(pts, "camera_link", rospy.Time(1)))
        xyz = self.node._cloud_to_xyz(msg)
        self.assertEqual(xyz.shape, (2, 3))
        self.assertTrue(np.all(np.isfinite(xyz)))


class _FakePipeline:
    def __init__(self, result=None, exc=None) -> None:
        self.result = result
        self.exc = exc
        self.clouds = []

    def handle(self, cloud, ground_sink, obstacles_sink):
        self.clouds.append(cloud)
        if self.exc is not None:
            raise self.exc
        return self.result


class TestNodeCallback(unittest.TestCase):
    @classmethod
    def setUpClass(cls) -> None:
        sys.path.insert(0, str(_pkg_dir()))
        try:
            import rospy  # noqa: F401
            import tf2_ros  # noqa: F401
            from sensor_msgs import point_cloud2  # noqa: F401
        except ImportError:
            raise unittest.SkipTest("ROS Python packages not available (source a ROS env to enable node tests)")
        cls.node = _load_node_module()

    def _dummy(self, pipeline, connections: int = 1):
        import rospy

        dummy = type("Dummy", (), {})()
        dummy.ground = self.node.RosCloudSink(_FakePublisher(connections))
        dummy.obstacles = self.node.RosCloudSink(_FakePublisher(connections))
        dummy.pipeline = pipeline
        dummy.log_interval = 2.0
        dummy._last_log_time = rospy.Time(0)
        return dummy

    def _msg(self):
        import rospy
        from sensor_msgs import point_cloud2 as pc2
        from std_msgs.msg import Header

        return pc2.create_cloud_xyz32(Header(frame_id="camera_link", stamp=rospy.Time(1)), [(1.0, 0.0, -1.0)])

    def _result(self, empty_input: bool = False, between_frames=0.1):
        import rospy
        from obstacles_detection.cloud import PointCloud
        from obstacles_detection.pipeline import FrameResult

        ground = PointCloud(np.array([[1.0, 0.0, -1.0]], dtype=np.float32), "base_link", rospy.Time(1))
        obstacles = PointCloud.empty("base_link", rospy.Time(1))
        if empty_input:
            ground = obstacles
        return FrameResult(
            ground=ground,
            obstacles=obstacles,
            input_size=0 if empty_input else 1,
            empty_input=empty_input,
            process_duration=0.004,
            between_frames=between_frames,
        )

    def _run(self, dummy, times: int = 1):
        import rospy

        with mock.patch.object(rospy, "logerr") as logerr, mock.patch.object(
            rospy, "loginfo"
        ) as loginfo, mock.patch.object(rospy.Time, "now", return_value=rospy.Time(10)):
            for _ in range(times):
                self.node.ObstaclesDetectionNode._callback(dummy, self._msg())
        return logerr, loginfo

    def test_no_consumers_skips_conversion_and_pipeline(self):
        pipeline = _FakePipeline(result=self._result())
        logerr, loginfo = self._run(self._dummy(pipeline, connections=0))
        self.assertEqual(pipeline.clouds, [])
        logerr.assert_not_called()
        loginfo.assert_not_called()

    def test_cloud_built_from_message(self):
        pipeline = _FakePipeline(result=self._result())
        self._run(self._dummy(pipeline))
        cloud = pipeline.clouds[0]
        self.assertEqual(cloud.frame_id, "camera_link")
        self.assertEqual(len(cloud), 1)

    def test_none_result_logs_nothing(self):
        import rospy

        dummy = self._dummy(_FakePipeline(result=None))
        logerr, loginfo = self._run(dummy)
        logerr.assert_not_called()
        loginfo.assert_not_called()
        self.assertEqual(dummy._last_log_time, rospy.Time(0))

    def test_empty_input_logs_error_only(self):
        logerr, loginfo = self._run(self._dummy(_FakePipeline(result=self._result(empty_input=True))))
        logerr.assert_called_once()
        self.assertIn("received empty point cloud", logerr.call_args[0][0])
        loginfo.assert_not_called()

    def test_transform_failure_logs_error(self):
        from obstacles_detection.pipeline import TransformUnavailable

        exc = TransformUnavailable("base_link", "camera_link", "extrapolation into the future")
        logerr, loginfo = self._run(self._dummy(_FakePipeline(exc=exc)))
        logerr.assert_called_once()
        self.assertIs(logerr.call_args[0][1], exc)
        loginfo.assert_not_called()

    def test_stats_logged_once_per_interval(self):
        import rospy

        dummy = self._dummy(_FakePipeline(result=self._result(between_frames=0.1)))
        logerr, loginfo = self._run(dummy, times=2)
        logerr.assert_not_called()
        loginfo.assert_called_once()
        args = loginfo.call_args[0]
        self.assertEqual(args[1:4], (1, 1, 0))
        self.assertAlmostEqual(args[4], 10.0)
        self.assertEqual(dummy._last_log_time, rospy.Time(10))


if __name__ == "__main__":
    unittest.main()
