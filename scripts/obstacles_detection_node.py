#!/usr/bin/env python3
"""ROS1 (rospy) ground/obstacle segmentation of a depth or stereo point cloud.

Input:
  - cloud (sensor_msgs/PointCloud2), any frame resolvable to ~frame_id via TF

Outputs (only built when someone subscribes):
  - ground (sensor_msgs/PointCloud2) in ~frame_id
  - obstacles (sensor_msgs/PointCloud2) in ~frame_id

An empty input cloud still produces one (empty) message per active output so
downstream cloud aggregators never wait on a frame.
"""

from __future__ import annotations

import threading
import time

import numpy as np

if not hasattr(threading.Thread, "isAlive"):
    setattr(threading.Thread, "isAlive", threading.Thread.is_alive)

import rospy
import tf2_ros
from sensor_msgs import point_cloud2 as pc2
from sensor_msgs.msg import PointCloud2
from std_msgs.msg import Header

from obstacles_detection.cloud import PointCloud
from obstacles_detection.params import read_params
from obstacles_detection.pipeline import ObstaclesDetection, TransformUnavailable
from obstacles_detection.transforms import RigidTransform


def _cloud_to_xyz(msg: PointCloud2) -> np.ndarray:
    points = list(pc2.read_points(msg, field_names=("x", "y", "z"), skip_nans=True))
    if not points:
        return np.empty((0, 3), dtype=np.float32)
    return np.asarray(points, dtype=np.float32)


def _to_cloud_msg(cloud: PointCloud) -> PointCloud2:
    header = Header()
    header.stamp = cloud.stamp
    header.frame_id = cloud.frame_id
    return pc2.create_cloud_xyz32(header, cloud.points.tolist())


def _transform_from_msg(tf_msg) -> RigidTransform:
    t = tf_msg.transform.translation
    q = tf_msg.transform.rotation
    return RigidTransform.from_quaternion((t.x, t.y, t.z), (q.x, q.y, q.z, q.w))


class Tf2TransformResolver:
    def __init__(self, tf_buffer: tf2_ros.Buffer, wait_for_transform: bool, wait_duration: float) -> None:
        self._tf_buffer = tf_buffer
        self.timeout = rospy.Duration(float(wait_duration) if wait_for_transform else 0.0)

    def resolve(self, target_frame: str, source_frame: str, stamp: rospy.Time) -> RigidTransform:
        try:
            tf_msg = self._tf_buffer.lookup_transform(target_frame, source_frame, stamp, self.timeout)
        except tf2_ros.TransformException as exc:
            raise TransformUnavailable(target_frame, source_frame, str(exc)) from exc
        return _transform_from_msg(tf_msg)


class RosCloudSink:
    def __init__(self, pub: rospy.Publisher) -> None:
        self.pub = pub

    def has_consumers(self) -> bool:
        return self.pub.get_num_connections() > 0

    def publish(self, cloud: PointCloud) -> None:
        self.pub.publish(_to_cloud_msg(cloud))


class ObstaclesDetectionNode:
    def __init__(self) -> None:
        self.params = read_params(rospy.get_param)
        self.queue_size = int(rospy.get_param("~queue_size", 1))
        self.log_interval = float(rospy.get_param("~log_interval", 2.0))

        self._tf_buffer = tf2_ros.Buffer(rospy.Duration(30.0))
        self._tf_listener = tf2_ros.TransformListener(self._tf_buffer)
        resolver = Tf2TransformResolver(
            self._tf_buffer, self.params.wait_for_transform, self.params.wait_for_transform_duration
        )
        self.pipeline = ObstaclesDetection(self.params, resolver)

        self._last_log_time = rospy.Time(0)

        self.ground = RosCloudSink(rospy.Publisher("ground", PointCloud2, queue_size=1))
        self.obstacles = RosCloudSink(rospy.Publisher("obstacles", PointCloud2, queue_size=1))
        self.sub = rospy.Subscriber("cloud", PointCloud2, self._callback, queue_size=self.queue_size)

        rospy.loginfo(
            "[obstacles_detection] frame=%s strategy=%s radius=%.3f angle=%.3f min_cluster=%d floor<=%.2f obstacles<=%.2f",
            self.params.frame_id,
            self.params.strategy_name,
            self.params.normal_estimation_radius,
            self.params.ground_normal_angle,
            self.params.min_cluster_size,
            self.params.max_floor_height,
            self.params.max_obstacles_height,
        )

    def _callback(self, msg: PointCloud2) -> None:
        if not self.ground.has_consumers() and not self.obstacles.has_consumers():
            return

        start = time.time()
        cloud = PointCloud(_cloud_to_xyz(msg), frame_id=msg.header.frame_id, stamp=msg.header.stamp)
        try:
            result = self.pipeline.handle(cloud, self.ground, self.obstacles)
        except TransformUnavailable as exc:
            rospy.logerr("[obstacles_detection] %s", exc)
            return
        if result is None:
            return
        if result.empty_input:
            rospy.logerr("[obstacles_detection] received empty point cloud")
            return

        now = rospy.Time.now()
        if (now - self._last_log_time).to_sec() >= self.log_interval:
            rospy.loginfo(
                "[obstacles_detection] in=%d ground=%d obstacles=%d hz=%.1f seg=%.1fms total=%.1fms",
                result.input_size,
                len(result.ground),
                len(result.obstacles),
                result.rate_hz,
                result.process_duration * 1000.0,
                (time.time() - start) * 1000.0,
            )
            self._last_log_time = now


def main() -> None:
    rospy.init_node("obstacles_detection")
    _ = ObstaclesDetectionNode()
    rospy.spin()


if __name__ == "__main__":
    main()
