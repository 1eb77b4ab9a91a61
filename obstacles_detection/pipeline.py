from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, Protocol

from obstacles_detection.cloud import PointCloud
from obstacles_detection.params import DetectionParams
from obstacles_detection.segmenter import GroundSegmenter, NormalClusterSegmenter
from obstacles_detection.strategies import select_strategy
from obstacles_detection.transforms import RigidTransform


class TransformUnavailable(RuntimeError):
    """No transform from the cloud frame to the robot frame; the frame is dropped."""

    def __init__(self, target_frame: str, source_frame: str, reason: str = "") -> None:
        msg = f"could not get transform from {source_frame!r} to {target_frame!r}"
        if reason:
            msg = f"{msg}: {reason}"
        super().__init__(msg)
        self.target_frame = target_frame
        self.source_frame = source_frame


class TransformResolver(Protocol):
    def resolve(self, target_frame: str, source_frame: str, stamp: Any) -> RigidTransform:
        ...


class CloudSink(Protocol):
    def has_consumers(self) -> bool:
        ...

    def publish(self, cloud: PointCloud) -> None:
        ...


@dataclass(frozen=True)
class FrameResult:
    ground: PointCloud
    obstacles: PointCloud
    input_size: int
    empty_input: bool
    process_duration: float  # seconds
    between_frames: Optional[float]  # seconds since the previous frame finished

    @property
    def rate_hz(self) -> float:
        if not self.between_frames or self.between_frames <= 0.0:
            return 0.0
        return 1.0 / self.between_frames


class ObstaclesDetection:
    """Per-frame ground/obstacle classification in the robot frame.

    Frames are processed synchronously; the only state carried between frames
    is `last_frame_time`, used for timing diagnostics.
    """

    def __init__(
        self,
        params: DetectionParams,
        resolver: TransformResolver,
        segmenter: Optional[GroundSegmenter] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.params = params.validate()
        self.resolver = resolver
        self.segmenter = segmenter if segmenter is not None else NormalClusterSegmenter()
        self.strategy = select_strategy(self.params)
        self._clock = clock
        self.last_frame_time: Optional[float] = None

    def process(self, cloud: PointCloud) -> FrameResult:
        transform = self.resolver.resolve(self.params.frame_id, cloud.frame_id, cloud.stamp)

        start = self._clock()
        local = cloud.transformed(transform, self.params.frame_id)
        if local.is_empty:
            empty = PointCloud.empty(frame_id=self.params.frame_id, stamp=cloud.stamp)
            return self._finish(start, empty, empty, input_size=0, empty_input=True)

        result = self.strategy(local, self.params, self.segmenter)
        return self._finish(start, result.ground, result.obstacles, input_size=len(local), empty_input=False)

    def handle(self, cloud: PointCloud, ground_sink: CloudSink, obstacles_sink: CloudSink) -> Optional[FrameResult]:
        """Process one frame and publish to the sinks that have consumers.

        Returns None (and does no work) when nobody listens. Raises
        TransformUnavailable when the frame cannot be placed in the robot frame.
        """
        if not ground_sink.has_consumers() and not obstacles_sink.has_consumers():
            return None

        result = self.process(cloud)
        if ground_sink.has_consumers():
            ground_sink.publish(result.ground)
        if obstacles_sink.has_consumers():
            obstacles_sink.publish(result.obstacles)
        return result

    def _finish(
        self, start: float, ground: PointCloud, obstacles: PointCloud, *, input_size: int, empty_input: bool
    ) -> FrameResult:
        now = self._clock()
        between = None if self.last_frame_time is None else now - self.last_frame_time
        self.last_frame_time = now
        return FrameResult(
            ground=ground,
            obstacles=obstacles,
            input_size=int(input_size),
            empty_input=bool(empty_input),
            process_duration=now - start,
            between_frames=between,
        )
