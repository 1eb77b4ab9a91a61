from .cloud import PointCloud, concatenate, pass_through
from .params import DetectionParams, read_params
from .pipeline import CloudSink, FrameResult, ObstaclesDetection, TransformResolver, TransformUnavailable
from .segmenter import GroundSegmenter, NormalClusterSegmenter
from .strategies import SegmentationResult, select_strategy
from .transforms import RigidTransform

__all__ = [
    "PointCloud",
    "concatenate",
    "pass_through",
    "DetectionParams",
    "read_params",
    "CloudSink",
    "FrameResult",
    "ObstaclesDetection",
    "TransformResolver",
    "TransformUnavailable",
    "GroundSegmenter",
    "NormalClusterSegmenter",
    "SegmentationResult",
    "select_strategy",
    "RigidTransform",
]
