"""Ground/obstacle strategies.

All strategies start from the same two z bands of the robot-frame cloud:
the hypothetical ground band z <= max_floor_height and the obstacle band
max_floor_height < z <= max_obstacles_height.

  simple          ground = floor band, obstacles = obstacle band
  single_zone     floor band is segmented once; misclassified floor points
                  are moved to the obstacles
  distance_zoned  floor band split along x at close_object_max_distance;
                  the far part is segmented with a wider radius and angle
                  because far-field normals are sparser and noisier. The
                  obstacle band drops everything at x <= min_obstacle_distance
                  (robot body / sensor blind zone).
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Callable, Tuple

from obstacles_detection.cloud import PointCloud, concatenate, pass_through
from obstacles_detection.params import DetectionParams
from obstacles_detection.segmenter import GroundSegmenter

INF = math.inf


@dataclass(frozen=True)
class SegmentationResult:
    ground: PointCloud
    obstacles: PointCloud


Strategy = Callable[[PointCloud, DetectionParams, GroundSegmenter], SegmentationResult]


def height_bands(cloud: PointCloud, params: DetectionParams) -> Tuple[PointCloud, PointCloud]:
    floor = pass_through(cloud, "z", -INF, params.max_floor_height)
    obstacles = pass_through(
        cloud, "z", params.max_floor_height, params.max_obstacles_height, include_lower=False
    )
    return floor, obstacles


def split_floor(
    floor: PointCloud, segmenter: GroundSegmenter, radius: float, angle: float, min_cluster_size: int
) -> Tuple[PointCloud, PointCloud]:
    """Segment a floor band into (ground cloud, floor-level obstacle cloud)."""
    if floor.is_empty:
        return floor, floor
    ground_idx, obstacle_idx = segmenter.segment(floor, radius, angle, min_cluster_size)
    return floor.select(ground_idx), floor.select(obstacle_idx)


def simple_segmentation(cloud: PointCloud, params: DetectionParams, segmenter: GroundSegmenter) -> SegmentationResult:
    floor, obstacles = height_bands(cloud, params)
    return SegmentationResult(ground=floor, obstacles=obstacles)


def single_zone_segmentation(
    cloud: PointCloud, params: DetectionParams, segmenter: GroundSegmenter
) -> SegmentationResult:
    floor, obstacles = height_bands(cloud, params)
    ground, floor_obstacles = split_floor(
        floor,
        segmenter,
        params.normal_estimation_radius,
        params.ground_normal_angle,
        params.min_cluster_size,
    )
    return SegmentationResult(ground=ground, obstacles=concatenate(obstacles, floor_obstacles))


def distance_zoned_segmentation(
    cloud: PointCloud, params: DetectionParams, segmenter: GroundSegmenter
) -> SegmentationResult:
    floor, obstacles = height_bands(cloud, params)
    split = params.close_object_max_distance
    floor_near = pass_through(floor, "x", -INF, split)
    floor_far = pass_through(floor, "x", split, INF, include_lower=False)
    obstacles = pass_through(obstacles, "x", params.min_obstacle_distance, INF, include_lower=False)

    ground_near, obstacles_near = split_floor(
        floor_near,
        segmenter,
        params.normal_estimation_radius,
        params.ground_normal_angle,
        params.min_cluster_size,
    )
    ground_far, obstacles_far = split_floor(
        floor_far,
        segmenter,
        params.far_radius_factor * params.normal_estimation_radius,
        params.far_angle_factor * params.ground_normal_angle,
        params.min_cluster_size,
    )
    return SegmentationResult(
        ground=concatenate(ground_near, ground_far),
        obstacles=concatenate(obstacles, obstacles_near, obstacles_far),
    )


def select_strategy(params: DetectionParams) -> Strategy:
    if params.simple_segmentation:
        return simple_segmentation
    if params.optimize_for_close_object:
        return distance_zoned_segmentation
    return single_zone_segmentation
