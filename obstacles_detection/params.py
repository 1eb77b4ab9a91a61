from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Callable


@dataclass(frozen=True)
class DetectionParams:
    frame_id: str = "base_link"
    normal_estimation_radius: float = 0.05
    ground_normal_angle: float = math.pi / 4.0  # radians
    min_cluster_size: int = 20
    max_floor_height: float = -1.0
    max_obstacles_height: float = 1.5
    wait_for_transform: bool = False
    wait_for_transform_duration: float = 1.0
    simple_segmentation: bool = False
    optimize_for_close_object: bool = True
    # Distance zoning along +x (robot forward).
    close_object_max_distance: float = 1.0
    min_obstacle_distance: float = 0.8
    far_radius_factor: float = 3.0
    far_angle_factor: float = 2.0

    def validate(self) -> "DetectionParams":
        if not str(self.frame_id).strip():
            raise ValueError("~frame_id must not be empty")
        if not self.normal_estimation_radius > 0.0:
            raise ValueError("~normal_estimation_radius must be > 0")
        if not 0.0 <= self.ground_normal_angle <= math.pi / 2.0:
            raise ValueError("~ground_normal_angle must be in [0, pi/2] radians")
        if self.min_cluster_size < 1:
            raise ValueError("~min_cluster_size must be >= 1")
        if not self.max_floor_height < self.max_obstacles_height:
            raise ValueError(
                f"~max_floor_height ({self.max_floor_height}) must be < ~max_obstacles_height ({self.max_obstacles_height})"
            )
        if self.wait_for_transform and not self.wait_for_transform_duration > 0.0:
            raise ValueError("~wait_for_transform_duration must be > 0")
        if self.far_radius_factor <= 0.0 or self.far_angle_factor <= 0.0:
            raise ValueError("~far_radius_factor and ~far_angle_factor must be > 0")
        return self

    @property
    def strategy_name(self) -> str:
        if self.simple_segmentation:
            return "simple"
        if self.optimize_for_close_object:
            return "distance_zoned"
        return "single_zone"


def read_params(get_param: Callable[[str, Any], Any]) -> DetectionParams:
    """Read private (~) parameters through `get_param(name, default)`, e.g. rospy.get_param."""
    d = DetectionParams()
    params = DetectionParams(
        frame_id=str(get_param("~frame_id", d.frame_id)),
        normal_estimation_radius=float(get_param("~normal_estimation_radius", d.normal_estimation_radius)),
        ground_normal_angle=float(get_param("~ground_normal_angle", d.ground_normal_angle)),
        min_cluster_size=int(get_param("~min_cluster_size", d.min_cluster_size)),
        max_floor_height=float(get_param("~max_floor_height", d.max_floor_height)),
        max_obstacles_height=float(get_param("~max_obstacles_height", d.max_obstacles_height)),
        wait_for_transform=bool(get_param("~wait_for_transform", d.wait_for_transform)),
        wait_for_transform_duration=float(get_param("~wait_for_transform_duration", d.wait_for_transform_duration)),
        simple_segmentation=bool(get_param("~simple_segmentation", d.simple_segmentation)),
        optimize_for_close_object=bool(get_param("~optimize_for_close_object", d.optimize_for_close_object)),
        close_object_max_distance=float(get_param("~close_object_max_distance", d.close_object_max_distance)),
        min_obstacle_distance=float(get_param("~min_obstacle_distance", d.min_obstacle_distance)),
        far_radius_factor=float(get_param("~far_radius_factor", d.far_radius_factor)),
        far_angle_factor=float(get_param("~far_angle_factor", d.far_angle_factor)),
    )
    return params.validate()
