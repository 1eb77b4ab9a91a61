"""Immutable xyz point clouds and the height/distance band filter.

Every operation returns a new `PointCloud`; the underlying array is marked
read-only so derived clouds can share nothing mutable with their source.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Sequence, Union

import numpy as np

from obstacles_detection.transforms import RigidTransform

_AXES = {"x": 0, "y": 1, "z": 2}


def _freeze(points: np.ndarray) -> np.ndarray:
    arr = np.asarray(points, dtype=np.float32)
    if arr.size == 0:
        arr = np.empty((0, 3), dtype=np.float32)
    if arr.ndim != 2 or arr.shape[1] != 3:
        raise ValueError(f"points must have shape (N, 3), got {arr.shape}")
    arr = np.array(arr, dtype=np.float32, copy=True)
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True, eq=False)
class PointCloud:
    points: np.ndarray  # (N, 3) float32, read-only
    frame_id: str = ""
    stamp: Any = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "points", _freeze(self.points))

    @classmethod
    def empty(cls, frame_id: str = "", stamp: Any = None) -> "PointCloud":
        return cls(np.empty((0, 3), dtype=np.float32), frame_id=frame_id, stamp=stamp)

    def __len__(self) -> int:
        return int(self.points.shape[0])

    @property
    def is_empty(self) -> bool:
        return self.points.shape[0] == 0

    def with_points(self, points: np.ndarray) -> "PointCloud":
        return PointCloud(points, frame_id=self.frame_id, stamp=self.stamp)

    def select(self, indices: np.ndarray) -> "PointCloud":
        """Points at `indices`, in index order."""
        idx = as_index_set(indices)
        if idx.size and (int(idx.min()) < 0 or int(idx.max()) >= len(self)):
            raise IndexError(f"index out of range for cloud of {len(self)} points")
        return self.with_points(self.points[idx])

    def transformed(self, transform: RigidTransform, frame_id: str) -> "PointCloud":
        return PointCloud(transform.apply(self.points), frame_id=frame_id, stamp=self.stamp)


def as_index_set(indices: Union[np.ndarray, Sequence[int], None]) -> np.ndarray:
    if indices is None:
        return np.empty((0,), dtype=np.int64)
    return np.asarray(indices, dtype=np.int64).reshape((-1,))


def concatenate(first: PointCloud, *others: PointCloud) -> PointCloud:
    """Stack clouds in order; frame and stamp come from `first`."""
    parts = [first.points] + [c.points for c in others if not c.is_empty]
    if len(parts) == 1:
        return first
    return first.with_points(np.concatenate(parts, axis=0))


def axis_index(axis: Union[str, int]) -> int:
    if isinstance(axis, str):
        key = axis.strip().lower()
        if key not in _AXES:
            raise ValueError(f"unknown axis: {axis!r}")
        return _AXES[key]
    idx = int(axis)
    if idx not in (0, 1, 2):
        raise ValueError(f"unknown axis: {axis!r}")
    return idx


def pass_through(
    cloud: PointCloud,
    axis: Union[str, int],
    lower: float,
    upper: float,
    *,
    include_lower: bool = True,
) -> PointCloud:
    """Keep points with lower <= v <= upper on `axis` (lower < v when include_lower=False).

    Use -inf / +inf for an unbounded side. Relative order is preserved.
    """
    col = axis_index(axis)
    if cloud.is_empty:
        return cloud.with_points(cloud.points)
    values = cloud.points[:, col]
    if include_lower:
        mask = values >= float(lower)
    else:
        mask = values > float(lower)
    mask &= values <= float(upper)
    return cloud.with_points(cloud.points[mask])
