"""Normal-based ground/obstacle segmentation of a candidate floor band.

A point is ground-like when its local surface normal is within `angle` of the
up vector. Ground-like points are grouped with Euclidean clustering
(DBSCAN(min_samples=1)) and clusters smaller than `min_cluster_size` are
reclassified as obstacles, which rejects small flat patches such as the top of
a box. Points with too few neighbors for a normal are returned in neither set.
"""

from __future__ import annotations

import itertools
import math
from typing import Protocol, Tuple

import numpy as np
from scipy.spatial import cKDTree
from sklearn.cluster import DBSCAN

from obstacles_detection.cloud import PointCloud

UP = np.array([0.0, 0.0, 1.0], dtype=np.float64)

_SECOND_MOMENTS = ((0, 0), (0, 1), (0, 2), (1, 1), (1, 2), (2, 2))


class GroundSegmenter(Protocol):
    def segment(
        self, cloud: PointCloud, radius: float, angle: float, min_cluster_size: int
    ) -> Tuple[np.ndarray, np.ndarray]:
        """Return disjoint (ground_indices, obstacle_indices) into `cloud`."""
        ...


def estimate_normals(
    points: np.ndarray, radius: float, min_neighbors: int = 3, chunk_size: int = 256
) -> Tuple[np.ndarray, np.ndarray]:
    """PCA normals from all neighbors within `radius` (self included).

    Returns (normals (N,3), valid (N,) bool). Neighborhoods are gathered for
    `chunk_size` query points at a time, so peak memory is bounded by the
    neighbor count of one chunk rather than of the whole cloud.
    """
    if int(min_neighbors) < 3:
        raise ValueError("min_neighbors must be >= 3")
    if int(chunk_size) < 1:
        raise ValueError("chunk_size must be >= 1")
    n = int(points.shape[0])
    normals = np.zeros((n, 3), dtype=np.float64)
    valid = np.zeros((n,), dtype=bool)
    if n == 0:
        return normals, valid

    xyz = np.asarray(points[:, :3], dtype=np.float64)
    xyz = xyz - xyz.mean(axis=0)
    tree = cKDTree(xyz)

    counts = np.zeros((n,), dtype=np.int64)
    cov = np.zeros((n, 3, 3), dtype=np.float64)
    for start in range(0, n, int(chunk_size)):
        stop = min(start + int(chunk_size), n)
        m = stop - start
        neighbors = tree.query_ball_point(xyz[start:stop], r=float(radius))
        lengths = np.fromiter((len(nb) for nb in neighbors), dtype=np.int64, count=m)
        src = np.repeat(np.arange(m, dtype=np.int64), lengths)
        dst = np.fromiter(itertools.chain.from_iterable(neighbors), dtype=np.int64, count=int(lengths.sum()))
        del neighbors

        nbr = xyz[dst]
        c = lengths.astype(np.float64)
        mean = np.stack([np.bincount(src, weights=nbr[:, k], minlength=m) for k in range(3)], axis=1)
        mean /= c[:, None]
        for a, b in _SECOND_MOMENTS:
            mm = np.bincount(src, weights=nbr[:, a] * nbr[:, b], minlength=m) / c
            mm -= mean[:, a] * mean[:, b]
            cov[start:stop, a, b] = mm
            cov[start:stop, b, a] = mm
        counts[start:stop] = lengths

    valid = counts >= int(min_neighbors)
    if np.any(valid):
        _, vecs = np.linalg.eigh(cov[valid])
        normals[valid] = vecs[:, :, 0]  # smallest eigenvalue
    return normals, valid


def ground_like_mask(normals: np.ndarray, angle: float, up: np.ndarray = UP) -> np.ndarray:
    """Normals within `angle` radians of `up`, ignoring normal orientation."""
    if normals.shape[0] == 0:
        return np.zeros((0,), dtype=bool)
    cos_dev = np.abs(normals @ np.asarray(up, dtype=np.float64))
    return cos_dev >= math.cos(float(angle)) - 1e-9


def euclidean_cluster_labels(points: np.ndarray, tolerance: float) -> np.ndarray:
    if points.shape[0] == 0:
        return np.empty((0,), dtype=np.int32)
    labels = DBSCAN(eps=float(tolerance), min_samples=1, n_jobs=-1).fit_predict(np.asarray(points, dtype=np.float64))
    return np.asarray(labels, dtype=np.int32)


class NormalClusterSegmenter:
    def __init__(self, min_neighbors: int = 3, cluster_radius_factor: float = 2.0, up: np.ndarray = UP) -> None:
        if int(min_neighbors) < 3:
            raise ValueError("min_neighbors must be >= 3 (a plane needs three points)")
        if not float(cluster_radius_factor) > 0.0:
            raise ValueError("cluster_radius_factor must be > 0")
        self.min_neighbors = int(min_neighbors)
        self.cluster_radius_factor = float(cluster_radius_factor)
        self.up = np.asarray(up, dtype=np.float64)

    def segment(
        self, cloud: PointCloud, radius: float, angle: float, min_cluster_size: int
    ) -> Tuple[np.ndarray, np.ndarray]:
        empty = np.empty((0,), dtype=np.int64)
        if cloud.is_empty:
            return empty, empty.copy()

        normals, valid = estimate_normals(cloud.points, radius, self.min_neighbors)
        flat = valid & ground_like_mask(normals, angle, self.up)

        flat_idx = np.flatnonzero(flat).astype(np.int64)
        obstacles = np.flatnonzero(valid & ~flat).astype(np.int64)
        if flat_idx.size == 0:
            return empty, obstacles

        labels = euclidean_cluster_labels(cloud.points[flat_idx], self.cluster_radius_factor * float(radius))
        uniq, counts = np.unique(labels, return_counts=True)
        small = uniq[counts < int(min_cluster_size)]
        is_small = np.isin(labels, small)

        ground = flat_idx[~is_small]
        obstacles = np.sort(np.concatenate([obstacles, flat_idx[is_small]]))
        return ground, obstacles
