from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np


def quat_to_rot_matrix(x: float, y: float, z: float, w: float) -> np.ndarray:
    n = float(x * x + y * y + z * z + w * w)
    if n < 1e-12:
        return np.eye(3, dtype=np.float64)
    s = 2.0 / n

    xx = x * x * s
    yy = y * y * s
    zz = z * z * s
    xy = x * y * s
    xz = x * z * s
    yz = y * z * s
    wx = w * x * s
    wy = w * y * s
    wz = w * z * s

    return np.array(
        [
            [1.0 - (yy + zz), xy - wz, xz + wy],
            [xy + wz, 1.0 - (xx + zz), yz - wx],
            [xz - wy, yz + wx, 1.0 - (xx + yy)],
        ],
        dtype=np.float64,
    )


@dataclass(frozen=True)
class RigidTransform:
    """Rotation + translation taking points from a source frame to a target frame."""

    rotation: np.ndarray  # (3, 3)
    translation: np.ndarray  # (3,)

    @classmethod
    def identity(cls) -> "RigidTransform":
        return cls(rotation=np.eye(3, dtype=np.float64), translation=np.zeros((3,), dtype=np.float64))

    @classmethod
    def from_quaternion(cls, translation: Sequence[float], quaternion: Sequence[float]) -> "RigidTransform":
        """Build from (tx, ty, tz) and (qx, qy, qz, qw)."""
        qx, qy, qz, qw = (float(v) for v in quaternion)
        t = np.asarray([float(v) for v in translation], dtype=np.float64).reshape((3,))
        return cls(rotation=quat_to_rot_matrix(qx, qy, qz, qw), translation=t)

    def apply(self, points: np.ndarray) -> np.ndarray:
        if points.size == 0:
            return np.empty((0, 3), dtype=np.float32)
        xyz = np.asarray(points[:, :3], dtype=np.float64)
        out = xyz @ np.asarray(self.rotation, dtype=np.float64).T
        out += np.asarray(self.translation, dtype=np.float64)
        return out.astype(np.float32)
