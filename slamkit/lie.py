"""Rotations and rigid-body transforms on the SO(3) and SE(3) Lie groups."""

from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np

_SMALL_ANGLE = 1e-10
_NEAR_PI = 1e-6


def _vec3(values, name: str = "vector") -> np.ndarray:
    array = np.asarray(values, dtype=float)
    if array.shape != (3,):
        raise ValueError(f"{name} must have 3 elements, got shape {array.shape}")
    return array


def _vee(matrix: np.ndarray) -> np.ndarray:
    return np.array([matrix[2, 1], matrix[0, 2], matrix[1, 0]])


def hat(v) -> np.ndarray:
    """Skew-symmetric matrix of a 3-vector, so that hat(v) @ w == v x w."""
    x, y, z = _vec3(v, "v")
    return np.array([[0.0, -z, y], [z, 0.0, -x], [-y, x, 0.0]])


def so3_exp(phi) -> np.ndarray:
    """Rotation matrix of a rotation vector (Rodrigues' formula)."""
    phi = _vec3(phi, "phi")
    theta = float(np.linalg.norm(phi))
    k = hat(phi)
    identity = np.eye(3)
    if theta < _SMALL_ANGLE:
        return identity + k + 0.5 * (k @ k)
    return (
        identity
        + (math.sin(theta) / theta) * k
        + ((1.0 - math.cos(theta)) / (theta * theta)) * (k @ k)
    )


def so3_log(rotation) -> np.ndarray:
    """Rotation vector of a rotation matrix."""
    r = np.asarray(rotation, dtype=float)
    if r.shape != (3, 3):
        raise ValueError(f"rotation must be 3x3, got shape {r.shape}")
    diagonal_sum = float(r[0, 0] + r[1, 1] + r[2, 2])
    cos_theta = float(np.clip((diagonal_sum - 1.0) / 2.0, -1.0, 1.0))
    theta = math.acos(cos_theta)
    if theta < _SMALL_ANGLE:
        return 0.5 * _vee(r - r.T)
    if math.pi - theta < _NEAR_PI:
        # Near a half turn the antisymmetric part vanishes; read the axis from R + I.
        b = 0.5 * (r + np.eye(3))
        column = int(np.argmax(np.diag(b)))
        axis = b[:, column] / math.sqrt(max(b[column, column], 1e-300))
        axis /= np.linalg.norm(axis)
        return theta * axis
    return (theta / (2.0 * math.sin(theta))) * _vee(r - r.T)


def _left_jacobian(phi: np.ndarray) -> np.ndarray:
    theta = float(np.linalg.norm(phi))
    k = hat(phi)
    identity = np.eye(3)
    if theta < _SMALL_ANGLE:
        return identity + 0.5 * k + (k @ k) / 6.0
    theta2 = theta * theta
    return (
        identity
        + ((1.0 - math.cos(theta)) / theta2) * k
        + ((theta - math.sin(theta)) / (theta2 * theta)) * (k @ k)
    )


@dataclass(frozen=True, eq=False)
class SE3:
    """A rigid-body transform p -> rotation @ p + translation."""

    rotation: np.ndarray
    translation: np.ndarray

    def __post_init__(self) -> None:
        rotation = np.array(self.rotation, dtype=float)
        if rotation.shape != (3, 3):
            raise ValueError(f"rotation must be 3x3, got shape {rotation.shape}")
        object.__setattr__(self, "rotation", rotation)
        object.__setattr__(self, "translation", _vec3(self.translation, "translation").copy())

    @classmethod
    def identity(cls) -> "SE3":
        """The transform that leaves every point where it is."""
        return cls(np.eye(3), np.zeros(3))

    @classmethod
    def exp(cls, xi) -> "SE3":
        """Transform of a twist ordered (translation part, rotation part)."""
        twist = np.asarray(xi, dtype=float)
        if twist.shape != (6,):
            raise ValueError(f"twist must have 6 elements, got shape {twist.shape}")
        rho, phi = twist[:3], twist[3:]
        return cls(so3_exp(phi), _left_jacobian(phi) @ rho)

    def __matmul__(self, other):
        if isinstance(other, SE3):
            return SE3(
                self.rotation @ other.rotation,
                self.rotation @ other.translation + self.translation,
            )
        return self.transform(other)

    def transform(self, point) -> np.ndarray:
        """Apply the transform to one point or to an (N, 3) array of points."""
        p = np.asarray(point, dtype=float)
        if p.ndim == 1:
            return self.rotation @ _vec3(p, "point") + self.translation
        if p.ndim == 2 and p.shape[1] == 3:
            return p @ self.rotation.T + self.translation
        raise ValueError(f"points must have shape (3,) or (N, 3), got {p.shape}")

    def inverse(self) -> "SE3":
        """The transform that undoes this one."""
        r_inv = self.rotation.T
        return SE3(r_inv, -r_inv @ self.translation)

    def matrix(self) -> np.ndarray:
        """Homogeneous 4x4 matrix of the transform."""
        m = np.eye(4)
        m[:3, :3] = self.rotation
        m[:3, 3] = self.translation
        return m