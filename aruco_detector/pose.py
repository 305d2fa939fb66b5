"""
Planar square pose from four image corners.

The homography between the marker plane and normalised image coordinates is
decomposed with the infinitesimal plane-based method (IPPE): its Jacobian at
the marker centre determines the pose up to a two-fold ambiguity, a
reflection of the plane normal about the line of sight. Both candidates are
built and the one with the lower pixel reprojection error is kept.
"""

from __future__ import annotations

import logging
from typing import List, Tuple

import cv2
import numpy as np

from .errors import PoseDegenerate
from .geometry import as_quad, find_homography, has_collinear_triple
from .marker_types import CameraModel, PoseEstimate
from .transforms import orthonormalize, rotation_to_rvec, rvec_to_rotation

LOGGER = logging.getLogger(__name__)


def square_object_points(size_m: float) -> np.ndarray:
    """Corners of a square of side ``size_m`` centred on the origin, z = 0.

    Order matches decoded marker corners: top-left, top-right, bottom-right,
    bottom-left with the marker's y axis pointing up.
    """
    s = 0.5 * float(size_m)
    return np.array(
        [[-s, s, 0.0], [s, s, 0.0], [s, -s, 0.0], [-s, -s, 0.0]], dtype=np.float64
    )


def _align_z_to(p: float, q: float) -> np.ndarray:
    """Rotation whose third column is the unit vector along (p, q, 1)."""
    t = np.hypot(p, q)
    if t < 1e-12:
        return np.eye(3)
    s = np.sqrt(p * p + q * q + 1.0)
    axis = np.array([-q / t, p / t, 0.0])
    return rvec_to_rotation(axis * np.arccos(1.0 / s))


class PlanarPoseSolver:
    def __init__(self, camera: CameraModel):
        self.camera = camera
        self.K = np.asarray(camera.camera_matrix, dtype=np.float64)
        self.dist = np.asarray(camera.dist_coeffs, dtype=np.float64).reshape(-1)

    def normalize(self, image_points: np.ndarray) -> np.ndarray:
        """Undistort pixels into normalised camera coordinates."""
        pts = np.asarray(image_points, dtype=np.float64).reshape(-1, 1, 2)
        return cv2.undistortPoints(pts, self.K, self.dist).reshape(-1, 2)

    def project(self, R: np.ndarray, t: np.ndarray, object_points: np.ndarray) -> np.ndarray:
        projected, _ = cv2.projectPoints(
            np.asarray(object_points, dtype=np.float64).reshape(-1, 1, 3),
            rotation_to_rvec(R),
            np.asarray(t, dtype=np.float64).reshape(3, 1),
            self.K,
            self.dist,
        )
        return projected.reshape(-1, 2)

    def reprojection_error(self, R, t, object_points, image_points) -> float:
        """Sum of squared pixel distances between projected and observed corners."""
        diff = self.project(R, t, object_points) - np.asarray(image_points, dtype=np.float64).reshape(-1, 2)
        return float((diff ** 2).sum())

    @staticmethod
    def _translation(R: np.ndarray, object_points: np.ndarray, normalized: np.ndarray) -> np.ndarray:
        """Least-squares translation for a fixed rotation (linear in t)."""
        rotated = object_points @ R.T
        A = np.zeros((2 * len(normalized), 3))
        b = np.zeros(2 * len(normalized))
        for i, ((x, y), (rx, ry, rz)) in enumerate(zip(normalized, rotated)):
            A[2 * i] = [1.0, 0.0, -x]
            A[2 * i + 1] = [0.0, 1.0, -y]
            b[2 * i] = x * rz - rx
            b[2 * i + 1] = y * rz - ry
        t, *_ = np.linalg.lstsq(A, b, rcond=None)
        return t

    def candidates(self, image_points: np.ndarray, size_m: float) -> List[Tuple[np.ndarray, np.ndarray]]:
        """
        Both IPPE pose hypotheses as (R, t) pairs, before disambiguation.

        Raises PoseDegenerate for collinear corners or a homography that
        cannot be decomposed.
        """
        if not size_m > 0:
            raise ValueError(f"marker size must be positive, got {size_m!r}")
        pts = as_quad(image_points)
        if not np.isfinite(pts).all() or has_collinear_triple(pts):
            raise PoseDegenerate("image corners are collinear or invalid")

        obj = square_object_points(size_m)
        normalized = self.normalize(pts)
        try:
            H = find_homography(obj[:, :2], normalized)
        except ValueError as exc:
            raise PoseDegenerate(str(exc)) from exc

        # Jacobian of the homography at the marker centre, and the centre's image.
        p, q = H[0, 2], H[1, 2]
        J = np.array(
            [
                [H[0, 0] - H[2, 0] * p, H[0, 1] - H[2, 1] * p],
                [H[1, 0] - H[2, 0] * q, H[1, 1] - H[2, 1] * q],
            ]
        )

        Rv = _align_z_to(p, q)
        B = np.array([[1.0, 0.0, -p], [0.0, 1.0, -q]]) @ Rv[:, :2]
        if abs(np.linalg.det(B)) < 1e-12:
            raise PoseDegenerate("centre projection is singular")
        A = np.linalg.solve(B, J)
        gamma = np.linalg.svd(A, compute_uv=False)[0]
        if not gamma > 1e-12:
            raise PoseDegenerate("homography jacobian vanishes")

        R22 = A / gamma
        b0 = np.sqrt(max(0.0, 1.0 - R22[0, 0] ** 2 - R22[1, 0] ** 2))
        b1 = np.sqrt(max(0.0, 1.0 - R22[0, 1] ** 2 - R22[1, 1] ** 2))
        if R22[0, 0] * R22[0, 1] + R22[1, 0] * R22[1, 1] > 0:
            b1 = -b1

        poses = []
        for sign in (1.0, -1.0):
            c0 = np.array([R22[0, 0], R22[1, 0], sign * b0])
            c1 = np.array([R22[0, 1], R22[1, 1], sign * b1])
            R = orthonormalize(Rv @ np.column_stack([c0, c1, np.cross(c0, c1)]))
            t = self._translation(R, obj, normalized)
            if t[2] > 0:
                poses.append((R, t))
        if not poses:
            raise PoseDegenerate("no pose hypothesis places the marker in front of the camera")
        return poses

    def solve(self, image_points: np.ndarray, size_m: float) -> PoseEstimate:
        """
        Pose of a ``size_m`` square whose corners were observed at ``image_points``.

        Returns the hypothesis with the lower reprojection error; the other
        hypothesis' error is kept in ``alternative_error``.
        """
        pts = as_quad(image_points)
        obj = square_object_points(size_m)
        scored = [
            (self.reprojection_error(R, t, obj, pts), R, t)
            for R, t in self.candidates(pts, size_m)
        ]
        best = min(range(len(scored)), key=lambda i: scored[i][0])
        err, R, t = scored[best]
        other = [s[0] for i, s in enumerate(scored) if i != best]
        if not np.isfinite(err):
            raise PoseDegenerate("reprojection error is not finite")
        LOGGER.debug("pose hypotheses errors=%s picked=%d", [s[0] for s in scored], best)
        return PoseEstimate(R, t, err, other[0] if other else None)
