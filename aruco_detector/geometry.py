"""Quad and homography helpers shared by decoding and pose solving."""

from __future__ import annotations

from itertools import combinations

import numpy as np

UNIT_SQUARE = np.array([[0.0, 0.0], [1.0, 0.0], [1.0, 1.0], [0.0, 1.0]], dtype=np.float64)


def as_quad(points) -> np.ndarray:
    quad = np.asarray(points, dtype=np.float64).reshape(-1, 2)
    if quad.shape != (4, 2):
        raise ValueError(f"quad must have exactly 4 points, got {quad.shape[0]}")
    return quad


def order_clockwise(quad: np.ndarray) -> np.ndarray:
    """
    Return the quad wound clockwise on screen (image y axis pointing down),
    keeping the first corner in place.
    """
    quad = as_quad(quad).copy()
    d1 = quad[1] - quad[0]
    d2 = quad[2] - quad[0]
    if d1[0] * d2[1] - d1[1] * d2[0] < 0.0:
        quad[[1, 3]] = quad[[3, 1]]
    return quad


def quad_perimeter(quad: np.ndarray) -> float:
    quad = as_quad(quad)
    return float(np.linalg.norm(quad - np.roll(quad, -1, axis=0), axis=1).sum())


def min_side_sq(quad: np.ndarray) -> float:
    quad = as_quad(quad)
    return float((np.diff(np.vstack([quad, quad[:1]]), axis=0) ** 2).sum(axis=1).min())


def mean_corner_distance(a: np.ndarray, b: np.ndarray) -> float:
    """Mean corner distance minimised over the four cyclic alignments."""
    a = as_quad(a)
    b = as_quad(b)
    return min(
        float(np.linalg.norm(a - np.roll(b, k, axis=0), axis=1).mean())
        for k in range(4)
    )


def has_collinear_triple(points: np.ndarray, rel_tol: float = 1e-4) -> bool:
    """
    True when any three of the points are (nearly) collinear.

    The triangle area is compared against the squared spread of the point set
    so the test is independent of pixel scale.
    """
    pts = np.asarray(points, dtype=np.float64).reshape(-1, 2)
    spread = float(((pts[:, None, :] - pts[None, :, :]) ** 2).sum(axis=2).max())
    if spread <= 0.0:
        return True
    for i, j, k in combinations(range(len(pts)), 3):
        u = pts[j] - pts[i]
        v = pts[k] - pts[i]
        if abs(u[0] * v[1] - u[1] * v[0]) * 0.5 < rel_tol * spread:
            return True
    return False


def _normalizer(pts: np.ndarray) -> np.ndarray:
    centroid = pts.mean(axis=0)
    dist = np.linalg.norm(pts - centroid, axis=1).mean()
    if dist <= 0.0:
        raise ValueError("degenerate point configuration")
    s = np.sqrt(2.0) / dist
    return np.array(
        [[s, 0.0, -s * centroid[0]], [0.0, s, -s * centroid[1]], [0.0, 0.0, 1.0]]
    )


def apply_homography(H: np.ndarray, points: np.ndarray) -> np.ndarray:
    pts = np.asarray(points, dtype=np.float64).reshape(-1, 2)
    hom = np.hstack([pts, np.ones((len(pts), 1))]) @ H.T
    return hom[:, :2] / hom[:, 2:3]


def find_homography(src: np.ndarray, dst: np.ndarray) -> np.ndarray:
    """
    Direct linear transform from >= 4 point correspondences.

    Points are Hartley-normalised before the SVD solve. The result is scaled so
    that H[2, 2] == 1. Raises ValueError for degenerate configurations.
    """
    src = np.asarray(src, dtype=np.float64).reshape(-1, 2)
    dst = np.asarray(dst, dtype=np.float64).reshape(-1, 2)
    if len(src) < 4 or len(src) != len(dst):
        raise ValueError("need at least 4 matching point pairs")

    Ts = _normalizer(src)
    Td = _normalizer(dst)
    s = apply_homography(Ts, src)
    d = apply_homography(Td, dst)

    A = np.zeros((2 * len(s), 9))
    for i, ((x, y), (u, v)) in enumerate(zip(s, d)):
        A[2 * i] = [-x, -y, -1.0, 0.0, 0.0, 0.0, u * x, u * y, u]
        A[2 * i + 1] = [0.0, 0.0, 0.0, -x, -y, -1.0, v * x, v * y, v]

    _, S, Vt = np.linalg.svd(A)
    if S[7] < 1e-10 * S[0]:
        raise ValueError("degenerate point configuration")

    H = np.linalg.inv(Td) @ Vt[-1].reshape(3, 3) @ Ts
    if abs(H[2, 2]) < 1e-12:
        raise ValueError("homography maps the origin to infinity")
    return H / H[2, 2]
