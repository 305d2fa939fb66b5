"""SE(3) helpers shared by the pose solver and the sinks."""

import numpy as np
import cv2


def rotation_to_rvec(R: np.ndarray) -> np.ndarray:
    """
    Convert a 3x3 rotation matrix to a (3,1) Rodrigues vector.
    """
    rvec, _ = cv2.Rodrigues(np.asarray(R, dtype=np.float64))
    return rvec


def rvec_to_rotation(rvec: np.ndarray) -> np.ndarray:
    """
    Convert a Rodrigues vector (3,) or (3,1) to a 3x3 rotation matrix.
    """
    R, _ = cv2.Rodrigues(np.asarray(rvec, dtype=np.float64).reshape(3, 1))
    return R


def orthonormalize(R: np.ndarray) -> np.ndarray:
    """
    Project a near-rotation onto SO(3).

    Uses the SVD polar decomposition and flips the last singular direction
    when needed so that det(R) = +1.
    """
    U, _, Vt = np.linalg.svd(np.asarray(R, dtype=np.float64))
    D = np.eye(3)
    D[2, 2] = np.sign(np.linalg.det(U @ Vt)) or 1.0
    return U @ D @ Vt


def pose_to_matrix(R: np.ndarray, tvec: np.ndarray) -> np.ndarray:
    """
    Build a 4x4 homogeneous transform from a rotation matrix and translation.
    """
    T = np.eye(4)
    T[:3, :3] = np.asarray(R, dtype=np.float64)
    T[:3, 3] = np.asarray(tvec, dtype=np.float64).reshape(3)
    return T

