from __future__ import annotations

from pathlib import Path

import cv2
import numpy as np

from .errors import CalibrationUnavailable
from .marker_types import CameraModel

_DIST_KEYS = ("distortion_coefficients", "dist_coeffs")


def load_camera_model(path: str | Path) -> CameraModel:
    """
    Read intrinsics from an OpenCV FileStorage file (YAML/XML/JSON).

    Expects ``camera_matrix`` (3x3) and ``distortion_coefficients`` (or
    ``dist_coeffs``). Raises CalibrationUnavailable when the file is missing
    or either entry is absent or malformed.
    """
    if not path or not Path(path).is_file():
        raise CalibrationUnavailable(f"intrinsics not found: {path}")

    try:
        fs = cv2.FileStorage(str(path), cv2.FILE_STORAGE_READ)
    except (cv2.error, SystemError) as exc:  # newer bindings wrap cv2.error in SystemError
        raise CalibrationUnavailable(f"cannot parse intrinsics {path}: {exc}") from exc

    try:
        if not fs.isOpened():
            raise CalibrationUnavailable(f"cannot open intrinsics: {path}")
        K = fs.getNode("camera_matrix").mat()
        D = None
        for key in _DIST_KEYS:
            node = fs.getNode(key)
            if not node.empty():
                D = node.mat()
                break
    except (cv2.error, SystemError) as exc:
        raise CalibrationUnavailable(f"cannot read intrinsics {path}: {exc}") from exc
    finally:
        fs.release()

    if K is None or np.asarray(K).shape != (3, 3):
        raise CalibrationUnavailable(f"camera_matrix missing or not 3x3 in {path}")
    if D is None or np.asarray(D).size not in (4, 5, 8, 12, 14):
        raise CalibrationUnavailable(f"distortion coefficients missing or malformed in {path}")

    K = np.asarray(K, dtype=np.float64)
    D = np.asarray(D, dtype=np.float64).reshape(-1)
    if not (np.isfinite(K).all() and np.isfinite(D).all()) or K[0, 0] <= 0 or K[1, 1] <= 0:
        raise CalibrationUnavailable(f"intrinsics in {path} are not usable")
    return CameraModel(K, D)
