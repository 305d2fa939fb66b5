from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping, Optional

import numpy as np

from .transforms import pose_to_matrix


@dataclass
class RawFrame:
    data: Any  # bytes or ndarray, as delivered by the source
    width: int
    height: int
    timestamp_ns: int
    frame_id: int = 0


@dataclass(frozen=True)
class CameraModel:
    """Pinhole intrinsics plus OpenCV distortion coefficients."""

    camera_matrix: np.ndarray
    dist_coeffs: np.ndarray

    @classmethod
    def pinhole(cls, f: float, cx: float, cy: float) -> "CameraModel":
        K = np.array([[f, 0.0, cx], [0.0, f, cy], [0.0, 0.0, 1.0]], dtype=np.float64)
        return cls(K, np.zeros(5, dtype=np.float64))


@dataclass(frozen=True)
class SizeTable:
    """Marker id -> physical side length in metres, with a default."""

    default_size_m: float
    overrides: Mapping[int, float] = field(default_factory=dict)

    def __post_init__(self):
        frozen = MappingProxyType({int(k): float(v) for k, v in self.overrides.items()})
        object.__setattr__(self, "overrides", frozen)

    def size_for(self, marker_id: int) -> float:
        return self.overrides.get(int(marker_id), self.default_size_m)


@dataclass
class DecodedMarker:
    marker_id: int
    corners: np.ndarray  # (4,2), canonical corner first
    rotation: int = 0  # quarter turns applied to match the codeword
    distance: int = 0  # hamming distance to the accepted codeword


@dataclass
class PoseEstimate:
    rotation: np.ndarray  # (3,3), tag -> camera
    translation: np.ndarray  # (3,)
    reprojection_error: float
    alternative_error: Optional[float] = None


@dataclass
class Detection:
    marker_id: int
    corners: np.ndarray  # (4,2), full-resolution pixels
    translation: np.ndarray  # (3,) tag origin in camera frame
    rotation: np.ndarray  # (3,3) tag -> camera
    timestamp_ns: int
    size_m: float
    camera_name: str
    reprojection_error: Optional[float] = None

    def as_matrix(self) -> np.ndarray:
        """Return the 4x4 tag-to-camera transform."""
        return pose_to_matrix(self.rotation, self.translation)
