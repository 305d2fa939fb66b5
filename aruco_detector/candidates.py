"""Square-border candidate search on a single-channel image."""

from __future__ import annotations

from typing import Iterator, Optional

import cv2
import numpy as np

from .config import DetectorConfig, DetectorParameters
from .geometry import mean_corner_distance, min_side_sq, order_clockwise, quad_perimeter


class CandidateExtractor:
    """
    Finds convex quadrilateral contours that may be marker borders.

    The image is binarised with a mean adaptive threshold at several window
    sizes; each window's contours are approximated as polygons and kept when
    they reduce to 4 convex vertices whose polygon perimeter exceeds
    ``min_marker_perimeter_rate`` and stays within ``max_marker_perimeter_rate``
    times the larger image dimension.
    """

    def __init__(
        self,
        min_marker_perimeter_rate: float = 0.02,
        params: Optional[DetectorParameters] = None,
    ):
        self.min_marker_perimeter_rate = min_marker_perimeter_rate
        self.params = params or DetectorParameters()

    @classmethod
    def from_config(cls, config: DetectorConfig) -> "CandidateExtractor":
        return cls(config.min_marker_perimeter_rate, config.detector)

    def window_sizes(self) -> list[int]:
        p = self.params
        sizes = []
        for win in range(
            p.adaptive_thresh_win_size_min,
            p.adaptive_thresh_win_size_max + 1,
            p.adaptive_thresh_win_size_step,
        ):
            win |= 1  # adaptiveThreshold needs an odd block size
            if win not in sizes:
                sizes.append(win)
        return sizes

    def extract(self, image: np.ndarray) -> Iterator[np.ndarray]:
        """Yield (4,2) float64 quads, clockwise on screen. Recomputed per call."""
        gray = np.ascontiguousarray(image, dtype=np.uint8)
        if gray.ndim != 2:
            raise ValueError("CandidateExtractor expects a single-channel image")
        h, w = gray.shape
        max_dim = max(h, w)
        min_len = self.min_marker_perimeter_rate * max_dim
        max_len = self.params.max_marker_perimeter_rate * max_dim

        emitted: list[np.ndarray] = []
        for win in self.window_sizes():
            if win > max_dim:
                break
            thresh = cv2.adaptiveThreshold(
                gray,
                255,
                cv2.ADAPTIVE_THRESH_MEAN_C,
                cv2.THRESH_BINARY_INV,
                win,
                self.params.adaptive_thresh_constant,
            )
            found = cv2.findContours(thresh, cv2.RETR_LIST, cv2.CHAIN_APPROX_NONE)
            contours = found[-2]  # OpenCV 3 returns (image, contours, hierarchy)

            quads = []
            for contour in contours:
                quad = self._quad_from_contour(contour, min_len, max_len, w, h)
                if quad is not None:
                    quads.append(quad)

            # Larger first so the outer edge of a border wins over its inner echo.
            quads.sort(key=quad_perimeter, reverse=True)
            for quad in quads:
                tol = self.params.min_marker_distance_rate * quad_perimeter(quad)
                if any(mean_corner_distance(quad, prev) < tol for prev in emitted):
                    continue
                emitted.append(quad)
                yield quad

    def _quad_from_contour(self, contour, min_len, max_len, width, height) -> Optional[np.ndarray]:
        n = len(contour)
        if n < 4:
            return None

        approx = cv2.approxPolyDP(contour, n * self.params.polygonal_approx_accuracy_rate, True)
        if len(approx) != 4 or not cv2.isContourConvex(approx):
            return None

        quad = approx.reshape(4, 2).astype(np.float64)
        perimeter = quad_perimeter(quad)
        if perimeter <= min_len or perimeter > max_len:
            return None
        min_dist = self.params.min_corner_distance_rate * n
        if min_side_sq(quad) < min_dist * min_dist:
            return None

        border = self.params.min_distance_to_border
        if (
            quad[:, 0].min() < border
            or quad[:, 1].min() < border
            or quad[:, 0].max() > width - 1 - border
            or quad[:, 1].max() > height - 1 - border
        ):
            return None

        return order_clockwise(quad)
