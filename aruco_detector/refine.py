from __future__ import annotations

import cv2
import numpy as np

from .config import DetectorConfig
from .geometry import as_quad


class CornerRefiner:
    """Sub-pixel corner refinement via cv2.cornerSubPix."""

    def __init__(
        self,
        enabled: bool = True,
        win_size: int = 5,
        max_iterations: int = 30,
        min_accuracy: float = 0.1,
    ):
        self.enabled = enabled
        self.win_size = win_size
        self.max_iterations = max_iterations
        self.min_accuracy = min_accuracy

    @classmethod
    def from_config(cls, config: DetectorConfig) -> "CornerRefiner":
        d = config.detector
        return cls(
            config.corner_refinement,
            d.corner_refinement_win_size,
            d.corner_refinement_max_iterations,
            d.corner_refinement_min_accuracy,
        )

    def refine(self, image: np.ndarray, quad: np.ndarray) -> np.ndarray:
        """
        Return the quad with each corner moved to its sub-pixel location.

        Corners that do not converge inside their search window keep their
        input position. The source image is not modified.
        """
        if not self.enabled:
            return quad

        quad = as_quad(quad)
        gray = np.ascontiguousarray(image, dtype=np.uint8)
        h, w = gray.shape[:2]
        win = min(self.win_size, (min(h, w) - 6) // 2)
        if win < 1:
            return quad

        pts = quad.astype(np.float32).reshape(-1, 1, 2).copy()
        criteria = (
            cv2.TERM_CRITERIA_EPS + cv2.TERM_CRITERIA_MAX_ITER,
            self.max_iterations,
            self.min_accuracy,
        )
        try:
            refined = cv2.cornerSubPix(gray, pts, (win, win), (-1, -1), criteria)
        except cv2.error:
            return quad

        refined = np.asarray(refined, dtype=np.float64).reshape(4, 2)
        moved = np.linalg.norm(refined - quad, axis=1)
        bad = ~np.isfinite(refined).all(axis=1) | ~(moved <= win)
        refined[bad] = quad[bad]
        return refined
