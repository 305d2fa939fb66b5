from __future__ import annotations

import logging
from typing import Optional

import cv2
import numpy as np

from .candidates import CandidateExtractor
from .config import DetectorConfig
from .decode import SymbolDecoder
from .dictionary import SymbolDictionary, load_dictionary
from .errors import CandidateRejected, PoseDegenerate
from .geometry import mean_corner_distance, quad_perimeter
from .marker_types import CameraModel, DecodedMarker, Detection
from .pose import PlanarPoseSolver
from .refine import CornerRefiner


def downscale_image(gray: np.ndarray, factor: int) -> tuple[np.ndarray, float]:
    """Shrink the image by an integer factor; returns (image, scale back to full size)."""
    if factor <= 1:
        return gray, 1.0
    small = cv2.resize(gray, None, fx=1.0 / factor, fy=1.0 / factor, interpolation=cv2.INTER_AREA)
    return small, float(factor)


class MarkerPipeline:
    """
    Per-frame marker detection: extract -> decode -> refine -> solve.

    Holds only read-only state (dictionary, camera model, size table), so one
    instance can process any number of frames; nothing carries between them.
    """

    def __init__(
        self,
        config: DetectorConfig,
        camera: CameraModel,
        dictionary: Optional[SymbolDictionary] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config.validate()
        self.camera = camera
        self.dictionary = dictionary or load_dictionary(config.dictionary)
        self.sizes = config.size_table()
        self.log = logger or logging.getLogger(__name__)

        self.extractor = CandidateExtractor.from_config(config)
        self.decoder = SymbolDecoder(self.dictionary, config.detector)
        self.refiner = CornerRefiner.from_config(config)
        self.solver = PlanarPoseSolver(camera)

    def detect(self, image: np.ndarray) -> list[DecodedMarker]:
        """Decoded markers in ``image`` coordinates, near-duplicates merged."""
        decoded = []
        for quad in self.extractor.extract(image):
            try:
                decoded.append(self.decoder.decode(image, quad))
            except CandidateRejected as e:
                self.log.debug("candidate rejected: %s", e)

        decoded.sort(key=lambda m: quad_perimeter(m.corners), reverse=True)
        kept: list[DecodedMarker] = []
        for marker in decoded:
            tol = self.config.detector.min_marker_distance_rate * quad_perimeter(marker.corners)
            if any(
                k.marker_id == marker.marker_id
                and mean_corner_distance(k.corners, marker.corners) < tol
                for k in kept
            ):
                continue
            kept.append(marker)
        return kept

    def process(
        self,
        image: np.ndarray,
        timestamp_ns: int,
        scale: float = 1.0,
        full_image: Optional[np.ndarray] = None,
    ) -> list[Detection]:
        """
        Detect on ``image`` and solve poses in full-resolution coordinates.

        ``scale`` is the factor ``image`` was shrunk by; corners are multiplied
        by it and refined on ``full_image`` (defaults to ``image``).
        """
        full = image if full_image is None else full_image
        detections = []
        for marker in self.detect(image):
            corners = marker.corners * scale
            corners = self.refiner.refine(full, corners)
            size_m = self.sizes.size_for(marker.marker_id)
            try:
                pose = self.solver.solve(corners, size_m)
            except PoseDegenerate as e:
                self.log.debug("marker %d dropped: %s", marker.marker_id, e)
                continue
            detections.append(
                Detection(
                    marker_id=marker.marker_id,
                    corners=corners,
                    translation=pose.translation,
                    rotation=pose.rotation,
                    timestamp_ns=timestamp_ns,
                    size_m=size_m,
                    camera_name=self.config.camera_name,
                    reprojection_error=pose.reprojection_error,
                )
            )
        return detections

    def process_frame(self, gray: np.ndarray, timestamp_ns: int) -> list[Detection]:
        """Full-resolution gray frame in, detections out (applies configured downscale)."""
        proc, scale = downscale_image(gray, self.config.downscale)
        return self.process(proc, timestamp_ns, scale=scale, full_image=gray)
