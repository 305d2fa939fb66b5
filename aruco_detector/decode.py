from __future__ import annotations

from typing import Optional

import cv2
import numpy as np

from .config import DetectorConfig, DetectorParameters
from .dictionary import SymbolDictionary, load_dictionary
from .errors import CandidateRejected
from .geometry import UNIT_SQUARE, as_quad, find_homography
from .marker_types import DecodedMarker


class SymbolDecoder:
    """
    Reads the bit grid inside a candidate quad and matches it to a dictionary.

    The grid has ``marker_size + 2`` cells per side: the outer ring is the
    black border, the inner ``marker_size`` square carries the code.
    """

    def __init__(self, dictionary: SymbolDictionary, params: Optional[DetectorParameters] = None):
        self.dictionary = dictionary
        self.params = params or DetectorParameters()

    @classmethod
    def from_config(cls, config: DetectorConfig) -> "SymbolDecoder":
        return cls(load_dictionary(config.dictionary), config.detector)

    @property
    def cells(self) -> int:
        return self.dictionary.marker_size + 2

    def _sample_grid(self, quad: np.ndarray):
        """Pixel sample positions (map_x, map_y) for every cell of the marker grid."""
        ppc = self.params.perspective_remove_pixel_per_cell
        margin = self.params.perspective_remove_ignored_margin_per_cell
        offsets = margin + (np.arange(ppc) + 0.5) / ppc * (1.0 - 2.0 * margin)
        axis = (np.arange(self.cells)[:, None] + offsets[None, :]).reshape(-1) / self.cells
        U, V = np.meshgrid(axis, axis)

        try:
            H = find_homography(UNIT_SQUARE, quad)
        except ValueError as exc:
            raise CandidateRejected(str(exc)) from exc

        den = H[2, 0] * U + H[2, 1] * V + H[2, 2]
        if np.any(np.abs(den) < 1e-12):
            raise CandidateRejected("grid crosses the horizon line")
        map_x = (H[0, 0] * U + H[0, 1] * V + H[0, 2]) / den
        map_y = (H[1, 0] * U + H[1, 1] * V + H[1, 2]) / den
        return map_x.astype(np.float32), map_y.astype(np.float32)

    def read_bits(self, image: np.ndarray, quad: np.ndarray) -> np.ndarray:
        """
        Return the (cells, cells) 0/1 grid under the quad, white = 1.

        Each cell is the mean of a few samples from its centre region, compared
        against an Otsu threshold computed over the whole marker patch.
        """
        quad = as_quad(quad)
        gray = np.ascontiguousarray(image, dtype=np.uint8)
        map_x, map_y = self._sample_grid(quad)
        patch = cv2.remap(gray, map_x, map_y, cv2.INTER_LINEAR, borderMode=cv2.BORDER_REPLICATE)

        if float(patch.std()) < self.params.min_otsu_std_dev:
            raise CandidateRejected("not enough contrast inside candidate")

        threshold, _ = cv2.threshold(patch, 0, 255, cv2.THRESH_BINARY + cv2.THRESH_OTSU)
        ppc = self.params.perspective_remove_pixel_per_cell
        means = patch.reshape(self.cells, ppc, self.cells, ppc).mean(axis=(1, 3))
        return (means > threshold).astype(np.uint8)

    def decode(self, image: np.ndarray, quad: np.ndarray) -> DecodedMarker:
        """
        Decode a candidate or raise CandidateRejected.

        On success the returned corners are rotated so that corner 0 is the
        marker's canonical top-left corner.
        """
        quad = as_quad(quad)
        bits = self.read_bits(image, quad)

        if bits[0, :].any() or bits[-1, :].any() or bits[:, 0].any() or bits[:, -1].any():
            raise CandidateRejected("border ring is not uniformly black")

        dist = self.dictionary.distances(bits[1:-1, 1:-1])
        best = int(dist.min())
        if best > self.dictionary.max_correction_bits:
            raise CandidateRejected(f"nearest codeword is {best} bits away")

        hits = np.argwhere(dist == best)
        if len(hits) > 1:
            raise CandidateRejected(f"{len(hits)} codewords tie at distance {best}")

        k, marker_id = (int(v) for v in hits[0])
        return DecodedMarker(marker_id, np.roll(quad, k, axis=0), k, best)
