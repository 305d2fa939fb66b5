"""Binary marker dictionaries.

Codewords for the predefined dictionaries come from OpenCV's ArUco tables so
that ids agree with markers printed by the usual tools. Matching is done here
against the bit matrices themselves.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from functools import lru_cache

import cv2
import numpy as np

from .errors import ConfigInvalid

_NAME_RE = re.compile(r"^DICT_([4-7])X\1_(50|100|250|1000)$")


def normalize_name(name: str) -> str:
    """Accept "DICT_4X4_50", "4x4_50" or "dict_4x4_50" and return the canonical form."""
    key = (name or "").strip().upper()
    if not key.startswith("DICT_"):
        key = "DICT_" + key
    return key


def _rotations(codes: np.ndarray) -> np.ndarray:
    """(4, n, bits) stack of the codes turned by 0..3 quarter turns (np.rot90)."""
    n = codes.shape[0]
    return np.stack(
        [np.rot90(codes, k, axes=(1, 2)).reshape(n, -1) for k in range(4)]
    ).astype(np.uint8)


def _min_distance(codes: np.ndarray) -> int:
    """Smallest Hamming distance between any two (code, rotation) pairs."""
    n, size, _ = codes.shape
    bits = size * size
    flat = codes.reshape(n, -1).astype(np.int32)
    best = bits
    for k, rot in enumerate(_rotations(codes).astype(np.int32)):
        same = rot @ flat.T + (1 - rot) @ (1 - flat).T
        dist = bits - same
        if k == 0:
            if n < 2:
                continue
            dist = dist + np.eye(n, dtype=np.int32) * (bits + 1)
        best = min(best, int(dist.min()))
    return best


@dataclass(frozen=True, eq=False)
class SymbolDictionary:
    name: str
    codes: np.ndarray  # (n, size, size) of 0/1, white = 1
    min_distance: int = field(default=-1)
    _rotated: np.ndarray = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        codes = np.asarray(self.codes, dtype=np.uint8)
        if codes.ndim != 3 or codes.shape[1] != codes.shape[2] or len(codes) == 0:
            raise ConfigInvalid("dictionary codes must be a non-empty (n, size, size) array")
        codes = (codes > 0).astype(np.uint8)
        codes.setflags(write=False)
        object.__setattr__(self, "codes", codes)
        actual = _min_distance(codes)
        if self.min_distance < 0:
            object.__setattr__(self, "min_distance", actual)
        elif self.min_distance > actual:
            raise ConfigInvalid(
                f"dictionary {self.name!r} declares min_distance {self.min_distance} "
                f"but its codes are only {actual} bits apart"
            )
        rotated = _rotations(codes)
        rotated.setflags(write=False)
        object.__setattr__(self, "_rotated", rotated)

    def __len__(self) -> int:
        return int(self.codes.shape[0])

    @property
    def marker_size(self) -> int:
        return int(self.codes.shape[1])

    @property
    def max_correction_bits(self) -> int:
        """Bounded-distance decoding radius: floor((d_min - 1) / 2)."""
        return max(0, (self.min_distance - 1) // 2)

    def code_for(self, marker_id: int) -> np.ndarray:
        return self.codes[marker_id]

    def distances(self, bits: np.ndarray) -> np.ndarray:
        """
        Hamming distances of a sampled bit grid to every codeword.

        Returns a (4, n) array; entry [k, i] compares against code i turned by
        k quarter turns, i.e. the grid seen when the marker's canonical first
        corner sits at sampled corner (4 - k) % 4.
        """
        flat = np.asarray(bits, dtype=np.uint8).reshape(-1)
        if flat.size != self.marker_size ** 2:
            raise ValueError(f"expected {self.marker_size}x{self.marker_size} bits")
        return (self._rotated != flat).sum(axis=2)


def _predefined(code):
    if hasattr(cv2.aruco, "getPredefinedDictionary"):  # OpenCV >= 4.7
        return cv2.aruco.getPredefinedDictionary(code)
    return cv2.aruco.Dictionary_get(code)


def _render_bits(cv_dict, marker_id: int, size: int) -> np.ndarray:
    side = size + 2  # one pixel per cell, one-cell border
    if hasattr(cv2.aruco, "generateImageMarker"):
        img = cv2.aruco.generateImageMarker(cv_dict, marker_id, side)
    else:
        img = cv2.aruco.drawMarker(cv_dict, marker_id, side)
    return (img[1:-1, 1:-1] > 127).astype(np.uint8)


@lru_cache(maxsize=None)
def load_dictionary(name: str) -> SymbolDictionary:
    """
    Build one of the predefined ArUco dictionaries by name.

    Raises ConfigInvalid for names outside DICT_{4..7}X{4..7}_{50,100,250,1000}.
    """
    key = normalize_name(name)
    match = _NAME_RE.match(key)
    if match is None or not hasattr(cv2.aruco, key):
        raise ConfigInvalid(f"Unknown marker dictionary: {name!r}")
    size, count = int(match.group(1)), int(match.group(2))
    cv_dict = _predefined(getattr(cv2.aruco, key))
    codes = np.stack([_render_bits(cv_dict, i, size) for i in range(count)])
    return SymbolDictionary(key, codes)
