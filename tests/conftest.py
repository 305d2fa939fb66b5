import numpy as np
import pytest

from aruco_detector.dictionary import load_dictionary
from aruco_detector.marker_types import CameraModel


def _render_bits(inner_bits, cell_px):
    """Marker image (black border + bits, white = 1) at cell_px pixels per cell."""
    inner = np.asarray(inner_bits, dtype=np.uint8)
    grid = np.zeros((inner.shape[0] + 2, inner.shape[1] + 2), dtype=np.uint8)
    grid[1:-1, 1:-1] = inner
    return np.kron(grid * 255, np.ones((cell_px, cell_px), dtype=np.uint8)).astype(np.uint8)


def _place(shape, patches, background=255):
    """Paste (patch, (row, col)) pairs onto a uniform canvas."""
    img = np.full(shape, background, dtype=np.uint8)
    for patch, (r, c) in patches:
        img[r:r + patch.shape[0], c:c + patch.shape[1]] = patch
    return img


def _edge_quad(row, col, side):
    """Exact outer-edge corners (TL, TR, BR, BL on screen) of a side x side block."""
    x0, y0 = col - 0.5, row - 0.5
    x1, y1 = col + side - 0.5, row + side - 0.5
    return np.array([[x0, y0], [x1, y0], [x1, y1], [x0, y1]], dtype=np.float64)


@pytest.fixture(scope="session")
def dict4():
    return load_dictionary("DICT_4X4_50")


@pytest.fixture
def render_bits():
    return _render_bits


@pytest.fixture
def render_marker(dict4):
    def _render(marker_id, cell_px, dictionary=None):
        d = dictionary or dict4
        return _render_bits(d.code_for(marker_id), cell_px)
    return _render


@pytest.fixture
def place():
    return _place


@pytest.fixture
def edge_quad():
    return _edge_quad


@pytest.fixture
def marker_scene(render_marker):
    """64x64 frame with marker 7 (8 px cells, 48 px wide) centred on a white background."""
    marker = render_marker(7, 8)
    return _place((64, 64), [(marker, (8, 8))]), _edge_quad(8, 8, 48)


@pytest.fixture
def camera_64():
    """Distortion-free pinhole for the 64x64 scene: f = 60 px, principal point at centre."""
    return CameraModel.pinhole(60.0, 31.5, 31.5)


@pytest.fixture
def camera_vga():
    return CameraModel.pinhole(800.0, 320.0, 240.0)
