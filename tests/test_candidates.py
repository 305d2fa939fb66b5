import types

import cv2
import numpy as np
import pytest

from aruco_detector.candidates import CandidateExtractor
from aruco_detector.config import DetectorConfig, DetectorParameters
from aruco_detector.geometry import mean_corner_distance, quad_perimeter


@pytest.mark.parametrize("value", [0, 255, 128])
def test_uniform_image_has_no_candidates(value):
    img = np.full((120, 160), value, dtype=np.uint8)
    assert list(CandidateExtractor().extract(img)) == []


def test_extract_is_lazy_and_recomputed(marker_scene):
    img, _ = marker_scene
    extractor = CandidateExtractor()
    gen = extractor.extract(img)
    assert isinstance(gen, types.GeneratorType)
    first = list(gen)
    assert list(gen) == []
    again = list(extractor.extract(img))
    assert len(again) == len(first)


def test_marker_border_is_a_candidate(marker_scene):
    img, edges = marker_scene
    quads = list(CandidateExtractor().extract(img))
    assert quads
    # contour vertices sit on the outermost dark pixels, half a pixel inside the edge
    assert min(mean_corner_distance(q, edges) for q in quads) < 1.0
    for q in quads:
        assert q.shape == (4, 2)
        d1, d2 = q[1] - q[0], q[2] - q[0]
        assert d1[0] * d2[1] - d1[1] * d2[0] > 0


def test_triangle_is_not_a_candidate():
    img = np.full((100, 100), 255, dtype=np.uint8)
    cv2.fillPoly(img, [np.array([[20, 80], [50, 20], [80, 80]], dtype=np.int32)], 0)
    assert list(CandidateExtractor().extract(img)) == []


def test_shape_touching_image_border_is_skipped():
    img = np.full((100, 100), 255, dtype=np.uint8)
    img[0:40, 0:40] = 0
    quads = list(CandidateExtractor().extract(img))
    assert all(q.min() >= DetectorParameters().min_distance_to_border for q in quads)


def test_small_markers_below_perimeter_rate_excluded(render_marker, place):
    img = place((200, 200), [(render_marker(3, 4), (40, 40)), (render_marker(9, 4), (120, 110))])
    # each marker is 24 px wide: corners 23 px apart, perimeter 92 < 0.5 * 200
    assert list(CandidateExtractor(min_marker_perimeter_rate=0.5).extract(img)) == []
    assert list(CandidateExtractor(min_marker_perimeter_rate=0.02).extract(img))


def test_perimeter_must_exceed_threshold():
    img = np.full((256, 256), 255, dtype=np.uint8)
    img[100:117, 100:117] = 0  # outer corners 16 px apart: perimeter 64
    assert list(CandidateExtractor(min_marker_perimeter_rate=0.25).extract(img)) == []
    quads = list(CandidateExtractor(min_marker_perimeter_rate=0.24).extract(img))
    assert len(quads) == 1
    assert quad_perimeter(quads[0]) == pytest.approx(64.0)


def test_raising_perimeter_rate_is_monotonic(render_marker, place):
    img = place(
        (240, 240),
        [
            (render_marker(1, 4), (20, 20)),
            (render_marker(2, 8), (20, 120)),
            (render_marker(3, 14), (130, 60)),
        ],
    )
    counts = [
        len(list(CandidateExtractor(min_marker_perimeter_rate=rate).extract(img)))
        for rate in (0.02, 0.2, 0.5, 0.9, 1.5)
    ]
    assert counts[0] > 0
    assert counts == sorted(counts, reverse=True)
    assert counts[-1] == 0


def test_from_config_uses_configured_rate():
    cfg = DetectorConfig(min_marker_perimeter_rate=0.3)
    extractor = CandidateExtractor.from_config(cfg)
    assert extractor.min_marker_perimeter_rate == 0.3
    assert extractor.window_sizes() == [3, 13, 23]
