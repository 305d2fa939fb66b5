import logging
from pathlib import Path

import numpy as np
import pytest

from aruco_detector.config import DetectorConfig, SourceConfig
from aruco_detector.errors import CalibrationUnavailable, FrameUnavailable
from aruco_detector.frame_source import FrameSource, ReplayFrameSource
from aruco_detector.marker_types import RawFrame
from aruco_detector.output import CsvSink, DetectionSink
from aruco_detector.worker import DetectorWorker


class RecordingSink(DetectionSink):
    def __init__(self):
        self.opened = False
        self.closed = False
        self.detections = []

    def open(self):
        self.opened = True

    def publish(self, detection):
        self.detections.append(detection)

    def close(self):
        self.closed = True


class FlakySource(FrameSource):
    """Fails every other read, then ends."""

    def __init__(self, frames):
        self.frames = list(frames)
        self.calls = 0
        self.stopped = False

    def start(self):
        pass

    def read(self):
        self.calls += 1
        if self.calls % 2 == 1:
            raise FrameUnavailable("not yet")
        if not self.frames:
            return None
        img = self.frames.pop(0)
        return RawFrame(img.tobytes(), img.shape[1], img.shape[0], self.calls, self.calls)

    def stop(self):
        self.stopped = True


def _logger():
    return logging.getLogger("aruco_detector.test_worker")


def _cfg(**kwargs):
    return DetectorConfig(camera_name="wcam", retry_delay_sec=0.0, **kwargs)


def test_worker_publishes_detections(marker_scene, camera_64):
    img, _ = marker_scene
    sink = RecordingSink()
    source = ReplayFrameSource([img, np.full_like(img, 255), img])
    worker = DetectorWorker(_cfg(), logger=_logger(), sinks=[sink], source=source, camera=camera_64)

    summary = worker.run()

    assert summary.frames_processed == 3
    assert summary.frames_skipped == 0
    assert summary.detections == 2
    assert sink.opened and sink.closed
    assert [d.marker_id for d in sink.detections] == [7, 7]
    assert all(d.camera_name == "wcam" for d in sink.detections)


def test_worker_skips_unreadable_frames(marker_scene, camera_64):
    img, _ = marker_scene
    short = RawFrame(b"\x00" * 10, 64, 64, 1, 1)
    sink = RecordingSink()
    source = ReplayFrameSource([short, img])
    worker = DetectorWorker(_cfg(), logger=_logger(), sinks=[sink], source=source, camera=camera_64)

    summary = worker.run()

    assert summary.frames_skipped == 1
    assert summary.frames_processed == 1
    assert len(sink.detections) == 1


def test_worker_skips_unsupported_format(marker_scene, camera_64, caplog):
    img, _ = marker_scene
    sink = RecordingSink()
    worker = DetectorWorker(
        _cfg(image_format="rgb24"),
        logger=_logger(),
        sinks=[sink],
        source=ReplayFrameSource([img, img]),
        camera=camera_64,
    )

    with caplog.at_level(logging.WARNING, logger="aruco_detector.test_worker"):
        summary = worker.run()

    assert summary.frames_skipped == 2
    assert summary.frames_processed == 0
    assert sink.detections == []
    assert "Unsupported image_format" in caplog.text


def test_worker_retries_unavailable_frames(marker_scene, camera_64):
    img, _ = marker_scene
    source = FlakySource([img, img])
    sink = RecordingSink()
    worker = DetectorWorker(_cfg(), logger=_logger(), sinks=[sink], source=source, camera=camera_64)

    summary = worker.run()

    assert summary.frames_processed == 2
    assert summary.retries == 3
    assert len(sink.detections) == 2
    assert source.stopped


def test_worker_respects_max_frames(marker_scene, camera_64):
    img, _ = marker_scene
    sink = RecordingSink()
    worker = DetectorWorker(
        _cfg(max_frames=2),
        logger=_logger(),
        sinks=[sink],
        source=ReplayFrameSource([img] * 5),
        camera=camera_64,
    )
    assert worker.run().frames_processed == 2


def test_worker_stop_before_run(marker_scene, camera_64):
    img, _ = marker_scene
    sink = RecordingSink()
    worker = DetectorWorker(
        _cfg(), logger=_logger(), sinks=[sink], source=ReplayFrameSource([img]), camera=camera_64
    )
    worker.stop()
    summary = worker.run()
    assert summary.frames_processed == 0
    assert sink.closed


def test_worker_requires_intrinsics(tmp_path: Path):
    cfg = _cfg(intrinsics_path=str(tmp_path / "missing.yaml"))
    with pytest.raises(CalibrationUnavailable):
        DetectorWorker(cfg, logger=_logger(), sinks=[RecordingSink()], source=ReplayFrameSource([]))


def test_worker_builds_source_from_config(tmp_path: Path, camera_64):
    cfg = _cfg(source=SourceConfig(type="pipe", path=str(tmp_path / "frames.bin")))
    worker = DetectorWorker(cfg, logger=_logger(), sinks=[RecordingSink()], camera=camera_64)
    assert worker.source.path == str(tmp_path / "frames.bin")


def test_worker_missing_pipe_closes_sinks(tmp_path: Path, camera_64):
    out = tmp_path / "dets.csv"
    sink = CsvSink(out)
    cfg = _cfg(source=SourceConfig(type="pipe", path=str(tmp_path / "absent.pipe")))
    worker = DetectorWorker(cfg, logger=_logger(), sinks=[sink], camera=camera_64)

    with pytest.raises(FileNotFoundError):
        worker.run()

    assert sink._fh is None
    assert out.read_text().splitlines()[0].startswith("timestamp_ns,camera")
