from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Optional

from .calib import load_camera_model
from .config import DetectorConfig
from .errors import FrameUnavailable, UnsupportedImageFormat
from .frame_source import FrameSource, build_source, frame_to_gray
from .logging_utils import setup_logger
from .marker_types import CameraModel
from .output import DetectionSink, build_sinks
from .pipeline import MarkerPipeline


@dataclass
class WorkerSummary:
    frames_processed: int
    frames_skipped: int
    detections: int
    retries: int
    avg_fps: float


class DetectorWorker:
    """
    Runs the frame loop for one camera: read -> gray -> detect -> publish.

    Construction loads and validates everything the loop needs, so a bad
    config or missing intrinsics fail here, before any frame is read.
    """

    def __init__(
        self,
        config: DetectorConfig,
        logger=None,
        sinks: Optional[list[DetectionSink]] = None,
        source: Optional[FrameSource] = None,
        camera: Optional[CameraModel] = None,
    ):
        self.config = config.validate()
        self.logger = logger or setup_logger(config.camera_name)
        if camera is None:
            camera = load_camera_model(config.intrinsics_path)
        self.camera = camera
        self.pipeline = MarkerPipeline(config, camera, logger=self.logger)
        self.sinks = sinks if sinks is not None else build_sinks(config.output_path)
        self.source = source if source is not None else build_source(config.source)
        self._stop_event = threading.Event()

    def stop(self) -> None:
        self._stop_event.set()

    def _publish(self, detections) -> None:
        for det in detections:
            for sink in self.sinks:
                sink.publish(det)

    def run(self) -> WorkerSummary:
        self.logger.info("detector started: %s", self.config.as_dict())

        t0 = time.time()
        frames = 0
        skipped = 0
        retries = 0
        published = 0

        try:
            for sink in self.sinks:
                sink.open()
            self.source.start()

            while not self._stop_event.is_set():
                if self.config.max_frames and frames >= self.config.max_frames:
                    break

                try:
                    raw = self.source.read()
                except FrameUnavailable as e:
                    retries += 1
                    self.logger.debug("frame unavailable: %s", e)
                    time.sleep(self.config.retry_delay_sec)
                    continue
                if raw is None:
                    self.logger.info("frame source closed")
                    break

                try:
                    gray = frame_to_gray(raw, self.config.image_format)
                except (UnsupportedImageFormat, FrameUnavailable) as e:
                    skipped += 1
                    self.logger.warning("frame %d skipped: %s", raw.frame_id, e)
                    continue

                detections = self.pipeline.process_frame(gray, raw.timestamp_ns)
                self._publish(detections)
                published += len(detections)
                frames += 1
                self.logger.debug(
                    "frame=%d ts=%d dets=%s",
                    raw.frame_id,
                    raw.timestamp_ns,
                    [d.marker_id for d in detections],
                )

        finally:
            try:
                self.source.stop()
            except Exception as e:
                self.logger.warning("frame source stop failed: %s", e)

            for sink in self.sinks:
                try:
                    sink.close()
                except Exception as e:
                    self.logger.warning("sink close failed: %s", e)

        avg = frames / max(1e-6, (time.time() - t0))
        self.logger.info(
            "summary frames=%d skipped=%d detections=%d avg_fps=%.2f",
            frames, skipped, published, avg,
        )
        return WorkerSummary(frames, skipped, published, retries, avg)
