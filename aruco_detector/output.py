from __future__ import annotations

import csv
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

import numpy as np

from .marker_types import Detection


class DetectionSink(ABC):
    @abstractmethod
    def open(self) -> None: ...

    @abstractmethod
    def publish(self, detection: Detection) -> None: ...

    @abstractmethod
    def close(self) -> None: ...


class CsvSink(DetectionSink):
    """One CSV row per published detection."""

    HEADER = [
        "timestamp_ns",
        "camera",
        "marker_id",
        "size_m",
        "tx", "ty", "tz",
        "r00", "r01", "r02",
        "r10", "r11", "r12",
        "r20", "r21", "r22",
        "reprojection_error",
    ]

    def __init__(self, csv_path: str | Path):
        self.csv_path = Path(csv_path)
        self._fh = None
        self._w = None

    def open(self) -> None:
        self.csv_path.parent.mkdir(parents=True, exist_ok=True)
        self._fh = open(self.csv_path, "w", newline="")
        self._w = csv.writer(self._fh)
        self._w.writerow(self.HEADER)

    @staticmethod
    def to_row(d: Detection) -> list:
        t = np.asarray(d.translation, dtype=np.float64).reshape(3).tolist()
        R = np.asarray(d.rotation, dtype=np.float64).reshape(9).tolist()
        err = "" if d.reprojection_error is None else f"{d.reprojection_error:.6g}"
        return [d.timestamp_ns, d.camera_name, d.marker_id, d.size_m, *t, *R, err]

    def publish(self, detection: Detection) -> None:
        if self._w is None:
            return
        self._w.writerow(self.to_row(detection))
        self._fh.flush()

    def close(self) -> None:
        if self._fh is not None:
            self._fh.close()
            self._fh = None
            self._w = None


class NullSink(DetectionSink):
    def open(self) -> None:
        return None

    def publish(self, detection: Detection) -> None:
        return None

    def close(self) -> None:
        return None


def build_sinks(output_path: Optional[str]) -> list[DetectionSink]:
    if output_path:
        return [CsvSink(output_path)]
    return [NullSink()]
