"""Square fiducial marker detection and planar pose service."""

from .config import DetectorConfig, load_config
from .dictionary import SymbolDictionary, load_dictionary
from .marker_types import CameraModel, Detection, SizeTable
from .pipeline import MarkerPipeline
from .worker import DetectorWorker

__all__ = [
    "CameraModel",
    "Detection",
    "DetectorConfig",
    "DetectorWorker",
    "MarkerPipeline",
    "SizeTable",
    "SymbolDictionary",
    "load_config",
    "load_dictionary",
]
