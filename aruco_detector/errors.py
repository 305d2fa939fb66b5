"""Exception taxonomy for the detector service."""


class ArucoDetectorError(Exception):
    """Base class for all detector errors."""


class ConfigInvalid(ArucoDetectorError, ValueError):
    """Configuration is malformed or out of range. Fatal at startup."""


class CalibrationUnavailable(ArucoDetectorError, RuntimeError):
    """Camera intrinsics are missing or unreadable. Fatal at startup."""


class CandidateRejected(ArucoDetectorError):
    """A candidate quad is not a marker of the configured dictionary."""


class PoseDegenerate(ArucoDetectorError):
    """Image points are collinear or otherwise unusable for a pose solve."""


class FrameUnavailable(ArucoDetectorError):
    """No frame could be read right now; the caller should retry."""


class UnsupportedImageFormat(ArucoDetectorError):
    """The frame's pixel format is not one the detector understands."""
