import argparse
import logging
import signal
import sys

from .config import DetectorConfig, load_config
from .errors import CalibrationUnavailable, ConfigInvalid
from .logging_utils import setup_logger
from .worker import DetectorWorker


def _build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Detect square fiducial markers and publish their poses")
    ap.add_argument("--config", required=True, help="Path to JSON/YAML config")

    ap.add_argument("--camera-name")
    ap.add_argument("--dict", help="Marker dictionary, e.g. DICT_4X4_50")
    ap.add_argument("--intrinsics", help="OpenCV FileStorage calibration file")
    ap.add_argument("--image-format", choices=["gray8", "nv12"])
    ap.add_argument("--downscale", type=int)
    ap.add_argument("--min-perimeter-rate", type=float)
    ap.add_argument("--default-size-m", type=float)
    ap.add_argument("--no-corner-refinement", action="store_true")
    ap.add_argument("--output", help="CSV file for detections")
    ap.add_argument("--max-frames", type=int)
    ap.add_argument("--log-file")
    ap.add_argument("-v", "--verbose", action="store_true", help="Log per-frame debug output")

    return ap


def _apply_args(cfg: DetectorConfig, args: argparse.Namespace) -> DetectorConfig:
    return cfg.apply_overrides(
        camera_name=args.camera_name,
        dictionary=args.dict,
        intrinsics_path=args.intrinsics,
        image_format=args.image_format,
        downscale=args.downscale,
        min_marker_perimeter_rate=args.min_perimeter_rate,
        default_size_m=args.default_size_m,
        corner_refinement=False if args.no_corner_refinement else None,
        output_path=args.output,
        max_frames=args.max_frames,
    )


def main(argv=None) -> int:
    ap = _build_parser()
    args = ap.parse_args(argv)

    try:
        cfg = _apply_args(load_config(args.config), args).validate()
        logger = setup_logger(
            cfg.camera_name,
            logging.DEBUG if args.verbose else logging.INFO,
            args.log_file,
        )
        worker = DetectorWorker(cfg, logger=logger)
    except (FileNotFoundError, ConfigInvalid, CalibrationUnavailable) as e:
        print(f"aruco-detector: {e}", file=sys.stderr)
        return 1

    def _handle_signal(_sig, _frame):
        worker.stop()

    signal.signal(signal.SIGINT, _handle_signal)
    if hasattr(signal, "SIGTERM"):
        signal.signal(signal.SIGTERM, _handle_signal)

    try:
        summary = worker.run()
    except (OSError, RuntimeError) as e:
        logger.error("detector failed: %s", e)
        print(f"aruco-detector: {e}", file=sys.stderr)
        return 1
    print(summary)
    return 0


if __name__ == "__main__":
    sys.exit(main())
