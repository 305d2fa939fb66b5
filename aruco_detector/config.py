from __future__ import annotations

import json
from dataclasses import dataclass, asdict, field, fields, replace
from pathlib import Path
from typing import Any, Optional

from .dictionary import load_dictionary, normalize_name
from .errors import ConfigInvalid
from .marker_types import SizeTable


@dataclass(frozen=True)
class SourceConfig:
    """Configuration for the frame source (raw pipe or camera device)."""

    type: str = "pipe"  # "pipe", "device"
    path: str = ""  # For pipes: FIFO or file with header+payload records
    device: int | str = 0
    fps: int = 30
    width: int = 640
    height: int = 480

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class DetectorParameters:
    max_marker_perimeter_rate: float = 4.0
    polygonal_approx_accuracy_rate: float = 0.03
    min_corner_distance_rate: float = 0.05
    min_distance_to_border: int = 3
    adaptive_thresh_win_size_min: int = 3
    adaptive_thresh_win_size_max: int = 23
    adaptive_thresh_win_size_step: int = 10
    adaptive_thresh_constant: float = 7.0
    min_marker_distance_rate: float = 0.05
    # Decoding
    perspective_remove_pixel_per_cell: int = 4
    perspective_remove_ignored_margin_per_cell: float = 0.13
    min_otsu_std_dev: float = 5.0
    # Sub-pixel refinement
    corner_refinement_win_size: int = 5
    corner_refinement_max_iterations: int = 30
    corner_refinement_min_accuracy: float = 0.1

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class DetectorConfig:
    camera_name: str = "cam"
    image_format: str = "gray8"  # "gray8" or "nv12"
    dictionary: str = "DICT_4X4_50"
    intrinsics_path: str = ""
    default_size_m: float = 0.16
    id_size_map: dict[int, float] = field(default_factory=dict)
    downscale: int = 1
    min_marker_perimeter_rate: float = 0.02
    corner_refinement: bool = True
    output_path: Optional[str] = None
    max_frames: Optional[int] = None
    retry_delay_sec: float = 0.001
    source: SourceConfig = field(default_factory=SourceConfig)
    detector: DetectorParameters = field(default_factory=DetectorParameters)

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)

    def apply_overrides(self, **kwargs: Any) -> "DetectorConfig":
        known = {f.name for f in fields(self)}
        changes = {k: v for k, v in kwargs.items() if v is not None and k in known}
        return replace(self, **changes) if changes else self

    def size_table(self) -> SizeTable:
        return SizeTable(self.default_size_m, self.id_size_map)

    def validate(self) -> "DetectorConfig":
        """Raise ConfigInvalid on any out-of-range option; returns self."""
        if isinstance(self.downscale, bool) or not isinstance(self.downscale, int) or self.downscale < 1:
            raise ConfigInvalid(f"downscale must be an integer >= 1, got {self.downscale!r}")
        if not self.min_marker_perimeter_rate > 0:
            raise ConfigInvalid("min_marker_perimeter_rate must be positive")
        if self.min_marker_perimeter_rate >= self.detector.max_marker_perimeter_rate:
            raise ConfigInvalid("min_marker_perimeter_rate must be below max_marker_perimeter_rate")
        if not self.default_size_m > 0:
            raise ConfigInvalid("default_size_m must be positive")
        for marker_id, size in self.id_size_map.items():
            if not size > 0:
                raise ConfigInvalid(f"id_size_map[{marker_id}] must be positive, got {size!r}")
        d = self.detector
        if d.adaptive_thresh_win_size_min < 3 or d.adaptive_thresh_win_size_step < 1:
            raise ConfigInvalid("adaptive threshold window must start at >= 3 with step >= 1")
        if d.adaptive_thresh_win_size_max < d.adaptive_thresh_win_size_min:
            raise ConfigInvalid("adaptive_thresh_win_size_max must be >= adaptive_thresh_win_size_min")
        if d.perspective_remove_pixel_per_cell < 1:
            raise ConfigInvalid("perspective_remove_pixel_per_cell must be >= 1")
        if not 0.0 <= d.perspective_remove_ignored_margin_per_cell < 0.5:
            raise ConfigInvalid("perspective_remove_ignored_margin_per_cell must be in [0, 0.5)")
        if d.corner_refinement_win_size < 1 or d.corner_refinement_max_iterations < 1:
            raise ConfigInvalid("corner refinement window and iterations must be >= 1")
        load_dictionary(self.dictionary)
        return self


def _load_yaml(path: Path) -> dict[str, Any]:
    try:
        import yaml  # type: ignore
    except Exception as exc:  # pragma: no cover - optional dependency
        raise RuntimeError(
            "YAML config requested but PyYAML is not installed. "
            "Install with: pip install pyyaml"
        ) from exc
    with path.open("r", encoding="utf-8") as fp:
        try:
            data = yaml.safe_load(fp) or {}
        except yaml.YAMLError as exc:
            raise ConfigInvalid(f"Malformed YAML config {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigInvalid("YAML config root must be a mapping")
    return data


def _normalize_size_map(value: Any) -> dict[int, float]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigInvalid("id_size_map must be a mapping of marker_id -> size_m")
    try:
        return {int(k): float(v) for k, v in value.items()}
    except (TypeError, ValueError) as exc:
        raise ConfigInvalid(f"id_size_map entries must be numeric: {exc}") from exc


def _pick(raw: dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in raw and raw[key] is not None:
            return raw[key]
    return default


def _parse_source(raw: dict[str, Any], src_raw: Any) -> SourceConfig:
    src = SourceConfig()
    if src_raw is not None and not isinstance(src_raw, dict):
        raise ConfigInvalid("source must be a mapping")
    src_raw = dict(src_raw or {})
    device = src_raw.get("device", src.device)
    if isinstance(device, str) and device.isdigit():
        device = int(device)
    return SourceConfig(
        type=str(src_raw.get("type", src.type)),
        path=str(_pick(src_raw, "path", default=None) or raw.get("camera_pipe") or src.path),
        device=device,
        fps=int(src_raw.get("fps", src.fps)),
        width=int(src_raw.get("width", src.width)),
        height=int(src_raw.get("height", src.height)),
    )


def _parse_detector(det_raw: Any) -> DetectorParameters:
    if det_raw is None:
        return DetectorParameters()
    if not isinstance(det_raw, dict):
        raise ConfigInvalid("detector must be a mapping")
    base = DetectorParameters()
    values = {}
    for f in fields(base):
        if f.name in det_raw:
            kind = type(getattr(base, f.name))
            values[f.name] = kind(det_raw[f.name])
    unknown = set(det_raw) - {f.name for f in fields(base)}
    if unknown:
        raise ConfigInvalid(f"Unknown detector parameters: {sorted(unknown)}")
    return replace(base, **values)


def config_from_dict(raw: dict[str, Any]) -> DetectorConfig:
    """Build and validate a config from a parsed JSON/YAML mapping."""
    if not isinstance(raw, dict):
        raise ConfigInvalid("Config root must be a JSON/YAML object")

    cfg = DetectorConfig()
    try:
        max_frames = raw.get("max_frames", cfg.max_frames)
        output_path = _pick(raw, "output_path", "out_pipe", default=cfg.output_path)
        cfg = DetectorConfig(
            camera_name=str(raw.get("camera_name", cfg.camera_name)),
            image_format=str(raw.get("image_format", cfg.image_format)),
            dictionary=normalize_name(str(_pick(raw, "dictionary", "aruco_dict", default=cfg.dictionary))),
            intrinsics_path=str(_pick(raw, "intrinsics_path", "intrinsics", default=cfg.intrinsics_path)),
            default_size_m=float(raw.get("default_size_m", cfg.default_size_m)),
            id_size_map=_normalize_size_map(raw.get("id_size_map")),
            downscale=int(_pick(raw, "downscale", "downscale_factor", default=cfg.downscale)),
            min_marker_perimeter_rate=float(
                raw.get("min_marker_perimeter_rate", cfg.min_marker_perimeter_rate)
            ),
            corner_refinement=bool(raw.get("corner_refinement", cfg.corner_refinement)),
            output_path=str(output_path) if output_path else None,
            max_frames=int(max_frames) if max_frames is not None else None,
            retry_delay_sec=float(raw.get("retry_delay_sec", cfg.retry_delay_sec)),
            source=_parse_source(raw, raw.get("source")),
            detector=_parse_detector(raw.get("detector")),
        )
    except (TypeError, ValueError) as exc:
        if isinstance(exc, ConfigInvalid):
            raise
        raise ConfigInvalid(f"Invalid config value: {exc}") from exc
    return cfg.validate()


def load_config(path: str | Path) -> DetectorConfig:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Config not found: {p}")

    if p.suffix.lower() in {".yaml", ".yml"}:
        raw = _load_yaml(p)
    else:
        with p.open("r", encoding="utf-8") as fp:
            try:
                raw = json.load(fp)
            except json.JSONDecodeError as exc:
                raise ConfigInvalid(f"Malformed JSON config {p}: {exc}") from exc

    return config_from_dict(raw)
