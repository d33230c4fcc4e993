"""Agent settings read from an OpenCV-style YAML settings file."""

from __future__ import annotations

from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Mapping

import numpy as np
import yaml

_MATRIX_TAG = "tag:yaml.org,2002:opencv-matrix"
_MATRIX_DTYPES = {
    "u": np.uint8,
    "c": np.int8,
    "w": np.uint16,
    "s": np.int16,
    "i": np.int32,
    "f": np.float32,
    "d": np.float64,
}


class _SettingsLoader(yaml.SafeLoader):
    """Safe loader that understands ``!!opencv-matrix`` nodes."""


def _construct_matrix(loader: yaml.SafeLoader, node: yaml.Node) -> np.ndarray:
    spec = loader.construct_mapping(node, deep=True)
    try:
        rows = int(spec["rows"])
        cols = int(spec["cols"])
        data = spec["data"]
    except KeyError as exc:
        raise ValueError(f"matrix node lacks {exc.args[0]!r}") from None
    dtype = _MATRIX_DTYPES.get(str(spec.get("dt", "d")), np.float64)
    return np.asarray(data, dtype=dtype).reshape(rows, cols)


_SettingsLoader.add_constructor(_MATRIX_TAG, _construct_matrix)


def read_settings(path: str | Path) -> dict[str, Any]:
    """Read a settings file into a dictionary keyed by dotted names."""
    text = Path(path).read_text(encoding="utf-8")
    lines = text.splitlines()
    if lines and lines[0].lstrip().startswith("%YAML"):
        lines = lines[1:]
        if lines and lines[0].strip() == "---":
            lines = lines[1:]
    document = yaml.load("\n".join(lines), Loader=_SettingsLoader)
    if document is None:
        return {}
    if not isinstance(document, dict):
        raise ValueError(f"{path}: settings must be a mapping")
    return {str(key): value for key, value in document.items()}


def _real(settings: Mapping[str, Any], key: str) -> float:
    value = settings.get(key, 0)
    if value is None:
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValueError(f"setting {key!r} is not a number: {value!r}") from None


def _integer(settings: Mapping[str, Any], key: str) -> int:
    return int(round(_real(settings, key)))


@dataclass
class SlamConfig:
    """Camera, feature extractor and viewer settings of one agent."""

    fx: float = 0.0
    fy: float = 0.0
    cx: float = 0.0
    cy: float = 0.0
    rgb: int = 0
    n_features: int = 0
    scale_factor: float = 0.0
    n_levels: int = 0
    ini_th_fast: int = 0
    min_th_fast: int = 0
    th_depth: float = 0.0
    depth_map_factor: float = 0.0
    dist_coef: tuple[float, ...] = (0.0, 0.0, 0.0, 0.0)
    bf: float = 0.0
    fps: float = 0.0
    keyframe_size: float = 0.0
    keyframe_line_width: float = 0.0
    graph_line_width: float = 0.0
    point_size: float = 0.0
    camera_size: float = 0.0
    camera_line_width: float = 0.0
    viewpoint_x: float = 0.0
    viewpoint_y: float = 0.0
    viewpoint_z: float = 0.0
    viewpoint_f: float = 0.0

    @classmethod
    def from_mapping(cls, settings: Mapping[str, Any]) -> "SlamConfig":
        """Build a configuration; missing keys read as zero."""
        dist = [
            _real(settings, "Camera.k1"),
            _real(settings, "Camera.k2"),
            _real(settings, "Camera.p1"),
            _real(settings, "Camera.p2"),
        ]
        k3 = _real(settings, "Camera.k3")
        if k3 != 0:
            dist.append(k3)

        return cls(
            fx=_real(settings, "Camera.fx"),
            fy=_real(settings, "Camera.fy"),
            cx=_real(settings, "Camera.cx"),
            cy=_real(settings, "Camera.cy"),
            rgb=_integer(settings, "Camera.RGB"),
            n_features=_integer(settings, "ORBextractor.nFeatures"),
            scale_factor=_real(settings, "ORBextractor.scaleFactor"),
            n_levels=_integer(settings, "ORBextractor.nLevels"),
            ini_th_fast=_integer(settings, "ORBextractor.iniThFAST"),
            min_th_fast=_integer(settings, "ORBextractor.minThFAST"),
            th_depth=_real(settings, "ThDepth"),
            depth_map_factor=_real(settings, "DepthMapFactor"),
            dist_coef=tuple(dist),
            bf=_real(settings, "Camera.bf"),
            fps=_real(settings, "Camera.fps"),
            keyframe_size=_real(settings, "Viewer.KeyFrameSize"),
            keyframe_line_width=_real(settings, "Viewer.KeyFrameLineWidth"),
            graph_line_width=_real(settings, "Viewer.GraphLineWidth"),
            point_size=_real(settings, "Viewer.PointSize"),
            camera_size=_real(settings, "Viewer.CameraSize"),
            camera_line_width=_real(settings, "Viewer.CameraLineWidth"),
            viewpoint_x=_real(settings, "Viewer.ViewpointX"),
            viewpoint_y=_real(settings, "Viewer.ViewpointY"),
            viewpoint_z=_real(settings, "Viewer.ViewpointZ"),
            viewpoint_f=_real(settings, "Viewer.ViewpointF"),
        )

    @classmethod
    def load(cls, path: str | Path) -> "SlamConfig":
        """Read a settings file and build a configuration from it."""
        return cls.from_mapping(read_settings(path))

    def camera_matrix(self) -> np.ndarray:
        """Return the 3x3 calibration matrix K as float32."""
        k = np.eye(3, dtype=np.float32)
        k[0, 0] = self.fx
        k[1, 1] = self.fy
        k[0, 2] = self.cx
        k[1, 2] = self.cy
        return k


__all__ = ["SlamConfig", "read_settings"] + [f.name for f in fields(SlamConfig)][:0]