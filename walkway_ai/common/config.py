from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import yaml


DEFAULT_CONFIG: dict[str, Any] = {
    "device": "cpu",
    "models": {
        "sign": {
            "model_path": "models/regressionmodel.tflite",
            "score_threshold": 0.5,
            "max_results": 5,
            "thread_count": 2,
        },
        "walkway": {
            "model_path": "models/sidewalkmodel.tflite",
            "score_threshold": 0.5,
            "max_results": 10,
            "thread_count": 2,
        },
    },
    "overlay": {
        "view_width": 720,
        "view_height": 960,
        "box_color": [0, 200, 255],
        "box_thickness": 8,
        "text_color": [255, 255, 255],
        "text_background_color": [0, 0, 0],
        "font_scale": 1.2,
        "text_thickness": 2,
        "label_padding": 8,
    },
    "data_paths": {
        "logs_dir": "data/logs",
    },
    "log_level": "INFO",
}


@dataclass(frozen=True)
class ModelConfig:
    model_path: str | None = None
    score_threshold: float | None = None
    max_results: int | None = None
    thread_count: int | None = None


@dataclass(frozen=True)
class OverlayConfig:
    view_width: int = 720
    view_height: int = 960
    box_color: tuple[int, int, int] = (0, 200, 255)
    box_thickness: int = 8
    text_color: tuple[int, int, int] = (255, 255, 255)
    text_background_color: tuple[int, int, int] = (0, 0, 0)
    font_scale: float = 1.2
    text_thickness: int = 2
    label_padding: int = 8


@dataclass(frozen=True)
class DataPaths:
    logs_dir: str = "data/logs"


@dataclass(frozen=True)
class AppConfig:
    device: str = "cpu"
    models: dict[str, ModelConfig] = field(default_factory=dict)
    overlay: OverlayConfig = field(default_factory=OverlayConfig)
    data_paths: DataPaths = field(default_factory=DataPaths)
    log_level: str = "INFO"

    def model(self, name: str) -> ModelConfig:
        return self.models.get(name, ModelConfig())


def deep_update(base: dict[str, Any], updates: dict[str, Any]) -> dict[str, Any]:
    result = dict(base)
    for key, value in updates.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = deep_update(result[key], value)
        else:
            result[key] = value
    return result


def _color(value: Any, default: tuple[int, int, int]) -> tuple[int, int, int]:
    if value is None:
        return default
    channels = tuple(int(channel) for channel in value)
    if len(channels) != 3:
        raise ValueError(f"colors must have three channels, got {value!r}")
    return channels  # type: ignore[return-value]


def _optional(value: Any, cast):
    return cast(value) if value is not None else None


def validate_config(config: AppConfig) -> None:
    if not config.device.strip():
        raise ValueError("device must not be empty")
    for name, model in config.models.items():
        if model.score_threshold is not None and not (0.0 <= model.score_threshold <= 1.0):
            raise ValueError(f"models.{name}.score_threshold must be between 0 and 1")
        if model.max_results is not None and model.max_results <= 0:
            raise ValueError(f"models.{name}.max_results must be > 0")
        if model.thread_count is not None and model.thread_count <= 0:
            raise ValueError(f"models.{name}.thread_count must be > 0")
    overlay = config.overlay
    if overlay.view_width <= 0 or overlay.view_height <= 0:
        raise ValueError("overlay view size must be > 0")
    if overlay.box_thickness <= 0 or overlay.text_thickness <= 0:
        raise ValueError("overlay thickness values must be > 0")
    if overlay.font_scale <= 0:
        raise ValueError("overlay.font_scale must be > 0")
    if overlay.label_padding < 0:
        raise ValueError("overlay.label_padding must be >= 0")
    for color in (overlay.box_color, overlay.text_color, overlay.text_background_color):
        if any(not (0 <= channel <= 255) for channel in color):
            raise ValueError("overlay colors must use channel values between 0 and 255")


def config_from_dict(data: dict[str, Any]) -> AppConfig:
    merged = deep_update(DEFAULT_CONFIG, data)
    models_dict = merged.get("models", {}) or {}
    overlay_dict = merged.get("overlay", {})
    data_paths_dict = merged.get("data_paths", {})
    defaults = OverlayConfig()
    config = AppConfig(
        device=str(merged.get("device", "cpu")),
        models={
            str(name).lower(): ModelConfig(
                model_path=model_dict.get("model_path"),
                score_threshold=_optional(model_dict.get("score_threshold"), float),
                max_results=_optional(model_dict.get("max_results"), int),
                thread_count=_optional(model_dict.get("thread_count"), int),
            )
            for name, model_dict in models_dict.items()
            if isinstance(model_dict, dict)
        },
        overlay=OverlayConfig(
            view_width=int(overlay_dict.get("view_width", defaults.view_width)),
            view_height=int(overlay_dict.get("view_height", defaults.view_height)),
            box_color=_color(overlay_dict.get("box_color"), defaults.box_color),
            box_thickness=int(overlay_dict.get("box_thickness", defaults.box_thickness)),
            text_color=_color(overlay_dict.get("text_color"), defaults.text_color),
            text_background_color=_color(
                overlay_dict.get("text_background_color"), defaults.text_background_color
            ),
            font_scale=float(overlay_dict.get("font_scale", defaults.font_scale)),
            text_thickness=int(overlay_dict.get("text_thickness", defaults.text_thickness)),
            label_padding=int(overlay_dict.get("label_padding", defaults.label_padding)),
        ),
        data_paths=DataPaths(
            logs_dir=str(data_paths_dict.get("logs_dir", "data/logs")),
        ),
        log_level=str(merged.get("log_level", "INFO")).upper(),
    )
    validate_config(config)
    return config


def default_config() -> AppConfig:
    return config_from_dict({})


def load_config(path: str) -> AppConfig:
    with open(path, "r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    return config_from_dict(data)
