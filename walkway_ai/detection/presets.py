from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum

from walkway_ai.common.config import AppConfig


class ModelKind(str, Enum):
    SIGN = "sign"
    WALKWAY = "walkway"


@dataclass(frozen=True)
class ModelPreset:
    kind: ModelKind
    display_name: str
    asset_path: str
    score_threshold: float = 0.5
    max_results: int = 5
    thread_count: int = 2


PRESETS: dict[ModelKind, ModelPreset] = {
    ModelKind.SIGN: ModelPreset(
        kind=ModelKind.SIGN,
        display_name="Sign",
        asset_path="models/regressionmodel.tflite",
        max_results=5,
    ),
    ModelKind.WALKWAY: ModelPreset(
        kind=ModelKind.WALKWAY,
        display_name="Walkway damage",
        asset_path="models/sidewalkmodel.tflite",
        max_results=10,
    ),
}


def parse_model_kind(value: str | ModelKind) -> ModelKind:
    if isinstance(value, ModelKind):
        return value
    try:
        return ModelKind(value.strip().lower())
    except ValueError as exc:
        choices = ", ".join(kind.value for kind in ModelKind)
        raise ValueError(f"Unknown model kind {value!r}; expected one of: {choices}") from exc


def resolve_preset(kind: ModelKind, config: AppConfig | None = None) -> ModelPreset:
    preset = PRESETS[kind]
    if config is None:
        return preset
    overrides = config.model(kind.value)
    return replace(
        preset,
        asset_path=overrides.model_path or preset.asset_path,
        score_threshold=(
            overrides.score_threshold
            if overrides.score_threshold is not None
            else preset.score_threshold
        ),
        max_results=overrides.max_results or preset.max_results,
        thread_count=overrides.thread_count or preset.thread_count,
    )
