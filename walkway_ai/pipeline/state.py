from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Mapping

from walkway_ai.common.schemas import Detection
from walkway_ai.detection.handle import ModelHandle
from walkway_ai.detection.presets import ModelKind


class PipelineState(str, Enum):
    LOADING = "loading"
    IDLE = "idle"
    CAPTURING = "capturing"
    CONVERTING = "converting"
    DETECTING = "detecting"
    RENDERING = "rendering"
    ERROR = "error"
    RELOADING = "reloading"
    DISABLED = "disabled"


class PipelineSignal(str, Enum):
    MODELS_LOADED = "models_loaded"
    PARTIAL_LOAD = "partial_load"
    NO_MODELS = "no_models"
    NOT_READY = "not_ready"
    BUSY = "busy"
    UNSUPPORTED_FORMAT = "unsupported_format"
    DECODE_FAILED = "decode_failed"
    DETECTION_FAILED = "detection_failed"
    NO_OBJECTS = "no_objects"
    DETECTED = "detected"
    STALE_RESULT = "stale_result"
    MODEL_SWITCHED = "model_switched"
    MODEL_UNAVAILABLE = "model_unavailable"
    THRESHOLD_CHANGED = "threshold_changed"
    THRESHOLD_FAILED = "threshold_failed"


class StartupOutcome(str, Enum):
    BOTH_READY = "both_ready"
    SIGN_ONLY = "sign_only"
    WALKWAY_ONLY = "walkway_only"
    DISABLED = "disabled"


@dataclass(frozen=True)
class ActiveSelection:
    kind: ModelKind | None = None
    handle: ModelHandle | None = None

    @property
    def empty(self) -> bool:
        return self.handle is None

    @property
    def ready(self) -> bool:
        return self.handle is not None and self.handle.ready


@dataclass(frozen=True)
class CaptureOutcome:
    signal: PipelineSignal
    results: list[Detection] | None = None
    source_width: int | None = None
    source_height: int | None = None
    model: ModelKind | None = None
    message: str = ""


def _is_ready(handle: ModelHandle | None) -> bool:
    return handle is not None and handle.ready


def resolve_startup(
    handles: Mapping[ModelKind, ModelHandle | None],
) -> tuple[StartupOutcome, ActiveSelection, bool]:
    """Pick the initial selection and whether switching is allowed after loading."""
    sign = handles.get(ModelKind.SIGN)
    walkway = handles.get(ModelKind.WALKWAY)
    sign_ready = _is_ready(sign)
    walkway_ready = _is_ready(walkway)
    if sign_ready and walkway_ready:
        return StartupOutcome.BOTH_READY, ActiveSelection(ModelKind.SIGN, sign), True
    if sign_ready:
        return StartupOutcome.SIGN_ONLY, ActiveSelection(ModelKind.SIGN, sign), False
    if walkway_ready:
        return StartupOutcome.WALKWAY_ONLY, ActiveSelection(ModelKind.WALKWAY, walkway), False
    return StartupOutcome.DISABLED, ActiveSelection(), False
