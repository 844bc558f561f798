from __future__ import annotations

import logging
from pathlib import Path

import numpy as np

from walkway_ai.common.schemas import Category, Detection
from walkway_ai.detection.base import (
    DetectionError,
    InferenceOptions,
    LoadedModel,
    ModelLoadError,
)

logger = logging.getLogger(__name__)


class YOLOModel(LoadedModel):
    """Detection model served by ultralytics (.pt, .onnx or .tflite exports)."""

    def __init__(self, model_path: str, options: InferenceOptions) -> None:
        try:
            from ultralytics import YOLO  # type: ignore
        except Exception as exc:  # pragma: no cover - optional dependency
            raise ModelLoadError("ultralytics is not installed") from exc
        if not model_path:
            raise ModelLoadError("model_path is required for YOLOModel")
        if not Path(model_path).exists():
            raise ModelLoadError(f"Model asset not found: {model_path}")
        self.model_path = model_path
        self.options = options
        self.model = YOLO(model_path, task="detect")

    def predict(self, image: np.ndarray) -> list[Detection]:
        try:
            results = self.model.predict(
                image,
                verbose=False,
                device=self.options.device,
                conf=self.options.score_threshold,
                max_det=self.options.max_results,
            )
        except Exception as exc:
            raise DetectionError(f"Inference failed with {self.model_path}") from exc
        if not results:
            return []
        result = results[0]
        names = result.names or {}
        detections: list[Detection] = []
        for box in result.boxes:
            class_idx = int(box.cls[0])
            confidence = float(box.conf[0])
            if confidence < self.options.score_threshold:
                continue
            left, top, right, bottom = map(float, box.xyxy[0].tolist())
            detections.append(
                Detection(
                    bbox=(left, top, right, bottom),
                    categories=(
                        Category(
                            label=str(names.get(class_idx, class_idx)),
                            score=confidence,
                            index=class_idx,
                        ),
                    ),
                )
            )
            if len(detections) >= self.options.max_results:
                break
        return detections

    def close(self) -> None:
        self.model = None


def load_yolo_model(model_path: str, options: InferenceOptions) -> YOLOModel:
    logger.debug(
        "Creating YOLO model from %s (threads=%d, max_results=%d)",
        model_path,
        options.thread_count,
        options.max_results,
    )
    return YOLOModel(model_path, options)
