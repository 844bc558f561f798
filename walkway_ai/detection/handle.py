from __future__ import annotations

import logging
import time

import numpy as np

from walkway_ai.common.schemas import Detection
from walkway_ai.common.utils import rotate_upright
from walkway_ai.detection.base import (
    DetectionError,
    InferenceOptions,
    LoadedModel,
    ModelLoader,
    ModelLoadError,
)
from walkway_ai.detection.yolo import load_yolo_model

logger = logging.getLogger(__name__)


def validate_options(options: InferenceOptions) -> None:
    if not (0.0 <= options.score_threshold <= 1.0):
        raise ModelLoadError(
            f"score_threshold must be between 0 and 1, got {options.score_threshold}"
        )
    if options.max_results <= 0:
        raise ModelLoadError(f"max_results must be > 0, got {options.max_results}")
    if options.thread_count <= 0:
        raise ModelLoadError(f"thread_count must be > 0, got {options.thread_count}")


class ModelHandle:
    """One detection model loaded into the inference backend plus its tuning options.

    Only the score threshold can change after creation, and only through
    set_threshold, which reloads the backend.
    """

    def __init__(
        self,
        asset_path: str,
        score_threshold: float = 0.5,
        thread_count: int = 2,
        max_results: int = 5,
        loader: ModelLoader | None = None,
        device: str = "cpu",
    ) -> None:
        if not asset_path:
            raise ValueError("asset_path is required for ModelHandle")
        self._asset_path = asset_path
        self._score_threshold = score_threshold
        self._thread_count = thread_count
        self._max_results = max_results
        self._device = device
        self._loader = loader or load_yolo_model
        self._model: LoadedModel | None = None
        self.reload_count = 0

    @classmethod
    def create(
        cls,
        asset_path: str,
        score_threshold: float = 0.5,
        thread_count: int = 2,
        max_results: int = 5,
        loader: ModelLoader | None = None,
        device: str = "cpu",
    ) -> "ModelHandle":
        handle = cls(
            asset_path,
            score_threshold=score_threshold,
            thread_count=thread_count,
            max_results=max_results,
            loader=loader,
            device=device,
        )
        handle._load()
        return handle

    @property
    def asset_path(self) -> str:
        return self._asset_path

    @property
    def score_threshold(self) -> float:
        return self._score_threshold

    @property
    def thread_count(self) -> int:
        return self._thread_count

    @property
    def max_results(self) -> int:
        return self._max_results

    @property
    def ready(self) -> bool:
        return self._model is not None

    @property
    def options(self) -> InferenceOptions:
        return InferenceOptions(
            score_threshold=self._score_threshold,
            max_results=self._max_results,
            thread_count=self._thread_count,
            device=self._device,
        )

    def _load(self) -> None:
        options = self.options
        validate_options(options)
        self.reload_count += 1
        logger.debug(
            "Loading model %s with threshold %.2f", self._asset_path, options.score_threshold
        )
        try:
            self._model = self._loader(self._asset_path, options)
        except ModelLoadError:
            self._model = None
            raise
        except Exception as exc:
            self._model = None
            raise ModelLoadError(f"Failed to load model '{self._asset_path}'") from exc
        logger.info("Model loaded: %s", self._asset_path)

    def set_threshold(self, value: float) -> bool:
        """Reload the backend with a new score threshold.

        Returns False when the value is unchanged and nothing was reloaded.
        Raises ModelLoadError when the reload fails; the handle is then left
        not ready and the previous backend is not restored.
        """
        if value == self._score_threshold:
            return False
        logger.info(
            "Threshold changed to %.2f for %s; reloading model", value, self._asset_path
        )
        self.close()
        self._score_threshold = value
        try:
            self._load()
        except ModelLoadError:
            logger.exception("Failed to reload %s after threshold change", self._asset_path)
            raise
        return True

    def detect(self, image: np.ndarray, rotation_degrees: int = 0) -> list[Detection] | None:
        if self._model is None:
            logger.error("Model %s is not loaded; cannot detect", self._asset_path)
            return None
        upright = rotate_upright(image, rotation_degrees)
        start = time.perf_counter()
        try:
            results = self._model.predict(upright)
        except DetectionError as exc:
            logger.error("%s (%s)", exc, exc.__cause__)
            return None
        except Exception:
            logger.exception("Detection failed with %s", self._asset_path)
            return None
        elapsed_ms = (time.perf_counter() - start) * 1000.0
        logger.debug("Inference with %s took %.1f ms", self._asset_path, elapsed_ms)
        return list(results)

    def close(self) -> None:
        model, self._model = self._model, None
        if model is None:
            return
        try:
            model.close()
        finally:
            logger.debug("Model %s closed", self._asset_path)

    def __repr__(self) -> str:
        return (
            f"ModelHandle(asset_path={self._asset_path!r}, "
            f"score_threshold={self._score_threshold}, ready={self.ready})"
        )
