from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable

import numpy as np

from walkway_ai.common.schemas import Detection


@dataclass(frozen=True)
class InferenceOptions:
    score_threshold: float = 0.5
    max_results: int = 5
    thread_count: int = 2
    device: str = "cpu"


class LoadedModel(ABC):
    """A model loaded into the inference backend."""

    @abstractmethod
    def predict(self, image: np.ndarray) -> list[Detection]:
        raise NotImplementedError

    def close(self) -> None:
        return None


ModelLoader = Callable[[str, InferenceOptions], LoadedModel]


class ModelLoadError(RuntimeError):
    """Raised when a model asset cannot be loaded with the requested options."""


class DetectionError(RuntimeError):
    """Raised by a backend when inference on a single image fails."""
