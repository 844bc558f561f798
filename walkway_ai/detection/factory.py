from __future__ import annotations

import logging

from walkway_ai.common.config import AppConfig
from walkway_ai.detection.base import ModelLoader
from walkway_ai.detection.handle import ModelHandle
from walkway_ai.detection.presets import ModelKind, resolve_preset

logger = logging.getLogger(__name__)


def create_handle(
    kind: ModelKind, config: AppConfig | None = None, loader: ModelLoader | None = None
) -> ModelHandle:
    preset = resolve_preset(kind, config)
    logger.info("Initializing %s detector from %s", preset.display_name, preset.asset_path)
    return ModelHandle.create(
        preset.asset_path,
        score_threshold=preset.score_threshold,
        thread_count=preset.thread_count,
        max_results=preset.max_results,
        loader=loader,
        device=config.device if config is not None else "cpu",
    )


def load_all_handles(
    config: AppConfig | None = None, loader: ModelLoader | None = None
) -> dict[ModelKind, ModelHandle | None]:
    handles: dict[ModelKind, ModelHandle | None] = {}
    for kind in ModelKind:
        try:
            handles[kind] = create_handle(kind, config, loader)
        except Exception as exc:
            logger.error("Failed to initialize %s detector: %s", kind.value, exc)
            handles[kind] = None
    return handles
