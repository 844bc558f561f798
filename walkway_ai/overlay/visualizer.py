from __future__ import annotations

import atexit
import logging

import cv2
import numpy as np

from walkway_ai.overlay.renderer import OverlayRenderer

logger = logging.getLogger(__name__)


class OverlayWindow:
    """OpenCV window showing a captured photo with the detection overlay on top."""

    def __init__(self, renderer: OverlayRenderer, window_name: str = "Walkway AI") -> None:
        self.renderer = renderer
        self.window_name = window_name
        self._open = False
        atexit.register(self.close)

    def show(self, image: np.ndarray | None, wait_ms: int = 0) -> int:
        """Display one frame; returns the key pressed (-1 when none)."""
        frame = self.renderer.render(image)
        cv2.imshow(self.window_name, frame)
        self._open = True
        key = cv2.waitKey(wait_ms)
        logger.debug("Overlay window key: %s", key)
        return key

    def close(self) -> None:
        if not self._open:
            return
        cv2.destroyWindow(self.window_name)
        self._open = False
