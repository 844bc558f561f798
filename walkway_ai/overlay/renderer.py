"""Overlay drawing for detection results.

Boxes arrive in the pixel space of the image that was fed to inference and are
mapped to the view with one uniform "cover" scale factor, so the aspect ratio
is kept and the overlay always fills the view (overflowing on one axis).
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Callable, Sequence

import cv2
import numpy as np

from walkway_ai.common.config import OverlayConfig
from walkway_ai.common.schemas import Detection
from walkway_ai.common.utils import format_label

logger = logging.getLogger(__name__)

FONT = cv2.FONT_HERSHEY_SIMPLEX


@dataclass(frozen=True)
class RenderState:
    results: tuple[Detection, ...] = ()
    source_width: int = 1
    source_height: int = 1

    @property
    def empty(self) -> bool:
        return not self.results


@dataclass(frozen=True)
class LabelLayout:
    text_left: float
    baseline: float
    background: tuple[float, float, float, float]


def compute_scale(
    view_width: float, view_height: float, source_width: float, source_height: float
) -> float:
    if source_width <= 0 or source_height <= 0:
        raise ValueError("source dimensions must be > 0")
    return max(view_width / source_width, view_height / source_height)


def scale_box(
    bbox: tuple[float, float, float, float], scale: float
) -> tuple[float, float, float, float]:
    left, top, right, bottom = bbox
    return left * scale, top * scale, right * scale, bottom * scale


def layout_label(
    box_left: float,
    box_top: float,
    text_width: float,
    text_height: float,
    view_width: float,
    padding: float = 8,
) -> LabelLayout:
    """Place a label just above a box's top edge, inside the view horizontally.

    When there is no room above the box (near the view top) the label moves
    below the top edge instead.
    """
    text_left = box_left + padding
    if text_left + text_width + padding > view_width:
        text_left = view_width - text_width - padding
    text_left = max(0.0, text_left)

    baseline = box_top - padding
    if baseline - text_height < 0:
        baseline = box_top + text_height + 2 * padding

    background = (
        text_left,
        baseline - text_height,
        text_left + text_width + padding,
        baseline + padding,
    )
    return LabelLayout(text_left=text_left, baseline=baseline, background=background)


def compose_preview(image: np.ndarray, view_width: int, view_height: int) -> np.ndarray:
    """Scale an image by the cover factor and crop it to the view, anchored top-left."""
    height, width = image.shape[:2]
    scale = compute_scale(view_width, view_height, width, height)
    new_width = max(view_width, int(math.ceil(width * scale)))
    new_height = max(view_height, int(math.ceil(height * scale)))
    resized = cv2.resize(image, (new_width, new_height), interpolation=cv2.INTER_LINEAR)
    return np.ascontiguousarray(resized[:view_height, :view_width])


def _pt(x: float, y: float) -> tuple[int, int]:
    return int(round(x)), int(round(y))


class OverlayRenderer:
    def __init__(
        self,
        style: OverlayConfig | None = None,
        on_invalidate: Callable[[], None] | None = None,
    ) -> None:
        self.style = style or OverlayConfig()
        self.on_invalidate = on_invalidate
        self.invalidate_count = 0
        self._state = RenderState()

    @property
    def state(self) -> RenderState:
        return self._state

    def set_results(
        self, results: Sequence[Detection], source_height: int, source_width: int
    ) -> None:
        if source_height <= 0 or source_width <= 0:
            raise ValueError("source dimensions must be > 0")
        self._state = RenderState(
            results=tuple(results),
            source_width=int(source_width),
            source_height=int(source_height),
        )
        self.invalidate()

    def clear(self) -> None:
        self._state = RenderState()
        self.invalidate()

    def invalidate(self) -> None:
        self.invalidate_count += 1
        if self.on_invalidate is not None:
            self.on_invalidate()

    def new_canvas(self) -> np.ndarray:
        return np.zeros((self.style.view_height, self.style.view_width, 3), dtype=np.uint8)

    def draw(self, canvas: np.ndarray) -> np.ndarray:
        state = self._state
        if state.empty:
            return canvas
        view_height, view_width = canvas.shape[:2]
        scale = compute_scale(view_width, view_height, state.source_width, state.source_height)
        style = self.style
        for detection in state.results:
            left, top, right, bottom = scale_box(detection.bbox, scale)
            cv2.rectangle(
                canvas, _pt(left, top), _pt(right, bottom), style.box_color, style.box_thickness
            )
            text = format_label(detection)
            if not text:
                continue
            (text_width, text_height), _ = cv2.getTextSize(
                text, FONT, style.font_scale, style.text_thickness
            )
            layout = layout_label(
                left, top, text_width, text_height, view_width, style.label_padding
            )
            bg_left, bg_top, bg_right, bg_bottom = layout.background
            cv2.rectangle(
                canvas,
                _pt(bg_left, bg_top),
                _pt(bg_right, bg_bottom),
                style.text_background_color,
                cv2.FILLED,
            )
            cv2.putText(
                canvas,
                text,
                _pt(layout.text_left, layout.baseline),
                FONT,
                style.font_scale,
                style.text_color,
                style.text_thickness,
                cv2.LINE_AA,
            )
        logger.debug("Drew %d detections at scale %.3f", len(state.results), scale)
        return canvas

    def render(self, image: np.ndarray | None = None) -> np.ndarray:
        """Draw the overlay over a preview of image, or over a blank view."""
        if image is None:
            canvas = self.new_canvas()
        else:
            canvas = compose_preview(image, self.style.view_width, self.style.view_height)
        return self.draw(canvas)
