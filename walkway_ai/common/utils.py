from __future__ import annotations

import numpy as np

from walkway_ai.common.schemas import Category, Detection


def quarter_turns(rotation_degrees: int) -> int:
    """Quarter turns (counter-clockwise, as numpy.rot90 counts them) that undo a rotation hint."""
    if rotation_degrees % 90 != 0:
        raise ValueError(f"rotation must be a multiple of 90 degrees, got {rotation_degrees}")
    return (-rotation_degrees // 90) % 4


def rotate_upright(image: np.ndarray, rotation_degrees: int) -> np.ndarray:
    turns = quarter_turns(rotation_degrees)
    if turns == 0:
        return image
    return np.ascontiguousarray(np.rot90(image, k=turns))


def rotated_size(width: int, height: int, rotation_degrees: int) -> tuple[int, int]:
    if quarter_turns(rotation_degrees) % 2:
        return height, width
    return width, height


def format_category(category: Category) -> str:
    return f"{category.label} ({category.score:.2f})"


def format_label(detection: Detection) -> str:
    return ", ".join(format_category(category) for category in detection.categories)
