from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional


@dataclass(frozen=True)
class Category:
    label: str
    score: float
    index: int | None = None


@dataclass(frozen=True)
class Detection:
    """One detected region.

    bbox is (left, top, right, bottom) in pixels of the image fed to inference.
    """

    bbox: tuple[float, float, float, float]
    categories: tuple[Category, ...]

    @property
    def left(self) -> float:
        return self.bbox[0]

    @property
    def top(self) -> float:
        return self.bbox[1]

    @property
    def right(self) -> float:
        return self.bbox[2]

    @property
    def bottom(self) -> float:
        return self.bbox[3]

    @property
    def best(self) -> Category | None:
        if not self.categories:
            return None
        return max(self.categories, key=lambda category: category.score)


# None means inference failed; an empty list means nothing was found.
DetectionResult = Optional[list[Detection]]


def detections_to_rows(detections: Iterable[Detection]) -> list[dict[str, object]]:
    rows: list[dict[str, object]] = []
    for detection in detections:
        left, top, right, bottom = detection.bbox
        for category in detection.categories:
            rows.append(
                {
                    "label": category.label,
                    "score": round(category.score, 4),
                    "left": left,
                    "top": top,
                    "right": right,
                    "bottom": bottom,
                }
            )
    return rows
