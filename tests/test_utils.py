import pytest

from walkway_ai.common.schemas import Category, Detection, detections_to_rows
from walkway_ai.common.utils import format_label, quarter_turns, rotated_size


def test_quarter_turns_undo_rotation_hint() -> None:
    assert quarter_turns(0) == 0
    assert quarter_turns(90) == 3
    assert quarter_turns(180) == 2
    assert quarter_turns(270) == 1
    with pytest.raises(ValueError):
        quarter_turns(30)


def test_rotated_size_swaps_for_quarter_turns() -> None:
    assert rotated_size(640, 480, 0) == (640, 480)
    assert rotated_size(640, 480, 90) == (480, 640)
    assert rotated_size(640, 480, 180) == (640, 480)


def test_format_label_joins_categories() -> None:
    detection = Detection(
        bbox=(0, 0, 1, 1),
        categories=(Category("stop", 0.876), Category("yield", 0.1)),
    )
    assert format_label(detection) == "stop (0.88), yield (0.10)"
    assert detection.best.label == "stop"
    assert [row["label"] for row in detections_to_rows([detection])] == ["stop", "yield"]
