import sys
import types

import numpy as np
import pytest

from walkway_ai.detection.base import DetectionError, InferenceOptions, ModelLoadError
from walkway_ai.detection.handle import ModelHandle
from walkway_ai.detection.yolo import YOLOModel, load_yolo_model


class _Tensor:
    def __init__(self, values) -> None:
        self._values = values

    def tolist(self):
        return list(self._values)


class _Box:
    def __init__(self, cls: int, conf: float, xyxy: list[float]) -> None:
        self.cls = [cls]
        self.conf = [conf]
        self.xyxy = [_Tensor(xyxy)]


class _Result:
    names = {0: "stop", 1: "crack"}

    def __init__(self, boxes) -> None:
        self.boxes = boxes


class _FakeYOLO:
    instances: list["_FakeYOLO"] = []

    def __init__(self, path: str, task: str | None = None) -> None:
        self.path = path
        self.kwargs: dict = {}
        _FakeYOLO.instances.append(self)

    def predict(self, image, **kwargs):
        self.kwargs = kwargs
        return [
            _Result(
                [
                    _Box(0, 0.9, [1.0, 2.0, 3.0, 4.0]),
                    _Box(1, 0.2, [5.0, 6.0, 7.0, 8.0]),
                    _Box(1, 0.7, [9.0, 10.0, 11.0, 12.0]),
                ]
            )
        ]


@pytest.fixture
def fake_ultralytics(monkeypatch):
    module = types.ModuleType("ultralytics")
    module.YOLO = _FakeYOLO
    monkeypatch.setitem(sys.modules, "ultralytics", module)
    _FakeYOLO.instances.clear()
    return module


def test_yolo_model_converts_boxes(tmp_path, fake_ultralytics) -> None:
    asset = tmp_path / "sign.tflite"
    asset.write_bytes(b"model")
    model = load_yolo_model(str(asset), InferenceOptions(score_threshold=0.5, max_results=5))
    detections = model.predict(np.zeros((4, 4, 3), dtype=np.uint8))
    assert [d.categories[0].label for d in detections] == ["stop", "crack"]
    assert detections[0].bbox == (1.0, 2.0, 3.0, 4.0)
    kwargs = _FakeYOLO.instances[0].kwargs
    assert kwargs["conf"] == 0.5
    assert kwargs["max_det"] == 5


def test_yolo_model_truncates_to_max_results(tmp_path, fake_ultralytics) -> None:
    asset = tmp_path / "walkway.tflite"
    asset.write_bytes(b"model")
    model = YOLOModel(str(asset), InferenceOptions(score_threshold=0.1, max_results=2))
    assert len(model.predict(np.zeros((4, 4, 3), dtype=np.uint8))) == 2


def test_yolo_model_wraps_inference_failure(tmp_path, fake_ultralytics, monkeypatch) -> None:
    asset = tmp_path / "sign.tflite"
    asset.write_bytes(b"model")

    def _explode(self, image, **kwargs):
        raise RuntimeError("delegate crashed")

    monkeypatch.setattr(_FakeYOLO, "predict", _explode)
    model = YOLOModel(str(asset), InferenceOptions())
    with pytest.raises(DetectionError):
        model.predict(np.zeros((4, 4, 3), dtype=np.uint8))

    handle = ModelHandle.create(str(asset), loader=load_yolo_model)
    assert handle.detect(np.zeros((4, 4, 3), dtype=np.uint8)) is None
    assert handle.ready


def test_yolo_model_missing_asset_raises(tmp_path, fake_ultralytics) -> None:
    with pytest.raises(ModelLoadError):
        YOLOModel(str(tmp_path / "missing.tflite"), InferenceOptions())
