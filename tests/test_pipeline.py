from __future__ import annotations

import struct
import threading
import time

import cv2
import numpy as np
import pytest

from walkway_ai.common.schemas import Category, Detection
from walkway_ai.detection.base import InferenceOptions, LoadedModel
from walkway_ai.detection.presets import ModelKind
from walkway_ai.ingestion.frame_decoder import RawFrame, decode_frame
from walkway_ai.overlay.renderer import OverlayRenderer
from walkway_ai.pipeline.orchestrator import CapturePipeline
from walkway_ai.pipeline.state import PipelineSignal, PipelineState, StartupOutcome

SIGN_PATH = "models/regressionmodel.tflite"
WALKWAY_PATH = "models/sidewalkmodel.tflite"


class ScriptedModel(LoadedModel):
    def __init__(self, path: str, results: list[Detection] | None) -> None:
        self.path = path
        self.results = results
        self.calls = 0
        self.shapes: list[tuple[int, ...]] = []
        self.gate: threading.Event | None = None
        self.started = threading.Event()

    def predict(self, image: np.ndarray) -> list[Detection]:
        self.calls += 1
        self.shapes.append(image.shape)
        self.started.set()
        if self.gate is not None:
            self.gate.wait(timeout=5)
        if self.results is None:
            raise RuntimeError("inference failed")
        return list(self.results)


class ScriptedLoader:
    def __init__(self, failing: set[str] | None = None) -> None:
        self.failing = failing or set()
        self.models: dict[str, ScriptedModel] = {}
        self.results: list[Detection] | None = [
            Detection(bbox=(10.0, 10.0, 20.0, 20.0), categories=(Category("crack", 0.8),))
        ]

    def __call__(self, path: str, options: InferenceOptions) -> ScriptedModel:
        if path in self.failing:
            raise OSError(f"cannot load {path}")
        model = ScriptedModel(path, self.results)
        self.models[path] = model
        return model


class RecordingRenderer(OverlayRenderer):
    def __init__(self) -> None:
        super().__init__()
        self.clear_calls = 0

    def clear(self) -> None:
        self.clear_calls += 1
        super().clear()


def _jpeg_frame(width: int = 40, height: int = 20, rotation: int = 0) -> RawFrame:
    ok, encoded = cv2.imencode(".jpg", np.zeros((height, width, 3), dtype=np.uint8))
    assert ok
    return RawFrame(data=encoded.tobytes(), format="jpeg", rotation_degrees=rotation)


class BlockingLoader(ScriptedLoader):
    def __init__(self) -> None:
        super().__init__()
        self.gate = threading.Event()
        self.entered = threading.Event()

    def __call__(self, path: str, options: InferenceOptions) -> ScriptedModel:
        self.entered.set()
        self.gate.wait(timeout=5)
        return super().__call__(path, options)


def _jpeg_with_orientation(width: int, height: int, orientation: int) -> bytes:
    ok, encoded = cv2.imencode(".jpg", np.zeros((height, width, 3), dtype=np.uint8))
    assert ok
    payload = (
        b"Exif\x00\x00"
        + b"MM\x00\x2a\x00\x00\x00\x08"
        + struct.pack(">H", 1)
        + struct.pack(">HHIHH", 0x0112, 3, 1, orientation, 0)
        + struct.pack(">I", 0)
    )
    segment = b"\xff\xe1" + struct.pack(">H", len(payload) + 2) + payload
    data = encoded.tobytes()
    return data[:2] + segment + data[2:]


def _pipeline(loader: ScriptedLoader, signals: list | None = None) -> CapturePipeline:
    renderer = RecordingRenderer()
    notify = (lambda signal, message: signals.append(signal)) if signals is not None else None
    return CapturePipeline(renderer=renderer, loader=loader, notify=notify)


@pytest.mark.parametrize(
    ("failing", "outcome", "selected", "switching"),
    [
        (set(), StartupOutcome.BOTH_READY, ModelKind.SIGN, True),
        ({WALKWAY_PATH}, StartupOutcome.SIGN_ONLY, ModelKind.SIGN, False),
        ({SIGN_PATH}, StartupOutcome.WALKWAY_ONLY, ModelKind.WALKWAY, False),
        ({SIGN_PATH, WALKWAY_PATH}, StartupOutcome.DISABLED, None, False),
    ],
)
def test_startup_policy(failing, outcome, selected, switching) -> None:
    with _pipeline(ScriptedLoader(failing)) as pipeline:
        assert pipeline.start().result() is outcome
        assert pipeline.selection.kind is selected
        assert pipeline.switching_enabled is switching
        if outcome is StartupOutcome.DISABLED:
            assert pipeline.state is PipelineState.DISABLED
            assert pipeline.capture(_jpeg_frame()) is None
        else:
            assert pipeline.state is PipelineState.IDLE


def test_capture_before_startup_is_rejected() -> None:
    signals: list = []
    with _pipeline(ScriptedLoader(), signals) as pipeline:
        assert pipeline.capture(_jpeg_frame()) is None
        assert pipeline.state is PipelineState.LOADING
        assert signals == [PipelineSignal.NOT_READY]


def test_capture_renders_results_with_inference_dimensions() -> None:
    loader = ScriptedLoader()
    with _pipeline(loader) as pipeline:
        pipeline.start().result()
        outcome = pipeline.capture(_jpeg_frame(width=40, height=20, rotation=90)).result()
        assert outcome.signal is PipelineSignal.DETECTED
        assert (outcome.source_width, outcome.source_height) == (20, 40)
        state = pipeline.renderer.state
        assert len(state.results) == 1
        assert (state.source_width, state.source_height) == (20, 40)
        assert loader.models[SIGN_PATH].shapes == [(40, 20, 3)]
        assert pipeline.state is PipelineState.IDLE


def test_exif_orientation_is_ignored_in_favour_of_rotation_hint() -> None:
    data = _jpeg_with_orientation(width=40, height=20, orientation=6)
    frame = RawFrame(data=data, format="jpeg", rotation_degrees=90)
    assert decode_frame(frame).shape == (20, 40, 3)
    loader = ScriptedLoader()
    with _pipeline(loader) as pipeline:
        pipeline.start().result()
        outcome = pipeline.capture(frame).result()
        assert outcome.signal is PipelineSignal.DETECTED
        assert loader.models[SIGN_PATH].shapes == [(40, 20, 3)]
        assert (outcome.source_width, outcome.source_height) == (20, 40)


def test_capture_with_no_detections_clears_overlay() -> None:
    loader = ScriptedLoader()
    loader.results = []
    with _pipeline(loader) as pipeline:
        pipeline.start().result()
        outcome = pipeline.capture(_jpeg_frame()).result()
        assert outcome.signal is PipelineSignal.NO_OBJECTS
        assert outcome.results == []
        assert pipeline.renderer.state.empty


def test_failed_detection_clears_overlay_and_returns_to_idle() -> None:
    loader = ScriptedLoader()
    signals: list = []
    with _pipeline(loader, signals) as pipeline:
        pipeline.start().result()
        pipeline.renderer.set_results(loader.results, 10, 10)
        loader.models[SIGN_PATH].results = None
        outcome = pipeline.capture(_jpeg_frame()).result()
        assert outcome.signal is PipelineSignal.DETECTION_FAILED
        assert outcome.results is None
        assert pipeline.renderer.state.empty
        assert pipeline.state is PipelineState.IDLE
        assert signals[-1] is PipelineSignal.DETECTION_FAILED


def test_unsupported_format_aborts_capture_only() -> None:
    loader = ScriptedLoader()
    with _pipeline(loader) as pipeline:
        pipeline.start().result()
        frame = RawFrame(data=b"\x00" * 64, format="raw_sensor")
        outcome = pipeline.capture(frame).result()
        assert outcome.signal is PipelineSignal.UNSUPPORTED_FORMAT
        assert loader.models[SIGN_PATH].calls == 0
        assert pipeline.state is PipelineState.IDLE
        assert pipeline.capture(_jpeg_frame()).result().signal is PipelineSignal.DETECTED


def test_capture_while_detecting_is_rejected_not_queued() -> None:
    loader = ScriptedLoader()
    signals: list = []
    with _pipeline(loader, signals) as pipeline:
        pipeline.start().result()
        model = loader.models[SIGN_PATH]
        model.gate = threading.Event()
        first = pipeline.capture(_jpeg_frame())
        assert first is not None
        assert model.started.wait(timeout=5)
        assert pipeline.state is PipelineState.DETECTING
        assert pipeline.capture(_jpeg_frame()) is None
        assert pipeline.state is PipelineState.DETECTING
        assert signals[-1] is PipelineSignal.BUSY
        model.gate.set()
        assert first.result().signal is PipelineSignal.DETECTED
        assert model.calls == 1
        assert pipeline.state is PipelineState.IDLE


def test_switch_during_detection_discards_result() -> None:
    loader = ScriptedLoader()
    signals: list = []
    with _pipeline(loader, signals) as pipeline:
        pipeline.start().result()
        model = loader.models[SIGN_PATH]
        model.gate = threading.Event()
        pending = pipeline.capture(_jpeg_frame())
        assert model.started.wait(timeout=5)
        assert pipeline.select(ModelKind.WALKWAY) is True
        model.gate.set()
        outcome = pending.result()
        assert outcome.signal is PipelineSignal.STALE_RESULT
        assert pipeline.renderer.state.empty
        assert signals[-1] is PipelineSignal.STALE_RESULT
        assert pipeline.state is PipelineState.IDLE


def test_switch_before_results_reach_renderer_keeps_overlay_empty() -> None:
    loader = ScriptedLoader()
    switch_next = threading.Event()
    pipelines: list[CapturePipeline] = []

    def dispatch(callback) -> None:
        if switch_next.is_set() and threading.current_thread() is not threading.main_thread():
            switch_next.clear()
            pipelines[0].select(ModelKind.WALKWAY)
        callback()

    pipeline = CapturePipeline(renderer=RecordingRenderer(), loader=loader, ui_dispatch=dispatch)
    pipelines.append(pipeline)
    with pipeline:
        pipeline.start().result()
        switch_next.set()
        pipeline.capture(_jpeg_frame()).result()
        assert not switch_next.is_set()
        assert pipeline.selection.kind is ModelKind.WALKWAY
        assert pipeline.renderer.state.empty


def test_select_unready_model_keeps_selection_and_overlay() -> None:
    loader = ScriptedLoader({WALKWAY_PATH})
    signals: list = []
    with _pipeline(loader, signals) as pipeline:
        pipeline.start().result()
        pipeline.renderer.set_results(loader.results, 10, 10)
        before = pipeline.selection
        clears = pipeline.renderer.clear_calls
        assert pipeline.select(ModelKind.WALKWAY) is False
        assert pipeline.selection == before
        assert pipeline.renderer.clear_calls == clears
        assert not pipeline.renderer.state.empty
        assert signals[-1] is PipelineSignal.MODEL_UNAVAILABLE


def test_select_different_model_clears_overlay() -> None:
    loader = ScriptedLoader()
    with _pipeline(loader) as pipeline:
        pipeline.start().result()
        pipeline.renderer.set_results(loader.results, 10, 10)
        assert pipeline.select("walkway") is True
        assert pipeline.selection.kind is ModelKind.WALKWAY
        assert pipeline.renderer.state.empty
        pipeline.capture(_jpeg_frame()).result()
        assert loader.models[WALKWAY_PATH].calls == 1
        assert loader.models[SIGN_PATH].calls == 0


def test_select_current_model_is_noop() -> None:
    loader = ScriptedLoader()
    signals: list = []
    with _pipeline(loader, signals) as pipeline:
        pipeline.start().result()
        pipeline.renderer.set_results(loader.results, 10, 10)
        clears = pipeline.renderer.clear_calls
        emitted = len(signals)
        assert pipeline.select(ModelKind.SIGN) is True
        assert pipeline.renderer.clear_calls == clears
        assert len(signals) == emitted
        assert not pipeline.renderer.state.empty


def test_set_threshold_reloads_selected_model() -> None:
    loader = ScriptedLoader()
    with _pipeline(loader) as pipeline:
        pipeline.start().result()
        handle = pipeline.selection.handle
        assert pipeline.set_threshold(ModelKind.SIGN, 0.5).result() is False
        assert handle.reload_count == 1
        assert pipeline.set_threshold(ModelKind.SIGN, 0.3).result() is True
        assert handle.reload_count == 2
        assert handle.score_threshold == pytest.approx(0.3)
        assert pipeline.state is PipelineState.IDLE


def test_failed_threshold_reload_restores_previous_threshold() -> None:
    loader = ScriptedLoader()
    signals: list = []
    with _pipeline(loader, signals) as pipeline:
        pipeline.start().result()
        handle = pipeline.selection.handle
        assert pipeline.set_threshold(ModelKind.SIGN, 1.5).result() is False
        assert handle.ready
        assert handle.score_threshold == pytest.approx(0.5)
        assert pipeline.selection.kind is ModelKind.SIGN
        assert signals[-1] is PipelineSignal.THRESHOLD_FAILED


def test_unrecoverable_reload_falls_back_to_other_model() -> None:
    loader = ScriptedLoader()
    with _pipeline(loader) as pipeline:
        pipeline.start().result()
        loader.failing.add(SIGN_PATH)
        assert pipeline.set_threshold(ModelKind.SIGN, 0.3).result() is False
        assert not pipeline.handles[ModelKind.SIGN].ready
        assert pipeline.selection.kind is ModelKind.WALKWAY
        assert pipeline.selection.ready
        assert pipeline.switching_enabled is False
        assert pipeline.select(ModelKind.SIGN) is False

        loader.failing.discard(SIGN_PATH)
        assert pipeline.set_threshold(ModelKind.SIGN, 0.4).result() is True
        assert pipeline.handles[ModelKind.SIGN].ready
        assert pipeline.switching_enabled is True
        assert pipeline.select(ModelKind.SIGN) is True


def test_close_releases_handles() -> None:
    loader = ScriptedLoader()
    pipeline = _pipeline(loader)
    pipeline.start().result()
    handles = pipeline.handles
    pipeline.close()
    assert all(not handle.ready for handle in handles.values())
    assert pipeline.state is PipelineState.DISABLED
    assert pipeline.capture(_jpeg_frame()) is None


def test_close_during_startup_leaves_nothing_selected() -> None:
    loader = BlockingLoader()
    pipeline = _pipeline(loader)
    loading = pipeline.start()
    assert loader.entered.wait(timeout=5)
    closer = threading.Thread(target=pipeline.close)
    closer.start()
    for _ in range(500):
        if pipeline.state is PipelineState.DISABLED:
            break
        time.sleep(0.01)
    loader.gate.set()
    closer.join(timeout=5)
    assert not closer.is_alive()
    assert loading.result() is StartupOutcome.BOTH_READY
    assert pipeline.selection.empty
    assert pipeline.switching_enabled is False
    assert pipeline.state is PipelineState.DISABLED
    assert all(not handle.ready for handle in pipeline.handles.values())
    assert pipeline.capture(_jpeg_frame()) is None
