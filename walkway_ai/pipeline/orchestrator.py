from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable

from walkway_ai.common.config import AppConfig, default_config
from walkway_ai.common.utils import rotated_size
from walkway_ai.detection.base import ModelLoader, ModelLoadError
from walkway_ai.detection.factory import load_all_handles
from walkway_ai.detection.handle import ModelHandle
from walkway_ai.detection.presets import ModelKind, parse_model_kind, resolve_preset
from walkway_ai.ingestion.frame_decoder import (
    FrameDecodeError,
    RawFrame,
    UnsupportedFormatError,
    decode_frame,
)
from walkway_ai.overlay.renderer import OverlayRenderer
from walkway_ai.pipeline.state import (
    ActiveSelection,
    CaptureOutcome,
    PipelineSignal,
    PipelineState,
    StartupOutcome,
    resolve_startup,
)

logger = logging.getLogger(__name__)

Notifier = Callable[[PipelineSignal, str], None]
Dispatcher = Callable[[Callable[[], None]], None]

_STARTUP_SIGNALS = {
    StartupOutcome.BOTH_READY: (PipelineSignal.MODELS_LOADED, "Models loaded. Default: Sign"),
    StartupOutcome.SIGN_ONLY: (
        PipelineSignal.PARTIAL_LOAD,
        "Sign model loaded (walkway failed). Switching disabled.",
    ),
    StartupOutcome.WALKWAY_ONLY: (
        PipelineSignal.PARTIAL_LOAD,
        "Walkway model loaded (sign failed). Switching disabled.",
    ),
    StartupOutcome.DISABLED: (
        PipelineSignal.NO_MODELS,
        "Error loading detection models. Capture is disabled.",
    ),
}

_WARNING_SIGNALS = {
    PipelineSignal.PARTIAL_LOAD,
    PipelineSignal.NO_MODELS,
    PipelineSignal.UNSUPPORTED_FORMAT,
    PipelineSignal.DECODE_FAILED,
    PipelineSignal.DETECTION_FAILED,
    PipelineSignal.MODEL_UNAVAILABLE,
    PipelineSignal.THRESHOLD_FAILED,
}


def _call_inline(callback: Callable[[], None]) -> None:
    callback()


class CapturePipeline:
    """Capture -> decode -> detect -> render, driven by one background worker.

    Only one operation runs at a time: capture and threshold requests that
    arrive while the pipeline is not idle are rejected with a BUSY signal
    instead of being queued. Renderer updates and signals go through
    ui_dispatch so a UI toolkit can marshal them onto its own thread.
    """

    def __init__(
        self,
        config: AppConfig | None = None,
        renderer: OverlayRenderer | None = None,
        loader: ModelLoader | None = None,
        notify: Notifier | None = None,
        ui_dispatch: Dispatcher | None = None,
    ) -> None:
        self.config = config or default_config()
        self.renderer = renderer or OverlayRenderer(self.config.overlay)
        self._loader = loader
        self._notify = notify
        self._dispatch = ui_dispatch or _call_inline
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="walkway-worker")
        self._lock = threading.Lock()
        self._state = PipelineState.LOADING
        self._handles: dict[ModelKind, ModelHandle | None] = {}
        self._selection = ActiveSelection()
        self._switching_enabled = False
        self._started = False
        self._closed = False

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def selection(self) -> ActiveSelection:
        return self._selection

    @property
    def switching_enabled(self) -> bool:
        return self._switching_enabled

    @property
    def handles(self) -> dict[ModelKind, ModelHandle | None]:
        return dict(self._handles)

    def __enter__(self) -> "CapturePipeline":
        return self

    def __exit__(self, *_exc) -> None:
        self.close()

    def _set_state(self, state: PipelineState) -> None:
        with self._lock:
            previous, self._state = self._state, state
        logger.debug("Pipeline state %s -> %s", previous.value, state.value)

    def _emit(self, signal: PipelineSignal, message: str) -> None:
        level = logging.WARNING if signal in _WARNING_SIGNALS else logging.INFO
        logger.log(level, "%s: %s", signal.value, message)
        if self._notify is not None:
            notify = self._notify
            self._dispatch(lambda: notify(signal, message))

    def start(self) -> Future:
        """Load both models on the worker and apply the startup policy."""
        with self._lock:
            if self._started:
                raise RuntimeError("CapturePipeline already started")
            self._started = True
        return self._executor.submit(self._load_models)

    def _load_models(self) -> StartupOutcome:
        handles = load_all_handles(self.config, self._loader)
        outcome, selection, switching = resolve_startup(handles)
        with self._lock:
            self._handles = handles
            self._selection = selection
            self._switching_enabled = switching
            self._state = (
                PipelineState.DISABLED
                if outcome is StartupOutcome.DISABLED
                else PipelineState.IDLE
            )
        signal, message = _STARTUP_SIGNALS[outcome]
        self._emit(signal, message)
        return outcome

    def capture(self, frame: RawFrame) -> Future | None:
        """Run detection on a captured frame; returns None when the request is rejected."""
        rejection: tuple[PipelineSignal, str] | None = None
        with self._lock:
            selection = self._selection
            if self._state is PipelineState.DISABLED or not selection.ready:
                rejection = (PipelineSignal.NOT_READY, "Detector not ready.")
            elif self._state is not PipelineState.IDLE:
                rejection = (
                    PipelineSignal.BUSY,
                    f"Still processing the previous request ({self._state.value}).",
                )
            else:
                self._state = PipelineState.CAPTURING
        if rejection is not None:
            self._emit(*rejection)
            return None
        self._dispatch(self.renderer.clear)
        logger.debug("Capture accepted with %s", selection.handle)
        return self._executor.submit(self._process_capture, frame, selection)

    def _process_capture(self, frame: RawFrame, selection: ActiveSelection) -> CaptureOutcome:
        handle = selection.handle
        assert handle is not None
        try:
            self._set_state(PipelineState.CONVERTING)
            try:
                image = decode_frame(frame)
            except UnsupportedFormatError as exc:
                return self._fail(PipelineSignal.UNSUPPORTED_FORMAT, str(exc), selection)
            except FrameDecodeError as exc:
                return self._fail(PipelineSignal.DECODE_FAILED, str(exc), selection)

            self._set_state(PipelineState.DETECTING)
            results = handle.detect(image, frame.rotation_degrees)
            if results is None:
                return self._fail(PipelineSignal.DETECTION_FAILED, "Detection failed.", selection)

            height, width = image.shape[:2]
            source_width, source_height = rotated_size(width, height, frame.rotation_degrees)
            self._set_state(PipelineState.RENDERING)
            if self._selection.handle is not handle:
                message = "Model changed during detection; result discarded."
                self._emit(PipelineSignal.STALE_RESULT, message)
                return CaptureOutcome(
                    PipelineSignal.STALE_RESULT, results, source_width, source_height,
                    selection.kind, message,
                )
            if not results:
                self._dispatch(self.renderer.clear)
                signal, message = PipelineSignal.NO_OBJECTS, "No objects detected."
            else:
                self._dispatch(
                    lambda: self._show_results(handle, results, source_height, source_width)
                )
                signal = PipelineSignal.DETECTED
                message = f"{len(results)} detections from {handle.asset_path}"
            self._emit(signal, message)
            return CaptureOutcome(
                signal, results, source_width, source_height, selection.kind, message
            )
        except Exception as exc:
            logger.exception("Capture processing failed")
            return self._fail(PipelineSignal.DETECTION_FAILED, str(exc), selection)
        finally:
            self._set_state(PipelineState.IDLE)

    def _show_results(
        self, handle: ModelHandle, results: list, source_height: int, source_width: int
    ) -> None:
        # The selection may change between detection and this update.
        with self._lock:
            if self._selection.handle is not handle:
                logger.debug("Dropping results from %s after a model switch", handle.asset_path)
                return
            self.renderer.set_results(results, source_height, source_width)

    def _fail(
        self, signal: PipelineSignal, message: str, selection: ActiveSelection
    ) -> CaptureOutcome:
        self._set_state(PipelineState.ERROR)
        self._dispatch(self.renderer.clear)
        self._emit(signal, message)
        return CaptureOutcome(signal, None, model=selection.kind, message=message)

    def select(self, kind: ModelKind | str) -> bool:
        """Make kind the active model; returns False when it is not available."""
        kind = parse_model_kind(kind)
        switched = False
        with self._lock:
            handle = self._handles.get(kind)
            if handle is None or not handle.ready:
                accepted = False
            elif self._selection.handle is handle:
                accepted = True
            else:
                previous = self._selection
                self._selection = ActiveSelection(kind, handle)
                accepted = switched = True
        if not accepted:
            self._emit(
                PipelineSignal.MODEL_UNAVAILABLE,
                f"Selected model '{kind.value}' is unavailable.",
            )
            return False
        if switched:
            self._dispatch(self.renderer.clear)
            name = resolve_preset(kind, self.config).display_name
            self._emit(PipelineSignal.MODEL_SWITCHED, f"Switched to {name}")
            logger.info(
                "Switched detector. New: %s, Previous: %s",
                handle.asset_path,
                previous.handle.asset_path if previous.handle else None,
            )
        return True

    def set_threshold(self, kind: ModelKind | str, value: float) -> Future | None:
        """Reload a model with a new score threshold on the worker."""
        kind = parse_model_kind(kind)
        rejection: tuple[PipelineSignal, str] | None = None
        with self._lock:
            handle = self._handles.get(kind)
            if handle is None:
                rejection = (
                    PipelineSignal.MODEL_UNAVAILABLE,
                    f"Selected model '{kind.value}' is unavailable.",
                )
            elif self._state is not PipelineState.IDLE:
                rejection = (
                    PipelineSignal.BUSY,
                    f"Still processing the previous request ({self._state.value}).",
                )
            else:
                self._state = PipelineState.RELOADING
        if rejection is not None:
            self._emit(*rejection)
            return None
        return self._executor.submit(self._reload, kind, handle, value)

    def _reload(self, kind: ModelKind, handle: ModelHandle, value: float) -> bool:
        previous = handle.score_threshold
        try:
            try:
                changed = handle.set_threshold(value)
            except ModelLoadError as exc:
                restored = self._restore_threshold(handle, previous)
                if restored:
                    self._refresh_availability(kind, handle)
                else:
                    self._repair_selection(kind)
                suffix = (
                    f"kept threshold {previous:.2f}" if restored else "model is unavailable"
                )
                self._emit(
                    PipelineSignal.THRESHOLD_FAILED,
                    f"Could not apply threshold {value:.2f} to {kind.value} ({exc}); {suffix}.",
                )
                return False
            self._refresh_availability(kind, handle)
            if changed:
                self._emit(
                    PipelineSignal.THRESHOLD_CHANGED,
                    f"{kind.value} threshold set to {value:.2f}",
                )
            return changed
        finally:
            with self._lock:
                if self._state is PipelineState.RELOADING:
                    self._state = PipelineState.IDLE

    def _restore_threshold(self, handle: ModelHandle, previous: float) -> bool:
        try:
            handle.set_threshold(previous)
        except ModelLoadError:
            logger.exception("Could not restore threshold %.2f for %s", previous, handle.asset_path)
            return False
        return handle.ready

    def _refresh_availability(self, kind: ModelKind, handle: ModelHandle) -> None:
        """Re-derive switching after a successful reload; adopt the handle if nothing is selected."""
        if not handle.ready:
            return
        with self._lock:
            if self._closed:
                return
            self._switching_enabled = bool(self._handles) and all(
                candidate is not None and candidate.ready
                for candidate in self._handles.values()
            )
            if self._selection.empty:
                self._selection = ActiveSelection(kind, handle)
                logger.info("%s detector is available again", kind.value)

    def _repair_selection(self, failed: ModelKind) -> None:
        cleared = False
        with self._lock:
            self._switching_enabled = False
            if self._selection.kind is failed:
                fallback = ActiveSelection()
                for kind, handle in self._handles.items():
                    if kind is not failed and handle is not None and handle.ready:
                        fallback = ActiveSelection(kind, handle)
                        break
                self._selection = fallback
                cleared = True
                if fallback.empty:
                    logger.error("No detector is available after %s failed", failed.value)
                else:
                    logger.warning("Falling back to %s detector", fallback.kind.value)
        if cleared:
            self._dispatch(self.renderer.clear)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._selection = ActiveSelection()
            self._state = PipelineState.DISABLED
        logger.debug("Shutting down pipeline worker")
        self._executor.shutdown(wait=True)
        # A load that was already running may have set a selection after the flag.
        with self._lock:
            self._selection = ActiveSelection()
            self._switching_enabled = False
            self._state = PipelineState.DISABLED
        for kind, handle in self._handles.items():
            if handle is None:
                continue
            try:
                handle.close()
            except Exception:
                logger.exception("Error closing %s detector", kind.value)
        self._set_state(PipelineState.DISABLED)
