from __future__ import annotations

import argparse
import logging
import os
import sys
from collections import deque

import pandas as pd
import streamlit as st

from walkway_ai.common.config import default_config, load_config
from walkway_ai.common.logging import configure_logging
from walkway_ai.common.schemas import detections_to_rows
from walkway_ai.common.utils import rotate_upright
from walkway_ai.detection.presets import ModelKind, resolve_preset
from walkway_ai.ingestion.frame_decoder import FrameFormat, RawFrame, decode_frame
from walkway_ai.overlay.renderer import OverlayRenderer
from walkway_ai.pipeline.orchestrator import CapturePipeline
from walkway_ai.pipeline.state import PipelineSignal

logger = logging.getLogger(__name__)

_ERROR_SIGNALS = {
    PipelineSignal.NO_MODELS,
    PipelineSignal.UNSUPPORTED_FORMAT,
    PipelineSignal.DECODE_FAILED,
    PipelineSignal.DETECTION_FAILED,
    PipelineSignal.THRESHOLD_FAILED,
}


def _is_running_with_streamlit() -> bool:
    try:
        from streamlit.runtime.scriptrunner import get_script_run_ctx

        return get_script_run_ctx() is not None
    except Exception:
        return False


def _run_streamlit() -> int:
    from streamlit.web.cli import main as stcli

    sys.argv = ["streamlit", "run", __file__, "--"] + sys.argv[1:]
    try:
        return int(stcli() or 0)
    except SystemExit as exc:
        return int(exc.code or 0)


def _get_config_path() -> str | None:
    parser = argparse.ArgumentParser(add_help=False)
    parser.add_argument("--config", default=os.getenv("WALKWAY_AI_CONFIG"))
    args, _ = parser.parse_known_args()
    return args.config


@st.cache_resource
def _get_pipeline(config_path: str | None) -> tuple[CapturePipeline, deque]:
    config = load_config(config_path) if config_path else default_config()
    configure_logging(config.data_paths.logs_dir, config.log_level)
    # Signals arrive from the worker thread; they are shown as toasts on the next rerun.
    signals: deque = deque(maxlen=20)
    pipeline = CapturePipeline(
        config,
        renderer=OverlayRenderer(config.overlay),
        notify=lambda signal, message: signals.append((signal, message)),
    )
    pipeline.start().result()
    return pipeline, signals


def _show_signals(signals: deque) -> None:
    while signals:
        signal, message = signals.popleft()
        if signal in _ERROR_SIGNALS:
            st.toast(f"Error: {message}")
        else:
            st.toast(message)


def _frame_format(mime_type: str | None) -> str:
    if mime_type == "image/png":
        return FrameFormat.PNG.value
    return FrameFormat.JPEG.value


def main() -> int:
    try:
        if not _is_running_with_streamlit():
            return _run_streamlit()
        st.set_page_config(page_title="Walkway AI", layout="centered")
        pipeline, signals = _get_pipeline(_get_config_path())

        st.title("Sign and Walkway Damage Detection")

        selection = pipeline.selection
        if selection.empty:
            _show_signals(signals)
            st.error("Error loading detection models. Capture is disabled.")
            return 0

        st.sidebar.header("Model")
        use_walkway = st.sidebar.toggle(
            "Walkway damage model",
            value=selection.kind is ModelKind.WALKWAY,
            disabled=not pipeline.switching_enabled,
        )
        requested = ModelKind.WALKWAY if use_walkway else ModelKind.SIGN
        if requested is not selection.kind:
            pipeline.select(requested)
            selection = pipeline.selection

        handle = selection.handle
        threshold = st.sidebar.slider(
            "Score threshold",
            min_value=0.05,
            max_value=0.95,
            value=float(handle.score_threshold),
            step=0.05,
        )
        if threshold != handle.score_threshold:
            reload = pipeline.set_threshold(selection.kind, threshold)
            if reload is not None:
                reload.result()
        rotation = st.sidebar.selectbox("Photo rotation (degrees)", options=[0, 90, 180, 270])
        preset = resolve_preset(selection.kind, pipeline.config)
        st.sidebar.caption(f"Active: {preset.display_name} ({handle.asset_path})")

        photo = st.camera_input("Capture")
        if photo is not None and st.session_state.get("last_photo_id") != photo.file_id:
            frame = RawFrame(
                data=photo.getvalue(),
                format=_frame_format(photo.type),
                rotation_degrees=int(rotation),
            )
            pending = pipeline.capture(frame)
            if pending is not None:
                outcome = pending.result()
                st.session_state["last_photo_id"] = photo.file_id
                st.session_state["last_outcome"] = outcome
                st.session_state["last_frame"] = frame

        outcome = st.session_state.get("last_outcome")
        frame = st.session_state.get("last_frame")
        _show_signals(signals)
        if outcome is not None and frame is not None and outcome.model is pipeline.selection.kind:
            upright = rotate_upright(decode_frame(frame), frame.rotation_degrees)
            st.image(pipeline.renderer.render(upright), channels="BGR")
            if outcome.results:
                st.subheader("Detections")
                st.dataframe(pd.DataFrame(detections_to_rows(outcome.results)))
        elif pipeline.selection.empty:
            st.error("Selected model is unavailable.")
        return 0
    except Exception:
        logger.exception("Camera app failed", extra={"config": _get_config_path()})
        return 1


if __name__ == "__main__":
    if _is_running_with_streamlit():
        main()
    else:
        raise SystemExit(main())
