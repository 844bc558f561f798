from __future__ import annotations

import argparse
import logging
from pathlib import Path

from walkway_ai.common.config import AppConfig, default_config, load_config
from walkway_ai.common.logging import configure_logging
from walkway_ai.common.utils import format_label, rotate_upright
from walkway_ai.detection.presets import ModelKind, parse_model_kind
from walkway_ai.ingestion.frame_decoder import FrameFormat, RawFrame, decode_frame
from walkway_ai.overlay.renderer import OverlayRenderer
from walkway_ai.overlay.visualizer import OverlayWindow
from walkway_ai.pipeline.orchestrator import CapturePipeline
from walkway_ai.pipeline.state import PipelineSignal, StartupOutcome

logger = logging.getLogger(__name__)

_SUFFIX_FORMATS = {
    ".jpg": FrameFormat.JPEG,
    ".jpeg": FrameFormat.JPEG,
    ".png": FrameFormat.PNG,
}


def frame_from_file(path: Path, rotation_degrees: int = 0) -> RawFrame:
    frame_format = _SUFFIX_FORMATS.get(path.suffix.lower())
    if frame_format is None:
        raise ValueError(f"Unsupported image file type: {path.suffix or path.name}")
    return RawFrame(
        data=path.read_bytes(), format=frame_format.value, rotation_degrees=rotation_degrees
    )


def _load_app_config(config_path: str | None) -> AppConfig:
    if not config_path:
        return default_config()
    if not Path(config_path).exists():
        raise FileNotFoundError(f"Config not found: {config_path}")
    return load_config(config_path)


def main() -> int:
    parser = argparse.ArgumentParser(description="Detect signs or walkway damage in a photo")
    parser.add_argument("--image", required=True, help="Path to a JPEG or PNG photo")
    parser.add_argument(
        "--model",
        default=ModelKind.SIGN.value,
        choices=[kind.value for kind in ModelKind],
        help="Detector to run",
    )
    parser.add_argument("--config", default=None, help="Path to config YAML")
    parser.add_argument(
        "--rotation", type=int, default=0, help="Clockwise rotation (degrees) that makes the photo upright"
    )
    parser.add_argument("--threshold", type=float, default=None, help="Score threshold override")
    parser.add_argument("--display", action="store_true", help="Show the overlay in a window")
    args = parser.parse_args()

    try:
        config = _load_app_config(args.config)
        configure_logging(config.data_paths.logs_dir, config.log_level)
        image_path = Path(args.image)
        if not image_path.exists():
            raise FileNotFoundError(f"Image not found: {image_path}")
        frame = frame_from_file(image_path, args.rotation)
        kind = parse_model_kind(args.model)

        renderer = OverlayRenderer(config.overlay)
        with CapturePipeline(config, renderer=renderer) as pipeline:
            outcome = pipeline.start().result()
            if outcome is StartupOutcome.DISABLED:
                logger.error("No detection model could be loaded")
                return 1
            if not pipeline.select(kind):
                logger.error("Model %s is not available", kind.value)
                return 1
            if args.threshold is not None:
                reload = pipeline.set_threshold(kind, args.threshold)
                if reload is not None:
                    reload.result()
            pending = pipeline.capture(frame)
            if pending is None:
                logger.error("Capture was rejected (state=%s)", pipeline.state.value)
                return 1
            result = pending.result()

        if result.signal not in (PipelineSignal.DETECTED, PipelineSignal.NO_OBJECTS):
            logger.error("Detection did not complete: %s", result.message)
            return 1
        for detection in result.results or []:
            left, top, right, bottom = detection.bbox
            print(f"{format_label(detection)}\t{left:.1f},{top:.1f},{right:.1f},{bottom:.1f}")
        if not result.results:
            print("No objects detected.")

        if args.display:
            upright = rotate_upright(decode_frame(frame), frame.rotation_degrees)
            window = OverlayWindow(renderer)
            window.show(upright)
            window.close()
        return 0
    except Exception:
        logger.exception(
            "Detection run failed",
            extra={"image": args.image, "model": args.model, "config": args.config},
        )
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
