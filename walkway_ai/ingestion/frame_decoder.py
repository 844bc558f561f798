from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

import numpy as np

try:
    import cv2  # type: ignore

    _HAS_CV2 = True
except Exception:  # pragma: no cover - optional dependency
    cv2 = None
    _HAS_CV2 = False

try:
    import imageio.v2 as imageio  # type: ignore

    _HAS_IMAGEIO = True
except Exception:  # pragma: no cover - optional dependency
    imageio = None
    _HAS_IMAGEIO = False


class FrameFormat(str, Enum):
    JPEG = "jpeg"
    PNG = "png"
    YUV_420_888 = "yuv_420_888"
    NV21 = "nv21"
    BGR = "bgr"


ENCODED_FORMATS = {FrameFormat.JPEG, FrameFormat.PNG}
YUV_FORMATS = {FrameFormat.YUV_420_888, FrameFormat.NV21}


class FrameDecodeError(RuntimeError):
    pass


class UnsupportedFormatError(FrameDecodeError):
    pass


@dataclass(frozen=True)
class RawFrame:
    """A captured frame as delivered by the camera.

    data holds encoded bytes for JPEG/PNG, planar bytes for YUV formats
    (width and height are then required), or an HxWx3 array for BGR.
    """

    data: bytes | np.ndarray
    format: str
    rotation_degrees: int = 0
    width: int | None = None
    height: int | None = None

    def __post_init__(self) -> None:
        if self.rotation_degrees % 90 != 0:
            raise ValueError(
                f"rotation_degrees must be a multiple of 90, got {self.rotation_degrees}"
            )


def parse_format(tag: str) -> FrameFormat:
    try:
        return FrameFormat(str(tag).strip().lower())
    except ValueError as exc:
        raise UnsupportedFormatError(f"Unsupported image format: {tag}") from exc


def decode_frame(frame: RawFrame) -> np.ndarray:
    """Decode a raw frame into an HxWx3 uint8 BGR image."""
    frame_format = parse_format(frame.format)
    if frame_format in ENCODED_FORMATS:
        return _decode_encoded(_as_bytes(frame.data))
    if frame_format in YUV_FORMATS:
        return _decode_yuv(frame, frame_format)
    image = np.asarray(frame.data)
    if image.ndim != 3 or image.shape[2] != 3:
        raise FrameDecodeError(f"BGR frames must be HxWx3, got shape {image.shape}")
    return image.astype(np.uint8, copy=False)


def _as_bytes(data: bytes | np.ndarray) -> bytes:
    if isinstance(data, np.ndarray):
        return data.tobytes()
    return bytes(data)


def _decode_encoded(payload: bytes) -> np.ndarray:
    if not payload:
        raise FrameDecodeError("Empty image payload")
    if _HAS_CV2:
        assert cv2 is not None
        buffer = np.frombuffer(payload, dtype=np.uint8)
        image = cv2.imdecode(buffer, cv2.IMREAD_COLOR | cv2.IMREAD_IGNORE_ORIENTATION)
        if image is None:
            raise FrameDecodeError("Unable to decode image payload")
        return image
    if _HAS_IMAGEIO:
        assert imageio is not None
        try:
            image = np.asarray(imageio.imread(payload))
        except Exception as exc:
            raise FrameDecodeError("Unable to decode image payload") from exc
        if image.ndim == 2:
            image = np.stack([image] * 3, axis=-1)
        return np.ascontiguousarray(image[..., 2::-1])
    raise FrameDecodeError("Neither OpenCV nor imageio is available for image decoding")


def _decode_yuv(frame: RawFrame, frame_format: FrameFormat) -> np.ndarray:
    if not _HAS_CV2:
        raise FrameDecodeError("OpenCV is required to decode YUV frames")
    assert cv2 is not None
    if not frame.width or not frame.height:
        raise FrameDecodeError("width and height are required for YUV frames")
    if frame.width % 2 or frame.height % 2:
        raise FrameDecodeError("YUV frames must have even width and height")
    expected = frame.width * frame.height * 3 // 2
    planes = np.frombuffer(_as_bytes(frame.data), dtype=np.uint8)
    if planes.size != expected:
        raise FrameDecodeError(
            f"YUV payload has {planes.size} bytes, expected {expected} "
            f"for {frame.width}x{frame.height}"
        )
    planes = planes.reshape((frame.height * 3 // 2, frame.width))
    code = (
        cv2.COLOR_YUV2BGR_I420
        if frame_format is FrameFormat.YUV_420_888
        else cv2.COLOR_YUV2BGR_NV21
    )
    return cv2.cvtColor(planes, code)
