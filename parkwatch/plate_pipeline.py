"""Watching a directory of I420 frames and saving aligned, read licence plates.

Each ``.yuv`` frame is converted to BGR, the plate detector proposes a box,
the crop is resized to 128x128, the alignment network gives the four plate
corners, the plate is warped to a 256x128 image, read by OCR and saved as
``<text>.jpg``.  The frame file is deleted afterwards.
"""

from __future__ import annotations

import logging
import math
import os
import time
from collections.abc import Callable, Iterable, Sequence
from pathlib import Path
from typing import Any, Protocol

import numpy as np
from numpy.typing import ArrayLike, NDArray
from PIL import Image

log = logging.getLogger(__name__)

FRAME_WIDTH = 800
FRAME_HEIGHT = 600
FRAME_BYTES = FRAME_WIDTH * FRAME_HEIGHT * 3 // 2

CONFIDENCE_THRESHOLD = 0.8
OCR_MIN_CONFIDENCE = 70.0
ALIGN_SIZE = 128
PLATE_WIDTH = 256
PLATE_HEIGHT = 128
PLATE_CORNERS_DST = ((0.0, 0.0), (255.0, 0.0), (255.0, 127.0), (0.0, 127.0))
UNKNOWN_TEXT = "unknown"
YUV_SUFFIX = ".yuv"


class Detector(Protocol):
    def get_proposal(self, image: ArrayLike) -> Sequence[float]: ...


class Aligner(Protocol):
    def get_coordinate(self, image: ArrayLike) -> ArrayLike: ...


# Takes a BGR image and yields (symbol, confidence) pairs in reading order.
Ocr = Callable[[NDArray[np.uint8]], Iterable[tuple[Any, float]]]


def is_file_ready(path: str | os.PathLike[str]) -> bool:
    """Tell whether ``path`` holds exactly one complete 800x600 I420 frame."""
    try:
        return os.path.getsize(path) == FRAME_BYTES
    except OSError:
        return False


def i420_to_bgr(
    data: bytes | bytearray | memoryview,
    width: int = FRAME_WIDTH,
    height: int = FRAME_HEIGHT,
) -> NDArray[np.uint8]:
    """Convert a planar I420 frame (BT.601, limited range) to a BGR image."""
    if width <= 0 or height <= 0 or width % 2 or height % 2:
        raise ValueError(f"frame size must be positive and even, got {width}x{height}")
    buffer = np.frombuffer(bytes(data), dtype=np.uint8)
    luma_size = width * height
    chroma_size = luma_size // 4
    if buffer.size != luma_size + 2 * chroma_size:
        raise ValueError(
            f"I420 frame of {width}x{height} needs {luma_size + 2 * chroma_size} bytes, "
            f"got {buffer.size}"
        )
    y = buffer[:luma_size].reshape(height, width).astype(np.float32)
    u = buffer[luma_size:luma_size + chroma_size].reshape(height // 2, width // 2)
    v = buffer[luma_size + chroma_size:].reshape(height // 2, width // 2)
    u = u.repeat(2, axis=0).repeat(2, axis=1).astype(np.float32) - 128.0
    v = v.repeat(2, axis=0).repeat(2, axis=1).astype(np.float32) - 128.0

    luma = (y - 16.0) * 1.164
    blue = luma + 2.018 * u
    green = luma - 0.813 * v - 0.391 * u
    red = luma + 1.596 * v
    bgr = np.stack((blue, green, red), axis=-1)
    return np.clip(np.rint(bgr), 0, 255).astype(np.uint8)


def crop_box(
    proposal: Sequence[float],
    width: int,
    height: int,
) -> tuple[int, int, int, int]:
    """Turn a relative ``(cx, cy, w, h, ...)`` proposal into clamped pixel corners."""
    if len(proposal) < 4:
        raise ValueError("proposal needs at least cx, cy, w and h")
    cx, cy, w, h = (float(value) for value in proposal[:4])
    x1 = int((cx - w / 2) * width)
    y1 = int((cy - h / 2) * height)
    x2 = int((cx + w / 2) * width)
    y2 = int((cy + h / 2) * height)

    def clamp(value: int, limit: int) -> int:
        return max(0, min(value, limit - 1))

    return clamp(x1, width), clamp(y1, height), clamp(x2, width), clamp(y2, height)


def plate_corners(coordinates: ArrayLike) -> list[tuple[float, float]]:
    """Map the eight raw network outputs through a sigmoid onto the 128x128 crop."""
    values = np.asarray(coordinates, dtype=np.float64).reshape(-1)
    if values.size < 8:
        raise ValueError(f"need 8 corner coordinates, got {values.size}")
    scaled = [ALIGN_SIZE / (1.0 + math.exp(-float(value))) for value in values[:8]]
    return [(scaled[i], scaled[i + 1]) for i in range(0, 8, 2)]


def perspective_coefficients(
    src: Sequence[Sequence[float]],
    dst: Sequence[Sequence[float]],
) -> tuple[float, ...]:
    """Solve the homography that maps the four ``src`` points onto ``dst``.

    The result ``(a, b, c, d, e, f, g, h)`` maps ``(x, y)`` to
    ``((a*x + b*y + c) / (g*x + h*y + 1), (d*x + e*y + f) / (g*x + h*y + 1))``.
    """
    source = np.asarray(src, dtype=np.float64)
    target = np.asarray(dst, dtype=np.float64)
    if source.shape != (4, 2) or target.shape != (4, 2):
        raise ValueError("exactly four (x, y) points are needed on each side")
    matrix = np.zeros((8, 8))
    rhs = np.zeros(8)
    for row, ((x, y), (u, v)) in enumerate(zip(source, target)):
        matrix[row] = (x, y, 1.0, 0.0, 0.0, 0.0, -x * u, -y * u)
        matrix[row + 4] = (0.0, 0.0, 0.0, x, y, 1.0, -x * v, -y * v)
        rhs[row] = u
        rhs[row + 4] = v
    try:
        solution = np.linalg.solve(matrix, rhs)
    except np.linalg.LinAlgError as error:
        raise ValueError("points do not define a perspective transform") from error
    return tuple(float(value) for value in solution)


def assemble_text(
    symbols: Iterable[tuple[Any, float]],
    min_confidence: float = OCR_MIN_CONFIDENCE,
) -> str:
    """Join the recognised symbols whose confidence reaches ``min_confidence``."""
    return "".join(
        str(symbol)
        for symbol, confidence in symbols
        if symbol is not None and confidence >= min_confidence
    )


def _resize(image: NDArray[np.uint8], size: tuple[int, int]) -> NDArray[np.uint8]:
    return np.asarray(Image.fromarray(image).resize(size, Image.BILINEAR))


def _warp(image: NDArray[np.uint8], corners: Sequence[tuple[float, float]]) -> NDArray[np.uint8]:
    # PIL wants the mapping from output pixels back to input pixels.
    coefficients = perspective_coefficients(PLATE_CORNERS_DST, corners)
    warped = Image.fromarray(image).transform(
        (PLATE_WIDTH, PLATE_HEIGHT), Image.PERSPECTIVE, coefficients, Image.BICUBIC
    )
    return np.asarray(warped)


class PlatePipeline:
    """Detects, aligns and reads licence plates in I420 frame files."""

    def __init__(self, detector: Detector, aligner: Aligner, ocr: Ocr) -> None:
        self.detector = detector
        self.aligner = aligner
        self.ocr = ocr

    def process_file(
        self,
        path: str | os.PathLike[str],
        save_dir: str | os.PathLike[str],
    ) -> str | None:
        """Process one frame file and delete it; return the saved image path, if any.

        A file that is not yet complete is left alone and None is returned.
        """
        if not is_file_ready(path):
            log.info("File not ready: %s", path)
            return None
        try:
            data = Path(path).read_bytes()
        except OSError as error:
            raise OSError(f"Failed to open {path}") from error

        bgr = i420_to_bgr(data, FRAME_WIDTH, FRAME_HEIGHT)
        height, width = bgr.shape[:2]
        proposal = self.detector.get_proposal(bgr)

        saved: str | None = None
        if float(proposal[4]) >= CONFIDENCE_THRESHOLD:
            x1, y1, x2, y2 = crop_box(proposal, width, height)
            if x2 <= x1 or y2 <= y1:
                raise ValueError(f"empty plate region: ({x1}, {y1}, {x2}, {y2})")
            roi = _resize(np.ascontiguousarray(bgr[y1:y2, x1:x2]), (ALIGN_SIZE, ALIGN_SIZE))

            corners = plate_corners(self.aligner.get_coordinate(roi))
            plate = _warp(roi, corners)

            text = assemble_text(self.ocr(plate)) or UNKNOWN_TEXT
            saved = os.path.join(os.fspath(save_dir), f"{text}.jpg")
            try:
                Image.fromarray(np.ascontiguousarray(plate[:, :, ::-1])).save(saved, "JPEG")
            except (OSError, ValueError) as error:
                raise OSError(f"Failed to save output image: {saved}") from error
            log.info("Aligned and saved plate image as %s", saved)

        os.remove(path)
        log.info("Deleted processed file: %s", path)
        return saved

    def scan(
        self,
        watch_dir: str | os.PathLike[str],
        save_dir: str | os.PathLike[str],
    ) -> list[str]:
        """Process every ``.yuv`` file in ``watch_dir`` in name order."""
        frames = sorted(
            entry for entry in Path(watch_dir).iterdir()
            if entry.is_file() and entry.suffix == YUV_SUFFIX
        )
        saved = []
        for frame in frames:
            result = self.process_file(frame, save_dir)
            if result is not None:
                saved.append(result)
        return saved

    def monitor(
        self,
        watch_dir: str | os.PathLike[str],
        save_dir: str | os.PathLike[str],
        interval: float = 0.1,
    ) -> None:
        """Scan ``watch_dir`` forever, logging errors and pausing between rounds."""
        while True:
            try:
                self.scan(watch_dir, save_dir)
            except Exception as error:  # keep watching whatever one frame does
                log.error("Error: %s", error)
            time.sleep(interval)