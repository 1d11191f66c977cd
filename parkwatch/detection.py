"""Licence plate detection: input preparation and proposal selection.

The network itself is supplied as a callable that takes the prepared input
tensor and returns the raw output tensor, so any inference runtime can be
plugged in.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence

import numpy as np
from numpy.typing import ArrayLike, NDArray

INPUT_WIDTH = 256
INPUT_HEIGHT = 192
INPUT_CHANNELS = 3
BATCH_SIZE = 1
VALUES_PER_DETECTION = 6
CONFIDENCE_INDEX = 4

Inference = Callable[[NDArray[np.float32]], ArrayLike]


def select_proposal(
    detections: Sequence[float] | NDArray[np.floating],
    width: int,
    height: int,
) -> tuple[float, float, float, float, float]:
    """Pick the most confident detection and express it relative to the image.

    ``detections`` is a flat list of ``(cx, cy, w, h, confidence, class)``
    groups in coordinates normalised to the network input.  The result is
    ``(cx, cy, w, h, confidence)`` normalised to an image of
    ``width`` x ``height`` pixels.  On equal confidence the first wins.
    """
    values = np.asarray(detections, dtype=np.float64).reshape(-1)
    if values.size < VALUES_PER_DETECTION:
        raise ValueError(
            f"need at least {VALUES_PER_DETECTION} detection values, got {values.size}"
        )
    if width <= 0 or height <= 0:
        raise ValueError(f"image size must be positive, got {width}x{height}")

    rows = values[: values.size // VALUES_PER_DETECTION * VALUES_PER_DETECTION]
    rows = rows.reshape(-1, VALUES_PER_DETECTION)
    best = int(np.argmax(rows[:, CONFIDENCE_INDEX]))
    cx, cy, w, h, confidence = (float(v) for v in rows[best, :5])

    half_w = INPUT_WIDTH / 2
    half_h = INPUT_HEIGHT / 2
    x1 = cx * INPUT_WIDTH - w * half_w
    y1 = cy * INPUT_HEIGHT - h * half_h
    x2 = cx * INPUT_WIDTH + w * half_w
    y2 = cy * INPUT_HEIGHT + h * half_h

    gain_w = INPUT_WIDTH / width
    gain_h = INPUT_HEIGHT / height
    x1, x2 = x1 / gain_w, x2 / gain_w
    y1, y2 = y1 / gain_h, y2 / gain_h

    x_c = (x1 + x2) / 2
    y_c = (y1 + y2) / 2
    return (
        x_c / width,
        y_c / height,
        (x2 - x1) / width,
        (y2 - y1) / height,
        confidence,
    )


class DetectionModel:
    """Runs the plate detector on an 8-bit image of shape (height, width, channels)."""

    def __init__(self, infer: Inference) -> None:
        if not callable(infer):
            raise TypeError("infer must be callable")
        self._infer = infer

    def preprocess(self, image: ArrayLike) -> NDArray[np.float32]:
        """Resize by nearest neighbour to 256x192 and scale to [0, 1].

        The channel order of the image is kept.  The result has shape
        (1, 192, 256, 3).
        """
        pixels = np.asarray(image)
        if pixels.ndim != 3 or pixels.shape[0] == 0 or pixels.shape[1] == 0:
            raise ValueError("image must have shape (height, width, channels)")
        if pixels.shape[2] < INPUT_CHANNELS:
            raise ValueError(f"image needs at least {INPUT_CHANNELS} channels")
        height, width = pixels.shape[:2]

        scale_w = np.float32(INPUT_WIDTH) / np.float32(width)
        scale_h = np.float32(INPUT_HEIGHT) / np.float32(height)
        src_x = (np.arange(INPUT_WIDTH, dtype=np.float32) / scale_w).astype(np.int64)
        src_y = (np.arange(INPUT_HEIGHT, dtype=np.float32) / scale_h).astype(np.int64)
        np.clip(src_x, 0, width - 1, out=src_x)
        np.clip(src_y, 0, height - 1, out=src_y)

        resized = pixels[src_y[:, None], src_x[None, :], :INPUT_CHANNELS]
        tensor = resized.astype(np.float32) / np.float32(255.0)
        return tensor.reshape(BATCH_SIZE, INPUT_HEIGHT, INPUT_WIDTH, INPUT_CHANNELS)

    def run(self, image: ArrayLike) -> NDArray[np.float32]:
        """Prepare the image, invoke the network and return its output flattened."""
        output = self._infer(self.preprocess(image))
        if output is None:
            raise RuntimeError("Failed to invoke interpreter")
        return np.asarray(output, dtype=np.float32).reshape(-1).copy()

    def get_proposal(self, image: ArrayLike) -> tuple[float, float, float, float, float]:
        """Return the best ``(cx, cy, w, h, confidence)`` relative to ``image``."""
        pixels = np.asarray(image)
        detections = self.run(pixels)
        height, width = pixels.shape[:2]
        return select_proposal(detections, width, height)