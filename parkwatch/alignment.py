"""Plate corner regression on a 128x128 crop.

The network is supplied as a callable that takes the prepared input tensor
and returns the raw output tensor.
"""

from __future__ import annotations

from collections.abc import Callable

import numpy as np
from numpy.typing import ArrayLike, NDArray

IMG_WIDTH = 128
IMG_HEIGHT = 128

Inference = Callable[[NDArray[np.float32]], ArrayLike]


class AlignmentModel:
    """Predicts the raw corner coordinates of a plate in a BGR crop."""

    def __init__(self, infer: Inference) -> None:
        if not callable(infer):
            raise TypeError("infer must be callable")
        self._infer = infer

    def preprocess(self, image: ArrayLike) -> NDArray[np.float32]:
        """Turn a 128x128 BGR image into a planar RGB tensor of shape (1, 3, 128, 128)."""
        pixels = np.asarray(image)
        if (
            pixels.ndim != 3
            or pixels.shape[0] != IMG_HEIGHT
            or pixels.shape[1] != IMG_WIDTH
            or pixels.shape[2] < 3
        ):
            raise ValueError(f"Image size must be {IMG_WIDTH}x{IMG_HEIGHT}")
        rgb_planes = np.stack(
            (pixels[:, :, 2], pixels[:, :, 1], pixels[:, :, 0])
        ).astype(np.float32)
        return (rgb_planes / np.float32(255.0)).reshape(1, 3, IMG_HEIGHT, IMG_WIDTH)

    def get_coordinate(self, image: ArrayLike) -> NDArray[np.float32]:
        """Run the network and return the values of its first output row."""
        output = self._infer(self.preprocess(image))
        if output is None:
            raise RuntimeError("Failed to invoke TFLite interpreter.")
        values = np.asarray(output, dtype=np.float32)
        if values.ndim >= 2:
            values = values[0]
        return values.reshape(-1).copy()