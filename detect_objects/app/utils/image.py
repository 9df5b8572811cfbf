"""Image decoding utilities producing model input tensors."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Union

import cv2
import numpy as np

from ..errors import ImageFormatError

LOGGER = logging.getLogger(__name__)

BATCH_SIZE = 1
CHANNELS = 3


def bgr_to_rgb(data: np.ndarray) -> np.ndarray:
    """Swap the first and third byte of every 3-byte pixel group in place.

    The swap is its own inverse, so it converts RGB back to BGR as well.
    """

    if data.size % CHANNELS != 0:
        raise ValueError(f"Pixel buffer of {data.size} bytes is not a whole number of 3-byte pixels")
    pixels = data.reshape(-1, CHANNELS)
    if not np.shares_memory(pixels, data):
        raise ValueError("Pixel buffer must be contiguous to be reordered in place")
    pixels[:, [0, 2]] = pixels[:, [2, 0]]
    return data


def read_image(path: Union[str, Path]) -> np.ndarray:
    """Decode an image file as height x width x 3 bytes in BGR order."""

    image = cv2.imread(str(path), cv2.IMREAD_UNCHANGED)
    if image is None:
        raise ImageFormatError(path, "Unable to decode image")
    if image.dtype != np.uint8:
        raise ImageFormatError(path, f"Expected 8-bit pixels, found {image.dtype}")
    channels = 1 if image.ndim == 2 else image.shape[2]
    if channels != CHANNELS:
        raise ImageFormatError(path, f"Expected 3-channel BGR image, found {channels} channel(s)")
    return image


def make_image_tensor(path: Union[str, Path]) -> np.ndarray:
    """Build a (1, height, width, 3) uint8 RGB tensor from an image file."""

    image = np.ascontiguousarray(read_image(path))
    # OpenCV decodes to BGR, the model expects RGB.
    bgr_to_rgb(image)
    height, width = image.shape[:2]
    LOGGER.debug("Decoded %s as %dx%d", path, width, height)
    return image.reshape(BATCH_SIZE, height, width, CHANNELS)
