"""
Pixel-buffer preprocessing shared by the image-based analyzers
"""
from typing import Optional

import cv2
import numpy as np

GRID_SIZE = 20


def is_valid_frame(frame: Optional[np.ndarray]) -> bool:
    """True for a non-empty 8-bit gray, RGB or RGBA buffer."""
    if frame is None or not isinstance(frame, np.ndarray) or frame.size == 0:
        return False
    if frame.ndim == 2:
        return True
    return frame.ndim == 3 and frame.shape[2] in (3, 4)


def to_rgb(frame: np.ndarray) -> np.ndarray:
    """
    Normalize a frame to a 3-channel uint8 RGB array.

    Args:
        frame: Gray, RGB or RGBA buffer, 8 bits per channel

    Returns:
        np.ndarray: RGB frame
    """
    if frame.dtype != np.uint8:
        frame = np.clip(frame, 0, 255).astype(np.uint8)
    if frame.ndim == 2:
        return cv2.cvtColor(frame, cv2.COLOR_GRAY2RGB)
    if frame.shape[2] == 4:
        return cv2.cvtColor(frame, cv2.COLOR_RGBA2RGB)
    return frame


def downscale(frame: np.ndarray, scale: float) -> np.ndarray:
    """
    Resize a frame by ``scale`` to bound per-frame analysis cost.

    The analyzers never ask for a specific resolution; whatever the frame
    source provides is reduced to a fixed fraction of it.
    """
    rgb = to_rgb(frame)
    height, width = rgb.shape[:2]
    target = (max(1, int(width * scale)), max(1, int(height * scale)))
    if target == (width, height):
        return rgb
    return cv2.resize(rgb, target, interpolation=cv2.INTER_AREA)


def to_gray(rgb: np.ndarray) -> np.ndarray:
    """Unweighted channel mean as float32, the brightness measure every analyzer uses."""
    return rgb[:, :, :3].astype(np.float32).mean(axis=2)


def simplified_grid(gray: np.ndarray, size: int = GRID_SIZE) -> np.ndarray:
    """Sample block centers into a ``size`` x ``size`` grid."""
    height, width = gray.shape[:2]
    block_w = width // size
    block_h = height // size
    xs = np.minimum(np.arange(size) * block_w + block_w // 2, width - 1)
    ys = np.minimum(np.arange(size) * block_h + block_h // 2, height - 1)
    return gray[np.ix_(ys, xs)].astype(np.float64)
