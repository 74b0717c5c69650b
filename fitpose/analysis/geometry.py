"""
Coordinate-frame bookkeeping shared by the detector and pose stages.

Rotation angles are the clockwise rotation applied to a source image to make
it upright. The helpers here map points and boxes from that rotated frame
back to the source frame. Boxes are mapped corner by corner, a rotated box
is not assumed to keep its width and height.
"""
import math
from typing import Optional, Tuple

import cv2
import numpy as np

_CV2_ROTATIONS = {
    90: cv2.ROTATE_90_CLOCKWISE,
    180: cv2.ROTATE_180,
    270: cv2.ROTATE_90_COUNTERCLOCKWISE,
}


def normalize_rotation(deg) -> int:
    """Snap an angle to the nearest quarter turn in {0, 90, 180, 270}."""
    return int(round(float(deg) / 90.0)) * 90 % 360


def rotated_size(width: int, height: int, deg: int) -> Tuple[int, int]:
    """Size of a width x height image after rotating it by `deg`."""
    if normalize_rotation(deg) in (90, 270):
        return height, width
    return width, height


def rotate_image(image: np.ndarray, deg: int) -> np.ndarray:
    """Rotate an image clockwise by a quarter-turn multiple."""
    deg = normalize_rotation(deg)
    if deg == 0:
        return image
    return cv2.rotate(image, _CV2_ROTATIONS[deg])


def unrotate_point(u: float, v: float, deg: int, orig_w: float, orig_h: float) -> Tuple[float, float]:
    """
    Map a point from the rotated frame back to the source frame.

    Args:
        u, v: Point in the rotated image
        deg: Clockwise rotation that produced the rotated image
        orig_w, orig_h: Size of the source (unrotated) image

    Returns:
        (x, y) in the source image
    """
    deg = normalize_rotation(deg)
    if deg == 90:
        return v, orig_h - u
    if deg == 180:
        return orig_w - u, orig_h - v
    if deg == 270:
        return orig_w - v, u
    return u, v


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def unrotate_box(x: float, y: float, w: float, h: float, deg: int,
                 orig_w: float, orig_h: float) -> Tuple[float, float, float, float]:
    """
    Map an axis-aligned box from the rotated frame back to the source frame.

    All four corners are un-rotated, the result is their bounding box clamped
    to [0, orig_w] x [0, orig_h].
    """
    corners = [(x, y), (x + w, y), (x, y + h), (x + w, y + h)]
    mapped = [unrotate_point(u, v, deg, orig_w, orig_h) for u, v in corners]
    xs = [clamp(p[0], 0.0, orig_w) for p in mapped]
    ys = [clamp(p[1], 0.0, orig_h) for p in mapped]
    x0, y0 = min(xs), min(ys)
    return x0, y0, max(xs) - x0, max(ys) - y0


def padded_box(x: float, y: float, w: float, h: float, padding: float,
               img_w: int, img_h: int) -> Optional[Tuple[int, int, int, int]]:
    """
    Expand a box about its centre, clamp it to the image and snap outward.

    Returns:
        Integer (x, y, w, h), at least 1 px each way, or None if the image
        itself is empty.
    """
    if img_w < 1 or img_h < 1:
        return None

    cx, cy = x + w / 2.0, y + h / 2.0
    half_w = max(w * padding, 1.0) / 2.0
    half_h = max(h * padding, 1.0) / 2.0

    x0 = int(math.floor(clamp(cx - half_w, 0, img_w)))
    y0 = int(math.floor(clamp(cy - half_h, 0, img_h)))
    x1 = int(math.ceil(clamp(cx + half_w, 0, img_w)))
    y1 = int(math.ceil(clamp(cy + half_h, 0, img_h)))

    # Minimum size of one pixel, kept inside the image
    if x1 - x0 < 1:
        x0 = min(x0, img_w - 1)
        x1 = x0 + 1
    if y1 - y0 < 1:
        y0 = min(y0, img_h - 1)
        y1 = y0 + 1

    return x0, y0, x1 - x0, y1 - y0
