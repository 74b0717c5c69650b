"""
SIMCC decoding.

The keypoint model emits one 1D classification distribution per joint and
axis (simcc_x, simcc_y). Exported models disagree on whether the joint axis
comes before or after the bin axis, so the layout is inferred from the
tensor shapes and cross-checked against the decoded result.
"""
import logging
from typing import Tuple

import numpy as np

logger = logging.getLogger(__name__)

# Joint counts of the body layouts the decoder expects to see
KNOWN_JOINT_COUNTS = (17, 26, 29)


def _as_2d(tensor) -> np.ndarray:
    """Drop leading batch dimensions of size 1."""
    arr = np.asarray(tensor, dtype=np.float32)
    if arr.ndim < 2:
        raise ValueError(f"SIMCC tensor must be at least 2D, got shape {arr.shape}")
    if int(np.prod(arr.shape[:-2])) != 1:
        raise ValueError(f"SIMCC tensor has batch size > 1: {arr.shape}")
    return arr.reshape(arr.shape[-2:])


def joint_axis(shape: Tuple[int, int]) -> int:
    """
    Guess which of the two axes indexes joints.

    An axis whose length is a known joint count wins. Otherwise, or when
    both axes match, the smaller axis is taken (axis 0 on ties).
    """
    known = [ax for ax in (0, 1) if shape[ax] in KNOWN_JOINT_COUNTS]
    if len(known) == 1:
        return known[0]
    return 0 if shape[0] <= shape[1] else 1


def _argmax_per_joint(arr: np.ndarray, axis: int) -> Tuple[np.ndarray, np.ndarray]:
    joints_first = arr if axis == 0 else arr.T
    return np.argmax(joints_first, axis=1), np.max(joints_first, axis=1)


def _decode(x2d: np.ndarray, y2d: np.ndarray, axis_x: int, axis_y: int):
    bins_x, max_x = _argmax_per_joint(x2d, axis_x)
    bins_y, max_y = _argmax_per_joint(y2d, axis_y)
    k = min(len(bins_x), len(bins_y))
    return bins_x[:k], bins_y[:k], max_x[:k], max_y[:k]


def bin_diversity(bins_x: np.ndarray, bins_y: np.ndarray) -> float:
    """Fraction of distinct arg-max bins across joints, averaged over both axes."""
    k = len(bins_x)
    if k == 0:
        return 0.0
    return (len(np.unique(bins_x)) + len(np.unique(bins_y))) / (2.0 * k)


def decode_simcc(simcc_x, simcc_y, simcc_ratio: float) -> Tuple[np.ndarray, np.ndarray]:
    """
    Decode SIMCC outputs into keypoints in model-input pixels.

    Both axis-order hypotheses are decoded. The one whose arg-max bins are
    more diverse across joints is kept, with the shape-based guess winning
    ties. A collapsed decode (every joint on the same bin) is the signature
    of reading bins as joints.

    Returns:
        points: (K, 2) float array of (x, y) in input pixels
        scores: (K,) mean of the two maxima, clamped to [0, 1]
    """
    x2d, y2d = _as_2d(simcc_x), _as_2d(simcc_y)
    axis_x, axis_y = joint_axis(x2d.shape), joint_axis(y2d.shape)

    primary = _decode(x2d, y2d, axis_x, axis_y)
    alternate = _decode(x2d, y2d, 1 - axis_x, 1 - axis_y)

    chosen = primary
    if bin_diversity(alternate[0], alternate[1]) > bin_diversity(primary[0], primary[1]):
        logger.debug(f"SIMCC layout {x2d.shape}/{y2d.shape}: using transposed joint axis")
        chosen = alternate

    bins_x, bins_y, max_x, max_y = chosen
    points = np.stack([bins_x / simcc_ratio, bins_y / simcc_ratio], axis=1).astype(np.float64)
    scores = np.clip((max_x.astype(np.float64) + max_y) / 2.0, 0.0, 1.0)
    return points, scores
