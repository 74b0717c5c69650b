"""
2D refinement stage.

Cleans the raw keypoint track (gap filling, EMA, moving average), remaps
COCO-17 onto the canonical H36M-17 skeleton and normalizes it for the lifter.
Samples are held as a (frames, joints, 3) array of [x, y, score] with a
matching (frames, joints) validity mask.
"""
import logging
from typing import Dict, List, Optional, Tuple

import numpy as np

from fitpose.config import DebugConfig, NormalizeConfig, PostprocessConfig
from fitpose.errors import InvalidPoseDocumentError
from fitpose.models.documents import (
    Keypoint2D,
    NormalizedDocument,
    NormalizedFrame,
    PoseDocument,
    PoseFrame,
)
from fitpose.models.keypoint_schema import (
    COCO_TO_H36M_DIRECT,
    NUM_CANONICAL_JOINTS,
    COCOKeypoint,
    H36MKeypoint,
    get_keypoint_name,
)

logger = logging.getLogger(__name__)


def fill_gaps(points: np.ndarray, valid: np.ndarray, max_gap: int) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Linearly interpolate short runs of invalid samples per joint.

    A run is filled only when it is bounded by valid samples on both sides and
    is at most `max_gap` long. Sample k (1-based) of a run of length n gets
    start + (end - start) * k / (n + 1) for x, y and score.

    Returns:
        (points, valid, filled_per_joint)
    """
    points = points.copy()
    valid = valid.copy()
    num_frames, num_joints = valid.shape
    filled = np.zeros(num_joints, dtype=int)
    if max_gap <= 0:
        return points, valid, filled

    for joint in range(num_joints):
        last_valid = None
        idx = 0
        while idx < num_frames:
            if valid[idx, joint]:
                last_valid = idx
                idx += 1
                continue

            gap_start = idx
            while idx < num_frames and not valid[idx, joint]:
                idx += 1
            gap_len = idx - gap_start

            if last_valid is not None and idx < num_frames and gap_len <= max_gap:
                start = points[last_valid, joint]
                end = points[idx, joint]
                for step in range(gap_len):
                    alpha = (step + 1) / (gap_len + 1)
                    points[gap_start + step, joint] = start + (end - start) * alpha
                    valid[gap_start + step, joint] = True
                filled[joint] += gap_len

    return points, valid, filled


def ema_smooth(points: np.ndarray, valid: np.ndarray, alpha: float) -> np.ndarray:
    """
    Forward exponential moving average per joint.

    Once seeded by the first valid sample every sample is blended with the
    running state, but only valid samples advance it.
    """
    points = points.copy()
    num_frames, num_joints = valid.shape
    for joint in range(num_joints):
        state = None
        for fi in range(num_frames):
            if state is not None:
                points[fi, joint] = alpha * points[fi, joint] + (1.0 - alpha) * state
            if valid[fi, joint]:
                state = points[fi, joint].copy()
    return points


def moving_average(points: np.ndarray, window: int) -> np.ndarray:
    """Trailing moving average over `window` frames, no look-ahead."""
    if window <= 1 or len(points) == 0:
        return points.copy()

    cumsum = np.cumsum(points, axis=0)
    smoothed = np.empty_like(points)
    for fi in range(len(points)):
        lo = fi - window
        total = cumsum[fi] - (cumsum[lo] if lo >= 0 else 0.0)
        smoothed[fi] = total / (fi - max(lo, -1))
    return smoothed


def coco_to_h36m(keypoints: np.ndarray, head_top_factor: float) -> np.ndarray:
    """
    Remap a COCO-17 [x, y, score] pose onto the canonical H36M-17 layout.

    Pelvis, neck and spine are midpoints scored with the lower of their two
    inputs. The head top extrapolates nose - neck and takes the nose score.
    Poses with fewer than 17 joints map to all zeros.
    """
    out = np.zeros((NUM_CANONICAL_JOINTS, 3), dtype=np.float64)
    if len(keypoints) < 17:
        return out

    def midpoint(a, b):
        return np.array([(a[0] + b[0]) * 0.5, (a[1] + b[1]) * 0.5, min(a[2], b[2])])

    pelvis = midpoint(keypoints[COCOKeypoint.LEFT_HIP.value], keypoints[COCOKeypoint.RIGHT_HIP.value])
    neck = midpoint(keypoints[COCOKeypoint.LEFT_SHOULDER.value], keypoints[COCOKeypoint.RIGHT_SHOULDER.value])
    nose = keypoints[COCOKeypoint.NOSE.value]

    out[H36MKeypoint.PELVIS.value] = pelvis
    out[H36MKeypoint.NECK.value] = neck
    out[H36MKeypoint.SPINE.value] = midpoint(pelvis, neck)
    out[H36MKeypoint.HEAD_TOP.value] = [
        nose[0] + head_top_factor * (nose[0] - neck[0]),
        nose[1] + head_top_factor * (nose[1] - neck[1]),
        nose[2],
    ]
    for h36m_idx, coco_idx in COCO_TO_H36M_DIRECT.items():
        out[h36m_idx] = keypoints[coco_idx]
    return out


def normalize_pose(joints: np.ndarray, config: NormalizeConfig) -> Tuple[np.ndarray, np.ndarray, float]:
    """
    Centre a canonical pose on the root joint and divide by a reference bone.

    The bone length is the x-y distance between the two scale joints, floored
    by epsilon. Joint indices are clamped into range and z passes through.

    Returns:
        (values, center, scale); values are unchanged when disabled
    """
    last = len(joints) - 1
    root = joints[max(0, min(config.root_joint, last))]
    a = joints[max(0, min(config.scale_joint_a, last))]
    b = joints[max(0, min(config.scale_joint_b, last))]
    center = root[:2].copy()
    scale = max(float(np.hypot(a[0] - b[0], a[1] - b[1])), config.epsilon)

    if not config.enabled:
        return joints.copy(), center, scale

    values = joints.copy()
    values[:, :2] = (joints[:, :2] - center) / scale
    return values, center, scale


def _joint_histogram(counts: np.ndarray) -> str:
    parts = [f"{get_keypoint_name(j, 'coco').lower()}={int(c)}" for j, c in enumerate(counts) if c > 0]
    return "{" + ",".join(parts) + "}"


class PoseRefiner:
    """Builds the refined pixel-space document and the normalized canonical document."""

    def __init__(self, config: PostprocessConfig, head_top_factor: float = 0.5,
                 skeleton: str = "h36m_17", debug: Optional[DebugConfig] = None):
        self.config = config
        self.head_top_factor = head_top_factor
        self.skeleton = skeleton
        self.debug = debug or DebugConfig()

    def _to_arrays(self, document: PoseDocument) -> Tuple[np.ndarray, np.ndarray]:
        num_joints = document.num_keypoints
        points = np.zeros((document.num_frames, num_joints, 3), dtype=np.float64)
        valid = np.zeros((document.num_frames, num_joints), dtype=bool)
        floor, min_score = self.config.confidence.floor, self.config.confidence.min

        for fi, frame in enumerate(document.frames):
            for j, kp in enumerate(frame.keypoints[:num_joints]):
                x, y, score = kp.to_list()
                points[fi, j] = (x, y, max(floor, score))
                valid[fi, j] = frame.ok and kp.score >= min_score
        return points, valid

    def refine(self, document: PoseDocument) -> Tuple[PoseDocument, NormalizedDocument]:
        if document.num_keypoints <= 0:
            raise InvalidPoseDocumentError("Pose document has no keypoints")

        cfg = self.config
        logger.info(
            f"Refining {document.num_frames} frames: gap<={cfg.gap_fill.max_interpolated_gap} "
            f"ema={'%.2f' % cfg.ema.alpha if cfg.ema.enabled else 'off'} "
            f"ma_window={cfg.global_motion.window if cfg.global_motion.enabled else 'off'} "
            f"score_min={cfg.confidence.min:.3f} normalize={'on' if cfg.normalize.enabled else 'off'}"
        )

        points, valid = self._to_arrays(document)
        points, valid, filled = fill_gaps(points, valid, cfg.gap_fill.max_interpolated_gap)
        logger.info(f"Gaps filled: total={int(filled.sum())} byJoint={_joint_histogram(filled)}")

        if cfg.ema.enabled:
            points = ema_smooth(points, valid, cfg.ema.alpha)
        if cfg.global_motion.enabled:
            points = moving_average(points, cfg.global_motion.window)

        points[:, :, 2] = np.clip(points[:, :, 2], 0.0, 1.0)

        refined_frames: List[PoseFrame] = []
        normalized_frames: List[NormalizedFrame] = []
        scales: Dict[str, float] = {}

        for idx, frame in enumerate(document.frames):
            ok = bool(frame.ok or valid[idx].any())
            refined_frames.append(PoseFrame(
                fi=frame.fi,
                t=frame.t,
                ok=ok,
                keypoints=[Keypoint2D(x=float(p[0]), y=float(p[1]), score=float(p[2])) for p in points[idx]],
            ))

            canonical = coco_to_h36m(points[idx], self.head_top_factor)
            values, center, scale = normalize_pose(canonical, cfg.normalize)
            scales.setdefault("first", scale)
            scales["last"] = scale
            if self.debug.verbose_logging and idx % max(1, self.debug.frame_log_stride) == 0:
                logger.debug(f"fi={frame.fi} center=({center[0]:.1f},{center[1]:.1f}) scale={scale:.3f}")

            normalized_frames.append(NormalizedFrame(fi=frame.fi, t=frame.t, ok=ok, keypoints=values.tolist()))

        refined = PoseDocument(
            video=document.video,
            num_keypoints=document.num_keypoints,
            simcc_ratio=document.simcc_ratio,
            input_width=document.input_width,
            input_height=document.input_height,
            frames=refined_frames,
        )
        normalized = NormalizedDocument(video=document.video, skeleton=self.skeleton, frames=normalized_frames)

        if scales:
            logger.info(f"Normalization scale first={scales['first']:.3f} last={scales['last']:.3f}")
        return refined, normalized
