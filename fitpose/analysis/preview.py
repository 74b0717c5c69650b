"""Diagnostic preview images for the pose and lifter stages."""
import logging
from pathlib import Path
from typing import Optional, Sequence, Tuple

import cv2
import numpy as np
from matplotlib.backends.backend_agg import FigureCanvasAgg
from matplotlib.figure import Figure

from fitpose.models.keypoint_schema import COCO_PREVIEW_SKELETON, H36M_SKELETON

logger = logging.getLogger(__name__)

LINE_COLOR = (51, 230, 51)  # BGR
POINT_COLOR = (51, 230, 51)


def draw_skeleton(frame: np.ndarray, keypoints: np.ndarray, scores: np.ndarray,
                  skeleton: Sequence[Tuple[int, int]] = COCO_PREVIEW_SKELETON) -> np.ndarray:
    """Draw 2D pose skeleton on a copy of frame. Joints with score <= 0 are skipped."""
    frame = frame.copy()

    for pt1_idx, pt2_idx in skeleton:
        if pt1_idx >= len(keypoints) or pt2_idx >= len(keypoints):
            continue
        if scores[pt1_idx] <= 0 or scores[pt2_idx] <= 0:
            continue
        pt1 = (int(round(keypoints[pt1_idx][0])), int(round(keypoints[pt1_idx][1])))
        pt2 = (int(round(keypoints[pt2_idx][0])), int(round(keypoints[pt2_idx][1])))
        cv2.line(frame, pt1, pt2, LINE_COLOR, 4, lineType=cv2.LINE_AA)

    for kp, score in zip(keypoints, scores):
        if score > 0:
            cv2.circle(frame, (int(round(kp[0])), int(round(kp[1]))), 3, POINT_COLOR, -1)

    return frame


def write_pose_preview(frame: np.ndarray, keypoints: np.ndarray, scores: np.ndarray,
                       output_path) -> Optional[str]:
    """Write the 2D overlay as JPEG. Returns the path, or None if it could not be written."""
    output_path = Path(output_path)
    try:
        image = draw_skeleton(frame, keypoints, scores)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        written = cv2.imwrite(str(output_path), image, [cv2.IMWRITE_JPEG_QUALITY, 85])
    except (cv2.error, OSError) as e:
        logger.warning(f"Pose preview failed: {e}")
        written = False

    if not written:
        logger.warning(f"Could not write pose preview to {output_path}")
        return None
    return str(output_path)


def draw_skeleton_3d(keypoints_3d: np.ndarray, fig_size=(6, 6)) -> np.ndarray:
    """Draw a 3D H36M pose and return it as a BGR image array."""
    fig = Figure(figsize=fig_size)
    canvas = FigureCanvasAgg(fig)
    ax = fig.add_subplot(111, projection='3d')

    for pt1_idx, pt2_idx in H36M_SKELETON:
        if pt1_idx >= len(keypoints_3d) or pt2_idx >= len(keypoints_3d):
            continue
        pt1, pt2 = keypoints_3d[pt1_idx], keypoints_3d[pt2_idx]
        ax.plot([pt1[0], pt2[0]], [pt1[1], pt2[1]], [pt1[2], pt2[2]], 'g-', linewidth=2)

    ax.scatter(keypoints_3d[:, 0], keypoints_3d[:, 1], keypoints_3d[:, 2], c='r', s=20)

    ax.set_xlabel('X')
    ax.set_ylabel('Y')
    ax.set_zlabel('Z')
    ax.set_title('3D Pose')

    # Equal-extent cube around the pose
    center = keypoints_3d.mean(axis=0)
    range_val = max(float(np.abs(keypoints_3d - center).max()), 1e-3)
    ax.set_xlim([center[0] - range_val, center[0] + range_val])
    ax.set_ylim([center[1] - range_val, center[1] + range_val])
    ax.set_zlim([center[2] - range_val, center[2] + range_val])
    ax.view_init(elev=15, azim=45)

    canvas.draw()
    img = np.asarray(canvas.buffer_rgba(), dtype=np.uint8)
    return cv2.cvtColor(img, cv2.COLOR_RGBA2BGR)


def write_lift_preview(keypoints_3d: np.ndarray, output_path) -> Optional[str]:
    """Render the 3D pose to PNG. Returns the path, or None if it could not be written."""
    output_path = Path(output_path)
    try:
        image = draw_skeleton_3d(np.asarray(keypoints_3d, dtype=np.float64))
        output_path.parent.mkdir(parents=True, exist_ok=True)
        written = cv2.imwrite(str(output_path), image)
    except (cv2.error, OSError, ValueError) as e:
        logger.warning(f"3D preview failed: {e}")
        written = False

    if not written:
        logger.warning(f"Could not write 3D preview to {output_path}")
        return None
    return str(output_path)
