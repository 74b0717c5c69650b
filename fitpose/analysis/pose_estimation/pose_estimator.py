"""
2D keypoint estimation stage.

Crops around the selected subject box, runs the SIMCC keypoint model and maps
the decoded joints back to original-video pixels.
"""
import logging
from pathlib import Path
from typing import Callable, Optional, Tuple

import cv2
import numpy as np

from fitpose.analysis.geometry import clamp, normalize_rotation, padded_box, rotate_image, unrotate_point
from fitpose.analysis.pose_estimation.simcc_decoder import decode_simcc
from fitpose.analysis.preview import write_pose_preview
from fitpose.config import DebugConfig, PoseConfig
from fitpose.models.documents import DetectionBox, DetectionDocument, Keypoint2D, PoseDocument, PoseFrame
from fitpose.utils.inference import InferenceModel

logger = logging.getLogger(__name__)

PREVIEW_FILENAME = "rtmpose_preview.jpg"


class PoseEstimator:
    """Top-down keypoint model wrapper for a single subject box."""

    def __init__(self, model: InferenceModel, config: PoseConfig, detector_rotation_deg: int = 0):
        self.model = model
        self.config = config
        self.rotation_deg = normalize_rotation(detector_rotation_deg + config.rotation_override_deg)
        self._means = np.array(config.means, dtype=np.float32)
        self._stds = np.array(config.stds, dtype=np.float32)

    def preprocess(self, crop: np.ndarray) -> np.ndarray:
        """Rotate upright, resize to the model input and normalize to NCHW float32."""
        upright = rotate_image(crop, self.rotation_deg)
        resized = cv2.resize(upright, (self.config.input_width, self.config.input_height),
                             interpolation=cv2.INTER_LINEAR)
        if self.config.channel_order.upper() == "RGB":
            resized = cv2.cvtColor(resized, cv2.COLOR_BGR2RGB)
        x = (resized.astype(np.float32) - self._means) / self._stds
        return np.ascontiguousarray(x.transpose(2, 0, 1)[None, ...])

    def _simcc_outputs(self, outputs):
        if "simcc_x" in outputs and "simcc_y" in outputs:
            return outputs["simcc_x"], outputs["simcc_y"]
        values = list(outputs.values())
        return values[0], values[1]

    def estimate(self, image: np.ndarray, box: DetectionBox) -> Optional[Tuple[np.ndarray, np.ndarray]]:
        """
        Estimate keypoints for one box in a BGR image.

        Returns:
            (points, scores) with points (K, 2) in image pixels, or None when
            the crop is unusable
        """
        img_h, img_w = image.shape[:2]
        crop_rect = padded_box(box.x, box.y, box.w, box.h, self.config.padding, img_w, img_h)
        if crop_rect is None:
            return None

        cx0, cy0, cw, ch = crop_rect
        crop = image[cy0:cy0 + ch, cx0:cx0 + cw]
        if crop.size == 0:
            return None

        outputs = self.model.run(self.preprocess(crop))
        simcc_x, simcc_y = self._simcc_outputs(outputs)
        points_in, scores = decode_simcc(simcc_x, simcc_y, self.config.simcc_ratio)

        # Input pixels -> upright crop pixels -> source crop -> source image
        if self.rotation_deg in (90, 270):
            up_w, up_h = ch, cw
        else:
            up_w, up_h = cw, ch
        scale_x = up_w / float(self.config.input_width)
        scale_y = up_h / float(self.config.input_height)

        points = np.empty_like(points_in)
        for k, (x_in, y_in) in enumerate(points_in):
            u, v = unrotate_point(x_in * scale_x, y_in * scale_y, self.rotation_deg, cw, ch)
            points[k, 0] = clamp(cx0 + u, 0.0, float(img_w))
            points[k, 1] = clamp(cy0 + v, 0.0, float(img_h))

        return points, scores


class PoseEstimatorStage:
    """
    Runs the keypoint model on every frame of a detection document.

    Frames are re-read from the video source by frame index, so the stage only
    depends on the detection document and the source.
    """

    def __init__(self, estimator: PoseEstimator, source, debug: Optional[DebugConfig] = None):
        self.estimator = estimator
        self.source = source
        self.debug = debug or DebugConfig()

    def run(self, detections: DetectionDocument, session_dir,
            progress: Optional[Callable[[str], None]] = None) -> Tuple[PoseDocument, Optional[str]]:
        config = self.estimator.config
        preview_path = None
        num_keypoints = 0

        document = PoseDocument(
            video=detections.video,
            num_keypoints=0,
            simcc_ratio=config.simcc_ratio,
            input_width=config.input_width,
            input_height=config.input_height,
        )

        for n, frame in enumerate(detections.frames, start=1):
            pose_frame = PoseFrame(fi=frame.fi, t=frame.t, ok=False)
            document.frames.append(pose_frame)

            if progress and n % 10 == 0:
                progress(f"Estimated keypoints for {n}/{detections.num_frames} frames")

            box = frame.selected_box
            if box is None:
                continue

            image = self.source.read_frame(frame.fi)
            if image is None:
                logger.warning(f"Frame {frame.fi} could not be re-read for keypoint estimation")
                continue

            result = self.estimator.estimate(image, box)
            if result is None:
                logger.warning(f"Frame {frame.fi}: unusable crop for box {box}")
                continue

            points, scores = result
            num_keypoints = max(num_keypoints, len(points))
            pose_frame.keypoints = [
                Keypoint2D(x=float(p[0]), y=float(p[1]), score=float(s)) for p, s in zip(points, scores)
            ]
            pose_frame.ok = bool(np.any(scores >= config.min_keypoint_score))

            if self.debug.verbose_logging and n % max(1, self.debug.frame_log_stride) == 1:
                logger.debug(f"Frame {frame.fi}: {len(points)} keypoints, max score {scores.max():.3f}")

            if pose_frame.ok and preview_path is None:
                preview_path = write_pose_preview(image, points, scores, Path(session_dir) / PREVIEW_FILENAME)

        document.num_keypoints = num_keypoints
        logger.info(f"Keypoint estimation complete: {document.frames_with_detections}/{document.num_frames} "
                    f"frames with detections, {num_keypoints} keypoints")
        return document, preview_path
