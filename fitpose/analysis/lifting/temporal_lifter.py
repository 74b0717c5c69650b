"""
Temporal 2D-to-3D lifting stage.

Slides a fixed window of normalized H36M-17 poses through the lifting model.
Short clips are edge-padded into a single window; longer clips get one
window per stride-sampled frame, read at the window centre.
"""
import logging
from pathlib import Path
from typing import Callable, Optional, Tuple

import numpy as np

from fitpose.analysis.preview import write_lift_preview
from fitpose.config import DebugConfig, LifterConfig
from fitpose.models.documents import Keypoint3D, LiftedDocument, LiftedFrame, NormalizedDocument
from fitpose.models.keypoint_schema import NUM_CANONICAL_JOINTS
from fitpose.utils.inference import InferenceModel

logger = logging.getLogger(__name__)

PREVIEW_FILENAME = "motionbert_preview.png"


class TemporalLifter:
    """Stateless wrapper around the lifting model: every call sees one full window."""

    def __init__(self, model: InferenceModel, config: LifterConfig, debug: Optional[DebugConfig] = None):
        self.model = model
        self.config = config
        self.debug = debug or DebugConfig()
        self.window = max(1, int(config.temporal_window))
        self.center = max(0, min(int(config.center), self.window - 1))
        self.stride = max(1, int(config.stride))

    def _infer(self, window: np.ndarray) -> np.ndarray:
        """Run one (W, 17, 3) window, returning the (W, 17, 3) prediction."""
        tensor = np.ascontiguousarray(window[None, ...], dtype=np.float32)
        outputs = self.model.run(tensor)
        result = np.asarray(next(iter(outputs.values())), dtype=np.float64)
        expected = (1, self.window, NUM_CANONICAL_JOINTS, 3)
        if result.size != int(np.prod(expected)):
            raise ValueError(f"Lifter output shape {result.shape} does not match {expected}")
        return result.reshape(expected)[0]

    def lift_sequence(self, sequence: np.ndarray):
        """
        Lift a (T, 17, 3) sequence.

        Yields (source_index, (17, 3) pose) pairs. With T <= W every frame is
        lifted; otherwise only frames 0, S, 2S, ... are.
        """
        total = len(sequence)
        if total == 0:
            return

        if total <= self.window:
            pad_left = (self.window - total) // 2
            pad_right = self.window - total - pad_left
            padded = np.concatenate([
                np.repeat(sequence[:1], pad_left, axis=0),
                sequence,
                np.repeat(sequence[-1:], pad_right, axis=0),
            ], axis=0)
            prediction = self._infer(padded)
            for i in range(total):
                yield i, prediction[pad_left + i]
            return

        offsets = np.arange(self.window) - self.center
        for i in range(0, total, self.stride):
            indices = np.clip(i + offsets, 0, total - 1)
            prediction = self._infer(sequence[indices])
            yield i, prediction[self.center]

    def run(self, normalized: NormalizedDocument, session_dir,
            progress: Optional[Callable[[str], None]] = None) -> Tuple[LiftedDocument, Optional[str]]:
        frames = normalized.frames
        document = LiftedDocument(
            video=normalized.video,
            temporal_window=self.window,
            skeleton=self.config.skeleton,
            frames_processed=len(frames),
        )
        preview_path = None

        if not frames:
            logger.info("No frames to lift")
            return document, preview_path

        sequence = np.zeros((len(frames), NUM_CANONICAL_JOINTS, 3), dtype=np.float32)
        for i, frame in enumerate(frames):
            if frame.keypoints:
                joints = np.asarray(frame.keypoints, dtype=np.float32)[:NUM_CANONICAL_JOINTS, :3]
                sequence[i, :len(joints)] = joints

        if len(frames) > self.window and self.stride > 1:
            logger.info(f"Lifting every {self.stride}th of {len(frames)} frames")

        for i, pose in self.lift_sequence(sequence):
            source = frames[i]
            document.frames.append(LiftedFrame(
                fi=source.fi,
                t=source.t,
                ok=source.ok,
                keypoints3d=[Keypoint3D(X=float(p[0]), Y=float(p[1]), Z=float(p[2])) for p in pose],
            ))
            if preview_path is None:
                preview_path = write_lift_preview(pose, Path(session_dir) / PREVIEW_FILENAME)

            n = len(document.frames)
            if self.debug.verbose_logging and n % max(1, self.debug.frame_log_stride) == 1:
                logger.debug(f"Lifted fi={source.fi}")
            if progress and n % 10 == 0:
                progress(f"Lifted {n} frames to 3D")

        logger.info(f"Lifting complete: {document.frames_with_3d}/{document.frames_processed} frames with 3D")
        return document, preview_path
