"""
Frame sampling.

Walks a video at a fixed target rate and yields timestamped still images.
The schedule is a pure function of (duration, base fps, target rate) so the
frame indices are reproducible across runs and stages.
"""
import logging
from dataclasses import dataclass
from typing import Iterator, List, Optional, Tuple

import cv2
import numpy as np

from fitpose.analysis.geometry import normalize_rotation, rotated_size
from fitpose.errors import VideoTrackUnavailableError

logger = logging.getLogger(__name__)

MIN_TARGET_FPS = 1.0
FPS_PROBE_FRAMES = 30
# Forward gaps shorter than this are walked with grab() instead of a seek
SEQUENTIAL_READ_LIMIT = 8


@dataclass(frozen=True)
class SamplingSchedule:
    frame_step: int
    effective_fps: float
    entries: List[Tuple[int, float]]  # (fi, t)

    def __len__(self):
        return len(self.entries)


@dataclass
class SampledFrame:
    """A sampled still. `image` is None when extraction failed."""
    fi: int
    t: float
    image: Optional[np.ndarray]


def sampling_schedule(duration: float, base_fps: float, target_fps: float) -> SamplingSchedule:
    """
    Compute which source frames to sample.

    Args:
        duration: Time of the last frame in seconds
        base_fps: Native frame rate of the video
        target_fps: Requested sampling rate, raised to 1 fps if lower

    Returns:
        SamplingSchedule with fi = 0, step, 2*step, ... at t = fi / base_fps
        for every t <= duration
    """
    if base_fps <= 0:
        raise ValueError(f"base_fps must be positive, got {base_fps}")

    target_fps = max(float(target_fps), MIN_TARGET_FPS)
    frame_step = max(1, int(round(base_fps / target_fps)))
    effective_fps = base_fps / frame_step

    entries = []
    fi = 0
    # Small tolerance so a last frame sitting exactly on `duration` survives float error
    while fi / base_fps <= duration + 1e-9:
        entries.append((fi, round(fi / base_fps, 3)))
        fi += frame_step

    return SamplingSchedule(frame_step=frame_step, effective_fps=effective_fps, entries=entries)


class OpenCVVideoSource:
    """Random-access frame reader over cv2.VideoCapture."""

    def __init__(self, video_path: str):
        self.video_path = str(video_path)
        self.cap = cv2.VideoCapture(self.video_path)
        if not self.cap.isOpened():
            raise VideoTrackUnavailableError(f"Could not open video: {self.video_path}")

        self.width = int(self.cap.get(cv2.CAP_PROP_FRAME_WIDTH))
        self.height = int(self.cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
        self.frame_count = int(self.cap.get(cv2.CAP_PROP_FRAME_COUNT))
        self._position: Optional[int] = 0

        fps = self.cap.get(cv2.CAP_PROP_FPS)
        self.fps = fps if fps and fps > 0 else self._estimate_fps()

        if self.width <= 0 or self.height <= 0 or self.frame_count <= 0:
            self.close()
            raise VideoTrackUnavailableError(f"Video has no readable frames: {self.video_path}")

        logger.info(f"Opened {self.video_path}: {self.width}x{self.height} @ {self.fps:.2f} fps, "
                    f"{self.frame_count} frames")

    @property
    def duration(self) -> float:
        """Timestamp of the last frame in seconds."""
        return (self.frame_count - 1) / self.fps

    def _estimate_fps(self) -> float:
        """Estimate fps from the shortest positive gap between leading frame timestamps."""
        stamps = []
        for _ in range(FPS_PROBE_FRAMES):
            if not self.cap.grab():
                break
            stamps.append(self.cap.get(cv2.CAP_PROP_POS_MSEC))
        self.cap.set(cv2.CAP_PROP_POS_FRAMES, 0)
        self._position = 0

        deltas = [b - a for a, b in zip(stamps, stamps[1:]) if b - a > 0]
        if not deltas:
            self.close()
            raise VideoTrackUnavailableError(f"Could not determine frame rate: {self.video_path}")

        fps = 1000.0 / min(deltas)
        logger.info(f"Container reports no fps, estimated {fps:.2f} from frame timestamps")
        return fps

    def read_frame(self, fi: int) -> Optional[np.ndarray]:
        """Decode frame `fi`. Returns None if the seek or decode fails."""
        if self.cap is None:
            return None

        # Position is unknown until this read succeeds, so a failure forces the next call to seek
        position, self._position = self._position, None
        if position is not None and 0 <= fi - position < SEQUENTIAL_READ_LIMIT:
            for _ in range(fi - position):
                if not self.cap.grab():
                    return None
        else:
            self.cap.set(cv2.CAP_PROP_POS_FRAMES, fi)

        ok, frame = self.cap.read()
        if not ok:
            return None
        self._position = fi + 1
        return frame

    def close(self):
        if self.cap is not None:
            self.cap.release()
            self.cap = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


class FrameSampler:
    """
    Yields SampledFrame objects for a video source.

    The source must expose width, height, fps, duration and read_frame(fi).
    Failed extractions become placeholder frames so the sequence has no holes.
    """

    def __init__(self, source, target_fps: float, rotation_deg: int = 0):
        self.source = source
        self.rotation_deg = normalize_rotation(rotation_deg)
        self.schedule = sampling_schedule(source.duration, source.fps, target_fps)
        self.failed_extractions = 0

        upright_w, upright_h = rotated_size(source.width, source.height, self.rotation_deg)
        logger.info(
            f"Sampling {len(self.schedule)} frames every {self.schedule.frame_step} source frames "
            f"({self.schedule.effective_fps:.2f} fps, upright {upright_w}x{upright_h}, "
            f"rotation {self.rotation_deg})"
        )

    @property
    def effective_fps(self) -> float:
        return self.schedule.effective_fps

    def __len__(self):
        return len(self.schedule)

    def __iter__(self) -> Iterator[SampledFrame]:
        self.failed_extractions = 0
        for fi, t in self.schedule.entries:
            try:
                image = self.source.read_frame(fi)
            except cv2.error as e:
                logger.warning(f"Decode error at frame {fi}: {e}")
                image = None

            if image is None:
                self.failed_extractions += 1
                logger.warning(f"Frame {fi} (t={t:.3f}s) could not be extracted, using empty placeholder")

            yield SampledFrame(fi=fi, t=t, image=image)

        if self.failed_extractions:
            logger.warning(f"{self.failed_extractions}/{len(self.schedule)} frames failed to extract")
