"""
Person detection stage.

Runs a YOLO-style detector on every sampled frame, maps boxes back to
original-video pixels and picks one subject box per frame.
"""
import logging
import math
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

import cv2
import numpy as np

from fitpose.analysis.frame_sampler import SampledFrame
from fitpose.analysis.geometry import normalize_rotation, rotate_image, rotated_size, unrotate_box
from fitpose.config import DebugConfig, DetectorConfig
from fitpose.models.documents import (
    DetectionBox,
    DetectionDocument,
    DetectionFrame,
    DetectionMeta,
    SelectedSubject,
    VideoInfo,
)
from fitpose.models.keypoint_schema import DETECTOR_CLASS_LABELS, PERSON_LABEL
from fitpose.utils.inference import InferenceModel

logger = logging.getLogger(__name__)

SELECTION_STRATEGIES = ("bestScore", "largest")
# Offset added per class so one NMS pass never suppresses across classes
_CLASS_OFFSET = 4096.0


def letterbox(image: np.ndarray, imgsz: int, stride: int,
              pad_color: Sequence[int]) -> Tuple[np.ndarray, float, Tuple[int, int]]:
    """
    Resize keeping aspect ratio and pad to a square of side imgsz rounded up
    to a multiple of stride.

    Returns:
        (padded image, scale ratio, (pad_left, pad_top))
    """
    size = int(math.ceil(imgsz / stride) * stride)
    h, w = image.shape[:2]
    r = min(size / h, size / w)
    new_w, new_h = int(round(w * r)), int(round(h * r))

    if (w, h) != (new_w, new_h):
        image = cv2.resize(image, (new_w, new_h), interpolation=cv2.INTER_LINEAR)

    dw, dh = (size - new_w) / 2, (size - new_h) / 2
    top, bottom = int(round(dh - 0.1)), int(round(dh + 0.1))
    left, right = int(round(dw - 0.1)), int(round(dw + 0.1))
    image = cv2.copyMakeBorder(image, top, bottom, left, right, cv2.BORDER_CONSTANT,
                               value=tuple(int(c) for c in pad_color))
    return image, r, (left, top)


def to_input_tensor(image: np.ndarray, channel_order: str) -> np.ndarray:
    """BGR uint8 HWC image to float32 NCHW in [0, 1]."""
    if channel_order.upper() == "RGB":
        image = cv2.cvtColor(image, cv2.COLOR_BGR2RGB)
    x = image.astype(np.float32) / 255.0
    return np.ascontiguousarray(x.transpose(2, 0, 1)[None, ...])


def decode_predictions(raw: np.ndarray, num_classes: int, score_threshold: float,
                       nms_threshold: float, max_detections: int) -> List[Tuple[int, float, np.ndarray]]:
    """
    Decode YOLOv8-style output into (cls, score, cxcywh) tuples.

    Accepts (1, 4 + num_classes, N) or its transpose (1, N, 4 + num_classes).
    Results are sorted by descending score after class-aware NMS.
    """
    preds = np.asarray(raw, dtype=np.float32)
    if preds.ndim < 2 or int(np.prod(preds.shape[:-2])) != 1:
        raise ValueError(f"Unexpected detector output shape {np.shape(raw)}")
    # Only the batch axes go; a single candidate keeps its anchor axis
    preds = preds.reshape(preds.shape[-2:])

    channels = 4 + num_classes
    if preds.shape[0] == channels:
        preds = preds.T
    elif preds.shape[1] != channels:
        raise ValueError(f"Detector output {preds.shape} does not match {num_classes} classes")

    boxes = preds[:, :4]
    class_scores = preds[:, 4:]
    cls_ids = np.argmax(class_scores, axis=1)
    scores = class_scores[np.arange(len(cls_ids)), cls_ids]

    keep = scores >= score_threshold
    if not np.any(keep):
        return []
    boxes, scores, cls_ids = boxes[keep], scores[keep], cls_ids[keep]

    # NMSBoxes takes top-left x, y, w, h
    tl_boxes = np.stack([
        boxes[:, 0] - boxes[:, 2] / 2 + cls_ids * _CLASS_OFFSET,
        boxes[:, 1] - boxes[:, 3] / 2,
        boxes[:, 2],
        boxes[:, 3],
    ], axis=1)
    indices = cv2.dnn.NMSBoxes(tl_boxes.tolist(), scores.tolist(), score_threshold, nms_threshold)
    indices = np.array(indices).reshape(-1)

    order = sorted(indices.tolist(), key=lambda i: -scores[i])[:max_detections]
    return [(int(cls_ids[i]), float(scores[i]), boxes[i]) for i in order]


def select_subject(boxes: List[DetectionBox], strategy: str) -> SelectedSubject:
    """
    Pick one person box.

    bestScore takes the highest score, largest the largest w*h. The first
    box wins ties. index is -1 when no box is labelled person.
    """
    if strategy not in SELECTION_STRATEGIES:
        raise ValueError(f"Unknown person selection strategy: {strategy}")

    best_index, best_value = -1, None
    for i, box in enumerate(boxes):
        if box.label != PERSON_LABEL:
            continue
        value = box.score if strategy == "bestScore" else box.area
        if best_value is None or value > best_value:
            best_index, best_value = i, value
    return SelectedSubject(strategy=strategy, index=best_index)


class PersonDetector:
    """Wraps the detection model with pre/post-processing for one image."""

    def __init__(self, model: InferenceModel, config: DetectorConfig,
                 class_labels: Sequence[str] = DETECTOR_CLASS_LABELS):
        self.model = model
        self.config = config
        self.class_labels = list(class_labels)
        self.rotation_deg = normalize_rotation(config.rotation_correction_deg)

    def detect(self, image: np.ndarray) -> List[DetectionBox]:
        """Detect boxes in a BGR image, returned in that image's pixel frame."""
        orig_h, orig_w = image.shape[:2]
        upright = rotate_image(image, self.rotation_deg)
        padded, ratio, (pad_left, pad_top) = letterbox(
            upright, self.config.imgsz, self.config.stride, self.config.pad_color
        )
        tensor = to_input_tensor(padded, self.config.channel_order)

        outputs = self.model.run(tensor)
        raw = next(iter(outputs.values()))
        detections = decode_predictions(
            raw,
            num_classes=len(self.class_labels),
            score_threshold=self.config.score_threshold,
            nms_threshold=self.config.nms_threshold,
            max_detections=self.config.max_detections,
        )

        up_w, up_h = rotated_size(orig_w, orig_h, self.rotation_deg)
        boxes = []
        for cls_id, score, (cx, cy, w, h) in detections:
            # Letterbox space -> upright frame
            x0 = (cx - w / 2 - pad_left) / ratio
            y0 = (cy - h / 2 - pad_top) / ratio
            x1 = (cx + w / 2 - pad_left) / ratio
            y1 = (cy + h / 2 - pad_top) / ratio
            x0, x1 = min(max(x0, 0.0), up_w), min(max(x1, 0.0), up_w)
            y0, y1 = min(max(y0, 0.0), up_h), min(max(y1, 0.0), up_h)

            bx, by, bw, bh = unrotate_box(x0, y0, x1 - x0, y1 - y0, self.rotation_deg, orig_w, orig_h)
            ix, iy = int(round(bx)), int(round(by))
            iw = min(int(round(bw)), orig_w - ix)
            ih = min(int(round(bh)), orig_h - iy)

            label = self.class_labels[cls_id] if 0 <= cls_id < len(self.class_labels) else str(cls_id)
            boxes.append(DetectionBox(cls=cls_id, label=label, score=round(score, 4),
                                      x=ix, y=iy, w=iw, h=ih))
        return boxes


class PersonDetectorStage:
    """Runs the detector over every sampled frame and builds the detection document."""

    def __init__(self, detector: PersonDetector, debug: Optional[DebugConfig] = None):
        self.detector = detector
        self.debug = debug or DebugConfig()

    def run(self, frames: Iterable[SampledFrame], video: VideoInfo, strategy: str,
            progress: Optional[Callable[[str], None]] = None) -> DetectionDocument:
        config = self.detector.config
        document = DetectionDocument(
            video=video,
            meta=DetectionMeta(
                bbox_mode=config.bbox_mode,
                coords_origin=config.coords_origin,
                rotation_correction_deg=self.detector.rotation_deg,
                channel_order=config.channel_order,
            ),
        )

        for frame in frames:
            boxes = [] if frame.image is None else self.detector.detect(frame.image)
            selected = select_subject(boxes, strategy)
            document.frames.append(DetectionFrame(fi=frame.fi, t=frame.t, boxes=boxes, selected=selected))

            n = len(document.frames)
            if self.debug.verbose_logging and n % max(1, self.debug.frame_log_stride) == 1:
                logger.debug(f"Frame {frame.fi} (t={frame.t:.3f}s): {len(boxes)} boxes, selected {selected.index}")
            if progress and n % 10 == 0:
                progress(f"Detected persons in {n} frames")

        logger.info(f"Detection complete: {document.num_frames} frames, {document.num_detections} boxes")
        return document
