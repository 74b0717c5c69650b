"""
Keypoint schemas used by the pipeline.
Maps numeric indices to semantic body part names for the detector-side
COCO-17 layout and the canonical H36M-17 layout fed to the lifter.
"""
from enum import Enum
from typing import List, Tuple


class COCOKeypoint(Enum):
    """COCO 17-keypoint body layout produced by the 2D keypoint model."""
    NOSE = 0
    LEFT_EYE = 1
    RIGHT_EYE = 2
    LEFT_EAR = 3
    RIGHT_EAR = 4
    LEFT_SHOULDER = 5
    RIGHT_SHOULDER = 6
    LEFT_ELBOW = 7
    RIGHT_ELBOW = 8
    LEFT_WRIST = 9
    RIGHT_WRIST = 10
    LEFT_HIP = 11
    RIGHT_HIP = 12
    LEFT_KNEE = 13
    RIGHT_KNEE = 14
    LEFT_ANKLE = 15
    RIGHT_ANKLE = 16


class H36MKeypoint(Enum):
    """
    Canonical Human3.6M-style 17-keypoint layout.
    PELVIS, SPINE, NECK and HEAD_TOP are synthesized from COCO joints.
    """
    PELVIS = 0
    RIGHT_HIP = 1
    RIGHT_KNEE = 2
    RIGHT_ANKLE = 3
    LEFT_HIP = 4
    LEFT_KNEE = 5
    LEFT_ANKLE = 6
    SPINE = 7
    NECK = 8
    NOSE = 9
    HEAD_TOP = 10
    LEFT_SHOULDER = 11
    LEFT_ELBOW = 12
    LEFT_WRIST = 13
    RIGHT_SHOULDER = 14
    RIGHT_ELBOW = 15
    RIGHT_WRIST = 16


NUM_CANONICAL_JOINTS = 17

# Joints of the canonical layout copied directly from a COCO index.
# The remaining ones (pelvis, spine, neck, head-top) are constructed.
COCO_TO_H36M_DIRECT = {
    H36MKeypoint.RIGHT_HIP.value: COCOKeypoint.RIGHT_HIP.value,
    H36MKeypoint.RIGHT_KNEE.value: COCOKeypoint.RIGHT_KNEE.value,
    H36MKeypoint.RIGHT_ANKLE.value: COCOKeypoint.RIGHT_ANKLE.value,
    H36MKeypoint.LEFT_HIP.value: COCOKeypoint.LEFT_HIP.value,
    H36MKeypoint.LEFT_KNEE.value: COCOKeypoint.LEFT_KNEE.value,
    H36MKeypoint.LEFT_ANKLE.value: COCOKeypoint.LEFT_ANKLE.value,
    H36MKeypoint.NOSE.value: COCOKeypoint.NOSE.value,
    H36MKeypoint.LEFT_SHOULDER.value: COCOKeypoint.LEFT_SHOULDER.value,
    H36MKeypoint.LEFT_ELBOW.value: COCOKeypoint.LEFT_ELBOW.value,
    H36MKeypoint.LEFT_WRIST.value: COCOKeypoint.LEFT_WRIST.value,
    H36MKeypoint.RIGHT_SHOULDER.value: COCOKeypoint.RIGHT_SHOULDER.value,
    H36MKeypoint.RIGHT_ELBOW.value: COCOKeypoint.RIGHT_ELBOW.value,
    H36MKeypoint.RIGHT_WRIST.value: COCOKeypoint.RIGHT_WRIST.value,
}

# Skeleton drawn on the 2D diagnostic preview (COCO indices)
COCO_PREVIEW_SKELETON: List[Tuple[int, int]] = [
    (5, 7), (7, 9), (6, 8), (8, 10), (5, 6), (5, 11), (6, 12), (11, 12),
    (11, 13), (13, 15), (12, 14), (14, 16), (5, 1), (6, 2), (1, 3), (2, 4),
]

# H36M skeleton connections
H36M_SKELETON: List[Tuple[int, int]] = [
    # Spine chain
    (0, 7),    # pelvis to spine
    (7, 8),    # spine to neck
    (8, 9),    # neck to nose
    (9, 10),   # nose to head top
    # Right leg
    (0, 1),
    (1, 2),
    (2, 3),
    # Left leg
    (0, 4),
    (4, 5),
    (5, 6),
    # Left arm
    (8, 11),
    (11, 12),
    (12, 13),
    # Right arm
    (8, 14),
    (14, 15),
    (15, 16),
]

# Class labels of the person detector, in model output order
DETECTOR_CLASS_LABELS: List[str] = [
    "person", "bicycle", "car", "motorbike", "aeroplane", "bus", "train", "truck", "boat", "traffic light",
    "fire hydrant", "stop sign", "parking meter", "bench", "bird", "cat", "dog", "horse", "sheep", "cow",
    "elephant", "bear", "zebra", "giraffe", "backpack", "umbrella", "handbag", "tie", "suitcase", "frisbee",
    "skis", "snowboard", "sports ball", "kite", "baseball bat", "baseball glove", "skateboard", "surfboard",
    "tennis racket", "bottle", "wine glass", "cup", "fork", "knife", "spoon", "bowl", "banana", "apple",
    "sandwich", "orange", "broccoli", "carrot", "hot dog", "pizza", "donut", "cake", "chair", "sofa",
    "pottedplant", "bed", "diningtable", "toilet", "tvmonitor", "laptop", "mouse", "remote", "keyboard",
    "cell phone", "microwave", "oven", "toaster", "sink", "refrigerator", "book", "clock", "vase", "scissors",
    "teddy bear", "hair drier", "toothbrush",
]

PERSON_LABEL = "person"


def get_keypoint_name(index: int, schema_type: str = "coco") -> str:
    """
    Convenience function to get keypoint name.

    Args:
        index: Keypoint index
        schema_type: Schema to use (coco or h36m)

    Returns:
        Human-readable name for the keypoint
    """
    if schema_type == "coco":
        enum_cls = COCOKeypoint
    elif schema_type == "h36m":
        enum_cls = H36MKeypoint
    else:
        raise ValueError(f"Unknown schema type: {schema_type}")
    return enum_cls(index).name if 0 <= index < len(enum_cls) else f"KEYPOINT_{index}"
