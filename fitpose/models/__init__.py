"""
Data models for pipeline stage documents.
"""
from .documents import (
    VideoInfo,
    DetectionBox,
    SelectedSubject,
    DetectionFrame,
    DetectionMeta,
    DetectionDocument,
    Keypoint2D,
    PoseFrame,
    PoseDocument,
    NormalizedFrame,
    NormalizedDocument,
    Keypoint3D,
    LiftedFrame,
    LiftedDocument,
)
from .keypoint_schema import (
    COCOKeypoint,
    H36MKeypoint,
    H36M_SKELETON,
    get_keypoint_name,
)

__all__ = [
    "VideoInfo",
    "DetectionBox",
    "SelectedSubject",
    "DetectionFrame",
    "DetectionMeta",
    "DetectionDocument",
    "Keypoint2D",
    "PoseFrame",
    "PoseDocument",
    "NormalizedFrame",
    "NormalizedDocument",
    "Keypoint3D",
    "LiftedFrame",
    "LiftedDocument",
    "COCOKeypoint",
    "H36MKeypoint",
    "H36M_SKELETON",
    "get_keypoint_name",
]
