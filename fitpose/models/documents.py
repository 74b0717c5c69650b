"""
Stage output documents.

Each stage produces one of these and writes it to the session directory as
JSON. Field names on disk are camelCase; every document round-trips through
to_dict / from_dict so a stage can reload its predecessor's output.
"""
from dataclasses import dataclass, field
from typing import List, Optional

from fitpose.utils.io import read_json, write_json_atomic


@dataclass(frozen=True)
class VideoInfo:
    """Header shared by every document."""
    video_width: int
    video_height: int
    fps: float
    sampled_fps: float

    def to_dict(self) -> dict:
        return {
            "videoWidth": self.video_width,
            "videoHeight": self.video_height,
            "fps": self.fps,
            "sampledFps": self.sampled_fps,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "VideoInfo":
        return cls(
            video_width=int(data["videoWidth"]),
            video_height=int(data["videoHeight"]),
            fps=float(data["fps"]),
            sampled_fps=float(data["sampledFps"]),
        )


class _JsonDocument:
    """Mixin giving documents the same to_json / from_json pair."""

    def to_json(self, filepath) -> str:
        return write_json_atomic(filepath, self.to_dict())

    @classmethod
    def from_json(cls, filepath):
        return cls.from_dict(read_json(filepath))


# ---------------------------------------------------------------------------
# Detection
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DetectionBox:
    """Axis-aligned box in original-video pixels, top-left origin."""
    cls: int
    label: str
    score: float
    x: int
    y: int
    w: int
    h: int

    @property
    def area(self) -> int:
        return self.w * self.h

    def to_dict(self) -> dict:
        return {
            "cls": self.cls,
            "label": self.label,
            "score": self.score,
            "x": self.x,
            "y": self.y,
            "w": self.w,
            "h": self.h,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "DetectionBox":
        return cls(
            cls=int(data["cls"]),
            label=data["label"],
            score=float(data["score"]),
            x=int(data["x"]),
            y=int(data["y"]),
            w=int(data["w"]),
            h=int(data["h"]),
        )


@dataclass(frozen=True)
class SelectedSubject:
    strategy: str
    index: int = -1

    def to_dict(self) -> dict:
        return {"strategy": self.strategy, "index": self.index}

    @classmethod
    def from_dict(cls, data: dict) -> "SelectedSubject":
        return cls(strategy=data["strategy"], index=int(data["index"]))


@dataclass
class DetectionFrame:
    fi: int
    t: float
    boxes: List[DetectionBox]
    selected: SelectedSubject

    @property
    def selected_box(self) -> Optional[DetectionBox]:
        """The chosen subject box, or None when the frame has no person."""
        if 0 <= self.selected.index < len(self.boxes):
            return self.boxes[self.selected.index]
        return None

    def to_dict(self) -> dict:
        return {
            "fi": self.fi,
            "t": self.t,
            "boxes": [box.to_dict() for box in self.boxes],
            "selected": self.selected.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "DetectionFrame":
        return cls(
            fi=int(data["fi"]),
            t=float(data["t"]),
            boxes=[DetectionBox.from_dict(b) for b in data.get("boxes", [])],
            selected=SelectedSubject.from_dict(data["selected"]),
        )


@dataclass(frozen=True)
class DetectionMeta:
    bbox_mode: str
    coords_origin: str
    rotation_correction_deg: int
    channel_order: str

    def to_dict(self) -> dict:
        return {
            "bboxMode": self.bbox_mode,
            "coordsOrigin": self.coords_origin,
            "rotationCorrectionDeg": self.rotation_correction_deg,
            "channelOrder": self.channel_order,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "DetectionMeta":
        return cls(
            bbox_mode=data["bboxMode"],
            coords_origin=data["coordsOrigin"],
            rotation_correction_deg=int(data["rotationCorrectionDeg"]),
            channel_order=data["channelOrder"],
        )


@dataclass
class DetectionDocument(_JsonDocument):
    """Per-frame person boxes with one selected subject per frame."""
    video: VideoInfo
    meta: DetectionMeta
    frames: List[DetectionFrame] = field(default_factory=list)

    @property
    def num_frames(self) -> int:
        return len(self.frames)

    @property
    def num_detections(self) -> int:
        return sum(len(frame.boxes) for frame in self.frames)

    def to_dict(self) -> dict:
        result = self.video.to_dict()
        result.update({
            "meta": self.meta.to_dict(),
            "frames": [frame.to_dict() for frame in self.frames],
            "totals": {
                "framesProcessed": self.num_frames,
                "detections": self.num_detections,
            },
        })
        return result

    @classmethod
    def from_dict(cls, data: dict) -> "DetectionDocument":
        return cls(
            video=VideoInfo.from_dict(data),
            meta=DetectionMeta.from_dict(data["meta"]),
            frames=[DetectionFrame.from_dict(f) for f in data.get("frames", [])],
        )


# ---------------------------------------------------------------------------
# 2D pose
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Keypoint2D:
    """2D keypoint in original-video pixels."""
    x: float
    y: float
    score: float

    def to_dict(self) -> dict:
        return {"x": self.x, "y": self.y, "score": self.score}

    def to_list(self) -> List[float]:
        """Returns [x, y, score] format for compatibility."""
        return [self.x, self.y, self.score]

    @classmethod
    def from_dict(cls, data: dict) -> "Keypoint2D":
        return cls(x=float(data["x"]), y=float(data["y"]), score=float(data["score"]))


@dataclass
class PoseFrame:
    fi: int
    t: float
    ok: bool
    keypoints: List[Keypoint2D] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "fi": self.fi,
            "t": self.t,
            "ok": self.ok,
            "keypoints": [kp.to_dict() for kp in self.keypoints],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PoseFrame":
        return cls(
            fi=int(data["fi"]),
            t=float(data["t"]),
            ok=bool(data["ok"]),
            keypoints=[Keypoint2D.from_dict(kp) for kp in data.get("keypoints", [])],
        )


@dataclass
class PoseDocument(_JsonDocument):
    """Raw or refined 2D keypoints per sampled frame."""
    video: VideoInfo
    num_keypoints: int
    simcc_ratio: float
    input_width: int
    input_height: int
    frames: List[PoseFrame] = field(default_factory=list)

    @property
    def num_frames(self) -> int:
        return len(self.frames)

    @property
    def frames_with_detections(self) -> int:
        return sum(1 for frame in self.frames if frame.ok)

    def to_dict(self) -> dict:
        result = self.video.to_dict()
        result.update({
            "numKeypoints": self.num_keypoints,
            "simccRatio": self.simcc_ratio,
            "inputSize": {"w": self.input_width, "h": self.input_height},
            "frames": [frame.to_dict() for frame in self.frames],
            "totals": {
                "framesProcessed": self.num_frames,
                "framesWithDetections": self.frames_with_detections,
            },
        })
        return result

    @classmethod
    def from_dict(cls, data: dict) -> "PoseDocument":
        input_size = data.get("inputSize", {})
        return cls(
            video=VideoInfo.from_dict(data),
            num_keypoints=int(data["numKeypoints"]),
            simcc_ratio=float(data["simccRatio"]),
            input_width=int(input_size.get("w", 0)),
            input_height=int(input_size.get("h", 0)),
            frames=[PoseFrame.from_dict(f) for f in data.get("frames", [])],
        )


# ---------------------------------------------------------------------------
# Normalized canonical 2D
# ---------------------------------------------------------------------------

@dataclass
class NormalizedFrame:
    fi: int
    t: float
    ok: bool
    keypoints: List[List[float]]  # 17 x [x, y, z]

    def to_dict(self) -> dict:
        return {
            "fi": self.fi,
            "t": self.t,
            "ok": self.ok,
            "keypoints": [list(kp) for kp in self.keypoints],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "NormalizedFrame":
        return cls(
            fi=int(data["fi"]),
            t=float(data["t"]),
            ok=bool(data["ok"]),
            keypoints=[[float(v) for v in kp] for kp in data.get("keypoints", [])],
        )


@dataclass
class NormalizedDocument(_JsonDocument):
    """Canonical H36M-17 2D poses, optionally root-centred and scaled."""
    video: VideoInfo
    skeleton: str
    frames: List[NormalizedFrame] = field(default_factory=list)

    @property
    def num_frames(self) -> int:
        return len(self.frames)

    def to_dict(self) -> dict:
        result = self.video.to_dict()
        result.update({
            "skeleton": self.skeleton,
            "frames": [frame.to_dict() for frame in self.frames],
        })
        return result

    @classmethod
    def from_dict(cls, data: dict) -> "NormalizedDocument":
        return cls(
            video=VideoInfo.from_dict(data),
            skeleton=data["skeleton"],
            frames=[NormalizedFrame.from_dict(f) for f in data.get("frames", [])],
        )


# ---------------------------------------------------------------------------
# 3D
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Keypoint3D:
    X: float
    Y: float
    Z: float

    def to_dict(self) -> dict:
        return {"X": self.X, "Y": self.Y, "Z": self.Z}

    def to_list(self) -> List[float]:
        return [self.X, self.Y, self.Z]

    @classmethod
    def from_dict(cls, data: dict) -> "Keypoint3D":
        return cls(X=float(data["X"]), Y=float(data["Y"]), Z=float(data["Z"]))


@dataclass
class LiftedFrame:
    fi: int
    t: float
    ok: bool
    keypoints3d: List[Keypoint3D]

    def to_dict(self) -> dict:
        return {
            "fi": self.fi,
            "t": self.t,
            "ok": self.ok,
            "keypoints3d": [kp.to_dict() for kp in self.keypoints3d],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "LiftedFrame":
        return cls(
            fi=int(data["fi"]),
            t=float(data["t"]),
            ok=bool(data["ok"]),
            keypoints3d=[Keypoint3D.from_dict(kp) for kp in data.get("keypoints3d", [])],
        )


@dataclass
class LiftedDocument(_JsonDocument):
    """3D pose track produced by the temporal lifter."""
    video: VideoInfo
    temporal_window: int
    skeleton: str
    frames: List[LiftedFrame] = field(default_factory=list)
    frames_processed: int = 0

    @property
    def frames_with_3d(self) -> int:
        return len(self.frames)

    def to_dict(self) -> dict:
        result = self.video.to_dict()
        result.update({
            "temporalWindow": self.temporal_window,
            "skeleton": self.skeleton,
            "frames": [frame.to_dict() for frame in self.frames],
            "totals": {
                "framesProcessed": self.frames_processed,
                "framesWith3D": self.frames_with_3d,
            },
        })
        return result

    @classmethod
    def from_dict(cls, data: dict) -> "LiftedDocument":
        totals = data.get("totals", {})
        frames = [LiftedFrame.from_dict(f) for f in data.get("frames", [])]
        return cls(
            video=VideoInfo.from_dict(data),
            temporal_window=int(data["temporalWindow"]),
            skeleton=data["skeleton"],
            frames=frames,
            frames_processed=int(totals.get("framesProcessed", len(frames))),
        )
