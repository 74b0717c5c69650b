"""Shared test fixtures: in-memory models and video sources."""
import numpy as np
import pytest

from fitpose.config import PipelineConfig
from fitpose.errors import ModelUnavailableError
from fitpose.utils.inference import InferenceModel

NUM_CLASSES = 80


class FakeVideoSource:
    """
    Uniform grey frames whose pixel value encodes the frame index (fi % 256).
    Frames listed in `failing` cannot be read.
    """

    def __init__(self, width=640, height=480, fps=30.0, frame_count=61, failing=()):
        self.width = width
        self.height = height
        self.fps = fps
        self.frame_count = frame_count
        self.failing = set(failing)
        self.reads = []
        self.closed = False

    @property
    def duration(self):
        return (self.frame_count - 1) / self.fps

    def read_frame(self, fi):
        self.reads.append(fi)
        if fi in self.failing or fi >= self.frame_count:
            return None
        return np.full((self.height, self.width, 3), fi % 256, dtype=np.uint8)

    def close(self):
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


class FakeModel(InferenceModel):
    """Base fake recording calls and close()."""

    def __init__(self):
        self.calls = []
        self.closed = False

    def close(self):
        self.closed = True


class FakeDetectorModel(FakeModel):
    """
    Emits one person box (cx, cy, w, h in letterbox pixels) per call.

    The frame index is read back from the centre pixel of the input tensor so
    frames listed in `no_person` produce no detections.
    """

    name = "detector"

    def __init__(self, box=(320.0, 320.0, 200.0, 300.0), score=0.9, no_person=()):
        super().__init__()
        self.box = box
        self.score = score
        self.no_person = set(no_person)

    def run(self, input_tensor):
        self.calls.append(input_tensor.shape)
        _, _, h, w = input_tensor.shape
        fi = int(round(float(input_tensor[0, 0, h // 2, w // 2]) * 255))

        out = np.zeros((1, 4 + NUM_CLASSES, 1), dtype=np.float32)
        out[0, :4, 0] = self.box
        if fi not in self.no_person:
            out[0, 4, 0] = self.score
        return {"output0": out}


class FakePoseModel(FakeModel):
    """SIMCC outputs with joint k peaking at x bin 100 + 10k and y bin 200 + 10k."""

    name = "pose"

    def __init__(self, num_joints=17, x_bins=384, y_bins=512, peak=0.9):
        super().__init__()
        self.num_joints = num_joints
        self.x_bins = x_bins
        self.y_bins = y_bins
        self.peak = peak

    def run(self, input_tensor):
        self.calls.append(input_tensor.shape)
        simcc_x = np.zeros((1, self.num_joints, self.x_bins), dtype=np.float32)
        simcc_y = np.zeros((1, self.num_joints, self.y_bins), dtype=np.float32)
        for k in range(self.num_joints):
            simcc_x[0, k, 100 + 10 * k] = self.peak
            simcc_y[0, k, 200 + 10 * k] = self.peak
        return {"simcc_x": simcc_x, "simcc_y": simcc_y}


class FakeLifterModel(FakeModel):
    """Identity lifter: returns the (1, W, 17, 3) input unchanged."""

    name = "lifter"

    def run(self, input_tensor):
        self.calls.append(input_tensor.copy())
        return {"output": input_tensor.copy()}


class FakeModelFactory:
    """Model factory handing out fresh fakes per load, optionally failing a kind."""

    def __init__(self, detector=None, pose=None, lifter=None, unavailable=()):
        self.builders = {
            "detector": detector or FakeDetectorModel,
            "pose": pose or FakePoseModel,
            "lifter": lifter or FakeLifterModel,
        }
        self.unavailable = set(unavailable)
        self.loaded = []

    def __call__(self, kind):
        if kind in self.unavailable:
            raise ModelUnavailableError(f"Model file not found: {kind}.onnx")
        model = self.builders[kind]()
        self.loaded.append(model)
        return model


@pytest.fixture
def config():
    """Default pipeline configuration."""
    return PipelineConfig()


@pytest.fixture
def video_source():
    """Two seconds of 640x480 video at 30 fps."""
    return FakeVideoSource()


@pytest.fixture
def model_factory():
    return FakeModelFactory()
