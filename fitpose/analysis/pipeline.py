"""
Pipeline orchestration.

One run takes a video through detect -> estimate -> refine -> lift, writing
each stage's document into the session directory. Any failure stops the run
and is reported as a single stage-tagged envelope.
"""
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Optional

from fitpose.analysis.detection.person_detector import SELECTION_STRATEGIES, PersonDetector, PersonDetectorStage
from fitpose.analysis.frame_sampler import FrameSampler, OpenCVVideoSource
from fitpose.analysis.lifting.temporal_lifter import TemporalLifter
from fitpose.analysis.pose_estimation.pose_estimator import PoseEstimator, PoseEstimatorStage
from fitpose.analysis.postprocess.refinement import PoseRefiner
from fitpose.config import PipelineConfig
from fitpose.errors import StageError
from fitpose.models.documents import VideoInfo
from fitpose.utils.inference import InferenceModel, OnnxModel

logger = logging.getLogger(__name__)

STAGES = ("detect", "estimate", "refine", "lift")

DETECTIONS_FILENAME = "yolo_detections.json"
KEYPOINTS_FILENAME = "rtmpose_keypoints.json"
REFINED_FILENAME = "rtmpose_keypoints_refined.json"
NORMALIZED_FILENAME = "h36m_2d_normalized.json"
LIFTED_FILENAME = "motionbert_3d.json"

# Overall progress reported when each stage starts
STAGE_PROGRESS = {"detect": 5, "estimate": 35, "refine": 65, "lift": 75}

ProgressCallback = Callable[..., None]


@dataclass(frozen=True)
class AnalysisRequest:
    video_path: str
    session_directory: str
    sampled_fps: float = 5.0
    person_selection_strategy: Optional[str] = None

    def __post_init__(self):
        if self.person_selection_strategy is not None and self.person_selection_strategy not in SELECTION_STRATEGIES:
            raise ValueError(f"Unknown person selection strategy: {self.person_selection_strategy}")

    @classmethod
    def from_dict(cls, data: dict) -> "AnalysisRequest":
        return cls(
            video_path=data["videoPath"],
            session_directory=data["sessionDirectory"],
            sampled_fps=float(data.get("sampledFps", 5.0)),
            person_selection_strategy=data.get("personSelectionStrategy"),
        )

    def to_dict(self) -> dict:
        result = {
            "videoPath": self.video_path,
            "sessionDirectory": self.session_directory,
            "sampledFps": self.sampled_fps,
        }
        if self.person_selection_strategy is not None:
            result["personSelectionStrategy"] = self.person_selection_strategy
        return result


def default_model_factory(config: PipelineConfig) -> Callable[[str], InferenceModel]:
    """Load models from the ONNX paths in config.models, keyed by detector/pose/lifter."""
    def load(kind: str) -> InferenceModel:
        return OnnxModel(getattr(config.models, kind), name=kind)
    return load


class RunContext:
    """
    Per-run model ownership.

    Models are loaded when a stage starts and released when it ends, even on
    error. Nothing is cached across runs.
    """

    def __init__(self, model_factory: Callable[[str], InferenceModel]):
        self.model_factory = model_factory

    @contextmanager
    def model(self, kind: str):
        model = self.model_factory(kind)
        try:
            yield model
        finally:
            model.close()


class VideoAnalysisPipeline:
    """Runs the four stages for one video at a time."""

    def __init__(self, config: PipelineConfig,
                 model_factory: Optional[Callable[[str], InferenceModel]] = None,
                 source_factory: Optional[Callable[[str], object]] = None):
        self.config = config
        self.model_factory = model_factory or default_model_factory(config)
        self.source_factory = source_factory or OpenCVVideoSource

    @contextmanager
    def _stage(self, name: str, progress: ProgressCallback):
        try:
            progress(f"Running {name}", STAGE_PROGRESS[name])
            logger.info(f"Stage {name} started")
            yield
        except StageError:
            raise
        except Exception as e:
            raise StageError(name, str(e) or e.__class__.__name__) from e
        logger.info(f"Stage {name} finished")

    def run(self, request: AnalysisRequest, progress: Optional[ProgressCallback] = None) -> Dict:
        """
        Execute one run.

        Returns:
            The success envelope, or {ok: False, stage, errorMessage}
        """
        progress = progress or (lambda *args, **kwargs: None)
        try:
            result = self._run_stages(request, progress)
        except StageError as e:
            logger.error(f"Analysis of {request.video_path} failed at {e.stage}: {e.message}", exc_info=True)
            progress(f"Failed at {e.stage}", None)
            return {"ok": False, "stage": e.stage, "errorMessage": e.message}

        progress("Complete", 100)
        return result

    def _run_stages(self, request: AnalysisRequest, progress: ProgressCallback) -> Dict:
        cfg = self.config
        context = RunContext(self.model_factory)
        session_dir = Path(request.session_directory)
        strategy = request.person_selection_strategy or cfg.pose.person_selection

        logger.info(f"Analyzing {request.video_path} -> {session_dir} "
                    f"(sampledFps={request.sampled_fps}, strategy={strategy})")

        with ExitStack() as resources:
            with self._stage("detect", progress):
                session_dir.mkdir(parents=True, exist_ok=True)
                source = resources.enter_context(self.source_factory(request.video_path))
                with context.model("detector") as model:
                    sampler = FrameSampler(source, request.sampled_fps, cfg.detector.rotation_correction_deg)
                    video = VideoInfo(
                        video_width=source.width,
                        video_height=source.height,
                        fps=source.fps,
                        sampled_fps=sampler.effective_fps,
                    )
                    stage = PersonDetectorStage(PersonDetector(model, cfg.detector), cfg.debug)
                    detections = stage.run(sampler, video, strategy, progress)
                detections_path = detections.to_json(session_dir / DETECTIONS_FILENAME)

            with self._stage("estimate", progress):
                with context.model("pose") as model:
                    estimator = PoseEstimator(model, cfg.pose, cfg.detector.rotation_correction_deg)
                    stage = PoseEstimatorStage(estimator, source, cfg.debug)
                    poses, pose_preview = stage.run(detections, session_dir, progress)
                poses_path = poses.to_json(session_dir / KEYPOINTS_FILENAME)

        with self._stage("refine", progress):
            refiner = PoseRefiner(cfg.postprocess, cfg.lifter.head_top_factor, cfg.lifter.skeleton, cfg.debug)
            refined, normalized = refiner.refine(poses)
            refined_path = refined.to_json(session_dir / REFINED_FILENAME)
            normalized_path = normalized.to_json(session_dir / NORMALIZED_FILENAME)

        with self._stage("lift", progress):
            with context.model("lifter") as model:
                lifted, lift_preview = TemporalLifter(model, cfg.lifter, cfg.debug).run(
                    normalized, session_dir, progress
                )
            lifted_path = lifted.to_json(session_dir / LIFTED_FILENAME)

        return {
            "ok": True,
            "detect": {
                "jsonPath": detections_path,
                "frames": detections.num_frames,
                "detections": detections.num_detections,
            },
            "estimate": {
                "jsonPath": poses_path,
                "frames": poses.num_frames,
                "framesWithDetections": poses.frames_with_detections,
                "numKeypoints": poses.num_keypoints,
                "previewPath": pose_preview,
            },
            "refine": {
                "refinedPath": refined_path,
                "normalizedPath": normalized_path,
                "frames": refined.num_frames,
                "framesWithDetections": refined.frames_with_detections,
            },
            "lift": {
                "jsonPath": lifted_path,
                "frames": len(lifted.frames),
                "framesWith3D": lifted.frames_with_3d,
                "previewPath": lift_preview,
            },
        }


class AnalysisRunner:
    """
    Bounded executor for whole-video runs.

    submit() blocks while max_concurrent_runs runs are in flight; the slot is
    released when the run finishes, whether it succeeded or failed.
    """

    def __init__(self, pipeline: VideoAnalysisPipeline, max_concurrent_runs: Optional[int] = None):
        self.pipeline = pipeline
        self.max_concurrent_runs = max(1, max_concurrent_runs or pipeline.config.runtime.max_concurrent_runs)
        self._gate = threading.BoundedSemaphore(self.max_concurrent_runs)
        self._executor = ThreadPoolExecutor(max_workers=self.max_concurrent_runs,
                                            thread_name_prefix="fitpose-run")

    def submit(self, request: AnalysisRequest, progress: Optional[ProgressCallback] = None) -> Future:
        self._gate.acquire()
        try:
            future = self._executor.submit(self.pipeline.run, request, progress)
        except RuntimeError:
            self._gate.release()
            raise
        future.add_done_callback(lambda _: self._gate.release())
        return future

    def run(self, request: AnalysisRequest, progress: Optional[ProgressCallback] = None) -> Dict:
        """Submit and wait for the envelope."""
        return self.submit(request, progress).result()

    def shutdown(self, wait: bool = True):
        self._executor.shutdown(wait=wait)
