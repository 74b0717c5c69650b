"""RQ worker tasks for video pose analysis."""

import logging
from typing import Dict, Optional

from rq import get_current_job

from fitpose.analysis.pipeline import AnalysisRequest, VideoAnalysisPipeline
from fitpose.config import load_config
from fitpose.utils.device_manager import log_device_info

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(message)s',
    datefmt='%H:%M:%S'
)
logger = logging.getLogger(__name__)

_pipeline: Optional[VideoAnalysisPipeline] = None


def get_pipeline() -> VideoAnalysisPipeline:
    """Build the worker's pipeline once. Models are still loaded per run."""
    global _pipeline
    if _pipeline is None:
        config = load_config()
        if config.debug.verbose_logging:
            logging.getLogger("fitpose").setLevel(logging.DEBUG)
        log_device_info()
        _pipeline = VideoAnalysisPipeline(config)
    return _pipeline


def run_video_analysis(request: Dict) -> Dict:
    """
    Run the full pose pipeline for one video.

    Progress is mirrored into job.meta['status'] / job.meta['progress'] so the
    API can report it while the job runs.

    Args:
        request: {videoPath, sessionDirectory, sampledFps, personSelectionStrategy}

    Returns:
        The success or failure envelope
    """
    job = get_current_job()
    analysis_request = AnalysisRequest.from_dict(request)
    job_id = job.id if job else "local"

    def report(message: str, percent: Optional[int] = None):
        if job is None:
            return
        job.meta['status'] = message
        if percent is not None:
            job.meta['progress'] = percent
        job.save_meta()

    logger.info(f"Job {job_id}: analyzing {analysis_request.video_path}")
    envelope = get_pipeline().run(analysis_request, progress=report)

    if job is not None and not envelope["ok"]:
        job.meta['status'] = 'Failed'
        job.meta['error'] = envelope["errorMessage"]
        job.meta['stage'] = envelope["stage"]
        job.save_meta()

    logger.info(f"Job {job_id} finished (ok={envelope['ok']})")
    return envelope
