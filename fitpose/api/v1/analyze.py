"""Video analysis endpoints - synchronous runs, queued jobs and status tracking."""

import logging
import os
import threading
import uuid
from typing import Any, Dict, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field
from redis import Redis
from rq import Queue

from fitpose.analysis.pipeline import AnalysisRequest, AnalysisRunner, VideoAnalysisPipeline
from fitpose.config import load_config

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/analyze", tags=["analyze"])

REDIS_URL = os.getenv("REDIS_URL", "redis://redis:6379/0")
TASK_PATH = "fitpose.tasks.run_video_analysis"

_runner: Optional[AnalysisRunner] = None
_queue: Optional[Queue] = None
_lock = threading.Lock()


class AnalyzeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    video_path: str = Field(..., alias="videoPath", description="Path to the recorded video")
    session_directory: str = Field(..., alias="sessionDirectory",
                                   description="Directory that receives the stage documents")
    sampled_fps: float = Field(5.0, alias="sampledFps", gt=0, description="Target sampling rate")
    person_selection_strategy: Optional[Literal["bestScore", "largest"]] = Field(
        None, alias="personSelectionStrategy", description="Subject selection policy"
    )

    def to_analysis_request(self) -> AnalysisRequest:
        return AnalysisRequest(
            video_path=self.video_path,
            session_directory=self.session_directory,
            sampled_fps=self.sampled_fps,
            person_selection_strategy=self.person_selection_strategy,
        )


def get_runner() -> AnalysisRunner:
    """Process-wide admission gate for synchronous runs."""
    global _runner
    if _runner is None:
        # Dependencies resolve on the threadpool; only one runner may own the gate
        with _lock:
            if _runner is None:
                config = load_config()
                _runner = AnalysisRunner(VideoAnalysisPipeline(config), config.runtime.max_concurrent_runs)
    return _runner


def get_queue() -> Queue:
    global _queue
    if _queue is None:
        with _lock:
            if _queue is None:
                config = load_config()
                _queue = Queue(config.runtime.queue_name, connection=Redis.from_url(REDIS_URL))
    return _queue


@router.post("", summary="Analyze a video and wait for the result")
def analyze_video(request: AnalyzeRequest, runner: AnalysisRunner = Depends(get_runner)) -> Dict[str, Any]:
    """
    Run the full pipeline for one video and return the result envelope.

    Blocks while the configured number of runs is already in flight. A stage
    failure is reported in the envelope as `{ok: false, stage, errorMessage}`.
    """
    analysis_request = request.to_analysis_request()
    logger.info(f"Synchronous analysis requested for {analysis_request.video_path}")
    return runner.run(analysis_request)


@router.post("/jobs", summary="Queue a video for analysis", status_code=status.HTTP_202_ACCEPTED)
def submit_analysis_job(request: AnalyzeRequest, queue: Queue = Depends(get_queue)) -> Dict[str, str]:
    """
    Queue a run on the worker pool.

    Returns a job_id to track progress via `GET /analyze/jobs/{job_id}`.
    """
    job_id = str(uuid.uuid4())
    try:
        queue.enqueue(
            TASK_PATH,
            args=[request.to_analysis_request().to_dict()],
            job_id=job_id,
            job_timeout='1h',
            result_ttl=86400  # Keep results for 24 hours
        )
    except Exception as e:
        logger.error(f"Failed to queue job: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to queue analysis: {str(e)}"
        )

    logger.info(f"Job {job_id} queued for analysis")
    return {
        "job_id": job_id,
        "status": "queued",
        "message": "Video queued for pose analysis",
    }


@router.get("/jobs/{job_id}", summary="Check analysis status")
def get_analysis_status(job_id: str, queue: Queue = Depends(get_queue)) -> Dict[str, Any]:
    """
    Check the processing status of a queued analysis.

    **Possible statuses**:
    - `queued`: Waiting for worker
    - `started`: Processing in progress
    - `finished`: Complete, `result` holds the envelope
    - `failed`: Worker error
    """
    job = queue.fetch_job(job_id)
    if job is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Job not found"
        )

    job_status = job.get_status()
    response = {
        'job_id': job_id,
        'status': getattr(job_status, 'value', job_status),
        'progress': job.meta.get('progress', 0),
        'message': job.meta.get('status', ''),
    }
    if 'error' in job.meta:
        response['error'] = job.meta['error']

    if job.is_finished:
        response['result'] = job.return_value()

    return response
