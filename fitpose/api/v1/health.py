"""Health and status endpoints."""

from typing import Dict
from fastapi import APIRouter

from fitpose import __version__

router = APIRouter(tags=["health"])


@router.get("/", summary="Service status")
def read_root() -> Dict[str, str]:
    return {"message": "Pose analysis service is online", "version": __version__}


@router.get("/health", summary="Health check")
def health() -> Dict[str, str]:
    return {"status": "ok"}
