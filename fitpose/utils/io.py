"""JSON persistence helpers for stage documents."""
import json
import logging
import os
import tempfile
from pathlib import Path

from fitpose.errors import DocumentWriteError

logger = logging.getLogger(__name__)


def write_json_atomic(filepath, data: dict, indent: int = 2) -> str:
    """
    Write `data` as JSON with sorted keys, replacing `filepath` atomically.

    The payload goes to a temp file in the same directory first and is then
    renamed over the target, so readers never see a half-written document.

    Returns:
        The written path as a string.
    """
    filepath = Path(filepath)
    tmp_path = None
    try:
        filepath.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            prefix=f".{filepath.name}.", suffix=".tmp", dir=str(filepath.parent)
        )
        with os.fdopen(fd, 'w') as f:
            json.dump(data, f, indent=indent, sort_keys=True)
        os.replace(tmp_path, filepath)
    except (OSError, TypeError, ValueError) as e:
        if tmp_path is not None and os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise DocumentWriteError(f"Failed to write {filepath}: {e}") from e

    logger.debug(f"Wrote {filepath}")
    return str(filepath)


def read_json(filepath) -> dict:
    """Load a JSON document from disk."""
    with open(filepath, 'r') as f:
        return json.load(f)
