"""Exception taxonomy for the pose analysis pipeline."""


class PipelineError(Exception):
    """Base class for every error raised by the pipeline."""


class ModelUnavailableError(PipelineError):
    """A required inference model is missing or failed to load."""


class VideoTrackUnavailableError(PipelineError):
    """The video could not be opened or contains no readable frames."""


class DocumentWriteError(PipelineError):
    """A stage could not persist its JSON document."""


class InvalidPoseDocumentError(PipelineError):
    """A pose document is structurally unusable (e.g. reports zero joints)."""


class StageError(PipelineError):
    """A pipeline stage failed; carries the stage tag for the caller."""

    def __init__(self, stage: str, message: str):
        super().__init__(f"{stage}: {message}")
        self.stage = stage
        self.message = message
