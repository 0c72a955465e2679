"""
Exceptions raised by the attribution pipeline.

Recoverable problems with model output never raise; they are replaced by
fallback values inside the stage. Only failures of the inference call itself
travel up as exceptions.
"""

__all__ = ["InferenceError", "StageError", "PipelineError"]

class InferenceError(Exception):
    """The external model call failed (network, auth, quota, timeout)."""
    pass

class StageError(Exception):
    """A pipeline stage could not complete its inference call."""

    def __init__(self, stage: str, cause: BaseException):
        self.stage = stage
        self.cause = cause
        super().__init__(f"Stage '{stage}' failed: {cause}")

class PipelineError(Exception):
    """A pipeline run failed; identifies the failing stage and its cause."""

    def __init__(self, stage: str, cause: BaseException):
        self.stage = stage
        self.cause = cause
        super().__init__(f"Attribution pipeline failed at stage '{stage}': {cause}")
