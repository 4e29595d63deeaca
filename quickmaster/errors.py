"""Error taxonomy for the mastering pipeline.

Anything derived from MasteringError is fatal to the job that raised it; the
job is marked failed and its message is what the client sees.
"""


class MasteringError(RuntimeError):
    stage = "error"


class AnalysisError(MasteringError):
    stage = "analyze"


class RenderError(MasteringError):
    stage = "process"


class EncodeError(MasteringError):
    stage = "mp3"


class JobCancelled(MasteringError):
    def __init__(self, msg: str = "cancelled"):
        super().__init__(msg)


class JobTimeout(MasteringError):
    def __init__(self, msg: str = "timed out"):
        super().__init__(msg)


class ValidationError(ValueError):
    """Rejected submission; no job is created."""

    def __init__(self, detail: str, status_code: int = 400):
        super().__init__(detail)
        self.detail = detail
        self.status_code = status_code


class SpliceWarning(UserWarning):
    pass
