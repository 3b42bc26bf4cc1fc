class PipelineError(RuntimeError):
    """Base class for failures that end a job in the error stage."""


class DecodeError(PipelineError):
    """The source file could not be decoded into audio samples."""


class TranscriptionError(PipelineError):
    """Speech-to-text failed or produced no text."""


class AnalysisError(PipelineError):
    """The language model rejected the request or answered in an unexpected shape."""


class ExtractionError(PipelineError):
    """A single clip could not be cut from the source."""
