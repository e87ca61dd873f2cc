# notepipe/errors.py
"""
Error taxonomy for the processing pipeline.

``retryable`` tells the job queue whether redelivering the task can help.
Errors caused by missing rows or bad input are final on the first attempt.
"""


class PipelineError(Exception):
    retryable = True


class NotFound(PipelineError):
    retryable = False


class MissingTranscript(NotFound):
    pass


class InvalidTransition(PipelineError):
    retryable = False


class TranscriptionServiceError(PipelineError):
    pass


class SummarizationError(PipelineError):
    pass


class UnsupportedFormatError(PipelineError):
    retryable = False


class EnqueueError(PipelineError):
    pass
