"""Exceptions raised by the detection pipeline."""


class FraudPipelineError(Exception):
    pass


class ChangeFeedError(FraudPipelineError):
    """An insert-event subscription could not be (re)established."""


class PersistenceError(FraudPipelineError):
    """A fraud-log entry could not be written."""


class PipelineUnavailableError(FraudPipelineError):
    """The detection pipeline has not been started (or is shutting down)."""
