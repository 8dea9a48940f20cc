"""FastAPI dependencies."""

from fastapi import Request

from src.domains.fraud.errors import PipelineUnavailableError
from src.domains.fraud.pipeline import DetectionPipeline


def get_pipeline(request: Request) -> DetectionPipeline:
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        raise PipelineUnavailableError("detection pipeline is not running")
    return pipeline
