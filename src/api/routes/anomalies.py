"""Live anomaly stream (server-sent events) and administrative purge."""

from collections.abc import AsyncIterator

import structlog
from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from src.api.dependencies import get_pipeline
from src.config import settings
from src.domains.fraud.broadcast import Broadcaster
from src.domains.fraud.pipeline import DetectionPipeline

logger = structlog.get_logger()
router = APIRouter(prefix="/api/v1/anomalies", tags=["anomalies"])


async def sse_stream(broadcaster: Broadcaster, keepalive_seconds: float) -> AsyncIterator[str]:
    """Yield SSE frames for one subscriber until it is closed or the client goes away.

    Registration happens on first iteration; nothing published earlier is replayed.
    """
    async with broadcaster.subscribe() as subscriber:
        yield "\n"
        while True:
            try:
                message = await subscriber.next_message(timeout=keepalive_seconds)
            except TimeoutError:
                yield ": keep-alive\n\n"
                continue
            if message is None:
                break
            yield f"data: {message}\n\n"


@router.get("/stream")
async def stream_anomalies(
    pipeline: DetectionPipeline = Depends(get_pipeline),  # noqa: B008
) -> StreamingResponse:
    return StreamingResponse(
        sse_stream(pipeline.broadcaster, settings.broadcast_keepalive_seconds),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


@router.delete("")
async def purge_anomalies(
    pipeline: DetectionPipeline = Depends(get_pipeline),  # noqa: B008
) -> dict:
    deleted = await pipeline.fraud_log.purge()
    logger.warning("anomalies_purged", deleted=deleted)
    return {"deleted": deleted}
