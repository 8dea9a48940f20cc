"""Fraud analysis rollups and rule metadata."""

from dataclasses import asdict

import structlog
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from src.api.dependencies import get_pipeline
from src.domains.fraud.pipeline import DetectionPipeline
from src.domains.fraud.scorer import DEFAULT_WEIGHT, MAX_RISK_SCORE, weight_for

logger = structlog.get_logger()
router = APIRouter(prefix="/api/v1/fraud", tags=["fraud"])


@router.get("/analysis")
async def fraud_analysis(
    pipeline: DetectionPipeline = Depends(get_pipeline),  # noqa: B008
):
    try:
        analysis = await pipeline.analytics.analyze()
    except Exception:
        logger.exception("fraud_analysis_failed")
        return JSONResponse(
            status_code=500, content={"error": "Failed to analyze fraud patterns"}
        )
    return analysis.model_dump(mode="json")


@router.get("/rules")
async def list_rules(
    pipeline: DetectionPipeline = Depends(get_pipeline),  # noqa: B008
) -> dict:
    """Return rule codes, tiers, weights and the active thresholds."""
    config = pipeline.config
    rules_info = [
        {"code": str(rule.code), "tier": rule.tier, "weight": weight_for(rule.code)}
        for rule in pipeline.engine.rules
    ]
    return {
        "detection_version": config.detection_version,
        "rule_count": len(rules_info),
        "rules": rules_info,
        "default_weight": DEFAULT_WEIGHT,
        "max_risk_score": MAX_RISK_SCORE,
        "thresholds": {
            "basic": asdict(config.basic),
            "enhanced": asdict(config.enhanced),
            "local_timezone": config.local_timezone,
        },
    }
