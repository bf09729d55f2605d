"""
Health and Readiness Endpoints

Kubernetes-compatible health probes for load balancers and orchestration.
"""
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from loguru import logger

from src.repositories import db_manager

router = APIRouter(tags=["Health"])

# API version - single source of truth
API_VERSION = "1.0.0"


@router.get("/health")
async def health_check():
    """
    Basic health check endpoint.

    Returns 200 if the process is running.
    """
    return {
        "status": "healthy",
        "service": "crm-webhook-pipeline",
        "version": API_VERSION
    }


@router.get("/ready")
async def readiness_check(request: Request):
    """
    Readiness probe.

    Verifies the processor context is built and MongoDB answers a ping.
    Returns 200 if ready, 503 if not.
    """
    if getattr(request.app.state, "ctx", None) is None:
        return JSONResponse(
            status_code=503,
            content={"status": "not_ready", "reason": "Processor context not initialized"}
        )

    if not await db_manager.ping():
        logger.error("Readiness check failed: MongoDB ping failed")
        return JSONResponse(
            status_code=503,
            content={"status": "not_ready", "reason": "MongoDB unreachable"}
        )

    tasks = getattr(request.app.state, "processor_tasks", {}) or {}
    return {
        "status": "ready",
        "mongodb": "connected",
        "processor_loops": sorted(name for name, task in tasks.items() if not task.done()),
    }


@router.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "service": "CRM Webhook Pipeline",
        "version": API_VERSION,
        "endpoints": {
            "health": "/health",
            "ready": "/ready",
            "metrics": "/metrics",
            "queue_metrics": "/metrics/queues",
            "webhook_metrics": "/metrics/webhooks",
            "dead_letter": "/metrics/dead-letter",
            "dead_letter_retry": "/metrics/dead-letter/{webhook_id}/retry (POST)",
        }
    }
