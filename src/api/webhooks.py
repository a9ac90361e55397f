"""
GitHub webhook endpoint: classify the event and enqueue at most one job
"""

import structlog
from fastapi import APIRouter, Request, HTTPException, Depends
from fastapi.responses import JSONResponse

from config.settings import settings
from src.api.dependencies import get_event_classifier, get_job_queue
from src.models.github import WebhookEvent
from src.services.errors import BrokerError, MalformedEventError
from src.services.event_classifier import EventClassifier
from src.services.job_queue import JobQueue
from src.utils.webhook_validator import extract_github_event_type, validate_github_webhook

router = APIRouter()
logger = structlog.get_logger()


async def verify_webhook_signature(request: Request) -> None:
    """Verify GitHub webhook signature when a webhook secret is configured"""
    if not settings.GITHUB_WEBHOOK_SECRET:
        return

    signature = request.headers.get("X-Hub-Signature-256")
    if not signature:
        raise HTTPException(status_code=401, detail="Missing webhook signature")

    body = await request.body()
    if not validate_github_webhook(body, signature, settings.GITHUB_WEBHOOK_SECRET):
        raise HTTPException(status_code=401, detail="Invalid webhook signature")


async def parse_webhook_event(request: Request) -> WebhookEvent:
    """Build the event envelope, raising MalformedEventError for unusable requests"""
    event_type = extract_github_event_type(request.headers)
    if not event_type:
        raise MalformedEventError("Missing X-GitHub-Event header")

    try:
        payload = await request.json()
    except ValueError as e:
        raise MalformedEventError("Invalid JSON payload") from e

    if not isinstance(payload, dict):
        raise MalformedEventError("Webhook payload must be a JSON object")

    event = WebhookEvent.from_payload(
        event_type, payload, delivery_id=request.headers.get("X-GitHub-Delivery")
    )
    if not event.installation_id:
        raise MalformedEventError("Missing installation ID in webhook")

    return event


@router.post("")
async def github_webhook(
    request: Request,
    _: None = Depends(verify_webhook_signature),
    job_queue: JobQueue = Depends(get_job_queue),
    event_classifier: EventClassifier = Depends(get_event_classifier),
) -> JSONResponse:
    """
    Accept a GitHub webhook delivery.

    Only classification and the enqueue acknowledgement happen here; token
    resolution, AI calls and GitHub calls are left to the queue consumer.
    Answers 202 whether or not the event produced a job.
    """
    try:
        event = await parse_webhook_event(request)
    except MalformedEventError as e:
        logger.warning("Rejected malformed webhook", error=e.message)
        return JSONResponse(content={"error": e.message}, status_code=400)

    logger.info(
        "Received GitHub webhook",
        event_type=event.event_type,
        action=event.action,
        delivery_id=event.delivery_id,
        installation_id=event.installation_id,
    )

    try:
        job_create = event_classifier.classify(event)
        if job_create is not None:
            job_id = await job_queue.enqueue(job_create)
            logger.info(
                "Webhook event queued",
                event_type=event.event_type,
                delivery_id=event.delivery_id,
                job_id=job_id,
                job_type=job_create.job_type.value,
            )
    except BrokerError as e:
        logger.error(
            "Failed to enqueue job",
            event_type=event.event_type,
            delivery_id=event.delivery_id,
            error=e.message,
        )
        return JSONResponse(content={"error": "Job queue unavailable"}, status_code=429)
    except Exception as e:
        logger.error(
            "Webhook processing failed",
            event_type=event.event_type,
            delivery_id=event.delivery_id,
            error=str(e),
        )
        return JSONResponse(content={"error": "Internal server error"}, status_code=500)

    return JSONResponse(content={"status": "Accepted"}, status_code=202)
