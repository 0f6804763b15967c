"""POST /v1/webhooks/plaid - Plaid transaction webhook intake"""

import time
import logging
from fastapi import APIRouter, Depends, Header, HTTPException, Request

from moony_analytics.api.v1.schemas import WebhookResponse
from moony_analytics.api.dependencies import get_request_id, get_webhook_service
from moony_analytics.services.webhooks import WebhookService

router = APIRouter()


@router.post("/webhooks/plaid", response_model=WebhookResponse)
async def receive_plaid_webhook(
    request: Request,
    plaid_verification: str | None = Header(default=None, alias="Plaid-Verification"),
    service: WebhookService = Depends(get_webhook_service),
):
    """
    Receive a Plaid webhook and acknowledge it quickly.

    Statistics runs happen in the background, so Plaid gets its answer well
    inside its redelivery timeout.

    Status codes:
    - 200: processed or deliberately ignored
    - 400: bad signature or payload, do not redeliver
    - 500: transient failure, Plaid should redeliver
    """
    start_time = time.time()
    request_id = get_request_id(request)

    raw_body = await request.body()
    outcome = await service.handle(raw_body, plaid_verification or "")

    logging.info(
        "Plaid webhook processing completed",
        extra={
            "request_id": request_id,
            "success": outcome.success,
            "retryable": outcome.retryable,
            "webhook_message": outcome.message,
            "duration_ms": (time.time() - start_time) * 1000,
        },
    )

    if not outcome.success:
        raise HTTPException(status_code=500 if outcome.retryable else 400, detail=outcome.message)

    return WebhookResponse(message=outcome.message)
