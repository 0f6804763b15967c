"""Plaid webhook intake: payload parsing, routing and the inbound delivery boundary"""

import json
import logging
from typing import Callable, Optional, Protocol

from pydantic import BaseModel, Field, ValidationError

from moony_analytics.domain.exceptions import InvalidWebhookPayloadError, WebhookVerificationError
from moony_analytics.domain.models import ProcessingOutcome
from moony_analytics.infrastructure.observability.metrics import record_webhook_outcome
from moony_analytics.infrastructure.webhooks.verification import WebhookVerifier

logger = logging.getLogger(__name__)

TRANSACTIONS_WEBHOOK_TYPE = "TRANSACTIONS"

# Both kinds trigger the same full recomputation over the lookback window
FULL_REFRESH_CODES = {"HISTORICAL_UPDATE", "INITIAL_UPDATE"}
INCREMENTAL_UPDATE_CODES = {"DEFAULT_UPDATE", "SYNC_UPDATES_AVAILABLE"}


class WebhookError(BaseModel):
    error_code: str = ""
    error_message: str = ""


class WebhookEvent(BaseModel):
    """Verified Plaid webhook body"""

    webhook_type: str = Field(..., min_length=1)
    webhook_code: str = Field(..., min_length=1)
    item_id: str = Field(..., min_length=1)
    error: Optional[WebhookError] = None
    new_transactions: Optional[int] = None


def parse_webhook_event(raw_body: bytes) -> WebhookEvent:
    """
    Validate the webhook shape up front.

    Raises:
        InvalidWebhookPayloadError: Body is not JSON or lacks type, code or item id
    """
    try:
        payload = json.loads(raw_body)
    except (ValueError, UnicodeDecodeError) as e:
        raise InvalidWebhookPayloadError(f"Webhook body is not JSON: {e}") from e
    if not isinstance(payload, dict):
        raise InvalidWebhookPayloadError("Webhook body must be a JSON object")

    try:
        return WebhookEvent.model_validate(payload)
    except ValidationError as e:
        raise InvalidWebhookPayloadError(f"Invalid webhook payload: {e.error_count()} field error(s)") from e


class RunSubmitter(Protocol):
    def submit(self, user_id: str, trigger: str = "webhook"): ...


class WebhookRouter:
    """Decide what a verified webhook means and start the matching run"""

    def __init__(self, find_user_by_connection: Callable[[str], Optional[str]], controller: RunSubmitter):
        self.find_user_by_connection = find_user_by_connection
        self.controller = controller

    async def route(self, event: WebhookEvent) -> ProcessingOutcome:
        log_context = {
            "webhook_type": event.webhook_type,
            "webhook_code": event.webhook_code,
            "item_id": event.item_id,
        }

        if event.error is not None:
            # Provider-reported errors are permanent for this delivery
            logger.error(
                "Plaid webhook contains error",
                extra={**log_context, "error_code": event.error.error_code, "error_message": event.error.error_message},
            )
            return ProcessingOutcome(success=True, message=f"Webhook error: {event.error.error_code}")

        if event.webhook_type != TRANSACTIONS_WEBHOOK_TYPE:
            logger.info("Unsupported webhook type received", extra=log_context)
            return ProcessingOutcome(success=True, message="Webhook received but not processed (unsupported type)")

        try:
            user_id = self.find_user_by_connection(event.item_id)
            if user_id is None:
                logger.warning("User not found for Plaid item", extra=log_context)
                return ProcessingOutcome(success=True, message="User not found for item_id")

            if event.webhook_code in FULL_REFRESH_CODES or event.webhook_code in INCREMENTAL_UPDATE_CODES:
                logger.info(
                    "Scheduling statistics refresh",
                    extra={**log_context, "user_id": user_id, "new_transactions": event.new_transactions or 0},
                )
                self.controller.submit(user_id, trigger="webhook")
                return ProcessingOutcome(
                    success=True, message=f"{event.webhook_code} processed - statistics refresh scheduled", dispatched=True
                )

            logger.info("Unhandled transaction webhook code", extra={**log_context, "user_id": user_id})
            return ProcessingOutcome(success=True, message=f"Transaction webhook {event.webhook_code} acknowledged")

        except Exception as e:
            logger.error("Failed to handle transaction webhook", extra={**log_context, "error": str(e)})
            return ProcessingOutcome(success=False, message=f"Transaction webhook failed: {e}", retryable=True)


class WebhookService:
    """Inbound boundary: verify, parse, route"""

    def __init__(self, verifier: WebhookVerifier, router: WebhookRouter):
        self.verifier = verifier
        self.router = router

    async def handle(self, raw_body: bytes, signature: str) -> ProcessingOutcome:
        outcome = await self._handle(raw_body, signature)
        record_webhook_outcome(outcome.success, outcome.retryable, outcome.dispatched)
        return outcome

    async def _handle(self, raw_body: bytes, signature: str) -> ProcessingOutcome:
        try:
            await self.verifier.verify(raw_body, signature)
        except WebhookVerificationError:
            return ProcessingOutcome(success=False, message="Invalid webhook signature")

        try:
            event = parse_webhook_event(raw_body)
        except InvalidWebhookPayloadError as e:
            logger.error("Rejected malformed Plaid webhook", extra={"error": str(e)})
            return ProcessingOutcome(success=False, message="Invalid payload")

        logger.info(
            "Plaid webhook received",
            extra={
                "webhook_type": event.webhook_type,
                "webhook_code": event.webhook_code,
                "item_id": event.item_id,
                "has_error": event.error is not None,
            },
        )
        return await self.router.route(event)
