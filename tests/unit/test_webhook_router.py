"""Unit tests for webhook parsing, routing and the delivery boundary"""

import json
import pytest
from unittest.mock import AsyncMock, MagicMock
from moony_analytics.domain.exceptions import InvalidWebhookPayloadError, WebhookVerificationError
from moony_analytics.domain.models import ProcessingOutcome
from moony_analytics.services.webhooks import WebhookRouter, WebhookService, parse_webhook_event


def event_body(webhook_type="TRANSACTIONS", webhook_code="DEFAULT_UPDATE", item_id="item-1", **extra):
    return json.dumps({"webhook_type": webhook_type, "webhook_code": webhook_code, "item_id": item_id, **extra}).encode()


@pytest.fixture
def controller():
    return MagicMock()


@pytest.fixture
def router(controller):
    return WebhookRouter(lambda item_id: "user-1" if item_id == "item-1" else None, controller)


@pytest.mark.parametrize("code", ["HISTORICAL_UPDATE", "INITIAL_UPDATE", "DEFAULT_UPDATE", "SYNC_UPDATES_AVAILABLE"])
async def test_transaction_updates_schedule_a_run(router, controller, code):
    outcome = await router.route(parse_webhook_event(event_body(webhook_code=code)))

    assert outcome.success
    assert outcome.dispatched
    controller.submit.assert_called_once_with("user-1", trigger="webhook")


async def test_unknown_code_is_acknowledged_without_a_run(router, controller):
    outcome = await router.route(parse_webhook_event(event_body(webhook_code="TRANSACTIONS_REMOVED")))

    assert outcome.success
    assert not outcome.dispatched
    controller.submit.assert_not_called()


async def test_other_webhook_types_are_ignored(router, controller):
    outcome = await router.route(parse_webhook_event(event_body(webhook_type="ITEM", webhook_code="ERROR")))

    assert outcome.success
    assert "not processed" in outcome.message
    controller.submit.assert_not_called()


async def test_unknown_item_is_acknowledged(router, controller):
    outcome = await router.route(parse_webhook_event(event_body(item_id="item-unknown")))

    assert outcome.success
    assert outcome.message == "User not found for item_id"
    controller.submit.assert_not_called()


async def test_error_payload_is_acknowledged_without_a_run(router, controller):
    body = event_body(error={"error_code": "ITEM_LOGIN_REQUIRED", "error_message": "login required"})

    outcome = await router.route(parse_webhook_event(body))

    assert outcome.success
    assert "ITEM_LOGIN_REQUIRED" in outcome.message
    controller.submit.assert_not_called()


async def test_lookup_failure_is_retryable(controller):
    def broken_lookup(item_id):
        raise RuntimeError("database unavailable")

    outcome = await WebhookRouter(broken_lookup, controller).route(parse_webhook_event(event_body()))

    assert not outcome.success
    assert outcome.retryable


@pytest.mark.parametrize(
    "body",
    [
        b"not json",
        b"[]",
        json.dumps({"webhook_type": "TRANSACTIONS", "item_id": "item-1"}).encode(),
        json.dumps({"webhook_type": "TRANSACTIONS", "webhook_code": "DEFAULT_UPDATE", "item_id": ""}).encode(),
    ],
)
def test_malformed_payloads_are_rejected(body):
    with pytest.raises(InvalidWebhookPayloadError):
        parse_webhook_event(body)


def test_new_transactions_count_is_parsed():
    event = parse_webhook_event(event_body(new_transactions=12))

    assert event.new_transactions == 12


async def test_service_rejects_bad_signature_before_routing():
    verifier = MagicMock()
    verifier.verify = AsyncMock(side_effect=WebhookVerificationError("invalid_signature"))
    router = MagicMock()
    router.route = AsyncMock()

    outcome = await WebhookService(verifier, router).handle(event_body(), "token")

    assert outcome == ProcessingOutcome(success=False, message="Invalid webhook signature")
    router.route.assert_not_awaited()


async def test_service_rejects_malformed_payload_after_verification():
    verifier = MagicMock()
    verifier.verify = AsyncMock(return_value={})
    router = MagicMock()
    router.route = AsyncMock()

    outcome = await WebhookService(verifier, router).handle(b"{}", "token")

    assert not outcome.success
    assert not outcome.retryable
    assert outcome.message == "Invalid payload"
    router.route.assert_not_awaited()


async def test_service_routes_verified_events(router, controller):
    verifier = MagicMock()
    verifier.verify = AsyncMock(return_value={})

    outcome = await WebhookService(verifier, router).handle(event_body(), "token")

    verifier.verify.assert_awaited_once_with(event_body(), "token")
    assert outcome.dispatched
    controller.submit.assert_called_once()
