"""Dependency injection for FastAPI endpoints"""

from functools import lru_cache
from typing import Callable

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from moony_analytics.config import settings
from moony_analytics.infrastructure.clients.plaid import PlaidClient
from moony_analytics.infrastructure.database.session import SessionLocal
from moony_analytics.infrastructure.security.credentials import CredentialResolver
from moony_analytics.infrastructure.webhooks.verification import VerificationKeyCache, WebhookVerifier
from moony_analytics.services.reconciliation import ReconciliationScanner
from moony_analytics.services.statistics import RetryController, StatisticsPipeline
from moony_analytics.services.webhooks import WebhookRouter, WebhookService


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_session_factory() -> Callable[[], Session]:
    """Session factory for work that outlives the request"""
    return SessionLocal


@lru_cache(maxsize=None)
def get_plaid_client() -> PlaidClient:
    """Provide Plaid API client instance"""
    return PlaidClient()


@lru_cache(maxsize=None)
def get_key_cache() -> VerificationKeyCache:
    """Process-wide webhook verification key cache"""
    return VerificationKeyCache()


@lru_cache(maxsize=None)
def get_retry_controller() -> RetryController:
    """Process-wide controller so in-flight runs are shared between webhooks and scans"""
    pipeline = StatisticsPipeline(
        credentials=CredentialResolver(SessionLocal),
        transactions=get_plaid_client(),
        session_factory=SessionLocal,
    )
    return RetryController(pipeline)


def get_credential_resolver(
    session_factory: Callable[[], Session] = Depends(get_session_factory),
) -> CredentialResolver:
    return CredentialResolver(session_factory)


def get_webhook_verifier(
    key_cache: VerificationKeyCache = Depends(get_key_cache),
    plaid_client: PlaidClient = Depends(get_plaid_client),
) -> WebhookVerifier:
    return WebhookVerifier(
        key_fetcher=plaid_client.get_verification_key,
        key_cache=key_cache,
        max_token_age_seconds=settings.webhook_max_token_age_seconds,
    )


def get_webhook_service(
    verifier: WebhookVerifier = Depends(get_webhook_verifier),
    credentials: CredentialResolver = Depends(get_credential_resolver),
    controller: RetryController = Depends(get_retry_controller),
) -> WebhookService:
    router = WebhookRouter(credentials.find_user_by_connection, controller)
    return WebhookService(verifier, router)


def get_reconciliation_scanner(
    session_factory: Callable[[], Session] = Depends(get_session_factory),
    controller: RetryController = Depends(get_retry_controller),
) -> ReconciliationScanner:
    return ReconciliationScanner(session_factory, controller)
