"""Plaid HTTP client for transaction history and webhook verification keys"""

import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

import httpx

from moony_analytics.config import settings
from moony_analytics.domain.aggregation import process_transactions
from moony_analytics.domain.exceptions import ProviderAPIError
from moony_analytics.domain.models import ProcessedTransaction, Transaction, VerificationKey
from moony_analytics.infrastructure.observability.metrics import (
    provider_fetch_failures_counter,
    provider_fetch_latency_histogram,
)

logger = logging.getLogger(__name__)

# Provider error codes meaning the stored access token will never work again
PERMANENT_ERROR_CODES = {"INVALID_ACCESS_TOKEN", "ITEM_LOGIN_REQUIRED", "ITEM_NOT_FOUND"}


def _parse_expired_at(value: Any) -> Optional[datetime]:
    """Plaid sends unix seconds; ISO-8601 strings are accepted too"""
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class PlaidClient:
    """Client for the Plaid transactions and webhook-key APIs"""

    def __init__(
        self,
        base_url: str | None = None,
        client_id: str | None = None,
        secret: str | None = None,
        timeout: float | None = None,
        page_size: int | None = None,
        threshold: Decimal | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = (base_url or settings.plaid_api_base).rstrip("/")
        self.client_id = client_id if client_id is not None else settings.plaid_client_id
        self.secret = secret if secret is not None else settings.plaid_secret
        self.timeout = timeout or settings.http_timeout_seconds
        self.page_size = page_size or settings.provider_page_size
        self.threshold = threshold if threshold is not None else settings.spending_threshold
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self.transport)

    def _credentials(self) -> Dict[str, str]:
        return {"client_id": self.client_id, "secret": self.secret}

    async def _post(self, client: httpx.AsyncClient, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        """
        POST to Plaid and return the JSON body.

        Raises:
            ProviderAPIError: permanent for dead credentials, transient otherwise
        """
        try:
            response = await client.post(path, json={**self._credentials(), **body})
        except httpx.TimeoutException as e:
            raise ProviderAPIError(f"Plaid API timeout after {self.timeout}s") from e
        except httpx.RequestError as e:
            raise ProviderAPIError(f"Plaid API unreachable: {e}") from e

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderAPIError(f"Plaid API returned invalid JSON ({response.status_code})") from e

        if response.is_error:
            error_code = data.get("error_code") if isinstance(data, dict) else None
            raise ProviderAPIError(
                f"Plaid API error {response.status_code}: {error_code or 'unknown'}",
                permanent=error_code in PERMANENT_ERROR_CODES,
                error_code=error_code,
                status_code=response.status_code,
            )
        if not isinstance(data, dict):
            raise ProviderAPIError("Plaid API returned an unexpected body")
        return data

    async def list_transactions(
        self,
        client: httpx.AsyncClient,
        access_token: str,
        start_date: date,
        end_date: date,
        offset: int = 0,
    ) -> Tuple[List[Dict[str, Any]], int]:
        """Fetch one page of raw transactions and the provider-reported total"""
        data = await self._post(
            client,
            "/transactions/get",
            {
                "access_token": access_token,
                "start_date": start_date.isoformat(),
                "end_date": end_date.isoformat(),
                "options": {"count": self.page_size, "offset": offset},
            },
        )
        try:
            return list(data["transactions"]), int(data["total_transactions"])
        except (KeyError, TypeError, ValueError) as e:
            raise ProviderAPIError(f"Invalid transactions response from Plaid: {e}") from e

    async def fetch_transactions(
        self,
        access_token: str,
        start_date: date,
        end_date: date,
        today: date | None = None,
    ) -> List[ProcessedTransaction]:
        """
        Fetch every transaction in [start_date, end_date] and keep spending only.

        The end date is clamped to today. Pages are requested until the
        accumulated count reaches the provider-reported total.

        Raises:
            ProviderAPIError: On timeout, HTTP errors, or invalid response
        """
        today = today or date.today()
        if end_date > today:
            end_date = today

        raw: List[Dict[str, Any]] = []
        try:
            with provider_fetch_latency_histogram.time():
                async with self._client() as client:
                    page, total = await self.list_transactions(client, access_token, start_date, end_date)
                    raw.extend(page)
                    while len(raw) < total:
                        page, total = await self.list_transactions(
                            client, access_token, start_date, end_date, offset=len(raw)
                        )
                        if not page:
                            logger.warning(
                                "Plaid returned an empty page before reaching the reported total",
                                extra={"fetched": len(raw), "total": total},
                            )
                            break
                        raw.extend(page)
        except ProviderAPIError as e:
            provider_fetch_failures_counter.labels(error_class="permanent" if e.permanent else "transient").inc()
            raise

        transactions = []
        skipped = 0
        for record in raw:
            try:
                transactions.append(Transaction.from_provider(record))
            except ValueError as e:
                skipped += 1
                logger.warning("Skipping malformed transaction", extra={"error": str(e)})

        processed = process_transactions(transactions, self.threshold)
        logger.info(
            "Transaction fetch completed",
            extra={
                "start_date": start_date.isoformat(),
                "end_date": end_date.isoformat(),
                "total_fetched": len(raw),
                "malformed": skipped,
                "spending_transactions": len(processed),
            },
        )
        return processed

    async def get_verification_key(self, key_id: str) -> Optional[VerificationKey]:
        """
        Fetch a webhook verification key by id.

        Returns None when Plaid does not know the key.

        Raises:
            ProviderAPIError: On timeout, 5xx or malformed key data
        """
        async with self._client() as client:
            try:
                data = await self._post(client, "/webhook_verification_key/get", {"key_id": key_id})
            except ProviderAPIError as e:
                if e.status_code is not None and e.status_code < 500:
                    logger.warning("Plaid rejected verification key lookup", extra={"key_id": key_id, "error_code": e.error_code})
                    return None
                raise

        key = data.get("key")
        if not isinstance(key, dict) or not key.get("x") or not key.get("y"):
            raise ProviderAPIError(f"Invalid verification key response for {key_id}")

        try:
            expires_at = _parse_expired_at(key.get("expired_at"))
        except (TypeError, ValueError, OverflowError, OSError) as e:
            raise ProviderAPIError(f"Invalid expired_at for key {key_id}") from e

        jwk = {name: key[name] for name in ("kty", "crv", "x", "y", "alg", "use", "kid") if key.get(name) is not None}
        return VerificationKey(key_id=key_id, jwk=jwk, expires_at=expires_at)
