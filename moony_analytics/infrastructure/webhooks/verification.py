"""Plaid webhook signature verification (ES256 JWT in the Plaid-Verification header)"""

import hashlib
import hmac
import json
import logging
import math
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional

import jwt
from jwt.algorithms import ECAlgorithm

from moony_analytics.domain.exceptions import WebhookVerificationError
from moony_analytics.domain.models import VerificationKey
from moony_analytics.infrastructure.observability.metrics import webhook_verification_failures_counter
from moony_analytics.utils.date_utils import utc_now

logger = logging.getLogger(__name__)

EXPECTED_ALGORITHM = "ES256"
MAX_TOKEN_AGE_SECONDS = 300

KeyFetcher = Callable[[str], Awaitable[Optional[VerificationKey]]]
Clock = Callable[[], datetime]


class VerificationKeyCache:
    """Verification keys by key id; expired entries are evicted on lookup"""

    def __init__(self, clock: Clock = utc_now):
        self._keys: Dict[str, VerificationKey] = {}
        self._clock = clock

    def get(self, key_id: str) -> Optional[VerificationKey]:
        key = self._keys.get(key_id)
        if key is None:
            return None
        if key.is_expired(self._clock()):
            logger.info("Evicting expired verification key", extra={"key_id": key_id})
            self._keys.pop(key_id, None)
            return None
        return key

    def put(self, key: VerificationKey) -> None:
        self._keys[key.key_id] = key

    def __contains__(self, key_id: str) -> bool:
        return key_id in self._keys

    def __len__(self) -> int:
        return len(self._keys)


class WebhookVerifier:
    """
    Verify a webhook delivery against Plaid's published keys.

    Checks, in order:
    1. Header algorithm is ES256 and names a key id
    2. Key resolves (cache first) and is not expired
    3. Signature is valid for the key
    4. Issued-at is within +/- max_token_age of now
    5. request_body_sha256 claim matches the raw body
    """

    def __init__(
        self,
        key_fetcher: KeyFetcher,
        key_cache: VerificationKeyCache | None = None,
        clock: Clock = utc_now,
        max_token_age_seconds: int = MAX_TOKEN_AGE_SECONDS,
    ):
        self.key_fetcher = key_fetcher
        self.key_cache = key_cache or VerificationKeyCache(clock)
        self.clock = clock
        self.max_token_age_seconds = max_token_age_seconds

    async def verify(self, raw_body: bytes, token: str) -> Dict[str, Any]:
        """
        Return the verified claims.

        Raises:
            WebhookVerificationError: If any check fails
        """
        try:
            return await self._verify(raw_body, token)
        except WebhookVerificationError as e:
            webhook_verification_failures_counter.labels(reason=e.reason).inc()
            logger.warning("Webhook verification failed", extra={"reason": e.reason, "detail": str(e)})
            raise

    async def _verify(self, raw_body: bytes, token: str) -> Dict[str, Any]:
        if not token or not isinstance(token, str):
            raise WebhookVerificationError("missing_token")

        try:
            header = jwt.get_unverified_header(token)
        except jwt.PyJWTError as e:
            raise WebhookVerificationError("malformed_token", str(e)) from e

        algorithm = header.get("alg")
        if algorithm != EXPECTED_ALGORITHM:
            raise WebhookVerificationError("unexpected_algorithm", str(algorithm))
        key_id = header.get("kid")
        if not key_id:
            raise WebhookVerificationError("missing_key_id")

        key = await self._resolve_key(key_id)

        try:
            public_key = ECAlgorithm.from_jwk(json.dumps(key.jwk))
            claims = jwt.decode(
                token,
                public_key,
                algorithms=[EXPECTED_ALGORITHM],
                options={"verify_exp": False, "verify_iat": False, "verify_nbf": False},
            )
        except (jwt.PyJWTError, ValueError, TypeError) as e:
            raise WebhookVerificationError("invalid_signature", str(e)) from e

        self._check_freshness(claims)
        self._check_body_hash(raw_body, claims)
        return claims

    async def _resolve_key(self, key_id: str) -> VerificationKey:
        key = self.key_cache.get(key_id)
        if key is not None:
            return key

        try:
            key = await self.key_fetcher(key_id)
        except Exception as e:
            raise WebhookVerificationError("key_fetch_failed", str(e)) from e

        if key is None:
            raise WebhookVerificationError("unknown_key", key_id)
        if key.is_expired(self.clock()):
            raise WebhookVerificationError("expired_key", key_id)

        self.key_cache.put(key)
        return key

    def _check_freshness(self, claims: Dict[str, Any]) -> None:
        issued_at = claims.get("iat")
        if isinstance(issued_at, bool) or not isinstance(issued_at, (int, float)) or not math.isfinite(issued_at):
            raise WebhookVerificationError("missing_issued_at")

        age = self.clock().timestamp() - issued_at
        if abs(age) > self.max_token_age_seconds:
            raise WebhookVerificationError("stale_token", f"age={age:.0f}s")

    def _check_body_hash(self, raw_body: bytes, claims: Dict[str, Any]) -> None:
        claimed = claims.get("request_body_sha256")
        if not isinstance(claimed, str):
            raise WebhookVerificationError("missing_body_hash")

        claimed = claimed.lower()
        actual = hashlib.sha256(raw_body).hexdigest()
        if len(claimed) != len(actual):
            raise WebhookVerificationError("body_hash_mismatch", "length")
        if not hmac.compare_digest(actual.encode(), claimed.encode()):
            raise WebhookVerificationError("body_hash_mismatch")
