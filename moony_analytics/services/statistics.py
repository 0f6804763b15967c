"""Statistics pipeline (credential -> fetch -> aggregate -> store) and its retry controller"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Awaitable, Callable, Dict, Optional, Protocol, Sequence, Set

from sqlalchemy.orm import Session

from moony_analytics.config import settings
from moony_analytics.domain.aggregation import calculate_spending_summary
from moony_analytics.domain.models import ProcessedTransaction, SpendingStatistics
from moony_analytics.domain.retry import DEFAULT_RETRY_DELAYS, ErrorClass, RetryState, classify_error
from moony_analytics.infrastructure.database.repositories import StatisticsRepository
from moony_analytics.infrastructure.observability.logging import log_pipeline_outcome
from moony_analytics.infrastructure.observability.metrics import statistics_retries_counter, statistics_runs_counter
from moony_analytics.infrastructure.security.credentials import CredentialResolver
from moony_analytics.utils.date_utils import subtract_months, utc_now

logger = logging.getLogger(__name__)


class TransactionSource(Protocol):
    async def fetch_transactions(
        self, access_token: str, start_date: date, end_date: date, today: date | None = None
    ) -> list[ProcessedTransaction]: ...


@dataclass
class PipelineOutcome:
    """Terminal result of one statistics run, retries included"""

    user_id: str
    succeeded: bool
    attempts: int
    error: Optional[str] = None
    error_class: Optional[ErrorClass] = None
    statistics: Optional[SpendingStatistics] = None


class StatisticsPipeline:
    """One attempt: resolve credential, fetch, aggregate, then upsert"""

    def __init__(
        self,
        credentials: CredentialResolver,
        transactions: TransactionSource,
        session_factory: Callable[[], Session],
        clock: Callable[[], datetime] = utc_now,
        lookback_months: int | None = None,
    ):
        self.credentials = credentials
        self.transactions = transactions
        self.session_factory = session_factory
        self.clock = clock
        self.lookback_months = lookback_months or settings.lookback_months

    async def run(self, user_id: str) -> SpendingStatistics:
        now = self.clock()
        today = now.date()

        access_token = self.credentials.resolve(user_id)
        transactions = await self.transactions.fetch_transactions(
            access_token,
            subtract_months(today, self.lookback_months),
            today,
            today=today,
        )

        summary = calculate_spending_summary(transactions, today=today, lookback_months=self.lookback_months)
        statistics = SpendingStatistics.from_summary(user_id, summary, now)

        # Only a fully successful attempt reaches the store
        with self.session_factory() as db:
            StatisticsRepository(db).upsert(statistics)
            db.commit()

        logger.info(
            "Statistics stored",
            extra={"user_id": user_id, "transaction_count": len(transactions), **summary.as_dict()},
        )
        return statistics


class RetryController:
    """
    Run the pipeline with classified retries.

    Permanent errors stop at once. Transient errors (including attempt
    timeouts) wait the next delay from the schedule and re-run from scratch,
    up to max_attempts in total. Never raises.
    """

    def __init__(
        self,
        pipeline: StatisticsPipeline,
        max_attempts: int | None = None,
        delays: Sequence[float] | None = None,
        attempt_timeout: float | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.pipeline = pipeline
        self.max_attempts = max_attempts or settings.retry_max_attempts
        self.delays = tuple(delays if delays is not None else settings.retry_delays_seconds or DEFAULT_RETRY_DELAYS)
        self.attempt_timeout = attempt_timeout or settings.pipeline_attempt_timeout_seconds
        self.sleep = sleep
        self._in_flight: Dict[str, asyncio.Task] = {}
        self._rerun_requested: Set[str] = set()

    async def run_with_retry(self, user_id: str, trigger: str = "direct") -> PipelineOutcome:
        state = RetryState(max_attempts=self.max_attempts)
        error: Optional[BaseException] = None

        while True:
            try:
                logger.info(
                    "Starting statistics attempt",
                    extra={"user_id": user_id, "attempt": state.attempts_made, "trigger": trigger},
                )
                statistics = await asyncio.wait_for(self.pipeline.run(user_id), timeout=self.attempt_timeout)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                error = e
                state.last_error_class = classify_error(e)
                logger.warning(
                    "Statistics attempt failed",
                    extra={
                        "user_id": user_id,
                        "attempt": state.attempts_made,
                        "error": str(e) or type(e).__name__,
                        "error_class": state.last_error_class.value,
                    },
                )
            else:
                statistics_runs_counter.labels(outcome="succeeded", trigger=trigger).inc()
                log_pipeline_outcome(user_id, True, state.attempts_made, trigger)
                return PipelineOutcome(
                    user_id=user_id, succeeded=True, attempts=state.attempts_made, statistics=statistics
                )

            if not state.can_retry():
                break

            delay = state.next_delay(self.delays)
            statistics_retries_counter.inc()
            logger.info(
                "Retrying statistics",
                extra={"user_id": user_id, "next_attempt": state.attempts_made + 1, "delay_seconds": delay},
            )
            await self.sleep(delay)
            state.advance()

        final_error = str(error) or type(error).__name__
        statistics_runs_counter.labels(outcome="failed", trigger=trigger).inc()
        log_pipeline_outcome(
            user_id,
            False,
            state.attempts_made,
            trigger,
            final_error=final_error,
            error_class=state.last_error_class.value,
        )
        return PipelineOutcome(
            user_id=user_id,
            succeeded=False,
            attempts=state.attempts_made,
            error=final_error,
            error_class=state.last_error_class,
        )

    def submit(self, user_id: str, trigger: str = "webhook") -> "asyncio.Task[PipelineOutcome]":
        """
        Start a run in the background and return its task.

        A user with a run already in flight gets the existing task back, and
        that task runs once more after the current run so data that arrived
        mid-run is picked up. Any number of such submits collapse into a
        single trailing run.
        """
        task = self._in_flight.get(user_id)
        if task is not None and not task.done():
            self._rerun_requested.add(user_id)
            logger.info("Statistics run in flight, trailing rerun requested", extra={"user_id": user_id, "trigger": trigger})
            return task

        task = asyncio.create_task(self._run_until_current(user_id, trigger))
        self._in_flight[user_id] = task
        task.add_done_callback(lambda t: self._forget(user_id, t))
        return task

    async def _run_until_current(self, user_id: str, trigger: str) -> PipelineOutcome:
        while True:
            # Requests made before this run starts fetching are covered by it
            self._rerun_requested.discard(user_id)
            outcome = await self.run_with_retry(user_id, trigger=trigger)
            if user_id not in self._rerun_requested:
                return outcome
            logger.info("Rerunning statistics requested during previous run", extra={"user_id": user_id})

    def _forget(self, user_id: str, task: asyncio.Task) -> None:
        if self._in_flight.get(user_id) is task:
            del self._in_flight[user_id]
            self._rerun_requested.discard(user_id)

    def in_flight(self, user_id: str) -> bool:
        task = self._in_flight.get(user_id)
        return task is not None and not task.done()
