"""
Contact push notification job.

Resolves a message by id, runs it through the orchestrator and retries
transient failures with exponential backoff. Message ids arrive on a Redis
list filled by enqueue_contact_push().
"""

import asyncio
import json
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from contact_push.config import PushConfig, settings
from contact_push.features.push_notifications.domain import (
    DispatchOutcome,
    MessageNotFoundError,
    MessageStore,
    OutcomeKind,
)
from contact_push.features.push_notifications.services.credential_cache import CredentialCache
from contact_push.features.push_notifications.services.orchestrator import (
    NotificationOrchestrator,
)
from contact_push.infrastructure.observability.logging import get_logger
from contact_push.services.redis_client import FastRedisClient, fast_redis

logger = get_logger(__name__)

# Job configuration
QUEUE_NAME = "contact_push:jobs"
POP_TIMEOUT_SECONDS = 5
MAX_CONCURRENT_JOBS = 10
ERROR_BACKOFF_SECONDS = 5


class TransientDispatchError(Exception):
    """Signals that a dispatch ended in a retryable outcome."""

    def __init__(self, outcome: DispatchOutcome):
        super().__init__(outcome.reason or outcome.kind.value)
        self.outcome = outcome


@dataclass(slots=True)
class RetryState:
    """Attempt bookkeeping for one job invocation."""

    attempts: int = 0
    total_delay_seconds: float = 0.0
    delays: list[float] = field(default_factory=list)
    fatal: bool = False
    last_error: str | None = None


@dataclass(slots=True)
class JobResult:
    message_id: object
    status: str
    outcome: DispatchOutcome | None = None
    state: RetryState = field(default_factory=RetryState)

    @property
    def abandoned(self) -> bool:
        return self.status == "abandoned"


class ContactPushMetrics:
    """Counters for the worker's lifetime, exposed through get_job_status()."""

    def __init__(self):
        self.reset()

    def reset(self):
        self.start_time = datetime.now(UTC)
        self.jobs_processed = 0
        self.delivered = 0
        self.skipped = 0
        self.permanent_failures = 0
        self.retries = 0
        self.abandoned = 0
        self.discarded = 0

    def record(self, result: JobResult) -> None:
        self.jobs_processed += 1
        self.retries += max(result.state.attempts - 1, 0)

        if result.status == "delivered":
            self.delivered += 1
        elif result.status == "skipped":
            self.skipped += 1
        elif result.status == "permanent_failure":
            self.permanent_failures += 1
        elif result.status == "abandoned":
            self.abandoned += 1
        else:
            self.discarded += 1

    def to_dict(self) -> dict:
        return {
            "job_run": "contact_push",
            "start_time": self.start_time.isoformat(),
            "jobs_processed": self.jobs_processed,
            "delivered": self.delivered,
            "skipped": self.skipped,
            "permanent_failures": self.permanent_failures,
            "retries": self.retries,
            "abandoned": self.abandoned,
            "discarded": self.discarded,
        }


OrchestratorFactory = Callable[[PushConfig], NotificationOrchestrator]


class RetryingJobRunner:
    """
    Background execution wrapper around the notification orchestrator.

    Transient outcomes and unexpected exceptions are retried with delays of
    base_delay * 2 ** (attempt - 1), up to max_attempts attempts in total.
    A message that cannot be found is never retried.
    """

    def __init__(
        self,
        store: MessageStore,
        *,
        config_provider: Callable[[], PushConfig] = settings.push_config,
        max_attempts: int = settings.PUSH_JOB_MAX_ATTEMPTS,
        base_delay_seconds: float = settings.PUSH_JOB_BASE_DELAY_SECONDS,
        credential_cache: CredentialCache | None = None,
        orchestrator_factory: OrchestratorFactory | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        self.store = store
        self.config_provider = config_provider
        self.max_attempts = max_attempts
        self.base_delay_seconds = base_delay_seconds
        self.credential_cache = credential_cache
        self._orchestrator_factory = orchestrator_factory or self._default_orchestrator
        self._sleep = sleep
        self.metrics = ContactPushMetrics()

    def _default_orchestrator(self, config: PushConfig) -> NotificationOrchestrator:
        return NotificationOrchestrator(
            config,
            contact_store=self.store,
            credential_cache=self.credential_cache,
        )

    def backoff_delay(self, attempt: int) -> float:
        return self.base_delay_seconds * (2 ** (attempt - 1))

    async def run(self, message_id) -> JobResult:
        """Run the push job for one message id until it reaches a terminal state."""
        state = RetryState()
        logger.info("Contact push job started", message_id=message_id)

        while True:
            state.attempts += 1
            try:
                result = await self._perform(message_id, state)

            except MessageNotFoundError as e:
                logger.warning("Discarding contact push job", message_id=message_id, error=str(e))
                result = JobResult(message_id, "discarded", state=state)

            except Exception as e:
                state.last_error = f"{type(e).__name__}: {e}"

                if state.attempts >= self.max_attempts:
                    result = await self._abandon(message_id, state, e)
                else:
                    delay = self.backoff_delay(state.attempts)
                    state.delays.append(delay)
                    state.total_delay_seconds += delay
                    logger.warning(
                        "Contact push attempt failed, retrying",
                        message_id=message_id,
                        attempt=state.attempts,
                        max_attempts=self.max_attempts,
                        delay_seconds=delay,
                        error=state.last_error,
                    )
                    await self._sleep(delay)
                    continue

            self.metrics.record(result)
            return result

    async def _perform(self, message_id, state: RetryState) -> JobResult:
        message = await self.store.get_message(message_id)
        if message is None:
            logger.info("Contact push job message not found", message_id=message_id)
            return JobResult(message_id, "not_found", state=state)

        if message.push_notification_sent():
            logger.info("Contact push already sent for message", message_id=message_id)
            return JobResult(message_id, "already_sent", state=state)

        orchestrator = self._orchestrator_factory(self.config_provider())
        outcome = await orchestrator.dispatch(message)

        if outcome.retryable:
            raise TransientDispatchError(outcome)

        if outcome.delivered:
            await self._track(self.store.mark_push_sent, message_id)
            logger.info(
                "Contact push job completed",
                message_id=message_id,
                channel=outcome.channel.value if outcome.channel else None,
                attempts=state.attempts,
            )
            return JobResult(message_id, "delivered", outcome, state)

        if outcome.kind is OutcomeKind.PERMANENT_FAILURE:
            await self._track(self.store.mark_push_failed, message_id, outcome.reason or "")
            return JobResult(message_id, "permanent_failure", outcome, state)

        logger.info(
            "Contact push job skipped", message_id=message_id, outcome=outcome.kind.value
        )
        return JobResult(message_id, "skipped", outcome, state)

    async def _abandon(self, message_id, state: RetryState, error: Exception) -> JobResult:
        state.fatal = True
        outcome = error.outcome if isinstance(error, TransientDispatchError) else None

        logger.error(
            "Contact push job abandoned after exhausting retries",
            message_id=message_id,
            attempts=state.attempts,
            total_delay_seconds=state.total_delay_seconds,
            channel=outcome.channel.value if outcome and outcome.channel else None,
            status_code=outcome.status_code if outcome else None,
            error=state.last_error,
            alert=True,
        )
        await self._track(self.store.mark_push_failed, message_id, state.last_error or "")
        return JobResult(message_id, "abandoned", outcome, state)

    async def _track(self, operation, *args) -> None:
        """Record delivery tracking without turning a tracking failure into a resend."""
        try:
            await operation(*args)
        except Exception as e:
            logger.error(
                "Failed to record contact push tracking",
                operation=getattr(operation, "__name__", "unknown"),
                error=str(e),
                error_type=type(e).__name__,
            )

    def get_job_status(self) -> dict:
        return {
            "job_name": "contact_push",
            "queue": QUEUE_NAME,
            "max_attempts": self.max_attempts,
            "base_delay_seconds": self.base_delay_seconds,
            "metrics": self.metrics.to_dict(),
        }


async def enqueue_contact_push(message_id, redis_client: FastRedisClient = fast_redis) -> int:
    """Queue a push job for a newly persisted outgoing message."""
    payload = json.dumps(
        {"message_id": message_id, "enqueued_at": datetime.now(UTC).isoformat()}
    )
    queue_length = await redis_client.push_job(QUEUE_NAME, payload)
    logger.info("Contact push job enqueued", message_id=message_id, queue_length=queue_length)
    return queue_length


def _decode_job(raw: str):
    try:
        return json.loads(raw)["message_id"]
    except (ValueError, KeyError, TypeError):
        logger.error("Dropping malformed contact push job", raw_payload=raw[:100])
        return None


async def start_contact_push_worker(
    runner: RetryingJobRunner | None = None,
    redis_client: FastRedisClient = fast_redis,
) -> None:
    """
    Consume queued message ids and run a push job for each.

    Jobs run concurrently up to MAX_CONCURRENT_JOBS; each job is independent.
    """
    if runner is None:
        from contact_push.db.pool import db_pool
        from contact_push.features.push_notifications.repository.message_repository import (
            message_repository,
        )

        await db_pool.initialize()
        runner = RetryingJobRunner(message_repository)

    await redis_client.initialize()
    semaphore = asyncio.Semaphore(MAX_CONCURRENT_JOBS)
    in_flight: set[asyncio.Task] = set()

    async def _run_with_semaphore(message_id) -> None:
        async with semaphore:
            try:
                await runner.run(message_id)
            except Exception as e:
                logger.error(
                    "Contact push job crashed",
                    message_id=message_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )

    logger.info(
        "Starting contact push worker", queue=QUEUE_NAME, max_concurrent=MAX_CONCURRENT_JOBS
    )

    try:
        while True:
            try:
                raw = await redis_client.pop_job(QUEUE_NAME, timeout_s=POP_TIMEOUT_SECONDS)
            except Exception as e:
                logger.error(
                    "Error reading contact push queue", error=str(e), error_type=type(e).__name__
                )
                await asyncio.sleep(ERROR_BACKOFF_SECONDS)
                continue

            if raw is None:
                continue

            message_id = _decode_job(raw)
            if message_id is None:
                continue

            task = asyncio.create_task(_run_with_semaphore(message_id))
            in_flight.add(task)
            task.add_done_callback(in_flight.discard)

    except asyncio.CancelledError:
        logger.info("Contact push worker stopping", in_flight=len(in_flight))
        if in_flight:
            await asyncio.gather(*in_flight, return_exceptions=True)
        raise
