"""
SLA External Service Integrations
==================================

Runtime services around the SLA engine:
- Slack webhook mirror of SLA transitions (circuit breaker + retry)
- EngineRunner: serializes passes and owns per-call sessions
- APScheduler for the periodic engine pass
"""

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional

import httpx
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from helpdesk_sla.config import settings, EngineTrigger, NotificationType
from helpdesk_sla.shared.infrastructure.logging import get_logger, log_latency
from helpdesk_sla.sla.application.services import INotificationSink, SLAEngine, utc_now
from helpdesk_sla.sla.domain import (
    BreachPredictionReport,
    EngineRunSummary,
    NotificationBroadcast,
    TicketSlaTracking,
    TrackingPage,
)
from helpdesk_sla.sla.infrastructure.repositories import (
    SQLAlchemyAuditSink,
    SQLAlchemyNotificationSink,
    SQLAlchemyPolicyRepository,
    SQLAlchemyTicketActivityLog,
    SQLAlchemyTicketRepository,
    SQLAlchemyTrackingRepository,
)

logger = get_logger(__name__)


class CircuitState:
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Circuit breaker for the Slack webhook.

    States:
    - CLOSED: requests pass through
    - OPEN: after N failures, reject all requests for M seconds
    - HALF_OPEN: after the timeout, allow a trial request
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at: Optional[float] = None

    @property
    def state(self) -> str:
        if self._state == CircuitState.OPEN and self._opened_at is not None:
            if self._clock() - self._opened_at >= self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
        return self._state

    def allow_request(self) -> bool:
        return self.state in (CircuitState.CLOSED, CircuitState.HALF_OPEN)

    def record_success(self) -> None:
        self._failure_count = 0
        self._opened_at = None
        self._state = CircuitState.CLOSED

    def record_failure(self) -> None:
        self._failure_count += 1
        if self._state == CircuitState.HALF_OPEN or self._failure_count >= self.failure_threshold:
            self._state = CircuitState.OPEN
            self._opened_at = self._clock()
            logger.warning(
                "Circuit breaker opened",
                extra={
                    "failure_count": self._failure_count,
                    "recovery_timeout": self.recovery_timeout
                }
            )


@dataclass
class SlackTransitionMessage:
    """An SLA transition mirrored to the escalation channel."""
    ticket_id: str
    title: str
    body: str
    notification_type: str
    previous_status: Optional[str]
    next_status: Optional[str]
    trigger: Optional[str]


class SlackClient:
    """
    Slack webhook client with circuit breaker and retry logic.

    Sending never raises: failures are logged and reported as False.
    """

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        channel: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        retry_base_delay: float = 1.0
    ):
        self._webhook_url = webhook_url if webhook_url is not None else settings.slack_webhook_url
        self._channel = channel or settings.slack_channel
        self._timeout = timeout_seconds or settings.slack_timeout_seconds
        self._circuit_breaker = circuit_breaker or CircuitBreaker()
        self._http_client = http_client
        self._retry_base_delay = retry_base_delay

    @property
    def enabled(self) -> bool:
        return bool(self._webhook_url)

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    def _build_message(self, data: SlackTransitionMessage) -> Dict[str, Any]:
        """Build Slack Block Kit message."""
        is_breach = data.notification_type == NotificationType.SLA_BREACHED
        emoji = ":rotating_light:" if is_breach else ":warning:"

        blocks = [
            {
                "type": "header",
                "text": {"type": "plain_text", "text": f"{emoji} {data.title}", "emoji": True}
            },
            {
                "type": "section",
                "text": {"type": "mrkdwn", "text": data.body}
            },
            {
                "type": "context",
                "elements": [
                    {
                        "type": "mrkdwn",
                        "text": (
                            f"{data.previous_status} -> {data.next_status}"
                            f" | trigger: {data.trigger}"
                        )
                    }
                ]
            }
        ]

        return {"channel": self._channel, "text": data.title, "blocks": blocks}

    async def send_transition(
        self,
        data: SlackTransitionMessage,
        max_retries: int = 3
    ) -> bool:
        """
        Post a transition to the webhook.

        Returns:
            True if sent successfully, False otherwise
        """
        if not self.enabled:
            logger.debug("Slack webhook URL not configured, skipping notification")
            return False

        if not self._circuit_breaker.allow_request():
            logger.warning(
                "Circuit breaker open, skipping Slack notification",
                extra={"ticket_id": data.ticket_id}
            )
            return False

        message = self._build_message(data)

        for attempt in range(max_retries):
            try:
                client = await self._get_client()
                response = await client.post(self._webhook_url, json=message)

                if response.status_code == 200:
                    self._circuit_breaker.record_success()
                    logger.info(
                        "Slack notification sent",
                        extra={"ticket_id": data.ticket_id, "type": data.notification_type}
                    )
                    return True

                logger.warning(
                    "Slack webhook returned non-200",
                    extra={"status_code": response.status_code, "attempt": attempt + 1}
                )
            except httpx.HTTPError as e:
                logger.error(
                    "Slack notification failed",
                    extra={"error": str(e), "attempt": attempt + 1, "ticket_id": data.ticket_id}
                )

            if attempt < max_retries - 1:
                await asyncio.sleep(self._retry_base_delay * 2 ** attempt)

        self._circuit_breaker.record_failure()
        return False

    async def close(self) -> None:
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None


class SlackMirrorNotificationSink(INotificationSink):
    """
    Delivers in-app notifications through the wrapped sink, then mirrors
    AT_RISK and BREACHED transitions to Slack.

    Only the in-app count is reported back to the engine. Mirroring runs
    while the pass holds the engine lock and its row locks, so retries are
    capped by slack_mirror_max_retries (one attempt by default).
    """

    MIRRORED_TYPES = (NotificationType.SLA_AT_RISK, NotificationType.SLA_BREACHED)

    def __init__(
        self,
        inner: INotificationSink,
        slack_client: SlackClient,
        max_retries: Optional[int] = None
    ):
        self._inner = inner
        self._slack = slack_client
        self._max_retries = max_retries or settings.slack_mirror_max_retries

    async def broadcast(self, notification: NotificationBroadcast) -> int:
        created = await self._inner.broadcast(notification)

        if self._slack.enabled and notification.type in self.MIRRORED_TYPES:
            await self._slack.send_transition(SlackTransitionMessage(
                ticket_id=notification.resource_id,
                title=notification.title,
                body=notification.body,
                notification_type=notification.type,
                previous_status=notification.metadata.get("previousStatus"),
                next_status=notification.metadata.get("nextStatus"),
                trigger=notification.metadata.get("trigger"),
            ), max_retries=self._max_retries)

        return created


class EngineRunner:
    """
    Process-wide entry point to the SLA engine.

    Owns an asyncio.Lock so that passes, pauses and resumes never
    interleave inside one process; row locks taken on tracking reads cover
    other processes. Each call runs in its own session and commits on
    success.

    Manual passes wait for the lock. Automatic passes are coalesced: when
    one is already in progress the tick is skipped.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        slack_client: Optional[SlackClient] = None,
        clock: Callable[[], datetime] = utc_now,
        prediction_limit: Optional[int] = None
    ):
        self._session_factory = session_factory
        self._slack_client = slack_client
        self._clock = clock
        self._prediction_limit = prediction_limit or settings.sla_prediction_limit
        self._lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        """True while a pass, pause or resume holds the engine lock."""
        return self._lock.locked()

    def build_engine(self, session: AsyncSession) -> SLAEngine:
        notification_sink: INotificationSink = SQLAlchemyNotificationSink(session)
        if self._slack_client is not None and self._slack_client.enabled:
            notification_sink = SlackMirrorNotificationSink(notification_sink, self._slack_client)

        return SLAEngine(
            policy_repository=SQLAlchemyPolicyRepository(session),
            ticket_repository=SQLAlchemyTicketRepository(session),
            tracking_repository=SQLAlchemyTrackingRepository(session),
            notification_sink=notification_sink,
            audit_sink=SQLAlchemyAuditSink(session),
            activity_log=SQLAlchemyTicketActivityLog(session),
            clock=self._clock,
            prediction_limit=self._prediction_limit,
        )

    async def run_pass(
        self,
        actor_id: Optional[str] = None,
        trigger: str = EngineTrigger.MANUAL
    ) -> Optional[EngineRunSummary]:
        """
        Run one engine pass.

        Returns:
            The pass summary, or None when an automatic pass was skipped
            because another one is in progress
        """
        if trigger == EngineTrigger.AUTO and self._lock.locked():
            logger.info("SLA engine pass skipped, previous pass still running", extra={"trigger": trigger})
            return None

        async with self._lock:
            async with self._session_factory() as session:
                try:
                    with log_latency(logger, "sla_engine_pass", trigger=trigger):
                        summary = await self.build_engine(session).run_pass(actor_id, trigger)
                    await session.commit()
                except Exception:
                    await session.rollback()
                    raise
        return summary

    async def run_scheduled(self) -> None:
        """Scheduler job: automatic pass whose failure never kills the job."""
        try:
            await self.run_pass(None, EngineTrigger.AUTO)
        except Exception:
            logger.exception("Scheduled SLA engine pass failed")

    async def pause(
        self,
        ticket_id: str,
        actor_id: Optional[str],
        reason: Optional[str] = None
    ) -> TicketSlaTracking:
        async with self._lock:
            async with self._session_factory() as session:
                try:
                    tracking = await self.build_engine(session).pause(ticket_id, actor_id, reason)
                    await session.commit()
                except Exception:
                    await session.rollback()
                    raise
        return tracking

    async def resume(
        self,
        ticket_id: str,
        actor_id: Optional[str],
        reason: Optional[str] = None
    ) -> TicketSlaTracking:
        async with self._lock:
            async with self._session_factory() as session:
                try:
                    tracking = await self.build_engine(session).resume(ticket_id, actor_id, reason)
                    await session.commit()
                except Exception:
                    await session.rollback()
                    raise
        return tracking

    async def predict(self, window_hours: int) -> BreachPredictionReport:
        async with self._session_factory() as session:
            return await self.build_engine(session).predict(window_hours)

    async def find_tracking(
        self,
        status: Optional[str] = None,
        page: int = 1,
        page_size: int = 20
    ) -> TrackingPage:
        async with self._session_factory() as session:
            return await self.build_engine(session).find_tracking(status, page, page_size)


class SLAScheduler:
    """
    Wrapper for APScheduler running the periodic SLA engine pass.

    Manages the lifecycle of the scheduler and its single job.
    """

    JOB_ID = "sla_engine_pass"

    def __init__(self, interval_seconds: int = 60):
        self.interval_seconds = interval_seconds
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    async def start(self, job_func) -> None:
        """Start the scheduler with the given coroutine function."""
        if self._running:
            logger.warning("SLA scheduler already running")
            return

        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            job_func,
            "interval",
            seconds=self.interval_seconds,
            id=self.JOB_ID,
            name="SLA Engine Pass",
            misfire_grace_time=self.interval_seconds,
            max_instances=1,
            coalesce=True,
            replace_existing=True
        )
        self._scheduler.start()
        self._running = True

        logger.info("SLA scheduler started", extra={"interval_seconds": self.interval_seconds})

    async def stop(self) -> None:
        """Stop the scheduler without waiting on a pass in flight."""
        if not self._running:
            return

        if self._scheduler:
            self._scheduler.shutdown(wait=False)

        self._running = False
        logger.info("SLA scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._running
