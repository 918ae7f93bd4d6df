"""
Notification dispatcher (worker side of the notification queue).

One sweep releases expired claims, claims due tasks one by one, sends each
outside any database transaction and records the outcome against the claim.
"""
from __future__ import annotations

import logging
import random
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable
from uuid import UUID

from django.utils import timezone

from ordering.config import DispatchConfig
from ordering.domain.errors import ExhaustedRetryError, TransientDeliveryError
from ordering.infra.mailer import DjangoEmailSender, EmailSender, OutboundEmail
from ordering.infra.notification_queue import ClaimedTask, NotificationQueueRepository
from ordering.infra.pii_masker import mask_email
from ordering.infra.retry import next_attempt_at


logger = logging.getLogger(__name__)


@dataclass
class DispatchReport:
    released: int = 0
    claimed: int = 0
    sent: int = 0
    failed: int = 0
    exhausted: int = 0
    skipped: int = 0


class NotificationDispatcher:
    """Delivers due notification tasks with bounded retries."""

    def __init__(
        self,
        config: DispatchConfig | None = None,
        sender: EmailSender | None = None,
        queue: NotificationQueueRepository | None = None,
        clock: Callable[[], datetime] = timezone.now,
        rng: random.Random | None = None,
    ):
        self.config = config or DispatchConfig.from_settings()
        self.sender = sender or DjangoEmailSender(
            from_email=self.config.from_email,
            timeout=self.config.send_timeout_seconds,
        )
        self.queue = queue or NotificationQueueRepository()
        self.clock = clock
        self.rng = rng or random.Random()
        self._executor = self._new_executor()

    def _new_executor(self) -> ThreadPoolExecutor:
        return ThreadPoolExecutor(
            max_workers=self.config.send_concurrency,
            thread_name_prefix="notification-send",
        )

    def close(self) -> None:
        self._executor.shutdown(wait=False)

    def dispatch_due(self, limit: int | None = None) -> DispatchReport:
        """Run one sweep over due tasks."""
        report = DispatchReport()
        now = self.clock()
        report.released = self.queue.release_stale_claims(
            now,
            timedelta(seconds=self.config.claim_ttl_seconds),
            self.config.max_attempts,
        )

        task_ids = self.queue.due_task_ids(
            now,
            self.config.max_attempts,
            limit or self.config.batch_size,
        )
        for task_id in task_ids:
            self._dispatch(task_id, report)

        if task_ids:
            logger.info(
                "notification_sweep_finished",
                extra={
                    "claimed": report.claimed,
                    "sent": report.sent,
                    "failed": report.failed,
                    "exhausted": report.exhausted,
                    "skipped": report.skipped,
                },
            )
        return report

    def dispatch_one(self, task_id: UUID) -> DispatchReport:
        """Attempt a single task now, if it is due."""
        report = DispatchReport()
        self._dispatch(task_id, report)
        return report

    def _dispatch(self, task_id: UUID, report: DispatchReport) -> None:
        task = self.queue.claim(task_id, self.clock(), self.config.max_attempts)
        if task is None:
            report.skipped += 1
            return
        report.claimed += 1

        try:
            self._send(task)
        except TransientDeliveryError as e:
            if self._record_failure(task, e):
                report.exhausted += 1
            else:
                report.failed += 1
            return

        if self.queue.mark_sent(task, self.clock()):
            report.sent += 1
            logger.info(
                "notification_sent",
                extra={
                    "task_id": str(task.id),
                    "type": task.type,
                    "attempt": task.attempt_count,
                    "recipient": mask_email(task.recipient_email),
                },
            )
        else:
            logger.warning("notification_claim_lost", extra={"task_id": str(task.id)})

    def _send(self, task: ClaimedTask) -> None:
        email = OutboundEmail(
            to_email=task.recipient_email,
            to_name=task.recipient_name,
            subject=task.subject,
            html=task.html_body,
            text=task.text_body,
        )
        future = self._executor.submit(self.sender.send, email)
        timeout = self.config.send_timeout_seconds
        try:
            future.result(timeout=timeout)
        except FutureTimeout:
            if not future.cancel():
                # A running send cannot be interrupted; later sends get fresh threads.
                logger.warning("notification_send_abandoned", extra={"task_id": str(task.id)})
                self._executor.shutdown(wait=False)
                self._executor = self._new_executor()
            raise TransientDeliveryError(f"send timed out after {timeout}s") from None
        except Exception as e:
            raise TransientDeliveryError(f"{type(e).__name__}: {e}") from e

    def _record_failure(self, task: ClaimedTask, error: TransientDeliveryError) -> bool:
        """Persist a failed attempt. Returns True when the task became terminal."""
        now = self.clock()
        terminal = task.attempt_count >= self.config.max_attempts
        retry_at = None
        last_error = error.message
        if terminal:
            exhausted = ExhaustedRetryError(task.id, task.attempt_count, error.message)
            last_error = exhausted.message
        else:
            retry_at = next_attempt_at(
                now,
                task.attempt_count,
                jitter_seconds=self.config.jitter_seconds,
                rng=self.rng,
            )

        if not self.queue.mark_failed(task, now, last_error, retry_at):
            logger.warning("notification_claim_lost", extra={"task_id": str(task.id)})
            return False

        if terminal:
            logger.error(
                "notification_exhausted",
                extra={
                    "task_id": str(task.id),
                    "type": task.type,
                    "attempts": task.attempt_count,
                    "error": exhausted.message,
                },
            )
        else:
            logger.warning(
                "notification_send_failed",
                extra={
                    "task_id": str(task.id),
                    "type": task.type,
                    "attempt": task.attempt_count,
                    "next_attempt_at": retry_at.isoformat(),
                    "error": error.message,
                },
            )
        return terminal
