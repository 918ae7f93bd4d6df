"""
Durable notification queue.

Tasks are rows; workers claim them with a single conditional UPDATE so a task
is in flight on at most one worker at a time.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID, uuid4

from django.db import models
from django.db.models import Count, F, Q

from ordering.domain.errors import ConflictError, NotificationNotFound
from ordering.domain.notification import (
    DISPATCHABLE_STATUSES,
    ENGAGEMENT_RANK,
    NewNotification,
    NotificationMetrics,
    NotificationState,
    NotificationStatus,
    NotificationType,
    TimeRange,
    rate,
)
from ordering.infra.models import CustomerORM, OrderORM, TimeStampedModel


logger = logging.getLogger(__name__)


NOTIFICATION_TYPE_CHOICES = tuple((t.value, t.name.replace("_", " ").title()) for t in NotificationType)
NOTIFICATION_STATUS_CHOICES = tuple((s.value, s.name.title()) for s in NotificationStatus)


class NotificationTaskORM(TimeStampedModel):
    """One outbound message. Rows are never deleted."""
    id = models.UUIDField(primary_key=True, default=uuid4, editable=False)
    type = models.CharField(max_length=50, choices=NOTIFICATION_TYPE_CHOICES)
    template_key = models.CharField(max_length=100)
    recipient_email = models.EmailField(max_length=255)
    recipient_name = models.CharField(max_length=255, blank=True, default="")
    customer = models.ForeignKey(
        CustomerORM,
        on_delete=models.PROTECT,
        related_name="notifications",
        null=True,
        blank=True,
    )
    order = models.ForeignKey(
        OrderORM,
        on_delete=models.PROTECT,
        related_name="notifications",
        null=True,
        blank=True,
    )
    subject = models.CharField(max_length=255)
    html_body = models.TextField()
    text_body = models.TextField(blank=True, default="")
    metadata = models.JSONField(default=dict, blank=True)

    status = models.CharField(max_length=20, choices=NOTIFICATION_STATUS_CHOICES, default="pending")
    attempt_count = models.PositiveIntegerField(default=0)
    is_terminal = models.BooleanField(default=False)
    last_attempt_at = models.DateTimeField(null=True, blank=True)
    next_attempt_at = models.DateTimeField(null=True, blank=True)
    claimed_at = models.DateTimeField(null=True, blank=True)
    claim_token = models.UUIDField(null=True, blank=True)
    last_error = models.TextField(blank=True, default="")

    sent_at = models.DateTimeField(null=True, blank=True)
    delivered_at = models.DateTimeField(null=True, blank=True)
    opened_at = models.DateTimeField(null=True, blank=True)
    clicked_at = models.DateTimeField(null=True, blank=True)
    bounced_at = models.DateTimeField(null=True, blank=True)
    bounce_reason = models.TextField(blank=True, default="")

    class Meta:
        indexes = [
            models.Index(fields=("status",)),
            models.Index(fields=("next_attempt_at",)),
            models.Index(fields=("order",)),
            models.Index(fields=("status", "next_attempt_at")),
        ]


@dataclass(frozen=True)
class ClaimedTask:
    """A task this worker owns until the outcome is recorded."""
    id: UUID
    claim_token: UUID
    attempt_count: int
    type: str
    recipient_email: str
    recipient_name: str
    subject: str
    html_body: str
    text_body: str


class NotificationQueueRepository:
    """Repository for notification tasks."""

    def add(self, notification: NewNotification) -> UUID:
        """Persist a validated, rendered notification as a pending task."""
        notification.validate()
        task = NotificationTaskORM.objects.create(
            type=notification.type.value,
            template_key=notification.template_key,
            recipient_email=notification.recipient.email.strip(),
            recipient_name=notification.recipient.name,
            customer_id=notification.recipient.customer_id,
            order_id=notification.order_id,
            subject=notification.message.subject,
            html_body=notification.message.html,
            text_body=notification.message.text,
            metadata=notification.metadata,
            status=NotificationStatus.PENDING.value,
        )
        return task.id

    def _due_filter(self, now: datetime, max_attempts: int) -> Q:
        retryable = Q(status=NotificationStatus.FAILED.value, attempt_count__lt=max_attempts)
        return (
            (Q(status=NotificationStatus.PENDING.value) | retryable)
            & Q(is_terminal=False)
            & (Q(next_attempt_at__isnull=True) | Q(next_attempt_at__lte=now))
        )

    def due_task_ids(self, now: datetime, max_attempts: int, limit: int) -> list[UUID]:
        """Ids of tasks due for an attempt, oldest schedule first."""
        return list(
            NotificationTaskORM.objects
            .filter(self._due_filter(now, max_attempts))
            .order_by(F("next_attempt_at").asc(nulls_first=True), "created_at")
            .values_list("id", flat=True)[:limit]
        )

    def claim(self, task_id: UUID, now: datetime, max_attempts: int) -> ClaimedTask | None:
        """
        Claim a due task and count the attempt in one conditional UPDATE.

        Returns None when the task is no longer due, typically because another
        worker claimed it first.
        """
        token = uuid4()
        updated = (
            NotificationTaskORM.objects
            .filter(self._due_filter(now, max_attempts), id=task_id)
            .update(
                status=NotificationStatus.SENDING.value,
                claim_token=token,
                claimed_at=now,
                last_attempt_at=now,
                next_attempt_at=None,
                attempt_count=F("attempt_count") + 1,
                updated_at=now,
            )
        )
        if updated == 0:
            return None

        task = NotificationTaskORM.objects.get(id=task_id, claim_token=token)
        return ClaimedTask(
            id=task.id,
            claim_token=token,
            attempt_count=task.attempt_count,
            type=task.type,
            recipient_email=task.recipient_email,
            recipient_name=task.recipient_name,
            subject=task.subject,
            html_body=task.html_body,
            text_body=task.text_body,
        )

    def mark_sent(self, task: ClaimedTask, now: datetime) -> bool:
        """Record a successful send. False when the claim was lost meanwhile."""
        updated = (
            NotificationTaskORM.objects
            .filter(id=task.id, claim_token=task.claim_token, status=NotificationStatus.SENDING.value)
            .update(
                status=NotificationStatus.SENT.value,
                sent_at=now,
                claim_token=None,
                claimed_at=None,
                last_error="",
                updated_at=now,
            )
        )
        return updated == 1

    def mark_failed(
        self,
        task: ClaimedTask,
        now: datetime,
        error: str,
        retry_at: datetime | None,
    ) -> bool:
        """Record a failed send; ``retry_at`` None makes the failure terminal."""
        updated = (
            NotificationTaskORM.objects
            .filter(id=task.id, claim_token=task.claim_token, status=NotificationStatus.SENDING.value)
            .update(
                status=NotificationStatus.FAILED.value,
                next_attempt_at=retry_at,
                is_terminal=retry_at is None,
                last_error=error[:2000],
                claim_token=None,
                claimed_at=None,
                updated_at=now,
            )
        )
        return updated == 1

    def release_stale_claims(
        self,
        now: datetime,
        claim_ttl: timedelta,
        max_attempts: int,
    ) -> int:
        """
        Turn claims older than ``claim_ttl`` into failures.

        The attempt was already counted at claim time. Tasks below the cap
        become due immediately, the rest become terminal.
        """
        stale = NotificationTaskORM.objects.filter(
            status=NotificationStatus.SENDING.value,
            claimed_at__lt=now - claim_ttl,
        )
        exhausted = stale.filter(attempt_count__gte=max_attempts).update(
            status=NotificationStatus.FAILED.value,
            is_terminal=True,
            next_attempt_at=None,
            claim_token=None,
            claimed_at=None,
            last_error="claim expired before the send outcome was recorded",
            updated_at=now,
        )
        retried = stale.filter(attempt_count__lt=max_attempts).update(
            status=NotificationStatus.FAILED.value,
            next_attempt_at=now,
            claim_token=None,
            claimed_at=None,
            last_error="claim expired before the send outcome was recorded",
            updated_at=now,
        )
        if exhausted or retried:
            logger.warning(
                "notification_claims_released",
                extra={"retried": retried, "exhausted": exhausted},
            )
        return exhausted + retried

    def get_state(self, task_id: UUID) -> NotificationState:
        try:
            task = NotificationTaskORM.objects.get(id=task_id)
        except NotificationTaskORM.DoesNotExist:
            raise NotificationNotFound(f"Notification {task_id} not found") from None
        return self._to_state(task)

    def queue_depth(self) -> int:
        """Tasks not yet finished: pending, in flight, or awaiting a retry."""
        return NotificationTaskORM.objects.filter(
            Q(status__in=[s.value for s in DISPATCHABLE_STATUSES]) | Q(status=NotificationStatus.SENDING.value),
            is_terminal=False,
        ).count()

    def metrics(self, time_range: TimeRange) -> NotificationMetrics:
        """Engagement counts for tasks created within ``time_range``."""
        counts = (
            NotificationTaskORM.objects
            .filter(created_at__gte=time_range.start, created_at__lte=time_range.end)
            .aggregate(
                sent=Count("id", filter=Q(sent_at__isnull=False)),
                delivered=Count("id", filter=Q(delivered_at__isnull=False)),
                opened=Count("id", filter=Q(opened_at__isnull=False)),
                clicked=Count("id", filter=Q(clicked_at__isnull=False)),
                bounced=Count("id", filter=Q(bounced_at__isnull=False)),
            )
        )
        sent = counts["sent"]
        return NotificationMetrics(
            sent_count=sent,
            delivered_count=counts["delivered"],
            opened_count=counts["opened"],
            clicked_count=counts["clicked"],
            bounced_count=counts["bounced"],
            delivery_rate=rate(counts["delivered"], sent),
            open_rate=rate(counts["opened"], sent),
            click_rate=rate(counts["clicked"], sent),
        )

    def track(
        self,
        task_id: UUID,
        status: NotificationStatus,
        now: datetime,
        reason: str = "",
    ) -> NotificationState:
        """
        Record provider feedback (delivered/opened/clicked/bounced).

        The timestamp is always stamped; the status only moves forward so
        late or out-of-order callbacks cannot rewind it.
        """
        try:
            task = NotificationTaskORM.objects.select_for_update().get(id=task_id)
        except NotificationTaskORM.DoesNotExist:
            raise NotificationNotFound(f"Notification {task_id} not found") from None

        current = NotificationStatus(task.status)
        if current not in ENGAGEMENT_RANK:
            raise ConflictError(f"Notification {task_id} has not been sent (status {current.value})")

        timestamp_field = f"{status.value}_at"
        if getattr(task, timestamp_field) is None:
            setattr(task, timestamp_field, now)
        if status == NotificationStatus.BOUNCED:
            task.bounce_reason = reason
            task.status = status.value
        elif current != NotificationStatus.BOUNCED and ENGAGEMENT_RANK[status] > ENGAGEMENT_RANK[current]:
            task.status = status.value
        task.save()
        return self._to_state(task)

    def suppress(self, task_id: UUID, now: datetime) -> NotificationState:
        """Stop automatic retries for an unsent task."""
        try:
            task = NotificationTaskORM.objects.select_for_update().get(id=task_id)
        except NotificationTaskORM.DoesNotExist:
            raise NotificationNotFound(f"Notification {task_id} not found") from None

        if NotificationStatus(task.status) in ENGAGEMENT_RANK:
            raise ConflictError(f"Notification {task_id} was already sent")

        task.status = NotificationStatus.FAILED.value
        task.is_terminal = True
        task.next_attempt_at = None
        task.claim_token = None
        task.claimed_at = None
        task.last_error = task.last_error or "suppressed by operator"
        task.save()
        return self._to_state(task)

    def _exhausted(self) -> Q:
        return Q(status=NotificationStatus.FAILED.value, is_terminal=True)

    def _requeue_values(self, now: datetime) -> dict:
        return {
            "status": NotificationStatus.PENDING.value,
            "is_terminal": False,
            "attempt_count": 0,
            "next_attempt_at": None,
            "updated_at": now,
        }

    def requeue(self, task_id: UUID, now: datetime) -> bool:
        """
        Make an exhausted task due again with a fresh attempt budget.

        Only terminal failures qualify, so repeating the call is a no-op.
        """
        updated = (
            NotificationTaskORM.objects
            .filter(self._exhausted(), id=task_id)
            .update(**self._requeue_values(now))
        )
        return updated == 1

    def requeue_exhausted(self, now: datetime) -> int:
        return NotificationTaskORM.objects.filter(self._exhausted()).update(**self._requeue_values(now))

    def list_states(
        self,
        status: NotificationStatus | None = None,
        notification_type: NotificationType | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[NotificationState]:
        """Tasks newest first."""
        tasks = NotificationTaskORM.objects.all()
        if status is not None:
            tasks = tasks.filter(status=status.value)
        if notification_type is not None:
            tasks = tasks.filter(type=notification_type.value)
        tasks = tasks.order_by("-created_at")[offset:offset + limit]
        return [self._to_state(task) for task in tasks]

    def _to_state(self, task: NotificationTaskORM) -> NotificationState:
        return NotificationState(
            id=task.id,
            type=NotificationType(task.type),
            status=NotificationStatus(task.status),
            attempt_count=task.attempt_count,
            is_terminal=task.is_terminal,
            created_at=task.created_at,
            last_attempt_at=task.last_attempt_at,
            next_attempt_at=task.next_attempt_at,
            sent_at=task.sent_at,
            last_error=task.last_error,
            recipient_email=task.recipient_email,
            subject=task.subject,
        )
