"""Notification enqueue path and in-app notification reads."""

from __future__ import annotations

import asyncio
import itertools
import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from contentos.events.bus import EventBus
from contentos.events.types import EventType
from contentos.models.card import ContentCard
from contentos.models.notification import Notification, NotificationJob
from contentos.storage.base import StorageBackend

logger = logging.getLogger(__name__)


class NotificationQueue:
    """Priority job queue drained by background workers into the store.

    Deadline jobs run before everything else; ties run in enqueue order.
    """

    def __init__(self, store: StorageBackend, *, workers: int = 1) -> None:
        self._store = store
        self._worker_count = max(1, workers)
        self._queue: asyncio.PriorityQueue[tuple[int, int, NotificationJob]] = (
            asyncio.PriorityQueue()
        )
        self._counter = itertools.count()
        self._workers: list[asyncio.Task[None]] = []

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._workers)

    async def enqueue(self, job: NotificationJob) -> NotificationJob:
        await self._queue.put((job.priority, next(self._counter), job))
        logger.info("Enqueued notification job %s: %s for user %s", job.id, job.type, job.user_id)
        return job

    async def start(self) -> None:
        if self.running:
            return
        self._workers = [
            asyncio.create_task(self._work(), name=f"notification-worker-{i}")
            for i in range(self._worker_count)
        ]

    async def stop(self) -> None:
        """Cancel the workers. Jobs still queued stay queued for ``drain``."""
        if not self._workers:
            return
        for task in self._workers:
            task.cancel()
        for task in self._workers:
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info("Stopped %d notification workers", len(self._workers))
        self._workers = []

    async def join(self) -> None:
        """Wait until every queued job has been handled."""
        if self.running:
            await self._queue.join()
        else:
            await self.drain()

    async def drain(self) -> int:
        """Process queued jobs inline. Returns the number delivered."""
        delivered = 0
        while not self._queue.empty():
            _, _, job = self._queue.get_nowait()
            try:
                if await self._deliver(job):
                    delivered += 1
            finally:
                self._queue.task_done()
        return delivered

    async def _work(self) -> None:
        while True:
            _, _, job = await self._queue.get()
            try:
                await self._deliver(job)
            finally:
                self._queue.task_done()

    async def _deliver(self, job: NotificationJob) -> bool:
        try:
            notification = job.to_notification()
            await self._store.insert_notification(notification.to_storage())
        except Exception:
            logger.exception("Failed to deliver notification job %s", job.id)
            return False
        logger.debug("Delivered notification %s to user %s", notification.id, job.user_id)
        return True


class NotificationService:
    """Turns domain events into notification jobs and serves the inbox."""

    def __init__(self, store: StorageBackend, event_bus: EventBus, queue: NotificationQueue) -> None:
        self._store = store
        self._queue = queue
        event_bus.subscribe(
            {
                EventType.CARD_ASSIGNED: self._on_assigned,
                EventType.COMMENT_MENTIONED: self._on_mentioned,
                EventType.CARD_MOVED: self._on_moved,
                EventType.CARD_APPROVED: self._on_approved,
            }
        )

    @property
    def queue(self) -> NotificationQueue:
        return self._queue

    async def enqueue(
        self,
        *,
        type: str,
        user_id: str,
        title: str,
        message: str,
        card_id: str | None = None,
        comment_id: str | None = None,
    ) -> NotificationJob:
        job = NotificationJob(
            type=type,
            user_id=user_id,
            title=title,
            message=message,
            card_id=card_id,
            comment_id=comment_id,
        )
        return await self._queue.enqueue(job)

    # --- Event listeners ---

    async def _on_assigned(self, _event: EventType, data: dict[str, Any]) -> None:
        if data.get("user_id") == data.get("actor_id"):
            return
        await self.enqueue(
            type="assignment",
            user_id=data["user_id"],
            title="New assignment",
            message=f"You were assigned to \"{data.get('card_title', '')}\"",
            card_id=data.get("card_id"),
        )

    async def _on_mentioned(self, _event: EventType, data: dict[str, Any]) -> None:
        if data.get("user_id") == data.get("actor_id"):
            return
        author = data.get("actor_name") or "Someone"
        await self.enqueue(
            type="mention",
            user_id=data["user_id"],
            title="You were mentioned",
            message=f"{author} mentioned you on \"{data.get('card_title', '')}\"",
            card_id=data.get("card_id"),
            comment_id=data.get("comment_id"),
        )

    async def _on_moved(self, _event: EventType, data: dict[str, Any]) -> None:
        for user_id in data.get("recipients", []):
            if user_id == data.get("actor_id"):
                continue
            await self.enqueue(
                type="stage_change",
                user_id=user_id,
                title="Card moved",
                message=(
                    f"\"{data.get('card_title', '')}\" moved from "
                    f"{data.get('from_stage')} to {data.get('to_stage')}"
                ),
                card_id=data.get("card_id"),
            )

    async def _on_approved(self, _event: EventType, data: dict[str, Any]) -> None:
        verdict = "approved" if data.get("approved") else "rejected"
        for user_id in data.get("recipients", []):
            if user_id == data.get("actor_id"):
                continue
            await self.enqueue(
                type="approval",
                user_id=user_id,
                title=f"Content {verdict}",
                message=f"\"{data.get('card_title', '')}\" was {verdict}",
                card_id=data.get("card_id"),
            )

    async def enqueue_deadline_reminders(
        self, team_id: str, *, within_hours: int = 24, now: datetime | None = None
    ) -> list[NotificationJob]:
        """Queue reminders for unfinished cards due within the window."""
        now = now or datetime.now(UTC)
        horizon = now + timedelta(hours=within_hours)
        jobs: list[NotificationJob] = []
        for row in await self._store.list_cards(team_id):
            card = ContentCard(**row)
            if not card.due_date or card.status == "completed":
                continue
            try:
                due = datetime.fromisoformat(card.due_date)
            except ValueError:
                logger.warning("Unparseable due date on card %s: %s", card.id, card.due_date)
                continue
            if due.tzinfo is None:
                due = due.replace(tzinfo=UTC)
            if not now <= due <= horizon:
                continue

            recipients = {a["user_id"] for a in await self._store.list_assignments(card.id)}
            if card.assigned_to:
                recipients.add(card.assigned_to)
            for user_id in sorted(recipients):
                jobs.append(
                    await self.enqueue(
                        type="deadline",
                        user_id=user_id,
                        title="Deadline approaching",
                        message=f"\"{card.title}\" is due {card.due_date}",
                        card_id=card.id,
                    )
                )
        return jobs

    # --- Inbox ---

    async def list_notifications(
        self, user_id: str, *, unread_only: bool = False, limit: int = 20, offset: int = 0
    ) -> list[Notification]:
        rows = await self._store.list_notifications(
            user_id, unread_only=unread_only, limit=limit, offset=offset
        )
        return [Notification(**row) for row in rows]

    async def unread_count(self, user_id: str) -> int:
        return await self._store.count_unread_notifications(user_id)

    async def mark_read(self, user_id: str, notification_id: str) -> bool:
        return await self._store.mark_notification_read(notification_id, user_id)

    async def mark_all_read(self, user_id: str) -> int:
        return await self._store.mark_all_notifications_read(user_id)
