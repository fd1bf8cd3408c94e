"""
Composition root for the dashboard: one change-stream client, the live
student and grade collections, the statistics recalculator and the
notification history. Created on application startup, disposed on shutdown.
"""
from __future__ import annotations

from collections import deque

from fastapi import Request

from config.logging_config import logger
from config.settings import settings
from livesync.aggregation import AggregationRecalculator
from livesync.backend import RemoteBackend
from livesync.change_stream import ChangeStreamClient, ConnectionStatus
from livesync.notifications import Notification, Notifier
from livesync.reconciler import grade_reconciler, student_reconciler


class DashboardRuntime:
    def __init__(self, backend: RemoteBackend, stream: ChangeStreamClient | None = None) -> None:
        self.backend  = backend
        self.stream   = stream or ChangeStreamClient(backend)
        self.notifier = Notifier()
        self.students = student_reconciler(backend, self.stream, notifier=self.notifier)
        self.grades   = grade_reconciler(backend, self.stream, notifier=self.notifier)
        self.stats    = AggregationRecalculator(backend, self.stream)

        self.notifications: deque[Notification] = deque(maxlen=settings.notification_history)
        self.notifier.register(self.notifications.appendleft)
        self.notifier.register(self._log_notification)

    @staticmethod
    def _log_notification(notification: Notification) -> None:
        logger.info(
            f"[{notification.kind.value}] {notification.collection}/{notification.id} "
            f"{notification.display_name}"
        )

    async def start(self) -> None:
        logger.info("Starting realtime runtime …")
        await self.students.start()
        await self.grades.start()
        await self.stats.start()

    async def reconnect(self) -> None:
        await self.students.reconnect()
        await self.grades.reconnect()
        await self.stats.reconnect()

    def statuses(self) -> dict[str, ConnectionStatus]:
        return {
            "students": self.students.status,
            "grades":   self.grades.status,
            "stats":    self.stats.status,
        }

    async def dispose(self) -> None:
        await self.students.close()
        await self.grades.close()
        await self.stats.close()
        await self.stream.dispose()
        logger.info("Realtime runtime disposed")


def get_runtime(request: Request) -> DashboardRuntime:
    return request.app.state.runtime
