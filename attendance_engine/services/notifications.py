from __future__ import annotations

import enum
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Protocol

from sqlalchemy.orm import Session

from attendance_engine.db import SessionLocal
from attendance_engine.models import (
    AdminNotification,
    AdminNotificationType,
    BranchNotification,
    BranchNotificationType,
)
from attendance_engine.settings import get_settings

logger = logging.getLogger("app.notifications")


class NotificationAudience(str, enum.Enum):
    ADMIN = "ADMIN"
    BRANCH = "BRANCH"


@dataclass(frozen=True, slots=True)
class NotificationEvent:
    audience: NotificationAudience
    type: AdminNotificationType | BranchNotificationType
    title: str
    message: str
    employee_id: int | None = None
    branch_id: int | None = None


def admin_event(
    type_: AdminNotificationType,
    title: str,
    message: str,
    *,
    employee_id: int | None = None,
) -> NotificationEvent:
    return NotificationEvent(
        audience=NotificationAudience.ADMIN,
        type=type_,
        title=title,
        message=message,
        employee_id=employee_id,
    )


def branch_event(
    branch_id: int | None,
    type_: BranchNotificationType,
    title: str,
    message: str,
    *,
    employee_id: int | None = None,
) -> NotificationEvent | None:
    if branch_id is None:
        return None
    return NotificationEvent(
        audience=NotificationAudience.BRANCH,
        type=type_,
        title=title,
        message=message,
        employee_id=employee_id,
        branch_id=branch_id,
    )


class Notifier(Protocol):
    def emit(self, event: NotificationEvent | None) -> None: ...


def write_notification(db: Session, event: NotificationEvent) -> AdminNotification | BranchNotification:
    if event.audience == NotificationAudience.BRANCH:
        row: AdminNotification | BranchNotification = BranchNotification(
            branch_id=event.branch_id,
            type=BranchNotificationType(event.type),
            title=event.title,
            message=event.message,
            employee_id=event.employee_id,
        )
    else:
        row = AdminNotification(
            type=AdminNotificationType(event.type),
            title=event.title,
            message=event.message,
            employee_id=event.employee_id,
        )
    db.add(row)
    db.commit()
    return row


def deliver(event: NotificationEvent, session_factory: Callable[[], Session] = SessionLocal) -> bool:
    try:
        with session_factory() as db:
            write_notification(db, event)
    except Exception:
        logger.exception(
            "notification_delivery_failed",
            extra={
                "audience": event.audience.value,
                "notification_type": str(getattr(event.type, "value", event.type)),
                "employee_id": event.employee_id,
                "branch_id": event.branch_id,
            },
        )
        return False
    logger.info(
        "notification_delivered",
        extra={
            "audience": event.audience.value,
            "notification_type": str(getattr(event.type, "value", event.type)),
            "employee_id": event.employee_id,
        },
    )
    return True


class InlineNotifier:
    """Writes each event immediately in its own session."""

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal) -> None:
        self._session_factory = session_factory

    def emit(self, event: NotificationEvent | None) -> None:
        if event is None:
            return
        deliver(event, self._session_factory)


class QueuedNotifier:
    """Hands events to a single background worker.

    The caller never waits on the sink; delivery errors end up in the
    ``notification_delivery_failed`` log line and nowhere else.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        executor: ThreadPoolExecutor | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="notifications")

    def emit(self, event: NotificationEvent | None) -> None:
        if event is None:
            return
        try:
            self._executor.submit(deliver, event, self._session_factory)
        except RuntimeError:
            # Executor already shut down.
            logger.warning(
                "notification_queue_closed",
                extra={"notification_type": str(getattr(event.type, "value", event.type))},
            )

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


def safe_emit(notifier: Notifier, event: NotificationEvent | None) -> None:
    try:
        notifier.emit(event)
    except Exception:
        logger.exception("notification_emit_failed")


_NOTIFIER_LOCK = threading.Lock()
_NOTIFIER: QueuedNotifier | InlineNotifier | None = None


def get_notifier() -> Notifier:
    global _NOTIFIER
    with _NOTIFIER_LOCK:
        if _NOTIFIER is None:
            if get_settings().notification_worker_enabled:
                _NOTIFIER = QueuedNotifier()
            else:
                _NOTIFIER = InlineNotifier()
        return _NOTIFIER


def shutdown_notifier() -> None:
    global _NOTIFIER
    with _NOTIFIER_LOCK:
        notifier = _NOTIFIER
        _NOTIFIER = None
    if isinstance(notifier, QueuedNotifier):
        notifier.shutdown(wait=True)
