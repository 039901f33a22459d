from __future__ import annotations

import unittest
from unittest.mock import Mock

from sqlalchemy import select

from tests.support import make_session_factory, seed_branch
from attendance_engine.models import (
    AdminNotification,
    AdminNotificationType,
    BranchNotification,
    BranchNotificationType,
)
from attendance_engine.services.notifications import (
    InlineNotifier,
    QueuedNotifier,
    admin_event,
    branch_event,
    deliver,
    safe_emit,
)


class NotificationDeliveryTests(unittest.TestCase):
    def setUp(self) -> None:
        self.session_factory = make_session_factory()
        with self.session_factory() as db:
            self.branch_id = seed_branch(db).id

    def test_branch_event_without_branch_is_none(self) -> None:
        self.assertIsNone(branch_event(None, BranchNotificationType.GENERAL, "t", "m"))

    def test_deliver_writes_admin_and_branch_rows(self) -> None:
        self.assertTrue(
            deliver(admin_event(AdminNotificationType.LATE, "Late", "late arrival", employee_id=3), self.session_factory)
        )
        self.assertTrue(
            deliver(
                branch_event(self.branch_id, BranchNotificationType.EMPLOYEE_LATE, "Late", "late arrival"),
                self.session_factory,
            )
        )

        with self.session_factory() as db:
            admin_rows = db.scalars(select(AdminNotification)).all()
            branch_rows = db.scalars(select(BranchNotification)).all()
        self.assertEqual([row.type for row in admin_rows], [AdminNotificationType.LATE])
        self.assertEqual(admin_rows[0].employee_id, 3)
        self.assertFalse(admin_rows[0].is_read)
        self.assertEqual(branch_rows[0].branch_id, self.branch_id)

    def test_delivery_failure_is_logged_not_raised(self) -> None:
        def broken_factory():  # type: ignore[no-untyped-def]
            raise RuntimeError("database down")

        with self.assertLogs("app.notifications", level="ERROR") as logs:
            delivered = deliver(admin_event(AdminNotificationType.SYSTEM, "t", "m"), broken_factory)

        self.assertFalse(delivered)
        self.assertTrue(any("notification_delivery_failed" in line for line in logs.output))

    def test_inline_notifier_ignores_missing_event(self) -> None:
        factory = Mock()
        InlineNotifier(factory).emit(None)
        factory.assert_not_called()

    def test_queued_notifier_delivers_in_background(self) -> None:
        notifier = QueuedNotifier(self.session_factory)
        notifier.emit(admin_event(AdminNotificationType.OUTSIDE_ZONE, "Outside", "outside zone"))
        notifier.emit(None)
        notifier.shutdown(wait=True)

        with self.session_factory() as db:
            rows = db.scalars(select(AdminNotification)).all()
        self.assertEqual([row.type for row in rows], [AdminNotificationType.OUTSIDE_ZONE])

    def test_queued_notifier_after_shutdown_drops_event(self) -> None:
        notifier = QueuedNotifier(self.session_factory)
        notifier.shutdown(wait=True)

        with self.assertLogs("app.notifications", level="WARNING") as logs:
            notifier.emit(admin_event(AdminNotificationType.SYSTEM, "t", "m"))
        self.assertTrue(any("notification_queue_closed" in line for line in logs.output))

    def test_safe_emit_swallows_notifier_errors(self) -> None:
        notifier = Mock()
        notifier.emit.side_effect = RuntimeError("boom")

        with self.assertLogs("app.notifications", level="ERROR"):
            safe_emit(notifier, admin_event(AdminNotificationType.SYSTEM, "t", "m"))
        notifier.emit.assert_called_once()


if __name__ == "__main__":
    unittest.main()
