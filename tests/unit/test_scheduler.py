"""
Tests for the keyed delayed-task scheduler.
"""

import threading

from drms_core.offline.scheduler import DelayedTaskScheduler


class TestDelayedTaskScheduler:
    """Tests for DelayedTaskScheduler"""

    def test_runs_task_after_delay(self):
        """A scheduled task runs once and leaves no pending entry"""
        scheduler = DelayedTaskScheduler("test")
        done = threading.Event()

        scheduler.schedule("item-1", 0.01, done.set)

        assert done.wait(timeout=2)
        scheduler.shutdown()
        assert scheduler.pending() == []

    def test_reschedule_replaces_pending_task(self):
        """Only the latest task for a key runs"""
        scheduler = DelayedTaskScheduler("test")
        first, second = threading.Event(), threading.Event()

        scheduler.schedule("item-1", 30, first.set)
        scheduler.schedule("item-1", 0.01, second.set)

        assert second.wait(timeout=2)
        assert not first.is_set()
        scheduler.shutdown()

    def test_one_pending_entry_per_key(self):
        """Different keys are independent; the same key is not duplicated"""
        scheduler = DelayedTaskScheduler("test")

        scheduler.schedule("a", 30, lambda: None)
        scheduler.schedule("a", 30, lambda: None)
        scheduler.schedule("b", 30, lambda: None)

        assert scheduler.pending() == ["a", "b"]
        scheduler.shutdown()

    def test_cancel(self):
        """Cancelled tasks never run"""
        scheduler = DelayedTaskScheduler("test")
        fired = threading.Event()

        scheduler.schedule("item-1", 0.2, fired.set)

        assert scheduler.cancel("item-1") is True
        assert scheduler.cancel("item-1") is False
        assert not fired.wait(timeout=0.5)
        scheduler.shutdown()

    def test_shutdown_cancels_everything_and_is_idempotent(self):
        """Shutdown clears pending tasks and refuses new ones"""
        scheduler = DelayedTaskScheduler("test")
        scheduler.schedule("a", 30, lambda: None)
        scheduler.schedule("b", 30, lambda: None)

        scheduler.shutdown()
        scheduler.shutdown()

        assert scheduler.is_shutdown
        assert scheduler.pending() == []
        assert scheduler.schedule("c", 0.01, lambda: None) is False

    def test_failing_task_does_not_break_scheduler(self):
        """An exception in a task is logged, later tasks still run"""
        scheduler = DelayedTaskScheduler("test")
        done = threading.Event()

        def boom():
            raise RuntimeError("boom")

        scheduler.schedule("bad", 0.01, boom)
        scheduler.schedule("good", 0.05, done.set)

        assert done.wait(timeout=2)
        scheduler.shutdown()
