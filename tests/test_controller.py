"""
Tests for the viewer-side stream controller.

- Replace-not-append application of notifications
- Reconnect backoff, retry ceiling and manual retry
- Liveness watchdog and visibility gating
- The asyncio driver against scripted transports
"""
import asyncio
from contextlib import asynccontextmanager

import pytest


def _policy(**overrides):
    from streamrelay.client import ReconnectPolicy

    values = dict(base_delay=1.0, factor=2.0, max_delay=5.0, jitter=1.0, max_retries=3, rng=lambda: 0.5)
    values.update(overrides)
    return ReconnectPolicy(**values)


def _controller(**kwargs):
    from streamrelay.client import ClientStreamController

    kwargs.setdefault("policy", _policy())
    return ClientStreamController("m1", **kwargs)


def _initial(content, status="streaming", error=None):
    from streamrelay.models import MessageStatus, Message, MessageRole, Notification

    return Notification.initial(
        Message(
            id="m1",
            thread_id="t1",
            role=MessageRole.ASSISTANT,
            content=content,
            status=MessageStatus(status),
            error=error,
        )
    )


def _delta(fragment, full):
    from streamrelay.models import Notification

    return Notification.delta("m1", fragment, full)


def _complete(full):
    from streamrelay.models import Notification

    return Notification.complete("m1", full)


def _connected(controller):
    """Start the controller and open attempt 1."""
    from streamrelay.client import Start, TransportOpened

    action = controller.handle(Start())
    controller.handle(TransportOpened(action.connect))
    return action.connect


class TestReconnectPolicy:
    """Tests for ReconnectPolicy."""

    def test_exponential_growth(self):
        policy = _policy(jitter=0.0, max_delay=100.0)

        assert [policy.delay(n) for n in range(3)] == [1.0, 2.0, 4.0]

    def test_capped(self):
        policy = _policy(jitter=0.0)

        assert policy.delay(10) == 5.0

    def test_never_below_previous(self):
        values = iter([1.0, 0.0])
        policy = _policy(factor=1.0, jitter=2.0, rng=lambda: next(values))

        first = policy.delay(0)
        second = policy.delay(1, previous=first)

        assert first == 3.0
        assert second == 3.0

    def test_from_settings(self):
        from streamrelay.client import ReconnectPolicy
        from streamrelay.config import Settings

        policy = ReconnectPolicy.from_settings(Settings(client_max_retries=7, client_base_delay=0.5))

        assert policy.max_retries == 7
        assert policy.base_delay == 0.5

    def test_controller_from_settings(self):
        from streamrelay.client import ClientStreamController
        from streamrelay.config import Settings

        settings = Settings(client_liveness_timeout=12.0, client_max_retries=2)
        controller = ClientStreamController.from_settings("m1", None, settings)

        assert controller.liveness_timeout == 12.0
        assert controller.policy.max_retries == 2


class TestStreamMachine:
    def test_initial_state(self):
        from streamrelay.client import StreamMachine

        machine = StreamMachine()
        assert machine.state_id == "idle"
        assert not machine.is_live

    def test_terminal_states_are_final(self):
        from statemachine.exceptions import TransitionNotAllowed

        from streamrelay.client import StreamMachine

        machine = StreamMachine()
        machine.start()
        machine.opened()
        machine.finish()

        assert machine.is_done
        with pytest.raises(TransitionNotAllowed):
            machine.retry()


class TestApplyNotifications:
    """Tests for replace-not-append merging."""

    def test_initial_adopted_verbatim(self):
        from streamrelay.client import NotificationReceived

        controller = _controller()
        attempt = _connected(controller)

        controller.handle(NotificationReceived(attempt, _initial("Partial")))

        assert controller.view.content == "Partial"
        assert controller.view.connection == "connected"

    def test_duplicate_notifications_idempotent(self):
        from streamrelay.client import NotificationReceived

        controller = _controller()
        attempt = _connected(controller)

        for notification in [_initial("He"), _delta("llo", "Hello")]:
            controller.handle(NotificationReceived(attempt, notification))
        once = (controller.view.content, controller.view.status)

        for notification in [_initial("He"), _delta("llo", "Hello"), _delta("llo", "Hello")]:
            controller.handle(NotificationReceived(attempt, notification))
        # a replayed initial rewinds to the snapshot, the delta restores it
        assert (controller.view.content, controller.view.status) == once

    def test_complete_twice_same_view(self):
        from streamrelay.client import NotificationReceived
        from streamrelay.models import MessageStatus

        controller = _controller()
        attempt = _connected(controller)

        action = controller.handle(NotificationReceived(attempt, _complete("Done")))
        first = (controller.view.content, controller.view.status, controller.view.connection)
        controller.handle(NotificationReceived(attempt, _complete("Done")))

        assert action.close is True
        assert first == ("Done", MessageStatus.COMPLETE, "complete")
        assert (controller.view.content, controller.view.status, controller.view.connection) == first

    def test_server_error_is_terminal(self):
        from streamrelay.client import NotificationReceived, TransportFailed
        from streamrelay.models import MessageStatus, Notification

        controller = _controller()
        attempt = _connected(controller)

        controller.handle(NotificationReceived(attempt, Notification.failed("m1", "rate limited", "Par")))

        assert controller.view.status == MessageStatus.ERROR
        assert controller.view.error == "rate limited"
        assert controller.view.content == "Par"
        assert controller.view.local_error is False
        assert controller.view.connection == "error"
        # no reconnect after a terminal notification
        assert controller.handle(TransportFailed(attempt, "closed")).retry_in is None

    def test_initial_with_terminal_status(self):
        from streamrelay.client import NotificationReceived
        from streamrelay.models import MessageStatus

        controller = _controller()
        attempt = _connected(controller)

        action = controller.handle(NotificationReceived(attempt, _initial("All done", status="complete")))

        assert action.close is True
        assert controller.view.status == MessageStatus.COMPLETE
        assert controller.is_finished

    def test_heartbeat_changes_nothing(self):
        from streamrelay.client import NotificationReceived

        controller = _controller()
        attempt = _connected(controller)
        controller.handle(NotificationReceived(attempt, _initial("Hi")))

        action = controller.handle(NotificationReceived(attempt, None))

        assert action.connect is None and action.retry_in is None
        assert controller.view.content == "Hi"

    def test_other_message_ignored(self):
        from streamrelay.client import NotificationReceived
        from streamrelay.models import Notification

        controller = _controller()
        attempt = _connected(controller)

        controller.handle(NotificationReceived(attempt, Notification.complete("other", "x")))

        assert controller.view.content == ""
        assert not controller.is_finished


class TestReconnect:
    """Tests for backoff, ceiling and manual retry."""

    def test_retry_ceiling_and_non_decreasing_delays(self):
        from streamrelay.client import RetryDue, Start, TransportFailed

        controller = _controller()
        connects = []
        delays = []

        action = controller.handle(Start())
        while action.connect is not None:
            connects.append(action.connect)
            action = controller.handle(TransportFailed(action.connect, "refused"))
            if action.retry_in is None:
                break
            delays.append(action.retry_in)
            action = controller.handle(RetryDue(controller.attempt))

        assert len(connects) == 1 + 3
        assert delays == sorted(delays)
        assert all(d <= 5.0 for d in delays)
        assert controller.view.connection == "failed"
        assert controller.view.local_error is True
        assert controller.view.error

    def test_scenario_c_reconnect_mid_stream(self):
        from streamrelay.client import NotificationReceived, RetryDue, TransportFailed, TransportOpened
        from streamrelay.models import MessageStatus

        controller = _controller()
        attempt = _connected(controller)
        controller.handle(NotificationReceived(attempt, _initial("")))
        controller.handle(NotificationReceived(attempt, _delta("Partial resp", "Partial resp")))

        action = controller.handle(TransportFailed(attempt, "network down"))
        assert controller.view.connection == "reconnecting"
        assert controller.view.content == "Partial resp"

        action = controller.handle(RetryDue(attempt))
        second = action.connect
        controller.handle(TransportOpened(second))
        controller.handle(NotificationReceived(second, _initial("Partial resp")))
        controller.handle(NotificationReceived(second, _delta("onse", "Partial response")))
        controller.handle(NotificationReceived(second, _complete("Partial response")))

        assert controller.view.content == "Partial response"
        assert controller.view.status == MessageStatus.COMPLETE
        assert controller.view.retries == 0

    def test_stale_attempt_events_ignored(self):
        from streamrelay.client import NotificationReceived, RetryDue, TransportFailed

        controller = _controller()
        first = _connected(controller)
        controller.handle(TransportFailed(first, "down"))
        second = controller.handle(RetryDue(first)).connect

        controller.handle(NotificationReceived(first, _complete("stale")))
        action = controller.handle(TransportFailed(first, "late"))

        assert second == first + 1
        assert action.retry_in is None
        assert controller.view.content == ""
        assert controller.view.connection == "connecting"

    def test_liveness_timeout_reconnects(self):
        from streamrelay.client import LivenessTimeout

        controller = _controller()
        attempt = _connected(controller)

        action = controller.handle(LivenessTimeout(attempt))

        assert action.close is True
        assert action.retry_in is not None
        assert controller.view.connection == "reconnecting"

    def test_manual_retry_resets_counter(self):
        from streamrelay.client import ManualRetry, RetryDue, Start, TransportFailed

        controller = _controller(policy=_policy(max_retries=1))
        action = controller.handle(Start())
        controller.handle(TransportFailed(action.connect, "down"))
        action = controller.handle(RetryDue(controller.attempt))
        controller.handle(TransportFailed(action.connect, "down"))
        assert controller.view.connection == "failed"

        action = controller.handle(ManualRetry())

        assert action.connect == controller.attempt
        assert controller.view.retries == 0
        assert controller.view.error is None
        assert controller.view.connection == "connecting"

    def test_manual_retry_ignored_when_complete(self):
        from streamrelay.client import ManualRetry, NotificationReceived

        controller = _controller()
        attempt = _connected(controller)
        controller.handle(NotificationReceived(attempt, _complete("Done")))

        assert controller.handle(ManualRetry()).connect is None

    def test_permanent_failure_gives_up(self):
        from streamrelay.client import Start, TransportFailed

        controller = _controller()
        action = controller.handle(Start())

        action = controller.handle(TransportFailed(action.connect, "403 forbidden", permanent=True))

        assert action.retry_in is None
        assert controller.view.connection == "failed"


class TestVisibility:
    """Tests for visibility-gated retries."""

    def test_hidden_defers_retry_until_visible(self):
        from streamrelay.client import TransportFailed, VisibilityChanged

        controller = _controller()
        attempt = _connected(controller)
        controller.handle(VisibilityChanged(False))

        action = controller.handle(TransportFailed(attempt, "down"))
        assert action.retry_in is None
        assert action.connect is None

        action = controller.handle(VisibilityChanged(True))
        assert action.connect == attempt + 1
        assert controller.view.connection == "connecting"

    def test_retry_due_while_hidden_deferred(self):
        from streamrelay.client import RetryDue, TransportFailed, VisibilityChanged

        controller = _controller()
        attempt = _connected(controller)
        controller.handle(TransportFailed(attempt, "down"))
        controller.handle(VisibilityChanged(False))

        assert controller.handle(RetryDue(attempt)).connect is None
        assert controller.handle(VisibilityChanged(True)).connect == attempt + 1

    def test_retry_due_while_hidden_counts_once(self):
        from streamrelay.client import RetryDue, TransportFailed, VisibilityChanged

        controller = _controller()
        attempt = _connected(controller)
        controller.handle(TransportFailed(attempt, "down"))
        controller.handle(VisibilityChanged(False))
        controller.handle(RetryDue(attempt))

        action = controller.handle(VisibilityChanged(True))
        assert controller.view.retries == 1

        reconnects = 0
        while action.connect is not None:
            reconnects += 1
            action = controller.handle(TransportFailed(action.connect, "down"))
            if action.retry_in is None:
                break
            action = controller.handle(RetryDue(controller.attempt))

        assert reconnects == 3
        assert controller.view.connection == "failed"

    def test_failure_while_hidden_counts_once(self):
        from streamrelay.client import RetryDue, TransportFailed, VisibilityChanged

        controller = _controller()
        attempt = _connected(controller)
        controller.handle(VisibilityChanged(False))
        controller.handle(TransportFailed(attempt, "down"))
        assert controller.view.retries == 1

        action = controller.handle(VisibilityChanged(True))
        assert controller.view.retries == 1

        reconnects = 0
        while action.connect is not None:
            reconnects += 1
            action = controller.handle(TransportFailed(action.connect, "down"))
            if action.retry_in is None:
                break
            action = controller.handle(RetryDue(controller.attempt))

        assert reconnects == 3
        assert controller.view.connection == "failed"

    def test_visible_without_pending_retry_is_noop(self):
        from streamrelay.client import VisibilityChanged

        controller = _controller()
        _connected(controller)

        action = controller.handle(VisibilityChanged(True))
        assert action.connect is None


class ScriptedTransport:
    """Each open() plays the next script: a list of items, then an optional error."""

    def __init__(self, *scripts):
        self.scripts = list(scripts)
        self.opened = 0

    @asynccontextmanager
    async def open(self, message_id):
        self.opened += 1
        script = self.scripts.pop(0) if self.scripts else ([], ConnectionError("refused"))
        items, error = script

        async def events():
            for item in items:
                await asyncio.sleep(0)
                if item == "hang":
                    await asyncio.Event().wait()
                yield item
            if error is not None:
                raise error

        yield events()


async def _no_sleep(delay):
    await asyncio.sleep(0)


class TestControllerRun:
    """Tests for the asyncio driver."""

    @pytest.mark.asyncio
    async def test_runs_to_completion_across_reconnect(self):
        from streamrelay.models import MessageStatus

        transport = ScriptedTransport(
            ([_initial(""), _delta("Partial resp", "Partial resp")], ConnectionError("reset")),
            ([_initial("Partial resp"), _delta("onse", "Partial response"), _complete("Partial response")], None),
        )
        controller = _controller(transport=transport, sleep=_no_sleep)

        view = await asyncio.wait_for(controller.run(), 2)

        assert view.status == MessageStatus.COMPLETE
        assert view.content == "Partial response"
        assert transport.opened == 2

    @pytest.mark.asyncio
    async def test_liveness_watchdog(self):
        from streamrelay.models import MessageStatus

        transport = ScriptedTransport(
            ([_initial("Hi"), "hang"], None),
            ([_initial("Hi"), _complete("Hi there")], None),
        )
        controller = _controller(transport=transport, sleep=_no_sleep, liveness_timeout=0.05)

        view = await asyncio.wait_for(controller.run(), 2)

        assert view.status == MessageStatus.COMPLETE
        assert view.content == "Hi there"
        assert transport.opened == 2

    @pytest.mark.asyncio
    async def test_gives_up_then_close(self):
        transport = ScriptedTransport()
        updates = []

        def on_update(view):
            updates.append(view.connection)
            if view.connection == "failed":
                controller.close()

        controller = _controller(transport=transport, sleep=_no_sleep, on_update=on_update)

        view = await asyncio.wait_for(controller.run(), 2)

        assert view.connection == "failed"
        assert view.local_error is True
        assert transport.opened == 1 + 3
        assert "reconnecting" in updates

    @pytest.mark.asyncio
    async def test_manual_reconnect_after_failure(self):
        from streamrelay.models import MessageStatus

        transport = ScriptedTransport(
            ([], ConnectionError("refused")),
            ([], ConnectionError("refused")),
            ([_initial("Back"), _complete("Back online")], None),
        )

        def on_update(view):
            if view.connection == "failed":
                controller.reconnect()

        controller = _controller(
            transport=transport,
            sleep=_no_sleep,
            policy=_policy(max_retries=1),
            on_update=on_update,
        )

        view = await asyncio.wait_for(controller.run(), 2)

        assert view.status == MessageStatus.COMPLETE
        assert view.content == "Back online"
        assert transport.opened == 3

    @pytest.mark.asyncio
    async def test_requires_transport(self):
        controller = _controller()

        with pytest.raises(RuntimeError):
            await controller.run()
