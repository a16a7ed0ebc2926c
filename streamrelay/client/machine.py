"""
Viewer-side connection state machine.

Uses python-statemachine for the legal transitions; the controller decides
which event to send.
"""
from statemachine import State, StateMachine


class StreamMachine(StateMachine):
    """
    Connection lifecycle of one viewer following one message.

    ``failed`` is the local give-up state: the server never reported an
    error, so a manual retry may leave it. ``complete`` and ``error`` mirror
    the message's terminal status and are final.
    """

    idle = State(initial=True)
    connecting = State()
    connected = State()
    reconnecting = State()
    failed = State()
    complete = State(final=True)
    error = State(final=True)

    start = idle.to(connecting)
    opened = connecting.to(connected)
    transport_lost = connecting.to(reconnecting) | connected.to(reconnecting)
    retry = reconnecting.to(connecting)
    give_up = connecting.to(failed) | connected.to(failed) | reconnecting.to(failed)
    manual_retry = failed.to(connecting) | reconnecting.to(connecting)
    finish = connected.to(complete)
    fail = connected.to(error)

    @property
    def state_id(self) -> str:
        return self.current_state.id

    @property
    def is_live(self) -> bool:
        """A transport is open or being opened."""
        return self.connecting.is_active or self.connected.is_active

    @property
    def is_done(self) -> bool:
        return self.complete.is_active or self.error.is_active
