"""
Viewer-side stream client.

Usage:
    async with httpx.AsyncClient(base_url=url) as http:
        controller = ClientStreamController.from_settings(
            message_id,
            SSETransport(http, user_id),
            settings,
        )
        view = await controller.run()
"""

from .controller import (
    Action,
    ClientStreamController,
    LivenessTimeout,
    ManualRetry,
    NotificationReceived,
    RetryDue,
    Start,
    TransportFailed,
    TransportOpened,
    ViewState,
    VisibilityChanged,
)
from .machine import StreamMachine
from .policy import ReconnectPolicy
from .transport import SSETransport, StreamRejectedError

__all__ = [
    "Action",
    "ClientStreamController",
    "LivenessTimeout",
    "ManualRetry",
    "NotificationReceived",
    "ReconnectPolicy",
    "RetryDue",
    "SSETransport",
    "Start",
    "StreamMachine",
    "StreamRejectedError",
    "TransportFailed",
    "TransportOpened",
    "ViewState",
    "VisibilityChanged",
]
