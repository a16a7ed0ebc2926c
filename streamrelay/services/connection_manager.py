import logging
import uuid
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)


def new_connection_id() -> str:
    return f"conn_{uuid.uuid4().hex[:12]}"


@dataclass(frozen=True)
class ViewerConnection:
    id: str
    message_id: str
    viewer_id: str


class ConnectionManager:
    """Tracks open viewer stream connections per message."""

    def __init__(self):
        self._connections: dict[str, dict[str, ViewerConnection]] = {}

    def connect(
        self,
        message_id: str,
        viewer_id: str,
        connection_id: Optional[str] = None,
    ) -> ViewerConnection:
        """Register a new connection for a message."""
        connection = ViewerConnection(
            id=connection_id or new_connection_id(),
            message_id=message_id,
            viewer_id=viewer_id,
        )
        self._connections.setdefault(message_id, {})[connection.id] = connection
        logger.info(
            "Viewer %s connected to message %s (%s). Connections on message: %d",
            viewer_id,
            message_id,
            connection.id,
            self.count(message_id),
        )
        return connection

    def disconnect(self, connection: ViewerConnection) -> None:
        """Remove a connection; drops the message entry when it was the last one."""
        connections = self._connections.get(connection.message_id)
        if connections is not None:
            connections.pop(connection.id, None)
            if not connections:
                del self._connections[connection.message_id]
        logger.info(
            "Connection %s closed. Connections on message %s: %d",
            connection.id,
            connection.message_id,
            self.count(connection.message_id),
        )

    def count(self, message_id: str) -> int:
        return len(self._connections.get(message_id, {}))

    @property
    def total(self) -> int:
        return sum(len(c) for c in self._connections.values())
