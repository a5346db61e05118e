from typing import Any, Dict

SOCKET_NAMESPACE = '/ws'


def channel_for(room_id: str) -> str:
    return f"match:{room_id}"


class Transport:
    """Outbound half of a room's channel to its two endpoints."""

    room_id: str

    def broadcast(self, event: str, payload: Dict[str, Any]) -> None:
        raise NotImplementedError


class SocketIOTransport(Transport):
    """Broadcasts to every endpoint joined to the room's Socket.IO room."""

    def __init__(self, socketio, room_id: str, namespace: str = SOCKET_NAMESPACE):
        self._socketio = socketio
        self.room_id = room_id
        self.namespace = namespace

    def broadcast(self, event: str, payload: Dict[str, Any]) -> None:
        # socketio.emit works from background tasks as well as handlers
        self._socketio.emit(event, payload, to=channel_for(self.room_id), namespace=self.namespace)

    def __repr__(self):
        return f"<SocketIOTransport {channel_for(self.room_id)} ns={self.namespace}>"
