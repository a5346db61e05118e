import logging
import threading
import uuid
from typing import Dict, Iterable, List, Optional

from duel.errors import InvalidRequest, NotFound
from duel.models import DIFFICULTIES
from duel.services.match.messages import MatchAborted, MatchExpired, MatchMessage
from duel.services.match.room import Room, RoomStatus

logger = logging.getLogger(__name__)


class RoomRegistry:
    """Process-wide table of active rooms.

    The lock only guards the table itself; per-room work runs in each room's
    actor, so rooms never wait on each other.
    """

    def __init__(self, scheduler, expiry_sec: float = 300, total_rounds: int = 10):
        self._scheduler = scheduler
        self._expiry_sec = expiry_sec
        self._total_rounds = total_rounds
        self._rooms: Dict[str, Room] = {}
        self._lock = threading.Lock()

    def __len__(self):
        with self._lock:
            return len(self._rooms)

    def __contains__(self, room_id):
        with self._lock:
            return room_id in self._rooms

    def create(self, participants: Iterable, difficulty: str, display_names: Optional[Dict[str, str]] = None) -> str:
        ids: List[str] = [str(p) for p in participants if p is not None and str(p) != '']
        if len(ids) != 2 or len(set(ids)) != 2:
            raise InvalidRequest('A match needs exactly two distinct players')
        if difficulty not in DIFFICULTIES:
            raise InvalidRequest(f'Unknown difficulty {difficulty!r}')

        names = {pid: (display_names or {}).get(pid) or pid for pid in ids}
        room = Room(
            id=str(uuid.uuid4()),
            participants=ids,
            difficulty=difficulty,
            total_rounds=self._total_rounds,
            display_names=names,
        )
        with self._lock:
            self._rooms[room.id] = room
        self.arm_timer(room, self._expiry_sec, 'expiry', MatchExpired)
        room.status = RoomStatus.AWAITING_PLAYERS
        logger.info(f"[room-create] room={room.id} players={ids} difficulty={difficulty} expiry={self._expiry_sec}s")
        return room.id

    def find(self, room_id) -> Optional[Room]:
        with self._lock:
            return self._rooms.get(room_id)

    def get(self, room_id) -> Room:
        room = self.find(room_id)
        if room is None:
            raise NotFound(f'Room {room_id} not found')
        return room

    def attach(self, room_id, session) -> None:
        self.get(room_id).session = session

    def remove(self, room_id, reason: str) -> bool:
        """Discard a room and cancel its timer. Removing twice is a no-op."""
        with self._lock:
            room = self._rooms.pop(room_id, None)
        if room is None:
            return False
        self.cancel_timer(room)
        room.status = RoomStatus.ENDED
        if room.end_reason is None:
            room.end_reason = reason
        logger.info(f"[room-remove] room={room_id} reason={reason} active={len(self)}")
        return True

    def shutdown(self) -> None:
        """End every live room; rooms with a session get their matchEnded broadcast."""
        with self._lock:
            rooms = list(self._rooms.values())
        for room in rooms:
            if room.session is not None:
                room.session.tell(MatchAborted('shutdown'))
            self.remove(room.id, 'shutdown')

    # ---- timers ----

    def arm_timer(self, room: Room, delay: float, label: str, message_cls) -> int:
        """Replace the room's outstanding timer with a new one."""
        self.cancel_timer(room)
        room.timer_generation += 1
        generation = room.timer_generation
        room.timer = self._scheduler.call_later(delay, label, self.deliver, room.id, message_cls(generation))
        return generation

    def cancel_timer(self, room: Room) -> None:
        if room.timer is not None:
            room.timer.cancel()
            room.timer = None

    def deliver(self, room_id, message: MatchMessage) -> bool:
        """Hand ``message`` to the room's actor if the room still exists."""
        room = self.find(room_id)
        if room is None:
            logger.info(f"[timer-abort] room={room_id} gone message={message!r}")
            return False
        if room.session is None:
            # Nothing attached yet; only the expiry timer can act on the room
            if isinstance(message, MatchExpired) and message.generation == room.timer_generation:
                self.remove(room_id, 'timeout')
                return True
            return False
        room.session.tell(message)
        return True
