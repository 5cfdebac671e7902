import asyncio
import logging
from typing import Any, Dict, Optional, Set
from uuid import UUID

from fastapi import WebSocket

from config import settings_conf
from .fanout import RealtimeFanout
from .sequencer import BookingSequencer

logger = logging.getLogger(__name__)

# Queued after the last member leaves; stops the room's sender
ROOM_CLOSED = object()


class BookingRoom:
    """Members, reorder buffer and delivery queue of one booking."""

    def __init__(self, booking_id: UUID):
        self.booking_id = booking_id
        self.members: Set[UUID] = set()
        self.sequencer = BookingSequencer()
        self.queue: asyncio.Queue = asyncio.Queue()
        self.sender: Optional[asyncio.Task] = None
        self.gap_timer: Optional[asyncio.TimerHandle] = None


class ConnectionManager(RealtimeFanout):
    """WebSocket implementation of the realtime fan-out.

    Each booking room owns one queue drained by one sender task, so events
    leave in the order they were released by the room's sequencer without
    any lock held across socket I/O.
    """

    def __init__(self, gap_timeout: Optional[float] = None):
        # Map of user id -> live sockets of that user
        self.active_connections: Dict[UUID, Set[WebSocket]] = {}
        # Map of booking id -> room
        self.rooms: Dict[UUID, BookingRoom] = {}
        # Map of user id -> joined booking ids
        self.user_rooms: Dict[UUID, Set[UUID]] = {}
        self.gap_timeout = (
            gap_timeout if gap_timeout is not None else settings_conf['fanout_gap_timeout']
        )

    @property
    def connection_count(self) -> int:
        return sum(len(sockets) for sockets in self.active_connections.values())

    async def connect(self, websocket: WebSocket, user_id: UUID):
        """Register an authenticated WebSocket client."""
        self.active_connections.setdefault(user_id, set()).add(websocket)
        await self._send(user_id, websocket, {
            "type": "connection_status",
            "data": {
                "status": "connected",
                "user_id": str(user_id)
            }
        })

    def disconnect(self, user_id: UUID, websocket: Optional[WebSocket] = None):
        """Drop one socket of a user, or all of them when none is given."""
        sockets = self.active_connections.get(user_id)
        if sockets is None:
            return
        if websocket is None:
            sockets.clear()
        else:
            sockets.discard(websocket)
        if sockets:
            return

        del self.active_connections[user_id]
        for booking_id in self.user_rooms.pop(user_id, set()):
            self._remove_member(booking_id, user_id)

    def join_booking(self, user_id: UUID, booking_id: UUID):
        """Add a user to a booking room. Access is checked by the caller."""
        self._room(booking_id).members.add(user_id)
        self.user_rooms.setdefault(user_id, set()).add(booking_id)

    def leave_booking(self, user_id: UUID, booking_id: UUID):
        self._remove_member(booking_id, user_id)
        if user_id in self.user_rooms:
            self.user_rooms[user_id].discard(booking_id)

    def get_room_members(self, booking_id: UUID) -> Set[UUID]:
        room = self.rooms.get(booking_id)
        return set(room.members) if room else set()

    async def publish_to_booking(
        self,
        booking_id: UUID,
        sequence: Optional[int],
        event: Dict[str, Any]
    ) -> None:
        room = self.rooms.get(booking_id)
        if room is None:
            # Nobody is watching; delivery is at most once
            logger.debug(f"No listeners in booking {booking_id}, dropping {event.get('type')}")
            return
        if sequence is None:
            room.queue.put_nowait(event)
            return

        for ready in room.sequencer.push(sequence, event):
            room.queue.put_nowait(ready)
        self._schedule_gap_timer(room)

    async def publish_to_user(self, user_id: UUID, event: Dict[str, Any]) -> None:
        for websocket in list(self.active_connections.get(user_id, ())):
            await self._send(user_id, websocket, event)

    async def close(self):
        """Stop every room's sender task."""
        for room in self.rooms.values():
            if room.gap_timer:
                room.gap_timer.cancel()
            if room.sender and not room.sender.done():
                room.sender.cancel()
                try:
                    await room.sender
                except asyncio.CancelledError:
                    pass
        self.rooms.clear()

    def _room(self, booking_id: UUID) -> BookingRoom:
        room = self.rooms.get(booking_id)
        if room is None:
            room = self.rooms[booking_id] = BookingRoom(booking_id)
        if room.sender is None or room.sender.done():
            room.sender = asyncio.create_task(
                self._run_sender(room), name=f"fanout-{booking_id}"
            )
        return room

    def _remove_member(self, booking_id: UUID, user_id: UUID):
        room = self.rooms.get(booking_id)
        if room is None:
            return
        room.members.discard(user_id)
        if not room.members:
            self._discard_room(room)

    def _discard_room(self, room: BookingRoom):
        """Forget an empty room; its sender exits once the queue is drained."""
        del self.rooms[room.booking_id]
        if room.gap_timer:
            room.gap_timer.cancel()
            room.gap_timer = None
        room.queue.put_nowait(ROOM_CLOSED)
        logger.debug(f"Closed empty room of booking {room.booking_id}")

    def _schedule_gap_timer(self, room: BookingRoom):
        if not room.sequencer.pending:
            if room.gap_timer:
                room.gap_timer.cancel()
                room.gap_timer = None
            return
        if room.gap_timer is None:
            loop = asyncio.get_running_loop()
            room.gap_timer = loop.call_later(self.gap_timeout, self._on_gap_timeout, room)

    def _on_gap_timeout(self, room: BookingRoom):
        room.gap_timer = None
        if self.rooms.get(room.booking_id) is not room:
            return
        for ready in room.sequencer.skip_gap():
            room.queue.put_nowait(ready)
        self._schedule_gap_timer(room)

    async def _run_sender(self, room: BookingRoom):
        while True:
            event = await room.queue.get()
            if event is ROOM_CLOSED:
                room.queue.task_done()
                return
            try:
                for user_id in list(room.members):
                    for websocket in list(self.active_connections.get(user_id, ())):
                        await self._send(user_id, websocket, event)
            except Exception as e:
                logger.error(f"Fan-out to booking {room.booking_id} failed: {e}")
            finally:
                room.queue.task_done()

    async def _send(self, user_id: UUID, websocket: WebSocket, event: Dict[str, Any]):
        try:
            await websocket.send_json(event)
        except Exception as e:
            logger.warning(f"WebSocket send to {user_id} failed, dropping socket: {e}")
            self.disconnect(user_id, websocket)


# Global instance
manager = ConnectionManager()
