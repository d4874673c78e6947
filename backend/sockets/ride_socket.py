"""
Realtime channel for rides.

Every authenticated socket belongs to one user. Ride participants join a room
named after the ride id and receive chat relays, typing indicators, read
receipts and lifecycle status pushes through it. HTTP handlers reach the room
through `ConnectionManager.emit_to_room_nowait`.
"""

import asyncio
import json
import time
import logging
from datetime import datetime
from typing import Dict, List, Set, Optional
from dataclasses import dataclass, field

from bson import ObjectId
from fastapi import APIRouter, Request, WebSocket, WebSocketDisconnect, status
from starlette.websockets import WebSocketState

from .ws_auth import authenticate_websocket
from models.events import NewMessageEvent, UserTypingEvent
from models.message_model import MAX_MESSAGE_LENGTH
from models.ride_model import ACTIVE_STATUSES, Ride
from services import chat_service
from services.exceptions import RideHailError

logger = logging.getLogger(__name__)

router = APIRouter()


# Timings, in seconds
RECEIVE_POLL_SECONDS = 15
STALE_AFTER_SECONDS = 45
SEND_TIMEOUT_SECONDS = 5
SWEEP_INTERVAL_SECONDS = 30
IDLE_PING_SECONDS = 10


@dataclass
class ClientConnection:
    websocket: WebSocket
    user_id: str
    role: str
    opened_at: float = field(default_factory=time.time)
    last_seen: float = field(default_factory=time.time)
    last_active: float = field(default_factory=time.time)
    write_lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    is_alive: bool = True
    joined_rooms: Set[str] = field(default_factory=set)

    def heartbeat(self) -> None:
        """Record proof of life from the client."""
        self.last_seen = self.last_active = time.time()

    def mark_active(self) -> None:
        self.last_active = time.time()

    def is_stale(self) -> bool:
        return time.time() - self.last_seen > STALE_AFTER_SECONDS

    def needs_ping(self) -> bool:
        return time.time() - self.last_active > IDLE_PING_SECONDS


class RoomMembership:
    """Which users are currently joined to which ride room."""

    def __init__(self):
        self._rooms: Dict[str, Set[str]] = {}

    def join(self, ride_id: str, user_id: str) -> bool:
        """Returns False if the user was already a member."""
        members = self._rooms.setdefault(ride_id, set())
        if user_id in members:
            return False
        members.add(user_id)
        return True

    def leave(self, ride_id: str, user_id: str) -> bool:
        members = self._rooms.get(ride_id)
        if members is None or user_id not in members:
            return False
        members.discard(user_id)
        if not members:
            del self._rooms[ride_id]
        return True

    def members(self, ride_id: str) -> Set[str]:
        return set(self._rooms.get(ride_id, ()))

    def is_member(self, ride_id: str, user_id: str) -> bool:
        return user_id in self._rooms.get(ride_id, ())

    def drop_empty(self) -> List[str]:
        empty = [ride_id for ride_id, members in self._rooms.items() if not members]
        for ride_id in empty:
            del self._rooms[ride_id]
        return empty

    def sizes(self) -> Dict[str, int]:
        return {ride_id: len(members) for ride_id, members in self._rooms.items()}

    def __contains__(self, ride_id: str) -> bool:
        return ride_id in self._rooms

    def __len__(self) -> int:
        return len(self._rooms)


# =============================================================================
# CONNECTION MANAGER
# =============================================================================


class ConnectionManager:
    """Owns live connections and room membership for one application."""

    def __init__(self):
        self._connections: Dict[str, ClientConnection] = {}
        self.rooms = RoomMembership()
        self._connections_lock = asyncio.Lock()
        self._rooms_lock = asyncio.Lock()
        self._background: List[asyncio.Task] = []
        self._pending_emits: Set[asyncio.Task] = set()
        self._is_running = False

    @property
    def is_running(self) -> bool:
        return self._is_running

    async def start(self) -> None:
        if self._is_running:
            return
        self._is_running = True
        self._background = [
            asyncio.create_task(self._every(SWEEP_INTERVAL_SECONDS, self._sweep)),
            asyncio.create_task(self._every(IDLE_PING_SECONDS, self._ping_idle)),
        ]
        logger.info("Ride channel started")

    async def stop(self) -> None:
        self._is_running = False
        tasks = [t for t in (*self._background, *self._pending_emits) if not t.done()]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._background = []
        self._pending_emits.clear()
        logger.info("Ride channel stopped")

    async def _every(self, interval: float, job) -> None:
        """Run `job` every `interval` seconds until stopped; errors are logged."""
        while self._is_running:
            await asyncio.sleep(interval)
            try:
                await job()
            except Exception as e:
                logger.error(f"Channel maintenance ({job.__name__}) failed: {type(e).__name__}: {e}")

    async def _ping_idle(self) -> None:
        async with self._connections_lock:
            idle = [c.user_id for c in self._connections.values() if c.is_alive and c.needs_ping()]

        frame = {"event_type": "ping", "timestamp": datetime.utcnow().isoformat()}
        for user_id in idle:
            await self.send_to_user(user_id, frame)

    async def _sweep(self) -> None:
        """Drop connections that missed their heartbeat, then empty rooms."""
        async with self._connections_lock:
            dead = [c for c in self._connections.values() if not c.is_alive or c.is_stale()]

        for conn in dead:
            logger.warning(f"Dropping stale connection for {conn.user_id}")
            await self.disconnect(conn.user_id, reason="Heartbeat timeout", connection=conn)

        async with self._rooms_lock:
            dropped = self.rooms.drop_empty()
        if dropped:
            logger.debug(f"Dropped empty rooms: {', '.join(dropped)}")

    # -------------------------------------------------------------------------
    # Connections
    # -------------------------------------------------------------------------

    async def connect(
        self, websocket: WebSocket, user_id: str, role: str
    ) -> ClientConnection:
        """Accept a socket for `user_id`; a previous socket for that user is closed."""
        await self.start()

        previous = self._connections.get(user_id)
        if previous is not None:
            logger.info(f"User {user_id} reconnected, closing previous socket")
            await self.disconnect(user_id, reason="Replaced by a newer connection", connection=previous)

        await websocket.accept()
        connection = ClientConnection(websocket=websocket, user_id=user_id, role=role)
        async with self._connections_lock:
            self._connections[user_id] = connection

        logger.info(f"Socket open: user={user_id} role={role}")
        return connection

    async def disconnect(
        self,
        user_id: str,
        reason: str = "Client disconnected",
        connection: Optional[ClientConnection] = None,
    ) -> None:
        """
        Forget a user's connection and leave every room it joined.

        Passing `connection` limits the call to that socket, so an old socket
        finishing late leaves its replacement alone.
        """
        async with self._connections_lock:
            registered = self._connections.get(user_id)
            owns_slot = registered is not None and (
                connection is None or registered is connection
            )
            if owns_slot:
                del self._connections[user_id]

        target = registered if owns_slot else connection
        if target is None:
            return

        target.is_alive = False
        for ride_id in list(target.joined_rooms):
            await self.leave_room(ride_id, user_id, connection=target)

        if owns_slot:
            try:
                await target.websocket.close(code=status.WS_1000_NORMAL_CLOSURE, reason=reason)
            except Exception as e:
                logger.debug(f"Socket for {user_id} was already closed: {type(e).__name__}")

        logger.info(f"Socket closed: user={user_id} ({reason})")

    def get_connection(self, user_id: str) -> Optional[ClientConnection]:
        return self._connections.get(user_id)

    def is_connected(self, user_id: str) -> bool:
        conn = self.get_connection(user_id)
        return bool(conn and conn.is_alive)

    # -------------------------------------------------------------------------
    # Rooms
    # -------------------------------------------------------------------------

    async def join_room(self, ride_id: str, user_id: str) -> bool:
        """Returns False when the user was already in the room."""
        async with self._rooms_lock:
            added = self.rooms.join(ride_id, user_id)

        conn = self.get_connection(user_id)
        if conn is not None:
            conn.joined_rooms.add(ride_id)

        if added:
            logger.info(f"{user_id} joined ride room {ride_id}")
        return added

    async def leave_room(
        self,
        ride_id: str,
        user_id: str,
        connection: Optional[ClientConnection] = None,
    ) -> bool:
        async with self._rooms_lock:
            removed = self.rooms.leave(ride_id, user_id)

        conn = connection or self.get_connection(user_id)
        if conn is not None:
            conn.joined_rooms.discard(ride_id)

        if removed:
            logger.info(f"{user_id} left ride room {ride_id}")
        return removed

    # -------------------------------------------------------------------------
    # Delivery
    # -------------------------------------------------------------------------

    async def send_to_user(
        self, user_id: str, message: dict, timeout: float = SEND_TIMEOUT_SECONDS
    ) -> bool:
        """
        Write one frame to a user's socket.

        Frames are serialized through the connection's write lock. Any failure,
        including a slow peer hitting `timeout`, marks the connection dead so
        the next sweep removes it.
        """
        conn = self.get_connection(user_id)
        if conn is None or not conn.is_alive:
            return False

        if conn.websocket.client_state != WebSocketState.CONNECTED:
            conn.is_alive = False
            return False

        try:
            async with conn.write_lock:
                await asyncio.wait_for(conn.websocket.send_json(message), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Timed out writing to {user_id}")
            conn.is_alive = False
            return False
        except Exception as e:
            logger.warning(f"Write to {user_id} failed: {type(e).__name__}: {e}")
            conn.is_alive = False
            return False

        conn.mark_active()
        return True

    async def broadcast_to_room(
        self, ride_id: str, message: dict, exclude_user: Optional[str] = None
    ) -> int:
        """Deliver to every room member concurrently; returns how many succeeded."""
        recipients = self.rooms.members(ride_id) - {exclude_user}
        if not recipients:
            return 0

        results = await asyncio.gather(
            *(self.send_to_user(user_id, message) for user_id in recipients),
            return_exceptions=True,
        )
        delivered = results.count(True)
        logger.debug(
            f"{message.get('event_type')} -> room {ride_id}: {delivered}/{len(recipients)}"
        )
        return delivered

    def emit_to_room_nowait(
        self, ride_id: str, message: dict, exclude_user: Optional[str] = None
    ) -> Optional[asyncio.Task]:
        """
        Fire-and-forget room broadcast for HTTP handlers.

        Has to run on the event loop thread. Returns None, after logging, when
        there is no running loop.
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"No event loop; {message.get('event_type')} for room {ride_id} dropped")
            return None

        task = loop.create_task(self.broadcast_to_room(ride_id, message, exclude_user))
        self._pending_emits.add(task)
        task.add_done_callback(self._emit_done)
        return task

    def _emit_done(self, task: asyncio.Task) -> None:
        self._pending_emits.discard(task)
        if not task.cancelled() and task.exception() is not None:
            error = task.exception()
            logger.warning(f"Room emission failed: {type(error).__name__}: {error}")

    def get_stats(self) -> dict:
        by_role = {"passenger": 0, "driver": 0}
        for conn in self._connections.values():
            if conn.role in by_role:
                by_role[conn.role] += 1
        return {
            "active_connections": len(self._connections),
            "active_rooms": len(self.rooms),
            "rooms": self.rooms.sizes(),
            "connections_by_role": by_role,
        }


# =============================================================================
# EVENT HANDLERS
# =============================================================================


def _error(message: str, ride_id: Optional[str] = None) -> dict:
    response = {"event_type": "error", "message": message}
    if ride_id:
        response["rideId"] = ride_id
    return response


async def handle_join_ride_chat(
    manager: ConnectionManager, connection: ClientConnection, data: dict
) -> dict:
    """Join a ride room after checking participation; replies with chat backfill."""
    ride_id = data.get("rideId")
    if not ride_id:
        return _error("Missing rideId")

    ride = Ride.objects(id=ride_id).first() if ObjectId.is_valid(str(ride_id)) else None
    if ride is None:
        return _error("Ride not found", ride_id)

    if not ride.is_participant(connection.user_id):
        logger.warning(
            f"Unauthorized join attempt: user {connection.user_id} for ride {ride_id}"
        )
        return _error("You are not a participant in this ride", ride_id)

    if ride.is_terminal:
        return _error(f"Cannot join ride with status: {ride.status}", ride_id)

    try:
        history = chat_service.list_by_ride(ride_id)
    except RideHailError as e:
        return _error(e.message, ride_id)

    await manager.join_room(ride_id, connection.user_id)
    connection.heartbeat()

    return {
        "event_type": "joined-ride-chat",
        "rideId": ride_id,
        "rideStatus": ride.status,
        "messages": [message.to_dict() for message in history],
    }


async def handle_leave_ride_chat(
    manager: ConnectionManager, connection: ClientConnection, data: dict
) -> dict:
    ride_id = data.get("rideId")
    if not ride_id:
        return _error("Missing rideId")

    await manager.leave_room(ride_id, connection.user_id)
    connection.heartbeat()

    return {"event_type": "left-ride-chat", "rideId": ride_id}


async def handle_send_message(
    manager: ConnectionManager, connection: ClientConnection, data: dict
) -> Optional[dict]:
    """Relay a chat message (already persisted over HTTP) to the whole room."""
    ride_id = data.get("rideId")
    if not ride_id:
        return _error("Missing rideId")

    if ride_id not in connection.joined_rooms:
        return _error("Join the ride chat before sending messages", ride_id)

    text = data.get("message")
    text = text.strip() if isinstance(text, str) else ""
    if not text:
        return _error("Message cannot be empty", ride_id)
    if len(text) > MAX_MESSAGE_LENGTH:
        return _error(f"Message cannot exceed {MAX_MESSAGE_LENGTH} characters", ride_id)

    event = NewMessageEvent(
        rideId=ride_id,
        messageId=data.get("messageId"),
        sender=connection.user_id,
        senderRole=connection.role,
        message=text,
    )
    await manager.broadcast_to_room(ride_id, event.to_message())
    return None


async def handle_typing(
    manager: ConnectionManager, connection: ClientConnection, data: dict
) -> Optional[dict]:
    ride_id = data.get("rideId")
    if not ride_id:
        return _error("Missing rideId")

    if ride_id not in connection.joined_rooms:
        return _error("Join the ride chat first", ride_id)

    event = UserTypingEvent(
        rideId=ride_id,
        userId=connection.user_id,
        isTyping=bool(data.get("isTyping", False)),
    )
    await manager.broadcast_to_room(
        ride_id, event.to_message(), exclude_user=connection.user_id
    )
    return None


async def handle_ping(
    manager: ConnectionManager, connection: ClientConnection, data: dict
) -> dict:
    connection.heartbeat()
    return {"event_type": "pong", "timestamp": datetime.utcnow().isoformat()}


async def handle_pong(
    manager: ConnectionManager, connection: ClientConnection, data: dict
) -> None:
    # Reply to a server keepalive ping
    connection.heartbeat()
    return None


EVENT_HANDLERS = {
    "join-ride-chat": handle_join_ride_chat,
    "leave-ride-chat": handle_leave_ride_chat,
    "send-message": handle_send_message,
    "typing": handle_typing,
    "ping": handle_ping,
    "pong": handle_pong,
}


# =============================================================================
# WEBSOCKET ENDPOINT
# =============================================================================


def _greeting(user_id: str, role: str) -> dict:
    frame = {
        "event_type": "connected",
        "message": "Connected to ride real-time service",
        "userId": user_id,
        "role": role,
        "timestamp": datetime.utcnow().isoformat(),
    }
    field_name = "driver" if role == "driver" else "passenger"
    # Lets a reconnecting client rejoin the ride it was on
    ride = (
        Ride.objects(**{field_name: user_id, "status__in": list(ACTIVE_STATUSES)})
        .order_by("-created_at")
        .first()
    )
    if ride is not None:
        frame["activeRide"] = {"rideId": str(ride.id), "status": ride.status}
    return frame


async def _dispatch(
    manager: ConnectionManager, connection: ClientConnection, raw: str
) -> Optional[dict]:
    """Decode one client frame and run its handler; returns the reply, if any."""
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        return _error("Invalid JSON format")
    if not isinstance(data, dict):
        return _error("Invalid message format")

    name = data.get("event_type") or data.get("type")
    if not name:
        return _error("Missing event_type")
    handler = EVENT_HANDLERS.get(name)
    if handler is None:
        return _error(f"Unknown event type: {name}")

    try:
        return await handler(manager, connection, data)
    except Exception as e:
        logger.error(
            f"{name} from {connection.user_id} failed: {type(e).__name__}: {e}",
            exc_info=True,
        )
        return _error("Internal error processing event")


@router.websocket("/ride")
async def ride_channel(websocket: WebSocket):
    manager: ConnectionManager = websocket.app.state.channel

    identity = await authenticate_websocket(websocket)
    if not identity:
        return

    user_id = identity["user_id"]
    connection = await manager.connect(websocket, user_id, identity["role"])

    try:
        await manager.send_to_user(user_id, _greeting(user_id, connection.role))

        while connection.is_alive:
            try:
                raw = await asyncio.wait_for(
                    websocket.receive_text(), timeout=RECEIVE_POLL_SECONDS
                )
            except asyncio.TimeoutError:
                continue

            connection.mark_active()
            reply = await _dispatch(manager, connection, raw)
            if reply:
                await manager.send_to_user(user_id, reply)

    except WebSocketDisconnect:
        logger.info(f"Client {user_id} closed the socket")
    except Exception as e:
        logger.error(f"Socket loop for {user_id} crashed: {type(e).__name__}: {e}")
    finally:
        await manager.disconnect(user_id, reason="Connection ended", connection=connection)


@router.get("/stats")
async def channel_stats(request: Request):
    """Connection and room counts for monitoring."""
    stats = request.app.state.channel.get_stats()
    return {
        "success": True,
        "data": {
            "active_connections": stats["active_connections"],
            "active_rooms": stats["active_rooms"],
            "ride_rooms": stats["rooms"],
            "connections_by_role": stats["connections_by_role"],
        },
    }
