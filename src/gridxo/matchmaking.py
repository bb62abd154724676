"""Matchmaking coordinator: waiting pool, rooms and authoritative move relay."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from pydantic import ValidationError

from . import protocol
from .board import Board, Mark
from .errors import GameError, InvalidMove
from .session import GameMode, Session

logger = logging.getLogger(__name__)

Sender = Callable[[Dict[str, Any]], Awaitable[None]]

ROOM_CODE_LENGTH = 8


class ClientState(str, Enum):
    IDLE = "idle"
    WAITING = "waiting"
    MATCHED = "matched"
    TIMED_OUT = "timedOut"


@dataclass
class MatchRequest:
    """A client in the waiting pool."""

    client_id: str
    grid_size: int = 3
    enqueued_at: float = field(default_factory=time.monotonic)
    timeout_task: Optional["asyncio.Task[None]"] = field(default=None, repr=False)


@dataclass
class Room:
    """Two seated clients sharing one authoritative session."""

    room_id: str
    players: Tuple[str, str]
    session: Session
    created_at: float = field(default_factory=time.monotonic)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    def seat(self, client_id: str) -> Mark:
        return protocol.seat_mark(self.players.index(client_id))

    def other(self, client_id: str) -> str:
        first, second = self.players
        return second if client_id == first else first


@dataclass
class ClientRecord:
    client_id: str
    send: Sender = field(repr=False)
    state: ClientState = ClientState.IDLE
    room_id: Optional[str] = None


class Coordinator:
    """Pairs clients into rooms and relays their moves.

    The waiting pool is guarded by a single lock so a client is never paired
    twice or with itself. Each room has its own lock; moves for one room are
    applied and broadcast one at a time while other rooms proceed freely.
    Nothing here outlives the process.
    """

    def __init__(self, match_timeout: float = 30.0) -> None:
        self.match_timeout = match_timeout
        self._clients: Dict[str, ClientRecord] = {}
        self._pool: "OrderedDict[str, MatchRequest]" = OrderedDict()
        self._rooms: Dict[str, Room] = {}
        self._pool_lock = asyncio.Lock()

    # ---- inspection ----

    def state_of(self, client_id: str) -> ClientState:
        client = self._clients.get(client_id)
        return client.state if client else ClientState.IDLE

    def waiting_clients(self) -> List[str]:
        return list(self._pool)

    def room_of(self, client_id: str) -> Optional[Room]:
        client = self._clients.get(client_id)
        if client is None or client.room_id is None:
            return None
        return self._rooms.get(client.room_id)

    @property
    def rooms(self) -> Dict[str, Room]:
        return dict(self._rooms)

    # ---- connection lifecycle ----

    def register(self, send: Sender, client_id: Optional[str] = None) -> str:
        client_id = client_id or uuid.uuid4().hex
        if client_id in self._clients:
            raise ValueError(f"Client {client_id} is already connected")
        self._clients[client_id] = ClientRecord(client_id=client_id, send=send)
        logger.debug("Client %s connected", client_id)
        return client_id

    async def disconnect(self, client_id: str) -> None:
        """Forget a client; its room, if any, is torn down."""
        await self.cancel_matchmaking(client_id)
        await self._leave_room(client_id)
        self._clients.pop(client_id, None)
        logger.debug("Client %s disconnected", client_id)

    async def close(self) -> None:
        async with self._pool_lock:
            requests = list(self._pool.values())
            self._pool.clear()
        for request in requests:
            if request.timeout_task is not None:
                request.timeout_task.cancel()
        self._rooms.clear()

    # ---- dispatch ----

    async def handle(self, client_id: str, frame: Any) -> None:
        """Route one incoming frame from ``client_id``."""
        try:
            envelope = protocol.Envelope.model_validate(frame)
        except ValidationError:
            await self._send(
                client_id,
                protocol.message(
                    protocol.ERROR, code="badFrame", detail="Malformed frame"
                ),
            )
            return

        event, data = envelope.event, envelope.data
        try:
            if event == protocol.FIND_MATCH:
                payload = protocol.FindMatchPayload.model_validate(data)
                await self.find_match(client_id, payload.grid_size)
            elif event == protocol.CANCEL_MATCHMAKING:
                await self.cancel_matchmaking(client_id)
            elif event == protocol.MAKE_MOVE:
                try:
                    move = protocol.MakeMovePayload.model_validate(data)
                except ValidationError as exc:
                    await self._reject(client_id, InvalidMove(_first_error(exc)))
                    return
                await self.make_move(client_id, move)
            elif event == protocol.GAME_END:
                report = protocol.GameEndPayload.model_validate(data)
                await self.game_end(client_id, report)
            else:
                await self._send(
                    client_id,
                    protocol.message(
                        protocol.ERROR,
                        code="unknownEvent",
                        detail=f"Unknown event {event!r}",
                    ),
                )
        except ValidationError as exc:
            await self._send(
                client_id,
                protocol.message(
                    protocol.ERROR, code="badPayload", detail=_first_error(exc)
                ),
            )

    # ---- matchmaking ----

    async def find_match(self, client_id: str, grid_size: int = 3) -> None:
        if client_id not in self._clients:
            raise KeyError(client_id)
        # A seated client asking for a new match leaves its room first
        await self._leave_room(client_id)

        outgoing: List[Tuple[str, Dict[str, Any]]] = []
        async with self._pool_lock:
            client = self._clients.get(client_id)
            if client is None:
                return
            if client_id in self._pool:
                outgoing.append((client_id, protocol.message(protocol.WAITING)))
            else:
                peer = next(
                    (
                        request
                        for request in self._pool.values()
                        if request.grid_size == grid_size
                        and request.client_id != client_id
                    ),
                    None,
                )
                if peer is None:
                    request = MatchRequest(client_id=client_id, grid_size=grid_size)
                    request.timeout_task = asyncio.create_task(
                        self._expire(client_id, request)
                    )
                    self._pool[client_id] = request
                    client.state = ClientState.WAITING
                    outgoing.append((client_id, protocol.message(protocol.WAITING)))
                    logger.info(
                        "Client %s waiting for a %dx%d match",
                        client_id,
                        grid_size,
                        grid_size,
                    )
                else:
                    del self._pool[peer.client_id]
                    if peer.timeout_task is not None:
                        peer.timeout_task.cancel()
                    room = self._open_room((peer.client_id, client_id), grid_size)
                    found = protocol.message(
                        protocol.MATCH_FOUND,
                        roomId=room.room_id,
                        players=list(room.players),
                        gridSize=grid_size,
                    )
                    outgoing.extend((player, found) for player in room.players)

        for target, msg in outgoing:
            await self._send(target, msg)

    async def cancel_matchmaking(self, client_id: str) -> None:
        """Leave the waiting pool; safe to repeat.

        A cancel that crossed ``matchFound`` on the wire leaves the new room
        as long as nobody has moved in it yet. Otherwise it is a no-op.
        """
        async with self._pool_lock:
            request = self._pool.pop(client_id, None)
            if request is not None:
                if request.timeout_task is not None:
                    request.timeout_task.cancel()
                client = self._clients.get(client_id)
                if client is not None:
                    client.state = ClientState.IDLE
        if request is not None:
            logger.info("Client %s cancelled matchmaking", client_id)
            return

        if await self._leave_room(client_id, unplayed_only=True):
            logger.info("Client %s cancelled matchmaking after pairing", client_id)

    async def _expire(self, client_id: str, request: MatchRequest) -> None:
        await asyncio.sleep(self.match_timeout)
        async with self._pool_lock:
            if self._pool.get(client_id) is not request:
                return
            del self._pool[client_id]
            client = self._clients.get(client_id)
            if client is not None:
                client.state = ClientState.TIMED_OUT
        logger.info(
            "No match found for client %s after %.1fs", client_id, self.match_timeout
        )
        await self._send(client_id, protocol.message(protocol.NO_MATCH_FOUND))

    # ---- rooms ----

    def _open_room(self, players: Tuple[str, str], grid_size: int) -> Room:
        for _ in range(10):
            room_id = uuid.uuid4().hex[:ROOM_CODE_LENGTH].upper()
            if room_id not in self._rooms:
                break
        else:
            raise RuntimeError("Unable to allocate room")

        session = Session(
            board=Board(size=grid_size),
            mode=GameMode.REMOTE,
            room_id=room_id,
            peer_connected=True,
        )
        room = Room(room_id=room_id, players=players, session=session)
        self._rooms[room_id] = room
        for player in players:
            client = self._clients[player]
            client.state = ClientState.MATCHED
            client.room_id = room_id
        logger.info("Room %s opened for %s vs %s", room_id, *players)
        return room

    def _close_room(self, room: Room) -> None:
        self._rooms.pop(room.room_id, None)
        room.session.peer_connected = False
        for player in room.players:
            client = self._clients.get(player)
            if client is not None and client.room_id == room.room_id:
                client.room_id = None
                client.state = ClientState.IDLE
        logger.info("Room %s closed", room.room_id)

    async def _leave_room(self, client_id: str, unplayed_only: bool = False) -> bool:
        room = self.room_of(client_id)
        if room is None:
            return False
        async with room.lock:
            if self._rooms.get(room.room_id) is not room:
                return False
            if unplayed_only and room.session.move_log:
                return False
            self._close_room(room)
            await self._send(
                room.other(client_id), protocol.message(protocol.OPPONENT_DISCONNECTED)
            )
        return True

    async def make_move(self, client_id: str, move: protocol.MakeMovePayload) -> None:
        """Run a proposed move through the room's session and broadcast it."""
        room = self.room_of(client_id)
        if room is None or room.room_id != move.room_id:
            await self._reject(
                client_id, InvalidMove(f"Not seated in room {move.room_id}")
            )
            return

        async with room.lock:
            if self._rooms.get(room.room_id) is not room:
                await self._reject(client_id, InvalidMove("Room is closed"))
                return
            session = room.session
            mark = room.seat(client_id)
            if move.board is not None and move.board != session.board.to_rows():
                logger.debug(
                    "Ignoring advisory board from %s in room %s",
                    client_id,
                    room.room_id,
                )
            try:
                session.apply_move(move.row, move.col, mark)
            except GameError as exc:
                logger.info(
                    "Rejected move (%d, %d) by %s in room %s: %s",
                    move.row,
                    move.col,
                    client_id,
                    room.room_id,
                    exc.code,
                )
                await self._reject(client_id, exc)
                return

            made = protocol.message(
                protocol.MOVE_MADE,
                row=move.row,
                col=move.col,
                player=mark,
                nextPlayer=None if session.is_over else session.current_mark,
                board=session.board.to_rows(),
                status=session.status.value,
                winner=session.winner,
            )
            await self._broadcast(room, made)

            if session.is_over:
                over = protocol.message(
                    protocol.GAME_OVER,
                    status=session.status.value,
                    winner=session.winner,
                )
                await self._broadcast(room, over)
                self._close_room(room)

    async def game_end(self, client_id: str, report: protocol.GameEndPayload) -> None:
        """Advisory end-of-game report; the room's session decides."""
        room = self._rooms.get(report.room_id or "")
        if room is None:
            logger.debug(
                "gameEnd from %s for closed room %s", client_id, report.room_id
            )
            return
        session = room.session
        agrees = (
            session.is_over
            and session.status.value == report.status
            and session.winner == report.winner
        )
        if not agrees:
            logger.warning(
                "Client %s reported %s/%s in room %s, session says %s/%s",
                client_id,
                report.status,
                report.winner,
                room.room_id,
                session.status.value,
                session.winner,
            )

    # ---- sending ----

    async def _broadcast(self, room: Room, msg: Dict[str, Any]) -> None:
        for player in room.players:
            await self._send(player, msg)

    async def _reject(self, client_id: str, exc: GameError) -> None:
        await self._send(
            client_id,
            protocol.message(protocol.MOVE_REJECTED, code=exc.code, detail=exc.detail),
        )

    async def _send(self, client_id: str, msg: Dict[str, Any]) -> None:
        client = self._clients.get(client_id)
        if client is None:
            return
        try:
            await client.send(msg)
        except (RuntimeError, ConnectionError) as exc:
            logger.warning(
                "Dropping %s for client %s: %s", msg.get("event"), client_id, exc
            )


def _first_error(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return str(exc)
    first = errors[0]
    where = ".".join(str(part) for part in first.get("loc", ()))
    return f"{where}: {first.get('msg')}" if where else str(first.get("msg"))
