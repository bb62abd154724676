"""Tests for the matchmaking coordinator."""

from __future__ import annotations

import asyncio

from conftest import Recorder
from gridxo.matchmaking import ClientState, Coordinator
from gridxo.protocol import MakeMovePayload


def _connect(coordinator, *names):
    recorders = {}
    for name in names:
        recorders[name] = Recorder()
        coordinator.register(recorders[name], client_id=name)
    return recorders


async def _paired(coordinator, first="a", second="b", grid_size=3):
    recorders = _connect(coordinator, first, second)
    await coordinator.find_match(first, grid_size)
    await coordinator.find_match(second, grid_size)
    room = coordinator.room_of(first)
    assert room is not None
    return room, recorders


def _move(room, row, col):
    return MakeMovePayload.model_validate(
        {"roomId": room.room_id, "row": row, "col": col}
    )


def test_two_clients_pair_and_third_waits():
    async def scenario():
        coordinator = Coordinator(match_timeout=60)
        rec = _connect(coordinator, "a", "b", "c")
        for name in ("a", "b", "c"):
            await coordinator.find_match(name)

        assert len(coordinator.rooms) == 1
        room = coordinator.room_of("a")
        assert room.players == ("a", "b")
        assert rec["a"].events() == ["waiting", "matchFound"]
        assert rec["b"].events() == ["matchFound"]
        assert rec["a"].last("matchFound") == {
            "roomId": room.room_id,
            "players": ["a", "b"],
            "gridSize": 3,
        }
        assert room.seat("a") == "X" and room.seat("b") == "O"
        assert coordinator.state_of("c") is ClientState.WAITING
        assert coordinator.waiting_clients() == ["c"]
        await coordinator.close()

    asyncio.run(scenario())


def test_repeated_find_match_never_pairs_with_self():
    async def scenario():
        coordinator = Coordinator(match_timeout=60)
        rec = _connect(coordinator, "a")
        await coordinator.find_match("a")
        await coordinator.find_match("a")
        assert coordinator.rooms == {}
        assert coordinator.waiting_clients() == ["a"]
        assert rec["a"].events() == ["waiting", "waiting"]
        await coordinator.close()

    asyncio.run(scenario())


def test_only_same_grid_size_is_paired():
    async def scenario():
        coordinator = Coordinator(match_timeout=60)
        _connect(coordinator, "a", "b")
        await coordinator.find_match("a", 3)
        await coordinator.find_match("b", 5)
        assert coordinator.rooms == {}
        assert coordinator.waiting_clients() == ["a", "b"]
        await coordinator.close()

    asyncio.run(scenario())


def test_cancel_is_idempotent_and_silent():
    async def scenario():
        coordinator = Coordinator(match_timeout=60)
        rec = _connect(coordinator, "a", "b")
        await coordinator.find_match("a")
        await coordinator.cancel_matchmaking("a")
        await coordinator.cancel_matchmaking("a")
        assert coordinator.state_of("a") is ClientState.IDLE
        assert coordinator.waiting_clients() == []
        assert rec["b"].messages == []

        await coordinator.find_match("b")
        assert coordinator.rooms == {}

    asyncio.run(scenario())


def test_waiting_client_times_out():
    async def scenario():
        coordinator = Coordinator(match_timeout=0.01)
        rec = _connect(coordinator, "a")
        await coordinator.find_match("a")
        await asyncio.sleep(0.05)
        assert coordinator.state_of("a") is ClientState.TIMED_OUT
        assert rec["a"].events() == ["waiting", "noMatchFound"]
        assert coordinator.waiting_clients() == []

    asyncio.run(scenario())


def test_cancelled_or_matched_clients_do_not_time_out():
    async def scenario():
        coordinator = Coordinator(match_timeout=0.01)
        rec = _connect(coordinator, "a", "b", "c")
        await coordinator.find_match("a")
        await coordinator.cancel_matchmaking("a")
        await coordinator.find_match("b")
        await coordinator.find_match("c")
        await asyncio.sleep(0.05)
        for name in ("a", "b", "c"):
            assert "noMatchFound" not in rec[name].events()
        assert coordinator.state_of("b") is ClientState.MATCHED

    asyncio.run(scenario())


def test_move_is_relayed_to_both_members():
    async def scenario():
        coordinator = Coordinator(match_timeout=60)
        room, rec = await _paired(coordinator)
        await coordinator.make_move("a", _move(room, 0, 0))
        for name in ("a", "b"):
            made = rec[name].last("moveMade")
            assert made["row"] == 0 and made["col"] == 0
            assert made["player"] == "X"
            assert made["nextPlayer"] == "O"
            assert made["board"][0] == ["X", None, None]
            assert made["status"] == "playing"

    asyncio.run(scenario())


def test_out_of_turn_move_rejected_for_sender_only():
    async def scenario():
        coordinator = Coordinator(match_timeout=60)
        room, rec = await _paired(coordinator)
        before_a = list(rec["a"].messages)
        await coordinator.make_move("b", _move(room, 1, 1))
        assert rec["b"].events()[-1] == "moveRejected"
        assert rec["b"].last("moveRejected")["code"] == "turnViolation"
        assert rec["a"].messages == before_a
        assert room.session.board.is_empty(1, 1)
        assert room.session.current_mark == "X"

    asyncio.run(scenario())


def test_occupied_cell_and_foreign_room_rejected():
    async def scenario():
        coordinator = Coordinator(match_timeout=60)
        room, rec = await _paired(coordinator)
        await coordinator.make_move("a", _move(room, 0, 0))
        await coordinator.make_move("b", _move(room, 0, 0))
        assert rec["b"].last("moveRejected")["code"] == "invalidMove"

        stray = MakeMovePayload.model_validate({"roomId": "NOPE", "row": 1, "col": 1})
        await coordinator.make_move("b", stray)
        assert rec["b"].last("moveRejected")["code"] == "invalidMove"
        assert room.session.current_mark == "O"

    asyncio.run(scenario())


def test_win_broadcasts_game_over_and_closes_room():
    async def scenario():
        coordinator = Coordinator(match_timeout=60)
        room, rec = await _paired(coordinator)
        moves = [("a", 0, 0), ("b", 1, 0), ("a", 0, 1), ("b", 1, 1), ("a", 0, 2)]
        for client, row, col in moves:
            await coordinator.make_move(client, _move(room, row, col))

        for name in ("a", "b"):
            assert rec[name].events()[-2:] == ["moveMade", "gameOver"]
            assert rec[name].last("gameOver") == {"status": "won", "winner": "X"}
            assert rec[name].last("moveMade")["nextPlayer"] is None
            assert coordinator.state_of(name) is ClientState.IDLE
        assert coordinator.rooms == {}

    asyncio.run(scenario())


def test_disconnect_notifies_remaining_member():
    async def scenario():
        coordinator = Coordinator(match_timeout=60)
        room, rec = await _paired(coordinator)
        await coordinator.disconnect("a")
        assert rec["b"].events()[-1] == "opponentDisconnected"
        assert coordinator.rooms == {}
        assert coordinator.state_of("b") is ClientState.IDLE
        assert coordinator.waiting_clients() == []

        await coordinator.make_move("b", _move(room, 0, 0))
        assert rec["b"].last("moveRejected")["code"] == "invalidMove"

    asyncio.run(scenario())


def test_disconnect_while_waiting_leaves_pool():
    async def scenario():
        coordinator = Coordinator(match_timeout=60)
        _connect(coordinator, "a", "b")
        await coordinator.find_match("a")
        await coordinator.disconnect("a")
        await coordinator.find_match("b")
        assert coordinator.rooms == {}
        assert coordinator.waiting_clients() == ["b"]
        await coordinator.close()

    asyncio.run(scenario())


def test_find_match_from_seated_client_leaves_room():
    async def scenario():
        coordinator = Coordinator(match_timeout=60)
        room, rec = await _paired(coordinator)
        await coordinator.find_match("a")
        assert rec["b"].events()[-1] == "opponentDisconnected"
        assert room.room_id not in coordinator.rooms
        assert coordinator.waiting_clients() == ["a"]
        await coordinator.close()

    asyncio.run(scenario())


def test_handle_routes_frames_and_reports_errors():
    async def scenario():
        coordinator = Coordinator(match_timeout=60)
        rec = _connect(coordinator, "a", "b")
        await coordinator.handle("a", {"event": "findMatch", "data": {"gridSize": 4}})
        await coordinator.handle("b", {"event": "findMatch", "data": {"gridSize": 4}})
        room = coordinator.room_of("a")
        assert room.session.grid_size == 4

        await coordinator.handle(
            "a", {"event": "makeMove", "data": {"roomId": room.room_id, "row": 3, "col": 3}}
        )
        assert rec["b"].last("moveMade")["board"][3] == [None, None, None, "X"]

        await coordinator.handle(
            "b", {"event": "makeMove", "data": {"roomId": room.room_id, "row": 42, "col": 0}}
        )
        assert rec["b"].last("moveRejected")["code"] == "invalidMove"

        await coordinator.handle("a", {"event": "dance"})
        assert rec["a"].last("error")["code"] == "unknownEvent"
        await coordinator.handle("a", None)
        assert rec["a"].last("error")["code"] == "badFrame"
        await coordinator.handle("a", {"event": "findMatch", "data": {"gridSize": 2}})
        assert rec["a"].last("error")["code"] == "badPayload"

    asyncio.run(scenario())


def test_advisory_game_end_is_not_trusted():
    async def scenario():
        coordinator = Coordinator(match_timeout=60)
        room, rec = await _paired(coordinator)
        await coordinator.handle(
            "a",
            {"event": "gameEnd", "data": {"roomId": room.room_id, "status": "won", "winner": "X"}},
        )
        assert room.session.status.value == "playing"
        assert room.room_id in coordinator.rooms
        assert "gameOver" not in rec["b"].events()

    asyncio.run(scenario())


def test_failed_send_does_not_break_relay():
    async def scenario():
        coordinator = Coordinator(match_timeout=60)

        async def broken(message):
            raise ConnectionError("gone")

        rec = Recorder()
        coordinator.register(broken, client_id="a")
        coordinator.register(rec, client_id="b")
        await coordinator.find_match("a")
        await coordinator.find_match("b")
        room = coordinator.room_of("b")
        await coordinator.make_move("a", _move(room, 0, 0))
        assert rec.last("moveMade")["player"] == "X"

    asyncio.run(scenario())


def test_concurrent_find_match_pairs_two_and_queues_third():
    async def scenario():
        coordinator = Coordinator(match_timeout=60)
        rec = _connect(coordinator, "a", "b", "c")
        await asyncio.gather(*(coordinator.find_match(n) for n in ("a", "b", "c")))

        assert len(coordinator.rooms) == 1
        (room,) = coordinator.rooms.values()
        (waiting,) = coordinator.waiting_clients()
        assert waiting not in room.players
        assert len(set(room.players)) == 2
        assert coordinator.state_of(waiting) is ClientState.WAITING
        assert rec[waiting].events() == ["waiting"]
        for player in room.players:
            assert coordinator.state_of(player) is ClientState.MATCHED
            assert rec[player].events().count("matchFound") == 1
        await coordinator.close()

    asyncio.run(scenario())


def test_cancel_crossing_match_found_leaves_room():
    async def scenario():
        coordinator = Coordinator(match_timeout=60)
        room, rec = await _paired(coordinator)
        await coordinator.cancel_matchmaking("a")

        assert coordinator.state_of("a") is ClientState.IDLE
        assert coordinator.state_of("b") is ClientState.IDLE
        assert room.room_id not in coordinator.rooms
        assert rec["b"].events() == ["matchFound", "opponentDisconnected"]
        assert rec["a"].events() == ["waiting", "matchFound"]

        await coordinator.cancel_matchmaking("a")
        assert rec["b"].events() == ["matchFound", "opponentDisconnected"]

    asyncio.run(scenario())


def test_cancel_after_first_move_keeps_room():
    async def scenario():
        coordinator = Coordinator(match_timeout=60)
        room, rec = await _paired(coordinator)
        await coordinator.make_move("a", _move(room, 0, 0))
        await coordinator.cancel_matchmaking("b")

        assert room.room_id in coordinator.rooms
        assert coordinator.state_of("b") is ClientState.MATCHED
        assert "opponentDisconnected" not in rec["a"].events()
        await coordinator.close()

    asyncio.run(scenario())
