"""
tests.test_room
~~~~~~~~~~~~~~~

Room 入座 / 消息分发 / 离开 / 广播 单元测试。
"""
from __future__ import annotations

import json
from collections.abc import Callable
from unittest.mock import MagicMock, patch

from conftest import drain

from roomrelay.schemas.messages import InputFrame, PongFrame
from roomrelay.services.room import ROOM_CAPACITY, Room


def fill(room: Room, make_socket: Callable[[], MagicMock], count: int) -> list[tuple[MagicMock, object]]:
    """让 ``count`` 个连接依次入座，并清空它们已收到的帧。"""
    seated = []
    for _ in range(count):
        ws = make_socket()
        seated.append((ws, room.admit(ws)))
    for _, session in seated:
        drain(session)
    return seated


# ── 入座 ──────────────────────────────────────────────────────────────

class TestAdmission:
    """测试座位分配与容量上限。"""

    def test_first_connection_gets_slot_zero(self, room: Room, make_socket) -> None:
        """第一个连接坐 0 号位，welcome 中的在线列表包含自己。"""
        session = room.admit(make_socket())

        assert session is not None
        assert session.slot == 0
        assert drain(session) == [
            {"t": "welcome", "slot": 0, "players": [{"slot": 0, "name": ""}]},
        ]

    def test_slots_assigned_in_order_and_peers_notified(self, room: Room, make_socket) -> None:
        """座位按 0..3 依次分配，已在座的人收到每个新座位的 join 通知。"""
        sessions = [room.admit(make_socket()) for _ in range(ROOM_CAPACITY)]

        assert [s.slot for s in sessions] == [0, 1, 2, 3]
        assert drain(sessions[0])[1:] == [
            {"t": "join", "slot": 1, "name": ""},
            {"t": "join", "slot": 2, "name": ""},
            {"t": "join", "slot": 3, "name": ""},
        ]
        last = drain(sessions[3])
        assert last == [
            {
                "t": "welcome",
                "slot": 3,
                "players": [{"slot": i, "name": ""} for i in range(4)],
            },
        ]

    def test_fifth_connection_is_rejected(self, room: Room, make_socket) -> None:
        """满员后再入座返回 None，不产生会话，也不通知任何人。"""
        seated = fill(room, make_socket, ROOM_CAPACITY)
        extra = make_socket()

        assert room.admit(extra) is None
        assert room.online_count == ROOM_CAPACITY
        assert room.session_for(extra) is None
        for _, session in seated:
            assert drain(session) == []

    def test_lowest_free_seat_is_reused(self, room: Room, make_socket) -> None:
        """空出的最小座位号优先分配。"""
        seated = fill(room, make_socket, 3)
        room.disconnect(seated[1][0])

        session = room.admit(make_socket())

        assert session.slot == 1

    def test_welcome_carries_existing_names(self, room: Room, make_socket) -> None:
        """新来者的 welcome 中能看到已设置的昵称。"""
        ws0 = make_socket()
        room.admit(ws0)
        room.handle_message(ws0, json.dumps({"t": "join", "name": "Al"}))

        session = room.admit(make_socket())

        assert drain(session)[0]["players"] == [
            {"slot": 0, "name": "Al"},
            {"slot": 1, "name": ""},
        ]


# ── 消息分发 ──────────────────────────────────────────────────────────

class TestDispatch:
    """测试各类入站消息的处理。"""

    def test_join_sets_name_and_notifies_everyone(self, room: Room, make_socket) -> None:
        """2 号位 join 后，所有人（含自己）收到 join，自己额外收到 presence。"""
        seated = fill(room, make_socket, 3)
        ws2, s2 = seated[2]

        room.handle_message(ws2, json.dumps({"t": "join", "name": "Al"}))

        assert room.names[2] == "Al"
        assert drain(s2) == [
            {"t": "join", "slot": 2, "name": "Al"},
            {
                "t": "presence",
                "players": [
                    {"slot": 0, "name": ""},
                    {"slot": 1, "name": ""},
                    {"slot": 2, "name": "Al"},
                ],
            },
        ]
        for _, other in seated[:2]:
            assert drain(other) == [{"t": "join", "slot": 2, "name": "Al"}]

    def test_join_truncates_long_names(self, room: Room, make_socket) -> None:
        """昵称最多保留 24 个字符。"""
        (ws, session), = fill(room, make_socket, 1)

        room.handle_message(ws, json.dumps({"t": "join", "name": "x" * 30}))

        assert room.names[0] == "x" * 24
        assert drain(session)[0] == {"t": "join", "slot": 0, "name": "x" * 24}

    def test_join_with_non_string_name_clears_it(self, room: Room, make_socket) -> None:
        """非字符串或缺失的昵称按空串处理。"""
        (ws, session), = fill(room, make_socket, 1)
        room.handle_message(ws, json.dumps({"t": "join", "name": "Al"}))

        room.handle_message(ws, json.dumps({"t": "join", "name": 123}))
        assert room.names[0] == ""

        room.handle_message(ws, json.dumps({"t": "join"}))
        assert room.names[0] == ""

    def test_ping_replies_only_to_sender(self, room: Room, make_socket) -> None:
        """ping{c:42} 只给发送者回一条 pong{c:42}。"""
        (ws0, s0), (_, s1) = fill(room, make_socket, 2)

        room.handle_message(ws0, json.dumps({"t": "ping", "c": 42}))

        assert drain(s0) == [{"t": "pong", "c": 42}]
        assert drain(s1) == []

    def test_ping_without_counter(self, room: Room, make_socket) -> None:
        """请求中没有 c 时，pong 中也没有 c。"""
        (ws, session), = fill(room, make_socket, 1)

        room.handle_message(ws, json.dumps({"t": "ping"}))

        assert drain(session) == [{"t": "pong"}]

    def test_input_goes_to_everyone_but_sender(self, room: Room, make_socket) -> None:
        """in 消息带上发送者座位号转发给其他人，不回给自己。"""
        (ws0, s0), (_, s1), (_, s2) = fill(room, make_socket, 3)

        room.handle_message(ws0, json.dumps({"t": "in", "i": {"dx": 1}, "s": 7}))

        assert drain(s0) == []
        expected = {"t": "in", "slot": 0, "i": {"dx": 1}, "s": 7}
        assert drain(s1) == [expected]
        assert drain(s2) == [expected]

    def test_input_defaults_and_sequence_filtering(self, room: Room, make_socket) -> None:
        """缺失的 i 转为 null；只有数字类型的 s 会被转发。"""
        (ws0, _), (_, s1) = fill(room, make_socket, 2)

        room.handle_message(ws0, json.dumps({"t": "in"}))
        room.handle_message(ws0, json.dumps({"t": "in", "i": 1, "s": True}))
        room.handle_message(ws0, json.dumps({"t": "in", "i": 2, "s": "9"}))
        room.handle_message(ws0, json.dumps({"t": "in", "i": 3, "s": 3.5}))

        assert drain(s1) == [
            {"t": "in", "slot": 0, "i": None},
            {"t": "in", "slot": 0, "i": 1},
            {"t": "in", "slot": 0, "i": 2},
            {"t": "in", "slot": 0, "i": 3, "s": 3.5},
        ]

    def test_snap_goes_to_everyone_but_sender(self, room: Room, make_socket) -> None:
        """snap 转发给其他人，帧中不带座位号。"""
        (ws0, s0), (_, s1) = fill(room, make_socket, 2)

        room.handle_message(ws0, json.dumps({"t": "snap", "st": [1, 2, 3], "s": 11}))
        room.handle_message(ws0, json.dumps({"t": "snap"}))

        assert drain(s0) == []
        assert drain(s1) == [
            {"t": "snap", "st": [1, 2, 3], "s": 11},
            {"t": "snap", "st": None},
        ]

    def test_malformed_json_reports_to_sender_only(self, room: Room, make_socket) -> None:
        """非法 JSON 只通知发送者，连接与房间状态不受影响。"""
        (ws0, s0), (_, s1) = fill(room, make_socket, 2)

        room.handle_message(ws0, "{not json")
        room.handle_message(ws0, "NaN")

        bad_json = {"t": "err", "code": "BAD_JSON", "msg": "Invalid JSON"}
        assert drain(s0) == [bad_json, bad_json]
        assert drain(s1) == []
        assert room.session_for(ws0) is s0
        assert room.online_count == 2

    def test_unknown_and_untyped_messages_are_ignored(self, room: Room, make_socket) -> None:
        """未知类型、缺少 t、非对象的消息静默忽略。"""
        (ws0, s0), (_, s1) = fill(room, make_socket, 2)

        for raw in (
            json.dumps({"t": "chat", "text": "hi"}),
            json.dumps({"name": "Al"}),
            json.dumps({"t": ["join"]}),
            json.dumps([1, 2]),
            "5",
            "null",
        ):
            room.handle_message(ws0, raw)

        assert drain(s0) == []
        assert drain(s1) == []

    def test_message_from_unseated_connection_is_noop(self, room: Room, make_socket) -> None:
        """未入座的连接发来的消息不产生任何效果。"""
        (_, s0), = fill(room, make_socket, 1)

        room.handle_message(make_socket(), json.dumps({"t": "join", "name": "ghost"}))

        assert room.names == ["", "", "", ""]
        assert drain(s0) == []


# ── 离开 ──────────────────────────────────────────────────────────────

class TestDisconnect:
    """测试座位释放与通知顺序。"""

    def test_leave_then_presence_to_remaining(self, room: Room, make_socket) -> None:
        """1 号位离开后，其余每人依次收到 leave{1} 和不含 1 号位的 presence。"""
        seated = fill(room, make_socket, 3)
        ws1, s1 = seated[1]

        assert room.disconnect(ws1) is True

        expected = [
            {"t": "leave", "slot": 1},
            {"t": "presence", "players": [{"slot": 0, "name": ""}, {"slot": 2, "name": ""}]},
        ]
        assert drain(seated[0][1]) == expected
        assert drain(seated[2][1]) == expected
        assert drain(s1) == []
        assert room.seats[1] is None

    def test_disconnect_is_idempotent(self, room: Room, make_socket) -> None:
        """重复断开或未入座的连接断开都不产生通知。"""
        (ws0, _), (_, s1) = fill(room, make_socket, 2)
        room.disconnect(ws0)
        drain(s1)

        assert room.disconnect(ws0) is False
        assert room.disconnect(make_socket()) is False
        assert drain(s1) == []

    def test_name_is_cleared_for_next_occupant(self, room: Room, make_socket) -> None:
        """离开时昵称清空，下一个坐到该位置的人不会继承旧昵称。"""
        (_, s0), (ws1, _) = fill(room, make_socket, 2)
        room.handle_message(ws1, json.dumps({"t": "join", "name": "Bo"}))
        room.disconnect(ws1)
        drain(s0)

        assert room.names[1] == ""

        newcomer = room.admit(make_socket())
        assert newcomer.slot == 1
        assert drain(newcomer)[0]["players"] == [
            {"slot": 0, "name": ""},
            {"slot": 1, "name": ""},
        ]
        assert drain(s0) == [{"t": "join", "slot": 1, "name": ""}]

    def test_departed_session_is_closed(self, room: Room, make_socket) -> None:
        """离开后的会话不再接收任何帧。"""
        (ws0, s0), = fill(room, make_socket, 1)

        room.disconnect(ws0)

        assert s0.closed is True
        assert s0.send("late") is False


# ── 在线列表与广播 ────────────────────────────────────────────────────

class TestPresenceAndBroadcast:
    """测试在线列表投影与尽力广播。"""

    def test_players_sorted_by_slot(self, room: Room, make_socket) -> None:
        """在线列表按座位号升序，只包含已占用座位。"""
        seated = fill(room, make_socket, 4)
        room.handle_message(seated[3][0], json.dumps({"t": "join", "name": "D"}))
        room.disconnect(seated[0][0])
        room.disconnect(seated[2][0])

        assert [p.model_dump() for p in room.players()] == [
            {"slot": 1, "name": ""},
            {"slot": 3, "name": "D"},
        ]

    def test_info_summarises_room(self, room: Room, make_socket) -> None:
        """info() 返回房间标识、容量、在线人数与在线列表。"""
        fill(room, make_socket, 2)

        info = room.info()

        assert info.room_id == "abc"
        assert info.capacity == ROOM_CAPACITY
        assert info.online_count == 2
        assert [p.slot for p in info.players] == [0, 1]

    def test_full_queue_only_affects_that_peer(self, make_socket) -> None:
        """某个会话发送队列已满时，只丢弃该会话的帧，其他人照常收到。"""
        room = Room("tiny", queue_size=2)
        s0 = room.admit(make_socket())  # 队列: welcome
        s1 = room.admit(make_socket())  # s0 队列: welcome, join（已满）

        delivered = room.broadcast(PongFrame(c=1))

        assert delivered == 1
        assert [f["t"] for f in drain(s0)] == ["welcome", "join"]
        assert [f["t"] for f in drain(s1)] == ["welcome", "pong"]


# ── 单帧故障隔离 ──────────────────────────────────────────────────────

class TestPayloadIsolation:
    """能解析但难以转发的载荷只影响那一帧。"""

    def test_lone_surrogate_input_reaches_peers(self, room: Room, make_socket) -> None:
        """i 中含孤立代理项时照常转发，之后的帧也能送达。"""
        (ws0, s0), (_, s1) = fill(room, make_socket, 2)

        room.handle_message(ws0, '{"t":"in","i":"\\ud800"}')
        room.handle_message(ws0, json.dumps({"t": "in", "i": 1}))

        assert drain(s1) == [
            {"t": "in", "slot": 0, "i": "\ud800"},
            {"t": "in", "slot": 0, "i": 1},
        ]
        assert room.session_for(ws0) is s0

    def test_lone_surrogate_name_is_escaped_on_the_wire(self, room: Room, make_socket) -> None:
        """昵称含孤立代理项时，下发的帧仍是纯 ASCII 文本。"""
        (ws0, s0), (_, s1) = fill(room, make_socket, 2)

        room.handle_message(ws0, '{"t":"join","name":"A\\ud800"}')

        raw_frames = []
        while not s1._queue.empty():
            raw_frames.append(s1._queue.get_nowait())
        assert raw_frames == ['{"t":"join","slot":0,"name":"A\\ud800"}']
        assert all(text.isascii() for text in raw_frames)
        assert [f["t"] for f in drain(s0)] == ["join", "presence"]

    def test_deeply_nested_payload_keeps_sender_seated(self, room: Room, make_socket) -> None:
        """深层嵌套的 snap 正常转发，发送者不会被断开。"""
        (ws0, s0), (_, s1) = fill(room, make_socket, 2)
        nested = "[" * 600 + "]" * 600

        room.handle_message(ws0, '{"t":"snap","st":' + nested + "}")
        room.handle_message(ws0, json.dumps({"t": "ping", "c": 7}))

        assert len(drain(s1)) == 1
        assert drain(s0) == [{"t": "pong", "c": 7}]
        assert room.online_count == 2

    def test_unencodable_frame_is_dropped_alone(self, room: Room, make_socket) -> None:
        """编码失败的帧被丢弃，发送者仍在座，后续消息照常处理。"""
        (ws0, s0), (_, s1) = fill(room, make_socket, 2)

        with patch.object(InputFrame, "encode", side_effect=ValueError("depth exceeded")):
            room.handle_message(ws0, json.dumps({"t": "in", "i": [1]}))
        room.handle_message(ws0, json.dumps({"t": "in", "i": 2}))
        room.handle_message(ws0, json.dumps({"t": "ping", "c": 7}))

        assert drain(s1) == [{"t": "in", "slot": 0, "i": 2}]
        assert drain(s0) == [{"t": "pong", "c": 7}]
        assert room.session_for(ws0) is s0
