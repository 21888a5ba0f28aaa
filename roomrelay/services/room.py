"""
roomrelay.services.room
~~~~~~~~~~~~~~~~~~~~~~~

房间领域模型 —— 一个房间的座位、昵称与消息分发。

``Room`` 只通过三个入口改变状态：

- ``admit(websocket)``                → 分配座位（唯一执行容量上限的地方）
- ``handle_message(websocket, raw)``  → 按 ``t`` 分发一条入站消息
- ``disconnect(websocket)``           → 释放座位并通知其余在线者

三个入口都是同步方法，内部没有 ``await``，在同一个事件循环里天然串行执行；
所有下行发送都只是入队（见 ``Session.send``），不会在房间内部等待网络。
不同房间之间没有任何共享状态。
"""
from __future__ import annotations

from collections.abc import Callable
from typing import Any

from fastapi import WebSocket

from roomrelay.core.config import settings
from roomrelay.core.logging import get_logger
from roomrelay.schemas.messages import (
    ErrorCode,
    ErrorFrame,
    InputFrame,
    InputRequest,
    JoinFrame,
    JoinRequest,
    LeaveFrame,
    MessageDecodeError,
    PingRequest,
    PlayerEntry,
    PongFrame,
    PresenceFrame,
    ServerFrame,
    SnapFrame,
    SnapRequest,
    WelcomeFrame,
    decode_message,
)
from roomrelay.schemas.rooms import RoomInfoData
from roomrelay.services.session import Session

logger = get_logger(__name__)

ROOM_CAPACITY: int = 4

ROOM_FULL_MSG: str = f"Room full (max {ROOM_CAPACITY})."
BAD_JSON_MSG: str = "Invalid JSON"


class Room:
    """一个独立的中继房间。

    Attributes:
        room_id: 房间唯一标识（区分大小写）。
        capacity: 座位总数，固定为 ``ROOM_CAPACITY``。
        seats: 座位号 → 会话，空位为 ``None``。
        names: 座位号 → 昵称，座位空出时重置为空串。
    """

    def __init__(self, room_id: str, queue_size: int | None = None) -> None:
        self.room_id = room_id
        self.capacity: int = ROOM_CAPACITY
        self.seats: list[Session | None] = [None] * ROOM_CAPACITY
        self.names: list[str] = [""] * ROOM_CAPACITY
        # 连接 → 座位号；与 seats 一起构成双向映射
        self._slots: dict[WebSocket, int] = {}
        self._queue_size: int = queue_size or settings.SEND_QUEUE_SIZE
        self._handlers: dict[str, Callable[[Session, dict[str, Any]], None]] = {
            "join": self._on_join,
            "ping": self._on_ping,
            "in": self._on_input,
            "snap": self._on_snap,
        }

    @property
    def online_count(self) -> int:
        """当前已占用座位数。"""
        return len(self._slots)

    def session_for(self, websocket: WebSocket) -> Session | None:
        """查找连接对应的会话；未入座的连接返回 ``None``。"""
        slot = self._slots.get(websocket)
        if slot is None:
            return None
        return self.seats[slot]

    # ── 在线列表 ──────────────────────────────────────────────────────

    def players(self) -> list[PlayerEntry]:
        """按座位号升序返回当前在线列表。每次调用都重新计算。"""
        return [
            PlayerEntry(slot=slot, name=self.names[slot])
            for slot, session in enumerate(self.seats)
            if session is not None
        ]

    def info(self) -> RoomInfoData:
        """返回房间摘要信息。"""
        return RoomInfoData(
            room_id=self.room_id,
            capacity=self.capacity,
            online_count=self.online_count,
            players=self.players(),
        )

    # ── 入座 ──────────────────────────────────────────────────────────

    def _alloc_slot(self) -> int | None:
        for slot, session in enumerate(self.seats):
            if session is None:
                return slot
        return None

    def admit(self, websocket: WebSocket) -> Session | None:
        """为一条已握手的连接分配座位。

        成功时新会话收到 ``welcome``（在线列表已包含自己），
        其余在线者收到该座位的 ``join`` 通知。

        Returns:
            新建的会话；房间已满时返回 ``None``，此时不产生任何状态变化和通知。
        """
        slot = self._alloc_slot()
        if slot is None:
            logger.info("房间已满，拒绝入座 | room=%s", self.room_id)
            return None

        session = Session(websocket, slot, self._queue_size)
        self.seats[slot] = session
        self._slots[websocket] = slot
        logger.info(
            "玩家入座 | room=%s | slot=%d | 在线: %d",
            self.room_id, slot, self.online_count,
        )

        session.send(WelcomeFrame(slot=slot, players=self.players()).encode())
        self.broadcast(JoinFrame(slot=slot, name=self.names[slot]), exclude=slot)
        return session

    # ── 消息分发 ──────────────────────────────────────────────────────

    def handle_message(self, websocket: WebSocket, raw: str) -> None:
        """处理一条入站文本帧。

        非法 JSON 只回复发送者一条 ``BAD_JSON`` 错误，连接保持；
        非对象、缺少或未知的 ``t`` 一律静默忽略。
        """
        session = self.session_for(websocket)
        if session is None:
            return

        try:
            data = decode_message(raw)
        except MessageDecodeError as e:
            logger.debug("非法 JSON | room=%s | slot=%d | %s", self.room_id, session.slot, e)
            session.send(ErrorFrame(code=ErrorCode.BAD_JSON, msg=BAD_JSON_MSG).encode())
            return

        if not isinstance(data, dict):
            return
        msg_type = data.get("t")
        if not isinstance(msg_type, str):
            return
        handler = self._handlers.get(msg_type)
        if handler is None:
            return
        try:
            handler(session, data)
        except (ValueError, RecursionError) as e:
            # 载荷能解析却无法重新编码：只丢弃这一帧，会话与房间状态不受影响
            logger.warning(
                "消息无法编码，已丢弃 | room=%s | slot=%d | t=%s | %s",
                self.room_id, session.slot, msg_type, e,
            )

    def _on_join(self, session: Session, data: dict[str, Any]) -> None:
        request = JoinRequest.model_validate(data)
        self.names[session.slot] = request.name
        self.broadcast(JoinFrame(slot=session.slot, name=request.name))
        session.send(PresenceFrame(players=self.players()).encode())

    def _on_ping(self, session: Session, data: dict[str, Any]) -> None:
        request = PingRequest.model_validate(data)
        if "c" in request.model_fields_set:
            frame = PongFrame(c=request.c)
        else:
            frame = PongFrame()
        session.send(frame.encode())

    def _on_input(self, session: Session, data: dict[str, Any]) -> None:
        request = InputRequest.model_validate(data)
        if request.s is not None:
            frame = InputFrame(slot=session.slot, i=request.i, s=request.s)
        else:
            frame = InputFrame(slot=session.slot, i=request.i)
        self.broadcast(frame, exclude=session.slot)

    def _on_snap(self, session: Session, data: dict[str, Any]) -> None:
        request = SnapRequest.model_validate(data)
        if request.s is not None:
            frame = SnapFrame(st=request.st, s=request.s)
        else:
            frame = SnapFrame(st=request.st)
        self.broadcast(frame, exclude=session.slot)

    # ── 离开 ──────────────────────────────────────────────────────────

    def disconnect(self, websocket: WebSocket) -> bool:
        """释放连接占用的座位，依次向其余在线者广播 ``leave`` 和 ``presence``。

        Returns:
            是否确实释放了座位。未入座或已释放过的连接返回 ``False``。
        """
        slot = self._slots.pop(websocket, None)
        if slot is None:
            return False

        session = self.seats[slot]
        self.seats[slot] = None
        self.names[slot] = ""
        if session is not None:
            session.close()
        logger.info(
            "玩家离开 | room=%s | slot=%d | 在线: %d",
            self.room_id, slot, self.online_count,
        )

        self.broadcast(LeaveFrame(slot=slot))
        self.broadcast(PresenceFrame(players=self.players()))
        return True

    # ── 广播 ──────────────────────────────────────────────────────────

    def broadcast(self, frame: ServerFrame, exclude: int | None = None) -> int:
        """向房间内所有会话（可排除一个座位）尽力投递一帧。

        帧只序列化一次。单个会话入队失败只影响它自己。

        Returns:
            成功入队的会话数。
        """
        text = frame.encode()
        delivered = 0
        for session in self.seats:
            if session is None or session.slot == exclude:
                continue
            if session.send(text):
                delivered += 1
        return delivered
