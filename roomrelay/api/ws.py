"""
roomrelay.api.ws
~~~~~~~~~~~~~~~~

WebSocket 中继接口 —— 多房间、每房间 4 个座位。

客户端连接 ``/ws?room=<房间标识>``（省略或为空时进入默认房间 ``lobby``）。
握手总会成功；房间已满时服务端先下发 ``err{code:"ROOM_FULL"}``，
再以 1008（policy violation）关闭连接，客户端借此区分"已满"和"不可达"。

消息协议见 ``roomrelay.schemas.messages``。
"""
from __future__ import annotations

import asyncio
import uuid

from fastapi import APIRouter, Query, WebSocket, status
from fastapi.responses import PlainTextResponse

from roomrelay.core.config import settings
from roomrelay.core.logging import conn_id_ctx_var, get_logger
from roomrelay.schemas.messages import ErrorCode, ErrorFrame
from roomrelay.services.registry import RoomRegistry
from roomrelay.services.room import ROOM_FULL_MSG, Room

logger = get_logger(__name__)

router: APIRouter = APIRouter()


@router.get("/ws", include_in_schema=False)
async def websocket_upgrade_required() -> PlainTextResponse:
    """普通 HTTP 请求访问中继端点时提示需要升级为 WebSocket。"""
    return PlainTextResponse("Expected websocket", status_code=426)


async def _reject_full(websocket: WebSocket, room: Room) -> None:
    """向未能入座的连接说明原因并关闭。"""
    logger.info("拒绝连接：房间已满 | room=%s", room.room_id)
    try:
        await websocket.send_text(
            ErrorFrame(code=ErrorCode.ROOM_FULL, msg=ROOM_FULL_MSG).encode(),
        )
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="room full")
    except Exception as e:
        # 客户端已先行断开，无需再通知
        logger.debug("拒绝通知未送达 | room=%s | %s", room.room_id, e)


@router.websocket("/ws")
async def websocket_relay_endpoint(
    websocket: WebSocket,
    room: str | None = Query(default=None, description="房间标识，区分大小写"),
) -> None:
    """WebSocket 中继端点。

    读循环把每条入站帧交给 ``Room.handle_message``；下行帧由会话自己的写协程发送。
    无论正常关闭还是传输异常，最终都走同一条 ``Room.disconnect`` 清理路径。

    Args:
        websocket: FastAPI WebSocket 连接对象。
        room: 房间标识，缺省为 ``settings.DEFAULT_ROOM``。
    """
    token = conn_id_ctx_var.set(f"ws-{uuid.uuid4().hex[:8]}")
    try:
        registry: RoomRegistry = websocket.app.state.rooms
        relay_room = registry.get_room(room or settings.DEFAULT_ROOM)

        await websocket.accept()
        session = relay_room.admit(websocket)
        if session is None:
            await _reject_full(websocket, relay_room)
            return

        writer = asyncio.create_task(session.pump())
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
                raw = message.get("text")
                if raw is None:
                    raw = (message.get("bytes") or b"").decode("utf-8", errors="replace")
                relay_room.handle_message(websocket, raw)
        except Exception as e:
            logger.error(
                "WebSocket 异常: %s | room=%s | slot=%d",
                e, relay_room.room_id, session.slot, exc_info=True,
            )
        finally:
            relay_room.disconnect(websocket)
            await writer
    finally:
        conn_id_ctx_var.reset(token)
