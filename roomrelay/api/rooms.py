"""
roomrelay.api.rooms
~~~~~~~~~~~~~~~~~~~

房间查询 REST 接口（只读）。

路由前缀 ``/api``。

端点:
  - ``GET /rooms``            → 获取所有房间摘要
  - ``GET /rooms/{room_id}``  → 获取指定房间的座位与昵称

查询接口不会创建房间；房间只在第一条 WebSocket 连接到达时创建。
"""
from fastapi import APIRouter, Depends, HTTPException, Request

from roomrelay.api.deps import get_room_registry
from roomrelay.core.rate_limit import limiter
from roomrelay.schemas.api_response import ApiResponse, AsciiJSONResponse
from roomrelay.schemas.rooms import RoomInfoData
from roomrelay.services.registry import RoomRegistry

router: APIRouter = APIRouter(default_response_class=AsciiJSONResponse)


@router.get("/rooms", summary="获取房间列表", response_model=ApiResponse[list[RoomInfoData]])
@limiter.limit("10/second")
async def list_rooms(request: Request, registry: RoomRegistry = Depends(get_room_registry)):
    """返回进程内所有已创建房间的摘要列表。"""
    return ApiResponse.ok(data=registry.list_rooms())


@router.get("/rooms/{room_id}", summary="获取房间详情", response_model=ApiResponse[RoomInfoData])
@limiter.limit("5/second")
async def room_info(request: Request, room_id: str, registry: RoomRegistry = Depends(get_room_registry)):
    """返回指定房间的座位占用与昵称。

    Args:
        request: FastAPI Request 对象（用于限流判断）。
        room_id: 房间唯一标识（区分大小写）。
    """
    room = registry.find_room(room_id)
    if room is None:
        raise HTTPException(status_code=404, detail=f"房间不存在: {room_id}")
    return ApiResponse.ok(data=room.info())
