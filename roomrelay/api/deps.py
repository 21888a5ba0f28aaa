"""
roomrelay.api.deps
~~~~~~~~~~~~~~~~~~

路由依赖项：从应用状态中取出进程内的房间注册表。
"""
from fastapi import Request

from roomrelay.services.registry import RoomRegistry


def get_room_registry(request: Request) -> RoomRegistry:
    """返回 lifespan 中创建的 ``RoomRegistry``。"""
    return request.app.state.rooms
