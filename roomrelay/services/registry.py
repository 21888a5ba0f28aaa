"""
roomrelay.services.registry
~~~~~~~~~~~~~~~~~~~~~~~~~~~

房间注册表 —— 房间标识 → 房间实例的路由表。

同一标识的所有连接都会路由到同一个 ``Room``；房间在首次被引用时懒创建，
之后存活到进程结束。在 FastAPI lifespan 中创建并挂载到 ``app.state.rooms``。
"""
from __future__ import annotations

from roomrelay.core.logging import get_logger
from roomrelay.schemas.rooms import RoomInfoData
from roomrelay.services.room import Room

logger = get_logger(__name__)


class RoomRegistry:
    """进程内的房间表。

    - ``get_room(room_id)``  → 获取/创建指定房间
    - ``find_room(room_id)`` → 仅查找，不创建
    - ``list_rooms()``       → 列出所有房间摘要
    """

    def __init__(self, queue_size: int | None = None) -> None:
        self._rooms: dict[str, Room] = {}
        self._queue_size = queue_size

    def __len__(self) -> int:
        return len(self._rooms)

    def get_room(self, room_id: str) -> Room:
        """获取指定房间（不存在则创建）。标识区分大小写。"""
        room = self._rooms.get(room_id)
        if room is None:
            room = Room(room_id, queue_size=self._queue_size)
            self._rooms[room_id] = room
            logger.info("房间已创建 | room=%s | 房间总数: %d", room_id, len(self._rooms))
        return room

    def find_room(self, room_id: str) -> Room | None:
        return self._rooms.get(room_id)

    def list_rooms(self) -> list[RoomInfoData]:
        """按创建顺序列出所有房间的摘要信息。"""
        return [room.info() for room in self._rooms.values()]
