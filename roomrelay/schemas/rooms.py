"""
roomrelay.schemas.rooms
~~~~~~~~~~~~~~~~~~~~~~~

房间查询接口的 Pydantic 响应模型。
"""
from __future__ import annotations

from pydantic import BaseModel, Field

from roomrelay.schemas.messages import PlayerEntry


class RoomInfoData(BaseModel):
    """房间摘要信息。"""

    room_id: str = Field(..., description="房间唯一标识")
    capacity: int = Field(..., description="座位总数")
    online_count: int = Field(..., description="当前已占用座位数")
    players: list[PlayerEntry] = Field(..., description="按座位号升序的在线列表")
