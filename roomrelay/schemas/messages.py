"""
roomrelay.schemas.messages
~~~~~~~~~~~~~~~~~~~~~~~~~~

WebSocket 线路协议 —— 所有帧均为带 ``t`` 类型字段的 JSON 对象。

服务端 → 客户端:
  - ``welcome{slot, players}``   —— 入座成功，附带当前在线列表（含自己）
  - ``join{slot, name}``         —— 有人入座 / 更新昵称
  - ``leave{slot}``              —— 有人离开
  - ``presence{players}``        —— 完整在线列表
  - ``pong{c}``                  —— 心跳回应，原样回显 ``c``
  - ``in{slot, i, s?}``          —— 转发的玩家输入
  - ``snap{st, s?}``             —— 转发的状态快照
  - ``err{code, msg}``           —— 错误（``ROOM_FULL`` / ``BAD_JSON``）

客户端 → 服务端: ``join{name?}`` / ``ping{c?}`` / ``in{i?, s?}`` / ``snap{st?, s?}``。

``i`` / ``st`` / ``c`` / ``s`` 都是不透明数据，中继只负责转发，从不解释。
"""
from __future__ import annotations

import json
import math
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

NAME_MAX_LENGTH: int = 24


class ErrorCode(str, Enum):
    """下发给客户端的错误码。"""

    ROOM_FULL = "ROOM_FULL"
    BAD_JSON = "BAD_JSON"


class MessageDecodeError(ValueError):
    """入站消息不是合法 JSON。"""


# ── 解码 ──────────────────────────────────────────────────────────────

def _reject_constant(token: str) -> float:
    # NaN / Infinity 不是标准 JSON，浏览器端同样会拒绝
    raise ValueError(f"non-standard JSON constant: {token}")


def _parse_finite_float(token: str) -> float:
    value = float(token)
    if not math.isfinite(value):
        raise ValueError(f"number out of range: {token}")
    return value


def decode_message(raw: str) -> Any:
    """解析一条入站文本帧。

    Args:
        raw: WebSocket 收到的原始文本。

    Returns:
        解析后的 JSON 值（不保证是对象）。

    Raises:
        MessageDecodeError: 文本不是合法 JSON。
    """
    try:
        return json.loads(
            raw,
            parse_constant=_reject_constant,
            parse_float=_parse_finite_float,
        )
    except (ValueError, RecursionError) as e:
        raise MessageDecodeError(str(e)) from e


# ── 客户端 → 服务端 ───────────────────────────────────────────────────

def _numeric_or_none(value: Any) -> int | float | None:
    """只有 JSON 数字才算序号；布尔值在 Python 里是 int，需要排除。"""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value


class _ClientMessage(BaseModel):
    model_config = ConfigDict(extra="ignore")


class JoinRequest(_ClientMessage):
    """``join``：设置本座位的昵称。"""

    name: str = ""

    @field_validator("name", mode="before")
    @classmethod
    def _truncate_name(cls, value: Any) -> str:
        if not isinstance(value, str):
            return ""
        return value[:NAME_MAX_LENGTH]


class PingRequest(_ClientMessage):
    """``ping``：``c`` 是否出现通过 ``model_fields_set`` 判断。"""

    c: Any = None


class _SequencedMessage(_ClientMessage):
    s: int | float | None = None

    @field_validator("s", mode="before")
    @classmethod
    def _keep_numeric_seq(cls, value: Any) -> int | float | None:
        return _numeric_or_none(value)


class InputRequest(_SequencedMessage):
    """``in``：玩家输入。"""

    i: Any = None


class SnapRequest(_SequencedMessage):
    """``snap``：权威端状态快照。"""

    st: Any = None


# ── 服务端 → 客户端 ───────────────────────────────────────────────────

def _to_wire_value(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, list) and value and isinstance(value[0], BaseModel):
        return [item.model_dump() for item in value]
    return value


class PlayerEntry(BaseModel):
    """在线列表中的一项。"""

    slot: int = Field(..., ge=0, description="座位号")
    name: str = Field(..., description="昵称，未设置时为空串")


class ServerFrame(BaseModel):
    """下行帧基类。

    只序列化显式赋值过的字段：可选字段（``s`` / ``c``）未赋值时不出现在 JSON 中，
    而显式传入 ``None`` 的字段会编码为 ``null``。
    """

    t: str

    def to_wire(self) -> dict[str, Any]:
        """构造线路字典（``t`` 永远排在第一位）。

        不透明字段（``i`` / ``st`` / ``c``）原样放入，不经过 pydantic 序列化。
        """
        wire: dict[str, Any] = {"t": self.t}
        for name in type(self).model_fields:
            if name == "t" or name not in self.model_fields_set:
                continue
            wire[name] = _to_wire_value(getattr(self, name))
        return wire

    def encode(self) -> str:
        """序列化为线路文本。

        非 ASCII 字符一律转义，孤立代理项（如 ``\\ud800``）也能得到合法的 UTF-8 文本。

        Raises:
            ValueError: 载荷无法编码为 JSON。
            RecursionError: 载荷嵌套过深。
        """
        return json.dumps(self.to_wire(), ensure_ascii=True, allow_nan=False, separators=(",", ":"))


class WelcomeFrame(ServerFrame):
    t: Literal["welcome"] = "welcome"
    slot: int
    players: list[PlayerEntry]


class JoinFrame(ServerFrame):
    t: Literal["join"] = "join"
    slot: int
    name: str


class LeaveFrame(ServerFrame):
    t: Literal["leave"] = "leave"
    slot: int


class PresenceFrame(ServerFrame):
    t: Literal["presence"] = "presence"
    players: list[PlayerEntry]


class PongFrame(ServerFrame):
    t: Literal["pong"] = "pong"
    c: Any = None


class InputFrame(ServerFrame):
    t: Literal["in"] = "in"
    slot: int
    i: Any = None
    s: int | float | None = None


class SnapFrame(ServerFrame):
    t: Literal["snap"] = "snap"
    st: Any = None
    s: int | float | None = None


class ErrorFrame(ServerFrame):
    t: Literal["err"] = "err"
    code: ErrorCode
    msg: str
