"""
roomrelay.schemas.api_response
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

房间查询接口的应答包装与 JSON 渲染。

``/api`` 下的所有应答（含 404 / 429 以外的错误）都包成 ``{code, data, msg}``；
WebSocket 线路帧不使用此结构，见 ``schemas.messages``。
"""
from __future__ import annotations

import json
from typing import Any, Generic, TypeVar

from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

T = TypeVar("T")


class AsciiJSONResponse(JSONResponse):
    """以纯 ASCII 输出的 JSONResponse。

    昵称来自客户端，可能含有孤立代理项；默认的 ``ensure_ascii=False``
    会在 UTF-8 编码时失败，这里统一转义为 ``\\uXXXX``。
    """

    def render(self, content: Any) -> bytes:
        return json.dumps(
            content,
            ensure_ascii=True,
            allow_nan=False,
            separators=(",", ":"),
        ).encode("ascii")


class ApiResponse(BaseModel, Generic[T]):
    """房间查询接口的应答体。

    .. code-block:: json

        {"code": 200, "data": {"room_id": "lobby", "online_count": 2, ...}, "msg": "success"}

    Attributes:
        code: 与 HTTP 状态码一致，200 表示成功。
        data: 房间摘要或摘要列表；失败时为 ``None``。
        msg: 状态说明，失败时为错误详情。
    """

    code: int = Field(default=200, description="状态码，与 HTTP 状态码一致")
    data: T = Field(..., description="房间数据")
    msg: str = Field(default="success", description="状态说明")

    @classmethod
    def ok(cls, data: T) -> ApiResponse[T]:
        return cls(code=200, data=data)

    @classmethod
    def fail(cls, msg: str, code: int = 500) -> ApiResponse[Any]:
        return cls(code=code, data=None, msg=msg)

    @classmethod
    def from_http_error(cls, exc: StarletteHTTPException) -> ApiResponse[Any]:
        """把路由抛出的 HTTPException（如房间不存在）转换为失败应答。"""
        return cls.fail(msg=str(exc.detail), code=exc.status_code)

    def to_response(self, headers: dict[str, str] | None = None) -> AsciiJSONResponse:
        """渲染为 HTTP 应答，状态码取 ``code``。"""
        return AsciiJSONResponse(
            status_code=self.code,
            content=self.model_dump(mode="json"),
            headers=headers,
        )
