"""
roomrelay.main
~~~~~~~~~~~~~~

FastAPI 应用入口 —— 注册路由、挂载中间件、定义生命周期。
"""
from __future__ import annotations

import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from roomrelay.api import rooms, ws
from roomrelay.core.config import settings
from roomrelay.core.logging import get_logger, setup_logging
from roomrelay.core.rate_limit import limiter
from roomrelay.schemas.api_response import ApiResponse
from roomrelay.services.registry import RoomRegistry

# 初始化日志系统（必须在其他模块之前）
setup_logging()
logger = get_logger(__name__)


# ── 生命周期 ──────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """应用生命周期钩子，仅在 worker 启动/关闭时各执行一次。"""
    # ── 启动 ──
    app.state.rooms = RoomRegistry(queue_size=settings.SEND_QUEUE_SIZE)
    logger.info(
        "🚀 中继已启动 | env=%s | debug=%s | log_level=%s | default_room=%s",
        settings.ENVIRONMENT,
        settings.debug,
        settings.effective_log_level,
        settings.DEFAULT_ROOM,
    )
    yield
    # ── 关闭 ──
    logger.info("👋 中继已关闭 | 房间数: %d", len(app.state.rooms))


# ── 创建 FastAPI 实例 ─────────────────────────────────────────────────

app: FastAPI = FastAPI(
    title=settings.PROJECT_NAME,
    description="多房间 WebSocket 消息中继（每房间 4 个座位）",
    version=settings.VERSION,
    debug=settings.debug,
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# ── CORS 中间件 ───────────────────────────────────────────────────────
if settings.allow_cors_all_origins:
    # dev / test 环境：允许所有来源，方便本地调试
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
else:
    # prod 环境：仅允许指定来源
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[],
        allow_methods=["GET"],
        allow_headers=["*"],
    )

# ── 路由挂载 ──────────────────────────────────────────────────────────
app.include_router(rooms.router, prefix="/api", tags=["Rooms"])
app.include_router(ws.router, tags=["WebSocket Relay"])


# ── 全局异常处理器 ────────────────────────────────────────────────────

@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> Response:
    """未匹配的路径返回纯文本 ``Not found``；``/api`` 下的错误保持 ApiResponse 格式。"""
    if exc.status_code == 404 and not request.url.path.startswith("/api/"):
        return PlainTextResponse("Not found", status_code=404)
    return ApiResponse.from_http_error(exc).to_response(headers=getattr(exc, "headers", None))


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> Response:
    """捕获所有未处理异常，返回统一的 ApiResponse.fail() 格式。"""
    logger.error("未捕获异常: %s %s -> %s", request.method, request.url, exc, exc_info=True)
    # 非 prod 环境返回详细错误信息，prod 环境隐藏内部细节
    detail = str(exc) if not settings.is_prod else "服务器内部错误"
    return ApiResponse.fail(msg=detail, code=500).to_response()


@app.get("/health", tags=["System"])
async def health_check() -> JSONResponse:
    """存活检查。

    Returns:
        ``{"ok": true, "ts": <毫秒时间戳>}``
    """
    return JSONResponse(content={"ok": True, "ts": int(time.time() * 1000)})


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "roomrelay.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.reload,  # 仅 dev 环境开启热重载
        log_level=settings.effective_log_level.lower(),
    )
